"""
services.py
Academy/member subscription extensions, registrations and facility fees on
top of the document store.

Every function that needs "now" takes a clock (zero-argument callable
returning a datetime) instead of reading the system time itself.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

import db
import utils
from errors import InvalidAmount, NotFound
from models import (
    ACADEMIES,
    ACADEMY_PAYMENTS,
    ACADEMY_SUBSCRIPTIONS,
    FACILITIES,
    FACILITY_FEES,
    FEEDBACK,
    GUEST_SUBSCRIPTIONS,
    GUESTS,
    MEMBER_SUBSCRIPTIONS,
    MEMBERS,
    METHOD_CASH,
    METHOD_MANUAL,
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
    PAYMENTS,
    REGISTRATION_FEE_KEY,
    STATUS_INACTIVE,
    ExtensionPolicy,
    ExtensionResult,
    Payment,
    Subscription,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _stamp(now: datetime) -> str:
    return now.isoformat(timespec="seconds")


def _require(collection: str, doc_id: str) -> dict:
    doc = db.get_doc(collection, doc_id)
    if not doc:
        raise NotFound(f"No such document: {collection}/{doc_id}")
    return doc


# ---------- Facilities & members ----------

def create_facility(name: str, clock: Clock = datetime.now) -> str:
    return db.create_doc(FACILITIES, {"name": name.strip(), "createdAt": _stamp(clock())})


def list_facilities() -> list[dict]:
    return db.list_docs(FACILITIES, order_by="name", desc=False)


def set_facility_fee(facility_id: str, plan_type: str, price, duration=None,
                     clock: Clock = datetime.now) -> None:
    """
    Create or replace the fee of one plan. duration (months) overrides the
    plan's default length when the fee is billed.
    """
    _require(FACILITIES, facility_id)
    data = {"planType": plan_type, "price": str(utils.to_decimal(price, "Fee")), "duration": None}
    if duration is not None and str(duration).strip() != "":
        data["duration"] = utils.validate_duration(duration)

    fee_id = f"{facility_id}:{plan_type}"
    stamp = _stamp(clock())
    if db.get_doc(FACILITY_FEES, fee_id):
        db.update_doc(FACILITY_FEES, fee_id, {**data, "updatedAt": stamp})
    else:
        db.create_doc(FACILITY_FEES, {**data, "createdAt": stamp}, parent_id=facility_id, doc_id=fee_id)


def facility_fees(facility_id: str) -> dict:
    """
    {plan_type: {"price": ..., "duration": ...}} for a facility.
    """
    return {d["planType"]: d for d in db.list_docs(FACILITY_FEES, parent_id=facility_id, desc=False)}


def create_member(name: str, reg_number: str, mobile: str = "", gender: str = "Male",
                  clock: Clock = datetime.now) -> str:
    return db.create_doc(
        MEMBERS,
        {
            "name": name.strip(),
            "regNumber": reg_number.strip(),
            "mobile": mobile.strip(),
            "gender": gender,
            "createdAt": _stamp(clock()),
        },
    )


def list_members() -> list[dict]:
    return db.list_docs(MEMBERS, order_by="name", desc=False)


# ---------- Academies ----------

def register_academy(name: str, mobile: str, address: str, monthly_price, email: str = "",
                     staff_uid: str = "system", clock: Clock = datetime.now) -> str:
    """
    Register an academy. Subscriptions are added afterwards through
    extend_academy_subscription.
    """
    mobile = mobile.strip()
    email = email.strip()
    for other in db.list_docs(ACADEMIES):
        if other.get("mobile") == mobile or (email and other.get("email") == email):
            raise ValueError(f"Academy already registered: {other.get('name')}")

    now = clock()
    academy_id = db.create_doc(
        ACADEMIES,
        {
            "name": name.strip(),
            "email": email,
            "mobile": mobile,
            "address": address.strip(),
            "monthlyPrice": str(utils.to_decimal(monthly_price, "Monthly price")),
            "registrationDate": _stamp(now),
            "createdBy": staff_uid,
            "createdAt": _stamp(now),
        },
    )
    logger.info("Registered academy %s (%s)", academy_id, name)
    return academy_id


def update_academy(academy_id: str, staff_uid: str = "system", clock: Clock = datetime.now, **fields) -> None:
    _require(ACADEMIES, academy_id)
    partial = {k: v for k, v in fields.items() if k in ("name", "email", "mobile", "address")}
    if "monthly_price" in fields:
        partial["monthlyPrice"] = str(utils.to_decimal(fields["monthly_price"], "Monthly price"))
    partial["lastUpdatedAt"] = _stamp(clock())
    partial["lastUpdatedBy"] = staff_uid
    db.update_doc(ACADEMIES, academy_id, partial)


def delete_academy(academy_id: str) -> None:
    """
    Delete an academy with its subscriptions and payments.
    """
    _require(ACADEMIES, academy_id)
    with db.transaction() as conn:
        subs = db.delete_docs(ACADEMY_SUBSCRIPTIONS, parent_id=academy_id, conn=conn)
        pays = db.delete_docs(ACADEMY_PAYMENTS, where={"academyId": academy_id}, conn=conn)
        db.delete_doc(ACADEMIES, academy_id, conn=conn)
    logger.info("Deleted academy %s (%s subscriptions, %s payments)", academy_id, subs, pays)


# ---------- Subscriptions ----------

def _subscriptions_of(parent_collection: str) -> str:
    if parent_collection == ACADEMIES:
        return ACADEMY_SUBSCRIPTIONS
    if parent_collection == MEMBERS:
        return MEMBER_SUBSCRIPTIONS
    if parent_collection == GUESTS:
        return GUEST_SUBSCRIPTIONS
    raise ValueError(f"{parent_collection!r} does not own subscriptions")


def latest_subscription(parent_collection: str, parent_id: str, facility_id: str | None = None,
                        conn=None) -> Subscription | None:
    where = {"facilityId": facility_id} if facility_id else None
    doc = db.latest_doc(_subscriptions_of(parent_collection), parent_id, where=where, conn=conn)
    return Subscription.from_doc(doc) if doc else None


def suggested_start_date(parent_collection: str, parent_id: str, facility_id: str | None = None,
                         clock: Clock = datetime.now) -> str:
    latest = latest_subscription(parent_collection, parent_id, facility_id)
    return utils.next_start_date(latest.end_date if latest else None, clock())


def academy_status(academy_id: str, clock: Clock = datetime.now) -> tuple[str, Subscription | None]:
    latest = latest_subscription(ACADEMIES, academy_id)
    if latest is None:
        return STATUS_INACTIVE, None
    return utils.classify_status(latest.end_date, clock()), latest


def list_academies_with_status(clock: Clock = datetime.now) -> list[dict]:
    rows = []
    for academy in db.list_docs(ACADEMIES, order_by="registrationDate"):
        status, latest = academy_status(academy["id"], clock)
        rows.append(
            {
                **academy,
                "status": status,
                "expiryDate": latest.end_date if latest else "N/A",
                "subscription": latest,
            }
        )
    return rows


def member_subscriptions(member_id: str, clock: Clock = datetime.now) -> dict:
    """
    Latest subscription per facility, their statuses and the member's
    registration expiry.
    """
    _require(MEMBERS, member_id)
    now = clock()
    latest_by_facility: dict[str, Subscription] = {}
    # newest first, so the first hit per facility is the current one
    for doc in db.list_docs(MEMBER_SUBSCRIPTIONS, parent_id=member_id):
        sub = Subscription.from_doc(doc)
        latest_by_facility.setdefault(sub.facility_id or "", sub)

    rows = [
        {
            "facilityId": fid,
            "planType": sub.plan_type,
            "startDate": sub.start_date,
            "endDate": sub.end_date,
            "status": utils.classify_status(sub.end_date, now),
        }
        for fid, sub in latest_by_facility.items()
    ]
    rows.sort(key=lambda r: r["endDate"], reverse=True)
    return {
        "subscriptions": rows,
        "registrationExpiry": utils.registration_expiry([r["endDate"] for r in rows], now),
    }


def _extend(parent_collection: str, parent_id: str, payments_collection: str, *, start_date: str,
            end_date: str, amount: Decimal, method: str, transaction_id: str, staff_uid: str,
            policy: str, now: datetime, facility_id: str | None = None, payment_fields: dict,
            subscription_fields: dict) -> ExtensionResult:
    subs_collection = _subscriptions_of(parent_collection)
    parent_key = "academyId" if parent_collection == ACADEMIES else "userId"
    stamp = _stamp(now)
    status = utils.classify_status(end_date, now)

    with db.transaction() as conn:
        latest = latest_subscription(parent_collection, parent_id, facility_id, conn=conn)
        update_existing = latest is not None and policy == ExtensionPolicy.UPDATE_LATEST
        subscription_id = latest.id if update_existing else db.new_id()

        seq = db.next_counter(payments_collection, conn=conn)
        invoice_no = utils.invoice_number(seq, now.year)

        payment_id = db.create_doc(
            payments_collection,
            {
                parent_key: parent_id,
                "amount": str(amount),
                "paymentDate": stamp,
                "method": method,
                "transactionId": transaction_id.strip(),
                "status": PAYMENT_COMPLETED if method == METHOD_CASH else PAYMENT_PENDING,
                "processedBy": staff_uid,
                "invoiceNo": invoice_no,
                "startDate": start_date,
                "endDate": end_date,
                "subscription": f"{parent_id}/{subscription_id}",
                "createdAt": stamp,
                **payment_fields,
            },
            conn=conn,
        )

        sub_data = {
            "startDate": start_date,
            "endDate": end_date,
            "status": status,
            "updatedAt": stamp,
            "lastPaymentId": payment_id,
            **subscription_fields,
        }
        if update_existing:
            db.update_doc(subs_collection, subscription_id,
                          {**sub_data, "extendedAt": stamp, "extendedBy": staff_uid}, conn=conn)
        else:
            db.create_doc(
                subs_collection,
                {**sub_data, parent_key: parent_id, "createdAt": stamp, "createdBy": staff_uid},
                parent_id=parent_id,
                doc_id=subscription_id,
                conn=conn,
            )

    logger.info(
        "%s %s/%s until %s, invoice %s, amount %s",
        "Extended" if update_existing else "Created",
        parent_id, subscription_id, end_date, invoice_no, amount,
    )
    return ExtensionResult(
        payment_id=payment_id,
        subscription_id=subscription_id,
        invoice_no=invoice_no,
        amount=amount,
        start_date=start_date,
        end_date=end_date,
        status=status,
        created=not update_existing,
    )


def extend_academy_subscription(academy_id: str, start_date, months, custom_price=None,
                                method: str = "Online", transaction_id: str = "",
                                staff_uid: str = "system", policy: str = ExtensionPolicy.UPDATE_LATEST,
                                clock: Clock = datetime.now) -> ExtensionResult:
    """
    Extend an academy by a number of months, billed at its monthly price
    unless a custom amount is given.
    """
    academy = _require(ACADEMIES, academy_id)
    months = utils.validate_duration(months)
    start = utils.parse_iso(start_date).isoformat()
    end = utils.calc_end_date(start, duration=months)
    amount = utils.round_currency(utils.calc_amount(academy.get("monthlyPrice", 0), months, custom_price))

    return _extend(
        ACADEMIES, academy_id, ACADEMY_PAYMENTS,
        start_date=start, end_date=end, amount=amount, method=method,
        transaction_id=transaction_id, staff_uid=staff_uid, policy=policy, now=clock(),
        payment_fields={"durationNumeric": months, "months": utils.month_labels(start, months)},
        subscription_fields={"monthlyPrice": academy.get("monthlyPrice")},
    )


def extend_member_subscription(member_id: str, facility_id: str, plan_type: str, start_date,
                               include_registration: bool = False, method: str = "Online",
                               transaction_id: str = "", staff_uid: str = "system",
                               policy: str = ExtensionPolicy.UPDATE_LATEST,
                               clock: Clock = datetime.now) -> ExtensionResult:
    """
    Extend a member at one facility on one of the facility's plans. The
    plan's fee record sets the price and, when it has one, the duration.
    """
    _require(MEMBERS, member_id)
    _require(FACILITIES, facility_id)
    fees = facility_fees(facility_id)
    if plan_type not in fees:
        raise NotFound(f"No fee configured for plan {plan_type!r} at facility {facility_id}")

    start = utils.parse_iso(start_date).isoformat()
    end = utils.calc_end_date(start, plan_type, fees[plan_type].get("duration"))
    amount = utils.round_currency(utils.plan_fee(fees, plan_type, include_registration))

    return _extend(
        MEMBERS, member_id, PAYMENTS,
        start_date=start, end_date=end, amount=amount, method=method,
        transaction_id=transaction_id, staff_uid=staff_uid, policy=policy, now=clock(),
        facility_id=facility_id,
        payment_fields={"facilityId": facility_id, "planType": plan_type,
                        "includesRegistration": bool(include_registration),
                        "months": utils.months_in_range(start, end)},
        subscription_fields={"facilityId": facility_id, "planType": plan_type},
    )


# ---------- Guests ----------

def register_guest(name: str, mobile: str, staff_uid: str = "system", clock: Clock = datetime.now) -> str:
    mobile = mobile.strip()
    if db.list_docs(GUESTS, where={"mobile": mobile}):
        raise ValueError("Guest with this mobile number already exists.")
    stamp = _stamp(clock())
    guest_id = db.create_doc(
        GUESTS,
        {"name": name.strip(), "mobile": mobile, "createdAt": stamp, "lastVisit": stamp, "createdBy": staff_uid},
    )
    logger.info("Registered guest %s (%s)", guest_id, name)
    return guest_id


def list_guests() -> list[dict]:
    return db.list_docs(GUESTS, order_by="lastVisit")


def book_guest(guest_id: str, facility_id: str, plan_type: str, start_date, method: str = "Online",
               transaction_id: str = "", staff_uid: str = "system", clock: Clock = datetime.now) -> ExtensionResult:
    """
    Book a facility for a walk-in guest. Each booking is a new subscription
    and its payment shares the member invoice sequence.
    """
    _require(GUESTS, guest_id)
    _require(FACILITIES, facility_id)
    fees = facility_fees(facility_id)
    if plan_type not in fees:
        raise NotFound(f"No fee configured for plan {plan_type!r} at facility {facility_id}")

    now = clock()
    start = utils.parse_iso(start_date).isoformat()
    end = utils.calc_end_date(start, plan_type, fees[plan_type].get("duration"))
    amount = utils.round_currency(utils.plan_fee(fees, plan_type))

    db.update_doc(GUESTS, guest_id, {"lastVisit": _stamp(now)})
    return _extend(
        GUESTS, guest_id, PAYMENTS,
        start_date=start, end_date=end, amount=amount, method=method,
        transaction_id=transaction_id, staff_uid=staff_uid, policy=ExtensionPolicy.APPEND, now=now,
        facility_id=facility_id,
        payment_fields={"isGuest": True, "facilityId": facility_id, "planType": plan_type,
                        "months": utils.months_in_range(start, end)},
        subscription_fields={"facilityId": facility_id, "planType": plan_type},
    )



def payments_for(parent_collection: str, parent_id: str) -> list[Payment]:
    if parent_collection == ACADEMIES:
        docs = db.list_docs(ACADEMY_PAYMENTS, where={"academyId": parent_id})
    else:
        docs = db.list_docs(PAYMENTS, where={"userId": parent_id})
    return [Payment.from_doc(d) for d in docs]


def set_payment_status(collection: str, payment_id: str, status: str, staff_uid: str = "system",
                       clock: Clock = datetime.now) -> None:
    """
    Mark a payment completed or failed once the transaction has been checked.
    """
    if status not in PAYMENT_STATUSES:
        raise ValueError(f"Unknown payment status {status!r}")
    if collection not in (PAYMENTS, ACADEMY_PAYMENTS):
        raise ValueError(f"{collection!r} is not a payments collection")
    _require(collection, payment_id)
    db.update_doc(collection, payment_id, {"status": status, "verifiedBy": staff_uid, "verifiedAt": _stamp(clock())})
    logger.info("Payment %s/%s marked %s by %s", collection, payment_id, status, staff_uid)


def record_manual_payment(member_id: str, facility_id: str, amount, months: list[str],
                          plan_type: str = "oneMonth", is_registration: bool = False,
                          transaction_id: str = "", staff_uid: str = "system",
                          clock: Clock = datetime.now) -> str:
    """
    Record a payment taken outside the extension flow. It does not touch
    the member's subscriptions.
    """
    _require(MEMBERS, member_id)
    _require(FACILITIES, facility_id)
    value = utils.round_currency(utils.to_decimal(amount))
    if value <= 0:
        raise InvalidAmount(f"Amount must be > 0, got {amount!r}")
    labels = list(months)
    if is_registration:
        labels.insert(0, "Registration")

    now = clock()
    stamp = _stamp(now)
    with db.transaction() as conn:
        invoice_no = utils.invoice_number(db.next_counter(PAYMENTS, conn=conn), now.year)
        payment_id = db.create_doc(
            PAYMENTS,
            {
                "userId": member_id,
                "amount": str(value),
                "facilityId": facility_id,
                "planType": plan_type,
                "invoiceNo": invoice_no,
                "months": labels,
                "method": METHOD_MANUAL,
                "paymentDate": stamp,
                "processedBy": staff_uid,
                "status": PAYMENT_COMPLETED,
                "transactionId": transaction_id.strip() or "Manual",
                "isRegistration": bool(is_registration),
                "createdAt": stamp,
            },
            conn=conn,
        )
    logger.info("Manual payment %s for %s, invoice %s, amount %s", payment_id, member_id, invoice_no, value)
    return payment_id


# ---------- Feedback ----------

def submit_feedback(title: str, description: str, category: str, staff_uid: str = "system",
                    clock: Clock = datetime.now) -> str:
    errors = utils.validate_feedback_inputs(title, description, category)
    if errors:
        raise ValueError(" ".join(errors))
    return db.create_doc(
        FEEDBACK,
        {
            "title": title.strip(),
            "description": description.strip(),
            "category": category,
            "status": PAYMENT_PENDING,
            "submittedBy": staff_uid,
            "createdAt": _stamp(clock()),
        },
    )


def list_feedback() -> list[dict]:
    return db.list_docs(FEEDBACK)


def _sample_mobile() -> str:
    return "9" + str(int(db.new_id(), 16))[-9:]


def insert_sample_data(clock: Clock = datetime.now) -> None:
    """
    Insert a facility with fees, two academies and a member (adds new rows each run).
    """
    today = clock().date()
    suffix = db.new_id()[:4]

    facility_id = create_facility(f"Swimming Pool {suffix}", clock=clock)
    set_facility_fee(facility_id, "oneMonth", "1200", clock=clock)
    set_facility_fee(facility_id, "threeMonth", "3300", clock=clock)
    set_facility_fee(facility_id, "year", "12000", clock=clock)
    set_facility_fee(facility_id, REGISTRATION_FEE_KEY, "500", clock=clock)

    # Academy 1: expires in ~5 days
    a1 = register_academy(f"Junior Cricket {suffix}", _sample_mobile(), "North Ground", "15000", clock=clock)
    extend_academy_subscription(a1, utils.add_months(today, -1) + timedelta(days=5), 1,
                                method=METHOD_CASH, clock=clock)

    # Academy 2: expired
    a2 = register_academy(f"Skating Club {suffix}", _sample_mobile(), "Rink Road", "9000", clock=clock)
    extend_academy_subscription(a2, utils.add_months(today, -2), 1, method=METHOD_CASH, clock=clock)

    member_id = create_member(f"Sample Member {suffix}", f"REG-{suffix}", clock=clock)
    extend_member_subscription(member_id, facility_id, "threeMonth", today, include_registration=True,
                               method=METHOD_CASH, clock=clock)
