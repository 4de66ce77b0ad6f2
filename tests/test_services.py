from __future__ import annotations

import threading
from datetime import datetime
from decimal import Decimal

import pytest

import services
from errors import InvalidAmount, InvalidDuration, NotFound
from models import (
    ACADEMIES,
    ACADEMY_PAYMENTS,
    ACADEMY_SUBSCRIPTIONS,
    FACILITY_FEES,
    FEEDBACK,
    GUEST_SUBSCRIPTIONS,
    GUESTS,
    MEMBERS,
    PAYMENTS,
    ExtensionPolicy,
    Subscription,
)


@pytest.fixture
def academy_id(store, clock):
    return services.register_academy("Junior Cricket", "9876543210", "North Ground", "1000", clock=clock)


@pytest.fixture
def facility_id(store, clock):
    fid = services.create_facility("Swimming Pool", clock=clock)
    services.set_facility_fee(fid, "oneMonth", "1200", clock=clock)
    services.set_facility_fee(fid, "threeMonth", "3300", duration=4, clock=clock)
    services.set_facility_fee(fid, "registration", "500", clock=clock)
    return fid


@pytest.fixture
def member_id(store, clock):
    return services.create_member("Asha Rao", "REG-001", "9000000001", clock=clock)


def test_new_academy_is_inactive(academy_id, clock):
    status, latest = services.academy_status(academy_id, clock)
    assert status == "Inactive"
    assert latest is None
    assert services.suggested_start_date(ACADEMIES, academy_id, clock=clock) == "2024-06-15"


def test_first_extension_creates_subscription_and_payment(store, academy_id, clock):
    result = services.extend_academy_subscription(
        academy_id, "2024-06-15", 3, transaction_id="UTR1", staff_uid="staff-7", clock=clock,
    )

    assert result.created is True
    assert result.end_date == "2024-09-15"
    assert result.amount == Decimal("3000.00")
    assert result.invoice_no == "INV202400001"
    assert result.status == "Active"

    payment = store.get_doc(ACADEMY_PAYMENTS, result.payment_id)
    assert payment["academyId"] == academy_id
    assert payment["amount"] == "3000.00"
    assert payment["status"] == "pending"
    assert payment["durationNumeric"] == 3
    assert payment["months"] == ["June 2024", "July 2024", "August 2024"]
    assert payment["subscription"] == f"{academy_id}/{result.subscription_id}"

    sub = store.get_doc(ACADEMY_SUBSCRIPTIONS, result.subscription_id)
    assert sub["createdBy"] == "staff-7"
    assert sub["lastPaymentId"] == result.payment_id


def test_extension_updates_latest_by_default(store, academy_id, clock):
    first = services.extend_academy_subscription(academy_id, "2024-06-15", 1, clock=clock)
    start = services.suggested_start_date(ACADEMIES, academy_id, clock=clock)
    assert start == "2024-07-16"

    second = services.extend_academy_subscription(
        academy_id, start, 2, custom_price="1800", method="Cash", staff_uid="staff-2", clock=clock,
    )

    assert second.created is False
    assert second.subscription_id == first.subscription_id
    assert second.amount == Decimal("1800.00")
    assert second.invoice_no == "INV202400002"
    assert len(store.list_docs(ACADEMY_SUBSCRIPTIONS, parent_id=academy_id)) == 1

    latest = services.latest_subscription(ACADEMIES, academy_id)
    assert latest.start_date == "2024-07-16"
    assert latest.end_date == "2024-09-16"
    assert latest.extended_by == "staff-2"

    cash = store.get_doc(ACADEMY_PAYMENTS, second.payment_id)
    assert cash["status"] == "completed"


def test_append_policy_keeps_history(store, academy_id, clock):
    first = services.extend_academy_subscription(academy_id, "2024-06-15", 1, clock=clock)
    later = lambda: datetime(2024, 7, 20, 9, 0)  # noqa: E731
    second = services.extend_academy_subscription(
        academy_id, "2024-07-16", 1, policy=ExtensionPolicy.APPEND, clock=later,
    )

    assert second.created is True
    assert second.subscription_id != first.subscription_id
    assert len(store.list_docs(ACADEMY_SUBSCRIPTIONS, parent_id=academy_id)) == 2
    assert services.latest_subscription(ACADEMIES, academy_id).id == second.subscription_id


def test_status_follows_the_clock(academy_id, clock):
    services.extend_academy_subscription(academy_id, "2024-05-20", 1, clock=clock)  # ends 2024-06-20

    assert services.academy_status(academy_id, clock)[0] == "Expiring Soon"
    assert services.academy_status(academy_id, lambda: datetime(2024, 6, 21))[0] == "Expired"
    assert services.academy_status(academy_id, lambda: datetime(2024, 6, 1))[0] == "Active"


def test_list_academies_with_status(academy_id, clock):
    other = services.register_academy("Skating Club", "9876500000", "Rink Road", "900", clock=clock)
    services.extend_academy_subscription(other, "2024-06-15", 6, clock=clock)

    rows = {r["id"]: r for r in services.list_academies_with_status(clock)}
    assert rows[academy_id]["status"] == "Inactive"
    assert rows[academy_id]["expiryDate"] == "N/A"
    assert rows[other]["status"] == "Active"
    assert rows[other]["expiryDate"] == "2024-12-15"


def test_invalid_extension_writes_nothing(store, academy_id, clock):
    with pytest.raises(InvalidAmount):
        services.extend_academy_subscription(academy_id, "2024-06-15", 1, custom_price="-5", clock=clock)
    with pytest.raises(InvalidDuration):
        services.extend_academy_subscription(academy_id, "2024-06-15", 0, clock=clock)
    with pytest.raises(NotFound):
        services.extend_academy_subscription("missing", "2024-06-15", 1, clock=clock)

    assert store.list_docs(ACADEMY_PAYMENTS) == []
    assert services.latest_subscription(ACADEMIES, academy_id) is None


def test_duplicate_academy_is_rejected(academy_id, clock):
    with pytest.raises(ValueError):
        services.register_academy("Another", "9876543210", "Somewhere", "500", clock=clock)


def test_delete_academy_cascades(store, academy_id, clock):
    services.extend_academy_subscription(academy_id, "2024-06-15", 1, clock=clock)
    services.delete_academy(academy_id)

    assert store.get_doc(ACADEMIES, academy_id) is None
    assert store.list_docs(ACADEMY_SUBSCRIPTIONS, parent_id=academy_id) == []
    assert store.list_docs(ACADEMY_PAYMENTS) == []


def test_update_academy(store, academy_id, clock):
    services.update_academy(academy_id, staff_uid="staff-1", clock=clock, name="Senior Cricket", monthly_price="1100")
    doc = store.get_doc(ACADEMIES, academy_id)
    assert doc["name"] == "Senior Cricket"
    assert doc["monthlyPrice"] == "1100"
    assert doc["lastUpdatedBy"] == "staff-1"


def test_member_extension_uses_fee_and_duration(store, member_id, facility_id, clock):
    result = services.extend_member_subscription(
        member_id, facility_id, "threeMonth", "2024-06-15", include_registration=True,
        transaction_id="UTR9", clock=clock,
    )
    # fee duration (4 months) overrides the plan's 3
    assert result.end_date == "2024-10-15"
    assert result.amount == Decimal("3800.00")
    assert result.invoice_no == "INV202400001"

    latest = services.latest_subscription(MEMBERS, member_id, facility_id)
    assert latest.plan_type == "threeMonth"
    assert latest.facility_id == facility_id


def test_member_subscriptions_are_per_facility(member_id, facility_id, clock):
    gym = services.create_facility("Gym", clock=clock)
    services.set_facility_fee(gym, "oneMonth", "800", clock=clock)

    services.extend_member_subscription(member_id, facility_id, "oneMonth", "2024-06-15", clock=clock)
    services.extend_member_subscription(member_id, gym, "oneMonth", "2024-05-01", clock=clock)

    assert services.suggested_start_date(MEMBERS, member_id, facility_id, clock=clock) == "2024-07-16"
    assert services.suggested_start_date(MEMBERS, member_id, gym, clock=clock) == "2024-06-02"

    overview = services.member_subscriptions(member_id, clock)
    statuses = {r["facilityId"]: r["status"] for r in overview["subscriptions"]}
    assert statuses == {facility_id: "Active", gym: "Expired"}
    assert overview["registrationExpiry"] == "2025-01-15"


def test_member_extension_without_fee(member_id, facility_id, clock):
    with pytest.raises(NotFound):
        services.extend_member_subscription(member_id, facility_id, "year", "2024-06-15", clock=clock)


def test_set_facility_fee_replaces_existing(facility_id):
    services.set_facility_fee(facility_id, "oneMonth", "1300", duration=2)
    fees = services.facility_fees(facility_id)
    assert fees["oneMonth"]["price"] == "1300"
    assert fees["oneMonth"]["duration"] == 2
    assert set(fees) == {"oneMonth", "threeMonth", "registration"}


def test_payments_for(academy_id, clock):
    services.extend_academy_subscription(academy_id, "2024-06-15", 2, transaction_id="UTR5", clock=clock)
    payments = services.payments_for(ACADEMIES, academy_id)
    assert len(payments) == 1
    assert payments[0].amount == Decimal("2000.00")
    assert payments[0].transaction_id == "UTR5"
    assert payments[0].months == ["June 2024", "July 2024"]


def test_insert_sample_data(store, clock):
    services.insert_sample_data(clock)
    statuses = sorted(r["status"] for r in services.list_academies_with_status(clock))
    assert statuses == ["Expired", "Expiring Soon"]
    assert len(services.list_members()) == 1


def test_facility_fee_is_stamped_by_the_clock(store, facility_id):
    fee = store.get_doc(FACILITY_FEES, f"{facility_id}:oneMonth")
    assert fee["createdAt"] == "2024-06-15T10:30:00"

    services.set_facility_fee(facility_id, "oneMonth", "1300", clock=lambda: datetime(2024, 7, 1, 8, 0))
    fee = store.get_doc(FACILITY_FEES, f"{facility_id}:oneMonth")
    assert fee["createdAt"] == "2024-06-15T10:30:00"
    assert fee["updatedAt"] == "2024-07-01T08:00:00"


def test_subscription_without_status_defaults_to_inactive():
    sub = Subscription.from_doc({"id": "s1", "startDate": "2024-06-15", "endDate": "2024-07-15"})
    assert sub.status == "Inactive"


def test_set_payment_status(store, academy_id, clock):
    result = services.extend_academy_subscription(academy_id, "2024-06-15", 1, transaction_id="UTR1", clock=clock)
    assert store.get_doc(ACADEMY_PAYMENTS, result.payment_id)["status"] == "pending"

    services.set_payment_status(ACADEMY_PAYMENTS, result.payment_id, "completed", staff_uid="staff-3", clock=clock)
    payment = store.get_doc(ACADEMY_PAYMENTS, result.payment_id)
    assert payment["status"] == "completed"
    assert payment["verifiedBy"] == "staff-3"
    assert payment["verifiedAt"] == "2024-06-15T10:30:00"
    assert payment["invoiceNo"] == result.invoice_no


def test_set_payment_status_rejects_bad_input(store, academy_id, clock):
    result = services.extend_academy_subscription(academy_id, "2024-06-15", 1, clock=clock)
    with pytest.raises(ValueError):
        services.set_payment_status(ACADEMY_PAYMENTS, result.payment_id, "refunded", clock=clock)
    with pytest.raises(NotFound):
        services.set_payment_status(PAYMENTS, result.payment_id, "completed", clock=clock)
    assert store.get_doc(ACADEMY_PAYMENTS, result.payment_id)["status"] == "pending"


def test_guest_booking_appends_and_shares_invoice_counter(store, member_id, facility_id, clock):
    guest_id = services.register_guest("Walk In", "9123456780", staff_uid="staff-4", clock=clock)
    services.extend_member_subscription(member_id, facility_id, "oneMonth", "2024-06-15", clock=clock)

    first = services.book_guest(guest_id, facility_id, "oneMonth", "2024-06-15", transaction_id="UTR7", clock=clock)
    later = lambda: datetime(2024, 6, 20, 18, 0)  # noqa: E731
    second = services.book_guest(guest_id, facility_id, "oneMonth", "2024-06-20", transaction_id="UTR8", clock=later)

    assert first.invoice_no == "INV202400002"
    assert second.invoice_no == "INV202400003"
    assert first.created is True and second.created is True
    assert first.subscription_id != second.subscription_id
    assert len(store.list_docs(GUEST_SUBSCRIPTIONS, parent_id=guest_id)) == 2
    assert first.end_date == "2024-07-15"
    assert first.amount == Decimal("1200.00")

    payment = store.get_doc(PAYMENTS, first.payment_id)
    assert payment["userId"] == guest_id
    assert payment["isGuest"] is True
    assert payment["facilityId"] == facility_id
    assert payment["status"] == "pending"

    assert store.get_doc(GUESTS, guest_id)["lastVisit"] == "2024-06-20T18:00:00"


def test_duplicate_guest_mobile_is_rejected(store, clock):
    services.register_guest("Walk In", "9123456780", clock=clock)
    with pytest.raises(ValueError):
        services.register_guest("Someone Else", "9123456780", clock=clock)
    assert len(services.list_guests()) == 1


def test_guest_booking_without_fee(store, facility_id, clock):
    guest_id = services.register_guest("Walk In", "9123456780", clock=clock)
    with pytest.raises(NotFound):
        services.book_guest(guest_id, facility_id, "year", "2024-06-15", clock=clock)
    assert store.list_docs(PAYMENTS) == []


def test_manual_payment(store, member_id, facility_id, clock):
    payment_id = services.record_manual_payment(
        member_id, facility_id, "1700", ["June 2024"], is_registration=True, staff_uid="staff-5", clock=clock,
    )
    payment = store.get_doc(PAYMENTS, payment_id)
    assert payment["months"] == ["Registration", "June 2024"]
    assert payment["method"] == "Manual"
    assert payment["status"] == "completed"
    assert payment["transactionId"] == "Manual"
    assert payment["amount"] == "1700.00"
    assert payment["invoiceNo"] == "INV202400001"
    assert services.latest_subscription(MEMBERS, member_id) is None

    # shares the member payments counter
    result = services.extend_member_subscription(member_id, facility_id, "oneMonth", "2024-06-15", clock=clock)
    assert result.invoice_no == "INV202400002"


def test_manual_payment_rejects_non_positive_amount(store, member_id, facility_id, clock):
    with pytest.raises(InvalidAmount):
        services.record_manual_payment(member_id, facility_id, "0", ["June 2024"], clock=clock)
    assert store.list_docs(PAYMENTS) == []


def test_submit_feedback(store, clock):
    feedback_id = services.submit_feedback("Slow page", "Payments page takes long to load.", "bug", clock=clock)
    doc = store.get_doc(FEEDBACK, feedback_id)
    assert doc["status"] == "pending"
    assert doc["category"] == "bug"
    assert doc["createdAt"] == "2024-06-15T10:30:00"
    assert [d["id"] for d in services.list_feedback()] == [feedback_id]


@pytest.mark.parametrize("title, description, category", [
    ("", "text", "bug"),
    ("Title", "  ", "feature"),
    ("Title", "text", "praise"),
])
def test_invalid_feedback_is_rejected(store, clock, title, description, category):
    with pytest.raises(ValueError):
        services.submit_feedback(title, description, category, clock=clock)
    assert services.list_feedback() == []


def test_concurrent_extensions_are_serialized(store, academy_id, clock):
    barrier = threading.Barrier(2)
    results = []
    failures = []

    def extend():
        barrier.wait()
        try:
            results.append(services.extend_academy_subscription(academy_id, "2024-06-15", 1, clock=clock))
        except Exception as exc:  # surfaced by the assert below
            failures.append(exc)

    threads = [threading.Thread(target=extend) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert sorted(r.invoice_no for r in results) == ["INV202400001", "INV202400002"]
    assert sorted(r.created for r in results) == [False, True]
    assert len(store.list_docs(ACADEMY_SUBSCRIPTIONS, parent_id=academy_id)) == 1
    assert len(store.list_docs(ACADEMY_PAYMENTS)) == 2
