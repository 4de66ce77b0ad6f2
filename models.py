"""
models.py
Lightweight domain helpers (plans, statuses, dataclasses).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal

# Plan durations in months (used for end_date auto-calculation)
PLAN_MONTHS = {
    "oneMonth": 1,
    "threeMonth": 3,
    "sixMonth": 6,
    "year": 12,
    "withoutReg": 1,
}

# Unknown plan tags bill as one month rather than failing
DEFAULT_PLAN_MONTHS = 1

PLAN_LABELS = {
    "oneMonth": "1 month",
    "threeMonth": "3 months",
    "sixMonth": "6 months",
    "year": "12 months",
    "withoutReg": "1 month (no registration)",
}

REGISTRATION_FEE_KEY = "registration"
REGISTRATION_VALID_MONTHS = 6

STATUS_ACTIVE = "Active"
STATUS_INACTIVE = "Inactive"
STATUS_EXPIRED = "Expired"
STATUS_EXPIRING_SOON = "Expiring Soon"
STATUSES = [STATUS_ACTIVE, STATUS_EXPIRING_SOON, STATUS_EXPIRED, STATUS_INACTIVE]

EXPIRING_SOON_DAYS = 7

METHOD_CASH = "Cash"
METHOD_ONLINE = "Online"
PAYMENT_METHODS = [METHOD_CASH, METHOD_ONLINE]
# Back-office entries made from the payments page
METHOD_MANUAL = "Manual"

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = [PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED]

FEEDBACK_CATEGORIES = ["bug", "feature", "improvement", "other"]

# Collections in the document store
ACADEMIES = "academies"
MEMBERS = "users"
FACILITIES = "facilities"
PAYMENTS = "payments"
ACADEMY_PAYMENTS = "academyPayments"
GUESTS = "guests"
FEEDBACK = "feedbacks"
# Sub-collections are stored under "<parent>/<child>" with parent_id set
ACADEMY_SUBSCRIPTIONS = "academies/subscriptions"
MEMBER_SUBSCRIPTIONS = "users/subscriptions"
GUEST_SUBSCRIPTIONS = "guests/subscriptions"
FACILITY_FEES = "facilities/fees"


class ExtensionPolicy:
    # Overwrite the latest subscription when one exists (console default)
    UPDATE_LATEST = "update_latest"
    # Always start a new subscription record
    APPEND = "append"


@dataclass(frozen=True)
class Subscription:
    id: str | None
    parent_id: str
    start_date: str
    end_date: str
    status: str
    created_at: str
    facility_id: str | None = None
    plan_type: str | None = None
    monthly_price: Decimal | None = None
    extended_at: str | None = None
    extended_by: str | None = None

    @classmethod
    def from_doc(cls, doc: dict) -> "Subscription":
        price = doc.get("monthlyPrice")
        return cls(
            id=doc.get("id"),
            parent_id=doc.get("parentId", ""),
            start_date=doc["startDate"],
            end_date=doc["endDate"],
            status=doc.get("status", STATUS_INACTIVE),
            created_at=doc.get("createdAt", ""),
            facility_id=doc.get("facilityId"),
            plan_type=doc.get("planType"),
            monthly_price=Decimal(str(price)) if price is not None else None,
            extended_at=doc.get("extendedAt"),
            extended_by=doc.get("extendedBy"),
        )


@dataclass(frozen=True)
class Payment:
    id: str | None
    parent_id: str
    amount: Decimal
    payment_date: str
    method: str  # Cash/Online/Manual
    status: str  # pending/completed/failed
    invoice_no: str
    start_date: str
    end_date: str
    months: list[str] = field(default_factory=list)
    transaction_id: str = ""

    @classmethod
    def from_doc(cls, doc: dict) -> "Payment":
        return cls(
            id=doc.get("id"),
            parent_id=doc.get("academyId") or doc.get("userId") or "",
            amount=Decimal(str(doc.get("amount", "0"))),
            payment_date=doc.get("paymentDate", ""),
            method=doc.get("method", ""),
            status=doc.get("status", ""),
            invoice_no=doc.get("invoiceNo", ""),
            start_date=doc.get("startDate", ""),
            end_date=doc.get("endDate", ""),
            months=list(doc.get("months", [])),
            transaction_id=doc.get("transactionId", ""),
        )


@dataclass(frozen=True)
class ExtensionResult:
    payment_id: str
    subscription_id: str
    invoice_no: str
    amount: Decimal
    start_date: str
    end_date: str
    status: str
    created: bool  # False when the latest subscription was updated in place
