"""
utils.py
Validation, dates, subscription end dates, statuses and billing amounts.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from errors import InvalidAmount, InvalidDate, InvalidDuration
from models import (
    DEFAULT_PLAN_MONTHS,
    EXPIRING_SOON_DAYS,
    FEEDBACK_CATEGORIES,
    METHOD_ONLINE,
    PLAN_MONTHS,
    REGISTRATION_FEE_KEY,
    REGISTRATION_VALID_MONTHS,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_EXPIRING_SOON,
    STATUS_INACTIVE,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
# createdAt-style stamps: date, time to the minute, optional seconds/micros/offset
_ISO_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d{6})?)?([+-]\d{2}:\d{2})?")


def parse_iso(d) -> date:
    """
    Accepts 'YYYY-MM-DD', a date or a datetime and returns a calendar date.
    """
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    text = str(d).strip()
    try:
        if _ISO_DATE.fullmatch(text):
            return date.fromisoformat(text)
        if _ISO_TIMESTAMP.fullmatch(text):
            return datetime.fromisoformat(text).date()
    except ValueError as exc:
        raise InvalidDate(f"Not a valid date (YYYY-MM-DD): {d!r}") from exc
    raise InvalidDate(f"Not a valid date (YYYY-MM-DD): {d!r}")


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return date(y, m, day)


def validate_duration(duration) -> int:
    # bool is an int subclass
    if isinstance(duration, bool):
        raise InvalidDuration(f"Duration must be a whole number of months, got {duration!r}")
    if isinstance(duration, int):
        months = duration
    else:
        try:
            value = Decimal(str(duration).strip())
        except InvalidOperation as exc:
            raise InvalidDuration(f"Duration must be a whole number of months, got {duration!r}") from exc
        if not value.is_finite() or value != value.to_integral_value():
            raise InvalidDuration(f"Duration must be a whole number of months, got {duration!r}")
        months = int(value)
    if months <= 0:
        raise InvalidDuration(f"Duration must be positive, got {duration!r}")
    return months


def resolve_months(plan_type: str | None, duration=None) -> int:
    """
    Explicit duration wins; otherwise the plan table; otherwise one month.
    """
    if duration is not None and str(duration).strip() != "":
        return validate_duration(duration)
    if plan_type in PLAN_MONTHS:
        return PLAN_MONTHS[plan_type]
    logger.debug("Unknown plan type %r, billing as %s month", plan_type, DEFAULT_PLAN_MONTHS)
    return DEFAULT_PLAN_MONTHS


def calc_end_date(start_date, plan_type: str | None = None, duration=None) -> str:
    start = parse_iso(start_date)
    months = resolve_months(plan_type, duration)
    end = add_months(start, months)
    return end.isoformat()


def days_until_expiry(end_date, now) -> int:
    return (parse_iso(end_date) - parse_iso(now)).days


def classify_status(end_date, now) -> str:
    """
    Status of a subscription ending on end_date, seen from the clock reading now.
    Time of day is dropped on both sides, so a subscription ending today is
    'Expiring Soon' all day long.
    """
    if end_date is None or end_date == "":
        return STATUS_INACTIVE
    days = days_until_expiry(end_date, now)
    if days < 0:
        return STATUS_EXPIRED
    if days <= EXPIRING_SOON_DAYS:
        return STATUS_EXPIRING_SOON
    return STATUS_ACTIVE


def to_decimal(value, what: str = "Amount") -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount(f"{what} must be numeric, got {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidAmount(f"{what} must be numeric, got {value!r}") from exc
    if not amount.is_finite():
        raise InvalidAmount(f"{what} must be a finite number, got {value!r}")
    return amount


def calc_amount(unit_price, months, override=None) -> Decimal:
    """
    Amount due for an extension.

    A positive override is returned as-is; otherwise unit_price * months.
    No rounding here: see round_currency.
    """
    if override is not None and str(override).strip() != "":
        amount = to_decimal(override, "Custom amount")
        if amount <= 0:
            raise InvalidAmount(f"Custom amount must be > 0, got {override!r}")
        return amount

    price = to_decimal(unit_price, "Monthly price")
    if price < 0:
        raise InvalidAmount(f"Monthly price must be >= 0, got {unit_price!r}")
    return price * validate_duration(months)


def round_currency(amount) -> Decimal:
    return to_decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def plan_fee(fees: dict, plan_type: str, include_registration: bool = False) -> Decimal:
    """
    Price of a facility plan, plus the registration fee when asked for
    (never on 'withoutReg').
    """
    fee = fees.get(plan_type)
    if not fee:
        return Decimal("0")
    total = to_decimal(fee.get("price", 0), "Plan price")
    reg = fees.get(REGISTRATION_FEE_KEY)
    if include_registration and plan_type != "withoutReg" and reg:
        total += to_decimal(reg.get("price", 0), "Registration fee")
    return total


def months_in_range(start_date, end_date) -> list[str]:
    start = parse_iso(start_date)
    end = parse_iso(end_date)
    labels: list[str] = []
    step = 0
    current = start
    while current <= end:
        label = current.strftime("%B %Y")
        if label not in labels:
            labels.append(label)
        step += 1
        current = add_months(start, step)
    return labels


def month_labels(start_date, months: int) -> list[str]:
    """
    One label per paid month, starting with the start month.
    """
    start = parse_iso(start_date)
    return [add_months(start, i).strftime("%B %Y") for i in range(validate_duration(months))]


def next_start_date(latest_end_date, today) -> str:
    """
    Extensions continue the day after the latest subscription ends;
    with no subscription they start today.
    """
    if not latest_end_date:
        return parse_iso(today).isoformat()
    return (parse_iso(latest_end_date) + timedelta(days=1)).isoformat()


def invoice_number(seq: int, year: int) -> str:
    return f"INV{year}{seq:05d}"


def registration_expiry(end_dates, today) -> str:
    today_d = parse_iso(today)
    ends = [parse_iso(d) for d in end_dates if d]
    if not ends:
        return "N/A"
    active = [d for d in ends if d >= today_d]
    if not active:
        return "Expired"
    return add_months(max(active), REGISTRATION_VALID_MONTHS).isoformat()


def validate_extension_inputs(start_date: str, months, custom_price=None, method: str = METHOD_ONLINE,
                              transaction_id: str = "") -> list[str]:
    errors: list[str] = []
    try:
        parse_iso(start_date)
    except InvalidDate:
        errors.append("Start date must be a valid ISO date (YYYY-MM-DD).")
    try:
        validate_duration(months)
    except InvalidDuration:
        errors.append("Duration must be a positive whole number of months.")
    if custom_price is not None and str(custom_price).strip() != "":
        try:
            if to_decimal(custom_price) <= 0:
                errors.append("Custom amount must be > 0.")
        except InvalidAmount:
            errors.append("Custom amount must be numeric.")
    if method == METHOD_ONLINE and not transaction_id.strip():
        errors.append("Please enter the UTR number.")
    return errors


def validate_academy_inputs(name: str, mobile: str, address: str, monthly_price) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Name is required.")
    if not address.strip():
        errors.append("Address is required.")
    if len(mobile.strip()) != 10 or not mobile.strip().isdigit():
        errors.append("Mobile must be 10 digits.")
    try:
        if to_decimal(monthly_price) <= 0:
            errors.append("Please enter a valid monthly price.")
    except InvalidAmount:
        errors.append("Please enter a valid monthly price.")
    return errors


def validate_guest_inputs(name: str, mobile: str) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Name is required.")
    if len(mobile.strip()) != 10 or not mobile.strip().isdigit():
        errors.append("Mobile must be 10 digits.")
    return errors


def validate_feedback_inputs(title: str, description: str, category: str) -> list[str]:
    errors: list[str] = []
    if not title.strip():
        errors.append("Please enter a title.")
    if not description.strip():
        errors.append("Please enter a description.")
    if category not in FEEDBACK_CATEGORIES:
        errors.append(f"Category must be one of: {', '.join(FEEDBACK_CATEGORIES)}.")
    return errors
