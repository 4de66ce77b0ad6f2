"""
errors.py
Exception types raised by the billing core and the service layer.
"""


class BillingError(ValueError):
    """Base billing exception."""


class InvalidDate(BillingError):
    """A date could not be parsed as a calendar date."""


class InvalidDuration(BillingError):
    """An explicit duration is not a positive whole number of months."""


class InvalidAmount(BillingError):
    """A price or override amount is not a usable currency value."""


class NotFound(BillingError):
    """A referenced academy, member or facility does not exist."""
