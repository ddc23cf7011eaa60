"""
Ledger exceptions.

Validation and not-found errors are permanent: they are raised before
anything is written and retrying will not help. TransientLedgerError is
the only error a caller should retry.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base class for all ledger errors."""

    pass


# Validation errors - rejected synchronously, nothing mutated

class ValidationError(LedgerError):
    """Raised when an operation's input or preconditions are invalid."""

    pass


class InvalidAmountError(ValidationError):
    """Raised for non-positive amounts."""

    pass


class FeatureDisabledError(ValidationError):
    """Raised when a feature flag in program settings is off."""

    pass


class InsufficientPointsError(ValidationError):
    """Raised when the points wallet cannot cover the request."""

    def __init__(self, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient points: have {available}, requested {requested}"
        )


class InvalidIncrementError(ValidationError):
    """
    Raised when a conversion is not a multiple of the conversion step.

    Carries the largest amount the user could convert right now.
    """

    def __init__(self, increment: int, largest_convertible: int) -> None:
        self.increment = increment
        self.largest_convertible = largest_convertible
        super().__init__(
            f"Points must be converted in increments of {increment}; "
            f"you can convert {largest_convertible} points"
        )


class VirtualTreeLimitError(ValidationError):
    """Raised when a user already holds the maximum virtual referrals."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Maximum virtual referrals reached ({limit})")


# Not found errors

class UserNotFoundError(LedgerError):
    """Raised when a user record does not exist."""

    def __init__(self, user_id: int, message: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message or f"User not found: {user_id}")


class ReferrerNotFoundError(UserNotFoundError):
    """Raised when the referrer to place under does not exist."""

    def __init__(self, referrer_id: int) -> None:
        super().__init__(referrer_id, f"Referrer not found: {referrer_id}")


# Settings errors

class SettingsUnavailableError(LedgerError):
    """Raised when no program settings version has been published."""

    pass


class InvalidSettingsError(LedgerError):
    """Raised when the live program settings are inconsistent."""

    pass


# Structural and integrity errors

class TreeDepthExceededError(LedgerError):
    """Raised when no open slot exists within the searchable depth."""

    def __init__(self, referrer_id: int, max_depth: int) -> None:
        self.referrer_id = referrer_id
        self.max_depth = max_depth
        super().__init__(
            f"No open tree slot within {max_depth} levels below user {referrer_id}"
        )


class AllocationMismatchError(LedgerError):
    """Raised when a commission allocation does not add up."""

    def __init__(self, allocated: Decimal, expected: Decimal) -> None:
        self.allocated = allocated
        self.expected = expected
        super().__init__(
            f"Commission allocation mismatch: allocated {allocated}, "
            f"expected {expected}"
        )


class TransientLedgerError(LedgerError):
    """Raised when a unit of work kept hitting concurrency conflicts."""

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} failed after {attempts} attempts due to "
            f"concurrent updates; retry later"
        )
