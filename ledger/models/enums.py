"""
Enumerations shared by ledger models.

Values are stored as plain strings in the database.
"""

from enum import StrEnum


class UserKind(StrEnum):
    """Discriminator for the user variants."""

    REAL = "real"  # Signed-up person with a cash wallet
    VIRTUAL = "virtual"  # Placeholder minted from points, owned by a real user


class CommissionStatus(StrEnum):
    """Commission transaction status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TreeShareOutcome(StrEnum):
    """What happened to a single tree commission level."""

    PAID = "paid"  # Credited to the ancestor
    PASSED_THROUGH = "passed_through"  # Ancestor is virtual, owner credited


class PointsTransactionType(StrEnum):
    """Points ledger entry types."""

    EARNED = "earned"
    REDEEMED_FOR_VIRTUAL = "redeemed_for_virtual"
    MANUAL_CONVERTED_TO_CASH = "manual_converted_to_cash"


class PointsSource(StrEnum):
    """Where earned points came from."""

    BOOK_PURCHASE = "book_purchase"
    BUNDLE_PURCHASE = "bundle_purchase"
    ORDER = "order"


class FundType(StrEnum):
    """Internal funds that absorb unallocated commission."""

    TRUST = "trust"
    DEVELOPMENT = "development"


class FundEntryType(StrEnum):
    """Fund ledger entry types."""

    ORDER_ALLOCATION = "order_allocation"  # Fixed percentage of the order
    UNCLAIMED_DIRECT = "unclaimed_direct"  # No eligible direct referrer
    UNCLAIMED_TREE = "unclaimed_tree"  # Tree pool not paid to anyone
