"""
Commission services package.

- allocation: pure split of an order's commission
- engine: applies the split atomically and idempotently
"""

from ledger.services.commission.allocation import (
    CommissionAllocation,
    TreePayee,
    TreeShareAllocation,
    allocate_commission,
)
from ledger.services.commission.engine import CommissionEngine


__all__ = [
    "CommissionAllocation",
    "CommissionEngine",
    "TreePayee",
    "TreeShareAllocation",
    "allocate_commission",
]
