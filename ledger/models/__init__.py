"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from ledger.models.base import Base
from ledger.models.commission_transaction import (
    CommissionTransaction,
    CommissionTreeShare,
)
from ledger.models.enums import (
    CommissionStatus,
    FundEntryType,
    FundType,
    PointsSource,
    PointsTransactionType,
    TreeShareOutcome,
    UserKind,
)
from ledger.models.internal_fund import FundEntry, InternalFund
from ledger.models.points_transaction import PointsTransaction
from ledger.models.program_settings import (
    CommissionLevelSetting,
    ProgramSettings,
)
from ledger.models.user import RealUser, User, VirtualUser


__all__ = [
    "Base",
    # Users
    "User",
    "RealUser",
    "VirtualUser",
    # Settings
    "ProgramSettings",
    "CommissionLevelSetting",
    # Ledgers
    "CommissionTransaction",
    "CommissionTreeShare",
    "PointsTransaction",
    "InternalFund",
    "FundEntry",
    # Enums
    "CommissionStatus",
    "FundEntryType",
    "FundType",
    "PointsSource",
    "PointsTransactionType",
    "TreeShareOutcome",
    "UserKind",
]
