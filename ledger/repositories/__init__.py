"""
Repositories.

Data access layer, one repository per aggregate.
"""

from ledger.repositories.base import BaseRepository
from ledger.repositories.commission_repository import (
    CommissionTransactionRepository,
)
from ledger.repositories.fund_repository import InternalFundRepository
from ledger.repositories.points_transaction_repository import (
    PointsTransactionRepository,
)
from ledger.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)
from ledger.repositories.user_repository import UserRepository


__all__ = [
    "BaseRepository",
    "CommissionTransactionRepository",
    "InternalFundRepository",
    "PointsTransactionRepository",
    "ProgramSettingsRepository",
    "UserRepository",
]
