"""
Program settings snapshot.

Every ledger operation starts by loading the live settings version once
and passing an immutable snapshot down to the calculations. Admin changes
published while an operation runs only affect later operations.
"""

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.program_settings import ProgramSettings
from ledger.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)
from ledger.utils.exceptions import InvalidSettingsError, SettingsUnavailableError


@dataclass(frozen=True)
class CommissionLevel:
    """One level of the tree commission schedule."""

    level: int
    percentage: Decimal


@dataclass(frozen=True)
class VirtualTreeSettings:
    """Points -> virtual referral settings."""

    enabled: bool
    points_per_virtual_tree: int
    max_virtual_trees_per_user: int
    auto_create_enabled: bool


@dataclass(frozen=True)
class CashConversionSettings:
    """Manual points -> cash conversion settings."""

    enabled: bool
    points_per_conversion: int
    cash_per_conversion: Decimal


@dataclass(frozen=True)
class ProgramSettingsSnapshot:
    """Immutable view of one settings version."""

    version: int
    direct_commission_percent: Decimal
    tree_commission_levels: tuple[CommissionLevel, ...]
    tree_commission_pool_percent: Decimal
    trust_fund_percent: Decimal
    development_fund_percent: Decimal
    total_allocation_percent: Decimal
    virtual_trees: VirtualTreeSettings
    cash_conversion: CashConversionSettings

    @property
    def tree_levels_count(self) -> int:
        """Number of ancestor levels that earn tree commission."""
        return len(self.tree_commission_levels)

    @property
    def fixed_allocation_percent(self) -> Decimal:
        """Sum of the explicitly allocated percentages."""
        return (
            self.direct_commission_percent
            + self.tree_commission_pool_percent
            + self.trust_fund_percent
            + self.development_fund_percent
        )

    def validate(self) -> None:
        """
        Check the snapshot is internally consistent.

        Raises:
            InvalidSettingsError: If percentages are negative, the fixed
                allocations exceed the total, or increments are not positive
        """
        percents = {
            "direct_commission_percent": self.direct_commission_percent,
            "tree_commission_pool_percent": self.tree_commission_pool_percent,
            "trust_fund_percent": self.trust_fund_percent,
            "development_fund_percent": self.development_fund_percent,
            "total_allocation_percent": self.total_allocation_percent,
        }
        for name, value in percents.items():
            if value < 0:
                raise InvalidSettingsError(f"{name} must not be negative: {value}")

        if self.fixed_allocation_percent > self.total_allocation_percent:
            raise InvalidSettingsError(
                f"Allocations ({self.fixed_allocation_percent}%) exceed "
                f"total allocation ({self.total_allocation_percent}%)"
            )

        for index, level in enumerate(self.tree_commission_levels, start=1):
            if level.level != index:
                raise InvalidSettingsError(
                    f"Tree commission levels must be contiguous from 1, "
                    f"got level {level.level} at position {index}"
                )
            if level.percentage < 0:
                raise InvalidSettingsError(
                    f"Tree commission level {level.level} is negative"
                )

        if self.virtual_trees.points_per_virtual_tree <= 0:
            raise InvalidSettingsError("points_per_virtual_tree must be positive")
        if self.virtual_trees.max_virtual_trees_per_user < 0:
            raise InvalidSettingsError("max_virtual_trees_per_user must not be negative")
        if self.cash_conversion.points_per_conversion <= 0:
            raise InvalidSettingsError("points_per_conversion must be positive")
        if self.cash_conversion.cash_per_conversion < 0:
            raise InvalidSettingsError("cash_per_conversion must not be negative")

    @classmethod
    def from_model(cls, program_settings: ProgramSettings) -> "ProgramSettingsSnapshot":
        """Build a snapshot from a settings row."""
        return cls(
            version=program_settings.version,
            direct_commission_percent=to_decimal(program_settings.direct_commission_percent),
            tree_commission_levels=tuple(
                CommissionLevel(level=row.level, percentage=to_decimal(row.percentage))
                for row in sorted(
                    program_settings.commission_levels, key=lambda row: row.level
                )
            ),
            tree_commission_pool_percent=to_decimal(
                program_settings.tree_commission_pool_percent
            ),
            trust_fund_percent=to_decimal(program_settings.trust_fund_percent),
            development_fund_percent=to_decimal(
                program_settings.development_fund_percent
            ),
            total_allocation_percent=to_decimal(
                program_settings.total_allocation_percent
            ),
            virtual_trees=VirtualTreeSettings(
                enabled=program_settings.virtual_trees_enabled,
                points_per_virtual_tree=program_settings.points_per_virtual_tree,
                max_virtual_trees_per_user=program_settings.max_virtual_trees_per_user,
                auto_create_enabled=program_settings.virtual_auto_create_enabled,
            ),
            cash_conversion=CashConversionSettings(
                enabled=program_settings.cash_conversion_enabled,
                points_per_conversion=program_settings.points_per_conversion,
                cash_per_conversion=to_decimal(program_settings.cash_per_conversion),
            ),
        )


def to_decimal(value) -> Decimal:
    """Coerce a numeric column value to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


async def load_settings_snapshot(session: AsyncSession) -> ProgramSettingsSnapshot:
    """
    Read the live settings version.

    Args:
        session: Database session of the current operation

    Returns:
        Validated snapshot

    Raises:
        SettingsUnavailableError: If no settings version exists
        InvalidSettingsError: If the live version is inconsistent
    """
    program_settings = await ProgramSettingsRepository(session).get_current()
    if program_settings is None:
        logger.error("No program settings version has been published")
        raise SettingsUnavailableError("Program settings are not available")

    snapshot = ProgramSettingsSnapshot.from_model(program_settings)
    snapshot.validate()
    return snapshot
