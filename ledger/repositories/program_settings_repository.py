"""
Program settings repository.

Data access layer for versioned ProgramSettings.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.config.constants import (
    DEFAULT_CASH_CONVERSION_ENABLED,
    DEFAULT_CASH_PER_CONVERSION,
    DEFAULT_DEVELOPMENT_FUND_PERCENT,
    DEFAULT_DIRECT_COMMISSION_PERCENT,
    DEFAULT_MAX_VIRTUAL_TREES_PER_USER,
    DEFAULT_POINTS_PER_CONVERSION,
    DEFAULT_POINTS_PER_VIRTUAL_TREE,
    DEFAULT_TOTAL_ALLOCATION_PERCENT,
    DEFAULT_TREE_COMMISSION_LEVELS,
    DEFAULT_TREE_COMMISSION_POOL_PERCENT,
    DEFAULT_TRUST_FUND_PERCENT,
    DEFAULT_VIRTUAL_AUTO_CREATE_ENABLED,
    DEFAULT_VIRTUAL_TREES_ENABLED,
)
from ledger.models.program_settings import CommissionLevelSetting, ProgramSettings
from ledger.repositories.base import BaseRepository


class ProgramSettingsRepository(BaseRepository[ProgramSettings]):
    """Program settings repository with version queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize program settings repository."""
        super().__init__(ProgramSettings, session)

    async def get_current(self) -> ProgramSettings | None:
        """
        Get the live settings version (highest version number).

        Returns:
            Live settings or None if nothing was ever published
        """
        stmt = (
            select(ProgramSettings)
            .order_by(ProgramSettings.version.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_version(self, version: int) -> ProgramSettings | None:
        """Get a specific settings version."""
        return await self.get_by(version=version)

    async def get_latest_version_number(self) -> int:
        """Get the highest published version number (0 if none)."""
        stmt = select(func.max(ProgramSettings.version))
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def publish(
        self,
        levels: dict[int, Decimal],
        published_by: str | None = None,
        **values: Any,
    ) -> ProgramSettings:
        """
        Publish a new settings version.

        Versions are append-only: the previous version is left untouched
        and simply stops being the live one.

        Args:
            levels: Tree commission schedule (level -> percent)
            published_by: Admin identifier
            **values: ProgramSettings column values

        Returns:
            Created settings version
        """
        version = await self.get_latest_version_number() + 1
        program_settings = ProgramSettings(
            version=version,
            published_by=published_by,
            commission_levels=[
                CommissionLevelSetting(level=level, percentage=percentage)
                for level, percentage in sorted(levels.items())
            ],
            **values,
        )
        return await self.add(program_settings)

    async def publish_defaults(
        self, published_by: str | None = "system", **overrides: Any
    ) -> ProgramSettings:
        """
        Publish a settings version built from the business defaults.

        Args:
            published_by: Admin identifier
            **overrides: Column values replacing the defaults; ``levels``
                replaces the tree commission schedule

        Returns:
            Created settings version
        """
        levels = overrides.pop("levels", DEFAULT_TREE_COMMISSION_LEVELS)
        values = {
            "direct_commission_percent": DEFAULT_DIRECT_COMMISSION_PERCENT,
            "tree_commission_pool_percent": DEFAULT_TREE_COMMISSION_POOL_PERCENT,
            "trust_fund_percent": DEFAULT_TRUST_FUND_PERCENT,
            "development_fund_percent": DEFAULT_DEVELOPMENT_FUND_PERCENT,
            "total_allocation_percent": DEFAULT_TOTAL_ALLOCATION_PERCENT,
            "virtual_trees_enabled": DEFAULT_VIRTUAL_TREES_ENABLED,
            "points_per_virtual_tree": DEFAULT_POINTS_PER_VIRTUAL_TREE,
            "max_virtual_trees_per_user": DEFAULT_MAX_VIRTUAL_TREES_PER_USER,
            "virtual_auto_create_enabled": DEFAULT_VIRTUAL_AUTO_CREATE_ENABLED,
            "cash_conversion_enabled": DEFAULT_CASH_CONVERSION_ENABLED,
            "points_per_conversion": DEFAULT_POINTS_PER_CONVERSION,
            "cash_per_conversion": DEFAULT_CASH_PER_CONVERSION,
        }
        values.update(overrides)
        return await self.publish(levels, published_by=published_by, **values)
