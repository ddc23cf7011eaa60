"""
Shared fixtures for unit tests.

This module provides common fixtures used across multiple test modules:
- Settings snapshot factory with the business defaults
"""

from decimal import Decimal

import pytest

from ledger.config.constants import DEFAULT_TREE_COMMISSION_LEVELS
from ledger.services.settings_snapshot import (
    CashConversionSettings,
    CommissionLevel,
    ProgramSettingsSnapshot,
    VirtualTreeSettings,
)


@pytest.fixture
def make_snapshot():
    """
    Build a ProgramSettingsSnapshot from defaults plus overrides.

    Returns:
        Callable accepting snapshot field overrides plus ``levels``
        (level -> percent), ``virtual`` and ``conversion`` dicts
    """

    def _make(
        levels: dict[int, Decimal] | None = None,
        virtual: dict | None = None,
        conversion: dict | None = None,
        **overrides,
    ) -> ProgramSettingsSnapshot:
        levels = DEFAULT_TREE_COMMISSION_LEVELS if levels is None else levels
        virtual_values = {
            "enabled": True,
            "points_per_virtual_tree": 100,
            "max_virtual_trees_per_user": 5,
            "auto_create_enabled": True,
        }
        virtual_values.update(virtual or {})
        conversion_values = {
            "enabled": True,
            "points_per_conversion": 50,
            "cash_per_conversion": Decimal("25"),
        }
        conversion_values.update(conversion or {})

        values = {
            "version": 1,
            "direct_commission_percent": Decimal("3"),
            "tree_commission_levels": tuple(
                CommissionLevel(level=level, percentage=percentage)
                for level, percentage in sorted(levels.items())
            ),
            "tree_commission_pool_percent": Decimal("3"),
            "trust_fund_percent": Decimal("3"),
            "development_fund_percent": Decimal("1"),
            "total_allocation_percent": Decimal("10"),
            "virtual_trees": VirtualTreeSettings(**virtual_values),
            "cash_conversion": CashConversionSettings(**conversion_values),
        }
        values.update(overrides)
        return ProgramSettingsSnapshot(**values)

    return _make


@pytest.fixture
def default_snapshot(make_snapshot):
    """Snapshot with the business defaults."""
    return make_snapshot()
