"""Projection of what a user's banked points could buy right now."""

from dataclasses import dataclass
from decimal import Decimal

from ledger.services.settings_snapshot import ProgramSettingsSnapshot


@dataclass(frozen=True)
class PointsCapabilities:
    """
    Read-only capability projection.

    Virtual referrals are counted first (they are what automatic
    settlement would do); cash is projected from the points left after.
    """

    points_wallet: int
    can_create_virtual: bool
    possible_virtual_trees: int
    points_after_virtual_trees: int
    possible_cash_conversions: int
    possible_cash_amount: Decimal
    max_virtual_trees_reached: bool


def project_capabilities(
    points_wallet: int,
    virtual_referrals_created: int,
    snapshot: ProgramSettingsSnapshot,
) -> PointsCapabilities:
    """
    Project virtual referrals and cash derivable from current points.

    Args:
        points_wallet: Banked points
        virtual_referrals_created: Virtual referrals already owned
        snapshot: Settings in force

    Returns:
        Capabilities (no state is changed)
    """
    virtual = snapshot.virtual_trees
    conversion = snapshot.cash_conversion

    headroom = max(virtual.max_virtual_trees_per_user - virtual_referrals_created, 0)
    possible_virtual = 0
    if virtual.enabled:
        possible_virtual = min(
            points_wallet // virtual.points_per_virtual_tree, headroom
        )
    points_after = points_wallet - possible_virtual * virtual.points_per_virtual_tree

    possible_conversions = 0
    if conversion.enabled:
        possible_conversions = points_after // conversion.points_per_conversion

    return PointsCapabilities(
        points_wallet=points_wallet,
        can_create_virtual=possible_virtual > 0,
        possible_virtual_trees=possible_virtual,
        points_after_virtual_trees=points_after,
        possible_cash_conversions=possible_conversions,
        possible_cash_amount=conversion.cash_per_conversion * possible_conversions,
        max_virtual_trees_reached=headroom == 0,
    )
