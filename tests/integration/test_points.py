"""
Integration tests for the points ledger, priority processor and
points to cash conversion.

Run against a real SQLite database (aiosqlite).
"""

from decimal import Decimal

import pytest

from ledger.models.enums import PointsTransactionType
from ledger.repositories.points_transaction_repository import (
    PointsTransactionRepository,
)
from ledger.repositories.user_repository import UserRepository
from ledger.services.points.conversion import ConversionService
from ledger.services.points.ledger import PointsLedger
from ledger.services.points.priority import PriorityProcessor, StopReason
from ledger.services.reporting import ReportingService
from ledger.utils.exceptions import (
    FeatureDisabledError,
    InsufficientPointsError,
    InvalidAmountError,
    InvalidIncrementError,
    UserNotFoundError,
    VirtualTreeLimitError,
)


async def _award(session_maker, user_id, points):
    async with session_maker() as session:
        return await PointsLedger(session).award_points(
            user_id, points, order_id=f"ORD-{user_id}-{points}"
        )


async def _convert(session_maker, user_id, points):
    async with session_maker() as session:
        return await ConversionService(session).convert_points_to_cash(
            user_id, points
        )


async def _entries(session_maker, user_id):
    async with session_maker() as session:
        return await PointsTransactionRepository(session).get_user_entries(user_id)


async def _virtual_referrals(session_maker, owner_id):
    async with session_maker() as session:
        return await UserRepository(session).get_virtual_referrals(owner_id)


class TestAwardAndSettle:
    """Earned points are settled into virtual referrals."""

    @pytest.mark.asyncio
    async def test_260_points_buy_two_virtual_referrals(
        self, default_settings, register_user, session_maker, load_user
    ):
        """260 points: 2 virtual referrals, 60 points stay banked, no cash."""
        user = await register_user("Asha")

        result = await _award(session_maker, user.id, 260)

        assert result.points_awarded == 260
        assert result.virtual_trees_created == 2
        assert result.points_wallet == 60
        assert result.settlement.points_spent == 200
        assert result.settlement.stop_reason == StopReason.INSUFFICIENT_POINTS

        user_now = await load_user(user.id)
        assert user_now.points_wallet == 60
        assert user_now.total_points_earned == 260
        assert user_now.virtual_referrals_created == 2
        assert user_now.wallet_cash == Decimal("0")

        entries = await _entries(session_maker, user.id)
        assert [(e.type, e.points, e.balance_after) for e in entries] == [
            (PointsTransactionType.EARNED.value, 260, 260),
            (PointsTransactionType.REDEEMED_FOR_VIRTUAL.value, -100, 160),
            (PointsTransactionType.REDEEMED_FOR_VIRTUAL.value, -100, 60),
        ]
        assert entries[0].source_order_id == f"ORD-{user.id}-260"

    @pytest.mark.asyncio
    async def test_virtual_referrals_placed_under_owner(
        self, default_settings, register_user, session_maker
    ):
        """Virtual referrals take the owner's open slots in order."""
        user = await register_user("Asha")

        await _award(session_maker, user.id, 200)

        first, second = await _virtual_referrals(session_maker, user.id)
        assert (first.tree_parent_id, first.tree_position) == (user.id, 0)
        assert (second.tree_parent_id, second.tree_position) == (user.id, 1)
        assert first.referral_code == f"VIR{user.id}-1"
        assert first.referred_by == user.referral_code
        assert first.name == "Asha-Virtual-1"
        assert first.email == f"virtual-{user.id}-1@system.local"
        assert first.points_wallet == 0

    @pytest.mark.asyncio
    async def test_lowered_cap_keeps_existing_virtuals(
        self, default_settings, publish_settings, register_user, session_maker, load_user
    ):
        """Lowering the cap below the current count creates nothing new."""
        user = await register_user("Asha")
        await _award(session_maker, user.id, 260)
        await publish_settings(max_virtual_trees_per_user=1)

        result = await _award(session_maker, user.id, 100)

        assert result.virtual_trees_created == 0
        assert result.settlement.stop_reason == StopReason.LIMIT_REACHED
        user_now = await load_user(user.id)
        assert user_now.points_wallet == 160
        assert user_now.virtual_referrals_created == 2
        assert len(await _virtual_referrals(session_maker, user.id)) == 2

    @pytest.mark.asyncio
    async def test_auto_create_disabled_banks_points(
        self, publish_settings, register_user, session_maker, load_user
    ):
        """With automatic creation off every point stays banked."""
        await publish_settings(virtual_auto_create_enabled=False)
        user = await register_user("Asha")

        result = await _award(session_maker, user.id, 300)

        assert result.virtual_trees_created == 0
        assert result.settlement.stop_reason == StopReason.AUTO_CREATE_DISABLED
        assert (await load_user(user.id)).points_wallet == 300

    @pytest.mark.asyncio
    async def test_non_positive_award_is_noop(
        self, default_settings, register_user, session_maker
    ):
        """Zero or negative awards write nothing."""
        user = await register_user("Asha")

        result = await _award(session_maker, user.id, 0)

        assert result.points_awarded == 0
        assert result.settlement is None
        assert await _entries(session_maker, user.id) == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, default_settings, session_maker):
        """Awarding a missing user fails."""
        with pytest.raises(UserNotFoundError):
            await _award(session_maker, 4242, 100)

    @pytest.mark.asyncio
    async def test_points_chain_audit(
        self, default_settings, register_user, session_maker
    ):
        """The ledger chain matches the live wallet after mixed activity."""
        user = await register_user("Asha")
        await _award(session_maker, user.id, 260)
        await _convert(session_maker, user.id, 50)
        await _award(session_maker, user.id, 35)

        async with session_maker() as session:
            result = await ReportingService(session).audit_points_chain(user.id)

        assert result.ok, result.errors
        assert result.checked == 5


class TestManualRedemption:
    """Redeeming points for a virtual referral on request."""

    @pytest.mark.asyncio
    async def test_redeem_with_auto_create_off(
        self, publish_settings, register_user, session_maker, load_user
    ):
        """Manual redemption works while automatic creation is off."""
        await publish_settings(virtual_auto_create_enabled=False)
        user = await register_user("Asha")
        await _award(session_maker, user.id, 150)

        async with session_maker() as session:
            virtual = await PriorityProcessor(session).redeem_virtual_referral(user.id)

        assert virtual.original_owner_id == user.id
        assert virtual.tree_parent_id == user.id
        user_now = await load_user(user.id)
        assert user_now.points_wallet == 50
        assert user_now.virtual_referrals_created == 1

    @pytest.mark.asyncio
    async def test_redeem_insufficient_points(
        self, publish_settings, register_user, session_maker
    ):
        """Redemption needs a full virtual referral's worth of points."""
        await publish_settings(virtual_auto_create_enabled=False)
        user = await register_user("Asha")
        await _award(session_maker, user.id, 99)

        async with session_maker() as session:
            with pytest.raises(InsufficientPointsError):
                await PriorityProcessor(session).redeem_virtual_referral(user.id)

    @pytest.mark.asyncio
    async def test_redeem_at_limit(
        self, publish_settings, register_user, session_maker
    ):
        """Redemption respects the per-user cap."""
        await publish_settings(max_virtual_trees_per_user=1)
        user = await register_user("Asha")
        await _award(session_maker, user.id, 250)

        async with session_maker() as session:
            with pytest.raises(VirtualTreeLimitError):
                await PriorityProcessor(session).redeem_virtual_referral(user.id)

    @pytest.mark.asyncio
    async def test_redeem_disabled(
        self, publish_settings, register_user, session_maker
    ):
        """Redemption fails when virtual referrals are disabled."""
        await publish_settings(virtual_trees_enabled=False)
        user = await register_user("Asha")
        await _award(session_maker, user.id, 250)

        async with session_maker() as session:
            with pytest.raises(FeatureDisabledError):
                await PriorityProcessor(session).redeem_virtual_referral(user.id)


class TestConversion:
    """Manual points to cash conversion."""

    @pytest.mark.asyncio
    async def test_convert_then_invalid_increment(
        self, default_settings, register_user, session_maker, load_user
    ):
        """50 points convert to 25 cash; a 10 point remainder cannot."""
        user = await register_user("Asha")
        await _award(session_maker, user.id, 260)

        result = await _convert(session_maker, user.id, 50)

        assert result.points_converted == 50
        assert result.cash_credited == Decimal("25")
        assert result.points_wallet == 10
        user_now = await load_user(user.id)
        assert user_now.wallet_cash == Decimal("25")
        assert user_now.points_wallet == 10

        with pytest.raises(InvalidIncrementError) as exc_info:
            await _convert(session_maker, user.id, 10)
        assert exc_info.value.largest_convertible == 0

        entries = await _entries(session_maker, user.id)
        assert entries[-1].type == PointsTransactionType.MANUAL_CONVERTED_TO_CASH.value
        assert entries[-1].cash_amount == Decimal("25")
        assert (await load_user(user.id)).points_wallet == 10

    @pytest.mark.asyncio
    async def test_invalid_increment_reports_largest(
        self, publish_settings, register_user, session_maker
    ):
        """The error tells the user how much they can convert."""
        await publish_settings(virtual_auto_create_enabled=False)
        user = await register_user("Asha")
        await _award(session_maker, user.id, 130)

        with pytest.raises(InvalidIncrementError) as exc_info:
            await _convert(session_maker, user.id, 120)

        assert exc_info.value.largest_convertible == 100

    @pytest.mark.asyncio
    async def test_insufficient_points(
        self, default_settings, register_user, session_maker
    ):
        """Converting more than the wallet holds fails."""
        user = await register_user("Asha")
        await _award(session_maker, user.id, 60)

        with pytest.raises(InsufficientPointsError):
            await _convert(session_maker, user.id, 100)

    @pytest.mark.asyncio
    async def test_non_positive_points(
        self, default_settings, register_user, session_maker
    ):
        """Only positive amounts convert."""
        user = await register_user("Asha")

        with pytest.raises(InvalidAmountError):
            await _convert(session_maker, user.id, 0)

    @pytest.mark.asyncio
    async def test_conversion_disabled(
        self, publish_settings, register_user, session_maker
    ):
        """Conversion fails when disabled."""
        await publish_settings(cash_conversion_enabled=False)
        user = await register_user("Asha")
        await _award(session_maker, user.id, 60)

        with pytest.raises(FeatureDisabledError):
            await _convert(session_maker, user.id, 50)
