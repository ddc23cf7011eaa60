"""
Integration tests for commission distribution.

Run against a real SQLite database (aiosqlite).
"""

from decimal import Decimal

import pytest
from loguru import logger
from sqlalchemy import delete, func, select, update

from ledger.models.commission_transaction import CommissionTransaction
from ledger.models.enums import CommissionStatus, FundType, TreeShareOutcome
from ledger.models.user import User, VirtualUser
from ledger.repositories.user_repository import UserRepository
from ledger.services.commission.engine import CommissionEngine
from ledger.services.ledger_service import LedgerService
from ledger.services.points.ledger import PointsLedger
from ledger.services.reporting import ReportingService
from ledger.utils.exceptions import (
    InvalidAmountError,
    SettingsUnavailableError,
    UserNotFoundError,
)


async def _distribute(session_maker, order_id, purchaser_id, amount="1000"):
    async with session_maker() as session:
        return await CommissionEngine(session).distribute_commission(
            order_id, purchaser_id, Decimal(amount)
        )


async def _fund_balances(session_maker):
    async with session_maker() as session:
        summary = await ReportingService(session).get_fund_summary()
        return summary.balances


class TestOrderWithoutReferrer:
    """Purchaser with no referrer and no ancestors."""

    @pytest.mark.asyncio
    async def test_all_unclaimed_to_trust_fund(
        self, default_settings, register_user, session_maker
    ):
        """₹1000 at 3% direct: direct and the whole pool go to the Trust Fund."""
        buyer = await register_user("Buyer")

        transaction = await _distribute(session_maker, "ORD-D", buyer.id)

        assert transaction.status == CommissionStatus.COMPLETED.value
        assert transaction.direct_recipient_id is None
        assert transaction.direct_routed_to_trust is True
        assert transaction.direct_commission_amount == Decimal("0")
        assert transaction.tree_shares == []
        assert transaction.trust_fund_amount == Decimal("90")
        assert transaction.development_fund_amount == Decimal("10")
        assert transaction.total_allocated == Decimal("100")
        assert transaction.settings_version == default_settings

        balances = await _fund_balances(session_maker)
        assert balances[FundType.TRUST.value] == Decimal("90")
        assert balances[FundType.DEVELOPMENT.value] == Decimal("10")


class TestDirectAndTreeCommission:
    """Purchasers with real referrers."""

    @pytest.mark.asyncio
    async def test_direct_referrer_and_ancestors_paid(
        self, default_settings, register_user, session_maker, load_user
    ):
        """Direct referrer gets 3%, ancestors follow the halving schedule."""
        root = await register_user("Root")
        sponsor = await register_user("Sponsor", referral_code=root.referral_code)
        buyer = await register_user("Buyer", referral_code=sponsor.referral_code)

        transaction = await _distribute(session_maker, "ORD-1", buyer.id)

        assert transaction.direct_recipient_id == sponsor.id
        assert transaction.direct_commission_amount == Decimal("30")
        shares = [(s.level, s.recipient_id, s.amount) for s in transaction.tree_shares]
        assert shares == [
            (1, sponsor.id, Decimal("15")),
            (2, root.id, Decimal("7.5")),
        ]
        # 30 fixed + 7.5 unpaid pool
        assert transaction.trust_fund_amount == Decimal("37.5")

        sponsor_now = await load_user(sponsor.id)
        root_now = await load_user(root.id)
        assert sponsor_now.wallet_cash == Decimal("45")
        assert sponsor_now.direct_commission_earned == Decimal("30")
        assert sponsor_now.tree_commission_earned == Decimal("15")
        assert root_now.wallet_cash == Decimal("7.5")

    @pytest.mark.asyncio
    async def test_allocation_invariant_audit(
        self, default_settings, register_user, session_maker
    ):
        """Completed orders satisfy the allocation invariant."""
        root = await register_user("Root")
        buyer = await register_user("Buyer", referral_code=root.referral_code)
        await _distribute(session_maker, "ORD-A", buyer.id, "99.99")

        async with session_maker() as session:
            result = await ReportingService(session).audit_commission("ORD-A")

        assert result.ok, result.errors


class TestIdempotency:
    """Duplicate deliveries of the same order."""

    @pytest.mark.asyncio
    async def test_second_delivery_returns_existing(
        self, default_settings, register_user, session_maker, load_user
    ):
        """Re-delivery returns the same transaction without paying twice."""
        root = await register_user("Root")
        buyer = await register_user("Buyer", referral_code=root.referral_code)

        first = await _distribute(session_maker, "ORD-X", buyer.id)
        second = await _distribute(session_maker, "ORD-X", buyer.id)

        assert second.id == first.id
        root_now = await load_user(root.id)
        assert root_now.wallet_cash == Decimal("45")

        async with session_maker() as session:
            count = (
                await session.execute(
                    select(func.count()).select_from(CommissionTransaction)
                )
            ).scalar()
        assert count == 1
        balances = await _fund_balances(session_maker)
        assert balances[FundType.DEVELOPMENT.value] == Decimal("10")


class TestIneligibleRecipients:
    """Virtual, suspended and missing recipients."""

    @pytest.mark.asyncio
    async def test_virtual_ancestor_passes_through_to_owner(
        self, default_settings, register_user, session_maker, load_user
    ):
        """Commission reaching a virtual user is paid to its owner."""
        owner = await register_user("Owner")
        async with session_maker() as session:
            await PointsLedger(session).award_points(owner.id, 100)
        async with session_maker() as session:
            virtual = (await UserRepository(session).get_virtual_referrals(owner.id))[0]

        buyer = await register_user("Buyer", referral_code=virtual.referral_code)
        transaction = await _distribute(session_maker, "ORD-V", buyer.id)

        # Direct referrer is virtual: direct commission to Trust Fund
        assert transaction.direct_routed_to_trust is True
        first, second = transaction.tree_shares
        assert first.recipient_id == virtual.id
        assert first.paid_to_id == owner.id
        assert first.outcome == TreeShareOutcome.PASSED_THROUGH.value
        assert second.recipient_id == owner.id
        assert second.outcome == TreeShareOutcome.PAID.value

        owner_now = await load_user(owner.id)
        assert owner_now.wallet_cash == Decimal("22.5")
        assert owner_now.tree_commission_earned == Decimal("22.5")
        virtual_now = await load_user(virtual.id)
        assert isinstance(virtual_now, VirtualUser)
        assert virtual_now.wallet_cash == Decimal("0")
        # 30 fixed + 30 direct + 7.5 unpaid pool
        assert transaction.trust_fund_amount == Decimal("67.5")

    @pytest.mark.asyncio
    async def test_suspended_referrer_forfeits(
        self, default_settings, register_user, session_maker, load_user
    ):
        """Suspended users receive nothing; their shares go to the Trust Fund."""
        sponsor = await register_user("Sponsor")
        buyer = await register_user("Buyer", referral_code=sponsor.referral_code)
        async with session_maker() as session:
            await session.execute(
                update(User).where(User.id == sponsor.id).values(suspended=True)
            )
            await session.commit()

        transaction = await _distribute(session_maker, "ORD-S", buyer.id)

        assert transaction.direct_routed_to_trust is True
        assert transaction.tree_shares == []
        assert transaction.trust_fund_amount == Decimal("90")
        assert (await load_user(sponsor.id)).wallet_cash == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_ancestor_skips_one_level(
        self, default_settings, register_user, session_maker, load_user
    ):
        """A deleted ancestor skips its level; the rest is still paid."""
        root = await register_user("Root")
        middle = await register_user("Middle", referral_code=root.referral_code)
        buyer = await register_user("Buyer", referral_code=middle.referral_code)
        async with session_maker() as session:
            await session.execute(delete(User).where(User.id == middle.id))
            await session.commit()

        transaction = await _distribute(session_maker, "ORD-M", buyer.id)

        assert [s.level for s in transaction.tree_shares] == [2]
        assert transaction.tree_shares[0].recipient_id == root.id
        assert transaction.tree_shares[0].amount == Decimal("7.5")
        # 30 fixed + 30 direct (referrer gone) + 22.5 unpaid pool
        assert transaction.trust_fund_amount == Decimal("82.5")
        assert transaction.total_allocated == Decimal("100")
        assert (await load_user(root.id)).wallet_cash == Decimal("7.5")

    @pytest.mark.asyncio
    async def test_skipped_and_forfeited_levels_logged(
        self, default_settings, register_user, session_maker
    ):
        """The distribution log records which tree levels were not paid."""
        root = await register_user("Root")
        middle = await register_user("Middle", referral_code=root.referral_code)
        buyer = await register_user("Buyer", referral_code=middle.referral_code)
        async with session_maker() as session:
            await session.execute(
                update(User).where(User.id == root.id).values(suspended=True)
            )
            await session.execute(delete(User).where(User.id == middle.id))
            await session.commit()

        records = []
        handler_id = logger.add(
            lambda message: records.append(message.record), level="INFO"
        )
        try:
            await _distribute(session_maker, "ORD-L", buyer.id)
        finally:
            logger.remove(handler_id)

        [record] = [r for r in records if r["message"] == "Commission distributed"]
        details = record["extra"]["extra"]
        assert details["order_id"] == "ORD-L"
        assert details["skipped_levels"] == [1]
        assert details["forfeited_levels"] == [2]
        assert details["pool_exhausted_at_level"] is None


class TestFailures:
    """Orders that cannot be distributed."""

    @pytest.mark.asyncio
    async def test_settings_unavailable_mutates_nothing(
        self, register_user, session_maker
    ):
        """Without published settings nothing is written."""
        buyer = await register_user("Buyer")

        with pytest.raises(SettingsUnavailableError):
            await _distribute(session_maker, "ORD-N", buyer.id)

        async with session_maker() as session:
            count = (
                await session.execute(
                    select(func.count()).select_from(CommissionTransaction)
                )
            ).scalar()
        assert count == 0

    @pytest.mark.asyncio
    async def test_invalid_amount(self, default_settings, register_user, session_maker):
        """Non-positive orders are rejected."""
        buyer = await register_user("Buyer")

        with pytest.raises(InvalidAmountError):
            await _distribute(session_maker, "ORD-0", buyer.id, "0")

    @pytest.mark.asyncio
    async def test_unknown_purchaser_recorded_as_failed(
        self, default_settings, session_maker
    ):
        """The facade leaves a failed row for permanent failures."""
        service = LedgerService(session_maker, base_delay=0)

        with pytest.raises(UserNotFoundError):
            await service.distribute_commission("ORD-F", 4242, Decimal("500"))

        async with session_maker() as session:
            row = (
                await session.execute(
                    select(CommissionTransaction).where(
                        CommissionTransaction.order_id == "ORD-F"
                    )
                )
            ).scalar_one()
        assert row.status == CommissionStatus.FAILED.value
        assert "UserNotFoundError" in row.failure_reason
        balances = await _fund_balances(session_maker)
        assert balances[FundType.TRUST.value] == Decimal("0")
