"""
Integration tests for tree placement and registration.

Run against a real SQLite database (aiosqlite).
"""

import asyncio

import pytest
from sqlalchemy import Text, update

from ledger.models.user import User
from ledger.repositories.user_repository import UserRepository
from ledger.services.ledger_service import LedgerService
from ledger.services.tree.placement import TreePlacementService
from ledger.utils.exceptions import (
    ReferrerNotFoundError,
    TreeDepthExceededError,
    ValidationError,
)


class TestRegistration:
    """Test user registration and global placement."""

    @pytest.mark.asyncio
    async def test_first_user_becomes_root(self, register_user):
        """The very first user is the tree root."""
        root = await register_user("Root")

        assert root.tree_parent_id is None
        assert root.tree_level == 1
        assert root.tree_path == "/"
        assert root.is_tree_root is True
        assert len(root.referral_code) == 8

    @pytest.mark.asyncio
    async def test_referral_code_sets_referrer(self, register_user):
        """A referral code places the user under the referrer."""
        root = await register_user("Root")

        child = await register_user("Child", referral_code=root.referral_code)

        assert child.referred_by == root.referral_code
        assert child.tree_parent_id == root.id
        assert child.tree_level == 2
        assert child.tree_position == 0
        assert child.tree_path == f"/{root.id}/"
        assert child.ancestor_ids == [root.id]

    @pytest.mark.asyncio
    async def test_referral_code_is_case_insensitive(self, register_user):
        """A code typed in lower case with stray spaces still finds the referrer."""
        root = await register_user("Root")
        await register_user("Left", referral_code=root.referral_code)
        await register_user("Right", referral_code=root.referral_code)
        sponsor = await register_user("Sponsor")

        child = await register_user(
            "Child", referral_code=f"  {sponsor.referral_code.lower()} "
        )

        assert child.referred_by == sponsor.referral_code
        assert child.tree_parent_id == sponsor.id

    @pytest.mark.asyncio
    async def test_unknown_code_places_under_root(self, register_user):
        """An unknown code falls back to global placement."""
        root = await register_user("Root")

        user = await register_user("Stranger", referral_code="NOPE1234")

        assert user.referred_by is None
        assert user.tree_parent_id == root.id

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, register_user):
        """Emails are unique."""
        await register_user("Same")

        with pytest.raises(ValidationError):
            await register_user("Same")


class TestSpilloverPlacement:
    """Test breadth-first spillover in a binary tree."""

    @pytest.mark.asyncio
    async def test_breadth_first_leftmost(self, register_user):
        """Full levels spill over to the shallowest, leftmost open slot."""
        root = await register_user("Root")
        users = []
        for index in range(7):
            users.append(
                await register_user(f"U{index}", referral_code=root.referral_code)
            )
        u0, u1, u2, u3, u4, u5, u6 = users

        assert (u0.tree_parent_id, u0.tree_position) == (root.id, 0)
        assert (u1.tree_parent_id, u1.tree_position) == (root.id, 1)
        assert (u2.tree_parent_id, u2.tree_position) == (u0.id, 0)
        assert (u3.tree_parent_id, u3.tree_position) == (u0.id, 1)
        assert (u4.tree_parent_id, u4.tree_position) == (u1.id, 0)
        assert (u5.tree_parent_id, u5.tree_position) == (u1.id, 1)
        assert (u6.tree_parent_id, u6.tree_position) == (u2.id, 0)
        assert [u.tree_level for u in users] == [2, 2, 3, 3, 3, 3, 4]
        assert u6.tree_path == f"/{root.id}/{u0.id}/{u2.id}/"

    @pytest.mark.asyncio
    async def test_level_read_in_chunks(self, register_user, session):
        """Reading a level one parent at a time keeps leftmost-first order."""
        root = await register_user("Root")
        users = []
        for index in range(10):
            users.append(
                await register_user(f"U{index}", referral_code=root.referral_code)
            )
        # Level 3 under U0 is full; U1's children are the first open slots
        u4 = users[4]
        assert (u4.tree_parent_id, u4.tree_level) == (users[1].id, 3)

        service = TreePlacementService(session, chunk_size=1)
        slot = await service.place_new_user(root.id)

        assert slot.parent_id == u4.id
        assert slot.level == 4
        assert slot.position == 0
        assert slot.path == f"/{root.id}/{users[1].id}/{u4.id}/"
        await session.rollback()

    @pytest.mark.asyncio
    async def test_search_stays_in_referrer_subtree(self, register_user):
        """Spillover only uses the referrer's own subtree."""
        root = await register_user("Root")
        left = await register_user("Left", referral_code=root.referral_code)
        await register_user("Right", referral_code=root.referral_code)

        under_left = await register_user("L1", referral_code=left.referral_code)

        assert under_left.tree_parent_id == left.id
        assert under_left.tree_level == 3

    @pytest.mark.asyncio
    async def test_deep_tree_path_is_unbounded(self, register_user, session):
        """Materialized paths are stored as unbounded text."""
        root = await register_user("Root")
        deep_path = "/" + "/".join(str(1_000_000 + n) for n in range(400)) + "/"
        assert len(deep_path) > 2048

        await session.execute(
            update(User).where(User.id == root.id).values(tree_path=deep_path)
        )
        await session.commit()

        stored = await session.get(User, root.id, populate_existing=True)
        assert isinstance(User.__table__.c.tree_path.type, Text)
        assert stored.tree_path == deep_path
        assert len(stored.ancestor_ids) == 400

    @pytest.mark.asyncio
    async def test_children_listed_in_position_order(self, register_user, session):
        """Ordered children are derived from tree positions."""
        root = await register_user("Root")
        first = await register_user("First", referral_code=root.referral_code)
        second = await register_user("Second", referral_code=root.referral_code)

        children = await UserRepository(session).get_tree_children(root.id)
        parent = await session.get(User, root.id)

        assert [child.id for child in children] == [first.id, second.id]
        assert parent.tree_child_count == 2


class TestPlacementErrors:
    """Test placement failures."""

    @pytest.mark.asyncio
    async def test_referrer_not_found(self, session):
        """Placing under a missing referrer fails."""
        with pytest.raises(ReferrerNotFoundError):
            await TreePlacementService(session).place_new_user(9999)

    @pytest.mark.asyncio
    async def test_depth_exceeded(self, register_user, session):
        """No open slot within max_depth levels fails."""
        root = await register_user("Root")
        a = await register_user("A", referral_code=root.referral_code)
        await register_user("B", referral_code=a.referral_code)

        service = TreePlacementService(session, branching_factor=1, max_depth=2)

        with pytest.raises(TreeDepthExceededError):
            await service.place_new_user(root.id)
        await session.rollback()


class TestSlotClaim:
    """Test the atomic child slot claim."""

    @pytest.mark.asyncio
    async def test_claim_until_full(self, register_user, session):
        """Claims hand out consecutive positions until the parent is full."""
        root = await register_user("Root")
        repo = UserRepository(session)

        assert await repo.claim_child_slot(root.id, 2) == 0
        assert await repo.claim_child_slot(root.id, 2) == 1
        assert await repo.claim_child_slot(root.id, 2) is None
        await session.rollback()

    @pytest.mark.asyncio
    async def test_concurrent_registrations_get_distinct_slots(
        self, register_user, session_maker
    ):
        """Simultaneous signups under one referrer never share a slot."""
        root = await register_user("Root")
        service = LedgerService(session_maker, max_attempts=5, base_delay=0.01)

        users = await asyncio.gather(
            *(
                service.register_user(
                    f"C{index}", f"c{index}@example.com", root.referral_code
                )
                for index in range(6)
            )
        )

        slots = {(user.tree_parent_id, user.tree_position) for user in users}
        assert len(slots) == 6
        assert sum(1 for user in users if user.tree_parent_id == root.id) == 2
