"""
Tree placement module.

Finds the next open slot in a referrer's subtree. The search is
breadth-first, shallowest level first and leftmost node first within a
level, bounded by the configured branching factor ("spillover": a full
referrer places new members under its descendants).

Slots are claimed with an atomic "append child if not full" update on the
parent's child counter, so two concurrent placements can never be
assigned the same slot. A claim that loses the race simply moves on to
the next candidate; the service performs no retries of its own.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.config.settings import settings
from ledger.models.user import User
from ledger.repositories.user_repository import UserRepository
from ledger.utils.exceptions import ReferrerNotFoundError, TreeDepthExceededError

ROOT_PATH = "/"

# Parent ids per children query (asyncpg accepts at most 32767 bind parameters)
FRONTIER_CHUNK_SIZE = 1000


@dataclass(frozen=True)
class TreeSlot:
    """
    A claimed tree slot.

    Attributes:
        parent_id: Parent node (None for the tree root)
        level: Tree level (roots are level 1)
        position: 0-based index among the parent's children
        path: Materialized ancestor path for the new node
    """

    parent_id: int | None
    level: int
    position: int
    path: str

    def apply_to(self, user: User) -> User:
        """Write the placement fields onto a not yet persisted user."""
        user.tree_parent_id = self.parent_id
        user.tree_level = self.level
        user.tree_position = self.position
        user.tree_path = self.path
        return user


ROOT_SLOT = TreeSlot(parent_id=None, level=1, position=0, path=ROOT_PATH)


class TreePlacementService:
    """Assigns tree slots to new users."""

    def __init__(
        self,
        session: AsyncSession,
        branching_factor: int | None = None,
        max_depth: int | None = None,
        chunk_size: int = FRONTIER_CHUNK_SIZE,
    ) -> None:
        """
        Initialize placement service.

        Args:
            session: Database session
            branching_factor: Max children per node (default from settings)
            max_depth: Levels searched below the referrer (default from settings)
            chunk_size: Parent ids per children query
        """
        self.session = session
        self.user_repo = UserRepository(session)
        self.branching_factor = branching_factor or settings.tree_branching_factor
        self.max_depth = max_depth or settings.tree_max_depth
        self.chunk_size = chunk_size

    async def place_new_user(self, referrer_id: int | None) -> TreeSlot:
        """
        Claim the next open slot under a referrer.

        The slot is claimed in the current transaction: the caller must
        persist the new user with the returned fields (see
        TreeSlot.apply_to) in the same transaction, or roll back.

        Args:
            referrer_id: Referrer to place under, or None for global
                placement under the program root

        Returns:
            Claimed slot

        Raises:
            ReferrerNotFoundError: If the referrer does not exist
            TreeDepthExceededError: If no slot is open within max_depth
        """
        if referrer_id is None:
            return await self._place_globally()

        referrer = await self.user_repo.get_by_id(referrer_id)
        if referrer is None:
            raise ReferrerNotFoundError(referrer_id)

        if not referrer.is_placed:
            logger.warning(
                f"Referrer {referrer_id} is not placed in the tree, "
                f"placing under the program root"
            )
            return await self._place_globally()

        return await self._claim_in_subtree(referrer_id)

    async def _place_globally(self) -> TreeSlot:
        """Place under the program root, or become the root."""
        root = await self.user_repo.get_program_root()
        if root is None:
            logger.info("Tree is empty, new user becomes the program root")
            return ROOT_SLOT
        return await self._claim_in_subtree(root.id)

    async def _claim_in_subtree(self, subtree_root_id: int) -> TreeSlot:
        """
        Breadth-first search for the first node that accepts a child.

        Each level is read in chunks of at most chunk_size parents and a
        claim is attempted as soon as a chunk is read, so only the ids of
        the current level are held in memory.

        Args:
            subtree_root_id: Node whose subtree is searched

        Returns:
            Claimed slot

        Raises:
            TreeDepthExceededError: If every node within max_depth is full
        """
        parent_ids: list[int] | None = None

        for _ in range(self.max_depth):
            level_ids: list[int] = []
            async for nodes in self._level_chunks(subtree_root_id, parent_ids):
                for node in nodes:
                    slot = await self._try_claim(node, subtree_root_id)
                    if slot is not None:
                        return slot
                    level_ids.append(node.id)

            if not level_ids:
                break
            parent_ids = level_ids

        logger.error(
            f"No open tree slot below user {subtree_root_id} "
            f"within {self.max_depth} levels"
        )
        raise TreeDepthExceededError(subtree_root_id, self.max_depth)

    async def _try_claim(self, node, subtree_root_id: int) -> TreeSlot | None:
        """Claim a child slot of one node, None if it is full."""
        if node.tree_child_count >= self.branching_factor:
            return None

        position = await self.user_repo.claim_child_slot(
            node.id, self.branching_factor
        )
        if position is None:
            # Filled concurrently, try the next candidate
            return None

        slot = TreeSlot(
            parent_id=node.id,
            level=node.tree_level + 1,
            position=position,
            path=f"{node.tree_path or ROOT_PATH}{node.id}/",
        )
        logger.debug(
            "Tree slot claimed",
            extra={
                "subtree_root_id": subtree_root_id,
                "parent_id": slot.parent_id,
                "level": slot.level,
                "position": slot.position,
                "spillover": node.id != subtree_root_id,
            },
        )
        return slot

    async def _level_chunks(
        self, subtree_root_id: int, parent_ids: list[int] | None
    ) -> AsyncIterator[list]:
        """
        Yield the nodes of one level, leftmost first, chunk by chunk.

        With no parent ids the level is the subtree root alone. Otherwise
        children are grouped by their parent's order in parent_ids and
        then by tree position.
        """
        if parent_ids is None:
            yield await self.user_repo.get_tree_slots([subtree_root_id])
            return

        for start in range(0, len(parent_ids), self.chunk_size):
            chunk = parent_ids[start:start + self.chunk_size]
            children = await self.user_repo.get_children_slots(chunk)

            by_parent: dict[int, list] = {}
            for child in children:
                by_parent.setdefault(child.tree_parent_id, []).append(child)

            nodes = []
            for parent_id in chunk:
                nodes.extend(by_parent.get(parent_id, []))
            yield nodes
