"""
User registration module.

Handles the "user signed up with referral code" event: resolves the
referrer, places the new user in the tree and persists it in one
transaction.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.user import RealUser
from ledger.repositories.user_repository import UserRepository
from ledger.services.tree.placement import TreePlacementService
from ledger.utils.db_decorators import with_rollback_on_error
from ledger.utils.exceptions import LedgerError, ValidationError
from ledger.utils.referral_codes import generate_referral_code

MAX_REFERRAL_CODE_ATTEMPTS = 10


class UserRegistrationService:
    """Creates real users and places them in the referral tree."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize registration service."""
        self.session = session
        self.user_repo = UserRepository(session)
        self.placement = TreePlacementService(session)

    @with_rollback_on_error
    async def register(
        self,
        name: str,
        email: str | None = None,
        referral_code: str | None = None,
    ) -> RealUser:
        """
        Register a new real user.

        A missing or unknown referral code places the user under the
        program root; the very first user becomes the root.

        Args:
            name: Display name
            email: Email address
            referral_code: Code of the inviting user

        Returns:
            Created user

        Raises:
            ValidationError: If the email is already registered
            TreeDepthExceededError: If the referrer's subtree is full
        """
        if email and await self.user_repo.get_by(email=email) is not None:
            raise ValidationError(f"Email already registered: {email}")

        referrer = None
        if referral_code:
            referrer = await self.user_repo.get_by_referral_code(referral_code)
            if referrer is None:
                logger.warning(
                    f"Unknown referral code {referral_code!r}, "
                    f"using global placement"
                )

        slot = await self.placement.place_new_user(
            referrer.id if referrer else None
        )

        user = RealUser(
            name=name,
            email=email,
            referral_code=await self._unique_referral_code(),
            referred_by=referrer.referral_code if referrer else None,
        )
        slot.apply_to(user)
        await self.user_repo.add(user)
        await self.session.commit()

        logger.info(
            "User registered",
            extra={
                "user_id": user.id,
                "referrer_id": referrer.id if referrer else None,
                "tree_parent_id": user.tree_parent_id,
                "tree_level": user.tree_level,
            },
        )
        return user

    async def _unique_referral_code(self) -> str:
        """Generate a referral code not used by any user yet."""
        for _ in range(MAX_REFERRAL_CODE_ATTEMPTS):
            code = generate_referral_code()
            if await self.user_repo.get_by_referral_code(code) is None:
                return code
        raise LedgerError(
            "Could not generate a unique referral code"
        )
