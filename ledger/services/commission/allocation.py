"""
Commission allocation calculations.

Pure functions: given an order amount, a settings snapshot and the
already resolved recipients, compute how the distributed share of the
order is split. Nothing here touches the database.

Split of ``order_amount * total_allocation_percent / 100``:

- direct commission to the direct referrer, or to the Trust Fund
- tree commission per ancestor level following the halving schedule,
  capped by the tree pool; unpaid pool goes to the Trust Fund
- fixed Trust Fund and Development Fund percentages
- any percentage not covered above goes to the Trust Fund
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from ledger.models.enums import TreeShareOutcome
from ledger.services.settings_snapshot import ProgramSettingsSnapshot
from ledger.utils.exceptions import AllocationMismatchError, InvalidAmountError

HUNDRED = Decimal("100")
ZERO = Decimal("0")

# Matches the scale of MoneyType
MONEY_QUANTUM = Decimal("0.00000001")


def money(value: Decimal) -> Decimal:
    """Round an amount to the stored money scale."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """Return ``percentage`` percent of ``amount`` at money scale."""
    return money(amount * percentage / HUNDRED)


@dataclass(frozen=True)
class TreePayee:
    """
    Resolved payee of one ancestor level.

    Attributes:
        recipient_id: Ancestor occupying the level
        paid_to_id: Wallet to credit, None if the share is forfeited
        outcome: PAID for real ancestors, PASSED_THROUGH for virtual ones
    """

    recipient_id: int
    paid_to_id: int | None
    outcome: TreeShareOutcome = TreeShareOutcome.PAID


@dataclass(frozen=True)
class TreeShareAllocation:
    """A tree commission share credited to a wallet."""

    level: int
    recipient_id: int
    paid_to_id: int
    percentage: Decimal
    amount: Decimal
    outcome: TreeShareOutcome


@dataclass(frozen=True)
class CommissionAllocation:
    """Complete split of one order's commission."""

    order_amount: Decimal
    expected_total: Decimal
    direct_recipient_id: int | None
    direct_amount: Decimal
    tree_pool: Decimal
    tree_shares: tuple[TreeShareAllocation, ...]
    tree_unclaimed: Decimal
    trust_fund_base: Decimal
    remainder: Decimal
    development_fund_amount: Decimal
    skipped_levels: tuple[int, ...] = field(default_factory=tuple)
    forfeited_levels: tuple[int, ...] = field(default_factory=tuple)
    pool_exhausted_at_level: int | None = None

    @property
    def direct_routed_to_trust(self) -> bool:
        """Whether the direct commission had no eligible recipient."""
        return self.direct_recipient_id is None

    @property
    def direct_paid(self) -> Decimal:
        """Direct commission credited to a user wallet."""
        return ZERO if self.direct_routed_to_trust else self.direct_amount

    @property
    def unclaimed_direct(self) -> Decimal:
        """Direct commission routed to the Trust Fund."""
        return self.direct_amount if self.direct_routed_to_trust else ZERO

    @property
    def tree_paid(self) -> Decimal:
        """Sum of tree shares credited to wallets."""
        return sum((share.amount for share in self.tree_shares), ZERO)

    @property
    def trust_fund_amount(self) -> Decimal:
        """Everything the Trust Fund receives for this order."""
        return (
            self.trust_fund_base
            + self.remainder
            + self.unclaimed_direct
            + self.tree_unclaimed
        )

    @property
    def total_allocated(self) -> Decimal:
        """Sum of every allocation of this order."""
        return (
            self.direct_paid
            + self.tree_paid
            + self.trust_fund_amount
            + self.development_fund_amount
        )


def allocate_commission(
    order_amount: Decimal,
    snapshot: ProgramSettingsSnapshot,
    direct_recipient_id: int | None,
    tree_payees: list[TreePayee | None],
    epsilon: Decimal = Decimal("0.01"),
) -> CommissionAllocation:
    """
    Split an order's commission.

    Args:
        order_amount: Paid order amount (positive)
        snapshot: Settings in force for this order
        direct_recipient_id: Eligible direct referrer, None routes the
            direct commission to the Trust Fund
        tree_payees: Payee per ancestor level, nearest first (index 0 is
            level 1). None marks a level whose ancestor record is missing.
            The list ends where the ancestor chain ends.
        epsilon: Allowed rounding difference of the allocation total

    Returns:
        Allocation satisfying the allocation invariant

    Raises:
        InvalidAmountError: If the order amount is not positive
        AllocationMismatchError: If the split does not add up
    """
    if order_amount <= 0:
        raise InvalidAmountError(f"Order amount must be positive: {order_amount}")

    expected_total = percent_of(order_amount, snapshot.total_allocation_percent)
    direct_amount = percent_of(order_amount, snapshot.direct_commission_percent)
    tree_pool = percent_of(order_amount, snapshot.tree_commission_pool_percent)
    trust_fund_base = percent_of(order_amount, snapshot.trust_fund_percent)
    development_fund_amount = percent_of(
        order_amount, snapshot.development_fund_percent
    )

    shares: list[TreeShareAllocation] = []
    skipped: list[int] = []
    forfeited: list[int] = []
    pool_exhausted_at = None
    pool_left = tree_pool

    for index, level in enumerate(snapshot.tree_commission_levels):
        if index >= len(tree_payees):
            break

        amount = percent_of(order_amount, level.percentage)
        if amount > pool_left:
            pool_exhausted_at = level.level
            break
        pool_left -= amount

        payee = tree_payees[index]
        if payee is None:
            skipped.append(level.level)
            continue
        if payee.paid_to_id is None:
            forfeited.append(level.level)
            continue

        shares.append(
            TreeShareAllocation(
                level=level.level,
                recipient_id=payee.recipient_id,
                paid_to_id=payee.paid_to_id,
                percentage=level.percentage,
                amount=amount,
                outcome=payee.outcome,
            )
        )

    tree_paid = sum((share.amount for share in shares), ZERO)
    remainder = max(
        expected_total
        - direct_amount
        - tree_pool
        - trust_fund_base
        - development_fund_amount,
        ZERO,
    )

    allocation = CommissionAllocation(
        order_amount=order_amount,
        expected_total=expected_total,
        direct_recipient_id=direct_recipient_id,
        direct_amount=direct_amount,
        tree_pool=tree_pool,
        tree_shares=tuple(shares),
        tree_unclaimed=tree_pool - tree_paid,
        trust_fund_base=trust_fund_base,
        remainder=remainder,
        development_fund_amount=development_fund_amount,
        skipped_levels=tuple(skipped),
        forfeited_levels=tuple(forfeited),
        pool_exhausted_at_level=pool_exhausted_at,
    )

    verify_allocation(allocation, epsilon)
    return allocation


def verify_allocation(allocation: CommissionAllocation, epsilon: Decimal) -> None:
    """
    Check the allocation invariant.

    Raises:
        AllocationMismatchError: If total_allocated differs from the
            expected total by more than epsilon
    """
    if abs(allocation.total_allocated - allocation.expected_total) > epsilon:
        raise AllocationMismatchError(
            allocated=allocation.total_allocated,
            expected=allocation.expected_total,
        )
