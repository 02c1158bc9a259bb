from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, Hashable, Mapping, Optional, Tuple, Union

from .errors import FallbackApplied, ValidationIssue
from .precision import add, subtract

MemberId = Hashable


@dataclass(frozen=True)
class Member:
    id: MemberId
    name: str
    income: Optional[Decimal] = None
    weight: Optional[Decimal] = None

    @property
    def has_income(self) -> bool:
        return self.income is not None and self.income > 0


@dataclass(frozen=True)
class Payer:
    member_id: MemberId
    amount_paid: Decimal


# ---------- Split strategies ----------


@dataclass(frozen=True)
class EqualSplit:
    kind = "equal"


@dataclass(frozen=True)
class PercentageSplit:
    kind = "percentage"
    percentages: Mapping[MemberId, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class CustomSplit:
    kind = "custom"
    amounts: Mapping[MemberId, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class UnequalSplit:
    kind = "unequal"
    amounts: Mapping[MemberId, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class SharesSplit:
    kind = "shares"
    shares: Mapping[MemberId, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class WeightedSplit:
    """Weights fall back to ``Member.weight`` and then to 1."""
    kind = "weighted"
    weights: Mapping[MemberId, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class IncomeProportionalSplit:
    kind = "income-proportional"


@dataclass(frozen=True)
class IncomeProgressiveSplit:
    kind = "income-progressive"


@dataclass(frozen=True)
class AdjustmentSplit:
    kind = "adjustment"
    adjustments: Mapping[MemberId, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class ExcludeSplit:
    kind = "exclude"
    excluded: FrozenSet[MemberId] = frozenset()


SplitStrategy = Union[
    EqualSplit,
    PercentageSplit,
    CustomSplit,
    UnequalSplit,
    SharesSplit,
    WeightedSplit,
    IncomeProportionalSplit,
    IncomeProgressiveSplit,
    AdjustmentSplit,
    ExcludeSplit,
]

STRATEGY_TYPES = (
    EqualSplit,
    PercentageSplit,
    CustomSplit,
    UnequalSplit,
    SharesSplit,
    WeightedSplit,
    IncomeProportionalSplit,
    IncomeProgressiveSplit,
    AdjustmentSplit,
    ExcludeSplit,
)

STRATEGY_KINDS = tuple(strategy_type.kind for strategy_type in STRATEGY_TYPES)


def build_strategy(
    kind: str,
    values: Optional[Mapping[MemberId, Decimal]] = None,
    excluded: FrozenSet[MemberId] = frozenset(),
) -> SplitStrategy:
    values = dict(values or {})
    if kind == EqualSplit.kind:
        return EqualSplit()
    if kind == PercentageSplit.kind:
        return PercentageSplit(percentages=values)
    if kind == CustomSplit.kind:
        return CustomSplit(amounts=values)
    if kind == UnequalSplit.kind:
        return UnequalSplit(amounts=values)
    if kind == SharesSplit.kind:
        return SharesSplit(shares=values)
    if kind == WeightedSplit.kind:
        return WeightedSplit(weights=values)
    if kind == IncomeProportionalSplit.kind:
        return IncomeProportionalSplit()
    if kind == IncomeProgressiveSplit.kind:
        return IncomeProgressiveSplit()
    if kind == AdjustmentSplit.kind:
        return AdjustmentSplit(adjustments=values)
    if kind == ExcludeSplit.kind:
        return ExcludeSplit(excluded=frozenset(excluded))
    raise ValueError(f"Unknown split strategy: {kind}")


@dataclass(frozen=True)
class Expense:
    id: Hashable
    total_amount: Decimal
    payers: Tuple[Payer, ...]
    participants: Tuple[MemberId, ...]
    strategy: SplitStrategy = field(default_factory=EqualSplit)
    title: str = ""

    @property
    def excluded_members(self) -> FrozenSet[MemberId]:
        if isinstance(self.strategy, ExcludeSplit):
            return self.strategy.excluded
        return frozenset()

    @property
    def included_participants(self) -> Tuple[MemberId, ...]:
        excluded = self.excluded_members
        return tuple(member_id for member_id in self.participants if member_id not in excluded)


# ---------- Computed values ----------


@dataclass(frozen=True)
class SplitShare:
    member_id: MemberId
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class SplitAudit:
    strategy: str
    total_amount: Decimal
    member_count: int
    calculated_total: Decimal
    difference: Decimal
    corrected_member: Optional[MemberId] = None


@dataclass(frozen=True)
class SplitResult:
    shares: Tuple[SplitShare, ...] = ()
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[FallbackApplied, ...] = ()
    audit: Optional[SplitAudit] = None

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class PairwiseBalance:
    """Positive ``amount`` means ``member_a`` owes ``member_b``."""
    member_a: MemberId
    member_b: MemberId
    amount: Decimal


@dataclass(frozen=True)
class RecordedSettlement:
    from_member: MemberId
    to_member: MemberId
    amount: Decimal


@dataclass(frozen=True)
class MemberSummary:
    """Totals for one member; positive ``net`` means the group owes them."""
    member_id: MemberId
    total_paid: Decimal
    total_share: Decimal
    settlements_paid: Decimal = Decimal("0.00")
    settlements_received: Decimal = Decimal("0.00")

    @property
    def net(self) -> Decimal:
        return add(
            subtract(self.total_paid, self.total_share),
            subtract(self.settlements_paid, self.settlements_received),
        )


@dataclass(frozen=True)
class LedgerResult:
    balances: Tuple[PairwiseBalance, ...] = ()
    summaries: Tuple[MemberSummary, ...] = ()
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[FallbackApplied, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class SettlementSuggestion:
    from_member: MemberId
    to_member: MemberId
    amount: Decimal
