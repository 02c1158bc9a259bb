from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import FrozenSet, Hashable, Iterable, Mapping, Optional, Tuple, Union

from .models import (
    EqualSplit,
    Expense,
    Member,
    MemberId,
    Payer,
    SplitResult,
    STRATEGY_KINDS,
    build_strategy,
)
from .splits import REMAINDER_FIRST, compute
from .validation import MAX_EXPENSE_AMOUNT


@dataclass(frozen=True)
class ExpenseDraft:
    title: str = ""
    amount: Decimal = Decimal("0")
    payers: Tuple[Payer, ...] = ()
    participants: Tuple[MemberId, ...] = ()
    strategy: str = EqualSplit.kind
    values: Mapping[MemberId, Decimal] = field(default_factory=dict)
    excluded: FrozenSet[MemberId] = frozenset()
    expense_id: Optional[Hashable] = None


@dataclass(frozen=True)
class SetTitle:
    title: str


@dataclass(frozen=True)
class SetAmount:
    amount: Decimal


@dataclass(frozen=True)
class SetPayers:
    payers: Tuple[Payer, ...]


@dataclass(frozen=True)
class SetParticipants:
    participants: Tuple[MemberId, ...]


@dataclass(frozen=True)
class SetStrategy:
    strategy: str


@dataclass(frozen=True)
class SetStrategyValue:
    member_id: MemberId
    value: Optional[Decimal]


@dataclass(frozen=True)
class ToggleExcluded:
    member_id: MemberId


DraftEdit = Union[SetTitle, SetAmount, SetPayers, SetParticipants, SetStrategy, SetStrategyValue, ToggleExcluded]


def reduce_draft(draft: ExpenseDraft, edit: DraftEdit) -> ExpenseDraft:
    if isinstance(edit, SetTitle):
        return replace(draft, title=edit.title)
    if isinstance(edit, SetAmount):
        return replace(draft, amount=edit.amount)
    if isinstance(edit, SetPayers):
        return replace(draft, payers=tuple(edit.payers))
    if isinstance(edit, SetParticipants):
        participants = tuple(dict.fromkeys(edit.participants))
        kept = set(participants)
        return replace(
            draft,
            participants=participants,
            values={member_id: value for member_id, value in draft.values.items() if member_id in kept},
            excluded=frozenset(member_id for member_id in draft.excluded if member_id in kept),
        )
    if isinstance(edit, SetStrategy):
        if edit.strategy not in STRATEGY_KINDS:
            raise ValueError(f"Unknown split strategy: {edit.strategy}")
        if edit.strategy == draft.strategy:
            return draft
        return replace(draft, strategy=edit.strategy, values={}, excluded=frozenset())
    if isinstance(edit, SetStrategyValue):
        values = dict(draft.values)
        if edit.value is None:
            values.pop(edit.member_id, None)
        else:
            values[edit.member_id] = edit.value
        return replace(draft, values=values)
    if isinstance(edit, ToggleExcluded):
        if edit.member_id not in draft.participants:
            return draft
        return replace(draft, excluded=draft.excluded ^ {edit.member_id})
    raise TypeError(f"Unsupported draft edit: {edit!r}")


def apply_edits(draft: ExpenseDraft, edits: Iterable[DraftEdit]) -> ExpenseDraft:
    for edit in edits:
        draft = reduce_draft(draft, edit)
    return draft


def to_expense(draft: ExpenseDraft) -> Expense:
    return Expense(
        id=draft.expense_id,
        total_amount=draft.amount,
        payers=draft.payers,
        participants=draft.participants,
        strategy=build_strategy(draft.strategy, draft.values, draft.excluded),
        title=draft.title,
    )


def preview(
    draft: ExpenseDraft,
    members: Iterable[Member] = (),
    remainder_rule: str = REMAINDER_FIRST,
    max_amount: Decimal = MAX_EXPENSE_AMOUNT,
) -> SplitResult:
    return compute(to_expense(draft), members, remainder_rule, max_amount)
