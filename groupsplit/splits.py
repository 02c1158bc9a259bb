"""
Split an expense total into per-member shares.

Every strategy produces raw Decimal amounts at full precision. The amounts are
then fixed to cents and any rounding residual is moved onto a single member
(the remainder correction), so the shares always add up to the expense total
exactly.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import FallbackApplied, SplitValidationError, ValidationIssue
from .models import (
    AdjustmentSplit,
    CustomSplit,
    EqualSplit,
    ExcludeSplit,
    Expense,
    IncomeProgressiveSplit,
    IncomeProportionalSplit,
    Member,
    MemberId,
    PercentageSplit,
    SharesSplit,
    SplitAudit,
    SplitResult,
    SplitShare,
    UnequalSplit,
    WeightedSplit,
)
from .precision import (
    HUNDRED,
    TOLERANCE,
    add,
    amounts_close,
    divide,
    multiply,
    quantize_money,
    round_half_up,
    subtract,
    to_decimal,
    total,
)
from .validation import MAX_EXPENSE_AMOUNT, validate_amount, validate_participants

logger = logging.getLogger(__name__)

REMAINDER_FIRST = "first"
REMAINDER_LARGEST = "largest"
REMAINDER_RULES = (REMAINDER_FIRST, REMAINDER_LARGEST)

PERCENT_PLACES = 4
PROGRESSIVE_STEP = Decimal("0.2")

# (member_id, raw amount, declared percentage or None)
RawShare = Tuple[MemberId, Decimal, Optional[Decimal]]
Handler = Callable[[Decimal, Sequence[MemberId], object, Dict[MemberId, Member], List[FallbackApplied]], List[RawShare]]


def compute(
    expense: Expense,
    members: Iterable[Member] = (),
    remainder_rule: str = REMAINDER_FIRST,
    max_amount: Decimal = MAX_EXPENSE_AMOUNT,
) -> SplitResult:
    """Compute the shares of ``expense``.

    Returns a :class:`SplitResult` whose shares sum to ``expense.total_amount``
    exactly, or one carrying validation errors and no shares.
    """
    if remainder_rule not in REMAINDER_RULES:
        raise ValueError(f"Unknown remainder rule: {remainder_rule}")

    issues = validate_amount(expense, max_amount) + validate_participants(expense)
    if issues:
        return SplitResult(errors=tuple(issues))

    handler = _HANDLERS.get(type(expense.strategy))
    if handler is None:
        return SplitResult(
            errors=(ValidationIssue("unknown_strategy", f"Unknown split strategy: {expense.strategy!r}", expense.id),)
        )

    member_map = {member.id: member for member in members}
    included = expense.included_participants
    warnings: List[FallbackApplied] = []
    try:
        raw_shares = handler(expense.total_amount, included, expense.strategy, member_map, warnings)
    except SplitValidationError as exc:
        return SplitResult(errors=(exc.to_issue(expense.id),))

    shares, audit = _reconcile(expense.total_amount, raw_shares, expense.strategy.kind, remainder_rule)
    warnings = [
        FallbackApplied(warning.strategy, warning.member_ids, warning.message, expense.id) for warning in warnings
    ]
    for warning in warnings:
        logger.warning("Expense %s: %s", expense.id, warning.message)
    return SplitResult(shares=tuple(shares), warnings=tuple(warnings), audit=audit)


def _reconcile(
    amount: Decimal,
    raw_shares: Sequence[RawShare],
    strategy: str,
    remainder_rule: str,
) -> Tuple[List[SplitShare], SplitAudit]:
    amounts = [quantize_money(raw_amount) for _, raw_amount, _ in raw_shares]
    calculated_total = total(amounts)
    difference = subtract(amount, calculated_total)

    corrected_index: Optional[int] = None
    if difference != 0:
        if remainder_rule == REMAINDER_LARGEST:
            corrected_index = max(range(len(amounts)), key=lambda index: (amounts[index], -index))
        else:
            corrected_index = 0
        amounts[corrected_index] = add(amounts[corrected_index], difference)
        logger.debug(
            "Remainder correction of %s applied to %s (%s split)",
            difference,
            raw_shares[corrected_index][0],
            strategy,
        )

    shares = []
    for index, (member_id, _, declared) in enumerate(raw_shares):
        share_amount = amounts[index]
        # Caller-supplied percentages stay as given even on the corrected share.
        if declared is not None and (index != corrected_index or strategy == PercentageSplit.kind):
            percentage = round_half_up(declared, PERCENT_PLACES)
        else:
            percentage = _percentage_of(share_amount, amount)
        shares.append(SplitShare(member_id=member_id, amount=share_amount, percentage=percentage))

    audit = SplitAudit(
        strategy=strategy,
        total_amount=amount,
        member_count=len(raw_shares),
        calculated_total=calculated_total,
        difference=difference,
        corrected_member=raw_shares[corrected_index][0] if corrected_index is not None else None,
    )
    return shares, audit


def _percentage_of(part: Decimal, whole: Decimal) -> Decimal:
    return round_half_up(multiply(divide(part, whole), HUNDRED), PERCENT_PLACES)


def _require_value(values: Mapping[MemberId, Decimal], member_id: MemberId, label: str) -> Decimal:
    if member_id not in values or values[member_id] is None:
        raise SplitValidationError("missing_strategy_value", f"Missing {label} for member {member_id}")
    return to_decimal(values[member_id])


def _equal_shares(amount: Decimal, participants: Sequence[MemberId]) -> List[RawShare]:
    count = len(participants)
    per_person = divide(amount, count)
    percentage = divide(HUNDRED, count)
    return [(member_id, per_person, percentage) for member_id in participants]


def _proportional_shares(amount: Decimal, weights: Sequence[Tuple[MemberId, Decimal]]) -> List[RawShare]:
    weight_total = total([weight for _, weight in weights])
    return [(member_id, divide(multiply(amount, weight), weight_total), None) for member_id, weight in weights]


# ---------- Strategies ----------


def _split_equal(amount, participants, strategy, member_map, warnings):
    return _equal_shares(amount, participants)


def _split_exclude(amount, participants, strategy, member_map, warnings):
    # Excluded members are already removed from ``participants``.
    return _equal_shares(amount, participants)


def _split_percentage(amount, participants, strategy, member_map, warnings):
    percentages = []
    for member_id in participants:
        percentage = _require_value(strategy.percentages, member_id, "percentage")
        if percentage < 0 or percentage > HUNDRED:
            raise SplitValidationError(
                "invalid_percentage", f"Percentage for member {member_id} must be between 0 and 100"
            )
        percentages.append((member_id, percentage))

    percentage_total = total([percentage for _, percentage in percentages])
    if not amounts_close(percentage_total, HUNDRED, TOLERANCE):
        raise SplitValidationError(
            "percentage_total_mismatch",
            f"Split percentages must add up to 100%. Current total: {percentage_total}%",
        )
    return [
        (member_id, divide(multiply(amount, percentage), HUNDRED), percentage)
        for member_id, percentage in percentages
    ]


def _split_custom(amount, participants, strategy, member_map, warnings):
    raw_shares = []
    for member_id in participants:
        share_amount = _require_value(strategy.amounts, member_id, "amount")
        if share_amount < 0:
            raise SplitValidationError(
                "invalid_share_amount", f"Member {member_id} cannot have a negative amount"
            )
        raw_shares.append((member_id, share_amount, None))

    share_total = total([share_amount for _, share_amount, _ in raw_shares])
    if not amounts_close(share_total, amount, TOLERANCE):
        raise SplitValidationError(
            "share_total_mismatch",
            f"Split amounts ({share_total}) must equal the total expense amount ({amount})",
        )
    return raw_shares


def _split_shares(amount, participants, strategy, member_map, warnings):
    weights = []
    for member_id in participants:
        shares = to_decimal(strategy.shares.get(member_id, 1))
        if shares <= 0:
            raise SplitValidationError(
                "invalid_shares", f"Member {member_id} must have shares greater than 0"
            )
        weights.append((member_id, shares))
    return _proportional_shares(amount, weights)


def _split_weighted(amount, participants, strategy, member_map, warnings):
    weights = []
    for member_id in participants:
        weight = strategy.weights.get(member_id)
        if weight is None:
            member = member_map.get(member_id)
            weight = member.weight if member is not None and member.weight is not None else 1
        weight = to_decimal(weight)
        if weight <= 0:
            raise SplitValidationError(
                "invalid_weight", f"Member {member_id} must have a weight greater than 0"
            )
        weights.append((member_id, weight))
    return _proportional_shares(amount, weights)


def _income_split(amount, participants, strategy, member_map, warnings, ratios_for):
    with_income = [
        member_id for member_id in participants if member_id in member_map and member_map[member_id].has_income
    ]
    without_income = [member_id for member_id in participants if member_id not in with_income]

    if not with_income:
        warnings.append(
            FallbackApplied(
                strategy.kind,
                tuple(without_income),
                "No member has income data; using an equal split",
            )
        )
        return _equal_shares(amount, participants)

    equal_amount = divide(amount, len(participants))
    if without_income:
        warnings.append(
            FallbackApplied(
                strategy.kind,
                tuple(without_income),
                "Some members lack income data; they use an equal split as fallback",
            )
        )

    # Income members share whatever the fallback members do not cover.
    pool = subtract(amount, multiply(equal_amount, len(without_income)))
    income_shares = {
        member_id: share_amount
        for member_id, share_amount, _ in _proportional_shares(pool, ratios_for(with_income, member_map))
    }
    return [
        (member_id, income_shares[member_id], None) if member_id in income_shares else (member_id, equal_amount, None)
        for member_id in participants
    ]


def _income_ratios(member_ids, member_map):
    return [(member_id, to_decimal(member_map[member_id].income)) for member_id in member_ids]


def _progressive_multipliers(member_ids, member_map):
    ranked = sorted(member_ids, key=lambda member_id: to_decimal(member_map[member_id].income))
    multipliers = {
        member_id: add(1, multiply(PROGRESSIVE_STEP, rank)) for rank, member_id in enumerate(ranked)
    }
    return [(member_id, multipliers[member_id]) for member_id in member_ids]


def _split_income_proportional(amount, participants, strategy, member_map, warnings):
    return _income_split(amount, participants, strategy, member_map, warnings, _income_ratios)


def _split_income_progressive(amount, participants, strategy, member_map, warnings):
    return _income_split(amount, participants, strategy, member_map, warnings, _progressive_multipliers)


def _split_adjustment(amount, participants, strategy, member_map, warnings):
    base = divide(amount, len(participants))
    raw_shares = []
    for member_id in participants:
        adjustment = to_decimal(strategy.adjustments.get(member_id, 0))
        adjusted = add(base, adjustment)
        if adjusted < 0:
            raise SplitValidationError(
                "negative_adjusted_amount", f"Adjustment for member {member_id} results in a negative amount"
            )
        raw_shares.append((member_id, adjusted, None))

    adjusted_total = total([adjusted for _, adjusted, _ in raw_shares])
    if not amounts_close(adjusted_total, amount, TOLERANCE):
        raise SplitValidationError(
            "adjustment_total_mismatch",
            f"Adjusted amounts must equal expense total. Difference: {subtract(adjusted_total, amount)}",
        )
    return raw_shares


_HANDLERS: Dict[type, Handler] = {
    EqualSplit: _split_equal,
    PercentageSplit: _split_percentage,
    CustomSplit: _split_custom,
    UnequalSplit: _split_custom,
    SharesSplit: _split_shares,
    WeightedSplit: _split_weighted,
    IncomeProportionalSplit: _split_income_proportional,
    IncomeProgressiveSplit: _split_income_progressive,
    AdjustmentSplit: _split_adjustment,
    ExcludeSplit: _split_exclude,
}


def suggest_strategies(amount: Decimal, participants: Sequence[MemberId], members: Iterable[Member]) -> List[str]:
    """Recommend split strategies for an expense, most general first."""
    if amount <= 0 or not participants:
        return [EqualSplit.kind]

    member_map = {member.id: member for member in members}
    selected = [member_map[member_id] for member_id in participants if member_id in member_map]
    incomes = [member.income for member in selected if member.has_income]

    suggestions = [EqualSplit.kind]
    if selected and len(incomes) == len(participants):
        suggestions.append(IncomeProportionalSplit.kind)
        if len(incomes) > 1 and divide(max(incomes), min(incomes)) > 2:
            suggestions.append(IncomeProgressiveSplit.kind)

    if amount > 1000 and len(participants) <= 5:
        suggestions.append(CustomSplit.kind)
        suggestions.append(PercentageSplit.kind)
    return suggestions


def share_total(shares: Iterable[SplitShare]) -> Decimal:
    return total([share.amount for share in shares])
