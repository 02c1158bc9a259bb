from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .ledger import net_positions
from .models import MemberId, PairwiseBalance, SettlementSuggestion
from .precision import TOLERANCE, ZERO, add, quantize_money, subtract

logger = logging.getLogger(__name__)


def _settled(amount: Decimal, tolerance: Decimal) -> bool:
    return abs(amount) < tolerance


def optimize(
    balances: Iterable[PairwiseBalance],
    tolerance: Decimal = TOLERANCE,
) -> List[SettlementSuggestion]:
    """Suggest payments that drive every member's net position to zero.

    Debtors are taken most negative first and creditors most positive first;
    members with equal positions keep their order of first appearance in
    ``balances``.
    """
    positions = {member_id: quantize_money(amount) for member_id, amount in net_positions(balances).items()}

    debtor_ids, creditor_ids = partition(positions, tolerance)
    debtors = sorted(((member_id, positions[member_id]) for member_id in debtor_ids), key=lambda item: item[1])
    creditors = sorted(
        ((member_id, positions[member_id]) for member_id in creditor_ids), key=lambda item: item[1], reverse=True
    )

    suggestions: List[SettlementSuggestion] = []
    remaining_debt = [-amount for _, amount in debtors]
    remaining_credit = [amount for _, amount in creditors]

    debtor_idx = 0
    creditor_idx = 0
    while debtor_idx < len(debtors) and creditor_idx < len(creditors):
        settled_amount = min(remaining_debt[debtor_idx], remaining_credit[creditor_idx])
        if settled_amount > ZERO:
            suggestions.append(
                SettlementSuggestion(
                    from_member=debtors[debtor_idx][0],
                    to_member=creditors[creditor_idx][0],
                    amount=settled_amount,
                )
            )

        remaining_debt[debtor_idx] = subtract(remaining_debt[debtor_idx], settled_amount)
        remaining_credit[creditor_idx] = subtract(remaining_credit[creditor_idx], settled_amount)

        if remaining_debt[debtor_idx] <= ZERO or _settled(remaining_debt[debtor_idx], tolerance):
            debtor_idx += 1
        if remaining_credit[creditor_idx] <= ZERO or _settled(remaining_credit[creditor_idx], tolerance):
            creditor_idx += 1

    logger.debug(
        "Settled %d debtors and %d creditors with %d payments",
        len(debtors),
        len(creditors),
        len(suggestions),
    )
    return suggestions


def apply_suggestions(
    balances: Iterable[PairwiseBalance],
    suggestions: Iterable[SettlementSuggestion],
) -> Dict[MemberId, Decimal]:
    positions = net_positions(balances)
    for suggestion in suggestions:
        positions[suggestion.from_member] = add(positions.get(suggestion.from_member, ZERO), suggestion.amount)
        positions[suggestion.to_member] = subtract(positions.get(suggestion.to_member, ZERO), suggestion.amount)
    return positions


def summarize(
    balances: Sequence[PairwiseBalance],
    suggestions: Sequence[SettlementSuggestion],
) -> Dict[str, Any]:
    original = sum(1 for balance in balances if balance.amount != 0)
    optimized = len(suggestions)
    reduction = max(0, original - optimized)
    complexity = round(reduction * 100 / original) if original else 0
    return {
        "original_transactions": original,
        "optimized_transactions": optimized,
        "transaction_reduction": reduction,
        "complexity_reduction": complexity,
    }


def partition(positions: Dict[MemberId, Decimal], tolerance: Decimal = TOLERANCE) -> Tuple[List[MemberId], List[MemberId]]:
    debtors = [member_id for member_id, amount in positions.items() if amount < 0 and not _settled(amount, tolerance)]
    creditors = [member_id for member_id, amount in positions.items() if amount > 0 and not _settled(amount, tolerance)]
    return debtors, creditors
