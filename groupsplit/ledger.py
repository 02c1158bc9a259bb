from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .errors import FallbackApplied, ValidationIssue
from .models import (
    Expense,
    LedgerResult,
    Member,
    MemberId,
    MemberSummary,
    PairwiseBalance,
    RecordedSettlement,
)
from .precision import ZERO, add, allocate, subtract
from .splits import REMAINDER_FIRST, compute
from .validation import MAX_EXPENSE_AMOUNT, validate_payers

logger = logging.getLogger(__name__)


class _MemberOrder:

    def __init__(self, members: Iterable[Member]) -> None:
        self._positions: Dict[MemberId, int] = {}
        for member in members:
            self.register(member.id)

    def register(self, member_id: MemberId) -> int:
        if member_id not in self._positions:
            self._positions[member_id] = len(self._positions)
        return self._positions[member_id]

    def __iter__(self):
        return iter(self._positions)


def _record_debt(
    debts: Dict[Tuple[MemberId, MemberId], Decimal],
    order: _MemberOrder,
    debtor: MemberId,
    creditor: MemberId,
    amount: Decimal,
) -> None:
    if debtor == creditor:
        return
    if order.register(debtor) < order.register(creditor):
        key = (debtor, creditor)
        debts[key] = add(debts.get(key, ZERO), amount)
    else:
        key = (creditor, debtor)
        debts[key] = subtract(debts.get(key, ZERO), amount)


def aggregate(
    expenses: Iterable[Expense],
    members: Iterable[Member],
    settlements: Iterable[RecordedSettlement] = (),
    remainder_rule: str = REMAINDER_FIRST,
    max_amount: Decimal = MAX_EXPENSE_AMOUNT,
) -> LedgerResult:
    """Net what every pair of members owes each other across ``expenses``.

    A participant's share is owed to the expense's payers in proportion to
    what each of them paid. Recorded settlements count as the payer paying
    down their debt to the recipient. If any expense or settlement is invalid
    the result carries the errors and no balances.
    """
    members = list(members)
    order = _MemberOrder(members)
    debts: Dict[Tuple[MemberId, MemberId], Decimal] = {}
    paid: Dict[MemberId, Decimal] = {}
    owed: Dict[MemberId, Decimal] = {}
    settled_out: Dict[MemberId, Decimal] = {}
    settled_in: Dict[MemberId, Decimal] = {}
    errors: List[ValidationIssue] = []
    warnings: List[FallbackApplied] = []

    for expense in expenses:
        payer_issues = validate_payers(expense)
        if payer_issues:
            errors.extend(payer_issues)
            continue

        result = compute(expense, members, remainder_rule, max_amount)
        if not result.ok:
            errors.extend(result.errors)
            continue
        warnings.extend(result.warnings)

        contributions = [payer.amount_paid for payer in expense.payers]
        for payer in expense.payers:
            order.register(payer.member_id)
            paid[payer.member_id] = add(paid.get(payer.member_id, ZERO), payer.amount_paid)

        for share in result.shares:
            order.register(share.member_id)
            owed[share.member_id] = add(owed.get(share.member_id, ZERO), share.amount)
            for payer, part in zip(expense.payers, allocate(share.amount, contributions)):
                _record_debt(debts, order, share.member_id, payer.member_id, part)

    for settlement in settlements:
        if settlement.amount <= 0 or settlement.from_member == settlement.to_member:
            errors.append(
                ValidationIssue(
                    "invalid_settlement",
                    f"Settlement from {settlement.from_member} to {settlement.to_member} is not a valid payment",
                )
            )
            continue
        settled_out[settlement.from_member] = add(settled_out.get(settlement.from_member, ZERO), settlement.amount)
        settled_in[settlement.to_member] = add(settled_in.get(settlement.to_member, ZERO), settlement.amount)
        # Paying someone back is the same as them owing you that amount.
        _record_debt(debts, order, settlement.to_member, settlement.from_member, settlement.amount)

    if errors:
        return LedgerResult(errors=tuple(errors), warnings=tuple(warnings))

    positions = {member_id: index for index, member_id in enumerate(order)}
    balances = tuple(
        PairwiseBalance(member_a=a, member_b=b, amount=amount)
        for (a, b), amount in sorted(debts.items(), key=lambda item: (positions[item[0][0]], positions[item[0][1]]))
    )
    summaries = tuple(
        MemberSummary(
            member_id=member_id,
            total_paid=paid.get(member_id, ZERO),
            total_share=owed.get(member_id, ZERO),
            settlements_paid=settled_out.get(member_id, ZERO),
            settlements_received=settled_in.get(member_id, ZERO),
        )
        for member_id in order
    )
    logger.debug("Aggregated %d pairwise balances for %d members", len(balances), len(summaries))
    return LedgerResult(balances=balances, summaries=summaries, warnings=tuple(warnings))


def net_positions(balances: Iterable[PairwiseBalance]) -> Dict[MemberId, Decimal]:
    """Owed-to-them minus they-owe per member, in order of first appearance."""
    positions: Dict[MemberId, Decimal] = {}
    for balance in balances:
        positions[balance.member_a] = subtract(positions.get(balance.member_a, ZERO), balance.amount)
        positions[balance.member_b] = add(positions.get(balance.member_b, ZERO), balance.amount)
    return positions


def owes_and_owed(member_id: MemberId, balances: Iterable[PairwiseBalance]) -> Tuple[List[Tuple[MemberId, Decimal]], List[Tuple[MemberId, Decimal]]]:
    owes_to: List[Tuple[MemberId, Decimal]] = []
    owed_by: List[Tuple[MemberId, Decimal]] = []
    for balance in balances:
        if balance.amount == 0 or member_id not in (balance.member_a, balance.member_b):
            continue
        is_a = balance.member_a == member_id
        other = balance.member_b if is_a else balance.member_a
        if (balance.amount > 0) == is_a:
            owes_to.append((other, abs(balance.amount)))
        else:
            owed_by.append((other, abs(balance.amount)))
    return owes_to, owed_by
