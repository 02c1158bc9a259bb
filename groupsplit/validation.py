from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional

from .errors import ValidationIssue
from .models import Expense, Member
from .precision import TOLERANCE, amounts_close, total

MAX_EXPENSE_AMOUNT = Decimal("10000000")


def validate_amount(expense: Expense, max_amount: Decimal = MAX_EXPENSE_AMOUNT) -> List[ValidationIssue]:
    if expense.total_amount <= 0:
        return [ValidationIssue("invalid_amount", "Expense amount must be greater than zero", expense.id)]
    if expense.total_amount > max_amount:
        return [ValidationIssue("invalid_amount", f"Expense amount cannot exceed {max_amount}", expense.id)]
    return []


def validate_participants(expense: Expense, members: Optional[Iterable[Member]] = None) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if not expense.participants:
        issues.append(
            ValidationIssue("no_participants", "At least one member must be selected to split the expense", expense.id)
        )
        return issues

    if len(set(expense.participants)) != len(expense.participants):
        issues.append(
            ValidationIssue("duplicate_participant", "Each member can only be selected once", expense.id)
        )

    excluded = expense.excluded_members
    if excluded:
        if not excluded <= set(expense.participants):
            issues.append(
                ValidationIssue(
                    "unknown_excluded_member", "Excluded members must be selected participants", expense.id
                )
            )
        if not expense.included_participants:
            issues.append(
                ValidationIssue("all_members_excluded", "Cannot exclude all selected members", expense.id)
            )

    if members is not None:
        known = {member.id for member in members}
        if any(member_id not in known for member_id in expense.participants):
            issues.append(
                ValidationIssue("unknown_member", "Some selected members are not valid group members", expense.id)
            )
    return issues


def validate_payers(expense: Expense, members: Optional[Iterable[Member]] = None) -> List[ValidationIssue]:
    if not expense.payers:
        return [ValidationIssue("no_payers", "At least one payer is required", expense.id)]

    issues: List[ValidationIssue] = []
    payer_ids = [payer.member_id for payer in expense.payers]
    if len(set(payer_ids)) != len(payer_ids):
        issues.append(ValidationIssue("duplicate_payer", "Each member can only be added as a payer once", expense.id))

    if any(payer.amount_paid <= 0 for payer in expense.payers):
        issues.append(
            ValidationIssue("invalid_payer_amount", "Every payer must have an amount greater than zero", expense.id)
        )

    paid = total([payer.amount_paid for payer in expense.payers])
    if not amounts_close(paid, expense.total_amount, TOLERANCE):
        issues.append(
            ValidationIssue(
                "payer_total_mismatch",
                f"Total paid amounts ({paid}) must equal expense amount ({expense.total_amount})",
                expense.id,
            )
        )

    if members is not None:
        known = {member.id for member in members}
        if any(payer_id not in known for payer_id in payer_ids):
            issues.append(ValidationIssue("unknown_payer", "Some payers are not valid group members", expense.id))
    return issues


def validate_expense(
    expense: Expense,
    members: Optional[Iterable[Member]] = None,
    max_amount: Decimal = MAX_EXPENSE_AMOUNT,
) -> List[ValidationIssue]:
    members = list(members) if members is not None else None
    return (
        validate_amount(expense, max_amount)
        + validate_participants(expense, members)
        + validate_payers(expense, members)
    )
