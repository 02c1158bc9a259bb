from decimal import Decimal

import pytest

from groupsplit.errors import FallbackApplied
from groupsplit.models import (
    AdjustmentSplit,
    CustomSplit,
    EqualSplit,
    ExcludeSplit,
    Expense,
    IncomeProgressiveSplit,
    IncomeProportionalSplit,
    Member,
    Payer,
    PercentageSplit,
    SharesSplit,
    UnequalSplit,
    WeightedSplit,
)
from groupsplit.splits import REMAINDER_LARGEST, compute, share_total, suggest_strategies


def _expense(total, participants=(1, 2, 3), strategy=None, payer=1, expense_id="e1"):
    total = Decimal(total)
    return Expense(
        id=expense_id,
        total_amount=total,
        payers=(Payer(payer, total),),
        participants=tuple(participants),
        strategy=strategy if strategy is not None else EqualSplit(),
    )


def _amounts(result):
    return [share.amount for share in result.shares]


def _codes(result):
    return [issue.code for issue in result.errors]


def assert_exact_total(result, expense):
    assert result.ok, result.errors
    assert share_total(result.shares) == expense.total_amount


# ---------- Equal and remainder correction ----------

def test_equal_split_corrects_remainder_on_first_member(members):
    expense = _expense("500")
    result = compute(expense, members)

    assert _amounts(result) == [Decimal("166.66"), Decimal("166.67"), Decimal("166.67")]
    assert_exact_total(result, expense)
    assert result.audit.calculated_total == Decimal("500.01")
    assert result.audit.difference == Decimal("-0.01")
    assert result.audit.corrected_member == 1


def test_equal_split_percentages(members):
    result = compute(_expense("500"), members)

    assert [share.percentage for share in result.shares] == [
        Decimal("33.3320"),
        Decimal("33.3333"),
        Decimal("33.3333"),
    ]


def test_even_split_needs_no_correction(members):
    result = compute(_expense("90"), members)

    assert _amounts(result) == [Decimal("30.00")] * 3
    assert result.audit.difference == 0
    assert result.audit.corrected_member is None


def test_largest_rule_corrects_largest_share(members):
    expense = _expense("10", strategy=SharesSplit({1: 1, 2: 3, 3: 3}))

    first = compute(expense, members)
    largest = compute(expense, members, remainder_rule=REMAINDER_LARGEST)

    assert _amounts(first) == [Decimal("1.42"), Decimal("4.29"), Decimal("4.29")]
    assert _amounts(largest) == [Decimal("1.43"), Decimal("4.28"), Decimal("4.29")]
    assert largest.audit.corrected_member == 2
    assert_exact_total(largest, expense)


def test_unknown_remainder_rule_is_rejected(members):
    with pytest.raises(ValueError):
        compute(_expense("10"), members, remainder_rule="random")


# ---------- Percentage ----------

def test_percentage_split(members):
    expense = _expense("200", strategy=PercentageSplit({1: Decimal("50"), 2: Decimal("30"), 3: Decimal("20")}))
    result = compute(expense, members)

    assert _amounts(result) == [Decimal("100.00"), Decimal("60.00"), Decimal("40.00")]
    assert sum(share.percentage for share in result.shares) == 100


def test_percentage_split_keeps_declared_percentages_after_correction(members):
    percentages = {1: Decimal("33.333"), 2: Decimal("33.333"), 3: Decimal("33.334")}
    expense = _expense("10", strategy=PercentageSplit(percentages))
    result = compute(expense, members)

    assert _amounts(result) == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
    assert [share.percentage for share in result.shares] == [
        Decimal("33.3330"),
        Decimal("33.3330"),
        Decimal("33.3340"),
    ]
    assert_exact_total(result, expense)


def test_percentage_total_mismatch(members):
    expense = _expense("100", participants=(1, 2), strategy=PercentageSplit({1: Decimal("50"), 2: Decimal("49.5")}))
    result = compute(expense, members)

    assert _codes(result) == ["percentage_total_mismatch"]
    assert result.shares == ()
    assert result.errors[0].expense_id == "e1"


def test_percentage_out_of_range(members):
    expense = _expense("100", participants=(1, 2), strategy=PercentageSplit({1: Decimal("110"), 2: Decimal("-10")}))

    assert _codes(compute(expense, members)) == ["invalid_percentage"]


def test_percentage_missing_for_member(members):
    expense = _expense("100", strategy=PercentageSplit({1: Decimal("50"), 2: Decimal("50")}))

    assert _codes(compute(expense, members)) == ["missing_strategy_value"]


# ---------- Custom and unequal ----------

def test_custom_split(members):
    expense = _expense("100", strategy=CustomSplit({1: Decimal("50"), 2: Decimal("30"), 3: Decimal("20")}))

    assert _amounts(compute(expense, members)) == [Decimal("50.00"), Decimal("30.00"), Decimal("20.00")]


def test_custom_split_within_tolerance_is_corrected(members):
    expense = _expense("100", strategy=CustomSplit({1: Decimal("50"), 2: Decimal("30"), 3: Decimal("19.99")}))
    result = compute(expense, members)

    assert _amounts(result) == [Decimal("50.01"), Decimal("30.00"), Decimal("19.99")]
    assert_exact_total(result, expense)


def test_custom_split_total_mismatch(members):
    expense = _expense("100", strategy=CustomSplit({1: Decimal("50"), 2: Decimal("30"), 3: Decimal("19")}))

    assert _codes(compute(expense, members)) == ["share_total_mismatch"]


def test_custom_split_rejects_negative_amount(members):
    expense = _expense("100", participants=(1, 2), strategy=CustomSplit({1: Decimal("120"), 2: Decimal("-20")}))

    assert _codes(compute(expense, members)) == ["invalid_share_amount"]


def test_unequal_split_behaves_like_custom(members):
    expense = _expense("100", strategy=UnequalSplit({1: Decimal("10"), 2: Decimal("45"), 3: Decimal("45")}))
    result = compute(expense, members)

    assert _amounts(result) == [Decimal("10.00"), Decimal("45.00"), Decimal("45.00")]
    assert result.audit.strategy == "unequal"


# ---------- Shares and weights ----------

def test_shares_split(members):
    expense = _expense("90", strategy=SharesSplit({1: 1, 2: 2, 3: 3}))

    assert _amounts(compute(expense, members)) == [Decimal("15.00"), Decimal("30.00"), Decimal("45.00")]


def test_missing_shares_default_to_one(members):
    expense = _expense("40", participants=(1, 2), strategy=SharesSplit({1: 2}))

    assert _amounts(compute(expense, members)) == [Decimal("26.67"), Decimal("13.33")]


def test_shares_must_be_positive(members):
    expense = _expense("40", participants=(1, 2), strategy=SharesSplit({1: 0, 2: 1}))

    assert _codes(compute(expense, members)) == ["invalid_shares"]


def test_weighted_split(members):
    weights = {1: Decimal("1.5"), 2: Decimal("2.0"), 3: Decimal("0.8")}
    expense = _expense("1500", strategy=WeightedSplit(weights))
    result = compute(expense, members)

    assert _amounts(result) == [Decimal("523.26"), Decimal("697.67"), Decimal("279.07")]
    assert_exact_total(result, expense)


def test_weighted_split_falls_back_to_member_weight():
    group = [Member(1, "Alice"), Member(4, "Dan", weight=Decimal("3"))]
    expense = _expense("100", participants=(1, 4), strategy=WeightedSplit({}))

    assert _amounts(compute(expense, group)) == [Decimal("25.00"), Decimal("75.00")]


def test_weights_must_be_positive(members):
    expense = _expense("100", participants=(1, 2), strategy=WeightedSplit({1: Decimal("0"), 2: Decimal("1")}))

    assert _codes(compute(expense, members)) == ["invalid_weight"]


# ---------- Income based ----------

def test_income_proportional_split():
    group = [Member(1, "Alice", income=Decimal("3000")), Member(2, "Bob", income=Decimal("1000"))]
    result = compute(_expense("400", participants=(1, 2), strategy=IncomeProportionalSplit()), group)

    assert _amounts(result) == [Decimal("300.00"), Decimal("100.00")]
    assert result.warnings == ()


def test_income_progressive_split(earners):
    result = compute(_expense("360", strategy=IncomeProgressiveSplit()), earners)

    assert _amounts(result) == [Decimal("140.00"), Decimal("100.00"), Decimal("120.00")]


@pytest.mark.parametrize("strategy", [IncomeProportionalSplit(), IncomeProgressiveSplit()])
def test_income_split_without_any_income_matches_equal_split(members, strategy):
    equal = compute(_expense("500"), members)
    fallback = compute(_expense("500", strategy=strategy), members)

    assert _amounts(fallback) == _amounts(equal)
    assert fallback.warnings == (
        FallbackApplied(strategy.kind, (1, 2, 3), "No member has income data; using an equal split", "e1"),
    )


def test_income_split_with_partial_income():
    group = [
        Member(1, "Alice", income=Decimal("3000")),
        Member(2, "Bob", income=Decimal("1000")),
        Member(3, "Carol"),
    ]
    result = compute(_expense("300", strategy=IncomeProportionalSplit()), group)

    assert _amounts(result) == [Decimal("150.00"), Decimal("50.00"), Decimal("100.00")]
    assert len(result.warnings) == 1
    assert result.warnings[0].member_ids == (3,)


# ---------- Adjustment and exclude ----------

def test_adjustment_split(members):
    expense = _expense("300", strategy=AdjustmentSplit({1: Decimal("10"), 2: Decimal("-10")}))

    assert _amounts(compute(expense, members)) == [Decimal("110.00"), Decimal("90.00"), Decimal("100.00")]


def test_adjustments_must_cancel_out(members):
    expense = _expense("300", strategy=AdjustmentSplit({1: Decimal("10")}))

    assert _codes(compute(expense, members)) == ["adjustment_total_mismatch"]


def test_adjustment_cannot_go_negative(members):
    expense = _expense("30", strategy=AdjustmentSplit({1: Decimal("-20"), 2: Decimal("20")}))

    assert _codes(compute(expense, members)) == ["negative_adjusted_amount"]


def test_exclude_split(members):
    result = compute(_expense("100", strategy=ExcludeSplit(frozenset({3}))), members)

    assert [share.member_id for share in result.shares] == [1, 2]
    assert _amounts(result) == [Decimal("50.00"), Decimal("50.00")]
    assert result.audit.member_count == 2


def test_excluding_everyone_is_an_error(members):
    result = compute(_expense("100", strategy=ExcludeSplit(frozenset({1, 2, 3}))), members)

    assert _codes(result) == ["all_members_excluded"]
    assert result.shares == ()


def test_excluded_member_must_participate(members):
    result = compute(_expense("100", strategy=ExcludeSplit(frozenset({4}))), members)

    assert _codes(result) == ["unknown_excluded_member"]


# ---------- Whole-expense validation ----------

@pytest.mark.parametrize("total", ["0", "-5", "10000000.01"])
def test_invalid_amounts(members, total):
    assert _codes(compute(_expense(total), members)) == ["invalid_amount"]


def test_participants_required(members):
    assert _codes(compute(_expense("10", participants=()), members)) == ["no_participants"]


def test_duplicate_participants(members):
    assert _codes(compute(_expense("10", participants=(1, 1)), members)) == ["duplicate_participant"]


def test_unknown_strategy(members):
    assert _codes(compute(_expense("10", strategy=object()), members)) == ["unknown_strategy"]


@pytest.mark.parametrize(
    "strategy",
    [
        EqualSplit(),
        PercentageSplit({1: Decimal("33.33"), 2: Decimal("33.33"), 3: Decimal("33.34")}),
        CustomSplit({1: Decimal("33.34"), 2: Decimal("33.33"), 3: Decimal("33.34")}),
        UnequalSplit({1: Decimal("0.01"), 2: Decimal("50"), 3: Decimal("50")}),
        SharesSplit({1: 1, 2: 2, 3: 4}),
        WeightedSplit({1: Decimal("0.7"), 2: Decimal("1.3"), 3: Decimal("2.9")}),
        IncomeProportionalSplit(),
        IncomeProgressiveSplit(),
        AdjustmentSplit({1: Decimal("1"), 2: Decimal("-1")}),
        ExcludeSplit(frozenset({2})),
    ],
)
def test_shares_always_add_up_to_total(earners, strategy):
    expense = _expense("100.01", strategy=strategy)

    assert_exact_total(compute(expense, earners), expense)


# ---------- Suggestions ----------

def test_suggest_strategies_for_large_expense(earners):
    assert suggest_strategies(Decimal("2000"), (1, 2, 3), earners) == [
        "equal",
        "income-proportional",
        "income-progressive",
        "custom",
        "percentage",
    ]


def test_suggest_strategies_without_income(members):
    assert suggest_strategies(Decimal("50"), (1, 2, 3), members) == ["equal"]


def test_amount_limit_can_be_raised_or_lowered(members):
    large = _expense("20000000")

    assert _codes(compute(large, members)) == ["invalid_amount"]
    assert compute(large, members, max_amount=Decimal("50000000")).ok
    assert _codes(compute(_expense("90"), members, max_amount=Decimal("50"))) == ["invalid_amount"]
