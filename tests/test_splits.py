from decimal import Decimal

import pytest

from splitledger.errors import (
    EmptyGroup,
    InvalidAmount,
    InvalidParticipant,
    InvalidSplitRule,
    PercentageBelow100,
    PercentageExceeds100,
    SplitBelowAmount,
    SplitExceedsAmount,
    ValidationError,
)
from splitledger.splits import Split, SplitType, compute_splits

A, B, C = 1, 2, 3
MEMBERS = [A, B, C]


def _total(splits):
    return sum(split.amount for split in splits)


# ── equal ──────────────────────────────────────────────────────────────────

class TestEqualSplit:

    def test_even_amount(self):
        assert compute_splits(90, "equal", MEMBERS, payer=A) == [
            Split(A, Decimal("30.00")),
            Split(B, Decimal("30.00")),
            Split(C, Decimal("30.00")),
        ]

    def test_indivisible_amount_still_sums_exactly(self):
        splits = compute_splits("100", SplitType.equal, MEMBERS, payer=A)
        assert _total(splits) == Decimal("100")
        assert [s.amount for s in splits] == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]

    def test_rule_input_is_ignored(self):
        splits = compute_splits(30, "equal", MEMBERS, rule_input=[(A, 100)])
        assert len(splits) == 3

    def test_empty_group(self):
        with pytest.raises(EmptyGroup, match="at least one member"):
            compute_splits(10, "equal", [])

    @pytest.mark.parametrize("amount", ["0.01", "0.05", "10", "33.33", "9999999.99"])
    def test_sum_matches_amount(self, amount):
        assert _total(compute_splits(amount, "equal", MEMBERS)) == Decimal(amount)


# ── percentage ─────────────────────────────────────────────────────────────

class TestPercentageSplit:

    def test_sixty_forty(self):
        splits = compute_splits(100, "percentage", MEMBERS, [(B, 60), (C, 40)], payer=A)
        assert splits == [Split(B, Decimal("60.00")), Split(C, Decimal("40.00"))]

    def test_below_100_is_rejected_with_total(self):
        with pytest.raises(PercentageBelow100) as excinfo:
            compute_splits(100, "percentage", MEMBERS, [(B, 60), (C, 30)], payer=A)
        assert "Total percentage (90.0%) is less than 100%" in str(excinfo.value)

    def test_above_100_is_rejected_with_total(self):
        with pytest.raises(PercentageExceeds100, match=r"Total percentage \(110\.0%\) exceeds 100%"):
            compute_splits(100, "percentage", MEMBERS, [(B, 60), (C, 50)])

    def test_tolerates_one_hundredth_of_a_percent(self):
        splits = compute_splits(
            100, "percentage", MEMBERS, [(A, "33.33"), (B, "33.33"), (C, "33.33")]
        )
        assert _total(splits) == Decimal(100)

    @pytest.mark.parametrize(
        "amount, percentages",
        [
            ("1000", ["50", "50.01"]),
            ("10000000", ["50.005", "50.005"]),
            ("250.75", ["33.33", "33.33", "33.33"]),
        ],
    )
    def test_near_100_totals_still_cover_the_amount(self, amount, percentages):
        entries = list(zip(MEMBERS, percentages))
        splits = compute_splits(amount, "percentage", MEMBERS, entries, payer=A)

        assert abs(_total(splits) - Decimal(amount)) <= Decimal("0.01")
        # each share is its percentage of the amount, scaled by the entered total
        pct_total = sum(Decimal(p) for p in percentages)
        for split, pct in zip(splits, percentages):
            exact = Decimal(amount) * Decimal(pct) / pct_total
            assert abs(split.amount - exact) <= Decimal("0.01")

    def test_each_share_is_within_a_cent_of_exact(self):
        percentages = [(A, "12.5"), (B, "37.5"), (C, "50")]
        splits = compute_splits("99.99", "percentage", MEMBERS, percentages)
        assert _total(splits) == Decimal("99.99")
        for split, (_, pct) in zip(splits, percentages):
            exact = Decimal("99.99") * Decimal(pct) / 100
            assert abs(split.amount - exact) <= Decimal("0.01")

    def test_zero_percent_members_are_dropped(self):
        splits = compute_splits(50, "percentage", MEMBERS, [(A, 0), (B, 100)])
        assert splits == [Split(B, Decimal("50.00"))]

    def test_individual_percentage_over_100(self):
        with pytest.raises(ValidationError, match="Individual percentage cannot exceed 100%"):
            compute_splits(100, "percentage", MEMBERS, [(B, 150), (C, -50)])

    def test_negative_percentage(self):
        with pytest.raises(ValidationError, match="non-negative"):
            compute_splits(100, "percentage", MEMBERS, [(B, -10), (C, 110)])

    def test_non_member(self):
        with pytest.raises(InvalidParticipant, match="All split users must be group members"):
            compute_splits(100, "percentage", MEMBERS, [(B, 50), (99, 50)])

    def test_member_listed_twice(self):
        with pytest.raises(InvalidParticipant):
            compute_splits(100, "percentage", MEMBERS, [(B, 50), (B, 50)])

    def test_requires_entries(self):
        with pytest.raises(ValidationError, match="Splits array is required for percentage split"):
            compute_splits(100, "percentage", MEMBERS, [])


# ── exact ──────────────────────────────────────────────────────────────────

class TestExactSplit:

    def test_amounts_are_kept(self):
        splits = compute_splits(100, "exact", MEMBERS, [(A, 20), (B, "45.50"), (C, "34.50")])
        assert splits == [
            Split(A, Decimal("20.00")),
            Split(B, Decimal("45.50")),
            Split(C, Decimal("34.50")),
        ]

    def test_zero_amounts_are_dropped(self):
        splits = compute_splits(10, "exact", MEMBERS, [(A, 0), (B, 10)])
        assert splits == [Split(B, Decimal("10.00"))]

    def test_one_cent_off_is_accepted(self):
        splits = compute_splits(100, "exact", MEMBERS, [(B, "33.33"), (C, "66.66")])
        assert _total(splits) == Decimal("99.99")

    def test_exceeds_amount(self):
        with pytest.raises(SplitExceedsAmount, match=r"Total split \(101\.00\) exceeds amount \(100\.00\)"):
            compute_splits(100, "exact", MEMBERS, [(B, 51), (C, 50)])

    def test_below_amount(self):
        with pytest.raises(SplitBelowAmount, match=r"Total split \(90\.00\) is less than amount \(100\.00\)"):
            compute_splits(100, "exact", MEMBERS, [(B, 50), (C, 40)])

    def test_negative_amount(self):
        with pytest.raises(ValidationError, match="Split amounts must be non-negative numbers"):
            compute_splits(100, "exact", MEMBERS, [(B, -10), (C, 110)])

    def test_non_member(self):
        with pytest.raises(InvalidParticipant):
            compute_splits(100, "exact", MEMBERS, [(42, 100)])


# ── shared validation ──────────────────────────────────────────────────────

class TestInputValidation:

    @pytest.mark.parametrize("amount", [0, -1, "10000000.01", "nope"])
    def test_bad_amount(self, amount):
        with pytest.raises(InvalidAmount):
            compute_splits(amount, "equal", MEMBERS)

    def test_unknown_rule(self):
        with pytest.raises(InvalidSplitRule, match="Must be 'equal', 'exact', or 'percentage'"):
            compute_splits(10, "shares", MEMBERS)

    def test_payer_must_be_member(self):
        with pytest.raises(InvalidParticipant, match="Payer must be a group member"):
            compute_splits(10, "equal", MEMBERS, payer=99)

    def test_errors_are_validation_errors(self):
        for error in (EmptyGroup, PercentageBelow100, SplitExceedsAmount, InvalidSplitRule):
            assert issubclass(error, ValidationError)
