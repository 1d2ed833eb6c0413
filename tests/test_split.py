from decimal import Decimal

import pytest

from settleup.services.split import (
    InvalidSplit,
    SplitMethod,
    SplitSpec,
    merge_shares,
    split_amount,
    split_expense,
    to_split_facts,
)


def test_split_amount_even():
    shares = split_amount(1000, ["a", "b", "c", "d"])
    assert shares == {"a": 250, "b": 250, "c": 250, "d": 250}


def test_split_amount_remainder_goes_to_one_share():
    shares = split_amount(1001, ["c", "a", "b"])
    assert sum(shares.values()) == 1001
    # equal magnitudes, so the smallest user id absorbs the remainder
    assert shares == {"a": 335, "b": 333, "c": 333}


def test_split_amount_rejects_empty_consumers():
    with pytest.raises(InvalidSplit):
        split_amount(100, [])


def test_share_split_remainder_goes_to_largest_share():
    shares = split_expense(
        1000,
        [
            SplitSpec("a", SplitMethod.SHARE, shares=1),
            SplitSpec("b", SplitMethod.SHARE, shares=2),
        ],
    )
    assert shares == {"a": 333, "b": 667}


def test_percentage_split_sums_exactly():
    shares = split_expense(
        1000,
        [
            SplitSpec("a", SplitMethod.PERCENTAGE, percentage=Decimal("33.33")),
            SplitSpec("b", SplitMethod.PERCENTAGE, percentage=Decimal("33.33")),
            SplitSpec("c", SplitMethod.PERCENTAGE, percentage=Decimal("33.34")),
        ],
    )
    assert sum(shares.values()) == 1000
    assert shares == {"a": 334, "b": 333, "c": 333}


def test_fixed_then_equal():
    shares = split_expense(
        1000,
        [
            SplitSpec("a", SplitMethod.FIXED, amount=400),
            SplitSpec("b"),
            SplitSpec("c"),
        ],
    )
    assert shares == {"a": 400, "b": 300, "c": 300}


def test_percentage_must_total_hundred():
    with pytest.raises(InvalidSplit):
        split_expense(
            1000,
            [
                SplitSpec("a", SplitMethod.PERCENTAGE, percentage=Decimal("50")),
                SplitSpec("b", SplitMethod.PERCENTAGE, percentage=Decimal("40")),
            ],
        )


def test_fixed_total_cannot_exceed_amount():
    with pytest.raises(InvalidSplit):
        split_expense(1000, [SplitSpec("a", SplitMethod.FIXED, amount=1200)])


def test_duplicate_users_rejected():
    with pytest.raises(InvalidSplit):
        split_expense(1000, [SplitSpec("a"), SplitSpec("a")])


def test_merge_shares_and_facts():
    merged = merge_shares([{"a": 100, "b": 50}, {"b": 25}])
    assert merged == {"a": 100, "b": 75}

    facts = to_split_facts("a", merged, "EUR")
    assert [(f.payer_id, f.participant_id, f.owed_amount, f.currency) for f in facts] == [
        ("a", "a", 100, "EUR"),
        ("a", "b", 75, "EUR"),
    ]
