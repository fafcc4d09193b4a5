from datetime import date
from decimal import Decimal

import pytest

from expense_import.config import DuplicateOptions
from expense_import.duplicates import (
    description_similarity,
    detect_duplicates_for_transactions,
    duplicate_label,
    duplicate_summary,
    filter_out_duplicates,
    find_duplicates,
    is_duplicate,
    mark_for_review,
)
from expense_import.models import ExistingRecord, ParsedTransaction

DAY = date(2024, 1, 15)
TODAY = date(2024, 2, 1)


def _tx(description="STARBUCKS STORE 123", amount="5.50", day=DAY):
    return ParsedTransaction(date=day, description=description, amount=Decimal(amount))


def _rec(id_="exp-1", description="STARBUCKS STORE 123", amount="5.50", day=DAY):
    return ExistingRecord(id=id_, date=day, description=description, amount=Decimal(amount))


def test_identical_record_is_a_certain_duplicate():
    check = is_duplicate(_tx(), _rec())
    assert check.is_duplicate
    assert check.confidence == 1.0
    assert check.reasons[:2] == ("Date matches", "Amount matches")


def test_same_day_same_amount_with_garbled_description():
    check = is_duplicate(_tx(), _rec(description="STARBUCKS #123"))
    assert check.is_duplicate
    assert check.confidence == pytest.approx(0.85)
    assert "partially similar" in check.reasons[-1]


def test_garbled_description_without_repeat_override():
    opts = DuplicateOptions(exact_repeat_override=False)
    check = is_duplicate(_tx(), _rec(description="STARBUCKS #123"), opts)
    assert not check.is_duplicate
    assert check.confidence == pytest.approx(0.85)
    # Still surfaced as a candidate for review.
    (match,) = find_duplicates(_tx(), [_rec(description="STARBUCKS #123")], opts)
    assert match.existing_ref == "exp-1"


@pytest.mark.parametrize(
    ("day", "strict", "expected"),
    [
        (date(2024, 1, 17), False, True),
        (date(2024, 1, 18), False, False),
        (date(2024, 1, 16), True, False),
        (DAY, True, True),
    ],
)
def test_date_gate(day, strict, expected):
    check = is_duplicate(_tx(), _rec(day=day), DuplicateOptions(strict_date=strict))
    assert check.is_duplicate is expected
    if not expected:
        assert check.confidence == 0.0


def test_amount_gate():
    assert is_duplicate(_tx(amount="5.60"), _rec()).confidence == 0.0
    check = is_duplicate(_tx(amount="100.50"), _rec(amount="100.00"))
    assert check.is_duplicate
    assert "Amount within tolerance" in check.reasons


def test_missing_dates_never_match():
    tx = ParsedTransaction(date=None, description="X", amount=Decimal("1.00"))
    assert not is_duplicate(tx, _rec()).is_duplicate


def test_empty_descriptions_do_not_count_as_similar():
    assert description_similarity("", "") == 0.0
    assert description_similarity("!!!", "abc") == 0.0
    check = is_duplicate(_tx(description="***"), _rec(description="***"))
    assert not check.is_duplicate
    assert check.confidence == pytest.approx(0.7)


def test_find_duplicates_sorted_highest_first():
    records = [
        _rec("weak", description="STARBUCKS #123"),
        _rec("strong"),
        _rec("other-day", day=date(2024, 3, 1)),
    ]
    matches = find_duplicates(_tx(), records)
    assert [m.existing_ref for m in matches] == ["strong", "weak"]


def test_lookback_window_limits_candidates():
    old = _rec("old", day=date(2023, 10, 1))
    tx = _tx(day=date(2023, 10, 1))
    (result,) = detect_duplicates_for_transactions([tx], [old], today=TODAY)
    assert not result.has_duplicates

    (result,) = detect_duplicates_for_transactions(
        [tx], [old], DuplicateOptions(lookback_days=365), today=TODAY
    )
    assert result.high_confidence_duplicate.existing_ref == "old"


def test_policy_helpers():
    results = detect_duplicates_for_transactions(
        [_tx(), _tx(description="STARBUCKS #123"), _tx(description="SHELL", amount="40.00")],
        [_rec()],
        today=TODAY,
    )
    assert [duplicate_label(r.top_confidence) for r in results] == [
        "definitely",
        "likely",
        "no",
    ]
    assert duplicate_label(0.6) == "possible"

    kept, skipped = filter_out_duplicates(results)
    assert [t.description for t in kept] == ["STARBUCKS #123", "SHELL"]
    assert len(skipped) == 1

    flags = mark_for_review(results)
    assert [(f.auto_skip, f.needs_review) for f in flags] == [
        (True, False),
        (False, True),
        (False, False),
    ]

    summary = duplicate_summary(results)
    assert (summary.unique, summary.likely, summary.definite) == (1, 1, 1)
    assert summary.with_duplicates == 2


def test_bands_must_be_ordered():
    with pytest.raises(ValueError):
        DuplicateOptions(high_confidence=0.9, auto_skip_confidence=0.85)
