import pytest

from expense_import.fuzzy import (
    find_all_matching_categories,
    find_matching_category,
    levenshtein_distance,
    normalize,
    similarity_score,
)

CATEGORIES = {
    "groceries": {"name": "Groceries"},
    "food": {"name": "Food & Dining"},
    "transport": {"name": "Transport"},
    "fun": {"name": "Entertainment"},
}


def test_levenshtein_basics():
    assert levenshtein_distance("", "") == 0
    assert levenshtein_distance("abc", "") == 3
    assert levenshtein_distance("kitten", "sitting") == 3


def test_similarity_edges():
    assert similarity_score("", "") == 1.0
    assert similarity_score("abc", "") == 0.0
    assert similarity_score("groceries", "groceris") == pytest.approx(1 - 1 / 9)


@pytest.mark.parametrize(
    ("a", "b"), [("uber", "uber eats"), ("netflix", "netflx"), ("", "x"), ("abc", "xyz")]
)
def test_similarity_is_symmetric_and_bounded(a, b):
    score = similarity_score(a, b)
    assert score == similarity_score(b, a)
    assert 0.0 <= score <= 1.0


@pytest.mark.parametrize("text", ["  Food & Dining!! ", "SQ*Coffee   #12", "", "café-bar"])
def test_normalize_is_idempotent(text):
    once = normalize(text)
    assert normalize(once) == once


def test_normalize_drops_punctuation_and_collapses_spaces():
    assert normalize("  Food &  Dining!! ") == "food dining"
    assert normalize(None) == ""


def test_misspelled_category_matches():
    match = find_matching_category("groceris", CATEGORIES)
    assert match is not None
    assert match.key == "groceries"
    assert not match.exact
    assert match.score == pytest.approx(1 - 1 / 9)


def test_exact_match_on_name_or_key():
    by_name = find_matching_category("GROCERIES!", CATEGORIES)
    assert by_name.exact and by_name.score == 1.0
    by_key = find_matching_category("fun", CATEGORIES)
    assert by_key.key == "fun" and by_key.exact


def test_substring_match_scores_point_nine():
    match = find_matching_category("dining", CATEGORIES)
    assert match.key == "food"
    assert match.score == 0.9


def test_below_threshold_returns_none():
    assert find_matching_category("zzzzzz", CATEGORIES) is None
    assert find_matching_category("", CATEGORIES) is None
    assert find_matching_category("food", {}) is None


def test_find_all_matching_categories_is_sorted_and_capped():
    categories = {"a": "transport", "b": "transit", "c": "transfer", "d": "tax"}
    hits = find_all_matching_categories("trans", categories, threshold=0.5, max_results=2)
    assert len(hits) == 2
    assert hits[0].score >= hits[1].score


def test_plain_string_and_object_category_configs():
    class Cat:
        name = "Home & Utilities"

    assert find_matching_category("utilities", {"home": Cat()}).key == "home"
    assert find_matching_category("pets", {"pet": "Pets"}).exact
