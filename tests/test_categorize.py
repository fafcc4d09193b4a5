from datetime import date
from decimal import Decimal

import pytest

from expense_import.cache import TTLCache
from expense_import.categorize import (
    CategoryAutoMapper,
    add_custom_keyword,
    keyword_score,
    learn_from_history,
    merge_keywords,
    suggestion_stats,
    word_overlap,
)
from expense_import.corrections import InMemoryCorrectionStore
from expense_import.models import (
    CategorySuggestion,
    LabeledTransaction,
    ParsedTransaction,
    SuggestionSource,
)


def _tx(description, amount="10.00"):
    return ParsedTransaction(date=date(2024, 1, 15), description=description, amount=Decimal(amount))


def test_keyword_score_tiers():
    assert keyword_score("Starbucks", ["starbucks"]) == (10, ["starbucks"])
    assert keyword_score("STARBUCKS STORE 123", ["starbucks"]) == (5, ["starbucks"])
    assert keyword_score("MCDONALDS123", ["mcdonalds"]) == (2, ["mcdonalds"])
    assert keyword_score("CHICK-FIL-A #44", ["chick-fil-a"]) == (5, ["chick-fil-a"])
    assert keyword_score("NOTHING", ["starbucks"]) == (0, [])


def test_keyword_suggestion():
    s = CategoryAutoMapper().suggest_category("STARBUCKS STORE 123")
    assert s.category_key == "food"
    assert s.confidence == pytest.approx(0.5)
    assert s.source is SuggestionSource.KEYWORD_MATCH
    assert s.matched_keywords == ("starbucks",)


@pytest.mark.parametrize("description", [None, "", "   ", "XQZ 00042"])
def test_unknown_or_blank_falls_back_to_other(description):
    s = CategoryAutoMapper().suggest_category(description)
    assert s == CategorySuggestion("other", 0.0, SuggestionSource.DEFAULT)


def test_only_available_categories_are_suggested():
    s = CategoryAutoMapper().suggest_category("STARBUCKS", available_categories=("groceries", "other"))
    assert s.category_key == "other"
    assert s.source is SuggestionSource.DEFAULT


def test_custom_keywords_extend_builtin_lists():
    mapper = CategoryAutoMapper()
    s = mapper.suggest_category("BLUE BOTTLE 44", custom_keywords={"food": ["blue bottle"]})
    assert s.category_key == "food"
    assert "blue bottle" in s.matched_keywords
    merged = merge_keywords(("food", "pets"), {"pets": ["petco"]})
    assert "starbucks" in merged["food"]
    assert merged["pets"] == ("petco",)


def test_add_custom_keyword_returns_new_mapping():
    original = {"food": ("tacos",)}
    updated = add_custom_keyword(original, "food", "  Blue-Bottle ")
    assert updated["food"] == ("tacos", "blue bottle")
    assert original == {"food": ("tacos",)}
    assert add_custom_keyword(updated, "food", "tacos") == updated


def test_word_overlap_ignores_short_words():
    assert word_overlap("big cafe", "Big Cafe of") == 1.0
    assert word_overlap("a b", "c d") == 0.0


def test_learned_merchant_beats_keywords():
    past = [LabeledTransaction("STARBUCKS STORE 123", "groceries")]
    s = CategoryAutoMapper().suggest_category("STARBUCKS STORE 999", past_transactions=past)
    assert s.category_key == "groceries"
    assert s.source is SuggestionSource.LEARNED_MERCHANT
    assert s.confidence == pytest.approx(0.95)


def test_learning_ignores_unavailable_categories():
    past = [LabeledTransaction("STARBUCKS STORE 123", "coffee")]
    s = CategoryAutoMapper().suggest_category("STARBUCKS STORE 999", past_transactions=past)
    assert s.category_key == "food"
    assert s.source is SuggestionSource.KEYWORD_MATCH


def test_learn_from_history_majority_and_exact():
    past = [
        LabeledTransaction("SQ *BLUE BOTTLE COFFEE #1", "food"),
        LabeledTransaction("BLUE BOTTLE COFFEE STORE 9", "food"),
        LabeledTransaction("BLUE BOTTLE COFFEE 01/02", "fun"),
    ]
    s = learn_from_history("BLUE BOTTLE COFFEE #77", past)
    assert s.category_key == "food"
    assert s.source is SuggestionSource.LEARNED_MERCHANT
    assert s.confidence == pytest.approx(0.7 + 0.25 * 2 / 3, abs=1e-4)

    assert learn_from_history("anything", []) is None
    exact = learn_from_history("#12 01/15", [LabeledTransaction("#12 01/15", "home")])
    assert exact.source is SuggestionSource.LEARNED_EXACT
    assert exact.confidence == 1.0


def test_user_corrections_take_precedence():
    corrections = InMemoryCorrectionStore()
    mapper = CategoryAutoMapper(corrections=corrections)
    mapper.record_correction("AMAZON MKTPLACE #12", "other", "home")

    s = mapper.suggest_category("AMAZON MKTPLACE #99")
    assert s.category_key == "home"
    assert s.source is SuggestionSource.USER_CORRECTION
    assert len(corrections) == 1


def test_split_corrections_below_threshold_are_ignored():
    corrections = InMemoryCorrectionStore()
    mapper = CategoryAutoMapper(corrections=corrections)
    for category in ("home", "fun", "food"):
        mapper.record_correction("AMAZON MKTPLACE", "other", category)
    s = mapper.suggest_category("AMAZON MKTPLACE")
    assert s.source is SuggestionSource.KEYWORD_MATCH
    assert s.category_key == "other"


def test_record_correction_requires_a_store():
    with pytest.raises(RuntimeError):
        CategoryAutoMapper().record_correction("X", None, "food")


def test_batch_suggestions_are_cached_and_invalidated_on_correction():
    mapper = CategoryAutoMapper(corrections=InMemoryCorrectionStore(), cache=TTLCache())
    txs = [_tx("STARBUCKS STORE 1"), _tx("SHELL OIL 123")]

    first = mapper.suggest_categories(txs)
    assert [s.category_key for s in first] == ["food", "transport"]
    assert len(mapper.cache) == 2

    again = mapper.suggest_categories(txs)
    assert again == first
    assert mapper.cache.hits == 2

    mapper.record_correction("SHELL OIL 123", "transport", "home")
    assert len(mapper.cache) == 0
    assert mapper.suggest_categories(txs)[1].category_key == "home"


def test_cache_scope_changes_with_settings():
    mapper = CategoryAutoMapper()
    txs = [_tx("BLUE BOTTLE 44")]
    assert mapper.suggest_categories(txs)[0].category_key == "other"
    custom = mapper.suggest_categories(txs, custom_keywords={"food": ["blue bottle"]})
    assert custom[0].category_key == "food"


def test_cache_scope_follows_history_labels():
    mapper = CategoryAutoMapper()
    txs = [_tx("ZQX BISTROLAND 12")]
    fun = [LabeledTransaction("ZQX BISTROLAND 12", "fun")]
    home = [LabeledTransaction("ZQX BISTROLAND 12", "home")]

    assert mapper.suggest_categories(txs, past_transactions=fun)[0].category_key == "fun"
    relabelled = mapper.suggest_categories(txs, past_transactions=home)
    assert relabelled[0].category_key == "home"
    assert relabelled == CategoryAutoMapper().suggest_categories(txs, past_transactions=home)


def test_corrections_from_a_shared_store_bypass_the_cache():
    shared = InMemoryCorrectionStore()
    reader = CategoryAutoMapper(corrections=shared)
    writer = CategoryAutoMapper(corrections=shared)
    txs = [_tx("SHELL OIL 123")]

    assert reader.suggest_categories(txs)[0].category_key == "transport"
    writer.record_correction("SHELL OIL 123", "transport", "home")

    (suggestion,) = reader.suggest_categories(txs)
    assert suggestion.category_key == "home"
    assert suggestion.source is SuggestionSource.USER_CORRECTION


def test_suggestion_stats_buckets():
    stats = suggestion_stats(
        [
            CategorySuggestion("food", 0.9, SuggestionSource.KEYWORD_MATCH),
            CategorySuggestion("food", 0.5, SuggestionSource.KEYWORD_MATCH),
            CategorySuggestion("other", 0.0, SuggestionSource.DEFAULT),
        ]
    )
    assert (stats.high_confidence, stats.medium_confidence, stats.low_confidence) == (1, 1, 1)
    assert stats.by_category == {"food": 2, "other": 1}
    assert stats.by_source == {"keyword_match": 2, "default": 1}
