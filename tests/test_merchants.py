import pytest

from expense_import.merchants import (
    extract_base_merchant,
    group_by_merchant,
    is_same_merchant,
    merchant_category_frequency,
    normalize_merchant_name,
)
from expense_import.models import LabeledTransaction


@pytest.mark.parametrize(
    "raw",
    [
        "SQ *BLUE BOTTLE COFFEE #123",
        "BLUE BOTTLE COFFEE STORE 456",
        "Blue Bottle Coffee 01/15",
        "BLUE BOTTLE COFFEE REF:ABC123",
    ],
)
def test_noise_is_stripped_to_one_merchant_key(raw):
    assert normalize_merchant_name(raw) == "blue bottle coffee"


def test_corporate_suffix_and_processor_words():
    assert normalize_merchant_name("ACME INC. POS PURCHASE") == "acme"
    assert normalize_merchant_name("PAYPAL *SPOTIFY 4029357733") == "spotify"


def test_empty_input():
    assert normalize_merchant_name(None) == ""
    assert normalize_merchant_name("#123 01/15") == ""
    assert extract_base_merchant("") == ""


def test_base_merchant_uses_first_word_or_two_when_short():
    assert extract_base_merchant("STARBUCKS STORE 123 DOWNTOWN") == "starbucks"
    assert extract_base_merchant("AT THE GRILL") == "at the"


def test_is_same_merchant():
    assert is_same_merchant("SQ *BLUE BOTTLE COFFEE #1", "BLUE BOTTLE COFFEE STORE 9")
    assert is_same_merchant("STARBUCKS STORE 1", "STARBUCKS RESERVE ROASTERY")
    assert not is_same_merchant("STARBUCKS", "PEETS COFFEE")
    assert not is_same_merchant("", "STARBUCKS")


def test_grouping_and_frequency():
    history = [
        LabeledTransaction("STARBUCKS STORE 1", "food"),
        LabeledTransaction("STARBUCKS STORE 2", "food"),
        LabeledTransaction("STARBUCKS STORE 3", "fun"),
        LabeledTransaction("SHELL OIL 55501234", "transport"),
    ]
    groups = group_by_merchant(history)
    assert len(groups["starbucks"]) == 3
    freq = merchant_category_frequency(history)
    assert freq["starbucks"]["food"] == 2
    assert freq["shell oil"]["transport"] == 1
