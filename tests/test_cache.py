from datetime import date
from decimal import Decimal

import pytest

from expense_import.cache import TTLCache, history_digest, settings_hash, transaction_fingerprint
from expense_import.models import LabeledTransaction, ParsedTransaction


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("a", 1)
    clock.now += 9
    assert cache.get("a") == 1
    clock.now += 1
    assert cache.get("a") is None
    assert (cache.hits, cache.misses) == (1, 1)


def test_oldest_entry_evicted_when_full():
    cache = TTLCache(max_entries=2, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert cache.get("a") is None
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_get_or_compute_only_computes_once():
    calls = []
    cache = TTLCache(clock=FakeClock())
    for _ in range(3):
        cache.get_or_compute("k", lambda: calls.append(1) or "v")
    assert calls == [1]


def test_purge_expired():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=5, clock=clock)
    cache.set("a", 1)
    clock.now += 10
    cache.set("b", 2)
    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(ttl_seconds=0)


def test_fingerprint_ignores_case_and_spacing():
    a = ParsedTransaction(date(2024, 1, 15), "Starbucks  Store", Decimal("5.50"))
    b = ParsedTransaction(date(2024, 1, 15), "STARBUCKS STORE ", Decimal("5.50"))
    c = ParsedTransaction(date(2024, 1, 16), "STARBUCKS STORE", Decimal("5.50"))
    assert transaction_fingerprint(a) == transaction_fingerprint(b)
    assert transaction_fingerprint(a) != transaction_fingerprint(c)


def test_settings_hash_ignores_keyword_order():
    assert settings_hash(["food"], {"food": ["a", "b"]}) == settings_hash(
        ["food"], {"food": ["b", "a"]}
    )
    assert settings_hash(["food"]) != settings_hash(["food", "fun"])


def test_history_digest_tracks_labels_not_just_size():
    fun = [LabeledTransaction("ZQX BISTROLAND 12", "fun")]
    home = [LabeledTransaction("ZQX BISTROLAND 12", "home")]
    assert history_digest(fun) != history_digest(home)
    assert history_digest(fun) == history_digest(list(fun))
    assert history_digest(None) == history_digest([])
