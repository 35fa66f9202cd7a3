# tests/unit/test_result_cache.py
"""
针对 `trans_gate.cache` 模块的单元测试。

验证请求指纹的稳定性与区分度，以及结果缓存的 TTL、容量淘汰与命中统计。
"""

import pytest

from tests.helpers.fakes import FakeClock
from trans_gate.cache import ResultCache, fingerprint
from trans_gate.types import TranslationRequest, TranslationResult


@pytest.fixture
def sample_request() -> TranslationRequest:
    return TranslationRequest(text="Hello", target_language="de")


def _result(text: str) -> TranslationResult:
    return TranslationResult(success=True, text=text, language="de")


def test_fingerprint_is_stable_and_hides_text(sample_request: TranslationRequest) -> None:
    key = fingerprint(sample_request, "simple")
    assert key == fingerprint(
        TranslationRequest(text="Hello", target_language="de"), "simple"
    )
    assert len(key) == 64
    assert "Hello" not in key


@pytest.mark.parametrize(
    "other, strategy",
    [
        (TranslationRequest(text="Hello", target_language="fr"), "simple"),
        (TranslationRequest(text="Hello!", target_language="de"), "simple"),
        (TranslationRequest(text="Hello", target_language="de", system_prompt="p"), "simple"),
        (TranslationRequest(text="Hello", target_language="de", extras={"tone": "formal"}), "simple"),
        (TranslationRequest(text="Hello", target_language="de"), "enhanced"),
    ],
)
def test_fingerprint_distinguishes_every_input(
    sample_request: TranslationRequest, other: TranslationRequest, strategy: str
) -> None:
    assert fingerprint(sample_request, "simple") != fingerprint(other, strategy)


def test_cache_set_and_get_counts_hits_and_misses() -> None:
    cache = ResultCache()
    assert cache.get("k") is None
    cache.set("k", _result("Hallo"))
    cached = cache.get("k")
    assert cached is not None and cached.text == "Hallo"
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
    assert stats.hit_rate == pytest.approx(0.5)


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = ResultCache(ttl=10, timer=clock)
    cache.set("k", _result("Hallo"))
    clock.advance(5)
    assert cache.get("k") is not None
    clock.advance(6)
    assert cache.get("k") is None


def test_sweep_removes_expired_entries() -> None:
    clock = FakeClock()
    cache = ResultCache(ttl=10, timer=clock)
    cache.set("a", _result("A"))
    cache.set("b", _result("B"))
    clock.advance(11)
    cache.sweep()
    assert len(cache) == 0
    assert "a" not in cache


def test_least_recently_used_entry_is_evicted_first() -> None:
    cache = ResultCache(max_entries=2)
    cache.set("a", _result("A"))
    cache.set("b", _result("B"))
    cache.get("a")
    cache.set("c", _result("C"))
    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache


def test_clear_resets_entries_and_counters() -> None:
    cache = ResultCache()
    cache.set("a", _result("A"))
    cache.get("a")
    cache.clear()
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (0, 0, 0)
