import time

import pytest

import llm_cache.cache as cache_mod
from llm_cache.cache import LLMCache
from llm_cache.errors import KeySerializationError


@pytest.fixture
def clock(monkeypatch):
    t = {"now": 1000.0}

    def fake_monotonic():
        return t["now"]

    monkeypatch.setattr(cache_mod.time, "monotonic", fake_monotonic)
    return t

@pytest.fixture
def cache():
    return LLMCache(max_size=5, default_ttl=60)

def test_cache_set_get_hit(cache):
    key = {"a": 1, "b": 2}
    value = "test_value"

    cache.set(key, value)

    assert cache.get(key) == value
    assert cache.get_stats()["hits"] == 1

def test_cache_miss_unknown(cache):
    assert cache.get("non_existent") is None
    assert cache.get_stats()["misses"] == 1

def test_cache_miss_expired_real_clock():
    cache = LLMCache(default_ttl=60)
    cache.set("expire_me", "foo", ttl=0.001)

    time.sleep(0.01)

    assert cache.get("expire_me") is None
    assert cache.misses == 1
    assert len(cache) == 0

def test_cache_expiry_is_strictly_after_deadline(cache, clock):
    cache.set("k", "v", ttl=10)

    clock["now"] += 10
    assert cache.get("k") == "v"

    clock["now"] += 0.001
    assert cache.get("k") is None

def test_cache_key_normalization(cache):
    # These two dicts are effectively same but defined with different key order
    key1 = {"a": 1, "b": {"x": [1, 2], "y": None}}
    key2 = {"b": {"y": None, "x": [1, 2]}, "a": 1}

    cache.set(key1, "stable_key")

    assert cache.get(key2) == "stable_key"
    assert len(cache) == 1

def test_repeated_hits_count_and_keep_value(cache):
    value = {"score": 80}
    cache.set("conv", value)

    for expected_hits in range(1, 4):
        assert cache.get("conv") is value
        assert cache.hits == expected_hits

    assert cache.entry("conv").hit_count == 3

def test_overwrite_resets_entry_without_eviction(cache, clock):
    cache.set("a", 1)
    cache.get("a")
    clock["now"] += 1
    cache.set("a", 2)

    entry = cache.entry("a")
    assert entry.value == 2
    assert entry.hit_count == 0
    assert entry.created_at == clock["now"]
    assert len(cache) == 1

def test_eviction_is_fifo_not_lru(clock):
    cache = LLMCache(max_size=2, default_ttl=100)

    cache.set("a", 1)
    clock["now"] += 1
    cache.set("b", 2)
    clock["now"] += 1

    # Reading "a" does not protect it
    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3

def test_capacity_bound_drops_first_inserted():
    cache = LLMCache(max_size=5, default_ttl=100)
    for i in range(6):
        cache.set({"key": f"entry-{i}"}, f"value-{i}")

    assert len(cache) == 5
    assert cache.get({"key": "entry-0"}) is None
    for i in range(1, 6):
        assert cache.get({"key": f"entry-{i}"}) == f"value-{i}"

def test_eviction_ties_use_insertion_order(clock):
    # Same timestamp for every insert
    cache = LLMCache(max_size=2, default_ttl=100)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 10
    assert cache.get("c") == 3

def test_end_to_end_example():
    cache = LLMCache(max_size=2, default_ttl=10)
    cache.set("A", 1)
    cache.set("B", 2)
    cache.set("C", 3)

    assert cache.get("A") is None
    assert cache.get("B") == 2
    assert cache.get("C") == 3

def test_has_does_not_touch_counters(cache, clock):
    cache.set("k", "v", ttl=5)

    assert cache.has("k") is True
    assert cache.has("missing") is False

    clock["now"] += 6
    assert cache.has("k") is False
    assert len(cache) == 0
    assert cache.hits == 0
    assert cache.misses == 0

def test_invalidate(cache):
    cache.set({"key": "toDelete"}, "value")

    assert cache.invalidate({"key": "toDelete"}) is True
    assert cache.invalidate({"key": "toDelete"}) is False
    assert cache.get({"key": "toDelete"}) is None
    assert cache.get_stats()["hits"] == 0

def test_clear_resets_entries_and_stats(cache):
    cache.set("1", "a")
    cache.set("2", "b")
    cache.get("1")
    cache.get("3")

    cache.clear()

    assert len(cache) == 0
    assert cache.get_stats() == {
        "hits": 0,
        "misses": 0,
        "size": 0,
        "hit_rate": "0%",
        "max_size": 5,
        "default_ttl": 60.0,
    }

def test_cleanup_removes_only_expired(cache, clock):
    cache.set("1", "a", ttl=0.1)
    cache.set("2", "b", ttl=0.5)
    cache.set("3", "c", ttl=1.0)

    clock["now"] += 0.3

    assert cache.cleanup() == 1
    assert len(cache) == 2
    assert cache.cleanup() == 0

def test_hit_rate_formatting(cache):
    cache.set("hit", "v")
    for _ in range(3):
        cache.get("hit")
    cache.get("miss-1")
    cache.get("miss-2")

    stats = cache.get_stats()
    assert stats["hits"] == 3
    assert stats["misses"] == 2
    assert stats["hit_rate"] == "60.0%"

def test_hit_rate_rounds_to_one_decimal(cache):
    cache.set("exists", "value")
    cache.get("exists")
    cache.get("exists")
    cache.get("missing")

    assert cache.get_stats()["hit_rate"] == "66.7%"

def test_cyclic_key_fails_before_touching_state(cache):
    cyclic = {"a": 1}
    cyclic["self"] = cyclic

    with pytest.raises(KeySerializationError):
        cache.get(cyclic)
    with pytest.raises(KeySerializationError):
        cache.set(cyclic, "v")

    assert cache.get_stats()["misses"] == 0
    assert len(cache) == 0

def test_invalid_max_size():
    with pytest.raises(ValueError):
        LLMCache(max_size=0)
