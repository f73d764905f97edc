"""Tests for the context window cache."""

import threading

import pytest

from context_engine.models.request import ConversationMessage
from context_engine.services.context_cache import ContextCache, make_cache_key
from context_engine.services.structuring_service import ContextStructurer


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def window(test_settings, token_counter):
    """A small rendered window."""
    structurer = ContextStructurer(test_settings, token_counter)
    messages = [ConversationMessage(role="user", content="hello")]
    return structurer.fallback_window(messages, 100)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def key(query: str = "q", **overrides) -> str:
    params = {
        "conversation_id": "c1",
        "agent_id": "a1",
        "recent_messages": [ConversationMessage(role="user", content="hi")],
        "token_budget": 1000,
        "goal": "balanced",
        "layout": "by_source",
        "output_format": "markdown",
    }
    params.update(overrides)
    return make_cache_key(query, **params)


class TestCacheKey:
    """Test cache key derivation."""

    def test_query_is_normalized(self):
        """Test case and whitespace differences share a key."""
        assert key("Deploy  Status") == key("deploy status ")

    def test_every_input_matters(self):
        """Test each request dimension changes the key."""
        base = key()

        assert key(conversation_id="c2") != base
        assert key(agent_id="a2") != base
        assert key(token_budget=999) != base
        assert key(goal="diversity") != base
        assert key(layout="flat") != base
        assert key(output_format="xml") != base
        assert key(extras=["episodic", "", ""]) != base
        assert key(recent_messages=[ConversationMessage(role="user", content="bye")]) != base

    def test_only_recent_turns_fingerprinted(self):
        """Test turns older than the fingerprint window are ignored."""
        recent = [ConversationMessage(role="user", content=f"m{i}") for i in range(6)]
        older_changed = [ConversationMessage(role="user", content="changed")] + recent[1:]

        assert key(recent_messages=recent, fingerprint_turns=5) == key(
            recent_messages=older_changed, fingerprint_turns=5
        )


class TestContextCache:
    """Test cache operations."""

    def test_put_and_get_returns_same_object(self, window, clock):
        """Test a hit returns the stored window itself."""
        cache = ContextCache(max_entries=8, shards=2, clock=clock)

        cache.put("k", window, "c1")

        assert cache.get("k") is window
        assert cache.stats().hits == 1

    def test_miss(self, clock):
        """Test unknown keys miss."""
        cache = ContextCache(max_entries=8, shards=2, clock=clock)

        assert cache.get("missing") is None
        assert cache.stats().misses == 1
        assert cache.stats().hit_rate == 0.0

    def test_ttl_expiry(self, window, clock):
        """Test entries expire after their time-to-live."""
        cache = ContextCache(max_entries=8, ttl_seconds=10, shards=1, clock=clock)
        cache.put("k", window)

        clock.now = 9.9
        assert cache.get("k") is window

        clock.now = 10.0
        assert cache.get("k") is None
        assert cache.stats().expirations == 1
        assert len(cache) == 0

    def test_lru_eviction(self, window, clock):
        """Test the least recently used entry is evicted when full."""
        cache = ContextCache(max_entries=2, shards=1, clock=clock)
        cache.put("a", window)
        cache.put("b", window)
        cache.get("a")

        cache.put("c", window)

        assert cache.get("b") is None
        assert cache.get("a") is window
        assert cache.get("c") is window
        assert cache.stats().evictions == 1

    def test_invalidate_conversation(self, window, clock):
        """Test invalidation removes one conversation's entries."""
        cache = ContextCache(max_entries=8, shards=4, clock=clock)
        cache.put("k1", window, "c1")
        cache.put("k2", window, "c1")
        cache.put("k3", window, "c2")

        assert cache.invalidate("c1") == 2
        assert cache.get("k3") is window
        assert cache.invalidate() == 1
        assert len(cache) == 0

    def test_purge_expired(self, window, clock):
        """Test purging removes only expired entries."""
        cache = ContextCache(max_entries=8, ttl_seconds=5, shards=2, clock=clock)
        cache.put("old", window)
        clock.now = 3.0
        cache.put("new", window)
        clock.now = 6.0

        assert cache.purge_expired() == 1
        assert cache.get("new") is window

    def test_invalid_arguments(self):
        """Test construction arguments are validated."""
        with pytest.raises(ValueError):
            ContextCache(shards=0)
        with pytest.raises(ValueError):
            ContextCache(max_entries=2, shards=4)
        with pytest.raises(ValueError):
            ContextCache(ttl_seconds=0)

    def test_from_settings(self, test_settings):
        """Test construction from settings."""
        cache = ContextCache.from_settings(test_settings)

        assert cache.max_entries == test_settings.cache_max_entries
        assert len(cache.stats().per_shard) == test_settings.cache_shards

    def test_concurrent_access(self, window):
        """Test concurrent puts and gets keep the cache consistent."""
        cache = ContextCache(max_entries=64, shards=4)

        def worker(offset: int) -> None:
            for i in range(200):
                cache.put(f"k{(offset + i) % 100}", window)
                cache.get(f"k{i % 100}")

        threads = [threading.Thread(target=worker, args=(n * 7,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache) <= 64
        stats = cache.stats()
        assert stats.hits + stats.misses == 8 * 200
