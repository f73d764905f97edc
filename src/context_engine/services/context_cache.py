"""Sharded LRU cache of assembled context windows."""

import hashlib
import json
import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from context_engine.models.context import ContextWindow
from context_engine.models.request import ConversationMessage
from context_engine.utils.similarity import normalize_text

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached window with its expiry (monotonic seconds)."""

    key: str
    window: ContextWindow
    conversation_id: str
    created_at: float
    expires_at: float
    hit_count: int = 0


@dataclass
class CacheStats:
    """Cache statistics."""

    entries: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    per_shard: list[int] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class _Shard:
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self.entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.lock = threading.Lock()


def make_cache_key(
    query: str,
    conversation_id: str,
    agent_id: str,
    recent_messages: Sequence[ConversationMessage],
    token_budget: int,
    goal: str,
    layout: str,
    output_format: str,
    fingerprint_turns: int = 5,
    extras: Sequence[str] = (),
) -> str:
    """SHA-256 key over everything that determines a window.

    Args:
        query: Request query (normalized before hashing)
        conversation_id: Conversation identity
        agent_id: Agent identity
        recent_messages: Conversation turns, oldest first
        token_budget: Effective token budget
        goal: Optimization goal value
        layout: Structure layout value
        output_format: Output format value
        fingerprint_turns: Number of most recent turns folded into the key
        extras: Further request options that change the window

    Returns:
        Hex digest
    """
    turns = list(recent_messages)[-fingerprint_turns:] if fingerprint_turns else []
    fingerprint = hashlib.sha256(
        json.dumps([[m.role, m.content] for m in turns], ensure_ascii=False).encode("utf-8")
    ).hexdigest()
    payload = json.dumps(
        [
            normalize_text(query),
            conversation_id,
            agent_id,
            fingerprint,
            token_budget,
            goal,
            layout,
            output_format,
            *extras,
        ],
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ContextCache:
    """TTL + LRU cache of immutable context windows.

    Keys are spread over independently locked shards; each shard evicts its
    least recently used entry when full. Windows are frozen, so a hit
    returns the stored object itself.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 300.0,
        shards: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        if max_entries < shards:
            raise ValueError("max_entries must be >= shards")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        capacity = math.ceil(max_entries / shards)
        self._shards = [_Shard(capacity) for _ in range(shards)]
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @classmethod
    def from_settings(cls, settings) -> "ContextCache":
        return cls(
            max_entries=settings.cache_max_entries,
            ttl_seconds=settings.cache_ttl_seconds,
            shards=settings.cache_shards,
        )

    def _shard(self, key: str) -> _Shard:
        digest = hashlib.sha256(key.encode("utf-8")).digest()
        return self._shards[int.from_bytes(digest[:4], "big") % len(self._shards)]

    def _count(self, hits: int = 0, misses: int = 0, evictions: int = 0, expirations: int = 0) -> None:
        with self._stats_lock:
            self._hits += hits
            self._misses += misses
            self._evictions += evictions
            self._expirations += expirations

    def get(self, key: str) -> ContextWindow | None:
        """Return the cached window for a key, or None when absent or expired."""
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is not None and now >= entry.expires_at:
                del shard.entries[key]
                entry = None
                expired = True
            else:
                expired = False
            if entry is not None:
                shard.entries.move_to_end(key)
                entry.hit_count += 1

        if entry is None:
            self._count(misses=1, expirations=int(expired))
            logger.debug(f"Context cache miss for {key[:12]}")
            return None
        self._count(hits=1)
        logger.debug(f"Context cache hit for {key[:12]}")
        return entry.window

    def put(self, key: str, window: ContextWindow, conversation_id: str = "") -> None:
        """Store a window, evicting the shard's least recently used entry if full."""
        shard = self._shard(key)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            window=window,
            conversation_id=conversation_id,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        evicted = 0
        with shard.lock:
            if key in shard.entries:
                shard.entries.move_to_end(key)
            shard.entries[key] = entry
            while len(shard.entries) > shard.capacity:
                shard.entries.popitem(last=False)
                evicted += 1
        if evicted:
            self._count(evictions=evicted)

    def invalidate(self, conversation_id: str | None = None) -> int:
        """Drop entries of one conversation, or everything when None.

        Returns:
            Number of entries removed
        """
        removed = 0
        for shard in self._shards:
            with shard.lock:
                if conversation_id is None:
                    removed += len(shard.entries)
                    shard.entries.clear()
                    continue
                keys = [
                    key
                    for key, entry in shard.entries.items()
                    if entry.conversation_id == conversation_id
                ]
                for key in keys:
                    del shard.entries[key]
                removed += len(keys)
        return removed

    def purge_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                keys = [key for key, entry in shard.entries.items() if now >= entry.expires_at]
                for key in keys:
                    del shard.entries[key]
                removed += len(keys)
        if removed:
            self._count(expirations=removed)
        return removed

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    def stats(self) -> CacheStats:
        per_shard = [len(shard.entries) for shard in self._shards]
        with self._stats_lock:
            return CacheStats(
                entries=sum(per_shard),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                per_shard=per_shard,
            )
