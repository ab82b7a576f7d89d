"""
zCache - Generated Mask Cache

Memoizes PatternGenerator output per (mask-shaping spec fields, length).

Key properties:
- Single-flight: concurrent misses on one key run one generation; the other
  callers wait on the same Future and receive the same mask
- Distinct keys generate in parallel: the index lock only guards bookkeeping
- Bounded: LRU entry limit, age limit, optional byte limit
- Eviction drops the index entry only; masks already handed out stay valid
- Failures reach every waiter and are never cached

How it works:
1. Look up the key; a fresh entry is a hit
2. If another thread is generating the key, wait on its Future
3. Otherwise register a Future, generate outside the lock, publish the result

Author: ZSP Team
"""

import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from zsp.core.zpattern.generator import PatternGenerator
from zsp.core.zpattern.mask import AttentionMask
from zsp.core.zpattern.patterns import PatternSpec
from zsp.errors import InvalidParameterError

CacheKey = Tuple[Hashable, int]


@dataclass
class CacheEntry:
    """One cached mask."""
    mask: AttentionMask
    created_at: float
    last_access: float

    @property
    def nbytes(self) -> int:
        return self.mask.nbytes


class PatternCache:
    """
    Thread-safe single-flight cache of generated masks.

    Args:
        generator: Generator used on misses
        max_entries: LRU bound on cached masks
        max_age_seconds: Entries older than this are regenerated (None = no limit)
        max_bytes: Bound on total mask storage (None = no limit)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        generator: Optional[PatternGenerator] = None,
        max_entries: int = 64,
        max_age_seconds: Optional[float] = 3600.0,
        max_bytes: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise InvalidParameterError("max_entries must be positive")
        self.generator = generator or PatternGenerator()
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self.max_bytes = max_bytes
        self._clock = clock

        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._inflight: Dict[CacheKey, Future] = {}
        self._bytes = 0
        self._lock = threading.Lock()

        self.stats = {"hits": 0, "misses": 0, "generations": 0, "waits": 0, "evictions": 0}

    @staticmethod
    def make_key(spec: PatternSpec, sequence_length: Optional[int] = None) -> CacheKey:
        """Specs differing only in name, heads or head_dim share a mask."""
        n = spec.sequence_length if sequence_length is None else sequence_length
        return (spec.mask_key, n)

    def get_or_generate(self, spec: PatternSpec, sequence_length: Optional[int] = None) -> AttentionMask:
        """
        Return the cached mask for a spec, generating it at most once.

        Raises whatever the generator raises; the failure is not cached and
        the next call retries generation.
        """
        key = self.make_key(spec, sequence_length)

        with self._lock:
            entry = self._lookup_locked(key)
            if entry is not None:
                self.stats["hits"] += 1
                return entry.mask

            future = self._inflight.get(key)
            owner = future is None
            if owner:
                self.stats["misses"] += 1
                future = Future()
                self._inflight[key] = future
            else:
                self.stats["waits"] += 1

        if not owner:
            return future.result()

        try:
            mask = self.generator.generate(spec, key[1])
        except BaseException as exc:
            with self._lock:
                del self._inflight[key]
            future.set_exception(exc)
            raise

        with self._lock:
            del self._inflight[key]
            self.stats["generations"] += 1
            now = self._clock()
            self._entries[key] = CacheEntry(mask=mask, created_at=now, last_access=now)
            self._bytes += mask.nbytes
            self._evict_locked()
        future.set_result(mask)
        return mask

    def get(self, spec: PatternSpec, sequence_length: Optional[int] = None) -> Optional[AttentionMask]:
        """Cached mask or None; never generates."""
        key = self.make_key(spec, sequence_length)
        with self._lock:
            entry = self._lookup_locked(key)
            return entry.mask if entry is not None else None

    def contains(self, spec: PatternSpec, sequence_length: Optional[int] = None) -> bool:
        return self.get(spec, sequence_length) is not None

    def invalidate(self, spec: PatternSpec, sequence_length: Optional[int] = None) -> bool:
        """Drop one entry. Returns True if it was cached."""
        key = self.make_key(spec, sequence_length)
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._bytes -= entry.nbytes
            return True

    def clear(self) -> None:
        """Clear cache."""
        with self._lock:
            self._entries.clear()
            self._bytes = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self.stats["hits"] + self.stats["misses"] + self.stats["waits"]
            return {
                **self.stats,
                "entries": len(self._entries),
                "bytes": self._bytes,
                "in_flight": len(self._inflight),
                "hit_rate": self.stats["hits"] / lookups if lookups else 0.0,
            }

    # =========================================================================
    # Internals (caller holds _lock)
    # =========================================================================

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return self.max_age_seconds is not None and now - entry.created_at > self.max_age_seconds

    def _lookup_locked(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._expired(entry, now):
            self._remove_locked(key)
            return None
        entry.last_access = now
        self._entries.move_to_end(key)
        return entry

    def _remove_locked(self, key: CacheKey) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.nbytes
        self.stats["evictions"] += 1

    def _evict_locked(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if self._expired(e, now)]:
            self._remove_locked(key)

        # Oldest access first
        while len(self._entries) > self.max_entries:
            self._remove_locked(next(iter(self._entries)))
        while self.max_bytes is not None and self._bytes > self.max_bytes and self._entries:
            self._remove_locked(next(iter(self._entries)))
