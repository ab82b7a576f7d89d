"""
ZSP Pattern Cache Tests

Tests for single-flight generation, eviction and failure handling.
"""

import threading
import time
from typing import List

import pytest

from zsp.core.zcache.pattern_cache import PatternCache
from zsp.core.zpattern.generator import PatternGenerator
from zsp.core.zpattern.mask import AttentionMask
from zsp.core.zpattern.patterns import PatternSpec
from zsp.errors import InvalidParameterError


class SlowGenerator(PatternGenerator):
    """Generator that counts calls and holds each one open for a while."""

    def __init__(self, delay: float = 0.2, fail: bool = False):
        super().__init__(representation="dense")
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self._calls_lock = threading.Lock()

    def generate(self, spec, sequence_length=None):
        with self._calls_lock:
            self.calls += 1
        time.sleep(self.delay)
        if self.fail:
            raise InvalidParameterError("generation failed")
        return super().generate(spec, sequence_length)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCacheBasics:
    """Test hits, misses and keys."""

    def test_second_call_hits(self, cache: PatternCache) -> None:
        """The second lookup returns the same mask object."""
        spec = PatternSpec.fixed()
        first = cache.get_or_generate(spec, 16)
        second = cache.get_or_generate(spec, 16)
        assert first is second
        stats = cache.get_stats()
        assert stats["misses"] == 1
        assert stats["hits"] == 1
        assert stats["generations"] == 1
        assert stats["hit_rate"] == pytest.approx(0.5)

    def test_length_is_part_of_key(self, cache: PatternCache) -> None:
        """Different lengths are cached separately."""
        spec = PatternSpec.fixed()
        assert cache.get_or_generate(spec, 8).size == 8
        assert cache.get_or_generate(spec, 9).size == 9
        assert len(cache) == 2

    def test_cost_fields_share_entry(self, cache: PatternCache) -> None:
        """Specs differing only in heads or name reuse the mask."""
        a = PatternSpec.fixed(num_heads=4, name="a")
        b = PatternSpec.fixed(num_heads=32, name="b")
        assert cache.get_or_generate(a, 10) is cache.get_or_generate(b, 10)

    def test_peek_never_generates(self, cache: PatternCache) -> None:
        """get() and contains() do not generate."""
        spec = PatternSpec.fixed()
        assert cache.get(spec, 8) is None
        assert not cache.contains(spec, 8)
        assert cache.get_stats()["generations"] == 0

    def test_invalidate_and_clear(self, cache: PatternCache) -> None:
        """Dropped entries are regenerated on the next lookup."""
        spec = PatternSpec.fixed()
        cache.get_or_generate(spec, 8)
        assert cache.invalidate(spec, 8)
        assert not cache.invalidate(spec, 8)
        cache.get_or_generate(spec, 8)
        cache.clear()
        assert len(cache) == 0
        assert cache.total_bytes == 0
        assert cache.get_stats()["generations"] == 2

    def test_invalid_bounds(self) -> None:
        """max_entries must be positive."""
        with pytest.raises(InvalidParameterError):
            PatternCache(max_entries=0)


class TestEviction:
    """Test LRU, age and byte bounds."""

    def test_lru_bound(self) -> None:
        """The least recently used entry goes first."""
        cache = PatternCache(PatternGenerator(representation="dense"), max_entries=2)
        spec = PatternSpec.fixed()
        cache.get_or_generate(spec, 4)
        cache.get_or_generate(spec, 5)
        cache.get_or_generate(spec, 4)  # touch 4
        cache.get_or_generate(spec, 6)
        assert cache.contains(spec, 4)
        assert not cache.contains(spec, 5)
        assert cache.contains(spec, 6)
        assert cache.get_stats()["evictions"] == 1

    def test_age_bound(self) -> None:
        """Entries older than max_age_seconds are regenerated."""
        clock = FakeClock()
        cache = PatternCache(PatternGenerator(representation="dense"), max_age_seconds=10, clock=clock)
        spec = PatternSpec.fixed()
        first = cache.get_or_generate(spec, 8)
        clock.now = 5
        assert cache.get_or_generate(spec, 8) is first
        clock.now = 20
        second = cache.get_or_generate(spec, 8)
        assert second is not first
        assert second.equals(first)

    def test_byte_bound(self) -> None:
        """Total storage stays under max_bytes."""
        cache = PatternCache(PatternGenerator(representation="dense"), max_bytes=150)
        spec = PatternSpec.fixed()
        cache.get_or_generate(spec, 10)  # 100 bytes
        cache.get_or_generate(spec, 7)   # 49 bytes
        assert cache.total_bytes == 149
        cache.get_or_generate(spec, 5)   # 25 bytes, evicts the 10x10 mask
        assert not cache.contains(spec, 10)
        assert cache.total_bytes == 74

    def test_evicted_mask_stays_valid(self) -> None:
        """Callers keep masks that were evicted from the index."""
        cache = PatternCache(PatternGenerator(representation="dense"), max_entries=1)
        spec = PatternSpec.fixed(half_width=1)
        held = cache.get_or_generate(spec, 6)
        cache.get_or_generate(spec, 7)
        assert not cache.contains(spec, 6)
        assert held.count_nonzero() == 16


@pytest.mark.concurrency
class TestSingleFlight:
    """Test concurrent access."""

    def _run(self, cache: PatternCache, specs_and_lengths, results: List, errors: List) -> List[threading.Thread]:
        barrier = threading.Barrier(len(specs_and_lengths))

        def worker(spec, n):
            barrier.wait()
            try:
                results.append(cache.get_or_generate(spec, n))
            except InvalidParameterError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=args) for args in specs_and_lengths]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        return threads

    def test_concurrent_misses_generate_once(self) -> None:
        """Eight threads asking for one key trigger one generation."""
        generator = SlowGenerator(delay=0.3)
        cache = PatternCache(generator)
        spec = PatternSpec.fixed()
        results: List[AttentionMask] = []
        errors: List[Exception] = []

        self._run(cache, [(spec, 32)] * 8, results, errors)

        assert not errors
        assert generator.calls == 1
        assert len(results) == 8
        assert all(mask is results[0] for mask in results)
        stats = cache.get_stats()
        assert stats["generations"] == 1
        assert stats["misses"] == 1
        assert stats["waits"] + stats["hits"] == 7
        assert stats["in_flight"] == 0

    def test_distinct_keys_generate_in_parallel(self) -> None:
        """Different keys do not wait on each other."""
        generator = SlowGenerator(delay=0.3)
        cache = PatternCache(generator)
        spec = PatternSpec.fixed()
        results: List[AttentionMask] = []
        errors: List[Exception] = []

        start = time.monotonic()
        self._run(cache, [(spec, n) for n in (8, 9, 10, 11)], results, errors)
        elapsed = time.monotonic() - start

        assert generator.calls == 4
        assert len(results) == 4
        # Serialized generation would take at least 1.2 s
        assert elapsed < 1.1

    def test_failure_reaches_waiters_and_is_not_cached(self) -> None:
        """Every waiter sees the error; the next call retries."""
        generator = SlowGenerator(delay=0.3, fail=True)
        cache = PatternCache(generator)
        spec = PatternSpec.fixed()
        results: List[AttentionMask] = []
        errors: List[Exception] = []

        self._run(cache, [(spec, 16)] * 4, results, errors)

        assert not results
        assert len(errors) == 4
        assert generator.calls == 1
        assert len(cache) == 0
        assert cache.get_stats()["in_flight"] == 0

        generator.fail = False
        generator.delay = 0.0
        assert cache.get_or_generate(spec, 16).size == 16
        assert generator.calls == 2
