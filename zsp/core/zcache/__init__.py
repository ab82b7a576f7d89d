"""
zCache - Pattern Cache

Single-flight, bounded memoization of generated attention masks.
At most one generation runs per (spec, sequence_length) key at any time.
"""

from .pattern_cache import (
    CacheEntry,
    CacheKey,
    PatternCache,
)

__all__ = [
    "CacheEntry",
    "CacheKey",
    "PatternCache",
]
