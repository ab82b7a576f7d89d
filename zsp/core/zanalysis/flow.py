"""
zAnalysis Flow - Reachability and Path Lengths

Treats a mask as the adjacency matrix of a directed graph (edge i -> j
when query i attends key j) and measures how information can travel.

Exact mode:
- Reachability via boolean Floyd-Warshall closure,
  reach[i][j] |= reach[i][k] & reach[k][j] for every pivot k. O(n³).
- Path lengths via level-synchronous BFS from every source, expanding all
  frontiers at once with a sparse adjacency product per level.

Sampled mode (large masks):
- BFS from a seeded random subset of sources, optionally hop-limited.
- Reachability is estimated from the sampled rows.

Both modes honour a CancellationToken. A cancelled or timed-out run stops
at the next pivot/level and reports what it has, marked "partial". A
max_hops limit that leaves nodes unexplored is reported as "hop_limited".

Author: ZSP Team
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import torch

from zsp.core.zpattern.mask import AttentionMask
from zsp.errors import InvalidParameterError, ResourceExceededError

# Pivots between cancellation checks in the closure loop
_CLOSURE_CHECK_EVERY = 16


class FlowMode(str, Enum):
    """How information-flow figures were obtained."""
    EXACT = "exact"
    SAMPLED = "sampled"
    HOP_LIMITED = "hop_limited"  # max_hops cut BFS short; path figures are lower bounds
    PARTIAL = "partial"


@dataclass(frozen=True)
class FlowConfig:
    """Limits for information-flow analysis."""
    mode: str = "auto"            # auto, exact, or sampled
    exact_limit: int = 1024       # largest mask analyzed exactly
    sample_sources: int = 64      # BFS sources in sampled mode
    max_hops: Optional[int] = None
    seed: int = 0

    def __post_init__(self):
        if self.mode not in ("auto", "exact", "sampled"):
            raise InvalidParameterError(f"Unknown flow mode: {self.mode!r}")
        if self.exact_limit <= 0 or self.sample_sources <= 0:
            raise InvalidParameterError("exact_limit and sample_sources must be positive")
        if self.max_hops is not None and self.max_hops <= 0:
            raise InvalidParameterError("max_hops must be positive or None")

    def resolve(self, sequence_length: int) -> FlowMode:
        """Pick exact or sampled for a mask of the given size."""
        if self.mode == "sampled":
            return FlowMode.SAMPLED
        if sequence_length <= self.exact_limit:
            return FlowMode.EXACT
        if self.mode == "exact":
            raise ResourceExceededError(sequence_length, self.exact_limit)
        return FlowMode.SAMPLED


class CancellationToken:
    """
    Cooperative cancellation for long analyses.

    Cancelled explicitly with cancel(), or implicitly once the optional
    timeout has elapsed.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False


@dataclass
class FlowResult:
    """Information-flow figures for one mask."""
    mode: FlowMode
    reachability_ratio: float
    average_path_length: float
    max_path_length: int
    path_count: int
    levels_explored: int
    sampled_sources: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "reachability_ratio": self.reachability_ratio,
            "average_path_length": self.average_path_length,
            "max_path_length": self.max_path_length,
            "path_count": self.path_count,
            "levels_explored": self.levels_explored,
            "sampled_sources": self.sampled_sources,
        }


@dataclass
class _PathStats:
    path_sum: int = 0
    path_count: int = 0
    max_length: int = 0
    reached: int = 0
    levels: int = 0
    complete: bool = True
    hop_limited: bool = False

    @property
    def average(self) -> float:
        return self.path_sum / self.path_count if self.path_count else 0.0


def _is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.cancelled


# =============================================================================
# Algorithms
# =============================================================================

def transitive_closure(
    adjacency: torch.Tensor,
    cancel_token: Optional[CancellationToken] = None,
) -> Tuple[torch.Tensor, bool]:
    """
    Boolean Floyd-Warshall closure of a square adjacency matrix.

    Returns (reach, complete). reach[i, j] is True when j is reachable from
    i in one or more hops. When cancelled, reach holds the closure over the
    pivots processed so far (a lower bound) and complete is False.
    """
    reach = adjacency.to(torch.bool).clone()
    n = reach.shape[0]
    for k in range(n):
        if k % _CLOSURE_CHECK_EVERY == 0 and _is_cancelled(cancel_token):
            return reach, False
        reach |= reach[:, k:k + 1] & reach[k:k + 1, :]
    return reach, True


def _sparse_transpose(mask: AttentionMask) -> torch.Tensor:
    """A^T as a sparse float tensor, built block by block."""
    n = mask.size
    index_parts = []
    for start, block in mask.iter_row_blocks():
        nz = block.nonzero()
        if nz.numel():
            # edge query -> key is stored at (key, query)
            index_parts.append(torch.stack([nz[:, 1], nz[:, 0] + start]))
    if index_parts:
        indices = torch.cat(index_parts, dim=1)
    else:
        indices = torch.zeros(2, 0, dtype=torch.long)
    values = torch.ones(indices.shape[1], dtype=torch.float32)
    return torch.sparse_coo_tensor(indices, values, (n, n)).coalesce()


def bfs_path_lengths(
    adjacency_t: torch.Tensor,
    first_hop: torch.Tensor,
    sources: torch.Tensor,
    max_hops: Optional[int] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> _PathStats:
    """
    Multi-source BFS over hop distances.

    Args:
        adjacency_t: Sparse A^T (n × n)
        first_hop: Bool (n × k); column c marks nodes one hop from sources[c]
        sources: Source node for each column
        max_hops: Stop after this many levels; sets hop_limited when nodes remain
        cancel_token: Checked before each level

    Path statistics cover pairs (source, node) with node != source. A source
    that reaches itself through a cycle still counts as reachable.
    """
    n, k = first_hop.shape
    is_self = torch.zeros(n, k, dtype=torch.bool)
    is_self[sources, torch.arange(k)] = True

    stats = _PathStats()
    frontier = first_hop.clone()
    visited = frontier.clone()
    level = 1

    while True:
        found = frontier & ~is_self
        count = int(found.sum().item())
        if count:
            stats.path_sum += level * count
            stats.path_count += count
            stats.max_length = level
        stats.reached += int(frontier.sum().item())
        stats.levels = level

        if _is_cancelled(cancel_token):
            stats.complete = False
            break

        expanded = torch.sparse.mm(adjacency_t, frontier.to(torch.float32)) > 0
        frontier = expanded & ~visited
        if not frontier.any():
            break
        if max_hops is not None and level >= max_hops:
            # Unvisited nodes remain one hop past the limit
            stats.hop_limited = True
            break
        visited |= frontier
        level += 1

    return stats


def _result_mode(stats: _PathStats, finished: FlowMode) -> FlowMode:
    if not stats.complete:
        return FlowMode.PARTIAL
    if stats.hop_limited:
        return FlowMode.HOP_LIMITED
    return finished


def analyze_flow(
    mask: AttentionMask,
    config: Optional[FlowConfig] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> FlowResult:
    """Reachability and path-length figures for a mask."""
    config = config or FlowConfig()
    n = mask.size
    mode = config.resolve(n)

    if mode is FlowMode.EXACT:
        dense = mask.to_dense()
        reach, closed = transitive_closure(dense, cancel_token)
        reachability = int(reach.sum().item()) / (n * n)
        if not closed:
            return FlowResult(
                mode=FlowMode.PARTIAL,
                reachability_ratio=reachability,
                average_path_length=0.0,
                max_path_length=0,
                path_count=0,
                levels_explored=0,
            )

        sources = torch.arange(n)
        stats = bfs_path_lengths(
            dense.t().to(torch.float32).to_sparse(),
            dense.t().contiguous(),
            sources,
            max_hops=config.max_hops,
            cancel_token=cancel_token,
        )
        return FlowResult(
            mode=_result_mode(stats, FlowMode.EXACT),
            reachability_ratio=reachability,
            average_path_length=stats.average,
            max_path_length=stats.max_length,
            path_count=stats.path_count,
            levels_explored=stats.levels,
        )

    # Sampled: BFS from a seeded subset of sources
    generator = torch.Generator()
    generator.manual_seed(config.seed)
    k = min(config.sample_sources, n)
    sources = torch.randperm(n, generator=generator)[:k].sort().values
    first_hop = torch.stack([mask.row(int(s)) for s in sources], dim=1)

    stats = bfs_path_lengths(
        _sparse_transpose(mask),
        first_hop,
        sources,
        max_hops=config.max_hops,
        cancel_token=cancel_token,
    )
    return FlowResult(
        mode=_result_mode(stats, FlowMode.SAMPLED),
        reachability_ratio=stats.reached / (k * n),
        average_path_length=stats.average,
        max_path_length=stats.max_length,
        path_count=stats.path_count,
        levels_explored=stats.levels,
        sampled_sources=k,
    )
