"""
zPattern Metrics - Mask Statistics and Cost Estimates

compute_statistics() is an exact scan of a mask. Everything else in this
module is a closed-form *estimate* derived from mask statistics or spec
parameters. Nothing here is measured and nothing is randomized; callers
that need measured timings plug a benchmark into ComparisonEngine.

Memory Complexity:
- Dense attention weights: heads × n² × 4 bytes (fp32)
- Sparse attention weights: heads × nnz × 4 bytes

Author: ZSP Team
"""

from dataclasses import dataclass
from typing import Any, Dict

from zsp.errors import InvalidMaskError

from .mask import AttentionMask, MaskStatistics
from .patterns import PatternFamily, PatternSpec

BYTES_PER_WEIGHT = 4         # fp32 attention weights
FLOPS_PER_PAIR_PER_DIM = 4   # QK^T, softmax-weighted V, both directions
MS_PER_PAIR = 0.001          # simplified timing model

QUALITY_BASE = 0.95
QUALITY_FLOOR = 0.70
QUALITY_SPARSITY_PENALTY = 0.15


def compute_statistics(mask: AttentionMask) -> MaskStatistics:
    """Count the nonzero cells of a mask (pure scan)."""
    if mask is None or mask.size <= 0:
        raise InvalidMaskError("Statistics are undefined for an empty mask")
    total = mask.size * mask.size
    return MaskStatistics.from_counts(total, mask.count_nonzero())


@dataclass(frozen=True)
class AttentionCost:
    """Estimated cost of one attention layer under a mask."""
    dense_flops: int
    sparse_flops: int
    dense_memory_bytes: int
    sparse_memory_bytes: int

    @property
    def flop_reduction(self) -> float:
        return 1.0 - self.sparse_flops / max(self.dense_flops, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dense_flops": self.dense_flops,
            "sparse_flops": self.sparse_flops,
            "dense_memory_bytes": self.dense_memory_bytes,
            "sparse_memory_bytes": self.sparse_memory_bytes,
            "flop_reduction": self.flop_reduction,
        }


def estimate_attention_cost(
    stats: MaskStatistics,
    num_heads: int,
    head_dim: int,
    batch_size: int = 1,
) -> AttentionCost:
    """Scale dense attention FLOPs and weight memory by mask density."""
    total = stats.total_elements
    nnz = stats.non_zero_elements
    per_pair_flops = batch_size * num_heads * head_dim * FLOPS_PER_PAIR_PER_DIM
    per_pair_bytes = batch_size * num_heads * BYTES_PER_WEIGHT
    return AttentionCost(
        dense_flops=per_pair_flops * total,
        sparse_flops=per_pair_flops * nnz,
        dense_memory_bytes=per_pair_bytes * total,
        sparse_memory_bytes=per_pair_bytes * nnz,
    )


def estimate_memory_bytes(stats: MaskStatistics, num_heads: int, batch_size: int = 1) -> int:
    """Attention-weight bytes kept under the mask."""
    return batch_size * num_heads * stats.non_zero_elements * BYTES_PER_WEIGHT


def estimate_execution_time_ms(stats: MaskStatistics) -> float:
    """Estimated milliseconds for one head, linear in attended pairs."""
    return stats.non_zero_elements * MS_PER_PAIR


def estimate_quality(sparsity_ratio: float) -> float:
    """Estimated quality retention; falls linearly with sparsity to a floor."""
    return max(QUALITY_FLOOR, QUALITY_BASE - sparsity_ratio * QUALITY_SPARSITY_PENALTY)


def estimate_memory_reduction(spec: PatternSpec) -> float:
    """
    Memory reduction expected from a spec before generating it.

    Starts from the target sparsity and corrects for per-family overhead.
    """
    reduction = spec.sparsity_ratio
    if spec.family in (PatternFamily.LONGFORMER, PatternFamily.BIGBIRD):
        reduction *= 0.9  # pattern bookkeeping
    elif spec.family is PatternFamily.LINFORMER:
        reduction = max(reduction, 0.7)  # projection overhead
    return reduction


def estimate_speedup(spec: PatternSpec) -> float:
    """Speedup over dense attention expected from a spec."""
    speedup = 1.0 + estimate_memory_reduction(spec) * 2.0
    if spec.family is PatternFamily.STRIDED:
        speedup *= 1.2
    elif spec.family is PatternFamily.BIGBIRD:
        speedup *= 0.8
    elif spec.family is PatternFamily.LINFORMER:
        speedup = min(speedup, 3.0)  # limited by projection
    return speedup


def spec_estimates(spec: PatternSpec) -> Dict[str, float]:
    """Expected effect of a spec, reported when it is created or listed."""
    return {
        "estimated_memory_reduction": estimate_memory_reduction(spec),
        "estimated_speedup": estimate_speedup(spec),
    }
