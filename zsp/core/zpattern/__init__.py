"""
zPattern - Sparse Attention Pattern Generation

Deterministic construction of attention masks for seven families:
- longformer: sliding window + global tokens
- bigbird: sliding window + random blocks + global tokens
- strided: self + positions at multiples of a stride, bounded lobe
- local_global: independent left/right context, optionally causal
- fixed: symmetric band around the diagonal
- random: self + seeded random pairs up to a target density
- linformer: low-rank support proxy (first projection_dim keys)

Memory:
- Dense masks: 1 byte per cell (torch.bool)
- Packed masks: 1 bit per cell (numpy.packbits), used above 4096 positions

Usage:
    from zsp.core.zpattern import PatternSpec, PatternGenerator

    spec = PatternSpec.longformer(window_size=4, global_indices=(0,))
    mask = PatternGenerator().generate(spec, 10)

    print(mask.statistics.sparsity_ratio)
    print(visualize_mask(mask))
"""

from .patterns import (
    PatternFamily,
    PatternSpec,
    LongformerParams,
    BigBirdParams,
    StridedParams,
    LocalGlobalParams,
    FixedParams,
    RandomParams,
    LinformerParams,
    FamilyParams,
    FAMILY_PARAMS,
    PRESETS,
    build_spec,
    build_family_params,
    clamp_sparsity,
    get_preset,
    recommended_use_cases,
)

from .mask import (
    AttentionMask,
    MaskStatistics,
    MaskRepresentation,
    DenseStorage,
    PackedStorage,
    sample_mask,
    visualize_mask,
)

from .generator import (
    PatternGenerator,
    generate_mask,
    random_target_count,
)

from .metrics import (
    AttentionCost,
    compute_statistics,
    estimate_attention_cost,
    estimate_execution_time_ms,
    estimate_memory_bytes,
    estimate_memory_reduction,
    estimate_quality,
    estimate_speedup,
    spec_estimates,
)

__all__ = [
    # Specs
    "PatternFamily",
    "PatternSpec",
    "LongformerParams",
    "BigBirdParams",
    "StridedParams",
    "LocalGlobalParams",
    "FixedParams",
    "RandomParams",
    "LinformerParams",
    "FamilyParams",
    "FAMILY_PARAMS",
    "PRESETS",
    "build_spec",
    "build_family_params",
    "clamp_sparsity",
    "get_preset",
    "recommended_use_cases",
    # Masks
    "AttentionMask",
    "MaskStatistics",
    "MaskRepresentation",
    "DenseStorage",
    "PackedStorage",
    "sample_mask",
    "visualize_mask",
    # Generation
    "PatternGenerator",
    "generate_mask",
    "random_target_count",
    # Metrics
    "AttentionCost",
    "compute_statistics",
    "estimate_attention_cost",
    "estimate_execution_time_ms",
    "estimate_memory_bytes",
    "estimate_memory_reduction",
    "estimate_quality",
    "estimate_speedup",
    "spec_estimates",
]
