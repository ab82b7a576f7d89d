"""
zPattern Generator - Deterministic Mask Construction

Turns a PatternSpec into an AttentionMask:

    generator = PatternGenerator()
    mask = generator.generate(PatternSpec.longformer(window_size=4), 10)

Each family registers a planner with plan_rows(). A planner does the
per-mask setup once (random block choices, global index sets) and returns
a callable producing any contiguous range of rows. Masks are assembled
block by block, so bit-packed masks never exist in dense form.

Random choices (bigbird blocks, random cells) come from a torch.Generator
seeded with the spec's random_seed: the same spec always yields the same
mask. The random family reseeds per row, so it never holds more than one
row block of state.

Author: ZSP Team
"""

import math
from functools import singledispatch
from typing import Callable, Optional

import numpy as np
import torch

from zsp.errors import InvalidParameterError, UnsupportedFamilyError

from .mask import BLOCK_CELLS, AttentionMask, MaskRepresentation
from .patterns import (
    BigBirdParams,
    FixedParams,
    LinformerParams,
    LocalGlobalParams,
    LongformerParams,
    PatternFamily,
    PatternSpec,
    RandomParams,
    StridedParams,
)

# rows(start, stop) -> bool tensor of shape (stop - start, n)
RowBuilder = Callable[[int, int], torch.Tensor]


# =============================================================================
# Shared building blocks
# =============================================================================

def _band(start: int, stop: int, n: int, left: int, right: int) -> torch.Tensor:
    """Rows where key j satisfies i - left <= j <= i + right."""
    rows = torch.arange(start, stop).unsqueeze(1)
    cols = torch.arange(n).unsqueeze(0)
    offset = cols - rows
    return (offset >= -left) & (offset <= right)


def _diagonal(block: torch.Tensor, start: int) -> None:
    rows = torch.arange(block.shape[0])
    block[rows, rows + start] = True


def _apply_globals(block: torch.Tensor, start: int, stop: int, global_idx: torch.Tensor) -> None:
    """Global positions attend to, and are attended by, every position."""
    if global_idx.numel() == 0:
        return
    block[:, global_idx] = True
    local = global_idx[(global_idx >= start) & (global_idx < stop)]
    block[local - start, :] = True


def _seeded(seed: int) -> torch.Generator:
    generator = torch.Generator()
    generator.manual_seed(seed)
    return generator


# =============================================================================
# Family planners
# =============================================================================

@singledispatch
def plan_rows(params, spec: PatternSpec, n: int) -> RowBuilder:
    raise UnsupportedFamilyError(type(params).__name__, [f.value for f in PatternFamily])


@plan_rows.register
def _plan_longformer(params: LongformerParams, spec: PatternSpec, n: int) -> RowBuilder:
    half = params.window_size // 2
    global_idx = torch.tensor([g for g in params.global_indices if g < n], dtype=torch.long)

    def rows(start: int, stop: int) -> torch.Tensor:
        block = _band(start, stop, n, half, half)
        _apply_globals(block, start, stop, global_idx)
        return block

    return rows


@plan_rows.register
def _plan_bigbird(params: BigBirdParams, spec: PatternSpec, n: int) -> RowBuilder:
    half = params.window_size // 2
    block_size = params.block_size
    num_blocks = math.ceil(n / block_size)

    # Block-level relation: each block picks targets, and targets attend back
    block_links = torch.zeros(num_blocks, num_blocks, dtype=torch.bool)
    if params.num_random_blocks > 0:
        targets = torch.randint(
            0, num_blocks, (num_blocks, params.num_random_blocks),
            generator=_seeded(params.random_seed),
        )
        sources = torch.arange(num_blocks).unsqueeze(1).expand_as(targets)
        block_links[sources.reshape(-1), targets.reshape(-1)] = True
        block_links |= block_links.t().clone()

    num_global = math.floor(n * params.global_token_ratio)
    global_idx = torch.arange(num_global, dtype=torch.long)
    col_blocks = torch.arange(n) // block_size

    def rows(start: int, stop: int) -> torch.Tensor:
        block = _band(start, stop, n, half, half)
        row_blocks = torch.arange(start, stop) // block_size
        block |= block_links[row_blocks][:, col_blocks]
        _apply_globals(block, start, stop, global_idx)
        return block

    return rows


@plan_rows.register
def _plan_strided(params: StridedParams, spec: PatternSpec, n: int) -> RowBuilder:
    stride = params.stride_size
    radius = params.lobe_radius

    # Columns k * stride + offset for k >= 1
    positions = torch.arange(n)
    strided_cols = torch.zeros(n, dtype=torch.bool)
    for offset in params.offsets:
        shifted = positions - offset
        strided_cols |= (shifted >= stride) & (shifted % stride == 0)

    def rows(start: int, stop: int) -> torch.Tensor:
        within = _band(start, stop, n, radius, radius)
        block = within & strided_cols.unsqueeze(0)
        _diagonal(block, start)
        return block

    return rows


@plan_rows.register
def _plan_local_global(params: LocalGlobalParams, spec: PatternSpec, n: int) -> RowBuilder:
    left = params.effective_left
    right = params.effective_right  # zero when causal

    def rows(start: int, stop: int) -> torch.Tensor:
        return _band(start, stop, n, left, right)

    return rows


@plan_rows.register
def _plan_fixed(params: FixedParams, spec: PatternSpec, n: int) -> RowBuilder:
    width = params.half_width

    def rows(start: int, stop: int) -> torch.Tensor:
        return _band(start, stop, n, width, width)

    return rows


def random_target_count(n: int, sparsity_ratio: float) -> int:
    """Nonzero count a random mask is filled to: ceil(n² (1 - sparsity)), at least n."""
    # round() absorbs float noise such as 1 - 0.7 = 0.30000000000000004
    target = math.ceil(round(n * n * (1.0 - sparsity_ratio), 9))
    return min(n * n, max(n, target))


def _row_seed(seed: int, row: int) -> int:
    return (seed * 0x9E3779B97F4A7C15 + row) % (1 << 63)


@plan_rows.register
def _plan_random(params: RandomParams, spec: PatternSpec, n: int) -> RowBuilder:
    # Self-attention first. The extra cells form a uniform subset of the
    # off-diagonal cells: per-row counts are multivariate hypergeometric,
    # then each row picks its columns uniformly.
    extra = random_target_count(n, spec.sparsity_ratio) - n
    per_row = np.zeros(n, dtype=np.int64)
    if extra > 0:
        rng = np.random.default_rng(params.random_seed)
        per_row = rng.multivariate_hypergeometric(
            np.full(n, n - 1, dtype=np.int64), extra, method="marginals"
        )
    row_generator = torch.Generator()

    def rows(start: int, stop: int) -> torch.Tensor:
        block = torch.zeros(stop - start, n, dtype=torch.bool)
        _diagonal(block, start)
        for offset, i in enumerate(range(start, stop)):
            k = int(per_row[i])
            if k == 0:
                continue
            # Seeded per row, so block boundaries never change the mask
            row_generator.manual_seed(_row_seed(params.random_seed, i))
            keys = torch.rand(n, generator=row_generator)
            keys[i] = 2.0  # diagonal already set
            block[offset, keys.topk(k, largest=False).indices] = True
        return block

    return rows


@plan_rows.register
def _plan_linformer(params: LinformerParams, spec: PatternSpec, n: int) -> RowBuilder:
    support = min(params.projection_dim, n)

    def rows(start: int, stop: int) -> torch.Tensor:
        block = torch.zeros(stop - start, n, dtype=torch.bool)
        block[:, :support] = True
        _diagonal(block, start)
        return block

    return rows


# =============================================================================
# Generator
# =============================================================================

class PatternGenerator:
    """
    Stateless mask generator.

    Args:
        representation: Storage layout; AUTO packs masks above packed_threshold
        packed_threshold: Sequence length above which AUTO picks bit-packing
        block_rows: Rows built per step (default keeps blocks near 4M cells)
    """

    def __init__(
        self,
        representation: MaskRepresentation = MaskRepresentation.AUTO,
        packed_threshold: int = 4096,
        block_rows: Optional[int] = None,
    ):
        self.representation = MaskRepresentation(representation)
        self.packed_threshold = packed_threshold
        self.block_rows = block_rows

    def generate(self, spec: PatternSpec, sequence_length: Optional[int] = None) -> AttentionMask:
        """
        Build the mask for a spec.

        Args:
            spec: Pattern to build
            sequence_length: Positions in the mask (defaults to spec.sequence_length)

        Returns:
            AttentionMask with its MaskStatistics already computed
        """
        n = spec.sequence_length if sequence_length is None else sequence_length
        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            raise InvalidParameterError(f"sequence_length must be a positive integer, got {n!r}")

        rows = plan_rows(spec.params, spec, n)
        step = self.block_rows or max(1, BLOCK_CELLS // n)
        blocks = ((start, rows(start, min(n, start + step))) for start in range(0, n, step))

        kind = self.representation.resolve(n, self.packed_threshold)
        mask = AttentionMask.from_blocks(n, blocks, kind, spec=spec)
        mask.statistics  # computed once, cached on the mask
        return mask


def generate_mask(spec: PatternSpec, sequence_length: Optional[int] = None, **kwargs) -> AttentionMask:
    """Convenience wrapper around PatternGenerator.generate."""
    return PatternGenerator(**kwargs).generate(spec, sequence_length)
