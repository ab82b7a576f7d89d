"""
ZSP Attention Mask Tests

Tests for mask storage, statistics and visualization.
"""

import numpy as np
import pytest
import torch

from zsp.core.zpattern.mask import (
    AttentionMask,
    MaskRepresentation,
    MaskStatistics,
    sample_mask,
    visualize_mask,
)
from zsp.core.zpattern.metrics import compute_statistics, estimate_memory_reduction, estimate_speedup, spec_estimates
from zsp.core.zpattern.patterns import PatternSpec
from zsp.errors import InvalidMaskError


def _identity(n: int, representation: str = "dense") -> AttentionMask:
    return AttentionMask.from_dense(torch.eye(n, dtype=torch.bool), representation=representation)


class TestMaskConstruction:
    """Test building masks from array-likes."""

    def test_from_nested_lists(self) -> None:
        """Nested lists of bools are accepted."""
        mask = AttentionMask.from_dense([[True, False], [True, True]])
        assert mask.size == 2
        assert mask.shape == (2, 2)
        assert mask[1, 0] is True
        assert mask[0, 1] is False

    def test_from_numpy(self) -> None:
        """numpy arrays are accepted."""
        mask = AttentionMask.from_dense(np.ones((3, 3), dtype=bool))
        assert mask.count_nonzero() == 9

    def test_ragged_rejected(self) -> None:
        """Rows of different length raise InvalidMaskError."""
        with pytest.raises(InvalidMaskError):
            AttentionMask.from_dense([[True, False], [True]])

    def test_non_square_rejected(self) -> None:
        """Non-square input raises InvalidMaskError."""
        with pytest.raises(InvalidMaskError):
            AttentionMask.from_dense(torch.ones(2, 3, dtype=torch.bool))

    def test_empty_rejected(self) -> None:
        """A zero-position mask is not a mask."""
        with pytest.raises(InvalidMaskError):
            AttentionMask.from_dense(torch.zeros(0, 0, dtype=torch.bool))

    def test_auto_representation(self) -> None:
        """AUTO packs masks above the threshold only."""
        small = AttentionMask.from_dense(torch.eye(8, dtype=torch.bool), representation="auto", packed_threshold=8)
        large = AttentionMask.from_dense(torch.eye(9, dtype=torch.bool), representation="auto", packed_threshold=8)
        assert small.representation is MaskRepresentation.DENSE
        assert large.representation is MaskRepresentation.PACKED

    def test_index_out_of_range(self) -> None:
        """Indexing outside the mask raises IndexError."""
        with pytest.raises(IndexError):
            _identity(3)[3, 0]


class TestMaskRepresentations:
    """Test that dense and packed masks agree cell by cell."""

    @pytest.mark.parametrize("n", [1, 7, 8, 13])
    def test_packed_matches_dense(self, n: int) -> None:
        """Packing preserves every cell, including rows not a multiple of 8."""
        data = torch.rand(n, n, generator=torch.Generator().manual_seed(n)) > 0.6
        dense = AttentionMask.from_dense(data, representation="dense")
        packed = AttentionMask.from_dense(data, representation="packed")

        assert torch.equal(packed.to_dense(), data)
        assert packed.count_nonzero() == int(data.sum())
        assert packed.equals(dense)
        for i in range(n):
            assert torch.equal(packed.row(i), data[i])

    def test_packed_is_smaller(self) -> None:
        """Bit-packing stores one bit per cell."""
        dense = _identity(64, "dense")
        packed = _identity(64, "packed")
        assert dense.nbytes == 64 * 64
        assert packed.nbytes == 64 * 8

    def test_to_representation_round_trip(self) -> None:
        """Converting layouts keeps contents."""
        dense = _identity(20)
        packed = dense.to_representation(MaskRepresentation.PACKED)
        assert packed.representation is MaskRepresentation.PACKED
        assert packed.equals(dense)
        assert dense.to_representation(MaskRepresentation.DENSE) is dense

    def test_row_blocks_cover_mask(self) -> None:
        """Row blocks tile the whole mask in order."""
        mask = _identity(10, "packed")
        starts = []
        rows = 0
        for start, block in mask.iter_row_blocks(block_rows=3):
            starts.append(start)
            rows += block.shape[0]
            assert block.shape[1] == 10
        assert starts == [0, 3, 6, 9]
        assert rows == 10


class TestMaskImmutability:
    """Test that masks cannot be changed through their views."""

    def test_to_dense_is_a_copy(self) -> None:
        """Mutating the dense copy leaves the mask intact."""
        mask = _identity(4)
        dense = mask.to_dense()
        dense[0, 3] = True
        assert mask[0, 3] is False

    def test_with_relations_returns_new_mask(self) -> None:
        """with_relations builds a new mask."""
        mask = _identity(4)
        wider = mask.with_relations([(0, 3), (2, 1)])
        assert wider[0, 3] and wider[2, 1]
        assert not mask[0, 3]
        assert wider.count_nonzero() == 6

    def test_with_relations_out_of_range(self) -> None:
        """Relations outside the mask raise IndexError."""
        with pytest.raises(IndexError):
            _identity(4).with_relations([(0, 4)])


class TestMaskStatistics:
    """Test mask statistics."""

    def test_identity_statistics(self) -> None:
        """Statistics agree with the nonzero count."""
        stats = _identity(10).statistics
        assert stats.total_elements == 100
        assert stats.non_zero_elements == 10
        assert stats.sparsity_ratio == pytest.approx(0.9)
        assert stats.memory_reduction_ratio == pytest.approx(0.9)
        assert stats.compute_reduction_ratio == pytest.approx(0.99)
        assert stats.density == pytest.approx(0.1)

    def test_compute_reduction_scaling(self) -> None:
        """Compute reduction is 1.2 × memory reduction below the cap."""
        stats = MaskStatistics.from_counts(100, 50)
        assert stats.compute_reduction_ratio == pytest.approx(0.6)

    def test_full_mask_has_zero_sparsity(self) -> None:
        """A dense mask saves nothing."""
        stats = compute_statistics(AttentionMask.from_dense(torch.ones(4, 4, dtype=torch.bool)))
        assert stats.sparsity_ratio == 0.0
        assert stats.compute_reduction_ratio == 0.0

    def test_zero_total_rejected(self) -> None:
        """Statistics of an empty relation are undefined."""
        with pytest.raises(InvalidMaskError):
            MaskStatistics.from_counts(0, 0)


class TestVisualization:
    """Test ASCII rendering."""

    def test_small_mask_rendered_in_full(self) -> None:
        """Masks within max_size are not subsampled."""
        text = visualize_mask(_identity(3))
        lines = text.splitlines()
        assert lines[0] == "Mask visualization (3x3 of 3x3):"
        assert lines[2] == " 0|█··"
        assert lines[4] == " 2|··█"

    def test_large_mask_is_sampled(self) -> None:
        """Large masks are sampled on a regular grid."""
        grid = sample_mask(_identity(200, "packed"), sample_size=50)
        assert len(grid) == 50
        assert all(grid[i][i] for i in range(50))
        assert "(20x20 of 200x200)" in visualize_mask(_identity(200), max_size=20)


class TestSpecEstimates:
    """Test the spec-level memory and speedup estimates."""

    def test_family_corrections(self) -> None:
        """Windowed families pay bookkeeping; Linformer has a floor."""
        assert estimate_memory_reduction(PatternSpec.fixed(sparsity_ratio=0.9)) == pytest.approx(0.9)
        assert estimate_memory_reduction(PatternSpec.longformer(sparsity_ratio=0.9)) == pytest.approx(0.81)
        assert estimate_memory_reduction(PatternSpec.linformer(sparsity_ratio=0.5)) == pytest.approx(0.7)

    def test_speedup(self) -> None:
        """Speedup grows with memory reduction, adjusted per family."""
        assert estimate_speedup(PatternSpec.fixed(sparsity_ratio=0.5)) == pytest.approx(2.0)
        assert estimate_speedup(PatternSpec.strided(sparsity_ratio=0.5)) == pytest.approx(2.4)
        assert estimate_speedup(PatternSpec.bigbird(sparsity_ratio=0.5)) == pytest.approx(1.52)
        assert estimate_speedup(PatternSpec.linformer(sparsity_ratio=0.99)) == pytest.approx(2.98)

    def test_spec_estimates(self) -> None:
        """Both estimates are reported together."""
        spec = PatternSpec.fixed(sparsity_ratio=0.5)
        assert spec_estimates(spec) == {
            "estimated_memory_reduction": pytest.approx(0.5),
            "estimated_speedup": pytest.approx(2.0),
        }
