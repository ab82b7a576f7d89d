"""
zPattern Mask - Attention Mask Storage

An AttentionMask is a square boolean relation: mask[i, j] is True when
query position i may attend to key position j.

Supports two representations behind one interface:
- Dense: one torch.bool tensor, one byte per cell (small sequences)
- Packed: numpy.packbits rows, one bit per cell (long sequences)

Masks are immutable once built. Every consumer reads them through row
blocks, so a packed mask is never expanded to dense as a whole.

Author: ZSP Team
"""

from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import torch

from zsp.errors import InvalidMaskError

# Target number of cells per row block when scanning a mask
BLOCK_CELLS = 1 << 22

# Population count for every byte value
_POPCOUNT = np.array([bin(i).count("1") for i in range(256)], dtype=np.uint8)


class MaskRepresentation(str, Enum):
    """Storage layouts for attention masks."""
    DENSE = "dense"
    PACKED = "packed"
    AUTO = "auto"

    def resolve(self, size: int, packed_threshold: int) -> "MaskRepresentation":
        """Pick a concrete layout; AUTO packs masks above the threshold."""
        if self is not MaskRepresentation.AUTO:
            return self
        return MaskRepresentation.PACKED if size > packed_threshold else MaskRepresentation.DENSE


@dataclass(frozen=True)
class MaskStatistics:
    """Counts derived from a mask. Never mutated independently of it."""
    total_elements: int
    non_zero_elements: int
    sparsity_ratio: float
    memory_reduction_ratio: float
    compute_reduction_ratio: float

    @classmethod
    def from_counts(cls, total_elements: int, non_zero_elements: int) -> "MaskStatistics":
        if total_elements <= 0:
            raise InvalidMaskError("Statistics are undefined for an empty mask")
        memory_reduction = 1.0 - non_zero_elements / total_elements
        return cls(
            total_elements=total_elements,
            non_zero_elements=non_zero_elements,
            sparsity_ratio=memory_reduction,
            memory_reduction_ratio=memory_reduction,
            # Skipped cells also skip their softmax and value products
            compute_reduction_ratio=min(0.99, memory_reduction * 1.2),
        )

    @property
    def density(self) -> float:
        return self.non_zero_elements / self.total_elements

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_elements": self.total_elements,
            "non_zero_elements": self.non_zero_elements,
            "sparsity_ratio": self.sparsity_ratio,
            "memory_reduction_ratio": self.memory_reduction_ratio,
            "compute_reduction_ratio": self.compute_reduction_ratio,
        }


# =============================================================================
# Storage backends
# =============================================================================

class MaskStorage:
    """Interface shared by the dense and packed layouts."""

    kind: MaskRepresentation

    def __init__(self, size: int):
        self.size = size

    def get(self, i: int, j: int) -> bool:
        raise NotImplementedError

    def row_block(self, start: int, stop: int) -> torch.Tensor:
        """Rows [start, stop) as a bool tensor of shape (stop - start, size)."""
        raise NotImplementedError

    def count_nonzero(self) -> int:
        raise NotImplementedError

    @property
    def nbytes(self) -> int:
        raise NotImplementedError


class DenseStorage(MaskStorage):
    """One byte per cell in a torch.bool tensor."""

    kind = MaskRepresentation.DENSE

    def __init__(self, data: torch.Tensor):
        super().__init__(data.shape[0])
        self._data = data

    @classmethod
    def from_blocks(cls, size: int, blocks: Iterable[Tuple[int, torch.Tensor]]) -> "DenseStorage":
        data = torch.zeros(size, size, dtype=torch.bool)
        for start, block in blocks:
            data[start:start + block.shape[0]] = block
        return cls(data)

    def get(self, i: int, j: int) -> bool:
        return bool(self._data[i, j])

    def row_block(self, start: int, stop: int) -> torch.Tensor:
        return self._data[start:stop].clone()

    def count_nonzero(self) -> int:
        return int(self._data.sum().item())

    @property
    def nbytes(self) -> int:
        return self._data.numel() * self._data.element_size()


class PackedStorage(MaskStorage):
    """One bit per cell; rows packed big-endian with numpy.packbits."""

    kind = MaskRepresentation.PACKED

    def __init__(self, packed: np.ndarray, size: int):
        super().__init__(size)
        self._packed = packed

    @classmethod
    def from_blocks(cls, size: int, blocks: Iterable[Tuple[int, torch.Tensor]]) -> "PackedStorage":
        packed = np.zeros((size, (size + 7) // 8), dtype=np.uint8)
        for start, block in blocks:
            packed[start:start + block.shape[0]] = np.packbits(block.numpy(), axis=1)
        return cls(packed, size)

    def get(self, i: int, j: int) -> bool:
        byte = self._packed[i, j >> 3]
        return bool((byte >> (7 - (j & 7))) & 1)

    def row_block(self, start: int, stop: int) -> torch.Tensor:
        rows = np.unpackbits(self._packed[start:stop], axis=1, count=self.size)
        return torch.from_numpy(rows.astype(np.bool_))

    def count_nonzero(self) -> int:
        # Padding bits are always zero, so a plain popcount is exact
        return int(_POPCOUNT[self._packed].sum(dtype=np.int64))

    @property
    def nbytes(self) -> int:
        return int(self._packed.nbytes)


_STORAGE = {
    MaskRepresentation.DENSE: DenseStorage,
    MaskRepresentation.PACKED: PackedStorage,
}


def storage_class(kind: MaskRepresentation):
    if kind is MaskRepresentation.AUTO:
        raise ValueError("Resolve AUTO to a concrete representation first")
    return _STORAGE[kind]


# =============================================================================
# AttentionMask
# =============================================================================

class AttentionMask:
    """
    Immutable square attention mask.

    Holds the PatternSpec it was generated from (None for masks built by
    hand) and lazily caches its MaskStatistics.
    """

    def __init__(self, storage: MaskStorage, spec: Any = None):
        if storage.size <= 0:
            raise InvalidMaskError("Attention masks must have at least one position")
        self._storage = storage
        self.spec = spec

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_dense(
        cls,
        data: Any,
        representation: MaskRepresentation = MaskRepresentation.DENSE,
        spec: Any = None,
        packed_threshold: int = 4096,
    ) -> "AttentionMask":
        """
        Build a mask from a 2-D boolean array-like.

        Accepts torch tensors, numpy arrays and nested lists. Ragged,
        non-square or empty input raises InvalidMaskError.
        """
        if isinstance(data, torch.Tensor):
            tensor = data.detach().to("cpu")
        else:
            if isinstance(data, (list, tuple)):
                lengths = {len(row) if hasattr(row, "__len__") else -1 for row in data}
                if len(lengths) > 1 or -1 in lengths:
                    raise InvalidMaskError("Mask rows must all have the same length")
            try:
                tensor = torch.as_tensor(np.asarray(data, dtype=np.bool_))
            except (TypeError, ValueError) as e:
                raise InvalidMaskError(f"Cannot interpret mask data: {e}") from e

        if tensor.dim() != 2 or tensor.shape[0] != tensor.shape[1]:
            raise InvalidMaskError(f"Mask must be square, got shape {tuple(tensor.shape)}")
        if tensor.shape[0] == 0:
            raise InvalidMaskError("Attention masks must have at least one position")

        tensor = tensor.to(torch.bool)
        size = tensor.shape[0]
        kind = MaskRepresentation(representation).resolve(size, packed_threshold)
        storage = storage_class(kind).from_blocks(size, [(0, tensor.clone())])
        return cls(storage, spec=spec)

    @classmethod
    def from_blocks(
        cls,
        size: int,
        blocks: Iterable[Tuple[int, torch.Tensor]],
        representation: MaskRepresentation,
        spec: Any = None,
    ) -> "AttentionMask":
        return cls(storage_class(representation).from_blocks(size, blocks), spec=spec)

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    @property
    def size(self) -> int:
        return self._storage.size

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.size, self.size)

    @property
    def representation(self) -> MaskRepresentation:
        return self._storage.kind

    @property
    def nbytes(self) -> int:
        return self._storage.nbytes

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, index: Tuple[int, int]) -> bool:
        i, j = index
        if not (0 <= i < self.size and 0 <= j < self.size):
            raise IndexError(f"Position ({i}, {j}) outside {self.size}x{self.size} mask")
        return self._storage.get(i, j)

    def row(self, i: int) -> torch.Tensor:
        """Keys visible to query i, as a bool tensor."""
        return self._storage.row_block(i, i + 1)[0]

    def default_block_rows(self) -> int:
        return max(1, BLOCK_CELLS // self.size)

    def iter_row_blocks(self, block_rows: Optional[int] = None) -> Iterator[Tuple[int, torch.Tensor]]:
        """Yield (start_row, bool block) pairs covering the whole mask."""
        step = block_rows or self.default_block_rows()
        for start in range(0, self.size, step):
            stop = min(self.size, start + step)
            yield start, self._storage.row_block(start, stop)

    def to_dense(self) -> torch.Tensor:
        """A fresh (size, size) bool tensor; mutating it leaves the mask intact."""
        return self._storage.row_block(0, self.size)

    def count_nonzero(self) -> int:
        return self._storage.count_nonzero()

    @cached_property
    def statistics(self) -> MaskStatistics:
        from .metrics import compute_statistics
        return compute_statistics(self)

    # -------------------------------------------------------------------------
    # Derivation (returns new masks)
    # -------------------------------------------------------------------------

    def with_relations(self, pairs: Sequence[Tuple[int, int]]) -> "AttentionMask":
        """Copy of this mask with the given (query, key) relations set."""
        dense = self.to_dense()
        for i, j in pairs:
            if not (0 <= i < self.size and 0 <= j < self.size):
                raise IndexError(f"Position ({i}, {j}) outside {self.size}x{self.size} mask")
            dense[i, j] = True
        storage = storage_class(self.representation).from_blocks(self.size, [(0, dense)])
        return AttentionMask(storage, spec=None)

    def to_representation(self, representation: MaskRepresentation) -> "AttentionMask":
        """Copy of this mask in another storage layout."""
        if representation is MaskRepresentation.AUTO:
            raise ValueError("Choose a concrete representation")
        if representation is self.representation:
            return self
        storage = storage_class(representation).from_blocks(self.size, self.iter_row_blocks())
        return AttentionMask(storage, spec=self.spec)

    def equals(self, other: "AttentionMask") -> bool:
        """Cell-by-cell equality regardless of representation."""
        if self.size != other.size:
            return False
        step = self.default_block_rows()
        for (start, a), (_, b) in zip(self.iter_row_blocks(step), other.iter_row_blocks(step)):
            if not torch.equal(a, b):
                return False
        return True

    def __repr__(self) -> str:
        family = getattr(getattr(self.spec, "family", None), "value", "custom")
        return f"AttentionMask(size={self.size}, family={family}, representation={self.representation.value})"


# =============================================================================
# Visualization
# =============================================================================

def sample_mask(mask: AttentionMask, sample_size: int = 100) -> List[List[bool]]:
    """Subsample a mask on a regular grid for heatmap display."""
    n = mask.size
    if n <= sample_size:
        return mask.to_dense().tolist()

    step = n // sample_size
    columns = torch.arange(sample_size) * step
    return [mask.row(i * step)[columns].tolist() for i in range(sample_size)]


def visualize_mask(mask: AttentionMask, max_size: int = 64) -> str:
    """
    Create ASCII visualization of an attention mask.

    Returns string representation for debugging.
    """
    grid = sample_mask(mask, max_size)
    size = len(grid)

    lines = []
    lines.append(f"Mask visualization ({size}x{size} of {mask.size}x{mask.size}):")
    lines.append("   " + "".join(f"{i % 10}" for i in range(min(size, 80))))

    for i in range(min(size, 40)):
        row = f"{i:2d}|"
        for j in range(min(size, 80)):
            row += "█" if grid[i][j] else "·"
        lines.append(row)

    if size > 40:
        lines.append("...")

    return "\n".join(lines)
