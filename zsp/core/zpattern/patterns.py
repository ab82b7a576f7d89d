"""
zPattern Specs - Sparse Attention Pattern Definitions

A PatternSpec describes what to build: one pattern family plus its
parameters. Families form a closed set; each carries only its own
parameters:

1. **Longformer**: sliding window + global tokens (full rows and columns)
2. **BigBird**: sliding window + random blocks + global tokens
3. **Strided**: self + fixed strided columns within a bounded lobe
4. **Local/Global**: asymmetric local window, optionally causal
5. **Fixed**: constant-width band around the diagonal
6. **Random**: self + uniformly random pairs up to a target density
7. **Linformer**: low-rank proxy, every query sees the first k keys

Specs are frozen and hashable so they can key the pattern cache.

Author: ZSP Team
"""

import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from zsp.errors import InvalidParameterError, UnsupportedFamilyError


class PatternFamily(str, Enum):
    """Supported sparse attention pattern families."""
    STRIDED = "strided"
    FIXED = "fixed"
    RANDOM = "random"
    LOCAL_GLOBAL = "local_global"
    BIGBIRD = "bigbird"
    LONGFORMER = "longformer"
    LINFORMER = "linformer"

    @classmethod
    def parse(cls, value: Union[str, "PatternFamily"]) -> "PatternFamily":
        """Resolve a family name, raising UnsupportedFamilyError if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedFamilyError(value, [f.value for f in cls]) from None


# =============================================================================
# Validation helpers
# =============================================================================

def _require_int(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameterError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        qualifier = "positive" if minimum == 1 else f">= {minimum}"
        raise InvalidParameterError(f"{name} must be {qualifier}, got {value}")
    return value


def _require_int_tuple(name: str, values: Any, minimum: int = 0) -> Tuple[int, ...]:
    if isinstance(values, (str, bytes)) or not hasattr(values, "__iter__"):
        raise InvalidParameterError(f"{name} must be a list of integers, got {values!r}")
    return tuple(_require_int(f"{name}[]", v, minimum) for v in values)


# =============================================================================
# Family parameters (closed variant set)
# =============================================================================

# Strided lobe half-width, in strides, when max_stride_hops is unset
DEFAULT_STRIDE_HOPS = 2


@dataclass(frozen=True)
class LongformerParams:
    """Sliding window of radius window_size // 2 plus global indices."""
    family: ClassVar[PatternFamily] = PatternFamily.LONGFORMER

    window_size: int = 512
    global_indices: Tuple[int, ...] = (0, 1, 2, 3)  # CLS, SEP, etc.

    def __post_init__(self):
        _require_int("window_size", self.window_size, 1)
        object.__setattr__(
            self, "global_indices",
            tuple(sorted(set(_require_int_tuple("global_indices", self.global_indices)))),
        )


@dataclass(frozen=True)
class BigBirdParams:
    """Local window + seeded random blocks + leading global tokens."""
    family: ClassVar[PatternFamily] = PatternFamily.BIGBIRD

    window_size: int = 64
    block_size: int = 64
    num_random_blocks: int = 3
    global_token_ratio: float = 0.01
    random_seed: int = 42

    def __post_init__(self):
        _require_int("window_size", self.window_size, 1)
        _require_int("block_size", self.block_size, 1)
        _require_int("num_random_blocks", self.num_random_blocks, 0)
        _require_int("random_seed", self.random_seed, 0)
        ratio = self.global_token_ratio
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)) or not 0.0 <= ratio <= 1.0:
            raise InvalidParameterError(f"global_token_ratio must be in [0, 1], got {ratio!r}")
        object.__setattr__(self, "global_token_ratio", float(ratio))


@dataclass(frozen=True)
class StridedParams:
    """Self-attention plus strided columns k * stride_size + offset.

    A column is only attended when it lies within max_stride_hops strides
    of the query (defaults to DEFAULT_STRIDE_HOPS strides).
    """
    family: ClassVar[PatternFamily] = PatternFamily.STRIDED

    stride_size: int = 128
    offsets: Tuple[int, ...] = (0,)
    max_stride_hops: Optional[int] = None

    def __post_init__(self):
        _require_int("stride_size", self.stride_size, 1)
        offsets = _require_int_tuple("offsets", self.offsets)
        if not offsets:
            raise InvalidParameterError("offsets must contain at least one offset")
        object.__setattr__(self, "offsets", offsets)
        if self.max_stride_hops is not None:
            _require_int("max_stride_hops", self.max_stride_hops, 1)

    @property
    def lobe_radius(self) -> int:
        hops = self.max_stride_hops if self.max_stride_hops is not None else DEFAULT_STRIDE_HOPS
        return hops * self.stride_size


@dataclass(frozen=True)
class LocalGlobalParams:
    """Local window with independent left/right context."""
    family: ClassVar[PatternFamily] = PatternFamily.LOCAL_GLOBAL

    window_size: int = 256
    left_context: Optional[int] = None   # None = window_size // 2
    right_context: Optional[int] = None  # None = window_size // 2
    causal: bool = False

    def __post_init__(self):
        _require_int("window_size", self.window_size, 1)
        if self.left_context is not None:
            _require_int("left_context", self.left_context, 0)
        if self.right_context is not None:
            _require_int("right_context", self.right_context, 0)
        if not isinstance(self.causal, bool):
            raise InvalidParameterError(f"causal must be a boolean, got {self.causal!r}")

    @property
    def effective_left(self) -> int:
        return self.window_size // 2 if self.left_context is None else self.left_context

    @property
    def effective_right(self) -> int:
        if self.causal:
            return 0
        return self.window_size // 2 if self.right_context is None else self.right_context


@dataclass(frozen=True)
class FixedParams:
    """Symmetric band |i - j| <= half_width."""
    family: ClassVar[PatternFamily] = PatternFamily.FIXED

    half_width: int = 2

    def __post_init__(self):
        _require_int("half_width", self.half_width, 0)


@dataclass(frozen=True)
class RandomParams:
    """Diagonal plus random pairs until the target density is met."""
    family: ClassVar[PatternFamily] = PatternFamily.RANDOM

    random_seed: int = 42

    def __post_init__(self):
        _require_int("random_seed", self.random_seed, 0)


@dataclass(frozen=True)
class LinformerParams:
    """Every query attends to the first projection_dim keys."""
    family: ClassVar[PatternFamily] = PatternFamily.LINFORMER

    projection_dim: int = 256

    def __post_init__(self):
        _require_int("projection_dim", self.projection_dim, 1)


FamilyParams = Union[
    LongformerParams,
    BigBirdParams,
    StridedParams,
    LocalGlobalParams,
    FixedParams,
    RandomParams,
    LinformerParams,
]

FAMILY_PARAMS: Dict[PatternFamily, Type] = {
    PatternFamily.LONGFORMER: LongformerParams,
    PatternFamily.BIGBIRD: BigBirdParams,
    PatternFamily.STRIDED: StridedParams,
    PatternFamily.LOCAL_GLOBAL: LocalGlobalParams,
    PatternFamily.FIXED: FixedParams,
    PatternFamily.RANDOM: RandomParams,
    PatternFamily.LINFORMER: LinformerParams,
}

# Parameters whose names differ from a plain camelCase -> snake_case conversion
_PARAM_RENAMES = {
    "offset_pattern": "offsets",
    "causal_mask": "causal",
}

SPARSITY_MIN = 0.10
SPARSITY_MAX = 0.99


def clamp_sparsity(value: float) -> float:
    """Clamp a target sparsity ratio into [0.10, 0.99]."""
    return max(SPARSITY_MIN, min(SPARSITY_MAX, float(value)))


# =============================================================================
# PatternSpec
# =============================================================================

@dataclass(frozen=True)
class PatternSpec:
    """
    Immutable description of a sparse attention pattern.

    sparsity_ratio is a target only; the realized sparsity of a generated
    mask is reported separately by MaskStatistics. head_dim never changes
    the mask shape, it only scales cost estimates.
    """
    params: FamilyParams
    sequence_length: int = 4096
    num_heads: int = 12
    head_dim: int = 64
    sparsity_ratio: float = 0.9
    name: str = ""

    def __post_init__(self):
        if type(self.params) not in FAMILY_PARAMS.values():
            raise UnsupportedFamilyError(
                type(self.params).__name__, [f.value for f in PatternFamily]
            )
        _require_int("sequence_length", self.sequence_length, 1)
        _require_int("num_heads", self.num_heads, 1)
        _require_int("head_dim", self.head_dim, 1)
        ratio = self.sparsity_ratio
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)):
            raise InvalidParameterError(f"sparsity_ratio must be a number, got {ratio!r}")
        object.__setattr__(self, "sparsity_ratio", clamp_sparsity(ratio))

    @property
    def family(self) -> PatternFamily:
        return self.params.family

    @property
    def display_name(self) -> str:
        return self.name or self.family.value

    @property
    def mask_key(self) -> Tuple[FamilyParams, float]:
        """The part of the spec that determines mask contents."""
        return (self.params, self.sparsity_ratio)

    def with_params(self, **changes) -> "PatternSpec":
        """Copy with family parameters replaced."""
        try:
            params = replace(self.params, **changes)
        except TypeError as e:
            raise InvalidParameterError(str(e)) from e
        return replace(self, params=params)

    def with_sparsity(self, sparsity_ratio: float) -> "PatternSpec":
        return replace(self, sparsity_ratio=sparsity_ratio)

    def renamed(self, name: str) -> "PatternSpec":
        return replace(self, name=name)

    def to_dict(self) -> Dict[str, Any]:
        params = {}
        for f in fields(self.params):
            value = getattr(self.params, f.name)
            params[f.name] = list(value) if isinstance(value, tuple) else value
        return {
            "name": self.name,
            "family": self.family.value,
            "sequence_length": self.sequence_length,
            "num_heads": self.num_heads,
            "head_dim": self.head_dim,
            "sparsity_ratio": self.sparsity_ratio,
            "pattern_params": params,
        }

    # -------------------------------------------------------------------------
    # Family constructors
    # -------------------------------------------------------------------------

    @classmethod
    def longformer(
        cls,
        window_size: int = 512,
        global_indices: Tuple[int, ...] = (0, 1, 2, 3),
        **spec_kwargs,
    ) -> "PatternSpec":
        """
        Longformer-style pattern: sliding window + global tokens.

        Good for: Document understanding, QA, summarization
        """
        return cls(LongformerParams(window_size, tuple(global_indices)), **spec_kwargs)

    @classmethod
    def bigbird(
        cls,
        window_size: int = 64,
        block_size: int = 64,
        num_random_blocks: int = 3,
        global_token_ratio: float = 0.01,
        random_seed: int = 42,
        **spec_kwargs,
    ) -> "PatternSpec":
        """
        BigBird-style pattern: local + random blocks + global.

        Good for: Long document understanding, genomics
        """
        return cls(
            BigBirdParams(window_size, block_size, num_random_blocks, global_token_ratio, random_seed),
            **spec_kwargs,
        )

    @classmethod
    def strided(
        cls,
        stride_size: int = 128,
        offsets: Tuple[int, ...] = (0,),
        max_stride_hops: Optional[int] = None,
        **spec_kwargs,
    ) -> "PatternSpec":
        """Strided pattern for very long sequences."""
        return cls(StridedParams(stride_size, tuple(offsets), max_stride_hops), **spec_kwargs)

    @classmethod
    def local_global(
        cls,
        window_size: int = 256,
        left_context: Optional[int] = None,
        right_context: Optional[int] = None,
        causal: bool = False,
        **spec_kwargs,
    ) -> "PatternSpec":
        """Local window attention with independent left/right context."""
        return cls(LocalGlobalParams(window_size, left_context, right_context, causal), **spec_kwargs)

    @classmethod
    def fixed(cls, half_width: int = 2, **spec_kwargs) -> "PatternSpec":
        """Fixed diagonal band."""
        return cls(FixedParams(half_width), **spec_kwargs)

    @classmethod
    def random(cls, random_seed: int = 42, **spec_kwargs) -> "PatternSpec":
        """Random pattern at the spec's target sparsity."""
        return cls(RandomParams(random_seed), **spec_kwargs)

    @classmethod
    def linformer(cls, projection_dim: int = 256, **spec_kwargs) -> "PatternSpec":
        """Linformer low-rank proxy."""
        return cls(LinformerParams(projection_dim), **spec_kwargs)


# =============================================================================
# Construction from loose parameters
# =============================================================================

def normalize_param_name(name: str) -> str:
    """Map camelCase or snake_case parameter names to field names."""
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
    return _PARAM_RENAMES.get(snake, snake)


def build_family_params(
    family: Union[str, PatternFamily],
    pattern_params: Optional[Dict[str, Any]] = None,
) -> FamilyParams:
    """Create the parameter variant for a family, filling family defaults."""
    family = PatternFamily.parse(family)
    params_cls = FAMILY_PARAMS[family]
    known = {f.name for f in fields(params_cls)}
    list_fields = {f.name for f in fields(params_cls) if isinstance(f.default, tuple)}

    kwargs: Dict[str, Any] = {}
    for raw_name, value in (pattern_params or {}).items():
        name = normalize_param_name(raw_name)
        if name not in known:
            raise InvalidParameterError(
                f"Unknown parameter {raw_name!r} for {family.value}. "
                f"Available: {sorted(known)}"
            )
        if isinstance(value, list):
            value = tuple(value)
        elif name in list_fields and isinstance(value, int) and not isinstance(value, bool):
            value = (value,)  # "offsets=0" from the command line
        kwargs[name] = value

    return params_cls(**kwargs)


def build_spec(
    family: Union[str, PatternFamily],
    pattern_params: Optional[Dict[str, Any]] = None,
    *,
    sequence_length: int = 4096,
    num_heads: int = 12,
    head_dim: int = 64,
    sparsity_ratio: float = 0.9,
    name: str = "",
) -> PatternSpec:
    """Create a PatternSpec from a family name and loose parameters."""
    return PatternSpec(
        params=build_family_params(family, pattern_params),
        sequence_length=sequence_length,
        num_heads=num_heads,
        head_dim=head_dim,
        sparsity_ratio=sparsity_ratio,
        name=name,
    )


# =============================================================================
# Presets and use cases
# =============================================================================

PRESETS: Dict[str, PatternSpec] = {
    "longformer-base": PatternSpec.longformer(
        window_size=512, global_indices=(0, 1, 2, 3),
        sequence_length=4096, num_heads=12, head_dim=64, sparsity_ratio=0.95,
        name="longformer-base",
    ),
    "bigbird-base": PatternSpec.bigbird(
        window_size=64, block_size=64, num_random_blocks=3, global_token_ratio=0.01, random_seed=42,
        sequence_length=4096, num_heads=12, head_dim=64, sparsity_ratio=0.93,
        name="bigbird-base",
    ),
    "strided-efficient": PatternSpec.strided(
        stride_size=128, offsets=(0, 32, 64, 96),
        sequence_length=8192, num_heads=8, head_dim=64, sparsity_ratio=0.98,
        name="strided-efficient",
    ),
    "local-window": PatternSpec.local_global(
        window_size=256, left_context=128, right_context=128, causal=True,
        sequence_length=2048, num_heads=16, head_dim=64, sparsity_ratio=0.90,
        name="local-window",
    ),
    "linformer-projected": PatternSpec.linformer(
        projection_dim=256,
        sequence_length=4096, num_heads=12, head_dim=64, sparsity_ratio=0.85,
        name="linformer-projected",
    ),
}

USE_CASES: Dict[PatternFamily, List[str]] = {
    PatternFamily.LONGFORMER: ["document_understanding", "long_form_qa", "summarization"],
    PatternFamily.BIGBIRD: ["genomics", "long_documents", "scientific_papers"],
    PatternFamily.STRIDED: ["time_series", "audio_processing", "very_long_sequences"],
    PatternFamily.LOCAL_GLOBAL: ["code_analysis", "structured_documents", "conversations"],
    PatternFamily.LINFORMER: ["general_nlp", "resource_constrained", "mobile_deployment"],
    PatternFamily.RANDOM: ["research", "baseline_comparison", "exploration"],
    PatternFamily.FIXED: ["simple_tasks", "prototyping", "educational"],
}


def get_preset(name: str) -> PatternSpec:
    """Look up a built-in preset spec by name."""
    if name not in PRESETS:
        raise InvalidParameterError(f"Unknown preset: {name}. Available: {list(PRESETS.keys())}")
    return PRESETS[name]


def recommended_use_cases(family: Union[str, PatternFamily]) -> List[str]:
    return list(USE_CASES.get(PatternFamily.parse(family), ["general_purpose"]))
