"""
ZSP Adaptive Tuning

Derives adjusted specs from observed input characteristics.

AdaptiveTuner maps the longest observed sequence to a sparsity target:
- conservative: favors quality, min(0.8, 0.5 + max/4096 * 0.3)
- aggressive: favors memory, min(0.95, 0.7 + max/2048 * 0.25)
- balanced: min(0.9, 0.6 + max/3000 * 0.3)

Highly local inputs (locality_ratio > 0.8) also shrink the attention
window of windowed families to 30% of the average sequence length.

SparsityOptimizer scans a fixed grid of sparsity values and scores each
against weighted targets (speed 0.4, memory 0.3, quality 0.3), halving the
score for each violated constraint.

Both are pure: the same inputs always give the same spec.

Author: ZSP Team
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from functools import singledispatch
from typing import Any, Dict, List, Optional, Union

from zsp.core.zpattern.patterns import (
    BigBirdParams,
    LocalGlobalParams,
    LongformerParams,
    PatternSpec,
    SPARSITY_MAX,
    SPARSITY_MIN,
    normalize_param_name,
)
from zsp.errors import InvalidParameterError

MAX_TUNED_WINDOW = 256
WINDOW_FRACTION = 0.3
HIGH_LOCALITY = 0.8


class TuningStrategy(str, Enum):
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"
    BALANCED = "balanced"

    @classmethod
    def parse(cls, value: Union[str, "TuningStrategy"]) -> "TuningStrategy":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for strategy in cls:
            if strategy.value == key:
                return strategy
        raise InvalidParameterError(
            f"Unknown tuning strategy: {value!r}. Available: {[s.value for s in cls]}"
        )

    def sparsity_for(self, max_sequence_length: int) -> float:
        """Monotonic non-decreasing in max_sequence_length."""
        if self is TuningStrategy.CONSERVATIVE:
            target = min(0.8, 0.5 + (max_sequence_length / 4096) * 0.3)
        elif self is TuningStrategy.AGGRESSIVE:
            target = min(0.95, 0.7 + (max_sequence_length / 2048) * 0.25)
        else:
            target = min(0.9, 0.6 + (max_sequence_length / 3000) * 0.3)
        return max(SPARSITY_MIN, min(SPARSITY_MAX, target))


@dataclass(frozen=True)
class InputCharacteristics:
    """Observed workload shape."""
    average_sequence_length: int = 512
    max_sequence_length: int = 2048
    locality_ratio: float = 0.7

    def __post_init__(self):
        for name in ("average_sequence_length", "max_sequence_length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidParameterError(f"{name} must be a positive integer, got {value!r}")
        ratio = self.locality_ratio
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)) or not 0.0 <= ratio <= 1.0:
            raise InvalidParameterError(f"locality_ratio must be within [0, 1], got {ratio!r}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "InputCharacteristics":
        """Accepts snake_case or camelCase keys; missing keys take defaults."""
        known = {"average_sequence_length", "max_sequence_length", "locality_ratio"}
        kwargs = {}
        for raw_name, value in (data or {}).items():
            name = normalize_param_name(raw_name)
            if name not in known:
                raise InvalidParameterError(f"Unknown input characteristic: {raw_name!r}")
            kwargs[name] = value
        return cls(**kwargs)


# =============================================================================
# Window adjustment (windowed families only)
# =============================================================================

@singledispatch
def window_adjustments(params, window: int) -> Dict[str, Any]:
    """Parameter changes that resize a family's local window (none by default)."""
    return {}


@window_adjustments.register(LongformerParams)
@window_adjustments.register(BigBirdParams)
def _(params, window: int) -> Dict[str, Any]:
    return {"window_size": window}


@window_adjustments.register(LocalGlobalParams)
def _(params, window: int) -> Dict[str, Any]:
    # Explicit contexts override window_size, so they shrink with it
    adjustments: Dict[str, Any] = {"window_size": window}
    if params.left_context is not None:
        adjustments["left_context"] = window // 2
    if params.right_context is not None:
        adjustments["right_context"] = window // 2
    return adjustments


def tuned_window(average_sequence_length: int) -> int:
    return max(1, min(MAX_TUNED_WINDOW, math.floor(average_sequence_length * WINDOW_FRACTION)))


@dataclass
class TuningPlan:
    """What tune() changes and the (estimated) effect."""
    strategy: TuningStrategy
    characteristics: InputCharacteristics
    base_sparsity: float
    adjusted_sparsity: float
    pattern_adjustments: Dict[str, Any] = field(default_factory=dict)

    @property
    def expected_improvements(self) -> Dict[str, float]:
        """Closed-form estimates, not measurements."""
        s = self.adjusted_sparsity
        return {
            "memory_reduction": s * 0.8,
            "speedup": 1 + s * 1.5,
            "quality_retention": 1 - s * 0.1,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "characteristics": {
                "average_sequence_length": self.characteristics.average_sequence_length,
                "max_sequence_length": self.characteristics.max_sequence_length,
                "locality_ratio": self.characteristics.locality_ratio,
            },
            "base_sparsity": self.base_sparsity,
            "adjusted_sparsity": self.adjusted_sparsity,
            "pattern_adjustments": dict(self.pattern_adjustments),
            "expected_improvements": self.expected_improvements,
        }


class AdaptiveTuner:
    """Pure spec tuner."""

    def plan(
        self,
        base_spec: PatternSpec,
        characteristics: Union[InputCharacteristics, Dict[str, Any], None] = None,
        strategy: Union[str, TuningStrategy] = TuningStrategy.BALANCED,
    ) -> TuningPlan:
        strategy = TuningStrategy.parse(strategy)
        if not isinstance(characteristics, InputCharacteristics):
            characteristics = InputCharacteristics.from_dict(characteristics)

        adjustments: Dict[str, Any] = {}
        if characteristics.locality_ratio > HIGH_LOCALITY:
            adjustments = window_adjustments(
                base_spec.params, tuned_window(characteristics.average_sequence_length)
            )

        return TuningPlan(
            strategy=strategy,
            characteristics=characteristics,
            base_sparsity=base_spec.sparsity_ratio,
            adjusted_sparsity=strategy.sparsity_for(characteristics.max_sequence_length),
            pattern_adjustments=adjustments,
        )

    def apply(self, base_spec: PatternSpec, plan: TuningPlan) -> PatternSpec:
        spec = base_spec.with_sparsity(plan.adjusted_sparsity)
        if plan.pattern_adjustments:
            spec = spec.with_params(**plan.pattern_adjustments)
        return spec.renamed(f"{base_spec.display_name} (adaptive)")

    def tune(
        self,
        base_spec: PatternSpec,
        characteristics: Union[InputCharacteristics, Dict[str, Any], None] = None,
        strategy: Union[str, TuningStrategy] = TuningStrategy.BALANCED,
    ) -> PatternSpec:
        """Adjusted copy of base_spec for the given workload and strategy."""
        return self.apply(base_spec, self.plan(base_spec, characteristics, strategy))


# =============================================================================
# Sparsity optimizer
# =============================================================================

TARGET_WEIGHTS = {"speed": 0.4, "memory": 0.3, "quality": 0.3}
CONSTRAINT_PENALTY = 0.5


@dataclass(frozen=True)
class OptimizationStep:
    step: int
    sparsity: float
    score: float
    is_best: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "sparsity": self.sparsity, "score": self.score, "is_best": self.is_best}


@dataclass
class OptimizationResult:
    spec: PatternSpec
    base_sparsity: float
    best_sparsity: float
    best_score: float
    target_metrics: Dict[str, float]
    history: List[OptimizationStep] = field(default_factory=list)

    @property
    def improvements(self) -> Dict[str, float]:
        return {
            "sparsity_change": (self.best_sparsity - self.base_sparsity) / self.base_sparsity,
            "score": self.best_score,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_sparsity": self.base_sparsity,
            "best_sparsity": self.best_sparsity,
            "best_score": self.best_score,
            "target_metrics": dict(self.target_metrics),
            "improvements": self.improvements,
            "history": [s.to_dict() for s in self.history],
        }


class SparsityOptimizer:
    """Deterministic grid search over sparsity."""

    @staticmethod
    def grid(steps: int) -> List[float]:
        """steps evenly spaced values covering [0.1, 0.99]."""
        if isinstance(steps, bool) or not isinstance(steps, int) or steps <= 0:
            raise InvalidParameterError(f"steps must be a positive integer, got {steps!r}")
        if steps == 1:
            return [SPARSITY_MIN]
        span = SPARSITY_MAX - SPARSITY_MIN
        return [round(SPARSITY_MIN + span * k / (steps - 1), 6) for k in range(steps)]

    @staticmethod
    def score(sparsity: float, target_metrics: Dict[str, float], constraints: Dict[str, float]) -> float:
        score = 0.0
        if target_metrics.get("speed"):
            score += sparsity * target_metrics["speed"] * TARGET_WEIGHTS["speed"]
        if target_metrics.get("memory"):
            score += sparsity * target_metrics["memory"] * TARGET_WEIGHTS["memory"]
        if target_metrics.get("quality"):
            score += (1 - sparsity) * target_metrics["quality"] * TARGET_WEIGHTS["quality"]

        max_sparsity = constraints.get("max_sparsity")
        if max_sparsity is not None and sparsity > max_sparsity:
            score *= CONSTRAINT_PENALTY
        min_quality = constraints.get("min_quality")
        if min_quality is not None and (1 - sparsity) < min_quality:
            score *= CONSTRAINT_PENALTY
        return score

    @staticmethod
    def _normalize(data: Optional[Dict[str, Any]], known: set, what: str) -> Dict[str, float]:
        result = {}
        for raw_name, value in (data or {}).items():
            name = normalize_param_name(raw_name)
            if name not in known:
                raise InvalidParameterError(f"Unknown {what}: {raw_name!r}. Available: {sorted(known)}")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidParameterError(f"{what} {raw_name!r} must be a number, got {value!r}")
            result[name] = float(value)
        return result

    def optimize(
        self,
        base_spec: PatternSpec,
        target_metrics: Dict[str, float],
        constraints: Optional[Dict[str, float]] = None,
        steps: int = 10,
    ) -> OptimizationResult:
        """
        Best sparsity for weighted targets.

        Args:
            base_spec: Spec to optimize
            target_metrics: Weights for speed, memory and quality
            constraints: max_sparsity and/or min_quality
            steps: Grid size

        Returns:
            OptimizationResult; ties keep the lowest sparsity
        """
        targets = self._normalize(target_metrics, set(TARGET_WEIGHTS), "target metric")
        if not targets:
            raise InvalidParameterError("At least one target metric (speed, memory, quality) is required")
        limits = self._normalize(constraints, {"max_sparsity", "min_quality"}, "constraint")

        best_sparsity = base_spec.sparsity_ratio
        best_score = float("-inf")
        history = []
        for step, sparsity in enumerate(self.grid(steps)):
            score = self.score(sparsity, targets, limits)
            improved = score > best_score
            if improved:
                best_score, best_sparsity = score, sparsity
            history.append(OptimizationStep(step, sparsity, score, improved))

        spec = base_spec.with_sparsity(best_sparsity).renamed(f"{base_spec.display_name} (optimized)")
        return OptimizationResult(
            spec=spec,
            base_sparsity=base_spec.sparsity_ratio,
            best_sparsity=best_sparsity,
            best_score=best_score,
            target_metrics=targets,
            history=history,
        )
