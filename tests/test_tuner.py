"""
ZSP Tuner Tests

Tests for adaptive tuning and the sparsity optimizer.
"""

import pytest

from zsp.core.zpattern.generator import PatternGenerator
from zsp.core.zpattern.patterns import PatternSpec, get_preset
from zsp.engine.tuner import (
    AdaptiveTuner,
    InputCharacteristics,
    SparsityOptimizer,
    TuningStrategy,
    tuned_window,
)
from zsp.errors import InvalidParameterError


class TestTuningStrategy:
    """Test strategy sparsity targets."""

    @pytest.mark.parametrize("strategy,max_len,expected", [
        ("conservative", 2048, 0.65),
        ("conservative", 100_000, 0.8),
        ("aggressive", 1024, 0.825),
        ("aggressive", 100_000, 0.95),
        ("balanced", 1500, 0.75),
        ("balanced", 100_000, 0.9),
    ])
    def test_sparsity_for(self, strategy: str, max_len: int, expected: float) -> None:
        """Documented formulas and caps."""
        assert TuningStrategy.parse(strategy).sparsity_for(max_len) == pytest.approx(expected)

    @pytest.mark.parametrize("strategy", list(TuningStrategy))
    def test_monotonic(self, strategy: TuningStrategy) -> None:
        """Longer inputs never lower the sparsity target."""
        values = [strategy.sparsity_for(n) for n in (1, 128, 512, 2048, 4096, 8192, 65536)]
        assert values == sorted(values)

    def test_unknown_strategy(self) -> None:
        """custom and other names are rejected."""
        with pytest.raises(InvalidParameterError):
            TuningStrategy.parse("custom")


class TestInputCharacteristics:
    """Test workload validation."""

    def test_from_dict_accepts_camel_case(self) -> None:
        """camelCase keys are normalized."""
        chars = InputCharacteristics.from_dict({"averageSequenceLength": 300, "localityRatio": 0.9})
        assert chars.average_sequence_length == 300
        assert chars.max_sequence_length == 2048
        assert chars.locality_ratio == 0.9

    def test_rejects_bad_values(self) -> None:
        """Out-of-range values raise InvalidParameterError."""
        with pytest.raises(InvalidParameterError):
            InputCharacteristics(locality_ratio=1.5)
        with pytest.raises(InvalidParameterError):
            InputCharacteristics(max_sequence_length=0)
        with pytest.raises(InvalidParameterError):
            InputCharacteristics.from_dict({"batchSize": 4})


class TestAdaptiveTuner:
    """Test spec tuning."""

    def test_sparsity_adjusted(self) -> None:
        """The tuned spec carries the strategy's sparsity."""
        base = PatternSpec.fixed(sparsity_ratio=0.5)
        tuned = AdaptiveTuner().tune(base, {"max_sequence_length": 2048}, "aggressive")
        assert tuned.sparsity_ratio == pytest.approx(0.95)
        assert tuned.name == "fixed (adaptive)"
        assert base.sparsity_ratio == 0.5

    def test_window_shrinks_for_local_inputs(self) -> None:
        """High locality shrinks the window of windowed families."""
        base = PatternSpec.longformer(window_size=512)
        tuned = AdaptiveTuner().tune(base, InputCharacteristics(average_sequence_length=400, locality_ratio=0.9))
        assert tuned.params.window_size == 120

    def test_explicit_contexts_follow_window(self) -> None:
        """Explicit left/right contexts shrink with the tuned window."""
        base = get_preset("local-window")
        characteristics = {"average_sequence_length": 100, "locality_ratio": 0.9}
        plan = AdaptiveTuner().plan(base, characteristics)
        assert plan.pattern_adjustments == {"window_size": 30, "left_context": 15, "right_context": 15}

        tuned = AdaptiveTuner().apply(base, plan)
        assert tuned.params.effective_left == 15
        generator = PatternGenerator(representation="dense")
        assert not generator.generate(tuned, 64).equals(generator.generate(base, 64))

    def test_default_contexts_stay_unset(self) -> None:
        """Contexts derived from the window are not pinned by tuning."""
        base = PatternSpec.local_global(window_size=128)
        tuned = AdaptiveTuner().tune(base, {"average_sequence_length": 100, "locality_ratio": 0.9})
        assert tuned.params.left_context is None
        assert tuned.params.effective_left == 15

    def test_window_capped(self) -> None:
        """The tuned window never exceeds 256."""
        assert tuned_window(10_000) == 256
        assert tuned_window(1) == 1

    def test_low_locality_keeps_window(self) -> None:
        """Locality at or below 0.8 leaves the window alone."""
        base = PatternSpec.bigbird(window_size=64)
        tuned = AdaptiveTuner().tune(base, {"locality_ratio": 0.8})
        assert tuned.params.window_size == 64

    def test_non_windowed_family_untouched(self) -> None:
        """Families without a window only change sparsity."""
        base = PatternSpec.strided(stride_size=16)
        plan = AdaptiveTuner().plan(base, {"locality_ratio": 0.95})
        assert plan.pattern_adjustments == {}
        assert AdaptiveTuner().apply(base, plan).params == base.params

    def test_plan_expected_improvements(self) -> None:
        """Improvement estimates follow the adjusted sparsity."""
        plan = AdaptiveTuner().plan(PatternSpec.fixed(), {"max_sequence_length": 1500}, "balanced")
        assert plan.adjusted_sparsity == pytest.approx(0.75)
        improvements = plan.expected_improvements
        assert improvements["memory_reduction"] == pytest.approx(0.6)
        assert improvements["speedup"] == pytest.approx(2.125)
        assert improvements["quality_retention"] == pytest.approx(0.925)
        assert plan.to_dict()["strategy"] == "balanced"

    def test_deterministic(self) -> None:
        """Tuning is pure."""
        base = PatternSpec.local_global(window_size=128)
        chars = {"average_sequence_length": 200, "locality_ratio": 0.85}
        assert AdaptiveTuner().tune(base, chars) == AdaptiveTuner().tune(base, chars)


class TestSparsityOptimizer:
    """Test the grid search."""

    def test_grid(self) -> None:
        """Evenly spaced values spanning [0.1, 0.99]."""
        grid = SparsityOptimizer.grid(10)
        assert len(grid) == 10
        assert grid[0] == pytest.approx(0.1)
        assert grid[-1] == pytest.approx(0.99)
        assert SparsityOptimizer.grid(1) == [0.1]
        with pytest.raises(InvalidParameterError):
            SparsityOptimizer.grid(0)

    def test_speed_only_prefers_max_sparsity(self) -> None:
        """Speed rewards sparsity."""
        result = SparsityOptimizer().optimize(PatternSpec.fixed(), {"speed": 1.0})
        assert result.best_sparsity == pytest.approx(0.99)
        assert result.spec.sparsity_ratio == pytest.approx(0.99)
        assert result.spec.name == "fixed (optimized)"

    def test_quality_only_prefers_min_sparsity(self) -> None:
        """Quality rewards density."""
        result = SparsityOptimizer().optimize(PatternSpec.fixed(), {"quality": 1.0})
        assert result.best_sparsity == pytest.approx(0.1)

    def test_constraint_penalty(self) -> None:
        """Violating max_sparsity halves the score."""
        targets = {"speed": 1.0}
        free = SparsityOptimizer.score(0.9, targets, {})
        limited = SparsityOptimizer.score(0.9, targets, {"max_sparsity": 0.5})
        assert limited == pytest.approx(free * 0.5)

    def test_constraints_shift_optimum(self) -> None:
        """A tight max_sparsity moves the optimum down."""
        result = SparsityOptimizer().optimize(
            PatternSpec.fixed(), {"speed": 1.0}, {"maxSparsity": 0.6}, steps=10
        )
        assert result.best_sparsity <= 0.6

    def test_ties_keep_lowest_sparsity(self) -> None:
        """A zero weight scores every value equally; the first grid value wins."""
        result = SparsityOptimizer().optimize(PatternSpec.fixed(), {"speed": 0.0}, steps=5)
        assert result.best_sparsity == pytest.approx(0.1)
        assert [s.is_best for s in result.history].count(True) >= 1
        assert result.history[0].is_best

    def test_requires_targets(self) -> None:
        """At least one target metric is needed."""
        with pytest.raises(InvalidParameterError):
            SparsityOptimizer().optimize(PatternSpec.fixed(), {})
        with pytest.raises(InvalidParameterError):
            SparsityOptimizer().optimize(PatternSpec.fixed(), {"latency": 1.0})

    def test_deterministic(self) -> None:
        """Same input, same output."""
        spec = PatternSpec.bigbird()
        a = SparsityOptimizer().optimize(spec, {"speed": 1, "memory": 1, "quality": 1})
        b = SparsityOptimizer().optimize(spec, {"speed": 1, "memory": 1, "quality": 1})
        assert a.to_dict() == b.to_dict()
