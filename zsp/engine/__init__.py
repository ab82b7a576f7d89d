"""
ZSP Engine Module

Components built on the pattern core:
- service: PatternEngine, the external operations
- comparison: Spec × length comparisons with per-metric summaries
- tuner: Adaptive sparsity tuning and the sparsity optimizer
- repository: Thread-safe keyed stores for specs and patterns
- oplog: Operation log with JSON Lines persistence
"""

# Comparison
from zsp.engine.comparison import (
    BenchmarkFn,
    ComparisonEngine,
    ComparisonReport,
    MetricKind,
    MetricSample,
    MetricSummary,
)

# Tuning
from zsp.engine.tuner import (
    AdaptiveTuner,
    InputCharacteristics,
    OptimizationResult,
    OptimizationStep,
    SparsityOptimizer,
    TuningPlan,
    TuningStrategy,
)

# Operation log
from zsp.engine.oplog import (
    OperationLog,
    OperationLogEntry,
)

from zsp.engine.repository import KeyedRepository

# External operations
from zsp.engine.service import (
    GeneratedPattern,
    PatternEngine,
)

__all__ = [
    # Comparison
    "BenchmarkFn",
    "ComparisonEngine",
    "ComparisonReport",
    "MetricKind",
    "MetricSample",
    "MetricSummary",
    # Tuning
    "AdaptiveTuner",
    "InputCharacteristics",
    "OptimizationResult",
    "OptimizationStep",
    "SparsityOptimizer",
    "TuningPlan",
    "TuningStrategy",
    # Operation log
    "OperationLog",
    "OperationLogEntry",
    "KeyedRepository",
    # Service
    "GeneratedPattern",
    "PatternEngine",
]
