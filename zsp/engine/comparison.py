"""
ZSP Comparison Engine

Compares pattern specs side by side across sequence lengths.

For every spec × sequence length the mask comes through PatternCache, then
each requested metric is computed from the mask. Speed, memory and quality
are closed-form estimates unless a benchmark callable is supplied for speed.

Usage:
    engine = ComparisonEngine(PatternCache())
    report = engine.compare(
        [PatternSpec.longformer(), PatternSpec.bigbird()],
        sequence_lengths=[512, 1024],
        metrics=["speed", "memory", "locality"],
    )
    for line in report.recommendations:
        print(line)

Author: ZSP Team
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from zsp.core.zanalysis.analyzer import AnalysisKind, GraphAnalyzer
from zsp.core.zanalysis.flow import FlowConfig, FlowMode
from zsp.core.zcache.pattern_cache import PatternCache
from zsp.core.zpattern.mask import AttentionMask
from zsp.core.zpattern.metrics import (
    estimate_execution_time_ms,
    estimate_memory_bytes,
    estimate_quality,
)
from zsp.core.zpattern.patterns import PatternSpec, recommended_use_cases
from zsp.errors import InvalidParameterError

# benchmark(spec, mask) -> measured milliseconds
BenchmarkFn = Callable[[PatternSpec, AttentionMask], float]

DEFAULT_SEQUENCE_LENGTHS = (512, 1024, 2048, 4096)


class MetricKind(str, Enum):
    """Comparable metrics. Each knows which direction is better."""
    SPEED = "speed"
    MEMORY = "memory"
    QUALITY = "quality"
    SPARSITY = "sparsity"
    EFFICIENCY = "efficiency"
    LOCALITY = "locality"
    CONNECTIVITY = "connectivity"
    REACHABILITY = "reachability"

    @property
    def higher_is_better(self) -> bool:
        return self not in (MetricKind.SPEED, MetricKind.MEMORY)

    @property
    def unit(self) -> str:
        return {MetricKind.SPEED: "ms", MetricKind.MEMORY: "bytes"}.get(self, "")

    @classmethod
    def parse(cls, value: Union[str, "MetricKind"]) -> "MetricKind":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for kind in cls:
            if kind.value == key:
                return kind
        raise InvalidParameterError(
            f"Unknown metric: {value!r}. Available: {[k.value for k in cls]}"
        )


# Metrics read off an analyzer pass
_ANALYSIS_METRICS = {
    MetricKind.EFFICIENCY: (AnalysisKind.EFFICIENCY, "efficiency_rating"),
    MetricKind.LOCALITY: (AnalysisKind.LOCALITY, "locality_index"),
    MetricKind.CONNECTIVITY: (AnalysisKind.CONNECTIVITY, "connectivity_score"),
    MetricKind.REACHABILITY: (AnalysisKind.INFORMATION_FLOW, "reachability_ratio"),
}


@dataclass(frozen=True)
class MetricSample:
    """One measured or estimated value."""
    spec_label: str
    metric: MetricKind
    sequence_length: int
    value: float
    estimated: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec": self.spec_label,
            "metric": self.metric.value,
            "sequence_length": self.sequence_length,
            "value": self.value,
            "estimated": self.estimated,
        }


@dataclass
class MetricSummary:
    """Aggregate of one metric across specs and lengths."""
    metric: MetricKind
    best_spec: str
    worst_spec: str
    average: float
    minimum: float
    maximum: float
    per_spec: Dict[str, float] = field(default_factory=dict)

    @property
    def value_range(self) -> float:
        return self.maximum - self.minimum

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric.value,
            "higher_is_better": self.metric.higher_is_better,
            "best": self.best_spec,
            "worst": self.worst_spec,
            "average": self.average,
            "min": self.minimum,
            "max": self.maximum,
            "range": self.value_range,
            "per_spec": dict(self.per_spec),
        }


@dataclass
class ComparisonReport:
    """Result of a comparison run."""
    specs: List[str]
    sequence_lengths: List[int]
    metrics: List[MetricKind]
    samples: List[MetricSample]
    summaries: Dict[MetricKind, MetricSummary]
    recommendations: List[str]

    def values(self, metric: Union[str, MetricKind]) -> Dict[str, Dict[int, float]]:
        """spec label -> sequence length -> value for one metric."""
        metric = MetricKind.parse(metric)
        table: Dict[str, Dict[int, float]] = {label: {} for label in self.specs}
        for sample in self.samples:
            if sample.metric is metric:
                table[sample.spec_label][sample.sequence_length] = sample.value
        return table

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specs": list(self.specs),
            "sequence_lengths": list(self.sequence_lengths),
            "metrics": {
                m.value: {label: {str(n): v for n, v in row.items()} for label, row in self.values(m).items()}
                for m in self.metrics
            },
            "summary": {m.value: s.to_dict() for m, s in self.summaries.items()},
            "recommendations": list(self.recommendations),
        }


class ComparisonEngine:
    """
    Runs spec × length comparisons.

    Args:
        cache: Source of masks (single-flight, so parallel jobs share work)
        analyzer: Analyzer for structural metrics
        benchmark: Optional measured-speed hook; estimates are used without it
        flow_config: Flow limits for the reachability metric
        max_workers: Parallel spec × length jobs (1 = run inline)
    """

    def __init__(
        self,
        cache: PatternCache,
        analyzer: Optional[GraphAnalyzer] = None,
        benchmark: Optional[BenchmarkFn] = None,
        flow_config: Optional[FlowConfig] = None,
        max_workers: int = 1,
    ):
        if max_workers <= 0:
            raise InvalidParameterError("max_workers must be positive")
        self.cache = cache
        self.analyzer = analyzer or GraphAnalyzer()
        self.benchmark = benchmark
        self.flow_config = flow_config or FlowConfig(mode="auto")
        self.max_workers = max_workers

    def compare(
        self,
        specs: Sequence[PatternSpec],
        sequence_lengths: Optional[Sequence[int]] = None,
        metrics: Optional[Sequence[Union[str, MetricKind]]] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> ComparisonReport:
        """
        Compare specs.

        Args:
            specs: Specs to compare
            sequence_lengths: Lengths to test (default 512, 1024, 2048, 4096)
            metrics: Metric names (default speed, memory, quality, sparsity)
            labels: Display label per spec (default: spec display names)

        Returns:
            ComparisonReport with samples, summaries and recommendations
        """
        if not specs:
            raise InvalidParameterError("At least one spec is required for comparison")
        lengths = list(sequence_lengths or DEFAULT_SEQUENCE_LENGTHS)
        for n in lengths:
            if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
                raise InvalidParameterError(f"Sequence lengths must be positive integers, got {n!r}")
        kinds = [MetricKind.parse(m) for m in (metrics or ("speed", "memory", "quality", "sparsity"))]
        kinds = list(dict.fromkeys(kinds))
        spec_labels = self._labels(specs, labels)

        jobs = [(label, spec, n) for label, spec in zip(spec_labels, specs) for n in lengths]
        if self.max_workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(lambda job: self._measure(*job, kinds), jobs))
        else:
            results = [self._measure(label, spec, n, kinds) for label, spec, n in jobs]

        samples = [sample for job_samples in results for sample in job_samples]
        summaries = {kind: self._summarize(kind, spec_labels, samples) for kind in kinds}
        recommendations = self._recommend(specs, spec_labels, summaries)

        return ComparisonReport(
            specs=spec_labels,
            sequence_lengths=lengths,
            metrics=kinds,
            samples=samples,
            summaries=summaries,
            recommendations=recommendations,
        )

    # =========================================================================
    # Measurement
    # =========================================================================

    @staticmethod
    def _labels(specs: Sequence[PatternSpec], labels: Optional[Sequence[str]]) -> List[str]:
        if labels is not None:
            if len(labels) != len(specs):
                raise InvalidParameterError("labels must match specs one to one")
            if len(set(labels)) != len(labels):
                raise InvalidParameterError("labels must be unique")
            return list(labels)

        result: List[str] = []
        for index, spec in enumerate(specs):
            label = spec.display_name
            if label in result:
                label = f"{label}#{index}"
            result.append(label)
        return result

    def _measure(self, label: str, spec: PatternSpec, n: int, kinds: List[MetricKind]) -> List[MetricSample]:
        mask = self.cache.get_or_generate(spec, n)
        stats = mask.statistics
        samples = []
        for kind in kinds:
            estimated = True
            if kind is MetricKind.SPEED:
                if self.benchmark is not None:
                    value = float(self.benchmark(spec, mask))
                    estimated = False
                else:
                    value = estimate_execution_time_ms(stats)
            elif kind is MetricKind.MEMORY:
                value = float(estimate_memory_bytes(stats, spec.num_heads))
            elif kind is MetricKind.QUALITY:
                value = estimate_quality(stats.sparsity_ratio)
            elif kind is MetricKind.SPARSITY:
                value = stats.sparsity_ratio
                estimated = False
            else:
                analysis_kind, attr = _ANALYSIS_METRICS[kind]
                analysis = self.analyzer.analyze(mask, analysis_kind, flow_config=self.flow_config)
                value = float(getattr(analysis, attr))
                estimated = kind is MetricKind.REACHABILITY and analysis.flow_mode is not FlowMode.EXACT
            samples.append(MetricSample(label, kind, n, value, estimated))
        return samples

    # =========================================================================
    # Aggregation
    # =========================================================================

    @staticmethod
    def _summarize(kind: MetricKind, labels: List[str], samples: List[MetricSample]) -> MetricSummary:
        values = [s.value for s in samples if s.metric is kind]
        per_spec = {}
        for label in labels:
            spec_values = [s.value for s in samples if s.metric is kind and s.spec_label == label]
            per_spec[label] = sum(spec_values) / len(spec_values)

        # Ties resolve to the earlier spec
        ranked = sorted(labels, key=lambda lbl: per_spec[lbl], reverse=kind.higher_is_better)
        return MetricSummary(
            metric=kind,
            best_spec=ranked[0],
            worst_spec=ranked[-1],
            average=sum(values) / len(values),
            minimum=min(values),
            maximum=max(values),
            per_spec=per_spec,
        )

    @staticmethod
    def _recommend(
        specs: Sequence[PatternSpec],
        labels: List[str],
        summaries: Dict[MetricKind, MetricSummary],
    ) -> List[str]:
        if len(labels) == 1:
            return [f"Only {labels[0]} was compared; add more specs for a relative ranking"]

        recommendations = []
        wins: Dict[str, int] = {label: 0 for label in labels}
        for kind, summary in summaries.items():
            wins[summary.best_spec] += 1
            unit = f" {kind.unit}" if kind.unit else ""
            direction = "highest" if kind.higher_is_better else "lowest"
            recommendations.append(
                f"Best {kind.value}: {summary.best_spec} "
                f"({direction} average {summary.per_spec[summary.best_spec]:.4g}{unit})"
            )

        winner, count = max(wins.items(), key=lambda item: item[1])
        spec_by_label: Dict[str, PatternSpec] = dict(zip(labels, specs))
        if count == len(summaries):
            recommendations.append(f"{winner} dominates every compared metric")
        else:
            recommendations.append(f"Overall: {winner} leads on {count} of {len(summaries)} metrics")
        uses = ", ".join(recommended_use_cases(spec_by_label[winner].family))
        recommendations.append(f"{winner} ({spec_by_label[winner].family.value}) suits: {uses}")
        return recommendations

