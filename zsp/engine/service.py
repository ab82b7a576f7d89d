"""
ZSP Pattern Engine - External Operations

PatternEngine is the single entry point callers use. It owns the spec and
pattern repositories, the mask cache, the analyzer, the comparison engine,
the tuners and the operation log.

Operations:
- create_spec(parameters) -> spec_id
- describe_spec(spec_id) -> spec with estimated memory reduction and speedup
- generate_pattern(spec_id, sequence_length) -> GeneratedPattern
- analyze_pattern(pattern_id, kind) -> PatternAnalysis
- compare_patterns(spec_ids, metrics, sequence_lengths) -> ComparisonReport
- tune_pattern(spec_id, characteristics, strategy) -> spec_id
- optimize_pattern(spec_id, target_metrics, constraints, steps) -> (spec_id, OptimizationResult)

Every operation is recorded in the operation log with its latency and,
on failure, the error.

Author: ZSP Team
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from zsp.api.models import (
    CharacteristicsRequest,
    CompareRequest,
    OptimizeRequest,
    SpecRequest,
    parse_request,
)
from zsp.config import EngineConfig
from zsp.core.zanalysis.analyzer import AnalysisKind, GraphAnalyzer, PatternAnalysis
from zsp.core.zanalysis.flow import CancellationToken, FlowConfig
from zsp.core.zcache.pattern_cache import PatternCache
from zsp.core.zpattern.generator import PatternGenerator
from zsp.core.zpattern.mask import AttentionMask, MaskStatistics, visualize_mask
from zsp.core.zpattern.metrics import estimate_attention_cost, spec_estimates
from zsp.core.zpattern.patterns import PRESETS, PatternSpec, recommended_use_cases
from zsp.engine.comparison import BenchmarkFn, ComparisonEngine, ComparisonReport
from zsp.engine.oplog import OperationLog
from zsp.engine.repository import KeyedRepository
from zsp.engine.tuner import (
    AdaptiveTuner,
    InputCharacteristics,
    OptimizationResult,
    SparsityOptimizer,
    TuningPlan,
)

Characteristics = Union[InputCharacteristics, Dict[str, Any], None]


@dataclass
class GeneratedPattern:
    """A generated mask together with the spec it came from."""
    pattern_id: str
    spec_id: str
    spec: PatternSpec
    sequence_length: int
    mask: AttentionMask
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def statistics(self) -> MaskStatistics:
        return self.mask.statistics

    @property
    def target_sparsity(self) -> float:
        return self.spec.sparsity_ratio

    @property
    def realized_sparsity(self) -> float:
        return self.statistics.sparsity_ratio

    def to_dict(self) -> Dict[str, Any]:
        cost = estimate_attention_cost(self.statistics, self.spec.num_heads, self.spec.head_dim)
        return {
            "pattern_id": self.pattern_id,
            "spec_id": self.spec_id,
            "family": self.spec.family.value,
            "name": self.spec.display_name,
            "sequence_length": self.sequence_length,
            "representation": self.mask.representation.value,
            "storage_bytes": self.mask.nbytes,
            "statistics": self.statistics.to_dict(),
            "target_sparsity": self.target_sparsity,
            "realized_sparsity": self.realized_sparsity,
            "estimated_cost": cost.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


class PatternEngine:
    """
    Sparse attention pattern engine.

    Args:
        config: Engine configuration (defaults if omitted)
        benchmark: Optional measured-speed hook for comparisons
        oplog: Operation log (built from config if omitted)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        benchmark: Optional[BenchmarkFn] = None,
        oplog: Optional[OperationLog] = None,
    ):
        self.config = config or EngineConfig()
        cfg = self.config

        self.generator = PatternGenerator(packed_threshold=cfg.packed_threshold)
        self.cache = PatternCache(
            self.generator,
            max_entries=cfg.cache_max_entries,
            max_age_seconds=cfg.cache_max_age_seconds,
            max_bytes=cfg.cache_max_bytes,
        )
        flow = cfg.flow_config()
        self.analyzer = GraphAnalyzer(flow)
        # Comparisons cover arbitrary lengths, so never insist on exact flow
        comparison_flow = replace(flow, mode="auto") if flow.mode == "exact" else flow
        self.comparison = ComparisonEngine(
            self.cache,
            self.analyzer,
            benchmark=benchmark,
            flow_config=comparison_flow,
            max_workers=cfg.comparison_max_workers,
        )
        self.tuner = AdaptiveTuner()
        self.optimizer = SparsityOptimizer()

        self.specs: KeyedRepository[PatternSpec] = KeyedRepository("Spec", "spec")
        self.patterns: KeyedRepository[GeneratedPattern] = KeyedRepository(
            "Pattern", "pat", max_items=cfg.max_stored_patterns
        )
        self.oplog = oplog or OperationLog(
            log_dir=cfg.log_dir,
            max_file_size=cfg.log_max_file_size,
            max_rotated_files=cfg.log_max_rotated_files,
            buffer_size=cfg.log_buffer_size,
            enabled=cfg.log_enabled,
        )

        if cfg.load_presets:
            for name, spec in PRESETS.items():
                self.specs.add(spec, item_id=name)

    # =========================================================================
    # Specs
    # =========================================================================

    def create_spec(self, parameters: Union[Dict[str, Any], SpecRequest]) -> str:
        """
        Validate loose parameters and store the resulting spec.

        Raises:
            InvalidParameterError: Malformed or out-of-range parameters
            UnsupportedFamilyError: Unknown family
        """
        summary = parameters.model_dump() if isinstance(parameters, SpecRequest) else parameters
        with self.oplog.track("create_spec", parameters=summary) as op:
            spec = parse_request(SpecRequest, parameters).to_spec()
            op.result_id = self.specs.add(spec)
            return op.result_id

    def register_spec(self, spec: PatternSpec, spec_id: Optional[str] = None) -> str:
        """Store an already-built spec."""
        with self.oplog.track("register_spec", family=spec.family.value) as op:
            op.result_id = self.specs.add(spec, item_id=spec_id)
            return op.result_id

    def get_spec(self, spec_id: str) -> PatternSpec:
        return self.specs.get(spec_id)

    def list_specs(self) -> List[Tuple[str, PatternSpec]]:
        return self.specs.items()

    def delete_spec(self, spec_id: str) -> None:
        with self.oplog.track("delete_spec", spec_id=spec_id) as op:
            self.specs.delete(spec_id)
            op.result_id = spec_id

    def recommended_use_cases(self, spec_id: str) -> List[str]:
        return recommended_use_cases(self.get_spec(spec_id).family)

    def describe_spec(self, spec_id: str) -> Dict[str, Any]:
        """Stored spec with its expected effect and recommended use cases."""
        spec = self.get_spec(spec_id)
        return {
            "spec_id": spec_id,
            "spec": spec.to_dict(),
            **spec_estimates(spec),
            "recommended_use_cases": recommended_use_cases(spec.family),
        }

    # =========================================================================
    # Patterns
    # =========================================================================

    def generate_pattern(
        self,
        spec_id: str,
        sequence_length: Optional[int] = None,
        use_cache: bool = True,
    ) -> GeneratedPattern:
        """
        Generate (or fetch from cache) the mask for a spec.

        Args:
            spec_id: Stored spec
            sequence_length: Defaults to the spec's sequence_length
            use_cache: Go through the single-flight cache

        Returns:
            GeneratedPattern with statistics, target and realized sparsity
        """
        with self.oplog.track(
            "generate_pattern", spec_id=spec_id, sequence_length=sequence_length, use_cache=use_cache
        ) as op:
            spec = self.get_spec(spec_id)
            n = spec.sequence_length if sequence_length is None else sequence_length
            if use_cache:
                mask = self.cache.get_or_generate(spec, n)
            else:
                mask = self.generator.generate(spec, n)

            pattern_id = self.patterns.new_id()
            pattern = GeneratedPattern(
                pattern_id=pattern_id,
                spec_id=spec_id,
                spec=spec,
                sequence_length=n,
                mask=mask,
            )
            self.patterns.add(pattern, item_id=pattern_id)
            op.result_id = pattern_id
            return pattern

    def get_pattern(self, pattern_id: str) -> GeneratedPattern:
        return self.patterns.get(pattern_id)

    def list_patterns(self) -> List[Tuple[str, GeneratedPattern]]:
        return self.patterns.items()

    def visualize_pattern(self, pattern_id: str, max_size: int = 64) -> str:
        """ASCII rendering of a stored pattern (downsampled past max_size)."""
        return visualize_mask(self.get_pattern(pattern_id).mask, max_size=max_size)

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_pattern(
        self,
        pattern_id: str,
        kind: Union[str, AnalysisKind] = AnalysisKind.COMPREHENSIVE,
        flow_config: Optional[FlowConfig] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PatternAnalysis:
        """
        Analyze a stored pattern.

        Raises:
            NotFoundError: Unknown pattern id
            ResourceExceededError: Exact flow analysis requested above the limit
        """
        with self.oplog.track("analyze_pattern", pattern_id=pattern_id, kind=str(getattr(kind, "value", kind))) as op:
            pattern = self.get_pattern(pattern_id)
            analysis = self.analyzer.analyze(
                pattern.mask,
                kind,
                flow_config=flow_config,
                cancel_token=cancel_token,
                timeout=timeout,
            )
            op.result_id = pattern_id
            return analysis

    def compare_patterns(
        self,
        spec_ids: Sequence[str],
        metrics: Optional[Sequence[str]] = None,
        sequence_lengths: Optional[Sequence[int]] = None,
    ) -> ComparisonReport:
        """Compare stored specs; labels in the report are the spec ids."""
        with self.oplog.track(
            "compare_patterns", spec_ids=list(spec_ids), metrics=metrics, sequence_lengths=sequence_lengths
        ):
            data: Dict[str, Any] = {"spec_ids": list(spec_ids), "sequence_lengths": sequence_lengths}
            if metrics is not None:
                data["metrics"] = [getattr(m, "value", m) for m in metrics]
            request = parse_request(CompareRequest, data)

            specs = [self.get_spec(spec_id) for spec_id in request.spec_ids]
            return self.comparison.compare(
                specs,
                sequence_lengths=request.sequence_lengths or self.config.comparison_sequence_lengths,
                metrics=request.metrics,
                labels=request.spec_ids,
            )

    # =========================================================================
    # Tuning
    # =========================================================================

    @staticmethod
    def _characteristics(characteristics: Characteristics) -> InputCharacteristics:
        if isinstance(characteristics, InputCharacteristics):
            return characteristics
        request = parse_request(CharacteristicsRequest, characteristics)
        return InputCharacteristics(**request.model_dump())

    def plan_tuning(
        self,
        spec_id: str,
        characteristics: Characteristics = None,
        strategy: str = "balanced",
    ) -> TuningPlan:
        """The adjustments tune_pattern would make, without storing anything."""
        return self.tuner.plan(self.get_spec(spec_id), self._characteristics(characteristics), strategy)

    def tune_pattern(
        self,
        spec_id: str,
        characteristics: Characteristics = None,
        strategy: str = "balanced",
    ) -> str:
        """Store an adaptively tuned copy of a spec and return its id."""
        with self.oplog.track("tune_pattern", spec_id=spec_id, strategy=strategy) as op:
            base = self.get_spec(spec_id)
            plan = self.tuner.plan(base, self._characteristics(characteristics), strategy)
            op.result_id = self.specs.add(self.tuner.apply(base, plan))
            return op.result_id

    def optimize_pattern(
        self,
        spec_id: str,
        target_metrics: Dict[str, float],
        constraints: Optional[Dict[str, float]] = None,
        steps: int = 10,
    ) -> Tuple[str, OptimizationResult]:
        """Store the best-scoring sparsity variant of a spec."""
        with self.oplog.track(
            "optimize_pattern", spec_id=spec_id, target_metrics=target_metrics, constraints=constraints, steps=steps
        ) as op:
            request = parse_request(OptimizeRequest, {
                "target_metrics": target_metrics,
                "constraints": constraints or {},
                "optimization_steps": steps,
            })
            result = self.optimizer.optimize(
                self.get_spec(spec_id),
                request.target_metrics,
                request.constraints,
                request.optimization_steps,
            )
            op.result_id = self.specs.add(result.spec)
            return op.result_id, result

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "specs": len(self.specs),
            "patterns": len(self.patterns),
            "cache": self.cache.get_stats(),
            "operations": self.oplog.get_stats(),
        }
