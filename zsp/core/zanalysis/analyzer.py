"""
zAnalysis Analyzer - Structural Analysis of Attention Masks

Four analyses over the attention graph of a mask:
- connectivity: in/out degrees and how evenly keys are attended
- locality: share of relations that stay near the diagonal
- efficiency: how much of dense attention the mask saves
- information_flow: reachability and path lengths (see flow.py)

"comprehensive" runs all four. Every pass except exact information flow
streams the mask in row blocks, so bit-packed masks are never expanded.

Usage:
    analyzer = GraphAnalyzer()
    analysis = analyzer.analyze(mask, "comprehensive")
    print(analysis.summary())
    for finding in analysis.bottlenecks:
        print(finding)

Author: ZSP Team
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import torch

from zsp.core.zpattern.mask import AttentionMask
from zsp.errors import InvalidMaskError, InvalidParameterError

from .flow import CancellationToken, FlowConfig, FlowMode, analyze_flow

# Findings thresholds
LOW_LOCALITY = 0.3
HIGH_LOCALITY = 0.9
LOW_EFFICIENCY = 0.5
HIGH_SPARSITY = 0.95
LOW_IN_DEGREE = 10.0
LONG_PATH = 5.0
LOW_REACHABILITY = 0.8
DEGREE_VARIANCE_FACTOR = 0.5

MAX_LOCALITY_WINDOW = 50


class AnalysisKind(str, Enum):
    """Which analysis to run."""
    CONNECTIVITY = "connectivity"
    LOCALITY = "locality"
    EFFICIENCY = "efficiency"
    INFORMATION_FLOW = "information_flow"
    COMPREHENSIVE = "comprehensive"

    @classmethod
    def parse(cls, value: Union[str, "AnalysisKind"]) -> "AnalysisKind":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        for kind in cls:
            if kind.value == key:
                return kind
        raise InvalidParameterError(
            f"Unknown analysis type: {value!r}. Available: {[k.value for k in cls]}"
        )


def locality_window(sequence_length: int) -> int:
    """Distance counted as local: min(50, floor(0.1 * n))."""
    return min(MAX_LOCALITY_WINDOW, math.floor(0.1 * sequence_length))


@dataclass
class PatternAnalysis:
    """
    Result of analyzing one mask.

    Fields of analyses that were not run stay None. Findings are derived
    from the numeric fields on access, so they always agree with them.
    """
    analysis_type: AnalysisKind
    sequence_length: int

    # Connectivity
    connectivity_score: Optional[float] = None
    avg_in_degree: Optional[float] = None
    avg_out_degree: Optional[float] = None
    degree_variance: Optional[float] = None

    # Locality
    locality_index: Optional[float] = None
    local_connections: Optional[int] = None
    total_connections: Optional[int] = None
    locality_window: Optional[int] = None

    # Efficiency
    efficiency_rating: Optional[float] = None
    sparsity_ratio: Optional[float] = None
    memory_reduction: Optional[float] = None
    compute_reduction: Optional[float] = None

    # Information flow
    reachability_ratio: Optional[float] = None
    average_path_length: Optional[float] = None
    max_path_length: Optional[int] = None
    flow_mode: Optional[FlowMode] = None
    sampled_sources: Optional[int] = None

    analyzed_at: datetime = field(default_factory=datetime.now)

    @property
    def bottlenecks(self) -> List[str]:
        findings = []
        if (self.degree_variance is not None
                and self.degree_variance > DEGREE_VARIANCE_FACTOR * self.avg_in_degree):
            findings.append("High degree variance indicates potential bottlenecks")
        if self.locality_index is not None:
            if self.locality_index < LOW_LOCALITY:
                findings.append("Low locality may impact sequential processing")
            elif self.locality_index > HIGH_LOCALITY:
                findings.append("Very high locality may miss long-range dependencies")
        if self.efficiency_rating is not None and self.efficiency_rating < LOW_EFFICIENCY:
            findings.append("Low efficiency - consider more aggressive sparsity")
        if self.average_path_length is not None and self.average_path_length > LONG_PATH:
            findings.append("Long information paths may limit model effectiveness")
        return findings

    @property
    def recommended_optimizations(self) -> List[str]:
        recommendations = []
        if self.avg_in_degree is not None and self.avg_in_degree < LOW_IN_DEGREE:
            recommendations.append("Consider increasing connectivity for better information flow")
        if self.locality_index is not None and self.locality_index > HIGH_LOCALITY:
            recommendations.append("Consider adding global connections for long-range dependencies")
        if self.sparsity_ratio is not None and self.sparsity_ratio > HIGH_SPARSITY:
            recommendations.append("Very high sparsity may impact model quality")
        if self.reachability_ratio is not None and self.reachability_ratio < LOW_REACHABILITY:
            recommendations.append("Add skip connections for better information flow")
        return recommendations

    def summary(self) -> str:
        """One-paragraph description of the analysis."""
        parts = []
        if self.efficiency_rating is not None:
            parts.append(f"{self.efficiency_rating * 100:.1f}% efficiency")
        if self.connectivity_score is not None:
            parts.append(f"{self.connectivity_score * 100:.1f}% connectivity")
        if self.locality_index is not None:
            parts.append(f"{self.locality_index * 100:.1f}% locality")
        if self.reachability_ratio is not None:
            parts.append(f"{self.reachability_ratio * 100:.1f}% reachability")

        if len(parts) > 1:
            shown = ", ".join(parts[:-1]) + f" and {parts[-1]}"
        else:
            shown = parts[0] if parts else "no measurements"

        text = (
            f"Pattern analysis over {self.sequence_length} positions shows {shown}. "
            f"{len(self.bottlenecks)} potential bottlenecks identified. "
            f"{len(self.recommended_optimizations)} optimization recommendations available."
        )
        if self.flow_mode is FlowMode.SAMPLED:
            text += f" Information flow was estimated from {self.sampled_sources} sampled sources."
        elif self.flow_mode is FlowMode.PARTIAL:
            text += " Information flow analysis stopped early; flow figures are partial."
        elif self.flow_mode is FlowMode.HOP_LIMITED:
            text += " Path lengths were cut off at the hop limit and are lower bounds."
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis_type": self.analysis_type.value,
            "sequence_length": self.sequence_length,
            "connectivity": {
                "connectivity_score": self.connectivity_score,
                "avg_in_degree": self.avg_in_degree,
                "avg_out_degree": self.avg_out_degree,
                "degree_variance": self.degree_variance,
            },
            "locality": {
                "locality_index": self.locality_index,
                "local_connections": self.local_connections,
                "total_connections": self.total_connections,
                "locality_window": self.locality_window,
            },
            "efficiency": {
                "efficiency_rating": self.efficiency_rating,
                "sparsity_ratio": self.sparsity_ratio,
                "memory_reduction": self.memory_reduction,
                "compute_reduction": self.compute_reduction,
            },
            "information_flow": {
                "reachability_ratio": self.reachability_ratio,
                "average_path_length": self.average_path_length,
                "max_path_length": self.max_path_length,
                "flow_mode": self.flow_mode.value if self.flow_mode else None,
                "sampled_sources": self.sampled_sources,
            },
            "bottlenecks": self.bottlenecks,
            "recommended_optimizations": self.recommended_optimizations,
            "summary": self.summary(),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


class GraphAnalyzer:
    """
    Stateless analyzer for attention masks.

    Args:
        flow_config: Default limits for information-flow analysis
    """

    def __init__(self, flow_config: Optional[FlowConfig] = None):
        self.flow_config = flow_config or FlowConfig()

    def analyze(
        self,
        mask: AttentionMask,
        kind: Union[str, AnalysisKind] = AnalysisKind.COMPREHENSIVE,
        *,
        flow_config: Optional[FlowConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> PatternAnalysis:
        """
        Run one analysis (or all of them) on a mask.

        Args:
            mask: Mask to analyze
            kind: connectivity, locality, efficiency, information_flow or comprehensive
            flow_config: Overrides the analyzer's flow limits for this call
            cancel_token: Stops information-flow analysis early when cancelled
            timeout: Seconds before information-flow analysis stops early

        Returns:
            PatternAnalysis with the fields of the requested analyses set
        """
        kind = AnalysisKind.parse(kind)
        self._check_mask(mask)
        if cancel_token is None and timeout is not None:
            cancel_token = CancellationToken(timeout)

        analysis = PatternAnalysis(analysis_type=kind, sequence_length=mask.size)
        run_all = kind is AnalysisKind.COMPREHENSIVE

        if run_all or kind is AnalysisKind.CONNECTIVITY:
            self._connectivity(mask, analysis)
        if run_all or kind is AnalysisKind.LOCALITY:
            self._locality(mask, analysis)
        if run_all or kind is AnalysisKind.EFFICIENCY:
            self._efficiency(mask, analysis)
        if run_all or kind is AnalysisKind.INFORMATION_FLOW:
            result = analyze_flow(mask, flow_config or self.flow_config, cancel_token)
            analysis.reachability_ratio = result.reachability_ratio
            analysis.average_path_length = result.average_path_length
            analysis.max_path_length = result.max_path_length
            analysis.flow_mode = result.mode
            analysis.sampled_sources = result.sampled_sources

        return analysis

    # =========================================================================
    # Passes
    # =========================================================================

    @staticmethod
    def _check_mask(mask: Any) -> None:
        if not isinstance(mask, AttentionMask):
            raise InvalidMaskError(f"Expected an AttentionMask, got {type(mask).__name__}")
        if mask.size <= 0:
            raise InvalidMaskError("Cannot analyze an empty mask")

    def _connectivity(self, mask: AttentionMask, analysis: PatternAnalysis) -> None:
        n = mask.size
        in_degree = torch.zeros(n, dtype=torch.float64)
        out_total = 0
        for _, block in mask.iter_row_blocks():
            in_degree += block.sum(dim=0, dtype=torch.float64)
            out_total += int(block.sum().item())

        avg_in = float(in_degree.mean().item())
        variance = float(((in_degree - avg_in) ** 2).mean().item())

        analysis.avg_in_degree = avg_in
        analysis.avg_out_degree = out_total / n
        analysis.degree_variance = variance
        analysis.connectivity_score = min(1.0, avg_in / n)

    def _locality(self, mask: AttentionMask, analysis: PatternAnalysis) -> None:
        n = mask.size
        window = locality_window(n)
        cols = torch.arange(n).unsqueeze(0)
        local = 0
        total = 0
        for start, block in mask.iter_row_blocks():
            rows = torch.arange(start, start + block.shape[0]).unsqueeze(1)
            near = (cols - rows).abs() <= window
            local += int((block & near).sum().item())
            total += int(block.sum().item())

        analysis.locality_window = window
        analysis.local_connections = local
        analysis.total_connections = total
        analysis.locality_index = local / total if total else 0.0

    def _efficiency(self, mask: AttentionMask, analysis: PatternAnalysis) -> None:
        stats = mask.statistics
        analysis.sparsity_ratio = stats.sparsity_ratio
        analysis.memory_reduction = stats.memory_reduction_ratio
        analysis.compute_reduction = stats.compute_reduction_ratio
        analysis.efficiency_rating = (
            stats.sparsity_ratio + stats.memory_reduction_ratio + stats.compute_reduction_ratio
        ) / 3.0
