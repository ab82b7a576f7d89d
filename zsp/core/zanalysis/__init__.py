"""
zAnalysis - Graph Analysis of Attention Masks

Views a mask as a directed graph (query -> key) and measures:
- Connectivity: degree distribution
- Locality: share of relations near the diagonal
- Efficiency: savings over dense attention
- Information flow: reachability and path lengths

Exact information flow is O(n³); above FlowConfig.exact_limit the analyzer
samples source nodes instead and says so in the result.

Usage:
    from zsp.core.zanalysis import GraphAnalyzer, FlowConfig

    analyzer = GraphAnalyzer(FlowConfig(exact_limit=512))
    analysis = analyzer.analyze(mask, "information_flow", timeout=5.0)
    print(analysis.flow_mode, analysis.reachability_ratio)
"""

from .analyzer import (
    AnalysisKind,
    GraphAnalyzer,
    PatternAnalysis,
    locality_window,
)

from .flow import (
    CancellationToken,
    FlowConfig,
    FlowMode,
    FlowResult,
    analyze_flow,
    bfs_path_lengths,
    transitive_closure,
)

__all__ = [
    "AnalysisKind",
    "GraphAnalyzer",
    "PatternAnalysis",
    "locality_window",
    # Information flow
    "CancellationToken",
    "FlowConfig",
    "FlowMode",
    "FlowResult",
    "analyze_flow",
    "bfs_path_lengths",
    "transitive_closure",
]
