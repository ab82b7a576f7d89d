"""
ZSP - Z Sparse Patterns

Sparse attention pattern engine: generates structured attention masks and
analyzes them as graphs.

Key Features:
- zPattern: Seven pattern families, dense or bit-packed mask storage
- zAnalysis: Connectivity, locality, efficiency and information-flow analysis
- zCache: Single-flight mask cache with LRU, age and byte bounds
- Engine: Comparison across specs and lengths, adaptive sparsity tuning

Usage:
    # CLI
    $ zsp generate longformer --length 1024 --param window_size=128
    $ zsp analyze bigbird-base --type comprehensive
    $ zsp compare longformer-base bigbird-base --metric speed --metric memory

    # Python
    from zsp.engine import PatternEngine
    engine = PatternEngine()
    spec_id = engine.create_spec({"type": "longformer", "windowSize": 128})
    pattern = engine.generate_pattern(spec_id, sequence_length=1024)
"""

from zsp.version import __version__, __version_info__

__all__ = [
    "__version__",
    "__version_info__",
]
