"""
ZSP CLI

Command-line interface for ZSP.

Commands:
- zsp presets: List built-in pattern presets
- zsp generate: Generate a mask and show statistics
- zsp analyze: Graph analysis of a mask
- zsp compare: Compare patterns across sequence lengths
- zsp tune: Adapt sparsity to an observed workload
- zsp optimize: Grid-search sparsity for weighted targets
"""

from zsp.api.cli.main import app

__all__ = ["app"]
