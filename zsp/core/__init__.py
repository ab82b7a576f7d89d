"""
ZSP Core Module

Contains the core components of the ZSP engine:
- zpattern: Pattern specs, mask storage, generation and statistics
- zanalysis: Graph analysis (connectivity, locality, efficiency, flow)
- zcache: Single-flight cache of generated masks
"""

__all__ = [
    "zpattern",
    "zanalysis",
    "zcache",
]
