"""
ZSP Engine Configuration

Single dataclass holding every tunable of the pattern engine:
- Pattern cache bounds (entries, age, bytes)
- Mask storage policy (dense vs bit-packed threshold)
- Information-flow analysis limits (exact limit, sampling)
- Comparison defaults
- Operation log persistence

Usage:
    config = EngineConfig(cache_max_entries=16, flow_exact_limit=512)
    config = EngineConfig.from_json("zsp.json")
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from zsp.errors import InvalidParameterError


@dataclass
class EngineConfig:
    """Configuration for PatternEngine and the components it owns."""

    # Pattern cache
    cache_max_entries: int = 64
    cache_max_age_seconds: Optional[float] = 3600.0
    cache_max_bytes: Optional[int] = None

    # Masks above this many positions are stored bit-packed
    packed_threshold: int = 4096

    # Information-flow analysis
    flow_mode: str = "auto"           # auto, exact, or sampled
    flow_exact_limit: int = 1024
    flow_sample_sources: int = 64
    flow_max_hops: Optional[int] = None
    flow_seed: int = 0

    # Comparison
    comparison_sequence_lengths: Tuple[int, ...] = (512, 1024, 2048, 4096)
    comparison_max_workers: int = 1

    # Operation log
    log_enabled: bool = True
    log_dir: Optional[str] = None     # None = in-memory only
    log_buffer_size: int = 1000
    log_max_file_size: int = 50 * 1024 * 1024
    log_max_rotated_files: int = 10

    # Generated patterns kept by PatternEngine (oldest dropped first)
    max_stored_patterns: Optional[int] = 256

    # Register the built-in preset specs on startup
    load_presets: bool = True

    def __post_init__(self):
        self.comparison_sequence_lengths = tuple(int(n) for n in self.comparison_sequence_lengths)

        positive = {
            "cache_max_entries": self.cache_max_entries,
            "packed_threshold": self.packed_threshold,
            "flow_exact_limit": self.flow_exact_limit,
            "flow_sample_sources": self.flow_sample_sources,
            "comparison_max_workers": self.comparison_max_workers,
            "log_buffer_size": self.log_buffer_size,
        }
        for name, value in positive.items():
            if value <= 0:
                raise InvalidParameterError(f"{name} must be positive, got {value}")

        if self.flow_mode not in ("auto", "exact", "sampled"):
            raise InvalidParameterError(
                f"flow_mode must be one of auto, exact, sampled (got {self.flow_mode!r})"
            )
        if self.cache_max_age_seconds is not None and self.cache_max_age_seconds <= 0:
            raise InvalidParameterError("cache_max_age_seconds must be positive or None")
        if self.cache_max_bytes is not None and self.cache_max_bytes <= 0:
            raise InvalidParameterError("cache_max_bytes must be positive or None")
        if self.flow_max_hops is not None and self.flow_max_hops <= 0:
            raise InvalidParameterError("flow_max_hops must be positive or None")
        if self.max_stored_patterns is not None and self.max_stored_patterns <= 0:
            raise InvalidParameterError("max_stored_patterns must be positive or None")
        if not self.comparison_sequence_lengths or min(self.comparison_sequence_lengths) <= 0:
            raise InvalidParameterError("comparison_sequence_lengths must be positive integers")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build a config from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidParameterError(f"Unknown config keys: {unknown}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load a config from a JSON file."""
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise InvalidParameterError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidParameterError(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["comparison_sequence_lengths"] = list(self.comparison_sequence_lengths)
        return d

    def flow_config(self):
        """FlowConfig for the analyzer, derived from the flow_* fields."""
        from zsp.core.zanalysis.flow import FlowConfig

        return FlowConfig(
            mode=self.flow_mode,
            exact_limit=self.flow_exact_limit,
            sample_sources=self.flow_sample_sources,
            max_hops=self.flow_max_hops,
            seed=self.flow_seed,
        )
