"""
Pydantic models for ZSP requests.

Loose caller data (CLI flags, JSON files, embedding services) is validated
here before it reaches the engine. Keys may be snake_case or camelCase.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from zsp.core.zpattern.patterns import PatternSpec, build_spec
from zsp.errors import InvalidParameterError

M = TypeVar("M", bound=BaseModel)

_REQUEST_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "extra": "forbid",
}


# ============================================================================
# Spec models
# ============================================================================

class SpecRequest(BaseModel):
    """
    Parameters for CreateSpec.

    Family parameters go under pattern_params; any other unrecognized
    top-level key is treated as a family parameter too, so
    {"type": "longformer", "windowSize": 128} is accepted.
    """
    model_config = _REQUEST_CONFIG

    family: str = Field(alias="type")
    name: str = ""
    sequence_length: int = Field(default=4096, gt=0)
    num_heads: int = Field(default=12, gt=0)
    head_dim: int = Field(default=64, gt=0)
    sparsity_ratio: float = 0.9  # clamped to [0.1, 0.99] by PatternSpec
    pattern_params: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_pattern_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        top_level = set()
        for name, f in cls.model_fields.items():
            top_level.add(name)
            if f.alias:
                top_level.add(f.alias)
        data = dict(data)
        extra = {k: data.pop(k) for k in list(data) if k not in top_level}
        if extra:
            nested_key = "patternParams" if "patternParams" in data else "pattern_params"
            nested = dict(data.get(nested_key) or {})
            nested.update(extra)
            data[nested_key] = nested
        return data

    def to_spec(self) -> PatternSpec:
        return build_spec(
            self.family,
            self.pattern_params,
            sequence_length=self.sequence_length,
            num_heads=self.num_heads,
            head_dim=self.head_dim,
            sparsity_ratio=self.sparsity_ratio,
            name=self.name,
        )


class CharacteristicsRequest(BaseModel):
    """Observed workload for TunePattern."""
    model_config = _REQUEST_CONFIG

    average_sequence_length: int = Field(default=512, gt=0)
    max_sequence_length: int = Field(default=2048, gt=0)
    locality_ratio: float = Field(default=0.7, ge=0, le=1)


class OptimizeRequest(BaseModel):
    """Targets and constraints for the sparsity optimizer."""
    model_config = _REQUEST_CONFIG

    target_metrics: Dict[str, float]
    constraints: Dict[str, float] = Field(default_factory=dict)
    optimization_steps: int = Field(default=10, gt=0)


class CompareRequest(BaseModel):
    """Specs, metrics and lengths for ComparePatterns."""
    model_config = _REQUEST_CONFIG

    spec_ids: List[str] = Field(min_length=1)
    metrics: List[str] = Field(default_factory=lambda: ["speed", "memory", "quality", "sparsity"])
    sequence_lengths: Optional[List[int]] = None


# ============================================================================
# Helpers
# ============================================================================

def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "request"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_request(model: Type[M], data: Any) -> M:
    """Validate data against a request model, raising InvalidParameterError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid {model.__name__}: {_describe(e)}") from e
