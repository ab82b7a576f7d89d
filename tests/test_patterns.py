"""
ZSP Pattern Spec Tests

Tests for PatternSpec construction, validation and presets.
"""

import pytest

from zsp.core.zpattern.patterns import (
    FAMILY_PARAMS,
    PRESETS,
    LocalGlobalParams,
    LongformerParams,
    PatternFamily,
    PatternSpec,
    StridedParams,
    build_family_params,
    build_spec,
    clamp_sparsity,
    get_preset,
    normalize_param_name,
    recommended_use_cases,
)
from zsp.errors import InvalidParameterError, UnsupportedFamilyError


class TestPatternFamily:
    """Test family name resolution."""

    def test_parse_is_case_insensitive(self) -> None:
        """Family names are matched case-insensitively."""
        assert PatternFamily.parse("LongFormer") is PatternFamily.LONGFORMER
        assert PatternFamily.parse(" bigbird ") is PatternFamily.BIGBIRD

    def test_unknown_family_raises(self) -> None:
        """Unknown families raise UnsupportedFamilyError listing the options."""
        with pytest.raises(UnsupportedFamilyError) as exc_info:
            PatternFamily.parse("reformer")
        assert "longformer" in exc_info.value.available
        assert isinstance(exc_info.value, ValueError)

    def test_every_family_has_params(self) -> None:
        """The variant set covers every family."""
        assert set(FAMILY_PARAMS) == set(PatternFamily)
        for family, params_cls in FAMILY_PARAMS.items():
            assert params_cls.family is family


class TestPatternSpec:
    """Test PatternSpec validation."""

    def test_defaults(self) -> None:
        """Family constructors fill documented defaults."""
        spec = PatternSpec.longformer()
        assert spec.family is PatternFamily.LONGFORMER
        assert spec.params.window_size == 512
        assert spec.params.global_indices == (0, 1, 2, 3)
        assert spec.sequence_length == 4096
        assert spec.num_heads == 12
        assert spec.head_dim == 64

    @pytest.mark.parametrize("ratio,expected", [(0.0, 0.10), (-1.0, 0.10), (1.0, 0.99), (0.5, 0.5)])
    def test_sparsity_is_clamped(self, ratio: float, expected: float) -> None:
        """Target sparsity is clamped into [0.10, 0.99]."""
        assert PatternSpec.fixed(sparsity_ratio=ratio).sparsity_ratio == pytest.approx(expected)
        assert clamp_sparsity(ratio) == pytest.approx(expected)

    @pytest.mark.parametrize("field", ["sequence_length", "num_heads", "head_dim"])
    def test_non_positive_sizes_rejected(self, field: str) -> None:
        """Sizes must be positive integers."""
        with pytest.raises(InvalidParameterError):
            PatternSpec.fixed(**{field: 0})

    def test_non_integer_window_rejected(self) -> None:
        """Floats and booleans are not accepted as integer parameters."""
        with pytest.raises(InvalidParameterError):
            LongformerParams(window_size=4.5)
        with pytest.raises(InvalidParameterError):
            LongformerParams(window_size=True)

    def test_negative_global_index_rejected(self) -> None:
        """Global indices must be non-negative."""
        with pytest.raises(InvalidParameterError):
            PatternSpec.longformer(global_indices=(0, -1))

    def test_global_indices_are_sorted_and_unique(self) -> None:
        """Duplicate global indices collapse."""
        spec = PatternSpec.longformer(global_indices=(3, 0, 3))
        assert spec.params.global_indices == (0, 3)

    def test_strided_requires_offsets(self) -> None:
        """An empty offset list is rejected."""
        with pytest.raises(InvalidParameterError):
            StridedParams(stride_size=4, offsets=())

    def test_strided_lobe_radius(self) -> None:
        """The lobe defaults to two strides either side of the query."""
        assert StridedParams(stride_size=4).lobe_radius == 8
        assert StridedParams(stride_size=128).lobe_radius == 256
        assert StridedParams(stride_size=4, max_stride_hops=3).lobe_radius == 12

    def test_local_global_contexts(self) -> None:
        """Unset contexts default to half the window; causal drops the right side."""
        params = LocalGlobalParams(window_size=10)
        assert params.effective_left == 5
        assert params.effective_right == 5

        causal = LocalGlobalParams(window_size=10, right_context=7, causal=True)
        assert causal.effective_right == 0

    def test_specs_are_hashable(self) -> None:
        """Equal specs hash equally."""
        a = PatternSpec.bigbird(window_size=8)
        b = PatternSpec.bigbird(window_size=8)
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_mask_key_ignores_cost_fields(self) -> None:
        """Name, heads and head_dim do not shape the mask."""
        a = PatternSpec.fixed(half_width=3, num_heads=4, name="a")
        b = PatternSpec.fixed(half_width=3, num_heads=16, head_dim=128, name="b")
        assert a.mask_key == b.mask_key

    def test_with_params_returns_copy(self) -> None:
        """with_params leaves the original untouched."""
        spec = PatternSpec.longformer(window_size=64)
        wider = spec.with_params(window_size=128)
        assert spec.params.window_size == 64
        assert wider.params.window_size == 128

    def test_with_params_unknown_field(self) -> None:
        """Unknown field names raise InvalidParameterError."""
        with pytest.raises(InvalidParameterError):
            PatternSpec.fixed().with_params(window_size=4)

    def test_to_dict(self) -> None:
        """to_dict uses plain lists and family names."""
        data = PatternSpec.strided(stride_size=8, offsets=(0, 2)).to_dict()
        assert data["family"] == "strided"
        assert data["pattern_params"]["offsets"] == [0, 2]


class TestBuildSpec:
    """Test construction from loose parameters."""

    def test_normalize_param_name(self) -> None:
        """camelCase maps to snake_case, plus the two irregular renames."""
        assert normalize_param_name("windowSize") == "window_size"
        assert normalize_param_name("globalIndices") == "global_indices"
        assert normalize_param_name("offsetPattern") == "offsets"
        assert normalize_param_name("causalMask") == "causal"
        assert normalize_param_name("block_size") == "block_size"

    def test_camel_case_params(self) -> None:
        """camelCase keys fill the family variant."""
        spec = build_spec("longformer", {"windowSize": 128, "globalIndices": [0, 5]})
        assert spec.params.window_size == 128
        assert spec.params.global_indices == (0, 5)

    def test_missing_params_take_family_defaults(self) -> None:
        """Omitted parameters use the family defaults."""
        params = build_family_params("bigbird", {"blockSize": 16})
        assert params.block_size == 16
        assert params.num_random_blocks == 3
        assert params.random_seed == 42

    def test_single_value_list_params(self) -> None:
        """A bare integer fills a list parameter with one entry."""
        assert build_family_params("longformer", {"globalIndices": 0}).global_indices == (0,)
        assert build_family_params("strided", {"offsetPattern": 2}).offsets == (2,)
        with pytest.raises(InvalidParameterError):
            build_family_params("strided", {"offsets": True})

    def test_foreign_param_rejected(self) -> None:
        """A parameter of another family is rejected."""
        with pytest.raises(InvalidParameterError, match="strideSize"):
            build_family_params("longformer", {"strideSize": 4})

    def test_unknown_family(self) -> None:
        """Unknown family names raise UnsupportedFamilyError."""
        with pytest.raises(UnsupportedFamilyError):
            build_spec("performer")


class TestPresets:
    """Test built-in presets and use cases."""

    def test_preset_names(self) -> None:
        """All five presets exist."""
        assert set(PRESETS) == {
            "longformer-base",
            "bigbird-base",
            "strided-efficient",
            "local-window",
            "linformer-projected",
        }

    def test_preset_values(self) -> None:
        """Presets carry their documented parameters."""
        strided = get_preset("strided-efficient")
        assert strided.params.offsets == (0, 32, 64, 96)
        assert strided.sequence_length == 8192

        local = get_preset("local-window")
        assert local.params.causal is True
        assert local.sparsity_ratio == pytest.approx(0.90)

    def test_unknown_preset(self) -> None:
        """Unknown presets raise InvalidParameterError."""
        with pytest.raises(InvalidParameterError):
            get_preset("nope")

    def test_use_cases(self) -> None:
        """Every family has recommended use cases."""
        assert recommended_use_cases("random") == ["research", "baseline_comparison", "exploration"]
        for family in PatternFamily:
            assert recommended_use_cases(family)
