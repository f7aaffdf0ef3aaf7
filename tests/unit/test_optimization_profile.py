"""
Unit tests for optimization profiles.
"""

from __future__ import annotations

import gc
import math

import pytest

from asynctrt.backends import SimulatedBackend
from asynctrt.exceptions import BuilderReleasedError, OperationError
from asynctrt.ffi.optimization_profile import OptimizationProfile, OptimizationProfileSelector
from asynctrt.ffi.sync.builder import Builder

from conftest import MAX_SHAPE, MIN_SHAPE, OPT_SHAPE


@pytest.fixture
def builder(backend: SimulatedBackend) -> Builder:
    return Builder.new(backend)


@pytest.fixture
def profile(builder: Builder) -> OptimizationProfile:
    return builder.create_optimization_profile()


class TestSelector:
    """Tests for OptimizationProfileSelector."""

    def test_native_codes(self) -> None:
        """Test selector values match the native codes."""
        assert [int(s) for s in OptimizationProfileSelector] == [0, 1, 2]


class TestDimensions:
    """Tests for dimension bounds."""

    def test_roundtrip(self, profile: OptimizationProfile) -> None:
        """Test bounds read back as set."""
        assert profile.set_min_dimensions("x", MIN_SHAPE)
        assert profile.set_opt_dimensions("x", OPT_SHAPE)
        assert profile.set_max_dimensions("x", MAX_SHAPE)

        assert profile.get_min_dimensions("x") == MIN_SHAPE
        assert profile.get_opt_dimensions("x") == OPT_SHAPE
        assert profile.get_max_dimensions("x") == MAX_SHAPE

    def test_unset(self, profile: OptimizationProfile) -> None:
        """Test bounds that were never set read as None."""
        profile.set_min_dimensions("x", MIN_SHAPE)

        assert profile.get_opt_dimensions("x") is None
        assert profile.get_max_dimensions("other") is None

    def test_too_many_dims(self, profile: OptimizationProfile) -> None:
        """Test more than eight dimensions are rejected."""
        assert not profile.set_min_dimensions("x", [1] * 9)
        assert profile.get_min_dimensions("x") is None

    def test_negative_dims(self, profile: OptimizationProfile) -> None:
        """Test profile bounds must be concrete."""
        assert not profile.set_min_dimensions("x", [-1, 3, 224, 224])

    def test_rank_mismatch(self, profile: OptimizationProfile) -> None:
        """Test a bound with a different rank than earlier bounds is rejected."""
        assert profile.set_min_dimensions("x", MIN_SHAPE)

        assert not profile.set_max_dimensions("x", [8, 3])
        assert profile.get_max_dimensions("x") is None


class TestShapeValues:
    """Tests for shape tensor value bounds."""

    def test_roundtrip(self, profile: OptimizationProfile) -> None:
        """Test values read back as set."""
        assert profile.set_min_shape_values("shape", [1, 1])
        assert profile.set_opt_shape_values("shape", [2, 2])
        assert profile.set_max_shape_values("shape", [4, 4])

        assert profile.get_min_shape_values("shape") == [1, 1]
        assert profile.get_opt_shape_values("shape") == [2, 2]
        assert profile.get_max_shape_values("shape") == [4, 4]

    def test_unset_input(self, profile: OptimizationProfile) -> None:
        """Test inputs without shape values read as None."""
        assert profile.get_min_shape_values("shape") is None

    def test_missing_selector(self, profile: OptimizationProfile) -> None:
        """Test a failing native query for one selector raises."""
        profile.set_min_shape_values("shape", [1, 1])

        with pytest.raises(OperationError) as exc_info:
            profile.get_opt_shape_values("shape")

        assert exc_info.value.operation == "getShapeValues"

    def test_count_mismatch(self, profile: OptimizationProfile) -> None:
        """Test value counts must agree across selectors."""
        assert profile.set_min_shape_values("shape", [1, 1])

        assert not profile.set_max_shape_values("shape", [4, 4, 4])


class TestExtraMemoryTarget:
    """Tests for the extra memory target."""

    def test_default(self, profile: OptimizationProfile) -> None:
        """Test the default target."""
        assert profile.get_extra_memory_target() == 1.0

    @pytest.mark.parametrize("target", [0.0, 0.5, 1.0])
    def test_accepts_fraction(self, profile: OptimizationProfile, target: float) -> None:
        """Test values within [0, 1] are accepted."""
        assert profile.set_extra_memory_target(target)
        assert profile.get_extra_memory_target() == target

    @pytest.mark.parametrize("target", [-0.1, 1.5, math.nan])
    def test_rejects_out_of_range(self, profile: OptimizationProfile, target: float) -> None:
        """Test rejected values keep the previous target."""
        profile.set_extra_memory_target(0.25)

        assert not profile.set_extra_memory_target(target)
        assert profile.get_extra_memory_target() == 0.25


class TestValidity:
    """Tests for profile validity."""

    def test_empty_profile(self, profile: OptimizationProfile) -> None:
        """Test a profile without bounds is valid."""
        assert profile.is_valid()

    def test_incomplete(self, profile: OptimizationProfile) -> None:
        """Test a profile missing a selector is invalid."""
        profile.set_min_dimensions("x", MIN_SHAPE)
        profile.set_opt_dimensions("x", OPT_SHAPE)

        assert not profile.is_valid()

    def test_complete(self, profile: OptimizationProfile) -> None:
        """Test ordered min/opt/max bounds are valid."""
        profile.set_min_dimensions("x", MIN_SHAPE)
        profile.set_opt_dimensions("x", OPT_SHAPE)
        profile.set_max_dimensions("x", MAX_SHAPE)

        assert profile.is_valid()

    def test_unordered(self, profile: OptimizationProfile) -> None:
        """Test min above max is invalid."""
        profile.set_min_dimensions("x", MAX_SHAPE)
        profile.set_opt_dimensions("x", OPT_SHAPE)
        profile.set_max_dimensions("x", MIN_SHAPE)

        assert not profile.is_valid()


class TestBuilderLifetime:
    """Tests for the profile's dependency on its builder."""

    def test_alive_with_builder(self, builder: Builder, profile: OptimizationProfile) -> None:
        """Test the profile is usable while its builder lives."""
        assert profile.is_alive
        assert profile.device == builder.device

    def test_builder_released(self, builder: Builder, profile: OptimizationProfile) -> None:
        """Test every call fails once the builder is released."""
        builder.release()

        assert not profile.is_alive
        with pytest.raises(BuilderReleasedError):
            profile.set_min_dimensions("x", MIN_SHAPE)
        with pytest.raises(BuilderReleasedError):
            profile.get_extra_memory_target()
        with pytest.raises(BuilderReleasedError):
            profile.is_valid()

    def test_builder_collected(self, backend: SimulatedBackend) -> None:
        """Test the profile does not keep its builder alive."""
        builder = Builder.new(backend)
        profile = builder.create_optimization_profile()

        del builder
        gc.collect()

        assert not profile.is_alive
        assert "builder released" in repr(profile)
        with pytest.raises(BuilderReleasedError):
            profile.as_ptr()
