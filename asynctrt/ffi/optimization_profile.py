"""
Optimization profiles for dynamic input shapes.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Sequence
from enum import IntEnum
from typing import TYPE_CHECKING, Any

from asynctrt.exceptions import BuilderReleasedError, OperationError

if TYPE_CHECKING:
    from asynctrt.device import DeviceId
    from asynctrt.ffi.sync.builder import Builder

logger = logging.getLogger(__name__)


class OptimizationProfileSelector(IntEnum):
    """Which bound of a profile a value applies to."""

    MIN = 0
    OPT = 1
    MAX = 2


class OptimizationProfile:
    """
    Min/opt/max bounds for dynamic input dimensions and shape tensors.

    A profile is owned by the :class:`Builder` that created it and is only
    usable while that builder is alive; afterwards every call raises
    :class:`BuilderReleasedError`. Setters return ``False`` when the values
    are inconsistent with what was set before. Getters return ``None`` for
    bounds that were never set.

    Example:
        >>> profile = builder.create_optimization_profile()
        >>> profile.set_min_dimensions("x", [1, 3, 224, 224])
        True
        >>> profile.get_opt_dimensions("x") is None
        True
    """

    def __init__(self, builder: Builder, ptr: Any) -> None:
        self._builder_ref = weakref.ref(builder)
        self._backend = builder.backend
        self._device = builder.device
        self._ptr = ptr

    @property
    def device(self) -> DeviceId:
        """Get the device of the owning builder."""
        return self._device

    @property
    def is_alive(self) -> bool:
        """Check whether the owning builder is still alive."""
        builder = self._builder_ref()
        return builder is not None and not builder.is_released

    def as_ptr(self) -> Any:
        """
        Get the native profile.

        Raises:
            BuilderReleasedError: If the owning builder has been destroyed.
        """
        if not self.is_alive:
            raise BuilderReleasedError()
        return self._ptr

    def as_mut_ptr(self) -> Any:
        """Get the native profile for mutating calls."""
        return self.as_ptr()

    # Dimensions

    def set_min_dimensions(self, input_name: str, dims: Sequence[int]) -> bool:
        """Set the minimum dimensions of a dynamic input."""
        return self._set_dimensions(input_name, OptimizationProfileSelector.MIN, dims)

    def set_opt_dimensions(self, input_name: str, dims: Sequence[int]) -> bool:
        """Set the dimensions used for kernel selection."""
        return self._set_dimensions(input_name, OptimizationProfileSelector.OPT, dims)

    def set_max_dimensions(self, input_name: str, dims: Sequence[int]) -> bool:
        """Set the maximum dimensions of a dynamic input."""
        return self._set_dimensions(input_name, OptimizationProfileSelector.MAX, dims)

    def _set_dimensions(
        self, input_name: str, select: OptimizationProfileSelector, dims: Sequence[int]
    ) -> bool:
        ok = self._backend.profile_set_dimensions(
            self.as_mut_ptr(), input_name, int(select), [int(d) for d in dims]
        )
        if not ok:
            logger.debug(f"Rejected {select.name.lower()} dimensions {list(dims)} for '{input_name}'")
        return ok

    def get_min_dimensions(self, input_name: str) -> list[int] | None:
        return self._backend.profile_get_dimensions(
            self.as_ptr(), input_name, int(OptimizationProfileSelector.MIN)
        )

    def get_opt_dimensions(self, input_name: str) -> list[int] | None:
        return self._backend.profile_get_dimensions(
            self.as_ptr(), input_name, int(OptimizationProfileSelector.OPT)
        )

    def get_max_dimensions(self, input_name: str) -> list[int] | None:
        return self._backend.profile_get_dimensions(
            self.as_ptr(), input_name, int(OptimizationProfileSelector.MAX)
        )

    # Shape values

    def set_min_shape_values(self, input_name: str, values: Sequence[int]) -> bool:
        """Set the minimum values of an input shape tensor."""
        return self._set_shape_values(input_name, OptimizationProfileSelector.MIN, values)

    def set_opt_shape_values(self, input_name: str, values: Sequence[int]) -> bool:
        """Set the optimization values of an input shape tensor."""
        return self._set_shape_values(input_name, OptimizationProfileSelector.OPT, values)

    def set_max_shape_values(self, input_name: str, values: Sequence[int]) -> bool:
        """Set the maximum values of an input shape tensor."""
        return self._set_shape_values(input_name, OptimizationProfileSelector.MAX, values)

    def _set_shape_values(
        self, input_name: str, select: OptimizationProfileSelector, values: Sequence[int]
    ) -> bool:
        ok = self._backend.profile_set_shape_values(
            self.as_mut_ptr(), input_name, int(select), [int(v) for v in values]
        )
        if not ok:
            logger.debug(
                f"Rejected {select.name.lower()} shape values {list(values)} for '{input_name}'"
            )
        return ok

    def get_min_shape_values(self, input_name: str) -> list[int] | None:
        return self._get_shape_values(input_name, OptimizationProfileSelector.MIN)

    def get_opt_shape_values(self, input_name: str) -> list[int] | None:
        return self._get_shape_values(input_name, OptimizationProfileSelector.OPT)

    def get_max_shape_values(self, input_name: str) -> list[int] | None:
        return self._get_shape_values(input_name, OptimizationProfileSelector.MAX)

    def _get_shape_values(
        self, input_name: str, select: OptimizationProfileSelector
    ) -> list[int] | None:
        """
        Get shape values for one selector.

        Returns:
            The values, or ``None`` if no shape values were set for the input.

        Raises:
            OperationError: If the input has shape values but the native
                query for this selector fails.
        """
        ptr = self.as_ptr()
        if self._backend.profile_get_nb_shape_values(ptr, input_name) < 0:
            return None
        values = self._backend.profile_get_shape_values(ptr, input_name, int(select))
        if values is None:
            raise OperationError("getShapeValues", self._backend.last_error())
        return values

    # Misc

    def set_extra_memory_target(self, target: float) -> bool:
        """
        Set the fraction of extra device memory the builder may use.

        Returns:
            ``True`` if ``target`` is within [0, 1]; otherwise ``False`` and
            the previous target is kept.
        """
        return self._backend.profile_set_extra_memory_target(self.as_mut_ptr(), float(target))

    def get_extra_memory_target(self) -> float:
        return self._backend.profile_get_extra_memory_target(self.as_ptr())

    def is_valid(self) -> bool:
        """Check whether the profile can be attached to a builder config."""
        return self._backend.profile_is_valid(self.as_ptr())

    def __repr__(self) -> str:
        """String representation."""
        state = "alive" if self.is_alive else "builder released"
        return f"OptimizationProfile(device={self._device}, {state})"
