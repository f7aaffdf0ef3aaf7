"""
Builder configuration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from asynctrt.exceptions import ConsumedError, OperationError
from asynctrt.ffi.version import BuilderFlag, resolve_flag_table

if TYPE_CHECKING:
    from asynctrt.device import DeviceId
    from asynctrt.ffi.handle import NativeHandle
    from asynctrt.ffi.optimization_profile import OptimizationProfile

logger = logging.getLogger(__name__)


class BuilderConfig:
    """
    Properties for configuring a builder to produce an engine.

    Setters chain, and a config is consumed by exactly one
    :meth:`Builder.build_serialized_network` call.

    Example:
        >>> config = (
        ...     builder.config()
        ...     .with_max_workspace_size(1 << 30)
        ...     .with_fp16()
        ...     .with_optimization_profile(profile)
        ... )
    """

    def __init__(self, handle: NativeHandle) -> None:
        self._handle = handle
        self._flag_table = resolve_flag_table(handle.backend.version[0])
        self._flags: set[BuilderFlag] = set()
        self._num_profiles = 0
        self._consumed_by: str | None = None

    @property
    def device(self) -> DeviceId:
        return self._handle.device

    @property
    def flags(self) -> frozenset[BuilderFlag]:
        """Get the flags set so far."""
        return frozenset(self._flags)

    @property
    def num_optimization_profiles(self) -> int:
        """Get the number of attached optimization profiles."""
        return self._num_profiles

    @property
    def is_consumed(self) -> bool:
        return self._consumed_by is not None

    def as_ptr(self) -> Any:
        """
        Get the native config.

        Raises:
            ConsumedError: If a build already consumed this config.
        """
        if self._consumed_by is not None:
            raise ConsumedError("BuilderConfig", self._consumed_by)
        return self._handle.as_ptr()

    def as_mut_ptr(self) -> Any:
        return self.as_ptr()

    def with_max_workspace_size(self, size: int) -> BuilderConfig:
        """
        Set the maximum workspace size.

        Args:
            size: Maximum temporary device memory the engine may use, in bytes.
        """
        if size < 0:
            raise ValueError(f"workspace size must be >= 0, got {size}")
        self._handle.backend.config_set_memory_pool_limit(self.as_mut_ptr(), "WORKSPACE", size)
        return self

    def with_strict_types(self) -> BuilderConfig:
        """Make the builder respect the requested layer precisions."""
        return self._set_flag(BuilderFlag.STRICT_TYPES)

    def with_version_compatibility(self) -> BuilderConfig:
        """Build an engine that later runtime versions can load."""
        return self._set_flag(BuilderFlag.VERSION_COMPATIBLE)

    def with_exclude_lean_runtime(self) -> BuilderConfig:
        """Leave the lean runtime out of a version-compatible plan."""
        return self._set_flag(BuilderFlag.EXCLUDE_LEAN_RUNTIME)

    def with_fp16(self) -> BuilderConfig:
        """Allow FP16 kernels."""
        return self._set_flag(BuilderFlag.FP16)

    def with_int8(self) -> BuilderConfig:
        """Allow INT8 kernels."""
        return self._set_flag(BuilderFlag.INT8)

    def _set_flag(self, flag: BuilderFlag) -> BuilderConfig:
        ptr = self.as_mut_ptr()
        for native_name in self._flag_table[flag]:
            self._handle.backend.config_set_flag(ptr, native_name)
        self._flags.add(flag)
        return self

    def with_optimization_profile(self, profile: OptimizationProfile) -> BuilderConfig:
        """Attach an optimization profile and return the config."""
        self.add_optimization_profile(profile)
        return self

    def add_optimization_profile(self, profile: OptimizationProfile) -> None:
        """
        Attach an optimization profile.

        Profiles are numbered in attach order; the native index is not
        returned.

        Raises:
            OperationError: If the native attach call rejects the profile.
            BuilderReleasedError: If the profile's builder has been destroyed.
        """
        backend = self._handle.backend
        index = backend.config_add_optimization_profile(self.as_mut_ptr(), profile.as_ptr())
        if index < 0:
            message = backend.last_error()
            logger.warning(f"Optimization profile rejected: {message}")
            raise OperationError("addOptimizationProfile", message)
        self._num_profiles += 1

    def _consume(self, consumer: str) -> NativeHandle:
        if self._consumed_by is not None:
            raise ConsumedError("BuilderConfig", self._consumed_by)
        self._consumed_by = consumer
        return self._handle

    def release(self) -> None:
        """Destroy the native config."""
        self._handle.release()

    def __repr__(self) -> str:
        """String representation."""
        flags = sorted(flag.name for flag in self._flags)
        return (
            f"BuilderConfig(flags={flags}, profiles={self._num_profiles}, "
            f"consumed={self.is_consumed})"
        )
