"""
Blocking builder.

Every method runs on the calling thread and makes the builder's device
current for the duration of native calls that allocate or compute.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from asynctrt.backends import get_backend
from asynctrt.exceptions import AllocationError, OperationError
from asynctrt.ffi.builder_config import BuilderConfig
from asynctrt.ffi.handle import NativeHandle, allocate
from asynctrt.ffi.memory import HostBuffer
from asynctrt.ffi.network import NetworkDefinition, NetworkDefinitionCreationFlags
from asynctrt.ffi.optimization_profile import OptimizationProfile

if TYPE_CHECKING:
    from asynctrt.backends.base import NativeBackend
    from asynctrt.device import DeviceId

logger = logging.getLogger(__name__)


class Builder:
    """
    Builds serialized engines from network definitions.

    The builder is bound to the device that was current when it was
    created. Optimization profiles it creates become unusable once it is
    released.

    Example:
        >>> with Builder.new() as builder:
        ...     network = builder.network_definition(
        ...         NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE
        ...     )
        ...     ...
        ...     plan = builder.build_serialized_network(network, builder.config())
    """

    def __init__(self, handle: NativeHandle) -> None:
        self._handle = handle

    @classmethod
    def new(cls, backend: NativeBackend | None = None) -> Builder:
        """
        Allocate a builder on the current device.

        Args:
            backend: Native backend to use (default: the global backend).

        Raises:
            AllocationError: If the native builder cannot be created.
        """
        backend = backend or get_backend()
        return cls(allocate(backend, "builder", backend.create_builder))

    @property
    def backend(self) -> NativeBackend:
        return self._handle.backend

    @property
    def device(self) -> DeviceId:
        """Get the device the builder is bound to."""
        return self._handle.device

    @property
    def is_released(self) -> bool:
        return self._handle.is_released

    def as_ptr(self) -> Any:
        return self._handle.as_ptr()

    def as_mut_ptr(self) -> Any:
        return self._handle.as_mut_ptr()

    def create_optimization_profile(self) -> OptimizationProfile:
        """
        Create an empty optimization profile owned by this builder.

        Raises:
            AllocationError: If the native profile cannot be created.
        """
        with self.backend.device_context.use(self.device):
            ptr = self.backend.builder_create_optimization_profile(self.as_mut_ptr())
        if ptr is None:
            raise AllocationError("optimization profile", self.backend.last_error())
        return OptimizationProfile(self, ptr)

    def add_optimization_profile(self) -> None:
        """Allocate an optimization profile without returning it."""
        self.create_optimization_profile()

    def with_optimization_profile(self) -> Builder:
        """Allocate an optimization profile and return the builder."""
        self.create_optimization_profile()
        return self

    def config(self) -> BuilderConfig:
        """
        Create a builder configuration.

        Raises:
            AllocationError: If the native config cannot be created.
        """
        with self.backend.device_context.use(self.device):
            handle = allocate(
                self.backend, "builder_config", self.backend.builder_create_config, self.as_mut_ptr()
            )
        return BuilderConfig(handle)

    def network_definition(self, flags: NetworkDefinitionCreationFlags) -> NetworkDefinition:
        """
        Create an empty network definition.

        Args:
            flags: Network creation flags.

        Raises:
            AllocationError: If the native network cannot be created.
        """
        with self.backend.device_context.use(self.device):
            handle = allocate(
                self.backend,
                "network_definition",
                self.backend.builder_create_network,
                self.as_mut_ptr(),
                flags.native_bits(),
            )
        return NetworkDefinition(handle, self, flags)

    def build_serialized_network(
        self, network: NetworkDefinition, config: BuilderConfig
    ) -> HostBuffer:
        """
        Compile a network and serialize the result.

        Both ``network`` and ``config`` are consumed, whether or not the
        build succeeds.

        Args:
            network: Network definition to compile.
            config: Build configuration.

        Returns:
            The serialized plan.

        Raises:
            OperationError: If compilation fails.
            ConsumedError: If ``network`` or ``config`` was already consumed.
                Neither is consumed in that case.
        """
        network.as_ptr()
        config.as_ptr()
        network_handle = network._consume("build_serialized_network")
        config_handle = config._consume("build_serialized_network")
        backend = self.backend
        try:
            with backend.device_context.use(self.device):
                logger.debug(f"Building serialized network on device {self.device}")
                ptr = backend.builder_build_serialized_network(
                    self.as_mut_ptr(), network_handle.as_mut_ptr(), config_handle.as_mut_ptr()
                )
                if ptr is None:
                    raise OperationError("buildSerializedNetwork", backend.last_error())
                plan = HostBuffer(NativeHandle(backend, "host_memory", ptr, self.device))
        finally:
            config_handle.release()
            network_handle.release()
        logger.debug(f"Built serialized network ({plan.size()} bytes)")
        return plan

    def platform_has_fast_int8(self) -> bool:
        return self.backend.builder_platform_has_fast_int8(self.as_ptr())

    def platform_has_fast_fp16(self) -> bool:
        return self.backend.builder_platform_has_fast_fp16(self.as_ptr())

    def release(self) -> None:
        """Destroy the native builder. Profiles it created become unusable."""
        self._handle.release()

    def __enter__(self) -> Builder:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.release()

    def __repr__(self) -> str:
        """String representation."""
        return f"Builder(device={self.device}, backend={self.backend!r})"
