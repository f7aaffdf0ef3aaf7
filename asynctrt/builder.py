"""
Asynchronous builder.

Blocking calls (allocation, configuration, compilation) run on the
background worker; cheap queries and profile creation stay on the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from asynctrt.backends import get_backend
from asynctrt.ffi.sync.builder import Builder as InnerBuilder
from asynctrt.worker import get_worker

if TYPE_CHECKING:
    from asynctrt.backends.base import NativeBackend
    from asynctrt.device import DeviceId
    from asynctrt.ffi.builder_config import BuilderConfig
    from asynctrt.ffi.memory import HostBuffer
    from asynctrt.ffi.network import NetworkDefinition, NetworkDefinitionCreationFlags
    from asynctrt.ffi.optimization_profile import OptimizationProfile


class Builder:
    """
    Builds an engine from a network definition.

    Example:
        >>> builder = await Builder.new()
        >>> network = builder.network_definition(
        ...     NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE
        ... )
        >>> x = network.add_input("x", TensorDataType.FLOAT, [-1, 3, 224, 224])
        >>> network.mark_output(network.add_identity(x))
        >>> profile = builder.create_optimization_profile()
        >>> profile.set_min_dimensions("x", [1, 3, 224, 224])
        >>> ...
        >>> config = (await builder.config()).with_optimization_profile(profile)
        >>> plan = await builder.build_serialized_network(network, config)
    """

    def __init__(self, inner: InnerBuilder) -> None:
        self._inner = inner

    @classmethod
    async def new(cls, backend: NativeBackend | None = None) -> Builder:
        """
        Create a builder bound to the caller's current device.

        Args:
            backend: Native backend to use (default: the global backend).

        Raises:
            AllocationError: If the native builder cannot be created.
        """
        backend = backend or get_backend()
        context = backend.device_context
        inner = await get_worker().run_on_device(
            context, context.get_current(), InnerBuilder.new, backend
        )
        return cls(inner)

    @property
    def inner(self) -> InnerBuilder:
        """Get the blocking builder this wraps."""
        return self._inner

    @property
    def device(self) -> DeviceId:
        return self._inner.device

    def create_optimization_profile(self) -> OptimizationProfile:
        """Create an optimization profile owned by this builder."""
        return self._inner.create_optimization_profile()

    def add_optimization_profile(self) -> None:
        """Allocate an empty optimization profile."""
        self._inner.add_optimization_profile()

    def with_optimization_profile(self) -> Builder:
        """Allocate an empty optimization profile and return the builder."""
        self._inner.add_optimization_profile()
        return self

    async def config(self) -> BuilderConfig:
        """Create a builder configuration object."""
        return await get_worker().run(self._inner.config)

    def network_definition(self, flags: NetworkDefinitionCreationFlags) -> NetworkDefinition:
        """
        Create a network definition.

        Args:
            flags: Flags for specifying network properties.
        """
        return self._inner.network_definition(flags)

    async def build_serialized_network(
        self, network: NetworkDefinition, config: BuilderConfig
    ) -> HostBuffer:
        """
        Build and serialize a network.

        Consumes both ``network`` and ``config``.

        Raises:
            OperationError: If compilation fails.
        """
        return await get_worker().run(self._inner.build_serialized_network, network, config)

    def platform_has_fast_int8(self) -> bool:
        return self._inner.platform_has_fast_int8()

    def platform_has_fast_fp16(self) -> bool:
        return self._inner.platform_has_fast_fp16()

    async def release(self) -> None:
        """Destroy the native builder after any build already submitted."""
        await get_worker().run(self._inner.release)

    def __repr__(self) -> str:
        """String representation."""
        return f"Builder(device={self.device})"
