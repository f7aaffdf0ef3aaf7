"""
Network definitions.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

from asynctrt.exceptions import AllocationError, ConsumedError, HandleReleasedError

if TYPE_CHECKING:
    from asynctrt.device import DeviceId
    from asynctrt.ffi.handle import NativeHandle
    from asynctrt.ffi.sync.builder import Builder


class NetworkDefinitionCreationFlags(Enum):
    """Flags for :meth:`Builder.network_definition`."""

    NONE = "none"
    EXPLICIT_BATCH_SIZE = "explicit_batch_size"

    def native_bits(self) -> int:
        """Get the native creation bitmask."""
        if self is NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE:
            return 1 << 0  # kEXPLICIT_BATCH
        return 0


class Tensor:
    """A tensor inside a :class:`NetworkDefinition`."""

    def __init__(self, network: NetworkDefinition, ptr: Any) -> None:
        self._network = network
        self._ptr = ptr

    @property
    def name(self) -> str:
        self._network.as_ptr()
        return self._network.backend.tensor_get_name(self._ptr)

    @name.setter
    def name(self, value: str) -> None:
        self._network.as_mut_ptr()
        self._network.backend.tensor_set_name(self._ptr, value)

    def as_ptr(self) -> Any:
        self._network.as_ptr()
        return self._ptr

    def __repr__(self) -> str:
        """String representation."""
        return f"Tensor(name={self.name!r})"


class NetworkDefinition:
    """
    Graph under construction.

    Created by :meth:`Builder.network_definition` and consumed by
    :meth:`Builder.build_serialized_network`. Keeps its builder alive.

    Example:
        >>> network = builder.network_definition(
        ...     NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE
        ... )
        >>> x = network.add_input("x", TensorDataType.FLOAT, [-1, 3, 224, 224])
        >>> network.mark_output(network.add_identity(x))
    """

    def __init__(
        self, handle: NativeHandle, builder: Builder, flags: NetworkDefinitionCreationFlags
    ) -> None:
        self._handle = handle
        self._builder = builder
        self._flags = flags
        self._consumed_by: str | None = None

    @property
    def backend(self) -> Any:
        return self._handle.backend

    @property
    def device(self) -> DeviceId:
        return self._handle.device

    @property
    def flags(self) -> NetworkDefinitionCreationFlags:
        return self._flags

    @property
    def is_consumed(self) -> bool:
        return self._consumed_by is not None

    def as_ptr(self) -> Any:
        """
        Get the native network.

        Raises:
            ConsumedError: If a build already consumed this network.
            HandleReleasedError: If the network has been destroyed.
        """
        if self._consumed_by is not None:
            raise ConsumedError("NetworkDefinition", self._consumed_by)
        return self._handle.as_ptr()

    def as_mut_ptr(self) -> Any:
        return self.as_ptr()

    def add_input(self, name: str, dtype: int, dims: Sequence[int]) -> Tensor:
        """
        Add a network input.

        Args:
            name: Input name.
            dtype: A :class:`TensorDataType` (or its native code).
            dims: Dimensions; ``-1`` marks a dynamic dimension.

        Raises:
            AllocationError: If the native call rejects the input.
        """
        ptr = self.backend.network_add_input(
            self.as_mut_ptr(), name, int(dtype), [int(d) for d in dims]
        )
        if ptr is None:
            raise AllocationError("network input", self.backend.last_error())
        return Tensor(self, ptr)

    def add_identity(self, tensor: Tensor) -> Tensor:
        """Add an identity layer and return its output."""
        ptr = self.backend.network_add_identity(self.as_mut_ptr(), tensor.as_ptr())
        if ptr is None:
            raise AllocationError("identity layer", self.backend.last_error())
        return Tensor(self, ptr)

    def mark_output(self, tensor: Tensor) -> None:
        self.backend.network_mark_output(self.as_mut_ptr(), tensor.as_ptr())

    @property
    def num_inputs(self) -> int:
        return self.backend.network_num_inputs(self.as_ptr())

    @property
    def num_outputs(self) -> int:
        return self.backend.network_num_outputs(self.as_ptr())

    def inputs(self) -> list[Tensor]:
        ptr = self.as_ptr()
        return [
            Tensor(self, self.backend.network_get_input(ptr, i)) for i in range(self.num_inputs)
        ]

    def outputs(self) -> list[Tensor]:
        ptr = self.as_ptr()
        return [
            Tensor(self, self.backend.network_get_output(ptr, i))
            for i in range(self.num_outputs)
        ]

    def _consume(self, consumer: str) -> NativeHandle:
        if self._consumed_by is not None:
            raise ConsumedError("NetworkDefinition", self._consumed_by)
        if self._handle.is_released:
            raise HandleReleasedError("NetworkDefinition")
        self._consumed_by = consumer
        return self._handle

    def release(self) -> None:
        """Destroy the native network."""
        self._handle.release()

    def __repr__(self) -> str:
        """String representation."""
        return f"NetworkDefinition(flags={self._flags.name}, consumed={self.is_consumed})"
