"""
Native backend base classes and interfaces.

Defines the narrow interface through which the wrappers talk to the native
inference library. Every method takes and returns opaque native objects;
ownership, device selection and error translation are handled by the
callers in :mod:`asynctrt.ffi`.

Factory methods return ``None`` on failure, after which :meth:`last_error`
holds the library's diagnostic. Validation-style setters return ``False``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from asynctrt.device import DeviceContext


class BackendType(Enum):
    """Type of native backend."""

    TENSORRT = auto()
    SIMULATED = auto()


class NativeBackend(ABC):
    """
    Abstract base class for native inference backends.

    All backends must implement this interface to provide a consistent
    view of the builder, profile, config, engine, context and runtime
    objects of the native library.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def device_context(self) -> DeviceContext:
        """Get the device context native calls must respect."""
        ...

    @property
    @abstractmethod
    def version(self) -> tuple[int, int, int]:
        """Get the (major, minor, patch) version of the native library."""
        ...

    @abstractmethod
    def last_error(self) -> str | None:
        """Get the most recent error diagnostic reported by the library."""
        ...

    @abstractmethod
    def destroy(self, kind: str, obj: Any) -> None:
        """
        Destroy a native object.

        Args:
            kind: Object kind (``"builder"``, ``"engine"``, ...).
            obj: Native object to destroy.
        """
        ...

    # Builder

    @abstractmethod
    def create_builder(self) -> Any | None:
        """Allocate a builder on the current device."""
        ...

    @abstractmethod
    def builder_create_config(self, builder: Any) -> Any | None:
        """Allocate a builder configuration."""
        ...

    @abstractmethod
    def builder_create_network(self, builder: Any, flags: int) -> Any | None:
        """
        Allocate a network definition.

        Args:
            builder: Native builder.
            flags: Bitmask of network creation flags.
        """
        ...

    @abstractmethod
    def builder_create_optimization_profile(self, builder: Any) -> Any | None:
        """Allocate an optimization profile owned by the builder."""
        ...

    @abstractmethod
    def builder_build_serialized_network(
        self, builder: Any, network: Any, config: Any
    ) -> Any | None:
        """Compile a network and return the serialized plan as host memory."""
        ...

    @abstractmethod
    def builder_platform_has_fast_int8(self, builder: Any) -> bool:
        """Check whether the platform has fast native INT8."""
        ...

    @abstractmethod
    def builder_platform_has_fast_fp16(self, builder: Any) -> bool:
        """Check whether the platform has fast native FP16."""
        ...

    # Network definition

    @abstractmethod
    def network_add_input(
        self, network: Any, name: str, dtype: int, dims: Sequence[int]
    ) -> Any | None:
        """Add a network input and return its tensor."""
        ...

    @abstractmethod
    def network_add_identity(self, network: Any, tensor: Any) -> Any | None:
        """Add an identity layer and return its output tensor."""
        ...

    @abstractmethod
    def network_mark_output(self, network: Any, tensor: Any) -> None:
        """Mark a tensor as a network output."""
        ...

    @abstractmethod
    def network_num_inputs(self, network: Any) -> int:
        """Get the number of network inputs."""
        ...

    @abstractmethod
    def network_num_outputs(self, network: Any) -> int:
        """Get the number of network outputs."""
        ...

    @abstractmethod
    def network_get_input(self, network: Any, index: int) -> Any:
        """Get a network input tensor by index."""
        ...

    @abstractmethod
    def network_get_output(self, network: Any, index: int) -> Any:
        """Get a network output tensor by index."""
        ...

    @abstractmethod
    def tensor_get_name(self, tensor: Any) -> str:
        """Get the name of a network tensor."""
        ...

    @abstractmethod
    def tensor_set_name(self, tensor: Any, name: str) -> None:
        """Rename a network tensor."""
        ...

    # Optimization profile

    @abstractmethod
    def profile_set_dimensions(
        self, profile: Any, input_name: str, select: int, dims: Sequence[int]
    ) -> bool:
        """Set min/opt/max dimensions; ``False`` on inconsistency."""
        ...

    @abstractmethod
    def profile_get_dimensions(
        self, profile: Any, input_name: str, select: int
    ) -> list[int] | None:
        """Get min/opt/max dimensions; ``None`` if never set."""
        ...

    @abstractmethod
    def profile_set_shape_values(
        self, profile: Any, input_name: str, select: int, values: Sequence[int]
    ) -> bool:
        """Set min/opt/max shape values; ``False`` on inconsistency."""
        ...

    @abstractmethod
    def profile_get_nb_shape_values(self, profile: Any, input_name: str) -> int:
        """Get the number of shape values set for an input, or -1."""
        ...

    @abstractmethod
    def profile_get_shape_values(
        self, profile: Any, input_name: str, select: int
    ) -> list[int] | None:
        """Get min/opt/max shape values; ``None`` if the query fails."""
        ...

    @abstractmethod
    def profile_set_extra_memory_target(self, profile: Any, target: float) -> bool:
        """Set the extra memory target; ``False`` if outside [0, 1]."""
        ...

    @abstractmethod
    def profile_get_extra_memory_target(self, profile: Any) -> float:
        """Get the extra memory target."""
        ...

    @abstractmethod
    def profile_is_valid(self, profile: Any) -> bool:
        """Check whether the profile can be attached to a config."""
        ...

    # Builder config

    @abstractmethod
    def config_set_memory_pool_limit(self, config: Any, pool: str, size: int) -> None:
        """Set a memory pool limit in bytes."""
        ...

    @abstractmethod
    def config_set_flag(self, config: Any, flag: str) -> None:
        """Set a builder flag by its native name."""
        ...

    @abstractmethod
    def config_add_optimization_profile(self, config: Any, profile: Any) -> int:
        """Attach a profile; returns its index or a negative value on failure."""
        ...

    # Host memory

    @abstractmethod
    def host_memory_view(self, memory: Any) -> memoryview:
        """Get a read-only byte view of native host memory."""
        ...

    # Runtime

    @abstractmethod
    def create_runtime(self) -> Any | None:
        """Allocate a runtime on the current device."""
        ...

    @abstractmethod
    def runtime_deserialize_engine(self, runtime: Any, data: memoryview) -> Any | None:
        """Deserialize an engine from plan bytes."""
        ...

    @abstractmethod
    def runtime_set_engine_host_code_allowed(self, runtime: Any, allowed: bool) -> None:
        """Allow or forbid deserializing engines with host executable code."""
        ...

    # Engine

    @abstractmethod
    def engine_serialize(self, engine: Any) -> Any | None:
        """Serialize an engine to native host memory."""
        ...

    @abstractmethod
    def engine_num_io_tensors(self, engine: Any) -> int:
        """Get the number of I/O tensors."""
        ...

    @abstractmethod
    def engine_io_tensor_name(self, engine: Any, index: int) -> str:
        """Get the name of the I/O tensor at ``index``."""
        ...

    @abstractmethod
    def engine_tensor_shape(self, engine: Any, name: str) -> list[int]:
        """Get the shape of a named tensor."""
        ...

    @abstractmethod
    def engine_tensor_io_mode(self, engine: Any, name: str) -> int:
        """Get the native I/O mode code of a named tensor."""
        ...

    @abstractmethod
    def engine_tensor_data_type(self, engine: Any, name: str) -> int:
        """Get the native data type code of a named tensor."""
        ...

    @abstractmethod
    def engine_create_execution_context(self, engine: Any) -> Any | None:
        """Allocate an execution context for an engine."""
        ...

    # Execution context

    @abstractmethod
    def context_set_tensor_address(self, context: Any, name: str, address: int) -> bool:
        """Bind a device address to a named tensor."""
        ...

    @abstractmethod
    def context_set_input_shape(self, context: Any, name: str, dims: Sequence[int]) -> bool:
        """Set the runtime shape of a dynamic input."""
        ...

    @abstractmethod
    def context_enqueue(self, context: Any, stream: int) -> bool:
        """Submit asynchronous execution on a stream."""
        ...

    # Parser

    @abstractmethod
    def create_parser(self, network: Any) -> Any | None:
        """Allocate a model parser that populates ``network``."""
        ...

    @abstractmethod
    def parser_parse(self, parser: Any, data: bytes) -> bool:
        """Parse a serialized model into the parser's network."""
        ...

    @abstractmethod
    def parser_errors(self, parser: Any) -> list[str]:
        """Get the diagnostics collected by the last parse."""
        ...

    def __repr__(self) -> str:
        """String representation."""
        major, minor, patch = self.version
        return f"{type(self).__name__}(version={major}.{minor}.{patch})"
