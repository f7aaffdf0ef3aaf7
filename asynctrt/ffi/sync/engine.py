"""
Blocking engine and execution context.

An :class:`Engine` is reference counted. The caller that deserialized it
holds the first reference; every :class:`ExecutionContext` created from it
holds another. The native engine, and the runtime that produced it, are
destroyed when the last reference is released.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from enum import IntEnum
from typing import TYPE_CHECKING, Any

from asynctrt import exceptions
from asynctrt.exceptions import HandleReleasedError, OperationError
from asynctrt.ffi.handle import NativeHandle, allocate
from asynctrt.ffi.memory import HostBuffer, device_pointer, stream_pointer
from asynctrt.ffi.version import supports_fp4

if TYPE_CHECKING:
    from asynctrt.backends.base import NativeBackend
    from asynctrt.device import DeviceId
    from asynctrt.ffi.sync.runtime import Runtime

logger = logging.getLogger(__name__)


class TensorIoMode(IntEnum):
    """Whether a tensor is an engine input, output, or neither."""

    NONE = 0
    INPUT = 1
    OUTPUT = 2

    @classmethod
    def from_code(cls, code: int) -> TensorIoMode:
        """Map a native I/O mode code; unknown codes map to ``NONE``."""
        if code == 1:
            return cls.INPUT
        if code == 2:
            return cls.OUTPUT
        return cls.NONE


class TensorDataType(IntEnum):
    """Element type of a tensor. Values are the native codes."""

    FLOAT = 0
    HALF = 1
    INT8 = 2
    INT32 = 3
    BOOL = 4
    UINT8 = 5
    FP8 = 6
    BF16 = 7
    INT64 = 8
    INT4 = 9
    FP4 = 10

    @classmethod
    def from_code(cls, code: int, version: tuple[int, int, int]) -> TensorDataType:
        """
        Map a native data type code.

        An unknown code means the native library is newer than this package
        understands, and the process is aborted.

        Args:
            code: Native data type code.
            version: Native library version the code came from.
        """
        if code == cls.FP4 and not supports_fp4(version):
            exceptions.fatal(f"Unknown data type {code} for native version {version}")
        try:
            return cls(code)
        except ValueError:
            exceptions.fatal(f"Unknown data type {code} for native version {version}")


class Engine:
    """
    A compiled, immutable model bound to one device.

    Example:
        >>> engine = Runtime.new().deserialize_engine(plan_bytes)
        >>> [engine.io_tensor_name(i) for i in range(engine.num_io_tensors())]
        ['x', 'y']
    """

    def __init__(self, handle: NativeHandle, runtime: Runtime) -> None:
        self._handle = handle
        self._runtime = runtime
        self._lock = threading.Lock()
        self._refs = 1
        self._owner_released = False

    @property
    def backend(self) -> NativeBackend:
        return self._handle.backend

    @property
    def device(self) -> DeviceId:
        """Get the device the engine was deserialized on."""
        return self._runtime.device

    @property
    def ref_count(self) -> int:
        """Get the number of live references (caller plus contexts)."""
        with self._lock:
            return self._refs

    @property
    def is_released(self) -> bool:
        return self._handle.is_released

    def as_ptr(self) -> Any:
        return self._handle.as_ptr()

    def as_mut_ptr(self) -> Any:
        return self._handle.as_mut_ptr()

    def serialize(self) -> HostBuffer:
        """
        Serialize the engine to a plan.

        Raises:
            OperationError: If native serialization fails.
        """
        backend = self.backend
        with backend.device_context.use(self.device):
            ptr = backend.engine_serialize(self.as_ptr())
        if ptr is None:
            raise OperationError("serialize", backend.last_error())
        return HostBuffer(NativeHandle(backend, "host_memory", ptr, self.device))

    def num_io_tensors(self) -> int:
        return self.backend.engine_num_io_tensors(self.as_ptr())

    def io_tensor_name(self, index: int) -> str:
        """
        Get the name of an I/O tensor.

        Raises:
            IndexError: If ``index`` is not below :meth:`num_io_tensors`.
        """
        count = self.num_io_tensors()
        if not 0 <= index < count:
            raise IndexError(f"I/O tensor index {index} out of range (0-{count - 1})")
        return self.backend.engine_io_tensor_name(self.as_ptr(), index)

    def tensor_shape(self, name: str) -> list[int]:
        """Get a tensor's dimensions; dynamic dimensions are reported as -1."""
        return self.backend.engine_tensor_shape(self.as_ptr(), name)

    def tensor_io_mode(self, name: str) -> TensorIoMode:
        return TensorIoMode.from_code(self.backend.engine_tensor_io_mode(self.as_ptr(), name))

    def tensor_data_type(self, name: str) -> TensorDataType:
        backend = self.backend
        code = backend.engine_tensor_data_type(self.as_ptr(), name)
        return TensorDataType.from_code(code, backend.version)

    def _create_context_handle(self) -> Any:
        backend = self.backend
        with backend.device_context.use(self.device):
            return allocate(
                backend,
                "execution_context",
                backend.engine_create_execution_context,
                self.as_mut_ptr(),
            )

    def _retain(self) -> None:
        with self._lock:
            if self._refs == 0:
                raise HandleReleasedError("Engine")
            self._refs += 1

    def _adopt(self) -> None:
        """Take over the caller's reference."""
        with self._lock:
            if self._owner_released or self._refs == 0:
                raise HandleReleasedError("Engine")
            self._owner_released = True

    def _release_ref(self) -> None:
        with self._lock:
            self._refs -= 1
            last = self._refs == 0
        if last:
            logger.debug(f"Last engine reference released on device {self.device}")
            self._handle.release()
            self._runtime.release()

    def close(self) -> None:
        """
        Release the caller's reference.

        The native engine stays alive while execution contexts still use it.
        Calling this more than once has no further effect.
        """
        with self._lock:
            if self._owner_released:
                return
            self._owner_released = True
        self._release_ref()

    def __del__(self) -> None:
        if getattr(self, "_owner_released", True) is False:
            self.close()

    def __enter__(self) -> Engine:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def __repr__(self) -> str:
        """String representation."""
        return f"Engine(device={self.device}, refs={self.ref_count})"


class ExecutionContext:
    """
    Per-invocation execution state for one engine.

    Tensor binding is not synchronized; concurrent binds on one context
    must be serialized by the caller.

    Example:
        >>> context = ExecutionContext.from_engine(engine)
        >>> context.enqueue({"x": x_gpu, "y": y_gpu}, stream)
        >>> stream.synchronize()
    """

    def __init__(self, handle: NativeHandle, engine: Engine) -> None:
        self._handle = handle
        self._engine: Engine | None = engine
        self._lock = threading.Lock()

    @classmethod
    def from_engine(cls, engine: Engine) -> ExecutionContext:
        """
        Create a context that takes over the caller's engine reference.

        The engine is released together with the context; the caller should
        not :meth:`Engine.close` it separately.

        Raises:
            AllocationError: If the native context cannot be created. The
                engine reference is released in that case too.
        """
        engine._adopt()
        try:
            handle = engine._create_context_handle()
        except BaseException:
            engine._release_ref()
            raise
        return cls(handle, engine)

    @classmethod
    def from_engine_many(cls, engine: Engine, num: int) -> list[ExecutionContext]:
        """
        Create ``num`` contexts sharing the caller's engine reference.

        Either all contexts are created or none are, and the caller's
        reference is released in both cases.

        Raises:
            AllocationError: If any native context cannot be created.
        """
        if num < 0:
            raise ValueError(f"num must be >= 0, got {num}")
        engine._adopt()
        contexts: list[ExecutionContext] = []
        try:
            for _ in range(num):
                handle = engine._create_context_handle()
                engine._retain()
                contexts.append(cls(handle, engine))
        except BaseException:
            for context in contexts:
                context.release()
            raise
        finally:
            engine._release_ref()
        return contexts

    @classmethod
    def new(cls, engine: Engine) -> ExecutionContext:
        """
        Create a context that shares the engine with the caller.

        The caller keeps its own reference and releases it independently.
        """
        engine._retain()
        try:
            handle = engine._create_context_handle()
        except BaseException:
            engine._release_ref()
            raise
        return cls(handle, engine)

    @property
    def engine(self) -> Engine:
        """
        Get the engine this context executes.

        Raises:
            HandleReleasedError: If the context has been released.
        """
        if self._engine is None:
            raise HandleReleasedError("ExecutionContext")
        return self._engine

    @property
    def device(self) -> DeviceId:
        return self._handle.device

    @property
    def is_released(self) -> bool:
        return self._handle.is_released

    def as_ptr(self) -> Any:
        return self._handle.as_ptr()

    def as_mut_ptr(self) -> Any:
        return self._handle.as_mut_ptr()

    def set_tensor_address(self, name: str, buffer: Any) -> None:
        """
        Bind a device buffer to a named tensor.

        Args:
            name: Tensor name.
            buffer: Device address, CuPy array, or object with ``as_mut_ptr()``.

        Raises:
            OperationError: If the native bind fails.
        """
        backend = self._handle.backend
        if not backend.context_set_tensor_address(self.as_mut_ptr(), name, device_pointer(buffer)):
            raise OperationError("setTensorAddress", backend.last_error())

    def set_input_shape(self, name: str, dims: Sequence[int]) -> bool:
        """
        Set the runtime shape of a dynamic input.

        Returns:
            ``False`` if the shape is outside the bound profile or otherwise
            inconsistent.
        """
        return self._handle.backend.context_set_input_shape(
            self.as_mut_ptr(), name, [int(d) for d in dims]
        )

    def enqueue(self, io_tensors: Mapping[str, Any], stream: Any) -> None:
        """
        Bind every tensor in ``io_tensors`` and submit execution on ``stream``.

        Returns once the work is submitted; completion is observed through
        the stream. A failed bind leaves earlier binds in place, so callers
        must re-bind every tensor before retrying.

        Args:
            io_tensors: Mapping from tensor name to device buffer.
            stream: Device stream handle or CuPy stream.

        Raises:
            OperationError: If a bind or the submission fails.
        """
        for name, buffer in io_tensors.items():
            self.set_tensor_address(name, buffer)
        backend = self._handle.backend
        with backend.device_context.use(self.device):
            ok = backend.context_enqueue(self.as_mut_ptr(), stream_pointer(stream))
        if not ok:
            raise OperationError("enqueueV3", backend.last_error())

    def release(self) -> None:
        """Destroy the native context and release its engine reference."""
        with self._lock:
            engine, self._engine = self._engine, None
        self._handle.release()
        if engine is not None:
            engine._release_ref()

    def __del__(self) -> None:
        if getattr(self, "_engine", None) is not None:
            self.release()

    def __enter__(self) -> ExecutionContext:
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
        state = "released" if self.is_released else "live"
        return f"ExecutionContext(device={self.device}, {state})"
