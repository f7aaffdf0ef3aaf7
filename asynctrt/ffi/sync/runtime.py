"""
Blocking runtime: plan bytes back into an engine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from asynctrt.backends import get_backend
from asynctrt.exceptions import ConsumedError, OperationError
from asynctrt.ffi.handle import NativeHandle, allocate
from asynctrt.ffi.sync.engine import Engine

if TYPE_CHECKING:
    from asynctrt.backends.base import NativeBackend
    from asynctrt.device import DeviceId
    from asynctrt.ffi.memory import HostBuffer

logger = logging.getLogger(__name__)


class Runtime:
    """
    Deserializes engines.

    A runtime is single use: deserializing consumes it, and the resulting
    :class:`Engine` owns it from then on.

    Example:
        >>> runtime = Runtime.new()
        >>> runtime.set_engine_host_code_allowed(False)
        >>> engine = runtime.deserialize_engine_from_plan(plan)
    """

    def __init__(self, handle: NativeHandle) -> None:
        self._handle = handle
        self._consumed_by: str | None = None

    @classmethod
    def new(cls, backend: NativeBackend | None = None) -> Runtime:
        """
        Allocate a runtime on the current device.

        Raises:
            AllocationError: If the native runtime cannot be created.
        """
        backend = backend or get_backend()
        return cls(allocate(backend, "runtime", backend.create_runtime))

    @property
    def backend(self) -> NativeBackend:
        return self._handle.backend

    @property
    def device(self) -> DeviceId:
        """Get the device the runtime is bound to."""
        return self._handle.device

    def as_ptr(self) -> Any:
        if self._consumed_by is not None:
            raise ConsumedError("Runtime", self._consumed_by)
        return self._handle.as_ptr()

    def as_mut_ptr(self) -> Any:
        return self.as_ptr()

    def set_engine_host_code_allowed(self, allowed: bool) -> None:
        """
        Allow or forbid engines that contain host executable code.

        Version-compatible plans embed their own lean runtime as host code.
        Only allow this for plans from a trusted source.
        """
        self.backend.runtime_set_engine_host_code_allowed(self.as_mut_ptr(), bool(allowed))

    def deserialize_engine_from_plan(self, plan: HostBuffer) -> Engine:
        """Deserialize an engine from a plan produced by a builder or engine."""
        return self._deserialize(plan.data())

    def deserialize_engine(self, buffer: bytes | bytearray | memoryview) -> Engine:
        """
        Deserialize an engine from plan bytes.

        Raises:
            OperationError: If the native deserializer rejects the bytes.
            DeviceSetError: If the runtime's device cannot be made current.
            ConsumedError: If this runtime was already used.
        """
        return self._deserialize(memoryview(buffer))

    def _deserialize(self, data: memoryview) -> Engine:
        ptr = self.as_mut_ptr()
        backend = self.backend
        # The runtime stays usable when its device cannot be selected.
        with backend.device_context.use(self.device):
            self._consumed_by = "deserialize_engine"
            try:
                engine_ptr = backend.runtime_deserialize_engine(ptr, data)
            except Exception:
                self._handle.release()
                raise
        if engine_ptr is None:
            message = backend.last_error()
            self._handle.release()
            raise OperationError("deserializeCudaEngine", message)
        engine = Engine(NativeHandle(backend, "engine", engine_ptr, self.device), self)
        logger.debug(f"Deserialized engine on device {self.device} ({data.nbytes} bytes)")
        return engine

    def release(self) -> None:
        """Destroy the native runtime."""
        self._handle.release()

    def __repr__(self) -> str:
        """String representation."""
        return f"Runtime(device={self.device}, consumed={self._consumed_by is not None})"
