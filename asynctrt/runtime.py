"""
Asynchronous runtime.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from asynctrt.backends import get_backend
from asynctrt.engine import Engine
from asynctrt.ffi.sync.runtime import Runtime as InnerRuntime
from asynctrt.worker import get_worker

if TYPE_CHECKING:
    from asynctrt.backends.base import NativeBackend
    from asynctrt.device import DeviceId
    from asynctrt.ffi.memory import HostBuffer


class Runtime:
    """
    Deserializes engines from plans.

    Single use: deserializing consumes the runtime.

    Example:
        >>> runtime = await Runtime.new()
        >>> engine = await runtime.deserialize_engine(plan_bytes)
    """

    def __init__(self, inner: InnerRuntime) -> None:
        self._inner = inner

    @classmethod
    async def new(cls, backend: NativeBackend | None = None) -> Runtime:
        """Create a runtime bound to the caller's current device."""
        backend = backend or get_backend()
        context = backend.device_context
        inner = await get_worker().run_on_device(
            context, context.get_current(), InnerRuntime.new, backend
        )
        return cls(inner)

    @property
    def inner(self) -> InnerRuntime:
        """Get the blocking runtime this wraps."""
        return self._inner

    @property
    def device(self) -> DeviceId:
        return self._inner.device

    def set_engine_host_code_allowed(self, allowed: bool) -> None:
        """
        Set whether engines with host executable code may be deserialized.

        Args:
            allowed: Whether host executable code is allowed.
        """
        self._inner.set_engine_host_code_allowed(allowed)

    async def deserialize_engine_from_plan(self, plan: HostBuffer) -> Engine:
        """
        Deserialize an engine from a plan.

        Raises:
            OperationError: If the plan is rejected.
        """
        inner = await get_worker().run(self._inner.deserialize_engine_from_plan, plan)
        return Engine(inner)

    async def deserialize_engine(self, buffer: bytes | bytearray | memoryview) -> Engine:
        """
        Deserialize an engine from plan bytes.

        Raises:
            OperationError: If the bytes are rejected.
        """
        inner = await get_worker().run(self._inner.deserialize_engine, buffer)
        return Engine(inner)

    def __repr__(self) -> str:
        """String representation."""
        return f"Runtime(device={self.device})"
