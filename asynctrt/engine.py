"""
Asynchronous engine and execution context.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from asynctrt.ffi.sync.engine import Engine as InnerEngine
from asynctrt.ffi.sync.engine import ExecutionContext as InnerExecutionContext
from asynctrt.worker import get_worker

if TYPE_CHECKING:
    from asynctrt.device import DeviceId
    from asynctrt.ffi.memory import HostBuffer
    from asynctrt.ffi.sync.engine import TensorDataType, TensorIoMode


class Engine:
    """
    Engine built or deserialized for execution.

    Introspection is read-only and answered on the caller. Serialization
    and releasing the caller's reference run on the background worker, in
    order with any call already submitted for this engine.
    """

    def __init__(self, inner: InnerEngine) -> None:
        self._inner = inner

    @property
    def inner(self) -> InnerEngine:
        """Get the blocking engine this wraps."""
        return self._inner

    @property
    def device(self) -> DeviceId:
        return self._inner.device

    async def serialize(self) -> HostBuffer:
        """
        Serialize the engine to a plan.

        Raises:
            OperationError: If native serialization fails.
        """
        return await get_worker().run(self._inner.serialize)

    def num_io_tensors(self) -> int:
        return self._inner.num_io_tensors()

    def io_tensor_name(self, index: int) -> str:
        return self._inner.io_tensor_name(index)

    def tensor_shape(self, name: str) -> list[int]:
        return self._inner.tensor_shape(name)

    def tensor_io_mode(self, name: str) -> TensorIoMode:
        return self._inner.tensor_io_mode(name)

    def tensor_data_type(self, name: str) -> TensorDataType:
        return self._inner.tensor_data_type(name)

    async def close(self) -> None:
        """
        Release the caller's reference to the engine.

        The native engine is destroyed once no execution context uses it.
        """
        await get_worker().run(self._inner.close)

    def __repr__(self) -> str:
        """String representation."""
        return f"Engine(device={self.device})"


class ExecutionContext:
    """
    Context for executing inference using an engine.

    Example:
        >>> contexts = await ExecutionContext.from_engine_many(engine, 2)
        >>> await contexts[0].enqueue({"x": x_gpu, "y": y_gpu}, stream)
    """

    def __init__(self, inner: InnerExecutionContext) -> None:
        self._inner = inner

    @classmethod
    async def from_engine(cls, engine: Engine) -> ExecutionContext:
        """Create a context that takes over the caller's engine reference."""
        inner = await get_worker().run(InnerExecutionContext.from_engine, engine.inner)
        return cls(inner)

    @classmethod
    async def from_engine_many(cls, engine: Engine, num: int) -> list[ExecutionContext]:
        """Create ``num`` contexts sharing the caller's engine reference."""
        inners = await get_worker().run(InnerExecutionContext.from_engine_many, engine.inner, num)
        return [cls(inner) for inner in inners]

    @classmethod
    async def new(cls, engine: Engine) -> ExecutionContext:
        """Create a context that shares the engine with the caller."""
        inner = await get_worker().run(InnerExecutionContext.new, engine.inner)
        return cls(inner)

    @property
    def inner(self) -> InnerExecutionContext:
        """Get the blocking context this wraps."""
        return self._inner

    @property
    def device(self) -> DeviceId:
        return self._inner.device

    async def set_tensor_address(self, name: str, buffer: Any) -> None:
        """
        Bind a device buffer to a named I/O tensor.

        Raises:
            OperationError: If the native bind fails.
        """
        await get_worker().run(self._inner.set_tensor_address, name, buffer)

    async def set_input_shape(self, name: str, dims: Sequence[int]) -> bool:
        """Set the runtime shape of a dynamic input; False if it is rejected."""
        return await get_worker().run(self._inner.set_input_shape, name, list(dims))

    async def enqueue(self, io_tensors: Mapping[str, Any], stream: Any) -> None:
        """
        Bind ``io_tensors`` and submit execution on ``stream``.

        Resolves once the work is submitted, not when it finishes; wait on
        the stream for completion.

        Raises:
            OperationError: If a bind or the submission fails.
        """
        await get_worker().run(self._inner.enqueue, dict(io_tensors), stream)

    async def release(self) -> None:
        """
        Destroy the context and release its engine reference.

        Runs after any enqueue already submitted for this context.
        """
        await get_worker().run(self._inner.release)

    def __repr__(self) -> str:
        """String representation."""
        return f"ExecutionContext(device={self.device})"
