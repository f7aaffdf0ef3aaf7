"""
Host buffers and device pointer adapters.

Device memory and streams are owned by the caller; only their raw addresses
are passed through to the native library.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from asynctrt.ffi.handle import NativeHandle

if TYPE_CHECKING:
    from numpy.typing import NDArray


class HostBuffer:
    """
    Host memory holding a serialized plan.

    Produced by :meth:`Builder.build_serialized_network` and
    :meth:`Engine.serialize`. The bytes stay valid until :meth:`release`.

    Example:
        >>> plan = builder.build_serialized_network(network, config)
        >>> with open("model.plan", "wb") as f:
        ...     f.write(plan.data())
    """

    def __init__(self, handle: NativeHandle) -> None:
        self._handle = handle

    @property
    def device(self) -> int:
        """Get the device that produced the buffer."""
        return self._handle.device

    def data(self) -> memoryview:
        """Get a read-only view of the buffer's bytes."""
        return self._handle.backend.host_memory_view(self._handle.as_ptr()).toreadonly()

    def size(self) -> int:
        """Get the buffer size in bytes."""
        return self.data().nbytes

    def to_numpy(self) -> NDArray[np.uint8]:
        """Get the bytes as a read-only uint8 array."""
        return np.frombuffer(self.data(), dtype=np.uint8)

    def release(self) -> None:
        """Free the native memory."""
        self._handle.release()

    def __len__(self) -> int:
        return self.size()

    def __bytes__(self) -> bytes:
        return self.data().tobytes()

    def __repr__(self) -> str:
        """String representation."""
        if self._handle.is_released:
            return "HostBuffer(released)"
        return f"HostBuffer(size={self.size()}, device={self.device})"


def device_pointer(buffer: Any) -> int:
    """
    Get the raw device address of a buffer.

    Accepts a plain integer address, a CuPy array (or anything exposing
    ``.data.ptr``), or an object with an ``as_mut_ptr()`` method.

    Raises:
        TypeError: If no address can be obtained.
    """
    if isinstance(buffer, int):
        return buffer
    if hasattr(buffer, "as_mut_ptr"):
        return int(buffer.as_mut_ptr())
    data = getattr(buffer, "data", None)
    if data is not None and hasattr(data, "ptr"):
        return int(data.ptr)
    raise TypeError(f"Cannot get a device pointer from {type(buffer).__name__}")


def stream_pointer(stream: Any) -> int:
    """
    Get the raw handle of a device stream.

    Accepts a plain integer handle or a CuPy stream (anything exposing ``.ptr``).

    Raises:
        TypeError: If no handle can be obtained.
    """
    if isinstance(stream, int):
        return stream
    ptr = getattr(stream, "ptr", None)
    if ptr is None:
        raise TypeError(f"Cannot get a stream handle from {type(stream).__name__}")
    return int(ptr)
