"""
Owning wrapper around one native object.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from asynctrt.exceptions import AllocationError, HandleReleasedError

if TYPE_CHECKING:
    from asynctrt.backends.base import NativeBackend
    from asynctrt.device import DeviceId

logger = logging.getLogger(__name__)


class NativeHandle:
    """
    Owns exactly one native object and the device it was created on.

    Destruction makes the owning device current first (aborting the process
    if that is impossible), destroys the object exactly once, and restores
    the caller's device afterwards.

    Read-only calls through :meth:`as_ptr` may happen from several threads.
    Mutating calls through :meth:`as_mut_ptr` must be serialized by the
    caller; no locking is done here.

    Example:
        >>> handle = NativeHandle(backend, "builder", backend.create_builder(), 0)
        >>> backend.builder_platform_has_fast_fp16(handle.as_ptr())
        True
        >>> handle.release()
    """

    __slots__ = ("_backend", "_kind", "_ptr", "_device", "_lock", "__weakref__")

    def __init__(self, backend: NativeBackend, kind: str, ptr: Any, device: DeviceId) -> None:
        """
        Take ownership of a native object.

        Args:
            backend: Backend that created the object.
            kind: Object kind, used for destruction and diagnostics.
            ptr: Native object.
            device: Device that was current when the object was created.
        """
        self._backend = backend
        self._kind = kind
        self._ptr = ptr
        self._device = device
        self._lock = threading.Lock()
        logger.debug(f"Created {kind} on device {device}")

    @property
    def kind(self) -> str:
        """Get the native object kind."""
        return self._kind

    @property
    def device(self) -> DeviceId:
        """Get the device the object belongs to."""
        return self._device

    @property
    def backend(self) -> NativeBackend:
        """Get the backend that owns the object."""
        return self._backend

    @property
    def is_released(self) -> bool:
        """Check whether the object has been destroyed."""
        return self._ptr is None

    def as_ptr(self) -> Any:
        """
        Get the native object for read-only calls.

        Raises:
            HandleReleasedError: If the object has been destroyed.
        """
        ptr = self._ptr
        if ptr is None:
            raise HandleReleasedError(self._kind)
        return ptr

    def as_mut_ptr(self) -> Any:
        """
        Get the native object for mutating calls.

        Raises:
            HandleReleasedError: If the object has been destroyed.
        """
        return self.as_ptr()

    def release(self) -> None:
        """
        Destroy the native object on its owning device. Idempotent.

        The handle counts as released even if the native destroy call raises;
        the destroy is never retried.
        """
        with self._lock:
            ptr = self._ptr
            if ptr is None:
                return
            context = self._backend.device_context
            with context.use_or_abort(self._device):
                try:
                    self._backend.destroy(self._kind, ptr)
                finally:
                    self._ptr = None
                    del ptr
        logger.debug(f"Destroyed {self._kind} on device {self._device}")

    def __del__(self) -> None:
        # __init__ may not have run to completion.
        if getattr(self, "_ptr", None) is not None:
            self.release()

    def __repr__(self) -> str:
        """String representation."""
        state = "released" if self._ptr is None else "live"
        return f"NativeHandle(kind={self._kind!r}, device={self._device}, {state})"


def allocate(
    backend: NativeBackend, kind: str, factory: Callable[..., Any], *args: Any
) -> NativeHandle:
    """
    Call a native factory and wrap its result.

    The new handle is bound to the device current on the calling thread, so
    callers select the right device before calling this.

    Raises:
        AllocationError: If the factory returned a null object.
    """
    ptr = factory(*args)
    if ptr is None:
        raise AllocationError(kind, backend.last_error())
    return NativeHandle(backend, kind, ptr, backend.device_context.get_current())
