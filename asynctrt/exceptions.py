"""
asynctrt exception hierarchy.

This module defines the complete exception hierarchy for asynctrt,
providing specific exception types for different error categories:

- TensorRTError: Errors reported by the native engine (allocation, operations)
- DeviceError: Device context selection failures
- LifetimeError: Use of released, expired or consumed objects
- BackendError: Native backend availability
- WorkerError: Background worker lifecycle and queue capacity issues

All exceptions inherit from AsyncTrtError for easy catching.

Unrecoverable conditions (device failures during teardown, unknown enum
codes from the native layer) do not raise; they go through :func:`fatal`.
"""

from __future__ import annotations

import logging
import os
from typing import NoReturn

logger = logging.getLogger(__name__)


class AsyncTrtError(Exception):
    """Base exception for all asynctrt errors."""

    pass


class TensorRTError(AsyncTrtError):
    """Error reported by the native engine, carrying its last diagnostic."""

    def __init__(self, message: str | None = None) -> None:
        self.message = message or "unknown error"
        super().__init__(self.message)


class AllocationError(TensorRTError):
    """Raised when a native factory call returns a null handle."""

    def __init__(self, kind: str, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or "unknown error"
        AsyncTrtError.__init__(self, f"Failed to allocate {kind}: {self.message}")


class OperationError(TensorRTError):
    """Raised when a native operation (build, bind, enqueue, ...) fails."""

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        self.message = message or "unknown error"
        AsyncTrtError.__init__(self, f"{operation} failed: {self.message}")


class DeviceError(AsyncTrtError):
    """Base exception for device context errors."""

    pass


class DeviceSetError(DeviceError):
    """Raised when a device cannot be made current on the calling thread."""

    def __init__(self, device_id: int, cause: object) -> None:
        self.device_id = device_id
        self.cause = cause
        super().__init__(f"Failed to set device {device_id} as current: {cause}")


class LifetimeError(AsyncTrtError):
    """Base exception for ownership and lifetime violations."""

    pass


class HandleReleasedError(LifetimeError):
    """Raised when accessing a native handle that has already been destroyed."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"{kind} has already been destroyed")


class BuilderReleasedError(LifetimeError):
    """Raised when an optimization profile outlives the builder that created it."""

    def __init__(self) -> None:
        super().__init__(
            "Optimization profile used after its builder was destroyed."
            "\nHint: keep the Builder alive until the profile is attached and built."
        )


class ConsumedError(LifetimeError):
    """Raised when reusing an object that a previous call consumed."""

    def __init__(self, kind: str, consumer: str) -> None:
        self.kind = kind
        self.consumer = consumer
        super().__init__(f"{kind} was already consumed by {consumer}")


class BackendError(AsyncTrtError):
    """Base exception for backend-related errors."""

    pass


class BackendNotAvailableError(BackendError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")


class WorkerError(AsyncTrtError):
    """Base exception for background worker errors."""

    pass


class WorkerStateError(WorkerError):
    """Raised when a worker operation is invalid for the current state."""

    def __init__(self, worker_name: str, current_state: str, operation: str) -> None:
        self.worker_name = worker_name
        self.current_state = current_state
        self.operation = operation
        super().__init__(f"Cannot {operation} on worker '{worker_name}' in state '{current_state}'")


class QueueFullError(WorkerError):
    """Raised when the worker's task queue is full and cannot accept more tasks."""

    def __init__(self, queue_name: str, queue_size: int) -> None:
        self.queue_name = queue_name
        self.queue_size = queue_size
        super().__init__(f"Queue '{queue_name}' is full (size: {queue_size})")


def fatal(message: str) -> NoReturn:
    """
    Abort the process after an unrecoverable failure.

    Used where continuing would leave global device state corrupted or where
    the native library returned something this wrapper cannot interpret.

    Args:
        message: Description of the failure, logged at CRITICAL level.
    """
    logger.critical(message)
    os.abort()
