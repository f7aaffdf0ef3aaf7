"""
Native backend implementations for asynctrt.
"""

from __future__ import annotations

import logging
import threading

from asynctrt.backends.base import BackendType, NativeBackend
from asynctrt.backends.simulated import SimulatedBackend
from asynctrt.backends.tensorrt import TensorRTBackend
from asynctrt.config import get_config
from asynctrt.exceptions import BackendNotAvailableError

logger = logging.getLogger(__name__)

__all__ = [
    "BackendType",
    "NativeBackend",
    "SimulatedBackend",
    "TensorRTBackend",
    "get_backend",
    "set_backend",
]

_backend: NativeBackend | None = None
_lock = threading.Lock()


def _create_backend() -> NativeBackend:
    config = get_config()
    if config.backend == "simulated":
        return SimulatedBackend(device_count=config.simulated_device_count)
    if config.backend == "tensorrt":
        return TensorRTBackend()

    try:
        backend: NativeBackend = TensorRTBackend()
    except BackendNotAvailableError as e:
        logger.info(f"TensorRT backend unavailable ({e.reason}); using simulated backend")
        return SimulatedBackend(device_count=config.simulated_device_count)
    logger.info(f"Using {backend!r}")
    return backend


def get_backend() -> NativeBackend:
    """
    Get the process-wide native backend, creating it on first use.

    Returns:
        The backend selected by :attr:`AsyncTrtConfig.backend`.

    Raises:
        BackendNotAvailableError: If the configured backend cannot be loaded.
    """
    global _backend
    with _lock:
        if _backend is None:
            _backend = _create_backend()
        return _backend


def set_backend(backend: NativeBackend | None) -> None:
    """
    Replace the process-wide native backend.

    Objects already created keep the backend they were created with.
    Passing ``None`` makes the next :func:`get_backend` call select again.
    """
    global _backend
    with _lock:
        _backend = backend
