"""
Library configuration.

Collects the process-wide knobs: which native backend to bind, how many
devices the simulated backend exposes, and how the background worker
thread is set up.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

_BACKEND_CHOICES = ("auto", "tensorrt", "simulated")


@dataclass
class AsyncTrtConfig:
    """Configuration for backend selection and the background worker."""

    backend: str = "auto"  # auto, tensorrt, simulated
    simulated_device_count: int = 1
    worker_queue_size: int = 0  # 0 means unbounded
    worker_thread_name: str = "asynctrt-worker"
    worker_daemon: bool = True
    worker_stop_timeout: float = 5.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.backend not in _BACKEND_CHOICES:
            raise ValueError(f"backend must be one of {_BACKEND_CHOICES}, got {self.backend!r}")
        if self.simulated_device_count < 1:
            raise ValueError(
                f"simulated_device_count must be >= 1, got {self.simulated_device_count}"
            )
        if self.worker_queue_size < 0:
            raise ValueError(f"worker_queue_size must be >= 0, got {self.worker_queue_size}")
        if self.worker_stop_timeout <= 0:
            raise ValueError(
                f"worker_stop_timeout must be > 0, got {self.worker_stop_timeout}"
            )

    @classmethod
    def from_env(cls) -> AsyncTrtConfig:
        """
        Build a configuration from environment variables.

        Reads ``ASYNCTRT_BACKEND``, ``ASYNCTRT_SIMULATED_DEVICES`` and
        ``ASYNCTRT_WORKER_QUEUE_SIZE``; unset variables keep their defaults.
        """
        kwargs: dict[str, object] = {}
        backend = os.environ.get("ASYNCTRT_BACKEND")
        if backend:
            kwargs["backend"] = backend.strip().lower()
        devices = os.environ.get("ASYNCTRT_SIMULATED_DEVICES")
        if devices:
            kwargs["simulated_device_count"] = int(devices)
        queue_size = os.environ.get("ASYNCTRT_WORKER_QUEUE_SIZE")
        if queue_size:
            kwargs["worker_queue_size"] = int(queue_size)
        return cls(**kwargs)  # type: ignore[arg-type]


_config: AsyncTrtConfig | None = None


def get_config() -> AsyncTrtConfig:
    """Get the global configuration, reading the environment on first use."""
    global _config
    if _config is None:
        _config = AsyncTrtConfig.from_env()
    return _config


def set_config(config: AsyncTrtConfig | None) -> None:
    """Replace the global configuration; ``None`` re-reads the environment on next use."""
    global _config
    _config = config
