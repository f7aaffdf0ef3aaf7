"""
Device context abstraction.

Native handles are bound to the accelerator device that was current when
they were created. Which device is current is per-thread state, so every
native call goes through a :class:`DeviceContext` to select the owning
device first.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING

from asynctrt import exceptions
from asynctrt.exceptions import BackendNotAvailableError, DeviceSetError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

DeviceId = int


class DeviceContext(ABC):
    """
    Get/set access to the calling thread's current device.

    Implementations only need :meth:`get_current`, :meth:`set_current` and
    :attr:`device_count`; the scoped and fatal helpers are shared.
    """

    @property
    @abstractmethod
    def device_count(self) -> int:
        """Get the number of visible devices."""
        ...

    @abstractmethod
    def get_current(self) -> DeviceId:
        """Get the device that is current on the calling thread."""
        ...

    @abstractmethod
    def set_current(self, device: DeviceId) -> None:
        """
        Make a device current on the calling thread.

        Args:
            device: Device to select.

        Raises:
            DeviceSetError: If the device cannot be selected.
        """
        ...

    def set_or_abort(self, device: DeviceId) -> None:
        """
        Make a device current, aborting the process if that fails.

        Only used on teardown paths, where a half-finished cleanup would leave
        the thread's device state corrupted for every later call.
        """
        try:
            self.set_current(device)
        except DeviceSetError as e:
            exceptions.fatal(f"Unable to make device {device} current during teardown: {e.cause}")

    @contextmanager
    def use(self, device: DeviceId) -> Iterator[DeviceId]:
        """
        Make ``device`` current for the duration of the block.

        The previously current device is restored on exit, including when the
        block raises.

        Example:
            >>> with context.use(engine.device):
            ...     backend.engine_serialize(ptr)
        """
        previous = self.get_current()
        if previous == device:
            yield device
            return
        self.set_current(device)
        try:
            yield device
        finally:
            self.set_current(previous)

    @contextmanager
    def use_or_abort(self, device: DeviceId) -> Iterator[DeviceId]:
        """Like :meth:`use`, but any device selection failure is fatal."""
        previous = self.get_current()
        if previous == device:
            yield device
            return
        self.set_or_abort(device)
        try:
            yield device
        finally:
            self.set_or_abort(previous)


class CudaDeviceContext(DeviceContext):
    """
    CUDA device context backed by the CuPy runtime API.

    Example:
        >>> context = CudaDeviceContext()
        >>> with context.use(1):
        ...     ...  # native calls run with device 1 current
    """

    def __init__(self) -> None:
        """
        Initialize the CUDA device context.

        Raises:
            BackendNotAvailableError: If CuPy is missing or no device is visible.
        """
        try:
            import cupy as cp
        except ImportError as e:
            raise BackendNotAvailableError("CUDA", f"Required packages not installed: {e}") from e

        self._cp = cp
        try:
            self._device_count = cp.cuda.runtime.getDeviceCount()
        except cp.cuda.runtime.CUDARuntimeError as e:
            raise BackendNotAvailableError("CUDA", str(e)) from e
        if self._device_count == 0:
            raise BackendNotAvailableError("CUDA", "no CUDA devices found")

    @property
    def device_count(self) -> int:
        """Get the number of visible CUDA devices."""
        return self._device_count

    def get_current(self) -> DeviceId:
        """Get the current CUDA device of the calling thread."""
        return int(self._cp.cuda.runtime.getDevice())

    def set_current(self, device: DeviceId) -> None:
        """Make a CUDA device current on the calling thread."""
        try:
            self._cp.cuda.runtime.setDevice(device)
        except self._cp.cuda.runtime.CUDARuntimeError as e:
            raise DeviceSetError(device, e) from e

    def __repr__(self) -> str:
        """String representation."""
        return f"CudaDeviceContext(devices={self._device_count})"


class SimulatedDeviceContext(DeviceContext):
    """
    Thread-local device selection for the simulated backend.

    Each thread starts with device 0 current, matching CUDA's default.
    """

    def __init__(self, device_count: int = 1) -> None:
        """
        Initialize the simulated device context.

        Args:
            device_count: Number of devices to expose.
        """
        if device_count < 1:
            raise ValueError(f"device_count must be >= 1, got {device_count}")
        self._device_count = device_count
        self._local = threading.local()
        self._failing: set[DeviceId] = set()

    @property
    def device_count(self) -> int:
        """Get the number of simulated devices."""
        return self._device_count

    def get_current(self) -> DeviceId:
        """Get the current device of the calling thread."""
        return getattr(self._local, "device", 0)

    def set_current(self, device: DeviceId) -> None:
        """Make a simulated device current on the calling thread."""
        if device < 0 or device >= self._device_count:
            raise DeviceSetError(
                device, f"invalid device ordinal (valid range: 0-{self._device_count - 1})"
            )
        if device in self._failing:
            raise DeviceSetError(device, "device is unavailable")
        self._local.device = device

    def fail_device(self, device: DeviceId, failing: bool = True) -> None:
        """
        Make selection of ``device`` fail (or succeed again).

        Args:
            device: Device whose selection should fail.
            failing: Whether selection should fail.
        """
        if failing:
            self._failing.add(device)
        else:
            self._failing.discard(device)

    def __repr__(self) -> str:
        """String representation."""
        return f"SimulatedDeviceContext(devices={self._device_count})"
