"""
Unit tests for device contexts.
"""

from __future__ import annotations

import threading

import pytest

from asynctrt.device import SimulatedDeviceContext
from asynctrt.exceptions import DeviceSetError

from conftest import FatalCalled


class TestSimulatedDeviceContext:
    """Tests for SimulatedDeviceContext."""

    def test_default_device(self) -> None:
        """Test every thread starts on device 0."""
        context = SimulatedDeviceContext(device_count=2)
        context.set_current(1)
        seen: list[int] = []

        thread = threading.Thread(target=lambda: seen.append(context.get_current()))
        thread.start()
        thread.join()

        assert context.get_current() == 1
        assert seen == [0]

    def test_invalid_device(self) -> None:
        """Test selecting an out-of-range device raises."""
        context = SimulatedDeviceContext(device_count=2)

        with pytest.raises(DeviceSetError) as exc_info:
            context.set_current(2)

        assert exc_info.value.device_id == 2
        assert context.get_current() == 0

    def test_invalid_count(self) -> None:
        """Test a device count below one is rejected."""
        with pytest.raises(ValueError):
            SimulatedDeviceContext(device_count=0)

    def test_use_restores(self) -> None:
        """Test the scoped helper restores the previous device."""
        context = SimulatedDeviceContext(device_count=2)

        with context.use(1) as device:
            assert device == 1
            assert context.get_current() == 1

        assert context.get_current() == 0

    def test_use_restores_on_error(self) -> None:
        """Test the previous device is restored when the block raises."""
        context = SimulatedDeviceContext(device_count=2)

        with pytest.raises(RuntimeError):
            with context.use(1):
                raise RuntimeError("boom")

        assert context.get_current() == 0

    def test_use_propagates_set_failure(self) -> None:
        """Test selection failures outside teardown are ordinary errors."""
        context = SimulatedDeviceContext(device_count=2)
        context.fail_device(1)

        with pytest.raises(DeviceSetError):
            with context.use(1):
                pass

    def test_set_or_abort(self, fatal: list[str]) -> None:
        """Test teardown selection failures are fatal."""
        context = SimulatedDeviceContext(device_count=2)
        context.fail_device(1)

        with pytest.raises(FatalCalled):
            context.set_or_abort(1)

        assert "device 1" in fatal[0]

    def test_fail_device_reset(self) -> None:
        """Test a failing device can be made selectable again."""
        context = SimulatedDeviceContext(device_count=2)
        context.fail_device(1)
        context.fail_device(1, failing=False)

        context.set_current(1)

        assert context.get_current() == 1
