"""
Unit tests for host buffers and pointer adapters.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pytest

from asynctrt.backends import SimulatedBackend
from asynctrt.exceptions import HandleReleasedError
from asynctrt.ffi.memory import HostBuffer, device_pointer, stream_pointer
from asynctrt.ffi.sync.builder import Builder


@dataclass
class FakeDeviceMemory:
    ptr: int


@dataclass
class FakeArray:
    data: FakeDeviceMemory


class FakeOwnedBuffer:
    def as_mut_ptr(self) -> int:
        return 0xBEEF


class TestHostBuffer:
    """Tests for HostBuffer."""

    @pytest.fixture
    def plan(self, backend: SimulatedBackend, build_plan) -> HostBuffer:
        builder = Builder.new(backend)
        plan = build_plan(builder)
        builder.release()
        return plan

    def test_views(self, plan: HostBuffer) -> None:
        """Test the bytes are exposed consistently."""
        data = plan.data()

        assert data.readonly
        assert plan.size() == len(plan) == data.nbytes > 0
        assert bytes(plan) == data.tobytes()

    def test_to_numpy(self, plan: HostBuffer) -> None:
        """Test the numpy view."""
        array = plan.to_numpy()

        assert array.dtype == np.uint8
        assert array.tobytes() == bytes(plan)
        assert not array.flags.writeable

    def test_release(self, backend: SimulatedBackend, plan: HostBuffer) -> None:
        """Test releasing frees the native memory."""
        plan.release()

        assert backend.destroy_log[-1].kind == "host_memory"
        assert "released" in repr(plan)
        with pytest.raises(HandleReleasedError):
            plan.data()

    def test_device(self, backend: SimulatedBackend, build_plan) -> None:
        """Test the buffer reports the builder's device."""
        backend.device_context.set_current(1)
        builder = Builder.new(backend)

        plan = build_plan(builder)

        assert plan.device == 1


class TestPointerAdapters:
    """Tests for device and stream pointer extraction."""

    def test_device_pointer_int(self) -> None:
        """Test plain addresses pass through."""
        assert device_pointer(0x1234) == 0x1234

    def test_device_pointer_array(self) -> None:
        """Test arrays exposing data.ptr."""
        assert device_pointer(FakeArray(FakeDeviceMemory(0x4000))) == 0x4000

    def test_device_pointer_owned(self) -> None:
        """Test objects exposing as_mut_ptr."""
        assert device_pointer(FakeOwnedBuffer()) == 0xBEEF

    def test_device_pointer_invalid(self) -> None:
        """Test unsupported objects raise."""
        with pytest.raises(TypeError, match="str"):
            device_pointer("0x10")

    def test_stream_pointer(self) -> None:
        """Test stream handle extraction."""
        assert stream_pointer(0) == 0
        assert stream_pointer(FakeDeviceMemory(0x77)) == 0x77
        with pytest.raises(TypeError):
            stream_pointer(object())
