"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Callable, Generator

import pytest

from asynctrt import exceptions
from asynctrt.backends import SimulatedBackend, set_backend
from asynctrt.config import AsyncTrtConfig, set_config
from asynctrt.ffi.memory import HostBuffer
from asynctrt.ffi.network import NetworkDefinitionCreationFlags
from asynctrt.ffi.sync.builder import Builder
from asynctrt.ffi.sync.engine import TensorDataType
from asynctrt.worker import DeviceWorker, get_worker, shutdown_worker

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]

MIN_SHAPE = [1, 3, 224, 224]
OPT_SHAPE = [4, 3, 224, 224]
MAX_SHAPE = [8, 3, 224, 224]


class FatalCalled(Exception):
    """Raised in place of aborting the process."""

    pass


@pytest.fixture(autouse=True)
def isolated_globals() -> Generator[None, None, None]:
    """Give every test a fresh configuration, backend and worker."""
    set_config(AsyncTrtConfig(backend="simulated", simulated_device_count=2))
    set_backend(None)
    yield
    shutdown_worker()
    set_backend(None)
    set_config(None)


@pytest.fixture
def backend() -> Generator[SimulatedBackend, None, None]:
    """Provide a two-device simulated backend installed as the global backend."""
    sim = SimulatedBackend(device_count=2)
    set_backend(sim)
    yield sim


@pytest.fixture
def worker() -> Generator[DeviceWorker, None, None]:
    """Provide the process-wide worker."""
    yield get_worker()


@pytest.fixture
def fatal(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Turn process aborts into FatalCalled and record their messages."""
    messages: list[str] = []

    def _fatal(message: str) -> None:
        messages.append(message)
        raise FatalCalled(message)

    monkeypatch.setattr(exceptions, "fatal", _fatal)
    return messages


def build_dynamic_plan(builder: Builder, input_name: str = "x") -> HostBuffer:
    """Build an identity network with one dynamic-batch input."""
    network = builder.network_definition(NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE)
    x = network.add_input(input_name, TensorDataType.FLOAT, [-1, 3, 224, 224])
    y = network.add_identity(x)
    y.name = "y"
    network.mark_output(y)

    profile = builder.create_optimization_profile()
    assert profile.set_min_dimensions(input_name, MIN_SHAPE)
    assert profile.set_opt_dimensions(input_name, OPT_SHAPE)
    assert profile.set_max_dimensions(input_name, MAX_SHAPE)

    config = builder.config().with_optimization_profile(profile)
    return builder.build_serialized_network(network, config)


@pytest.fixture
def build_plan() -> Callable[..., HostBuffer]:
    """Provide the dynamic identity network build helper."""
    return build_dynamic_plan


@pytest.fixture
def plan_bytes(backend: SimulatedBackend) -> bytes:
    """Provide serialized plan bytes for the dynamic identity network."""
    builder = Builder.new(backend)
    plan = build_dynamic_plan(builder)
    data = bytes(plan)
    plan.release()
    builder.release()
    return data


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line("markers", "cuda: mark test as requiring CUDA and TensorRT")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA or TensorRT is not available."""
    cuda_available = False
    try:
        import cupy as cp
        import tensorrt  # noqa: F401

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
