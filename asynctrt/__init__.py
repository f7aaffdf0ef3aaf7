"""
asynctrt - asyncio bindings for a native GPU inference compiler and runtime.

Wraps the builder, optimization profile, engine, execution context and
runtime objects of the native library with device-affinity-aware ownership,
and exposes them both as a blocking API (:mod:`asynctrt.ffi.sync`) and as
an asynchronous API that runs every blocking call on one background worker.

Core Features:
    - Native handles destroyed exactly once, on the device that created them
    - Engines shared across execution contexts by reference counting
    - Builder flags translated per native major version
    - A simulated backend for running without a GPU

Quick Start:
    >>> import asynctrt
    >>>
    >>> builder = await asynctrt.Builder.new()
    >>> network = builder.network_definition(
    ...     asynctrt.NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE
    ... )
    >>> x = network.add_input("x", asynctrt.TensorDataType.FLOAT, [-1, 3, 224, 224])
    >>> network.mark_output(network.add_identity(x))
    >>> profile = builder.create_optimization_profile()
    >>> profile.set_min_dimensions("x", [1, 3, 224, 224])
    >>> profile.set_opt_dimensions("x", [4, 3, 224, 224])
    >>> profile.set_max_dimensions("x", [8, 3, 224, 224])
    >>> config = (await builder.config()).with_optimization_profile(profile)
    >>> plan = await builder.build_serialized_network(network, config)
    >>> engine = await (await asynctrt.Runtime.new()).deserialize_engine_from_plan(plan)
"""

from asynctrt.backends import get_backend, set_backend
from asynctrt.builder import Builder
from asynctrt.config import AsyncTrtConfig, get_config, set_config
from asynctrt.engine import Engine, ExecutionContext
from asynctrt.exceptions import (
    AllocationError,
    AsyncTrtError,
    ConsumedError,
    OperationError,
    TensorRTError,
)
from asynctrt.ffi.builder_config import BuilderConfig
from asynctrt.ffi.memory import HostBuffer
from asynctrt.ffi.network import NetworkDefinition, NetworkDefinitionCreationFlags, Tensor
from asynctrt.ffi.optimization_profile import OptimizationProfile
from asynctrt.ffi.parser import Parser
from asynctrt.ffi.sync.engine import TensorDataType, TensorIoMode
from asynctrt.ffi.version import get_version
from asynctrt.runtime import Runtime
from asynctrt.worker import get_worker, shutdown_worker

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    "get_version",
    # Async API
    "Builder",
    "Engine",
    "ExecutionContext",
    "Runtime",
    # Build chain
    "BuilderConfig",
    "NetworkDefinition",
    "NetworkDefinitionCreationFlags",
    "OptimizationProfile",
    "Parser",
    "Tensor",
    "HostBuffer",
    "TensorDataType",
    "TensorIoMode",
    # Errors
    "AsyncTrtError",
    "TensorRTError",
    "AllocationError",
    "OperationError",
    "ConsumedError",
    # Configuration
    "AsyncTrtConfig",
    "get_config",
    "set_config",
    "get_backend",
    "set_backend",
    "get_worker",
    "shutdown_worker",
]
