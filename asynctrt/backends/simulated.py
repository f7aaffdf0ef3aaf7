"""
Simulated native backend.

A pure-Python, in-process stand-in for the native inference library. It
keeps the observable contract of the real library (null results with a
last-error diagnostic, soft validation booleans, profile validity rules,
opaque plan bytes, host-code gating and enqueue preconditions) so the
wrappers can be exercised without a GPU.

It is stricter than the real library in two places: using or destroying an
object while a different device is current raises, and so does destroying
an object twice. Those are silent corruption in native code.
"""

from __future__ import annotations

import itertools
import logging
import math
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import msgpack

from asynctrt.backends.base import BackendType, NativeBackend
from asynctrt.device import DeviceContext, SimulatedDeviceContext
from asynctrt.exceptions import BackendNotAvailableError

logger = logging.getLogger(__name__)

PLAN_MAGIC = "asynctrt-simulated-plan"

_MAX_DIMS = 8
_SELECTORS = (0, 1, 2)  # min, opt, max
_EXPLICIT_BATCH_BIT = 1 << 0
_IO_MODE_INPUT = 1
_IO_MODE_OUTPUT = 2

_LEGACY_FLAGS = frozenset(
    {"FP16", "INT8", "STRICT_TYPES", "VERSION_COMPATIBLE", "EXCLUDE_LEAN_RUNTIME"}
)
_MODERN_FLAGS = frozenset(
    {
        "FP16",
        "INT8",
        "PREFER_PRECISION_CONSTRAINTS",
        "DIRECT_IO",
        "REJECT_EMPTY_ALGORITHMS",
        "VERSION_COMPATIBLE",
        "EXCLUDE_LEAN_RUNTIME",
    }
)


class SimulatedFault(RuntimeError):
    """Raised where the real library would crash or corrupt device state."""

    pass


@dataclass(frozen=True)
class DestroyRecord:
    """One native object destruction."""

    kind: str
    address: int
    device: int
    current_device: int


@dataclass(eq=False)
class SimObject:
    """Base for every simulated native object."""

    kind: str
    address: int
    device: int
    destroyed: bool = False


@dataclass(eq=False)
class SimTensor:
    """Tensor inside a simulated network definition."""

    name: str
    dtype: int
    dims: list[int]


@dataclass(eq=False)
class SimNetwork(SimObject):
    """Simulated network definition."""

    flags: int = 0
    inputs: list[SimTensor] = field(default_factory=list)
    outputs: list[SimTensor] = field(default_factory=list)
    layer_count: int = 0


@dataclass(eq=False)
class SimProfile(SimObject):
    """Simulated optimization profile."""

    dimensions: dict[str, dict[int, list[int]]] = field(default_factory=dict)
    shape_values: dict[str, dict[int, list[int]]] = field(default_factory=dict)
    extra_memory_target: float = 1.0
    owner: SimObject | None = None


@dataclass(eq=False)
class SimConfig(SimObject):
    """Simulated builder configuration."""

    memory_pool_limits: dict[str, int] = field(default_factory=dict)
    flags: set[str] = field(default_factory=set)
    profiles: list[dict[str, Any]] = field(default_factory=list)


@dataclass(eq=False)
class SimHostMemory(SimObject):
    """Simulated host memory holding plan bytes."""

    data: bytes = b""


@dataclass(eq=False)
class SimRuntime(SimObject):
    """Simulated runtime."""

    host_code_allowed: bool = False


@dataclass(eq=False)
class SimEngine(SimObject):
    """Simulated engine deserialized from a plan."""

    plan: dict[str, Any] = field(default_factory=dict)
    live_contexts: set[int] = field(default_factory=set)

    def tensor(self, name: str) -> dict[str, Any] | None:
        for tensor in self.plan["tensors"]:
            if tensor["name"] == name:
                return tensor
        return None


@dataclass(eq=False)
class SimContext(SimObject):
    """Simulated execution context."""

    engine: SimEngine | None = None
    addresses: dict[str, int] = field(default_factory=dict)
    input_shapes: dict[str, list[int]] = field(default_factory=dict)
    enqueued: list[int] = field(default_factory=list)


class SimulatedBackend(NativeBackend):
    """
    In-process simulation of the native inference library.

    Example:
        >>> backend = SimulatedBackend(device_count=2)
        >>> set_backend(backend)
        >>> builder = Builder.new()
    """

    def __init__(
        self,
        device_count: int = 1,
        version: tuple[int, int, int] = (10, 8, 0),
        *,
        fast_int8: bool = True,
        fast_fp16: bool = True,
    ) -> None:
        """
        Initialize the simulated backend.

        Args:
            device_count: Number of simulated devices.
            version: Native version to report.
            fast_int8: Result of the fast INT8 capability query.
            fast_fp16: Result of the fast FP16 capability query.
        """
        self._device_context = SimulatedDeviceContext(device_count)
        self._version = version
        self._fast_int8 = fast_int8
        self._fast_fp16 = fast_fp16
        self._addresses = itertools.count(0x1000, 0x10)
        self._lock = threading.Lock()
        self._local = threading.local()
        self._live: dict[int, SimObject] = {}
        self.destroy_log: list[DestroyRecord] = []

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.SIMULATED

    @property
    def device_context(self) -> DeviceContext:
        """Get the simulated device context."""
        return self._device_context

    @property
    def version(self) -> tuple[int, int, int]:
        """Get the simulated native version."""
        return self._version

    @property
    def live_objects(self) -> list[SimObject]:
        """Get all objects that have been created and not destroyed."""
        with self._lock:
            return list(self._live.values())

    def last_error(self) -> str | None:
        """Get the last error reported on the calling thread."""
        return getattr(self._local, "last_error", None)

    def _error(self, message: str) -> None:
        self._local.last_error = message
        logger.debug(f"simulated native error: {message}")

    def _new(self, cls: type[SimObject], kind: str, **kwargs: Any) -> Any:
        with self._lock:
            obj = cls(
                kind=kind,
                address=next(self._addresses),
                device=self._device_context.get_current(),
                **kwargs,
            )
            self._live[obj.address] = obj
        return obj

    def _check(self, obj: SimObject, *, device: bool = False) -> None:
        if obj.destroyed:
            raise SimulatedFault(f"use of destroyed {obj.kind} at {obj.address:#x}")
        if device:
            current = self._device_context.get_current()
            if current != obj.device:
                raise SimulatedFault(
                    f"{obj.kind} bound to device {obj.device} used while device {current} is current"
                )

    def destroy(self, kind: str, obj: Any) -> None:
        """Destroy a simulated object, recording the device state."""
        if obj.destroyed:
            raise SimulatedFault(f"double destroy of {obj.kind} at {obj.address:#x}")
        current = self._device_context.get_current()
        record = DestroyRecord(kind, obj.address, obj.device, current)
        if current != obj.device:
            raise SimulatedFault(
                f"{obj.kind} bound to device {obj.device} destroyed while device {current} is current"
            )
        if isinstance(obj, SimEngine) and obj.live_contexts:
            raise SimulatedFault(
                f"engine destroyed with {len(obj.live_contexts)} live execution context(s)"
            )
        if isinstance(obj, SimContext) and obj.engine is not None:
            obj.engine.live_contexts.discard(obj.address)
        obj.destroyed = True
        with self._lock:
            self._live.pop(obj.address, None)
            for child in [o for o in self._live.values() if getattr(o, "owner", None) is obj]:
                child.destroyed = True
                del self._live[child.address]
            self.destroy_log.append(record)

    # Builder

    def create_builder(self) -> Any | None:
        return self._new(SimObject, "builder")

    def builder_create_config(self, builder: Any) -> Any | None:
        self._check(builder, device=True)
        return self._new(SimConfig, "builder_config")

    def builder_create_network(self, builder: Any, flags: int) -> Any | None:
        self._check(builder, device=True)
        if flags & ~_EXPLICIT_BATCH_BIT:
            self._error(f"invalid network creation flags {flags:#x}")
            return None
        return self._new(SimNetwork, "network_definition", flags=flags)

    def builder_create_optimization_profile(self, builder: Any) -> Any | None:
        self._check(builder)
        return self._new(SimProfile, "optimization_profile", owner=builder)

    def builder_build_serialized_network(
        self, builder: Any, network: Any, config: Any
    ) -> Any | None:
        self._check(builder, device=True)
        self._check(network)
        self._check(config)
        if not network.outputs:
            self._error("Network must have at least one output.")
            return None

        input_names = {tensor.name for tensor in network.inputs}
        for index, profile in enumerate(config.profiles):
            for name in profile["dimensions"]:
                if name not in input_names:
                    self._error(f"Optimization profile {index} refers to unknown input '{name}'.")
                    return None

        profiles: list[dict[str, Any]] = [p["dimensions"] for p in config.profiles]
        for tensor in network.inputs:
            if all(dim >= 0 for dim in tensor.dims):
                continue
            if not profiles:
                self._error(
                    "Network has dynamic or shape inputs, but no optimization profile "
                    "has been defined."
                )
                return None
            for index, bounds in enumerate(profiles):
                if not self._profile_covers(tensor, bounds.get(tensor.name)):
                    self._error(
                        f"{tensor.name}: optimization profile {index} is missing or does not "
                        "match the input's dimensions."
                    )
                    return None

        tensors = [
            {"name": t.name, "mode": _IO_MODE_INPUT, "dtype": t.dtype, "shape": list(t.dims)}
            for t in network.inputs
        ]
        tensors += [
            {"name": t.name, "mode": _IO_MODE_OUTPUT, "dtype": t.dtype, "shape": list(t.dims)}
            for t in network.outputs
        ]
        host_code = (
            "VERSION_COMPATIBLE" in config.flags and "EXCLUDE_LEAN_RUNTIME" not in config.flags
        )
        plan = {
            "magic": PLAN_MAGIC,
            "version": list(self._version),
            "tensors": tensors,
            "profiles": [
                {name: {str(k): v for k, v in sel.items()} for name, sel in bounds.items()}
                for bounds in profiles
            ],
            "flags": sorted(config.flags),
            "workspace": config.memory_pool_limits.get("WORKSPACE", 0),
            "host_code": host_code,
        }
        return self._new(SimHostMemory, "host_memory", data=msgpack.packb(plan, use_bin_type=True))

    @staticmethod
    def _profile_covers(tensor: SimTensor, bounds: dict[int, list[int]] | None) -> bool:
        if bounds is None or any(sel not in bounds for sel in _SELECTORS):
            return False
        for sel in _SELECTORS:
            dims = bounds[sel]
            if len(dims) != len(tensor.dims):
                return False
            for declared, bound in zip(tensor.dims, dims):
                if declared >= 0 and declared != bound:
                    return False
        return True

    def builder_platform_has_fast_int8(self, builder: Any) -> bool:
        self._check(builder)
        return self._fast_int8

    def builder_platform_has_fast_fp16(self, builder: Any) -> bool:
        self._check(builder)
        return self._fast_fp16

    # Network definition

    def _known_dtype(self, code: int) -> bool:
        limit = 10 if (self._version[0], self._version[1]) >= (10, 8) else 9
        return 0 <= code <= limit

    def network_add_input(
        self, network: Any, name: str, dtype: int, dims: Sequence[int]
    ) -> Any | None:
        self._check(network)
        if any(t.name == name for t in network.inputs):
            self._error(f"Duplicate input name '{name}'.")
            return None
        if not self._known_dtype(dtype):
            self._error(f"Unsupported data type {dtype}.")
            return None
        if len(dims) > _MAX_DIMS or any(d < -1 for d in dims):
            self._error(f"Invalid dimensions {list(dims)} for input '{name}'.")
            return None
        tensor = SimTensor(name=name, dtype=dtype, dims=list(dims))
        network.inputs.append(tensor)
        return tensor

    def network_add_identity(self, network: Any, tensor: Any) -> Any | None:
        self._check(network)
        network.layer_count += 1
        return SimTensor(
            name=f"(Unnamed Layer* {network.layer_count - 1}) [Identity]_output",
            dtype=tensor.dtype,
            dims=list(tensor.dims),
        )

    def network_mark_output(self, network: Any, tensor: Any) -> None:
        self._check(network)
        if tensor not in network.outputs:
            network.outputs.append(tensor)

    def network_num_inputs(self, network: Any) -> int:
        self._check(network)
        return len(network.inputs)

    def network_num_outputs(self, network: Any) -> int:
        self._check(network)
        return len(network.outputs)

    def network_get_input(self, network: Any, index: int) -> Any:
        self._check(network)
        return network.inputs[index]

    def network_get_output(self, network: Any, index: int) -> Any:
        self._check(network)
        return network.outputs[index]

    def tensor_get_name(self, tensor: Any) -> str:
        return tensor.name

    def tensor_set_name(self, tensor: Any, name: str) -> None:
        tensor.name = name

    # Optimization profile

    def profile_set_dimensions(
        self, profile: Any, input_name: str, select: int, dims: Sequence[int]
    ) -> bool:
        self._check(profile)
        return self._set_bound(profile.dimensions, input_name, select, dims, "dimensions")

    def profile_get_dimensions(
        self, profile: Any, input_name: str, select: int
    ) -> list[int] | None:
        self._check(profile)
        dims = profile.dimensions.get(input_name, {}).get(select)
        return list(dims) if dims is not None else None

    def profile_set_shape_values(
        self, profile: Any, input_name: str, select: int, values: Sequence[int]
    ) -> bool:
        self._check(profile)
        return self._set_bound(profile.shape_values, input_name, select, values, "shape values")

    def _set_bound(
        self,
        table: dict[str, dict[int, list[int]]],
        input_name: str,
        select: int,
        values: Sequence[int],
        what: str,
    ) -> bool:
        if select not in _SELECTORS:
            self._error(f"Invalid profile selector {select}.")
            return False
        if what == "dimensions" and (len(values) > _MAX_DIMS or any(v < 0 for v in values)):
            self._error(f"Invalid {what} {list(values)} for '{input_name}'.")
            return False
        existing = table.get(input_name, {})
        for other_select, other in existing.items():
            if other_select != select and len(other) != len(values):
                self._error(
                    f"Inconsistent {what} count for '{input_name}': "
                    f"{len(values)} vs {len(other)}."
                )
                return False
        table.setdefault(input_name, {})[select] = list(values)
        return True

    def profile_get_nb_shape_values(self, profile: Any, input_name: str) -> int:
        self._check(profile)
        selectors = profile.shape_values.get(input_name)
        if not selectors:
            return -1
        return len(next(iter(selectors.values())))

    def profile_get_shape_values(
        self, profile: Any, input_name: str, select: int
    ) -> list[int] | None:
        self._check(profile)
        values = profile.shape_values.get(input_name, {}).get(select)
        if values is None:
            self._error(f"Shape values for '{input_name}' were not set for selector {select}.")
            return None
        return list(values)

    def profile_set_extra_memory_target(self, profile: Any, target: float) -> bool:
        self._check(profile)
        if math.isnan(target) or target < 0.0 or target > 1.0:
            return False
        profile.extra_memory_target = float(target)
        return True

    def profile_get_extra_memory_target(self, profile: Any) -> float:
        self._check(profile)
        return profile.extra_memory_target

    def profile_is_valid(self, profile: Any) -> bool:
        self._check(profile)
        for table in (profile.dimensions, profile.shape_values):
            for bounds in table.values():
                if any(sel not in bounds for sel in _SELECTORS):
                    return False
                low, opt, high = (bounds[sel] for sel in _SELECTORS)
                if not all(a <= b <= c for a, b, c in zip(low, opt, high)):
                    return False
        return True

    # Builder config

    def config_set_memory_pool_limit(self, config: Any, pool: str, size: int) -> None:
        self._check(config)
        config.memory_pool_limits[pool] = size

    def config_set_flag(self, config: Any, flag: str) -> None:
        self._check(config)
        known = _MODERN_FLAGS if self._version[0] >= 10 else _LEGACY_FLAGS
        if flag not in known:
            raise ValueError(f"Unknown builder flag '{flag}' for version {self._version}")
        config.flags.add(flag)

    def config_add_optimization_profile(self, config: Any, profile: Any) -> int:
        self._check(config)
        self._check(profile)
        if not self.profile_is_valid(profile):
            self._error("addOptimizationProfile: optimization profile is not valid.")
            return -1
        config.profiles.append(
            {
                "dimensions": {n: dict(s) for n, s in profile.dimensions.items()},
                "shape_values": {n: dict(s) for n, s in profile.shape_values.items()},
            }
        )
        return len(config.profiles) - 1

    # Host memory

    def host_memory_view(self, memory: Any) -> memoryview:
        self._check(memory)
        return memoryview(memory.data)

    # Runtime

    def create_runtime(self) -> Any | None:
        return self._new(SimRuntime, "runtime")

    def runtime_deserialize_engine(self, runtime: Any, data: memoryview) -> Any | None:
        self._check(runtime, device=True)
        try:
            plan = msgpack.unpackb(bytes(data), raw=False)
        except (ValueError, msgpack.UnpackException) as e:
            self._error(f"Serialization assertion failed: {e}")
            return None
        if not isinstance(plan, dict) or plan.get("magic") != PLAN_MAGIC:
            self._error("Serialization assertion failed: magic tag does not match.")
            return None
        if plan["version"][0] != self._version[0]:
            self._error(
                f"The engine plan file is not compatible with this version "
                f"(plan {plan['version']}, runtime {list(self._version)})."
            )
            return None
        if plan["host_code"] and not runtime.host_code_allowed:
            self._error(
                "Cannot deserialize an engine with host executable code while "
                "host code is not allowed."
            )
            return None
        return self._new(SimEngine, "engine", plan=plan)

    def runtime_set_engine_host_code_allowed(self, runtime: Any, allowed: bool) -> None:
        self._check(runtime)
        runtime.host_code_allowed = allowed

    # Engine

    def engine_serialize(self, engine: Any) -> Any | None:
        self._check(engine, device=True)
        return self._new(
            SimHostMemory, "host_memory", data=msgpack.packb(engine.plan, use_bin_type=True)
        )

    def engine_num_io_tensors(self, engine: Any) -> int:
        self._check(engine)
        return len(engine.plan["tensors"])

    def engine_io_tensor_name(self, engine: Any, index: int) -> str:
        self._check(engine)
        return engine.plan["tensors"][index]["name"]

    def engine_tensor_shape(self, engine: Any, name: str) -> list[int]:
        self._check(engine)
        tensor = engine.tensor(name)
        if tensor is None:
            self._error(f"Unknown tensor '{name}'.")
            return []
        return list(tensor["shape"])

    def engine_tensor_io_mode(self, engine: Any, name: str) -> int:
        self._check(engine)
        tensor = engine.tensor(name)
        return tensor["mode"] if tensor is not None else 0

    def engine_tensor_data_type(self, engine: Any, name: str) -> int:
        self._check(engine)
        tensor = engine.tensor(name)
        if tensor is None:
            self._error(f"Unknown tensor '{name}'.")
            return 0
        return tensor["dtype"]

    def engine_create_execution_context(self, engine: Any) -> Any | None:
        self._check(engine, device=True)
        context = self._new(SimContext, "execution_context", engine=engine)
        engine.live_contexts.add(context.address)
        return context

    # Execution context

    def context_set_tensor_address(self, context: Any, name: str, address: int) -> bool:
        self._check(context)
        if context.engine.tensor(name) is None:
            self._error(f"setTensorAddress: invalid tensor name '{name}'.")
            return False
        if address == 0:
            self._error(f"setTensorAddress: address for '{name}' must not be null.")
            return False
        context.addresses[name] = address
        return True

    def context_set_input_shape(self, context: Any, name: str, dims: Sequence[int]) -> bool:
        self._check(context)
        tensor = context.engine.tensor(name)
        if tensor is None or tensor["mode"] != _IO_MODE_INPUT:
            self._error(f"setInputShape: '{name}' is not an input tensor.")
            return False
        declared = tensor["shape"]
        if len(dims) != len(declared):
            self._error(f"setInputShape: rank mismatch for '{name}'.")
            return False
        profiles = context.engine.plan["profiles"]
        bounds = profiles[0].get(name) if profiles else None
        for axis, (want, value) in enumerate(zip(declared, dims)):
            if want >= 0 and want != value:
                self._error(f"setInputShape: static dimension {axis} of '{name}' is {want}.")
                return False
            if want < 0 and bounds is not None:
                if not bounds["0"][axis] <= value <= bounds["2"][axis]:
                    self._error(
                        f"setInputShape: dimension {axis} of '{name}' is outside the "
                        "optimization profile bounds."
                    )
                    return False
        context.input_shapes[name] = list(dims)
        return True

    def context_enqueue(self, context: Any, stream: int) -> bool:
        self._check(context, device=True)
        self._check(context.engine)
        for tensor in context.engine.plan["tensors"]:
            if tensor["name"] not in context.addresses:
                self._error(
                    f"enqueueV3: neither address nor allocator is set for tensor "
                    f"'{tensor['name']}'."
                )
                return False
            dynamic = any(d < 0 for d in tensor["shape"])
            if tensor["mode"] == _IO_MODE_INPUT and dynamic and tensor["name"] not in context.input_shapes:
                self._error(f"enqueueV3: input shape of '{tensor['name']}' is not specified.")
                return False
        context.enqueued.append(stream)
        return True

    # Parser

    def create_parser(self, network: Any) -> Any | None:
        raise BackendNotAvailableError("simulated", "no model parser is available")

    def parser_parse(self, parser: Any, data: bytes) -> bool:
        raise BackendNotAvailableError("simulated", "no model parser is available")

    def parser_errors(self, parser: Any) -> list[str]:
        return []
