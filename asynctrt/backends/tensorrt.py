"""
TensorRT backend for asynctrt.

Binds the ``tensorrt`` Python package. Device selection goes through CuPy's
CUDA runtime bindings.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Sequence
from typing import Any

from asynctrt.backends.base import BackendType, NativeBackend
from asynctrt.device import CudaDeviceContext, DeviceContext
from asynctrt.exceptions import BackendNotAvailableError

logger = logging.getLogger(__name__)

_SELECTORS = (0, 1, 2)  # min, opt, max


def _parse_version(text: str) -> tuple[int, int, int]:
    parts = [int(p) for p in text.split(".")[:3] if p.isdigit()]
    parts += [0] * (3 - len(parts))
    return parts[0], parts[1], parts[2]


class _Profile:
    """
    Optimization profile with per-selector staging.

    The Python bindings only accept complete (min, opt, max) triples, so
    bounds are staged here and committed once all three are known.
    """

    def __init__(self, native: Any) -> None:
        self.native = native
        self.dimensions: dict[str, dict[int, list[int]]] = {}
        self.shape_values: dict[str, dict[int, list[int]]] = {}


class TensorRTBackend(NativeBackend):
    """
    Native backend implemented on top of NVIDIA TensorRT.

    Example:
        >>> backend = TensorRTBackend()
        >>> backend.version
        (10, 8, 0)
    """

    def __init__(self) -> None:
        """
        Initialize the TensorRT backend.

        Raises:
            BackendNotAvailableError: If TensorRT or CUDA is not available.
        """
        try:
            import tensorrt as trt
        except ImportError as e:
            raise BackendNotAvailableError(
                "TensorRT", f"Required packages not installed: {e}"
            ) from e

        self._device_context = CudaDeviceContext()
        self._trt = trt
        self._version = _parse_version(trt.__version__)
        self._local = threading.local()
        self._logger = self._make_logger(trt)

    def _make_logger(self, trt: Any) -> Any:
        backend = self

        class _ForwardingLogger(trt.ILogger):
            def __init__(self) -> None:
                trt.ILogger.__init__(self)

            def log(self, severity: Any, msg: str) -> None:
                if severity in (trt.ILogger.INTERNAL_ERROR, trt.ILogger.ERROR):
                    backend._local.last_error = msg
                    logger.error(f"TensorRT: {msg}")
                elif severity == trt.ILogger.WARNING:
                    logger.warning(f"TensorRT: {msg}")
                elif severity == trt.ILogger.INFO:
                    logger.info(f"TensorRT: {msg}")
                else:
                    logger.debug(f"TensorRT: {msg}")

        return _ForwardingLogger()

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.TENSORRT

    @property
    def device_context(self) -> DeviceContext:
        """Get the CUDA device context."""
        return self._device_context

    @property
    def version(self) -> tuple[int, int, int]:
        """Get the TensorRT version."""
        return self._version

    def last_error(self) -> str | None:
        """Get the last error TensorRT logged on the calling thread."""
        return getattr(self._local, "last_error", None)

    def destroy(self, kind: str, obj: Any) -> None:
        """
        Destroy a TensorRT object.

        The bindings free the native object when the last Python reference
        goes away; the caller drops its own reference right after this call,
        inside the same device scope.
        """
        logger.debug(f"Releasing TensorRT {kind}")
        if isinstance(obj, _Profile):
            obj.native = None
        del obj

    # Builder

    def create_builder(self) -> Any | None:
        return self._trt.Builder(self._logger)

    def builder_create_config(self, builder: Any) -> Any | None:
        return builder.create_builder_config()

    def builder_create_network(self, builder: Any, flags: int) -> Any | None:
        return builder.create_network(flags)

    def builder_create_optimization_profile(self, builder: Any) -> Any | None:
        native = builder.create_optimization_profile()
        return _Profile(native) if native is not None else None

    def builder_build_serialized_network(
        self, builder: Any, network: Any, config: Any
    ) -> Any | None:
        return builder.build_serialized_network(network, config)

    def builder_platform_has_fast_int8(self, builder: Any) -> bool:
        return bool(builder.platform_has_fast_int8)

    def builder_platform_has_fast_fp16(self, builder: Any) -> bool:
        return bool(builder.platform_has_fast_fp16)

    # Network definition

    def network_add_input(
        self, network: Any, name: str, dtype: int, dims: Sequence[int]
    ) -> Any | None:
        return network.add_input(name, self._trt.DataType(dtype), tuple(dims))

    def network_add_identity(self, network: Any, tensor: Any) -> Any | None:
        layer = network.add_identity(tensor)
        return layer.get_output(0) if layer is not None else None

    def network_mark_output(self, network: Any, tensor: Any) -> None:
        network.mark_output(tensor)

    def network_num_inputs(self, network: Any) -> int:
        return network.num_inputs

    def network_num_outputs(self, network: Any) -> int:
        return network.num_outputs

    def network_get_input(self, network: Any, index: int) -> Any:
        return network.get_input(index)

    def network_get_output(self, network: Any, index: int) -> Any:
        return network.get_output(index)

    def tensor_get_name(self, tensor: Any) -> str:
        return tensor.name

    def tensor_set_name(self, tensor: Any, name: str) -> None:
        tensor.name = name

    # Optimization profile

    def _stage(
        self,
        table: dict[str, dict[int, list[int]]],
        input_name: str,
        select: int,
        values: Sequence[int],
    ) -> dict[int, list[int]] | None:
        if select not in _SELECTORS:
            return None
        staged = table.setdefault(input_name, {})
        if any(len(v) != len(values) for s, v in staged.items() if s != select):
            return None
        staged[select] = list(values)
        return staged

    def profile_set_dimensions(
        self, profile: Any, input_name: str, select: int, dims: Sequence[int]
    ) -> bool:
        if any(d < 0 for d in dims):
            return False
        staged = self._stage(profile.dimensions, input_name, select, dims)
        if staged is None:
            return False
        if len(staged) == len(_SELECTORS):
            try:
                profile.native.set_shape(input_name, *(staged[s] for s in _SELECTORS))
            except (RuntimeError, TypeError, ValueError) as e:
                logger.debug(f"set_shape({input_name!r}) rejected: {e}")
                return False
        return True

    def profile_get_dimensions(
        self, profile: Any, input_name: str, select: int
    ) -> list[int] | None:
        dims = profile.dimensions.get(input_name, {}).get(select)
        return list(dims) if dims is not None else None

    def profile_set_shape_values(
        self, profile: Any, input_name: str, select: int, values: Sequence[int]
    ) -> bool:
        staged = self._stage(profile.shape_values, input_name, select, values)
        if staged is None:
            return False
        if len(staged) == len(_SELECTORS):
            try:
                profile.native.set_shape_input(input_name, *(staged[s] for s in _SELECTORS))
            except (RuntimeError, TypeError, ValueError) as e:
                logger.debug(f"set_shape_input({input_name!r}) rejected: {e}")
                return False
        return True

    def profile_get_nb_shape_values(self, profile: Any, input_name: str) -> int:
        staged = profile.shape_values.get(input_name)
        if not staged:
            return -1
        return len(next(iter(staged.values())))

    def profile_get_shape_values(
        self, profile: Any, input_name: str, select: int
    ) -> list[int] | None:
        values = profile.shape_values.get(input_name, {}).get(select)
        if values is None:
            self._local.last_error = (
                f"shape values for '{input_name}' are not set for selector {select}"
            )
            return None
        return list(values)

    def profile_set_extra_memory_target(self, profile: Any, target: float) -> bool:
        if math.isnan(target) or target < 0.0 or target > 1.0:
            return False
        profile.native.extra_memory_target = target
        return True

    def profile_get_extra_memory_target(self, profile: Any) -> float:
        return float(profile.native.extra_memory_target)

    def profile_is_valid(self, profile: Any) -> bool:
        for table in (profile.dimensions, profile.shape_values):
            if any(len(staged) != len(_SELECTORS) for staged in table.values()):
                return False
        return bool(profile.native)

    # Builder config

    def config_set_memory_pool_limit(self, config: Any, pool: str, size: int) -> None:
        config.set_memory_pool_limit(self._trt.MemoryPoolType.__members__[pool], size)

    def config_set_flag(self, config: Any, flag: str) -> None:
        try:
            native_flag = getattr(self._trt.BuilderFlag, flag)
        except AttributeError as e:
            raise ValueError(
                f"Unknown builder flag '{flag}' for TensorRT {self._trt.__version__}"
            ) from e
        config.set_flag(native_flag)

    def config_add_optimization_profile(self, config: Any, profile: Any) -> int:
        return int(config.add_optimization_profile(profile.native))

    # Host memory

    def host_memory_view(self, memory: Any) -> memoryview:
        return memoryview(memory)

    # Runtime

    def create_runtime(self) -> Any | None:
        return self._trt.Runtime(self._logger)

    def runtime_deserialize_engine(self, runtime: Any, data: memoryview) -> Any | None:
        return runtime.deserialize_cuda_engine(data)

    def runtime_set_engine_host_code_allowed(self, runtime: Any, allowed: bool) -> None:
        runtime.engine_host_code_allowed = allowed

    # Engine

    def engine_serialize(self, engine: Any) -> Any | None:
        return engine.serialize()

    def engine_num_io_tensors(self, engine: Any) -> int:
        return engine.num_io_tensors

    def engine_io_tensor_name(self, engine: Any, index: int) -> str:
        return engine.get_tensor_name(index)

    def engine_tensor_shape(self, engine: Any, name: str) -> list[int]:
        return list(engine.get_tensor_shape(name))

    def engine_tensor_io_mode(self, engine: Any, name: str) -> int:
        return int(engine.get_tensor_mode(name))

    def engine_tensor_data_type(self, engine: Any, name: str) -> int:
        return int(engine.get_tensor_dtype(name))

    def engine_create_execution_context(self, engine: Any) -> Any | None:
        return engine.create_execution_context()

    # Execution context

    def context_set_tensor_address(self, context: Any, name: str, address: int) -> bool:
        return bool(context.set_tensor_address(name, address))

    def context_set_input_shape(self, context: Any, name: str, dims: Sequence[int]) -> bool:
        return bool(context.set_input_shape(name, tuple(dims)))

    def context_enqueue(self, context: Any, stream: int) -> bool:
        return bool(context.execute_async_v3(stream))

    # Parser

    def create_parser(self, network: Any) -> Any | None:
        return self._trt.OnnxParser(network, self._logger)

    def parser_parse(self, parser: Any, data: bytes) -> bool:
        return bool(parser.parse(data))

    def parser_errors(self, parser: Any) -> list[str]:
        return [str(parser.get_error(i)) for i in range(parser.num_errors)]
