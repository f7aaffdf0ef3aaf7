"""
Unit tests for the blocking engine and execution context.
"""

from __future__ import annotations

import pytest

from asynctrt.backends import SimulatedBackend
from asynctrt.exceptions import AllocationError, HandleReleasedError, OperationError
from asynctrt.ffi.sync.engine import Engine, ExecutionContext, TensorDataType, TensorIoMode
from asynctrt.ffi.sync.runtime import Runtime

from conftest import OPT_SHAPE, FatalCalled

BINDINGS = {"x": 0x10000, "y": 0x20000}


@pytest.fixture
def engine(backend: SimulatedBackend, plan_bytes: bytes) -> Engine:
    return Runtime.new(backend).deserialize_engine(plan_bytes)


class TestTensorIoMode:
    """Tests for TensorIoMode."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (1, TensorIoMode.INPUT),
            (2, TensorIoMode.OUTPUT),
            (0, TensorIoMode.NONE),
            (7, TensorIoMode.NONE),
        ],
    )
    def test_from_code(self, code: int, expected: TensorIoMode) -> None:
        """Test native codes map and unknown codes fall back to NONE."""
        assert TensorIoMode.from_code(code) is expected


class TestTensorDataType:
    """Tests for TensorDataType."""

    def test_native_codes(self) -> None:
        """Test the native code of every type."""
        assert TensorDataType.FLOAT == 0
        assert TensorDataType.INT64 == 8
        assert TensorDataType.INT4 == 9
        assert TensorDataType.FP4 == 10
        assert [int(t) for t in TensorDataType] == list(range(11))

    def test_from_code(self) -> None:
        """Test known codes map to their type."""
        assert TensorDataType.from_code(7, (10, 0, 0)) is TensorDataType.BF16
        assert TensorDataType.from_code(10, (10, 8, 0)) is TensorDataType.FP4

    def test_fp4_on_old_version(self, fatal: list[str]) -> None:
        """Test FP4 is unknown before it was introduced."""
        with pytest.raises(FatalCalled):
            TensorDataType.from_code(10, (10, 7, 0))

        assert "Unknown data type 10" in fatal[0]

    def test_unknown_code(self, fatal: list[str]) -> None:
        """Test unknown codes abort."""
        with pytest.raises(FatalCalled):
            TensorDataType.from_code(42, (10, 8, 0))


class TestIntrospection:
    """Tests for engine I/O introspection."""

    def test_io_tensors(self, engine: Engine) -> None:
        """Test I/O tensor enumeration."""
        assert engine.num_io_tensors() == 2
        assert [engine.io_tensor_name(i) for i in range(2)] == ["x", "y"]

    @pytest.mark.parametrize("index", [-1, 2])
    def test_io_tensor_name_out_of_range(self, engine: Engine, index: int) -> None:
        """Test out-of-range indices raise."""
        with pytest.raises(IndexError):
            engine.io_tensor_name(index)

    def test_tensor_details(self, engine: Engine) -> None:
        """Test shape, mode and type queries."""
        assert engine.tensor_shape("x") == [-1, 3, 224, 224]
        assert engine.tensor_io_mode("x") is TensorIoMode.INPUT
        assert engine.tensor_io_mode("y") is TensorIoMode.OUTPUT
        assert engine.tensor_io_mode("missing") is TensorIoMode.NONE
        assert engine.tensor_data_type("y") is TensorDataType.FLOAT

    def test_unknown_data_type(
        self,
        backend: SimulatedBackend,
        engine: Engine,
        fatal: list[str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a data type code this package does not know aborts."""
        monkeypatch.setattr(backend, "engine_tensor_data_type", lambda engine, name: 99)

        with pytest.raises(FatalCalled):
            engine.tensor_data_type("x")

        assert "99" in fatal[0]

    def test_serialize(self, backend: SimulatedBackend, engine: Engine) -> None:
        """Test a serialized engine deserializes to the same I/O."""
        plan = engine.serialize()

        copy = Runtime.new(backend).deserialize_engine_from_plan(plan)

        assert [copy.io_tensor_name(i) for i in range(copy.num_io_tensors())] == ["x", "y"]
        assert copy.tensor_shape("x") == engine.tensor_shape("x")


class TestReferenceCounting:
    """Tests for engine sharing between contexts."""

    def test_close_without_contexts(self, backend: SimulatedBackend, engine: Engine) -> None:
        """Test closing the only reference destroys engine and runtime."""
        engine.close()
        engine.close()

        assert engine.is_released
        assert [r.kind for r in backend.destroy_log][-2:] == ["engine", "runtime"]

    def test_context_keeps_engine(self, backend: SimulatedBackend, engine: Engine) -> None:
        """Test the engine outlives the caller's reference while contexts exist."""
        context = ExecutionContext.new(engine)
        assert engine.ref_count == 2

        engine.close()

        assert engine.ref_count == 1
        assert not engine.is_released

        context.release()

        assert engine.is_released
        assert [r.kind for r in backend.destroy_log][-3:] == [
            "execution_context",
            "engine",
            "runtime",
        ]

    def test_from_engine_adopts(self, engine: Engine) -> None:
        """Test the context takes over the caller's reference."""
        context = ExecutionContext.from_engine(engine)

        assert engine.ref_count == 1
        assert context.engine is engine

        engine.close()
        assert not engine.is_released

        context.release()
        assert engine.is_released

    def test_from_engine_after_close(self, engine: Engine) -> None:
        """Test a closed engine cannot create contexts."""
        engine.close()

        with pytest.raises(HandleReleasedError):
            ExecutionContext.from_engine(engine)
        with pytest.raises(HandleReleasedError):
            ExecutionContext.new(engine)

    def test_from_engine_many(self, engine: Engine) -> None:
        """Test contexts share one engine and the last one destroys it."""
        first, second = ExecutionContext.from_engine_many(engine, 2)

        assert engine.ref_count == 2

        first.release()
        assert not engine.is_released
        assert second.set_input_shape("x", OPT_SHAPE)
        second.enqueue(BINDINGS, 0)

        second.release()
        assert engine.is_released

    def test_from_engine_many_zero(self, engine: Engine) -> None:
        """Test zero contexts releases the caller's reference."""
        assert ExecutionContext.from_engine_many(engine, 0) == []
        assert engine.is_released

    def test_from_engine_many_negative(self, engine: Engine) -> None:
        """Test a negative count is rejected without touching the engine."""
        with pytest.raises(ValueError):
            ExecutionContext.from_engine_many(engine, -1)

        assert engine.ref_count == 1

    def test_from_engine_many_all_or_nothing(
        self,
        backend: SimulatedBackend,
        engine: Engine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a failed allocation releases the contexts already created."""
        create = backend.engine_create_execution_context
        calls: list[int] = []

        def flaky(native_engine: object) -> object:
            calls.append(1)
            if len(calls) == 2:
                return None
            return create(native_engine)

        monkeypatch.setattr(backend, "engine_create_execution_context", flaky)

        with pytest.raises(AllocationError):
            ExecutionContext.from_engine_many(engine, 3)

        assert engine.is_released
        assert backend.live_objects == []

    def test_engine_context_manager(self, engine: Engine) -> None:
        """Test the engine reference is released on exit."""
        with engine:
            pass

        assert engine.is_released


class TestExecutionContext:
    """Tests for binding and enqueueing."""

    @pytest.fixture
    def context(self, engine: Engine) -> ExecutionContext:
        return ExecutionContext.from_engine(engine)

    def test_enqueue(self, context: ExecutionContext) -> None:
        """Test a fully bound context enqueues on the given stream."""
        assert context.set_input_shape("x", OPT_SHAPE)

        context.enqueue(BINDINGS, 7)

        assert context.as_ptr().enqueued == [7]
        assert context.as_ptr().addresses == BINDINGS

    @pytest.mark.parametrize(
        ("name", "dims"),
        [
            ("x", [9, 3, 224, 224]),
            ("x", [4, 1, 224, 224]),
            ("x", [4, 3, 224]),
            ("y", [4, 3, 224, 224]),
        ],
    )
    def test_set_input_shape_rejected(
        self, context: ExecutionContext, name: str, dims: list[int]
    ) -> None:
        """Test shapes outside the profile or not matching the input are rejected."""
        assert not context.set_input_shape(name, dims)

    def test_enqueue_without_shape(self, context: ExecutionContext) -> None:
        """Test dynamic inputs need a shape before enqueue."""
        with pytest.raises(OperationError) as exc_info:
            context.enqueue(BINDINGS, 0)

        assert exc_info.value.operation == "enqueueV3"
        assert "input shape" in exc_info.value.message

    def test_enqueue_unbound_tensor(self, context: ExecutionContext) -> None:
        """Test every I/O tensor must be bound before enqueue."""
        context.set_input_shape("x", OPT_SHAPE)

        with pytest.raises(OperationError, match="'y'"):
            context.enqueue({"x": BINDINGS["x"]}, 0)

    def test_bind_unknown_tensor(self, context: ExecutionContext) -> None:
        """Test binding a name the engine does not have."""
        with pytest.raises(OperationError) as exc_info:
            context.set_tensor_address("z", 0x1000)

        assert exc_info.value.operation == "setTensorAddress"

    def test_bind_null(self, context: ExecutionContext) -> None:
        """Test binding a null address."""
        with pytest.raises(OperationError, match="null"):
            context.set_tensor_address("x", 0)

    def test_failed_bind_keeps_earlier_binds(self, context: ExecutionContext) -> None:
        """Test binds before a failing one stay in place."""
        with pytest.raises(OperationError):
            context.enqueue({"x": BINDINGS["x"], "z": 0x30000}, 0)

        assert context.as_ptr().addresses == {"x": BINDINGS["x"]}
        assert context.as_ptr().enqueued == []

    def test_release(self, context: ExecutionContext) -> None:
        """Test a released context cannot be used."""
        context.release()
        context.release()

        assert context.is_released
        with pytest.raises(HandleReleasedError):
            _ = context.engine
        with pytest.raises(HandleReleasedError):
            context.set_input_shape("x", OPT_SHAPE)

    def test_context_manager(self, engine: Engine) -> None:
        """Test the context is released on exit."""
        with ExecutionContext.from_engine(engine) as context:
            pass

        assert context.is_released
        assert engine.is_released


class TestDeviceAffinity:
    """Tests for engines bound to a non-default device."""

    def test_contexts_follow_engine_device(
        self, backend: SimulatedBackend, plan_bytes: bytes
    ) -> None:
        """Test contexts run on the engine's device regardless of the caller's."""
        backend.device_context.set_current(1)
        engine = Runtime.new(backend).deserialize_engine(plan_bytes)
        backend.device_context.set_current(0)

        context = ExecutionContext.new(engine)
        context.set_input_shape("x", OPT_SHAPE)
        context.enqueue(BINDINGS, 0)
        context.release()
        engine.close()

        assert engine.device == context.device == 1
        assert backend.device_context.get_current() == 0
        assert all(r.current_device == r.device for r in backend.destroy_log)
