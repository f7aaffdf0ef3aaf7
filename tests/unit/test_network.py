"""
Unit tests for network definitions.
"""

from __future__ import annotations

import pytest

from asynctrt.backends import SimulatedBackend
from asynctrt.exceptions import AllocationError, ConsumedError
from asynctrt.ffi.network import NetworkDefinition, NetworkDefinitionCreationFlags
from asynctrt.ffi.sync.builder import Builder
from asynctrt.ffi.sync.engine import TensorDataType


@pytest.fixture
def builder(backend: SimulatedBackend) -> Builder:
    return Builder.new(backend)


@pytest.fixture
def network(builder: Builder) -> NetworkDefinition:
    return builder.network_definition(NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE)


class TestCreationFlags:
    """Tests for NetworkDefinitionCreationFlags."""

    def test_native_bits(self) -> None:
        """Test the native creation bitmask."""
        assert NetworkDefinitionCreationFlags.NONE.native_bits() == 0
        assert NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE.native_bits() == 1

    def test_default_network(self, builder: Builder) -> None:
        """Test networks can be created without flags."""
        network = builder.network_definition(NetworkDefinitionCreationFlags.NONE)

        assert network.flags is NetworkDefinitionCreationFlags.NONE
        assert network.as_ptr().flags == 0


class TestGraph:
    """Tests for building up a graph."""

    def test_inputs_and_outputs(self, network: NetworkDefinition) -> None:
        """Test inputs, identity layers and outputs."""
        x = network.add_input("x", TensorDataType.FLOAT, [-1, 3, 224, 224])
        y = network.add_identity(x)
        network.mark_output(y)

        assert network.num_inputs == 1
        assert network.num_outputs == 1
        assert [t.name for t in network.inputs()] == ["x"]
        assert [t.name for t in network.outputs()] == [y.name]

    def test_identity_name(self, network: NetworkDefinition) -> None:
        """Test layer outputs get a generated name that can be changed."""
        x = network.add_input("x", TensorDataType.HALF, [2])
        y = network.add_identity(x)

        assert y.name == "(Unnamed Layer* 0) [Identity]_output"
        y.name = "y"
        assert y.name == "y"

    def test_mark_output_once(self, network: NetworkDefinition) -> None:
        """Test marking the same tensor twice adds one output."""
        y = network.add_identity(network.add_input("x", TensorDataType.FLOAT, [1]))
        network.mark_output(y)
        network.mark_output(y)

        assert network.num_outputs == 1

    def test_duplicate_input(self, network: NetworkDefinition) -> None:
        """Test input names must be unique."""
        network.add_input("x", TensorDataType.FLOAT, [1])

        with pytest.raises(AllocationError, match="Duplicate input name"):
            network.add_input("x", TensorDataType.FLOAT, [1])

    def test_too_many_dims(self, network: NetworkDefinition) -> None:
        """Test inputs are limited to eight dimensions."""
        with pytest.raises(AllocationError):
            network.add_input("x", TensorDataType.FLOAT, [1] * 9)

    def test_fp4_by_version(self) -> None:
        """Test FP4 inputs are only known to newer native versions."""
        old = Builder.new(SimulatedBackend(version=(10, 7, 0)))
        new = Builder.new(SimulatedBackend(version=(10, 8, 0)))
        flags = NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE

        with pytest.raises(AllocationError, match="Unsupported data type"):
            old.network_definition(flags).add_input("x", TensorDataType.FP4, [16])
        assert new.network_definition(flags).add_input("x", TensorDataType.FP4, [16]).name == "x"


class TestConsumption:
    """Tests for consumption by a build."""

    def test_consumed_by_build(self, builder: Builder, network: NetworkDefinition) -> None:
        """Test the network cannot be used after a build."""
        x = network.add_input("x", TensorDataType.FLOAT, [1, 3])
        network.mark_output(network.add_identity(x))

        builder.build_serialized_network(network, builder.config())

        assert network.is_consumed
        with pytest.raises(ConsumedError):
            network.add_input("z", TensorDataType.FLOAT, [1])
        with pytest.raises(ConsumedError):
            _ = x.name

    def test_keeps_builder_device(self, backend: SimulatedBackend) -> None:
        """Test the network is created on its builder's device."""
        backend.device_context.set_current(1)
        builder = Builder.new(backend)
        backend.device_context.set_current(0)

        network = builder.network_definition(NetworkDefinitionCreationFlags.EXPLICIT_BATCH_SIZE)

        assert network.device == 1
        assert backend.device_context.get_current() == 0
