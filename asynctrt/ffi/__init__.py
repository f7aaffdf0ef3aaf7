"""
Wrappers around native inference objects.

Ownership, device selection and error translation live here; the blocking
entry points are in :mod:`asynctrt.ffi.sync`.
"""

from asynctrt.ffi.builder_config import BuilderConfig
from asynctrt.ffi.handle import NativeHandle
from asynctrt.ffi.memory import HostBuffer, device_pointer, stream_pointer
from asynctrt.ffi.network import NetworkDefinition, NetworkDefinitionCreationFlags, Tensor
from asynctrt.ffi.optimization_profile import OptimizationProfile, OptimizationProfileSelector
from asynctrt.ffi.parser import Parser
from asynctrt.ffi.version import BuilderFlag, get_version

__all__ = [
    # Handles and memory
    "NativeHandle",
    "HostBuffer",
    "device_pointer",
    "stream_pointer",
    # Build chain
    "BuilderConfig",
    "BuilderFlag",
    "NetworkDefinition",
    "NetworkDefinitionCreationFlags",
    "OptimizationProfile",
    "OptimizationProfileSelector",
    "Parser",
    "Tensor",
    # Version
    "get_version",
]
