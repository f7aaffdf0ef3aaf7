"""
Blocking implementations of the builder, engine and runtime.

These run on the calling thread. The top-level :mod:`asynctrt` classes
wrap them and move every blocking call onto the background worker.
"""

from asynctrt.ffi.sync.builder import Builder
from asynctrt.ffi.sync.engine import Engine, ExecutionContext, TensorDataType, TensorIoMode
from asynctrt.ffi.sync.runtime import Runtime

__all__ = [
    "Builder",
    "Engine",
    "ExecutionContext",
    "Runtime",
    "TensorDataType",
    "TensorIoMode",
]
