"""
asynctrt examples.

This module contains example programs demonstrating the asynchronous
build, deserialize and enqueue flow.
"""

from examples.identity_engine import build_identity_engine, run_identity_example

__all__ = [
    "build_identity_engine",
    "run_identity_example",
]
