"""
Native library version handling.

Builder flag semantics differ between native major versions. The
translation from the flags this package exposes to native flag names is a
table keyed by major version, resolved once per version.
"""

from __future__ import annotations

from enum import Enum, auto
from functools import lru_cache
from types import MappingProxyType
from typing import TYPE_CHECKING

from asynctrt.backends import get_backend

if TYPE_CHECKING:
    from collections.abc import Mapping

    from asynctrt.backends.base import NativeBackend

# Defined in NvInferRuntimeBase.h
MAX_DIMS = 8

# First version that knows the FP4 data type.
FP4_MIN_VERSION = (10, 8)


class BuilderFlag(Enum):
    """Build options exposed by :class:`~asynctrt.ffi.builder_config.BuilderConfig`."""

    FP16 = auto()
    INT8 = auto()
    STRICT_TYPES = auto()
    VERSION_COMPATIBLE = auto()
    EXCLUDE_LEAN_RUNTIME = auto()


# Keyed by the lowest major version each table applies to.
FLAG_TABLES: dict[int, dict[BuilderFlag, tuple[str, ...]]] = {
    8: {
        BuilderFlag.FP16: ("FP16",),
        BuilderFlag.INT8: ("INT8",),
        BuilderFlag.STRICT_TYPES: ("STRICT_TYPES",),
        BuilderFlag.VERSION_COMPATIBLE: ("VERSION_COMPATIBLE",),
        BuilderFlag.EXCLUDE_LEAN_RUNTIME: ("EXCLUDE_LEAN_RUNTIME",),
    },
    10: {
        BuilderFlag.FP16: ("FP16",),
        BuilderFlag.INT8: ("INT8",),
        # kSTRICT_TYPES was removed; these three together are its closest equivalent.
        BuilderFlag.STRICT_TYPES: (
            "PREFER_PRECISION_CONSTRAINTS",
            "DIRECT_IO",
            "REJECT_EMPTY_ALGORITHMS",
        ),
        BuilderFlag.VERSION_COMPATIBLE: ("VERSION_COMPATIBLE",),
        BuilderFlag.EXCLUDE_LEAN_RUNTIME: ("EXCLUDE_LEAN_RUNTIME",),
    },
}


@lru_cache(maxsize=None)
def resolve_flag_table(major: int) -> Mapping[BuilderFlag, tuple[str, ...]]:
    """
    Get the flag translation table for a native major version.

    Args:
        major: Native library major version.

    Returns:
        Read-only mapping from builder flag to native flag names.
    """
    eligible = [key for key in FLAG_TABLES if key <= major]
    key = max(eligible) if eligible else min(FLAG_TABLES)
    return MappingProxyType(FLAG_TABLES[key])


def supports_fp4(version: tuple[int, int, int]) -> bool:
    """Check whether a native version knows the FP4 data type."""
    return (version[0], version[1]) >= FP4_MIN_VERSION


def get_version(backend: NativeBackend | None = None) -> tuple[int, int, int]:
    """
    Get the (major, minor, patch) version of the native library.

    Args:
        backend: Backend to query (default: the global backend).
    """
    return (backend or get_backend()).version
