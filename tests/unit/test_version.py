"""
Unit tests for version handling and flag translation.
"""

from __future__ import annotations

import pytest

from asynctrt.backends import SimulatedBackend
from asynctrt.ffi.version import (
    BuilderFlag,
    get_version,
    resolve_flag_table,
    supports_fp4,
)


class TestFlagTables:
    """Tests for per-version flag translation."""

    def test_modern_strict_types(self) -> None:
        """Test strict types maps to its replacement flag set."""
        table = resolve_flag_table(10)

        assert table[BuilderFlag.STRICT_TYPES] == (
            "PREFER_PRECISION_CONSTRAINTS",
            "DIRECT_IO",
            "REJECT_EMPTY_ALGORITHMS",
        )

    def test_legacy_strict_types(self) -> None:
        """Test older versions keep the original flag."""
        assert resolve_flag_table(8)[BuilderFlag.STRICT_TYPES] == ("STRICT_TYPES",)

    @pytest.mark.parametrize(("major", "expected"), [(7, 8), (9, 8), (11, 10)])
    def test_nearest_table(self, major: int, expected: int) -> None:
        """Test versions without their own table use the closest one."""
        assert resolve_flag_table(major) == resolve_flag_table(expected)

    def test_cached(self) -> None:
        """Test each major version resolves once."""
        assert resolve_flag_table(10) is resolve_flag_table(10)

    def test_read_only(self) -> None:
        """Test resolved tables cannot be modified."""
        table = resolve_flag_table(10)

        with pytest.raises(TypeError):
            table[BuilderFlag.FP16] = ("INT8",)  # type: ignore[index]

    def test_every_flag_mapped(self) -> None:
        """Test every exposed flag has a translation in every table."""
        for major in (8, 10):
            assert set(resolve_flag_table(major)) == set(BuilderFlag)


class TestVersion:
    """Tests for version queries."""

    @pytest.mark.parametrize(
        ("version", "expected"),
        [((10, 8, 0), True), ((10, 7, 9), False), ((11, 0, 0), True), ((8, 6, 1), False)],
    )
    def test_supports_fp4(self, version: tuple[int, int, int], expected: bool) -> None:
        """Test FP4 availability by version."""
        assert supports_fp4(version) is expected

    def test_get_version_explicit(self) -> None:
        """Test querying a specific backend."""
        assert get_version(SimulatedBackend(version=(8, 6, 1))) == (8, 6, 1)

    def test_get_version_global(self, backend: SimulatedBackend) -> None:
        """Test querying the global backend."""
        assert get_version() == backend.version
