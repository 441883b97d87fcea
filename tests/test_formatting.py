"""Tests for formatting utilities."""

import pytest

from perf_monitor.formatting import (
    format_bytes,
    format_bytes_short,
    format_throughput,
    truncate,
)


class TestFormatBytes:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0, "0 B"),
            (512, "512 B"),
            (1536, "1.50 KB"),
            (600 * 1024**2, "600.00 MB"),
            (2 * 1024**3, "2.00 GB"),
            (3 * 1024**4, "3.00 TB"),
        ],
    )
    def test_format_bytes(self, value: int, expected: str) -> None:
        assert format_bytes(value) == expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (512, "512B"),
            (3 * 1024, "3K"),
            (12 * 1024**2, "12M"),
            (1.5 * 1024**3, "1.5G"),
        ],
    )
    def test_format_bytes_short(self, value: float, expected: str) -> None:
        assert format_bytes_short(value) == expected


class TestFormatThroughput:
    def test_sub_kilobyte(self) -> None:
        assert format_throughput(100.4) == "100 B/s"

    def test_megabytes(self) -> None:
        assert format_throughput(12.5 * 1024**2) == "12.50 MB/s"


class TestMisc:
    def test_truncate(self) -> None:
        assert truncate("short", 10) == "short"
        assert truncate("a-very-long-name", 8) == "a-very.."
