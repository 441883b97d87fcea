"""Helpers for reading kernel pseudo-files.

Kernel counter files can be truncated or carry unexpected tokens (old kernels,
containers with partial /proc mounts). Individual fields therefore parse with a
"parse or zero" policy: a field that does not parse contributes 0 to the sample
instead of aborting it. Whole-source failures are different: when the file
backing a required collector cannot be read at all, CollectError is raised.
"""

from pathlib import Path

DEFAULT_PROC_ROOT = Path("/proc")
DEFAULT_SYS_ROOT = Path("/sys")


class CollectError(RuntimeError):
    """A required kernel counter source could not be read."""

    def __init__(self, source: Path | str, reason: str):
        self.source = str(source)
        self.reason = reason
        super().__init__(f"cannot read {self.source}: {reason}")


def parse_int(value: str | None) -> int:
    """Parse an integer field, returning 0 for anything malformed."""
    if value is None:
        return 0
    try:
        return int(value)
    except ValueError:
        return 0


def parse_float(value: str | None) -> float:
    """Parse a float field, returning 0.0 for anything malformed."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0


def saturating_sub(current: int, previous: int) -> int:
    """Counter delta clamped at zero (counter resets, device swaps)."""
    return current - previous if current > previous else 0


def rate(current: int, previous: int, elapsed: float) -> float:
    """Per-second rate of a cumulative counter, never negative."""
    if elapsed <= 0:
        return 0.0
    return saturating_sub(current, previous) / elapsed


def read_required(path: Path) -> str:
    """Read a source whose absence makes the tick impossible.

    Raises:
        CollectError: If the file cannot be read.
    """
    try:
        return path.read_text(errors="replace")
    except OSError as e:
        raise CollectError(path, e.strerror or str(e)) from e


def read_optional(path: Path) -> str | None:
    """Read a source that may legitimately be missing; None if unreadable."""
    try:
        return path.read_text(errors="replace")
    except OSError:
        return None


def parse_key_value_kb(text: str) -> dict[str, int]:
    """Parse "Key:   1234 kB" style files (meminfo, /proc/<pid>/status) into bytes.

    Lines without a numeric second token are skipped; values carrying a
    "kB" unit are converted to bytes.
    """
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts or not parts[0].isdigit():
            continue
        number = int(parts[0])
        if len(parts) > 1 and parts[1] == "kB":
            number *= 1024
        values[key.strip()] = number
    return values


def field_at(parts: list[str], index: int) -> str | None:
    """Return parts[index], or None when the line is short."""
    return parts[index] if len(parts) > index else None
