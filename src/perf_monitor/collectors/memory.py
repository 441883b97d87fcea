"""System and cgroup memory gauges plus page-fault deltas."""

from dataclasses import dataclass
from pathlib import Path

from perf_monitor.procfs import (
    DEFAULT_PROC_ROOT,
    DEFAULT_SYS_ROOT,
    field_at,
    parse_int,
    parse_key_value_kb,
    read_optional,
    read_required,
    saturating_sub,
)

# cgroup v1 reports "no limit" as a huge page-aligned value near 2**63
CGROUP_V1_UNLIMITED = 1_000_000_000_000_000_000


@dataclass(frozen=True)
class MemoryMetrics:
    """Memory gauges in bytes; fault deltas are None on the first sample."""

    total: int = 0
    used: int = 0
    free: int = 0
    available: int = 0
    buffers: int = 0
    cached: int = 0
    dirty: int = 0
    writeback: int = 0
    active_file: int = 0
    inactive_file: int = 0
    swap_total: int = 0
    swap_used: int = 0
    cgroup_limit: int | None = None
    cgroup_current: int | None = None
    major_faults: int = 0
    minor_faults: int = 0
    major_faults_delta: int | None = None
    minor_faults_delta: int | None = None

    @property
    def used_percent(self) -> float:
        return 100.0 * self.used / self.total if self.total > 0 else 0.0

    @property
    def swap_percent(self) -> float:
        return 100.0 * self.swap_used / self.swap_total if self.swap_total > 0 else 0.0

    @property
    def cgroup_percent(self) -> float | None:
        """Cgroup usage against its limit, when both are known and the limit is set."""
        if self.cgroup_limit is None or self.cgroup_current is None:
            return None
        if self.cgroup_limit <= 0:
            return None
        return 100.0 * self.cgroup_current / self.cgroup_limit


class MemoryCollector:
    """Reads /proc/meminfo, /proc/vmstat and the cgroup memory controller."""

    def __init__(
        self,
        proc_root: Path = DEFAULT_PROC_ROOT,
        sys_root: Path = DEFAULT_SYS_ROOT,
    ):
        self.proc_root = Path(proc_root)
        self.cgroup_root = Path(sys_root) / "fs" / "cgroup"
        self._prev_major: int | None = None
        self._prev_minor: int | None = None

    def collect(self) -> MemoryMetrics:
        """Raises CollectError if /proc/meminfo is unreadable."""
        info = parse_key_value_kb(read_required(self.proc_root / "meminfo"))

        total = info.get("MemTotal", 0)
        free = info.get("MemFree", 0)
        buffers = info.get("Buffers", 0)
        cached = info.get("Cached", 0)
        swap_total = info.get("SwapTotal", 0)

        cgroup_limit, cgroup_current = self.read_cgroup()
        major, minor = self._read_page_faults()

        major_delta = minor_delta = None
        if self._prev_major is not None and self._prev_minor is not None:
            major_delta = saturating_sub(major, self._prev_major)
            minor_delta = saturating_sub(minor, self._prev_minor)
        self._prev_major = major
        self._prev_minor = minor

        return MemoryMetrics(
            total=total,
            used=max(total - free - buffers - cached, 0),
            free=free,
            available=info.get("MemAvailable", 0),
            buffers=buffers,
            cached=cached,
            dirty=info.get("Dirty", 0),
            writeback=info.get("Writeback", 0),
            active_file=info.get("Active(file)", 0),
            inactive_file=info.get("Inactive(file)", 0),
            swap_total=swap_total,
            swap_used=saturating_sub(swap_total, info.get("SwapFree", 0)),
            cgroup_limit=cgroup_limit,
            cgroup_current=cgroup_current,
            major_faults=major,
            minor_faults=minor,
            major_faults_delta=major_delta,
            minor_faults_delta=minor_delta,
        )

    def read_cgroup(self) -> tuple[int | None, int | None]:
        """Return (limit, current) from cgroup v2, falling back to v1.

        The v1 hierarchy is only consulted when neither v2 file exists.
        """
        v2_max = self.cgroup_root / "memory.max"
        v2_current = self.cgroup_root / "memory.current"
        if v2_max.exists() or v2_current.exists():
            return _read_cgroup_value(v2_max), _read_cgroup_value(v2_current)

        v1 = self.cgroup_root / "memory"
        limit = _read_cgroup_value(v1 / "memory.limit_in_bytes")
        if limit is not None and limit > CGROUP_V1_UNLIMITED:
            limit = None
        return limit, _read_cgroup_value(v1 / "memory.usage_in_bytes")

    def _read_page_faults(self) -> tuple[int, int]:
        """(major, minor) fault counters; vmstat is optional in minimal containers."""
        text = read_optional(self.proc_root / "vmstat") or ""
        major = 0
        total = 0
        for line in text.splitlines():
            parts = line.split()
            if not parts:
                continue
            if parts[0] == "pgmajfault":
                major = parse_int(field_at(parts, 1))
            elif parts[0] == "pgfault":
                total = parse_int(field_at(parts, 1))
        # pgfault counts every fault, major ones included
        return major, saturating_sub(total, major)


def _read_cgroup_value(path: Path) -> int | None:
    text = read_optional(path)
    if text is None:
        return None
    value = text.strip()
    if value == "max" or not value.isdigit():
        return None
    return int(value)
