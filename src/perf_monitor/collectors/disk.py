"""Per-device block I/O rates from /proc/diskstats."""

import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from perf_monitor.procfs import DEFAULT_PROC_ROOT, parse_int, read_required, saturating_sub

SECTOR_SIZE = 512  # diskstats always counts 512-byte sectors

_VIRTUAL_PREFIXES = ("loop", "ram", "dm-", "zram", "sr", "fd")
# nvme0n1p1, mmcblk0p2: partitions carry a "p<N>" suffix
_P_SUFFIX_PARTITION = re.compile(r"^(nvme\d+n\d+|mmcblk\d+)p\d+$")
_P_SUFFIX_WHOLE = re.compile(r"^(nvme\d+n\d+|mmcblk\d+)$")


def is_physical_device(name: str) -> bool:
    """True for whole physical disks (sda, vdb, nvme0n1); False for partitions
    and virtual devices (sda1, nvme0n1p2, loop0, ram0, dm-3)."""
    if name.startswith(_VIRTUAL_PREFIXES):
        return False
    if _P_SUFFIX_WHOLE.match(name):
        return True
    if _P_SUFFIX_PARTITION.match(name):
        return False
    return not name[-1:].isdigit()


@dataclass(frozen=True)
class _DiskCounters:
    """Raw cumulative counters for one device."""

    reads: int
    sectors_read: int
    time_reading: int
    writes: int
    sectors_written: int
    time_writing: int
    in_progress: int
    time_io: int
    weighted_time_io: int

    @classmethod
    def from_fields(cls, fields: list[str]) -> "_DiskCounters":
        # fields[3:14] after major, minor, name
        values = [parse_int(v) for v in fields[3:14]]
        reads, _merged_r, sectors_r, t_read, writes, _merged_w, sectors_w, t_write = values[:8]
        in_progress, time_io, weighted = values[8:11]
        return cls(
            reads, sectors_r, t_read, writes, sectors_w, t_write, in_progress, time_io, weighted
        )


@dataclass(frozen=True)
class DiskDeviceMetrics:
    """Rates for one device over the last interval."""

    device: str
    read_bytes_per_sec: float = 0.0
    write_bytes_per_sec: float = 0.0
    read_iops: float = 0.0
    write_iops: float = 0.0
    read_latency_ms: float = 0.0
    write_latency_ms: float = 0.0
    utilization: float = 0.0
    queue_depth: float = 0.0
    in_flight: int = 0
    reads_completed: int = 0
    writes_completed: int = 0
    bytes_read: int = 0
    bytes_written: int = 0


@dataclass(frozen=True)
class SpillDirInfo:
    """Capacity of the filesystem holding the configured spill directory."""

    path: str
    total_bytes: int
    used_bytes: int
    available_bytes: int

    @property
    def used_percent(self) -> float:
        return 100.0 * self.used_bytes / self.total_bytes if self.total_bytes > 0 else 0.0


@dataclass(frozen=True)
class DiskMetrics:
    disks: list[DiskDeviceMetrics] = field(default_factory=list)
    total_read_bytes_per_sec: float = 0.0
    total_write_bytes_per_sec: float = 0.0
    total_in_flight: int = 0
    spill_dir: SpillDirInfo | None = None

    def get(self, device: str) -> DiskDeviceMetrics | None:
        for disk in self.disks:
            if disk.device == device:
                return disk
        return None


def spill_dir_info(path: str | Path) -> SpillDirInfo | None:
    """statvfs capacity of a directory, or None if it cannot be queried."""
    try:
        st = os.statvfs(path)
    except OSError:
        return None
    total = st.f_blocks * st.f_frsize
    return SpillDirInfo(
        path=str(path),
        total_bytes=total,
        used_bytes=total - st.f_bfree * st.f_frsize,
        available_bytes=st.f_bavail * st.f_frsize,
    )


class DiskCollector:
    """Computes throughput, IOPS, latency, utilization and queue depth per disk.

    Devices are rediscovered on every read. A device seen for the first time
    after the initial sample gets an all-zero entry; the very first sample
    has no prior timestamp and emits no device entries at all.
    """

    def __init__(
        self,
        proc_root: Path = DEFAULT_PROC_ROOT,
        spill_dir: str | Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.proc_root = Path(proc_root)
        self.spill_dir = spill_dir
        self._clock = clock
        self._prev: dict[str, _DiskCounters] = {}
        self._prev_time: float | None = None

    def collect(self) -> DiskMetrics:
        """Raises CollectError if /proc/diskstats is unreadable."""
        text = read_required(self.proc_root / "diskstats")
        now = self._clock()

        current: dict[str, _DiskCounters] = {}
        for line in text.splitlines():
            parts = line.split()
            if len(parts) < 14:
                continue
            name = parts[2]
            if not is_physical_device(name):
                continue
            current[name] = _DiskCounters.from_fields(parts)

        disks: list[DiskDeviceMetrics] = []
        if self._prev_time is not None:
            elapsed = now - self._prev_time
            for name, counters in current.items():
                prev = self._prev.get(name)
                if prev is None or elapsed <= 0:
                    disks.append(_zero_rates(name, counters))
                else:
                    disks.append(_device_rates(name, prev, counters, elapsed))

        # a device that vanishes and comes back starts over with zero rates
        self._prev = current
        self._prev_time = now

        return DiskMetrics(
            disks=disks,
            total_read_bytes_per_sec=sum(d.read_bytes_per_sec for d in disks),
            total_write_bytes_per_sec=sum(d.write_bytes_per_sec for d in disks),
            total_in_flight=sum(d.in_flight for d in disks),
            spill_dir=spill_dir_info(self.spill_dir) if self.spill_dir else None,
        )


def _zero_rates(name: str, counters: _DiskCounters) -> DiskDeviceMetrics:
    return DiskDeviceMetrics(
        device=name,
        in_flight=counters.in_progress,
        reads_completed=counters.reads,
        writes_completed=counters.writes,
        bytes_read=counters.sectors_read * SECTOR_SIZE,
        bytes_written=counters.sectors_written * SECTOR_SIZE,
    )


def _device_rates(
    name: str, prev: _DiskCounters, curr: _DiskCounters, elapsed: float
) -> DiskDeviceMetrics:
    elapsed_ms = elapsed * 1000.0
    reads = saturating_sub(curr.reads, prev.reads)
    writes = saturating_sub(curr.writes, prev.writes)
    read_time = saturating_sub(curr.time_reading, prev.time_reading)
    write_time = saturating_sub(curr.time_writing, prev.time_writing)
    io_time = saturating_sub(curr.time_io, prev.time_io)
    weighted = saturating_sub(curr.weighted_time_io, prev.weighted_time_io)

    return DiskDeviceMetrics(
        device=name,
        read_bytes_per_sec=saturating_sub(curr.sectors_read, prev.sectors_read)
        * SECTOR_SIZE
        / elapsed,
        write_bytes_per_sec=saturating_sub(curr.sectors_written, prev.sectors_written)
        * SECTOR_SIZE
        / elapsed,
        read_iops=reads / elapsed,
        write_iops=writes / elapsed,
        read_latency_ms=read_time / reads if reads else 0.0,
        write_latency_ms=write_time / writes if writes else 0.0,
        utilization=min(io_time / elapsed_ms * 100.0, 100.0),
        queue_depth=weighted / elapsed_ms,
        in_flight=curr.in_progress,
        reads_completed=curr.reads,
        writes_completed=curr.writes,
        bytes_read=curr.sectors_read * SECTOR_SIZE,
        bytes_written=curr.sectors_written * SECTOR_SIZE,
    )
