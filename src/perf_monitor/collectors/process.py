"""Metrics for a single process from /proc/<pid>."""

import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from perf_monitor.procfs import (
    DEFAULT_PROC_ROOT,
    field_at,
    parse_int,
    parse_key_value_kb,
    rate,
    read_optional,
    saturating_sub,
)

CLOCK_TICKS = os.sysconf("SC_CLK_TCK")
PAGE_SIZE = os.sysconf("SC_PAGE_SIZE")


class ProcessGone(Exception):
    """The process exited between the existence check and the read."""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"process {pid} is no longer present")


class ProcessState(Enum):
    RUNNING = "Running"
    SLEEPING = "Sleeping"
    DISK_SLEEP = "Disk Sleep"
    STOPPED = "Stopped"
    ZOMBIE = "Zombie"
    DEAD = "Dead"
    UNKNOWN = "Unknown"

    @classmethod
    def from_code(cls, code: str) -> "ProcessState":
        return _STATE_CODES.get(code[:1], cls.UNKNOWN)


_STATE_CODES = {
    "R": ProcessState.RUNNING,
    "S": ProcessState.SLEEPING,
    "D": ProcessState.DISK_SLEEP,
    "T": ProcessState.STOPPED,
    "t": ProcessState.STOPPED,
    "Z": ProcessState.ZOMBIE,
    "X": ProcessState.DEAD,
}


@dataclass(frozen=True)
class ProcessMetrics:
    """Snapshot of one process. Rates are zero on the first sample."""

    pid: int
    name: str
    state: ProcessState
    cpu_percent: float
    utime: int
    stime: int
    num_threads: int
    vsize_bytes: int
    rss_bytes: int
    vm_peak_bytes: int = 0
    rss_anon_bytes: int = 0
    rss_file_bytes: int = 0
    rss_shmem_bytes: int = 0
    swap_bytes: int = 0
    io_read_bytes_per_sec: float = 0.0
    io_write_bytes_per_sec: float = 0.0
    io_rchar_per_sec: float = 0.0
    io_wchar_per_sec: float = 0.0
    io_read_bytes: int = 0
    io_write_bytes: int = 0
    cancelled_write_bytes: int = 0
    num_fds: int = 0
    cmdline: str = ""


@dataclass
class _PrevSample:
    """Cumulative counters from the previous read."""

    cpu_ticks: int  # utime + stime
    read_bytes: int
    write_bytes: int
    rchar: int
    wchar: int
    timestamp: float  # clock() when sampled


def parse_stat(text: str) -> tuple[str, list[str]]:
    """Split /proc/<pid>/stat into (comm, fields after comm).

    comm may contain spaces and parentheses, so it runs from the first "("
    to the last ")". fields[0] is the state letter.
    """
    start = text.find("(")
    end = text.rfind(")")
    if start == -1 or end == -1 or end < start:
        return "", []
    return text[start + 1 : end], text[end + 1 :].split()


def parse_io(text: str) -> dict[str, int]:
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            values[key.strip()] = parse_int(value.strip())
    return values


class ProcessCollector:
    """Collects CPU, memory, I/O and descriptor metrics for one PID."""

    def __init__(
        self,
        pid: int,
        proc_root: Path = DEFAULT_PROC_ROOT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pid = pid
        self.proc_dir = Path(proc_root) / str(pid)
        self._clock = clock
        self._prev: _PrevSample | None = None

    def exists(self) -> bool:
        return self.proc_dir.is_dir()

    def collect(self) -> ProcessMetrics:
        """Read the process's kernel records.

        Raises:
            ProcessGone: If stat or status can no longer be read.
        """
        try:
            stat_text = (self.proc_dir / "stat").read_text(errors="replace")
            status_text = (self.proc_dir / "status").read_text(errors="replace")
        except OSError as e:
            raise ProcessGone(self.pid) from e
        now = self._clock()

        name, fields = parse_stat(stat_text)
        utime = parse_int(field_at(fields, 11))
        stime = parse_int(field_at(fields, 12))
        status = parse_key_value_kb(status_text)
        # io needs ptrace access for other users' processes; zeros when denied
        io = parse_io(read_optional(self.proc_dir / "io") or "")

        cpu_ticks = utime + stime
        read_bytes = io.get("read_bytes", 0)
        write_bytes = io.get("write_bytes", 0)
        rchar = io.get("rchar", 0)
        wchar = io.get("wchar", 0)

        cpu_percent = 0.0
        io_rates = (0.0, 0.0, 0.0, 0.0)
        prev = self._prev
        if prev is not None:
            elapsed = now - prev.timestamp
            if elapsed > 0:
                cpu_seconds = saturating_sub(cpu_ticks, prev.cpu_ticks) / CLOCK_TICKS
                cpu_percent = cpu_seconds / elapsed * 100.0
                io_rates = (
                    rate(read_bytes, prev.read_bytes, elapsed),
                    rate(write_bytes, prev.write_bytes, elapsed),
                    rate(rchar, prev.rchar, elapsed),
                    rate(wchar, prev.wchar, elapsed),
                )

        self._prev = _PrevSample(
            cpu_ticks=cpu_ticks,
            read_bytes=read_bytes,
            write_bytes=write_bytes,
            rchar=rchar,
            wchar=wchar,
            timestamp=now,
        )

        return ProcessMetrics(
            pid=self.pid,
            name=name,
            state=ProcessState.from_code(field_at(fields, 0) or ""),
            cpu_percent=cpu_percent,
            utime=utime,
            stime=stime,
            num_threads=parse_int(field_at(fields, 17)),
            vsize_bytes=parse_int(field_at(fields, 20)),
            rss_bytes=parse_int(field_at(fields, 21)) * PAGE_SIZE,
            vm_peak_bytes=status.get("VmPeak", 0),
            rss_anon_bytes=status.get("RssAnon", 0),
            rss_file_bytes=status.get("RssFile", 0),
            rss_shmem_bytes=status.get("RssShmem", 0),
            swap_bytes=status.get("VmSwap", 0),
            io_read_bytes_per_sec=io_rates[0],
            io_write_bytes_per_sec=io_rates[1],
            io_rchar_per_sec=io_rates[2],
            io_wchar_per_sec=io_rates[3],
            io_read_bytes=read_bytes,
            io_write_bytes=write_bytes,
            cancelled_write_bytes=io.get("cancelled_write_bytes", 0),
            num_fds=self._count_fds(),
            cmdline=self._read_cmdline(),
        )

    def _count_fds(self) -> int:
        try:
            return len(os.listdir(self.proc_dir / "fd"))
        except OSError:
            return 0

    def _read_cmdline(self) -> str:
        raw = read_optional(self.proc_dir / "cmdline") or ""
        return raw.replace("\0", " ").strip()
