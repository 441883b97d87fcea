"""Durable sample logs split into numbered segments.

Two optional sinks share one segment counter:

- CsvSink: every metric, one row per sample, buffered and flushed every
  ``flush_every`` rows. Its columns are fixed by the first sample that has
  rate data; later samples are written positionally against that header.
- TextSink: a fixed-width digest for ``tail -f``, flushed on every line.

Segment 0 writes to the configured path; segment N writes to
``<stem>_N<suffix>`` next to it.
"""

import csv
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import IO

import structlog

from perf_monitor import logging as console
from perf_monitor.formatting import format_bytes_short, format_throughput
from perf_monitor.sample import MetricSample
from perf_monitor.summary import SummaryAccumulator

log = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

Column = tuple[str, Callable[[MetricSample], str]]


def segment_path(base: Path, segment: int) -> Path:
    """Path for ``segment`` of a log whose segment 0 lives at ``base``."""
    if segment == 0:
        return base
    return base.with_name(f"{base.stem}_{segment}{base.suffix}")


def format_timestamp(ts: datetime) -> str:
    """Millisecond UTC timestamp, e.g. "2024-05-01 12:00:00.250"."""
    return ts.strftime(TIMESTAMP_FORMAT)[:-3]


# ─────────────────────────────────────────────────────────────────────────────
# CSV columns
# ─────────────────────────────────────────────────────────────────────────────


def _fixed(value: float | None, decimals: int = 2) -> str:
    return "" if value is None else f"{value:.{decimals}f}"


def _whole(value: int | None) -> str:
    return "" if value is None else str(value)


def _cpu_columns(sample: MetricSample) -> list[Column]:
    columns: list[Column] = [
        ("cpu_total_pct", lambda s: _fixed(s.cpu.utilization)),
        ("cpu_user_pct", lambda s: _fixed(s.cpu.user_percent)),
        ("cpu_system_pct", lambda s: _fixed(s.cpu.system_percent)),
        ("cpu_iowait_pct", lambda s: _fixed(s.cpu.iowait_percent)),
        ("cpu_load_1m", lambda s: _fixed(s.cpu.load_avg[0])),
        ("cpu_load_5m", lambda s: _fixed(s.cpu.load_avg[1])),
        ("cpu_load_15m", lambda s: _fixed(s.cpu.load_avg[2])),
        ("cpu_ctx_switches_delta", lambda s: _whole(s.cpu.context_switches_delta)),
        ("cpu_interrupts_delta", lambda s: _whole(s.cpu.interrupts_delta)),
    ]
    for core in sample.cpu.per_core:

        def core_pct(s: MetricSample, core_id: int = core.core_id) -> str:
            for c in s.cpu.per_core:
                if c.core_id == core_id:
                    return _fixed(c.utilization)
            return ""

        columns.append((f"cpu_core{core.core_id}_pct", core_pct))
    return columns


def _memory_columns() -> list[Column]:
    return [
        ("mem_total_bytes", lambda s: _whole(s.memory.total)),
        ("mem_used_bytes", lambda s: _whole(s.memory.used)),
        ("mem_available_bytes", lambda s: _whole(s.memory.available)),
        ("mem_used_pct", lambda s: _fixed(s.memory.used_percent)),
        ("mem_buffers_bytes", lambda s: _whole(s.memory.buffers)),
        ("mem_cached_bytes", lambda s: _whole(s.memory.cached)),
        ("mem_dirty_bytes", lambda s: _whole(s.memory.dirty)),
        ("mem_writeback_bytes", lambda s: _whole(s.memory.writeback)),
        ("mem_active_file_bytes", lambda s: _whole(s.memory.active_file)),
        ("mem_inactive_file_bytes", lambda s: _whole(s.memory.inactive_file)),
        ("mem_swap_total_bytes", lambda s: _whole(s.memory.swap_total)),
        ("mem_swap_used_bytes", lambda s: _whole(s.memory.swap_used)),
        ("mem_swap_pct", lambda s: _fixed(s.memory.swap_percent)),
        ("cgroup_limit_bytes", lambda s: _whole(s.memory.cgroup_limit)),
        ("cgroup_current_bytes", lambda s: _whole(s.memory.cgroup_current)),
        ("cgroup_usage_pct", lambda s: _fixed(s.memory.cgroup_percent)),
        ("mem_major_faults_delta", lambda s: _whole(s.memory.major_faults_delta)),
        ("mem_minor_faults_delta", lambda s: _whole(s.memory.minor_faults_delta)),
    ]


# (column suffix, attribute, decimals or None for integers)
_DISK_FIELDS = (
    ("read_bytes_per_sec", "read_bytes_per_sec", 2),
    ("write_bytes_per_sec", "write_bytes_per_sec", 2),
    ("read_iops", "read_iops", 2),
    ("write_iops", "write_iops", 2),
    ("read_latency_ms", "read_latency_ms", 3),
    ("write_latency_ms", "write_latency_ms", 3),
    ("util_pct", "utilization", 2),
    ("queue_depth", "queue_depth", 2),
    ("in_flight", "in_flight", None),
)

_INTERFACE_FIELDS = (
    ("rx_bytes_per_sec", "rx_bytes_per_sec", 2),
    ("tx_bytes_per_sec", "tx_bytes_per_sec", 2),
    ("rx_packets_per_sec", "rx_packets_per_sec", 2),
    ("tx_packets_per_sec", "tx_packets_per_sec", 2),
    ("rx_errors", "rx_errors", None),
    ("tx_errors", "tx_errors", None),
    ("rx_drops", "rx_drops", None),
    ("tx_drops", "tx_drops", None),
)


def _entity_column(
    lookup: Callable[[MetricSample], object | None], attr: str, decimals: int | None
) -> Callable[[MetricSample], str]:
    def extract(s: MetricSample) -> str:
        entity = lookup(s)
        if entity is None:
            return ""
        value = getattr(entity, attr)
        return _whole(value) if decimals is None else _fixed(value, decimals)

    return extract


def _disk_columns(sample: MetricSample) -> list[Column]:
    columns: list[Column] = [
        ("disk_total_read_bytes_per_sec", lambda s: _fixed(s.disk.total_read_bytes_per_sec)),
        ("disk_total_write_bytes_per_sec", lambda s: _fixed(s.disk.total_write_bytes_per_sec)),
        ("disk_total_in_flight", lambda s: _whole(s.disk.total_in_flight)),
    ]
    for disk in sample.disk.disks:
        dev = disk.device

        def lookup(s: MetricSample, dev: str = dev) -> object | None:
            return s.disk.get(dev)

        for suffix, attr, decimals in _DISK_FIELDS:
            columns.append((f"disk_{dev}_{suffix}", _entity_column(lookup, attr, decimals)))

    def spill(s: MetricSample) -> object | None:
        return s.disk.spill_dir

    columns += [
        ("spill_total_bytes", _entity_column(spill, "total_bytes", None)),
        ("spill_used_bytes", _entity_column(spill, "used_bytes", None)),
        ("spill_available_bytes", _entity_column(spill, "available_bytes", None)),
        ("spill_used_pct", _entity_column(spill, "used_percent", 2)),
    ]
    return columns


def _network_columns(sample: MetricSample) -> list[Column]:
    columns: list[Column] = [
        ("net_total_rx_bytes_per_sec", lambda s: _fixed(s.network.total_rx_bytes_per_sec)),
        ("net_total_tx_bytes_per_sec", lambda s: _fixed(s.network.total_tx_bytes_per_sec)),
        ("net_tcp_established", lambda s: _whole(s.network.tcp.established)),
        ("net_tcp_https", lambda s: _whole(s.network.tcp.https_connections)),
        ("net_tcp_retrans_delta", lambda s: _whole(s.network.tcp.retransmits_delta)),
    ]
    for iface in sample.network.interfaces:
        name = iface.interface

        def lookup(s: MetricSample, name: str = name) -> object | None:
            return s.network.get(name)

        for suffix, attr, decimals in _INTERFACE_FIELDS:
            columns.append((f"net_{name}_{suffix}", _entity_column(lookup, attr, decimals)))
    return columns


def _psi_columns() -> list[Column]:
    columns: list[Column] = []
    for label, resource, kinds in (
        ("cpu", "cpu", ("some",)),
        ("mem", "memory", ("some", "full")),
        ("io", "io", ("some", "full")),
    ):
        for kind in kinds:

            def lookup(s: MetricSample, resource: str = resource, kind: str = kind) -> object:
                if s.psi is None:
                    return None
                return getattr(getattr(s.psi, resource), kind)

            for stat in ("avg10", "avg60", "avg300"):
                columns.append((f"psi_{label}_{kind}_{stat}", _entity_column(lookup, stat, 2)))
            columns.append((f"psi_{label}_{kind}_total", _entity_column(lookup, "total", None)))
    return columns


_PROCESS_FIELDS = (
    ("proc_pid", "pid", None),
    ("proc_cpu_pct", "cpu_percent", 2),
    ("proc_threads", "num_threads", None),
    ("proc_rss_bytes", "rss_bytes", None),
    ("proc_vsize_bytes", "vsize_bytes", None),
    ("proc_vm_peak_bytes", "vm_peak_bytes", None),
    ("proc_rss_anon_bytes", "rss_anon_bytes", None),
    ("proc_rss_file_bytes", "rss_file_bytes", None),
    ("proc_rss_shmem_bytes", "rss_shmem_bytes", None),
    ("proc_swap_bytes", "swap_bytes", None),
    ("proc_fds", "num_fds", None),
    ("proc_io_read_bytes_per_sec", "io_read_bytes_per_sec", 2),
    ("proc_io_write_bytes_per_sec", "io_write_bytes_per_sec", 2),
    ("proc_io_rchar_per_sec", "io_rchar_per_sec", 2),
    ("proc_io_wchar_per_sec", "io_wchar_per_sec", 2),
    ("proc_cancelled_write_bytes", "cancelled_write_bytes", None),
)


def _process_columns() -> list[Column]:
    def lookup(s: MetricSample) -> object | None:
        return s.process

    columns: list[Column] = [
        ("proc_name", lambda s: s.process.name if s.process else ""),
        ("proc_state", lambda s: s.process.state.value if s.process else ""),
    ]
    for name, attr, decimals in _PROCESS_FIELDS:
        columns.append((name, _entity_column(lookup, attr, decimals)))
    return columns


def build_columns(sample: MetricSample) -> list[Column]:
    """Column layout for a CSV segment, derived from the devices in ``sample``."""
    return [
        ("timestamp", lambda s: format_timestamp(s.timestamp)),
        *_cpu_columns(sample),
        *_memory_columns(),
        *_disk_columns(sample),
        *_network_columns(sample),
        *_psi_columns(),
        *_process_columns(),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Sinks
# ─────────────────────────────────────────────────────────────────────────────


class CsvSink:
    """Detailed machine-readable log for one segment."""

    def __init__(self, path: Path, flush_every: int = 10):
        self.path = path
        self.flush_every = flush_every
        self.rows_written = 0
        self._columns: list[Column] | None = None
        self._unflushed = 0
        self._file: IO[str] = open(path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file)

    @property
    def header(self) -> list[str] | None:
        if self._columns is None:
            return None
        return [name for name, _ in self._columns]

    def append(self, sample: MetricSample) -> bool:
        """Write one row; returns False while waiting for the first populated sample."""
        if self._columns is None:
            if not sample.is_populated:
                return False
            self._columns = build_columns(sample)
            self._writer.writerow(self.header)
        self._writer.writerow([extract(sample) for _, extract in self._columns])
        self.rows_written += 1
        self._unflushed += 1
        if self._unflushed >= self.flush_every:
            self.flush()
        return True

    def flush(self) -> None:
        self._file.flush()
        self._unflushed = 0

    def close(self) -> None:
        if not self._file.closed:
            self._file.flush()
            self._file.close()


TEXT_HEADER = """\
# Performance Monitor Log
# Started: {started}
#
# Column Definitions:
#
# CPU Section:
#   Time     - Sample timestamp (HH:MM:SS, UTC)
#   CPU%     - Total CPU utilization
#   IOW%     - CPU time waiting for I/O
#
# Memory Section:
#   Mem%     - System memory used
#   CG%      - Cgroup memory used (container limit)
#   Cache    - File-backed page cache
#   Dirty    - Pages modified but not yet written to disk
#
# Process Section (when a target process is monitored):
#   RssAnon  - Anonymous memory (heap, stack, allocations)
#   RssFile  - File-backed memory (mapped files in process space)
#   ProcRd   - Bytes per second read from storage by the process
#   ProcWr   - Bytes per second written to storage by the process
#
# Disk Section:
#   InFlt    - I/O requests currently in flight
#
# PSI (Pressure Stall Information):
#   MemPS    - % time tasks stalled on memory (some avg10)
#   IoPSI    - % time tasks stalled on I/O (some avg10)
#
"""

_TEXT_COLUMNS = (
    "Time", "CPU%", "IOW%", "Mem%", "CG%", "Cache", "Dirty", "RssAnon", "RssFile",
    "ProcRd", "ProcWr", "InFlt", "MemPS", "IoPSI",
)  # fmt: skip
_TEXT_ROW = "{:<8} {:>5} {:>5} {:>5} {:>5} {:>7} {:>7} {:>8} {:>8} {:>10} {:>10} {:>5} {:>5} {:>5}"
TEXT_RULE_WIDTH = 115


class TextSink:
    """Fixed-width digest log for live tailing; flushed after every line."""

    def __init__(self, path: Path):
        self.path = path
        self.rows_written = 0
        self._file: IO[str] = open(path, "w", encoding="utf-8")
        started = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        self._file.write(TEXT_HEADER.format(started=started))
        self._file.write(_TEXT_ROW.format(*_TEXT_COLUMNS) + "\n")
        self._file.write("-" * TEXT_RULE_WIDTH + "\n")
        self._file.flush()

    def append(self, sample: MetricSample) -> bool:
        self._file.write(format_text_row(sample) + "\n")
        self._file.flush()
        self.rows_written += 1
        return True

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


def format_text_row(sample: MetricSample) -> str:
    mem = sample.memory
    cgroup = mem.cgroup_percent
    proc = sample.process
    if proc is not None:
        proc_cols = (
            format_bytes_short(proc.rss_anon_bytes),
            format_bytes_short(proc.rss_file_bytes),
            format_throughput(proc.io_read_bytes_per_sec),
            format_throughput(proc.io_write_bytes_per_sec),
        )
    else:
        proc_cols = ("N/A", "N/A", "N/A", "N/A")
    psi = sample.psi
    mem_psi = psi.memory.some.avg10 if psi else 0.0
    io_psi = psi.io.some.avg10 if psi else 0.0
    return _TEXT_ROW.format(
        sample.timestamp.strftime("%H:%M:%S"),
        f"{sample.cpu.utilization:.1f}",
        f"{sample.cpu.iowait_percent:.1f}",
        f"{mem.used_percent:.1f}",
        f"{cgroup:.1f}" if cgroup is not None else "N/A",
        format_bytes_short(mem.cached),
        format_bytes_short(mem.dirty),
        *proc_cols,
        sample.disk.total_in_flight,
        f"{mem_psi:.1f}",
        f"{io_psi:.1f}",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Segmentation
# ─────────────────────────────────────────────────────────────────────────────


class LogSegments:
    """Owns the sink writers and the segment lifecycle.

    A sink whose write or open fails is dropped for the rest of the segment
    and reopened by the next rotation. Rotation also resets the per-segment
    summary statistics.
    """

    def __init__(
        self,
        csv_path: Path | None = None,
        text_path: Path | None = None,
        csv_flush_rows: int = 10,
    ):
        self.csv_base = Path(csv_path) if csv_path else None
        self.text_base = Path(text_path) if text_path else None
        self.csv_flush_rows = csv_flush_rows
        self.segment = 0
        self.summary = SummaryAccumulator()
        self.csv: CsvSink | None = None
        self.text: TextSink | None = None
        self._renamed: set[Path] = set()

    @property
    def configured(self) -> bool:
        return self.csv_base is not None or self.text_base is not None

    def current_paths(self) -> list[Path]:
        return [segment_path(base, self.segment) for base in self._bases()]

    def open(self) -> None:
        """Open writers for the current segment."""
        if self.csv_base is not None:
            path = segment_path(self.csv_base, self.segment)
            try:
                self.csv = CsvSink(path, flush_every=self.csv_flush_rows)
            except OSError as e:
                self._sink_failed("csv", path, e)
        if self.text_base is not None:
            path = segment_path(self.text_base, self.segment)
            try:
                self.text = TextSink(path)
            except OSError as e:
                self._sink_failed("text", path, e)

    def append(self, sample: MetricSample) -> None:
        self.summary.add(sample)
        if self.csv is not None:
            try:
                self.csv.append(sample)
            except OSError as e:
                self._sink_failed("csv", self.csv.path, e)
        if self.text is not None:
            try:
                self.text.append(sample)
            except OSError as e:
                self._sink_failed("text", self.text.path, e)

    def rotate(self) -> int:
        """Close the current segment and start the next one.

        Returns:
            The new segment number
        """
        self._close_sinks()
        self.segment += 1
        while any(path in self._renamed for path in self.current_paths()):
            self.segment += 1
        self.summary.clear()
        self.open()
        paths = [str(p) for p in self.current_paths()]
        log.info("segment_rotated", segment=self.segment, paths=paths)
        return self.segment

    def rename_and_rotate(self, name: str) -> list[Path]:
        """Rename the current segment's files to ``name`` and rotate.

        The new file keeps its directory and takes the sink kind's extension:
        with a CSV base of ``/data/run.log`` and name ``baseline`` the segment
        becomes ``/data/baseline.csv`` and the text segment ``baseline.txt``.
        Segment numbers whose paths were taken by a rename are skipped by
        later rotations. Rename failures are reported and rotation proceeds
        regardless.

        Returns:
            Paths the segment files were renamed to
        """
        self._close_sinks()
        renamed: list[Path] = []
        stem = Path(name.strip()).name
        for base, ext in ((self.csv_base, ".csv"), (self.text_base, ".txt")):
            if base is None or not stem:
                continue
            src = segment_path(base, self.segment)
            dest_stem = stem[: -len(ext)] if stem.endswith(ext) and stem != ext else stem
            dest = src.with_name(dest_stem + ext)
            try:
                src.rename(dest)
            except OSError as e:
                log.warning("segment_rename_failed", src=str(src), dest=str(dest), error=str(e))
                console.rename_failed(str(src), str(dest), e.strerror or str(e))
                continue
            log.info("segment_renamed", src=str(src), dest=str(dest))
            console.segment_renamed(str(src), str(dest))
            renamed.append(dest)
            self._renamed.add(dest)
        self.rotate()
        return renamed

    def flush(self) -> None:
        for sink in (self.csv, self.text):
            if sink is not None:
                sink.flush()

    def close(self) -> None:
        self._close_sinks()

    def _bases(self) -> list[Path]:
        return [base for base in (self.csv_base, self.text_base) if base is not None]

    def _close_sinks(self) -> None:
        for kind in ("csv", "text"):
            sink = getattr(self, kind)
            if sink is None:
                continue
            try:
                sink.close()
            except OSError as e:
                log.warning("sink_close_failed", sink=kind, path=str(sink.path), error=str(e))
            setattr(self, kind, None)

    def _sink_failed(self, kind: str, path: Path, error: OSError) -> None:
        log.error("sink_failed", sink=kind, path=str(path), error=str(error))
        console.sink_failed(kind, str(path), error.strerror or str(error))
        sink = getattr(self, kind)
        if sink is not None:
            try:
                sink.close()
            except OSError:
                log.debug("sink_close_after_failure_failed", sink=kind)
        setattr(self, kind, None)
