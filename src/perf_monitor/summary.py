"""Running statistics over one log segment and bottleneck hints."""

from dataclasses import dataclass, field
from datetime import datetime

from perf_monitor.sample import MetricSample

# Bottleneck indicator cutoffs
CPU_BOUND_AVG = 90.0
IOWAIT_BOUND_MAX = 50.0
CGROUP_BOUND_MAX = 90.0
DISK_BOUND_MAX = 80.0


@dataclass
class SessionSummary:
    """Aggregates for the samples seen since the last reset."""

    duration_secs: float
    samples_count: int
    cpu_avg_utilization: float
    cpu_max_utilization: float
    cpu_avg_iowait: float
    cpu_max_iowait: float
    memory_avg_used_percent: float
    memory_max_used_percent: float
    memory_max_used_bytes: int
    cgroup_max_usage_percent: float | None
    swap_max_used: int
    disk_max_read_throughput: float
    disk_max_write_throughput: float
    disk_max_utilization: float
    network_total_rx_bytes: int
    network_total_tx_bytes: int
    network_max_rx_throughput: float
    network_max_tx_throughput: float
    process_max_cpu: float | None
    process_max_rss: int | None
    process_max_fds: int | None
    bottleneck_indicators: list[str] = field(default_factory=list)


class SummaryAccumulator:
    """Folds samples into running sums and maxima; memory use is constant."""

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        self._count = 0
        self._first: datetime | None = None
        self._last: datetime | None = None
        self._cpu_sum = 0.0
        self._cpu_max = 0.0
        self._iowait_sum = 0.0
        self._iowait_max = 0.0
        self._mem_pct_sum = 0.0
        self._mem_pct_max = 0.0
        self._mem_used_max = 0
        self._cgroup_max: float | None = None
        self._swap_max = 0
        self._disk_read_max = 0.0
        self._disk_write_max = 0.0
        self._disk_util_max = 0.0
        self._net_rx_total = 0
        self._net_tx_total = 0
        self._net_rx_max = 0.0
        self._net_tx_max = 0.0
        self._proc_cpu_max: float | None = None
        self._proc_rss_max: int | None = None
        self._proc_fds_max: int | None = None

    def __len__(self) -> int:
        return self._count

    def add(self, sample: MetricSample) -> None:
        self._count += 1
        if self._first is None:
            self._first = sample.timestamp
        self._last = sample.timestamp

        cpu = sample.cpu
        self._cpu_sum += cpu.utilization
        self._cpu_max = max(self._cpu_max, cpu.utilization)
        self._iowait_sum += cpu.iowait_percent
        self._iowait_max = max(self._iowait_max, cpu.iowait_percent)

        mem = sample.memory
        self._mem_pct_sum += mem.used_percent
        self._mem_pct_max = max(self._mem_pct_max, mem.used_percent)
        self._mem_used_max = max(self._mem_used_max, mem.used)
        self._swap_max = max(self._swap_max, mem.swap_used)
        cgroup = mem.cgroup_percent
        if cgroup is not None:
            self._cgroup_max = cgroup if self._cgroup_max is None else max(self._cgroup_max, cgroup)

        disk = sample.disk
        self._disk_read_max = max(self._disk_read_max, disk.total_read_bytes_per_sec)
        self._disk_write_max = max(self._disk_write_max, disk.total_write_bytes_per_sec)
        for d in disk.disks:
            self._disk_util_max = max(self._disk_util_max, d.utilization)

        net = sample.network
        self._net_rx_max = max(self._net_rx_max, net.total_rx_bytes_per_sec)
        self._net_tx_max = max(self._net_tx_max, net.total_tx_bytes_per_sec)
        # cumulative interface counters as of the latest sample
        self._net_rx_total = sum(i.rx_bytes for i in net.interfaces)
        self._net_tx_total = sum(i.tx_bytes for i in net.interfaces)

        proc = sample.process
        if proc is not None:
            self._proc_cpu_max = _max_opt(self._proc_cpu_max, proc.cpu_percent)
            self._proc_rss_max = _max_opt(self._proc_rss_max, proc.rss_bytes)
            self._proc_fds_max = _max_opt(self._proc_fds_max, proc.num_fds)

    def summary(self) -> SessionSummary | None:
        """Summary of everything added since the last clear(), or None if empty."""
        if self._count == 0 or self._first is None or self._last is None:
            return None

        n = self._count
        cpu_avg = self._cpu_sum / n
        indicators = []
        if cpu_avg > CPU_BOUND_AVG:
            indicators.append("CPU-bound: High average CPU utilization (>90%)")
        if self._iowait_max > IOWAIT_BOUND_MAX:
            indicators.append("I/O-bound: High CPU iowait observed (>50%)")
        if self._cgroup_max is not None and self._cgroup_max > CGROUP_BOUND_MAX:
            indicators.append("Memory-bound: Cgroup memory near limit (>90%)")
        if self._swap_max > 0:
            indicators.append("Memory pressure: Swap usage detected")
        if self._disk_util_max > DISK_BOUND_MAX:
            indicators.append("Disk I/O-bound: High disk utilization (>80%)")

        return SessionSummary(
            duration_secs=(self._last - self._first).total_seconds(),
            samples_count=n,
            cpu_avg_utilization=cpu_avg,
            cpu_max_utilization=self._cpu_max,
            cpu_avg_iowait=self._iowait_sum / n,
            cpu_max_iowait=self._iowait_max,
            memory_avg_used_percent=self._mem_pct_sum / n,
            memory_max_used_percent=self._mem_pct_max,
            memory_max_used_bytes=self._mem_used_max,
            cgroup_max_usage_percent=self._cgroup_max,
            swap_max_used=self._swap_max,
            disk_max_read_throughput=self._disk_read_max,
            disk_max_write_throughput=self._disk_write_max,
            disk_max_utilization=self._disk_util_max,
            network_total_rx_bytes=self._net_rx_total,
            network_total_tx_bytes=self._net_tx_total,
            network_max_rx_throughput=self._net_rx_max,
            network_max_tx_throughput=self._net_tx_max,
            process_max_cpu=self._proc_cpu_max,
            process_max_rss=self._proc_rss_max,
            process_max_fds=self._proc_fds_max,
            bottleneck_indicators=indicators,
        )


def _max_opt(current, value):
    return value if current is None else max(current, value)
