"""Plain-text report blocks for headless runs: per-tick digest and session summary."""

from perf_monitor.alert import Alert, Severity
from perf_monitor.formatting import format_bytes, format_throughput
from perf_monitor.sample import MetricSample
from perf_monitor.summary import SessionSummary

RULE = "=" * 60


def format_sample(sample: MetricSample, tick: int) -> list[str]:
    cpu = sample.cpu
    mem = sample.memory
    lines = [
        f"--- Sample {tick} ---",
        f"CPU: {cpu.utilization:.1f}% (user:{cpu.user_percent:.1f}% "
        f"sys:{cpu.system_percent:.1f}% iowait:{cpu.iowait_percent:.1f}%) "
        f"Load: {cpu.load_avg[0]:.2f} {cpu.load_avg[1]:.2f} {cpu.load_avg[2]:.2f}",
        f"Memory: {format_bytes(mem.used)} / {format_bytes(mem.total)} "
        f"({mem.used_percent:.1f}%) "
        f"Swap: {format_bytes(mem.swap_used)} / {format_bytes(mem.swap_total)}",
    ]
    if mem.cgroup_percent is not None:
        lines.append(
            f"Cgroup: {format_bytes(mem.cgroup_current or 0)} / "
            f"{format_bytes(mem.cgroup_limit or 0)} ({mem.cgroup_percent:.1f}%)"
        )
    lines.append(
        f"Disk: R {format_throughput(sample.disk.total_read_bytes_per_sec)} "
        f"W {format_throughput(sample.disk.total_write_bytes_per_sec)}"
    )
    lines.append(
        f"Network: RX {format_throughput(sample.network.total_rx_bytes_per_sec)} "
        f"TX {format_throughput(sample.network.total_tx_bytes_per_sec)}"
    )
    proc = sample.process
    if proc is not None:
        lines.append(
            f"Process [{proc.name}]: CPU:{proc.cpu_percent:.1f}% "
            f"RSS:{format_bytes(proc.rss_bytes)} Threads:{proc.num_threads} FDs:{proc.num_fds}"
        )
    return lines


def format_alert(alert: Alert) -> str:
    prefix = "CRITICAL" if alert.severity is Severity.CRITICAL else "WARNING"
    return f"{prefix}: {alert.message}"


def format_summary(summary: SessionSummary) -> list[str]:
    """Multi-line session summary, framed by rules."""
    s = summary
    lines = [
        RULE,
        "PERFORMANCE SUMMARY".center(60).rstrip(),
        RULE,
        f"Duration: {s.duration_secs:.1f}s  Samples: {s.samples_count}",
        "",
        "CPU:",
        f"  Utilization: avg {s.cpu_avg_utilization:.1f}%, max {s.cpu_max_utilization:.1f}%",
        f"  IOWait: avg {s.cpu_avg_iowait:.1f}%, max {s.cpu_max_iowait:.1f}%",
        "",
        "Memory:",
        f"  Usage: avg {s.memory_avg_used_percent:.1f}%, max {s.memory_max_used_percent:.1f}% "
        f"({format_bytes(s.memory_max_used_bytes)})",
    ]
    if s.cgroup_max_usage_percent is not None:
        lines.append(f"  Cgroup max: {s.cgroup_max_usage_percent:.1f}%")
    if s.swap_max_used > 0:
        lines.append(f"  Swap max: {format_bytes(s.swap_max_used)}")
    lines += [
        "",
        "Disk I/O:",
        f"  Max read throughput: {format_throughput(s.disk_max_read_throughput)}",
        f"  Max write throughput: {format_throughput(s.disk_max_write_throughput)}",
        f"  Max utilization: {s.disk_max_utilization:.1f}%",
        "",
        "Network:",
        f"  Total RX: {format_bytes(s.network_total_rx_bytes)}",
        f"  Total TX: {format_bytes(s.network_total_tx_bytes)}",
        f"  Max RX throughput: {format_throughput(s.network_max_rx_throughput)}",
        f"  Max TX throughput: {format_throughput(s.network_max_tx_throughput)}",
    ]
    if s.process_max_cpu is not None:
        lines += ["", "Process:", f"  Max CPU: {s.process_max_cpu:.1f}%"]
        if s.process_max_rss is not None:
            lines.append(f"  Max RSS: {format_bytes(s.process_max_rss)}")
        if s.process_max_fds is not None:
            lines.append(f"  Max FDs: {s.process_max_fds}")
    if s.bottleneck_indicators:
        lines += ["", "Bottleneck Analysis:"]
        lines += [f"  - {indicator}" for indicator in s.bottleneck_indicators]
    lines.append(RULE)
    return lines
