"""Threshold alerting with per-key cooldown."""

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from perf_monitor.config import AlertThresholds
from perf_monitor.formatting import format_bytes
from perf_monitor.sample import MetricSample


class Severity(Enum):
    WARNING = "Warning"
    CRITICAL = "Critical"


@dataclass(frozen=True)
class Alert:
    """A threshold breach. Produced once per firing, never mutated."""

    timestamp: datetime
    severity: Severity
    category: str
    message: str
    key: str


# (key, severity, category, message)
_Candidate = tuple[str, Severity, str, str]


class AlertChecker:
    """Evaluates samples against thresholds.

    Each condition has a stable key ("cpu_crit", "disk_sda_queue_warn", ...).
    A key that fired less than ``cooldown_seconds`` ago is suppressed, so a
    sustained breach re-fires once per cooldown window. Warning and critical
    keys are independent: escalating from warning to critical fires
    immediately, and neither resets the other's cooldown.
    """

    def __init__(self, thresholds: AlertThresholds | None = None):
        self.thresholds = thresholds or AlertThresholds()
        self._last_fired: dict[str, float] = {}  # key -> wall-clock seconds

    def set_thresholds(self, thresholds: AlertThresholds) -> None:
        """Replace thresholds; cooldown state is kept."""
        self.thresholds = thresholds

    def check(self, sample: MetricSample, now: float | None = None) -> list[Alert]:
        """Return alerts newly fired by ``sample``.

        Args:
            sample: Fully assembled sample for this tick
            now: Wall-clock seconds for cooldown bookkeeping (defaults to time.time())
        """
        if now is None:
            now = time.time()
        t = self.thresholds
        candidates: list[_Candidate] = []

        cpu = sample.cpu
        candidates += _tiered(
            "cpu", "CPU", cpu.utilization, t.cpu_warn, t.cpu_crit, "CPU {level}: {value:.1f}%"
        )
        candidates += _tiered(
            "iowait",
            "CPU",
            cpu.iowait_percent,
            t.iowait_warn,
            t.iowait_crit,
            "IOWait {level}: {value:.1f}%",
        )

        mem = sample.memory
        candidates += _tiered(
            "memory",
            "Memory",
            mem.used_percent,
            t.memory_warn,
            t.memory_crit,
            "Memory {level}: {value:.1f}%",
        )
        cgroup_pct = mem.cgroup_percent
        if cgroup_pct is not None:
            candidates += _tiered(
                "cgroup",
                "Memory",
                cgroup_pct,
                t.cgroup_warn,
                t.cgroup_crit,
                "Cgroup memory {level}: {value:.1f}%",
            )
        if mem.swap_used > 0:
            message = f"Swap in use: {mem.swap_percent:.1f}% ({format_bytes(mem.swap_used)})"
            candidates.append(("swap", Severity.WARNING, "Memory", message))

        for disk in sample.disk.disks:
            dev = disk.device
            candidates += _tiered(
                f"disk_{dev}",
                "Disk",
                disk.utilization,
                t.disk_util_warn,
                t.disk_util_crit,
                f"Disk {dev} {{level}}: {{value:.1f}}%",
            )
            candidates += _tiered(
                f"disk_{dev}_queue",
                "Disk",
                disk.queue_depth,
                t.disk_queue_warn,
                t.disk_queue_crit,
                f"Disk {dev} queue {{level}}: {{value:.1f}}",
            )

        proc = sample.process
        if proc is not None:
            candidates += _rss_tiered(
                proc.name, proc.rss_bytes, t.process_rss_warn, t.process_rss_crit
            )

        alerts = []
        for key, severity, category, message in candidates:
            last = self._last_fired.get(key)
            if last is not None and now - last < t.cooldown_seconds:
                continue
            self._last_fired[key] = now
            alerts.append(Alert(sample.timestamp, severity, category, message, key))
        return alerts


def _tiered(
    key: str,
    category: str,
    value: float,
    warn: float,
    crit: float,
    template: str,
) -> list[_Candidate]:
    """Critical if value >= crit, else warning if value >= warn."""
    if value >= crit:
        message = template.format(level="critical", value=value)
        return [(f"{key}_crit", Severity.CRITICAL, category, message)]
    if value >= warn:
        message = template.format(level="warning", value=value)
        return [(f"{key}_warn", Severity.WARNING, category, message)]
    return []


def _rss_tiered(name: str, rss: int, warn: int | None, crit: int | None) -> list[_Candidate]:
    # either cutoff may be unset; warning only below a configured critical
    if crit is not None and rss >= crit:
        message = f"Process {name} RSS critical: {format_bytes(rss)}"
        return [("process_rss_crit", Severity.CRITICAL, "Process", message)]
    if warn is not None and rss >= warn:
        message = f"Process {name} RSS warning: {format_bytes(rss)}"
        return [("process_rss_warn", Severity.WARNING, "Process", message)]
    return []
