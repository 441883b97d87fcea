"""The per-tick snapshot handed to alerting, logging and display."""

from dataclasses import dataclass
from datetime import datetime

from perf_monitor.collectors.cpu import CpuMetrics
from perf_monitor.collectors.disk import DiskMetrics
from perf_monitor.collectors.memory import MemoryMetrics
from perf_monitor.collectors.network import NetworkMetrics
from perf_monitor.collectors.process import ProcessMetrics
from perf_monitor.collectors.psi import PsiMetrics


@dataclass(frozen=True)
class MetricSample:
    """Everything collected in one tick, stamped with a single timestamp (UTC)."""

    timestamp: datetime
    cpu: CpuMetrics
    memory: MemoryMetrics
    disk: DiskMetrics
    network: NetworkMetrics
    psi: PsiMetrics | None = None
    process: ProcessMetrics | None = None

    @property
    def is_populated(self) -> bool:
        """True once rate data exists (every tick after the first).

        Device or interface entries only appear after collectors have a
        prior reading; the context-switch delta covers hosts with neither.
        """
        return bool(
            self.disk.disks
            or self.network.interfaces
            or self.cpu.context_switches_delta is not None
        )
