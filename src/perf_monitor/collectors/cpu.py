"""CPU utilization from /proc/stat and /proc/loadavg."""

from dataclasses import dataclass, field
from pathlib import Path

from perf_monitor.procfs import (
    DEFAULT_PROC_ROOT,
    field_at,
    parse_float,
    parse_int,
    read_required,
    saturating_sub,
)


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative jiffy counters from one cpu line of /proc/stat."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    guest_nice: int = 0

    @property
    def total(self) -> int:
        # guest time is already accounted in user/nice
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )

    @property
    def idle_all(self) -> int:
        return self.idle + self.iowait


@dataclass(frozen=True)
class CoreMetrics:
    core_id: int
    utilization: float
    user_percent: float
    system_percent: float
    iowait_percent: float


@dataclass(frozen=True)
class CpuMetrics:
    """Aggregate and per-core CPU utilization over the last interval."""

    utilization: float = 0.0
    user_percent: float = 0.0
    system_percent: float = 0.0
    iowait_percent: float = 0.0
    per_core: list[CoreMetrics] = field(default_factory=list)
    load_avg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    context_switches: int = 0
    context_switches_delta: int | None = None
    interrupts: int = 0
    interrupts_delta: int | None = None

    @property
    def core_count(self) -> int:
        return len(self.per_core)


def parse_cpu_line(line: str) -> CpuTimes:
    """Parse a "cpu" or "cpuN" line; missing trailing fields count as zero."""
    values = [parse_int(token) for token in line.split()[1:11]]
    values += [0] * (10 - len(values))
    return CpuTimes(*values)


def utilization(prev: CpuTimes, curr: CpuTimes) -> tuple[float, float, float, float]:
    """Return (total, user, system, iowait) percentages between two readings."""
    total_delta = saturating_sub(curr.total, prev.total)
    if total_delta == 0:
        return 0.0, 0.0, 0.0, 0.0

    idle_delta = saturating_sub(curr.idle_all, prev.idle_all)
    user_delta = saturating_sub(curr.user, prev.user)
    system_delta = saturating_sub(curr.system, prev.system)
    iowait_delta = saturating_sub(curr.iowait, prev.iowait)

    total = 100.0 * (1.0 - idle_delta / total_delta)
    return (
        min(max(total, 0.0), 100.0),
        100.0 * user_delta / total_delta,
        100.0 * system_delta / total_delta,
        100.0 * iowait_delta / total_delta,
    )


class CpuCollector:
    """Computes CPU utilization from deltas of /proc/stat tick counters.

    The first call has nothing to diff against, so it reports zero
    utilization for the aggregate and for every core it discovers.
    """

    def __init__(self, proc_root: Path = DEFAULT_PROC_ROOT):
        self.proc_root = Path(proc_root)
        self._prev_total: CpuTimes | None = None
        self._prev_cores: dict[int, CpuTimes] = {}
        self._prev_context_switches: int | None = None
        self._prev_interrupts: int | None = None

    def collect(self) -> CpuMetrics:
        """Read /proc/stat and /proc/loadavg.

        Raises:
            CollectError: If either file is unreadable.
        """
        stat_text = read_required(self.proc_root / "stat")

        total_times = CpuTimes()
        core_times: dict[int, CpuTimes] = {}
        context_switches = 0
        interrupts = 0

        for line in stat_text.splitlines():
            if line.startswith("cpu "):
                total_times = parse_cpu_line(line)
            elif line.startswith("cpu"):
                label = line.split(maxsplit=1)[0]
                core_times[parse_int(label[3:])] = parse_cpu_line(line)
            elif line.startswith("ctxt "):
                context_switches = parse_int(field_at(line.split(), 1))
            elif line.startswith("intr "):
                interrupts = parse_int(field_at(line.split(), 1))

        if self._prev_total is not None:
            total_pct, user_pct, sys_pct, iowait_pct = utilization(self._prev_total, total_times)
        else:
            total_pct = user_pct = sys_pct = iowait_pct = 0.0

        per_core = []
        for core_id in sorted(core_times):
            prev = self._prev_cores.get(core_id)
            if prev is not None:
                util, user, system, iowait = utilization(prev, core_times[core_id])
            else:
                util = user = system = iowait = 0.0
            per_core.append(CoreMetrics(core_id, util, user, system, iowait))

        ctx_delta = (
            saturating_sub(context_switches, self._prev_context_switches)
            if self._prev_context_switches is not None
            else None
        )
        intr_delta = (
            saturating_sub(interrupts, self._prev_interrupts)
            if self._prev_interrupts is not None
            else None
        )

        load_avg = self._read_load_average()

        self._prev_total = total_times
        self._prev_cores = core_times
        self._prev_context_switches = context_switches
        self._prev_interrupts = interrupts

        return CpuMetrics(
            utilization=total_pct,
            user_percent=user_pct,
            system_percent=sys_pct,
            iowait_percent=iowait_pct,
            per_core=per_core,
            load_avg=load_avg,
            context_switches=context_switches,
            context_switches_delta=ctx_delta,
            interrupts=interrupts,
            interrupts_delta=intr_delta,
        )

    def _read_load_average(self) -> tuple[float, float, float]:
        parts = read_required(self.proc_root / "loadavg").split()
        return (
            parse_float(field_at(parts, 0)),
            parse_float(field_at(parts, 1)),
            parse_float(field_at(parts, 2)),
        )
