"""Pressure stall information from /proc/pressure."""

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from perf_monitor.procfs import DEFAULT_PROC_ROOT, parse_float, parse_int, read_optional

log = structlog.get_logger()


@dataclass(frozen=True)
class PsiStats:
    """One "some" or "full" line: rolling averages (%) and total stall time (us)."""

    avg10: float = 0.0
    avg60: float = 0.0
    avg300: float = 0.0
    total: int = 0


@dataclass(frozen=True)
class PsiResource:
    some: PsiStats = field(default_factory=PsiStats)
    full: PsiStats | None = None


@dataclass(frozen=True)
class PsiMetrics:
    cpu: PsiResource = field(default_factory=PsiResource)
    memory: PsiResource = field(default_factory=lambda: PsiResource(full=PsiStats()))
    io: PsiResource = field(default_factory=lambda: PsiResource(full=PsiStats()))


def parse_psi_line(line: str) -> PsiStats:
    """Parse "some avg10=1.00 avg60=0.50 avg300=0.10 total=12345"."""
    values: dict[str, str] = {}
    for token in line.split()[1:]:
        key, _, value = token.partition("=")
        values[key] = value
    return PsiStats(
        avg10=parse_float(values.get("avg10")),
        avg60=parse_float(values.get("avg60")),
        avg300=parse_float(values.get("avg300")),
        total=parse_int(values.get("total")),
    )


def parse_psi_file(text: str, has_full: bool) -> PsiResource:
    some = PsiStats()
    full = PsiStats() if has_full else None
    for line in text.splitlines():
        if line.startswith("some "):
            some = parse_psi_line(line)
        elif has_full and line.startswith("full "):
            full = parse_psi_line(line)
    return PsiResource(some=some, full=full)


class PsiCollector:
    """Reads cpu, memory and io pressure files.

    Never raises. A single missing file yields zeros for that resource; a
    kernel without PSI at all (no file readable) yields None. Missing files
    are logged once, not every tick.
    """

    def __init__(self, proc_root: Path = DEFAULT_PROC_ROOT):
        self.pressure_dir = Path(proc_root) / "pressure"
        self._missing: set[str] = set()

    def collect(self) -> PsiMetrics | None:
        metrics = PsiMetrics(
            cpu=self._read("cpu", has_full=False),
            memory=self._read("memory", has_full=True),
            io=self._read("io", has_full=True),
        )
        if len(self._missing) == 3:
            return None
        return metrics

    def _read(self, resource: str, has_full: bool) -> PsiResource:
        text = read_optional(self.pressure_dir / resource)
        if text is None:
            if resource not in self._missing:
                self._missing.add(resource)
                log.info("psi_unavailable", resource=resource)
            text = ""
        else:
            self._missing.discard(resource)
        return parse_psi_file(text, has_full)
