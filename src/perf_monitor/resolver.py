"""Binding the monitor to a target process by PID or by name pattern."""

import os
import time
from collections.abc import Callable
from pathlib import Path

import psutil
import structlog

from perf_monitor.collectors.process import ProcessCollector, ProcessGone, ProcessMetrics
from perf_monitor.procfs import DEFAULT_PROC_ROOT

log = structlog.get_logger()

SHELLS = ("bash", "zsh", "sh")
SELF_MARKERS = ("perf-monitor", "perf_monitor")
# script suffix -> interpreter name prefixes that run it
SCRIPT_INTERPRETERS = {
    ".py": ("python",),
    ".rb": ("ruby",),
    ".pl": ("perl",),
    ".js": ("node",),
}

SCORE_EXECUTABLE = 100
SCORE_INTERPRETER = 50
SCORE_NOT_WRAPPER = 10


def score_candidate(pattern: str, name: str, cmdline: str) -> int:
    """Rank a process whose command line contains ``pattern`` (all lowercase)."""
    first_arg = cmdline.split(maxsplit=1)[0] if cmdline.strip() else ""
    score = 0
    if pattern in first_arg:
        score += SCORE_EXECUTABLE
    for suffix, interpreters in SCRIPT_INTERPRETERS.items():
        if pattern.endswith(suffix) and name.startswith(interpreters):
            score += SCORE_INTERPRETER
            break
    if "bash" not in first_arg and "/sh" not in first_arg:
        score += SCORE_NOT_WRAPPER
    return score


def find_process_by_name(pattern: str, own_pid: int | None = None) -> int | None:
    """Find the best process matching ``pattern``.

    An exact short-name match wins immediately. Otherwise every process whose
    command line contains the pattern is scored and the highest score wins,
    with the highest PID (most recently started) breaking ties. Our own
    process, other monitor instances and bare shells are never candidates.

    Args:
        pattern: Case-insensitive name or command-line fragment
        own_pid: PID to exclude (defaults to this process)

    Returns:
        Matching PID, or None if nothing matched
    """
    pattern = pattern.lower()
    if own_pid is None:
        own_pid = os.getpid()
    pattern_names_shell = any(shell in pattern for shell in SHELLS)

    best: tuple[int, int] | None = None  # (score, pid)
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        info = proc.info
        pid = info["pid"]
        if pid == own_pid:
            continue

        cmdline = " ".join(info.get("cmdline") or [])
        cmdline_lower = cmdline.lower()
        if any(marker in cmdline_lower for marker in SELF_MARKERS):
            continue

        name = (info.get("name") or "").strip().lower()
        if name in SHELLS and not pattern_names_shell:
            continue
        if name == pattern:
            return pid
        if pattern not in cmdline_lower:
            continue

        candidate = (score_candidate(pattern, name, cmdline_lower), pid)
        if best is None or candidate > best:
            best = candidate

    return best[1] if best else None


class ProcessResolver:
    """Keeps a ProcessCollector bound to the target process.

    With a fixed PID the binding never changes. With a name pattern the
    process table is rescanned every ``rescan_samples`` ticks, and on any
    tick where nothing is bound or the bound process has died. A rescan
    keeps the current binding while that process is still alive.
    """

    def __init__(
        self,
        *,
        pid: int | None = None,
        pattern: str | None = None,
        rescan_samples: int = 10,
        proc_root: Path = DEFAULT_PROC_ROOT,
        clock: Callable[[], float] = time.monotonic,
        finder: Callable[[str], int | None] = find_process_by_name,
    ):
        if (pid is None) == (pattern is None):
            raise ValueError("exactly one of pid or pattern is required")
        if rescan_samples < 1:
            raise ValueError(f"rescan_samples must be >= 1, got {rescan_samples}")
        self.pattern = pattern
        self.rescan_samples = rescan_samples
        self.proc_root = Path(proc_root)
        self._clock = clock
        self._finder = finder
        self._collector: ProcessCollector | None = None
        self._lost_reported = False
        self.running = False
        if pid is not None:
            self._collector = self._new_collector(pid)

    @property
    def fixed(self) -> bool:
        return self.pattern is None

    @property
    def bound_pid(self) -> int | None:
        return self._collector.pid if self._collector else None

    @property
    def target(self) -> str:
        return self.pattern if self.pattern is not None else f"PID {self.bound_pid}"

    def poll(self, tick: int) -> ProcessMetrics | None:
        """Rescan if due, then collect the bound process.

        Updates ``running``: True only when a process is bound and its
        collection succeeded on this tick.
        """
        if not self.fixed:
            alive = self._collector is not None and self._collector.exists()
            if not alive or tick % self.rescan_samples == 0:
                self.rescan()

        metrics = None
        if self._collector is not None:
            try:
                if not self._collector.exists():
                    raise ProcessGone(self._collector.pid)
                metrics = self._collector.collect()
            except ProcessGone as e:
                self._process_gone(e.pid)
        self.running = metrics is not None
        return metrics

    def rescan(self) -> int | None:
        """Re-resolve the pattern unless the bound process is still alive."""
        if self.fixed:
            return self.bound_pid
        if self._collector is not None and self._collector.exists():
            return self._collector.pid

        pid = self._finder(self.pattern)
        if pid is None:
            self._collector = None
            return None
        if pid != self.bound_pid:
            log.info("process_bound", pattern=self.pattern, pid=pid)
            self._collector = self._new_collector(pid)
            self._lost_reported = False
        return pid

    def _new_collector(self, pid: int) -> ProcessCollector:
        return ProcessCollector(pid, proc_root=self.proc_root, clock=self._clock)

    def _process_gone(self, pid: int) -> None:
        if not self._lost_reported:
            log.info("process_gone", pid=pid, target=self.target)
            self._lost_reported = True
        if not self.fixed:
            self._collector = None
