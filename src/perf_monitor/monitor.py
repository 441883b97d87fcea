"""The sampling loop: collect, alert, log, react to control requests."""

from __future__ import annotations

import asyncio
import signal
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from perf_monitor import logging as console
from perf_monitor.alert import Alert, AlertChecker
from perf_monitor.collectors.cpu import CpuCollector
from perf_monitor.collectors.disk import DiskCollector
from perf_monitor.collectors.memory import MemoryCollector
from perf_monitor.collectors.network import NetworkCollector
from perf_monitor.collectors.psi import PsiCollector
from perf_monitor.config import AlertThresholds, Config, validate_thresholds
from perf_monitor.control_channel import ControlChannel, ControlCommand
from perf_monitor.report import format_alert, format_sample, format_summary
from perf_monitor.resolver import ProcessResolver
from perf_monitor.sample import MetricSample
from perf_monitor.sinks import LogSegments

log = structlog.get_logger()


@dataclass
class MonitorState:
    """Runtime state of a monitoring session."""

    running: bool = False
    tick_count: int = 0
    last_sample: MetricSample | None = None
    # None until the first tick has been applied
    process_running: bool | None = None
    logging_enabled: bool = True


class Monitor:
    """Owns every collector, the alert checker, the log segments and the control channel.

    All mutable state is touched from one task. Only the blocking /proc reads
    in collect() run on an executor thread, and the loop awaits them before
    doing anything else, so ticks never overlap.
    """

    def __init__(
        self,
        config: Config,
        echo: Callable[[str], None] | None = None,
        quiet: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.state = MonitorState()
        self._echo = echo
        self._quiet = quiet
        self._clock = clock

        system = config.system
        proc_root = Path(system.proc_root)
        self.cpu = CpuCollector(proc_root)
        self.memory = MemoryCollector(proc_root, Path(system.sys_root))
        self.disk = DiskCollector(proc_root, spill_dir=system.spill_dir or None, clock=clock)
        self.network = NetworkCollector(proc_root, clock=clock)
        self.psi = PsiCollector(proc_root)

        target = config.target
        self.resolver: ProcessResolver | None = None
        if target.pid:
            self.resolver = ProcessResolver(pid=target.pid, proc_root=proc_root, clock=clock)
        elif target.name:
            self.resolver = ProcessResolver(
                pattern=target.name,
                rescan_samples=system.process_rescan_samples,
                proc_root=proc_root,
                clock=clock,
            )

        self.alerts = AlertChecker(config.alerts)
        self.recent_alerts: deque[Alert] = deque(maxlen=system.alert_history)

        logs = config.logs
        self.segments = LogSegments(
            csv_path=Path(logs.csv_path).expanduser() if logs.csv_path else None,
            text_path=Path(logs.text_path).expanduser() if logs.text_path else None,
            csv_flush_rows=logs.csv_flush_rows,
        )

        self.control: ControlChannel | None = None
        if config.control.port:
            self.control = ControlChannel(config.control.host, config.control.port)

        self._shutdown_event = asyncio.Event()
        self._signals: list[signal.Signals] = []

    # ─────────────────────────────────────────────────────────────────────
    # One tick
    # ─────────────────────────────────────────────────────────────────────

    def collect(self) -> MetricSample:
        """Read every source once and assemble the sample.

        Raises:
            CollectError: If CPU, memory, disk or network counters are unreadable
        """
        timestamp = datetime.now(timezone.utc)
        cpu = self.cpu.collect()
        memory = self.memory.collect()
        disk = self.disk.collect()
        network = self.network.collect()
        psi = self.psi.collect()
        process = None
        if self.resolver is not None:
            process = self.resolver.poll(self.state.tick_count)
        return MetricSample(
            timestamp=timestamp,
            cpu=cpu,
            memory=memory,
            disk=disk,
            network=network,
            psi=psi,
            process=process,
        )

    def apply(self, sample: MetricSample) -> list[Alert]:
        """Feed a completed sample to alerting and the log sinks.

        A change in target liveness rotates the logs before the sample is
        written, so the first sample after a start or stop opens the new
        segment.

        Returns:
            Alerts newly fired by this sample
        """
        alerts = self.alerts.check(sample)
        for alert in alerts:
            log.warning(
                "alert_raised",
                key=alert.key,
                severity=alert.severity.value,
                category=alert.category,
                message=alert.message,
            )
        self.recent_alerts.extend(alerts)

        self._check_process_transition()

        if self.state.logging_enabled:
            self.segments.append(sample)
        else:
            self.segments.summary.add(sample)

        self.state.tick_count += 1
        self.state.last_sample = sample
        return alerts

    def _check_process_transition(self) -> None:
        if self.resolver is None:
            return
        running = self.resolver.running
        previous = self.state.process_running
        self.state.process_running = running
        if previous is None or running == previous:
            return

        pid = self.resolver.bound_pid
        if running:
            console.process_found(self.resolver.target, pid or 0)
        else:
            console.process_lost(self.resolver.target, pid or 0)
        if self.config.logs.split_on_process and self.segments.configured:
            log.info("process_transition_split", running=running, target=self.resolver.target)
            self.rotate()

    def handle_control(self, command: ControlCommand) -> None:
        if command.is_rename:
            self.rename_and_rotate(command.rename_to)
        else:
            self.rotate()

    # ─────────────────────────────────────────────────────────────────────
    # Operator entry points
    # ─────────────────────────────────────────────────────────────────────

    def rotate(self) -> int:
        """Start a new log segment; a no-op when no sink is configured."""
        if not self.segments.configured:
            log.info("rotate_skipped", reason="no sinks configured")
            return self.segments.segment
        segment = self.segments.rotate()
        console.segment_rotated(segment, [str(p) for p in self.segments.current_paths()])
        return segment

    def rename_and_rotate(self, name: str) -> list[Path]:
        if not self.segments.configured:
            log.info("rename_skipped", reason="no sinks configured", name=name)
            return []
        renamed = self.segments.rename_and_rotate(name)
        console.segment_rotated(
            self.segments.segment, [str(p) for p in self.segments.current_paths()]
        )
        return renamed

    def set_logging_enabled(self, enabled: bool) -> None:
        log.info("logging_toggled", enabled=enabled)
        self.state.logging_enabled = enabled
        if not enabled:
            self.segments.flush()

    def update_thresholds(self, thresholds: AlertThresholds) -> None:
        """Swap in new thresholds.

        Raises:
            ValueError: If a warning cutoff exceeds its critical cutoff
        """
        validate_thresholds(thresholds)
        self.alerts.set_thresholds(thresholds)
        log.info("thresholds_updated")

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Open sinks and the control channel, then run until stopped."""
        from importlib.metadata import version

        log.info(
            "monitor_starting",
            version=version("perf-monitor"),
            interval=self.config.system.sample_interval,
            target=self.resolver.target if self.resolver else None,
            csv_path=self.config.logs.csv_path or None,
            text_path=self.config.logs.text_path or None,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
            self._signals.append(sig)

        self.segments.open()
        if self.control is not None:
            control = self.control
            if await control.start():
                console.control_listening(control.host, control.port)
            else:
                console.control_bind_failed(control.host, control.port, control.bind_error or "")
                self.control = None

        self.state.running = True
        console.monitor_started(
            self.config.system.sample_interval, self.resolver.target if self.resolver else None
        )
        await self._main_loop()

    async def stop(self) -> None:
        """Flush and close everything; safe to call after a crash."""
        if self.state.running:
            console.monitor_stopping()
        self.state.running = False

        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

        if self.control is not None:
            self.control.stop()
            self.control = None
        self.segments.close()

        wants_summary = self.config.logs.summary or self.config.system.duration > 0
        if wants_summary and self._echo is not None:
            summary = self.segments.summary.summary()
            if summary is not None:
                for line in format_summary(summary):
                    self._echo(line)

        log.info("monitor_stopped", ticks=self.state.tick_count)
        console.monitor_stopped(self.state.tick_count)

    def request_stop(self) -> None:
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    async def _main_loop(self) -> None:
        """Tick at the configured interval until shutdown or duration expiry.

        Each iteration:
        1. Collect all sources on an executor thread
        2. Alert, rotate on target transitions, append to sinks
        3. Print the tick report (if echoing)
        4. Drain pending control requests
        5. Sleep out the rest of the interval
        """
        interval = self.config.system.sample_interval
        duration = self.config.system.duration
        loop = asyncio.get_running_loop()
        started = self._clock()

        while not self._shutdown_event.is_set():
            if duration and self._clock() - started >= duration:
                log.info("duration_elapsed", duration=duration)
                break

            tick_start = self._clock()
            sample = await loop.run_in_executor(None, self.collect)
            alerts = self.apply(sample)
            self._report(sample, alerts)

            if self.control is not None:
                for command in self.control.poll():
                    self.handle_control(command)

            sleep_time = max(0.0, interval - (self._clock() - tick_start))
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=sleep_time)
            except asyncio.TimeoutError:
                pass

    def _report(self, sample: MetricSample, alerts: list[Alert]) -> None:
        if self._echo is None or self._quiet:
            for alert in alerts:
                console.alert_raised(alert)
            return
        self._echo("")
        for line in format_sample(sample, self.state.tick_count):
            self._echo(line)
        for alert in alerts:
            self._echo(format_alert(alert))


async def run_monitor(
    config: Config,
    echo: Callable[[str], None] | None = None,
    quiet: bool = False,
) -> Monitor:
    """Run a monitoring session to completion.

    Args:
        config: Session configuration
        echo: Receives report lines (per tick and the closing summary)
        quiet: Skip the per-tick report; alerts still reach the console

    Raises:
        CollectError: If a required counter source becomes unreadable
    """
    monitor = Monitor(config, echo=echo, quiet=quiet)

    try:
        await monitor.start()
    except Exception as e:
        log.exception("monitor_crashed", error=str(e))
        raise
    finally:
        await monitor.stop()
    return monitor
