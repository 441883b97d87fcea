"""Operator-facing console output and diagnostic log setup.

Console lines are Rich markup written to stderr, keeping stdout free for
the per-tick report. The diagnostic log is a separate JSON Lines file fed
by structlog (see configure()).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

from perf_monitor.formatting import truncate

if TYPE_CHECKING:
    from perf_monitor.alert import Alert
    from perf_monitor.config import Config

_console = Console(highlight=False, stderr=True)

# When set, info lines are dropped; warnings and errors still print
_quiet = False


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Glyphs prefixed to console lines."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SIGNAL = "⚡"
    FOUND = "[bright_green]▲[/]"
    LOST = "[bright_red]▼[/]"
    SPLIT = "✂"
    ALERT = "[bold yellow]![/]"
    CONTROL = "[cyan]⬤[/]"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def set_quiet(quiet: bool) -> None:
    global _quiet
    _quiet = quiet


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a timestamped console line.

    Args:
        level: info, warn or error
        msg: Message text (may contain Rich markup)
        icon: Optional glyph shown after the level tag
    """
    if _quiet and level == "info":
        return
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def monitor_started(interval: float, target: str | None) -> None:
    suffix = f", target [cyan]{escape(target)}[/]" if target else ""
    info(f"Monitor started [dim](every {interval:g}s)[/]{suffix}", Icon.OK)


def monitor_stopping() -> None:
    info("Monitor stopping...", Icon.WAIT)


def monitor_stopped(ticks: int) -> None:
    info(f"Monitor stopped [dim]({ticks} samples)[/]", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def process_found(name: str, pid: int) -> None:
    info(f"Target [cyan]{escape(truncate(name, 28))}[/] [dim]({pid})[/] running", Icon.FOUND)


def process_lost(name: str, pid: int) -> None:
    info(f"Target [cyan]{escape(truncate(name, 28))}[/] [dim]({pid})[/] exited", Icon.LOST)


def segment_rotated(segment: int, paths: list[str]) -> None:
    where = ", ".join(f"[cyan]{escape(p)}[/]" for p in paths) or "[dim]no sinks[/]"
    info(f"Segment {segment}: {where}", Icon.SPLIT)


def segment_renamed(src: str, dest: str) -> None:
    info(f"Renamed [dim]{escape(src)}[/] → [cyan]{escape(dest)}[/]")


def rename_failed(src: str, dest: str, reason: str) -> None:
    warn(f"Could not rename {escape(src)} to {escape(dest)}: {escape(reason)}")


def sink_failed(kind: str, path: str, reason: str) -> None:
    error(f"{kind} log {escape(path)} disabled until next split: {escape(reason)}", Icon.FAIL)


def control_listening(host: str, port: int) -> None:
    info(f"Control channel on [cyan]udp://{host}:{port}[/]", Icon.CONTROL)


def control_bind_failed(host: str, port: int, reason: str) -> None:
    warn(f"Control channel unavailable on udp://{host}:{port}: {escape(reason)}")


def alert_raised(alert: Alert) -> None:
    if alert.severity.value == "Critical":
        error(escape(alert.message), Icon.ALERT)
    else:
        warn(escape(alert.message), Icon.ALERT)


def monitor_failed(reason: str) -> None:
    error(f"Monitor failed: {escape(reason)}", Icon.FAIL)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Processor stamping every event with where it came from."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Route structlog events to a rotating JSON Lines file.

    The console never sees structlog output; it only shows the helpers
    above. Timestamps are local time.

    Args:
        config: Supplies the log path and rotation limits
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("monitor"),
                structlog.processors.format_exc_info,
            ],
        )
    )

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers.clear()
    root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("monitor"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
