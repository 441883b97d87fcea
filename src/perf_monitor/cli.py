"""CLI commands for perf-monitor."""

from pathlib import Path

import click


@click.group()
@click.version_option()
def main() -> None:
    """Sample host and process resource counters into rotating logs."""
    pass


@main.command()
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: ~/.config/perf-monitor/config.toml)",
)
@click.option("--pid", "-p", type=click.IntRange(min=1), help="Monitor this process ID")
@click.option("--name", "-n", help="Monitor the best process matching this name")
@click.option(
    "--interval",
    "-i",
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds between samples",
)
@click.option("--log", "-l", "csv_log", help="Detailed CSV log path")
@click.option("--text-log", "-t", help="Fixed-width text log path")
@click.option("--spill-dir", "-s", help="Directory whose filesystem usage is reported")
@click.option(
    "--duration", "-d", type=click.FloatRange(min=0), help="Stop after N seconds (0 = forever)"
)
@click.option("--summary/--no-summary", default=None, help="Print a summary on exit")
@click.option(
    "--split-on-process/--no-split-on-process",
    default=None,
    help="Start a new log segment when the target starts or stops",
)
@click.option(
    "--control-port", type=click.IntRange(0, 65535), help="UDP port for split requests"
)
@click.option("--quiet", "-q", is_flag=True, help="No per-sample output")
def run(
    config_file: Path | None,
    pid: int | None,
    name: str | None,
    interval: float | None,
    csv_log: str | None,
    text_log: str | None,
    spill_dir: str | None,
    duration: float | None,
    summary: bool | None,
    split_on_process: bool | None,
    control_port: int | None,
    quiet: bool,
) -> None:
    """Run the monitor until interrupted or the duration elapses."""
    import asyncio
    import sys

    from perf_monitor import logging as console
    from perf_monitor.config import Config, TargetConfig
    from perf_monitor.monitor import run_monitor
    from perf_monitor.procfs import CollectError

    if pid is not None and name:
        raise click.UsageError("--pid and --name are mutually exclusive")

    try:
        cfg = Config.load(config_file)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if pid is not None:
        cfg.target = TargetConfig(pid=pid)
    elif name:
        cfg.target = TargetConfig(name=name)
    if interval is not None:
        cfg.system.sample_interval = interval
    if duration is not None:
        cfg.system.duration = duration
    if spill_dir is not None:
        cfg.system.spill_dir = spill_dir
    if csv_log is not None:
        cfg.logs.csv_path = csv_log
    if text_log is not None:
        cfg.logs.text_path = text_log
    if summary is not None:
        cfg.logs.summary = summary
    if split_on_process is not None:
        cfg.logs.split_on_process = split_on_process
    if control_port is not None:
        cfg.control.port = control_port

    console.configure(cfg)
    console.set_quiet(quiet)

    try:
        asyncio.run(run_monitor(cfg, echo=click.echo, quiet=quiet))
    except CollectError as e:
        console.monitor_failed(str(e))
        sys.exit(1)


@main.command()
@click.argument("name", required=False, default="")
@click.option("--port", type=click.IntRange(1, 65535), help="Monitor control port")
@click.option("--host", help="Monitor control host")
def split(name: str, port: int | None, host: str | None) -> None:
    """Ask a running monitor to start a new log segment.

    With NAME, the segment being closed is renamed to NAME first.
    """
    from perf_monitor.config import Config
    from perf_monitor.control_client import send_control_message

    try:
        cfg = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    port = port or cfg.control.port
    host = host or cfg.control.host
    if not port:
        raise click.UsageError("No control port: pass --port or set [control] port in config")

    try:
        send_control_message(name, port, host)
    except OSError as e:
        raise click.ClickException(f"Failed to send to {host}:{port}: {e}") from e

    if name:
        click.echo(f"Requested split with rename to {name!r} ({host}:{port})")
    else:
        click.echo(f"Requested split ({host}:{port})")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from dataclasses import fields

    from perf_monitor.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo(f"Diagnostic log: {cfg.log_path}")
    for section in ("system", "alerts", "logs", "target", "control"):
        click.echo()
        click.echo(f"[{section}]")
        values = getattr(cfg, section)
        for f in fields(values):
            value = getattr(values, f.name)
            click.echo(f"  {f.name} = {'unset' if value is None else repr(value)}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from perf_monitor.config import Config

    cfg = Config()
    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from perf_monitor.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
