"""Configuration system for perf-monitor."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class SystemConfig:
    """Sampling configuration."""

    sample_interval: float = 1.0  # Seconds between ticks
    duration: float = 0.0  # Stop after this many seconds (0 = run until interrupted)
    process_rescan_samples: int = 10  # Re-resolve a name pattern every N ticks
    proc_root: str = "/proc"
    sys_root: str = "/sys"
    spill_dir: str = ""  # Directory whose filesystem capacity is reported ("" = none)
    alert_history: int = 20  # Recent alerts kept for display
    # Diagnostic log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass
class AlertThresholds:
    """Warning/critical cutoffs per metric family.

    Percentages for cpu, iowait, memory, cgroup and disk utilization; queue
    depth in outstanding requests; process RSS in bytes (None = not checked).
    """

    cpu_warn: float = 80.0
    cpu_crit: float = 95.0
    memory_warn: float = 80.0
    memory_crit: float = 95.0
    cgroup_warn: float = 85.0
    cgroup_crit: float = 95.0
    disk_util_warn: float = 70.0
    disk_util_crit: float = 90.0
    disk_queue_warn: float = 5.0
    disk_queue_crit: float = 20.0
    iowait_warn: float = 30.0
    iowait_crit: float = 60.0
    process_rss_warn: int | None = None
    process_rss_crit: int | None = None
    cooldown_seconds: float = 10.0  # Same alert key is not repeated within this window


@dataclass
class LogsConfig:
    """Segmented sample log configuration."""

    csv_path: str = ""  # Detailed CSV sink ("" = disabled)
    text_path: str = ""  # Fixed-width text sink for tailing ("" = disabled)
    csv_flush_rows: int = 10  # Flush the CSV sink every N rows
    split_on_process: bool = False  # Start a new segment when the target starts/stops
    summary: bool = False  # Print a session summary on exit (implied by a duration)


@dataclass
class TargetConfig:
    """Process to monitor: a fixed PID or a name pattern, not both."""

    pid: int = 0  # 0 = none
    name: str = ""  # "" = none


@dataclass
class ControlConfig:
    """UDP control channel for split/rename requests."""

    port: int = 0  # 0 = disabled
    host: str = "127.0.0.1"


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table, skipping unset optionals."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if value is None:
            continue
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    system: SystemConfig = field(default_factory=SystemConfig)
    alerts: AlertThresholds = field(default_factory=AlertThresholds)
    logs: LogsConfig = field(default_factory=LogsConfig)
    target: TargetConfig = field(default_factory=TargetConfig)
    control: ControlConfig = field(default_factory=ControlConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "perf-monitor"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "perf-monitor"

    @property
    def log_path(self) -> Path:
        """Diagnostic log path (JSON Lines)."""
        return self.state_dir / "monitor.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("system", "alerts", "logs", "target", "control"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() of an empty file are identical.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            system=_load_system_config(data.get("system", {})),
            alerts=load_thresholds(data.get("alerts", {})),
            logs=_load_logs_config(data.get("logs", {})),
            target=_load_target_config(data.get("target", {})),
            control=_load_control_config(data.get("control", {})),
        )


def _load_system_config(data: dict) -> SystemConfig:
    d = SystemConfig()
    config = SystemConfig(
        sample_interval=float(data.get("sample_interval", d.sample_interval)),
        duration=float(data.get("duration", d.duration)),
        process_rescan_samples=data.get("process_rescan_samples", d.process_rescan_samples),
        proc_root=data.get("proc_root", d.proc_root),
        sys_root=data.get("sys_root", d.sys_root),
        spill_dir=data.get("spill_dir", d.spill_dir),
        alert_history=data.get("alert_history", d.alert_history),
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )
    if config.sample_interval <= 0:
        raise ValueError(f"sample_interval must be > 0, got {config.sample_interval}")
    if config.duration < 0:
        raise ValueError(f"duration must be >= 0, got {config.duration}")
    if config.process_rescan_samples < 1:
        raise ValueError(
            f"process_rescan_samples must be >= 1, got {config.process_rescan_samples}"
        )
    if config.alert_history < 1:
        raise ValueError(f"alert_history must be >= 1, got {config.alert_history}")
    return config


def load_thresholds(data: dict) -> AlertThresholds:
    """Build AlertThresholds from an [alerts] table, validating warn <= crit pairs."""
    d = AlertThresholds()
    thresholds = AlertThresholds(
        cpu_warn=float(data.get("cpu_warn", d.cpu_warn)),
        cpu_crit=float(data.get("cpu_crit", d.cpu_crit)),
        memory_warn=float(data.get("memory_warn", d.memory_warn)),
        memory_crit=float(data.get("memory_crit", d.memory_crit)),
        cgroup_warn=float(data.get("cgroup_warn", d.cgroup_warn)),
        cgroup_crit=float(data.get("cgroup_crit", d.cgroup_crit)),
        disk_util_warn=float(data.get("disk_util_warn", d.disk_util_warn)),
        disk_util_crit=float(data.get("disk_util_crit", d.disk_util_crit)),
        disk_queue_warn=float(data.get("disk_queue_warn", d.disk_queue_warn)),
        disk_queue_crit=float(data.get("disk_queue_crit", d.disk_queue_crit)),
        iowait_warn=float(data.get("iowait_warn", d.iowait_warn)),
        iowait_crit=float(data.get("iowait_crit", d.iowait_crit)),
        process_rss_warn=data.get("process_rss_warn", d.process_rss_warn),
        process_rss_crit=data.get("process_rss_crit", d.process_rss_crit),
        cooldown_seconds=float(data.get("cooldown_seconds", d.cooldown_seconds)),
    )
    validate_thresholds(thresholds)
    return thresholds


def validate_thresholds(thresholds: AlertThresholds) -> None:
    """Raise ValueError if any warning cutoff sits above its critical cutoff."""
    pairs = ("cpu", "memory", "cgroup", "disk_util", "disk_queue", "iowait", "process_rss")
    for name in pairs:
        warn = getattr(thresholds, f"{name}_warn")
        crit = getattr(thresholds, f"{name}_crit")
        if warn is not None and crit is not None and warn > crit:
            raise ValueError(f"{name}_warn ({warn}) must not exceed {name}_crit ({crit})")
    if thresholds.cooldown_seconds < 0:
        raise ValueError(f"cooldown_seconds must be >= 0, got {thresholds.cooldown_seconds}")


def _load_logs_config(data: dict) -> LogsConfig:
    d = LogsConfig()
    config = LogsConfig(
        csv_path=data.get("csv_path", d.csv_path),
        text_path=data.get("text_path", d.text_path),
        csv_flush_rows=data.get("csv_flush_rows", d.csv_flush_rows),
        split_on_process=data.get("split_on_process", d.split_on_process),
        summary=data.get("summary", d.summary),
    )
    if config.csv_flush_rows < 1:
        raise ValueError(f"csv_flush_rows must be >= 1, got {config.csv_flush_rows}")
    return config


def _load_target_config(data: dict) -> TargetConfig:
    d = TargetConfig()
    config = TargetConfig(
        pid=data.get("pid", d.pid),
        name=data.get("name", d.name),
    )
    if config.pid < 0:
        raise ValueError(f"target pid must be >= 0, got {config.pid}")
    if config.pid and config.name:
        raise ValueError("target pid and name are mutually exclusive")
    return config


def _load_control_config(data: dict) -> ControlConfig:
    d = ControlConfig()
    config = ControlConfig(
        port=data.get("port", d.port),
        host=data.get("host", d.host),
    )
    if not 0 <= config.port <= 65535:
        raise ValueError(f"control port must be in 0..65535, got {config.port}")
    return config
