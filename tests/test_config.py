"""Tests for configuration system."""

import pytest

from perf_monitor.config import (
    AlertThresholds,
    Config,
    ControlConfig,
    LogsConfig,
    SystemConfig,
    TargetConfig,
    load_thresholds,
    validate_thresholds,
)


def test_system_config_defaults():
    """SystemConfig has correct defaults."""
    config = SystemConfig()
    assert config.sample_interval == 1.0
    assert config.duration == 0.0
    assert config.process_rescan_samples == 10
    assert config.proc_root == "/proc"


def test_alert_thresholds_defaults():
    """AlertThresholds has correct defaults."""
    t = AlertThresholds()
    assert (t.cpu_warn, t.cpu_crit) == (80.0, 95.0)
    assert (t.memory_warn, t.memory_crit) == (80.0, 95.0)
    assert (t.cgroup_warn, t.cgroup_crit) == (85.0, 95.0)
    assert (t.disk_util_warn, t.disk_util_crit) == (70.0, 90.0)
    assert (t.disk_queue_warn, t.disk_queue_crit) == (5.0, 20.0)
    assert (t.iowait_warn, t.iowait_crit) == (30.0, 60.0)
    assert t.process_rss_warn is None
    assert t.process_rss_crit is None
    assert t.cooldown_seconds == 10.0


def test_logs_and_target_defaults():
    """Sinks, target and control channel are disabled by default."""
    assert LogsConfig().csv_path == ""
    assert LogsConfig().text_path == ""
    assert TargetConfig().pid == 0
    assert TargetConfig().name == ""
    assert ControlConfig().port == 0


def test_config_paths():
    """Config provides correct data paths."""
    config = Config()
    assert "perf-monitor" in str(config.config_dir)
    assert config.config_path.name == "config.toml"
    assert config.log_path.name == "monitor.log"
    assert config.log_path.parent == config.state_dir


def test_load_missing_file_returns_defaults(tmp_path):
    """Config.load() with no file returns defaults."""
    assert Config.load(tmp_path / "absent.toml") == Config()


def test_load_empty_file_matches_defaults(tmp_path):
    """An empty file loads to the same values as Config()."""
    path = tmp_path / "config.toml"
    path.write_text("")
    assert Config.load(path) == Config()


def test_save_load_round_trip(tmp_path):
    """Values written by save() come back from load()."""
    path = tmp_path / "config.toml"
    config = Config()
    config.system.sample_interval = 0.5
    config.alerts.cpu_warn = 70.0
    config.alerts.process_rss_crit = 2 * 1024**3
    config.logs.csv_path = "/tmp/run.csv"
    config.logs.split_on_process = True
    config.target.name = "postgres"
    config.control.port = 9999
    config.save(path)

    loaded = Config.load(path)
    assert loaded == config
    assert loaded.alerts.process_rss_warn is None


def test_save_skips_unset_optionals(tmp_path):
    """None-valued thresholds are omitted from the file."""
    path = tmp_path / "config.toml"
    Config().save(path)
    text = path.read_text()
    assert "[alerts]" in text
    assert "process_rss_warn" not in text


def test_partial_file_keeps_other_defaults(tmp_path):
    """Unspecified keys fall back to defaults."""
    path = tmp_path / "config.toml"
    path.write_text("[system]\nsample_interval = 2\n\n[alerts]\ncpu_crit = 99\n")
    config = Config.load(path)
    assert config.system.sample_interval == 2.0
    assert isinstance(config.system.sample_interval, float)
    assert config.alerts.cpu_crit == 99.0
    assert config.alerts.cpu_warn == 80.0
    assert config.logs == LogsConfig()


def test_parse_error(tmp_path):
    """Malformed TOML raises ValueError naming the file."""
    path = tmp_path / "config.toml"
    path.write_text("[system\nsample_interval = ")
    with pytest.raises(ValueError, match="Failed to parse"):
        Config.load(path)


@pytest.mark.parametrize(
    ("toml", "message"),
    [
        ("[system]\nsample_interval = 0\n", "sample_interval"),
        ("[system]\nduration = -1\n", "duration"),
        ("[system]\nprocess_rescan_samples = 0\n", "process_rescan_samples"),
        ("[logs]\ncsv_flush_rows = 0\n", "csv_flush_rows"),
        ("[target]\npid = 12\nname = 'x'\n", "mutually exclusive"),
        ("[target]\npid = -3\n", "pid"),
        ("[control]\nport = 70000\n", "control port"),
        ("[alerts]\ncpu_warn = 99\ncpu_crit = 90\n", "cpu_warn"),
    ],
)
def test_invalid_values(tmp_path, toml, message):
    """Out-of-range values are rejected at load time."""
    path = tmp_path / "config.toml"
    path.write_text(toml)
    with pytest.raises(ValueError, match=message):
        Config.load(path)


def test_load_thresholds_from_table():
    """load_thresholds() reads an [alerts]-style mapping."""
    t = load_thresholds({"disk_queue_warn": 2, "process_rss_warn": 1000})
    assert t.disk_queue_warn == 2.0
    assert t.process_rss_warn == 1000
    assert t.disk_queue_crit == 20.0


def test_validate_thresholds():
    """Warn above crit is rejected; equal or one-sided RSS cutoffs are fine."""
    validate_thresholds(AlertThresholds(cpu_warn=90.0, cpu_crit=90.0))
    validate_thresholds(AlertThresholds(process_rss_warn=10))
    with pytest.raises(ValueError, match="process_rss_warn"):
        validate_thresholds(AlertThresholds(process_rss_warn=10, process_rss_crit=5))
    with pytest.raises(ValueError, match="cooldown_seconds"):
        validate_thresholds(AlertThresholds(cooldown_seconds=-1))
