"""Tests for segment summary statistics."""

from datetime import datetime, timedelta, timezone

import pytest

from perf_monitor.collectors.disk import DiskDeviceMetrics
from perf_monitor.collectors.network import InterfaceMetrics
from perf_monitor.summary import SummaryAccumulator
from tests.conftest import GIB, make_process, make_sample

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestSummaryAccumulator:
    def test_empty(self) -> None:
        acc = SummaryAccumulator()
        assert len(acc) == 0
        assert acc.summary() is None

    def test_aggregates(self) -> None:
        acc = SummaryAccumulator()
        acc.add(make_sample(cpu=20.0, iowait=5.0, timestamp=START))
        acc.add(
            make_sample(
                cpu=60.0,
                iowait=15.0,
                mem_used=4 * GIB,
                timestamp=START + timedelta(seconds=2),
                interfaces=[InterfaceMetrics("eth0", rx_bytes_per_sec=100.0, rx_bytes=5000)],
            )
        )

        summary = acc.summary()
        assert summary is not None
        assert summary.samples_count == 2
        assert summary.duration_secs == pytest.approx(2.0)
        assert summary.cpu_avg_utilization == pytest.approx(40.0)
        assert summary.cpu_max_utilization == pytest.approx(60.0)
        assert summary.cpu_max_iowait == pytest.approx(15.0)
        assert summary.memory_max_used_percent == pytest.approx(50.0)
        assert summary.memory_max_used_bytes == 4 * GIB
        assert summary.network_total_rx_bytes == 5000
        assert summary.network_max_rx_throughput == pytest.approx(100.0)
        assert summary.cgroup_max_usage_percent is None
        assert summary.process_max_cpu is None
        assert summary.bottleneck_indicators == []

    def test_process_maxima(self) -> None:
        acc = SummaryAccumulator()
        acc.add(make_sample(process=make_process(cpu_percent=30.0, num_fds=10)))
        acc.add(make_sample())
        acc.add(make_sample(process=make_process(cpu_percent=10.0, num_fds=20)))
        summary = acc.summary()
        assert summary is not None
        assert summary.process_max_cpu == pytest.approx(30.0)
        assert summary.process_max_fds == 20

    def test_bottleneck_indicators(self) -> None:
        acc = SummaryAccumulator()
        acc.add(
            make_sample(
                cpu=95.0,
                iowait=55.0,
                swap_used=GIB,
                cgroup=(100, 95),
                disks=[DiskDeviceMetrics("sda", utilization=85.0)],
            )
        )
        summary = acc.summary()
        assert summary is not None
        assert len(summary.bottleneck_indicators) == 5
        assert summary.bottleneck_indicators[0].startswith("CPU-bound")

    def test_clear(self) -> None:
        acc = SummaryAccumulator()
        acc.add(make_sample(cpu=99.0))
        acc.clear()
        assert acc.summary() is None
        acc.add(make_sample(cpu=10.0))
        summary = acc.summary()
        assert summary is not None
        assert summary.cpu_max_utilization == pytest.approx(10.0)
