"""Tests for the per-process collector."""

import shutil

import pytest

from perf_monitor.collectors.process import (
    CLOCK_TICKS,
    PAGE_SIZE,
    ProcessCollector,
    ProcessGone,
    ProcessState,
    parse_stat,
)
from tests.conftest import FakeClock, FakeProc

KB = 1024


class TestParseStat:
    def test_comm_with_spaces_and_parens(self) -> None:
        name, fields = parse_stat("77 (my (odd) proc) R 1 77 77 0")
        assert name == "my (odd) proc"
        assert fields[0] == "R"

    def test_garbage(self) -> None:
        assert parse_stat("nonsense") == ("", [])


class TestProcessState:
    @pytest.mark.parametrize(
        ("code", "state"),
        [
            ("R", ProcessState.RUNNING),
            ("S", ProcessState.SLEEPING),
            ("D", ProcessState.DISK_SLEEP),
            ("t", ProcessState.STOPPED),
            ("Z", ProcessState.ZOMBIE),
            ("?", ProcessState.UNKNOWN),
            ("", ProcessState.UNKNOWN),
        ],
    )
    def test_from_code(self, code: str, state: ProcessState) -> None:
        assert ProcessState.from_code(code) is state


class TestProcessCollector:
    def test_first_sample(self, fake_proc: FakeProc, clock: FakeClock) -> None:
        fake_proc.process(
            4242,
            name="postgres",
            state="R",
            utime=500,
            stime=100,
            threads=12,
            vsize=300 * 1024 * 1024,
            rss_pages=2000,
            status_kb={"VmSwap": 16, "RssShmem": 8},
            io={"rchar": 100, "wchar": 50, "read_bytes": 4096, "write_bytes": 8192},
            fds=5,
            cmdline="postgres -D /data",
        )
        metrics = ProcessCollector(4242, fake_proc.root, clock=clock).collect()

        assert metrics.pid == 4242
        assert metrics.name == "postgres"
        assert metrics.state is ProcessState.RUNNING
        assert metrics.cpu_percent == 0.0
        assert metrics.io_read_bytes_per_sec == 0.0
        assert metrics.utime == 500
        assert metrics.num_threads == 12
        assert metrics.vsize_bytes == 300 * 1024 * 1024
        assert metrics.rss_bytes == 2000 * PAGE_SIZE
        assert metrics.rss_anon_bytes == 3000 * KB
        assert metrics.rss_shmem_bytes == 8 * KB
        assert metrics.swap_bytes == 16 * KB
        assert metrics.io_read_bytes == 4096
        assert metrics.num_fds == 5
        assert metrics.cmdline == "postgres -D /data"

    def test_rates_on_second_sample(self, fake_proc: FakeProc, clock: FakeClock) -> None:
        collector = ProcessCollector(4242, fake_proc.root, clock=clock)
        fake_proc.process(4242, utime=100, stime=0, io={"read_bytes": 0, "write_bytes": 0})
        collector.collect()

        clock.advance(2.0)
        fake_proc.process(
            4242,
            utime=100 + CLOCK_TICKS,
            stime=0,
            io={"read_bytes": 4000, "write_bytes": 1000, "rchar": 600},
        )
        metrics = collector.collect()
        # one CPU-second over two wall seconds
        assert metrics.cpu_percent == pytest.approx(50.0)
        assert metrics.io_read_bytes_per_sec == pytest.approx(2000.0)
        assert metrics.io_write_bytes_per_sec == pytest.approx(500.0)
        assert metrics.io_rchar_per_sec == pytest.approx(300.0)

    def test_unreadable_io_is_zero(self, fake_proc: FakeProc, clock: FakeClock) -> None:
        fake_proc.process(4242, io=None)
        metrics = ProcessCollector(4242, fake_proc.root, clock=clock).collect()
        assert metrics.io_read_bytes == 0
        assert metrics.cancelled_write_bytes == 0

    def test_exited_process(self, fake_proc: FakeProc) -> None:
        proc_dir = fake_proc.process(4242)
        collector = ProcessCollector(4242, fake_proc.root)
        assert collector.exists()

        shutil.rmtree(proc_dir)
        assert not collector.exists()
        with pytest.raises(ProcessGone) as exc_info:
            collector.collect()
        assert exc_info.value.pid == 4242
