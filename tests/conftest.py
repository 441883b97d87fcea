"""Shared test fixtures for perf-monitor."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from perf_monitor.collectors.cpu import CpuMetrics
from perf_monitor.collectors.disk import DiskDeviceMetrics, DiskMetrics
from perf_monitor.collectors.memory import MemoryMetrics
from perf_monitor.collectors.network import InterfaceMetrics, NetworkMetrics
from perf_monitor.collectors.process import ProcessMetrics, ProcessState
from perf_monitor.collectors.psi import PsiMetrics
from perf_monitor.sample import MetricSample

GIB = 1024**3
MIB = 1024**2


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProc:
    """Writes a minimal /proc tree (plus /sys for cgroups) under a temp dir."""

    def __init__(self, root: Path):
        self.root = root / "proc"
        self.sys_root = root / "sys"
        self.root.mkdir(parents=True)
        self.sys_root.mkdir(parents=True)

    def write(self, rel: str, text: str) -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    def write_sys(self, rel: str, text: str) -> Path:
        path = self.sys_root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    def stat(
        self,
        total: tuple[int, ...] = (100, 0, 50, 850, 0, 0, 0, 0),
        cores: list[tuple[int, ...]] | None = None,
        ctxt: int = 1000,
        intr: int = 500,
    ) -> None:
        lines = ["cpu  " + " ".join(str(v) for v in total)]
        for i, core in enumerate(cores if cores is not None else [total]):
            lines.append(f"cpu{i} " + " ".join(str(v) for v in core))
        lines += [f"intr {intr} 0 0", f"ctxt {ctxt}", "btime 1700000000", "processes 42"]
        self.write("stat", "\n".join(lines) + "\n")

    def loadavg(self, one: float = 0.5, five: float = 0.25, fifteen: float = 0.1) -> None:
        self.write("loadavg", f"{one} {five} {fifteen} 1/123 4567\n")

    def meminfo(self, **kb: int) -> None:
        values = {
            "MemTotal": 8 * 1024 * 1024,
            "MemFree": 2 * 1024 * 1024,
            "MemAvailable": 5 * 1024 * 1024,
            "Buffers": 256 * 1024,
            "Cached": 1024 * 1024,
            "SwapTotal": 0,
            "SwapFree": 0,
            "Dirty": 64,
            "Writeback": 0,
            "Active(file)": 512 * 1024,
            "Inactive(file)": 256 * 1024,
        }
        values.update(kb)
        lines = [f"{key}:{value:>12} kB" for key, value in values.items()]
        self.write("meminfo", "\n".join(lines) + "\n")

    def vmstat(self, pgfault: int = 1000, pgmajfault: int = 10) -> None:
        self.write("vmstat", f"nr_free_pages 1234\npgfault {pgfault}\npgmajfault {pgmajfault}\n")

    def diskstats(self, devices: dict[str, tuple[int, ...]]) -> None:
        """devices maps name -> 11 counters (reads .. weighted_time_io)."""
        lines = []
        for minor, (name, counters) in enumerate(devices.items()):
            values = list(counters) + [0] * (11 - len(counters))
            lines.append(f"   8       {minor} {name} " + " ".join(str(v) for v in values))
        self.write("diskstats", "\n".join(lines) + "\n")

    def net_dev(self, interfaces: dict[str, tuple[int, ...]]) -> None:
        """interfaces maps name -> (rx_bytes, rx_packets, rx_errs, rx_drop,
        tx_bytes, tx_packets, tx_errs, tx_drop)."""
        lines = [
            "Inter-|   Receive                            |  Transmit",
            " face |bytes    packets errs drop fifo frame compressed multicast"
            "|bytes    packets errs drop fifo colls carrier compressed",
            "    lo: 999 9 0 0 0 0 0 0 999 9 0 0 0 0 0 0",
        ]
        for name, c in interfaces.items():
            rx = f"{c[0]} {c[1]} {c[2]} {c[3]} 0 0 0 0"
            tx = f"{c[4]} {c[5]} {c[6]} {c[7]} 0 0 0 0"
            lines.append(f"{name:>6}: {rx} {tx}")
        self.write("net/dev", "\n".join(lines) + "\n")

    def tcp(self, connections: list[tuple[int, str]], table: str = "tcp") -> None:
        """connections are (remote_port, state_hex) pairs."""
        lines = ["  sl  local_address rem_address   st tx_queue rx_queue"]
        for i, (port, state) in enumerate(connections):
            lines.append(f"   {i}: 0100007F:9C40 0A000001:{port:04X} {state} 00000000:00000000")
        self.write(f"net/{table}", "\n".join(lines) + "\n")

    def snmp(self, retrans: int = 0) -> None:
        self.write(
            "net/snmp",
            "Ip: Forwarding DefaultTTL\nIp: 1 64\n"
            "Tcp: RtoAlgorithm ActiveOpens RetransSegs InErrs\n"
            f"Tcp: 1 10 {retrans} 0\n",
        )

    def pressure(
        self,
        resource: str,
        some: tuple[float, float, float, int] = (0.0, 0.0, 0.0, 0),
        full: tuple[float, float, float, int] | None = None,
    ) -> None:
        def line(kind: str, v: tuple[float, float, float, int]) -> str:
            return f"{kind} avg10={v[0]:.2f} avg60={v[1]:.2f} avg300={v[2]:.2f} total={v[3]}"

        lines = [line("some", some)]
        if full is not None:
            lines.append(line("full", full))
        self.write(f"pressure/{resource}", "\n".join(lines) + "\n")

    def process(
        self,
        pid: int,
        name: str = "worker",
        state: str = "S",
        utime: int = 0,
        stime: int = 0,
        threads: int = 4,
        vsize: int = 100 * MIB,
        rss_pages: int = 1000,
        status_kb: dict[str, int] | None = None,
        io: dict[str, int] | None = None,
        fds: int = 3,
        cmdline: str = "",
    ) -> Path:
        # fields after comm: state ppid pgrp session tty tpgid flags minflt cminflt
        # majflt cmajflt utime stime cutime cstime priority nice threads itreal start vsize rss
        after = [state, "1", pid, pid, "0", "-1", "0", "0", "0", "0", "0", utime, stime]
        after += ["0", "0", "20", "0", threads, "0", "100", vsize, rss_pages]
        self.write(f"{pid}/stat", f"{pid} ({name}) " + " ".join(str(v) for v in after) + "\n")

        status = {"VmPeak": 200 * 1024, "RssAnon": 3000, "RssFile": 1000, "RssShmem": 0}
        status.update(status_kb or {})
        lines = [f"Name:\t{name}", f"State:\t{state}"]
        lines += [f"{key}:\t{value} kB" for key, value in status.items()]
        self.write(f"{pid}/status", "\n".join(lines) + "\n")

        if io is not None:
            self.write(f"{pid}/io", "".join(f"{k}: {v}\n" for k, v in io.items()))
        fd_dir = self.root / str(pid) / "fd"
        fd_dir.mkdir(parents=True, exist_ok=True)
        for i in range(fds):
            (fd_dir / str(i)).touch()
        self.write(f"{pid}/cmdline", "\0".join((cmdline or name).split()) + "\0")
        return self.root / str(pid)

    def populate(self) -> "FakeProc":
        """Write every file the system collectors need, with quiet defaults."""
        self.stat()
        self.loadavg()
        self.meminfo()
        self.vmstat()
        self.diskstats({"sda": (100, 0, 2000, 50, 200, 0, 4000, 80, 0, 100, 130)})
        self.net_dev({"eth0": (10_000, 100, 0, 0, 5_000, 50, 0, 0)})
        self.tcp([(443, "01"), (80, "01"), (22, "0A")])
        self.snmp(5)
        self.pressure("cpu", some=(1.0, 0.5, 0.1, 1000))
        self.pressure("memory", some=(2.0, 1.0, 0.5, 2000), full=(0.5, 0.2, 0.1, 500))
        self.pressure("io", some=(3.0, 2.0, 1.0, 3000), full=(1.0, 0.5, 0.2, 900))
        return self


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProc:
    """A populated fake /proc tree."""
    return FakeProc(tmp_path).populate()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_process(
    pid: int = 4242,
    name: str = "worker",
    rss_bytes: int = 100 * MIB,
    cpu_percent: float = 12.5,
    num_fds: int = 8,
) -> ProcessMetrics:
    return ProcessMetrics(
        pid=pid,
        name=name,
        state=ProcessState.SLEEPING,
        cpu_percent=cpu_percent,
        utime=100,
        stime=20,
        num_threads=4,
        vsize_bytes=400 * MIB,
        rss_bytes=rss_bytes,
        rss_anon_bytes=rss_bytes // 2,
        rss_file_bytes=rss_bytes // 4,
        io_read_bytes_per_sec=2048.0,
        io_write_bytes_per_sec=512.0,
        num_fds=num_fds,
    )


def make_sample(
    cpu: float = 10.0,
    iowait: float = 1.0,
    mem_used: int = 2 * GIB,
    mem_total: int = 8 * GIB,
    swap_used: int = 0,
    cgroup: tuple[int, int] | None = None,
    disks: list[DiskDeviceMetrics] | None = None,
    interfaces: list[InterfaceMetrics] | None = None,
    psi: PsiMetrics | None = None,
    process: ProcessMetrics | None = None,
    timestamp: datetime | None = None,
    ctx_delta: int | None = 100,
) -> MetricSample:
    """Build a MetricSample with plausible defaults.

    cgroup is (limit, current) in bytes.
    """
    disks = [DiskDeviceMetrics("sda", read_bytes_per_sec=1024.0)] if disks is None else disks
    interfaces = [InterfaceMetrics("eth0")] if interfaces is None else interfaces
    return MetricSample(
        timestamp=timestamp or datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=timezone.utc),
        cpu=CpuMetrics(
            utilization=cpu,
            user_percent=cpu * 0.7,
            system_percent=cpu * 0.2,
            iowait_percent=iowait,
            load_avg=(0.5, 0.25, 0.1),
            context_switches_delta=ctx_delta,
        ),
        memory=MemoryMetrics(
            total=mem_total,
            used=mem_used,
            free=mem_total - mem_used,
            cached=GIB,
            dirty=4 * MIB,
            swap_total=GIB if swap_used else 0,
            swap_used=swap_used,
            cgroup_limit=cgroup[0] if cgroup else None,
            cgroup_current=cgroup[1] if cgroup else None,
        ),
        disk=DiskMetrics(
            disks=disks,
            total_read_bytes_per_sec=sum(d.read_bytes_per_sec for d in disks),
            total_write_bytes_per_sec=sum(d.write_bytes_per_sec for d in disks),
            total_in_flight=sum(d.in_flight for d in disks),
        ),
        network=NetworkMetrics(
            interfaces=interfaces,
            total_rx_bytes_per_sec=sum(i.rx_bytes_per_sec for i in interfaces),
            total_tx_bytes_per_sec=sum(i.tx_bytes_per_sec for i in interfaces),
        ),
        psi=psi,
        process=process,
    )
