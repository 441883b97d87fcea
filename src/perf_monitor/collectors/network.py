"""Per-interface network rates and TCP connection counts."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from perf_monitor.procfs import (
    DEFAULT_PROC_ROOT,
    parse_int,
    rate,
    read_optional,
    read_required,
    saturating_sub,
)

TCP_ESTABLISHED = "01"
HTTPS_PORT = 443


@dataclass(frozen=True)
class _InterfaceCounters:
    rx_bytes: int
    rx_packets: int
    rx_errors: int
    rx_drops: int
    tx_bytes: int
    tx_packets: int
    tx_errors: int
    tx_drops: int


@dataclass(frozen=True)
class InterfaceMetrics:
    """Rates for one interface; error and drop counts are cumulative."""

    interface: str
    rx_bytes_per_sec: float = 0.0
    tx_bytes_per_sec: float = 0.0
    rx_packets_per_sec: float = 0.0
    tx_packets_per_sec: float = 0.0
    rx_errors: int = 0
    tx_errors: int = 0
    rx_drops: int = 0
    tx_drops: int = 0
    rx_bytes: int = 0
    tx_bytes: int = 0


@dataclass(frozen=True)
class TcpStats:
    established: int = 0
    https_connections: int = 0
    retransmits: int = 0
    retransmits_delta: int | None = None


@dataclass(frozen=True)
class NetworkMetrics:
    interfaces: list[InterfaceMetrics] = field(default_factory=list)
    total_rx_bytes_per_sec: float = 0.0
    total_tx_bytes_per_sec: float = 0.0
    tcp: TcpStats = field(default_factory=TcpStats)

    def get(self, interface: str) -> InterfaceMetrics | None:
        for iface in self.interfaces:
            if iface.interface == interface:
                return iface
        return None


def parse_net_dev(text: str) -> dict[str, _InterfaceCounters]:
    """Parse /proc/net/dev, skipping the two header lines and loopback."""
    counters: dict[str, _InterfaceCounters] = {}
    for line in text.splitlines()[2:]:
        name, sep, rest = line.partition(":")
        if not sep:
            continue
        name = name.strip()
        values = rest.split()
        if name == "lo" or len(values) < 16:
            continue
        v = [parse_int(x) for x in values]
        counters[name] = _InterfaceCounters(
            rx_bytes=v[0],
            rx_packets=v[1],
            rx_errors=v[2],
            rx_drops=v[3],
            tx_bytes=v[8],
            tx_packets=v[9],
            tx_errors=v[10],
            tx_drops=v[11],
        )
    return counters


def count_tcp_connections(*tables: str) -> tuple[int, int]:
    """Count (established, established-to-port-443) across /proc/net/tcp{,6} texts."""
    established = 0
    https = 0
    for table in tables:
        for line in table.splitlines()[1:]:
            parts = line.split()
            if len(parts) < 4 or parts[3] != TCP_ESTABLISHED:
                continue
            established += 1
            _, _, port_hex = parts[2].rpartition(":")
            try:
                port = int(port_hex, 16)
            except ValueError:
                continue
            if port == HTTPS_PORT:
                https += 1
    return established, https


def parse_retransmits(snmp_text: str) -> int:
    """RetransSegs from the Tcp: header/value line pair in /proc/net/snmp."""
    header: list[str] | None = None
    for line in snmp_text.splitlines():
        if not line.startswith("Tcp:"):
            continue
        if header is None:
            header = line.split()
            continue
        values = line.split()
        if "RetransSegs" in header:
            index = header.index("RetransSegs")
            if index < len(values):
                return parse_int(values[index])
        return 0
    return 0


class NetworkCollector:
    """Interface throughput plus TCP connection and retransmit counters.

    Interfaces follow the same identity rules as disks: rediscovered each
    read, zero rates for newcomers, no entries on the very first read.
    """

    def __init__(
        self,
        proc_root: Path = DEFAULT_PROC_ROOT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.proc_root = Path(proc_root)
        self._clock = clock
        self._prev: dict[str, _InterfaceCounters] = {}
        self._prev_time: float | None = None
        self._prev_retransmits: int | None = None

    def collect(self) -> NetworkMetrics:
        """Raises CollectError if /proc/net/dev is unreadable."""
        net_dir = self.proc_root / "net"
        current = parse_net_dev(read_required(net_dir / "dev"))
        now = self._clock()

        interfaces: list[InterfaceMetrics] = []
        if self._prev_time is not None:
            elapsed = now - self._prev_time
            for name, counters in current.items():
                interfaces.append(self._interface_rates(name, counters, elapsed))

        self._prev = current
        self._prev_time = now

        return NetworkMetrics(
            interfaces=interfaces,
            total_rx_bytes_per_sec=sum(i.rx_bytes_per_sec for i in interfaces),
            total_tx_bytes_per_sec=sum(i.tx_bytes_per_sec for i in interfaces),
            tcp=self._collect_tcp(net_dir),
        )

    def _interface_rates(
        self, name: str, curr: _InterfaceCounters, elapsed: float
    ) -> InterfaceMetrics:
        prev = self._prev.get(name)
        if prev is None:
            prev = curr  # newcomer: zero rates
        return InterfaceMetrics(
            interface=name,
            rx_bytes_per_sec=rate(curr.rx_bytes, prev.rx_bytes, elapsed),
            tx_bytes_per_sec=rate(curr.tx_bytes, prev.tx_bytes, elapsed),
            rx_packets_per_sec=rate(curr.rx_packets, prev.rx_packets, elapsed),
            tx_packets_per_sec=rate(curr.tx_packets, prev.tx_packets, elapsed),
            rx_errors=curr.rx_errors,
            tx_errors=curr.tx_errors,
            rx_drops=curr.rx_drops,
            tx_drops=curr.tx_drops,
            rx_bytes=curr.rx_bytes,
            tx_bytes=curr.tx_bytes,
        )

    def _collect_tcp(self, net_dir: Path) -> TcpStats:
        # tcp6 and snmp are absent on kernels built without IPv6 or in some sandboxes
        established, https = count_tcp_connections(
            read_optional(net_dir / "tcp") or "",
            read_optional(net_dir / "tcp6") or "",
        )
        retransmits = parse_retransmits(read_optional(net_dir / "snmp") or "")
        delta = (
            saturating_sub(retransmits, self._prev_retransmits)
            if self._prev_retransmits is not None
            else None
        )
        self._prev_retransmits = retransmits
        return TcpStats(
            established=established,
            https_connections=https,
            retransmits=retransmits,
            retransmits_delta=delta,
        )
