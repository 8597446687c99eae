# collectors/bandwidth.py
"""
Per-device bandwidth attribution from the connection-tracking table.

Two views are kept for each tick:
- aggregate tx/rx bytes per LAN device (internet + local traffic)
- device-to-device bytes per ordered pair of LAN devices

NAT-translated sessions are billed to the LAN device that opened them:
the reply tuple of such a session is addressed to one of the gateway's
WAN-facing addresses on the device's original source port.

Counters are the cumulative per-flow byte counts the kernel reports for
the flows present in the table at scan time; rates are left to the
scraper.
"""

import ipaddress
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from prometheus_client.core import Metric

from collectors.conntrack import ConnectionRecord, FlowTuple, parse_table
from identity.directory import IdentityDirectory, IdentityRecord
from publish.exposition import PREFIX, new_family

logger = logging.getLogger(__name__)

DEFAULT_LAN_NETWORKS = ("192.168.1.0/24",)


@dataclass
class BandwidthCounters:
    """Tick-scoped counter maps handed from attribution to rendering."""
    tx: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    rx: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    # (sender, receiver) -> bytes sent
    local_tx: Dict[Tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    # (receiver, sender) -> bytes received
    local_rx: Dict[Tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))

    def __bool__(self) -> bool:
        return bool(self.tx or self.rx)


class BandwidthCollector:
    """Reads the tracking table, classifies each record and aggregates counters."""

    def __init__(
        self,
        directory: IdentityDirectory,
        conntrack_path: str = "/proc/net/nf_conntrack",
        lan_networks: Sequence[str] = DEFAULT_LAN_NETWORKS,
        wan_addresses: Optional[Iterable[str]] = None,
    ):
        self.directory = directory
        self.conntrack_path = Path(conntrack_path)
        self.lan_networks = [ipaddress.ip_network(n, strict=False) for n in lan_networks]
        if wan_addresses is None:
            wan_addresses = directory.wan_addresses
        self.wan_addresses: Set[str] = {str(ipaddress.ip_address(a)) for a in wan_addresses}

    # -------------------------------------------------
    # Classification
    # -------------------------------------------------
    def is_local(self, ip: str) -> bool:
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        if addr.version != 4 or addr.is_loopback or addr.is_unspecified:
            return False
        return any(addr in net for net in self.lan_networks)

    def is_nat_return(self, record: ConnectionRecord) -> bool:
        original, reply = record.original, record.reply
        if reply is None or original.sport is None:
            return False
        return (
            self.is_local(original.src)
            and reply.dst in self.wan_addresses
            and original.sport == reply.dport
        )

    def _credit(self, counters: BandwidthCounters, flow: FlowTuple):
        src_local = self.is_local(flow.src)
        dst_local = self.is_local(flow.dst)

        if src_local:
            counters.tx[flow.src] += flow.bytes
            if dst_local:
                counters.local_tx[(flow.src, flow.dst)] += flow.bytes
        if dst_local:
            counters.rx[flow.dst] += flow.bytes
            if src_local:
                counters.local_rx[(flow.dst, flow.src)] += flow.bytes

    def attribute(self, records: Iterable[ConnectionRecord]) -> BandwidthCounters:
        counters = BandwidthCounters()
        nat_sessions = 0

        for record in records:
            if self.is_nat_return(record):
                device = record.original.src
                counters.tx[device] += record.original.bytes
                counters.rx[device] += record.reply.bytes
                nat_sessions += 1
                continue

            self._credit(counters, record.original)
            if record.reply is not None:
                self._credit(counters, record.reply)

        logger.debug(
            f"Attributed {nat_sessions} NAT sessions, {len(counters.tx)} tx devices, "
            f"{len(counters.local_tx)} local pairs"
        )
        return counters

    # -------------------------------------------------
    # Collection / rendering
    # -------------------------------------------------
    def read_table(self) -> List[str]:
        try:
            with open(self.conntrack_path, "r", encoding="utf-8", errors="ignore") as f:
                return f.readlines()
        except OSError as e:
            logger.warning(f"Connection tracking table unavailable: {e}")
            return []

    def collect(self) -> BandwidthCounters:
        lines = self.read_table()
        if not lines:
            return BandwidthCounters()
        return self.attribute(parse_table(lines))

    def render(self, counters: BandwidthCounters) -> List[Metric]:
        if not counters:
            return []
        lookup = self.directory.lookup
        identity = list(IdentityRecord.LABEL_NAMES)

        tx = new_family(f"{PREFIX}_tx_bytes_total", identity)
        for ip in sorted(counters.tx):
            tx.add_metric(lookup(ip).label_values(), counters.tx[ip])
        rx = new_family(f"{PREFIX}_rx_bytes_total", identity)
        for ip in sorted(counters.rx):
            rx.add_metric(lookup(ip).label_values(), counters.rx[ip])
        families = [tx, rx]

        if counters.local_tx:
            local_tx = new_family(f"{PREFIX}_local_tx_bytes_total", identity + ["dst_ip", "dst_hostname"])
            for src, dst in sorted(counters.local_tx):
                peer = lookup(dst)
                local_tx.add_metric(
                    lookup(src).label_values() + [peer.ip, peer.hostname],
                    counters.local_tx[(src, dst)],
                )
            families.append(local_tx)
        if counters.local_rx:
            local_rx = new_family(f"{PREFIX}_local_rx_bytes_total", identity + ["src_ip", "src_hostname"])
            for dst, src in sorted(counters.local_rx):
                peer = lookup(src)
                local_rx.add_metric(
                    lookup(dst).label_values() + [peer.ip, peer.hostname],
                    counters.local_rx[(dst, src)],
                )
            families.append(local_rx)

        return families
