# identity/directory.py
"""
Address to device identity directory.

Built every tick from the static DHCP leases ("config host" sections) of
the UCI dhcp file. A host's tag list carries "user category os"
positionally, e.g.:

    config host
        option name 'swathi-dell'
        option ip '192.168.1.21'
        option tag 'swathi work windows'

Infrastructure addresses (the gateway itself and its WAN-facing NAT
endpoints) come from configuration and always take precedence.
"""

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

DEFAULT_INFRASTRUCTURE: Dict[str, Dict[str, str]] = {
    "192.168.1.1": {
        "hostname": "gateway",
        "user": "infra",
        "category": "network",
        "os": "openwrt",
        "role": "lan",
    },
    "192.168.29.2": {
        "hostname": "gateway-wan",
        "user": "infra",
        "category": "network",
        "os": "openwrt",
        "role": "wan",
    },
    "192.168.0.2": {
        "hostname": "gateway-wan2",
        "user": "infra",
        "category": "network",
        "os": "openwrt",
        "role": "wan",
    },
}


@dataclass(frozen=True)
class IdentityRecord:
    ip: str
    hostname: str = UNKNOWN
    user: str = UNKNOWN
    category: str = UNKNOWN
    os: str = UNKNOWN

    LABEL_NAMES = ("ip", "hostname", "user", "cat", "os")

    def label_values(self) -> List[str]:
        return [self.ip, self.hostname, self.user, self.category, self.os]

    def labels(self) -> Dict[str, str]:
        return dict(zip(self.LABEL_NAMES, self.label_values()))

    @classmethod
    def from_tags(cls, ip: str, hostname: Optional[str], tags: List[str]) -> "IdentityRecord":
        user, category, os_name = (tags + [UNKNOWN] * 3)[:3]
        return cls(
            ip=ip,
            hostname=hostname or UNKNOWN,
            user=user,
            category=category,
            os=os_name,
        )


def iter_uci_hosts(text: str) -> Iterator[Tuple[str, Optional[str], List[str]]]:
    """Yield (ip, name, tags) for every "config host" section with an ip."""
    section: Optional[dict] = None

    for lineno, line in enumerate(text.splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            words = shlex.split(stripped, comments=True)
        except ValueError as e:
            logger.debug(f"Unparseable dhcp line {lineno}: {e}")
            continue
        if not words:
            continue

        keyword = words[0]
        if keyword == "config":
            if section is not None and section.get("ip"):
                yield section["ip"], section.get("name"), section["tags"]
            section = {"tags": []} if len(words) > 1 and words[1] == "host" else None
        elif section is None or len(words) < 3:
            continue
        elif keyword == "option":
            if words[1] == "tag":
                section["tags"] = words[2].split()
            else:
                section[words[1]] = words[2]
        elif keyword == "list" and words[1] == "tag":
            section["tags"].extend(words[2].split())

    if section is not None and section.get("ip"):
        yield section["ip"], section.get("name"), section["tags"]


class IdentityDirectory:
    """ip -> IdentityRecord map, rebuilt in full by build()."""

    def __init__(
        self,
        dhcp_path: str = "/etc/config/dhcp",
        infrastructure: Optional[Dict[str, Dict[str, str]]] = None,
    ):
        self.dhcp_path = Path(dhcp_path)
        if infrastructure is None:
            infrastructure = DEFAULT_INFRASTRUCTURE
        self.infrastructure: Dict[str, IdentityRecord] = {}
        self.wan_addresses: Set[str] = set()
        for ip, info in infrastructure.items():
            self.infrastructure[ip] = IdentityRecord(
                ip=ip,
                hostname=info.get("hostname", UNKNOWN),
                user=info.get("user", UNKNOWN),
                category=info.get("category", UNKNOWN),
                os=info.get("os", UNKNOWN),
            )
            if info.get("role") == "wan":
                self.wan_addresses.add(ip)
        self.records: Dict[str, IdentityRecord] = {}

    def build(self) -> Dict[str, IdentityRecord]:
        try:
            text = self.dhcp_path.read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.warning(f"Reservation directory unavailable: {e}")
            text = ""

        records: Dict[str, IdentityRecord] = {}
        for ip, name, tags in iter_uci_hosts(text):
            # Duplicate ips: the later section wins
            records[ip] = IdentityRecord.from_tags(ip, name, tags)
        self.records = records
        logger.debug(f"Identity directory built with {len(records)} reservations")
        return records

    def lookup(self, ip: str) -> IdentityRecord:
        if ip in self.infrastructure:
            return self.infrastructure[ip]
        record = self.records.get(ip)
        if record is None:
            return IdentityRecord(ip=ip)
        return record
