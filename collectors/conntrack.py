# collectors/conntrack.py
"""
Parser for connection-tracking table lines (/proc/net/nf_conntrack or
`conntrack -L` output).

A line lists the original direction and then the reply direction, each as
`src= dst= sport= dport= packets= bytes=` tokens, with no delimiter
between the two. The first `bytes=` token is taken as the end of the
original direction:

    ipv4 2 tcp 6 431999 ESTABLISHED src=192.168.1.21 dst=93.184.216.34
    sport=40000 dport=443 packets=10 bytes=1000 src=93.184.216.34
    dst=192.168.29.2 sport=443 dport=40000 packets=12 bytes=2000 [ASSURED]
    mark=0 use=2
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)


class ParseAnomaly(ValueError):
    """A tracking-table line that cannot be split into directional tuples."""


@dataclass(frozen=True)
class FlowTuple:
    src: str
    dst: str
    sport: Optional[int]
    dport: Optional[int]
    bytes: int


@dataclass(frozen=True)
class ConnectionRecord:
    original: FlowTuple
    reply: Optional[FlowTuple] = None

    @property
    def total_bytes(self) -> int:
        return self.original.bytes + (self.reply.bytes if self.reply else 0)


def _tuple_from_fields(fields: Dict[str, str]) -> FlowTuple:
    try:
        src = str(ipaddress.ip_address(fields["src"]))
        dst = str(ipaddress.ip_address(fields["dst"]))
        sport = int(fields["sport"]) if "sport" in fields else None
        dport = int(fields["dport"]) if "dport" in fields else None
        nbytes = int(fields["bytes"])
    except KeyError as e:
        raise ParseAnomaly(f"missing {e.args[0]}=") from e
    except ValueError as e:
        raise ParseAnomaly(str(e)) from e
    if nbytes < 0:
        raise ParseAnomaly(f"negative byte count {nbytes}")
    return FlowTuple(src=src, dst=dst, sport=sport, dport=dport, bytes=nbytes)


def split_directions(line: str) -> ConnectionRecord:
    """
    Split one table line into its original and (optional) reply tuple.

    Tokens up to and including the first `bytes=` belong to the original
    direction. The reply tuple is only produced when the remaining tokens
    carry their own `bytes=`. Raises ParseAnomaly for unusable lines.
    """
    directions: List[Dict[str, str]] = [{}]
    for token in line.split():
        key, sep, value = token.partition("=")
        if not sep:
            continue
        current = directions[-1]
        # Only the first occurrence of a key counts within a direction
        current.setdefault(key, value)
        if key == "bytes":
            if len(directions) == 2:
                break
            directions.append({})

    if "bytes" not in directions[0]:
        raise ParseAnomaly("no bytes= field (is nf_conntrack_acct enabled?)")

    original = _tuple_from_fields(directions[0])
    reply = None
    if len(directions) == 2 and "bytes" in directions[1]:
        reply = _tuple_from_fields(directions[1])
    return ConnectionRecord(original=original, reply=reply)


def parse_table(lines: Iterable[str]) -> Iterator[ConnectionRecord]:
    """Parse every line, skipping the ones that do not parse."""
    skipped = 0
    for line in lines:
        if not line.strip():
            continue
        try:
            yield split_directions(line)
        except ParseAnomaly as e:
            skipped += 1
            logger.debug(f"Skipping conntrack line: {e}")
    if skipped:
        logger.debug(f"Skipped {skipped} unparseable conntrack lines")
