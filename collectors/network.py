# collectors/network.py
"""Per-interface network I/O counters"""

import logging
from dataclasses import dataclass
from typing import List

try:
    import psutil
except ImportError:
    raise ImportError("psutil not installed. Install via: pip install psutil")

from prometheus_client.core import Metric

from publish.exposition import PREFIX, new_family

logger = logging.getLogger(__name__)

# sample name suffix -> psutil counter field
NETWORK_COUNTERS = (
    ("received_bytes_total", "bytes_recv"),
    ("transmitted_bytes_total", "bytes_sent"),
    ("packets_received_total", "packets_recv"),
    ("packets_transmitted_total", "packets_sent"),
    ("errors_on_received_total", "errin"),
    ("errors_on_transmitted_total", "errout"),
)


@dataclass(frozen=True)
class InterfaceCounters:
    """Cumulative counters of one interface since it came up."""
    interface: str
    bytes_recv: int = 0
    bytes_sent: int = 0
    packets_recv: int = 0
    packets_sent: int = 0
    errin: int = 0
    errout: int = 0


class NetworkCollector:
    """Collects raw per-interface I/O counters (no deltas)"""

    def collect(self) -> List[InterfaceCounters]:
        try:
            per_nic = psutil.net_io_counters(pernic=True)
        except (OSError, psutil.Error) as e:
            logger.warning(f"Interface counters unavailable: {e}")
            return []

        samples = []
        for interface in sorted(per_nic):
            counters = per_nic[interface]
            values = {field: int(getattr(counters, field, 0)) for _, field in NETWORK_COUNTERS}
            samples.append(InterfaceCounters(interface=interface, **values))
        return samples

    def render(self, samples: List[InterfaceCounters]) -> List[Metric]:
        if not samples:
            return []
        families = []
        for suffix, field in NETWORK_COUNTERS:
            family = new_family(f"{PREFIX}_network_{suffix}", ["interface"])
            for sample in samples:
                family.add_metric([sample.interface], getattr(sample, field))
            families.append(family)
        return families
