# collectors/cpu.py
"""
Collects per-core cumulative CPU time counters.
Uses psutil for user-space metric gathering.
"""

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

CPU_MODES = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative seconds spent in each mode by one core since boot."""
    core: int
    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


class CPUCollector:
    """Collects per-core CPU times (raw counters, no in-process rates)."""

    metric_name = f"{PREFIX}_cpu_cpu_seconds_total"

    def collect(self) -> List[CpuTimes]:
        try:
            # percpu=True leaves out the aggregate "cpu" row
            per_cpu = psutil.cpu_times(percpu=True)
        except (OSError, psutil.Error) as e:
            logger.warning(f"CPU times unavailable: {e}")
            return []

        samples = []
        for core_id, times in enumerate(per_cpu):
            # Fields the platform does not report stay at 0
            values = {mode: float(getattr(times, mode, 0.0)) for mode in CPU_MODES}
            samples.append(CpuTimes(core=core_id, **values))
        return samples

    def render(self, samples: List[CpuTimes]) -> List[Metric]:
        if not samples:
            return []
        family = new_family(self.metric_name, ["core", "mode"])
        for sample in samples:
            for mode in CPU_MODES:
                family.add_metric([str(sample.core), mode], getattr(sample, mode))
        return [family]
