# collectors/memory.py
"""Memory and swap metrics collection"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

try:
    import psutil
except ImportError:
    raise ImportError("psutil not installed. Install via: pip install psutil")

from prometheus_client.core import Metric

from publish.exposition import PREFIX, new_family

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemorySample:
    total: int
    free: int
    available: int
    buffers: int
    cached: int

    @property
    def used(self) -> int:
        # Inconsistent kernel figures can push this below zero
        return max(0, self.total - self.free - self.buffers - self.cached)


@dataclass(frozen=True)
class SwapSample:
    total: int
    free: int
    used: int


class MemoryCollector:
    """Collects memory figures from /proc/meminfo"""

    def __init__(self, procfs: str = "/proc"):
        self.path = Path(procfs) / "meminfo"

    def collect(self) -> Optional[MemorySample]:
        try:
            text = self.path.read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.warning(f"Memory source unavailable: {e}")
            return None

        fields = parse_meminfo(text)
        if "MemTotal" not in fields or "MemFree" not in fields:
            logger.warning(f"MemTotal/MemFree missing from {self.path}")
            return None

        free = fields["MemFree"]
        return MemorySample(
            total=fields["MemTotal"],
            free=free,
            # Older kernels have no MemAvailable
            available=fields.get("MemAvailable", free),
            buffers=fields.get("Buffers", 0),
            cached=fields.get("Cached", 0),
        )

    def render(self, sample: Optional[MemorySample]) -> List[Metric]:
        if sample is None:
            return []
        return _gauges("memory", [
            ("total", sample.total),
            ("free", sample.free),
            ("available", sample.available),
            ("used", sample.used),
            ("buffers", sample.buffers),
            ("cached", sample.cached),
        ])


class SwapCollector:
    """Collects swap totals through psutil"""

    def collect(self) -> Optional[SwapSample]:
        try:
            swap = psutil.swap_memory()
        except (OSError, psutil.Error) as e:
            logger.warning(f"Swap figures unavailable: {e}")
            return None
        return SwapSample(total=int(swap.total), free=int(swap.free), used=int(swap.used))

    def render(self, sample: Optional[SwapSample]) -> List[Metric]:
        if sample is None:
            return []
        return _gauges("swap", [
            ("total", sample.total),
            ("free", sample.free),
            ("used", sample.used),
        ])


def _gauges(subsystem: str, values) -> List[Metric]:
    families = []
    for name, value in values:
        family = new_family(f"{PREFIX}_{subsystem}_{name}_bytes")
        family.add_metric([], value)
        families.append(family)
    return families


def parse_meminfo(text: str) -> Dict[str, int]:
    """Map meminfo labels to byte values; lines that do not parse are skipped."""
    fields: Dict[str, int] = {}
    for line in text.splitlines():
        label, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts:
            continue
        try:
            value = int(parts[0])
        except ValueError:
            continue
        if len(parts) > 1 and parts[1].lower() == "kb":
            value *= 1024
        fields[label.strip()] = value
    return fields
