# dashboard/cli.py

"""
Terminal status view of the published snapshot, using Rich.

Shows the snapshot age, how many samples each metric family carries and a
per-device bandwidth table.
"""

import logging
import time
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

try:
    from rich.console import Console, Group
    from rich.panel import Panel
    from rich.table import Table
    from rich.text import Text
except ImportError as e:
    raise ImportError("Rich not installed. Install via: pip install rich") from e

from publish.exposition import PREFIX, iter_samples

logger = logging.getLogger(__name__)

_BYTE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB")


class MetricDisplay:
    """Formatting helpers for metric values"""

    @staticmethod
    def format_bytes(count: float) -> str:
        """Binary-scaled size of a byte counter; whole bytes stay unscaled."""
        value = float(count)
        unit = 0
        while value >= 1024 and unit < len(_BYTE_UNITS) - 1:
            value /= 1024
            unit += 1
        if unit == 0:
            return f"{int(value)} B"
        return f"{value:.1f} {_BYTE_UNITS[unit]}"

    @staticmethod
    def age_color(age: float, interval: float) -> str:
        if age <= interval * 3:
            return "green"
        elif age <= interval * 10:
            return "bright_yellow"
        return "bright_red"


class SnapshotStatus:
    """Summarises one snapshot text for display"""

    def __init__(self, snapshot: Optional[str], interval: float = 1.0):
        self.snapshot = snapshot
        self.interval = interval
        self.generated_at: Optional[int] = None
        self.family_counts: Dict[str, int] = defaultdict(int)
        self.devices: Dict[str, Dict[str, object]] = {}
        if snapshot is not None:
            self._parse(snapshot)

    def _parse(self, snapshot: str):
        try:
            samples = list(iter_samples(snapshot))
        except ValueError as e:
            logger.warning(f"Snapshot does not parse: {e}")
            return

        for sample in samples:
            name, labels, value = sample.name, sample.labels, sample.value
            if name == f"{PREFIX}_snapshot_timestamp_seconds":
                self.generated_at = int(value)
                continue
            self.family_counts[name] += 1

            if name in (f"{PREFIX}_tx_bytes_total", f"{PREFIX}_rx_bytes_total"):
                ip = labels.get("ip", "?")
                device = self.devices.setdefault(
                    ip,
                    {"hostname": labels.get("hostname", "unknown"), "user": labels.get("user", "unknown"),
                     "tx": 0.0, "rx": 0.0},
                )
                key = "tx" if name.endswith("_tx_bytes_total") else "rx"
                device[key] += value

    # ---------- HEADER ----------

    def _create_header(self, now: float) -> Panel:
        text = Text()
        text.append("Simon gateway telemetry", style="bold bright_cyan")
        if self.snapshot is None:
            text.append(" | no snapshot published (exporter up 0)", style="bold bright_red")
            return Panel(text, style="bright_cyan", padding=(0, 1))

        if self.generated_at is not None:
            age = max(0.0, now - self.generated_at)
            generated = datetime.fromtimestamp(self.generated_at).strftime("%Y-%m-%d %H:%M:%S")
            text.append(f" | generated {generated}", style="dim white")
            text.append(f" ({age:.0f}s ago)", style=MetricDisplay.age_color(age, self.interval))
        return Panel(text, style="bright_cyan", padding=(0, 1))

    # ---------- FAMILIES TABLE ----------

    def _create_families_table(self) -> Table:
        table = Table(title="Metric families", show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Family", style="cyan", ratio=3)
        table.add_column("Samples", style="white", ratio=1, justify="right")
        for name in sorted(self.family_counts):
            table.add_row(name, str(self.family_counts[name]))
        return table

    # ---------- DEVICES TABLE ----------

    def _create_devices_table(self) -> Table:
        table = Table(title="Devices", show_header=True, header_style="bold cyan", expand=True)
        table.add_column("IP", style="cyan", no_wrap=True)
        table.add_column("Hostname")
        table.add_column("User", style="dim white")
        table.add_column("TX", justify="right")
        table.add_column("RX", justify="right")

        rows: List[Tuple[str, Dict[str, object]]] = sorted(
            self.devices.items(), key=lambda item: item[1]["tx"] + item[1]["rx"], reverse=True
        )
        for ip, device in rows:
            table.add_row(
                ip,
                str(device["hostname"]),
                str(device["user"]),
                MetricDisplay.format_bytes(device["tx"]),
                MetricDisplay.format_bytes(device["rx"]),
            )
        return table

    def render(self, now: Optional[float] = None) -> Group:
        now = time.time() if now is None else now
        parts = [self._create_header(now)]
        if self.snapshot is not None:
            parts.append(self._create_families_table())
            parts.append(self._create_devices_table())
        return Group(*parts)


def show_status(snapshot: Optional[str], interval: float = 1.0, console: Optional[Console] = None):
    console = console or Console()
    console.print(SnapshotStatus(snapshot, interval).render())
