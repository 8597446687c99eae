# publish/exposition.py
"""
Prometheus text exposition helpers.

Every metric family the agent can emit is declared once here. Collectors
build their families through `new_family`, the snapshot is written from a
per-tick registry, and the exporter body is assembled from the static
declarations, the snapshot samples and the liveness gauges.
"""

import time
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

try:
    from prometheus_client import CollectorRegistry, generate_latest
    from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
    from prometheus_client.parser import text_string_to_metric_families
    from prometheus_client.samples import Sample
except ImportError:
    raise ImportError("prometheus_client not installed. Install via: pip install prometheus-client")

PREFIX = "simon"
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

# (sample name, help, type), in the order they are declared to the scraper
METRIC_FAMILIES: List[Tuple[str, str, str]] = [
    (f"{PREFIX}_snapshot_timestamp_seconds", "Unix time the snapshot was generated", "gauge"),
    (f"{PREFIX}_cpu_cpu_seconds_total", "CPU time in seconds by mode", "counter"),
    (f"{PREFIX}_memory_total_bytes", "Total physical memory in bytes", "gauge"),
    (f"{PREFIX}_memory_free_bytes", "Free physical memory in bytes", "gauge"),
    (f"{PREFIX}_memory_available_bytes", "Available physical memory in bytes", "gauge"),
    (f"{PREFIX}_memory_used_bytes", "Used physical memory in bytes", "gauge"),
    (f"{PREFIX}_memory_buffers_bytes", "Buffer memory in bytes", "gauge"),
    (f"{PREFIX}_memory_cached_bytes", "Cached memory in bytes", "gauge"),
    (f"{PREFIX}_swap_total_bytes", "Total swap memory in bytes", "gauge"),
    (f"{PREFIX}_swap_free_bytes", "Free swap memory in bytes", "gauge"),
    (f"{PREFIX}_swap_used_bytes", "Used swap memory in bytes", "gauge"),
    (f"{PREFIX}_temp_celsius", "Temperature in Celsius", "gauge"),
    (f"{PREFIX}_network_received_bytes_total", "Total bytes received per interface", "counter"),
    (f"{PREFIX}_network_transmitted_bytes_total", "Total bytes transmitted per interface", "counter"),
    (f"{PREFIX}_network_packets_received_total", "Total packets received per interface", "counter"),
    (f"{PREFIX}_network_packets_transmitted_total", "Total packets transmitted per interface", "counter"),
    (f"{PREFIX}_network_errors_on_received_total", "Total receive errors per interface", "counter"),
    (f"{PREFIX}_network_errors_on_transmitted_total", "Total transmit errors per interface", "counter"),
    (f"{PREFIX}_tx_bytes_total", "Total bytes transmitted by device (internet + local)", "counter"),
    (f"{PREFIX}_rx_bytes_total", "Total bytes received by device (internet + local)", "counter"),
    (f"{PREFIX}_local_tx_bytes_total", "Bytes transmitted to specific local destination", "counter"),
    (f"{PREFIX}_local_rx_bytes_total", "Bytes received from specific local source", "counter"),
    (f"{PREFIX}_exporter_up", "Exporter status", "gauge"),
    (f"{PREFIX}_exporter_last_scrape", "Unix time of the last scrape", "gauge"),
]

_FAMILY_INDEX = {name: (help_text, metric_type) for name, help_text, metric_type in METRIC_FAMILIES}


def new_family(name: str, labels: Optional[Sequence[str]] = None) -> Metric:
    """Empty counter or gauge family for one of the declared sample names."""
    help_text, metric_type = _FAMILY_INDEX[name]
    if metric_type == "counter":
        # prometheus_client keeps the family name without `_total`
        return CounterMetricFamily(name, help_text, labels=labels)
    return GaugeMetricFamily(name, help_text, labels=labels)


class FamilyCollector:
    """Registry adapter for families that were already built this tick"""

    def __init__(self, families: Iterable[Metric]):
        self.families = list(families)

    def collect(self) -> Iterator[Metric]:
        return iter(self.families)


def build_registry(families: Iterable[Metric]) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(FamilyCollector(families))
    return registry


def render_families(families: Iterable[Metric]) -> str:
    return generate_latest(build_registry(families)).decode("utf-8")


def strip_comments(text: str) -> str:
    """Sample lines of an exposition text, without HELP/TYPE or other comments."""
    return "".join(
        f"{line}\n" for line in text.splitlines()
        if line.strip() and not line.startswith("#")
    )


def iter_samples(text: str) -> Iterator[Sample]:
    """Parse exposition text back into samples (name, labels, value, ...)."""
    for family in text_string_to_metric_families(text):
        yield from family.samples


def header_block() -> str:
    """Static HELP/TYPE declarations, emitted whether or not data exists."""
    return render_families(new_family(name) for name, _, _ in METRIC_FAMILIES)


def liveness_families(up: bool, now: float) -> List[Metric]:
    up_family = new_family(f"{PREFIX}_exporter_up")
    up_family.add_metric([], 1 if up else 0)
    scrape_family = new_family(f"{PREFIX}_exporter_last_scrape")
    scrape_family.add_metric([], int(now))
    return [up_family, scrape_family]


def render_body(snapshot: Optional[str], now: Optional[float] = None) -> str:
    """
    Build the full exposition body.

    `snapshot` is the published snapshot text, or None when no snapshot
    exists; only the latter reports the exporter as down. The snapshot's
    own comment lines are dropped, the static header declares its families.
    """
    now = time.time() if now is None else now
    parts = [header_block(), "\n"]

    if snapshot is None:
        parts.append("# No metrics available\n")
    else:
        parts.append(strip_comments(snapshot))

    parts.append("\n")
    parts.append(strip_comments(render_families(liveness_families(snapshot is not None, now))))
    return "".join(parts)
