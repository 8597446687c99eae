# collectors/temperature.py
"""
Temperature collection from sysfs thermal zones and hwmon sensors.

Sensor names are derived from the file path relative to the sysfs root,
e.g. class/thermal/thermal_zone0/temp becomes "class_thermal_thermal_zone0".
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List

from prometheus_client.core import Metric

from publish.exposition import PREFIX, new_family

logger = logging.getLogger(__name__)

SENSOR_PATTERNS = (
    "class/thermal/thermal_zone*/temp",
    "class/hwmon/hwmon*/temp*_input",
    "class/hwmon/hwmon*/device/temp*_input",
)

_SUFFIX_RE = re.compile(r"(_temp|_input)$")


@dataclass(frozen=True)
class TemperatureSample:
    sensor: str
    raw: int

    @property
    def celsius(self) -> float:
        # Millidegree readings are scaled, small readings are already Celsius
        if self.raw > 1000:
            return round(self.raw / 1000, 1)
        return float(self.raw)


class TemperatureCollector:
    """Scans known sensor locations; a failing sensor is skipped, never fatal."""

    metric_name = f"{PREFIX}_temp_celsius"

    def __init__(self, sysfs: str = "/sys"):
        self.root = Path(sysfs)

    def sensor_files(self) -> List[Path]:
        seen = set()
        files = []
        for pattern in SENSOR_PATTERNS:
            for path in sorted(self.root.glob(pattern)):
                if path in seen or not path.is_file():
                    continue
                seen.add(path)
                files.append(path)
        return files

    def sensor_name(self, path: Path) -> str:
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            relative = path
        name = "_".join(part for part in relative.parts if part not in ("/", ""))
        return _SUFFIX_RE.sub("", name)

    def collect(self) -> List[TemperatureSample]:
        samples = []
        for path in self.sensor_files():
            try:
                raw = int(path.read_text(encoding="utf-8").strip())
            except (OSError, ValueError) as e:
                logger.debug(f"Skipping sensor {path}: {e}")
                continue
            if raw <= 0:
                continue
            samples.append(TemperatureSample(sensor=self.sensor_name(path), raw=raw))
        return samples

    def render(self, samples: List[TemperatureSample]) -> List[Metric]:
        if not samples:
            return []
        family = new_family(self.metric_name, ["sensor"])
        for sample in samples:
            family.add_metric([sample.sensor], sample.celsius)
        return [family]
