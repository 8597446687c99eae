# publish/snapshot.py
"""Atomic publication of the per-tick metrics snapshot."""

import logging
import time
from pathlib import Path
from typing import Iterable, Optional

try:
    from prometheus_client import write_to_textfile
    from prometheus_client.core import Metric
except ImportError:
    raise ImportError("prometheus_client not installed. Install via: pip install prometheus-client")

from publish.exposition import PREFIX, build_registry, new_family

logger = logging.getLogger(__name__)


class SnapshotWriter:
    """
    Owns the published snapshot file.

    `write_to_textfile` writes the tick's registry to a temporary file next
    to the snapshot and renames it over the published path, so readers see
    either the old or the new snapshot and never a partial one.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def publish(self, families: Iterable[Metric], generated_at: Optional[float] = None) -> Path:
        generated_at = time.time() if generated_at is None else generated_at

        # Leading family of every snapshot
        stamp = new_family(f"{PREFIX}_snapshot_timestamp_seconds")
        stamp.add_metric([], int(generated_at))
        registry = build_registry([stamp, *families])

        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(self.path), registry)

        logger.debug(f"Published snapshot to {self.path}")
        return self.path

    def read(self) -> Optional[str]:
        """Latest published snapshot, or None if there is none or it is unreadable."""
        try:
            return self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Snapshot unreadable: {e}")
            return None

    def remove(self):
        """Drop the published snapshot and its working directory."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        try:
            self.path.parent.rmdir()
        except OSError:
            # Directory shared with other files or already gone
            pass
        logger.info(f"Removed snapshot {self.path}")
