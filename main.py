# main.py
"""
Simon gateway telemetry agent.
Orchestrates the collector (sampling, bandwidth attribution, snapshot
publication) and the Prometheus exporter that serves the snapshot.
"""

import argparse
import asyncio
import copy
import json
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Config
# -------------------------------------------------
DEFAULT_CONFIG = {
    "collector": {
        "interval": 1.0,
        "snapshot_path": "/tmp/simon-metrics/metrics.prom",
        "families": {
            "cpu": True,
            "memory": True,
            "swap": True,
            "temperature": True,
            "network": True,
            "bandwidth": True,
        },
    },
    "sources": {
        "procfs": "/proc",
        "sysfs": "/sys",
        "conntrack": "/proc/net/nf_conntrack",
        "dhcp": "/etc/config/dhcp",
    },
    "network": {
        "lan_networks": ["192.168.1.0/24"],
    },
    "identity": {
        # None keeps the built-in gateway table
        "infrastructure": None,
    },
    "api": {
        "host": "0.0.0.0",
        "port": 9184,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}


def load_config(config_path: Optional[str] = None) -> dict:
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and Path(config_path).exists():
        try:
            with open(config_path) as f:
                user_config = json.load(f)
            for section, values in user_config.items():
                if isinstance(values, dict) and isinstance(config.get(section), dict):
                    config[section].update(values)
                else:
                    config[section] = values
            logger.info(f"Loaded config from {config_path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")

    port = os.environ.get("SIMON_PORT")
    if port:
        try:
            config["api"]["port"] = int(port)
        except ValueError:
            logger.warning(f"Ignoring invalid SIMON_PORT={port!r}")

    return config


# -------------------------------------------------
# Logging
# -------------------------------------------------
def setup_logging(config: dict):
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = config["logging"].get("file")
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(config["logging"].get("level", "INFO")).upper(), logging.INFO),
        format='[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
        handlers=handlers,
        force=True,
    )


# -------------------------------------------------
# Collector
# -------------------------------------------------
class TelemetryCollector:
    """Runs one sampling/attribution/publication cycle per interval."""

    def __init__(self, config: dict):
        from collectors.bandwidth import BandwidthCollector
        from collectors.cpu import CPUCollector
        from collectors.memory import MemoryCollector, SwapCollector
        from collectors.network import NetworkCollector
        from collectors.temperature import TemperatureCollector
        from identity.directory import IdentityDirectory
        from publish.snapshot import SnapshotWriter

        collector_cfg = config["collector"]
        sources = config["sources"]

        self.interval = float(collector_cfg["interval"])
        self.families = collector_cfg["families"]
        self.writer = SnapshotWriter(collector_cfg["snapshot_path"])

        self.cpu = CPUCollector()
        self.memory = MemoryCollector(sources["procfs"])
        self.swap = SwapCollector()
        self.temperature = TemperatureCollector(sources["sysfs"])
        self.network = NetworkCollector()
        self.directory = IdentityDirectory(
            sources["dhcp"],
            infrastructure=config["identity"].get("infrastructure"),
        )
        self.bandwidth = BandwidthCollector(
            self.directory,
            conntrack_path=sources["conntrack"],
            lan_networks=config["network"]["lan_networks"],
        )

        self.running = False
        self._stop = None
        self.ticks = 0
        self.skipped_ticks = 0

    def _family(self, name: str, collect) -> list:
        if not self.families.get(name, True):
            return []
        try:
            return collect()
        except Exception as e:
            logger.error(f"{name} collection failed: {e}", exc_info=True)
            return []

    def collect_families(self) -> list:
        """Metric families of one tick; a failing family is left out."""
        families = []
        families += self._family("cpu", lambda: self.cpu.render(self.cpu.collect()))
        families += self._family("memory", lambda: self.memory.render(self.memory.collect()))
        families += self._family("swap", lambda: self.swap.render(self.swap.collect()))
        families += self._family("temperature", lambda: self.temperature.render(self.temperature.collect()))
        families += self._family("network", lambda: self.network.render(self.network.collect()))
        families += self._family("bandwidth", self._bandwidth_families)
        return families

    def _bandwidth_families(self) -> list:
        self.directory.build()
        counters = self.bandwidth.collect()
        return self.bandwidth.render(counters)

    def tick(self):
        started = time.time()
        families = self.collect_families()
        self.writer.publish(families, generated_at=started)
        self.ticks += 1
        samples = sum(len(f.samples) for f in families)
        logger.debug(f"Tick {self.ticks}: {samples} samples in {time.time() - started:.3f}s")

    async def start(self):
        logger.info(f"Collector started (interval={self.interval}s, snapshot={self.writer.path})")
        self.running = True
        self._stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        try:
            while self.running:
                try:
                    self.tick()
                except OSError as e:
                    logger.error(f"Snapshot publication failed: {e}")

                next_tick += self.interval
                now = loop.time()
                if now > next_tick:
                    # Overrun: drop the missed slots instead of queueing them
                    missed = int((now - next_tick) // self.interval) + 1
                    next_tick += missed * self.interval
                    self.skipped_ticks += missed
                    logger.warning(f"Tick overran interval, skipping {missed} tick(s)")

                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=next_tick - now)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Collector cancelled")
        finally:
            self.running = False
            self.writer.remove()

    async def stop(self):
        self.running = False
        if self._stop is not None:
            self._stop.set()


# -------------------------------------------------
# Commands
# -------------------------------------------------
def run_collector(config: dict, once: bool = False) -> int:
    collector = TelemetryCollector(config)

    if once:
        collector.tick()
        print(collector.writer.path)
        return 0

    async def run():
        def handle_signal(sig, frame):
            logger.info(f"Received signal {sig}, shutting down...")
            asyncio.create_task(collector.stop())

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)
        await collector.start()

    asyncio.run(run())
    logger.info("Collector stopped")
    return 0


def run_server(config: dict) -> int:
    from api.server import TransportBindError, create_api_server

    server = create_api_server(
        config["collector"]["snapshot_path"],
        host=config["api"]["host"],
        port=int(config["api"]["port"]),
    )
    try:
        server.bind()
    except TransportBindError as e:
        logger.error(f"Fatal: {e}")
        return 1

    asyncio.run(server.start())
    logger.info("Exporter stopped")
    return 0


def run_test(config: dict) -> int:
    from publish.exposition import render_body
    from publish.snapshot import SnapshotWriter

    snapshot = SnapshotWriter(config["collector"]["snapshot_path"]).read()
    sys.stdout.write(render_body(snapshot))
    return 0


def run_status(config: dict) -> int:
    from dashboard.cli import show_status
    from publish.snapshot import SnapshotWriter

    snapshot = SnapshotWriter(config["collector"]["snapshot_path"]).read()
    show_status(snapshot, interval=float(config["collector"]["interval"]))
    return 0 if snapshot is not None else 1


# -------------------------------------------------
# Entry point
# -------------------------------------------------
def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simon gateway telemetry agent")
    parser.add_argument("--config", default="config/simon.json")
    parser.add_argument("--log-level", default=None)

    sub = parser.add_subparsers(dest="command", required=True)
    collect = sub.add_parser("collect", help="Run the collector daemon")
    collect.add_argument("--once", action="store_true", help="Publish a single snapshot and exit")
    sub.add_parser("serve", help="Run the Prometheus exporter")
    sub.add_parser("test", help="Print the exporter response body")
    sub.add_parser("status", help="Summarise the published snapshot")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_argparser().parse_args(argv)
    config = load_config(args.config)
    if args.log_level:
        config["logging"]["level"] = args.log_level
    setup_logging(config)

    commands = {
        "collect": lambda: run_collector(config, once=args.once),
        "serve": lambda: run_server(config),
        "test": lambda: run_test(config),
        "status": lambda: run_status(config),
    }
    return commands[args.command]()


if __name__ == "__main__":
    sys.exit(main())
