"""
ecanmesh — Process Entry Point

Usage:
    python -m ecanmesh.main
    python -m ecanmesh.main --config config/default.yaml

Graceful shutdown:
    Handles SIGINT and SIGTERM. Every loop finishes its in-progress tick
    before the process exits.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal

import structlog
from dotenv import load_dotenv

from ecanmesh.config import load_config
from ecanmesh.service import EcanMeshService
from ecanmesh.telemetry.logging import setup_logging

logger = structlog.get_logger("ecanmesh.main")


async def run(config_path: str | None) -> None:
    config = load_config(config_path)
    setup_logging(config.logging, instance_id=config.instance_id)
    log = logger.bind(component="main")

    service = EcanMeshService(config)
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal_received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows has no add_signal_handler
            signal.signal(sig, lambda s, f: _signal_handler())

    await service.start()
    log.info("ecanmesh_running", config_path=config_path)

    await shutdown_event.wait()

    await service.stop()
    log.info("ecanmesh_shutdown_complete")


def main() -> None:
    """CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="ecanmesh attention bank and mesh coordinator")
    parser.add_argument(
        "--config",
        default=os.getenv("ECANMESH_CONFIG_PATH"),
        help="Path to YAML config file (default: ECANMESH_CONFIG_PATH env var)",
    )
    args = parser.parse_args()
    asyncio.run(run(args.config))


if __name__ == "__main__":
    main()
