"""Service runner: wires the feed backend, orchestrator and publisher together."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TextIO

from .backends.ics_backend import IcsFeedBackend
from .config_loader import Config
from .http_client import close_all_clients
from .publisher import ResultPublisher
from .refresh_orchestrator import RefreshOrchestrator

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on some platforms/threads
            logger.debug("Cannot install handler for %s", sig)


async def serve(config: Config, once: bool = False, stream: TextIO | None = None) -> int:
    """Run the refresh pipeline and write each payload as one JSON line.

    Args:
        config: Loaded configuration
        once: Perform one refresh and return
        stream: Output stream (stdout when None)

    Returns:
        Process exit code
    """
    out = stream or sys.stdout

    def write_payload(payload: str) -> None:
        out.write(payload + "\n")
        out.flush()

    publisher = ResultPublisher()
    publisher.add_listener(write_payload)

    backend = IcsFeedBackend.from_config(config)
    orchestrator = RefreshOrchestrator(backend, config, on_result_ready=publisher.publish)

    if not config.sources:
        logger.warning("No calendar sources configured")

    try:
        if once:
            await orchestrator.refresh()
            return 0

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        await orchestrator.start()
        logger.info(
            "chronome running with %d sources (refresh every %ss)",
            len(config.sources),
            config.refresh_interval_seconds,
        )
        await stop.wait()
        logger.info("Shutting down")
        return 0
    finally:
        await orchestrator.shutdown()
        await close_all_clients()
