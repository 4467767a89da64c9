"""
FilaBridge — PrusaLink to Spoolman filament bridge.

Entry point. By default runs the web API and the printer monitors in one
process. --web-only serves the API without polling printers, --bridge-only
polls printers and reconciles usage without serving HTTP.

    python main.py --port 5000
    uvicorn main:app
"""

import argparse
import logging
import signal
import sys
import threading
import time

from core.app import create_app, prepare_runtime
from core.config import settings

log = logging.getLogger("filabridge.main")

app = create_app()


def run_bridge_only() -> None:
    """Poll printers and reconcile usage with no HTTP server."""
    from core.db import SessionLocal
    from core.registry import registry
    from modules.inventory.locations import sync_locations
    from modules.inventory.spoolman import SpoolmanError
    from modules.pairing.sessions import SWEEP_INTERVAL

    prepare_runtime(registry)
    supervisor = registry.require("MonitorSupervisor")
    supervisor.start()

    stop = threading.Event()

    def signal_handler(sig, frame):
        log.info("Signal received, stopping...")
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    next_sync = 0.0
    next_sweep = time.monotonic() + SWEEP_INTERVAL
    while not stop.is_set():
        now = time.monotonic()
        if now >= next_sync:
            try:
                sync_locations(registry.require("LocationService"), SessionLocal)
            except SpoolmanError as e:
                log.warning(f"Location sync skipped, Spoolman unavailable: {e}")
            next_sync = now + max(30, settings.location_sync_interval)
        if now >= next_sweep:
            registry.require("PairingSessionManager").sweep_expired()
            next_sweep = now + SWEEP_INTERVAL
        # Picks up printers added or edited from another process
        supervisor.sync()
        stop.wait(max(1.0, min(settings.poll_interval, 10.0)))

    supervisor.stop_all()
    log.info("All monitors stopped")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="FilaBridge — PrusaLink to Spoolman bridge")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--web-only", action="store_true", help="Serve the API without polling printers")
    mode.add_argument("--bridge-only", action="store_true", help="Poll printers without serving the API")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.bridge_only:
        run_bridge_only()
        return 0

    import uvicorn

    web_app = create_app(start_monitors=False) if args.web_only else app
    uvicorn.run(web_app, host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
