"""
Task Monitor entry point.

Run: python -m taskmon [--backend URL] [--interval MS] [--headless [--once]]
"""

import argparse
import asyncio
import logging
import os
import signal

import uvicorn

from taskmon import dashboard
from taskmon.client import SchedulerClient
from taskmon.poller import PollScheduler
from taskmon.sink import LogSink

log = logging.getLogger("taskmon")


async def run_headless(backend: str, interval_ms: int, timeout: float, once: bool = False) -> int:
    """Poll without a browser, logging each cycle. Returns a process exit code."""
    async with SchedulerClient(backend, timeout=timeout) as client:
        poller = PollScheduler(client, LogSink(log), interval_ms=interval_ms)
        if once:
            return 0 if await poller.run_cycle() else 1

        stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stopped.set)

        log.info(f"Headless monitor starting | backend={backend} | every {interval_ms}ms")
        poller.start()
        poller.refresh_now()
        await stopped.wait()
        log.info("Shutting down...")
        await poller.shutdown()
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Task scheduler monitor")
    parser.add_argument("--backend", default=dashboard.BACKEND_URL, help="Scheduler API base URL")
    parser.add_argument("--interval", type=int, default=dashboard.REFRESH_MS, help="Poll interval in ms")
    parser.add_argument("--timeout", type=float, default=dashboard.REQUEST_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--host", default=os.getenv("TASKMON_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("TASKMON_PORT", "8090")))
    parser.add_argument("--headless", action="store_true", help="Log to the terminal instead of serving a dashboard")
    parser.add_argument("--once", action="store_true", help="Headless: poll once and exit")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [taskmon] %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.headless or args.once:
        return asyncio.run(run_headless(args.backend, args.interval, args.timeout, once=args.once))

    client = SchedulerClient(args.backend, timeout=args.timeout)
    app = dashboard.create_app(dashboard.Monitor(client, interval_ms=args.interval))
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.debug else "info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
