"""
Delivery worker for NoteRelay.

Runs the claim scheduler until SIGINT/SIGTERM. Start any number of
these against the same database:

    python -m noterelay.worker
"""
import asyncio
import signal

import httpx
from prometheus_client import start_http_server

from noterelay.config import settings
from noterelay.database import AsyncSessionLocal, engine
from noterelay.logging_config import configure_logging, get_logger
from noterelay.sentry_config import configure_sentry
from noterelay.services.delivery_service import DeliveryExecutor
from noterelay.services.retry_policy import RetryPolicy
from noterelay.services.scheduler import ClaimScheduler


def install_signal_handlers(stop: asyncio.Event) -> None:
    """Set the stop event on SIGINT/SIGTERM so the loop exits after the current delivery."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


async def main(stop: asyncio.Event | None = None):
    """Run the worker loop."""
    configure_logging()
    configure_sentry()
    log = get_logger(component="worker")

    if settings.WORKER_METRICS_PORT:
        start_http_server(settings.WORKER_METRICS_PORT)
        log.info("metrics_server_started", port=settings.WORKER_METRICS_PORT)

    stop = stop or asyncio.Event()
    install_signal_handlers(stop)

    policy = RetryPolicy.from_settings()
    log.info(
        "worker_configured",
        max_retries=policy.max_retries,
        backoff_schedule=list(policy.backoff_schedule),
        lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
    )

    async with httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS) as client:
        scheduler = ClaimScheduler(AsyncSessionLocal, DeliveryExecutor(client, policy))
        try:
            await scheduler.run(stop)
        finally:
            await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
