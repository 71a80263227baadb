import asyncio
import logging
import os
import signal

# Configure root logger so all campaign_sync.* module loggers emit to console
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

from campaign_sync.config import database_dsn_safe, running_in_hosted_env, settings
from campaign_sync.execution.pipeline import build_components
from campaign_sync.execution.scheduler import SyncScheduler
from campaign_sync.services.database import connect_with_retry

logger = logging.getLogger(__name__)


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    if exc is not None:
        logger.error("Unhandled task error: %s", context.get("message"), exc_info=exc)
    else:
        logger.error("Unhandled task error: %s", context.get("message"))


async def run() -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    logger.info("Database DSN: %s", database_dsn_safe())
    if running_in_hosted_env() and settings.database_url.startswith("sqlite"):
        logger.warning(
            "DATABASE_PRIVATE_URL/DATABASE_URL not set to Postgres in hosted env. "
            "Falling back to SQLite; ingested state will NOT persist across deploys."
        )

    components = build_components(settings)
    await connect_with_retry(components.session_factory)

    scheduler = SyncScheduler(components)
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_args: loop.call_soon_threadsafe(stop_event.set))

    await scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        await scheduler.stop()
        await components.close()
        logger.info("Campaign sync stopped")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
