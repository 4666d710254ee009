"""
Aggregation worker — consumes review events and maintains dish statistics.

Usage:
    python -m dish_ratings.worker

SIGINT/SIGTERM finish the event in flight, then exit; anything read but not
processed stays pending in the consumer group and is redelivered on restart.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from dish_ratings.bootstrap import build_consumer
from dish_ratings.config import configure_logging, get_settings

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()
    consumer, closers = build_consumer(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, consumer.stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: consumer.stop())

    logger.info(
        "Aggregation worker %s joining group %s on stream %s",
        settings.consumer_name, settings.consumer_group, settings.review_stream,
    )
    try:
        await consumer.run()
    finally:
        for close in reversed(closers):
            try:
                await close()
            except Exception as exc:
                logger.warning("Error during shutdown: %s", exc)
        logger.info("Aggregation worker exited.")


if __name__ == "__main__":
    configure_logging(get_settings())
    asyncio.run(main())
