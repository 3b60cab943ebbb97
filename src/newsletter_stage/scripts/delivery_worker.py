"""Run newsletter delivery workers outside the API process.

Usage:
    python -m newsletter_stage.scripts.delivery_worker [--concurrency N] [--once]
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from newsletter_stage.core.logging import configure_logging
from newsletter_stage.core.settings import settings
from newsletter_stage.db.session import SessionLocal
from newsletter_stage.services.delivery_queue import DeliveryQueue
from newsletter_stage.services.delivery_worker import (
    DeliveryWorker,
    ExecutionOutcome,
    WorkerConfig,
    run_worker_until_stopped,
)
from newsletter_stage.services.email_client import get_email_client

logger = logging.getLogger("newsletter_stage.scripts.delivery_worker")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deliver queued newsletter emails.")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.delivery_worker_concurrency,
        help="number of workers draining the queue concurrently",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="deliver every task that is currently due, then exit",
    )
    return parser.parse_args(argv)


async def drain_once() -> dict[ExecutionOutcome, int]:
    """Drain the queue with a single worker and tally the outcomes."""
    client = get_email_client()
    worker = DeliveryWorker(DeliveryQueue(SessionLocal), client, WorkerConfig.from_settings())
    try:
        outcomes = await worker.drain()
    finally:
        await client.close()

    tally: dict[ExecutionOutcome, int] = {}
    for outcome in outcomes:
        tally[outcome] = tally.get(outcome, 0) + 1
    return tally


async def run_forever(concurrency: int) -> None:
    client = get_email_client()
    try:
        await run_worker_until_stopped(
            SessionLocal,
            client,
            WorkerConfig.from_settings(),
            concurrency=concurrency,
        )
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(settings.log_level)

    if args.once:
        tally = asyncio.run(drain_once())
        summary = ", ".join(f"{outcome.value}={count}" for outcome, count in tally.items())
        logger.info("Queue drained: %s", summary or "nothing to deliver")
        return

    try:
        asyncio.run(run_forever(args.concurrency))
    except KeyboardInterrupt:
        logger.info("Delivery workers interrupted, exiting")


if __name__ == "__main__":
    main()
