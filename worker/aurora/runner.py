#!/usr/bin/env python3
"""
runner.py -- Process entrypoint for the Aurora Alert worker.

Builds the evaluation engine from ``Settings``, starts the ``Scheduler`` and
blocks until SIGINT/SIGTERM, then stops the scheduler. Shutdown waits for an
in-flight run, which is bounded by the feed and geocoder HTTP timeouts; no
transaction spans the feed fetch and the database writes.

Environment Variables (see ``config.Settings``):
    APP_ENV                       - "local" skips SSM resolution (default)
    DATABASE_URL                  - PostgreSQL DSN (required)
    NOTIFICATION_QUEUE_URL        - SQS queue for notifications; empty logs them
    AWS_REGION                    - AWS region (default: "us-east-1")
    FEED_URL                      - Aurora feed document URL
    EVALUATION_INTERVAL_SECONDS   - Alert check period (default: 300)
    PRUNE_INTERVAL_SECONDS        - History cleanup period (default: 3600)
    ENABLE_GEOCODING              - Resolve place names (default: true)
    LOG_LEVEL                     - Logging level (default: "INFO")

Usage:
    python -m worker.aurora.runner
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any

import boto3

from worker.aurora.config import Settings, load_settings
from worker.aurora.dispatcher import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    SqsNotificationDispatcher,
)
from worker.aurora.geocoding import create_place_name_resolver
from worker.aurora.logic.cycle import EvaluationCycle
from worker.aurora.reader import create_grid_source
from worker.aurora.repo import PostgresAlertRepository, PostgresHistoryStore
from worker.aurora.scheduler import Scheduler

logger = logging.getLogger("aurora_runner")


def _create_dispatcher(settings: Settings) -> NotificationDispatcher:
    if not settings.notification_queue_url:
        logger.warning(
            "NOTIFICATION_QUEUE_URL is not set; notifications will only be logged"
        )
        return LoggingNotificationDispatcher()

    sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return SqsNotificationDispatcher(
        sqs_client=sqs_client,
        queue_url=settings.notification_queue_url,
    )


def create_scheduler(settings: Settings) -> Scheduler:
    """Wire every component from settings into a ready-to-start Scheduler."""
    conninfo = settings.database_url.get_secret_value()

    repo = PostgresAlertRepository(conninfo)
    history = PostgresHistoryStore(conninfo)
    logger.info("  Repository: PostgreSQL @ %s", conninfo.split("@")[-1])

    source = create_grid_source(
        url=settings.feed_url,
        samples_field=settings.feed_samples_field,
        timeout_seconds=settings.feed_timeout_seconds,
    )
    logger.info("  Grid source: %s", settings.feed_url)

    resolver = None
    if settings.enable_geocoding:
        resolver = create_place_name_resolver(
            url=settings.geocoder_url,
            user_agent=settings.geocoder_user_agent,
            timeout_seconds=settings.geocoder_timeout_seconds,
        )
        logger.info("  Geocoder: %s", settings.geocoder_url)

    cycle = EvaluationCycle(
        source=source,
        repo=repo,
        history=history,
        dispatcher=_create_dispatcher(settings),
        resolver=resolver,
    )

    return Scheduler(
        cycle=cycle,
        history=history,
        evaluation_interval_seconds=settings.evaluation_interval_seconds,
        prune_interval_seconds=settings.prune_interval_seconds,
    )


def main() -> None:
    """Main entry point: configure logging, start the scheduler, wait for a signal."""
    settings = load_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    shutdown = threading.Event()

    def _signal_handler(signum: int, frame: Any) -> None:
        logger.info(
            "Received %s. Requesting graceful shutdown...",
            signal.Signals(signum).name,
        )
        shutdown.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("Initializing Aurora Alert worker...")
    scheduler = create_scheduler(settings)
    scheduler.start()

    while not shutdown.wait(1.0):
        pass

    scheduler.stop(wait=True)
    logger.info("Shut down.")


if __name__ == "__main__":
    main()
