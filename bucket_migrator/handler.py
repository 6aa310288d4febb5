"""Lambda handler for scheduled Bucket Migrator runs."""

from __future__ import annotations

import logging
from typing import Any

from .config import Config, endpoint_for
from .exceptions import MigratorError
from .metrics import MetricsPublisher
from .storage import ObjectStore
from .transfer import BatchObjectMigrator

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Entry point for the Bucket Migrator Lambda function.

    Loads configuration from environment variables (``source`` and
    ``destination`` in the event override them), runs the migration,
    publishes metrics, and raises on any failure or cancellation to trigger
    DLQ delivery.
    """
    request_id = getattr(context, "aws_request_id", "local")
    logging.basicConfig(
        format=f"%(asctime)s [{request_id}] %(levelname)s %(name)s - %(message)s",
        level=logging.INFO,
        force=True,
    )

    logger.info("Bucket migration starting, request_id=%s", request_id)
    metrics = MetricsPublisher()

    try:
        config = Config.from_env(source=event.get("source"), destination=event.get("destination"))
        source, destination = config.source, config.destination
        endpoint_url = endpoint_for(source, destination, config.endpoint_url)

        store = ObjectStore.connect(endpoint_url, max_connections=config.options.max_concurrency)
        report = BatchObjectMigrator(store, config.options).run(source, destination)
        metrics.publish_report(report)

        summary = {"request_id": request_id, **report.as_dict()}
        logger.info("Migration summary: %s", summary)

        if report.failed:
            failed_objects = [task.source.uri for task in report.failures]
            raise MigratorError(
                f"{report.failed} object(s) failed to migrate: {failed_objects}"
            )
        if report.cancelled:
            raise MigratorError(
                f"Migration cancelled after {report.total} object(s); remaining objects were not attempted"
            )

        return summary

    except MigratorError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error during migration")
        raise MigratorError(f"Migration failed: {exc}") from exc
