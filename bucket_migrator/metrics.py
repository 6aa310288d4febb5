"""CloudWatch custom metrics publisher for Bucket Migrator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import boto3

if TYPE_CHECKING:
    from mypy_boto3_cloudwatch import CloudWatchClient

    from .models import RunReport

logger = logging.getLogger(__name__)

NAMESPACE = "BucketMigrator"


class MetricsPublisher:
    """Publishes custom CloudWatch metrics for migration runs."""

    def __init__(self, client: CloudWatchClient | None = None) -> None:
        self._client = client or boto3.client("cloudwatch")

    def put(self, metric_name: str, value: float, unit: str = "Count") -> None:
        try:
            self._client.put_metric_data(
                Namespace=NAMESPACE,
                MetricData=[
                    {
                        "MetricName": metric_name,
                        "Value": value,
                        "Unit": unit,
                    }
                ],
            )
        except Exception:
            logger.exception("Failed to publish metric %s", metric_name)

    def objects_succeeded(self, count: int) -> None:
        self.put("ObjectsSucceeded", count)

    def objects_failed(self, count: int) -> None:
        self.put("ObjectsFailed", count)

    def objects_skipped(self, count: int) -> None:
        self.put("ObjectsSkipped", count)

    def retries(self, count: int) -> None:
        self.put("TransferRetries", count)

    def run_duration(self, seconds: float) -> None:
        self.put("RunDurationSeconds", seconds, unit="Seconds")

    def publish_report(self, report: RunReport) -> None:
        self.objects_succeeded(report.succeeded)
        self.objects_failed(report.failed)
        self.objects_skipped(report.skipped)
        self.retries(report.retries)
        self.run_duration(report.duration_seconds)
