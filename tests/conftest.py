"""Shared fixtures for Bucket Migrator tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

from bucket_migrator.exceptions import RunPreconditionError, SourceNotFoundError
from bucket_migrator.models import ObjectLocator

SOURCE_BUCKET = "spls-gsp644"
DESTINATION_BUCKET = "qwiklabs-project-upload"
REGION = "us-east-1"


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    for name in ("DESTINATION_CONTAINER", "GOOGLE_CLOUD_PROJECT", "STORAGE_ENDPOINT_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def env_vars(monkeypatch):
    """Set the environment a scheduled run needs."""
    env = {
        "SOURCE_CONTAINER": SOURCE_BUCKET,
        "DESTINATION_CONTAINER": DESTINATION_BUCKET,
        "MIGRATION_DELAY_SECONDS": "0",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture
def aws_mocks():
    """Start moto mocks for S3 and CloudWatch."""
    with mock_aws():
        yield


@pytest.fixture
def s3_client(aws_mocks):
    """Create a mocked S3 client."""
    return boto3.client("s3", region_name=REGION)


@pytest.fixture
def source_bucket(s3_client):
    s3_client.create_bucket(Bucket=SOURCE_BUCKET)
    return SOURCE_BUCKET


@pytest.fixture
def destination_bucket(s3_client):
    s3_client.create_bucket(Bucket=DESTINATION_BUCKET)
    return DESTINATION_BUCKET


@pytest.fixture
def sample_objects(s3_client, source_bucket):
    """Upload sample documents to the source bucket."""
    objects = {
        "a.docx": b"PK\x03\x04 first document",
        "b.docx": b"PK\x03\x04 second document",
        "reports/c.docx": b"PK\x03\x04 nested document",
    }
    for key, body in objects.items():
        s3_client.put_object(Bucket=SOURCE_BUCKET, Key=key, Body=body)
    return objects


@pytest.fixture
def lambda_context():
    """Create a mock Lambda context object."""
    context = MagicMock()
    context.aws_request_id = "test-request-id-123"
    context.function_name = "bucket-migrator"
    context.memory_limit_in_mb = 256
    context.get_remaining_time_in_millis.return_value = 900000
    return context


class FakeStore:
    """In-memory stand-in for ObjectStore with failure injection.

    ``copy_errors`` maps a source key to exceptions raised by successive copy
    attempts; once the list runs out, copies succeed. ``always_fail`` maps a
    key to an exception raised on every copy attempt.
    """

    def __init__(self) -> None:
        self.containers: dict[str, dict[str, bytes]] = {}
        self.copy_errors: dict[str, list[Exception]] = {}
        self.always_fail: dict[str, Exception] = {}
        self.delete_errors: dict[str, list[Exception]] = {}
        self.list_error: Exception | None = None
        self.head_errors: dict[str, Exception] = {}
        self.copy_latency = 0.0
        self.drop_writes = False
        self.on_copy: Callable[[ObjectLocator], None] | None = None
        self.copy_calls: list[ObjectLocator] = []
        self.delete_calls: list[ObjectLocator] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def add(self, container: str, *keys: str, body: bytes = b"data") -> FakeStore:
        bucket = self.containers.setdefault(container, {})
        for key in keys:
            bucket[key] = body
        return self

    def keys(self, container: str) -> set[str]:
        return set(self.containers[container])

    def check_source(self, container: str) -> None:
        if container not in self.containers:
            raise SourceNotFoundError(f"Source container not found: {container}")

    def check_destination(self, container: str) -> None:
        if container not in self.containers:
            raise RunPreconditionError(f"Destination container unwritable: {container}")

    def list_objects(self, container: str, prefix: str = "") -> Iterator[ObjectLocator]:
        for key in list(self.containers[container]):
            if key.startswith(prefix):
                yield ObjectLocator(container, key)
        if self.list_error is not None:
            raise self.list_error

    def head(self, locator: ObjectLocator):
        if locator.container in self.head_errors:
            raise self.head_errors[locator.container]
        body = self.containers.get(locator.container, {}).get(locator.key)
        if body is None:
            return None
        return {"ContentLength": len(body)}

    def copy(self, source: ObjectLocator, destination: ObjectLocator) -> None:
        with self._lock:
            self.copy_calls.append(source)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.copy_latency:
                time.sleep(self.copy_latency)
            if self.on_copy is not None:
                self.on_copy(source)
            if source.key in self.always_fail:
                raise self.always_fail[source.key]
            pending = self.copy_errors.get(source.key)
            if pending:
                raise pending.pop(0)
            if self.drop_writes:
                return
            body = self.containers[source.container][source.key]
            with self._lock:
                self.containers[destination.container][destination.key] = body
        finally:
            with self._lock:
                self.in_flight -= 1

    def delete(self, locator: ObjectLocator) -> None:
        self.delete_calls.append(locator)
        pending = self.delete_errors.get(locator.key)
        if pending:
            raise pending.pop(0)
        with self._lock:
            self.containers[locator.container].pop(locator.key, None)


class InstantCancel:
    """Cancel token that records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.waits: list[float] = []
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def is_cancelled(self) -> bool:
        return self.cancelled

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        return self.cancelled


@pytest.fixture
def fake_store():
    return FakeStore().add("src").add("dst")
