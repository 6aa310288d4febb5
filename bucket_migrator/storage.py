"""S3-compatible object storage access for Bucket Migrator.

Google Cloud Storage is reached through its XML interoperability endpoint,
so the same boto3 client serves both ``gs://`` and ``s3://`` containers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .exceptions import (
    ObjectNotFoundError,
    PermissionDeniedError,
    RunPreconditionError,
    SourceNotFoundError,
    StorageError,
    TransientStorageError,
)
from .models import ObjectLocator

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})
PERMISSION_DENIED_CODES = frozenset(
    {
        "403",
        "AccessDenied",
        "Forbidden",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
    }
)

# The pool already provides concurrency; one copy per worker thread.
_COPY_CONFIG = TransferConfig(use_threads=False)


def classify_client_error(exc: Exception, locator: ObjectLocator | None) -> StorageError:
    """Map a boto3/botocore failure onto the migrator's error taxonomy.

    Not-found and authorization failures are permanent; everything else,
    including throttling and server errors, is treated as transient.
    """
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        message = error.get("Message") or str(exc)
        if code in NOT_FOUND_CODES:
            return ObjectNotFoundError(locator, message)
        if code in PERMISSION_DENIED_CODES:
            return PermissionDeniedError(locator, message)
        return TransientStorageError(locator, f"{code}: {message}")
    if isinstance(exc, NoCredentialsError):
        return PermissionDeniedError(locator, str(exc))
    return TransientStorageError(locator, str(exc))


class ObjectStore:
    """Thin wrapper over an S3 client exposing list/head/copy/delete."""

    def __init__(self, client: S3Client | None = None) -> None:
        self._client = client or boto3.client("s3")

    @classmethod
    def connect(cls, endpoint_url: str | None = None, max_connections: int = 10) -> ObjectStore:
        """Build a store whose client leaves retries to the migrator."""
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            config=BotoConfig(
                retries={"total_max_attempts": 1},
                max_pool_connections=max(max_connections, 10),
            ),
        )
        return cls(client)

    def check_source(self, container: str) -> None:
        """Verify the source bucket is reachable.

        Raises:
            SourceNotFoundError: If the bucket does not exist.
            RunPreconditionError: If it cannot be read for any other reason.
        """
        try:
            self._client.head_bucket(Bucket=container)
        except (ClientError, BotoCoreError) as exc:
            error = classify_client_error(exc, None)
            if isinstance(error, ObjectNotFoundError):
                raise SourceNotFoundError(f"Source container not found: {container}") from exc
            raise RunPreconditionError(f"Source container unreachable: {container}: {exc}") from exc

    def check_destination(self, container: str) -> None:
        """Verify the destination bucket exists and is accessible.

        A HEAD proves existence and access, not write permission; a bucket
        that refuses writes surfaces per object as ``permission-denied``.

        Raises:
            RunPreconditionError: If the bucket cannot be reached.
        """
        try:
            self._client.head_bucket(Bucket=container)
        except (ClientError, BotoCoreError) as exc:
            raise RunPreconditionError(
                f"Destination container unwritable: {container}: {exc}"
            ) from exc

    def list_objects(self, container: str, prefix: str = "") -> Iterator[ObjectLocator]:
        """Lazily yield every object under ``prefix``, one page at a time.

        Directory placeholder keys (ending in ``/``) are skipped.

        Raises:
            StorageError: If a page cannot be fetched.
        """
        paginator = self._client.get_paginator("list_objects_v2")
        params: dict[str, Any] = {"Bucket": container}
        if prefix:
            params["Prefix"] = prefix

        pages = iter(paginator.paginate(**params))
        while True:
            try:
                page = next(pages)
            except StopIteration:
                return
            except (ClientError, BotoCoreError) as exc:
                raise classify_client_error(exc, None) from exc
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if key.endswith("/"):
                    continue
                yield ObjectLocator(container, key)

    def head(self, locator: ObjectLocator) -> dict[str, Any] | None:
        """Return object metadata, or None if the object does not exist."""
        try:
            return self._client.head_object(Bucket=locator.container, Key=locator.key)
        except (ClientError, BotoCoreError) as exc:
            error = classify_client_error(exc, locator)
            if isinstance(error, ObjectNotFoundError):
                return None
            raise error from exc

    def copy(self, source: ObjectLocator, destination: ObjectLocator) -> None:
        """Server-side copy of one object, multipart for large objects."""
        try:
            self._client.copy(
                {"Bucket": source.container, "Key": source.key},
                destination.container,
                destination.key,
                Config=_COPY_CONFIG,
            )
        except (ClientError, BotoCoreError) as exc:
            raise classify_client_error(exc, source) from exc

    def delete(self, locator: ObjectLocator) -> None:
        try:
            self._client.delete_object(Bucket=locator.container, Key=locator.key)
        except (ClientError, BotoCoreError) as exc:
            raise classify_client_error(exc, locator) from exc
