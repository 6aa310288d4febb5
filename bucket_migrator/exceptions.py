"""Exception hierarchy for Bucket Migrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ObjectLocator, RunReport


class MigratorError(Exception):
    """Base exception for all Bucket Migrator errors."""


class ConfigurationError(MigratorError):
    """Raised when required configuration is missing or invalid."""


class RunPreconditionError(MigratorError):
    """Raised before any transfer when the run cannot start."""


class SourceNotFoundError(RunPreconditionError):
    """Raised when the source container does not exist."""


class ListingError(MigratorError):
    """Raised when the source listing breaks after the run has started.

    Attributes:
        report: Outcomes of the tasks that reached a terminal state.
    """

    def __init__(self, message: str, report: RunReport) -> None:
        self.report = report
        super().__init__(message)


class TaskStateError(MigratorError):
    """Raised on an illegal TransferTask or RunReport transition."""


class StorageError(MigratorError):
    """Raised when a storage operation on a single object fails.

    Attributes:
        locator: The object the operation targeted.
        reason: Short machine-readable failure reason.
    """

    reason = "storage-error"

    def __init__(self, locator: ObjectLocator | None, message: str) -> None:
        self.locator = locator
        target = locator.uri if locator is not None else "<container>"
        super().__init__(f"{target}: {message}")


class ObjectNotFoundError(StorageError):
    reason = "not-found"


class PermissionDeniedError(StorageError):
    reason = "permission-denied"


class TransientStorageError(StorageError):
    """Retryable failure: throttling, 5xx, network errors."""

    reason = "transient-exhausted"
