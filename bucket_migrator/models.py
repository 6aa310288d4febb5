"""Transfer task and run report models."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .exceptions import TaskStateError

_SCHEMES = ("gs://", "s3://")


@dataclass(frozen=True)
class ObjectLocator:
    """An object within a storage container."""

    container: str
    key: str

    @property
    def uri(self) -> str:
        return f"{self.container}/{self.key}"

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True)
class ContainerPath:
    """A container plus an optional key prefix, e.g. ``gs://spls/gsp644``."""

    container: str
    prefix: str = ""
    scheme: str = ""

    @classmethod
    def parse(cls, value: str) -> ContainerPath:
        scheme = ""
        for candidate in _SCHEMES:
            if value.startswith(candidate):
                scheme = candidate[:-3]
                value = value[len(candidate):]
                break
        container, _, prefix = value.strip("/").partition("/")
        if not container:
            raise ValueError("container name must not be empty")
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        return cls(container=container, prefix=prefix, scheme=scheme)

    def locator_for(self, relative_key: str) -> ObjectLocator:
        return ObjectLocator(self.container, self.prefix + relative_key)

    def relative_key(self, locator: ObjectLocator) -> str:
        if self.prefix and locator.key.startswith(self.prefix):
            return locator.key[len(self.prefix):]
        return locator.key

    def __str__(self) -> str:
        base = f"{self.scheme}://{self.container}" if self.scheme else self.container
        return f"{base}/{self.prefix}" if self.prefix else base


class TaskStatus(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED})


@dataclass
class TransferTask:
    """One object's journey from source to destination."""

    source: ObjectLocator
    destination: ObjectLocator
    attempts: int = 0
    status: TaskStatus = TaskStatus.PENDING
    reason: str | None = None
    skipped: bool = False
    source_deleted: bool = False
    recorded: bool = field(default=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_in_flight(self) -> None:
        if self.status is not TaskStatus.PENDING:
            raise TaskStateError(f"{self.source}: cannot dispatch a task that is {self.status.value}")
        self.status = TaskStatus.IN_FLIGHT

    def succeed(self, skipped: bool = False) -> None:
        self._finish(TaskStatus.SUCCEEDED)
        self.skipped = skipped

    def fail(self, reason: str) -> None:
        self._finish(TaskStatus.FAILED)
        self.reason = reason

    def _finish(self, status: TaskStatus) -> None:
        if self.status is not TaskStatus.IN_FLIGHT:
            raise TaskStateError(
                f"{self.source}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status


@dataclass
class RunReport:
    """Accounting of a migration run, safe to update from several workers."""

    source: str
    destination: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    retries: int = 0
    failures: list[TransferTask] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def record(self, task: TransferTask) -> None:
        if not task.is_terminal:
            raise TaskStateError(f"{task.source}: cannot record a {task.status.value} task")
        with self._lock:
            if task.recorded:
                raise TaskStateError(f"{task.source}: task already recorded")
            task.recorded = True
            self.total += 1
            self.retries += max(task.attempts - 1, 0)
            if task.status is TaskStatus.SUCCEEDED:
                self.succeeded += 1
                if task.skipped:
                    self.skipped += 1
            else:
                self.failed += 1
                self.failures.append(task)

    def finalize(self, cancelled: bool = False) -> RunReport:
        with self._lock:
            self.cancelled = cancelled
            self.finished_at = datetime.now(timezone.utc)
        return self

    @property
    def reasons(self) -> list[str]:
        return [task.reason or "" for task in self.failures]

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.cancelled

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "retries": self.retries,
            "cancelled": self.cancelled,
            "failures": [
                {"object": task.source.uri, "reason": task.reason} for task in self.failures
            ],
            "duration_seconds": round(self.duration_seconds, 2),
        }
