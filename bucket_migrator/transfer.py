"""Core batch migration logic for Bucket Migrator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import MigrationOptions
from .exceptions import (
    ListingError,
    ObjectNotFoundError,
    PermissionDeniedError,
    StorageError,
    TransientStorageError,
)
from .models import ContainerPath, RunReport, TransferTask
from .pacing import CancelToken, build_pacer
from .storage import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
TaskCallback = Callable[[TransferTask], None]


class _Abandoned(Exception):
    """Raised inside a worker when cancellation interrupts a backoff sleep."""


class BatchObjectMigrator:
    """Moves every object of a source container into a destination container.

    Lists the source lazily, dispatches each object to a bounded worker pool,
    retries transient failures with exponential backoff, and records exactly
    one outcome per dispatched object in a RunReport. Individual failures
    never abort the run.

    A ``cancel`` token passed here is shared by every run; without one, each
    run gets a fresh token whose deadline starts when the run starts.
    ``on_task_done`` is called from worker threads with each recorded task.
    """

    def __init__(
        self,
        store: ObjectStore,
        options: MigrationOptions | None = None,
        cancel: CancelToken | None = None,
        on_task_done: TaskCallback | None = None,
    ) -> None:
        self._store = store
        self._options = options or MigrationOptions()
        self._cancel = cancel
        self._on_task_done = on_task_done

    def run(self, source: str | ContainerPath, destination: str | ContainerPath) -> RunReport:
        """Migrate all objects from ``source`` to ``destination``.

        Returns:
            RunReport with one entry per object that reached a terminal state.

        Raises:
            RunPreconditionError: If either container is unusable at start.
            ListingError: If the source listing fails part-way through.
        """
        src = source if isinstance(source, ContainerPath) else ContainerPath.parse(source)
        dst = destination if isinstance(destination, ContainerPath) else ContainerPath.parse(destination)

        self._store.check_source(src.container)
        self._store.check_destination(dst.container)

        cancel = self._cancel or CancelToken(self._options.deadline_seconds)
        pacer = build_pacer(self._options)
        report = RunReport(source=str(src), destination=str(dst))
        listing_error: StorageError | None = None
        limit = self._options.max_concurrency
        in_flight: set[Future] = set()
        dispatched = 0
        stopped = False

        logger.info(
            "Migrating %s to %s (concurrency=%d, retries=%d, delete_source=%s)",
            src,
            dst,
            limit,
            self._options.max_retries,
            self._options.delete_source_on_success,
        )

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="migrator") as pool:
            try:
                for locator in self._store.list_objects(src.container, src.prefix):
                    while len(in_flight) >= limit:
                        done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                        self._collect(done)
                    if cancel.is_cancelled() or not pacer.acquire(cancel):
                        stopped = True
                        break
                    task = TransferTask(
                        source=locator,
                        destination=dst.locator_for(src.relative_key(locator)),
                    )
                    task.mark_in_flight()
                    in_flight.add(pool.submit(self._process, task, report, cancel))
                    dispatched += 1
            except StorageError as exc:
                listing_error = exc
                logger.error("Listing %s failed: %s", src, exc)
            finally:
                done, _ = wait(in_flight)
                self._collect(done)

        # Abandoned tasks are dispatched but never recorded.
        report.finalize(cancelled=stopped or report.total < dispatched)
        logger.info(
            "Migration complete: %d total, %d succeeded, %d failed, %d skipped, %d retries%s",
            report.total,
            report.succeeded,
            report.failed,
            report.skipped,
            report.retries,
            " (cancelled)" if report.cancelled else "",
        )
        if listing_error is not None:
            raise ListingError(f"Failed to list {src}: {listing_error}", report) from listing_error
        return report

    @staticmethod
    def _collect(done: set[Future]) -> None:
        for future in done:
            future.result()

    def _process(self, task: TransferTask, report: RunReport, cancel: CancelToken) -> None:
        """Carry one task to a terminal state and record it."""
        stage = "copy"
        try:
            skipped = self._options.skip_existing and self._with_retries(
                self._already_present, task, cancel
            )
            if not skipped:
                self._with_retries(self._copy_and_confirm, task, cancel)
            if self._options.delete_source_on_success:
                stage = "delete"
                self._with_retries(self._delete_source, task, cancel)
            task.succeed(skipped=skipped)
            if skipped:
                logger.info("Skipped: %s already present at %s", task.source, task.destination)
            else:
                logger.info("Copied: %s to %s", task.source, task.destination)
        except _Abandoned:
            logger.warning("Abandoned on cancellation: %s", task.source)
            return
        except StorageError as exc:
            reason = exc.reason if stage == "copy" else f"delete-{exc.reason}"
            task.fail(reason)
            logger.error("Failed to copy: %s (%s) %s", task.source, reason, exc)
        except Exception:
            task.fail("unexpected-error")
            logger.exception("Failed to copy: %s (unexpected-error)", task.source)
        report.record(task)
        if self._on_task_done is not None:
            self._on_task_done(task)

    def _with_retries(
        self,
        operation: Callable[[TransferTask], T],
        task: TransferTask,
        cancel: CancelToken,
    ) -> T:
        def _sleep(seconds: float) -> None:
            if cancel.wait(seconds):
                raise _Abandoned()

        retrying = Retrying(
            stop=stop_after_attempt(self._options.max_retries + 1),
            wait=wait_exponential(
                multiplier=self._options.delay_seconds,
                max=self._options.max_backoff_seconds,
            ),
            retry=retry_if_exception_type(TransientStorageError),
            sleep=_sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(operation, task)

    def _already_present(self, task: TransferTask) -> bool:
        """True if the destination holds an object of the same size."""
        existing = self._store.head(task.destination)
        if existing is None:
            return False
        original = self._store.head(task.source)
        if original is None:
            raise ObjectNotFoundError(task.source, "source object vanished")
        return existing.get("ContentLength") == original.get("ContentLength")

    def _copy_and_confirm(self, task: TransferTask) -> None:
        """Copy, then HEAD the destination before anything may delete the source.

        A write-only destination refuses the HEAD; the successful copy
        response is then the only confirmation available.
        """
        task.attempts += 1
        self._store.copy(task.source, task.destination)
        try:
            confirmed = self._store.head(task.destination) is not None
        except PermissionDeniedError:
            logger.debug("No read access on %s, trusting the copy response", task.destination)
            return
        if not confirmed:
            raise TransientStorageError(task.destination, "destination write not confirmed")

    def _delete_source(self, task: TransferTask) -> None:
        try:
            self._store.delete(task.source)
        except ObjectNotFoundError:
            logger.info("Source already gone: %s", task.source)
        task.source_deleted = True
