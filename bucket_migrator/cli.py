"""Command-line interface for Bucket Migrator."""

from __future__ import annotations

import contextlib
import logging
import signal
import threading
import uuid
from collections.abc import Iterator

import click

from . import __version__
from .config import MigrationOptions, default_destination, endpoint_for
from .exceptions import ConfigurationError, ListingError, RunPreconditionError
from .models import ContainerPath, RunReport, TaskStatus, TransferTask
from .pacing import CancelToken
from .storage import ObjectStore
from .transfer import BatchObjectMigrator

logger = logging.getLogger(__name__)

EXIT_FAILURES = 1
EXIT_PRECONDITION = 2
EXIT_CANCELLED = 130


@contextlib.contextmanager
def _cancel_on_signals(cancel: CancelToken) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cooperative stop for the duration of a run."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        logger.warning("Received signal %d, finishing in-flight transfers", signum)
        cancel.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _echo_task(task: TransferTask) -> None:
    if task.status is TaskStatus.FAILED:
        click.echo(f"FAILED   {task.source.uri}  {task.reason}", err=True)
    elif task.skipped:
        click.echo(f"SKIPPED  {task.source.uri}")
    else:
        click.echo(f"COPIED   {task.source.uri} -> {task.destination.uri}")


def _echo_report(report: RunReport) -> None:
    status = "cancelled" if report.cancelled else "done"
    click.echo(
        f"{status}: {report.total} total, {report.succeeded} succeeded, "
        f"{report.failed} failed, {report.skipped} skipped"
    )


@click.group()
@click.version_option(version=__version__, prog_name="bucket-migrator")
@click.option(
    "--log-level",
    default="INFO",
    envvar="LOG_LEVEL",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def cli(log_level: str) -> None:
    """Bucket Migrator - copy every object from one bucket to another."""
    run_id = uuid.uuid4().hex[:8]
    logging.basicConfig(
        format=f"%(asctime)s [{run_id}] %(levelname)s %(name)s - %(message)s",
        level=log_level.upper(),
        force=True,
    )


@cli.command("migrate")
@click.option("--source", required=True, envvar="SOURCE_CONTAINER", help="gs://bucket[/prefix], s3://... or bucket name.")
@click.option("--destination", envvar="DESTINATION_CONTAINER", help="Defaults to gs://$GOOGLE_CLOUD_PROJECT-upload.")
@click.option("--delay", type=click.FloatRange(min=0), default=5.0, show_default=True, envvar="MIGRATION_DELAY_SECONDS", help="Seconds between transfers; initial retry backoff.")
@click.option("--concurrency", type=click.IntRange(min=1), default=1, show_default=True, envvar="MIGRATION_MAX_CONCURRENCY")
@click.option("--max-retries", type=click.IntRange(min=0), default=3, show_default=True, envvar="MIGRATION_MAX_RETRIES")
@click.option("--delete-on-success", is_flag=True, envvar="MIGRATION_DELETE_ON_SUCCESS", help="Delete each source object once its copy is confirmed.")
@click.option("--rate-limit", type=click.FloatRange(min=0, min_open=True), envvar="MIGRATION_RATE_LIMIT", help="Max transfers per second across workers.")
@click.option("--deadline", type=click.FloatRange(min=0, min_open=True), envvar="MIGRATION_DEADLINE_SECONDS", help="Stop dispatching after this many seconds.")
@click.option("--skip-existing", is_flag=True, envvar="MIGRATION_SKIP_EXISTING", help="Skip objects already present with the same size.")
@click.option("--endpoint-url", envvar="STORAGE_ENDPOINT_URL", help="S3-compatible endpoint; gs:// sources default to GCS.")
@click.pass_context
def migrate(
    ctx: click.Context,
    source: str,
    destination: str | None,
    delay: float,
    concurrency: int,
    max_retries: int,
    delete_on_success: bool,
    rate_limit: float | None,
    deadline: float | None,
    skip_existing: bool,
    endpoint_url: str | None,
) -> None:
    """Copy every object from SOURCE to DESTINATION."""
    destination = destination or default_destination()
    if not destination:
        raise click.UsageError("--destination is required when GOOGLE_CLOUD_PROJECT is not set")
    try:
        src, dst = ContainerPath.parse(source), ContainerPath.parse(destination)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc

    try:
        endpoint = endpoint_for(source, destination, endpoint_url)
        options = MigrationOptions(
            delay_seconds=delay,
            max_concurrency=concurrency,
            max_retries=max_retries,
            delete_source_on_success=delete_on_success,
            rate_limit_per_second=rate_limit,
            deadline_seconds=deadline,
            skip_existing=skip_existing,
        )
    except ConfigurationError as exc:
        raise click.UsageError(str(exc)) from exc

    store = ObjectStore.connect(endpoint, max_connections=concurrency)
    cancel = CancelToken(options.deadline_seconds)
    migrator = BatchObjectMigrator(store, options, cancel=cancel, on_task_done=_echo_task)

    try:
        with _cancel_on_signals(cancel):
            report = migrator.run(src, dst)
    except RunPreconditionError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_PRECONDITION)
    except ListingError as exc:
        _echo_report(exc.report)
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_FAILURES)

    _echo_report(report)
    if report.failed:
        ctx.exit(EXIT_FAILURES)
    if report.cancelled:
        ctx.exit(EXIT_CANCELLED)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
