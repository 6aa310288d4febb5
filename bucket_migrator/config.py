"""Environment-based configuration for Bucket Migrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .exceptions import ConfigurationError

GCS_ENDPOINT_URL = "https://storage.googleapis.com"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class MigrationOptions:
    """Tuning knobs for a single migration run."""

    delay_seconds: float = 5.0
    max_concurrency: int = 1
    max_retries: int = 3
    delete_source_on_success: bool = False
    rate_limit_per_second: float | None = None
    max_backoff_seconds: float = 60.0
    deadline_seconds: float | None = None
    skip_existing: bool = False

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ConfigurationError("delay_seconds must be >= 0")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be >= 1")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.rate_limit_per_second is not None and self.rate_limit_per_second <= 0:
            raise ConfigurationError("rate_limit_per_second must be > 0")
        if self.max_backoff_seconds < 0:
            raise ConfigurationError("max_backoff_seconds must be >= 0")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ConfigurationError("deadline_seconds must be > 0")


def default_destination() -> str | None:
    """Destination bucket derived from the environment, as the upload bucket of the project."""
    explicit = os.environ.get("DESTINATION_CONTAINER")
    if explicit:
        return explicit
    project = os.environ.get("GOOGLE_CLOUD_PROJECT")
    if project:
        return f"gs://{project}-upload"
    return None


def _scheme(container_uri: str) -> str:
    scheme, sep, _ = container_uri.partition("://")
    return scheme if sep else ""


def endpoint_for(source: str, destination: str, explicit: str | None = None) -> str | None:
    """Pick the storage endpoint serving both containers.

    ``gs://`` URIs go to the GCS interoperability API. One client serves
    both sides, so ``gs://`` and ``s3://`` cannot be mixed.

    Raises:
        ConfigurationError: If source and destination name different schemes.
    """
    schemes = {_scheme(source), _scheme(destination)} - {""}
    if len(schemes) > 1:
        raise ConfigurationError(
            f"Source {source!r} and destination {destination!r} use different storage schemes"
        )
    if explicit:
        return explicit
    if schemes == {"gs"}:
        return GCS_ENDPOINT_URL
    return None


@dataclass(frozen=True)
class Config:
    """Immutable configuration loaded from environment variables."""

    source: str
    destination: str
    endpoint_url: str | None = None
    options: MigrationOptions = field(default_factory=MigrationOptions)

    @classmethod
    def from_env(cls, source: str | None = None, destination: str | None = None) -> Config:
        """Load configuration from environment variables.

        Explicit ``source`` and ``destination`` take precedence over the
        environment, so neither variable is required when passed in.

        Raises:
            ConfigurationError: If a required variable is missing or malformed.
        """

        def _require(name: str) -> str:
            value = os.environ.get(name)
            if not value:
                raise ConfigurationError(f"Missing required environment variable: {name}")
            return value

        def _number(name: str, default, cast):
            raw = os.environ.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from exc

        def _flag(name: str, default: bool) -> bool:
            raw = os.environ.get(name)
            if raw is None:
                return default
            value = raw.strip().lower()
            if value in _TRUE:
                return True
            if value in _FALSE:
                return False
            raise ConfigurationError(f"Invalid value for {name}: {raw!r}")

        source = source or _require("SOURCE_CONTAINER")
        destination = destination or default_destination()
        if not destination:
            raise ConfigurationError(
                "Missing required environment variable: DESTINATION_CONTAINER "
                "(or GOOGLE_CLOUD_PROJECT)"
            )

        options = MigrationOptions(
            delay_seconds=_number("MIGRATION_DELAY_SECONDS", 5.0, float),
            max_concurrency=_number("MIGRATION_MAX_CONCURRENCY", 1, int),
            max_retries=_number("MIGRATION_MAX_RETRIES", 3, int),
            delete_source_on_success=_flag("MIGRATION_DELETE_ON_SUCCESS", False),
            rate_limit_per_second=_number("MIGRATION_RATE_LIMIT", None, float),
            deadline_seconds=_number("MIGRATION_DEADLINE_SECONDS", None, float),
            skip_existing=_flag("MIGRATION_SKIP_EXISTING", False),
        )
        return cls(
            source=source,
            destination=destination,
            endpoint_url=os.environ.get("STORAGE_ENDPOINT_URL") or None,
            options=options,
        )
