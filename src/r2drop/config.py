"""Configuration loading and Pydantic models for r2drop."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from r2drop.auth import uri_encode_path, wire_query_string
from r2drop.errors import ConfigMissing
from r2drop.retry import RetryPolicy

logger = logging.getLogger(__name__)

MiB = 1024 * 1024


class StorageCredentials(BaseModel):
    """Long-lived credentials and addressing for one bucket.

    Accepts both snake_case and camelCase keys (``accountId``,
    ``accessKeyId``, ...), so settings exported by other R2 tools load as-is.
    The secret is excluded from ``repr`` and never logged.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    account_id: str
    access_key_id: str
    secret_access_key: str = Field(repr=False)
    bucket_name: str
    public_url: str | None = None
    endpoint_host: str = "r2.cloudflarestorage.com"
    region: str = "auto"
    scheme: str = "https"

    @field_validator("public_url")
    @classmethod
    def _blank_public_url(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def host(self) -> str:
        """The Host header value, ``{account_id}.{endpoint_host}``."""
        return f"{self.account_id}.{self.endpoint_host}"

    @property
    def endpoint(self) -> str:
        return f"{self.scheme}://{self.host}"

    def object_path(self, key: str = "") -> str:
        """Unencoded path-style request path: ``/{bucket}`` or ``/{bucket}/{key}``."""
        if not key:
            return f"/{self.bucket_name}"
        return f"/{self.bucket_name}/{key}"

    def request_url(self, path: str, query: Mapping[str, str] | None = None) -> str:
        """Absolute URL for ``path``, encoded exactly as the signer encodes it."""
        url = self.endpoint + uri_encode_path(path)
        if query:
            url += "?" + wire_query_string(query)
        return url


class UploadPolicy(BaseModel):
    """Size thresholds and concurrency for uploads."""

    model_config = ConfigDict(frozen=True)

    multipart_threshold: int = Field(default=100 * MiB, gt=0)
    part_size: int = Field(default=10 * MiB, gt=0)
    concurrency: int = Field(default=3, ge=1)
    fingerprint_threshold: int = Field(default=50 * MiB, gt=0)
    fingerprint_chunk: int = Field(default=1 * MiB, gt=0)
    presign_expires: int = Field(default=600, ge=1, le=604800)


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Prometheus client metrics toggle."""

    enabled: bool = False


class R2DropConfig(BaseModel):
    """Top-level r2drop configuration."""

    storage: StorageCredentials | None = None
    upload: UploadPolicy = Field(default_factory=UploadPolicy)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_storage(data: dict[str, Any] | None) -> StorageCredentials | None:
    """Parse the storage section; an empty or absent section means unconfigured."""
    if not data:
        return None
    return StorageCredentials.model_validate(data)


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the upload section.

    Sizes may be given in bytes (``part_size``) or MiB (``part_size_mb``).
    """
    if data is None:
        return {}
    result: dict[str, Any] = {}
    for name in ("multipart_threshold", "part_size", "fingerprint_threshold", "fingerprint_chunk"):
        if name in data:
            result[name] = data[name]
        elif f"{name}_mb" in data:
            result[name] = int(float(data[f"{name}_mb"]) * MiB)
    for name in ("concurrency", "presign_expires"):
        if name in data:
            result[name] = data[name]
    return result


def _parse_retry(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the retry section from YAML data."""
    if data is None:
        return {}
    return {
        key: data[key]
        for key in ("max_attempts", "initial_delay_ms", "backoff_multiplier")
        if key in data
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def load_config(path: Path) -> R2DropConfig:
    """Load an R2DropConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated R2DropConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return R2DropConfig(
        storage=_parse_storage(raw.get("storage")),
        upload=UploadPolicy(**_parse_upload(raw.get("upload"))),
        retry=RetryPolicy(**_parse_retry(raw.get("retry"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**(raw.get("metrics") or {})),
    )


# ---------------------------------------------------------------------------
# Credential resolution
# ---------------------------------------------------------------------------


class FileCredentialsStore:
    """Reads credentials from the YAML config file on every lookup.

    Re-reading per operation means an edited config applies to the next
    upload without affecting one already in progress.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __call__(self) -> StorageCredentials | None:
        try:
            return load_config(self.path).storage
        except FileNotFoundError:
            logger.debug("Config file not found: %s", self.path)
            return None


CredentialsSource = Union[
    StorageCredentials,
    Callable[[], Union[StorageCredentials, None, Awaitable[Union[StorageCredentials, None]]]],
]


async def resolve_credentials(source: CredentialsSource | None) -> StorageCredentials:
    """Resolve a credentials source into concrete credentials.

    Args:
        source: Credentials, or a sync/async zero-argument callable returning
            credentials or None.

    Returns:
        The resolved credentials.

    Raises:
        ConfigMissing: If no credentials are available.
    """
    if source is None:
        raise ConfigMissing()
    if isinstance(source, StorageCredentials):
        return source

    result = source()
    if inspect.isawaitable(result):
        result = await result
    if result is None:
        raise ConfigMissing()
    return result
