# src/awsxray_exporter/config.py
"""
Configuration schema and loading for awsxray-exporter.

Uses Pydantic for validation and Dynaconf for the optional settings file.
The container environment variables (OTEL_COLLECTOR_URL,
POLLING_INTERVAL_SECONDS, FILTER_EXPRESSION and friends) always take
precedence over the file. Settings are frozen after construction.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, ValidationError, field_validator

from awsxray_exporter.errors import SettingsError

# X-Ray daemon protocol port, also the default of the collector's awsxray receiver
DEFAULT_COLLECTOR_PORT = 2000
DEFAULT_POLLING_INTERVAL_SECONDS = 10.0
# One day. Keeps ``now - interval`` a valid datetime and Event.wait() within TIMEOUT_MAX.
MAX_POLLING_INTERVAL_SECONDS = 86_400.0

ENV_COLLECTOR_URL = "OTEL_COLLECTOR_URL"
ENV_COLLECTOR_PORT = "OTEL_COLLECTOR_PORT"
ENV_POLLING_INTERVAL = "POLLING_INTERVAL_SECONDS"
ENV_FILTER_EXPRESSION = "FILTER_EXPRESSION"
ENV_AWS_REGION = ("AWS_REGION", "AWS_DEFAULT_REGION")


class CollectorSettings(BaseModel):
    """Destination of the UDP datagrams."""

    model_config = {"frozen": True}

    host: str = Field(min_length=1, description="Collector hostname or IP address")
    port: int = Field(
        default=DEFAULT_COLLECTOR_PORT,
        ge=1,
        le=65535,
        description="Collector UDP port (X-Ray daemon protocol)",
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("collector host must not be blank")
        return v


class PollingSettings(BaseModel):
    """Poll loop cadence and query scope."""

    model_config = {"frozen": True}

    interval_seconds: float = Field(
        default=DEFAULT_POLLING_INTERVAL_SECONDS,
        gt=0,
        le=MAX_POLLING_INTERVAL_SECONDS,
        allow_inf_nan=False,
        description="Window length and inter-cycle delay in seconds",
    )
    filter_expression: str | None = Field(
        default=None,
        description="X-Ray filter expression, passed through unvalidated",
    )

    @field_validator("filter_expression")
    @classmethod
    def empty_filter_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class ExporterSettings(BaseModel):
    """Top-level exporter configuration."""

    model_config = {"frozen": True}

    collector: CollectorSettings = Field(description="UDP collector destination")
    polling: PollingSettings = Field(
        default_factory=PollingSettings,
        description="Poll loop configuration",
    )
    aws_region: str | None = Field(
        default=None,
        description="X-Ray region; None defers to the boto3 default chain",
    )


def parse_collector_url(value: str) -> tuple[str, int | None]:
    """Split OTEL_COLLECTOR_URL into host and optional port.

    Accepted forms: ``host``, ``host:port``, ``[v6addr]:port``, a bare IPv6
    literal, and ``scheme://host[:port]`` (the scheme is ignored).

    Raises:
        SettingsError: If no host can be extracted or the port is invalid.
    """
    value = value.strip()
    if not value:
        raise SettingsError(f"{ENV_COLLECTOR_URL} must not be empty")

    # Bare IPv6 literal, e.g. "::1"
    if "://" not in value and value.count(":") > 1 and not value.startswith("["):
        return value, None

    parts = urlsplit(value if "://" in value else f"//{value}")
    try:
        port = parts.port
    except ValueError as e:
        raise SettingsError(f"Invalid port in {ENV_COLLECTOR_URL}={value!r}: {e}") from e
    if not parts.hostname:
        raise SettingsError(f"No host in {ENV_COLLECTOR_URL}={value!r}")
    return parts.hostname, port


def _load_settings_file(config_path: Path) -> dict[str, Any]:
    """Load the optional YAML settings file through Dynaconf."""
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise SettingsError(f"Settings file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="AWSXRAY_EXPORTER",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    return {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}


def _apply_environment(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay the exporter environment variables onto raw settings."""
    collector = dict(raw.get("collector") or {})
    polling = dict(raw.get("polling") or {})

    url = environ.get(ENV_COLLECTOR_URL)
    url_port: int | None = None
    if url is not None:
        collector["host"], url_port = parse_collector_url(url)

    port = environ.get(ENV_COLLECTOR_PORT, "").strip()
    if url_port is not None:
        collector["port"] = url_port
    elif port:
        collector["port"] = port

    interval = environ.get(ENV_POLLING_INTERVAL, "").strip()
    if interval:
        polling["interval_seconds"] = interval

    if ENV_FILTER_EXPRESSION in environ:
        polling["filter_expression"] = environ[ENV_FILTER_EXPRESSION]

    for name in ENV_AWS_REGION:
        region = environ.get(name, "").strip()
        if region:
            raw["aws_region"] = region
            break

    if "host" not in collector:
        raise SettingsError(f"{ENV_COLLECTOR_URL} environment variable is required")

    raw["collector"] = collector
    raw["polling"] = polling
    return raw


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ExporterSettings:
    """Load exporter settings.

    Precedence (highest first):
    1. Environment variables (OTEL_COLLECTOR_URL, OTEL_COLLECTOR_PORT,
       POLLING_INTERVAL_SECONDS, FILTER_EXPRESSION, AWS_REGION)
    2. Settings file (optional YAML, plus AWSXRAY_EXPORTER_* overrides)
    3. Defaults from the Pydantic schema

    Args:
        config_path: Optional path to a YAML settings file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated ExporterSettings instance

    Raises:
        SettingsError: If the collector host is missing, the settings file
            does not exist, or validation fails
    """
    raw: dict[str, Any] = _load_settings_file(config_path) if config_path is not None else {}
    raw = _apply_environment(raw, os.environ if environ is None else environ)

    try:
        return ExporterSettings(**raw)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise SettingsError(f"Invalid exporter configuration: {problems}") from e


def resolve_config(settings: ExporterSettings) -> dict[str, Any]:
    """Convert validated settings to a plain dict for display and logging."""
    return settings.model_dump(mode="json")
