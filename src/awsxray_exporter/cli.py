# src/awsxray_exporter/cli.py
"""awsxray-exporter Command Line Interface.

Entry point for the awsxray-exporter CLI tool.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from awsxray_exporter import __version__
from awsxray_exporter.config import ExporterSettings, load_settings, resolve_config
from awsxray_exporter.errors import DeliveryChannelError, SettingsError

__all__ = [
    "app",
]

app = typer.Typer(
    name="awsxray-exporter",
    help="Forward AWS X-Ray trace segments to an OpenTelemetry collector over UDP.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"awsxray-exporter version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


def _load_settings_or_exit(settings_path: Path | None) -> ExporterSettings:
    try:
        return load_settings(settings_path)
    except SettingsError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence checked in _load_dotenv for a clearer message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        envvar="AWSXRAY_EXPORTER_JSON_LOGS",
        help="Output structured JSON logs (for log shippers).",
    ),
) -> None:
    """Forward AWS X-Ray trace segments to an OpenTelemetry collector."""
    # Configure logging before any subcommand runs so container logs reach stdout
    from awsxray_exporter.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


@app.command()
def run(
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Optional settings YAML file (environment variables take precedence).",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Run a single poll cycle, flush, and exit.",
    ),
) -> None:
    """Poll X-Ray and forward segments until SIGTERM/SIGINT."""
    from awsxray_exporter.lifecycle import ExporterRuntime

    exporter_settings = _load_settings_or_exit(settings)

    try:
        runtime = ExporterRuntime(exporter_settings)
    except (SettingsError, DeliveryChannelError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    if once:
        with runtime:
            result = runtime.run_once()
        if not result.succeeded:
            typer.secho(f"Poll cycle failed: {result.error}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        typer.echo(
            f"Found {result.trace_ids_found} traces, sent {result.segments_sent} segments "
            f"({result.segments_inferred} inferred, {result.segments_no_document} without document, "
            f"{result.segments_malformed} malformed skipped)"
        )
        return

    runtime.run()


@app.command()
def check(
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Optional settings YAML file (environment variables take precedence).",
    ),
) -> None:
    """Validate configuration and print the resolved settings."""
    exporter_settings = _load_settings_or_exit(settings)
    typer.echo(json.dumps(resolve_config(exporter_settings), indent=2))
