"""CLI commands for the geography fetch pipeline."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
import structlog

from geofetch import __version__
from geofetch.fetch.document import FeatureCollection, parse_geography
from geofetch.fetch.errors import ErrorRecord, GeographyFetchError
from geofetch.fetch.integrity import SRIAlgorithm, generate_integrity
from geofetch.fetch.loader import GeographyLoader
from geofetch.observability.logging import configure_logging, parse_log_level
from geofetch.settings.app import GeofetchSettings, get_settings


logger = structlog.get_logger()

COMPONENT_CLI = "cli"


def _fail(error: GeographyFetchError) -> NoReturn:
    click.echo(f"{error.error_kind.value}: {error.message}", err=True)
    sys.exit(1)


def _build_loader(
    ctx: click.Context,
    dev: bool = False,
    strict_sri: bool = False,
    sri_file: Path | None = None,
) -> GeographyLoader:
    """Build a loader from environment settings and command options.

    Args:
        ctx: Click context; ``obj["transport"]`` overrides the HTTP transport.
        dev: Enable development mode (refused in production).
        strict_sri: Require an SRI record for every URL.
        sri_file: YAML SRI registry to load.

    Returns:
        Configured loader.

    Raises:
        GeographyFetchError: If the configuration is invalid or refused.
    """
    settings: GeofetchSettings = ctx.obj["settings"]
    if sri_file is not None:
        settings = settings.model_copy(update={"sri_registry_path": sri_file})
    if strict_sri:
        settings = settings.model_copy(update={"strict_sri": True})

    loader = GeographyLoader.from_settings(settings, transport=ctx.obj.get("transport"))
    if dev:
        loader.enable_development_mode()
    return loader


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--json-logs/--console-logs",
    default=None,
    help="Render logs as JSON (default from GEOFETCH_JSON_LOGS).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, json_logs: bool | None) -> None:
    """Secure geography fetch CLI."""
    ctx.ensure_object(dict)
    settings = get_settings()
    ctx.obj["settings"] = settings

    level = logging.DEBUG if verbose else parse_log_level(settings.log_level)
    configure_logging(
        level=level,
        output=sys.stderr,
        json_format=settings.json_logs if json_logs is None else json_logs,
    )


@cli.command()
@click.argument("url")
@click.option("--dev", is_flag=True, help="Allow HTTP localhost (not in production).")
@click.pass_context
def check(ctx: click.Context, url: str, dev: bool) -> None:
    """Check a URL against the security policy without fetching it."""
    try:
        loader = _build_loader(ctx, dev=dev)
        validated = loader.validate_url(url)
    except GeographyFetchError as e:
        _fail(e)

    click.echo(f"OK: {validated.url} (host {validated.host})")


@cli.command()
@click.argument("url")
@click.option("--dev", is_flag=True, help="Allow HTTP localhost (not in production).")
@click.option("--strict-sri", is_flag=True, help="Require an SRI record for the URL.")
@click.option(
    "--sri-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML SRI registry to load.",
)
@click.pass_context
def fetch(
    ctx: click.Context,
    url: str,
    dev: bool,
    strict_sri: bool,
    sri_file: Path | None,
) -> None:
    """Fetch a geography URL and print a JSON summary."""
    log = logger.bind(component=COMPONENT_CLI, command="fetch")
    try:
        loader = _build_loader(ctx, dev=dev, strict_sri=strict_sri, sri_file=sri_file)
        payload = asyncio.run(loader.fetch_payload(url))
        document = parse_geography(payload.body_bytes, source_url=url)
    except GeographyFetchError as e:
        record = ErrorRecord.from_exception(e)
        log.debug("fetch_command_failed", error=record.model_dump(mode="json"))
        _fail(e)

    summary: dict[str, object] = {
        "url": payload.requested_url,
        "final_url": payload.final_url,
        "status_code": payload.status_code,
        "content_type": payload.content_type,
        "bytes": payload.body_size,
        "redirects": len(payload.redirects),
        "integrity": generate_integrity(payload.body_bytes),
        "type": document.type,
    }
    if isinstance(document, FeatureCollection):
        summary["features"] = len(document.features)
    else:
        summary["objects"] = sorted(document.objects)
        summary["arcs"] = len(document.arcs)
    click.echo(json.dumps(summary, indent=2))


@cli.command()
@click.argument("urls", nargs=-1, required=True)
@click.option(
    "--algorithm",
    type=click.Choice([a.value for a in SRIAlgorithm]),
    default=SRIAlgorithm.SHA384.value,
    show_default=True,
    help="Digest algorithm.",
)
@click.option("--dev", is_flag=True, help="Allow HTTP localhost (not in production).")
@click.pass_context
def sri(ctx: click.Context, urls: tuple[str, ...], algorithm: str, dev: bool) -> None:
    """Print SRI integrity strings for URLs fetched through the secure pipeline."""
    try:
        loader = _build_loader(ctx, dev=dev)
    except GeographyFetchError as e:
        _fail(e)

    records = asyncio.run(loader.generate_sri_records(urls, SRIAlgorithm(algorithm)))
    for url in urls:
        record = records.get(url)
        if record is None:
            click.echo(f"{url} FAILED", err=True)
        else:
            click.echo(f"{url} {record.integrity}")

    if len(records) < len(set(urls)):
        sys.exit(1)


if __name__ == "__main__":
    cli()
