"""Operator commands for the CDR ingestion pipeline."""

from __future__ import annotations

import sys

import click
import redis
from sqlalchemy.exc import SQLAlchemyError

from cdr_ingestor.exceptions import ConfigurationError, TransportError
from cdr_ingestor.models.base import get_engine
from cdr_ingestor.pipeline.orchestrator import CdrPipeline, FileOutcome, RunSummary
from cdr_ingestor.pipeline.whitelist import WhitelistResolver, build_column_cache, cache_key
from cdr_ingestor.storage.transport import FtpTransport, LocalDirectoryTransport
from cdr_ingestor.utils.config import (
    GlobalSettings,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
)

PREVIEW_COLUMNS = 10


def _load_settings() -> GlobalSettings:
    try:
        return ensure_runtime_configuration(get_settings())
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


def print_summary(summary: RunSummary) -> None:
    """Print one line per processed file followed by the sweep totals."""

    for result in summary.results:
        if result.outcome is FileOutcome.SKIPPED:
            click.echo(f"SKIP {result.source_dir}/{result.file_name}: {result.message}")
        else:
            click.echo(
                f"{result.outcome.value} {result.source_dir}/{result.file_name}: {result.message}"
            )

    for category, error in summary.failed_categories.items():
        click.echo(f"SOURCE {category} FAILED: {error}", err=True)

    click.echo(
        f"success={summary.count(FileOutcome.SUCCESS)} "
        f"error={summary.count(FileOutcome.ERROR)} "
        f"skipped={summary.count(FileOutcome.SKIPPED)}"
    )


@click.group()
@click.version_option(package_name="cdr-ingestor")
def cli() -> None:
    """CDR ingestion: remote area -> staging -> detail store."""


@cli.command()
def run() -> None:
    """Sweep every configured source category once."""

    settings = _load_settings()
    try:
        transport = FtpTransport(settings.ftp)
    except TransportError as exc:
        raise click.ClickException(str(exc)) from exc

    with transport:
        summary = CdrPipeline.from_settings(settings, transport).run()

    print_summary(summary)
    if not summary.ok:
        sys.exit(1)


@cli.command("run-local")
@click.option(
    "--mmg-path", type=click.Path(file_okay=False), help="Local folder holding MMG files."
)
@click.option(
    "--occ-path", type=click.Path(file_okay=False), help="Local folder holding OCC files."
)
def run_local(mmg_path: str | None, occ_path: str | None) -> None:
    """Run the pipeline over local folders instead of the FTP area."""

    remote_paths = {
        category: path
        for category, path in (("MMG", mmg_path), ("OCC", occ_path))
        if path
    }
    if not remote_paths:
        raise click.UsageError("Provide --mmg-path and/or --occ-path")

    settings = _load_settings()
    pipeline = CdrPipeline.from_settings(
        settings,
        LocalDirectoryTransport(),
        remote_paths=remote_paths,
        delete_after_success=False,
    )
    summary = pipeline.run()

    print_summary(summary)
    if not summary.ok:
        sys.exit(1)


@cli.command("cache-columns")
@click.option("--only", "only", help="Source type to process (occ or mmg).")
@click.option("--clear", is_flag=True, help="Clear the cache without rebuilding it.")
@click.option("--show", is_flag=True, help="Show the currently cached columns.")
def cache_columns(only: str | None, clear: bool, show: bool) -> None:
    """Refresh, clear or show the cached staging column whitelist."""

    settings = _load_settings()
    service_config = get_service_configuration(settings)
    types = [only.lower()] if only else sorted(service_config.sources)
    for source_type in types:
        if source_type not in service_config.sources:
            raise click.BadParameter(f"Unknown source type '{source_type}'", param_hint="--only")

    resolver = WhitelistResolver.from_settings(
        get_engine(), service_config, build_column_cache(settings), settings
    )

    if show:
        for source_type in types:
            cached = resolver.cached(source_type)
            if cached is None:
                click.echo(f"{source_type}: no cache entry")
            else:
                click.echo(f"{source_type}: {len(cached)} columns")
                click.echo(f"  {', '.join(cached)}")
        return

    if clear:
        cleared = True
        for source_type in types:
            try:
                resolver.clear(source_type)
            except redis.RedisError as exc:
                click.echo(f"{source_type}: error clearing cache: {exc}", err=True)
                cleared = False
                continue
            click.echo(f"Cleared cache: {cache_key(source_type)}")
        if not cleared:
            sys.exit(1)
        return

    failed = False
    for source_type in types:
        table = service_config.source(source_type).tmp_table
        try:
            columns = resolver.refresh(source_type)
        except (SQLAlchemyError, redis.RedisError) as exc:
            click.echo(f"{source_type} -> {table}: error: {exc}", err=True)
            failed = True
            continue

        if not columns:
            click.echo(f"{source_type} -> {table}: no columns found", err=True)
            failed = True
            continue

        preview = ", ".join(columns[:PREVIEW_COLUMNS])
        more = "..." if len(columns) > PREVIEW_COLUMNS else ""
        click.echo(f"{source_type} -> {table}: {len(columns)} columns cached")
        click.echo(f"  {preview}{more}")

    if failed:
        sys.exit(1)


@cli.command("ftp-list")
@click.option("--dir", "category", help="Source category to list (MMG or OCC).")
def ftp_list(category: str | None) -> None:
    """List remote files with size and modification time."""

    settings = get_settings()
    remote_paths = settings.remote_paths
    if category:
        category = category.upper()
        if category not in remote_paths:
            raise click.BadParameter(f"Unknown category '{category}'", param_hint="--dir")
        remote_paths = {category: remote_paths[category]}

    try:
        with FtpTransport(settings.ftp) as transport:
            for name, remote_base in remote_paths.items():
                click.echo(f"Listing {name}: {remote_base}")
                files = transport.list_files(remote_base)
                if not files:
                    click.echo(f"  no files found in {remote_base}")
                    continue
                for path in files:
                    size = transport.size(path)
                    mtime = transport.last_modified(path)
                    click.echo(
                        f"- {path} | size={size if size is not None else 'N/A'} | "
                        f"mtime={mtime.strftime('%Y-%m-%d %H:%M:%S') if mtime else 'N/A'}"
                    )
    except TransportError as exc:
        click.echo(f"FTP error: {exc}", err=True)
        sys.exit(1)

    click.echo("FTP OK")


if __name__ == "__main__":
    cli()
