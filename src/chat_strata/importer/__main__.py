"""CLI entry point for the importer.

Allows running the importer as a module:
    python -m chat_strata.importer import chatgpt ~/Downloads/export.zip
"""

import json
import sys
from pathlib import Path
from typing import Any, Callable

import click

from chat_strata.config import Config, load_config
from chat_strata.errors import ImportBusyError, StrataError
from chat_strata.importer.extractors import ExtractorRegistry
from chat_strata.importer.jobs import JobRecord, JobStatus, JobStore
from chat_strata.importer.orchestrator import ImportRequest, rebuild_indexes, run_import
from chat_strata.logging import setup_logging
from chat_strata.storage.layout import resolve_layout


def data_root_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add --data-root and --config to a command."""
    func = click.option(
        "--config",
        "config_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="Path to config.yaml",
    )(func)
    func = click.option(
        "--data-root",
        type=click.Path(file_okay=False, path_type=Path),
        help="Data root directory (overrides config)",
    )(func)
    return func


def load_settings(config_path: Path | None, data_root: Path | None) -> Config:
    """Load configuration, apply the --data-root override, and set up logging."""
    config = load_config(config_path)
    if data_root is not None:
        config.data_root = data_root
    setup_logging("importer", log_dir=config.logging.dir, level=config.logging.level)
    return config


def format_job_line(record: JobRecord) -> str:
    return f"{record.job_id}  {record.status.value:<24}  {record.provider:<8}  {record.started_at}"


def print_job_summary(record: JobRecord) -> None:
    click.echo(f"Job: {record.job_id}")
    click.echo(f"Status: {record.status.value}")
    for entity, stats in record.summary.items():
        click.echo(
            f"  {entity}: new={stats['new']} updated={stats['updated']} "
            f"unchanged={stats['unchanged']} failed={stats['failed']}"
        )
    for warning in record.warnings:
        click.echo(f"Warning: {warning}")
    for error in record.errors:
        click.echo(f"Error: {error}", err=True)


@click.group()
def cli() -> None:
    """Import and normalize AI chat-export archives."""


@cli.command("import")
@click.argument("provider", type=click.Choice(ExtractorRegistry.all_providers()))
@click.argument("package", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--retain/--no-retain",
    default=None,
    help="Keep a copy of the package in the job's raw area (default from config)",
)
@data_root_options
def import_command(
    provider: str,
    package: Path,
    retain: bool | None,
    data_root: Path | None,
    config_path: Path | None,
) -> None:
    """Import PACKAGE exported from PROVIDER."""
    config = load_settings(config_path, data_root)
    request = ImportRequest(
        provider=provider,
        package_path=package,
        data_root=config.data_root,
        retain_package=config.importer.retain_package if retain is None else retain,
        lock_timeout_seconds=config.importer.lock_timeout_seconds,
        hash_workers=config.importer.hash_workers,
    )

    try:
        record = run_import(request)
    except ImportBusyError as e:
        click.echo(f"Import rejected: {e}", err=True)
        sys.exit(1)
    except StrataError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    print_job_summary(record)
    if record.status is JobStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--limit", "-n", default=20, help="Number of runs to show")
@data_root_options
def runs(limit: int, data_root: Path | None, config_path: Path | None) -> None:
    """List import runs, newest first."""
    config = load_settings(config_path, data_root)
    records = JobStore(resolve_layout(config.data_root)).list_jobs(limit=limit)
    if not records:
        click.echo("No import runs.")
        return
    for record in records:
        click.echo(format_job_line(record))


@cli.command()
@click.argument("job_id")
@data_root_options
def show(job_id: str, data_root: Path | None, config_path: Path | None) -> None:
    """Show the full record of one import run."""
    config = load_settings(config_path, data_root)
    record = JobStore(resolve_layout(config.data_root)).load(job_id)
    if record is None:
        click.echo(f"No such job: {job_id}", err=True)
        sys.exit(1)
    click.echo(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))


@cli.command("rebuild-indexes")
@data_root_options
def rebuild_indexes_command(data_root: Path | None, config_path: Path | None) -> None:
    """Rebuild indexes from the canonical messages."""
    config = load_settings(config_path, data_root)
    try:
        stats = rebuild_indexes(config.data_root, config.importer.lock_timeout_seconds)
    except StrataError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Indexed {stats['messages']} messages across {stats['providers']} providers and {stats['days']} days")


@cli.command()
@data_root_options
def abandoned(data_root: Path | None, config_path: Path | None) -> None:
    """List unfinished runs with no importer holding the data root."""
    config = load_settings(config_path, data_root)
    records = JobStore(resolve_layout(config.data_root)).find_abandoned()
    if not records:
        click.echo("No abandoned jobs.")
        return
    for record in records:
        click.echo(format_job_line(record))


@cli.command()
def providers() -> None:
    """List supported providers."""
    for name in ExtractorRegistry.all_providers():
        click.echo(name)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
