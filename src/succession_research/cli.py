"""Typer CLI for the succession research pipeline.

All commands load configuration, initialize the database, and delegate
to the appropriate service module.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog
import typer
from pydantic import ValidationError

from succession_research.config import Config, configure_logging
from succession_research.database import Database
from succession_research.models import Company

app = typer.Typer(
    name="succession-research",
    help="Website, media and shareholder research for succession targets.",
    add_completion=False,
)

logger = structlog.get_logger()


def _get_config() -> Config:
    try:
        config = Config()  # type: ignore[call-arg]
    except Exception as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(1)
    configure_logging(config.log_level)
    return config


def _get_db(config: Config) -> Database:
    db = Database(config.database_path)
    db.init_db()
    return db


def _get_orchestrator(config: Config, db: Database):
    from succession_research.services.clients import build_clients
    from succession_research.services.orchestrator import ResearchOrchestrator

    return ResearchOrchestrator(db, build_clients(config), module_concurrency=config.module_concurrency)


# ===================================================================
# Database
# ===================================================================

@app.command()
def init_db() -> None:
    """Initialize the database schema."""
    config = _get_config()
    _get_db(config)
    typer.echo("Database initialized successfully.")


@app.command()
def migrate() -> None:
    """Add columns introduced after the initial schema."""
    config = _get_config()
    db = _get_db(config)
    added = db.run_migrations()
    typer.echo(f"Migrations complete. Added: {', '.join(added) if added else 'nothing'}")


@app.command()
def import_companies(
    file: Path = typer.Option(..., "--file", exists=True, dir_okay=False, help="JSON list of company records"),
) -> None:
    """Load company records from a JSON file into the companies table."""
    config = _get_config()
    db = _get_db(config)

    records = json.loads(file.read_text(encoding="utf-8"))
    if isinstance(records, dict):
        records = [records]

    imported = failed = 0
    for record in records:
        try:
            db.upsert_company(Company.model_validate(record))
            imported += 1
        except ValidationError as exc:
            failed += 1
            logger.warning("company_import_skipped", record_id=record.get("id"), error=str(exc))
    typer.echo(f"Imported: {imported}, Failed: {failed}")


# ===================================================================
# Research
# ===================================================================

@app.command()
def research(
    company_id: int = typer.Option(..., "--company-id"),
    module: Optional[list[str]] = typer.Option(
        None, "--module", help="website, media or shareholders; repeat for several (default: all)"
    ),
) -> None:
    """Run research modules for one company."""
    from succession_research.services.orchestrator import CompanyNotFoundError

    config = _get_config()
    db = _get_db(config)
    orchestrator = _get_orchestrator(config, db)

    try:
        result = orchestrator.run(company_id, module or None)
    except CompanyNotFoundError:
        typer.echo(f"Company {company_id} not found.", err=True)
        raise typer.Exit(1)

    for name, status in result.results.items():
        typer.echo(f"  {name}: {status}")
    if not result.results:
        typer.echo("No known modules requested.")


@app.command()
def show_research(
    company_id: int = typer.Option(..., "--company-id"),
) -> None:
    """Show stored research for a company."""
    config = _get_config()
    db = _get_db(config)
    data = _get_orchestrator(config, db).load_research(company_id)

    if data.status is None:
        typer.echo(f"No research recorded for company {company_id}.")
        return

    status = data.status
    typer.echo(f"\nResearch for company {company_id}: {status.overall_status.value}")
    typer.echo(
        f"  Website: {status.website_status.value} | "
        f"Media: {status.media_status.value} | "
        f"Shareholders: {status.shareholders_status.value}"
    )
    if data.is_stale():
        typer.echo("  (stale, consider re-running)")

    if data.website:
        w = data.website
        typer.echo(f"\nWebsite: {w.website_url or '-'} [{w.crawl_status.value}]")
        if w.company_description:
            typer.echo(f"  {w.company_description}")
        if w.impressum_data.geschaeftsfuehrer:
            typer.echo(f"  Geschäftsführer: {w.impressum_data.geschaeftsfuehrer}")
        if w.crawl_error:
            typer.echo(f"  Error: {w.crawl_error}")

    if data.media_search:
        typer.echo(
            f"\nMedia: {data.media_search.search_status.value}, "
            f"{data.media_search.mentions_found} mentions"
        )
        for m in data.media_mentions:
            typer.echo(f"  {m.published_at or '----------'} | {m.title}")
            typer.echo(f"    {m.url}")

    if data.shareholder_backgrounds:
        typer.echo("\nShareholders:")
        for bg in data.shareholder_backgrounds:
            typer.echo(f"  {bg.shareholder_name}: {bg.enrichment_status.value}")
            if bg.bio_summary:
                typer.echo(f"    {bg.bio_summary}")


@app.command()
def diagnose() -> None:
    """Report which external services are configured and reachable."""
    config = _get_config()
    db = _get_db(config)
    typer.echo(json.dumps(_get_orchestrator(config, db).diagnose(), indent=2))


# ===================================================================
# HTTP
# ===================================================================

@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
) -> None:
    """Serve the research HTTP API."""
    import uvicorn

    from succession_research.api import create_app

    config = _get_config()
    uvicorn.run(create_app(config), host=host, port=port)


if __name__ == "__main__":
    app()
