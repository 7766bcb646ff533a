"""Command-line interface for the labprofile project."""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx
import structlog
import typer
from rich.console import Console
from rich.table import Table

from labprofile.logs import configure_logging
from labprofile.services import (
    IdConverter,
    NcbiApiError,
    PipelineError,
    PipelineOptions,
    PipelineRunner,
    PmcMethodsFetcher,
    SqlProfileStorage,
    build_pipeline,
)
from labprofile.settings import Settings, get_settings

console = Console()
app = typer.Typer(help="labprofile – researcher profile ingestion")
logger = structlog.get_logger(__name__)


def _bootstrap() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_level)
    return settings


@app.command()
def config(
    json_output: bool = typer.Option(False, "--json", help="Output settings as JSON"),
) -> None:
    """Display the resolved settings."""
    settings = _bootstrap()
    if json_output:
        typer.echo(settings.model_dump_json(indent=2, exclude={"ncbi_api_key"}))
        return
    table = Table(title="labprofile Settings")
    table.add_column("Key")
    table.add_column("Value", overflow="fold")
    for key, value in settings.model_dump().items():
        if key == "ncbi_api_key" and value:
            value = "***"
        table.add_row(key, str(value))
    table.add_row("ncbi_delay_seconds", str(settings.ncbi_delay_seconds))
    console.print(table)


@app.command()
def methods(
    pmcids: list[str] = typer.Argument(..., help="PMC identifiers, with or without the PMC prefix"),
    full: bool = typer.Option(False, "--full", help="Print the complete methods text"),
) -> None:
    """Fetch articles from PMC and print their methods sections."""
    settings = _bootstrap()

    async def runner() -> None:
        async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
            fetcher = PmcMethodsFetcher(client, settings)
            try:
                results = await fetcher.fetch_methods_sections(pmcids)
            except (NcbiApiError, httpx.HTTPError) as exc:
                console.print(f"[red]{exc}[/red]")
                raise typer.Exit(code=1) from exc

        for result in results:
            if not result.methods_text:
                console.print(f"[yellow]{result.pmcid}[/yellow]: no methods section found")
                continue
            text = result.methods_text if full else _preview(result.methods_text)
            console.rule(result.pmcid)
            console.print(text, markup=False)

    asyncio.run(runner())


@app.command()
def convert(
    ids: list[str] = typer.Argument(..., help="DOIs, PMIDs, or PMCIDs"),
) -> None:
    """Cross-reference identifiers through the NCBI ID converter."""
    settings = _bootstrap()

    async def runner() -> None:
        async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
            converter = IdConverter(client, settings)
            try:
                records = await converter.convert_ids(ids)
            except (NcbiApiError, httpx.HTTPError) as exc:
                console.print(f"[red]{exc}[/red]")
                raise typer.Exit(code=1) from exc

        if not records:
            console.print("[yellow]No records returned.")
            return
        table = Table(title=f"ID conversion ({len(records)} records)")
        table.add_column("PMID")
        table.add_column("PMCID")
        table.add_column("DOI", overflow="fold")
        table.add_column("Error", overflow="fold")
        for record in records:
            table.add_row(record.pmid or "—", record.pmcid or "—", record.doi or "—", record.errmsg or "")
        console.print(table)

    asyncio.run(runner())


@app.command()
def ingest(
    user_id: str = typer.Argument(..., help="Local user identifier the profile belongs to"),
    orcid_id: str = typer.Argument(..., help="ORCID iD, e.g. 0000-0002-1825-0097"),
    deep_mining: bool = typer.Option(True, "--deep-mining/--no-deep-mining", help="Mine PMC methods sections"),
    token: Optional[str] = typer.Option(None, "--token", help="ORCID access token for limited-visibility items"),
) -> None:
    """Run the full profile pipeline for one researcher."""
    settings = _bootstrap()
    logger.info("cli.ingest", user_id=user_id, orcid=orcid_id, deep_mining=deep_mining)

    async def runner() -> None:
        async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
            pipeline = build_pipeline(client, settings)
            options = PipelineOptions(deep_mining=deep_mining, access_token=token)
            try:
                result = await PipelineRunner(pipeline).run(user_id, orcid_id, options)
            except (PipelineError, NcbiApiError, httpx.HTTPError) as exc:
                console.print(f"[red]{exc}[/red]")
                raise typer.Exit(code=1) from exc

        action = "Created" if result.profile_created else "Updated"
        console.print(
            f"[green]{action}[/green] profile v{result.profile_version} for {user_id}: "
            f"{result.publications_stored} publications stored"
        )
        if not result.synthesis.valid:
            console.print("[yellow]Synthesis produced no usable output; profile fields left empty.")
        for warning in result.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")

    asyncio.run(runner())


@app.command()
def show(
    user_id: str = typer.Argument(..., help="User whose stored profile to display"),
) -> None:
    """Display the stored profile and its publications."""
    settings = _bootstrap()

    async def runner() -> None:
        storage = SqlProfileStorage(settings)
        profile = await storage.find_profile(user_id)
        if profile is None:
            console.print(f"[yellow]No profile stored for {user_id}.")
            raise typer.Exit(code=1)
        publications = await storage.list_publications(user_id)

        table = Table(title=f"Profile {user_id} (v{profile.profile_version})")
        table.add_column("Field")
        table.add_column("Value", overflow="fold")
        table.add_row("Summary", profile.research_summary or "—")
        table.add_row("Techniques", ", ".join(profile.techniques) or "—")
        table.add_row("Models", ", ".join(profile.experimental_models) or "—")
        table.add_row("Disease areas", ", ".join(profile.disease_areas) or "—")
        table.add_row("Targets", ", ".join(profile.key_targets) or "—")
        table.add_row("Keywords", ", ".join(profile.keywords) or "—")
        table.add_row("Grants", "; ".join(profile.grant_titles) or "—")
        table.add_row("Abstracts hash", profile.raw_abstracts_hash or "—")
        console.print(table)

        if not publications:
            console.print("[yellow]No publications stored.")
            return
        pubs = Table(title=f"Publications ({len(publications)})")
        pubs.add_column("PMID")
        pubs.add_column("Year")
        pubs.add_column("Position")
        pubs.add_column("Methods")
        pubs.add_column("Title", overflow="fold")
        for publication in publications:
            pubs.add_row(
                publication.pmid or "—",
                str(publication.year or "—"),
                publication.author_position,
                "yes" if publication.methods_text else "no",
                publication.title,
            )
        console.print(pubs)

    asyncio.run(runner())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Launch the status polling API."""
    import uvicorn

    _bootstrap()
    uvicorn.run(
        "labprofile.web.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


def _preview(text: str, limit: int = 600) -> str:
    return text if len(text) <= limit else text[:limit].rstrip() + " …"
