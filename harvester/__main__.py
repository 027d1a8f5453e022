"""Command-line entry point: ``python -m harvester``.

``crawl`` is also the command the process supervisor spawns for each source.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from harvester.config.settings import HarvesterSettings
from harvester.crawl.detail_harvester import DetailHarvestResult
from harvester.logging_config import configure_logging
from harvester.middleware.error_handler import HarvesterError
from harvester.runtime import build_crawl_runtime, run_source
from harvester.sources.registry import SourceRegistry

logger = logging.getLogger(__name__)


@click.group()
@click.option("--log-level", default=None, help="Override HARVESTER_LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Listing harvester."""
    settings = HarvesterSettings()
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@cli.command()
@click.argument("source")
@click.option("--category", "categories", multiple=True, help="Category to crawl (repeatable)")
@click.option("--max-pages", type=int, default=None, help="Page ceiling per category")
@click.option("--resume", is_flag=True, help="Resume from the last unfinished session")
@click.option("--offset", type=int, default=0, help="Detail sources: skip the first N items")
@click.option("--limit", type=int, default=None, help="Detail sources: fetch at most N items")
@click.pass_obj
def crawl(
    settings: HarvesterSettings,
    source: str,
    categories: tuple[str, ...],
    max_pages: int | None,
    resume: bool,
    offset: int,
    limit: int | None,
) -> None:
    """Crawl SOURCE in this process."""
    runtime = build_crawl_runtime(settings)
    try:
        results = asyncio.run(
            run_source(
                runtime,
                source,
                categories=list(categories) or None,
                max_pages=max_pages,
                resume=resume,
                offset=offset,
                limit=limit,
            )
        )
    except HarvesterError as exc:
        logger.error("Crawl of %s failed: %s", source, exc.message, extra={"source": source})
        click.echo(f"Crawl failed: {exc.message}", err=True)
        sys.exit(1)

    for result in results:
        if isinstance(result, DetailHarvestResult):
            click.echo(
                f"{result.source}/{result.category or '-'}: {result.successful} ok, "
                f"{result.failed} failed, {result.items_saved} saved"
            )
        else:
            click.echo(
                f"{result.source}/{result.category or '-'}: {result.pages_scraped} pages, "
                f"{result.items_found} found, {result.items_saved} saved "
                f"({result.termination.value if result.termination else 'unknown'})"
            )


@cli.command()
@click.pass_obj
def sources(settings: HarvesterSettings) -> None:
    """List configured sources."""
    registry = SourceRegistry.from_yaml(settings.source_policies_path)
    names = registry.names()
    if not names:
        click.echo("No sources configured")
        return
    for name in names:
        policy = registry.policy(name)
        categories = ", ".join(policy.categories) or "-"
        click.echo(f"{name}\t{policy.factory or '-'}\t{categories}")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", type=int, default=None, help="Override HARVESTER_PORT")
@click.pass_obj
def serve(settings: HarvesterSettings, host: str, port: int | None) -> None:
    """Run the monitoring and control API."""
    import uvicorn

    uvicorn.run("harvester.main:app", host=host, port=port or settings.port, log_config=None)


if __name__ == "__main__":
    cli()
