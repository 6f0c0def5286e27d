"""CLI entry point for threadsync."""

import asyncio
import logging

import click
import uvicorn

from .core import CANONICAL_STATUSES
from .server import build_runtime
from .threads import ThreadListAggregator


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Keep agent conversations in sync with the thread service."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the HTTP interface."""
    click.echo(f"Starting threadsync on http://{host}:{port}")
    uvicorn.run("threadsync.server:app", host=host, port=port, reload=False)


async def _list_threads(status: str | None, limit: int):
    runtime = build_runtime()
    try:
        aggregator = ThreadListAggregator(
            runtime.execution,
            runtime.client,
            page_size=limit,
            status=status,
            assistant_id=runtime.assistant_id,
        )
        await aggregator.load_more()
        return aggregator.source, aggregator.threads
    finally:
        await runtime.aclose()


@main.command()
@click.option(
    "--status",
    type=click.Choice(CANONICAL_STATUSES),
    default=None,
    help="Only list threads with this status.",
)
@click.option("--limit", default=20, show_default=True, help="Number of threads to list.")
def threads(status: str | None, limit: int):
    """List the most recently updated threads."""
    source, summaries = asyncio.run(_list_threads(status, limit))
    if not summaries:
        click.echo(f"No threads found ({source}).")
        return
    for summary in summaries:
        updated = summary.updated_at.strftime("%Y-%m-%d %H:%M") if summary.updated_at else "-"
        click.echo(f"{summary.id}  {updated}  {summary.status:<11}  {summary.title}")


async def _check_health() -> bool | None:
    runtime = build_runtime()
    try:
        if runtime.client is None:
            return None
        return await runtime.client.check_health()
    finally:
        await runtime.aclose()


@main.command()
def health():
    """Check that the thread service is reachable."""
    healthy = asyncio.run(_check_health())
    if healthy is None:
        click.echo("Thread service not configured (set THREADSYNC_SERVICE_URL).")
        return
    if not healthy:
        click.echo("Thread service is not reachable.", err=True)
        raise SystemExit(1)
    click.echo("Thread service is healthy.")
