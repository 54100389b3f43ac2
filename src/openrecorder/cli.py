"""CLI module for openrecorder."""

from __future__ import annotations

import asyncio
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from openrecorder import __version__
from openrecorder.config import CONFIG, load_openrecorder_config
from openrecorder.logging_config import setup_logging
from openrecorder.recorder.events import ArchiveSizeEvent, PageCommittedEvent
from openrecorder.recorder.manager import RecordingManager
from openrecorder.recorder.profile import RecorderProfile
from openrecorder.recorder.transport import CDPConnection
from openrecorder.recorder.writer import MemoryWriter
from openrecorder.utils import format_bytes

load_dotenv()

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="openrecorder")
def cli():
    """openrecorder - record browser network traffic over CDP."""
    pass


@cli.command()
@click.argument("cdp_url", required=False)
@click.option("--target-id", "-t", default=None, help="Page target to record (defaults to the first page)")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for routed command replies (0 disables)")
@click.option("--no-reload", is_flag=True, help="Do not reload the page after attaching")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def record(
    cdp_url: Optional[str],
    target_id: Optional[str],
    timeout: Optional[float],
    no_reload: bool,
    verbose: bool,
):
    """Record a page target until interrupted with Ctrl-C.

    Connects to the browser at CDP_URL (http://host:port or ws://...),
    attaches to the target and prints a summary of everything captured.
    """
    setup_logging(log_level="debug" if verbose else None, force_setup=verbose)

    cdp_url = cdp_url or CONFIG.CDP_URL
    if not cdp_url:
        raise click.UsageError("CDP_URL is required (or set OPENRECORDER_CDP_URL)")

    profile_kwargs: dict = load_openrecorder_config()
    if timeout is not None:
        profile_kwargs["command_timeout"] = timeout or None
    if no_reload:
        profile_kwargs["reload_on_attach"] = False
    profile = RecorderProfile(**profile_kwargs)

    writer = MemoryWriter()

    async def execute():
        connection = CDPConnection(cdp_url=cdp_url)
        await connection.start()
        manager = RecordingManager(connection=connection, profile=profile)

        def on_page(event: PageCommittedEvent) -> None:
            state = "final" if event.finished else "snapshot"
            console.print(f"[blue]Page {state}:[/blue] {event.title or event.url}")

        def on_size(event: ArchiveSizeEvent) -> None:
            console.print(f"[dim]Recorded {event.size_text}[/dim]")

        manager.event_bus.on(PageCommittedEvent, on_page)
        manager.event_bus.on(ArchiveSizeEvent, on_size)

        try:
            chosen = target_id
            if chosen is None:
                pages = await connection.get_page_targets()
                if not pages:
                    console.print("[red]No page targets found[/red]")
                    return
                chosen = pages[0]["targetId"]

            recorder = await manager.start_recorder(chosen, writer)
            console.print(Panel.fit(
                f"[bold blue]openrecorder[/bold blue]\n"
                f"Target: {chosen}\n"
                f"Press Ctrl-C to stop",
                title="Recording",
            ))

            while recorder.running:
                await asyncio.sleep(0.5)
        finally:
            await manager.close()
            await connection.stop()

    try:
        asyncio.run(execute())
    except KeyboardInterrupt:
        console.print("\n[yellow]Recording interrupted[/yellow]")

    _print_summary(writer)


@cli.command()
@click.argument("cdp_url", required=False)
def targets(cdp_url: Optional[str]):
    """List the page targets of a running browser."""
    cdp_url = cdp_url or CONFIG.CDP_URL
    if not cdp_url:
        raise click.UsageError("CDP_URL is required (or set OPENRECORDER_CDP_URL)")

    async def execute():
        connection = CDPConnection(cdp_url=cdp_url)
        await connection.start()
        try:
            return await connection.get_page_targets()
        finally:
            await connection.stop()

    pages = asyncio.run(execute())

    table = Table(title="Page targets")
    table.add_column("Target id")
    table.add_column("Title")
    table.add_column("URL")
    for page in pages:
        table.add_row(page.get("targetId", ""), page.get("title", ""), page.get("url", ""))
    console.print(table)


def _print_summary(writer: MemoryWriter) -> None:
    """Print pages and resources captured by the in-memory writer."""
    pages = Table(title=f"Pages ({len(writer.pages)})")
    pages.add_column("Title")
    pages.add_column("URL")
    pages.add_column("Size", justify="right")
    pages.add_column("Final")
    for page in writer.pages.values():
        pages.add_row(page.title, page.url, format_bytes(page.size), "yes" if page.finished else "no")
    console.print(pages)

    resources = Table(title=f"Resources ({len(writer.resources)}, {format_bytes(writer.total_size)})")
    resources.add_column("Method")
    resources.add_column("Status", justify="right")
    resources.add_column("URL", overflow="fold")
    resources.add_column("Size", justify="right")
    for resource in writer.resources:
        resources.add_row(
            resource.method,
            str(resource.status or ""),
            resource.url,
            format_bytes(resource.size),
        )
    console.print(resources)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
