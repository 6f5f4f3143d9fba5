"""CLI for cc-trace."""

import asyncio
import logging
import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.text import Text

from cc_trace import __version__
from cc_trace.models import Block, Chunk, SearchResult

app = typer.Typer(
    name="cc-trace",
    help="Chunk and search a Claude Code session trace.",
    no_args_is_help=True,
)
console = Console()
# Progress and status output stays off stdout so --json output remains parseable
err_console = Console(stderr=True)

LEVELS = ("turn", "task", "theme")
MODES = ("keyword", "smart")
PREVIEW_CHARS = 500


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cc-trace {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show debug logging")] = False,
) -> None:
    """Chunk and search a Claude Code session trace."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


def load_blocks(session: Path, include_all: bool = False) -> list[Block]:
    """Parse a session file, exiting with an error if it is missing."""
    from cc_trace.filter import FilterConfig, filter_blocks
    from cc_trace.parser import parse_session

    if not session.is_file():
        console.print(f"[red]Session file not found: {session}[/red]")
        raise typer.Exit(1)

    blocks = parse_session(session)
    if include_all:
        return filter_blocks(
            blocks,
            FilterConfig(show_progress=True, show_file_snapshots=True, show_queue_ops=True),
        )
    return filter_blocks(blocks)


def format_time(timestamp_ms: int | None) -> str:
    if timestamp_ms is None:
        return "-"
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def format_signals(chunk: Chunk) -> str:
    return ", ".join(signal.type for signal in chunk.boundary_signals)


def highlight_matches(text: str, query: str) -> str:
    """Highlight query terms in text using Rich markup."""
    terms = query.lower().split()

    for term in terms:
        # Skip very short terms to avoid too many highlights
        if len(term) < 3:
            continue
        pattern = re.compile(re.escape(term), re.IGNORECASE)
        text = pattern.sub(lambda m: f"[bold yellow]{m.group()}[/bold yellow]", text)
    return text


@app.command()
def chunks(
    session: Annotated[Path, typer.Argument(help="Session JSONL file")],
    level: Annotated[
        str, typer.Option("--level", "-l", help="Granularity: turn, task or theme")
    ] = "turn",
    include_all: Annotated[
        bool, typer.Option("--all", "-a", help="Include progress, snapshot and queue blocks")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Segment a session into turn, task or theme chunks."""
    from cc_trace.chunker import Chunker

    if level not in LEVELS:
        console.print(f"[red]Error: level must be one of {', '.join(LEVELS)}[/red]")
        raise typer.Exit(1)

    blocks = load_blocks(session, include_all)
    result = Chunker().create_chunks_at_level(blocks, level)  # type: ignore[arg-type]

    if json_output:
        console.print_json(data={"level": level, "chunks": [asdict(c) for c in result]})
        return

    if not result:
        console.print("[yellow]No chunks found.[/yellow]")
        return

    for chunk in result:
        header = Text()
        header.append(f"{chunk.id} ", style="bold cyan")
        header.append(chunk.label, style="green")
        console.print(header)
        details = (
            f"  {format_time(chunk.start_timestamp)} -> {format_time(chunk.end_timestamp)}"
            f" | {len(chunk.block_ids)} blocks"
            f" | tokens {chunk.total_tokens_in}/{chunk.total_tokens_out}"
        )
        signals = format_signals(chunk)
        if signals:
            details += f" | {signals}"
        console.print(details, style="dim")

    console.print("─" * 50)
    console.print(f"{len(result)} {level} chunks from {len(blocks)} blocks")


async def run_search(blocks: list[Block], query: str, mode: str, limit: int) -> list[SearchResult]:
    from cc_trace.embeddings import SentenceTransformerEmbedder
    from cc_trace.searcher import HybridSearchEngine

    embedder = SentenceTransformerEmbedder()
    if mode == "smart":
        with err_console.status("Loading embedding model..."):
            await embedder.init()

    engine = HybridSearchEngine(embedder)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=err_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Embedding blocks...", total=None)

        def on_progress(indexed: int, total: int) -> None:
            progress.update(task, completed=indexed, total=total)

        await engine.index_all(blocks, on_progress=on_progress)

    return await engine.search(query, mode=mode, limit=limit)  # type: ignore[arg-type]


@app.command()
def search(
    session: Annotated[Path, typer.Argument(help="Session JSONL file")],
    query: Annotated[str, typer.Argument(help="Search query")],
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="keyword, or smart (keyword + semantic)")
    ] = "keyword",
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of results")] = 10,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Search the blocks of a session."""
    from cc_trace.lexical import extract_text

    if not query.strip():
        console.print("[red]Error: Query required[/red]")
        raise typer.Exit(1)
    if mode not in MODES:
        console.print(f"[red]Error: mode must be one of {', '.join(MODES)}[/red]")
        raise typer.Exit(1)

    blocks = load_blocks(session)
    results = asyncio.run(run_search(blocks, query, mode, limit))

    if json_output:
        console.print_json(
            data={
                "query": query,
                "mode": mode,
                "total_results": len(results),
                "results": [asdict(r) for r in results],
            }
        )
        return

    if not results:
        console.print("[yellow]No results found. Try a different query.[/yellow]")
        return

    by_id = {block.id: block for block in blocks}
    for i, result in enumerate(results, 1):
        block = by_id.get(result.block_id)
        text = escape(extract_text(block)) if block else ""
        if len(text) > PREVIEW_CHARS:
            remaining = len(text) - PREVIEW_CHARS
            text = text[:PREVIEW_CHARS] + f"\n[dim](truncated, {remaining} more chars)[/dim]"

        header = Text()
        header.append(f"[{i}] ", style="bold cyan")
        header.append(block.type if block else "?", style="green")
        header.append(f" | {format_time(block.timestamp if block else None)}", style="dim")
        header.append(f" | {result.score:.3f}", style="dim")

        console.print(
            Panel(
                highlight_matches(text, query),
                title=str(header),
                subtitle=f"→ {result.block_id}",
                subtitle_align="left",
            )
        )

    console.print("─" * 50)
    console.print(f"Found {len(results)} results")


if __name__ == "__main__":
    app()
