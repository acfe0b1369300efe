"""CLI for recall.

Record every shell command with its context, then search it, browse it by
day, ask questions about it, or explore it as a graph in the browser.
"""

import json
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import assistant, web
from .capture import log_command
from .config import get_db_path, is_paused, load_config, set_paused
from .db import Store
from .errors import RecallError
from .logs import configure_logging
from .models import Command, SearchResult
from .search import SearchOptions, search as run_search

# Main help text - shown with `recall --help`
MAIN_HELP = """
Record and search your terminal history.

QUICK START:
  recall today                              Commands recorded today
  recall search "docker build"              Full-text search
  recall search cargo --repo api --failed   Search + structured filters
  recall ask what did I deploy yesterday    Ask a question (LLM)
  recall web                                Open the relationship graph

COMMANDS:
  search         Full-text search (FTS5) with filters
  today / on     Browse commands by day
  sessions       List recent sessions with aggregates
  ask            Answer a question from your history
  summarize      Summarize finished sessions with an LLM
  pause/resume   Stop and restart recording
  stats          Show database statistics
  rebuild-index  Rebuild the full-text index
  web            Serve the HTTP API and graph view

DATABASE:
  Default location: ~/.recall/recall.db
  Override with: --db PATH or RECALL_DB env var
"""

app = typer.Typer(
    name="recall",
    help=MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)

console = Console()

DbOption = Annotated[
    Optional[str],
    typer.Option(
        "--db",
        help="Database path. Overrides all other resolution.",
        envvar="RECALL_DB",
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option(
        "--json", "-j",
        help="Output as JSON array. Use this for programmatic access.",
    ),
]


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
) -> None:
    configure_logging("DEBUG" if verbose else None)


@contextmanager
def _errors_exit() -> Iterator[None]:
    """Print recall errors and exit non-zero."""
    try:
        yield
    except RecallError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)


@contextmanager
def _store(db_path: Optional[str]) -> Iterator[Store]:
    with _errors_exit():
        with Store.open(db_path) as store:
            yield store


def _format_duration(ms: Optional[int]) -> str:
    if ms is None:
        return "-"
    if ms >= 60_000:
        return f"{ms // 60_000}m{(ms % 60_000) // 1000}s"
    if ms >= 1000:
        return f"{ms // 1000}.{(ms % 1000) // 100}s"
    return f"{ms}ms"


def _format_time(ms: int, fmt: str = "%H:%M:%S") -> str:
    return datetime.fromtimestamp(ms / 1000).strftime(fmt)


def _exit_icon(code: Optional[int]) -> str:
    if code is None:
        return "[dim]·[/dim]"
    if code == 0:
        return "[green]✓[/green]"
    return "[red]✗[/red]"


def _command_dict(cmd: Command, rank: Optional[float] = None) -> dict:
    item = cmd.model_dump()
    if rank is not None:
        item["rank"] = rank
    return item


def _output_commands(
    commands: list[Command],
    title: str,
    as_json: bool = False,
    ranks: Optional[dict[int, float]] = None,
    empty_message: str = "No commands found.",
) -> None:
    """Print commands grouped into one table per consecutive session run."""
    if as_json:
        data = [_command_dict(c, ranks.get(c.id) if ranks else None) for c in commands]
        typer.echo(json.dumps(data, indent=2))
        return

    if not commands:
        typer.echo(empty_message)
        return

    console.print(f"\n[cyan]◉[/cyan] [bold]{title}[/bold]  [dim]{len(commands)} commands[/dim]")

    groups: list[list[Command]] = []
    for cmd in commands:
        if groups and groups[-1][0].session_id == cmd.session_id:
            groups[-1].append(cmd)
        else:
            groups.append([cmd])

    for group in groups:
        first = group[0]
        repo = next((c.git_repo for c in group if c.git_repo), None)
        branch = next((c.git_branch for c in group if c.git_branch), None)
        failures = sum(1 for c in group if c.failed)

        header = f"{_format_time(first.timestamp, '%H:%M')}  [dim]{first.session_id[:8]}[/dim]"
        if first.cwd:
            header += f"  [blue]{escape(Path(first.cwd).name or first.cwd)}[/blue]"
        if repo:
            header += f"  [green]{escape(repo)}[/green]"
            if branch:
                header += f"[dim]:[/dim][magenta]{escape(branch)}[/magenta]"
        if failures:
            header += f"  [red]{failures} failed[/red]"

        table = Table(title=header, title_justify="left", show_header=False, box=None)
        table.add_column("Exit", width=1)
        table.add_column("Time", style="dim")
        table.add_column("Duration", style="dim", justify="right")
        table.add_column("Command")

        for cmd in group:
            text = escape(cmd.command_text)
            if cmd.failed:
                text = f"[red]{text}[/red]"
            table.add_row(
                _exit_icon(cmd.exit_code),
                _format_time(cmd.timestamp),
                _format_duration(cmd.duration_ms),
                text,
            )
        console.print(table)


@app.command("log", hidden=True)
def log(
    command: Annotated[str, typer.Option("--command", help="Command line as typed.")],
    session: Annotated[str, typer.Option("--session", help="Session id from session-id.")],
    exit_code: Annotated[Optional[int], typer.Option("--exit-code")] = None,
    start: Annotated[Optional[int], typer.Option("--start", help="Start time (ms epoch).")] = None,
    cwd: Annotated[Optional[str], typer.Option("--cwd")] = None,
    terminal: Annotated[Optional[str], typer.Option("--terminal")] = None,
    output_file: Annotated[
        Optional[Path],
        typer.Option("--output-file", help="Temporary file with captured output; deleted."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Record one command (called by the shell hook)."""
    with _errors_exit():
        config = load_config()
    paused = is_paused()

    with _store(db) as store:
        log_command(
            store,
            command=command,
            session_id=session,
            ignore_patterns=config.privacy.ignore_patterns,
            paused=paused,
            exit_code=exit_code,
            start_ms=start,
            cwd=cwd,
            terminal=terminal,
            output_file=output_file,
        )


@app.command("session-id", hidden=True)
def session_id() -> None:
    """Print a fresh session id."""
    typer.echo(str(uuid.uuid4()))


SEARCH_HELP = """
Search recorded commands using SQLite FTS5 full-text search.

Matches command text, directory, repo and branch. Results ranked by relevance.

EXAMPLES:
  recall search docker
  recall search "cargo test" --repo api
  recall search deploy --dir infra --failed
  recall search "git*" --limit 5 --json
"""


@app.command(help=SEARCH_HELP)
def search(
    query: Annotated[str, typer.Argument(help="FTS5 search query.")],
    repo: Annotated[
        Optional[str],
        typer.Option("--repo", help="Only commands run in this git repo (exact name)."),
    ] = None,
    dir: Annotated[
        Optional[str],
        typer.Option("--dir", help="Only commands whose directory contains this text."),
    ] = None,
    failed: Annotated[
        bool,
        typer.Option("--failed", help="Only commands that exited non-zero."),
    ] = False,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", min=0, help="Maximum number of results."),
    ] = 20,
    db: DbOption = None,
    output_json: JsonOption = False,
) -> None:
    """Search command history."""
    opts = SearchOptions(query=query, repo=repo, dir=dir, failed_only=failed, limit=limit)
    with _store(db) as store:
        results: list[SearchResult] = run_search(store, opts)

    _output_commands(
        [r.command for r in results],
        f'Search: "{query}"',
        output_json,
        ranks={r.command.id: r.rank for r in results},
        empty_message="No matching commands found.",
    )


@app.command()
def today(db: DbOption = None, output_json: JsonOption = False) -> None:
    """Show today's commands."""
    day = date.today()
    with _store(db) as store:
        commands = store.commands_on_day(day)
    _output_commands(
        commands,
        f"Today - {day.strftime('%b %d, %Y')}",
        output_json,
        empty_message="No commands recorded today.",
    )


@app.command()
def on(
    day: Annotated[str, typer.Argument(help="Date as YYYY-MM-DD.")],
    db: DbOption = None,
    output_json: JsonOption = False,
) -> None:
    """Show commands recorded on a specific date."""
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        typer.echo(f"Error: Invalid date format: {day}. Use YYYY-MM-DD", err=True)
        raise typer.Exit(1)

    with _store(db) as store:
        commands = store.commands_on_day(parsed)
    _output_commands(
        commands, day, output_json, empty_message=f"No commands recorded on {day}."
    )


@app.command()
def sessions(
    limit: Annotated[int, typer.Option("--limit", "-n", min=0, help="Maximum sessions.")] = 20,
    offset: Annotated[int, typer.Option("--offset", min=0, help="Skip this many sessions.")] = 0,
    db: DbOption = None,
    output_json: JsonOption = False,
) -> None:
    """List recent sessions with command counts, failures and repos."""
    with _store(db) as store:
        overviews = store.session_overviews(limit, offset)

    if output_json:
        typer.echo(json.dumps([o.model_dump() for o in overviews], indent=2))
        return

    if not overviews:
        typer.echo("No sessions recorded.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Session", style="dim", width=8)
    table.add_column("Started", style="green")
    table.add_column("Commands", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Repos", style="cyan")

    for o in overviews:
        table.add_row(
            o.id[:8],
            _format_time(o.start_time, "%Y-%m-%d %H:%M"),
            str(o.command_count),
            str(o.failure_count) if o.failure_count else "-",
            ", ".join(o.repos) if o.repos else "-",
        )
    console.print(table)


@app.command()
def pause() -> None:
    """Pause recording until `recall resume`."""
    if set_paused(True):
        console.print("[yellow]⏸ Recording paused. Run `recall resume` to continue.[/yellow]")
    else:
        typer.echo("Recording is already paused.")


@app.command()
def resume() -> None:
    """Resume recording."""
    if set_paused(False):
        console.print("[green]▶ Recording resumed.[/green]")
    else:
        typer.echo("Recording is not paused.")


@app.command()
def summarize(db: DbOption = None) -> None:
    """Summarize unsummarized sessions using the configured LLM."""
    with _errors_exit():
        config = load_config()

    with _store(db) as store:
        pending = store.unsummarized_sessions(assistant.MIN_COMMANDS_TO_SUMMARIZE)
        if not pending:
            typer.echo("No sessions to summarize.")
            return

        typer.echo(f"Summarizing {len(pending)} sessions...")
        outcomes = assistant.summarize_pending(store, config.llm)

    for outcome in outcomes:
        if outcome.summary is not None:
            console.print(f"  [green]✓[/green] {outcome.session_id[:8]} {escape(outcome.summary.summary_text)}")
            console.print(f"    [dim]{escape(outcome.summary.intent or '')}[/dim]")
        else:
            console.print(f"  [red]✗[/red] {outcome.session_id[:8]} [red]{escape(outcome.error or '')}[/red]")


@app.command()
def ask(
    question: Annotated[list[str], typer.Argument(help="Question about your history.")],
    db: DbOption = None,
) -> None:
    """Ask a natural-language question about your history."""
    text = " ".join(question)
    with _errors_exit():
        config = load_config()

    with _store(db) as store:
        candidates = assistant.gather_candidates(store, text)

    with _errors_exit():
        answer = assistant.answer_question(config.llm, text, candidates)
    typer.echo(answer)


STATS_HELP = """
Show database statistics: sessions, commands, failures, repos.

EXAMPLES:
  recall stats          Human-readable output
  recall stats --json   {"sessions": 12, "commands": 340, ...}
"""


@app.command(help=STATS_HELP)
def stats(db: DbOption = None, output_json: JsonOption = False) -> None:
    """Show database statistics."""
    with _store(db) as store:
        data = store.stats()
        path = store.path

    if output_json:
        typer.echo(json.dumps(data.model_dump(), indent=2))
        return

    db_size = path.stat().st_size if path.exists() else 0
    typer.echo(f"Database: {path}")
    typer.echo(f"Size: {db_size:,} bytes")
    typer.echo(f"Sessions: {data.sessions}")
    typer.echo(f"Commands: {data.commands}")
    typer.echo(f"Failures: {data.failures}")
    typer.echo(f"Repos: {data.repos}")


REBUILD_INDEX_HELP = """
Rebuild the FTS5 search index from all commands and summaries.

Use this for maintenance/recovery if search results seem incorrect.
"""


@app.command("rebuild-index", help=REBUILD_INDEX_HELP)
def rebuild_index(db: DbOption = None) -> None:
    """Rebuild the full-text search index."""
    with _store(db) as store:
        counts = store.rebuild_index()
    typer.echo(
        f"Rebuilt index with {counts['commands_fts']} commands "
        f"and {counts['summaries_fts']} summaries"
    )


@app.command("web")
def web_command(
    port: Annotated[int, typer.Option("--port", help="Port to serve on.")] = web.DEFAULT_PORT,
    db: DbOption = None,
) -> None:
    """Serve the HTTP API on 127.0.0.1."""
    path = get_db_path(db)
    typer.echo(f"recall web server running at http://127.0.0.1:{port}")
    web.serve(path, port)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
