"""
CLI for caseshelf.

Commands:
    caseshelf cache list|usage|add|remove|clear - Manage offline documents
    caseshelf credits open|balance|add|history - Inspect and top up credits
    caseshelf config - Show current configuration
    caseshelf version - Print version
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Any, Awaitable, Callable, TypeVar

import orjson
import typer
from rich.console import Console
from rich.table import Table

from caseshelf import __version__
from caseshelf.config import Settings, clear_settings_cache, get_settings
from caseshelf.exceptions import CaseShelfError
from caseshelf.logging import setup_logging
from caseshelf.shelf import CaseShelf
from caseshelf.types import CreditStatus, StoreOutcome, TransactionKind

T = TypeVar("T")

app = typer.Typer(
    name="caseshelf",
    help="caseshelf - offline case-file cache and credit ledger",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Manage documents available offline", no_args_is_help=True)
credits_app = typer.Typer(help="Inspect and manage credit balances", no_args_is_help=True)
app.add_typer(cache_app, name="cache")
app.add_typer(credits_app, name="credits")

console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    CreditStatus.GOOD: "green",
    CreditStatus.WARNING: "yellow",
    CreditStatus.CRITICAL: "red",
}

JsonOption = Annotated[bool, typer.Option("--json", help="Print JSON instead of a table")]


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _run(action: Callable[[CaseShelf], Awaitable[T]]) -> T:
    """Open a CaseShelf from settings, run ``action`` and close it."""
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'caseshelf config' to see the current values."
        )
        raise typer.Exit(1)

    setup_logging(settings.LOG_LEVEL, log_file=settings.LOG_FILE)

    async def runner() -> T:
        async with CaseShelf(settings) as shelf:
            return await action(shelf)

    try:
        return asyncio.run(runner())
    except CaseShelfError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _print_json(data: Any) -> None:
    console.print_json(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8"))


def _exit_on_failure(outcome: StoreOutcome, action: str) -> None:
    if not outcome:
        failure = outcome.failure.value if outcome.failure else "error"
        error_console.print(f"[red]Failed to {action}:[/red] {failure} - {outcome.error}")
        raise typer.Exit(1)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


# =============================================================================
# cache
# =============================================================================


@cache_app.command("list")
def cache_list(as_json: JsonOption = False) -> None:
    """List cached documents, newest first."""
    documents = _run(lambda shelf: shelf.documents.list_documents())

    if as_json:
        _print_json(
            [
                {
                    "identity": d.identity,
                    "title": d.title,
                    "source_url": d.source_url,
                    "cached_at": d.cached_at.isoformat(),
                    "size_bytes": d.size_bytes,
                }
                for d in documents
            ]
        )
        return

    if not documents:
        console.print("[dim]No documents cached.[/dim]")
        return

    table = Table(title="Cached Documents", show_header=True)
    table.add_column("Identity", style="cyan")
    table.add_column("Title")
    table.add_column("Size", justify="right")
    table.add_column("Cached At", style="dim")
    for d in documents:
        table.add_row(
            d.identity,
            d.title,
            _format_size(d.size_bytes),
            d.cached_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cache_app.command("usage")
def cache_usage(as_json: JsonOption = False) -> None:
    """Show how many documents are cached and how much space they use."""
    usage = _run(lambda shelf: shelf.documents.usage())

    if as_json:
        _print_json(
            {
                "count": usage.count,
                "total_size_bytes": usage.total_size_bytes,
                "quota_bytes": usage.quota_bytes,
                "remaining_bytes": usage.remaining_bytes,
            }
        )
        return

    console.print(f"[bold]Documents:[/bold] {usage.count}")
    console.print(f"[bold]Size:[/bold] {_format_size(usage.total_size_bytes)}")
    if usage.quota_bytes is not None:
        console.print(
            f"[bold]Quota:[/bold] {_format_size(usage.quota_bytes)} "
            f"({_format_size(usage.remaining_bytes or 0)} free)"
        )


@cache_app.command("add")
def cache_add(
    identity: Annotated[str, typer.Argument(help="Document identity")],
    url: Annotated[str, typer.Argument(help="URL to fetch the document from")],
    title: Annotated[str, typer.Option("--title", "-t", help="Display title")] = "",
) -> None:
    """Fetch a document and keep it available offline."""
    outcome = _run(lambda shelf: shelf.documents.cache(identity, title or identity, url))
    _exit_on_failure(outcome, "cache document")
    console.print(f"[green]Cached[/green] {identity}")


@cache_app.command("remove")
def cache_remove(
    identity: Annotated[str, typer.Argument(help="Document identity")],
) -> None:
    """Remove one document from the offline cache."""
    outcome = _run(lambda shelf: shelf.documents.remove(identity))
    _exit_on_failure(outcome, "remove document")
    console.print(f"Removed {identity}")


@cache_app.command("clear")
def cache_clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Remove every cached document."""
    if not yes:
        typer.confirm("Remove all cached documents?", abort=True)
    outcome = _run(lambda shelf: shelf.documents.clear())
    _exit_on_failure(outcome, "clear cache")
    console.print("Cache cleared")


# =============================================================================
# credits
# =============================================================================


@credits_app.command("open")
def credits_open(
    subject_id: Annotated[str, typer.Argument(help="Account subject ID")],
) -> None:
    """Open an account with the configured starting balance."""
    balance = _run(lambda shelf: shelf.open_account(subject_id))
    console.print(f"Account [cyan]{subject_id}[/cyan] balance: {balance}")


@credits_app.command("balance")
def credits_balance(
    subject_id: Annotated[str, typer.Argument(help="Account subject ID")],
    as_json: JsonOption = False,
) -> None:
    """Show balance and credit status."""
    result = _run(lambda shelf: shelf.ledger.status(subject_id))
    if not result:
        error_console.print(f"[red]Error:[/red] {result.error}")
        raise typer.Exit(1)

    status = result.status or CreditStatus.CRITICAL
    if as_json:
        _print_json(
            {
                "subject_id": subject_id,
                "balance": result.balance,
                "status": status.value,
                "message": status.message,
            }
        )
        return

    style = STATUS_STYLES[status]
    console.print(f"[bold]Balance:[/bold] {result.balance}")
    console.print(f"[bold]Status:[/bold] [{style}]{status.value}[/{style}] - {status.message}")


@credits_app.command("add")
def credits_add(
    subject_id: Annotated[str, typer.Argument(help="Account subject ID")],
    amount: Annotated[int, typer.Argument(min=1, help="Credits to add")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="Transaction description")
    ] = "Credit purchase",
) -> None:
    """Add purchased credits to an account."""
    result = _run(lambda shelf: shelf.ledger.credit(subject_id, amount, description))
    if not result:
        error_console.print(f"[red]Error:[/red] {result.error}")
        raise typer.Exit(1)
    console.print(f"Added {amount} credits. Balance: {result.balance}")


@credits_app.command("history")
def credits_history(
    subject_id: Annotated[str, typer.Argument(help="Account subject ID")],
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum rows")] = 20,
    as_json: JsonOption = False,
) -> None:
    """Show recent credit transactions, newest first."""
    transactions = _run(lambda shelf: shelf.ledger.history(subject_id, limit=limit))

    if as_json:
        _print_json(
            [
                {
                    "transaction_id": t.transaction_id,
                    "kind": t.kind.value,
                    "amount": t.amount,
                    "description": t.description,
                    "timestamp": t.timestamp.isoformat(),
                    "balance_after": t.balance_after,
                }
                for t in transactions
            ]
        )
        return

    if not transactions:
        console.print("[dim]No transactions.[/dim]")
        return

    table = Table(title=f"Transactions for {subject_id}", show_header=True)
    table.add_column("When", style="dim")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Balance", justify="right")
    for t in transactions:
        sign, style = ("+", "green") if t.kind == TransactionKind.PURCHASE else ("-", "red")
        table.add_row(
            t.timestamp.strftime("%Y-%m-%d %H:%M"),
            t.kind.value,
            f"[{style}]{sign}{t.amount}[/{style}]",
            t.description,
            str(t.balance_after),
        )
    console.print(table)


# =============================================================================
# misc
# =============================================================================


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = _get_settings_safe()
    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print("Check the environment variables or the .env file.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in settings.display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)
    console.print(table)


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"caseshelf version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
