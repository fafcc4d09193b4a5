# ruff: noqa: I001
"""CLI for the ``expense_import`` package.

Commands map one-to-one onto engine operations:

- ``import``: parse, process and commit a statement under a tracked session.
- ``preview``: parse and process only; prints what would be imported.
- ``rollback``: delete every expense written by an import session.
- ``sessions``: list a user's import sessions with summary stats.

Each command is a thin Typer wrapper around a ``cmd_*`` function returning an
exit code; errors go to stderr as ``Error: ...``. ``.env`` in the current
directory is loaded before any command runs (``DATABASE_URL`` in particular).
"""

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from typer.models import OptionInfo

from .config import EngineSettings, ImportConfig, SplitConfig
from .duplicates import duplicate_label
from .engine import BatchImportEngine
from .errors import RollbackFailedError
from .logging_setup import configure_logging
from .models import ImportProgress
from .resilience import rollback_session
from .sessions import SessionManager, SessionState
from .store import SqlDocumentStore

console = Console()


def _error(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def _build_config(
    *,
    couple_id: str,
    paid_by: str,
    partner_id: str,
    split_percentage: float | None,
    currency: str | None,
    primary_currency: str,
    date_format: str,
    detect_duplicates: bool,
) -> ImportConfig:
    split = (
        SplitConfig(type="custom", percentage=Decimal(str(split_percentage)))
        if split_percentage is not None
        else SplitConfig()
    )
    return ImportConfig(
        couple_id=couple_id,
        paid_by=paid_by,
        partner_id=partner_id,
        split=split,
        currency=currency,
        primary_currency=primary_currency,
        date_format=date_format,  # type: ignore[arg-type]
        detect_duplicates=detect_duplicates,
    )


def _engine(database_url: str | None, batch_size: int | None = None) -> BatchImportEngine:
    settings = EngineSettings.from_env()
    if batch_size is not None:
        settings = settings.model_copy(update={"batch_size": batch_size})
    return BatchImportEngine(SqlDocumentStore(database_url=database_url), settings=settings)


# ---- Command handlers --------------------------------------------------------


def cmd_import(
    file_path: Path,
    config: ImportConfig,
    *,
    user_id: str,
    database_url: str | None = None,
    batch_size: int | None = None,
    rollback_on_failure: bool = True,
) -> int:
    """Import ``file_path``; returns 0 on success, 1 on failure, 2 on a failed rollback."""

    if not file_path.is_file():
        _error(f"file not found: {file_path}")
        return 1
    engine = _engine(database_url, batch_size)

    with Progress(
        TextColumn("[cyan]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
    ) as bar:
        task = bar.add_task("Starting", total=100)

        def on_progress(p: ImportProgress) -> None:
            bar.update(task, completed=p.percentage, description=p.phase.capitalize())

        try:
            result = engine.import_file(
                file_path,
                config,
                user_id=user_id,
                on_progress=on_progress,
                rollback_on_failure=rollback_on_failure,
            )
        except RollbackFailedError as e:
            _error(str(e))
            if e.remaining_ids:
                _error(f"remaining expense ids: {', '.join(e.remaining_ids)}")
            return 2

    if not result.success:
        for message in result.errors:
            _error(message)
        if result.rolled_back:
            console.print("[yellow]All imported records were rolled back.[/yellow]")
        elif result.partial:
            console.print(
                f"[yellow]Partial import: {result.imported_count} expense(s) were written "
                f"(session {result.session_id}).[/yellow]"
            )
        return 1

    console.print(
        f"[green]Imported {result.imported_count} expense(s)[/green] "
        f"in {result.batches_committed} batch(es) (session {result.session_id})"
    )
    skipped = result.summary.get("auto_skipped", 0)
    if skipped:
        console.print(f"Skipped {skipped} likely duplicate(s).")
    if result.integrity is not None and not result.integrity.ok:
        console.print("[yellow]Integrity check reported mismatches; see the log.[/yellow]")
    return 0


def cmd_preview(
    file_path: Path,
    config: ImportConfig,
    *,
    database_url: str | None = None,
    limit: int = 20,
) -> int:
    if not file_path.is_file():
        _error(f"file not found: {file_path}")
        return 1
    preview = _engine(database_url).preview(file_path, config)
    if not preview.parse.success:
        _error(preview.parse.error or "could not parse the statement")
        return 1
    processed = preview.process
    if processed is None or not processed.success:
        _error(processed.error if processed else "processing failed")
        return 1

    table = Table(title=f"Preview of {file_path.name}")
    for column in ("Date", "Description", "Amount", "Category", "Confidence", "Duplicate"):
        table.add_column(column)
    dup_by_tx = {id(r.transaction): r for r in processed.duplicate_results}
    rows = zip(processed.valid_transactions, processed.category_suggestions, strict=True)
    for i, (tx, suggestion) in enumerate(rows):
        if i >= limit:
            break
        dup = dup_by_tx.get(id(tx))
        table.add_row(
            tx.date.isoformat() if tx.date else "",
            tx.description,
            f"{tx.amount} {tx.currency or config.primary_currency}",
            suggestion.category_key,
            f"{suggestion.confidence:.2f}",
            duplicate_label(dup.top_confidence, config.duplicates) if dup else "no",
        )
    console.print(table)

    s = processed.summary
    if s is not None:
        console.print(
            f"{s.valid} ready to import, {s.invalid} invalid, {s.duplicates} with duplicates "
            f"({s.auto_skipped} would be skipped, {s.flagged_for_review} need review)"
        )
    return 0


def cmd_rollback(session_id: str, *, database_url: str | None = None) -> int:
    store = SqlDocumentStore(database_url=database_url)
    manager = SessionManager(store)
    outcome = rollback_session(store, session_id)
    if not outcome.success:
        _error(
            f"rollback of session {session_id} failed after deleting "
            f"{outcome.deleted_count} expense(s): {outcome.error}"
        )
        return 2
    session = manager.get(session_id)
    if session is not None and not session.state.is_terminal:
        manager.fail(session_id, "rolled back by user")
    console.print(f"Deleted {outcome.deleted_count} expense(s) from session {session_id}.")
    return 0


def cmd_sessions(user_id: str, *, database_url: str | None = None) -> int:
    manager = SessionManager(SqlDocumentStore(database_url=database_url))
    sessions = manager.list_for_user(user_id)
    if not sessions:
        console.print(f"No import sessions for {user_id}.")
        return 0
    table = Table(title=f"Import sessions for {user_id}")
    for column in ("Session", "State", "File", "Progress", "Created"):
        table.add_column(column)
    style = {SessionState.COMPLETED: "green", SessionState.FAILED: "red"}
    for s in sessions:
        color = style.get(s.state, "yellow")
        table.add_row(
            s.id,
            f"[{color}]{s.state}[/{color}]",
            s.file_name or "",
            f"{s.progress.percentage}%",
            s.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    stats = manager.stats(user_id)
    console.print(
        f"{stats.total} session(s): {stats.completed} completed, {stats.failed} failed, "
        f"{stats.cancelled} cancelled; {stats.total_imported} expense(s) imported"
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements (CSV or PDF) as shared household expenses. "
        "Loads DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter defaults).
FILE_OPTION: OptionInfo = typer.Option(
    ...,
    "--file",
    help="Path to a CSV or PDF bank statement",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports a friendly error
)
COUPLE_OPTION: OptionInfo = typer.Option(..., "--couple-id", help="Household identifier.")
PAID_BY_OPTION: OptionInfo = typer.Option(..., "--paid-by", help="User who paid.")
PARTNER_OPTION: OptionInfo = typer.Option(..., "--partner-id", help="The other partner.")


@app.command("import")
def import_cmd(
    file_path: Annotated[Path, FILE_OPTION],
    couple_id: Annotated[str, COUPLE_OPTION],
    paid_by: Annotated[str, PAID_BY_OPTION],
    partner_id: Annotated[str, PARTNER_OPTION],
    *,
    user_id: str | None = typer.Option(None, help="Session owner (defaults to --paid-by)."),
    split_percentage: float | None = typer.Option(
        None, help="Payer's share in percent for a custom split (default 50/50)."
    ),
    currency: str | None = typer.Option(None, help="Currency of the statement amounts."),
    primary_currency: str = typer.Option("USD", help="Household primary currency."),
    date_format: str = typer.Option("auto", help="auto, MM/DD/YYYY or DD/MM/YYYY."),
    duplicates: bool = typer.Option(True, help="Check against recent expenses."),
    rollback: bool = typer.Option(True, help="Roll back written batches on failure."),
    batch_size: int | None = typer.Option(None, help="Override the per-batch write count."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Import a statement into the expense store."""

    try:
        config = _build_config(
            couple_id=couple_id,
            paid_by=paid_by,
            partner_id=partner_id,
            split_percentage=split_percentage,
            currency=currency,
            primary_currency=primary_currency,
            date_format=date_format,
            detect_duplicates=duplicates,
        )
    except ValidationError as e:
        _error(f"invalid options: {e}")
        raise typer.Exit(2) from e
    code = cmd_import(
        file_path,
        config,
        user_id=user_id or paid_by,
        database_url=database_url,
        batch_size=batch_size,
        rollback_on_failure=rollback,
    )
    raise typer.Exit(code)


@app.command("preview")
def preview_cmd(
    file_path: Annotated[Path, FILE_OPTION],
    couple_id: Annotated[str, COUPLE_OPTION],
    paid_by: Annotated[str, PAID_BY_OPTION],
    partner_id: Annotated[str, PARTNER_OPTION],
    *,
    currency: str | None = typer.Option(None, help="Currency of the statement amounts."),
    primary_currency: str = typer.Option("USD", help="Household primary currency."),
    date_format: str = typer.Option("auto", help="auto, MM/DD/YYYY or DD/MM/YYYY."),
    limit: int = typer.Option(20, help="Rows to show."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Show what an import would do without writing anything."""

    try:
        config = _build_config(
            couple_id=couple_id,
            paid_by=paid_by,
            partner_id=partner_id,
            split_percentage=None,
            currency=currency,
            primary_currency=primary_currency,
            date_format=date_format,
            detect_duplicates=True,
        )
    except ValidationError as e:
        _error(f"invalid options: {e}")
        raise typer.Exit(2) from e
    raise typer.Exit(cmd_preview(file_path, config, database_url=database_url, limit=limit))


@app.command("rollback")
def rollback_cmd(
    session_id: str = typer.Argument(..., help="Import session id (import_...)."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Delete every expense written by an import session."""

    raise typer.Exit(cmd_rollback(session_id, database_url=database_url))


@app.command("sessions")
def sessions_cmd(
    user_id: str = typer.Option(..., "--user-id", help="Session owner."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """List import sessions for a user."""

    raise typer.Exit(cmd_sessions(user_id, database_url=database_url))


@app.callback()
def _root() -> None:
    """Load ``.env`` (without overriding the environment) and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
