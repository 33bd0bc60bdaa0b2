"""
Typer CLI for the cohort link service.

Commands:
    cohort-links db init              - Initialize database tables
    cohort-links links show ID        - Show a cohort's link state and module counts
    cohort-links links set ID         - Link a cohort to another cohort or the global library
    cohort-links links unlink ID      - Unlink all, by type, or specific modules
    cohort-links links convert ID     - Convert a cohort's own modules to global
    cohort-links links untag ID       - Complete untag (unlink all + convert to global)
    cohort-links links audit          - Report (and optionally repair) inconsistent cohorts
    cohort-links serve                - Run the API server

Usage:
    cohort-links links set 3f2c... --source 9a1b...
    cohort-links links set 3f2c... --global
    cohort-links links unlink 3f2c... --all
    cohort-links links audit --repair
"""

from __future__ import annotations

from typing import List, NoReturn, Optional
from uuid import UUID

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cohortlinks.config import get_settings
from cohortlinks.db.database import session_scope
from cohortlinks.links import (
    CohortLinkError,
    LinkStateAuditor,
    LinkStateCoordinator,
    LinkType,
    ModuleCatalog,
    UntagOrchestrator,
    UntagStepError,
)
from cohortlinks.log_setup import configure_logging

app = typer.Typer(
    help="cohort-links CLI: decide whose learning modules each cohort sees",
    no_args_is_help=True,
)
db_app = typer.Typer(help="Database management")
links_app = typer.Typer(help="Cohort link management")
app.add_typer(db_app, name="db")
app.add_typer(links_app, name="links")

console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    configure_logging("DEBUG" if verbose else "WARNING")


def _fail(exc: CohortLinkError) -> NoReturn:
    rprint(f"[red]✗[/red] {escape(str(exc))}")
    raise typer.Exit(code=1)


# ========================================
# DB COMMANDS
# ========================================


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from cohortlinks.db.database import init_db

    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# LINK COMMANDS
# ========================================


@links_app.command("show")
def links_show(cohort_id: UUID = typer.Argument(..., help="Cohort ID")) -> None:
    """Show a cohort's active link and module counts."""
    try:
        with session_scope() as session:
            state = LinkStateCoordinator().get_link_state(session, cohort_id)
            stats = ModuleCatalog().link_stats(session, cohort_id)
    except CohortLinkError as exc:
        _fail(exc)

    table = Table(title=f"Cohort {escape(state.name)}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", state.status)
    table.add_row("Active link", state.active_link_type.value)
    table.add_row("Source", stats.active_source_name)
    table.add_row("Linked cohort", str(state.linked_cohort_id or "-"))
    table.add_row("Link records", str(state.link_count))
    table.add_row("Visible modules", str(stats.visible_modules))
    table.add_row("Own modules", str(stats.own_modules))
    table.add_row("Global modules", str(stats.global_modules))
    console.print(table)


@links_app.command("set")
def links_set(
    cohort_id: UUID = typer.Argument(..., help="Cohort to link"),
    source: Optional[UUID] = typer.Option(None, "--source", "-s", help="Source cohort ID"),
    use_global: bool = typer.Option(False, "--global", "-g", help="Link to the global library"),
    modules: Optional[List[UUID]] = typer.Option(
        None, "--module", "-m", help="Specific module to link (repeatable, default: all)"
    ),
    actor: Optional[str] = typer.Option(None, "--actor", help="Recorded as linked_by"),
) -> None:
    """Link a cohort to another cohort's modules or the global library."""
    if use_global == (source is not None):
        rprint("[red]✗[/red] Pass exactly one of --source or --global")
        raise typer.Exit(code=1)

    link_type = LinkType.GLOBAL if use_global else LinkType.COHORT
    coordinator = LinkStateCoordinator()
    try:
        with session_scope() as session:
            coordinator.check_link(session, cohort_id, link_type, source)
            module_ids = ModuleCatalog().resolve_source_modules(session, link_type, source, modules)
            if not module_ids:
                rprint("[yellow]![/yellow] No modules found to link")
                return
            result = coordinator.set_link(
                session,
                cohort_id,
                link_type,
                source,
                module_ids,
                actor=actor or get_settings().default_actor,
            )
    except CohortLinkError as exc:
        _fail(exc)

    rprint(
        f"[green]✓[/green] Linked {result.links_created} modules "
        f"(active link: {result.active_link_type.value})"
    )


@links_app.command("unlink")
def links_unlink(
    cohort_id: UUID = typer.Argument(..., help="Cohort to unlink"),
    unlink_all: bool = typer.Option(False, "--all", help="Unlink every module"),
    link_type: Optional[str] = typer.Option(None, "--type", "-t", help="Unlink one link type"),
    modules: Optional[List[UUID]] = typer.Option(None, "--module", "-m", help="Module to unlink (repeatable)"),
) -> None:
    """Unlink modules from a cohort."""
    coordinator = LinkStateCoordinator()
    try:
        with session_scope() as session:
            if unlink_all:
                result = coordinator.unlink_all(session, cohort_id)
            elif link_type:
                result = coordinator.unlink_by_type(session, cohort_id, link_type)
            elif modules:
                result = coordinator.unlink_modules(session, cohort_id, modules)
            else:
                rprint("[red]✗[/red] Pass --all, --type or at least one --module")
                raise typer.Exit(code=1)
    except CohortLinkError as exc:
        _fail(exc)

    rprint(
        f"[green]✓[/green] Unlinked {result.deleted_count} modules "
        f"(active link: {result.active_link_type.value})"
    )


@links_app.command("convert")
def links_convert(
    cohort_id: UUID = typer.Argument(..., help="Cohort whose own modules are released"),
    orphan: bool = typer.Option(False, "--orphan", help="Leave modules orphaned instead of global"),
) -> None:
    """Convert a cohort's own modules to global library modules."""
    try:
        with session_scope() as session:
            converted = ModuleCatalog().convert_to_global(session, cohort_id, make_global=not orphan)
    except CohortLinkError as exc:
        _fail(exc)

    rprint(f"[green]✓[/green] Converted {converted} modules")


@links_app.command("untag")
def links_untag(
    cohort_id: UUID = typer.Argument(..., help="Cohort to untag"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Unlink every module, then convert the cohort's own modules to global."""
    if not yes:
        typer.confirm(f"Complete untag of cohort {cohort_id}?", abort=True)

    try:
        result = UntagOrchestrator().complete_untag(cohort_id)
    except UntagStepError as exc:
        rprint(f"[red]✗[/red] Untag failed at step [bold]{exc.step}[/bold]: {escape(str(exc.cause))}")
        if exc.unlinked_count is not None:
            rprint(f"  Already unlinked: {exc.unlinked_count} modules")
        if exc.retryable:
            rprint("  Re-running the untag is safe.")
        raise typer.Exit(code=1)

    rprint(
        f"[green]✓[/green] Unlinked {result.unlinked_count} modules, "
        f"converted {result.converted_count} own modules to global"
    )


@links_app.command("audit")
def links_audit(
    repair: bool = typer.Option(False, "--repair", help="Repair inconsistent cohorts"),
) -> None:
    """Report cohorts whose link state disagrees with their link records."""
    auditor = LinkStateAuditor()
    try:
        with session_scope() as session:
            mismatches = auditor.find_inconsistencies(session)
    except CohortLinkError as exc:
        _fail(exc)

    if not mismatches:
        rprint("[green]✓[/green] All cohorts are consistent")
        return

    table = Table(title="Inconsistent cohorts")
    table.add_column("Cohort", style="cyan")
    table.add_column("Active link")
    table.add_column("Records", justify="right")
    table.add_column("Reason", style="yellow")
    for m in mismatches:
        table.add_row(escape(m.cohort_name), m.active_link_type, str(m.link_count), escape(m.reason))
    console.print(table)

    if not repair:
        raise typer.Exit(code=1)

    repaired = auditor.repair([m.cohort_id for m in mismatches])
    logger.info(f"Audit repair finished for {len(repaired)} cohorts")
    rprint(f"[green]✓[/green] Repaired {len(repaired)} cohorts")


@app.command("serve")
def serve(
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "cohortlinks.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def run() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    run()
