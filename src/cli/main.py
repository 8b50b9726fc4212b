"""
Typer CLI for nexus-kb workspace maintenance.

Commands:
    nexus-kb db init                     - Initialize database tables
    nexus-kb migrate run                 - Backfill owners, seed ordering, clone the starter nexus
    nexus-kb migrate seed-order          - Only create missing ordering records
    nexus-kb migrate assign-orphans USER - Give every owner-less record to USER
    nexus-kb order show LOCUS            - Show the ordering of one locus
    nexus-kb version                     - Show version information

Usage:
    nexus-kb --help
    nexus-kb migrate run --dry-run
    nexus-kb order show 3f2a... --locus-type notebook --content-type tag
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import Settings, get_settings

app = typer.Typer(
    help="nexus-kb CLI: workspace migration and content ordering tools",
    no_args_is_help=True,
)

console = Console()


def configure_logging(settings: Settings) -> None:
    """Route loguru to stderr (and the log file, when configured)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


@app.callback()
def main_callback() -> None:
    """Workspace maintenance for the nexus knowledge base."""
    configure_logging(get_settings())


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Lazily initializes services so that ``--help`` never touches the database.
    """

    def __init__(self, dry_run: bool = False):
        self.settings = get_settings()
        self.dry_run = dry_run or self.settings.dry_run
        self._store = None

    @property
    def store(self):
        """Lazy load DocumentStore."""
        if self._store is None:
            from src.store import DocumentStore

            self._store = DocumentStore(dry_run=self.dry_run)
        return self._store


def _build_context(dry_run: bool = False) -> CLIContext:
    """Build CLI context with dependency injection."""
    return CLIContext(dry_run=dry_run)


def _print_report(title: str, rows: dict[str, object]) -> None:
    table = Table(title=title, show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in rows.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from src.db.database import init_db

    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# MIGRATION COMMANDS
# ========================================

migrate_app = typer.Typer(help="Workspace migration (owners, ordering, starter nexus)")
app.add_typer(migrate_app, name="migrate")


@migrate_app.command("run")
def migrate_run(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log writes without performing them"),
) -> None:
    """
    Run the full workspace migration.

    Backfills missing owners, removes flattened conversation rows, seeds
    ordering records from legacy order fields and clones the starter nexus
    for every user who does not have one yet. Safe to re-run.

    Examples:
        nexus-kb migrate run
        nexus-kb migrate run --dry-run
    """
    from src.migration import MigrationOrchestrator
    from src.store import StoreError

    ctx = _build_context(dry_run=dry_run)
    rprint("\n[bold cyan]Workspace Migration[/bold cyan]")
    for key, value in ctx.settings.get_migration_config().items():
        if key != "dry_run":
            rprint(f"  {key}: {value}")
    rprint(f"  Dry run: {ctx.dry_run}\n")

    try:
        report = MigrationOrchestrator(ctx.store).run()
    except StoreError as e:
        logger.error(f"Migration aborted: {e}")
        raise typer.Exit(code=1)

    _print_report("Migration Results", report.to_dict())
    if report.write_failures or report.clone_failures:
        rprint(
            f"[yellow]⚠[/yellow] {report.write_failures} write failures, "
            f"{report.clone_failures} failed clones - check the log"
        )


@migrate_app.command("seed-order")
def migrate_seed_order(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log writes without performing them"),
) -> None:
    """Create ordering records for content that only has a legacy order field."""
    from src.migration import OrderSeeder

    ctx = _build_context(dry_run=dry_run)
    report = OrderSeeder(ctx.store).seed()
    _print_report(
        "Ordering Seed",
        {"seeded_order_records": report.seeded_order_records, "write_failures": report.write_failures},
    )


@migrate_app.command("assign-orphans")
def migrate_assign_orphans(
    user_id: str = typer.Argument(..., help="User id that receives every owner-less record"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only count what would change"),
) -> None:
    """Assign every record without an owner to USER_ID (the shared template excepted)."""
    from src.migration import OwnershipResolver

    ctx = _build_context(dry_run=dry_run)
    counts = OwnershipResolver(ctx.store).assign_orphans_to(user_id, dry_run=ctx.dry_run)
    verb = "Would assign" if ctx.dry_run else "Assigned"
    _print_report(f"{verb} to {user_id}", counts)


# ========================================
# ORDERING COMMANDS
# ========================================

order_app = typer.Typer(help="Inspect content ordering")
app.add_typer(order_app, name="order")


@order_app.command("show")
def order_show(
    locus_id: str = typer.Argument(..., help="Nexus or notebook id"),
    locus_type: str = typer.Option("notebook", "--locus-type", "-l", help="nexus or notebook"),
    content_type: str = typer.Option(
        "chunk", "--content-type", "-c", help="notebook, chunk, tag or conversationMessage"
    ),
    parent_id: str | None = typer.Option(None, "--parent-id", "-p", help="Parent tag id (tags only)"),
) -> None:
    """Show one ordering group, first to last."""
    from src.db.models import ContentType, LocusType
    from src.ordering import ANY_PARENT, ContentOrderIndex, Locus

    try:
        locus = Locus(locus_id, LocusType(locus_type))
        kind = ContentType(content_type)
    except ValueError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=2)

    ctx = _build_context()
    items = ContentOrderIndex(ctx.store).enumerate(
        locus, kind, parent_id if parent_id is not None else ANY_PARENT
    )

    table = Table(title=f"{kind.value} order in {locus}", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Content ID", style="cyan")
    table.add_column("Position", justify="right")
    table.add_column("Parent", style="dim")
    table.add_column("Owner", style="dim")
    for number, item in enumerate(items, start=1):
        table.add_row(
            str(number), item.content_id, f"{item.position:g}", item.parent_id or "-", item.owner_id or "-"
        )
    console.print(table)
    if not items:
        rprint("[yellow]⚠[/yellow] No ordering records")


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint("[bold]nexus-kb[/bold] v1.0.0")
    rprint("  Workspace migration and content ordering")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
