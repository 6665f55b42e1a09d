"""FlowTask CLI - local kanban task tracking."""

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from rich.table import Table

from flowtask import __version__
from flowtask.cli.task_commands import task_app
from flowtask.cli.utils import console
from flowtask.cli.workspace_commands import workspace_app
from flowtask.infrastructure.exceptions import FlowTaskError

# Initialize Typer app
app = typer.Typer(
    name="flowtask",
    help="FlowTask - local task tracking with workspaces and a kanban lifecycle",
    no_args_is_help=True,
)


# ===== Version =====
@app.command()
def version() -> None:
    """Show FlowTask version."""
    console.print(f"[bold]FlowTask[/bold] version [cyan]{__version__}[/cyan]")


# ===== Helper Functions =====
async def _get_services(db_path: Path | None = None) -> dict[str, Any]:
    """Load configuration, set up logging and open the database."""
    from flowtask.application import CommandHandler
    from flowtask.infrastructure import ConfigManager, Database
    from flowtask.infrastructure.logger import setup_logging

    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    database = Database(
        db_path or config_manager.get_database_path(),
        busy_timeout_ms=config.database.busy_timeout_ms,
        default_workspace_name=config.workspace.default_name,
        default_workspace_color=config.workspace.default_color,
    )
    await database.initialize()

    commands = CommandHandler(
        database,
        default_priority=config.tasks.default_priority,
        sync_limit=config.tasks.sync_limit,
    )

    return {
        "database": database,
        "commands": commands,
        "config_manager": config_manager,
        "config": config,
    }


# ===== Sub-apps =====
app.add_typer(task_app, name="task")
app.add_typer(workspace_app, name="workspace")


# ===== Database Commands =====
@app.command()
def init(
    db_path: Path
    | None = typer.Option(  # noqa: B008
        None, help="Custom database path (default: <user data dir>/flowtask.db)"
    ),
) -> None:
    """Create the database (if needed) and show where it lives.

    Safe to run repeatedly: the schema is only created or migrated when
    something is missing, and the default workspace is only added to an
    empty database.

    Examples:
        flowtask init
        flowtask init --db-path /tmp/flowtask.db
    """

    async def _init() -> None:
        services = await _get_services(db_path)
        database = services["database"]
        try:
            workspaces = await services["commands"].list_workspaces()
            index_info = await database.get_index_usage()
        finally:
            await database.close()

        console.print(f"[green]✓[/green] Database ready at [cyan]{database.db_path}[/cyan]")

        table = Table(title="Workspaces")
        table.add_column("Name", style="magenta")
        table.add_column("Tasks", justify="right")
        for workspace in workspaces:
            table.add_row(workspace["name"], str(workspace["taskCount"]))
        console.print(table)
        console.print(f"[dim]{index_info['index_count']} indexes[/dim]")

    try:
        asyncio.run(_init())
    except FlowTaskError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
