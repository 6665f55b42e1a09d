"""Workspace management commands."""

from typing import Any

import typer
from rich.markup import escape
from rich.table import Table

from flowtask.application.commands import CommandHandler
from flowtask.cli.utils import console, find_workspace, print_json, run_command
from flowtask.domain.models import DEFAULT_WORKSPACE_COLOR

workspace_app = typer.Typer(help="Workspace management", no_args_is_help=True)


@workspace_app.command("list")
def list_workspaces(
    as_json: bool = typer.Option(False, "--json", help="Print workspaces as JSON"),
) -> None:
    """List workspaces with their active task counts."""

    async def _list(commands: CommandHandler) -> list[dict[str, Any]]:
        return await commands.list_workspaces()

    workspaces = run_command(_list)
    if as_json:
        print_json(workspaces)
        return

    table = Table(title="Workspaces")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Color")
    table.add_column("Tasks", justify="right")
    for workspace in workspaces:
        table.add_row(
            workspace["id"][:8],
            escape(workspace["name"]),
            workspace["color"],
            str(workspace["taskCount"]),
        )
    console.print(table)


@workspace_app.command("create")
def create(
    name: str = typer.Argument(..., help="Unique workspace name"),
    color: str = typer.Option(DEFAULT_WORKSPACE_COLOR, "--color", "-c", help="Hex display color"),
    as_json: bool = typer.Option(False, "--json", help="Print the workspace as JSON"),
) -> None:
    """Create a workspace."""

    async def _create(commands: CommandHandler) -> dict[str, Any]:
        return await commands.create_workspace(name, color)

    workspace = run_command(_create)
    if as_json:
        print_json(workspace)
        return
    console.print(f"[green]✓[/green] Workspace created: [cyan]{escape(workspace['name'])}[/cyan]")
    console.print(f"[dim]{workspace['id']}[/dim]")


@workspace_app.command("delete")
def delete(
    workspace: str = typer.Argument(..., help="Workspace id or name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a workspace and all of its tasks, including trashed ones."""
    if not yes:
        typer.confirm(f"Delete workspace '{workspace}' and all of its tasks?", abort=True)

    async def _delete(commands: CommandHandler) -> None:
        target = await find_workspace(commands, workspace)
        await commands.delete_workspace(target.id)

    run_command(_delete)
    console.print(f"[green]✓[/green] Workspace {escape(workspace)} deleted")
