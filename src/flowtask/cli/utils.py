"""Helpers shared by the CLI command modules."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.markup import escape

from flowtask.application.commands import CommandHandler
from flowtask.domain.models import Workspace
from flowtask.infrastructure.exceptions import FlowTaskError, WorkspaceNotFoundError

T = TypeVar("T")

console = Console()

STATUS_STYLES = {
    "BACKLOG": "dim",
    "PLANNED": "blue",
    "READY": "cyan",
    "IN_PROGRESS": "yellow",
    "TESTING": "magenta",
    "DONE": "green",
}


def run_command(func: Callable[[CommandHandler], Awaitable[T]]) -> T:
    """Open the database, run ``func`` against a CommandHandler, close it again.

    FlowTask errors and rejected input become a red error line and exit code 1.
    """

    async def _run() -> T:
        from flowtask.cli.main import _get_services

        services = await _get_services()
        try:
            return await func(services["commands"])
        finally:
            await services["database"].close()

    try:
        return asyncio.run(_run())
    except (FlowTaskError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def print_json(data: Any) -> None:
    """Write machine-readable output to stdout, bypassing rich markup."""
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def parse_since(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp for ``task sync --since``.

    Naive timestamps are taken as UTC; a trailing ``Z`` is accepted.

    Raises:
        typer.BadParameter: If the value is not ISO-8601
    """
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise typer.BadParameter(f"Invalid timestamp '{value}'. Use ISO-8601, e.g. 2024-05-01T12:00:00Z") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def find_workspace(commands: CommandHandler, ref: str) -> Workspace:
    """Look a workspace up by id, then by (case-insensitive) name.

    Raises:
        WorkspaceNotFoundError: If neither matches
    """
    workspace = await commands.workspaces.get(ref)
    if workspace is None:
        workspace = await commands.workspaces.find_by_name(ref)
    if workspace is None:
        raise WorkspaceNotFoundError(ref)
    return workspace


async def resolve_workspace_id(commands: CommandHandler, ref: str | None) -> str | None:
    if ref is None:
        return None
    return (await find_workspace(commands, ref)).id


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"
