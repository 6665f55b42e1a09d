"""Task management commands."""

from typing import Any

import typer
from rich.markup import escape
from rich.table import Table

from flowtask.application.commands import CommandHandler
from flowtask.cli.utils import (
    console,
    format_status,
    parse_since,
    print_json,
    resolve_workspace_id,
    run_command,
)

# Initialize Typer sub-app
task_app = typer.Typer(help="Task management", no_args_is_help=True)


def _render_tasks(tasks: list[dict[str, Any]], title: str) -> None:
    table = Table(title=title)
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("Title", style="magenta")
    table.add_column("Status")
    table.add_column("Priority", justify="center")
    table.add_column("Progress", justify="right")

    for task in tasks:
        table.add_row(
            task["taskId"],
            escape(task["title"]),
            format_status(task["status"]),
            str(task["priority"]),
            f"{task['progress']}%",
        )

    console.print(table)
    console.print(f"[dim]{len(tasks)} task(s)[/dim]")


@task_app.command("add")
def add(
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, "--description", "-d", help="Task description"),
    task_type: str = typer.Option("feat", "--type", "-t", help="feat, bug, research or chore"),
    priority: int | None = typer.Option(None, "--priority", "-p", help="Priority (default from config)"),
    status: str | None = typer.Option(None, "--status", "-s", help="Initial status (default BACKLOG)"),
    workspace: str
    | None = typer.Option(
        None, "--workspace", "-w", help="Workspace name; created if it does not exist"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the task as JSON"),
) -> None:
    """Create a task.

    Examples:
        flowtask task add "Fix login redirect" --type bug --priority 1
        flowtask task add "Evaluate caching" -t research -w backend
    """

    async def _add(commands: CommandHandler) -> dict[str, Any]:
        workspace_id = None
        if workspace:
            workspace_id = (await commands.workspaces.get_or_create_by_name(workspace)).id
        return await commands.create_task(
            title,
            description=description,
            task_type=task_type,
            priority=priority,
            workspace_id=workspace_id,
            status=status,
        )

    task = run_command(_add)
    if as_json:
        print_json(task)
        return
    console.print(f"[green]✓[/green] Task created: [cyan]{task['taskId']}[/cyan]")
    console.print(f"[dim]{task['taskType']} | priority {task['priority']} | {task['status']}[/dim]")


@task_app.command("list")
def list_tasks(
    workspace: str | None = typer.Option(None, "--workspace", "-w", help="Workspace id or name"),
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    include_deleted: bool = typer.Option(False, "--all", help="Include tasks in the trash"),
    limit: int | None = typer.Option(None, help="Maximum number of tasks"),
    as_json: bool = typer.Option(False, "--json", help="Print tasks as JSON"),
) -> None:
    """List tasks, newest first."""

    async def _list(commands: CommandHandler) -> list[dict[str, Any]]:
        workspace_id = await resolve_workspace_id(commands, workspace)
        return await commands.list_tasks(
            workspace_id=workspace_id,
            include_deleted=include_deleted,
            status=status,
            limit=limit,
        )

    tasks = run_command(_list)
    if as_json:
        print_json(tasks)
        return
    _render_tasks(tasks, "Tasks")


@task_app.command("show")
def show(
    task_ref: str = typer.Argument(..., help="Task id or task_id (e.g. feat-a1b2)"),
    as_json: bool = typer.Option(False, "--json", help="Print the task as JSON"),
) -> None:
    """Show one task in detail."""

    async def _show(commands: CommandHandler) -> dict[str, Any]:
        return await commands.get_task(task_ref)

    task = run_command(_show)
    if as_json:
        print_json(task)
        return

    console.print(f"\n[bold]{task['taskId']}[/bold]  {escape(task['title'])}\n")
    console.print(f"[bold]ID:[/bold] {task['id']}")
    console.print(f"[bold]Type:[/bold] {task['taskType']}")
    console.print(f"[bold]Status:[/bold] {format_status(task['status'])}")
    console.print(f"[bold]Priority:[/bold] {task['priority']}")
    console.print(f"[bold]Progress:[/bold] {task['progress']}%")
    if task["workspaceId"]:
        console.print(f"[bold]Workspace:[/bold] {task['workspaceId']}")
    if task["tags"]:
        console.print(f"[bold]Tags:[/bold] {', '.join(task['tags'])}")
    console.print(f"[bold]Created:[/bold] {task['createdAt']}")
    console.print(f"[bold]Updated:[/bold] {task['updatedAt']}")
    if task["description"]:
        console.print(f"\n{escape(task['description'])}")


@task_app.command("update")
def update(
    task_ref: str = typer.Argument(..., help="Task id or task_id"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    description: str | None = typer.Option(None, "--description", "-d", help="New description"),
    status: str | None = typer.Option(None, "--status", "-s", help="New status"),
    priority: int | None = typer.Option(None, "--priority", "-p", help="New priority"),
    progress: int | None = typer.Option(None, "--progress", min=0, max=100, help="Progress 0-100"),
    no_automation: bool = typer.Option(
        False, "--no-automation", help="Skip progress/status automation rules"
    ),
) -> None:
    """Update task fields.

    Unless --no-automation is given, progress 100 completes the task,
    progress on a not-started task moves it to IN_PROGRESS, and moving a
    task back to BACKLOG resets its progress.

    Examples:
        flowtask task update feat-a1b2 --progress 40
        flowtask task update bug-9f3c --status BACKLOG
    """
    if all(value is None for value in (title, description, status, priority, progress)):
        console.print("[red]Error:[/red] No updates provided")
        raise typer.Exit(1)

    async def _update(commands: CommandHandler) -> dict[str, Any] | None:
        if no_automation:
            await commands.update_task(
                task_ref,
                title=title,
                description=description,
                status=status,
                priority=priority,
                progress=progress,
            )
            return None
        return await commands.update_task_with_automation(
            task_ref,
            title=title,
            description=description,
            status=status,
            priority=priority,
            progress=progress,
        )

    result = run_command(_update)
    console.print(f"[green]✓[/green] Task {task_ref} updated")
    if result:
        for change in result["automation"]:
            console.print(f"[yellow]⚡[/yellow] {change}")


@task_app.command("status")
def set_status(
    task_ref: str = typer.Argument(..., help="Task id or task_id"),
    status: str = typer.Argument(..., help="BACKLOG, PLANNED, READY, IN_PROGRESS, TESTING or DONE"),
) -> None:
    """Move a task to another column."""

    async def _status(commands: CommandHandler) -> dict[str, Any]:
        await commands.update_task_status(task_ref, status)
        return await commands.get_task(task_ref)

    task = run_command(_status)
    console.print(f"[green]✓[/green] {task['taskId']} is now {format_status(task['status'])}")


@task_app.command("complete")
def complete(task_ref: str = typer.Argument(..., help="Task id or task_id")) -> None:
    """Mark a task DONE with 100% progress."""

    async def _complete(commands: CommandHandler) -> None:
        await commands.complete_task(task_ref)

    run_command(_complete)
    console.print(f"[green]✓[/green] Task {task_ref} completed")


@task_app.command("delete")
def delete(
    task_ref: str = typer.Argument(..., help="Task id or task_id"),
    permanent: bool = typer.Option(False, "--permanent", help="Delete outright instead of trashing"),
) -> None:
    """Move a task to the trash (or delete it permanently)."""

    async def _delete(commands: CommandHandler) -> None:
        await commands.delete_task(task_ref, permanent=permanent)

    run_command(_delete)
    if permanent:
        console.print(f"[green]✓[/green] Task {task_ref} permanently deleted")
    else:
        console.print(f"[green]✓[/green] Task {task_ref} moved to trash")


@task_app.command("restore")
def restore(task_ref: str = typer.Argument(..., help="Task id or task_id")) -> None:
    """Restore a task from the trash."""

    async def _restore(commands: CommandHandler) -> None:
        await commands.restore_task(task_ref)

    run_command(_restore)
    console.print(f"[green]✓[/green] Task {task_ref} restored")


@task_app.command("trash")
def trash(as_json: bool = typer.Option(False, "--json", help="Print tasks as JSON")) -> None:
    """List tasks in the trash."""

    async def _trash(commands: CommandHandler) -> list[dict[str, Any]]:
        return await commands.list_trash()

    tasks = run_command(_trash)
    if as_json:
        print_json(tasks)
        return
    _render_tasks(tasks, "Trash")


@task_app.command("empty-trash")
def empty_trash(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Permanently delete every task in the trash."""
    if not yes:
        typer.confirm("Permanently delete all tasks in the trash?", abort=True)

    async def _empty(commands: CommandHandler) -> int:
        return await commands.empty_trash()

    removed = run_command(_empty)
    console.print(f"[green]✓[/green] Removed {removed} task(s) from the trash")


@task_app.command("search")
def search(
    query: str = typer.Argument(..., help="Text to find in title, task_id or description"),
    as_json: bool = typer.Option(False, "--json", help="Print tasks as JSON"),
) -> None:
    """Case-insensitive search over active tasks."""

    async def _search(commands: CommandHandler) -> list[dict[str, Any]]:
        return await commands.search_tasks(query)

    tasks = run_command(_search)
    if as_json:
        print_json(tasks)
        return
    _render_tasks(tasks, f"Search: {query}")


@task_app.command("stats")
def stats(
    workspace: str | None = typer.Option(None, "--workspace", "-w", help="Workspace id or name"),
    as_json: bool = typer.Option(False, "--json", help="Print statistics as JSON"),
) -> None:
    """Show task statistics."""

    async def _stats(commands: CommandHandler) -> dict[str, Any]:
        workspace_id = await resolve_workspace_id(commands, workspace)
        return await commands.task_stats(workspace_id)

    result = run_command(_stats)
    if as_json:
        print_json(result)
        return

    table = Table(title="Task Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="magenta")
    table.add_row("Total", str(result["total"]))
    table.add_row("Completed", str(result["completedCount"]))
    table.add_row("In progress", str(result["inProgress"]))
    table.add_row("Pending", str(result["pending"]))
    table.add_row("Completed this week", str(result["completedThisWeek"]))
    table.add_row("Completed this month", str(result["completedThisMonth"]))
    console.print(table)

    by_type = Table(title="By Type")
    by_type.add_column("Type", style="cyan")
    by_type.add_column("Count", justify="right")
    for task_type, count in result["byType"].items():
        by_type.add_row(task_type, str(count))
    console.print(by_type)


@task_app.command("sync")
def sync(
    since: str | None = typer.Option(None, help="Only tasks updated after this ISO-8601 timestamp"),
) -> None:
    """Print tasks changed since a timestamp as JSON, for polling clients."""
    since_dt = parse_since(since)

    async def _sync(commands: CommandHandler) -> dict[str, Any]:
        return await commands.sync_tasks(since_dt)

    print_json(run_command(_sync))
