"""CLI interface for ticketbridge.

This module provides the Typer-based command-line interface over
TicketProvider. Every command resolves a configured connection, opens a
provider for it, runs one operation and renders the result with rich.

Connections are declared in the config files or the environment, see
``ticketbridge.config.manager``.
"""

import asyncio
import warnings
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Annotated, TypeVar

import typer
from rich.table import Table

from ticketbridge.config.manager import ConfigManager
from ticketbridge.integrations.documents import Document, from_markdown, plain_text
from ticketbridge.integrations.errors import FieldUnmapped, TranslationDegraded
from ticketbridge.integrations.models import (
    MetadataItem,
    MetadataKind,
    SearchQuery,
    ServerProfile,
    Ticket,
    TicketInput,
    TicketUpdate,
    Transition,
)
from ticketbridge.integrations.provider import TicketProvider
from ticketbridge.utils.console import (
    console,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
    show_version,
    styled_status,
)
from ticketbridge.utils.errors import ExitCode, TicketBridgeError, UserCancelledError
from ticketbridge.utils.logging import setup_logging

T = TypeVar("T")

# Create Typer app
app = typer.Typer(
    name="ticketbridge",
    help="ticketbridge - one ticket contract over Linear and Jira",
    add_completion=False,
    no_args_is_help=True,
)

# Warnings surfaced to the user after a command completes
_REPORTED_WARNINGS: tuple[type[Warning], ...] = (TranslationDegraded, FieldUnmapped)


class AsyncLoopAlreadyRunningError(TicketBridgeError):
    """Raised when trying to run async code in an existing event loop.

    This occurs in environments like Jupyter notebooks or when already
    running inside an async context.
    """

    _default_exit_code = ExitCode.GENERAL_ERROR


def run_async(coro_factory: Callable[[], Coroutine[None, None, T]]) -> T:
    """Run an async coroutine from synchronous CLI code.

    Takes a factory instead of a coroutine so the running-loop check
    happens before any coroutine object exists.

    Raises:
        AsyncLoopAlreadyRunningError: If an event loop is already running
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        raise AsyncLoopAlreadyRunningError(
            "Cannot run async operation: an event loop is already running. "
            "Use TicketProvider directly with 'await' inside async code."
        )

    return asyncio.run(coro_factory())


@dataclass
class CliState:
    """Options shared by every command."""

    connection: str | None = None


def version_callback(value: bool) -> None:
    """Display version and exit."""
    if value:
        show_version()
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    connection: Annotated[
        str | None,
        typer.Option(
            "--connection",
            "-c",
            help="Connection name (default: DEFAULT_CONNECTION)",
        ),
    ] = None,
    log: Annotated[
        bool,
        typer.Option("--log", help="Write a debug log to TICKETBRIDGE_LOG_FILE"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version information",
        ),
    ] = None,
) -> None:
    """ticketbridge - one ticket contract over Linear and Jira.

    Reads, searches and updates tickets on any configured connection,
    whatever the backend version or deployment.
    """
    setup_logging(enabled=True if log else None)
    ctx.obj = CliState(connection=connection)


# ============================================================================
# Provider plumbing
# ============================================================================


def _load_config() -> ConfigManager:
    config = ConfigManager()
    config.load()
    return config


def _build_provider(config: ConfigManager, connection: str | None) -> TicketProvider:
    """Create a provider for a configured connection.

    Raises:
        ConfigurationError: If the connection is missing or incomplete
    """
    descriptor = config.get_connection(connection)
    credentials = config.get_credentials(descriptor.name)
    return TicketProvider(
        descriptor,
        credentials,
        transport_config=config.get_transport_config(),
        cache_config=config.get_cache_config(),
    )


def _execute(
    ctx: typer.Context,
    operation: Callable[[TicketProvider], Coroutine[None, None, T]],
) -> T:
    """Run one provider operation and map failures to exit codes."""
    state: CliState = ctx.obj or CliState()
    try:
        provider = _build_provider(_load_config(), state.connection)

        async def runner() -> T:
            async with provider:
                return await operation(provider)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = run_async(runner)
    except UserCancelledError as e:
        print_info(f"\n{e}")
        raise typer.Exit(ExitCode.USER_CANCELLED) from e
    except TicketBridgeError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e
    except ValueError as e:
        print_error(f"Invalid input: {e}")
        raise typer.Exit(ExitCode.GENERAL_ERROR) from e
    except KeyboardInterrupt as e:
        print_info("\nOperation cancelled by user")
        raise typer.Exit(ExitCode.USER_CANCELLED) from e

    for warning in caught:
        if issubclass(warning.category, _REPORTED_WARNINGS):
            print_warning(str(warning.message))
    return result


def _parse_metadata_kind(value: str) -> MetadataKind:
    normalized = value.strip().lower().replace("-", "_")
    try:
        return MetadataKind(normalized)
    except ValueError:
        valid = ", ".join(k.value for k in MetadataKind)
        raise typer.BadParameter(f"Unknown metadata kind '{value}'. Valid: {valid}") from None


def _document_from(text: str, markdown: bool) -> Document:
    return from_markdown(text) if markdown else Document.from_text(text)


# ============================================================================
# Rendering
# ============================================================================


def _show_profile(profile: ServerProfile) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Family", profile.family.value)
    table.add_row("Deployment", profile.deployment_kind.value)
    table.add_row("Version", str(profile.version))
    if profile.server_title:
        table.add_row("Server", profile.server_title)
    table.add_row("Authentication", profile.negotiated_auth.value)
    table.add_row("Client", profile.client_kind.value)
    flags = sorted(profile.capabilities.enabled_flags())
    table.add_row("Capabilities", ", ".join(flags) or "-")
    console.print(table)


def _show_ticket(ticket: Ticket) -> None:
    print_header(f"{ticket.display_key}: {ticket.title}")
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Status", styled_status(ticket.status, ticket.status_category.value))
    table.add_row("Type", ticket.ticket_type or "-")
    table.add_row("Priority", ticket.priority or "-")
    table.add_row("Assignee", ticket.assignee or "Unassigned")
    table.add_row("Project", ticket.project_key or "-")
    if ticket.labels:
        table.add_row("Labels", ", ".join(ticket.labels))
    for semantic, value in ticket.custom_fields.items():
        table.add_row(semantic.value.replace("_", " ").title(), str(value))
    if ticket.url:
        table.add_row("URL", ticket.url)
    console.print(table)

    description = plain_text(ticket.description)
    if description:
        console.print()
        console.print(description, markup=False, highlight=False)


def _ticket_table(tickets: list[Ticket]) -> Table:
    table = Table(title=f"{len(tickets)} ticket(s)")
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Assignee")
    table.add_column("Title")
    for ticket in tickets:
        table.add_row(
            ticket.display_key,
            styled_status(ticket.status, ticket.status_category.value),
            ticket.assignee or "-",
            ticket.title,
        )
    return table


# ============================================================================
# Commands
# ============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    show_version()


@app.command()
def connections() -> None:
    """List the configured connections."""
    config = _load_config()
    names = config.list_connections()
    if not names:
        print_info("No connections configured")
        return
    default = config.settings.default_connection.lower()
    for name in names:
        marker = " (default)" if name == default else ""
        console.print(f"{name}{marker}")


@app.command()
def detect(ctx: typer.Context) -> None:
    """Detect the backend and negotiate authentication."""

    async def operation(provider: TicketProvider) -> ServerProfile:
        return await provider.profile()

    _show_profile(_execute(ctx, operation))


@app.command()
def get(
    ctx: typer.Context,
    ticket_id: Annotated[str, typer.Argument(help="Ticket key (PROJ-123, ENG-42) or id")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the ticket as JSON")] = False,
) -> None:
    """Fetch one ticket."""

    async def operation(provider: TicketProvider) -> Ticket:
        return await provider.get_ticket(ticket_id)

    ticket = _execute(ctx, operation)
    if as_json:
        console.print_json(data=ticket.to_dict())
    else:
        _show_ticket(ticket)


@app.command()
def search(
    ctx: typer.Context,
    project: Annotated[
        list[str] | None,
        typer.Option("--project", "-p", help="Project or team key (repeatable)"),
    ] = None,
    status: Annotated[
        list[str] | None, typer.Option("--status", "-s", help="Status name (repeatable)")
    ] = None,
    ticket_type: Annotated[
        list[str] | None, typer.Option("--type", "-t", help="Ticket type (repeatable)")
    ] = None,
    assignee: Annotated[
        str | None, typer.Option("--assignee", "-a", help="Assignee, or 'me'")
    ] = None,
    label: Annotated[
        list[str] | None, typer.Option("--label", "-l", help="Label (repeatable)")
    ] = None,
    text: Annotated[str | None, typer.Option("--text", help="Full-text filter")] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Maximum results (default: DEFAULT_SEARCH_LIMIT)"),
    ] = None,
) -> None:
    """Search tickets, most recently updated first."""
    if limit is not None and limit < 1:
        print_error("Error: --limit must be at least 1")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    query = SearchQuery(
        project_keys=tuple(project or ()),
        statuses=tuple(status or ()),
        ticket_types=tuple(ticket_type or ()),
        assignee=assignee,
        labels=tuple(label or ()),
        text=text,
        max_results=limit or _load_config().settings.default_search_limit,
    )

    async def operation(provider: TicketProvider) -> list[Ticket]:
        return await provider.search(query)

    tickets = _execute(ctx, operation)
    if not tickets:
        print_info("No tickets found")
        return
    console.print(_ticket_table(tickets))


@app.command()
def create(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project or team key")],
    title: Annotated[str, typer.Option("--title", help="Ticket title")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="Description text")
    ] = "",
    markdown: Annotated[
        bool, typer.Option("--markdown", help="Parse the description as markdown")
    ] = False,
    ticket_type: Annotated[str | None, typer.Option("--type", "-t", help="Ticket type")] = None,
    priority: Annotated[str | None, typer.Option("--priority", help="Priority name")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee", "-a", help="Assignee")] = None,
    label: Annotated[
        list[str] | None, typer.Option("--label", "-l", help="Label (repeatable)")
    ] = None,
) -> None:
    """Create a ticket."""

    async def operation(provider: TicketProvider) -> Ticket:
        ticket = TicketInput(
            project_key=project,
            title=title,
            description=_document_from(description, markdown),
            ticket_type=ticket_type,
            priority=priority,
            assignee=assignee,
            labels=tuple(label or ()),
        )
        return await provider.create(ticket)

    ticket = _execute(ctx, operation)
    print_success(f"Created {ticket.display_key}")
    if ticket.url:
        console.print(ticket.url)


@app.command()
def update(
    ctx: typer.Context,
    ticket_id: Annotated[str, typer.Argument(help="Ticket key or id")],
    title: Annotated[str | None, typer.Option("--title", help="New title")] = None,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="New description text")
    ] = None,
    markdown: Annotated[
        bool, typer.Option("--markdown", help="Parse the description as markdown")
    ] = False,
    priority: Annotated[str | None, typer.Option("--priority", help="Priority name")] = None,
    assignee: Annotated[
        str | None, typer.Option("--assignee", "-a", help="Assignee (empty to unassign)")
    ] = None,
    label: Annotated[
        list[str] | None, typer.Option("--label", "-l", help="Replace labels (repeatable)")
    ] = None,
) -> None:
    """Change fields of an existing ticket."""

    async def operation(provider: TicketProvider) -> Ticket:
        changes = TicketUpdate(
            title=title,
            description=(
                _document_from(description, markdown) if description is not None else None
            ),
            priority=priority,
            assignee=assignee,
            labels=tuple(label) if label else None,
        )
        return await provider.update(ticket_id, changes)

    ticket = _execute(ctx, operation)
    print_success(f"Updated {ticket.display_key}")


@app.command()
def transitions(
    ctx: typer.Context,
    ticket_id: Annotated[str, typer.Argument(help="Ticket key or id")],
) -> None:
    """List the workflow moves available for a ticket."""

    async def operation(provider: TicketProvider) -> list[Transition]:
        return await provider.list_transitions(ticket_id)

    available = _execute(ctx, operation)
    if not available:
        print_info(f"No transitions available for {ticket_id}")
        return
    table = Table(title=f"Transitions for {ticket_id}")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Target state")
    for transition in available:
        table.add_row(transition.id, transition.name, transition.target_state)
    console.print(table)


@app.command()
def move(
    ctx: typer.Context,
    ticket_id: Annotated[str, typer.Argument(help="Ticket key or id")],
    target_state: Annotated[str, typer.Argument(help="Target state or transition name")],
) -> None:
    """Move a ticket to another workflow state."""

    async def operation(provider: TicketProvider) -> Ticket:
        return await provider.update_status(ticket_id, target_state)

    ticket = _execute(ctx, operation)
    print_success(f"{ticket.display_key} is now {ticket.status}")


@app.command()
def comment(
    ctx: typer.Context,
    ticket_id: Annotated[str, typer.Argument(help="Ticket key or id")],
    text: Annotated[str, typer.Argument(help="Comment text")],
    markdown: Annotated[
        bool, typer.Option("--markdown", help="Parse the comment as markdown")
    ] = False,
) -> None:
    """Add a comment to a ticket."""
    body = _document_from(text, markdown)

    async def operation(provider: TicketProvider) -> Ticket:
        return await provider.add_comment(ticket_id, body)

    ticket = _execute(ctx, operation)
    print_success(f"Commented on {ticket.display_key}")


@app.command()
def metadata(
    ctx: typer.Context,
    kind: Annotated[
        str,
        typer.Argument(help="Metadata kind, e.g. projects, statuses, users or sprints"),
    ],
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Project or team key")
    ] = None,
    board: Annotated[str | None, typer.Option("--board", "-b", help="Board id")] = None,
) -> None:
    """List lookup values such as projects, statuses or sprints."""
    metadata_kind = _parse_metadata_kind(kind)

    async def operation(provider: TicketProvider) -> list[MetadataItem]:
        return await provider.list_metadata(metadata_kind, project_key=project, board_id=board)

    items = _execute(ctx, operation)
    if not items:
        print_info(f"No {metadata_kind.value} found")
        return
    table = Table(title=metadata_kind.value.replace("_", " ").title())
    table.add_column("ID", no_wrap=True)
    table.add_column("Key")
    table.add_column("Name")
    for item in items:
        table.add_row(item.id, item.key or "-", item.name)
    console.print(table)


__all__ = [
    "AsyncLoopAlreadyRunningError",
    "app",
    "run_async",
]
