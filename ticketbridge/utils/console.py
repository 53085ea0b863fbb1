"""Rich-based terminal output for the ticketbridge CLI.

Messages go to stdout, except errors and backend warnings which go to
stderr so that ``--json`` output stays parseable. Everything printed is
mirrored into the debug log when logging is enabled.
"""

from rich.console import Console
from rich.text import Text
from rich.theme import Theme

from ticketbridge import __version__

custom_theme = Theme(
    {
        "error": "bold red",
        "success": "bold green",
        "warning": "bold yellow",
        "info": "bold blue",
        "header": "bold magenta",
        "status.open": "white",
        "status.in_progress": "cyan",
        "status.review": "magenta",
        "status.done": "green",
        "status.closed": "dim green",
        "status.blocked": "red",
        "status.unknown": "dim",
    }
)

console = Console(theme=custom_theme)
console_err = Console(theme=custom_theme, stderr=True)


def _emit(target: Console, level: str, body_style: str, message: str) -> None:
    from ticketbridge.utils.logging import log_message

    target.print(f"[{level}][[{level.upper()}]][/{level}] [{body_style}]{message}[/{body_style}]")
    log_message(f"{level.upper()}: {message}")


def print_error(message: str) -> None:
    """Print an error to stderr."""
    _emit(console_err, "error", "red", message)


def print_warning(message: str) -> None:
    """Print a non-fatal backend warning (degraded translation, unmapped field)."""
    _emit(console_err, "warning", "yellow", message)


def print_success(message: str) -> None:
    _emit(console, "success", "green", message)


def print_info(message: str) -> None:
    _emit(console, "info", "cyan", message)


def print_header(title: str) -> None:
    """Print a ticket or section heading."""
    console.print()
    console.print(f"[header]{title}[/header]")
    console.print()


def styled_status(name: str, category: str) -> Text:
    """Status name colored by its normalized category (``open``, ``done``, ...)."""
    style = f"status.{category}"
    if style not in custom_theme.styles:
        style = "status.unknown"
    return Text(name, style=style)


def show_version() -> None:
    """Display version information."""
    console.print(f"[bold]ticketbridge[/bold] v{__version__}")


__all__ = [
    "console",
    "console_err",
    "custom_theme",
    "print_error",
    "print_header",
    "print_info",
    "print_success",
    "print_warning",
    "show_version",
    "styled_status",
]
