"""CLI output utilities for consistent messaging."""

from rich.console import Console

_console = Console()


def success(message: str) -> None:
    """Print a success message with green checkmark."""
    _console.print(f"[green]✓[/green] {message}")


def error(message: str) -> None:
    """Print an error message with red X."""
    _console.print(f"[red]✗[/red] {message}")


def warning(message: str) -> None:
    """Print a warning message with yellow exclamation."""
    _console.print(f"[yellow]![/yellow] {message}")


def warnings(messages: list[str]) -> None:
    """Print each accumulated warning from a core operation."""
    for message in messages:
        warning(message)


def step(message: str) -> None:
    """Print an install step being executed."""
    _console.print(f"[cyan]→[/cyan] {message}", highlight=False)


def info(message: str) -> None:
    """Print an info message (no prefix)."""
    _console.print(message)


def dim(message: str) -> None:
    """Print a dimmed message (for secondary info)."""
    _console.print(f"[dim]{message}[/dim]")
