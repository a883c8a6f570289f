"""
Standardized error handling and exit codes for the blobsync CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum

from rich.console import Console

from blobsync.core.orchestrator.models import OutcomeKind

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for blobsync CLI operations."""

    SUCCESS = 0
    """Files are up to date."""

    GENERAL_ERROR = 1
    """Sync aborted or an unexpected error occurred."""

    USER_ERROR = 2
    """Invalid arguments or configuration (actionable by user)."""

    LOCAL_RUN = 3
    """Remote unusable; the existing local files were used instead."""



def exit_code_for(kind: OutcomeKind) -> ExitCode:
    """Map an orchestration outcome to a process exit code."""
    if kind == OutcomeKind.UPDATED:
        return ExitCode.SUCCESS
    if kind == OutcomeKind.LOCAL_RUN:
        return ExitCode.LOCAL_RUN
    return ExitCode.GENERAL_ERROR


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_rate_limited_error(reset_at: object = None) -> None:
    """Print error when the API call budget is exhausted."""
    print_error(
        "GitHub API rate limit reached",
        reason=f"The budget resets at {reset_at}" if reset_at else None,
        solution="export GITHUB_TOKEN=...  # authenticated requests get a larger budget",
    )
