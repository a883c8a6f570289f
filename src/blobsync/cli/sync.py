"""
blobsync CLI - sync commands.

Thin operator surface over the orchestrator: sync individual files or a
whole directory, verify a directory, and show the remaining API budget.
"""

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from blobsync.cli.errors import ExitCode, exit_code_for, print_error, print_rate_limited_error
from blobsync.core.config import (
    BlobsyncConfig,
    get_project_config_path,
    get_user_config_path,
    load_config,
)
from blobsync.core.exceptions import BlobsyncError, RateLimitedError
from blobsync.core.github.client import GitHubClient
from blobsync.core.github.listing import RemoteListingResolver
from blobsync.core.orchestrator import BatchOrchestrator, FileDescriptor, Outcome, OutcomeKind
from blobsync.core.publish.hashing import verify_listing

console = Console()

_OUTCOME_STYLE = {
    OutcomeKind.UPDATED: "[green]✓ Updated[/green]",
    OutcomeKind.LOCAL_RUN: "[yellow]⚠ Local run[/yellow]",
    OutcomeKind.ABORTED: "[red]✗ Aborted[/red]",
}


def _split_repo(value: str) -> tuple[str, str]:
    owner, _, repo = value.partition("/")
    if not owner or not repo or "/" in repo:
        print_error(f"Expected OWNER/REPO, got '{value}'")
        raise typer.Exit(ExitCode.USER_ERROR)
    return owner, repo


def _load_config() -> BlobsyncConfig:
    try:
        return load_config()
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        print_error(
            f"Invalid configuration: {field}: {first['msg']}",
            reason=f"{e.error_count()} problem(s) in the merged config",
            solution=f"check {get_project_config_path().name}, {get_user_config_path()} and BLOBSYNC_* variables",
        )
        raise typer.Exit(ExitCode.USER_ERROR)


def _print_outcome(outcome: Outcome, verbose: bool) -> None:
    console.print(f"{_OUTCOME_STYLE[outcome.kind]}: {escape(outcome.reason)}")
    if not outcome.results:
        return
    if outcome.kind == OutcomeKind.UPDATED and not verbose:
        console.print(f"[dim]{len(outcome.results)} file(s); use --verbose for details[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("File")
    table.add_column("Action")
    table.add_column("Local path", style="dim")
    for result in outcome.results:
        table.add_row(str(result.descriptor), result.action.value, str(result.local_path))
    console.print(table)


def files(
    specs: list[str] = typer.Argument(
        ...,
        help="Files as OWNER/REPO:PATH[@REF]",
    ),
    root: Path | None = typer.Option(
        None,
        "--root",
        "-r",
        help="Local root directory (overrides sync.local_root)",
    ),
    no_fallback: bool = typer.Option(
        False,
        "--no-fallback",
        help="Abort instead of falling back to existing local files",
    ),
    branch_scoped: bool = typer.Option(
        False,
        "--branch-scoped",
        help="Store files under ROOT/OWNER/REPO/REF/PATH",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-file results"),
) -> None:
    """
    Sync individual files into the local root.

    Examples:
        blobsync files octocat/tools:bin/tool.exe
        blobsync files octocat/tools:bin/tool.exe@v2 octocat/tools:README.md -r ./vendor
    """
    try:
        descriptors = [FileDescriptor.parse(spec) for spec in specs]
    except ValueError as e:
        print_error(str(e), solution="blobsync files owner/repo:path/to/file@ref")
        raise typer.Exit(ExitCode.USER_ERROR)

    config = _load_config()
    updates: dict[str, object] = {}
    if root is not None:
        updates["local_root"] = root
    if branch_scoped:
        updates["branch_scoped"] = True
    if updates:
        config = config.model_copy(update={"sync": config.sync.model_copy(update=updates)})

    with BatchOrchestrator.from_config(config) as orchestrator:
        outcome = orchestrator.run(descriptors, local_fallback=False if no_fallback else None)

    _print_outcome(outcome, verbose)
    raise typer.Exit(exit_code_for(outcome.kind))


def directory(
    repo: str = typer.Argument(..., help="Repository as OWNER/REPO"),
    dest: Path = typer.Argument(..., help="Destination directory"),
    ref: str | None = typer.Option(None, "--ref", help="Branch, tag or commit (default branch)"),
    subpath: str | None = typer.Option(None, "--subpath", "-p", help="Directory inside the repo"),
    no_fallback: bool = typer.Option(
        False,
        "--no-fallback",
        help="Abort instead of falling back to existing local files",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-file results"),
) -> None:
    """
    Mirror a remote directory into DEST, verified and all-or-nothing.

    Examples:
        blobsync dir octocat/tools ./tools --subpath bin
        blobsync dir octocat/tools ./tools --ref v2.1.0
    """
    owner, name = _split_repo(repo)
    config = _load_config()

    with BatchOrchestrator.from_config(config) as orchestrator:
        outcome = orchestrator.sync_directory(
            owner,
            name,
            dest,
            ref=ref,
            subpath=subpath,
            local_fallback=False if no_fallback else None,
        )

    _print_outcome(outcome, verbose)
    raise typer.Exit(exit_code_for(outcome.kind))


def verify(
    repo: str = typer.Argument(..., help="Repository as OWNER/REPO"),
    dest: Path = typer.Argument(..., help="Local directory to check"),
    ref: str | None = typer.Option(None, "--ref", help="Branch, tag or commit (default branch)"),
    subpath: str | None = typer.Option(None, "--subpath", "-p", help="Directory inside the repo"),
) -> None:
    """
    Check DEST against the remote listing without changing anything.

    Exits 0 when every remote file is present with a matching hash, 1 otherwise.
    """
    owner, name = _split_repo(repo)
    config = _load_config()

    try:
        with GitHubClient(config.github) as client:
            listing = RemoteListingResolver(client).resolve(owner, name, ref=ref, subpath=subpath)
    except RateLimitedError as e:
        print_rate_limited_error(e.reset_at)
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except BlobsyncError as e:
        print_error(str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    count = sum(1 for _ in listing.blobs())
    if verify_listing(listing, dest):
        console.print(f"[green]✓[/green] {count} file(s) match {repo}@{listing.commit_id[:12]}: {dest}")
        raise typer.Exit(ExitCode.SUCCESS)

    console.print(f"[red]✗[/red] Local files differ from {repo}@{listing.commit_id[:12]}: {dest}")
    raise typer.Exit(ExitCode.GENERAL_ERROR)


def rate_limit() -> None:
    """Show the remaining GitHub API budget."""
    config = _load_config()
    try:
        with GitHubClient(config.github) as client:
            status = client.rate_limit()
    except BlobsyncError as e:
        print_error(f"Could not query rate limit: {e}")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    style = "green" if status.healthy else "red"
    console.print(f"[{style}]{status.remaining}[/{style}]/{status.limit} calls remaining")
    if status.reset_at:
        console.print(f"[dim]Resets at {status.reset_at.isoformat()}[/dim]")
