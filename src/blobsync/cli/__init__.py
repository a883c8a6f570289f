"""
blobsync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from blobsync import __version__
from blobsync.cli import sync
from blobsync.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_SYNC = "Sync Files"
PANEL_INSPECT = "Inspect"

app = typer.Typer(
    name="blobsync",
    help="Mirror files from GitHub repositories, verified and all-or-nothing",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for all commands.

    Args:
        debug: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    blobsync - keep local copies of remote repository files current.

    Files are downloaded to a staging area first and only published once
    every download succeeded; a failed sync leaves the local copy untouched.
    When the remote cannot be reached, the existing local copy is used.

    Common Workflows:
        blobsync files octocat/tools:bin/tool.exe@v2    # Sync single files
        blobsync dir octocat/tools ./tools -p bin        # Mirror a directory
        blobsync verify octocat/tools ./tools -p bin     # Check a directory
        blobsync rate-limit                              # Remaining API budget
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    setup_logging(debug)
    ctx.obj = {"debug": debug}


app.command(name="files", rich_help_panel=PANEL_SYNC)(sync.files)
app.command(name="dir", rich_help_panel=PANEL_SYNC)(sync.directory)
app.command(name="verify", rich_help_panel=PANEL_INSPECT)(sync.verify)
app.command(name="rate-limit", rich_help_panel=PANEL_INSPECT)(sync.rate_limit)


@app.command(rich_help_panel=PANEL_INSPECT)
def version() -> None:
    """Show blobsync version and exit."""
    console.print(f"blobsync version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
