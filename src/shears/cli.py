"""Command line interface for shears."""

import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import print
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shears.branches import CleanupMode, classify, evaluate
from shears.cleanup import BranchCleanup, CleanupContext, ModeMenu, ask_not_author
from shears.config import DEFAULT_REMOTE, TRUNK_CANDIDATES, Settings
from shears.git import GitError, GitRepo, PreconditionError
from shears.logs import setup_logging
from shears.terminal import PosixTerminal, Terminal
from shears.worktrees import WorktreeContext, WorktreeMenu

app = typer.Typer(help="Interactive git branch cleanup and worktree management")
console = Console()

PathOption = Annotated[Path, typer.Option(help="Path to git repository")]
TrunkOption = Annotated[Optional[str], typer.Option(help="Trunk branch (default: first of master, main)")]
RemoteOption = Annotated[str, typer.Option(help="Remote that holds your branches")]
ProtectOption = Annotated[str, typer.Option("--protect", "-p", help="Comma-separated list of extra branch patterns to protect")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging on stderr")]


def fail(err: Exception) -> typer.Exit:
    print(f"[red]Error:[/red] {err}")
    return typer.Exit(code=1)


def get_repo(path: Path) -> GitRepo:
    """Get git repository instance."""
    try:
        return GitRepo(path)
    except GitError as err:
        raise fail(err) from err


def get_settings(trunk: Optional[str], remote: str, protect: str) -> Settings:
    try:
        return Settings.from_cli(trunk=trunk, remote=remote, protect=protect)
    except ValueError as err:
        raise fail(err) from err


def get_terminal() -> Terminal:
    if not sys.stdin.isatty():
        raise fail(PreconditionError("An interactive terminal is required"))
    try:
        return PosixTerminal(console)
    except RuntimeError as err:
        raise fail(err) from err


def resolve_context(repo: GitRepo, settings: Settings) -> tuple[str, str]:
    """Check the preconditions every cleanup needs. Returns (user, trunk)."""
    try:
        user = repo.get_user_name()
        trunk = settings.trunk or repo.resolve_trunk(TRUNK_CANDIDATES)
        if repo.resolve(f"refs/heads/{trunk}") is None:
            raise PreconditionError(f"Trunk branch '{trunk}' does not exist")
    except PreconditionError as err:
        raise fail(err) from err
    return user, trunk


def create_branch_table(title: str) -> Table:
    """Create a table with standard branch columns."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Last Commit", style="yellow", no_wrap=True)
    table.add_column("Author", style="magenta", no_wrap=True)
    table.add_column("Reason", style="green")
    return table


@app.command("list")
def list_branches(
    mode: Annotated[CleanupMode, typer.Argument(help="Cleanup mode")],
    path: PathOption = Path("."),
    trunk: TrunkOption = None,
    remote: RemoteOption = DEFAULT_REMOTE,
    protect: ProtectOption = "",
    not_author: bool = typer.Option(False, "--not-author", help="Synced mode: hide branches you recently committed to"),
    verbose: VerboseOption = False,
) -> None:
    """List the branches a cleanup mode would offer, without deleting anything."""
    setup_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(trunk, remote, protect)
    user, trunk_name = resolve_context(repo, settings)

    records = classify(repo, mode, user, settings, trunk_name, not_author)
    if not records:
        console.print(
            Panel(
                f"[green]No branches found for {mode.heading.lower()} ✨[/green]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    table = create_branch_table(mode.heading)
    for record in records:
        table.add_row(
            record.name,
            record.committed_at.strftime("%Y-%m-%d"),
            record.author,
            evaluate(mode, record, user, not_author).reason,
        )
    console.print(table)


@app.command()
def clean(
    mode: Annotated[Optional[CleanupMode], typer.Argument(help="Cleanup mode; omit to pick one from a menu")] = None,
    path: PathOption = Path("."),
    trunk: TrunkOption = None,
    remote: RemoteOption = DEFAULT_REMOTE,
    protect: ProtectOption = "",
    not_author: Optional[bool] = typer.Option(
        None,
        "--not-author/--any-author",
        help="Synced mode: hide branches you recently committed to (asked when omitted)",
    ),
    verbose: VerboseOption = False,
) -> None:
    """Interactively delete branches."""
    setup_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(trunk, remote, protect)
    user, trunk_name = resolve_context(repo, settings)
    terminal = get_terminal()
    ctx = CleanupContext(repo=repo, terminal=terminal, console=console, settings=settings, user=user, trunk=trunk_name)

    try:
        if mode is None:
            ModeMenu(ctx, not_author).run()
            return
        if mode is CleanupMode.SYNCED and not_author is None:
            not_author = ask_not_author(console, terminal)
        BranchCleanup(ctx, mode, bool(not_author)).run()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=130) from None


@app.command()
def worktree(
    path: PathOption = Path("."),
    trunk: TrunkOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Manage worktrees from a menu."""
    setup_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(trunk, DEFAULT_REMOTE, "")
    terminal = get_terminal()
    try:
        WorktreeMenu(WorktreeContext(repo=repo, terminal=terminal, console=console, settings=settings)).run()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=130) from None


if __name__ == "__main__":
    app()
