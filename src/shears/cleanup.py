"""Interactive branch cleanup sessions."""

import logging
from dataclasses import dataclass
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from shears.branches import BranchRecord, CleanupMode, DeleteOutcome, Scope, classify, delete_branch, recheck
from shears.config import Settings
from shears.git import GitRepo
from shears.menu import MenuState, MenuView, run_menu
from shears.terminal import Terminal, press_any_key

logger = logging.getLogger(__name__)

_MISMATCH = {
    CleanupMode.MERGED: "is no longer merged to {trunk}. It may have been modified or rebased.",
    CleanupMode.SYNCED: "is no longer in sync with {remote}/{branch}. It may have been modified locally or remotely.",
    CleanupMode.LOCAL: "is no longer an unpushed branch of yours. It may have been pushed or changed.",
    CleanupMode.UNMERGED: "is no longer an unmerged branch of yours with a remote branch.",
}


@dataclass
class CleanupContext:
    """Everything a cleanup session needs, resolved once before any menu is shown."""

    repo: GitRepo
    terminal: Terminal
    console: Console
    settings: Settings
    user: str
    trunk: str


def ask_not_author(console: Console, terminal: Terminal) -> bool:
    """Ask whether the synced list should hide branches you recently committed to."""
    console.print("[yellow]Show only branches where you are NOT an author? (y/N):[/yellow]")
    return terminal.read_key().is_char("y")


class BranchCleanup:
    """One cleanup mode: list, confirm, delete, repeat."""

    def __init__(self, ctx: CleanupContext, mode: CleanupMode, not_author: bool = False) -> None:
        self.ctx = ctx
        self.mode = mode
        self.not_author = not_author
        self.state: MenuState[BranchRecord] = MenuState([])
        self.notice: list[str] = []

    @property
    def console(self) -> Console:
        return self.ctx.console

    def run(self) -> int:
        """Run the session. Returns the number of branches deleted."""
        ctx = self.ctx
        ctx.console.print(f"[blue]Fetching branches for [yellow]{escape(self.mode.heading)}[/yellow]...[/blue]")
        records = classify(ctx.repo, self.mode, ctx.user, ctx.settings, ctx.trunk, self.not_author)
        if not records:
            ctx.console.print(f"[green]No branches found for {escape(self.mode.heading)}.[/green]")
            return 0

        self.state = MenuState(records)
        hotkeys = ("q", "a") if self.mode.allows_delete_all else ("q",)
        footer = "↑/↓ to navigate, Enter to select, " + ("A to delete all, " if self.mode.allows_delete_all else "") + "Q to quit"
        view = MenuView(
            title=self.mode.heading,
            label=lambda record: record.name,
            detail=self._detail,
            header=self._header,
            footer=footer,
            hotkeys=hotkeys,
        )
        while self.state.items:
            choice = run_menu(ctx.console, ctx.terminal, view, self.state)
            if choice is None or choice.key == "q":
                break
            if choice.key == "a":
                if self.delete_all():
                    break
                continue
            record = self.state.current
            fresh = self.confirm(record)
            if fresh is not None and self.delete(fresh).ok:
                self.state.complete_selected()

        self._summary()
        return self.state.completed

    def _header(self) -> str:
        lines = []
        if self.mode is not CleanupMode.SYNCED:
            lines.append(f"[bright_black]User: {escape(self.ctx.user)}[/bright_black]")
        lines.append(f"[bright_black]Deleted so far: {self.state.completed}[/bright_black]")
        if self.notice:
            lines.append("")
            lines.extend(self.notice)
        return "\n".join(lines)

    def _detail(self, record: BranchRecord) -> str:
        text = record.committed_at.strftime("%Y-%m-%d")
        if self.mode is CleanupMode.SYNCED:
            text += f" [{', '.join(record.recent_authors)}]"
        return text

    def _summary(self) -> None:
        self.console.clear()
        self.console.print("[green]Cleanup complete![/green]")
        self.console.print(f"[green]Deleted {self.state.completed} branch(es)[/green]")
        if self.mode.scope is Scope.LOCAL:
            self.console.print("[green]Remote branches were preserved.[/green]")

    def confirm(self, record: BranchRecord) -> Optional[BranchRecord]:
        """Check the branch still qualifies, show it, and ask for a Y.

        Returns the fresh snapshot to delete, or None to leave the branch alone.
        """
        ctx = self.ctx
        verdict, fresh = recheck(ctx.repo, record, self.mode, ctx.user, ctx.settings, ctx.trunk, self.not_author)
        if not verdict.included or fresh is None:
            self._mismatch(record, verdict.reason)
            return None

        console = self.console
        console.clear()
        local_only = self.mode.scope is Scope.LOCAL
        heading = "Delete Local Branch" if local_only else "Delete Branch"
        if self.mode is CleanupMode.UNMERGED:
            heading = "Delete Unmerged Branch"
        console.print(Panel(f"[yellow]{heading}: {escape(fresh.name)}[/yellow]", style="blue", expand=False))
        console.print("[bright_black]Branch Tip Commit:[/bright_black]")
        console.print(f"  {fresh.short_sha} - {escape(fresh.author)}")
        console.print(f"  {fresh.committed_at.strftime('%Y-%m-%d %H:%M:%S %z')}")
        console.print(f"  Message: {escape(fresh.message)}\n")

        remote = ctx.settings.remote
        if self.mode is CleanupMode.MERGED:
            if fresh.merge_commit:
                console.print(f"[green]✓ Merge Commit in {escape(ctx.trunk)}:[/green]")
                console.print(f"  {escape(fresh.merge_commit)}\n")
            else:
                console.print(f"[yellow]⚠ Could not locate merge commit in {escape(ctx.trunk)}[/yellow]")
                console.print("  (Branch may have been squash-merged or history rewritten)\n")
        elif self.mode is CleanupMode.SYNCED:
            console.print(f"[green]✓ Remote branch ({remote}/{escape(fresh.name)}) is synced and will be preserved.[/green]")
        elif self.mode is CleanupMode.UNMERGED:
            console.print(f"[red]⚠ WARNING: This branch has NOT been merged to {escape(ctx.trunk)}.[/red]")
        else:
            console.print("[red]⚠ WARNING: This branch has never been pushed. Its commits exist only here.[/red]")

        if local_only:
            console.print("[yellow]This will DELETE ONLY the local branch.[/yellow]")
        else:
            console.print(f"[red]This will delete the branch from local and remote ({remote}).[/red]")
        console.print("[yellow]Are you sure? (y/N):[/yellow]")
        if ctx.terminal.read_key().is_char("y"):
            return fresh
        return None

    def _mismatch(self, record: BranchRecord, reason: str) -> None:
        ctx = self.ctx
        console = self.console
        console.clear()
        console.print(Panel(f"[red]ERROR: {escape(record.name)} can no longer be deleted here[/red]", style="red", expand=False))
        explanation = _MISMATCH[self.mode].format(trunk=ctx.trunk, remote=ctx.settings.remote, branch=record.name)
        console.print(f"[yellow]The branch {escape(record.name)} {escape(explanation)}[/yellow]")
        console.print(f"[bright_black]Reason: {escape(reason)}[/bright_black]\n")
        press_any_key(console, ctx.terminal)

    def delete(self, record: BranchRecord) -> DeleteOutcome:
        """Delete a confirmed branch and report each step."""
        console = self.console
        remote = self.ctx.settings.remote
        name = escape(record.name)
        console.print(f"\n[blue]Deleting {name}...[/blue]")
        outcome = delete_branch(self.ctx.repo, record, self.mode, remote)
        if not outcome.local_deleted:
            console.print(f"[red]✗ Failed to delete {name} locally: {escape(outcome.local_error)}[/red]")
            press_any_key(console, self.ctx.terminal)
            return outcome
        report = [f"[green]✓ Deleted {name} locally" + (" (forced)" if outcome.forced else "") + "[/green]"]
        if outcome.remote_deleted:
            report.append(f"[green]✓ Deleted {name} from {remote}[/green]")
        elif outcome.remote_attempted:
            report.append(
                f"[yellow]⚠ Could not delete {name} from {remote} (may already be deleted): "
                f"{escape(outcome.remote_error)}[/yellow]"
            )
        else:
            report.append(f"[green]✓ Remote branch ({remote}/{name}) left untouched[/green]")
        for line in report:
            console.print(line)
        # Shown above the list on the next redraw
        self.notice = report
        return outcome

    def delete_all(self) -> bool:
        """Delete every listed branch after one confirmation. Returns True if confirmed."""
        ctx = self.ctx
        console = self.console
        items = list(self.state.items)
        console.clear()
        console.print(Panel("[red]Delete ALL Branches?[/red]", style="blue", expand=False))
        console.print(f"[yellow]This will delete {len(items)} local branch(es):[/yellow]\n")
        for record in items:
            console.print(f"  [bright_black]• {escape(record.name)}[/bright_black]")
        if self.mode.scope is Scope.LOCAL:
            console.print("\n[yellow]Remote branches will be preserved.[/yellow]")
        console.print("[red]Are you absolutely sure? (y/N):[/red]")
        if not ctx.terminal.read_key().is_char("y"):
            return False

        for record in items:
            verdict, fresh = recheck(ctx.repo, record, self.mode, ctx.user, ctx.settings, ctx.trunk, self.not_author)
            if not verdict.included or fresh is None:
                console.print(f"[yellow]⚠ Skipping {escape(record.name)}: {escape(verdict.reason)}[/yellow]")
                continue
            if self.delete(fresh).ok:
                self.state.remove(record)
        press_any_key(console, ctx.terminal)
        return True


class ModeMenu:
    """Top-level menu choosing a cleanup mode."""

    def __init__(self, ctx: CleanupContext, not_author: Optional[bool] = None) -> None:
        self.ctx = ctx
        self.not_author = not_author

    def run(self) -> int:
        """Run sessions until the user quits. Returns the total number of deleted branches."""
        ctx = self.ctx
        state = MenuState(list(CleanupMode))
        view = MenuView(
            title="Git Branch Cleanup Menu",
            label=lambda mode: mode.heading,
            detail=lambda mode: mode.description,
            footer="↑/↓ to navigate, Enter to select, Q to quit",
            hotkeys=("q",),
        )
        total = 0
        while True:
            choice = run_menu(ctx.console, ctx.terminal, view, state)
            if choice is None or choice.key == "q":
                ctx.console.clear()
                return total
            mode = state.items[choice.index]
            ctx.console.clear()
            not_author = self.not_author
            if mode is CleanupMode.SYNCED and not_author is None:
                not_author = ask_not_author(ctx.console, ctx.terminal)
            total += BranchCleanup(ctx, mode, bool(not_author)).run()
            press_any_key(ctx.console, ctx.terminal)
