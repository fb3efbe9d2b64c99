"""Worktree management menu and its operations."""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from shears.config import Settings, TRUNK_CANDIDATES
from shears.git import GitError, GitRepo, PreconditionError, WorktreeRecord
from shears.menu import MenuState, MenuView, run_menu, select
from shears.terminal import Terminal, is_yes, press_any_key

logger = logging.getLogger(__name__)


class Status(Enum):
    """How an operation ended."""

    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Operation(Enum):
    """Worktree operations offered by the menu."""

    ADD = ("Add New Worktree", "Create a new worktree for a branch or commit", "a")
    LIST = ("List Worktrees", "Show all existing worktrees and their branches", "l")
    REMOVE = ("Remove Worktree", "Delete an existing worktree", "r")
    PRUNE = ("Prune Worktrees", "Clean up worktree administrative files", "p")
    LOCK = ("Lock Worktree", "Prevent a worktree from being pruned", "k")
    UNLOCK = ("Unlock Worktree", "Allow a locked worktree to be pruned", "u")
    MOVE = ("Move Worktree", "Move a worktree to a new location", "m")
    REPAIR = ("Repair Worktrees", "Fix worktree administrative files", "e")

    def __init__(self, title: str, description: str, hotkey: str) -> None:
        self.title = title
        self.description = description
        self.hotkey = hotkey

    @classmethod
    def for_hotkey(cls, key: str) -> Optional["Operation"]:
        return next((op for op in cls if op.hotkey == key.lower()), None)


_INVALID_CHARS = re.compile(r"[^a-z0-9._/-]")
_REPEATED_SEPARATORS = re.compile(r"([-/])\1+")


def normalize_branch_name(text: str) -> str:
    """Turn free text into a usable branch name.

    "My Cool   Feature!!" becomes "my-cool-feature". The result may be empty.
    """
    name = re.sub(r"\s+", "-", text.strip().lower())
    name = _INVALID_CHARS.sub("", name)
    name = _REPEATED_SEPARATORS.sub(r"\1", name)
    name = name.strip("-/.")
    while name.endswith(".lock"):
        name = name[: -len(".lock")].strip("-/.")
    return name


def worktree_base(repo: GitRepo) -> Path:
    """Directory new worktrees go in: a sibling of the repository named `<repo>.worktrees`."""
    return repo.root.parent / f"{repo.name}.worktrees"


class RemovalSafety(Enum):
    CLEAN_AND_PUSHED = "clean-and-pushed"
    DIRTY_OR_UNPUSHED = "dirty-or-unpushed"


@dataclass(frozen=True)
class RemovalAssessment:
    """Whether removing a worktree can lose work."""

    clean: bool
    branch: str
    remote: Optional[str]
    local_commit: Optional[str]
    remote_commit: Optional[str]

    @property
    def pushed(self) -> bool:
        return bool(self.branch) and self.remote_commit is not None and self.remote_commit == self.local_commit

    @property
    def safety(self) -> RemovalSafety:
        if self.clean and self.pushed:
            return RemovalSafety.CLEAN_AND_PUSHED
        return RemovalSafety.DIRTY_OR_UNPUSHED

    def reasons(self) -> list[str]:
        reasons = []
        if not self.clean:
            reasons.append("There are uncommitted changes in the worktree.")
        if self.pushed:
            return reasons
        if not self.branch:
            reasons.append("The worktree has no branch checked out (detached HEAD).")
        elif self.remote is None:
            reasons.append(f"The branch '{self.branch}' cannot be pushed anywhere: no remote is configured.")
        elif self.remote_commit is None:
            reasons.append(f"The branch '{self.branch}' does not exist on remote '{self.remote}' (not pushed).")
        else:
            reasons.append(
                f"The branch '{self.branch}' exists on remote '{self.remote}' but differs from the worktree (local != remote)."
            )
        return reasons


def assess_removal(repo: GitRepo, worktree: WorktreeRecord) -> RemovalAssessment:
    clean = not repo.is_worktree_dirty(worktree.path)
    remote = repo.default_remote()
    local_commit = repo.worktree_head(worktree.path)
    remote_commit = None
    if worktree.branch and remote and local_commit:
        remote_commit = repo.ls_remote_tip(remote, worktree.branch)
    return RemovalAssessment(
        clean=clean,
        branch=worktree.branch,
        remote=remote,
        local_commit=local_commit,
        remote_commit=remote_commit,
    )


@dataclass
class WorktreeContext:
    repo: GitRepo
    terminal: Terminal
    console: Console
    settings: Settings


class WorktreeHandler(Protocol):
    def run(self) -> Status:
        """Carry out the operation. Never raises for git failures."""
        ...


def _worktree_line(worktree: WorktreeRecord) -> str:
    return f"{worktree.path} | {worktree.label}"


class _Handler(ABC):
    """Shared plumbing for the operations."""

    title = ""

    def __init__(self, ctx: WorktreeContext) -> None:
        self.ctx = ctx
        self.console = ctx.console
        self.terminal = ctx.terminal
        self.repo = ctx.repo

    def run(self) -> Status:
        self.console.print(f"[blue]{self.title}[/blue]\n")
        try:
            return self.execute()
        except GitError as err:
            logger.debug("%s failed: %s", self.title, err)
            self.console.print(f"[red]Error: {escape(err.detail or str(err))}[/red]")
            return Status.FAILED
        except OSError as err:
            logger.debug("%s failed: %s", self.title, err)
            self.console.print(f"[red]Error: {escape(str(err))}[/red]")
            return Status.FAILED

    @abstractmethod
    def execute(self) -> Status:
        """Prompt for what the operation needs and carry it out."""

    def pick(
        self,
        worktrees: list[WorktreeRecord],
        label: Callable[[WorktreeRecord], str] = _worktree_line,
        detail: Optional[Callable[[WorktreeRecord], Optional[str]]] = None,
    ) -> Optional[WorktreeRecord]:
        index = select(self.console, self.terminal, self.title, worktrees, label=label, detail=detail)
        return None if index is None else worktrees[index]

    def linked(self) -> list[WorktreeRecord]:
        """Worktrees other than the main one, which git will not remove, move or lock."""
        return [wt for wt in self.repo.list_worktrees() if not wt.is_main]

    def cancelled(self) -> Status:
        self.console.print("[bright_black]Operation cancelled[/bright_black]")
        return Status.CANCELLED


class AddWorktree(_Handler):
    title = Operation.ADD.title

    def execute(self) -> Status:
        current = self.repo.get_current_branch_name()
        trunk = self.ctx.settings.trunk or self._detect_trunk()
        options = []
        if current:
            options.append((f"Current Branch ({current})", current))
        if trunk and trunk != current:
            options.append((trunk, trunk))
        options.append(("Enter branch name", None))

        index = select(self.console, self.terminal, "Select base branch", options, label=lambda option: option[0])
        if index is None:
            return Status.CANCELLED
        base = options[index][1]
        if base is None:
            base = self.terminal.ask("Enter branch name: ", required=True)
            if base is None:
                return Status.CANCELLED

        raw_name = self.terminal.ask("Enter new branch name for worktree: ", required=True)
        if raw_name is None:
            return Status.CANCELLED
        new_branch = normalize_branch_name(raw_name)
        if not new_branch:
            self.console.print("[red]Error: Branch name resulted in empty string after normalization[/red]")
            return Status.FAILED
        self.console.print(f"[bright_black]Normalized branch name:[/bright_black] [green]{escape(new_branch)}[/green]")

        base_dir = worktree_base(self.repo)
        path = base_dir / new_branch
        base_dir.mkdir(parents=True, exist_ok=True)
        self.console.print(f"[yellow]Creating worktree with new branch '{escape(new_branch)}' based on '{escape(base)}'...[/yellow]")
        self.console.print(f"[bright_black]Worktree path: {escape(str(path))}[/bright_black]")
        self.repo.add_worktree(path, new_branch, base)
        self.console.print(f"[green]Worktree created successfully at: {escape(str(path))}[/green]")
        return Status.DONE

    def _detect_trunk(self) -> Optional[str]:
        try:
            return self.repo.resolve_trunk(TRUNK_CANDIDATES)
        except PreconditionError:
            return None


class ListWorktrees(_Handler):
    title = Operation.LIST.title

    def execute(self) -> Status:
        worktrees = self.repo.list_worktrees()
        if not worktrees:
            self.console.print("[green]No worktrees found[/green]")
            return Status.DONE
        chosen = self.pick(
            worktrees,
            label=lambda wt: f"{wt.path} | {wt.head[:8]} | {wt.label}",
            detail=lambda wt: f"locked: {wt.lock_reason}" if wt.locked and wt.lock_reason else ("locked" if wt.locked else None),
        )
        if chosen is None:
            return Status.CANCELLED
        lines = [
            f"Path:   {escape(chosen.path)}",
            f"Branch: {escape(chosen.label) or '-'}",
            f"HEAD:   {chosen.head or '-'}",
            f"Main:   {'yes' if chosen.is_main else 'no'}",
            f"Locked: {'yes' if chosen.locked else 'no'}" + (f" ({escape(chosen.lock_reason)})" if chosen.lock_reason else ""),
        ]
        if chosen.prunable:
            lines.append("[yellow]Prunable: the worktree directory is missing[/yellow]")
        self.console.clear()
        self.console.print(Panel("\n".join(lines), title="Worktree", title_align="left", expand=False))
        return Status.DONE


class RemoveWorktree(_Handler):
    title = Operation.REMOVE.title

    def execute(self) -> Status:
        worktrees = self.linked()
        if not worktrees:
            self.console.print("[red]No worktrees found[/red]")
            return Status.DONE
        target = self.pick(worktrees)
        if target is None:
            return Status.CANCELLED

        self.console.print(f"[yellow]Selected: {escape(target.path)} ({escape(target.label)})[/yellow]")
        assessment = assess_removal(self.repo, target)
        if assessment.safety is RemovalSafety.CLEAN_AND_PUSHED:
            self.console.print("[green]This worktree appears committed and pushed. Safe to delete.[/green]")
            answer = self.terminal.ask("Delete this worktree? (y/N): ")
            if not is_yes(answer):
                return self.cancelled()
        else:
            self.console.print("[red]Warning:[/red] This worktree may not be fully committed and pushed.")
            for reason in assessment.reasons():
                self.console.print(f"[red]- {escape(reason)}[/red]")
            if not is_yes(self.terminal.ask("Still delete this worktree? (y/N): ")):
                return self.cancelled()
            answer = self.terminal.ask(
                "Are you ABSOLUTELY sure you want to delete this worktree? This cannot be undone (y/N): "
            )
            if not is_yes(answer):
                return self.cancelled()

        # The worktree may have changed while the prompts were open; anything not shown above aborts
        current = assess_removal(self.repo, target)
        shown = set(assessment.reasons())
        if any(reason not in shown for reason in current.reasons()):
            self.console.print("[red]The worktree changed since it was checked and is no longer safe to delete:[/red]")
            for reason in current.reasons():
                if reason not in shown:
                    self.console.print(f"[red]- {escape(reason)}[/red]")
            return Status.FAILED

        self.console.print("[yellow]Removing worktree...[/yellow]")
        # Only forced when the uncommitted changes were part of the warning
        self.repo.remove_worktree(target.path, force=not assessment.clean)
        self.console.print("[green]Worktree removed successfully[/green]")
        return Status.DONE


class PruneWorktrees(_Handler):
    title = Operation.PRUNE.title

    def execute(self) -> Status:
        self.console.print("[yellow]This will clean up worktree administrative files for removed worktrees.[/yellow]")
        answer = self.terminal.ask("Continue? (y/N): ")
        if answer is None:
            return Status.CANCELLED
        if not is_yes(answer):
            return self.cancelled()
        self.console.print("[yellow]Pruning worktrees...[/yellow]")
        report = self.repo.prune_worktrees()
        if report:
            self.console.print(escape(report))
        self.console.print("[green]Worktrees pruned successfully[/green]")
        return Status.DONE


class LockWorktree(_Handler):
    title = Operation.LOCK.title

    def execute(self) -> Status:
        worktrees = [wt for wt in self.linked() if not wt.locked]
        if not worktrees:
            self.console.print("[red]No unlocked worktrees found[/red]")
            return Status.DONE
        target = self.pick(worktrees)
        if target is None:
            return Status.CANCELLED
        reason = self.terminal.ask("Enter lock reason (optional): ")
        if reason is None:
            return Status.CANCELLED
        self.repo.lock_worktree(target.path, reason)
        self.console.print("[green]Worktree locked successfully[/green]")
        return Status.DONE


class UnlockWorktree(_Handler):
    title = Operation.UNLOCK.title

    def execute(self) -> Status:
        worktrees = [wt for wt in self.repo.list_worktrees() if wt.locked]
        if not worktrees:
            self.console.print("[bright_black]No locked worktrees found.[/bright_black]")
            return Status.DONE
        target = self.pick(worktrees, detail=lambda wt: f"Lock: {wt.lock_reason}" if wt.lock_reason else None)
        if target is None:
            return Status.CANCELLED

        self.console.print(f"[yellow]Selected: {escape(target.path)}[/yellow]")
        self.console.print("[red]This worktree is locked.[/red]")
        if target.lock_reason:
            self.console.print(f"[bright_black]Lock message:[/bright_black] {escape(target.lock_reason)}")
        if not is_yes(self.terminal.ask("Unlock this worktree? (y/N): ")):
            return self.cancelled()
        self.repo.unlock_worktree(target.path)
        self.console.print("[green]Worktree unlocked successfully[/green]")
        return Status.DONE


class MoveWorktree(_Handler):
    title = Operation.MOVE.title

    def execute(self) -> Status:
        worktrees = self.linked()
        if not worktrees:
            self.console.print("[red]No worktrees found[/red]")
            return Status.DONE
        target = self.pick(worktrees)
        if target is None:
            return Status.CANCELLED
        new_path = self.terminal.ask("Enter new worktree path: ", required=True)
        if new_path is None:
            return Status.CANCELLED
        new_path = os.path.expanduser(new_path)
        self.console.print(f"[yellow]Moving worktree from '{escape(target.path)}' to '{escape(new_path)}'...[/yellow]")
        self.repo.move_worktree(target.path, new_path)
        self.console.print("[green]Worktree moved successfully[/green]")
        return Status.DONE


ALL_WORKTREES = "(All worktrees)"


class RepairWorktrees(_Handler):
    title = Operation.REPAIR.title

    def execute(self) -> Status:
        choices: list[Optional[WorktreeRecord]] = [None, *self.repo.list_worktrees()]
        index = select(
            self.console,
            self.terminal,
            self.title,
            choices,
            label=lambda wt: ALL_WORKTREES if wt is None else _worktree_line(wt),
        )
        if index is None:
            return Status.CANCELLED
        target = choices[index]
        if target is None:
            self.console.print("[yellow]Repairing all worktrees...[/yellow]")
            self.repo.repair_worktrees()
        else:
            self.console.print(f"[yellow]Repairing worktree: {escape(target.path)}[/yellow]")
            self.repo.repair_worktrees(target.path)
        self.console.print("[green]Worktrees repaired successfully[/green]")
        return Status.DONE


HANDLERS: dict[Operation, Callable[[WorktreeContext], WorktreeHandler]] = {
    Operation.ADD: AddWorktree,
    Operation.LIST: ListWorktrees,
    Operation.REMOVE: RemoveWorktree,
    Operation.PRUNE: PruneWorktrees,
    Operation.LOCK: LockWorktree,
    Operation.UNLOCK: UnlockWorktree,
    Operation.MOVE: MoveWorktree,
    Operation.REPAIR: RepairWorktrees,
}


class WorktreeMenu:
    """Top-level worktree menu."""

    def __init__(self, ctx: WorktreeContext) -> None:
        self.ctx = ctx

    def _header(self) -> str:
        repo = self.ctx.repo
        return (
            f"[bright_black]Repository:[/bright_black] {escape(repo.name)}\n"
            f"[bright_black]Current branch:[/bright_black] {escape(repo.get_current_branch_name())}\n"
            f"[bright_black]Working directory:[/bright_black] {escape(os.getcwd())}"
        )

    def run(self) -> None:
        ctx = self.ctx
        operations = list(Operation)
        state = MenuState(operations)
        view = MenuView(
            title="Git Worktree Management Menu",
            label=lambda op: f"{op.title} [{op.hotkey}]",
            detail=lambda op: op.description,
            header=self._header,
            footer="Use arrow keys to navigate, hotkey letter to select, Enter to confirm, 'q' to quit",
            hotkeys=("q", *(op.hotkey for op in operations)),
        )
        while True:
            choice = run_menu(ctx.console, ctx.terminal, view, state)
            if choice is None or choice.key == "q":
                ctx.console.clear()
                ctx.console.print("[bright_black]Goodbye![/bright_black]")
                return
            operation = Operation.for_hotkey(choice.key) if choice.key else operations[choice.index]
            state.selected = operations.index(operation)
            self.execute(operation)

    def execute(self, operation: Operation) -> Status:
        ctx = self.ctx
        ctx.console.clear()
        status = HANDLERS[operation](ctx).run()
        logger.debug("%s finished: %s", operation.name, status.value)
        if status is Status.CANCELLED:
            return status
        ctx.console.print()
        press_any_key(ctx.console, ctx.terminal)
        return status
