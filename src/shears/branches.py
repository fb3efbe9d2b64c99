"""Branch classification and deletion."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from shears.config import RECENT_AUTHOR_DEPTH, Settings
from shears.git import GitError, GitRepo

logger = logging.getLogger(__name__)


class Scope(Enum):
    """Where a cleanup deletes a branch."""

    LOCAL = "local"
    LOCAL_AND_REMOTE = "local-and-remote"


class CleanupMode(str, Enum):
    """Cleanup mode."""

    MERGED = "merged"
    SYNCED = "synced"
    LOCAL = "local"
    UNMERGED = "unmerged"

    @property
    def heading(self) -> str:
        return _MODE_TITLES[self]

    @property
    def description(self) -> str:
        return _MODE_DESCRIPTIONS[self]

    @property
    def scope(self) -> Scope:
        return Scope.LOCAL if self in (CleanupMode.SYNCED, CleanupMode.LOCAL) else Scope.LOCAL_AND_REMOTE

    @property
    def force_delete(self) -> bool:
        """A safe delete of an unmerged branch is always refused, so skip straight to force."""
        return self is CleanupMode.UNMERGED

    @property
    def allows_delete_all(self) -> bool:
        return self is CleanupMode.SYNCED


_MODE_TITLES = {
    CleanupMode.MERGED: "Delete Merged Branches",
    CleanupMode.SYNCED: "Delete Synced Branches",
    CleanupMode.LOCAL: "Delete Local Unpushed Branches",
    CleanupMode.UNMERGED: "Delete Unmerged Branches",
}

_MODE_DESCRIPTIONS = {
    CleanupMode.MERGED: "Removes your branches that are merged to trunk (deletes from local AND remote)",
    CleanupMode.SYNCED: "Removes local branches that are in sync with remote (preserves remote branch)",
    CleanupMode.LOCAL: (
        "Removes your local branches that haven't been pushed to remote. "
        "These could be useful branches so be careful!"
    ),
    CleanupMode.UNMERGED: (
        "Removes your pushed branches that are NOT merged to trunk (deletes from local AND remote). "
        "These are usually stale branches but be cautious!"
    ),
}


@dataclass(frozen=True)
class BranchRecord:
    """Snapshot of a local branch and the facts the cleanup modes look at."""

    name: str
    commit: str
    author: str
    committed_at: datetime
    message: str
    remote_commit: Optional[str]
    merged: bool
    recent_authors: tuple[str, ...] = ()
    merge_commit: Optional[str] = None

    @property
    def short_sha(self) -> str:
        return self.commit[:7]

    @property
    def has_remote(self) -> bool:
        return self.remote_commit is not None

    @property
    def synced(self) -> bool:
        return self.remote_commit is not None and self.remote_commit == self.commit


class Verdict(NamedTuple):
    included: bool
    reason: str


def snapshot_branch(repo: GitRepo, name: str, trunk: str, remote: str) -> Optional[BranchRecord]:
    """Query everything the modes need about one branch. None if it has no commit."""
    ref = f"refs/heads/{name}"
    info = repo.commit_info(ref)
    if info is None:
        return None
    return BranchRecord(
        name=name,
        commit=info.hexsha,
        author=info.author,
        committed_at=info.committed_at,
        message=info.message,
        remote_commit=repo.remote_tip(remote, name),
        merged=repo.is_ancestor(ref, trunk),
        recent_authors=repo.recent_authors(ref, RECENT_AUTHOR_DEPTH),
    )


def evaluate(mode: CleanupMode, record: BranchRecord, user: str, not_author: bool = False) -> Verdict:
    """Decide whether a mode offers a branch, and why."""
    if mode is CleanupMode.MERGED:
        if not record.merged:
            return Verdict(False, "not merged to trunk")
        if record.author != user:
            return Verdict(False, f"last commit authored by {record.author}")
        return Verdict(True, "merged to trunk")

    if mode is CleanupMode.LOCAL:
        if record.has_remote:
            return Verdict(False, "has a remote branch")
        if record.author != user:
            return Verdict(False, f"last commit authored by {record.author}")
        return Verdict(True, "never pushed")

    if mode is CleanupMode.SYNCED:
        if not record.has_remote:
            return Verdict(False, "has no remote branch")
        if not record.synced:
            return Verdict(False, "local and remote differ")
        if not_author and user in record.recent_authors:
            return Verdict(False, "you authored recent commits")
        return Verdict(True, "in sync with remote")

    if not record.has_remote:
        return Verdict(False, "has no remote branch")
    if record.merged:
        return Verdict(False, "merged to trunk")
    if record.author != user:
        return Verdict(False, f"last commit authored by {record.author}")
    return Verdict(True, "not merged to trunk")


def classify(
    repo: GitRepo,
    mode: CleanupMode,
    user: str,
    settings: Settings,
    trunk: str,
    not_author: bool = False,
) -> list[BranchRecord]:
    """Branches a mode offers for deletion, oldest commit first."""
    current = repo.get_current_branch_name()
    records = []
    for name in repo.local_branches():
        if name in (trunk, current) or settings.is_protected(name):
            continue
        record = snapshot_branch(repo, name, trunk, settings.remote)
        if record is None:
            continue
        verdict = evaluate(mode, record, user, not_author)
        logger.debug("%s: %s (%s)", name, "offered" if verdict.included else "skipped", verdict.reason)
        if verdict.included:
            records.append(record)
    return sorted(records, key=lambda record: record.committed_at)


def recheck(
    repo: GitRepo,
    record: BranchRecord,
    mode: CleanupMode,
    user: str,
    settings: Settings,
    trunk: str,
    not_author: bool = False,
) -> tuple[Verdict, Optional[BranchRecord]]:
    """Evaluate a branch again against the repository as it is now.

    Returns the verdict and the fresh snapshot (None if the branch is gone).
    """
    fresh = snapshot_branch(repo, record.name, trunk, settings.remote)
    if fresh is None:
        return Verdict(False, "branch no longer exists"), None
    verdict = evaluate(mode, fresh, user, not_author)
    if verdict.included and mode is CleanupMode.MERGED:
        fresh = replace(fresh, merge_commit=repo.find_merge_commit(record.name, trunk))
    return verdict, fresh


@dataclass(frozen=True)
class DeleteOutcome:
    """What a deletion did."""

    branch: str
    local_deleted: bool
    forced: bool = False
    local_error: str = ""
    remote_attempted: bool = False
    remote_deleted: bool = False
    remote_error: str = ""

    @property
    def ok(self) -> bool:
        """A branch counts as processed once the local copy is gone."""
        return self.local_deleted


def delete_branch(repo: GitRepo, record: BranchRecord, mode: CleanupMode, remote: str) -> DeleteOutcome:
    """Delete a branch locally and, for modes that reach the remote, on the remote too."""
    forced = mode.force_delete
    try:
        repo.delete_local_branch(record.name, force=forced)
    except GitError as err:
        if forced:
            return DeleteOutcome(record.name, local_deleted=False, local_error=err.detail or str(err))
        logger.debug("Safe delete of %s refused, forcing: %s", record.name, err.detail)
        try:
            repo.delete_local_branch(record.name, force=True)
        except GitError as forced_err:
            return DeleteOutcome(record.name, local_deleted=False, local_error=forced_err.detail or str(forced_err))
        forced = True

    if mode.scope is not Scope.LOCAL_AND_REMOTE:
        return DeleteOutcome(record.name, local_deleted=True, forced=forced)

    try:
        repo.delete_remote_branch(remote, record.name)
    except GitError as err:
        logger.info("Remote delete of %s failed: %s", record.name, err.detail or err)
        return DeleteOutcome(
            record.name,
            local_deleted=True,
            forced=forced,
            remote_attempted=True,
            remote_error=err.detail or str(err),
        )
    return DeleteOutcome(record.name, local_deleted=True, forced=forced, remote_attempted=True, remote_deleted=True)
