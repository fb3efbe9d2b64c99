"""Git repository operations."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject

logger = logging.getLogger(__name__)

# Bound on the merge commits scanned when looking for the one that merged a branch
MERGE_SCAN_LIMIT = 500


class GitError(Exception):
    """Git operation error."""

    def __init__(self, message: str, detail: str = "") -> None:
        """Initialize error.

        Args:
            message: Error message
            detail: Output of the failed git command, unmodified
        """
        super().__init__(message)
        self.detail = detail


class PreconditionError(GitError):
    """A requirement for running any menu is not met."""


def _stderr(err: GitCommandError) -> str:
    """Return what git printed on stderr, without GitPython's decoration."""
    text = str(err.stderr or "").strip()
    if text.startswith("stderr:"):
        text = text[len("stderr:") :].strip()
    return text.strip("'").strip()


def _failure(action: str, err: GitCommandError) -> GitError:
    detail = _stderr(err)
    return GitError(f"{action}: {detail or err}", detail=detail)


@dataclass(frozen=True)
class CommitInfo:
    """Last commit of a ref."""

    hexsha: str
    author: str
    committed_at: datetime
    message: str

    @property
    def short_sha(self) -> str:
        return self.hexsha[:7]


@dataclass(frozen=True)
class WorktreeRecord:
    """One entry of `git worktree list --porcelain`."""

    path: str
    head: str = ""
    branch: str = ""
    detached: bool = False
    bare: bool = False
    locked: bool = False
    lock_reason: str = ""
    prunable: bool = False
    is_main: bool = False

    @property
    def label(self) -> str:
        return self.branch or ("(detached)" if self.detached else "")


def parse_worktree_porcelain(output: str) -> list[WorktreeRecord]:
    """Parse the porcelain worktree listing.

    Entries are separated by blank lines. The first entry is always the main worktree.
    """
    records: list[WorktreeRecord] = []
    fields: dict = {}

    def flush() -> None:
        if fields.get("path"):
            records.append(WorktreeRecord(is_main=not records, **fields))
        fields.clear()

    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            flush()
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
            fields["path"] = value
        elif key == "HEAD":
            fields["head"] = value
        elif key == "branch":
            fields["branch"] = value[len("refs/heads/") :] if value.startswith("refs/heads/") else value
        elif key == "detached":
            fields["detached"] = True
        elif key == "bare":
            fields["bare"] = True
        elif key == "locked":
            fields["locked"] = True
            fields["lock_reason"] = value
        elif key == "prunable":
            fields["prunable"] = True
    flush()
    return records


class GitRepo:
    """Git repository operations."""

    def __init__(self, path: Path) -> None:
        """Initialize repository."""
        try:
            self.repo: Repo = Repo(path, search_parent_directories=True)
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise PreconditionError(f"Failed to open repository: {err}") from err
        if self.repo.bare:
            raise PreconditionError("Cannot operate on bare repository")

    @property
    def root(self) -> Path:
        return Path(self.repo.working_tree_dir)

    @property
    def name(self) -> str:
        return self.root.name

    def get_current_branch_name(self) -> str:
        """Get current branch name."""
        try:
            return self.repo.active_branch.name
        except TypeError:
            # Detached HEAD
            return ""

    def get_user_name(self) -> str:
        """Get the configured `user.name`, which identifies "your" branches."""
        try:
            name = self.repo.git.config("user.name").strip()
        except GitCommandError:
            name = ""
        if not name:
            raise PreconditionError("Could not determine git user name (set user.name)")
        return name

    def resolve_trunk(self, candidates: Iterable[str]) -> str:
        """Return the first candidate that exists as a local branch."""
        heads = {head.name for head in self.repo.heads}
        for candidate in candidates:
            if candidate in heads:
                return candidate
        raise PreconditionError(f"No trunk branch found (looked for {', '.join(candidates)})")

    def local_branches(self) -> list[str]:
        """List local branch names, oldest committer date first."""
        output = self.repo.git.for_each_ref(
            "--sort=committerdate",
            "--format=%(refname:short)",
            "refs/heads",
        )
        return [line.strip() for line in output.splitlines() if line.strip()]

    def commit_info(self, ref: str) -> Optional[CommitInfo]:
        """Get the last commit of a ref, or None if the ref does not resolve."""
        try:
            commit = self.repo.commit(ref)
        except (GitCommandError, BadName, BadObject, ValueError):
            return None
        return CommitInfo(
            hexsha=commit.hexsha,
            author=commit.author.name or "",
            committed_at=commit.committed_datetime,
            message=str(commit.message).strip(),
        )

    def recent_authors(self, ref: str, count: int) -> tuple[str, ...]:
        """Unique author names of the last `count` commits of a ref."""
        try:
            names = [commit.author.name for commit in self.repo.iter_commits(ref, max_count=count)]
        except (GitCommandError, ValueError):
            return ()
        return tuple(sorted({name for name in names if name}))

    def is_ancestor(self, ref: str, other: str) -> bool:
        """Check whether `ref` is reachable from `other`. Unknown refs count as not reachable."""
        try:
            self.repo.git.merge_base("--is-ancestor", ref, other)
            return True
        except GitCommandError:
            return False

    def resolve(self, ref: str) -> Optional[str]:
        """Resolve a ref to a commit id."""
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}").strip() or None
        except GitCommandError:
            return None

    def remote_tip(self, remote: str, branch: str) -> Optional[str]:
        """Commit of the remote-tracking ref for a branch, if there is one."""
        return self.resolve(f"refs/remotes/{remote}/{branch}")

    def default_remote(self) -> Optional[str]:
        """First configured remote."""
        remotes = self.repo.remotes
        return remotes[0].name if remotes else None

    def ls_remote_tip(self, remote: str, branch: str) -> Optional[str]:
        """Ask the remote itself which commit its branch points at."""
        try:
            output = self.repo.git.ls_remote(remote, f"refs/heads/{branch}")
        except GitCommandError as err:
            logger.debug("ls-remote %s %s failed: %s", remote, branch, _stderr(err))
            return None
        for line in output.splitlines():
            sha, _, ref = line.partition("\t")
            if ref.strip() == f"refs/heads/{branch}":
                return sha.strip()
        return None

    def find_merge_commit(self, branch: str, trunk: str, limit: int = MERGE_SCAN_LIMIT) -> Optional[str]:
        """Find the merge commit on trunk that brought a branch in.

        Best effort: first look for a merge whose message names the branch, then for a
        first-parent merge whose merged-in side contains the branch tip. Squash merges and
        rewritten history give None.
        """
        leaf = branch.rsplit("/", 1)[-1].lower()
        try:
            for commit in self.repo.iter_commits(trunk, merges=True, max_count=limit):
                if leaf and leaf in commit.summary.lower():
                    return f"{commit.hexsha[:7]} {commit.summary}"
            for commit in self.repo.iter_commits(trunk, merges=True, first_parent=True, max_count=limit):
                if len(commit.parents) > 1 and self.is_ancestor(branch, commit.parents[1].hexsha):
                    return f"{commit.hexsha[:7]} {commit.summary}"
        except (GitCommandError, ValueError):
            return None
        return None

    def delete_local_branch(self, branch: str, force: bool = False) -> None:
        """Delete a local branch. Without force, git refuses unmerged branches."""
        try:
            self.repo.git.branch("-D" if force else "-d", branch)
        except GitCommandError as err:
            raise _failure(f"Failed to delete {branch}", err) from err
        logger.info("Deleted local branch %s%s", branch, " (forced)" if force else "")

    def delete_remote_branch(self, remote: str, branch: str) -> None:
        """Delete a branch on the remote."""
        try:
            self.repo.git.push(remote, "--delete", branch)
        except GitCommandError as err:
            raise _failure(f"Failed to delete {branch} from {remote}", err) from err
        logger.info("Deleted %s from %s", branch, remote)

    def list_worktrees(self) -> list[WorktreeRecord]:
        """Snapshot all worktrees."""
        try:
            output = self.repo.git.worktree("list", "--porcelain")
        except GitCommandError as err:
            raise _failure("Failed to list worktrees", err) from err
        return parse_worktree_porcelain(output)

    def _worktree(self, action: str, *args: str) -> str:
        try:
            output = self.repo.git.worktree(*args)
        except GitCommandError as err:
            raise _failure(f"Failed to {action} worktree", err) from err
        logger.info("git worktree %s", " ".join(args))
        return output

    def add_worktree(self, path: Path, new_branch: str, base: str) -> None:
        """Create a worktree at `path` on a new branch started from `base`."""
        self._worktree("add", "add", "-b", new_branch, str(path), base)

    def remove_worktree(self, path: str, force: bool = False) -> None:
        args = ["remove", "--force", path] if force else ["remove", path]
        self._worktree("remove", *args)

    def prune_worktrees(self) -> str:
        """Prune stale worktree administrative files, returning git's report."""
        try:
            # -v reports on stderr
            _, stdout, stderr = self.repo.git.worktree("prune", "-v", with_extended_output=True)
        except GitCommandError as err:
            raise _failure("Failed to prune worktrees", err) from err
        return "\n".join(part for part in (stdout.strip(), stderr.strip()) if part)

    def lock_worktree(self, path: str, reason: str = "") -> None:
        args = ["lock", "--reason", reason, path] if reason else ["lock", path]
        self._worktree("lock", *args)

    def unlock_worktree(self, path: str) -> None:
        self._worktree("unlock", "unlock", path)

    def move_worktree(self, path: str, new_path: str) -> None:
        self._worktree("move", "move", path, new_path)

    def repair_worktrees(self, path: Optional[str] = None) -> None:
        """Repair one worktree, or every worktree when no path is given."""
        args = ["repair", path] if path else ["repair"]
        self._worktree("repair", *args)

    def is_worktree_dirty(self, path: str) -> bool:
        """Check a worktree for uncommitted changes, untracked files included."""
        try:
            return bool(Repo(path).git.status("--porcelain").strip())
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError):
            # If we can't check, assume there are changes to be safe
            return True

    def worktree_head(self, path: str) -> Optional[str]:
        """Commit checked out in a worktree."""
        try:
            return Repo(path).git.rev_parse("--verify", "HEAD").strip() or None
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError):
            return None
