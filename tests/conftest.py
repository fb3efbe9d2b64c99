"""Test configuration and fixtures."""

import calendar
import io
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, Iterable, Optional, Union

import pytest
from git import Actor, Repo
from rich.console import Console

from shears.cleanup import CleanupContext
from shears.config import Settings
from shears.git import GitRepo
from shears.terminal import KeyKind, KeyPress
from shears.worktrees import WorktreeContext

USER = Actor("Test User", "test@example.com")
OTHER = Actor("Other Dev", "other@example.com")

_NAMED_KEYS = {
    "up": KeyKind.UP,
    "down": KeyKind.DOWN,
    "left": KeyKind.LEFT,
    "right": KeyKind.RIGHT,
    "enter": KeyKind.ENTER,
    "esc": KeyKind.ESCAPE,
}

Step = Union[str, KeyPress, Callable[[], None]]


def stamp(month: int, day: int) -> str:
    """A fixed 2024 date in git's raw `<epoch> <tz>` form."""
    return f"{calendar.timegm(datetime(2024, month, day, 12, 0).timetuple())} +0000"


def commit_file(repo: Repo, name: str, content: str, author: Actor = USER, date: Optional[str] = None) -> None:
    """Write a file and commit it on the checked out branch."""
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    dates = {"author_date": date, "commit_date": date} if date else {}
    repo.index.commit(f"Add {name}", author=author, committer=author, **dates)


class ScriptedTerminal:
    """Terminal that replays keys and answers.

    Keys are names ("up", "enter", "esc", ...), single characters, or callables that run
    when reached, which lets a test change the repository mid-session. Once the script
    runs out every key is Escape and every answer is a cancel.
    """

    def __init__(self, keys: Iterable[Step] = (), answers: Iterable[Optional[str]] = ()) -> None:
        self.keys = deque(keys)
        self.answers = deque(answers)
        self.prompts: list[str] = []

    def read_key(self) -> KeyPress:
        while self.keys:
            step = self.keys.popleft()
            if callable(step):
                step()
                continue
            if isinstance(step, KeyPress):
                return step
            if step in _NAMED_KEYS:
                return KeyPress(_NAMED_KEYS[step])
            return KeyPress(KeyKind.CHAR, step)
        return KeyPress(KeyKind.ESCAPE)

    def ask(self, prompt: str, required: bool = False) -> Optional[str]:
        self.prompts.append(prompt)
        while self.answers:
            answer = self.answers.popleft()
            if answer is None:
                return None
            if answer.strip() or not required:
                return answer.strip()
        return None


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a test environment with local and remote repositories.

    Branches, oldest first:
        feature/merged-old     you, pushed, merged
        feature/theirs         someone else, pushed, merged
        feature/merged-new     you, pushed, merged
        release/1.0            you, pushed, merged (protected)
        feature/synced         you, pushed, not merged
        feature/ahead          you, pushed, then one more local commit
        feature/shared-synced  someone else (three commits), pushed, not merged
        feature/local          you, never pushed

    Returns:
        Tuple of (local_repo_path, remote_repo_path)
    """
    remote_path = tmp_path / "remote"
    local_path = tmp_path / "local"
    remote_path.mkdir()
    local_path.mkdir()

    Repo.init(remote_path, bare=True, initial_branch="main")
    local_repo = Repo.init(local_path, initial_branch="main")

    local_repo.config_writer().set_value("user", "name", USER.name).release()
    local_repo.config_writer().set_value("user", "email", USER.email).release()

    commit_file(local_repo, "README.md", "# Test Repository", date=stamp(1, 1))
    local_repo.create_remote("origin", url=str(remote_path))
    local_repo.git.push("origin", "main")

    def create_branch(name: str, commits: list[tuple[Actor, str]], push: bool = True, merge: bool = False) -> None:
        local_repo.git.checkout("-b", name, "main")
        for index, (author, date) in enumerate(commits):
            commit_file(local_repo, f"{name}-{index}.txt", f"{name} {index}", author=author, date=date)
        if push:
            local_repo.git.push("origin", name)
        local_repo.git.checkout("main")
        if merge:
            local_repo.git.merge("--no-ff", name, "-m", f"Merge branch '{name}'")

    create_branch("feature/merged-old", [(USER, stamp(2, 1))], merge=True)
    create_branch("feature/theirs", [(OTHER, stamp(2, 15))], merge=True)
    create_branch("feature/merged-new", [(USER, stamp(3, 1))], merge=True)
    create_branch("release/1.0", [(USER, stamp(3, 10))], merge=True)
    local_repo.git.push("origin", "main")

    create_branch("feature/synced", [(USER, stamp(4, 1))])
    create_branch("feature/ahead", [(USER, stamp(4, 5))])
    local_repo.git.checkout("feature/ahead")
    commit_file(local_repo, "ahead-extra.txt", "not pushed", date=stamp(4, 10))
    local_repo.git.checkout("main")
    create_branch("feature/shared-synced", [(OTHER, stamp(4, 12)), (OTHER, stamp(4, 13)), (OTHER, stamp(4, 15))])
    create_branch("feature/local", [(USER, stamp(5, 1))], push=False)

    yield local_path, remote_path

    # Cleanup is handled by pytest's tmp_path fixture


@pytest.fixture
def repo(test_env: tuple[Path, Path]) -> GitRepo:
    local_path, _ = test_env
    return GitRepo(local_path)


@pytest.fixture
def settings() -> Settings:
    return Settings(trunk="main")


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=200, color_system=None)


def output(console: Console) -> str:
    return console.file.getvalue()


def branch_names(repo: GitRepo) -> set[str]:
    return {head.name for head in repo.repo.heads}


def cleanup_context(repo: GitRepo, terminal: ScriptedTerminal, console: Console, settings: Settings) -> CleanupContext:
    return CleanupContext(repo=repo, terminal=terminal, console=console, settings=settings, user=USER.name, trunk="main")


def worktree_context(repo: GitRepo, terminal: ScriptedTerminal, console: Console, settings: Settings) -> WorktreeContext:
    return WorktreeContext(repo=repo, terminal=terminal, console=console, settings=settings)
