"""Static cleanup rules and command-line settings."""

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Optional

# Long-lived branches that are never offered for cleanup
PROTECTED_BRANCHES = frozenset({"main", "master", "develop", "staging", "test"})

PROTECTED_PATTERNS = ("hotfix/*", "release/*", "hotfix-*", "release-*")

# Checked in order when no trunk is given
TRUNK_CANDIDATES = ("master", "main")

DEFAULT_REMOTE = "origin"

# Number of tip commits whose authors the synced-mode author filter inspects
RECENT_AUTHOR_DEPTH = 3


@dataclass
class Settings:
    """Settings shared by every menu, validated on creation."""

    trunk: Optional[str] = None
    remote: str = DEFAULT_REMOTE
    protected_branches: frozenset[str] = PROTECTED_BRANCHES
    protected_patterns: tuple[str, ...] = PROTECTED_PATTERNS
    extra_patterns: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.remote = self.remote.strip()
        if not self.remote:
            raise ValueError("remote name must not be empty")
        if self.trunk is not None:
            self.trunk = self.trunk.strip() or None
        self.extra_patterns = [p.strip() for p in self.extra_patterns if p.strip()]

    @classmethod
    def from_cli(cls, trunk: Optional[str] = None, remote: str = DEFAULT_REMOTE, protect: str = "") -> "Settings":
        """Build settings from the raw option values."""
        return cls(trunk=trunk, remote=remote, extra_patterns=protect.split(","))

    def is_protected(self, branch_name: str) -> bool:
        """Check the name against the protected names and patterns."""
        if branch_name in self.protected_branches:
            return True
        patterns = (*self.protected_patterns, *self.extra_patterns)
        return any(fnmatch(branch_name, pattern) for pattern in patterns)
