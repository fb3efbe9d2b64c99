"""Interactive git branch cleanup and worktree management.

Features:
- Delete your branches that are merged to trunk, locally and on the remote
- Delete local branches that are identical to their remote branch
- Delete your branches that were never pushed
- Delete your pushed branches that never reached trunk
- Every deletion re-checks the branch and asks for confirmation first
- Worktree menu: add, list, remove, prune, lock, unlock, move, repair
"""

__version__ = "0.1.0"
