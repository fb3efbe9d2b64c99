"""Tests for branch classification and deletion."""

from datetime import datetime, timezone

import pytest
from git import Repo

from shears.branches import (
    BranchRecord,
    CleanupMode,
    Scope,
    classify,
    delete_branch,
    evaluate,
    recheck,
    snapshot_branch,
)
from shears.config import Settings
from shears.git import GitRepo

from conftest import OTHER, USER, branch_names, commit_file, stamp


def names(records: list[BranchRecord]) -> list[str]:
    return [record.name for record in records]


def make_record(**overrides) -> BranchRecord:
    values = dict(
        name="feature/x",
        commit="a" * 40,
        author=USER.name,
        committed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        message="msg",
        remote_commit=None,
        merged=False,
    )
    values.update(overrides)
    return BranchRecord(**values)


def test_merged_lists_your_merged_branches_oldest_first(repo: GitRepo, settings: Settings) -> None:
    """Test that merged mode offers only branches you authored that trunk contains."""
    records = classify(repo, CleanupMode.MERGED, USER.name, settings, "main")
    assert names(records) == ["feature/merged-old", "feature/merged-new"]
    assert all(record.merged for record in records)


def test_synced_lists_branches_matching_remote(repo: GitRepo, settings: Settings) -> None:
    """Test that synced mode ignores authorship unless the filter is on."""
    records = classify(repo, CleanupMode.SYNCED, USER.name, settings, "main")
    assert names(records) == [
        "feature/merged-old",
        "feature/theirs",
        "feature/merged-new",
        "feature/synced",
        "feature/shared-synced",
    ]


def test_synced_not_author_hides_branches_you_recently_touched(repo: GitRepo, settings: Settings) -> None:
    records = classify(repo, CleanupMode.SYNCED, USER.name, settings, "main", not_author=True)
    assert names(records) == ["feature/shared-synced"]
    assert records[0].recent_authors == (OTHER.name,)


def test_local_lists_unpushed_branches(repo: GitRepo, settings: Settings) -> None:
    records = classify(repo, CleanupMode.LOCAL, USER.name, settings, "main")
    assert names(records) == ["feature/local"]
    assert records[0].remote_commit is None


def test_unmerged_lists_pushed_branches_missing_from_trunk(repo: GitRepo, settings: Settings) -> None:
    records = classify(repo, CleanupMode.UNMERGED, USER.name, settings, "main")
    assert names(records) == ["feature/synced", "feature/ahead"]


@pytest.mark.parametrize("mode", list(CleanupMode))
def test_trunk_current_and_protected_branches_never_listed(repo: GitRepo, mode: CleanupMode) -> None:
    """Test exclusions that apply to every mode."""
    repo.repo.git.checkout("feature/synced")
    settings = Settings(trunk="main", extra_patterns=["feature/local"])
    listed = names(classify(repo, mode, USER.name, settings, "main"))
    assert "main" not in listed
    assert "release/1.0" not in listed
    assert "feature/synced" not in listed
    assert "feature/local" not in listed


def test_records_are_sorted_by_commit_date(repo: GitRepo, settings: Settings) -> None:
    records = classify(repo, CleanupMode.SYNCED, USER.name, settings, "main")
    dates = [record.committed_at for record in records]
    assert dates == sorted(dates)


def test_unknown_refs_are_not_errors(repo: GitRepo) -> None:
    """Test that queries on missing branches answer 'no' instead of raising."""
    assert repo.is_ancestor("refs/heads/does-not-exist", "main") is False
    assert repo.remote_tip("origin", "does-not-exist") is None
    assert repo.commit_info("refs/heads/does-not-exist") is None
    assert snapshot_branch(repo, "does-not-exist", "main", "origin") is None


def test_evaluate_reasons() -> None:
    """Test the verdicts of each mode on hand-built records."""
    theirs = make_record(author=OTHER.name, merged=True)
    assert evaluate(CleanupMode.MERGED, theirs, USER.name) == (False, f"last commit authored by {OTHER.name}")

    diverged = make_record(remote_commit="b" * 40)
    assert evaluate(CleanupMode.SYNCED, diverged, USER.name) == (False, "local and remote differ")
    assert evaluate(CleanupMode.UNMERGED, diverged, USER.name).included

    synced = make_record(remote_commit="a" * 40, recent_authors=(USER.name,))
    assert evaluate(CleanupMode.SYNCED, synced, USER.name).included
    assert evaluate(CleanupMode.SYNCED, synced, USER.name, not_author=True) == (False, "you authored recent commits")
    assert evaluate(CleanupMode.LOCAL, synced, USER.name) == (False, "has a remote branch")


def test_mode_properties() -> None:
    assert CleanupMode.MERGED.scope is Scope.LOCAL_AND_REMOTE
    assert CleanupMode.UNMERGED.scope is Scope.LOCAL_AND_REMOTE
    assert CleanupMode.SYNCED.scope is Scope.LOCAL
    assert CleanupMode.LOCAL.scope is Scope.LOCAL
    assert [mode for mode in CleanupMode if mode.force_delete] == [CleanupMode.UNMERGED]
    assert [mode for mode in CleanupMode if mode.allows_delete_all] == [CleanupMode.SYNCED]
    assert CleanupMode("merged") is CleanupMode.MERGED


def test_synced_membership_follows_both_refs(repo: GitRepo, settings: Settings) -> None:
    """Test that moving either the local or the remote ref flips synced membership."""
    local_repo: Repo = repo.repo
    local_repo.git.checkout("feature/synced")
    commit_file(local_repo, "more.txt", "more", date=stamp(6, 1))
    local_repo.git.checkout("main")
    assert "feature/synced" not in names(classify(repo, CleanupMode.SYNCED, USER.name, settings, "main"))

    local_repo.git.push("origin", "feature/synced")
    assert "feature/synced" in names(classify(repo, CleanupMode.SYNCED, USER.name, settings, "main"))


def test_recheck_rejects_branch_that_moved(repo: GitRepo, settings: Settings) -> None:
    """Test that a branch advanced after listing no longer qualifies as merged."""
    record = classify(repo, CleanupMode.MERGED, USER.name, settings, "main")[0]
    local_repo: Repo = repo.repo
    local_repo.git.checkout(record.name)
    commit_file(local_repo, "late.txt", "late", date=stamp(6, 1))
    local_repo.git.checkout("main")

    verdict, fresh = recheck(repo, record, CleanupMode.MERGED, USER.name, settings, "main")
    assert not verdict.included
    assert verdict.reason == "not merged to trunk"
    assert fresh is not None and fresh.commit != record.commit


def test_recheck_reports_deleted_branch(repo: GitRepo, settings: Settings) -> None:
    record = classify(repo, CleanupMode.LOCAL, USER.name, settings, "main")[0]
    repo.repo.git.branch("-D", record.name)
    verdict, fresh = recheck(repo, record, CleanupMode.LOCAL, USER.name, settings, "main")
    assert verdict == (False, "branch no longer exists")
    assert fresh is None


def test_recheck_finds_merge_commit(repo: GitRepo, settings: Settings) -> None:
    record = classify(repo, CleanupMode.MERGED, USER.name, settings, "main")[0]
    verdict, fresh = recheck(repo, record, CleanupMode.MERGED, USER.name, settings, "main")
    assert verdict.included
    assert fresh is not None
    assert "Merge branch 'feature/merged-old'" in fresh.merge_commit


def test_merge_commit_missing_for_fast_forward(repo: GitRepo) -> None:
    """Test that a branch with no merge of its own has no merge commit."""
    repo.repo.create_head("feature/fast", "main")
    assert repo.find_merge_commit("feature/fast", "main") is None


def test_merge_commit_found_by_ancestry(repo: GitRepo) -> None:
    """Test the fallback scan when the merge message does not name the branch."""
    local_repo: Repo = repo.repo
    local_repo.git.checkout("-b", "topic/renamed", "main")
    commit_file(local_repo, "renamed.txt", "renamed", date=stamp(6, 1))
    local_repo.git.checkout("main")
    local_repo.git.merge("--no-ff", "topic/renamed", "-m", "Integrate work")
    assert repo.find_merge_commit("topic/renamed", "main").endswith("Integrate work")


def test_delete_merged_branch_locally_and_remotely(repo: GitRepo) -> None:
    record = snapshot_branch(repo, "feature/merged-old", "main", "origin")
    outcome = delete_branch(repo, record, CleanupMode.MERGED, "origin")
    assert outcome.ok
    assert not outcome.forced
    assert outcome.remote_deleted
    assert "feature/merged-old" not in branch_names(repo)
    assert repo.ls_remote_tip("origin", "feature/merged-old") is None


def test_delete_tolerates_missing_remote_branch(repo: GitRepo) -> None:
    """Test that a remote branch deleted elsewhere only produces a warning."""
    record = snapshot_branch(repo, "feature/merged-new", "main", "origin")
    Repo(repo.root).git.push("origin", "--delete", "feature/merged-new")

    outcome = delete_branch(repo, record, CleanupMode.MERGED, "origin")
    assert outcome.ok
    assert outcome.remote_attempted
    assert not outcome.remote_deleted
    assert outcome.remote_error
    assert "feature/merged-new" not in branch_names(repo)


def test_delete_local_escalates_to_force(repo: GitRepo) -> None:
    """Test that an unpushed branch is force-deleted once the safe delete is refused."""
    record = snapshot_branch(repo, "feature/local", "main", "origin")
    outcome = delete_branch(repo, record, CleanupMode.LOCAL, "origin")
    assert outcome.ok
    assert outcome.forced
    assert not outcome.remote_attempted
    assert "feature/local" not in branch_names(repo)


def test_delete_synced_preserves_remote(repo: GitRepo) -> None:
    record = snapshot_branch(repo, "feature/synced", "main", "origin")
    outcome = delete_branch(repo, record, CleanupMode.SYNCED, "origin")
    assert outcome.ok
    assert not outcome.remote_attempted
    assert repo.ls_remote_tip("origin", "feature/synced") == record.commit


def test_delete_unmerged_forces_directly(repo: GitRepo) -> None:
    record = snapshot_branch(repo, "feature/ahead", "main", "origin")
    outcome = delete_branch(repo, record, CleanupMode.UNMERGED, "origin")
    assert outcome.ok
    assert outcome.forced
    assert outcome.remote_deleted
    assert repo.ls_remote_tip("origin", "feature/ahead") is None


def test_delete_checked_out_branch_fails(repo: GitRepo) -> None:
    """Test that git's refusal is reported instead of raised."""
    record = snapshot_branch(repo, "main", "main", "origin")
    outcome = delete_branch(repo, record, CleanupMode.MERGED, "origin")
    assert not outcome.ok
    assert outcome.local_error
    assert not outcome.remote_attempted
    assert "main" in branch_names(repo)
