"""
Tests for the git layer — command runner and ref store.
"""

import sys

import pytest

from forksync.errors import GitCommandError, PushRejected
from forksync.git.refs import CommitRange, RefStore
from forksync.git.runner import EXIT_NOT_FOUND, EXIT_TIMEOUT, CommandResult, SubprocessRunner

from conftest import run_git


class TestSubprocessRunner:
    """Tests for SubprocessRunner."""

    def test_success(self, tmp_path):
        result = SubprocessRunner().run([sys.executable, "-c", "print('hi')"], cwd=tmp_path)

        assert result.ok
        assert result.stdout.strip() == "hi"

    def test_failure_does_not_raise(self, tmp_path):
        result = SubprocessRunner().run([sys.executable, "-c", "import sys; sys.exit(3)"], cwd=tmp_path)

        assert not result.ok
        assert result.returncode == 3

    def test_missing_executable(self):
        result = SubprocessRunner().run(["forksync-no-such-binary"])

        assert result.returncode == EXIT_NOT_FOUND
        assert "command not found" in result.stderr

    def test_timeout(self):
        result = SubprocessRunner().run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)

        assert result.returncode == EXIT_TIMEOUT

    def test_env_merged(self, tmp_path):
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import os; print(os.environ['FORKSYNC_PROBE'])"],
            env={"FORKSYNC_PROBE": "42"},
        )

        assert result.stdout.strip() == "42"

    def test_output_combines_streams(self):
        result = CommandResult(["x"], 1, stdout="out\n", stderr="err\n")

        assert result.output == "err\nout"


class TestRefStore:
    """Tests for RefStore against a real fork layout."""

    def test_repository_checks(self, fork, tmp_path):
        refs = RefStore(fork.work)

        assert refs.is_repository()
        assert not RefStore(tmp_path).is_repository()
        assert refs.git_dir() == (fork.work / ".git").resolve()

    def test_remotes(self, fork):
        refs = RefStore(fork.work)

        assert sorted(refs.remotes()) == ["origin", "upstream"]
        assert refs.has_remote("upstream")
        assert refs.remote_url("upstream") == str(fork.upstream_bare)
        assert refs.remote_url("nope") is None

    def test_rev_parse_missing(self, fork):
        refs = RefStore(fork.work)

        assert refs.rev_parse("refs/heads/staging") == fork.rev("staging")
        assert refs.rev_parse("refs/heads/does-not-exist") is None

    def test_branch_exists(self, fork):
        refs = RefStore(fork.work)

        assert refs.branch_exists("custom/main")
        assert not refs.branch_exists("custom")

    def test_ancestry_and_counts(self, fork):
        fork.upstream_commits(3)
        refs = RefStore(fork.work)
        refs.fetch("upstream")

        commits = CommitRange("refs/heads/pristine-upstream", "refs/remotes/upstream/main")
        assert refs.count_commits(commits) == 3
        assert refs.is_ancestor("refs/heads/pristine-upstream", "refs/remotes/upstream/main")
        assert not refs.is_ancestor("refs/heads/staging", "refs/remotes/upstream/main")
        assert len(refs.subjects(commits, limit=2)) == 2

    def test_subjects_grep(self, fork):
        fork.upstream_commit({"a.txt": "a\n"}, "chore: tidy")
        fork.upstream_commit({"b.txt": "b\n"}, "Fix: crash on start")
        refs = RefStore(fork.work)
        refs.fetch("upstream")

        commits = CommitRange("refs/heads/pristine-upstream", "refs/remotes/upstream/main")
        assert refs.subjects(commits, grep="feat|fix|breaking") == ["Fix: crash on start"]

    def test_is_ancestor_bad_ref_raises(self, fork):
        with pytest.raises(GitCommandError):
            RefStore(fork.work).is_ancestor("refs/heads/nope", "refs/heads/staging")

    def test_uncommitted_changes_ignore_untracked(self, fork):
        refs = RefStore(fork.work)
        (fork.work / "new.txt").write_text("x\n", encoding="utf-8")

        assert not refs.has_uncommitted_changes()

        (fork.work / "custom.txt").write_text("changed\n", encoding="utf-8")
        assert refs.has_uncommitted_changes()

    def test_reset_branch_not_checked_out(self, fork):
        refs = RefStore(fork.work)
        target = fork.rev("pristine-upstream")

        refs.reset_branch("staging", target)

        assert fork.rev("staging") == target
        assert refs.current_branch() == "main"

    def test_push_rejected(self, fork):
        fork.fork_commit("staging", {"x.txt": "remote\n"}, "Remote change")
        refs = RefStore(fork.work)
        refs.reset_branch("staging", fork.rev("pristine-upstream"))

        with pytest.raises(PushRejected):
            refs.push("origin", "staging")

    def test_push_with_lease(self, fork):
        refs = RefStore(fork.work)
        expected = refs.remote_tip("origin", "staging")
        target = fork.rev("pristine-upstream")
        refs.reset_branch("staging", target)

        refs.push_with_lease("origin", {"staging": expected})

        assert fork.origin_rev("staging") == target

    def test_push_with_stale_lease(self, fork):
        refs = RefStore(fork.work)
        refs.reset_branch("staging", fork.rev("pristine-upstream"))

        with pytest.raises(PushRejected):
            refs.push_with_lease("origin", {"staging": fork.rev("pristine-upstream")})

    def test_tags(self, fork):
        refs = RefStore(fork.work)
        commit = fork.rev("staging")

        refs.create_tag("backup/integration-20260101-000000", commit, "snapshot")
        refs.create_tag("backup/integration-20260102-000000", commit, "snapshot")

        assert refs.tag_exists("backup/integration-20260101-000000")
        tags = refs.list_tags("backup")
        assert {t.name for t in tags} == {
            "backup/integration-20260101-000000",
            "backup/integration-20260102-000000",
        }
        # Annotated tags peel to the commit
        assert all(t.commit == commit for t in tags)
        assert all(t.subject == "snapshot" for t in tags)
        assert refs.tag_created_at("backup/integration-20260101-000000").startswith(tags[0].created_at[:10])
        assert refs.tag_created_at("backup/nope") is None
        assert refs.list_tags("emergency") == []

    def test_create_tag_twice_raises(self, fork):
        refs = RefStore(fork.work)
        refs.create_tag("backup/x", fork.rev("staging"), "one")

        with pytest.raises(GitCommandError):
            refs.create_tag("backup/x", fork.rev("staging"), "two")

    def test_merge_conflict_outcome(self, fork):
        fork.fork_commit("staging", {"app.txt": "alpha\nOURS\ngamma\n"}, "ours", push=False)
        fork.fork_commit("pristine-upstream", {"app.txt": "alpha\nTHEIRS\ngamma\n"}, "theirs", push=False)
        refs = RefStore(fork.work)
        refs.checkout("staging")

        outcome = refs.merge_no_ff("refs/heads/pristine-upstream", "merge")

        assert not outcome.merged
        assert outcome.conflicts == ["app.txt"]
        assert refs.merge_in_progress()
        assert refs.conflict_stages("app.txt") == [1, 2, 3]
        assert refs.merge_abort()
        assert not refs.merge_in_progress()
        assert run_git(fork.work, "status", "--short", "--untracked-files=no") == ""
