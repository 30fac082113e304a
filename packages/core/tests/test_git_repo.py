"""Tests for checkout verification, blame and committed-file reads."""

import types

import pytest

import diffscan_core.git.repo as repo_module
from diffscan_core.errors import EXIT_GITREPO_PROBLEM, CheckoutMismatchError, RepositoryMissingError
from diffscan_core.git.blame import blame_for_file, parse_blame
from diffscan_core.git.repo import ensure_checkout, fetch_tree, get_head, read_committed_file
from diffscan_core.models import DiffFilter, Revision
from diffscan_core.run import RunContext

SHA = "1" * 40
OTHER = "2" * 40


@pytest.fixture
def repo(tmp_path):
    """A fake checkout whose HEAD is a branch ref pointing at SHA."""
    git_dir = tmp_path / ".git"
    (git_dir / "refs" / "heads").mkdir(parents=True)
    (git_dir / "HEAD").write_text("ref: refs/heads/feature\n")
    (git_dir / "refs" / "heads" / "feature").write_text(SHA + "\n")
    return tmp_path


class TestGetHead:
    def test_follows_symbolic_ref(self, repo):
        assert get_head(RunContext(), str(repo)) == SHA

    def test_detached_head(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text(OTHER + "\n")
        assert get_head(RunContext(), str(tmp_path)) == OTHER

    def test_falls_back_to_remote_tracking_ref(self, tmp_path):
        git_dir = tmp_path / ".git"
        (git_dir / "refs" / "remotes" / "origin").mkdir(parents=True)
        (git_dir / "HEAD").write_text("ref: refs/heads/main\n")
        (git_dir / "refs" / "remotes" / "origin" / "main").write_text(SHA)
        assert get_head(RunContext(), str(tmp_path)) == SHA

    def test_falls_back_to_git_log(self, tmp_path, mocker):
        (tmp_path / ".git").mkdir()
        run = mocker.patch(
            "diffscan_core.git.repo.run_command", return_value=types.SimpleNamespace(stdout=f"'{SHA}'\n")
        )
        assert get_head(RunContext(), str(tmp_path)) == SHA
        assert run.call_args.kwargs["retries"] == 0


class TestEnsureCheckout:
    def test_passes_when_head_matches(self, repo):
        ensure_checkout(RunContext(), str(repo), SHA)

    def test_mismatch_raises_with_gitrepo_exit_status(self, repo):
        with pytest.raises(CheckoutMismatchError) as exc_info:
            ensure_checkout(RunContext(), str(repo), OTHER)
        assert exc_info.value.exit_status == EXIT_GITREPO_PROBLEM
        assert exc_info.value.actual == SHA

    def test_missing_repository(self, tmp_path):
        with pytest.raises(RepositoryMissingError) as exc_info:
            ensure_checkout(RunContext(), str(tmp_path / "nope"), SHA)
        assert exc_info.value.exit_status == 253

    def test_verified_once_per_run(self, repo, mocker):
        ctx = RunContext()
        get_head_spy = mocker.spy(repo_module, "get_head")
        ensure_checkout(ctx, str(repo), SHA)
        ensure_checkout(ctx, str(repo), SHA)
        assert get_head_spy.call_count == 1


class TestReadCommittedFile:
    def test_reads_raw_bytes(self, repo):
        (repo / "a.php").write_bytes(b"<?php\r\necho '\xff';\n")
        assert read_committed_file(RunContext(), str(repo), SHA, "a.php") == b"<?php\r\necho '\xff';\n"

    def test_missing_file_returns_none(self, repo):
        assert read_committed_file(RunContext(), str(repo), SHA, "missing.php") is None

    def test_read_is_timed(self, repo):
        ctx = RunContext()
        (repo / "a.php").write_text("x")
        read_committed_file(ctx, str(repo), SHA, "a.php")
        assert "git_repo_fetch_file" in ctx.counters.runtimes()

    def test_refuses_wrong_commit(self, repo):
        with pytest.raises(CheckoutMismatchError):
            read_committed_file(RunContext(), str(repo), OTHER, "a.php")


class TestFetchTree:
    @pytest.fixture
    def tree(self, repo):
        for name in ("b.php", "a.txt", "src/c.php", "vendor/lib/d.php", "plugins/akismet/akismet.php"):
            (repo / name).parent.mkdir(parents=True, exist_ok=True)
            (repo / name).write_text("x")
        return repo

    def test_lists_files_sorted_without_git_dir(self, tree):
        assert fetch_tree(RunContext(), str(tree), SHA) == [
            "a.txt",
            "b.php",
            "plugins/akismet/akismet.php",
            "src/c.php",
            "vendor/lib/d.php",
        ]

    def test_applies_extension_and_folder_rules(self, tree):
        diff_filter = DiffFilter.build(file_extensions=["PHP"], skip_folders=["vendor/"])
        assert fetch_tree(RunContext(), str(tree), SHA, diff_filter) == [
            "b.php",
            "plugins/akismet/akismet.php",
            "src/c.php",
        ]

    def test_listing_is_memoized_and_timed(self, tree, mocker):
        walk = mocker.spy(repo_module.os, "walk")
        ctx = RunContext()
        fetch_tree(ctx, str(tree), SHA)
        (tree / "new.php").write_text("x")
        assert "new.php" not in fetch_tree(ctx, str(tree), SHA)
        assert walk.call_count == 1
        assert "git_repo_fetch_tree" in ctx.counters.runtimes()

    def test_refuses_wrong_commit(self, tree):
        with pytest.raises(CheckoutMismatchError):
            fetch_tree(RunContext(), str(tree), OTHER)


PORCELAIN = f"""\
{SHA} 1 1 2
author Jane
summary first
filename a.php
\t<?php
{SHA} 2 2
author Jane
filename a.php
\techo 1;
{OTHER} 5 3 1
author Joe
filename a.php
\t{OTHER} 9 9 looks like a header but is content
"""


class TestBlame:
    def test_parse_line_porcelain(self):
        assert parse_blame(PORCELAIN) == {1: SHA, 2: SHA, 3: OTHER}

    def test_parse_empty(self):
        assert parse_blame("") == {}

    def test_unicode_line_separator_in_content(self):
        porcelain = f"{SHA} 1 1 1\nfilename a.php\n\tx\u2028{OTHER} 7 7\n"
        assert parse_blame(porcelain) == {1: SHA}

    def test_blame_for_file_is_memoized(self, repo, mocker):
        (repo / "a.php").write_text("<?php\n")
        run = mocker.patch(
            "diffscan_core.git.blame.run_command", return_value=types.SimpleNamespace(stdout=PORCELAIN)
        )
        ctx = RunContext()
        revision = Revision(SHA, "owner/repo")
        assert blame_for_file(ctx, str(repo), revision, "a.php")[3] == OTHER
        blame_for_file(ctx, str(repo), revision, "a.php")
        assert run.call_count == 1
        assert run.call_args.args[1][-3:] == [SHA, "--", "a.php"]

    def test_missing_file_is_unavailable(self, repo, mocker):
        run = mocker.patch("diffscan_core.git.blame.run_command")
        assert blame_for_file(RunContext(), str(repo), Revision(SHA, "owner/repo"), "gone.php") is None
        run.assert_not_called()

    def test_failed_blame_is_unavailable(self, repo, mocker):
        (repo / "a.php").write_text("<?php\n")
        mocker.patch("diffscan_core.git.blame.run_command", return_value=None)
        assert blame_for_file(RunContext(), str(repo), Revision(SHA, "owner/repo"), "a.php") is None
