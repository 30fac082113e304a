"""Local checkout checks and file access.

Every diff, blame and file read assumes the working copy is checked out at the
commit being scanned. ``ensure_checkout`` enforces that before any of them run.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from diffscan_core.errors import CheckoutMismatchError, RepositoryMissingError
from diffscan_core.models import DiffFilter
from diffscan_core.utils.cache import ABSENT
from diffscan_core.utils.process import run_command

if TYPE_CHECKING:
    from diffscan_core.run import RunContext

logger = logging.getLogger(__name__)


def _read(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


def _head_from_git_dir(repo_path: str) -> str | None:
    """Resolve HEAD by reading .git directly, without running git."""
    git_dir = Path(repo_path) / ".git"
    head = _read(git_dir / "HEAD")
    if head is None or not head.startswith("ref: "):
        return head

    ref = head[len("ref: ") :].strip()
    sha = _read(git_dir / ref)
    if sha is None:
        # Shallow CI clones often only carry the remote-tracking ref.
        sha = _read(git_dir / "refs" / "remotes" / "origin" / ref.rsplit("/", 1)[-1])
    return sha


def get_head(ctx: RunContext, repo_path: str) -> str | None:
    """Return the commit HEAD points at, or None if it cannot be determined."""
    head = _head_from_git_dir(repo_path)
    if head is None:
        result = run_command(
            ctx,
            ["git", "-C", repo_path, "log", "-n", "1", "--pretty=format:%H"],
            runtime_bucket="git_cli",
            retries=0,
        )
        head = result.stdout if result is not None else None
    if head is not None:
        head = head.strip().strip("'\"")
    return head or None


def ensure_checkout(ctx: RunContext, repo_path: str, commit_sha: str) -> None:
    """Raise unless ``repo_path`` is a git checkout at ``commit_sha``.

    Verified once per (repo, commit) per run.
    """
    if ctx.cache.get("ensure_checkout", repo_path, commit_sha) is True:
        return

    if not Path(repo_path, ".git").exists():
        raise RepositoryMissingError(repo_path)

    head = get_head(ctx, repo_path)
    if head != commit_sha:
        logger.error(
            "Local git repository %s is not in sync with commit %s (HEAD is %s)",
            repo_path,
            commit_sha,
            head,
        )
        raise CheckoutMismatchError(repo_path, commit_sha, head)

    ctx.cache.put("ensure_checkout", repo_path, commit_sha, value=True)


def read_committed_file(ctx: RunContext, repo_path: str, commit_sha: str, file_name: str) -> bytes | None:
    """Return the raw bytes of ``file_name`` as of ``commit_sha``, or None if missing."""
    ensure_checkout(ctx, repo_path, commit_sha)
    logger.debug("Reading %s from local checkout at %s", file_name, commit_sha[:7])
    with ctx.counters.measure("git_repo_fetch_file"):
        try:
            return Path(repo_path, file_name).read_bytes()
        except OSError as e:
            logger.warning("Could not read %s: %s", file_name, e)
            return None


def _list_files(repo_path: str, diff_filter: DiffFilter) -> list[str]:
    files = []
    for root, dirs, names in os.walk(repo_path):
        dirs[:] = [d for d in dirs if d != ".git"]
        rel_root = os.path.relpath(root, repo_path)
        for name in names:
            rel = name if rel_root == "." else Path(rel_root, name).as_posix()
            if diff_filter.admits_path(rel):
                files.append(rel)
    return sorted(files)


def fetch_tree(ctx: RunContext, repo_path: str, commit_sha: str, diff_filter: DiffFilter | None = None) -> list[str]:
    """List every file in the checkout at ``commit_sha`` that ``diff_filter`` admits.

    Paths are relative to ``repo_path``, use ``/`` separators and come back
    sorted. Listings are memoized per (repo, commit, filter).
    """
    diff_filter = diff_filter or DiffFilter()
    cached = ctx.cache.get("fetch_tree", repo_path, commit_sha, diff_filter)
    if cached is not ABSENT:
        return cached

    ensure_checkout(ctx, repo_path, commit_sha)
    with ctx.counters.measure("git_repo_fetch_tree"):
        files = _list_files(repo_path, diff_filter)
    logger.debug("Tree of %s at %s: %d file(s)", repo_path, commit_sha[:7], len(files))
    ctx.cache.put("fetch_tree", repo_path, commit_sha, diff_filter, value=files)
    return files
