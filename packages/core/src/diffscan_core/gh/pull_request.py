from __future__ import annotations

import logging

from github import Github

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_prs_implicated(repo, commit_sha: str, branches_ignore=(), skip_draft_prs: bool = False) -> list:
    """Return open pull requests whose head is ``commit_sha``, ordered by number.

    Pull requests targeting a branch in ``branches_ignore`` are dropped, as are
    drafts when ``skip_draft_prs`` is set.
    """
    prs = []
    for pr in repo.get_commit(commit_sha).get_pulls():
        if pr.state != "open" or pr.head.sha != commit_sha:
            continue
        if pr.base.ref in branches_ignore:
            logger.info("Ignoring PR #%d: base branch %s is ignored", pr.number, pr.base.ref)
            continue
        if skip_draft_prs and pr.draft:
            logger.info("Ignoring draft PR #%d", pr.number)
            continue
        prs.append(pr)
    return sorted(prs, key=lambda pr: pr.number)


def get_pr_commit_shas(pr) -> frozenset[str]:
    """Return the shas of every commit in the pull request."""
    return frozenset(commit.sha for commit in pr.get_commits())


def has_label(pr, name: str) -> bool:
    return any(label.name == name for label in pr.get_labels())


def already_commented(
    existing_comments,
    file_path: str,
    position: int,
    body: str,
    queued: set[tuple] | None = None,
) -> bool:
    """Check whether an identical comment already exists on the PR at this diff position.

    Checks both GitHub's existing review comments and any comments queued in the
    current run (to catch duplicates across batch boundaries).
    """
    text = body.strip()
    if queued is not None and (file_path, position, text) in queued:
        return True
    for c in existing_comments:
        # position is None for comments outdated by a later push; fall back to
        # original_position in that case.
        comment_position = c.position if c.position is not None else getattr(c, "original_position", None)
        if c.path == file_path and comment_position == position and text in c.body.strip():
            return True
    return False
