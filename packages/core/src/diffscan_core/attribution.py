"""Decide which scanner findings belong to a pull request.

A finding is reported only when it passes two gates:

1. its line is part of the diff: inline comments can only anchor there, and a
   finding on an untouched line is pre-existing by definition;
2. the commit that last changed that line is one of the pull request's own
   commits, since a diff row can still carry code written before the PR's base
   (context lines, lines touched by a rebase artefact).

Only the anchor line reported by the scanner is checked; findings spanning
several lines are treated as belonging to their first line.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Mapping, Sequence
from typing import TypeVar

from diffscan_core.models import AttributedIssue, RawIssue

logger = logging.getLogger(__name__)

_T = TypeVar("_T", RawIssue, AttributedIssue)


def line_positions(changed_lines: Sequence[int | None]) -> dict[int, int]:
    """Map head-side line numbers to their 1-based diff position."""
    positions: dict[int, int] = {}
    for position, line in enumerate(changed_lines, 1):
        if line is not None and line not in positions:
            positions[line] = position
    return positions


def attribute_issues(
    file_name: str,
    issues: Iterable[RawIssue],
    changed_lines: Sequence[int | None] | None,
    blame: Mapping[int, str] | None,
    pr_commits: Collection[str],
) -> list[AttributedIssue] | None:
    """Return the findings in ``issues`` introduced by the pull request.

    Input order is preserved. Returns None when the changed lines or the blame
    map are unavailable; the caller records the file as skipped.
    """
    if changed_lines is None or blame is None:
        return None

    positions = line_positions(changed_lines)
    attributed: list[AttributedIssue] = []
    outside_diff = outside_pr = 0

    for issue in issues:
        position = positions.get(issue.line)
        if position is None:
            outside_diff += 1
            continue
        if blame.get(issue.line) not in pr_commits:
            outside_pr += 1
            continue
        attributed.append(AttributedIssue(file_name=file_name, position=position, issue=issue))

    if outside_diff or outside_pr:
        logger.debug(
            "%s: dropped %d finding(s) outside the diff and %d from commits outside the PR",
            file_name,
            outside_diff,
            outside_pr,
        )
    return attributed


def collapse_duplicates(issues: Iterable[_T]) -> list[_T]:
    """Drop repeated findings, keeping the first of each in original order."""
    seen: set[tuple] = set()
    unique: list[_T] = []
    for issue in issues:
        key = issue.dedupe_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique
