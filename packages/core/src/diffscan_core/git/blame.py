"""Per-line blame for a file at the head revision."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Final

from diffscan_core.git.repo import ensure_checkout
from diffscan_core.models import Revision
from diffscan_core.utils.process import run_command

if TYPE_CHECKING:
    from diffscan_core.run import RunContext

logger = logging.getLogger(__name__)

# --line-porcelain repeats the "<sha> <orig-line> <final-line>[ <count>]"
# header before every line of the file.
_PORCELAIN_HEADER: Final[re.Pattern[str]] = re.compile(r"^([0-9a-f]{40,64}) \d+ (\d+)(?: \d+)?$")


def parse_blame(porcelain: str) -> dict[int, str]:
    """Map each 1-based line number to the commit that last changed it."""
    blame: dict[int, str] = {}
    for line in porcelain.split("\n"):
        if line.startswith("\t"):
            continue
        match = _PORCELAIN_HEADER.match(line)
        if match:
            blame[int(match.group(2))] = match.group(1)
    return blame


def _compute_blame(ctx: RunContext, repo_path: str, revision: Revision, file_name: str) -> dict[int, str] | None:
    if not Path(repo_path, file_name).is_file():
        logger.warning("Cannot blame %s: file does not exist at %s", file_name, revision.sha[:7])
        return None

    result = run_command(
        ctx,
        ["git", "-C", repo_path, "blame", "--line-porcelain", revision.sha, "--", file_name],
        runtime_bucket="git_blame",
    )
    if result is None:
        return None
    return parse_blame(result.stdout)


def blame_for_file(ctx: RunContext, repo_path: str, revision: Revision, file_name: str) -> dict[int, str] | None:
    """Return the blame map for ``file_name`` at ``revision``, or None if unavailable.

    Blame is always computed on the head side: the checkout must be at
    ``revision`` (enforced by ensure_checkout).
    """
    ensure_checkout(ctx, repo_path, revision.sha)
    return ctx.cache.get_or_compute(
        "blame_for_file",
        (repo_path, revision.sha, file_name),
        lambda: _compute_blame(ctx, repo_path, revision, file_name),
    )
