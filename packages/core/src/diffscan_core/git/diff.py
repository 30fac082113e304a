"""Changed files and changed lines between two revisions, from local git."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Final

from diffscan_core.git.repo import ensure_checkout
from diffscan_core.models import DiffFilter, DiffRecord, DiffStatus, Revision
from diffscan_core.utils.process import run_command

if TYPE_CHECKING:
    from diffscan_core.run import RunContext

logger = logging.getLogger(__name__)

_HUNK_HEADER: Final[re.Pattern[str]] = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@")
_DIFF_GIT: Final[re.Pattern[str]] = re.compile(r"^diff --git (?P<a>\"?a/.*?\"?) (?P<b>\"?b/.*\"?)$")
_DEV_NULL: Final[str] = "/dev/null"
# Escapes git uses inside double-quoted paths; octal escapes are raw bytes.
_C_ESCAPE: Final[re.Pattern[bytes]] = re.compile(rb"\\([0-7]{3}|.)", re.DOTALL)
_C_ESCAPE_CHARS: Final[dict[bytes, bytes]] = {
    b"a": b"\a",
    b"b": b"\b",
    b"t": b"\t",
    b"n": b"\n",
    b"v": b"\v",
    b"f": b"\f",
    b"r": b"\r",
    b'"': b'"',
    b"\\": b"\\",
}


def _lines(text: str) -> list[str]:
    """Split git output on newlines only.

    ``str.splitlines`` also breaks on form feeds, U+2028 and friends, which
    may legitimately appear inside a line of source.
    """
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def patch_changed_lines(patch: str | None) -> tuple[int | None, ...]:
    """Return one entry per diff row of ``patch``, in diff order.

    The first hunk header is not a row: position 1 is the line right below it.
    Later hunk headers, removed lines and ``\\ No newline`` markers occupy a
    position but have no head-side line, so they are ``None``.
    """
    rows: list[int | None] = []
    file_line: int | None = None
    seen_hunk = False

    for line in _lines(patch or ""):
        if line.startswith("@@"):
            match = _HUNK_HEADER.match(line)
            file_line = int(match.group(1)) if match else None
            if seen_hunk:
                rows.append(None)
            seen_hunk = True
            continue
        if not seen_hunk:
            continue
        if line.startswith("-") or line.startswith("\\"):
            rows.append(None)
        elif file_line is None:
            rows.append(None)
        else:
            rows.append(file_line)
            file_line += 1

    return tuple(rows)


def _c_unescape(match: re.Match[bytes]) -> bytes:
    token = match.group(1)
    if len(token) == 3:
        return bytes([int(token, 8) & 0xFF])
    return _C_ESCAPE_CHARS.get(token, token)


def _unquote(path: str) -> str:
    """Undo the C-style quoting git applies to unusual paths."""
    if not (len(path) >= 2 and path[0] == path[-1] == '"'):
        return path
    raw = _C_ESCAPE.sub(_c_unescape, path[1:-1].encode("utf-8"))
    return raw.decode("utf-8", errors="replace")


def _strip_prefix(path: str) -> str:
    path = _unquote(path)
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _parse_section(lines: list[str]) -> DiffRecord | None:
    header = lines[0]
    old_path = new_path = None
    match = _DIFF_GIT.match(header)
    if match:
        old_path = _strip_prefix(match.group("a"))
        new_path = _strip_prefix(match.group("b"))

    status = DiffStatus.MODIFIED
    mode_changed = False
    renamed_from = None
    patch_start = None

    for i, line in enumerate(lines[1:], 1):
        if line.startswith("@@"):
            patch_start = i
            break
        if line.startswith("new file mode"):
            status = DiffStatus.ADDED
        elif line.startswith("deleted file mode"):
            status = DiffStatus.REMOVED
        elif line.startswith("old mode"):
            mode_changed = True
        elif line.startswith("rename from "):
            renamed_from = _unquote(line[len("rename from ") :])
            old_path = renamed_from
        elif line.startswith("rename to "):
            new_path = _unquote(line[len("rename to ") :])
        elif line.startswith("--- "):
            path = line[4:].rstrip("\t")
            if path != _DEV_NULL:
                old_path = _strip_prefix(path)
        elif line.startswith("+++ "):
            path = line[4:].rstrip("\t")
            if path != _DEV_NULL:
                new_path = _strip_prefix(path)

    filename = old_path if status is DiffStatus.REMOVED else new_path
    if not filename:
        logger.warning("Could not determine file name from diff header %r", header)
        return None

    patch = "\n".join(lines[patch_start:]) if patch_start is not None else None
    if renamed_from is not None:
        status = DiffStatus.RENAMED
    elif mode_changed and patch is None and status is DiffStatus.MODIFIED:
        status = DiffStatus.PERMISSION_CHANGED

    return DiffRecord(
        filename=filename,
        status=status,
        # Removed files have nothing on the head side to anchor to.
        changed_lines=() if status is DiffStatus.REMOVED else patch_changed_lines(patch),
        patch=patch,
        previous_filename=renamed_from,
    )


def parse_diff(diff_text: str) -> list[DiffRecord]:
    """Split ``git diff`` output into one DiffRecord per file."""
    sections: list[list[str]] = []
    for line in _lines(diff_text):
        if line.startswith("diff --git "):
            sections.append([line])
        elif sections:
            sections[-1].append(line)

    records = []
    for section in sections:
        record = _parse_section(section)
        if record is not None:
            records.append(record)
    return records


def is_included(record: DiffRecord, diff_filter: DiffFilter) -> bool:
    if not diff_filter.admits_path(record.filename):
        return False
    if record.status is DiffStatus.REMOVED:
        return diff_filter.include_removed
    if record.status is DiffStatus.PERMISSION_CHANGED:
        return diff_filter.include_permission_changes
    if record.status is DiffStatus.RENAMED and not record.patch:
        return diff_filter.include_renamed
    return True


def _compute_diff(
    ctx: RunContext, repo_path: str, base: Revision, head: Revision, diff_filter: DiffFilter
) -> dict[str, DiffRecord] | None:
    result = run_command(
        ctx,
        [
            "git",
            "-C",
            repo_path,
            "-c",
            "core.quotepath=off",
            "diff",
            "--no-color",
            "--no-ext-diff",
            "-M",
            f"{base.sha}...{head.sha}",
        ],
        runtime_bucket="git_diff",
    )
    if result is None:
        return None

    files: dict[str, DiffRecord] = {}
    for record in parse_diff(result.stdout):
        if is_included(record, diff_filter):
            files[record.filename] = record
    return files


def fetch_diff(
    ctx: RunContext,
    repo_path: str,
    base: Revision,
    head: Revision,
    diff_filter: DiffFilter,
) -> dict[str, DiffRecord] | None:
    """Return the files changed from ``base`` to ``head`` that pass ``diff_filter``.

    Keyed by head-side path. Returns None when git cannot compare the two
    revisions; callers must treat that as "skip", never as "nothing changed".
    """
    ensure_checkout(ctx, repo_path, head.sha)

    args = (repo_path, head.repo, base.sha, head.sha, diff_filter)
    files = ctx.cache.get_or_compute(
        "fetch_diff", args, lambda: _compute_diff(ctx, repo_path, base, head, diff_filter)
    )

    if files is None:
        logger.warning("Could not compute diff %s...%s in %s", base.sha[:7], head.sha[:7], repo_path)
        ctx.alerts.add(f"Unable to compute diff {base.sha[:7]}...{head.sha[:7]} for {head.repo}")
    else:
        logger.debug("Diff %s...%s: %d file(s)", base.sha[:7], head.sha[:7], len(files))
    return files
