"""Data models shared by the diff, blame, scanning and attribution stages.

Everything here is immutable: scanner findings and diff records are produced
once per run and only ever read afterwards, so frozen dataclasses let them be
used as dict keys and set members (duplicate collapsing relies on that).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DiffStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"
    PERMISSION_CHANGED = "permission-changed"


@dataclass(frozen=True)
class Revision:
    """A commit in a repository. ``repo`` is the ``owner/name`` slug."""

    sha: str
    repo: str


def file_extension(file_name: str) -> str:
    base = file_name.rsplit("/", 1)[-1]
    return base.rsplit(".", 1)[-1].lower() if "." in base else ""


@dataclass(frozen=True)
class DiffFilter:
    """Which files a diff should report.

    Extensions are compared case-insensitively and without the leading dot.
    An empty ``file_extensions`` admits every file.
    """

    file_extensions: frozenset[str] = frozenset()
    skip_folders: frozenset[str] = frozenset()
    include_renamed: bool = False
    include_removed: bool = False
    include_permission_changes: bool = False

    @classmethod
    def build(cls, file_extensions=(), skip_folders=(), **flags) -> DiffFilter:
        return cls(
            file_extensions=frozenset(e.lower().lstrip(".") for e in file_extensions),
            skip_folders=frozenset(f.strip("/") for f in skip_folders if f.strip("/")),
            **flags,
        )

    def admits_path(self, file_name: str) -> bool:
        """Apply the extension and folder rules, ignoring change status."""
        if self.file_extensions and file_extension(file_name) not in self.file_extensions:
            return False
        return not any(file_name.startswith(folder + "/") for folder in self.skip_folders)


@dataclass(frozen=True)
class DiffRecord:
    """One file's change between a base and a head revision.

    ``changed_lines`` holds one entry per diff row, in diff order: entry ``i``
    (1-based) is the row at diff position ``i``. Added and context rows carry
    their head-side line number; rows with no head-side line (removed lines,
    interior hunk headers) are ``None``.
    """

    filename: str
    status: DiffStatus
    changed_lines: tuple[int | None, ...] = ()
    patch: str | None = None
    previous_filename: str | None = None


@dataclass(frozen=True)
class RawIssue:
    """A single scanner finding, normalized across scanners."""

    line: int
    column: int
    level: str  # "error" | "warning"
    severity: int
    rule: str
    message: str
    tool: str
    fixable: bool = False

    def dedupe_key(self) -> tuple:
        return (self.line, self.column, self.level, self.severity, self.rule, self.message)


@dataclass(frozen=True)
class AttributedIssue:
    """A finding accepted for a pull request, anchored at a diff position."""

    file_name: str
    position: int
    issue: RawIssue

    def dedupe_key(self) -> tuple:
        return (self.file_name, *self.issue.dedupe_key())
