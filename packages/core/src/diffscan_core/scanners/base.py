"""Base scanner implementing the Template Method pattern.

All scanners share the same algorithm:
    scan() → write content to a temp file
           → _build_command() → run_command()   ← only the command differs
           → _parse() → collapse_duplicates()

Subclasses implement ``_build_command`` and set ``kind`` / ``OK_CODES``.
The JSON report shape is PHPCS's, which the SVG scanner emits as well.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING

from diffscan_core.attribution import collapse_duplicates
from diffscan_core.models import RawIssue
from diffscan_core.utils.process import run_command

if TYPE_CHECKING:
    from diffscan_core.run import RunContext

logger = logging.getLogger(__name__)


class ScannerKind(str, Enum):
    PHPCS = "phpcs"
    SVG = "svg"
    WPSCAN = "wpscan"


class ScanOutputError(ValueError):
    """Scanner output did not have the expected shape."""


class BaseScanner(ABC):
    kind: ScannerKind
    OK_CODES: tuple[int, ...] = (0,)

    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def scan(self, file_name: str, content: bytes) -> list[RawIssue] | None:
        """Scan ``content`` (the committed bytes of ``file_name``, written out unchanged).

        Returns the de-duplicated findings, or None when the scanner could not
        run or produced unusable output. An empty list means "scanned, clean".
        """
        suffix = os.path.splitext(file_name)[1] or None
        fd, temp_path = tempfile.mkstemp(prefix=f"diffscan-{self.kind.value}-", suffix=suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)

            logger.debug("Scanning %s with %s (temp file %s)", file_name, self.kind.value, temp_path)
            result = run_command(
                self.ctx,
                self._build_command(temp_path),
                ok_codes=self.OK_CODES,
                runtime_bucket=f"{self.kind.value}_cli",
            )
            if result is None:
                return None

            try:
                issues = self._parse(result.stdout, temp_path)
            except ScanOutputError as e:
                logger.warning("Failed parsing %s output for %s: %s", self.kind.value, file_name, e)
                return None
        finally:
            os.unlink(temp_path)

        self.ctx.counters.increment(f"{self.kind.value}_files_scanned")
        return collapse_duplicates(issues)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each scanner                                  #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _build_command(self, temp_path: str) -> list[str]:
        """Return the argv that scans ``temp_path`` and prints a JSON report."""

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _parse(self, raw: str, temp_path: str) -> list[RawIssue]:
        """Normalize a PHPCS-style JSON report into RawIssue values.

        Raises ScanOutputError when the report lacks ``totals``/``files`` or
        the entry for the scanned file.
        """
        try:
            report = json.loads(raw.rstrip("\n"))
        except json.JSONDecodeError as e:
            raise ScanOutputError(f"not JSON: {raw[:200]!r}") from e

        if not isinstance(report, dict) or "totals" not in report or "files" not in report:
            raise ScanOutputError("missing 'totals' or 'files'")

        # The file key usually carries the leading "/" but not always.
        files = report["files"]
        entry = files.get(temp_path) or files.get(temp_path.lstrip("/"))
        if entry is None or "messages" not in entry:
            raise ScanOutputError(f"no results for {temp_path}")

        issues = []
        for message in entry["messages"]:
            try:
                issues.append(
                    RawIssue(
                        line=int(message["line"]),
                        column=int(message.get("column", 0)),
                        level=str(message["type"]).lower(),
                        severity=int(message.get("severity", 5)),
                        rule=str(message.get("source", "")),
                        message=str(message["message"]),
                        tool=self.kind.value,
                        fixable=bool(message.get("fixable", False)),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ScanOutputError(f"malformed message {message!r}") from e
        return issues
