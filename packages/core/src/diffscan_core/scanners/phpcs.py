from __future__ import annotations

import logging

from diffscan_core.errors import ScannerUnavailableError
from diffscan_core.scanners.base import BaseScanner, ScannerKind
from diffscan_core.utils.cache import ABSENT
from diffscan_core.utils.process import run_command

logger = logging.getLogger(__name__)


class PhpcsScanner(BaseScanner):
    kind = ScannerKind.PHPCS
    # PHPCS exits 1 or 2 when it ran fine and found issues.
    OK_CODES = (0, 1, 2)

    def __init__(
        self,
        ctx,
        phpcs_path: str = "phpcs",
        php_path: str = "php",
        standard: list[str] | None = None,
        severity: int = 1,
        sniffs_exclude: list[str] | None = None,
        runtime_set: list[list[str]] | None = None,
    ):
        super().__init__(ctx)
        self.phpcs_path = phpcs_path
        self.php_path = php_path
        self.standard = list(standard or [])
        self.severity = severity
        self.sniffs_exclude = list(sniffs_exclude or [])
        self.runtime_set = [tuple(pair) for pair in runtime_set or []]
        self.invalid_sniffs: list[str] = []

    def _build_command(self, temp_path: str) -> list[str]:
        cmd = [
            self.php_path,
            "-d",
            "memory_limit=500M",
            "-d",
            "max_execution_time=300",
            self.phpcs_path,
            f"--severity={self.severity}",
            "--report=json",
        ]
        if self.standard:
            cmd.append(f"--standard={','.join(self.standard)}")
        if self.sniffs_exclude:
            cmd.append(f"--exclude={','.join(self.sniffs_exclude)}")
        for key, value in self.runtime_set:
            cmd += ["--runtime-set", key, value]
        cmd.append(temp_path)
        return cmd

    def version(self) -> str:
        """Return the installed PHPCS version, memoized for the run.

        Raises ScannerUnavailableError if PHPCS cannot be run at all.
        """
        cached = self.ctx.cache.get("phpcs_version", self.phpcs_path, self.php_path)
        if cached is not ABSENT:
            return cached

        # "PHP_CodeSniffer version 3.7.2 (stable) by Squiz ..."
        words = self._run_phpcs("--version").replace("PHP_CodeSniffer ", "").replace("version ", "").split()
        version = words[0] if words else ""
        logger.info("PHPCS version %s at %s", version or "unknown", self.phpcs_path)
        self.ctx.cache.put("phpcs_version", self.phpcs_path, self.php_path, value=version)
        return version

    def _run_phpcs(self, *args: str) -> str:
        result = run_command(self.ctx, [self.php_path, self.phpcs_path, *args], runtime_bucket="phpcs_cli")
        if result is None:
            raise ScannerUnavailableError(f"Unable to run PHPCS at {self.phpcs_path!r}.")
        return result.stdout

    def get_all_standards(self) -> list[str]:
        """Return the coding standards installed alongside PHPCS."""
        cached = self.ctx.cache.get("phpcs_standards", self.phpcs_path, self.php_path)
        if cached is not ABSENT:
            return cached

        # "The installed coding standards are MySource, PEAR and WordPress"
        output = self._run_phpcs("-i").replace("The installed coding standards are", "").replace(" and ", ",")
        standards = [name.strip() for name in output.split(",") if name.strip()]
        logger.debug("Installed PHPCS standards: %s", ", ".join(standards))
        self.ctx.cache.put("phpcs_standards", self.phpcs_path, self.php_path, value=standards)
        return standards

    def get_sniffs_for_standard(self, standards: list[str]) -> list[str]:
        """Return the sniff codes active in ``standards``, in PHPCS's order."""
        cached = self.ctx.cache.get("phpcs_sniffs", self.phpcs_path, self.php_path, standards)
        if cached is not ABSENT:
            return cached

        sniffs: list[str] = []
        args = [f"--standard={','.join(standards)}"] if standards else []
        output = self._run_phpcs(*args, "-e", "-s")
        for line in output.split("\n"):
            # Sniff lines are indented; headings and rulers are not.
            if not line.startswith(" ") or "." not in line or "-" in line:
                continue
            sniff = line.strip()
            if sniff not in sniffs:
                sniffs.append(sniff)
        self.ctx.cache.put("phpcs_sniffs", self.phpcs_path, self.php_path, standards, value=sniffs)
        return sniffs

    def validate_standards(self) -> None:
        """Raise ScannerUnavailableError if a named standard is not installed.

        Paths to ruleset files are passed through untouched.
        """
        named = [s for s in self.standard if "/" not in s and not s.endswith(".xml")]
        if not named:
            return
        installed = self.get_all_standards()
        missing = [s for s in named if s not in installed]
        if missing:
            raise ScannerUnavailableError(
                f"PHPCS standard(s) not installed: {', '.join(missing)} (installed: {', '.join(installed)})."
            )

    def validate_sniffs(self) -> list[str]:
        """Drop excluded sniffs that the configured standard does not have.

        Returns the removed sniffs, sorted.
        """
        if not self.sniffs_exclude:
            return []
        valid = self.get_sniffs_for_standard(self.standard)
        invalid = sorted(s for s in self.sniffs_exclude if s not in valid)
        if invalid:
            logger.warning("Dynamically removing invalid PHPCS sniffs from options: %s", ", ".join(invalid))
            self.sniffs_exclude = [s for s in self.sniffs_exclude if s in valid]
        self.invalid_sniffs = invalid
        return invalid
