from __future__ import annotations

from diffscan_core.scanners.base import BaseScanner, ScannerKind


class SvgScanner(BaseScanner):
    """Runs an external SVG sanitizer that prints a PHPCS-style JSON report."""

    kind = ScannerKind.SVG

    def __init__(self, ctx, scanner_path: str, php_path: str = "php"):
        super().__init__(ctx)
        self.scanner_path = scanner_path
        self.php_path = php_path

    def _build_command(self, temp_path: str) -> list[str]:
        return [self.php_path, self.scanner_path, "--report=json", temp_path]
