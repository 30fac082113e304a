"""Known-vulnerability lookups for WordPress plugins and themes.

Unlike PHPCS and the SVG scanner this does not run anything locally: each
plugin or theme touched by a pull request is looked up by slug in the WPScan
API, and vulnerabilities already fixed at the committed version are dropped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import quote

import requests
from packaging.version import InvalidVersion, Version
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from diffscan_core.scanners.base import ScannerKind

if TYPE_CHECKING:
    from diffscan_core.run import RunContext

logger = logging.getLogger(__name__)

WPSCAN_API_URL = "https://wpscan.com"

# WordPress only reads headers from the start of the file.
_HEADER_BYTES = 8192


class AddonType(str, Enum):
    PLUGIN = "plugin"
    THEME = "theme"


@dataclass(frozen=True)
class Vulnerability:
    title: str
    fixed_in: str | None = None
    vuln_type: str | None = None


@dataclass(frozen=True)
class AddonReport:
    """Vulnerabilities still affecting a plugin or theme at its committed version."""

    slug: str
    addon_type: AddonType
    version: str
    path: str
    vulnerabilities: tuple[Vulnerability, ...]


def read_addon_header(content: bytes, field: str) -> str | None:
    """Return the value of a ``Field: value`` header line, the way WordPress reads it."""
    text = content[:_HEADER_BYTES].decode("utf-8", errors="replace").replace("\r", "\n")
    pattern = re.compile(rf"^(?:[ \t]*<\?php)?[ \t/*#@]*{re.escape(field)}:(.*)$", re.MULTILINE | re.IGNORECASE)
    match = pattern.search(text)
    if not match:
        return None
    value = re.sub(r"\s*(?:\*/|\?>).*$", "", match.group(1)).strip()
    return value or None


def _affected(version: str, fixed_in: str) -> bool:
    try:
        return Version(version) <= Version(fixed_in)
    except InvalidVersion:
        logger.debug("Cannot compare versions %r and %r; keeping vulnerability", version, fixed_in)
        return True


def filter_fixed_vulnerabilities(slug: str, version: str, results: dict) -> dict | None:
    """Drop vulnerabilities fixed in an earlier version than ``version``.

    Entries without a ``fixed_in`` version are dropped as well. Returns a
    filtered copy of ``results``, or None if it has no vulnerability list
    for ``slug``.
    """
    entry = results.get(slug)
    if not isinstance(entry, dict) or not isinstance(entry.get("vulnerabilities"), list):
        return None

    kept = [
        vuln
        for vuln in entry["vulnerabilities"]
        if isinstance(vuln, dict) and vuln.get("fixed_in") and _affected(version, str(vuln["fixed_in"]))
    ]
    return {**results, slug: {**entry, "vulnerabilities": kept}}


class WpscanClient:
    """WPScan API client with retry on server errors and per-run memoization."""

    kind = ScannerKind.WPSCAN

    def __init__(self, ctx: RunContext, api_token: str, api_url: str = WPSCAN_API_URL, timeout: float = 30):
        self.ctx = ctx
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        adapter = HTTPAdapter(
            max_retries=Retry(
                total=ctx.retries,
                backoff_factor=ctx.retry_delay,
                status_forcelist=[500, 502, 503, 504],
            )
        )
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update({"Authorization": f"Token token={api_token}", "Accept": "application/json"})

    def _fetch(self, url: str) -> dict | None:
        with self.ctx.counters.measure("wpscan_api"):
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except (requests.RequestException, ValueError) as e:
                logger.warning("WPScan API request to %s failed: %s", url, e)
                return None
        self.ctx.counters.increment("wpscan_api_calls")
        return data if isinstance(data, dict) else None

    def do_scan_via_api(self, slug: str, addon_type: AddonType) -> dict | None:
        """Return the WPScan API results for ``slug``, or None on failure."""
        url = f"{self.api_url}/api/v3/{addon_type.value}s/{quote(slug, safe='')}"
        logger.info("Calling WPScan API for %s %s", addon_type.value, slug)
        results = self.ctx.cache.get_or_compute("wpscan_api", (url,), lambda: self._fetch(url))
        if results is None:
            self.ctx.alerts.add(f"WPScan API lookup failed for {addon_type.value} {slug}")
        return results

    def scan_addon(self, slug: str, addon_type: AddonType, version: str, path: str) -> AddonReport | None:
        """Look up ``slug`` and return what still affects ``version``.

        Returns None when the lookup failed or WPScan has no data for it.
        """
        results = self.do_scan_via_api(slug, addon_type)
        if results is None:
            return None
        filtered = filter_fixed_vulnerabilities(slug, version, results)
        if filtered is None:
            logger.info("WPScan has no vulnerability data for %s", slug)
            return None

        vulnerabilities = tuple(
            Vulnerability(
                title=str(vuln.get("title", "")),
                fixed_in=str(vuln["fixed_in"]),
                vuln_type=vuln.get("vuln_type"),
            )
            for vuln in filtered[slug]["vulnerabilities"]
        )
        self.ctx.counters.increment("wpscan_addons_scanned")
        return AddonReport(slug, addon_type, version, path, vulnerabilities)
