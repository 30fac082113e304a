"""GitHub token resolution for the scan command.

The loaded config already carries ``GITHUB_TOKEN`` from the environment; local
runs without it fall back to the GitHub CLI session.
"""

from __future__ import annotations

import logging
import subprocess

logger = logging.getLogger(__name__)

_GH_TIMEOUT = 5


def _token_from_gh_cli() -> str | None:
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=_GH_TIMEOUT,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("gh CLI unavailable; no token from a gh session.")
        return None
    token = result.stdout.strip() if result.returncode == 0 else ""
    return token or None


def resolve_github_token(config: dict | None = None) -> str | None:
    """Return the configured token, else the gh CLI session token, else None.

    Never raises; the caller turns None into a UsageError.
    """
    token = (config or {}).get("github_token")
    if token:
        return token
    token = _token_from_gh_cli()
    if token:
        logger.debug("Resolved GitHub token via gh CLI session.")
    return token
