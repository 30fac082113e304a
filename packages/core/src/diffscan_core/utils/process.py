"""External command execution with retry, backoff and runtime accounting.

Git and the scanners are run through ``run_command`` so every invocation is
timed into the run's counters and transient failures are retried the same way
regardless of which tool failed.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from diffscan_core.run import RunContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str
    duration: float


def _decode(output: bytes | None) -> str:
    return (output or b"").decode("utf-8", errors="replace")


def _run_once(cmd: Sequence[str], cwd: str | None, input_text: str | None, timeout: float | None) -> CommandResult:
    start = time.monotonic()
    # Bytes mode: no newline translation, invalid UTF-8 is replaced.
    proc = subprocess.run(
        list(cmd),
        cwd=cwd,
        input=input_text.encode("utf-8") if input_text is not None else None,
        capture_output=True,
        timeout=timeout,
    )
    return CommandResult(
        proc.returncode,
        _decode(proc.stdout),
        _decode(proc.stderr),
        time.monotonic() - start,
    )


def run_command(
    ctx: RunContext,
    cmd: Sequence[str],
    ok_codes: Collection[int] = (0,),
    runtime_bucket: str = "cmd",
    retries: int | None = None,
    retry_delay: float | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    timeout: float | None = None,
) -> CommandResult | None:
    """Run ``cmd`` until it exits with a code in ``ok_codes`` or retries run out.

    Each attempt re-runs the command from scratch; output from failed attempts
    is discarded. Returns None when the budget is exhausted or the executable
    cannot be started at all (the latter is not retried).
    """
    retries = ctx.retries if retries is None else retries
    retry_delay = ctx.retry_delay if retry_delay is None else retry_delay
    attempts = retries + 1

    for attempt in range(attempts):
        ctx.counters.increment("cmd_runs")
        try:
            with ctx.counters.measure(runtime_bucket):
                result = _run_once(cmd, cwd, input_text, timeout)
        except (FileNotFoundError, PermissionError) as e:
            ctx.counters.increment("cmd_failures")
            logger.error("Could not start %s: %s", cmd[0], e)
            return None
        except subprocess.TimeoutExpired:
            failure = f"timed out after {timeout}s"
        else:
            if result.returncode in ok_codes:
                return result
            failure = f"exit code {result.returncode}: {result.stderr.strip()[:200]}"

        ctx.counters.increment("cmd_failures")
        if attempt == attempts - 1:
            logger.error("%s failed after %d attempt(s) (%s)", " ".join(cmd), attempts, failure)
            return None
        delay = retry_delay * 2**attempt
        logger.warning(
            "%s failed (attempt %d/%d, %s). Retrying in %.1fs...",
            cmd[0],
            attempt + 1,
            attempts,
            failure,
            delay,
        )
        time.sleep(delay)
    return None
