"""Per-run state shared by every stage of the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field

from diffscan_core.utils.alerts import AlertQueue
from diffscan_core.utils.cache import MemoCache
from diffscan_core.utils.counters import RunCounters


@dataclass
class RunContext:
    """Created once by the CLI and passed explicitly to every component.

    ``retries`` and ``retry_delay`` are the Process Runner defaults for the
    run; individual calls may override them.
    """

    cache: MemoCache = field(default_factory=MemoCache)
    counters: RunCounters = field(default_factory=RunCounters)
    alerts: AlertQueue = field(default_factory=AlertQueue)
    # PR number -> files that could not be attributed, in the order they failed.
    skipped_files: dict[int, list[str]] = field(default_factory=dict)
    retries: int = 3
    retry_delay: float = 1.0

    @classmethod
    def from_config(cls, config: dict) -> RunContext:
        return cls(retries=int(config.get("retries", 3)), retry_delay=float(config.get("retry_delay", 1.0)))

    def mark_skipped(self, pr_number: int, file_name: str, reason: str, alert: bool = True) -> None:
        """Record ``file_name`` as skipped for ``pr_number``.

        Pass ``alert=False`` when the failure has already been alerted on.
        """
        files = self.skipped_files.setdefault(pr_number, [])
        if file_name not in files:
            files.append(file_name)
        self.counters.increment("files_skipped")
        if alert:
            self.alerts.add(f"Skipped {file_name}: {reason}")
