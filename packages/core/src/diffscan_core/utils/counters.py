"""Named counters and runtime buckets accumulated over one run."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from enum import Enum

logger = logging.getLogger(__name__)


class CounterAction(str, Enum):
    INCREMENT = "increment"
    DUMP = "dump"


class RunCounters:
    """Monotonic integer counters plus accumulated wall-clock time per bucket."""

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._runtimes: defaultdict[str, float] = defaultdict(float)

    def increment(self, name: str, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"Counter {name!r} cannot be decremented (amount={amount}).")
        self._counters[name] = self._counters.get(name, 0) + amount

    def dump(self) -> dict[str, int]:
        return dict(self._counters)

    def report(self, action, name: str | None = None, amount: int = 1):
        """Dispatch on a counter action tag.

        Returns True after an increment, the snapshot for a dump, and False
        for any tag outside :class:`CounterAction` (state is left untouched).
        """
        try:
            action = CounterAction(action)
        except ValueError:
            logger.warning("Ignoring unknown counter action %r", action)
            return False

        if action is CounterAction.DUMP:
            return self.dump()
        if name is None:
            return False
        self.increment(name, amount)
        return True

    def add_runtime(self, bucket: str, seconds: float) -> None:
        self._runtimes[bucket] += seconds

    @contextmanager
    def measure(self, bucket: str):
        """Time the enclosed block into ``bucket``, even if it raises."""
        start = time.monotonic()
        try:
            yield
        finally:
            self.add_runtime(bucket, time.monotonic() - start)

    def runtimes(self) -> dict[str, float]:
        return dict(self._runtimes)
