"""Collapse repeated operator notifications into one count-prefixed line."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable


def collapse_alerts(messages: Iterable[str]) -> list[str]:
    """Return each distinct message once, in first-seen order.

    Messages seen more than once are prefixed with ``"(Nx) "``.
    """
    counts: Counter[str] = Counter()
    order: list[str] = []
    for message in messages:
        if message not in counts:
            order.append(message)
        counts[message] += 1
    return [f"({counts[m]}x) {m}" if counts[m] > 1 else m for m in order]


class AlertQueue:
    """Ordered alert buffer, consumed once per flush."""

    def __init__(self):
        self._messages: list[str] = []

    def add(self, message: str) -> None:
        self._messages.append(message)

    def flush(self) -> list[str]:
        collapsed = collapse_alerts(self._messages)
        self._messages.clear()
        return collapsed

    def __len__(self) -> int:
        return len(self._messages)
