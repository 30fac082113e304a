"""Run-scoped memoization for expensive lookups (diffs, blame, tool versions).

Keys are structural: the operation name plus its ordered arguments. Two calls
with equal arguments share one entry even if the argument objects differ, so
callers can pass freshly built lists or dicts without defeating the cache.

There is no eviction and nothing is written to disk; a cache lives exactly as
long as the RunContext that owns it.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from typing import Any, NamedTuple


class _Absent:
    """Type of the ABSENT sentinel, never equal to any stored value."""

    _instance: _Absent | None = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


class CacheKey(NamedTuple):
    operation: str
    args: tuple


def _freeze(value: Any) -> Hashable:
    """Recursively convert containers into hashable equivalents."""
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    return value


def make_key(operation: str, *args: Any) -> CacheKey:
    return CacheKey(operation, tuple(_freeze(a) for a in args))


class MemoCache:
    """Key→value store distinguishing "never computed" from falsy results.

    ``get`` returns :data:`ABSENT` on a miss, so a stored ``False``, ``None``
    or empty list is still a hit.
    """

    def __init__(self):
        self._entries: dict[CacheKey, Any] = {}

    def get(self, operation: str, *args: Any) -> Any:
        return self._entries.get(make_key(operation, *args), ABSENT)

    def put(self, operation: str, *args: Any, value: Any) -> None:
        self._entries[make_key(operation, *args)] = value

    def get_or_compute(
        self,
        operation: str,
        args: tuple,
        compute: Callable[[], Any],
        cache_none: bool = False,
    ) -> Any:
        """Return the cached value or compute, store and return it.

        ``None`` results are not stored unless ``cache_none`` is set, so an
        "unavailable" answer is retried on the next call.
        """
        cached = self.get(operation, *args)
        if cached is not ABSENT:
            return cached
        value = compute()
        if value is not None or cache_none:
            self.put(operation, *args, value=value)
        return value

    def __len__(self) -> int:
        return len(self._entries)
