#!/usr/bin/env python3
"""
Identity-keyed "resolve once" cache.

Both entity classification and type resolution go through a MemoizeMap. The
contract that matters to callers:

- `compute_fn` / `fill_fn` runs at most once per distinct key for the
  lifetime of the map, and every caller passing the same key gets the very
  same object back.
- A computation that may (directly or indirectly) ask for its own key again,
  e.g. a class holding `std::vector<Self*>`, must use `get_or_fill`. The
  placeholder is registered before the fill starts, so the re-entrant request
  receives the placeholder itself; it is complete as soon as the outer fill
  returns.
- A re-entrant request through `get_or_compute` has no placeholder to hand
  out and raises MemoizeCycleError instead of recursing forever.
"""

from __future__ import annotations

from typing import Callable, Dict, Generic, Hashable, Iterator, List, Optional, Set, TypeVar

from .errors import MemoizeCycleError

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class MemoizeMap(Generic[K, V]):
    """
    Single-owner, insertion-ordered memoization map.
    """

    def __init__(self) -> None:
        self._values: Dict[K, V] = {}
        self._in_progress: Set[K] = set()

    def get_or_compute(self, key: K, compute_fn: Callable[[], V]) -> V:
        if key in self._values:
            return self._values[key]
        if key in self._in_progress:
            raise MemoizeCycleError(key)
        self._in_progress.add(key)
        try:
            value = compute_fn()
        finally:
            self._in_progress.discard(key)
        self._values[key] = value
        return value

    def get_or_fill(self, key: K, placeholder_fn: Callable[[], V], fill_fn: Callable[[V], None]) -> V:
        """
        Register `placeholder_fn()` under `key`, then complete it in place with
        `fill_fn(placeholder)`. If the fill fails the slot is dropped so that no
        half-built value is ever observed after the error.
        """
        if key in self._values:
            return self._values[key]
        placeholder = placeholder_fn()
        self._values[key] = placeholder
        self._in_progress.add(key)
        try:
            fill_fn(placeholder)
        except BaseException:
            del self._values[key]
            raise
        finally:
            self._in_progress.discard(key)
        return placeholder

    def is_pending(self, key: K) -> bool:
        return key in self._in_progress

    def peek(self, key: K) -> Optional[V]:
        return self._values.get(key)

    def values(self) -> List[V]:
        return list(self._values.values())

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[K]:
        return iter(self._values)


__all__ = ["MemoizeMap"]
