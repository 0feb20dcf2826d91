#!/usr/bin/env python3
"""
Collision-free identifier allocation.

Each scope (a module, or a class inside it) owns a set of identifiers already
handed out. `allocate` returns the desired name when it is free and otherwise
derives a deterministic alternative, so regenerating an unchanged module
produces byte-identical identifiers.
"""

from __future__ import annotations

import re
from typing import Dict, Mapping, Optional, Set

from . import settings

_NON_IDENT = re.compile(r"[^0-9A-Za-z_]+")


def sanitize_identifier(name: str) -> str:
    """
    Turn an arbitrary spelling (e.g. "operator+", "Ptr<Mat>") into a valid
    identifier without changing names that already are one.
    """
    out = _NON_IDENT.sub("_", name or "").strip("_")
    if not out:
        return "unnamed"
    if out[0].isdigit():
        out = f"_{out}"
    return out


def reserved_rename(name: str, table: Optional[Mapping[str, str]] = None) -> str:
    table = settings.RESERVED_RENAME if table is None else table
    return table.get(name, name)


class NamePool:
    """
    Scope -> allocated identifier set. Only `allocate` and `reserve` mutate it.
    """

    def __init__(self, reserved: Optional[Mapping[str, str]] = None) -> None:
        self._reserved: Mapping[str, str] = settings.RESERVED_RENAME if reserved is None else reserved
        self._scopes: Dict[str, Set[str]] = {}

    def _scope(self, scope: str) -> Set[str]:
        return self._scopes.setdefault(scope, set())

    def is_taken(self, scope: str, name: str) -> bool:
        return name in self._scopes.get(scope, ())

    def reserve(self, scope: str, name: str) -> None:
        self._scope(scope).add(name)

    def allocate(self, scope: str, desired_name: str, disambiguator: Optional[str] = None) -> str:
        """
        Allocate an identifier for `desired_name` inside `scope`.

        Reserved words are substituted first. On collision the candidate
        `<name>_<disambiguator>` is tried, then `<name>_1`, `<name>_2`, ... with
        the first free ordinal. The same sequence of calls always yields the same
        identifiers.
        """
        taken = self._scope(scope)
        name = reserved_rename(sanitize_identifier(desired_name), self._reserved)
        if name not in taken:
            taken.add(name)
            return name

        base = name
        if disambiguator:
            candidate = f"{name}_{sanitize_identifier(disambiguator)}"
            if candidate not in taken:
                taken.add(candidate)
                return candidate
            base = candidate

        idx = 1
        while f"{base}_{idx}" in taken:
            idx += 1
        out = f"{base}_{idx}"
        taken.add(out)
        return out

    def scopes(self) -> Dict[str, Set[str]]:
        return {k: set(v) for k, v in self._scopes.items()}


__all__ = ["NamePool", "sanitize_identifier", "reserved_rename"]
