#!/usr/bin/env python3
"""
Error taxonomy for the binding generator.

Only fatal conditions are exceptions. Unsupported C++ shapes and naming
collisions are never raised: the former become diagnostics on the module
output, the latter are resolved by the name pool.
"""

from __future__ import annotations


class BindingGeneratorError(Exception):
    """Base class for every fatal generator error."""


class PreconditionError(BindingGeneratorError):
    """
    Raised before any generation work starts: missing input directories,
    no version information in the headers.
    """


class FrontEndContractError(BindingGeneratorError):
    """
    The front end handed out an entity without a retrievable source range or
    location, or the file backing it can't be read. Nothing downstream can be
    trusted after this, so the whole module run is aborted.
    """


class MemoizeCycleError(BindingGeneratorError):
    """
    A computation re-entered itself for the same key without registering a
    placeholder first. This is a bug in the caller.
    """

    def __init__(self, key: object) -> None:
        super().__init__(f"Re-entrant computation for key {key!r} without a placeholder")
        self.key = key


__all__ = [
    "BindingGeneratorError",
    "PreconditionError",
    "FrontEndContractError",
    "MemoizeCycleError",
]
