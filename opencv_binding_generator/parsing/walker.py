#!/usr/bin/env python3
"""
Depth-first, module-boundary aware traversal of the entity tree.

Namespaces and `extern "C"` blocks are transparent containers: they may span
many headers, so they are always descended into and never handed to the
visitor. Every other entity is offered to the visitor only when its
originating header belongs to the requested module (see ModuleMembership).
Order is the source declaration order reported by the front end, which
makes regenerated output diff-stable.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

from .. import settings
from .frontend import Entity, entity_file

logger = logging.getLogger(__name__)

_TRANSPARENT_KINDS = ("TRANSLATION_UNIT", "NAMESPACE", "LINKAGE_SPEC", "UNEXPOSED_DECL")


class WalkAction(Enum):
    CONTINUE = auto()
    SKIP_CHILDREN = auto()
    STOP = auto()


class WalkResult(Enum):
    COMPLETED = auto()
    INTERRUPTED = auto()


# --------------------------
# Module membership
# --------------------------


def _resolved(p: Union[str, Path]) -> Path:
    return Path(p).resolve()


def module_from_path(path: Union[str, Path]) -> Optional[str]:
    """
    Library module owning a header, from its path below the library header
    directory: "opencv2/core.hpp" and "opencv2/core/mat.hpp" both give "core".
    """
    parts = Path(path).parts
    for i in range(len(parts) - 1, -1, -1):
        if parts[i] == settings.LIBRARY_HEADER_DIR and i + 1 < len(parts):
            first = parts[i + 1]
            if i + 2 == len(parts):
                stem = Path(first).stem
                return stem or None
            return first
    return None


def is_library_path(path: Union[str, Path]) -> bool:
    return settings.LIBRARY_HEADER_DIR in Path(path).parts


def is_ephemeral_header(path: Union[str, Path]) -> bool:
    return Path(path).name == settings.EPHEMERAL_HEADER_NAME


class ModuleMembership:
    """
    Predicate deciding whether a declaration's header belongs to the module
    being generated, or to an explicitly allowed additional include path.
    """

    def __init__(self, module: str, additional_include_dirs: Sequence[Union[str, Path]] = ()) -> None:
        self.module = module
        self.additional_include_dirs: Tuple[Path, ...] = tuple(_resolved(d) for d in additional_include_dirs)

    def _in_additional_dir(self, path: Path) -> bool:
        for d in self.additional_include_dirs:
            try:
                path.relative_to(d)
                return True
            except ValueError:
                continue
        return False

    def __call__(self, path: Optional[str]) -> bool:
        if not path:
            return False
        if is_ephemeral_header(path):
            return True
        if module_from_path(path) == self.module:
            return True
        return bool(self.additional_include_dirs) and self._in_additional_dir(_resolved(path))


# --------------------------
# Walker
# --------------------------

Visitor = Callable[[Entity], WalkAction]


class EntityWalker:
    """
    Usage:
        walker = EntityWalker(tu_root, ModuleMembership("core"))
        walker.walk(visitor)
    """

    def __init__(self, root: Entity, is_member: Callable[[Optional[str]], bool]) -> None:
        self.root = root
        self.is_member = is_member

    def walk(self, visitor: Visitor) -> WalkResult:
        # Explicit stack of pending child lists keeps depth unbounded by the
        # interpreter recursion limit.
        stack: List[Iterator[Entity]] = [iter(self.root.children())]
        while stack:
            try:
                entity = next(stack[-1])
            except StopIteration:
                stack.pop()
                continue
            if entity.kind in _TRANSPARENT_KINDS:
                stack.append(iter(entity.children()))
                continue
            if not self.is_member(entity_file(entity)):
                continue
            action = visitor(entity)
            if action == WalkAction.STOP:
                logger.debug("Walk interrupted at %s '%s'", entity.kind, entity.spelling)
                return WalkResult.INTERRUPTED
            if action == WalkAction.CONTINUE:
                stack.append(iter(entity.children()))
        return WalkResult.COMPLETED

    @staticmethod
    def walk_children(entity: Entity, visitor: Visitor) -> WalkResult:
        """
        Visit the direct children of a declaration (class members) without any
        module filtering; members live where their class lives.
        """
        for child in entity.children():
            if visitor(child) == WalkAction.STOP:
                return WalkResult.INTERRUPTED
        return WalkResult.COMPLETED


__all__ = [
    "WalkAction",
    "WalkResult",
    "EntityWalker",
    "ModuleMembership",
    "module_from_path",
    "is_library_path",
    "is_ephemeral_header",
]
