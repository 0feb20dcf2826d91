#!/usr/bin/env python3
"""
Front-end capability interface and its libclang implementation.

The rest of the generator only ever sees the `Entity` and `RawType` protocols
defined here ("entity tree for a translation unit, with location/range
lookup"). `ClangFrontEnd` is the production implementation on top of
`clang.cindex`; tests substitute in-memory fakes.

libclang contexts are process-wide and not safe to use from several threads
at once, so every parse and the processing of the resulting tree happen under
FRONT_END_LOCK.

Requirements:
- Python clang bindings (pip install libclang)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from .. import settings
from ..errors import FrontEndContractError

logger = logging.getLogger(__name__)

try:
    from clang import cindex  # type: ignore
except ImportError:  # pragma: no cover
    cindex = None  # Lazy error on use

FRONT_END_LOCK = threading.Lock()


# --------------------------
# Capability interface
# --------------------------

@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    offset: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"


class RawType(Protocol):
    kind: str
    spelling: str
    is_const: bool

    def pointee(self) -> "RawType": ...
    def canonical(self) -> "RawType": ...
    def named_type(self) -> "RawType": ...
    def declaration(self) -> Optional["Entity"]: ...
    def template_arguments(self) -> Sequence["RawType"]: ...
    def result_type(self) -> "RawType": ...
    def argument_types(self) -> Sequence["RawType"]: ...
    def element_type(self) -> "RawType": ...
    def element_count(self) -> int: ...


class Entity(Protocol):
    kind: str
    spelling: str
    usr: str
    display_name: str
    access: str
    raw_comment: Optional[str]

    def location(self) -> Optional[SourceLocation]: ...
    def extent(self) -> Optional[Tuple[SourceLocation, SourceLocation]]: ...
    def children(self) -> Sequence["Entity"]: ...
    def arguments(self) -> Sequence["Entity"]: ...
    def semantic_parent(self) -> Optional["Entity"]: ...
    def type(self) -> RawType: ...
    def result_type(self) -> RawType: ...
    def underlying_typedef_type(self) -> RawType: ...
    def enum_value(self) -> Optional[int]: ...
    def tokens(self) -> List[str]: ...
    def is_definition(self) -> bool: ...
    def is_anonymous(self) -> bool: ...
    def is_static_method(self) -> bool: ...
    def is_const_method(self) -> bool: ...
    def is_virtual_method(self) -> bool: ...
    def is_pure_virtual_method(self) -> bool: ...


class FrontEnd(Protocol):
    def parse(self, header: Path, args: Sequence[str]) -> Entity: ...


# --------------------------
# Entity helpers
# --------------------------

_SCOPE_KINDS = ("NAMESPACE", "CLASS_DECL", "STRUCT_DECL", "CLASS_TEMPLATE", "UNION_DECL")


def qualified_name(entity: Entity) -> str:
    """
    Build a fully qualified name (namespaces and enclosing classes) for a
    declaration. Anonymous scopes are omitted and enumerators are qualified
    by the scope enclosing their enum.
    """
    base = entity.spelling or ""
    parts: List[str] = []
    parent = entity.semantic_parent()
    while parent is not None and parent.kind in _SCOPE_KINDS:
        if parent.spelling:
            parts.append(parent.spelling)
        parent = parent.semantic_parent()
    parts.reverse()
    return "::".join(parts + [base]) if parts else base


def entity_file(entity: Entity) -> Optional[str]:
    loc = entity.location()
    return loc.file if loc is not None else None


def get_definition_text(entity: Entity) -> str:
    """
    Read the literal source text of an entity's extent from disk.

    Raises FrontEndContractError when the entity has no range or the file is
    unreadable: every classified entity is expected to have a valid origin.
    """
    ext = entity.extent()
    if ext is None:
        raise FrontEndContractError(f"Can't get entity range for '{entity.spelling}' ({entity.kind})")
    start, end = ext
    try:
        with open(start.file, "rb") as f:
            f.seek(start.offset)
            data = f.read(end.offset - start.offset)
    except OSError as e:
        raise FrontEndContractError(f"Can't read definition of '{entity.spelling}' from {start.file}: {e}") from e
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FrontEndContractError(f"Can't decode definition of '{entity.spelling}' in {start.file}") from e


def get_location(entity: Entity) -> SourceLocation:
    loc = entity.location()
    if loc is None:
        raise FrontEndContractError(f"Can't get entity location for '{entity.spelling}' ({entity.kind})")
    return loc


# --------------------------
# libclang implementation
# --------------------------

def ensure_libclang_loaded() -> None:
    """
    Ensure clang.cindex is importable. This function doesn't try to set a library path,
    but provides a single point to improve discovery in future.
    """
    if cindex is None:
        raise RuntimeError(
            "libclang (clang.cindex) is not available. Install clang Python bindings "
            "(e.g., pip install libclang) and ensure libclang is discoverable."
        )


def _loc(src: Any) -> Optional[SourceLocation]:
    f = getattr(src, "file", None)
    if f is None:
        return None
    return SourceLocation(file=str(f.name), line=src.line, column=src.column, offset=src.offset)


class ClangType:
    """RawType over a clang.cindex.Type."""

    def __init__(self, tp: Any) -> None:
        self._t = tp
        self.kind: str = tp.kind.name
        self.spelling: str = tp.spelling
        self.is_const: bool = bool(tp.is_const_qualified())

    def pointee(self) -> "ClangType":
        return ClangType(self._t.get_pointee())

    def canonical(self) -> "ClangType":
        return ClangType(self._t.get_canonical())

    def named_type(self) -> "ClangType":
        return ClangType(self._t.get_named_type())

    def declaration(self) -> Optional["ClangEntity"]:
        decl = self._t.get_declaration()
        if decl is None or decl.kind.name == "NO_DECL_FOUND":
            return None
        return ClangEntity(decl)

    def template_arguments(self) -> List["ClangType"]:
        n = self._t.get_num_template_arguments()
        if n < 0:
            return []
        return [ClangType(self._t.get_template_argument_type(i)) for i in range(n)]

    def result_type(self) -> "ClangType":
        return ClangType(self._t.get_result())

    def argument_types(self) -> List["ClangType"]:
        return [ClangType(a) for a in self._t.argument_types()]

    def element_type(self) -> "ClangType":
        return ClangType(self._t.get_array_element_type())

    def element_count(self) -> int:
        return int(self._t.get_array_size())

    def __repr__(self) -> str:
        return f"ClangType({self.kind}, {self.spelling!r})"


class ClangEntity:
    """Entity over a clang.cindex.Cursor."""

    def __init__(self, cursor: Any) -> None:
        self._c = cursor
        self.kind: str = cursor.kind.name
        self.spelling: str = cursor.spelling or ""
        self.usr: str = cursor.get_usr() or ""
        self.display_name: str = cursor.displayname or ""
        acc = getattr(cursor, "access_specifier", None)
        self.access: str = getattr(acc, "name", "NONE")
        self.raw_comment: Optional[str] = cursor.raw_comment

    def location(self) -> Optional[SourceLocation]:
        return _loc(self._c.location)

    def extent(self) -> Optional[Tuple[SourceLocation, SourceLocation]]:
        ext = self._c.extent
        start, end = _loc(ext.start), _loc(ext.end)
        if start is None or end is None:
            return None
        return start, end

    def children(self) -> List["ClangEntity"]:
        return [ClangEntity(c) for c in self._c.get_children()]

    def arguments(self) -> List["ClangEntity"]:
        return [ClangEntity(a) for a in self._c.get_arguments()]

    def semantic_parent(self) -> Optional["ClangEntity"]:
        p = self._c.semantic_parent
        return ClangEntity(p) if p is not None else None

    def type(self) -> ClangType:
        return ClangType(self._c.type)

    def result_type(self) -> ClangType:
        return ClangType(self._c.result_type)

    def underlying_typedef_type(self) -> ClangType:
        return ClangType(self._c.underlying_typedef_type)

    def enum_value(self) -> Optional[int]:
        if self.kind != "ENUM_CONSTANT_DECL":
            return None
        return int(self._c.enum_value)

    def tokens(self) -> List[str]:
        return [t.spelling for t in self._c.get_tokens()]

    def is_definition(self) -> bool:
        return bool(self._c.is_definition())

    def is_anonymous(self) -> bool:
        return bool(self._c.is_anonymous())

    def is_static_method(self) -> bool:
        return bool(self._c.is_static_method())

    def is_const_method(self) -> bool:
        return bool(self._c.is_const_method())

    def is_virtual_method(self) -> bool:
        return bool(self._c.is_virtual_method())

    def is_pure_virtual_method(self) -> bool:
        return bool(self._c.is_pure_virtual_method())

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ClangEntity) and self._c == other._c

    def __hash__(self) -> int:
        return self._c.hash

    def __repr__(self) -> str:
        return f"ClangEntity({self.kind}, {self.spelling!r})"


def export_macro_args() -> List[str]:
    """
    -D definitions that keep the library export macros visible as annotate
    attributes after preprocessing.
    """
    out = [f'-D{m}=__attribute__((annotate("{m}")))' for m in settings.EXPORT_MACROS]
    out.extend(f'-D{m}(x)=__attribute__((annotate("{m}")))' for m in settings.EXPORT_MACROS_WITH_ARG)
    return out


class ClangFrontEnd:
    """
    Parses a header with libclang and returns the translation unit root.

    Parsing options are conservative: function bodies are skipped and
    incomplete translation units are accepted, the detailed processing record
    keeps macro definitions in the tree.
    """

    def __init__(self, emit_diagnostics: bool = True) -> None:
        self.emit_diagnostics = emit_diagnostics
        self.unit: Optional[Any] = None

    def parse(self, header: Path, args: Sequence[str]) -> ClangEntity:
        ensure_libclang_loaded()
        idx = cindex.Index.create()
        tu_cls = cindex.TranslationUnit
        try:
            tu = idx.parse(
                str(header),
                args=list(args),
                options=(
                    tu_cls.PARSE_SKIP_FUNCTION_BODIES
                    | tu_cls.PARSE_INCOMPLETE
                    | tu_cls.PARSE_DETAILED_PROCESSING_RECORD
                ),
            )
        except cindex.TranslationUnitLoadError as e:
            raise FrontEndContractError(f"Failed to parse {header}: {e}") from e
        if self.emit_diagnostics:
            for diag in tu.diagnostics:
                logger.warning("[clang] %s", diag)
        # Only the unit of the module being generated is retained.
        self.unit = tu
        return ClangEntity(tu.cursor)


__all__ = [
    "FRONT_END_LOCK",
    "SourceLocation",
    "RawType",
    "Entity",
    "FrontEnd",
    "ClangType",
    "ClangEntity",
    "ClangFrontEnd",
    "ensure_libclang_loaded",
    "export_macro_args",
    "qualified_name",
    "entity_file",
    "get_definition_text",
    "get_location",
]
