#!/usr/bin/env python3
"""
Data models for the OpenCV binding generator.

This module provides the structures that flow through the pipeline:
- TypeRef: the semantic description of a C++ type (qualifier stack, generic
  containers, identity references to classes and enums)
- Elements: classified, still source-shaped declarations (Class, Enum, Func,
  Field, Typedef, Const)
- GeneratedType: the immutable, render-ready descriptor handed to the Writer
- Diagnostic: a non-fatal issue recorded during a run
- GeneratorConfig: process-wide immutable configuration

TypeRefs never inline a class: a class or enum is referenced by its
declaration key (USR) and looked up in the environment's symbol table. That
indirection is what keeps self-referential declarations finite.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from . import settings
from .parsing.frontend import Entity, RawType, SourceLocation

# --------------------------
# TypeRef
# --------------------------


class TypeKind(Enum):
    PRIMITIVE = auto()
    POINTER = auto()
    REFERENCE = auto()
    CLASS = auto()
    ENUM = auto()
    FUNCTION = auto()
    VECTOR = auto()
    SMART_PTR = auto()
    TUPLE = auto()
    TYPEDEF = auto()
    OPAQUE = auto()


class Ownership(Enum):
    SHARED = "shared"
    EXCLUSIVE = "exclusive"
    WEAK = "weak"


GENERIC_KINDS = (TypeKind.VECTOR, TypeKind.SMART_PTR, TypeKind.TUPLE)


@dataclass(frozen=True)
class TypeRef:
    """
    Semantic type descriptor.

    POINTER and REFERENCE wrap `inner`; together with each level's `is_const`
    they form the qualifier stack. VECTOR/SMART_PTR/TUPLE keep their element
    types in `args`, FUNCTION keeps the result in `inner` and parameters in
    `args`. CLASS, ENUM and TYPEDEF carry a `key` into the symbol table.
    """
    kind: TypeKind
    cpp_name: str
    is_const: bool = False
    inner: Optional["TypeRef"] = None
    args: Tuple["TypeRef", ...] = ()
    key: str = ""
    ownership: Optional[Ownership] = None
    short: str = ""
    host: str = ""
    is_rvalue: bool = False
    array_size: Optional[int] = None
    reason: str = ""

    @property
    def is_reference(self) -> bool:
        return self.kind == TypeKind.REFERENCE

    @property
    def is_generic(self) -> bool:
        return self.kind in GENERIC_KINDS

    @property
    def is_void(self) -> bool:
        return self.kind == TypeKind.PRIMITIVE and self.cpp_name == "void"

    @property
    def qualifiers(self) -> List[str]:
        """
        Qualifier stack, outermost first, e.g. `const cv::Mat* const&` ->
        ["&", "const *", "const"].
        """
        out: List[str] = []
        t: Optional[TypeRef] = self
        while t is not None and t.kind in (TypeKind.POINTER, TypeKind.REFERENCE):
            sym = "&&" if t.is_rvalue else ("&" if t.is_reference else "*")
            out.append(f"const {sym}" if t.is_const else sym)
            t = t.inner
        if t is not None and t.is_const:
            out.append("const")
        return out

    @property
    def pointer_depth(self) -> int:
        depth = 0
        t: Optional[TypeRef] = self
        while t is not None and t.kind in (TypeKind.POINTER, TypeKind.REFERENCE):
            if t.kind == TypeKind.POINTER:
                depth += 1
            t = t.inner
        return depth

    @property
    def base(self) -> "TypeRef":
        """The type with every pointer/reference level stripped."""
        t = self
        while t.kind in (TypeKind.POINTER, TypeKind.REFERENCE) and t.inner is not None:
            t = t.inner
        return t

    @property
    def canonical_base(self) -> "TypeRef":
        """Like `base`, but also looks through typedefs."""
        t = self.base
        while t.kind == TypeKind.TYPEDEF and t.inner is not None:
            t = t.inner.base
        return t

    @property
    def unaliased(self) -> "TypeRef":
        """
        The aliased reference or pointer when this is a typedef of one
        (`typedef const _InputArray& InputArray`), else the type itself.
        """
        t = self
        while t.kind == TypeKind.TYPEDEF and t.inner is not None:
            t = t.inner
        return t if t.kind in (TypeKind.POINTER, TypeKind.REFERENCE) else self

    def walk(self) -> Iterator["TypeRef"]:
        """Depth-first iteration over this type and every nested type."""
        yield self
        if self.inner is not None:
            yield from self.inner.walk()
        for a in self.args:
            yield from a.walk()

    @property
    def signature(self) -> str:
        """Canonical spelling used as the identity of a generic instantiation."""
        if self.kind in (TypeKind.POINTER, TypeKind.REFERENCE):
            sym = "&&" if self.is_rvalue else ("&" if self.is_reference else "*")
            return f"{self.inner.signature if self.inner else '?'}{sym}{' const' if self.is_const else ''}"
        if self.is_generic:
            return f"{self.cpp_name}<{', '.join(a.signature for a in self.args)}>"
        prefix = "const " if self.is_const else ""
        return f"{prefix}{self.cpp_name}"

    @property
    def cpp(self) -> str:
        """C++ spelling suitable for a declaration."""
        if self.kind == TypeKind.POINTER:
            return f"{self.inner.cpp if self.inner else 'void'}*{' const' if self.is_const else ''}"
        if self.kind == TypeKind.REFERENCE:
            return f"{self.inner.cpp if self.inner else 'void'}{'&&' if self.is_rvalue else '&'}"
        prefix = "const " if self.is_const else ""
        if self.is_generic:
            return f"{prefix}{self.cpp_name}<{', '.join(a.cpp for a in self.args)}>"
        return f"{prefix}{self.cpp_name}"

    def __str__(self) -> str:
        return self.signature

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name,
            "cpp_name": self.cpp_name,
            "signature": self.signature,
            "is_const": self.is_const,
            "key": self.key,
            "ownership": self.ownership.value if self.ownership else None,
            "qualifiers": self.qualifiers,
            "inner": self.inner.to_dict() if self.inner else None,
            "args": [a.to_dict() for a in self.args],
        }


def opaque(cpp_name: str, reason: str) -> TypeRef:
    return TypeRef(kind=TypeKind.OPAQUE, cpp_name=cpp_name, short="opaque", host="object", reason=reason)


# --------------------------
# Elements
# --------------------------


class ElementKind(Enum):
    CLASS = "class"
    ENUM = "enum"
    FUNC = "func"
    TYPEDEF = "typedef"
    CONST = "const"
    VECTOR = "vector"
    SMART_PTR = "smart_ptr"
    TUPLE = "tuple"


class FuncKind(Enum):
    FUNCTION = auto()
    METHOD = auto()
    STATIC_METHOD = auto()
    CONSTRUCTOR = auto()
    OPERATOR = auto()


class ArgUsage(Enum):
    BY_VALUE = "by_value"
    BY_REF = "by_ref"
    OUTPUT = "output"


@dataclass
class Element:
    """
    Common part of every classified declaration. `key` is the declaration's
    stable identity (USR, or a synthetic key for macro constants).
    """
    key: str
    name: str
    qualified_name: str
    entity: Optional[Entity] = field(default=None, repr=False, compare=False)
    module: str = ""
    location: Optional[SourceLocation] = None
    doc: str = ""

    kind: ElementKind = field(init=False, default=ElementKind.FUNC)

    def raw_types(self) -> Iterator[Tuple[Any, str, RawType]]:
        """Yield (owner, attribute, raw type) for every TypeRef slot to fill."""
        return iter(())

    def type_refs(self) -> Iterator[TypeRef]:
        return iter(())

    def __str__(self) -> str:
        return f"{self.kind.value} {self.qualified_name}"


@dataclass
class ParamElement:
    name: str
    raw_type: Optional[RawType] = field(default=None, repr=False)
    type_ref: Optional[TypeRef] = None
    usage: ArgUsage = ArgUsage.BY_VALUE
    default_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "usage": self.usage.value,
            "type": self.type_ref.to_dict() if self.type_ref else None,
            "default_value": self.default_value,
        }


@dataclass
class FuncElement(Element):
    func_kind: FuncKind = FuncKind.FUNCTION
    raw_return: Optional[RawType] = field(default=None, repr=False)
    return_type: Optional[TypeRef] = None
    params: List[ParamElement] = field(default_factory=list)
    is_const: bool = False
    is_virtual: bool = False
    is_pure_virtual: bool = False
    class_key: str = ""
    operator: str = ""

    def __post_init__(self) -> None:
        self.kind = ElementKind.FUNC

    def raw_types(self) -> Iterator[Tuple[Any, str, RawType]]:
        if self.raw_return is not None:
            yield self, "return_type", self.raw_return
        for p in self.params:
            if p.raw_type is not None:
                yield p, "type_ref", p.raw_type

    def type_refs(self) -> Iterator[TypeRef]:
        if self.return_type is not None:
            yield self.return_type
        for p in self.params:
            if p.type_ref is not None:
                yield p.type_ref

    @property
    def is_static(self) -> bool:
        return self.func_kind in (FuncKind.FUNCTION, FuncKind.STATIC_METHOD, FuncKind.CONSTRUCTOR)

    @property
    def overload_discriminator(self) -> str:
        """
        Parameter-type summary, e.g. "Mat_Size_f64"; "" for no parameters.
        Only meaningful once types are resolved.
        """
        parts = []
        for p in self.params:
            t = p.type_ref.canonical_base if p.type_ref is not None else None
            parts.append(t.short if t is not None and t.short else "arg")
        return "_".join(parts)

    @property
    def signature(self) -> str:
        params = ", ".join(str(p.type_ref) if p.type_ref else "?" for p in self.params)
        const_q = " const" if self.is_const else ""
        return f"{self.qualified_name}({params}){const_q}"

    def __str__(self) -> str:
        ret = str(self.return_type) if self.return_type is not None else "void"
        return f"func {self.signature} -> {ret}"


@dataclass
class FieldElement(Element):
    raw_type: Optional[RawType] = field(default=None, repr=False)
    type_ref: Optional[TypeRef] = None
    is_static: bool = False
    class_key: str = ""

    def __post_init__(self) -> None:
        # rendered as accessor functions on the owning class
        self.kind = ElementKind.FUNC

    def raw_types(self) -> Iterator[Tuple[Any, str, RawType]]:
        if self.raw_type is not None:
            yield self, "type_ref", self.raw_type

    def type_refs(self) -> Iterator[TypeRef]:
        if self.type_ref is not None:
            yield self.type_ref

    def __str__(self) -> str:
        return f"field {self.qualified_name}: {self.type_ref}"


@dataclass
class ClassElement(Element):
    """
    A class or struct. Bases are kept as a direct list and as a flattened
    ancestor list; no multi-level hierarchy is retained.
    """
    is_struct: bool = False
    is_abstract: bool = False
    bases: List[str] = field(default_factory=list)
    ancestors: List[str] = field(default_factory=list)
    methods: List[FuncElement] = field(default_factory=list)
    fields: List[FieldElement] = field(default_factory=list)
    has_public_destructor: bool = True
    pure_virtuals: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.kind = ElementKind.CLASS

    def raw_types(self) -> Iterator[Tuple[Any, str, RawType]]:
        for f in self.fields:
            yield from f.raw_types()
        for m in self.methods:
            yield from m.raw_types()

    def type_refs(self) -> Iterator[TypeRef]:
        for f in self.fields:
            yield from f.type_refs()
        for m in self.methods:
            yield from m.type_refs()


@dataclass
class EnumConstant:
    name: str
    value: int
    doc: str = ""


@dataclass
class EnumElement(Element):
    constants: List[EnumConstant] = field(default_factory=list)
    is_anonymous: bool = False

    def __post_init__(self) -> None:
        self.kind = ElementKind.ENUM


@dataclass
class TypedefElement(Element):
    raw_type: Optional[RawType] = field(default=None, repr=False)
    type_ref: Optional[TypeRef] = None

    def __post_init__(self) -> None:
        self.kind = ElementKind.TYPEDEF

    def raw_types(self) -> Iterator[Tuple[Any, str, RawType]]:
        if self.raw_type is not None:
            yield self, "type_ref", self.raw_type

    def type_refs(self) -> Iterator[TypeRef]:
        if self.type_ref is not None:
            yield self.type_ref


@dataclass
class ConstElement(Element):
    value: str = ""
    value_kind: str = "int"  # "int" | "float" | "string" | "bool"
    raw_type: Optional[RawType] = field(default=None, repr=False)
    type_ref: Optional[TypeRef] = None

    def __post_init__(self) -> None:
        self.kind = ElementKind.CONST

    def raw_types(self) -> Iterator[Tuple[Any, str, RawType]]:
        if self.raw_type is not None:
            yield self, "type_ref", self.raw_type

    def type_refs(self) -> Iterator[TypeRef]:
        if self.type_ref is not None:
            yield self.type_ref


# --------------------------
# Output
# --------------------------


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    message: str
    declaration: str = ""
    location: Optional[SourceLocation] = None
    severity: Severity = Severity.WARNING

    def __str__(self) -> str:
        where = f" at {self.location}" if self.location else ""
        what = f"{self.declaration}: " if self.declaration else ""
        return f"{what}{self.message}{where}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "declaration": self.declaration,
            "message": self.message,
            "location": str(self.location) if self.location else None,
        }


@dataclass(frozen=True)
class GeneratedType:
    """
    Final, render-ready descriptor. Exactly one exists per distinct source
    declaration (or generic instantiation) in a module run.
    """
    key: str
    identifier: str
    kind: ElementKind
    dependencies: Tuple[str, ...] = ()
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    debug: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "identifier": self.identifier,
            "kind": self.kind.value,
            "dependencies": list(self.dependencies),
            "debug": self.debug,
        }


@dataclass
class ModuleOutput:
    """
    Result of one module run: the ordered descriptors plus diagnostics.
    """
    module: str
    types: List[GeneratedType] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def resolve(self, key: str) -> Optional[GeneratedType]:
        for t in self.types:
            if t.key == key:
                return t
        return None

    @property
    def identifiers(self) -> List[str]:
        return [t.identifier for t in self.types]


# --------------------------
# Configuration
# --------------------------


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "") == "1"


@dataclass(frozen=True)
class GeneratorConfig:
    """
    Process-wide configuration, constructed once at startup and passed down.
    """
    header_dir: Path
    src_cpp_dir: Path
    out_dir: Path
    additional_include_dirs: Tuple[Path, ...] = ()
    clang_args: Tuple[str, ...] = ()
    debug: bool = False
    emit_debug: bool = False

    @staticmethod
    def from_env(
        header_dir: Path,
        src_cpp_dir: Path,
        out_dir: Path,
        additional_include_dirs: Sequence[Path] = (),
        clang_args: Sequence[str] = (),
        debug: bool = False,
    ) -> "GeneratorConfig":
        return GeneratorConfig(
            header_dir=Path(header_dir),
            src_cpp_dir=Path(src_cpp_dir),
            out_dir=Path(out_dir),
            additional_include_dirs=tuple(Path(p) for p in additional_include_dirs),
            clang_args=tuple(clang_args),
            debug=debug,
            emit_debug=_env_flag(settings.EMIT_DEBUG_ENV),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header_dir": str(self.header_dir),
            "src_cpp_dir": str(self.src_cpp_dir),
            "out_dir": str(self.out_dir),
            "additional_include_dirs": [str(p) for p in self.additional_include_dirs],
            "clang_args": list(self.clang_args),
            "debug": self.debug,
            "emit_debug": self.emit_debug,
        }


def freeze_payload(payload: Dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload))


__all__ = [
    "TypeKind",
    "Ownership",
    "TypeRef",
    "opaque",
    "ElementKind",
    "FuncKind",
    "ArgUsage",
    "Element",
    "ParamElement",
    "FuncElement",
    "FieldElement",
    "ClassElement",
    "EnumConstant",
    "EnumElement",
    "TypedefElement",
    "ConstElement",
    "Severity",
    "Diagnostic",
    "GeneratedType",
    "ModuleOutput",
    "GeneratorConfig",
    "freeze_payload",
]
