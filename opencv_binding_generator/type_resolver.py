#!/usr/bin/env python3
"""
Type reference resolution.

`TypeResolver.resolve(raw)` turns a front-end type into a TypeRef. It is a
pure function of its input modulo the memoization cache, so each distinct
type signature is classified exactly once per module run and every
declaration using it shares the same TypeRef.

Resolution order:
1. qualifiers: pointers, lvalue/rvalue references and arrays are stripped
   first, each level keeping its own constness
2. sugar: elaborated names and typedefs; typedefs known to the symbol table
   are kept as TYPEDEF with their resolved underlying type
3. the canonical type is matched against the primitive table, builtin string
   records, classes/enums known to the symbol table (identity reference, never
   inlined), the closed set of generic shapes (arguments resolved
   recursively) and function prototypes
4. anything else is OPAQUE with a diagnostic

Classes are referenced by key and never descended into, so `A` holding
`std::vector<A*>` terminates without any recursion limit.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from . import settings
from .environment import GeneratorEnv, SymbolKind
from .memoize import MemoizeMap
from .models import Diagnostic, Ownership, Severity, TypeKind, TypeRef, opaque
from .name_pool import sanitize_identifier
from .parsing.frontend import Entity, RawType, entity_file, qualified_name
from .parsing.walker import is_library_path

logger = logging.getLogger(__name__)

_POINTER_KINDS = ("POINTER",)
_REFERENCE_KINDS = ("LVALUEREFERENCE", "RVALUEREFERENCE")
_ARRAY_KINDS = ("CONSTANTARRAY", "INCOMPLETEARRAY", "VARIABLEARRAY", "DEPENDENTSIZEDARRAY")
_FUNCTION_KINDS = ("FUNCTIONPROTO", "FUNCTIONNOPROTO")
_TERMINAL_KINDS = tuple(settings.PRIMITIVE_TYPES) + ("RECORD", "ENUM") + _FUNCTION_KINDS

_GENERIC_PREFIX = {
    "vector": "VectorOf",
    Ownership.SHARED: "PtrOf",
    Ownership.EXCLUSIVE: "UniquePtrOf",
    Ownership.WEAK: "WeakPtrOf",
    "tuple": "TupleOf",
}


def _bare(spelling: str) -> str:
    """Drop cv-qualifiers and elaboration keywords from a type spelling."""
    toks = [t for t in (spelling or "").replace("&", " ").split() if t not in ("const", "volatile", "class", "struct", "enum")]
    return " ".join(toks)


def _is_string_record(name: str) -> bool:
    return (
        name in settings.STRING_TYPES
        or name.startswith("std::basic_string<char")
        or name.startswith("std::__cxx11::basic_string<char")
        or name.startswith("std::__1::basic_string<char")
    )


class TypeResolver:
    """
    Usage:
        resolver = TypeResolver(env, diagnostics)
        type_ref = resolver.resolve(param_entity.type())
    """

    def __init__(self, env: GeneratorEnv, diagnostics: Optional[List[Diagnostic]] = None) -> None:
        self.env = env
        self.diagnostics: List[Diagnostic] = diagnostics if diagnostics is not None else []
        self.cache: MemoizeMap[Tuple[str, str, str, bool], TypeRef] = MemoizeMap()

    # ---- Public API ----

    def resolve(self, raw: RawType) -> TypeRef:
        canon = raw.canonical()
        key = (raw.kind, raw.spelling, canon.spelling, raw.is_const)
        return self.cache.get_or_compute(key, lambda: self._resolve(raw, canon))

    # ---- Internals ----

    def _resolve(self, raw: RawType, canon: RawType) -> TypeRef:
        kind = raw.kind
        if kind in _POINTER_KINDS:
            return self._pointer(raw)
        if kind in _REFERENCE_KINDS:
            inner = self.resolve(raw.pointee())
            return TypeRef(
                kind=TypeKind.REFERENCE,
                cpp_name=inner.cpp_name,
                is_const=raw.is_const,
                inner=inner,
                is_rvalue=kind == "RVALUEREFERENCE",
                short=inner.short,
                host=inner.host,
            )
        if kind in _ARRAY_KINDS:
            inner = self.resolve(raw.element_type())
            size = raw.element_count() if kind == "CONSTANTARRAY" else None
            return TypeRef(
                kind=TypeKind.POINTER,
                cpp_name=inner.cpp_name,
                is_const=raw.is_const,
                inner=inner,
                array_size=size if size is not None and size >= 0 else None,
                short=f"{inner.short}Array",
                host=f"List[{inner.host}]",
            )
        if kind == "ELABORATED":
            t = self.resolve(raw.named_type())
            return replace(t, is_const=True) if raw.is_const and not t.is_const else t
        if kind == "TYPEDEF":
            resolved = self._typedef(raw)
            if resolved is not None:
                return resolved

        if kind in _TERMINAL_KINDS:
            return self._terminal(raw)
        if canon.kind != kind or canon.spelling != raw.spelling:
            return self.resolve(canon)
        return self._opaque(raw.spelling, f"unsupported type kind {kind}")

    def _pointer(self, raw: RawType) -> TypeRef:
        inner = self.resolve(raw.pointee())
        if inner.kind == TypeKind.FUNCTION:
            # function pointers are modelled as the function type itself
            return inner
        base = inner.canonical_base
        if base.kind == TypeKind.PRIMITIVE and base.cpp_name == "char" and inner.kind != TypeKind.POINTER:
            short, host = "str", "str"
        else:
            short, host = inner.short, inner.host
        return TypeRef(
            kind=TypeKind.POINTER,
            cpp_name=inner.cpp_name,
            is_const=raw.is_const,
            inner=inner,
            short=short,
            host=host,
        )

    def _typedef(self, raw: RawType) -> Optional[TypeRef]:
        decl = raw.declaration()
        if decl is None:
            return None
        sym = self.env.symbol(decl.usr)
        if sym is None or sym.kind != SymbolKind.TYPEDEF:
            return None
        underlying = self.resolve(decl.underlying_typedef_type())
        leaf = sanitize_identifier(sym.leaf_name)
        if underlying.kind == TypeKind.OPAQUE and self._is_library_instantiation(decl.underlying_typedef_type()):
            # A declared alias of a library template instantiation
            # (e.g. cv::Size = cv::Size_<int>) becomes a nominal class.
            underlying = TypeRef(
                kind=TypeKind.CLASS,
                cpp_name=sym.qualified_name,
                key=sym.key,
                short=leaf,
                host=leaf,
            )
        return TypeRef(
            kind=TypeKind.TYPEDEF,
            cpp_name=sym.qualified_name,
            is_const=raw.is_const,
            inner=underlying,
            key=sym.key,
            short=leaf if underlying.kind != TypeKind.PRIMITIVE else underlying.short,
            host=underlying.host,
        )

    def _is_library_instantiation(self, raw: RawType) -> bool:
        canon = raw.canonical()
        if canon.kind != "RECORD" or not canon.template_arguments():
            return False
        decl = canon.declaration()
        path = entity_file(decl) if decl is not None else None
        return bool(path) and is_library_path(path)

    def _terminal(self, raw: RawType) -> TypeRef:
        kind = raw.kind
        prim = settings.PRIMITIVE_TYPES.get(kind)
        if prim is not None:
            cpp, short, host = prim
            return TypeRef(kind=TypeKind.PRIMITIVE, cpp_name=cpp, is_const=raw.is_const, short=short, host=host)
        if kind in _FUNCTION_KINDS:
            ret = self.resolve(raw.result_type())
            params = tuple(self.resolve(a) for a in raw.argument_types())
            return TypeRef(
                kind=TypeKind.FUNCTION,
                cpp_name=_bare(raw.spelling),
                inner=ret,
                args=params,
                short="Fn",
                host="Callable",
            )
        decl = raw.declaration()
        name = qualified_name(decl) if decl is not None else _bare(raw.spelling)
        if kind == "ENUM":
            return self._named(raw, decl, name, SymbolKind.ENUM, TypeKind.ENUM)

        # RECORD
        bare = _bare(raw.spelling)
        if _is_string_record(name) or _is_string_record(bare):
            return TypeRef(kind=TypeKind.PRIMITIVE, cpp_name="std::string", is_const=raw.is_const, short="String", host="str")
        targs = raw.template_arguments()
        if targs:
            return self._generic(raw, name, targs)
        return self._named(raw, decl, name, SymbolKind.CLASS, TypeKind.CLASS)

    def _named(self, raw: RawType, decl: Optional[Entity], name: str, sym_kind: str, kind: TypeKind) -> TypeRef:
        sym = self.env.symbol(decl.usr) if decl is not None else None
        if sym is None and decl is not None:
            # forward declarations carry the same USR as the definition; fall back
            # to the qualified name for front ends that don't
            alt = self.env.key_for_name(name)
            sym = self.env.symbol(alt) if alt else None
        if sym is None or sym.kind != sym_kind:
            return self._opaque(raw.spelling, f"unknown {sym_kind} '{name}'")
        leaf = sanitize_identifier(sym.leaf_name)
        return TypeRef(
            kind=kind,
            cpp_name=sym.qualified_name,
            is_const=raw.is_const,
            key=sym.key,
            short=leaf,
            host=leaf,
        )

    def _generic(self, raw: RawType, template_name: str, targs: List[RawType]) -> TypeRef:
        shape = settings.GENERIC_SHAPES.get(template_name)
        if shape is None:
            return self._opaque(raw.spelling, f"unsupported template instantiation '{template_name}'")
        container, ownership_name, arity = shape
        used = list(targs[:arity]) if arity else list(targs)
        if len(used) < max(arity, 1):
            return self._opaque(raw.spelling, f"malformed instantiation of '{template_name}'")
        args = tuple(self.resolve(a) for a in used)
        inner_shorts = "_".join(sanitize_identifier(a.short or "arg") for a in args)
        if container == "vector":
            return TypeRef(
                kind=TypeKind.VECTOR,
                cpp_name=template_name,
                is_const=raw.is_const,
                args=args,
                short=f"{_GENERIC_PREFIX['vector']}{inner_shorts}",
                host=f"List[{args[0].host}]",
            )
        if container == "smart_ptr":
            ownership = Ownership(ownership_name)
            host = args[0].host if ownership != Ownership.WEAK else f"Optional[{args[0].host}]"
            return TypeRef(
                kind=TypeKind.SMART_PTR,
                cpp_name=template_name,
                is_const=raw.is_const,
                args=args,
                ownership=ownership,
                short=f"{_GENERIC_PREFIX[ownership]}{inner_shorts}",
                host=host,
            )
        return TypeRef(
            kind=TypeKind.TUPLE,
            cpp_name=template_name,
            is_const=raw.is_const,
            args=args,
            short=f"{_GENERIC_PREFIX['tuple']}{inner_shorts}",
            host=f"Tuple[{', '.join(a.host for a in args)}]",
        )

    def _opaque(self, spelling: str, reason: str) -> TypeRef:
        logger.debug("Opaque type '%s': %s", spelling, reason)
        self.diagnostics.append(Diagnostic(message=reason, declaration=spelling, severity=Severity.INFO))
        return opaque(_bare(spelling), reason)


__all__ = ["TypeResolver"]
