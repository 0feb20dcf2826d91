#!/usr/bin/env python3
"""
Render payloads for GeneratedType descriptors.

The payload is the opaque, template-friendly part of a descriptor: C++
spellings, the `extern "C"` boundary types and conversion expressions, and
host (Python) type hints. Keeping it here leaves the generator free of any
knowledge about what the templates look like.

Boundary conventions:
- primitives and enums cross by value (enums as int)
- strings cross as `const char*`
- classes and generic containers cross as opaque `void*` handles
- references and pointers to primitives cross as pointers (output arguments)
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from . import settings
from .models import (
    ArgUsage,
    ClassElement,
    ConstElement,
    EnumElement,
    FieldElement,
    FuncElement,
    FuncKind,
    ParamElement,
    TypedefElement,
    TypeKind,
    TypeRef,
)
from .name_pool import reserved_rename, sanitize_identifier

HostOf = Callable[[TypeRef], str]

_HANDLE_KINDS = (TypeKind.CLASS, TypeKind.VECTOR, TypeKind.SMART_PTR, TypeKind.TUPLE)


def _is_string(t: TypeRef) -> bool:
    return t.kind == TypeKind.PRIMITIVE and t.cpp_name == "std::string"


def _is_c_string(t: TypeRef) -> bool:
    return t.kind == TypeKind.POINTER and t.inner is not None and t.inner.kind == TypeKind.PRIMITIVE and t.inner.cpp_name == "char"


def _strip_typedef(t: TypeRef) -> TypeRef:
    while t.kind == TypeKind.TYPEDEF and t.inner is not None:
        t = t.inner
    return t


def extern_ctype(extern_type: str) -> str:
    """ctypes spelling of an extern 'C' boundary type."""
    known = settings.EXTERN_CTYPES.get(extern_type)
    if known is not None:
        return known
    if extern_type.endswith("*"):
        return "ctypes.c_void_p"
    return "ctypes.c_int"


def python_literal(value: str, value_kind: str) -> str:
    """Python spelling of a C++ literal constant."""
    if value_kind == "bool":
        return "True" if value == "true" else "False"
    if value_kind == "int":
        s = value.lstrip("+")
        sign = ""
        if s.startswith("-"):
            sign, s = "-", s[1:]
        if s[:2].lower() == "0x":
            return f"{sign}{int(s, 16)}"
        if len(s) > 1 and s.startswith("0"):
            return f"{sign}{int(s, 8)}"
        return f"{sign}{int(s)}"
    return value


class PayloadBuilder:
    """
    Builds payload dicts. `host_of` maps a TypeRef to its host type hint using
    the identifiers allocated for this module.
    """

    def __init__(self, module: str, host_of: HostOf) -> None:
        self.module = module
        self.host_of = host_of

    # ---- Types ----

    def type_payload(self, t: Optional[TypeRef]) -> Dict[str, Any]:
        if t is None:
            return {"cpp": "void", "host": "None", "kind": "PRIMITIVE", "signature": "void", "is_void": True}
        return {
            "cpp": t.cpp,
            "host": self.host_of(t),
            "kind": t.kind.name,
            "signature": t.signature,
            "is_void": t.is_void,
        }

    def param_payload(self, p: ParamElement) -> Dict[str, Any]:
        t = p.type_ref
        if t is None:
            raise RuntimeError(f"Parameter '{p.name}' has no resolved type")
        extern_type, call_expr = self._param_boundary(t, p.name)
        out = p.to_dict()
        out.update({
            "type": self.type_payload(t),
            "py_name": reserved_rename(sanitize_identifier(p.name)),
            "extern_type": extern_type,
            "ctype": extern_ctype(extern_type),
            "call_expr": call_expr,
            "is_output": p.usage == ArgUsage.OUTPUT,
        })
        return out

    def _param_boundary(self, t: TypeRef, name: str):
        t = t.unaliased
        if _is_c_string(t):
            return "const char*", name
        level = t
        deref = False
        if t.kind in (TypeKind.REFERENCE, TypeKind.POINTER):
            deref = t.kind == TypeKind.REFERENCE
            level = t.inner if t.inner is not None else t
        base = _strip_typedef(level)
        if _is_string(base):
            if t.kind == TypeKind.REFERENCE and not level.is_const:
                return "std::string*", f"*{name}"
            return "const char*", f"std::string({name})"
        if base.kind in _HANDLE_KINDS:
            void_ptr = "const void*" if level.is_const else "void*"
            target = f"{'const ' if level.is_const else ''}{level.cpp.replace('const ', '', 1)}*"
            if t.kind == TypeKind.POINTER:
                return void_ptr, f"static_cast<{target}>({name})"
            return void_ptr, f"*static_cast<{target}>({name})"
        if base.kind == TypeKind.ENUM:
            if t.kind in (TypeKind.REFERENCE, TypeKind.POINTER):
                return f"{level.cpp}*", f"*{name}" if deref else name
            return "int", f"static_cast<{base.cpp_name}>({name})"
        if t.kind in (TypeKind.REFERENCE, TypeKind.POINTER):
            return f"{base.cpp}*", f"*{name}" if deref else name
        return base.cpp.replace("const ", "", 1), name

    def return_payload(self, t: Optional[TypeRef]) -> Dict[str, Any]:
        out = self._return_boundary(t)
        out["ctype"] = extern_ctype(out["extern_type"])
        out["owned"] = t is not None and t.unaliased.kind not in (TypeKind.REFERENCE, TypeKind.POINTER)
        return out

    def _return_boundary(self, t: Optional[TypeRef]) -> Dict[str, Any]:
        out = self.type_payload(t)
        out["is_handle"] = False
        if t is None or t.is_void:
            out.update({"extern_type": "void", "wrap": "{expr}"})
            return out
        t = t.unaliased
        level = t.inner if t.kind in (TypeKind.REFERENCE, TypeKind.POINTER) and t.inner is not None else t
        base = _strip_typedef(level)
        if _is_c_string(t):
            out.update({"extern_type": "const char*", "wrap": "{expr}"})
        elif _is_string(base):
            out.update({"extern_type": "char*", "wrap": "ocvpy_strdup(({expr}).c_str())"})
        elif base.kind in _HANDLE_KINDS:
            out["is_handle"] = True
            plain = level.cpp.replace("const ", "", 1)
            if t.kind == TypeKind.POINTER:
                out.update({"extern_type": "void*", "wrap": "static_cast<void*>(const_cast<%s*>({expr}))" % plain})
            elif t.kind == TypeKind.REFERENCE:
                out.update({"extern_type": "void*", "wrap": "static_cast<void*>(const_cast<%s*>(&({expr})))" % plain})
            else:
                out.update({"extern_type": "void*", "wrap": "static_cast<void*>(new %s({expr}))" % plain})
        elif base.kind == TypeKind.ENUM:
            out.update({"extern_type": "int", "wrap": "static_cast<int>({expr})"})
        elif t.kind in (TypeKind.REFERENCE, TypeKind.POINTER):
            out.update({"extern_type": base.cpp.replace("const ", "", 1), "wrap": "*({expr})" if t.kind == TypeKind.POINTER else "{expr}"})
        else:
            out.update({"extern_type": base.cpp.replace("const ", "", 1), "wrap": "{expr}"})
        return out

    # ---- Elements ----

    def func_payload(self, f: FuncElement, identifier: str, owner_identifier: str = "") -> Dict[str, Any]:
        prefix = f"{owner_identifier}_" if owner_identifier else ""
        return {
            "name": f.name,
            "identifier": identifier,
            "qualified_name": f.qualified_name,
            "extern_name": f"cv_{self.module}_{prefix}{identifier}",
            "func_kind": f.func_kind.name,
            "is_method": f.func_kind in (FuncKind.METHOD, FuncKind.OPERATOR),
            "is_static": f.is_static,
            "is_constructor": f.func_kind == FuncKind.CONSTRUCTOR,
            "is_const": f.is_const,
            "operator": f.operator,
            "doc": f.doc,
            "signature": f.signature,
            "return": self.return_payload(f.return_type),
            "params": [self.param_payload(p) for p in f.params],
        }

    def field_payload(self, fe: FieldElement, getter: str, setter: Optional[str], owner_identifier: str) -> Dict[str, Any]:
        t = fe.type_ref
        return {
            "name": fe.name,
            "getter": getter,
            "setter": setter,
            "is_static": fe.is_static,
            "extern_getter": f"cv_{self.module}_{owner_identifier}_{getter}",
            "extern_setter": f"cv_{self.module}_{owner_identifier}_{setter}" if setter else None,
            "type": self.type_payload(t),
            "return": self.return_payload(t),
            "param": self.param_payload(ParamElement(name="val", type_ref=t)) if setter else None,
        }

    def class_payload(
        self,
        c: ClassElement,
        identifier: str,
        methods: List[Dict[str, Any]],
        fields: List[Dict[str, Any]],
        base_identifiers: List[str],
    ) -> Dict[str, Any]:
        return {
            "name": c.name,
            "identifier": identifier,
            "qualified_name": c.qualified_name,
            "doc": c.doc,
            "is_struct": c.is_struct,
            "is_abstract": c.is_abstract,
            "has_public_destructor": c.has_public_destructor,
            "bases": base_identifiers,
            "extern_delete": f"cv_{self.module}_{identifier}_delete",
            "methods": methods,
            "fields": fields,
        }

    def enum_payload(self, e: EnumElement, identifier: str, constants: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "name": e.name,
            "identifier": identifier,
            "qualified_name": e.qualified_name,
            "doc": e.doc,
            "is_anonymous": e.is_anonymous,
            "constants": constants,
        }

    def typedef_payload(self, td: TypedefElement, identifier: str) -> Dict[str, Any]:
        return {
            "name": td.name,
            "identifier": identifier,
            "qualified_name": td.qualified_name,
            "doc": td.doc,
            "type": self.type_payload(td.type_ref),
        }

    def const_payload(self, c: ConstElement, identifier: str) -> Dict[str, Any]:
        return {
            "name": c.name,
            "identifier": identifier,
            "qualified_name": c.qualified_name,
            "doc": c.doc,
            "value": c.value,
            "value_kind": c.value_kind,
            "py_value": python_literal(c.value, c.value_kind),
        }

    def generic_payload(self, t: TypeRef, identifier: str) -> Dict[str, Any]:
        plain = t.cpp.replace("const ", "", 1)
        return {
            "identifier": identifier,
            "cpp": plain,
            "host": self.host_of(t),
            "ownership": t.ownership.value if t.ownership else None,
            "extern_prefix": f"cv_{self.module}_{identifier}",
            "args": [self.type_payload(a) for a in t.args],
            "elements": [self.return_payload(a) for a in t.args],
            "push": self.param_payload(ParamElement(name="val", type_ref=t.args[0])) if t.kind == TypeKind.VECTOR else None,
        }


__all__ = ["PayloadBuilder"]
