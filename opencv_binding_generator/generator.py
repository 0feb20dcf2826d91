#!/usr/bin/env python3
"""
Generator orchestration.

Processing one library module runs strictly ordered phases:

0. setup: parse the module under the front-end lock and populate the
   environment's symbol table from the whole translation unit
1. classify: walk the module's declarations into Elements
2. resolve: fill every TypeRef slot on every Element (memoized)
3. export policy: accept, skip with a diagnostic, or rename each declaration
4. assemble: allocate identifiers and produce the ordered GeneratedTypes

Skipping in phase 3 is local to one declaration. Front-end contract
violations (no location/range, unreadable source) abort the whole run before
anything is handed to the Writer.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from . import settings
from .environment import ExportPolicy, GeneratorEnv, SymbolEntry, SymbolKind
from .memoize import MemoizeMap
from .models import (
    ArgUsage,
    ClassElement,
    ConstElement,
    Diagnostic,
    Element,
    ElementKind,
    EnumConstant,
    EnumElement,
    FieldElement,
    FuncElement,
    FuncKind,
    GeneratedType,
    GeneratorConfig,
    ModuleOutput,
    ParamElement,
    Severity,
    TypedefElement,
    TypeKind,
    TypeRef,
    freeze_payload,
)
from .name_pool import NamePool, sanitize_identifier
from .parsing.frontend import (
    FRONT_END_LOCK,
    ClangFrontEnd,
    Entity,
    FrontEnd,
    RawType,
    entity_file,
    export_macro_args,
    get_definition_text,
    get_location,
    qualified_name,
)
from .parsing.walker import EntityWalker, ModuleMembership, WalkAction, is_library_path, module_from_path
from .payload import PayloadBuilder
from .type_resolver import TypeResolver

logger = logging.getLogger(__name__)

_CLASS_KINDS = ("CLASS_DECL", "STRUCT_DECL")
_TEMPLATE_KINDS = ("CLASS_TEMPLATE", "CLASS_TEMPLATE_PARTIAL_SPECIALIZATION", "FUNCTION_TEMPLATE")
_TYPEDEF_KINDS = ("TYPEDEF_DECL", "TYPE_ALIAS_DECL")
_METHOD_KINDS = ("CXX_METHOD", "CONSTRUCTOR", "CONVERSION_FUNCTION")
_CONTAINER_KINDS = ("TRANSLATION_UNIT", "NAMESPACE", "LINKAGE_SPEC", "UNEXPOSED_DECL")

_INT_LITERAL = re.compile(r"^[-+]?(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)[uUlL]*$")
_FLOAT_LITERAL = re.compile(r"^[-+]?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?[fFlL]?$")
_STRING_LITERAL = re.compile(r'^"(?:[^"\\]|\\.)*"$')
_OPERATOR_NAME = re.compile(r"^operator\W")


def parse_literal(text: str) -> Optional[Tuple[str, str]]:
    """
    Classify a constant initializer as (value, value_kind) when it is a plain
    literal, optionally wrapped in parentheses. Returns None otherwise.
    """
    s = " ".join((text or "").split())
    while s.startswith("(") and s.endswith(")"):
        s = s[1:-1].strip()
    if not s:
        return None
    if s in ("true", "false"):
        return s, "bool"
    if _STRING_LITERAL.match(s):
        return s, "string"
    if _INT_LITERAL.match(s):
        return s.rstrip("uUlL") or "0", "int"
    if _FLOAT_LITERAL.match(s):
        return s.rstrip("fFlL"), "float"
    return None


def _annotations(entity: Entity) -> List[str]:
    return [c.spelling for c in entity.children() if c.kind == "ANNOTATE_ATTR"]


def _is_public(entity: Entity, in_struct: bool) -> bool:
    if entity.access == "PUBLIC":
        return True
    return entity.access in ("NONE", "INVALID") and in_struct


def _doc(entity: Entity) -> str:
    return (entity.raw_comment or "").strip()


def _default_value(param: Entity) -> Optional[str]:
    toks = param.tokens()
    if "=" not in toks:
        return None
    return " ".join(toks[toks.index("=") + 1:]) or None


def _decl_key(raw: RawType) -> Optional[str]:
    decl = raw.canonical().declaration()
    if decl is None:
        decl = raw.declaration()
    return decl.usr if decl is not None and decl.usr else None


# --------------------------
# One module run
# --------------------------


class ModuleGenerator:
    """
    State of a single module run: environment, caches, name pool and
    diagnostics. Owned by exactly one run and discarded afterwards.
    """

    def __init__(
        self,
        root: Entity,
        module: str,
        config: Optional[GeneratorConfig] = None,
        policy: Optional[ExportPolicy] = None,
        additional_include_dirs: Sequence[Path] = (),
    ) -> None:
        self.root = root
        self.module = module
        self.config = config
        self.emit_debug = bool(config and config.emit_debug)
        self.env = GeneratorEnv(module, policy)
        self.diagnostics: List[Diagnostic] = []
        self.resolver = TypeResolver(self.env, self.diagnostics)
        self.membership = ModuleMembership(module, additional_include_dirs)
        self.names = NamePool()
        self.elements: List[Element] = []
        self._element_keys: Set[str] = set()
        self._class_cache: MemoizeMap[str, ClassElement] = MemoizeMap()
        self._generated: MemoizeMap[str, GeneratedType] = MemoizeMap()
        self._generic_order: List[str] = []
        self._identifiers: Dict[str, str] = {}
        self._payloads = PayloadBuilder(module, self._host_of)

    # ---- Entry ----

    def run(self) -> ModuleOutput:
        self._populate_env()
        self.env.freeze()
        self._classify()
        self._resolve_types()
        accepted = self._apply_export_policy()
        types = self._assemble(accepted)
        logger.info(
            "Module %s: %d generated type(s), %d diagnostic(s)",
            self.module,
            len(types),
            sum(1 for d in self.diagnostics if d.severity == Severity.WARNING),
        )
        return ModuleOutput(module=self.module, types=types, diagnostics=list(self.diagnostics))

    # ---- Diagnostics ----

    def _skip(self, declaration: str, reason: str, location=None, severity: Severity = Severity.WARNING) -> None:
        diag = Diagnostic(message=reason, declaration=declaration, location=location, severity=severity)
        self.diagnostics.append(diag)
        if severity == Severity.WARNING:
            logger.warning("Skipping %s", diag)
        else:
            logger.debug("Skipping %s", diag)

    # ---- Phase 0: symbol table ----

    def _symbol_module(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        if self.membership(path):
            return self.module
        if is_library_path(path):
            return module_from_path(path)
        return None

    def _populate_env(self) -> None:
        stack: List[Iterator[Entity]] = [iter(self.root.children())]
        while stack:
            try:
                entity = next(stack[-1])
            except StopIteration:
                stack.pop()
                continue
            kind = entity.kind
            if kind in _CONTAINER_KINDS:
                stack.append(iter(entity.children()))
                continue
            path = entity_file(entity)
            if path is None or not (self.membership(path) or is_library_path(path)):
                continue
            if not entity.usr or not entity.spelling:
                continue
            module = self._symbol_module(path)
            if kind in _CLASS_KINDS:
                if not entity.is_definition():
                    continue
                bases = []
                for c in entity.children():
                    if c.kind == "CXX_BASE_SPECIFIER":
                        bkey = _decl_key(c.type())
                        if bkey:
                            bases.append(bkey)
                self.env.register(SymbolEntry(
                    key=entity.usr,
                    kind=SymbolKind.CLASS,
                    qualified_name=qualified_name(entity),
                    module=module,
                    bases=tuple(bases),
                    entity=entity,
                ))
                stack.append(iter(entity.children()))
            elif kind == "ENUM_DECL":
                if entity.is_anonymous():
                    continue
                self.env.register(SymbolEntry(entity.usr, SymbolKind.ENUM, qualified_name(entity), module, entity=entity))
            elif kind in _TYPEDEF_KINDS:
                self.env.register(SymbolEntry(entity.usr, SymbolKind.TYPEDEF, qualified_name(entity), module, entity=entity))

    # ---- Phase 1: classify ----

    def _classify(self) -> None:
        walker = EntityWalker(self.root, self.membership)
        walker.walk(self._visit)

    def _add(self, element: Element) -> None:
        if element.key in self._element_keys:
            logger.debug("Skipping redeclaration of '%s'", element.qualified_name)
            return
        self._element_keys.add(element.key)
        self.elements.append(element)

    def _visit(self, entity: Entity) -> WalkAction:
        kind = entity.kind
        if kind in _CLASS_KINDS:
            self._visit_class(entity)
        elif kind in _TEMPLATE_KINDS:
            self._skip(qualified_name(entity), "templates are not supported", entity.location(), Severity.INFO)
        elif kind == "ENUM_DECL":
            if entity.is_definition():
                self._add(self._classify_enum(entity))
        elif kind == "FUNCTION_DECL":
            self._add(self._classify_func(entity, None))
        elif kind in _TYPEDEF_KINDS:
            self._add(self._classify_typedef(entity))
        elif kind == "VAR_DECL":
            const = self._classify_var_const(entity)
            if const is not None:
                self._add(const)
        elif kind == "MACRO_DEFINITION":
            const = self._classify_macro_const(entity)
            if const is not None:
                self._add(const)
        return WalkAction.SKIP_CHILDREN

    def _visit_class(self, entity: Entity) -> None:
        if not entity.is_definition():
            logger.debug("Skipping forward declaration of '%s'", entity.spelling)
            return
        if not entity.spelling or entity.is_anonymous():
            logger.debug("Skipping anonymous class/struct declaration")
            return
        cls = self._class_element(entity.usr or qualified_name(entity), entity)
        if cls is None:
            return
        self._add(cls)
        in_struct = cls.is_struct

        def visit_nested(child: Entity) -> WalkAction:
            if child.kind in _CLASS_KINDS or child.kind in ("ENUM_DECL",) + _TYPEDEF_KINDS:
                if not _is_public(child, in_struct):
                    logger.info("Skipping non-public nested %s '%s'", child.kind.lower(), child.spelling or "<unnamed>")
                    return WalkAction.SKIP_CHILDREN
                return self._visit(child)
            return WalkAction.SKIP_CHILDREN

        EntityWalker.walk_children(entity, visit_nested)

    def _class_element(self, key: str, entity: Optional[Entity] = None) -> Optional[ClassElement]:
        """
        Classify a class once. The placeholder registered before its members are
        classified is what re-entrant requests (a class holding a container of
        pointers to itself, mutually referencing classes) receive.
        """
        if entity is None:
            sym = self.env.symbol(key)
            if sym is None or sym.kind != SymbolKind.CLASS or sym.entity is None:
                return None
            entity = sym.entity

        def placeholder() -> ClassElement:
            return ClassElement(
                key=key,
                name=entity.spelling,
                qualified_name=qualified_name(entity),
                entity=entity,
                module=self._symbol_module(entity_file(entity)) or "",
                location=get_location(entity),
                doc=_doc(entity),
                is_struct=entity.kind == "STRUCT_DECL",
            )

        return self._class_cache.get_or_fill(key, placeholder, lambda cls: self._fill_class(cls, entity))

    def _fill_class(self, cls: ClassElement, entity: Entity) -> None:
        sym = self.env.symbol(cls.key)
        cls.bases = list(sym.bases) if sym is not None else []
        cls.ancestors = self.env.ancestors(cls.key)

        pure: set = set()
        overridden: set = set()
        for child in entity.children():
            ck = child.kind
            public = _is_public(child, cls.is_struct)
            if ck in _METHOD_KINDS:
                if child.is_pure_virtual_method():
                    pure.add(child.spelling)
                elif child.is_virtual_method():
                    overridden.add(child.spelling)
                if public:
                    cls.methods.append(self._classify_func(child, cls))
            elif ck == "DESTRUCTOR":
                cls.has_public_destructor = public
            elif ck == "FIELD_DECL" and public:
                cls.fields.append(self._classify_field(child, cls, is_static=False))
            elif ck == "VAR_DECL" and public:
                cls.fields.append(self._classify_field(child, cls, is_static=True))
            elif ck == "FUNCTION_TEMPLATE" and public:
                self._skip(f"{cls.qualified_name}::{child.spelling}", "templates are not supported", child.location(), Severity.INFO)

        # Pure virtuals inherited from bases stay pure until overridden here.
        for base_key in cls.bases:
            base = self._class_element(base_key)
            if base is not None:
                pure |= set(base.pure_virtuals) - overridden
        cls.pure_virtuals = sorted(pure)
        cls.is_abstract = bool(pure)

    def _classify_func(self, entity: Entity, cls: Optional[ClassElement]) -> FuncElement:
        kind = entity.kind
        name = entity.spelling
        if kind == "CONSTRUCTOR":
            fkind = FuncKind.CONSTRUCTOR
        elif _OPERATOR_NAME.match(name) or kind == "CONVERSION_FUNCTION":
            fkind = FuncKind.OPERATOR
        elif kind == "CXX_METHOD":
            fkind = FuncKind.STATIC_METHOD if entity.is_static_method() else FuncKind.METHOD
        else:
            fkind = FuncKind.FUNCTION
        qname = f"{cls.qualified_name}::{name}" if cls is not None else qualified_name(entity)

        params: List[ParamElement] = []
        for i, arg in enumerate(entity.arguments()):
            params.append(ParamElement(
                name=arg.spelling or f"arg{i}",
                raw_type=arg.type(),
                default_value=_default_value(arg),
            ))

        is_method = kind in ("CXX_METHOD", "CONVERSION_FUNCTION")
        return FuncElement(
            key=entity.usr or f"{qname}/{entity.display_name}",
            name=name,
            qualified_name=qname,
            entity=entity,
            module=cls.module if cls is not None else self.module,
            location=get_location(entity),
            doc=_doc(entity),
            func_kind=fkind,
            raw_return=None if fkind == FuncKind.CONSTRUCTOR else entity.result_type(),
            params=params,
            is_const=is_method and entity.is_const_method(),
            is_virtual=is_method and entity.is_virtual_method(),
            is_pure_virtual=is_method and entity.is_pure_virtual_method(),
            class_key=cls.key if cls is not None else "",
            operator=name if fkind == FuncKind.OPERATOR else "",
        )

    def _classify_field(self, entity: Entity, cls: ClassElement, is_static: bool) -> FieldElement:
        return FieldElement(
            key=entity.usr or f"{cls.qualified_name}::{entity.spelling}",
            name=entity.spelling,
            qualified_name=f"{cls.qualified_name}::{entity.spelling}",
            entity=entity,
            module=cls.module,
            location=get_location(entity),
            doc=_doc(entity),
            raw_type=entity.type(),
            is_static=is_static,
            class_key=cls.key,
        )

    def _classify_enum(self, entity: Entity) -> EnumElement:
        anonymous = entity.is_anonymous() or not entity.spelling
        constants = []
        for c in entity.children():
            if c.kind == "ENUM_CONSTANT_DECL":
                value = c.enum_value()
                constants.append(EnumConstant(name=c.spelling, value=value if value is not None else 0, doc=_doc(c)))
        loc = get_location(entity)
        if anonymous:
            parent = entity.semantic_parent()
            scope = qualified_name(parent) if parent is not None and parent.kind != "TRANSLATION_UNIT" else ""
            name = f"unnamed_enum_{loc.line}"
            qname = f"{scope}::{name}" if scope else name
        else:
            name = entity.spelling
            qname = qualified_name(entity)
        return EnumElement(
            key=entity.usr or f"{loc.file}:{loc.line}",
            name=name,
            qualified_name=qname,
            entity=entity,
            module=self.module,
            location=loc,
            doc=_doc(entity),
            constants=constants,
            is_anonymous=anonymous,
        )

    def _classify_typedef(self, entity: Entity) -> TypedefElement:
        return TypedefElement(
            key=entity.usr or qualified_name(entity),
            name=entity.spelling,
            qualified_name=qualified_name(entity),
            entity=entity,
            module=self.module,
            location=get_location(entity),
            doc=_doc(entity),
            raw_type=entity.underlying_typedef_type(),
        )

    def _classify_var_const(self, entity: Entity) -> Optional[ConstElement]:
        raw = entity.type()
        if not raw.is_const:
            return None
        toks = entity.tokens()
        if "=" not in toks:
            return None
        init = " ".join(t for t in toks[toks.index("=") + 1:] if t != ";")
        lit = parse_literal(init)
        if lit is None:
            self._skip(qualified_name(entity), f"constant initializer is not a literal: {init}", entity.location(), Severity.INFO)
            return None
        value, value_kind = lit
        return ConstElement(
            key=entity.usr or qualified_name(entity),
            name=entity.spelling,
            qualified_name=qualified_name(entity),
            entity=entity,
            module=self.module,
            location=get_location(entity),
            doc=_doc(entity),
            value=value,
            value_kind=value_kind,
            raw_type=raw,
        )

    def _classify_macro_const(self, entity: Entity) -> Optional[ConstElement]:
        name = entity.spelling
        if not name or name.startswith("__"):
            return None
        text = get_definition_text(entity)
        body = text[len(name):] if text.startswith(name) else text
        if body.startswith("("):
            # function-like macro
            return None
        lit = parse_literal(body)
        if lit is None:
            return None
        value, value_kind = lit
        return ConstElement(
            key=entity.usr or f"macro:{name}",
            name=name,
            qualified_name=name,
            entity=entity,
            module=self.module,
            location=get_location(entity),
            doc=_doc(entity),
            value=value,
            value_kind=value_kind,
        )

    # ---- Phase 2: resolve ----

    def _resolve_types(self) -> None:
        for element in self.elements:
            for owner, attr, raw in element.raw_types():
                setattr(owner, attr, self.resolver.resolve(raw))
            if isinstance(element, ClassElement):
                for m in element.methods:
                    self._finish_func(m, element)
            elif isinstance(element, FuncElement):
                self._finish_func(element, None)

    def _finish_func(self, f: FuncElement, cls: Optional[ClassElement]) -> None:
        if f.func_kind == FuncKind.CONSTRUCTOR and cls is not None:
            leaf = sanitize_identifier(cls.name)
            f.return_type = TypeRef(kind=TypeKind.CLASS, cpp_name=cls.qualified_name, key=cls.key, short=leaf, host=leaf)
        for p in f.params:
            override = self.env.policy.arg_usage(f.qualified_name, p.name)
            p.usage = override if override is not None else arg_usage(p.type_ref)

    # ---- Phase 3: export policy ----

    def _apply_export_policy(self) -> List[Element]:
        accepted: List[Element] = []
        for element in self.elements:
            discriminator = element.overload_discriminator if isinstance(element, FuncElement) else ""
            decision = self.env.policy.decide(element.qualified_name, self._element_annotations(element), discriminator)
            if not decision.exported:
                self._skip(element.qualified_name, decision.reason, element.location)
                continue
            if isinstance(element, ClassElement):
                self._filter_class_members(element)
            else:
                reason = self._unsupported(element)
                if reason:
                    self._skip(element.qualified_name, reason, element.location)
                    continue
            accepted.append(element)
        return accepted

    def _element_annotations(self, element: Element) -> List[str]:
        if element.entity is None:
            return []
        return _annotations(element.entity)

    def _filter_class_members(self, cls: ClassElement) -> None:
        methods: List[FuncElement] = []
        for m in cls.methods:
            decision = self.env.policy.decide(m.qualified_name, self._element_annotations(m), m.overload_discriminator)
            if not decision.exported:
                self._skip(m.qualified_name, decision.reason, m.location)
                continue
            reason = self._unsupported(m)
            if reason:
                self._skip(m.qualified_name, reason, m.location)
                continue
            if m.func_kind == FuncKind.CONSTRUCTOR and cls.is_abstract:
                self._skip(m.qualified_name, "constructor of an abstract class", m.location, Severity.INFO)
                continue
            self._const_accessor_policy(m)
            methods.append(m)
        cls.methods = methods

        fields: List[FieldElement] = []
        for fe in cls.fields:
            decision = self.env.policy.decide(fe.qualified_name, ())
            if not decision.exported:
                self._skip(fe.qualified_name, decision.reason, fe.location)
                continue
            reason = self._unsupported_type(fe.type_ref, "field", by_value_check=True)
            if reason:
                self._skip(fe.qualified_name, reason, fe.location)
                continue
            fields.append(fe)
        cls.fields = fields

    def _const_accessor_policy(self, m: FuncElement) -> None:
        """
        A const method handing out a mutable reference/pointer (e.g. an element
        accessor on a const iterator) is exposed as returning a const one.
        """
        ret = m.return_type.unaliased if m.return_type is not None else None
        if not m.is_const or ret is None or ret.kind not in (TypeKind.REFERENCE, TypeKind.POINTER):
            return
        inner = ret.inner
        if inner is None or inner.is_const or inner.base.kind == TypeKind.PRIMITIVE:
            return
        logger.debug("Returning const view from const method %s", m.qualified_name)
        m.return_type = replace(ret, inner=replace(inner, is_const=True))

    def _unsupported(self, element: Element) -> Optional[str]:
        if isinstance(element, FuncElement):
            if element.func_kind == FuncKind.OPERATOR and element.operator not in settings.OPERATOR_NAMES:
                return f"unsupported operator '{element.operator}'"
            reason = self._unsupported_type(element.return_type, "return")
            if reason:
                return reason
            for p in element.params:
                reason = self._unsupported_type(p.type_ref, f"parameter '{p.name}'", by_value_check=True)
                if reason:
                    return reason
            return None
        if isinstance(element, TypedefElement):
            t = element.type_ref
            if t is not None and t.kind == TypeKind.FUNCTION:
                return None
            return self._unsupported_type(t, "aliased type")
        if isinstance(element, ConstElement) and element.type_ref is not None:
            return self._unsupported_type(element.type_ref, "constant type")
        return None

    def _unsupported_type(self, t: Optional[TypeRef], what: str, by_value_check: bool = False) -> Optional[str]:
        if t is None:
            return None
        for sub in t.walk():
            if sub.kind == TypeKind.OPAQUE:
                return f"unsupported {what} type '{t.cpp}': {sub.reason}"
            if sub.pointer_depth >= 2:
                return f"pointer-to-pointer {what} type '{t.cpp}' is not supported"
            if sub.kind == TypeKind.REFERENCE and sub.is_rvalue:
                return f"rvalue reference {what} type '{t.cpp}' is not supported"
            if sub.kind == TypeKind.FUNCTION:
                return f"callback {what} type '{t.cpp}' is not supported"
        if by_value_check:
            base = t.canonical_base
            if t.unaliased.kind in (TypeKind.CLASS, TypeKind.TYPEDEF) and base.kind == TypeKind.CLASS and base.key:
                target = self._class_element(base.key)
                if target is not None and target.is_abstract:
                    return f"{what} holds abstract class '{base.cpp_name}' by value"
        return None

    # ---- Phase 4: assemble ----

    def _host_of(self, t: TypeRef) -> str:
        if t.kind in (TypeKind.POINTER, TypeKind.REFERENCE):
            return t.host if t.host == "str" or t.inner is None else self._host_of(t.inner)
        if t.kind == TypeKind.TYPEDEF:
            if t.inner is not None and t.inner.kind not in (TypeKind.CLASS, TypeKind.ENUM):
                return self._host_of(t.inner)
            return self._identifiers.get(t.key, t.host)
        if t.kind in (TypeKind.CLASS, TypeKind.ENUM):
            return self._identifiers.get(t.key, t.host)
        if t.kind == TypeKind.VECTOR:
            return f"List[{self._host_of(t.args[0])}]"
        if t.kind == TypeKind.TUPLE:
            return f"Tuple[{', '.join(self._host_of(a) for a in t.args)}]"
        if t.kind == TypeKind.SMART_PTR:
            inner = self._host_of(t.args[0])
            return f"Optional[{inner}]" if t.ownership and t.ownership.value == "weak" else inner
        return t.host or "object"

    def _desired_name(self, element: Element) -> str:
        renamed = self.env.policy.rename_for(
            element.qualified_name,
            element.overload_discriminator if isinstance(element, FuncElement) else "",
        )
        if renamed:
            return renamed
        return element.name

    def _allocate_identifiers(self, accepted: Sequence[Element]) -> None:
        # Named types first so that every signature can refer to them.
        for element in accepted:
            if isinstance(element, (ClassElement, EnumElement, TypedefElement)):
                self._identifiers[element.key] = self.names.allocate(self.module, self._desired_name(element))
        for element in accepted:
            if isinstance(element, (FuncElement, ConstElement)):
                disc = element.overload_discriminator if isinstance(element, FuncElement) else None
                self._identifiers[element.key] = self.names.allocate(self.module, self._desired_name(element), disc)

    def _member_identifier(self, scope: str, m: FuncElement) -> str:
        renamed = self.env.policy.rename_for(m.qualified_name, m.overload_discriminator)
        if renamed:
            desired = renamed
        elif m.func_kind == FuncKind.CONSTRUCTOR:
            desired = "new"
        elif m.func_kind == FuncKind.OPERATOR:
            desired = settings.OPERATOR_NAMES.get(m.operator, m.operator)
        else:
            desired = m.name
        return self.names.allocate(scope, desired, m.overload_discriminator or None)

    def _dependencies(self, self_key: str, refs: Iterator[TypeRef], extra: Sequence[str] = ()) -> Tuple[str, ...]:
        deps: List[str] = []

        def add(k: str) -> None:
            if k and k != self_key and k not in deps:
                deps.append(k)

        for k in extra:
            add(k)
        for t in refs:
            for sub in t.walk():
                if sub.kind in (TypeKind.CLASS, TypeKind.ENUM, TypeKind.TYPEDEF) and sub.key:
                    add(sub.key)
                elif sub.is_generic:
                    add(self._generic_type(sub).key)
        return tuple(deps)

    def _generic_key(self, t: TypeRef) -> str:
        return f"generic:{replace(t, is_const=False).signature}"

    def _generic_type(self, t: TypeRef) -> GeneratedType:
        key = self._generic_key(t)

        def compute() -> GeneratedType:
            plain = replace(t, is_const=False)
            kind = {
                TypeKind.VECTOR: ElementKind.VECTOR,
                TypeKind.SMART_PTR: ElementKind.SMART_PTR,
                TypeKind.TUPLE: ElementKind.TUPLE,
            }[t.kind]
            deps = self._dependencies(key, iter(plain.args))
            identifier = self.names.allocate(self.module, plain.short)
            self._generic_order.append(key)
            return GeneratedType(
                key=key,
                identifier=identifier,
                kind=kind,
                dependencies=deps,
                payload=freeze_payload(self._payloads.generic_payload(plain, identifier)),
            )

        return self._generated.get_or_compute(key, compute)

    def _debug_annotation(self, element: Element) -> str:
        if not self.emit_debug or element.entity is None:
            return ""
        loc = get_location(element.entity)
        return f"// {element} {os.path.realpath(loc.file)}:{loc.line}"

    def _assemble(self, accepted: Sequence[Element]) -> List[GeneratedType]:
        self._allocate_identifiers(accepted)
        element_types: List[GeneratedType] = []
        for element in accepted:
            gt = self._generated.get_or_compute(element.key, lambda e=element: self._assemble_element(e))
            element_types.append(gt)
        generic_types = [self._generated.peek(k) for k in self._generic_order]
        return element_types + [g for g in generic_types if g is not None]

    def _assemble_element(self, element: Element) -> GeneratedType:
        identifier = self._identifiers[element.key]
        if isinstance(element, ClassElement):
            scope = f"{self.module}::{identifier}"
            methods = []
            for m in element.methods:
                mid = self._member_identifier(scope, m)
                methods.append(self._payloads.func_payload(m, mid, identifier))
            fields = []
            for fe in element.fields:
                getter = self.names.allocate(scope, fe.name)
                setter = None
                t = fe.type_ref
                if not fe.is_static and t is not None and not t.is_const:
                    setter = self.names.allocate(scope, f"set_{fe.name}")
                fields.append(self._payloads.field_payload(fe, getter, setter, identifier))
            bases = [self._identifiers.get(b) or self._leaf_for(b) for b in element.ancestors]
            payload = self._payloads.class_payload(element, identifier, methods, fields, bases)
            deps = self._dependencies(element.key, element.type_refs(), extra=element.ancestors)
        elif isinstance(element, EnumElement):
            scope = f"{self.module}::{identifier}"
            constants = [
                {"name": c.name, "identifier": self.names.allocate(scope, c.name), "value": c.value, "doc": c.doc}
                for c in element.constants
            ]
            payload = self._payloads.enum_payload(element, identifier, constants)
            deps = ()
        elif isinstance(element, FuncElement):
            payload = self._payloads.func_payload(element, identifier)
            deps = self._dependencies(element.key, element.type_refs())
        elif isinstance(element, TypedefElement):
            payload = self._payloads.typedef_payload(element, identifier)
            deps = self._dependencies(element.key, element.type_refs())
        elif isinstance(element, ConstElement):
            payload = self._payloads.const_payload(element, identifier)
            deps = ()
        else:  # pragma: no cover
            raise TypeError(f"Unknown element type {type(element).__name__}")
        return GeneratedType(
            key=element.key,
            identifier=identifier,
            kind=element.kind,
            dependencies=deps,
            payload=freeze_payload(payload),
            debug=self._debug_annotation(element),
        )

    def _leaf_for(self, key: str) -> str:
        sym = self.env.symbol(key)
        return sanitize_identifier(sym.leaf_name) if sym is not None else key


def arg_usage(t: Optional[TypeRef]) -> ArgUsage:
    """
    How an argument is used by the callee: output arguments are written to,
    by-ref arguments are only borrowed, everything else is copied.
    """
    if t is None:
        return ArgUsage.BY_VALUE
    for sub in (t, t.base):
        if sub.cpp_name in settings.OUTPUT_ARG_TYPES:
            return ArgUsage.OUTPUT
    base = t.canonical_base
    if base.cpp_name in settings.OUTPUT_ARG_TYPES:
        return ArgUsage.OUTPUT
    t = t.unaliased
    if t.kind == TypeKind.REFERENCE:
        inner = t.inner
        if inner is not None and not inner.is_const and base.kind in (TypeKind.PRIMITIVE, TypeKind.ENUM):
            return ArgUsage.OUTPUT
        return ArgUsage.BY_REF
    if t.kind == TypeKind.POINTER:
        inner = t.inner
        if inner is not None and not inner.is_const and base.kind in (TypeKind.PRIMITIVE, TypeKind.ENUM) and t.host != "str":
            return ArgUsage.OUTPUT
        return ArgUsage.BY_REF
    return ArgUsage.BY_VALUE


# --------------------------
# Public API
# --------------------------


class Generator:
    """
    Orchestrates module runs against a front end.

    Usage:
        gen = Generator(config)
        output = gen.process_module("core", writer)
    """

    def __init__(
        self,
        config: GeneratorConfig,
        front_end: Optional[FrontEnd] = None,
        policy: Optional[ExportPolicy] = None,
    ) -> None:
        self.config = config
        self.front_end: FrontEnd = front_end or ClangFrontEnd()
        self.policy = policy

    def clang_args(self) -> List[str]:
        args = list(settings.DEFAULT_CLANG_ARGS)
        args.append(f"-I{self.config.header_dir}")
        for d in self.config.additional_include_dirs:
            args.append(f"-I{d}")
        args.append(f"-I{self.config.src_cpp_dir}")
        args.extend(export_macro_args())
        args.extend(self.config.clang_args)
        return args

    def ephemeral_header_text(self, module: str) -> str:
        lines = [f"#include <{settings.LIBRARY_HEADER_DIR}/{module}.hpp>"]
        custom = self.config.src_cpp_dir / f"{module}.hpp"
        if custom.is_file():
            lines.append(f'#include "{custom.resolve()}"')
        return "\n".join(lines) + "\n"

    def generate(self, root: Entity, module: str) -> ModuleOutput:
        """Run all phases over an already parsed translation unit."""
        return ModuleGenerator(
            root,
            module,
            config=self.config,
            policy=self.policy or ExportPolicy.from_settings(),
            additional_include_dirs=self.config.additional_include_dirs,
        ).run()

    def process_module(self, module: str, writer=None) -> ModuleOutput:
        """
        Parse and generate one module, then hand the result to `writer`. The
        front end is not thread safe, so parsing and processing run under the
        process-wide lock; the writer only runs once everything succeeded.
        """
        logger.info("Generating module %s", module)
        with FRONT_END_LOCK:
            with tempfile.TemporaryDirectory(prefix="ocvpy-") as tmp:
                header = Path(tmp) / settings.EPHEMERAL_HEADER_NAME
                header.write_text(self.ephemeral_header_text(module), encoding="utf-8")
                root = self.front_end.parse(header, self.clang_args())
                output = self.generate(root, module)
        if writer is not None:
            writer.write(output)
        return output


__all__ = [
    "Generator",
    "ModuleGenerator",
    "arg_usage",
    "parse_literal",
]
