#!/usr/bin/env python3
"""
Per-module environment: export policy and the symbol table.

The symbol table maps a class/enum/typedef declaration key (clang USR) to a
SymbolEntry. TypeRefs store that key instead of an inlined copy of the class,
and anything that needs the class goes through `GeneratorEnv.symbol(key)`.

The environment is populated by the generator during setup and frozen before
classification starts; the resolver and the walker only read it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from . import settings
from .models import ArgUsage

logger = logging.getLogger(__name__)


class SymbolKind:
    CLASS = "class"
    ENUM = "enum"
    TYPEDEF = "typedef"


@dataclass(frozen=True)
class SymbolEntry:
    key: str
    kind: str
    qualified_name: str
    module: Optional[str]
    bases: Tuple[str, ...] = ()
    entity: Any = field(default=None, compare=False, repr=False)

    @property
    def leaf_name(self) -> str:
        return self.qualified_name.rsplit("::", 1)[-1]


@dataclass
class ExportDecision:
    exported: bool
    identifier: Optional[str] = None
    reason: str = ""


@dataclass
class ExportPolicy:
    """
    Include/exclude rules and manual renames for one module.

    - include: when non-empty, only qualified names matching one of these
      regexes are exported.
    - exclude: qualified names matching any of these regexes are skipped.
    - renames: qualified name, or "qualified_name(param summary)" for a single
      overload, to host identifier.
    - require_export_annotation: only declarations carrying one of the export
      annotations (CV_EXPORTS, CV_WRAP, ...) are exported.
    """
    include: List[Pattern[str]] = field(default_factory=list)
    exclude: List[Pattern[str]] = field(default_factory=list)
    renames: Dict[str, str] = field(default_factory=dict)
    arg_usage_overrides: Dict[Tuple[str, str], ArgUsage] = field(default_factory=dict)
    require_export_annotation: bool = False
    export_annotations: FrozenSet[str] = frozenset(settings.EXPORT_MACROS + settings.EXPORT_MACROS_WITH_ARG)

    @staticmethod
    def from_settings(require_export_annotation: bool = False) -> "ExportPolicy":
        return ExportPolicy(
            exclude=[re.compile(p) for p in settings.ELEMENT_EXCLUDE],
            renames=dict(settings.FUNC_RENAME),
            arg_usage_overrides={k: ArgUsage(v) for k, v in settings.ARG_OVERRIDE.items()},
            require_export_annotation=require_export_annotation,
        )

    def decide(self, qualified_name: str, annotations: Iterable[str] = (), discriminator: str = "") -> ExportDecision:
        for pat in self.exclude:
            if pat.search(qualified_name):
                return ExportDecision(False, reason=f"excluded by configuration ({pat.pattern})")
        if self.include and not any(pat.search(qualified_name) for pat in self.include):
            return ExportDecision(False, reason="not matched by any include rule")
        if self.require_export_annotation and not (set(annotations) & self.export_annotations):
            return ExportDecision(False, reason="no export annotation")
        return ExportDecision(True, identifier=self.rename_for(qualified_name, discriminator))

    def rename_for(self, qualified_name: str, discriminator: str = "") -> Optional[str]:
        specific = self.renames.get(f"{qualified_name}({discriminator})")
        if specific is not None:
            return specific
        return self.renames.get(qualified_name)

    def arg_usage(self, func_qualified_name: str, arg_name: str) -> Optional[ArgUsage]:
        return self.arg_usage_overrides.get((func_qualified_name, arg_name))


class GeneratorEnv:
    """
    Module configuration plus the read-only symbol table.
    """

    def __init__(self, module: str, policy: Optional[ExportPolicy] = None) -> None:
        self.module = module
        self.policy = policy or ExportPolicy.from_settings()
        self._symbols: Dict[str, SymbolEntry] = {}
        self._by_name: Dict[str, str] = {}
        self._frozen = False

    # ---- Setup (orchestrator only) ----

    def register(self, entry: SymbolEntry) -> None:
        if self._frozen:
            raise RuntimeError("GeneratorEnv is frozen; symbols can only be registered during setup")
        if entry.key in self._symbols:
            return
        self._symbols[entry.key] = entry
        self._by_name.setdefault(entry.qualified_name, entry.key)

    def freeze(self) -> None:
        self._frozen = True
        logger.debug("Symbol table for module %s frozen with %d entries", self.module, len(self._symbols))

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ---- Lookups ----

    def symbol(self, key: str) -> Optional[SymbolEntry]:
        return self._symbols.get(key)

    def key_for_name(self, qualified_name: str) -> Optional[str]:
        return self._by_name.get(qualified_name)

    def symbols(self) -> Mapping[str, SymbolEntry]:
        return dict(self._symbols)

    def ancestors(self, key: str) -> List[str]:
        """
        Every base class of `key`, flattened depth-first in declaration order
        with duplicates (diamonds) removed.
        """
        out: List[str] = []
        seen = {key}
        stack: List[str] = list(reversed(self._bases_of(key)))
        while stack:
            k = stack.pop()
            if k in seen:
                continue
            seen.add(k)
            out.append(k)
            stack.extend(reversed(self._bases_of(k)))
        return out

    def _bases_of(self, key: str) -> Sequence[str]:
        entry = self._symbols.get(key)
        return entry.bases if entry is not None else ()

    def is_in_module(self, key: str) -> bool:
        entry = self._symbols.get(key)
        return entry is not None and entry.module == self.module

    def __len__(self) -> int:
        return len(self._symbols)


__all__ = [
    "SymbolKind",
    "SymbolEntry",
    "ExportDecision",
    "ExportPolicy",
    "GeneratorEnv",
]
