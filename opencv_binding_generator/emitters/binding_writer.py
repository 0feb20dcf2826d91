#!/usr/bin/env python3
"""
Writer for the generated bindings of one module.

Takes the ordered GeneratedType sequence of a module run and renders it with
Jinja2 into:

- <out_dir>/<module>.cpp            extern "C" shim over the C++ API
- <out_dir>/<module>.py             Python (ctypes) wrapper over the shim
- <out_dir>/<module>.types.txt      descriptor listing (debug mode only)

Each descriptor is rendered by the template named after its kind
(`cpp/<kind>.j2`, `py/<kind>.j2`) and the results are stitched together by
`cpp/module.j2` / `py/module.j2` in descriptor order. Rendering happens in
full before anything is written, so a template failure leaves no partial
output behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .. import settings
from ..models import GeneratedType, ModuleOutput
from ..utils import TemplateRenderer, ensure_dir, write_text

logger = logging.getLogger(__name__)


# --------------------------
# Configuration
# --------------------------


@dataclass(frozen=True)
class WriterConfig:
    """
    Template names used by the writer. Per-kind templates are looked up as
    `<cpp_dir>/<kind>.j2` and `<py_dir>/<kind>.j2`.
    """
    cpp_module_template: str = "cpp/module.j2"
    py_module_template: str = "py/module.j2"
    cpp_dir: str = "cpp"
    py_dir: str = "py"


# --------------------------
# Writer
# --------------------------


class BindingWriter:
    """
    Usage:
        writer = BindingWriter(src_cpp_dir, out_dir, "core", "4.5.1", debug=False)
        generator.process_module("core", writer)
    """

    def __init__(
        self,
        src_cpp_dir: Path,
        out_dir: Path,
        module: str,
        version: str,
        debug: bool = False,
        renderer: Optional[TemplateRenderer] = None,
        config: Optional[WriterConfig] = None,
    ) -> None:
        self.src_cpp_dir = Path(src_cpp_dir)
        self.out_dir = Path(out_dir)
        self.module = module
        self.version = version
        self.debug = debug
        self.renderer = renderer or TemplateRenderer()
        self.config = config or WriterConfig()
        self.written: List[Path] = []

    # ---- Paths ----

    @property
    def cpp_path(self) -> Path:
        return self.out_dir / f"{self.module}.cpp"

    @property
    def py_path(self) -> Path:
        return self.out_dir / f"{self.module}.py"

    @property
    def types_path(self) -> Path:
        return self.out_dir / f"{self.module}.types.txt"

    # ---- Public API ----

    def write(self, output: ModuleOutput) -> List[Path]:
        """
        Render every descriptor and write the module files. Returns the paths
        whose content changed.
        """
        if output.module != self.module:
            raise ValueError(f"Writer for module {self.module} received output for module {output.module}")

        cpp_units: List[str] = []
        py_units: List[str] = []
        for t in output.types:
            cpp_units.append(self._render_unit(self.config.cpp_dir, t))
            py_units.append(self._render_unit(self.config.py_dir, t))

        context = self._module_context(output, cpp_units, py_units)
        cpp_content = self.renderer.render(self.config.cpp_module_template, context)
        py_content = self.renderer.render(self.config.py_module_template, context)

        ensure_dir(self.out_dir)
        files = [(self.cpp_path, cpp_content), (self.py_path, py_content)]
        if self.debug:
            files.append((self.types_path, self._types_listing(output)))

        self.written = [path for path, content in files if write_text(path, content)]
        logger.info(
            "Wrote module %s: %d type(s), %d file(s) changed under %s",
            self.module,
            len(output.types),
            len(self.written),
            self.out_dir,
        )
        return self.written

    # ---- Internals ----

    def _render_unit(self, subdir: str, t: GeneratedType) -> str:
        context = {
            "t": t,
            "p": t.payload,
            "module": self.module,
            "debug": t.debug,
        }
        return self.renderer.render(f"{subdir}/{t.kind.value}.j2", context).rstrip("\n")

    def _module_context(self, output: ModuleOutput, cpp_units: List[str], py_units: List[str]) -> Dict[str, Any]:
        custom_header = self.src_cpp_dir / f"{self.module}.hpp"
        return {
            "module": self.module,
            "version": self.version,
            "library_header": f"{settings.LIBRARY_HEADER_DIR}/{self.module}.hpp",
            "custom_header": str(custom_header.resolve()) if custom_header.is_file() else None,
            "types": output.types,
            "cpp_units": cpp_units,
            "py_units": py_units,
            "identifiers": output.identifiers,
        }

    def _types_listing(self, output: ModuleOutput) -> str:
        lines = [f"# {self.module} {self.version}"]
        for t in output.types:
            deps = ", ".join(t.dependencies) if t.dependencies else "-"
            lines.append(f"{t.kind.value}\t{t.identifier}\t{t.key}\t{deps}")
        for d in output.diagnostics:
            lines.append(f"# {d.severity.value}: {d}")
        return "\n".join(lines) + "\n"


__all__ = [
    "WriterConfig",
    "BindingWriter",
]
