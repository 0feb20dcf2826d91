#!/usr/bin/env python3
"""
OpenCV Python binding generator

This entrypoint wires together:
- Parsing (libclang-based) of the module's headers behind the front-end lock
- Generation (classify, resolve, export policy, assemble) into an ordered
  sequence of GeneratedType descriptors
- Writing (Jinja2-based) of the extern "C" shim and the Python wrapper

Outputs:
- <out_dir>/<module>.cpp
- <out_dir>/<module>.py
- <optional> <out_dir>/<module>.types.txt (with --debug)
- <optional> <out_dir>/<module>.manifest.json (for introspection)

Usage (example):
  python -m opencv_binding_generator.generate_bindings \
    /usr/include/opencv4 src_cpp out core /usr/include/eigen3

Environment:
- OPENCV_BINDING_GENERATOR_EMIT_DEBUG=1 annotates every generated unit with
  its source declaration and file:line.

Notes:
- You need libclang and Jinja2 installed in your Python environment.
- For libclang discovery issues, ensure your environment can locate the libclang shared library.
"""

from __future__ import annotations

import argparse
import shlex
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import logging

logger = logging.getLogger(__name__)

from jinja2 import TemplateError

# Local modules
from .errors import BindingGeneratorError, PreconditionError
from .emitters.binding_writer import BindingWriter
from .generator import Generator
from .manifest import emit_manifest
from .models import GeneratorConfig, ModuleOutput
from .parsing.frontend import FrontEnd
from .utils import TemplateRenderer, configure_logging
from .version import require_version


# --------------------------
# Helpers
# --------------------------


def split_include_dirs(value: Optional[str]) -> List[Path]:
    """Comma separated list of directories; empty entries are dropped."""
    if not value:
        return []
    return [Path(s) for s in value.split(",") if s]


def check_preconditions(
    header_dir: Path,
    src_cpp_dir: Path,
    out_dir: Path,
    additional_include_dirs: Sequence[Path],
) -> Tuple[str, List[Path]]:
    """
    Validate the inputs before any generation work starts. Returns the library
    version and the additional include dirs that exist. Raises PreconditionError.
    """
    for name, path in (("header_dir", header_dir), ("src_cpp_dir", src_cpp_dir), ("out_dir", out_dir)):
        if not Path(path).is_dir():
            raise PreconditionError(f"{name} must exist and be a directory: {path}")

    version = require_version(header_dir)

    existing: List[Path] = []
    for path in additional_include_dirs:
        path = Path(path)
        if not path.exists():
            logger.info("Ignoring missing additional include dir %s", path)
            continue
        if not path.is_dir():
            raise PreconditionError(f"additional_include_dirs: {path} is not a directory")
        existing.append(path)
    return version, existing


def binding_generator_as_library_function(
    header_dir: Path,
    src_cpp_dir: Path,
    out_dir: Path,
    module: str,
    additional_include_dirs: Sequence[Path] = (),
    debug: bool = False,
    front_end: Optional[FrontEnd] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> ModuleOutput:
    """
    Generate bindings for one module. Any failure raises; nothing is written
    unless the whole module was generated.
    """
    version, include_dirs = check_preconditions(header_dir, src_cpp_dir, out_dir, additional_include_dirs)
    config = GeneratorConfig.from_env(header_dir, src_cpp_dir, out_dir, include_dirs, debug=debug)
    writer = BindingWriter(src_cpp_dir, out_dir, module, version, debug=debug, renderer=renderer)
    return Generator(config, front_end=front_end).process_module(module, writer)


# --------------------------
# CLI
# --------------------------


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate Python bindings for an OpenCV module")

    p.add_argument(
        "--debug",
        action="store_true",
        help="Also write a listing of the generated descriptors next to the bindings.",
    )
    p.add_argument("header_dir", help="Directory containing the opencv2/ headers.")
    p.add_argument("src_cpp_dir", help="Directory with custom <module>.hpp additions.")
    p.add_argument("out_dir", help="Output directory for the generated files.")
    p.add_argument("module", help="OpenCV module name (e.g. core, imgproc).")
    p.add_argument(
        "additional_include_dirs",
        nargs="?",
        default="",
        help="Comma separated list of extra include directories whose declarations are also generated.",
    )
    p.add_argument(
        "--clang-args",
        default="",
        help="Additional clang arguments (e.g., -DDEFINE=1 -std=c++17)",
    )
    p.add_argument(
        "--templates-dir",
        default=None,
        help="Optional templates directory overriding the package templates.",
    )
    p.add_argument(
        "--no-manifest",
        action="store_true",
        help="Do not emit the JSON manifest alongside generated sources.",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for DEBUG)."
    )
    p.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease verbosity (-q for WARNING, -qq for ERROR)."
    )
    p.add_argument(
        "--log-level",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "critical", "error", "warning", "info", "debug"],
        default=None,
        help="Explicit log level (overrides -v/-q)."
    )
    p.add_argument(
        "--log-format",
        default="%(levelname)s: %(message)s",
        help="Logging format string."
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Optional file to write logs to."
    )

    return p.parse_args(argv)


def _log_level(ns: argparse.Namespace) -> int:
    if ns.log_level:
        return getattr(logging, str(ns.log_level).upper(), logging.INFO)
    if ns.verbose >= 1:
        return logging.DEBUG
    if ns.quiet >= 2:
        return logging.ERROR
    if ns.quiet == 1:
        return logging.WARNING
    return logging.INFO


# --------------------------
# Main
# --------------------------


def main(argv: Optional[Sequence[str]] = None, front_end: Optional[FrontEnd] = None) -> int:
    ns = parse_args(argv)

    configure_logging(level=_log_level(ns), to_file=ns.log_file, fmt=ns.log_format)

    try:
        renderer = TemplateRenderer(Path(ns.templates_dir).resolve() if ns.templates_dir else None)
    except RuntimeError:
        logger.exception("Failed to initialize templating")
        return 1

    header_dir = Path(ns.header_dir)
    src_cpp_dir = Path(ns.src_cpp_dir)
    out_dir = Path(ns.out_dir)

    try:
        version, include_dirs = check_preconditions(
            header_dir, src_cpp_dir, out_dir, split_include_dirs(ns.additional_include_dirs)
        )
    except PreconditionError as e:
        logger.error("%s", e)
        return 2

    config = GeneratorConfig.from_env(
        header_dir,
        src_cpp_dir,
        out_dir,
        include_dirs,
        clang_args=shlex.split(ns.clang_args) if ns.clang_args else (),
        debug=ns.debug,
    )

    try:
        output = Generator(config, front_end=front_end).process_module(ns.module)
    except (BindingGeneratorError, RuntimeError):
        logger.exception("Failed to generate module %s", ns.module)
        return 3

    warnings = [d for d in output.diagnostics if d.severity.value == "warning"]
    if warnings:
        logger.info("%d declaration(s) skipped in module %s", len(warnings), ns.module)

    try:
        BindingWriter(src_cpp_dir, out_dir, ns.module, version, debug=ns.debug, renderer=renderer).write(output)
    except (OSError, RuntimeError, TemplateError):
        logger.exception("Failed to write bindings for module %s", ns.module)
        return 4

    if not ns.no_manifest:
        try:
            emit_manifest(config, output, version)
        except OSError:
            logger.exception("Failed to emit generation manifest")
            return 5

    return 0


if __name__ == "__main__":
    sys.exit(main())
