#!/usr/bin/env python3
"""
Utilities for templating (Jinja2), logging setup and file I/O for the OpenCV
binding generator.

This module provides:
- Logging configuration shared by the CLI and library callers.
- A layered Jinja2 environment: user templates first, package templates as
  fallback, with filters for the extern "C" shim and the Python wrapper.
- Atomic, idempotent file writing helpers (newline normalization, skip when
  unchanged) so regenerating unchanged input yields no filesystem churn.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, List, Mapping, Optional, TextIO, Union

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, StrictUndefined, TemplateNotFound

from .name_pool import sanitize_identifier

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "opencv_binding_generator"


def configure_logging(
    level: Optional[Union[int, str]] = None,
    *,
    to_file: Optional[Union[str, Path]] = None,
    fmt: Optional[str] = None,
    stream: Optional[TextIO] = None,
    propagate_package_loggers: bool = True,
) -> None:
    """
    Configure project-wide logging with consistent formatting and optional file output.

    Parameters:
    - level: int or name (e.g., 'INFO', 'DEBUG'). Defaults to INFO.
    - to_file: path to a log file; if provided, logs are also written there.
    - fmt: logging format string. Defaults to '%(levelname)s: %(message)s'.
    - stream: stream for console logs (defaults to sys.stderr).
    - propagate_package_loggers: whether the package logger propagates to root.
    """
    if level is None:
        resolved_level = logging.INFO
    elif isinstance(level, str):
        resolved_level = getattr(logging, level.upper(), logging.INFO)
    else:
        resolved_level = int(level)

    log_format = fmt or "%(levelname)s: %(message)s"
    stream = stream or sys.stderr

    # Reset root handlers for deterministic setup
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(resolved_level)

    handlers: List[logging.Handler] = []

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(resolved_level)
    stream_handler.setFormatter(logging.Formatter(log_format))
    handlers.append(stream_handler)

    if to_file:
        file_handler = logging.FileHandler(str(to_file), mode="w")
        file_handler.setLevel(resolved_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(file_handler)

    for h in handlers:
        root.addHandler(h)

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(resolved_level)
    pkg_logger.propagate = propagate_package_loggers


# ----------------------------------------
# Jinja environment helpers
# ----------------------------------------


class TemplateRenderer:
    """
    A thin wrapper over a Jinja2 Environment with layered loaders and useful filters.
    - templates_dir: user-provided templates directory (highest precedence)
    - package templates: opencv_binding_generator/templates
    """

    def __init__(self, templates_dir: Optional[Path] = None) -> None:
        loaders: List[Any] = []

        if templates_dir:
            p = Path(templates_dir)
            if p.is_dir():
                loaders.append(FileSystemLoader(str(p)))
            else:
                logger.warning("Templates directory %s does not exist; using package templates", p)

        pkg_templates_fs = Path(__file__).parent / "templates"
        try:
            loaders.append(PackageLoader(PACKAGE_LOGGER, "templates"))
        except ValueError:
            if pkg_templates_fs.is_dir():
                loaders.append(FileSystemLoader(str(pkg_templates_fs)))
        if not loaders:
            raise RuntimeError(f"No templates available: package templates missing under {pkg_templates_fs}")

        self.env = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            autoescape=False,
        )

        self._register_filters()
        self._register_globals()

    # ---- Filters and globals registration ----

    def _register_filters(self) -> None:
        self.env.filters["sanitize"] = sanitize_identifier
        self.env.filters["extern_params"] = _filter_extern_params
        self.env.filters["call_args"] = _filter_call_args
        self.env.filters["wrap"] = _filter_wrap
        self.env.filters["py_params"] = _filter_py_params
        self.env.filters["docstring"] = _filter_docstring
        self.env.filters["cpp_comment"] = _filter_cpp_comment

    def _register_globals(self) -> None:
        self.env.globals["len"] = len

    # ---- Rendering ----

    def has_template(self, template_name: str) -> bool:
        try:
            self.env.get_template(template_name)
        except TemplateNotFound:
            return False
        return True

    def render(self, template_name: str, context: Mapping[str, Any]) -> str:
        try:
            template = self.env.get_template(template_name)
        except TemplateNotFound as e:
            raise RuntimeError(f"Template not found: {template_name}") from e
        return template.render(**context)


# ----------------------------------------
# Template filter implementations
# ----------------------------------------


def _filter_extern_params(params: List[Mapping[str, Any]], self_type: Optional[str] = None) -> str:
    """
    Render an extern "C" parameter list, e.g. 'void* self, int rows, const char* name'.
    """
    parts: List[str] = []
    if self_type:
        parts.append(f"{self_type} self")
    for p in params:
        parts.append(f"{p['extern_type']} {p['name']}")
    return ", ".join(parts)


def _filter_call_args(params: List[Mapping[str, Any]]) -> str:
    """Argument list forwarding extern parameters to the C++ callee."""
    return ", ".join(p["call_expr"] for p in params)


def _filter_wrap(ret: Mapping[str, Any], expr: str) -> str:
    return ret["wrap"].replace("{expr}", expr)


def _filter_py_params(params: List[Mapping[str, Any]], with_self: bool = False) -> str:
    """Python wrapper parameters with host type hints, e.g. 'self, rows: int'."""
    parts: List[str] = ["self"] if with_self else []
    for p in params:
        parts.append(f"{p['py_name']}: \"{p['type']['host']}\"")
    return ", ".join(parts)


def _filter_docstring(text: str, indent: int = 4) -> str:
    """Turn a raw C++ doc comment into docstring body lines."""
    lines = []
    for raw in (text or "").splitlines():
        line = raw.strip()
        for marker in ("/**", "/*!", "*/", "///", "//!", "//"):
            if line.startswith(marker):
                line = line[len(marker):]
        if line.endswith("*/"):
            line = line[:-2]
        line = line.strip()
        if line.startswith("* "):
            line = line[2:]
        elif line == "*":
            line = ""
        lines.append(line.replace('"""', "'''").replace("\\", "\\\\"))
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    pad = " " * indent
    return "\n".join((pad + l) if l else "" for l in lines)


def _filter_cpp_comment(text: str) -> str:
    return " ".join((text or "").split())


# ----------------------------------------
# File I/O helpers
# ----------------------------------------


def ensure_dir(p: Path) -> None:
    """
    Ensure directory exists (mkdir -p).
    """
    Path(p).mkdir(parents=True, exist_ok=True)


def normalize_newlines(text: str) -> str:
    """
    Normalize to Unix newlines for reproducible diffs and consistent build environments.
    """
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _read_text_if_exists(path: Path, encoding: str = "utf-8") -> Optional[str]:
    try:
        with open(path, "r", encoding=encoding, newline="") as f:
            return f.read()
    except FileNotFoundError:
        return None


def atomic_write_text(
    path: Path,
    content: str,
    encoding: str = "utf-8",
    make_parents: bool = True,
    mode: Optional[int] = 0o644,
    log: bool = True,
    only_if_changed: bool = True,
) -> bool:
    """
    Write text atomically to the given path:
    - Optionally avoid writing if the content is unchanged.
    - Write to a temp file in the same directory and os.replace to final path.
    - Set POSIX file mode if provided.

    Returns True if a write occurred, False if skipped due to idempotency.
    """
    path = Path(path)
    content = normalize_newlines(content)
    if make_parents:
        ensure_dir(path.parent)

    if only_if_changed:
        old = _read_text_if_exists(path, encoding=encoding)
        if old is not None and normalize_newlines(old) == content:
            if log:
                logger.debug("[skip] %s (unchanged)", path)
            return False

    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="\n") as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        # Only left behind when something failed before the replace
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
    if log:
        logger.info("[write] %s", path)
    return True


def write_text(
    path: Path,
    content: str,
    encoding: str = "utf-8",
    dry_run: bool = False,
    log: bool = True,
) -> bool:
    """
    Convenience wrapper over atomic_write_text with optional dry-run support.
    """
    if dry_run:
        if log:
            logger.info("[dry-run] write %s", path)
        return False
    return atomic_write_text(path, content, encoding=encoding, log=log)


__all__ = [
    "PACKAGE_LOGGER",
    "TemplateRenderer",
    "configure_logging",
    "ensure_dir",
    "normalize_newlines",
    "atomic_write_text",
    "write_text",
]
