#!/usr/bin/env python3
"""
Library version detection.

The version header is scanned line by line for
`#define CV_VERSION_<MAJOR|MINOR|REVISION> <value>` rather than parsed with
the front end.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from . import settings
from .errors import PreconditionError

logger = logging.getLogger(__name__)

_DEFINE_PREFIX = "#define CV_VERSION_"


def get_version_header(header_dir: Path) -> Optional[Path]:
    """First existing version header below `header_dir`, or None."""
    for candidate in settings.VERSION_HEADER_CANDIDATES:
        path = Path(header_dir) / candidate
        if path.is_file():
            return path
    return None


def parse_version(lines: Iterable[str]) -> Optional[str]:
    """
    Build "MAJOR.MINOR.REVISION" from the version defines in `lines`, in any
    order. Returns None if any of the three components is missing.
    """
    major = minor = revision = None
    for line in lines:
        line = line.strip()
        if not line.startswith(_DEFINE_PREFIX):
            continue
        parts = line[len(_DEFINE_PREFIX):].split()
        if len(parts) < 2:
            continue
        name, value = parts[0], parts[1]
        if name == "MAJOR":
            major = value
        elif name == "MINOR":
            minor = value
        elif name == "REVISION":
            revision = value
        if major is not None and minor is not None and revision is not None:
            return f"{major}.{minor}.{revision}"
    return None


def get_version_from_headers(header_dir: Path) -> Optional[str]:
    header = get_version_header(header_dir)
    if header is None:
        logger.debug("No version header found under %s", header_dir)
        return None
    with open(header, "r", encoding="utf-8", errors="replace") as f:
        return parse_version(f)


def require_version(header_dir: Path) -> str:
    """Like get_version_from_headers, but a missing version is a precondition failure."""
    header = get_version_header(header_dir)
    if header is None:
        raise PreconditionError(f"Cannot find OpenCV version header in {header_dir}")
    try:
        with open(header, "r", encoding="utf-8", errors="replace") as f:
            version = parse_version(f)
    except OSError as e:
        raise PreconditionError(f"Cannot read version header {header}: {e}") from e
    if version is None:
        raise PreconditionError(f"Cannot find OpenCV version in {header}")
    logger.info("Found OpenCV version %s in %s", version, header)
    return version


__all__ = [
    "get_version_header",
    "parse_version",
    "get_version_from_headers",
    "require_version",
]
