# tests/conftest.py
"""
Shared fixtures: the representative "core" translation unit from fakes.py,
a library header tree on disk, and logging isolation.
"""

import logging
from pathlib import Path

import pytest

from fakes import VERSION_HEADER, build_core_tu
from opencv_binding_generator.utils import PACKAGE_LOGGER


@pytest.fixture(autouse=True)
def restore_logging():
    """configure_logging() replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    pkg = logging.getLogger(PACKAGE_LOGGER)
    handlers, level = list(root.handlers), root.level
    pkg_level, pkg_propagate = pkg.level, pkg.propagate
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
    pkg.setLevel(pkg_level)
    pkg.propagate = pkg_propagate


@pytest.fixture
def core_tu():
    return build_core_tu()


@pytest.fixture
def header_tree(tmp_path: Path):
    """header_dir with a version header, plus empty src_cpp_dir and out_dir."""
    header_dir = tmp_path / "include"
    (header_dir / "opencv2" / "core").mkdir(parents=True)
    (header_dir / "opencv2" / "core" / "version.hpp").write_text(VERSION_HEADER, encoding="utf-8")
    src_cpp_dir = tmp_path / "src_cpp"
    src_cpp_dir.mkdir()
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    return header_dir, src_cpp_dir, out_dir
