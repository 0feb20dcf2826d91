# tests/test_version.py
"""
Tests for opencv_binding_generator.version: version define scanning and the
precondition on a usable version header.
"""

import pytest

from fakes import VERSION_HEADER
from opencv_binding_generator.errors import PreconditionError
from opencv_binding_generator.version import (
    get_version_from_headers,
    get_version_header,
    parse_version,
    require_version,
)


class TestParseVersion:
    """parse_version()"""

    def test_defines_in_order(self):
        assert parse_version(VERSION_HEADER.splitlines()) == "4.5.1"

    def test_defines_in_any_order(self):
        lines = [
            "#define CV_VERSION_REVISION 7",
            "#define CV_VERSION_MAJOR 3",
            "#define CV_VERSION_MINOR 4",
        ]
        assert parse_version(lines) == "3.4.7"

    def test_missing_component(self):
        assert parse_version(["#define CV_VERSION_MAJOR 4", "#define CV_VERSION_MINOR 5"]) is None

    def test_unrelated_lines_are_ignored(self):
        lines = ["// #define CV_VERSION_MAJOR 9", "#define CV_VERSION_STATUS \"-dev\"", "#define CV_VERSION_MAJOR"]
        assert parse_version(lines) is None


class TestVersionHeader:
    """Version lookup below a header directory."""

    def test_found_in_header_tree(self, header_tree):
        header_dir, _, _ = header_tree
        assert get_version_header(header_dir) == header_dir / "opencv2" / "core" / "version.hpp"
        assert get_version_from_headers(header_dir) == "4.5.1"
        assert require_version(header_dir) == "4.5.1"

    def test_framework_layout(self, tmp_path):
        header = tmp_path / "opencv2.framework" / "Headers" / "core" / "version.hpp"
        header.parent.mkdir(parents=True)
        header.write_text(VERSION_HEADER, encoding="utf-8")
        assert get_version_from_headers(tmp_path) == "4.5.1"

    def test_missing_header(self, tmp_path):
        assert get_version_from_headers(tmp_path) is None
        with pytest.raises(PreconditionError, match="version header"):
            require_version(tmp_path)

    def test_header_without_version(self, tmp_path):
        header = tmp_path / "opencv2" / "core" / "version.hpp"
        header.parent.mkdir(parents=True)
        header.write_text("#pragma once\n", encoding="utf-8")
        with pytest.raises(PreconditionError, match="Cannot find OpenCV version"):
            require_version(tmp_path)
