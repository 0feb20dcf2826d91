# tests/test_cli.py
"""
Tests for opencv_binding_generator.generate_bindings: precondition checks,
exit codes of main() and the library entry point, driven by a fake front end.
"""

import json
from pathlib import Path

import pytest

from fakes import CORE_HEADER, FakeEntity, FakeFrontEnd, translation_unit
from opencv_binding_generator.errors import PreconditionError
from opencv_binding_generator.generate_bindings import (
    binding_generator_as_library_function,
    check_preconditions,
    main,
    split_include_dirs,
)

CORE_IDENTIFIERS = ["Node", "Mat", "Flags", "add", "add_f64_f64", "VectorOfNode"]


def _argv(header_tree, *extra):
    header_dir, src_cpp_dir, out_dir = header_tree
    return [str(header_dir), str(src_cpp_dir), str(out_dir), "core", *extra]


def _broken_tu():
    return translation_unit(FakeEntity("MACRO_DEFINITION", "CV_PI", file=CORE_HEADER))


class TestSplitIncludeDirs:
    """split_include_dirs()"""

    def test_split(self):
        assert split_include_dirs("a,,b") == [Path("a"), Path("b")]

    @pytest.mark.parametrize("value", ["", None])
    def test_empty(self, value):
        assert split_include_dirs(value) == []


class TestCheckPreconditions:
    """check_preconditions()"""

    def test_returns_version_and_existing_include_dirs(self, header_tree, tmp_path):
        extra = tmp_path / "extra"
        extra.mkdir()
        version, dirs = check_preconditions(*header_tree, [extra, tmp_path / "missing"])
        assert version == "4.5.1"
        assert dirs == [extra]

    def test_include_dir_that_is_a_file(self, header_tree, tmp_path):
        not_a_dir = tmp_path / "file.h"
        not_a_dir.write_text("", encoding="utf-8")
        with pytest.raises(PreconditionError, match="not a directory"):
            check_preconditions(*header_tree, [not_a_dir])

    def test_missing_out_dir(self, header_tree, tmp_path):
        header_dir, src_cpp_dir, _ = header_tree
        with pytest.raises(PreconditionError, match="out_dir"):
            check_preconditions(header_dir, src_cpp_dir, tmp_path / "nowhere", [])


class TestMain:
    """main() exit codes and outputs."""

    def test_success(self, header_tree, core_tu):
        front_end = FakeFrontEnd(core_tu)
        assert main(_argv(header_tree), front_end=front_end) == 0

        out_dir = header_tree[2]
        assert (out_dir / "core.cpp").is_file()
        assert (out_dir / "core.py").is_file()
        assert not (out_dir / "core.types.txt").exists()
        manifest = json.loads((out_dir / "core.manifest.json").read_text(encoding="utf-8"))
        assert manifest["opencv_version"] == "4.5.1"
        assert manifest["module"] == "core"
        assert [t["identifier"] for t in manifest["types"]] == CORE_IDENTIFIERS
        assert len(front_end.calls) == 1

    def test_debug_without_manifest(self, header_tree, core_tu):
        argv = ["--debug", *_argv(header_tree), "--no-manifest"]
        assert main(argv, front_end=FakeFrontEnd(core_tu)) == 0
        out_dir = header_tree[2]
        assert (out_dir / "core.types.txt").is_file()
        assert not (out_dir / "core.manifest.json").exists()

    def test_clang_args_are_forwarded(self, header_tree, core_tu):
        front_end = FakeFrontEnd(core_tu)
        assert main(_argv(header_tree, "--clang-args=-DFOO=1 -std=c++17"), front_end=front_end) == 0
        args = front_end.calls[0][1]
        assert args[-2:] == ["-DFOO=1", "-std=c++17"]

    def test_missing_header_dir(self, header_tree, tmp_path):
        _, src_cpp_dir, out_dir = header_tree
        argv = [str(tmp_path / "nope"), str(src_cpp_dir), str(out_dir), "core"]
        assert main(argv, front_end=FakeFrontEnd(_broken_tu())) == 2

    def test_missing_version(self, tmp_path):
        dirs = [tmp_path / name for name in ("include", "src_cpp", "out")]
        for d in dirs:
            d.mkdir()
        assert main([*map(str, dirs), "core"], front_end=FakeFrontEnd(_broken_tu())) == 2

    def test_include_dir_that_is_a_file(self, header_tree, tmp_path):
        not_a_dir = tmp_path / "file.h"
        not_a_dir.write_text("", encoding="utf-8")
        assert main(_argv(header_tree, str(not_a_dir)), front_end=FakeFrontEnd(_broken_tu())) == 2

    def test_generation_failure_writes_nothing(self, header_tree):
        assert main(_argv(header_tree), front_end=FakeFrontEnd(_broken_tu())) == 3
        assert list(header_tree[2].iterdir()) == []

    def test_log_file(self, header_tree, core_tu, tmp_path):
        log_file = tmp_path / "gen.log"
        argv = _argv(header_tree, "--log-file", str(log_file), "--log-level", "debug", "--no-manifest")
        assert main(argv, front_end=FakeFrontEnd(core_tu)) == 0
        assert "Generating module core" in log_file.read_text(encoding="utf-8")


class TestLibraryFunction:
    """binding_generator_as_library_function()"""

    def test_generates_and_writes(self, header_tree, core_tu):
        output = binding_generator_as_library_function(*header_tree, "core", debug=True, front_end=FakeFrontEnd(core_tu))
        assert output.identifiers == CORE_IDENTIFIERS
        out_dir = header_tree[2]
        for name in ("core.cpp", "core.py", "core.types.txt"):
            assert (out_dir / name).is_file()

    def test_precondition_failure(self, header_tree, tmp_path):
        header_dir, src_cpp_dir, _ = header_tree
        with pytest.raises(PreconditionError):
            binding_generator_as_library_function(header_dir, src_cpp_dir, tmp_path / "nope", "core")
