# tests/test_generator.py
"""
Tests for opencv_binding_generator.generator: the phase pipeline over an
in-memory translation unit, export policy decisions, and the front-end lock /
writer hand-off in Generator.process_module().
"""

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from fakes import (
    CORE_HEADER,
    FakeEntity,
    FakeFrontEnd,
    base_specifier,
    build_core_tu,
    cls,
    constructor,
    enum,
    field,
    function,
    function_proto,
    int_,
    lref,
    method,
    namespace,
    param,
    prim,
    ptr,
    record,
    rref,
    translation_unit,
    typedef,
    typedef_type,
    void,
)
from opencv_binding_generator import settings
from opencv_binding_generator.errors import FrontEndContractError
from opencv_binding_generator.generator import Generator, ModuleGenerator, arg_usage, parse_literal
from opencv_binding_generator.models import (
    ArgUsage,
    ElementKind,
    GeneratorConfig,
    Severity,
    TypeKind,
    TypeRef,
)
from opencv_binding_generator.parsing.frontend import SourceLocation

NODE_KEY = "c:@CLASS_DECL@cv::Node"
VECTOR_OF_NODE_KEY = "generic:std::vector<cv::Node*>"


def _config(tmp_path: Path, emit_debug: bool = False) -> GeneratorConfig:
    return GeneratorConfig(
        header_dir=tmp_path / "include",
        src_cpp_dir=tmp_path / "src_cpp",
        out_dir=tmp_path / "out",
        emit_debug=emit_debug,
    )


def _warnings(output):
    return sorted(d.declaration for d in output.diagnostics if d.severity == Severity.WARNING)


def _by_identifier(output):
    return {t.identifier: t for t in output.types}


def _method(gt, name):
    (m,) = [m for m in gt.payload["methods"] if m["name"] == name]
    return m


class RecordingWriter:
    def __init__(self):
        self.outputs = []

    def write(self, output):
        self.outputs.append(output)


class OverlapFrontEnd:
    """Records how many parses are in flight at once."""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def parse(self, header, args):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.02)
        with self._guard:
            self.active -= 1
        return build_core_tu()


class TestCoreModule:
    """The representative core translation unit from fakes.build_core_tu()."""

    def test_generated_types_in_order(self, core_tu):
        output = ModuleGenerator(core_tu, "core").run()
        assert output.module == "core"
        assert output.identifiers == ["Node", "Mat", "Flags", "add", "add_f64_f64", "VectorOfNode"]
        assert [t.kind for t in output.types] == [
            ElementKind.CLASS,
            ElementKind.CLASS,
            ElementKind.ENUM,
            ElementKind.FUNC,
            ElementKind.FUNC,
            ElementKind.VECTOR,
        ]

    def test_self_referential_class_yields_one_descriptor(self, core_tu):
        output = ModuleGenerator(core_tu, "core").run()
        assert [t.key for t in output.types].count(NODE_KEY) == 1
        node = output.resolve(NODE_KEY)
        assert node.dependencies == (VECTOR_OF_NODE_KEY,)
        vec = output.resolve(VECTOR_OF_NODE_KEY)
        assert vec.identifier == "VectorOfNode"
        assert vec.dependencies == (NODE_KEY,)
        assert vec.payload["cpp"] == "std::vector<cv::Node*>"
        assert vec.payload["host"] == "List[Node]"

    def test_class_members(self, core_tu):
        types = _by_identifier(ModuleGenerator(core_tu, "core").run())
        node = types["Node"].payload
        assert [m["identifier"] for m in node["methods"]] == ["new", "size"]
        (children,) = node["fields"]
        assert (children["getter"], children["setter"]) == ("children", "set_children")
        assert children["extern_getter"] == "cv_core_Node_children"

        mat = types["Mat"]
        assert [m["identifier"] for m in mat.payload["methods"]] == ["default", "new_rows_cols", "total", "setTo"]
        assert mat.dependencies == (NODE_KEY,)
        set_to = _method(mat, "setTo")
        assert set_to["extern_name"] == "cv_core_Mat_setTo"
        assert set_to["params"][0]["usage"] == ArgUsage.BY_REF.value
        assert set_to["params"][0]["call_expr"] == "*static_cast<const cv::Node*>(value)"

    def test_overloads_are_disambiguated(self, core_tu):
        types = _by_identifier(ModuleGenerator(core_tu, "core").run())
        assert types["add"].payload["signature"] == "cv::add(int, int)"
        assert types["add_f64_f64"].payload["signature"] == "cv::add(double, double)"
        assert types["add_f64_f64"].payload["extern_name"] == "cv_core_add_f64_f64"

    def test_enum_constants(self, core_tu):
        flags = _by_identifier(ModuleGenerator(core_tu, "core").run())["Flags"]
        assert [(c["identifier"], c["value"]) for c in flags.payload["constants"]] == [("FLAG_A", 1), ("FLAG_B", 2)]
        assert flags.dependencies == ()

    def test_unsupported_declarations_are_skipped_with_warnings(self, core_tu):
        output = ModuleGenerator(core_tu, "core").run()
        assert _warnings(output) == ["cv::Mat::bad", "cv::weird"]
        (weird,) = [d for d in output.diagnostics if d.declaration == "cv::weird"]
        assert "pointer-to-pointer" in weird.message
        assert weird.location.line == 24
        assert any(d.severity == Severity.INFO and "std::map" in d.message for d in output.diagnostics)

    def test_other_module_is_excluded(self, core_tu):
        output = ModuleGenerator(core_tu, "core").run()
        assert "Filter" not in output.identifiers
        assert ModuleGenerator(build_core_tu(), "imgproc").run().identifiers == ["Filter"]

    def test_ordering_is_stable_across_runs(self):
        def snapshot():
            output = ModuleGenerator(build_core_tu(), "core").run()
            return [(t.key, t.identifier, t.dependencies) for t in output.types]

        assert snapshot() == snapshot()

    def test_debug_annotation(self, core_tu, tmp_path):
        output = ModuleGenerator(core_tu, "core", config=_config(tmp_path, emit_debug=True)).run()
        assert output.resolve(NODE_KEY).debug == f"// class cv::Node {os.path.realpath(CORE_HEADER)}:3"
        assert output.resolve(VECTOR_OF_NODE_KEY).debug == ""
        assert ModuleGenerator(build_core_tu(), "core").run().resolve(NODE_KEY).debug == ""

    def test_debug_annotation_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(settings.EMIT_DEBUG_ENV, "1")
        config = GeneratorConfig.from_env(tmp_path, tmp_path, tmp_path)
        assert config.emit_debug
        monkeypatch.setenv(settings.EMIT_DEBUG_ENV, "0")
        assert not GeneratorConfig.from_env(tmp_path, tmp_path, tmp_path).emit_debug


class TestClassShapes:
    """Abstract classes, inheritance and const accessors."""

    @staticmethod
    def _tu():
        algo = cls("Algorithm", line=1).add(
            constructor("Algorithm", line=2),
            method("clear", void(), line=3, pure=True),
        )
        algo_t = record(algo, spelling="cv::Algorithm")
        derived = cls("Derived", line=5).add(
            base_specifier(algo_t),
            constructor("Derived", line=6),
            method("clear", void(), line=7, virtual=True),
        )
        node = cls("Node", line=9)
        node_t = record(node, spelling="cv::Node")
        holder = cls("Holder", line=10).add(
            method("node", lref(node_t), line=11, const=True),
            method("mutable_node", lref(node_t), line=12),
        )
        slot = cls("Slot", line=14, struct=True).add(
            field("algo", algo_t, line=15),
            field("algo_ptr", ptr(algo_t), line=16),
        )
        return translation_unit(namespace(
            "cv",
            CORE_HEADER,
            algo,
            derived,
            node,
            holder,
            slot,
            function("use", void(), [param("a", algo_t)], line=20),
            function("use_ref", void(), [param("a", lref(algo_t))], line=21),
        ))

    def test_abstract_class_has_no_constructor(self):
        output = ModuleGenerator(self._tu(), "core").run()
        algo = _by_identifier(output)["Algorithm"]
        assert algo.payload["is_abstract"]
        assert [m["identifier"] for m in algo.payload["methods"]] == ["clear"]
        (diag,) = [d for d in output.diagnostics if d.declaration == "cv::Algorithm::Algorithm"]
        assert diag.severity == Severity.INFO

    def test_overriding_all_pure_virtuals_makes_class_concrete(self):
        derived = _by_identifier(ModuleGenerator(self._tu(), "core").run())["Derived"]
        assert not derived.payload["is_abstract"]
        assert derived.payload["bases"] == ["Algorithm"]
        assert [m["identifier"] for m in derived.payload["methods"]] == ["new", "clear"]
        assert derived.dependencies == ("c:@CLASS_DECL@cv::Algorithm",)

    def test_abstract_class_by_value_is_skipped(self):
        output = ModuleGenerator(self._tu(), "core").run()
        assert _warnings(output) == ["cv::Slot::algo", "cv::use"]
        assert "use_ref" in output.identifiers
        assert "use" not in output.identifiers

    def test_abstract_class_field_by_value_is_skipped(self):
        output = ModuleGenerator(self._tu(), "core").run()
        slot = _by_identifier(output)["Slot"]
        assert [f["getter"] for f in slot.payload["fields"]] == ["algo_ptr"]
        (diag,) = [d for d in output.diagnostics if d.declaration == "cv::Slot::algo"]
        assert diag.message == "field holds abstract class 'cv::Algorithm' by value"

    def test_const_method_returns_const_view(self):
        holder = _by_identifier(ModuleGenerator(self._tu(), "core").run())["Holder"]
        assert _method(holder, "node")["return"]["cpp"] == "const cv::Node&"
        assert _method(holder, "mutable_node")["return"]["cpp"] == "cv::Node&"


class TestDeclarationShapes:
    """Aliased references, redeclarations, nested and mutually referencing declarations."""

    def test_typedef_of_const_reference_is_borrowed(self):
        # typedef const _InputArray& InputArray; void blur(InputArray src);
        arr = cls("_InputArray", line=1)
        arr_t = record(arr, const=True, spelling="cv::_InputArray")
        input_array = typedef("InputArray", lref(arr_t), line=2)
        ns = namespace("cv", CORE_HEADER, arr, input_array)
        ns.add(
            function("blur", void(), [param("src", typedef_type(input_array))], line=3),
            function("current", typedef_type(input_array), line=4),
        )
        output = ModuleGenerator(translation_unit(ns), "core").run()
        types = _by_identifier(output)
        (src,) = types["blur"].payload["params"]
        assert src["usage"] == ArgUsage.BY_REF.value
        assert src["extern_type"] == "const void*"
        assert src["ctype"] == "ctypes.c_void_p"
        assert src["call_expr"] == "*static_cast<const cv::_InputArray*>(src)"
        assert src["type"]["cpp"] == "cv::InputArray"

        ret = types["current"].payload["return"]
        assert ret["extern_type"] == "void*"
        assert ret["is_handle"]
        assert not ret["owned"]
        assert _warnings(output) == []

    def test_redeclared_function_yields_one_descriptor(self):
        tu = translation_unit(namespace(
            "cv",
            CORE_HEADER,
            function("foo", void(), [param("a", int_())], line=1),
            function("foo", void(), [param("a", int_())], line=2),
        ))
        output = ModuleGenerator(tu, "core").run()
        assert [t.key for t in output.types] == ["c:@F@cv::foo(int)"]
        assert output.identifiers == ["foo"]

    def test_nested_declarations(self):
        mat = cls("Mat", line=1).add(
            enum("Depth", [("DEPTH_8U", 0)], line=2),
            cls("Impl", line=3, access="PRIVATE"),
        )
        output = ModuleGenerator(translation_unit(namespace("cv", CORE_HEADER, mat)), "core").run()
        assert output.identifiers == ["Mat", "Depth"]
        assert output.types[1].payload["qualified_name"] == "cv::Mat::Depth"

    def test_mutually_referencing_classes(self):
        a = cls("A", line=1)
        b = cls("B", line=5)
        a.add(field("peer", ptr(record(b, spelling="cv::B")), line=2))
        b.add(field("peer", ptr(record(a, spelling="cv::A")), line=6))
        output = ModuleGenerator(translation_unit(namespace("cv", CORE_HEADER, a, b)), "core").run()
        a_key, b_key = "c:@CLASS_DECL@cv::A", "c:@CLASS_DECL@cv::B"
        assert [t.key for t in output.types] == [a_key, b_key]
        assert output.resolve(a_key).dependencies == (b_key,)
        assert output.resolve(b_key).dependencies == (a_key,)
        (peer,) = output.resolve(a_key).payload["fields"]
        assert peer["type"]["host"] == "B"
        assert peer["param"]["call_expr"] == "static_cast<cv::B*>(val)"


class TestUnsupportedShapes:
    """Declarations that can't cross the boundary are skipped, never fatal."""

    @staticmethod
    def _tu():
        vec = cls("Vec", line=1)
        vec_t = record(vec, const=True, spelling="cv::Vec")
        vec.add(
            method("operator+", record(vec, spelling="cv::Vec"), [param("other", lref(vec_t))], line=2, const=True),
            method("operator<<", void(), [param("n", int_())], line=3),
        )
        return translation_unit(namespace(
            "cv",
            CORE_HEADER,
            vec,
            FakeEntity("CLASS_TEMPLATE", "Vec_", line=5),
            function("take", void(), [param("v", rref(int_()))], line=6),
            function("on_event", void(), [param("cb", ptr(function_proto(void(), [int_()])))], line=7),
        ))

    def test_skips(self):
        output = ModuleGenerator(self._tu(), "core").run()
        assert _warnings(output) == ["cv::Vec::operator<<", "cv::on_event", "cv::take"]
        messages = {d.declaration: d.message for d in output.diagnostics}
        assert "rvalue reference" in messages["cv::take"]
        assert "callback" in messages["cv::on_event"]
        assert messages["cv::Vec_"] == "templates are not supported"
        assert output.identifiers == ["Vec"]

    def test_operator_is_renamed(self):
        vec = _by_identifier(ModuleGenerator(self._tu(), "core").run())["Vec"]
        (op,) = vec.payload["methods"]
        assert op["identifier"] == "add"
        assert op["operator"] == "operator+"
        assert op["func_kind"] == "OPERATOR"


class TestConstants:
    """Literal constants from variables and object-like macros."""

    def test_var_constants(self):
        tu = translation_unit(namespace(
            "cv",
            CORE_HEADER,
            FakeEntity("VAR_DECL", "MAX_DIM", type=prim("INT", const=True), tokens=["const", "int", "MAX_DIM", "=", "32"]),
            FakeEntity("VAR_DECL", "TWO_PI", type=prim("DOUBLE", const=True), tokens=["const", "double", "TWO_PI", "=", "CV_PI", "*", "2"]),
            FakeEntity("VAR_DECL", "counter", type=int_(), tokens=["int", "counter", "=", "0"]),
        ))
        output = ModuleGenerator(tu, "core").run()
        assert output.identifiers == ["MAX_DIM"]
        const = output.types[0]
        assert const.kind == ElementKind.CONST
        assert (const.payload["value"], const.payload["value_kind"], const.payload["py_value"]) == ("32", "int", "32")
        assert [d.declaration for d in output.diagnostics if d.severity == Severity.INFO] == ["cv::TWO_PI"]

    def test_macro_constants_read_from_source(self, tmp_path):
        header = tmp_path / "include" / "opencv2" / "core.hpp"
        header.parent.mkdir(parents=True)
        text = "#define CV_PI 3.1415926535897932384626433832795\n#define CV_MAX(a,b) ((a)>(b)?(a):(b))\n"
        header.write_text(text, encoding="utf-8")

        def macro(name, line, start, end):
            return FakeEntity(
                "MACRO_DEFINITION",
                name,
                file=str(header),
                line=line,
                extent=(
                    SourceLocation(str(header), line, 9, start),
                    SourceLocation(str(header), line, 9 + end - start, end),
                ),
            )

        first_nl = text.index("\n")
        tu = translation_unit(
            macro("CV_PI", 1, text.index("CV_PI"), first_nl),
            macro("CV_MAX", 2, text.index("CV_MAX"), len(text) - 1),
            FakeEntity("MACRO_DEFINITION", "__OPENCV_BUILD", file=str(header), line=3),
        )
        output = ModuleGenerator(tu, "core").run()
        assert output.identifiers == ["CV_PI"]
        pi = output.types[0]
        assert pi.key == "c:macro@CV_PI"
        assert pi.payload["value_kind"] == "float"
        assert pi.payload["py_value"] == "3.1415926535897932384626433832795"

    def test_macro_without_range_aborts_the_run(self):
        tu = translation_unit(FakeEntity("MACRO_DEFINITION", "CV_PI", file=CORE_HEADER))
        with pytest.raises(FrontEndContractError, match="CV_PI"):
            ModuleGenerator(tu, "core").run()


class TestProcessModule:
    """Generator.process_module(): parse under the lock, then write."""

    def test_parses_ephemeral_header_and_writes(self, core_tu, tmp_path):
        config = _config(tmp_path)
        front_end = FakeFrontEnd(core_tu)
        writer = RecordingWriter()
        output = Generator(config, front_end=front_end).process_module("core", writer)

        assert writer.outputs == [output]
        [(header, args, text)] = front_end.calls
        assert header.name == settings.EPHEMERAL_HEADER_NAME
        assert not header.exists()
        assert text == "#include <opencv2/core.hpp>\n"
        assert f"-I{config.header_dir}" in args
        assert '-DCV_EXPORTS=__attribute__((annotate("CV_EXPORTS")))' in args

    def test_custom_header_is_included(self, core_tu, tmp_path):
        config = _config(tmp_path)
        config.src_cpp_dir.mkdir()
        (config.src_cpp_dir / "core.hpp").write_text("// additions\n", encoding="utf-8")
        front_end = FakeFrontEnd(core_tu)
        Generator(config, front_end=front_end).process_module("core")
        text = front_end.calls[0][2]
        assert text.splitlines()[1] == f'#include "{(config.src_cpp_dir / "core.hpp").resolve()}"'

    def test_contract_violation_writes_nothing(self, tmp_path):
        tu = translation_unit(FakeEntity("MACRO_DEFINITION", "CV_PI", file=CORE_HEADER))
        writer = RecordingWriter()
        with pytest.raises(FrontEndContractError):
            Generator(_config(tmp_path), front_end=FakeFrontEnd(tu)).process_module("core", writer)
        assert writer.outputs == []

    def test_concurrent_runs_are_serialized(self, tmp_path):
        front_end = OverlapFrontEnd()
        gen = Generator(_config(tmp_path), front_end=front_end)
        with ThreadPoolExecutor(max_workers=4) as pool:
            outputs = [f.result() for f in [pool.submit(gen.process_module, "core") for _ in range(4)]]
        assert front_end.max_active == 1
        assert {tuple(o.identifiers) for o in outputs} == {("Node", "Mat", "Flags", "add", "add_f64_f64", "VectorOfNode")}


class TestHelpers:
    """parse_literal() and arg_usage()"""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("5", ("5", "int")),
            ("(5)", ("5", "int")),
            ("-3", ("-3", "int")),
            ("0x1Fu", ("0x1F", "int")),
            ("1.5f", ("1.5", "float")),
            ("1e-3", ("1e-3", "float")),
            ('"abc"', ('"abc"', "string")),
            ("true", ("true", "bool")),
            ("CV_PI * 2", None),
            ("", None),
        ],
    )
    def test_parse_literal(self, text, expected):
        assert parse_literal(text) == expected

    def test_arg_usage(self):
        i32 = TypeRef(kind=TypeKind.PRIMITIVE, cpp_name="int", short="i32", host="int")
        mat = TypeRef(kind=TypeKind.CLASS, cpp_name="cv::Mat", key="mat", short="Mat", host="Mat")
        char = TypeRef(kind=TypeKind.PRIMITIVE, cpp_name="char", short="char", host="int")
        out_arr = TypeRef(kind=TypeKind.CLASS, cpp_name="cv::OutputArray", key="oa", short="OutputArray", host="OutputArray")

        assert arg_usage(None) == ArgUsage.BY_VALUE
        assert arg_usage(i32) == ArgUsage.BY_VALUE
        assert arg_usage(TypeRef(kind=TypeKind.REFERENCE, cpp_name="int", inner=i32)) == ArgUsage.OUTPUT
        const_i32 = TypeRef(kind=TypeKind.PRIMITIVE, cpp_name="int", is_const=True)
        assert arg_usage(TypeRef(kind=TypeKind.REFERENCE, cpp_name="int", inner=const_i32)) == ArgUsage.BY_REF
        assert arg_usage(TypeRef(kind=TypeKind.REFERENCE, cpp_name="cv::Mat", inner=mat)) == ArgUsage.BY_REF
        assert arg_usage(TypeRef(kind=TypeKind.POINTER, cpp_name="int", inner=i32)) == ArgUsage.OUTPUT
        assert arg_usage(TypeRef(kind=TypeKind.POINTER, cpp_name="char", inner=char, host="str")) == ArgUsage.BY_REF
        assert arg_usage(TypeRef(kind=TypeKind.REFERENCE, cpp_name="cv::OutputArray", inner=out_arr)) == ArgUsage.OUTPUT

    def test_arg_usage_looks_through_aliased_references(self):
        in_arr = TypeRef(kind=TypeKind.CLASS, cpp_name="cv::_InputArray", is_const=True, key="ia")
        out_arr = TypeRef(kind=TypeKind.CLASS, cpp_name="cv::_OutputArray", key="oa")
        i32 = TypeRef(kind=TypeKind.PRIMITIVE, cpp_name="int")

        def alias(name, inner):
            return TypeRef(kind=TypeKind.TYPEDEF, cpp_name=name, key=name, inner=TypeRef(kind=TypeKind.REFERENCE, cpp_name=inner.cpp_name, inner=inner))

        assert arg_usage(alias("cv::InputArray", in_arr)) == ArgUsage.BY_REF
        assert arg_usage(alias("cv::OutputArray", out_arr)) == ArgUsage.OUTPUT
        assert arg_usage(alias("cv::IntRef", i32)) == ArgUsage.OUTPUT
        assert arg_usage(TypeRef(kind=TypeKind.TYPEDEF, cpp_name="cv::Index", key="idx", inner=i32)) == ArgUsage.BY_VALUE
