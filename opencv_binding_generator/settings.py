#!/usr/bin/env python3
"""
Static, per-library configuration for the OpenCV bindings.

Everything here is data: primitive and string mappings, the closed set of
generic container shapes the resolver understands, reserved-word
substitutions for the Python host side, export annotations, and the manual
rename/skip/argument-override tables keyed by C++ qualified name.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

# Directory below the header root that holds the library headers.
LIBRARY_HEADER_DIR = "opencv2"

# Alternative location of the version header in framework builds.
VERSION_HEADER_CANDIDATES: Tuple[str, ...] = (
    "opencv2/core/version.hpp",
    "opencv2.framework/Headers/core/version.hpp",
)

EPHEMERAL_HEADER_NAME = "ocvpy_ephemeral.hpp"

EMIT_DEBUG_ENV = "OPENCV_BINDING_GENERATOR_EMIT_DEBUG"

# --------------------------
# Front end
# --------------------------

DEFAULT_CLANG_ARGS: Tuple[str, ...] = (
    "-x",
    "c++",
    "-std=c++17",
    "-Wno-everything",
    "-DCV_DOXYGEN",
)

# Export macros are redefined as annotate attributes so that they survive
# preprocessing and show up as ANNOTATE_ATTR children of the declaration.
EXPORT_MACROS: Tuple[str, ...] = (
    "CV_EXPORTS",
    "CV_EXPORTS_W",
    "CV_EXPORTS_W_SIMPLE",
    "CV_EXPORTS_W_MAP",
    "CV_WRAP",
)

EXPORT_MACROS_WITH_ARG: Tuple[str, ...] = (
    "CV_EXPORTS_AS",
    "CV_WRAP_AS",
)

# --------------------------
# Types
# --------------------------

# clang TypeKind name -> (C++ spelling, short name used in derived identifiers, Python type)
PRIMITIVE_TYPES: Dict[str, Tuple[str, str, str]] = {
    "VOID": ("void", "void", "None"),
    "BOOL": ("bool", "bool", "bool"),
    "CHAR_S": ("char", "char", "int"),
    "CHAR_U": ("char", "char", "int"),
    "SCHAR": ("signed char", "i8", "int"),
    "UCHAR": ("unsigned char", "u8", "int"),
    "WCHAR": ("wchar_t", "wchar", "str"),
    "CHAR16": ("char16_t", "char16", "str"),
    "CHAR32": ("char32_t", "char32", "str"),
    "SHORT": ("short", "i16", "int"),
    "USHORT": ("unsigned short", "u16", "int"),
    "INT": ("int", "i32", "int"),
    "UINT": ("unsigned int", "u32", "int"),
    "LONG": ("long", "i64", "int"),
    "ULONG": ("unsigned long", "u64", "int"),
    "LONGLONG": ("long long", "i64", "int"),
    "ULONGLONG": ("unsigned long long", "u64", "int"),
    "FLOAT": ("float", "f32", "float"),
    "DOUBLE": ("double", "f64", "float"),
    "LONGDOUBLE": ("long double", "f128", "float"),
}

# Records that the host side treats as a builtin string.
STRING_TYPES: FrozenSet[str] = frozenset({
    "std::string",
    "std::basic_string<char>",
    "std::__cxx11::basic_string<char>",
    "cv::String",
})

# Qualified template name -> (container kind, smart pointer ownership or "",
# number of type arguments used; 0 means all of them)
GENERIC_SHAPES: Dict[str, Tuple[str, str, int]] = {
    "std::vector": ("vector", "", 1),
    "std::__1::vector": ("vector", "", 1),
    "cv::Ptr": ("smart_ptr", "shared", 1),
    "std::shared_ptr": ("smart_ptr", "shared", 1),
    "std::__1::shared_ptr": ("smart_ptr", "shared", 1),
    "std::unique_ptr": ("smart_ptr", "exclusive", 1),
    "std::__1::unique_ptr": ("smart_ptr", "exclusive", 1),
    "std::weak_ptr": ("smart_ptr", "weak", 1),
    "std::__1::weak_ptr": ("smart_ptr", "weak", 1),
    "std::pair": ("tuple", "", 2),
    "std::__1::pair": ("tuple", "", 2),
    "std::tuple": ("tuple", "", 0),
    "std::__1::tuple": ("tuple", "", 0),
}

# extern "C" boundary type -> ctypes type used by the Python wrapper.
EXTERN_CTYPES: Dict[str, str] = {
    "void": "None",
    "void*": "ctypes.c_void_p",
    "const void*": "ctypes.c_void_p",
    "char*": "ctypes.c_void_p",
    "const char*": "ctypes.c_char_p",
    "bool": "ctypes.c_bool",
    "char": "ctypes.c_char",
    "signed char": "ctypes.c_byte",
    "unsigned char": "ctypes.c_ubyte",
    "short": "ctypes.c_short",
    "unsigned short": "ctypes.c_ushort",
    "int": "ctypes.c_int",
    "unsigned int": "ctypes.c_uint",
    "long": "ctypes.c_long",
    "unsigned long": "ctypes.c_ulong",
    "long long": "ctypes.c_longlong",
    "unsigned long long": "ctypes.c_ulonglong",
    "float": "ctypes.c_float",
    "double": "ctypes.c_double",
    "long double": "ctypes.c_longdouble",
    "size_t": "ctypes.c_size_t",
}

# Parameter types that are written by the callee regardless of constness.
OUTPUT_ARG_TYPES: FrozenSet[str] = frozenset({
    "cv::_OutputArray",
    "cv::_InputOutputArray",
    "cv::OutputArray",
    "cv::InputOutputArray",
    "cv::OutputArrayOfArrays",
    "cv::InputOutputArrayOfArrays",
})

# --------------------------
# Naming
# --------------------------

# Host-language reserved words and their safe spelling.
RESERVED_RENAME: Dict[str, str] = {
    "False": "false_",
    "None": "none",
    "True": "true_",
    "and": "and_",
    "as": "as_",
    "assert": "assert_",
    "async": "async_",
    "await": "await_",
    "break": "break_",
    "class": "class_",
    "continue": "continue_",
    "def": "def_",
    "del": "del_",
    "elif": "elif_",
    "else": "else_",
    "except": "except_",
    "finally": "finally_",
    "for": "for_",
    "from": "from_",
    "global": "global_",
    "if": "if_",
    "import": "import_",
    "in": "in_",
    "is": "is_",
    "lambda": "lambda_",
    "nonlocal": "nonlocal_",
    "not": "not_",
    "or": "or_",
    "pass": "pass_",
    "raise": "raise_",
    "return": "return_",
    "try": "try_",
    "while": "while_",
    "with": "with_",
    "yield": "yield_",
    "type": "typ",
    "id": "id_",
    "len": "len_",
    "object": "object_",
    "print": "print_",
    "self": "self_",
}

# C++ operator spelling -> host method name.
OPERATOR_NAMES: Dict[str, str] = {
    "operator()": "call",
    "operator[]": "get",
    "operator=": "set",
    "operator==": "equals",
    "operator!=": "not_equals",
    "operator<": "less",
    "operator<=": "less_equal",
    "operator>": "greater",
    "operator>=": "greater_equal",
    "operator+": "add",
    "operator-": "sub",
    "operator*": "mul",
    "operator/": "div",
    "operator+=": "add_assign",
    "operator-=": "sub_assign",
    "operator*=": "mul_assign",
    "operator/=": "div_assign",
    "operator!": "not",
    "operator~": "invert",
    "operator&": "and",
    "operator|": "or",
    "operator^": "xor",
}

# --------------------------
# Manual overrides
# --------------------------

# Qualified name, or qualified name with a "(<param summary>)" suffix for a
# single overload, -> host identifier.
FUNC_RENAME: Dict[str, str] = {
    "cv::Mat::Mat()": "default",
    "cv::Mat::Mat(i32_i32_i32)": "new_rows_cols",
    "cv::Mat::Mat(Size_i32)": "new_size",
    "cv::imread": "imread",
    "cv::imwrite": "imwrite",
    "cv::resize": "resize",
    "cv::Algorithm::write(FileStorage_String)": "write_with_name",
}

# Regexes over qualified names that are never generated.
ELEMENT_EXCLUDE: Tuple[str, ...] = (
    r"^cv::internal::",
    r"^cv::detail::",
    r"^cv::cuda::",
    r"^cv::ocl::",
    r"^cv::ogl::",
    r"^cv::hal::",
    r"^cv::Mat::operator\(\)$",
    r"^cv::MatConstIterator::operator\[\]$",
    r"::operator new$",
    r"::operator delete$",
)

# (qualified function name, argument name) -> argument usage name.
ARG_OVERRIDE: Dict[Tuple[str, str], str] = {
    ("cv::minMaxLoc", "minVal"): "output",
    ("cv::minMaxLoc", "maxVal"): "output",
    ("cv::minMaxLoc", "minLoc"): "output",
    ("cv::minMaxLoc", "maxLoc"): "output",
    ("cv::Mat::copyTo", "m"): "output",
    ("cv::imdecode", "dst"): "output",
}


__all__ = [
    "LIBRARY_HEADER_DIR",
    "VERSION_HEADER_CANDIDATES",
    "EPHEMERAL_HEADER_NAME",
    "EMIT_DEBUG_ENV",
    "DEFAULT_CLANG_ARGS",
    "EXPORT_MACROS",
    "EXPORT_MACROS_WITH_ARG",
    "PRIMITIVE_TYPES",
    "STRING_TYPES",
    "GENERIC_SHAPES",
    "EXTERN_CTYPES",
    "OUTPUT_ARG_TYPES",
    "RESERVED_RENAME",
    "OPERATOR_NAMES",
    "FUNC_RENAME",
    "ELEMENT_EXCLUDE",
    "ARG_OVERRIDE",
]
