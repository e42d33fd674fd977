"""Tests for the header walker: filters, naming, macros, conversion."""

import pytest
from clang.cindex import CursorKind

from cinclude.errors import FilterPatternError
from cinclude.ir import (
    Array,
    Constant,
    CType,
    Enum,
    Function,
    FunctionPointer,
    Pointer,
    Struct,
    Typedef,
    Variable,
)
from cinclude.libclang import macro_is_function_like, parse_header
from cinclude.walker import HeaderWalker, compile_filter, is_filtered


class TestIsFiltered:
    def test_no_exclude_keeps_everything(self):
        assert not is_filtered("foo", False, include="bar", exclude=None)

    def test_exclude(self):
        assert is_filtered("foo_a", False, include=None, exclude="^foo")
        assert not is_filtered("bar", False, include=None, exclude="^foo")

    def test_include_rescues_excluded(self):
        assert not is_filtered("foo_keep", False, include="keep", exclude="^foo")
        assert is_filtered("foo_drop", False, include="keep", exclude="^foo")

    def test_enums_are_never_excluded(self):
        assert not is_filtered("foo_enum", True, include=None, exclude="^foo")

    def test_compiled_patterns(self):
        exclude = compile_filter("^foo", "exclude")
        assert is_filtered("foo_a", False, include=None, exclude=exclude)
        assert not is_filtered("foo_keep", False, include=compile_filter("keep", "include"), exclude=exclude)


class TestFilterPatterns:
    def test_none(self):
        assert compile_filter(None, "include") is None

    def test_invalid_pattern(self):
        with pytest.raises(FilterPatternError) as excinfo:
            compile_filter("(", "exclude")
        assert excinfo.value.option == "exclude"
        assert "'('" in str(excinfo.value)

    def test_walker_rejects_invalid_pattern_up_front(self, request_for):
        with pytest.raises(FilterPatternError):
            HeaderWalker(request_for("x.h", exclude="[a-"))
        with pytest.raises(FilterPatternError):
            HeaderWalker(request_for("x.h", include="*x"))


def _walk(path, request):
    """Parse one header and walk it."""
    walker = HeaderWalker(request)
    walker.walk(parse_header(path, ["-x", "c"]))
    return walker


def _by_name(walker):
    return {d.name: d for d in walker.declarations}


@pytest.mark.libclang
class TestWalker:
    def test_direct_macros(self, write_header, request_for):
        path = write_header('#define FOO 42\n#define BAR "hi"\n#define CH \'x\'\n#define NEG -3\n')
        decls = _by_name(_walk(path, request_for(path)))
        assert decls["FOO"] == Constant("FOO", 42, location=decls["FOO"].location)
        assert decls["BAR"].value == "hi"
        assert decls["CH"].value == "x"
        assert decls["NEG"].value == -3

    def test_macro_kinds(self, write_header, request_for):
        path = write_header(
            "#define BASE 4\n"
            "#define DERIVED (BASE * 2)\n"
            "#define ALIAS BASE\n"
            "#define MAX(a, b) ((a) > (b) ? (a) : (b))\n"
            "#define _PRIVATE 1\n"
            "#define EMPTY\n"
        )
        walker = _walk(path, request_for(path))
        names = set(_by_name(walker))
        assert "BASE" in names
        assert "MAX" not in names
        assert "_PRIVATE" not in names
        assert "EMPTY" not in names
        assert walker.opaque_macros == ["DERIVED", "ALIAS"]

    def test_function_like_needs_touching_paren(self, write_header, request_for):
        path = write_header(
            "#define SHIFT (1 << 3)\n"
            "#define NEG (-1)\n"
            "#define CALL(x) (x)\n"
            "#define SPACED (2)\n"
        )
        walker = _walk(path, request_for(path))
        decls = _by_name(walker)
        assert walker.opaque_macros == ["SHIFT"]
        assert decls["NEG"].value == -1
        assert decls["SPACED"].value == 2
        assert "CALL" not in decls

    def test_macro_is_function_like(self, write_header):
        path = write_header("#define F(x) x\n#define G (1)\n#define H 1\n#define E\n")
        tu = parse_header(path, ["-x", "c"])
        macros = {
            c.spelling: macro_is_function_like(c)
            for c in tu.cursor.get_children()
            if c.kind == CursorKind.MACRO_DEFINITION and c.location.file is not None
        }
        assert macros == {"F": True, "G": False, "H": False, "E": False}

    def test_anonymous_enums_are_numbered(self, write_header, request_for):
        path = write_header("enum { FIRST = 1 };\nenum { SECOND = 2, THIRD };\n")
        decls = _by_name(_walk(path, request_for(path)))
        first = decls["ANONYMOUS_ENUM_1"]
        second = decls["ANONYMOUS_ENUM_2"]
        assert isinstance(first, Enum)
        assert [(v.name, v.value) for v in first.values] == [("FIRST", 1)]
        assert [(v.name, v.value) for v in second.values] == [("SECOND", 2), ("THIRD", 3)]

    def test_typedef_names_anonymous_types(self, write_header, request_for):
        path = write_header("typedef struct { int x; int y; } Point;\ntypedef enum { RED, GREEN } color;\n")
        walker = _walk(path, request_for(path))
        decls = _by_name(walker)
        assert isinstance(decls["Point"], Struct)
        assert [f.name for f in decls["Point"].fields] == ["x", "y"]
        assert isinstance(decls["color"], Enum)
        assert not any(isinstance(d, Typedef) for d in walker.declarations)

    def test_struct_fields(self, write_header, request_for):
        path = write_header(
            "struct node {\n"
            "    int value;\n"
            "    struct node *next;\n"
            "    char name[16];\n"
            "    unsigned flag : 1;\n"
            "    int (*cb)(int, void *);\n"
            "    union { int i; float f; };\n"
            "};\n"
        )
        node = _by_name(_walk(path, request_for(path)))["node"]
        fields = {f.name: f for f in node.fields}
        assert fields["value"].type == CType("int")
        assert fields["next"].type == Pointer(CType("struct node"))
        assert fields["name"].type == Array(CType("char"), 16)
        assert fields["flag"].bit_width == 1
        assert isinstance(fields["cb"].type, FunctionPointer)
        assert node.anonymous == ["_anon0"]
        inline = fields["_anon0"].type
        assert isinstance(inline, Struct) and inline.is_union
        assert [f.name for f in inline.fields] == ["i", "f"]

    def test_forward_declarations(self, write_header, request_for):
        path = write_header("struct later;\nstruct opaque;\nstruct later { int v; };\nvoid use(struct opaque *);\n")
        walker = _walk(path, request_for(path))
        structs = [d for d in walker.declarations if isinstance(d, Struct)]
        assert [(s.name, s.is_opaque) for s in structs] == [("opaque", True), ("later", False)]

    def test_functions_and_variables(self, write_header, request_for):
        path = write_header(
            "int add(int a, int b);\n"
            "int logf_(const char *fmt, ...);\n"
            "static int hidden(void) { return 0; }\n"
            "extern int counter;\n"
        )
        decls = _by_name(_walk(path, request_for(path, library="libdemo")))
        add = decls["add"]
        assert isinstance(add, Function)
        assert [p.name for p in add.parameters] == ["a", "b"]
        assert add.library == "libdemo"
        assert not add.is_variadic
        assert decls["logf_"].is_variadic
        assert "hidden" not in decls
        assert isinstance(decls["counter"], Variable)

    def test_typedef_keeps_canonical(self, write_header, request_for):
        path = write_header("typedef unsigned int speed_t;\nspeed_t get_speed(void);\n")
        decls = _by_name(_walk(path, request_for(path)))
        assert decls["speed_t"].underlying_type == CType("unsigned int")
        assert decls["get_speed"].return_type == CType("speed_t", canonical=CType("unsigned int"))

    def test_filters(self, write_header, request_for):
        path = write_header("int foo_drop(void);\nint foo_keep(void);\nint bar(void);\nenum foo_enum { FOO_A };\n")
        request = request_for(path, include="keep", exclude="^foo")
        names = set(_by_name(_walk(path, request)))
        assert names == {"foo_keep", "bar", "foo_enum"}

    def test_names_are_unique(self, write_header, request_for):
        path = write_header("int twice(void);\nint twice(void);\n#define twice 3\n")
        walker = _walk(path, request_for(path))
        assert [d.name for d in walker.declarations] == ["twice"]

    def test_unsupported_type_is_logged(self, write_header, request_for, caplog):
        path = write_header(
            "typedef float v4 __attribute__((vector_size(16)));\n"
            "typedef float _v4p __attribute__((vector_size(16)));\n"
        )
        with caplog.at_level("INFO", logger="cinclude.walker"):
            _walk(path, request_for(path))
        assert "Can't wrap v4" in caplog.text
        assert "_v4p" not in caplog.text

    def test_quiet_suppresses_messages(self, write_header, request_for, caplog):
        path = write_header("typedef float v4 __attribute__((vector_size(16)));\n")
        with caplog.at_level("INFO", logger="cinclude.walker"):
            _walk(path, request_for(path, quiet=True))
        assert not [r for r in caplog.records if r.name == "cinclude.walker"]
