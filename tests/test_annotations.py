# tests/test_annotations.py
"""
Tests for the annotation parser: marker argument list → records and
side tables.
"""

import pytest

from spanify.annotations import (
    find_foreign_spans,
    is_foreign_span,
    parse_annotations,
    parse_position,
    parse_type_mappings,
)
from spanify.errors import (
    SpanifyDiagnosticError,
    SpanifyErrorCodes as C,
    UnimplementedFeatureError,
)
from spanify.grammar import (
    parse_attribute_arguments,
    parse_decl,
    parse_expr,
    parse_marker_arguments,
)
from spanify.model import (
    CountedBy,
    DependenceType,
    ForeignSpan,
    LifetimeDependence,
    Position,
)
from spanify.syntax import BinaryExpr, DeclRef, IntegerLiteral, StringLiteral

HEAD = "func myFunc(_ ptr: UnsafePointer<CInt>, _ len: CInt) -> UnsafePointer<CInt>"
SPAN_MAPPING = '["SpanOfInt": "std.__1.span<__cxxConst<CInt>, 18446744073709551615>"]'


def _parse(arguments, head=HEAD):
    return parse_annotations(parse_attribute_arguments(arguments), parse_decl(head))


class TestParsePosition:

    def test_param(self):
        assert parse_position(parse_expr(".param(2)")) == Position.param(2)

    def test_return_and_self(self):
        assert parse_position(parse_expr(".return")) is Position.RETURN
        assert parse_position(parse_expr(".self")) is Position.SELF

    def test_unknown_case(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            parse_position(parse_expr(".foo"))
        assert exc_info.value.message == "expected 'param', 'return', or 'self', got 'foo'"
        assert exc_info.value.code == C.INVALID_POSITION

    def test_param_arity(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            parse_position(parse_expr(".param(1, 2)"))
        assert exc_info.value.message == (
            "expected single argument to .param, got 2 arguments"
        )

    def test_param_needs_integer(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            parse_position(parse_expr(".param(x)"))
        assert exc_info.value.message == "expected integer literal, got 'x'"

    def test_not_an_enum_literal(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            parse_position(parse_expr("1"))
        assert exc_info.value.code == C.EXPECTED_ENUM_LITERAL


class TestCountedAndSized:

    def test_counted_by(self):
        parsed = _parse('.countedBy(pointer: .param(1), count: "len")')
        assert parsed.infos == [CountedBy(Position.param(1), DeclRef("len"))]
        assert parsed.nonescaping == set()
        assert parsed.dependencies == {}
        assert parsed.type_mappings is None

    def test_sized_by(self):
        (info,) = _parse('.sizedBy(pointer: .param(1), size: "len * 4")').infos
        assert info.sized_by
        assert info.count == BinaryExpr("*", DeclRef("len"), IntegerLiteral(4, "4"))

    def test_literal_count(self):
        (info,) = _parse('.countedBy(pointer: .return, count: "16")').infos
        assert info.pointer_index is Position.RETURN
        assert info.count == IntegerLiteral(16, "16")

    def test_original_is_kept(self):
        (info,) = _parse('.countedBy(pointer: .param(1), count: "len")').infos
        assert str(info.original) == '.countedBy(pointer: .param(1), count: "len")'

    def test_count_must_be_string(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(".countedBy(pointer: .param(1), count: len)")
        assert exc_info.value.message == (
            "expected string literal for 'count' parameter, got len"
        )

    def test_missing_argument(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(".countedBy(pointer: .param(1))")
        assert exc_info.value.message == (
            "no argument with name 'count' in 'pointer: .param(1)'"
        )
        assert exc_info.value.code == C.MISSING_ARGUMENT

    def test_unknown_parameter_in_count(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse('.countedBy(pointer: .param(1), count: "size")')
        err = exc_info.value
        assert err.message == (
            "no parameter with name 'size' in "
            "'_ ptr: UnsafePointer<CInt>, _ len: CInt'"
        )
        assert err.code == C.UNKNOWN_PARAMETER
        assert err.node == StringLiteral("size")

    def test_count_names_its_own_pointer(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse('.countedBy(pointer: .param(1), count: "ptr")')
        err = exc_info.value
        assert err.message == "count for .param(1) cannot reference the pointer itself"
        assert err.code == C.SELF_REFERENTIAL_COUNT
        assert err.node == StringLiteral("ptr")

    def test_return_count_may_name_any_parameter(self):
        (info,) = _parse('.countedBy(pointer: .return, count: "ptr")').infos
        assert info.count == DeclRef("ptr")

    def test_unparsable_count(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse('.countedBy(pointer: .param(1), count: "len +")')
        assert exc_info.value.message == "unable to parse count expression 'len +'"

    def test_count_expression_located_at_literal(self):
        decl = parse_decl(
            '@_SpanifyImport(.countedBy(pointer: .param(1), count: "len - 1"))\n' + HEAD
        )
        parsed = parse_annotations(
            parse_marker_arguments(decl.attribute("_SpanifyImport")), decl
        )
        count = parsed.infos[0].count
        assert count.span.line == 1
        assert count.span.column == 55


class TestSideTables:

    def test_nonescaping(self):
        parsed = _parse(
            '.countedBy(pointer: .param(1), count: "len"), '
            ".nonescaping(pointer: .param(1))"
        )
        assert len(parsed.infos) == 1
        assert parsed.nonescaping == {Position.param(1)}

    def test_borrow_dependence(self):
        parsed = _parse(
            ".lifetimeDependence(pointer: .return, dependsOn: .param(1), type: .borrow)"
        )
        assert parsed.infos == []
        assert parsed.dependencies == {
            Position.RETURN: [LifetimeDependence(Position.param(1), DependenceType.BORROW)]
        }
        assert parsed.nonescaping == {Position.RETURN}

    def test_copy_dependence_marks_source(self):
        parsed = _parse(
            ".lifetimeDependence(pointer: .return, dependsOn: .param(1), type: .copy)"
        )
        assert parsed.nonescaping == {Position.RETURN, Position.param(1)}

    def test_copy_from_receiver_does_not_mark_receiver(self):
        parsed = _parse(
            ".lifetimeDependence(pointer: .return, dependsOn: .self, type: .copy)"
        )
        assert parsed.nonescaping == {Position.RETURN}

    def test_multiple_dependencies_accumulate(self):
        parsed = _parse(
            ".lifetimeDependence(pointer: .return, dependsOn: .param(1), type: .borrow), "
            ".lifetimeDependence(pointer: .return, dependsOn: .param(2), type: .copy)"
        )
        assert [d.depends_on for d in parsed.dependencies[Position.RETURN]] == [
            Position.param(1),
            Position.param(2),
        ]

    def test_dependence_on_return(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(
                ".lifetimeDependence(pointer: .param(1), dependsOn: .return, type: .copy)"
            )
        assert exc_info.value.message == "lifetime cannot depend on the return value"
        assert exc_info.value.code == C.RETURN_DEPENDENCE

    @pytest.mark.parametrize(
        "annotation",
        [
            ".nonescaping(pointer: .self)",
            ".lifetimeDependence(pointer: .self, dependsOn: .param(1), type: .copy)",
        ],
    )
    def test_receiver_target_rejected(self, annotation):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(annotation)
        assert exc_info.value.message == "do not annotate self"
        assert str(exc_info.value.node) == ".self"

    def test_target_out_of_bounds(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(".nonescaping(pointer: .param(3))")
        err = exc_info.value
        assert err.code == C.INDEX_OUT_OF_BOUNDS
        assert [n.message for n in err.notes] == [
            "function myFunc has parameter indices 1..2"
        ]

    def test_bad_dependence_type(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(
                ".lifetimeDependence(pointer: .return, dependsOn: .param(1), type: .move)"
            )
        assert exc_info.value.message == "expected '.copy' or '.borrow', got '.move'"


class TestAnnotationShape:

    def test_unknown_annotation(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse(".countedByOrNull(pointer: .param(1))")
        assert exc_info.value.code == C.UNKNOWN_ANNOTATION
        assert exc_info.value.message.endswith("got 'countedByOrNull'")

    def test_not_a_call(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            _parse('"countedBy"')
        assert exc_info.value.message == (
            "expected annotation enum literal as argument, got '\"countedBy\"'"
        )

    def test_ended_by_is_unimplemented(self):
        with pytest.raises(UnimplementedFeatureError) as exc_info:
            _parse(".endedBy(start: .param(1), end: .param(2))")
        assert exc_info.value.message == "endedBy support not yet implemented"
        assert exc_info.value.code == C.NOT_IMPLEMENTED

    def test_empty_list(self):
        parsed = _parse("")
        assert parsed.infos == []


class TestForeignSpans:

    HEAD = "func myFunc(_ span: SpanOfInt, _ other: VecOfInt) -> SpanOfInt"

    def test_type_mappings_table(self):
        table = parse_attribute_arguments(SPAN_MAPPING)[0]
        assert parse_type_mappings(table) == {
            "SpanOfInt": "std.__1.span<__cxxConst<CInt>, 18446744073709551615>"
        }

    def test_table_entries_must_be_strings(self):
        table = parse_attribute_arguments('["SpanOfInt": 42]')[0]
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            parse_type_mappings(table)
        assert exc_info.value.message == "expected a string literal, got '42'"
        assert exc_info.value.code == C.EXPECTED_LITERAL

    def test_non_table_is_ignored(self):
        assert parse_type_mappings(parse_expr(".param(1)")) is None

    def test_is_foreign_span(self):
        mappings = {
            "SpanOfInt": "std.span<CInt>",
            "VecOfInt": "std.vector<CInt>",
            "Local": "mylib.span<CInt>",
        }
        assert is_foreign_span("SpanOfInt", mappings)
        assert not is_foreign_span("VecOfInt", mappings)
        assert not is_foreign_span("Local", mappings)
        assert not is_foreign_span("Missing", mappings)

    def test_params_and_return_are_found(self):
        decl = parse_decl(self.HEAD)
        mappings = {"SpanOfInt": "std.span<CInt>", "VecOfInt": "std.vector<CInt>"}
        found = find_foreign_spans(decl, mappings)
        assert [f.pointer_index for f in found] == [Position.param(1), Position.RETURN]
        assert all(isinstance(f, ForeignSpan) for f in found)

    def test_no_table_no_spans(self):
        assert find_foreign_spans(parse_decl(self.HEAD), None) == []

    def test_table_is_last_argument(self):
        parsed = _parse(".nonescaping(pointer: .param(1)), " + SPAN_MAPPING, self.HEAD)
        assert parsed.type_mappings is not None
        assert [i.pointer_index for i in parsed.infos] == [
            Position.param(1),
            Position.RETURN,
        ]

    def test_attributed_param_is_found(self):
        decl = parse_decl("func f(_ s: borrowing SpanOfInt)")
        (found,) = find_foreign_spans(decl, {"SpanOfInt": "std.span<CInt>"})
        assert found.pointer_index == Position.param(1)
