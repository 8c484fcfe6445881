# tests/test_resolver_validator.py
"""
Tests for dependency resolution, structural validation, ordering and
trivial-count elision.
"""

import pytest

from spanify.errors import SpanifyDiagnosticError, SpanifyErrorCodes as C
from spanify.grammar import parse_decl, parse_expr
from spanify.model import (
    CountedBy,
    DependenceType,
    ForeignSpan,
    LifetimeDependence,
    Position,
)
from spanify.resolver import filter_foreign_spans, resolve_dependencies
from spanify.validator import (
    check_args,
    check_target,
    check_dependencies,
    has_trivial_count_variants,
    order_param_infos,
)

DECL = parse_decl(
    "func myFunc(_ a: UnsafePointer<CInt>, _ b: UnsafePointer<CInt>, _ len: CInt) "
    "-> UnsafePointer<CInt>"
)


def _counted(position, count="len", **kwargs):
    return CountedBy(position, parse_expr(count), **kwargs)


class TestResolveDependencies:

    def test_flags_and_dependencies_are_copied(self):
        borrow = LifetimeDependence(Position.param(1), DependenceType.BORROW)
        infos = [_counted(Position.param(1)), _counted(Position.RETURN)]
        resolved = resolve_dependencies(
            infos, {Position.RETURN}, {Position.RETURN: [borrow]}
        )
        assert [i.nonescaping for i in resolved] == [False, True]
        assert resolved[0].dependencies == []
        assert resolved[1].dependencies == [borrow]

    def test_idempotent(self):
        nonescaping = {Position.param(2)}
        infos = [_counted(Position.param(1)), _counted(Position.param(2))]
        once = [str(i) for i in resolve_dependencies(infos, nonescaping, {})]
        twice = [str(i) for i in resolve_dependencies(infos, nonescaping, {})]
        assert once == twice

    def test_independent_of_record_order(self):
        nonescaping = {Position.param(2)}
        forward = resolve_dependencies(
            [_counted(Position.param(1)), _counted(Position.param(2))], nonescaping, {}
        )
        backward = resolve_dependencies(
            [_counted(Position.param(2)), _counted(Position.param(1))], nonescaping, {}
        )
        assert sorted(map(str, forward)) == sorted(map(str, backward))

    def test_side_tables_untouched(self):
        copy = LifetimeDependence(Position.param(1), DependenceType.COPY)
        nonescaping = {Position.RETURN}
        dependencies = {Position.RETURN: [copy]}
        (info,) = resolve_dependencies([_counted(Position.RETURN)], nonescaping, dependencies)
        info.dependencies.append(copy)
        assert dependencies == {Position.RETURN: [copy]}
        assert nonescaping == {Position.RETURN}

    def test_flag_can_be_cleared(self):
        info = _counted(Position.param(1), nonescaping=True)
        (resolved,) = resolve_dependencies([info], set(), {})
        assert resolved.nonescaping is False


class TestFilterForeignSpans:

    def test_escaping_param_span_dropped(self):
        infos = [
            ForeignSpan(Position.param(1), nonescaping=False),
            ForeignSpan(Position.param(2), nonescaping=True),
            _counted(Position.param(3)),
        ]
        kept = filter_foreign_spans(infos)
        assert [i.pointer_index for i in kept] == [Position.param(2), Position.param(3)]

    def test_return_span_kept(self):
        infos = [ForeignSpan(Position.RETURN, nonescaping=False)]
        assert filter_foreign_spans(infos) == infos


class TestCheckArgs:

    def test_valid(self):
        check_args(
            [_counted(Position.param(1)), _counted(Position.param(2)), _counted(Position.RETURN)],
            DECL,
        )

    @pytest.mark.parametrize("index", [0, 4, -1])
    def test_index_out_of_bounds(self, index):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args([_counted(Position.param(index))], DECL)
        err = exc_info.value
        assert err.message == "pointer index out of bounds"
        assert err.code == C.INDEX_OUT_OF_BOUNDS
        (note,) = err.notes
        assert note.message == "function myFunc has parameter indices 1..3"
        assert note.node == DECL.name

    def test_index_out_of_bounds_without_params(self):
        decl = parse_decl("func empty() -> UnsafePointer<CInt>")
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args([_counted(Position.param(1))], decl)
        assert exc_info.value.notes[0].message == "function empty has no parameters"

    def test_duplicate_parameter(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args([_counted(Position.param(1)), _counted(Position.param(1), "b")], DECL)
        err = exc_info.value
        assert err.code == C.DUPLICATE_TARGET
        assert err.message == (
            "multiple annotations referring to parameter with index 1: "
            '.countedBy(pointer: .param(1), count: "b", nonescaping: false) and '
            '.countedBy(pointer: .param(1), count: "len", nonescaping: false)'
        )

    def test_duplicate_return(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args([_counted(Position.RETURN), _counted(Position.RETURN)], DECL)
        assert exc_info.value.message.startswith(
            "multiple annotations referring to return value: "
        )

    def test_counted_and_foreign_on_same_param(self):
        infos = [_counted(Position.param(1)), ForeignSpan(Position.param(1))]
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args(infos, DECL)
        assert exc_info.value.code == C.DUPLICATE_TARGET

    def test_receiver(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args([_counted(Position.SELF)], DECL)
        assert exc_info.value.message == "do not annotate self"
        assert exc_info.value.code == C.RECEIVER_TARGET

    def test_blames_original_annotation(self):
        original = parse_expr('.countedBy(pointer: .param(9), count: "len")')
        info = CountedBy(Position.param(9), parse_expr("len"), original=original)
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_args([info], DECL)
        assert exc_info.value.node is original


class TestCheckTarget:

    def test_return_and_params(self):
        for position in (Position.RETURN, Position.param(1), Position.param(3)):
            check_target(position, DECL, None)

    def test_receiver(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_target(Position.SELF, DECL, None)
        assert exc_info.value.code == C.RECEIVER_TARGET

    def test_blames_given_node(self):
        node = parse_expr(".param(4)")
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_target(Position.param(4), DECL, node)
        assert exc_info.value.node is node
        assert exc_info.value.notes[0].node == DECL.name


class TestCheckDependencies:

    def test_valid(self):
        check_dependencies(
            {
                Position.RETURN: [
                    LifetimeDependence(Position.param(3), DependenceType.BORROW),
                    LifetimeDependence(Position.SELF, DependenceType.COPY),
                ]
            },
            DECL,
        )

    def test_source_out_of_bounds(self):
        deps = {Position.RETURN: [LifetimeDependence(Position.param(7), DependenceType.COPY)]}
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            check_dependencies(deps, DECL)
        assert exc_info.value.message == (
            "lifetime dependence of .return on .param(7): pointer index out of bounds"
        )


class TestOrdering:

    def test_params_ascending_return_last(self):
        infos = [
            _counted(Position.RETURN),
            _counted(Position.param(3)),
            _counted(Position.param(1)),
        ]
        ordered = order_param_infos(infos)
        assert [i.pointer_index for i in ordered] == [
            Position.param(1),
            Position.param(3),
            Position.RETURN,
        ]

    def test_input_not_modified(self):
        infos = [_counted(Position.RETURN), _counted(Position.param(1))]
        order_param_infos(infos)
        assert infos[0].pointer_index is Position.RETURN


class TestTrivialCountVariants:

    def test_distinct_identifiers(self):
        infos = [_counted(Position.param(1), "len"), _counted(Position.param(2), "n")]
        assert has_trivial_count_variants(infos)

    def test_literals(self):
        infos = [_counted(Position.param(1), "10"), _counted(Position.param(2), "10")]
        assert has_trivial_count_variants(infos)

    def test_shared_identifier(self):
        infos = [_counted(Position.param(1), "len"), _counted(Position.param(2), "len")]
        assert not has_trivial_count_variants(infos)

    def test_compound_expression(self):
        infos = [_counted(Position.param(1), "len * 2")]
        assert not has_trivial_count_variants(infos)

    def test_foreign_spans_do_not_count(self):
        infos = [ForeignSpan(Position.param(1)), _counted(Position.param(2), "len")]
        assert has_trivial_count_variants(infos)

    def test_empty(self):
        assert has_trivial_count_variants([])
