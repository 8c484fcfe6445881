# tests/test_builders.py
"""
Tests for pointer-type rewriting and the individual thunk builders.
"""

import pytest

from spanify.builders import (
    CountedPointerBuilder,
    CountedReturnBuilder,
    ForeignSpanBuilder,
    ForeignSpanReturnBuilder,
    FunctionCallBuilder,
    build_chain,
)
from spanify.config import SpanifyConfig
from spanify.errors import (
    SpanifyDiagnosticError,
    SpanifyErrorCodes as C,
    SpanifyInternalError,
)
from spanify.grammar import parse_decl, parse_expr, parse_type
from spanify.model import CountedBy, DependenceType, ForeignSpan, LifetimeDependence, Position
from spanify.pointers import (
    drop_cxx_qualifiers,
    get_unqualified_std_name,
    transform_type,
)
from spanify.syntax import DeclRef, IdentifierType, to_source


def _counted_builder(head, index=0, count="len", **kwargs):
    decl = parse_decl(head)
    options = dict(nonescaping=False, sized_by=False, skip_trivial_count=False)
    options.update(kwargs)
    return CountedPointerBuilder(
        base=FunctionCallBuilder(decl),
        index=index,
        count=parse_expr(count),
        decl=decl,
        **options,
    )


class TestTransformType:

    @pytest.mark.parametrize(
        "before, span, sized, after",
        [
            ("UnsafePointer<CInt>", False, False, "UnsafeBufferPointer<CInt>"),
            ("UnsafePointer<CInt>", True, False, "Span<CInt>"),
            ("UnsafeMutablePointer<CInt>", False, False, "UnsafeMutableBufferPointer<CInt>"),
            ("UnsafeMutablePointer<CInt>", True, False, "MutableSpan<CInt>"),
            ("UnsafeRawPointer", False, True, "UnsafeRawBufferPointer"),
            ("UnsafeRawPointer", True, True, "RawSpan"),
            ("UnsafeMutableRawPointer", False, True, "UnsafeMutableRawBufferPointer"),
            ("UnsafeMutableRawPointer", True, True, "MutableRawSpan"),
            ("OpaquePointer", False, True, "UnsafeRawBufferPointer"),
            ("UnsafePointer<CInt>?", False, False, "UnsafeBufferPointer<CInt>?"),
            ("UnsafePointer<CInt>!", False, False, "UnsafeBufferPointer<CInt>"),
            ("Swift.UnsafePointer<CInt>", False, False, "Swift.UnsafeBufferPointer<CInt>"),
            ("inout UnsafeMutablePointer<CInt>", True, False, "inout MutableSpan<CInt>"),
        ],
    )
    def test_mapping(self, before, span, sized, after):
        assert str(transform_type(parse_type(before), span, sized)) == after

    def test_custom_core_module(self):
        t = transform_type(parse_type("Core.UnsafePointer<CInt>"), False, False, "Core")
        assert str(t) == "Core.UnsafeBufferPointer<CInt>"

    def test_foreign_module(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            transform_type(parse_type("Foo.UnsafePointer<CInt>"), False, False)
        assert exc_info.value.message == (
            "expected pointer type in Swift core module, got type "
            "Foo.UnsafePointer<CInt> with base type Foo"
        )
        assert exc_info.value.code == C.NOT_CORE_MODULE

    def test_raw_pointer_needs_sized_by(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            transform_type(parse_type("UnsafeRawPointer"), False, False)
        assert exc_info.value.message == "raw pointers only supported for SizedBy"

    def test_sized_by_needs_raw_pointer(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            transform_type(parse_type("UnsafePointer<CInt>"), False, True)
        assert exc_info.value.message == "SizedBy only supported for raw pointers"

    def test_not_a_pointer(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            transform_type(parse_type("CInt"), False, False)
        assert exc_info.value.message == (
            "expected Unsafe[Mutable][Raw]Pointer type for type CInt"
            " - first type token is 'CInt'"
        )

    def test_tuple_is_not_a_pointer(self):
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            transform_type(parse_type("(CInt, CInt)"), False, False)
        assert exc_info.value.message == (
            "expected pointer type, got (CInt, CInt) with kind TupleType"
        )


class TestTypeHelpers:

    def test_unqualified_std_name(self):
        assert get_unqualified_std_name("std.span<CInt>") == "span<CInt>"
        assert get_unqualified_std_name("std.__1.span<CInt>") == "span<CInt>"
        assert get_unqualified_std_name("boost.span<CInt>") is None

    def test_drop_cxx_qualifiers(self):
        t = parse_type("__cxxConst<__cxxVolatile<CInt>>")
        assert drop_cxx_qualifiers(t) == IdentifierType("CInt")


class TestFunctionCallBuilder:

    def test_identity(self):
        decl = parse_decl("func f(_ a: CInt, label b: CInt) -> CInt")
        builder = FunctionCallBuilder(decl)
        signature, only_return = builder.build_function_signature({}, None)
        assert signature == decl.signature
        assert not only_return
        assert str(builder.build_function_call({})) == "f(a, label: b)"
        assert builder.build_bounds_checks() == []

    def test_drop_and_override(self):
        decl = parse_decl("func f(_ a: CInt, label b: CInt)")
        builder = FunctionCallBuilder(decl)
        signature, _ = builder.build_function_signature({0: None}, None)
        assert to_source(signature) == "(label b: CInt)"
        call = builder.build_function_call({1: parse_expr("42")})
        assert str(call) == "f(a, label: 42)"

    def test_only_return_changed(self):
        builder = FunctionCallBuilder(parse_decl("func f() -> CInt"))
        signature, only_return = builder.build_function_signature(
            {}, parse_type("Span<CInt>")
        )
        assert only_return
        assert str(signature.return_type) == "Span<CInt>"


class TestCountedPointerBuilder:

    HEAD = "func f(_ ptr: UnsafePointer<CInt>, _ len: CInt)"

    def test_get_count(self):
        assert str(_counted_builder(self.HEAD).get_count()) == "ptr.count"

    def test_get_count_nullable(self):
        builder = _counted_builder("func f(_ ptr: UnsafePointer<CInt>?, _ len: CInt)")
        assert str(builder.get_count()) == "ptr?.count ?? 0"

    def test_get_count_raw_span(self):
        builder = _counted_builder(
            "func f(_ ptr: UnsafeRawPointer, _ len: CInt)", sized_by=True, nonescaping=True
        )
        assert str(builder.get_count()) == "ptr.byteCount"

    def test_cast_int_to_target_type(self):
        builder = _counted_builder(self.HEAD)
        x = DeclRef("x")
        assert builder.cast_int_to_target_type(x, parse_type("Int")) is x
        assert builder.cast_int_to_target_type(x, parse_type("Swift.Int")) is x
        assert str(builder.cast_int_to_target_type(x, parse_type("CInt"))) == (
            "CInt(exactly: x)!"
        )

    def test_opaque_pointer_cast(self):
        builder = _counted_builder(
            "func f(_ ptr: OpaquePointer, _ len: CInt)", sized_by=True
        )
        assert str(builder.build_function_call({})) == (
            "f(OpaquePointer(ptr.baseAddress!), len)"
        )

    def test_bounds_checks(self):
        checks = _counted_builder(self.HEAD, count="len * 2").build_bounds_checks()
        assert [to_source(c) for c in checks] == [
            "let _ptrCount: some BinaryInteger = len * 2",
            "if ptr.count < _ptrCount || _ptrCount < 0 {\n"
            '    fatalError("bounds check failure when calling unsafe function")\n'
            "}",
        ]

    def test_signature_keeps_count_without_elision(self):
        signature, _ = _counted_builder(self.HEAD).build_function_signature({}, None)
        assert to_source(signature) == "(_ ptr: UnsafeBufferPointer<CInt>, _ len: CInt)"

    def test_signature_elides_count(self):
        builder = _counted_builder(self.HEAD, skip_trivial_count=True)
        signature, _ = builder.build_function_signature({}, None)
        assert to_source(signature) == "(_ ptr: UnsafeBufferPointer<CInt>)"
        assert str(builder.build_function_call({})) == (
            "f(ptr.baseAddress!, CInt(exactly: ptr.count)!)"
        )

    def test_span_unwrap_call(self):
        builder = _counted_builder(self.HEAD, nonescaping=True)
        assert str(builder.build_function_call({})) == (
            "ptr.withUnsafeBufferPointer { _ptrPtr in\n"
            "    return unsafe f(_ptrPtr.baseAddress!, len)\n"
            "}"
        )

    def test_raw_span_unwrap_call(self):
        builder = _counted_builder(
            "func f(_ ptr: UnsafeRawPointer, _ len: CInt)", sized_by=True, nonescaping=True
        )
        assert str(builder.build_function_call({})).startswith(
            "ptr.withUnsafeBytes { _ptrPtr in"
        )

    def test_unsafe_marker_disabled(self):
        builder = _counted_builder(
            self.HEAD, nonescaping=True, config=SpanifyConfig(emit_unsafe_marker=False)
        )
        assert "return f(_ptrPtr.baseAddress!, len)" in str(builder.build_function_call({}))

    def test_argument_claimed_twice(self):
        decl = parse_decl(self.HEAD)
        inner = CountedPointerBuilder(
            FunctionCallBuilder(decl), 0, parse_expr("len"), decl, False, False, False
        )
        outer = CountedPointerBuilder(
            inner, 0, parse_expr("len"), decl, False, False, False
        )
        with pytest.raises(SpanifyInternalError):
            outer.build_function_call({})


class TestCountedReturnBuilder:

    def _builder(self, head, dependencies=()):
        decl = parse_decl(head)
        return CountedReturnBuilder(
            base=FunctionCallBuilder(decl),
            count=parse_expr("len"),
            decl=decl,
            nonescaping=bool(dependencies),
            sized_by=False,
            dependencies=tuple(dependencies),
        )

    def test_buffer_pointer_view(self):
        builder = self._builder("func f(_ len: CInt) -> UnsafePointer<CInt>")
        signature, only_return = builder.build_function_signature({}, None)
        assert str(signature.return_type) == "UnsafeBufferPointer<CInt>"
        assert only_return
        assert str(builder.build_function_call({})) == (
            "UnsafeBufferPointer<CInt>(start: f(len), count: Int(len))"
        )

    def test_optional_return_view(self):
        builder = self._builder("func f(_ len: CInt) -> UnsafePointer<CInt>?")
        assert str(builder.build_function_call({})) == (
            "UnsafeBufferPointer<CInt>?(start: f(len), count: Int(len))"
        )

    def test_span_view_with_dependencies(self):
        dep = LifetimeDependence(Position.param(1), DependenceType.BORROW)
        builder = self._builder("func f(_ len: CInt) -> UnsafePointer<CInt>", [dep])
        assert str(builder.build_function_call({})) == (
            "_overrideLifetime(Span<CInt>(_unsafeStart: f(len), count: Int(len)), "
            "copying: ())"
        )

    def test_no_bounds_checks(self):
        builder = self._builder("func f(_ len: CInt) -> UnsafePointer<CInt>")
        assert builder.build_bounds_checks() == []

    def test_return_rewritten_twice(self):
        builder = self._builder("func f(_ len: CInt) -> UnsafePointer<CInt>")
        with pytest.raises(SpanifyInternalError):
            builder.build_function_signature({}, parse_type("CInt"))

    def test_no_return_value(self):
        builder = self._builder("func f(_ len: CInt)")
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            builder.build_function_signature({}, None)
        assert exc_info.value.message == "function f has no return value to annotate"


class TestForeignSpanBuilders:

    MAPPINGS = {"SpanOfInt": "std.__1.span<__cxxConst<CInt>, 18446744073709551615>"}

    def test_param(self):
        decl = parse_decl("func f(_ s: SpanOfInt)")
        builder = ForeignSpanBuilder(FunctionCallBuilder(decl), 0, decl, self.MAPPINGS)
        signature, _ = builder.build_function_signature({}, None)
        assert to_source(signature) == "(_ s: Span<CInt>)"
        assert str(builder.build_function_call({})) == "f(SpanOfInt(s))"

    def test_attributed_param(self):
        decl = parse_decl("func f(_ s: borrowing SpanOfInt)")
        builder = ForeignSpanBuilder(FunctionCallBuilder(decl), 0, decl, self.MAPPINGS)
        signature, _ = builder.build_function_signature({}, None)
        assert to_source(signature) == "(_ s: borrowing Span<CInt>)"

    def test_return(self):
        decl = parse_decl("func f(_ v: borrowing VecOfInt) -> SpanOfInt")
        builder = ForeignSpanReturnBuilder(FunctionCallBuilder(decl), decl, self.MAPPINGS)
        signature, only_return = builder.build_function_signature({}, None)
        assert str(signature.return_type) == "Span<CInt>"
        assert only_return
        assert str(builder.build_function_call({})) == (
            "_cxxOverrideLifetime(Span(_unsafeCxxSpan: f(v)), copying: ())"
        )

    def test_unknown_mapping(self):
        decl = parse_decl("func f(_ s: SpanOfInt)")
        builder = ForeignSpanBuilder(FunctionCallBuilder(decl), 0, decl, {})
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            builder.build_function_signature({}, None)
        assert exc_info.value.message == "unable to desugar type with name 'SpanOfInt'"

    def test_unexpected_desugared_type(self):
        decl = parse_decl("func f(_ s: SpanOfInt)")
        builder = ForeignSpanBuilder(
            FunctionCallBuilder(decl), 0, decl, {"SpanOfInt": "mylib.span<CInt>"}
        )
        with pytest.raises(SpanifyDiagnosticError) as exc_info:
            builder.build_function_signature({}, None)
        assert exc_info.value.message == (
            "unexpected desugared type 'mylib.span<CInt>' for 'SpanOfInt'"
        )
        assert exc_info.value.code == C.UNEXPECTED_DESUGARED_TYPE


class TestBuildChain:

    def test_chain_shape(self):
        decl = parse_decl(
            "func f(_ a: UnsafePointer<CInt>, _ s: SpanOfInt, _ len: CInt) "
            "-> UnsafePointer<CInt>"
        )
        infos = [
            CountedBy(Position.param(1), parse_expr("len")),
            ForeignSpan(Position.param(2), {"SpanOfInt": "std.span<CInt>"}, nonescaping=True),
            CountedBy(Position.RETURN, parse_expr("len")),
        ]
        chain = build_chain(infos, decl, skip_trivial_count=False)
        assert isinstance(chain, CountedReturnBuilder)
        assert isinstance(chain.base, ForeignSpanBuilder)
        assert isinstance(chain.base.base, CountedPointerBuilder)
        assert isinstance(chain.base.base.base, FunctionCallBuilder)

    def test_empty_chain(self):
        decl = parse_decl("func f()")
        assert build_chain([], decl, skip_trivial_count=True) == FunctionCallBuilder(decl)

    def test_foreign_return_without_dependencies_is_skipped(self):
        decl = parse_decl("func f() -> SpanOfInt")
        infos = [ForeignSpan(Position.RETURN, {"SpanOfInt": "std.span<CInt>"})]
        assert isinstance(build_chain(infos, decl, True), FunctionCallBuilder)
