"""
builders.py — thunk-builder chain
=================================

A wrapper is produced by folding the ordered records into a singly
linked chain of builders.  The innermost builder (:class:`FunctionCallBuilder`)
knows the original declaration; every decorator wraps a ``base`` and
rewrites one position:

    FunctionCallBuilder(decl)
      └─ CountedPointerBuilder(.param(1))
           └─ ForeignSpanBuilder(.param(3))
                └─ CountedReturnBuilder(.return)

Each builder answers three questions, delegating to its base for
everything it does not own:

* ``build_function_signature(arg_types, return_type)`` – the public
  signature.  ``arg_types`` maps a 0-based parameter index to a new type,
  or to ``None`` to drop the parameter.
* ``build_bounds_checks()`` – statements run before the call.
* ``build_function_call(overrides)`` – the call to the original function;
  ``overrides`` maps a 0-based parameter index to the argument expression
  to pass instead of the parameter itself.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Dict, List, Optional, Sequence, Tuple

from spanify.config import SpanifyConfig
from spanify.errors import (
    GrammarError,
    SpanifyDiagnosticError,
    SpanifyErrorCodes as C,
    SpanifyInternalError,
)
from spanify.grammar import parse_type
from spanify.model import CountedBy, ForeignSpan, LifetimeDependence, ParamInfo
from spanify.pointers import (
    can_represent_basic_type,
    drop_cxx_qualifiers,
    get_unattributed_type,
    get_unqualified_std_name,
    peel_optional_type,
    replace_base_type,
    transform_type,
)
from spanify.syntax import (
    BinaryExpr,
    Call,
    Closure,
    DeclRef,
    Expr,
    ExprStmt,
    ForceUnwrap,
    FunctionDecl,
    FunctionSignature,
    IdentifierType,
    IfExpr,
    IntegerLiteral,
    LabeledExpr,
    MemberAccess,
    NilLiteral,
    OpaqueType,
    OptionalChain,
    OptionalType,
    Param,
    ReturnStmt,
    Stmt,
    StringLiteral,
    TupleExpr,
    TypeExpr,
    TypeSyntax,
    UnsafeExpr,
    VarDecl,
)

logger = logging.getLogger(__name__)

ArgTypes = Dict[int, Optional[TypeSyntax]]
ArgOverrides = Dict[int, Expr]

BOUNDS_CHECK_MESSAGE = "bounds check failure when calling unsafe function"


def _call(name: str, *args: Expr, **labeled: Expr) -> Call:
    items = [LabeledExpr(None, a) for a in args]
    items.extend(LabeledExpr(label, value) for label, value in labeled.items())
    return Call(DeclRef(name), tuple(items))


def _unsafe(expr: Expr, config: SpanifyConfig) -> Expr:
    return UnsafeExpr(expr) if config.emit_unsafe_marker else expr


def _param_index(decl: FunctionDecl, name: str) -> int:
    index = decl.signature.param_index(name)
    if index is None:
        params = ", ".join(str(p) for p in decl.params)
        raise SpanifyDiagnosticError(
            f"no parameter with name '{name}' in '{params}'",
            node=decl.signature,
            code=C.UNKNOWN_PARAMETER,
        )
    return index


def _require_free(args: ArgOverrides, index: int) -> None:
    if index in args:
        raise SpanifyInternalError(
            f"argument {index} overridden twice", code=C.INVARIANT_VIOLATION
        )


# ═══════════════════════════════════════════════════════════════════
#  Base builder
# ═══════════════════════════════════════════════════════════════════

class BoundsCheckedThunkBuilder(ABC):
    """One node of the decoration chain."""

    @abstractmethod
    def build_function_signature(
        self, arg_types: ArgTypes, return_type: Optional[TypeSyntax]
    ) -> Tuple[FunctionSignature, bool]:
        """Return ``(signature, only_return_type_changed)``."""

    @abstractmethod
    def build_bounds_checks(self) -> List[Stmt]:
        ...

    @abstractmethod
    def build_function_call(self, overrides: ArgOverrides) -> Expr:
        ...


@dataclass(frozen=True)
class FunctionCallBuilder(BoundsCheckedThunkBuilder):
    """Innermost builder: the unchanged declaration and a plain call to it."""

    decl: FunctionDecl

    def build_bounds_checks(self) -> List[Stmt]:
        return []

    def build_function_signature(self, arg_types, return_type):
        params: List[Param] = []
        for i, param in enumerate(self.decl.params):
            if i not in arg_types:
                params.append(param)
                continue
            new_type = arg_types[i]
            if new_type is not None:
                params.append(param.with_type(new_type))
        signature = replace(self.decl.signature, params=tuple(params))
        if return_type is not None:
            signature = replace(signature, return_type=return_type)
        return signature, (not arg_types and return_type is not None)

    def build_function_call(self, overrides):
        args = tuple(
            LabeledExpr(param.label, overrides.get(i, DeclRef(param.name)))
            for i, param in enumerate(self.decl.params)
        )
        return Call(DeclRef(self.decl.name.text), args)


# ═══════════════════════════════════════════════════════════════════
#  Parameter-site helpers
# ═══════════════════════════════════════════════════════════════════

class _ParamSite:
    """Accessors shared by builders that rewrite one parameter."""

    decl: FunctionDecl
    index: int

    @property
    def param(self) -> Param:
        return self.decl.params[self.index]

    @property
    def old_type(self) -> TypeSyntax:
        return self.param.type

    @property
    def name(self) -> str:
        return self.param.name

    @property
    def nullable(self) -> bool:
        return isinstance(self.old_type, OptionalType)


def _desugared_span_type(
    type_: TypeSyntax, type_mappings: Dict[str, str], node: object
) -> TypeSyntax:
    """``Span<E>`` for a foreign span type, E taken from its desugared form."""
    type_name = str(get_unattributed_type(type_))
    desugared = type_mappings.get(type_name)
    if desugared is None:
        raise SpanifyDiagnosticError(
            f"unable to desugar type with name '{type_name}'",
            node=node,
            code=C.UNKNOWN_TYPE_MAPPING,
        )
    unexpected = SpanifyDiagnosticError(
        f"unexpected desugared type '{desugared}' for '{type_name}'",
        node=node,
        code=C.UNEXPECTED_DESUGARED_TYPE,
    )
    unqualified = get_unqualified_std_name(desugared)
    if unqualified is None:
        raise unexpected
    try:
        parsed = parse_type(unqualified)
    except GrammarError as exc:
        raise unexpected from exc
    if not isinstance(parsed, IdentifierType) or not parsed.generic_args:
        raise unexpected
    element = drop_cxx_qualifiers(parsed.generic_args[0])
    return replace_base_type(type_, IdentifierType("Span", (element,)))


# ═══════════════════════════════════════════════════════════════════
#  Counted / sized pointers
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CountedPointerBuilder(_ParamSite, BoundsCheckedThunkBuilder):
    """``countedBy`` / ``sizedBy`` on a parameter."""

    base: BoundsCheckedThunkBuilder
    index: int
    count: Expr
    decl: FunctionDecl
    nonescaping: bool
    sized_by: bool
    skip_trivial_count: bool
    config: SpanifyConfig = field(default_factory=SpanifyConfig)

    @property
    def generate_span(self) -> bool:
        return self.nonescaping

    @property
    def new_type(self) -> TypeSyntax:
        return transform_type(
            self.old_type, self.generate_span, self.sized_by, self.config.core_module
        )

    def _elided_count_index(self) -> Optional[int]:
        if self.skip_trivial_count and isinstance(self.count, DeclRef):
            return _param_index(self.decl, self.count.name)
        return None

    def build_function_signature(self, arg_types, return_type):
        types = dict(arg_types)
        types[self.index] = self.new_type
        count_index = self._elided_count_index()
        if count_index is not None:
            types[count_index] = None
        return self.base.build_function_signature(types, return_type)

    def get_count(self) -> Expr:
        """``name.count`` (``byteCount`` for raw spans), or ``name?.count ?? 0``."""
        member = "byteCount" if self.sized_by and self.generate_span else "count"
        if self.nullable:
            return BinaryExpr(
                "??",
                MemberAccess(OptionalChain(DeclRef(self.name)), member),
                IntegerLiteral(0, "0"),
            )
        return MemberAccess(DeclRef(self.name), member)

    def build_bounds_checks(self) -> List[Stmt]:
        checks = self.base.build_bounds_checks()
        count_name = f"_{self.name}Count"
        checks.append(
            VarDecl(count_name, OpaqueType(IdentifierType("BinaryInteger")), self.count)
        )
        condition = BinaryExpr(
            "||",
            BinaryExpr("<", self.get_count(), DeclRef(count_name)),
            BinaryExpr("<", DeclRef(count_name), IntegerLiteral(0, "0")),
        )
        failure = ExprStmt(_call("fatalError", StringLiteral(BOUNDS_CHECK_MESSAGE)))
        checks.append(ExprStmt(IfExpr(condition, (failure,))))
        return checks

    def _unwrap_if_nullable(self, expr: Expr) -> Expr:
        return ForceUnwrap(expr) if self.nullable else expr

    def _unwrap_if_nonnullable(self, expr: Expr) -> Expr:
        return expr if self.nullable else ForceUnwrap(expr)

    def cast_int_to_target_type(self, expr: Expr, type_: TypeSyntax) -> Expr:
        if can_represent_basic_type(type_, "Int", self.config.core_module):
            return expr
        return ForceUnwrap(Call(TypeExpr(type_), (LabeledExpr("exactly", expr),)))

    def cast_pointer_to_opaque_pointer(self, base_address: Expr) -> Expr:
        type_ = peel_optional_type(self.param.type)
        if can_represent_basic_type(type_, "OpaquePointer", self.config.core_module):
            return _call("OpaquePointer", base_address)
        return base_address

    def get_pointer_arg(self) -> Expr:
        if self.nullable:
            return MemberAccess(OptionalChain(DeclRef(self.name)), "baseAddress")
        return ForceUnwrap(MemberAccess(DeclRef(self.name), "baseAddress"))

    def build_unwrap_call(self, overrides: ArgOverrides) -> Expr:
        """``name.withUnsafeBufferPointer { _namePtr in return unsafe f(...) }``."""
        unwrapped_name = f"_{self.name}Ptr"
        args = dict(overrides)
        _require_free(args, self.index)
        base_address = MemberAccess(DeclRef(unwrapped_name), "baseAddress")
        args[self.index] = self.cast_pointer_to_opaque_pointer(
            self._unwrap_if_nonnullable(base_address)
        )
        call = self.base.build_function_call(args)
        ptr_ref = self._unwrap_if_nullable(DeclRef(self.name))
        method = "withUnsafeBytes" if self.sized_by else "withUnsafeBufferPointer"
        body = (ReturnStmt(_unsafe(call, self.config)),)
        return Call(
            MemberAccess(ptr_ref, method),
            trailing_closure=Closure((unwrapped_name,), body),
        )

    def build_function_call(self, overrides):
        args = dict(overrides)
        count_index = self._elided_count_index()
        if count_index is not None:
            _require_free(args, count_index)
            args[count_index] = self.cast_int_to_target_type(
                self.get_count(), self.decl.params[count_index].type
            )
        _require_free(args, self.index)
        if self.generate_span:
            unwrapped_call = self.build_unwrap_call(args)
            if self.nullable:
                null_args = dict(args)
                null_args[self.index] = NilLiteral()
                null_call = _unsafe(self.base.build_function_call(null_args), self.config)
                return IfExpr(
                    BinaryExpr("==", DeclRef(self.name), NilLiteral()),
                    (ExprStmt(null_call),),
                    (ExprStmt(unwrapped_call),),
                )
            return unwrapped_call

        args[self.index] = self.cast_pointer_to_opaque_pointer(self.get_pointer_arg())
        return self.base.build_function_call(args)


@dataclass(frozen=True)
class CountedReturnBuilder(BoundsCheckedThunkBuilder):
    """``countedBy`` / ``sizedBy`` on the return value."""

    base: BoundsCheckedThunkBuilder
    count: Expr
    decl: FunctionDecl
    nonescaping: bool
    sized_by: bool
    dependencies: Tuple[LifetimeDependence, ...] = ()
    config: SpanifyConfig = field(default_factory=SpanifyConfig)

    @property
    def generate_span(self) -> bool:
        return bool(self.dependencies)

    @property
    def old_type(self) -> TypeSyntax:
        return_type = self.decl.signature.return_type
        if return_type is None:
            raise SpanifyDiagnosticError(
                f"function {self.decl.name} has no return value to annotate",
                node=self.decl.name,
                code=C.NOT_A_POINTER,
            )
        return return_type

    @property
    def new_type(self) -> TypeSyntax:
        return transform_type(
            self.old_type, self.generate_span, self.sized_by, self.config.core_module
        )

    def build_function_signature(self, arg_types, return_type):
        if return_type is not None:
            raise SpanifyInternalError(
                "return type rewritten twice", code=C.INVARIANT_VIOLATION
            )
        return self.base.build_function_signature(arg_types, self.new_type)

    def build_bounds_checks(self) -> List[Stmt]:
        return self.base.build_bounds_checks()

    def build_function_call(self, overrides):
        call = self.base.build_function_call(overrides)
        count = _call("Int", self.count)
        view = TypeExpr(self.new_type)
        if self.generate_span:
            constructed = Call(
                view, (LabeledExpr("_unsafeStart", call), LabeledExpr("count", count))
            )
            return _call("_overrideLifetime", constructed, copying=TupleExpr())
        return Call(view, (LabeledExpr("start", call), LabeledExpr("count", count)))


# ═══════════════════════════════════════════════════════════════════
#  Foreign spans
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ForeignSpanBuilder(_ParamSite, BoundsCheckedThunkBuilder):
    """A parameter of a foreign ``std::span`` type, exposed as ``Span<E>``."""

    base: BoundsCheckedThunkBuilder
    index: int
    decl: FunctionDecl
    type_mappings: Dict[str, str]
    node: object = None
    nonescaping: bool = False
    config: SpanifyConfig = field(default_factory=SpanifyConfig)

    def build_bounds_checks(self) -> List[Stmt]:
        return self.base.build_bounds_checks()

    def build_function_signature(self, arg_types, return_type):
        types = dict(arg_types)
        types[self.index] = _desugared_span_type(
            self.param.type, self.type_mappings, self.node
        )
        return self.base.build_function_signature(types, return_type)

    def build_function_call(self, overrides):
        args = dict(overrides)
        _require_free(args, self.index)
        foreign_type = TypeExpr(get_unattributed_type(self.old_type))
        args[self.index] = Call(foreign_type, (LabeledExpr(None, DeclRef(self.name)),))
        return self.base.build_function_call(args)


@dataclass(frozen=True)
class ForeignSpanReturnBuilder(BoundsCheckedThunkBuilder):
    """A foreign ``std::span`` return value, exposed as ``Span<E>``."""

    base: BoundsCheckedThunkBuilder
    decl: FunctionDecl
    type_mappings: Dict[str, str]
    node: object = None
    config: SpanifyConfig = field(default_factory=SpanifyConfig)

    def build_bounds_checks(self) -> List[Stmt]:
        return self.base.build_bounds_checks()

    def build_function_signature(self, arg_types, return_type):
        if return_type is not None:
            raise SpanifyInternalError(
                "return type rewritten twice", code=C.INVARIANT_VIOLATION
            )
        new_type = _desugared_span_type(
            self.decl.signature.return_type, self.type_mappings, self.node
        )
        return self.base.build_function_signature(arg_types, new_type)

    def build_function_call(self, overrides):
        call = self.base.build_function_call(overrides)
        span = Call(DeclRef("Span"), (LabeledExpr("_unsafeCxxSpan", call),))
        return _call("_cxxOverrideLifetime", span, copying=TupleExpr())


# ═══════════════════════════════════════════════════════════════════
#  Chain construction
# ═══════════════════════════════════════════════════════════════════

def make_builder(
    info: ParamInfo,
    base: BoundsCheckedThunkBuilder,
    decl: FunctionDecl,
    skip_trivial_count: bool,
    config: SpanifyConfig,
) -> BoundsCheckedThunkBuilder:
    """Wrap *base* with the builder for *info*; receiver records leave it unchanged."""
    position = info.pointer_index
    if isinstance(info, CountedBy):
        if position.is_param:
            return CountedPointerBuilder(
                base=base,
                index=position.index - 1,
                count=info.count,
                decl=decl,
                nonescaping=info.nonescaping,
                sized_by=info.sized_by,
                skip_trivial_count=skip_trivial_count,
                config=config,
            )
        if position.is_return:
            return CountedReturnBuilder(
                base=base,
                count=info.count,
                decl=decl,
                nonescaping=info.nonescaping,
                sized_by=info.sized_by,
                dependencies=tuple(info.dependencies),
                config=config,
            )
        return base
    if isinstance(info, ForeignSpan):
        if position.is_param:
            return ForeignSpanBuilder(
                base=base,
                index=position.index - 1,
                decl=decl,
                type_mappings=info.type_mappings,
                node=info.original,
                nonescaping=info.nonescaping,
                config=config,
            )
        if position.is_return:
            if not info.dependencies:
                return base
            return ForeignSpanReturnBuilder(
                base=base,
                decl=decl,
                type_mappings=info.type_mappings,
                node=info.original,
                config=config,
            )
        return base
    raise SpanifyInternalError(
        f"unknown record kind {type(info).__name__}", code=C.INTERNAL_ERROR
    )


def build_chain(
    infos: Sequence[ParamInfo],
    decl: FunctionDecl,
    skip_trivial_count: bool,
    config: Optional[SpanifyConfig] = None,
) -> BoundsCheckedThunkBuilder:
    """Fold the ordered records into one builder chain."""
    config = config or SpanifyConfig()
    chain = reduce(
        lambda prev, info: make_builder(info, prev, decl, skip_trivial_count, config),
        infos,
        FunctionCallBuilder(decl),
    )
    logger.debug("%s: builder chain outermost %s", decl.name, type(chain).__name__)
    return chain
