"""spanify/annotations.py – annotation list → records.

Turns the argument list of the import marker attribute into
:class:`~spanify.model.ParamInfo` records plus two side tables (the set
of non-escaping positions and the lifetime-dependence edges per target).

Design principles
-----------------
* **Head-name dispatch** – every annotation ``.name(args...)`` is
  dispatched on ``name`` to a dedicated ``_parse_<name>`` helper
  registered with ``@_register``.
* **Fail-fast with location** – every error is a
  :class:`~spanify.errors.SpanifyDiagnosticError` blamed on the exact
  argument that is wrong.
* **No implicit coercions** – counts must be string literals, positions
  must be ``.param(N)``, ``.return`` or ``.self``.

Surface syntax (overview)
-------------------------
::

    .countedBy(pointer: .param(1), count: "len")
    .sizedBy(pointer: .param(1), size: "len * 4")
    .endedBy(start: .param(1), end: .param(2))          // rejected
    .nonescaping(pointer: .param(1))
    .lifetimeDependence(pointer: .return, dependsOn: .param(1), type: .borrow)
    ["SpanOfInt": "std.__1.span<__cxxConst<CInt>, 18446744073709551615>"]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set

from spanify.errors import (
    GrammarError,
    SpanifyDiagnosticError,
    SpanifyErrorCodes as C,
    UnimplementedFeatureError,
)
from spanify.grammar import parse_expr
from spanify.model import (
    CountedBy,
    DependenceType,
    ForeignSpan,
    LifetimeDependence,
    ParamInfo,
    Position,
)
from spanify.pointers import get_unattributed_type, get_unqualified_std_name
from spanify.syntax import (
    Call,
    DeclRef,
    DictLiteral,
    Expr,
    FunctionDecl,
    IntegerLiteral,
    MemberAccess,
    StringLiteral,
)
from spanify.validator import check_target

logger = logging.getLogger(__name__)


@dataclass
class ParsedAnnotations:
    infos: List[ParamInfo] = field(default_factory=list)
    nonescaping: Set[Position] = field(default_factory=set)
    dependencies: Dict[Position, List[LifetimeDependence]] = field(default_factory=dict)
    type_mappings: Optional[Dict[str, str]] = None


# ═══════════════════════════════════════════════════════════════════════
#  Shape helpers
# ═══════════════════════════════════════════════════════════════════════

def _enum_name(expr: Expr) -> str:
    """``.name`` or ``.name(...)`` -> ``name``."""
    target = expr.callee if isinstance(expr, Call) else expr
    if not isinstance(target, MemberAccess):
        raise SpanifyDiagnosticError(
            f"expected enum literal as argument, got '{expr}'",
            node=expr,
            code=C.EXPECTED_ENUM_LITERAL,
        )
    return target.name


def _enum_args(expr: Expr) -> Call:
    if not isinstance(expr, Call):
        raise SpanifyDiagnosticError(
            f"expected call to enum constructor, got '{expr}'",
            node=expr,
            code=C.EXPECTED_ENUM_LITERAL,
        )
    return expr


def _int_literal(expr: Expr) -> int:
    if not isinstance(expr, IntegerLiteral):
        raise SpanifyDiagnosticError(
            f"expected integer literal, got '{expr}'",
            node=expr,
            code=C.EXPECTED_LITERAL,
        )
    return expr.value


def _argument(call: Call, name: str) -> Expr:
    value = call.argument(name)
    if value is None:
        args = ", ".join(str(arg) for arg in call.args)
        raise SpanifyDiagnosticError(
            f"no argument with name '{name}' in '{args}'",
            node=call,
            code=C.MISSING_ARGUMENT,
        )
    return value


def parse_position(expr: Expr) -> Position:
    """``.param(N)`` / ``.return`` / ``.self`` -> :class:`Position`."""
    name = _enum_name(expr)
    if name == "param":
        call = _enum_args(expr)
        if len(call.args) != 1:
            raise SpanifyDiagnosticError(
                f"expected single argument to .param, got {len(call.args)} arguments",
                node=expr,
                code=C.INVALID_POSITION,
            )
        return Position.param(_int_literal(call.args[0].expr))
    if name == "return":
        return Position.RETURN
    if name == "self":
        return Position.SELF
    raise SpanifyDiagnosticError(
        f"expected 'param', 'return', or 'self', got '{name}'",
        node=expr,
        code=C.INVALID_POSITION,
    )


def _string_literal(expr: Expr) -> str:
    if not isinstance(expr, StringLiteral):
        raise SpanifyDiagnosticError(
            f"expected a string literal, got '{expr}'",
            node=expr,
            code=C.EXPECTED_LITERAL,
        )
    return expr.value


def _count_expr(
    call: Call, label: str, pointer: Position, decl: FunctionDecl
) -> Expr:
    """Parse the string literal under *label* as a count expression.

    A bare identifier must name a parameter other than *pointer*; errors
    are blamed on the string literal rather than on the (location-less)
    parsed expression.
    """
    arg = _argument(call, label)
    if not isinstance(arg, StringLiteral):
        raise SpanifyDiagnosticError(
            f"expected string literal for '{label}' parameter, got {arg}",
            node=arg,
            code=C.EXPECTED_LITERAL,
        )
    try:
        count = parse_expr(arg.value, span=arg.span)
    except GrammarError as exc:
        raise SpanifyDiagnosticError(
            f"unable to parse count expression '{arg.value}'",
            node=arg,
            code=C.INVALID_EXPRESSION_SYNTAX,
        ) from exc
    if isinstance(count, DeclRef) and decl.signature.param_index(count.name) is None:
        params = ", ".join(str(p) for p in decl.params)
        raise SpanifyDiagnosticError(
            f"no parameter with name '{count.name}' in '{params}'",
            node=arg,
            code=C.UNKNOWN_PARAMETER,
        )
    if (
        isinstance(count, DeclRef)
        and pointer.is_param
        and decl.signature.param_index(count.name) == pointer.index - 1
    ):
        raise SpanifyDiagnosticError(
            f"{label} for {pointer} cannot reference the pointer itself",
            node=arg,
            code=C.SELF_REFERENTIAL_COUNT,
        )
    return count


# ═══════════════════════════════════════════════════════════════════════
#  Dispatch registry
# ═══════════════════════════════════════════════════════════════════════

class _ParseState:
    """Side tables filled while walking one annotation list."""

    def __init__(self, decl: FunctionDecl) -> None:
        self.decl = decl
        self.nonescaping: Set[Position] = set()
        self.dependencies: Dict[Position, List[LifetimeDependence]] = {}


_Handler = Callable[[Call, _ParseState], Optional[ParamInfo]]
_ANNOTATION_DISPATCH: Dict[str, _Handler] = {}


def _register(tag: str):
    """Decorator: register an annotation parser under *tag*."""
    def deco(fn):
        _ANNOTATION_DISPATCH[tag] = fn
        return fn
    return deco


@_register("countedBy")
def _parse_counted_by(call: Call, state: _ParseState) -> ParamInfo:
    pointer = parse_position(_argument(call, "pointer"))
    count = _count_expr(call, "count", pointer, state.decl)
    return CountedBy(pointer, count, sized_by=False, original=call)


@_register("sizedBy")
def _parse_sized_by(call: Call, state: _ParseState) -> ParamInfo:
    pointer = parse_position(_argument(call, "pointer"))
    size = _count_expr(call, "size", pointer, state.decl)
    return CountedBy(pointer, size, sized_by=True, original=call)


@_register("endedBy")
def _parse_ended_by(call: Call, state: _ParseState) -> None:
    parse_position(_argument(call, "start"))
    parse_position(_argument(call, "end"))
    raise UnimplementedFeatureError("endedBy support not yet implemented", node=call)


@_register("nonescaping")
def _parse_nonescaping(call: Call, state: _ParseState) -> None:
    pointer_arg = _argument(call, "pointer")
    target = parse_position(pointer_arg)
    check_target(target, state.decl, pointer_arg)
    state.nonescaping.add(target)
    return None


@_register("lifetimeDependence")
def _parse_lifetime_dependence(call: Call, state: _ParseState) -> None:
    pointer_arg = _argument(call, "pointer")
    target = parse_position(pointer_arg)
    check_target(target, state.decl, pointer_arg)
    depends_on_arg = _argument(call, "dependsOn")
    depends_on = parse_position(depends_on_arg)
    if depends_on.is_return:
        raise SpanifyDiagnosticError(
            "lifetime cannot depend on the return value",
            node=depends_on_arg,
            code=C.RETURN_DEPENDENCE,
        )
    type_arg = _argument(call, "type")
    type_name = _enum_name(type_arg)
    if type_name == "borrow":
        dep_type = DependenceType.BORROW
    elif type_name == "copy":
        dep_type = DependenceType.COPY
    else:
        raise SpanifyDiagnosticError(
            f"expected '.copy' or '.borrow', got '{type_arg}'",
            node=type_arg,
            code=C.INVALID_DEPENDENCE_TYPE,
        )
    state.dependencies.setdefault(target, []).append(
        LifetimeDependence(depends_on, dep_type)
    )
    # a view copied from a parameter cannot outlive that parameter
    if dep_type is DependenceType.COPY and not depends_on.is_self:
        state.nonescaping.add(depends_on)
    state.nonescaping.add(target)
    return None


def parse_annotation(expr: Expr, state: _ParseState) -> Optional[ParamInfo]:
    """Parse one annotation; records side-table facts into *state*."""
    if not isinstance(expr, Call):
        raise SpanifyDiagnosticError(
            f"expected annotation enum literal as argument, got '{expr}'",
            node=expr,
            code=C.EXPECTED_ENUM_LITERAL,
        )
    name = _enum_name(expr)
    handler = _ANNOTATION_DISPATCH.get(name)
    if handler is None:
        raise SpanifyDiagnosticError(
            "expected 'countedBy', 'sizedBy', 'endedBy', 'nonescaping' or "
            f"'lifetimeDependence', got '{name}'",
            node=expr,
            code=C.UNKNOWN_ANNOTATION,
        )
    return handler(expr, state)


# ═══════════════════════════════════════════════════════════════════════
#  Type mappings and foreign spans
# ═══════════════════════════════════════════════════════════════════════

def parse_type_mappings(expr: Optional[Expr]) -> Optional[Dict[str, str]]:
    """The trailing ``["Foreign": "std.span<...>"]`` table, or ``None``."""
    if not isinstance(expr, DictLiteral):
        return None
    mappings: Dict[str, str] = {}
    for key, value in expr.elements:
        mappings[_string_literal(key)] = _string_literal(value)
    return mappings


def is_foreign_span(name: str, type_mappings: Dict[str, str]) -> bool:
    desugared = type_mappings.get(name)
    if desugared is None:
        return False
    unqualified = get_unqualified_std_name(desugared)
    return unqualified is not None and unqualified.startswith("span<")


def find_foreign_spans(
    decl: FunctionDecl, type_mappings: Optional[Dict[str, str]]
) -> List[ParamInfo]:
    """One :class:`ForeignSpan` per parameter/return type mapped to ``std::span``."""
    if type_mappings is None:
        return []
    found: List[ParamInfo] = []
    for i, param in enumerate(decl.params):
        if is_foreign_span(str(get_unattributed_type(param.type)), type_mappings):
            found.append(ForeignSpan(Position.param(i + 1), type_mappings, original=param))
    return_type = decl.signature.return_type
    if return_type is not None and is_foreign_span(
        str(get_unattributed_type(return_type)), type_mappings
    ):
        found.append(ForeignSpan(Position.RETURN, type_mappings, original=return_type))
    return found


# ═══════════════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════════════

def parse_annotations(arguments: Sequence[Expr], decl: FunctionDecl) -> ParsedAnnotations:
    """Parse the full marker argument list of *decl*."""
    arguments = list(arguments)
    type_mappings = parse_type_mappings(arguments[-1] if arguments else None)
    if type_mappings is not None:
        arguments.pop()

    state = _ParseState(decl)
    infos: List[ParamInfo] = []
    for expr in arguments:
        info = parse_annotation(expr, state)
        if info is not None:
            infos.append(info)
    infos.extend(find_foreign_spans(decl, type_mappings))

    logger.debug(
        "%s: %d record(s), nonescaping=%s",
        decl.name,
        len(infos),
        sorted(str(p) for p in state.nonescaping),
    )
    return ParsedAnnotations(
        infos=infos,
        nonescaping=state.nonescaping,
        dependencies=state.dependencies,
        type_mappings=type_mappings,
    )
