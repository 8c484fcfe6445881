"""
Data model for annotation records.

A record (``ParamInfo``) says what kind of bounds information applies to
one position of the declaration: a parameter, the return value, or the
implicit receiver.  Records are created by the annotation parser, get
their ``nonescaping`` flag and ``dependencies`` list filled in by the
resolver, and are finally turned into thunk builders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sexpdata import Symbol

from spanify.errors import SpanifyInternalError, SpanifyErrorCodes as C
from spanify.syntax import Expr, FunctionDecl


class PositionKind(Enum):
    PARAM = "param"
    RETURN = "return"
    SELF = "self"


@dataclass(frozen=True, slots=True)
class Position:
    """Target of an annotation.

    Parameters are 1-based.  Use :meth:`param`, :attr:`RETURN` and
    :attr:`SELF` rather than the constructor.
    """

    kind: PositionKind
    index: int = 0

    @classmethod
    def param(cls, index: int) -> "Position":
        return cls(PositionKind.PARAM, index)

    @property
    def is_param(self) -> bool:
        return self.kind is PositionKind.PARAM

    @property
    def is_return(self) -> bool:
        return self.kind is PositionKind.RETURN

    @property
    def is_self(self) -> bool:
        return self.kind is PositionKind.SELF

    def ordinal(self) -> int:
        """Sort key: parameter index, 0 for the receiver, -1 for the return value."""
        if self.kind is PositionKind.PARAM:
            return self.index
        if self.kind is PositionKind.SELF:
            return 0
        return -1

    def to_sexp(self) -> Any:
        if self.kind is PositionKind.PARAM:
            return [Symbol("param"), self.index]
        return Symbol(self.kind.value)

    def __str__(self) -> str:
        if self.kind is PositionKind.PARAM:
            return f".param({self.index})"
        return f".{self.kind.value}"


Position.RETURN = Position(PositionKind.RETURN)
Position.SELF = Position(PositionKind.SELF)


class DependenceType(Enum):
    BORROW = "borrow"
    COPY = "copy"


@dataclass(frozen=True, slots=True)
class LifetimeDependence:
    depends_on: Position
    type: DependenceType

    def __post_init__(self) -> None:
        if self.depends_on.is_return:
            raise SpanifyInternalError(
                "lifetime dependence on the return value",
                code=C.INVARIANT_VIOLATION,
            )

    def to_sexp(self) -> Any:
        return [
            [Symbol("dependsOn"), self.depends_on.to_sexp()],
            [Symbol("type"), Symbol(self.type.value)],
        ]


def _bool_sexp(value: bool) -> Symbol:
    return Symbol("true" if value else "false")


@dataclass
class CountedBy:
    """``countedBy`` (element count) or ``sizedBy`` (byte count) record."""

    pointer_index: Position
    count: Expr
    sized_by: bool = False
    nonescaping: bool = False
    dependencies: List[LifetimeDependence] = field(default_factory=list)
    original: Any = field(default=None, compare=False, repr=False)

    def __str__(self) -> str:
        if self.sized_by:
            return (
                f'.sizedBy(pointer: {self.pointer_index}, size: "{self.count}", '
                f"nonescaping: {str(self.nonescaping).lower()})"
            )
        return (
            f'.countedBy(pointer: {self.pointer_index}, count: "{self.count}", '
            f"nonescaping: {str(self.nonescaping).lower()})"
        )

    def to_sexp(self) -> Any:
        return [
            Symbol("sizedBy" if self.sized_by else "countedBy"),
            [Symbol("pointer"), self.pointer_index.to_sexp()],
            [Symbol("size" if self.sized_by else "count"), str(self.count)],
            [Symbol("nonescaping"), _bool_sexp(self.nonescaping)],
            [Symbol("dependencies")] + [d.to_sexp() for d in self.dependencies],
        ]


@dataclass
class ForeignSpan:
    """A parameter or return type recognised as a foreign ``std::span``."""

    pointer_index: Position
    type_mappings: Dict[str, str] = field(default_factory=dict)
    nonescaping: bool = False
    dependencies: List[LifetimeDependence] = field(default_factory=list)
    original: Any = field(default=None, compare=False, repr=False)

    def __str__(self) -> str:
        return (
            f"std::span(pointer: {self.pointer_index}, "
            f"nonescaping: {str(self.nonescaping).lower()})"
        )

    def to_sexp(self) -> Any:
        return [
            Symbol("foreignSpan"),
            [Symbol("pointer"), self.pointer_index.to_sexp()],
            [Symbol("nonescaping"), _bool_sexp(self.nonescaping)],
            [Symbol("dependencies")] + [d.to_sexp() for d in self.dependencies],
        ]


ParamInfo = Union[CountedBy, ForeignSpan]


def position_name(decl: FunctionDecl, position: Position) -> Optional[str]:
    """Name used to refer to *position* inside the wrapper body."""
    if position.is_param:
        return decl.params[position.index - 1].name
    if position.is_self:
        return "self"
    return None
