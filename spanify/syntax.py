"""spanify/syntax.py – syntax model for declarations, types and expressions.

The pipeline consumes function declarations and produces new ones; both
directions go through the frozen dataclasses defined here.  Parsing text
into these nodes lives in :mod:`spanify.grammar`; printing them back to
source lives at the bottom of this module (:func:`to_source`).

Design invariants
-----------------
* Every node is a frozen dataclass (immutable after construction), so
  nodes can be shared between the original and the synthesized
  declaration.
* Children are stored in tuples, never lists.
* Every node carries a ``span`` that is excluded from equality, so that
  ``parse_expr("n") == DeclRef("n")`` holds in tests.
* ``str(node)`` is the canonical printed form; type-name lookups (e.g.
  foreign type mappings) are keyed on it.

Module layout
-------------
§1  Types
§2  Expressions and statements
§3  Declarations
§4  Printer
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional, Tuple, Union

from spanify.errors import NO_SPAN, SourceSpan

DEFAULT_INDENT = "    "


# ════════════════════════════════════════════════════════════════════════
# §1  Types
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IdentifierType:
    """``Name`` or ``Name<Args>``."""

    name: str
    generic_args: Tuple["TypeSyntax", ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class MemberType:
    """``Base.Name`` or ``Base.Name<Args>``."""

    base: "TypeSyntax"
    name: str
    generic_args: Tuple["TypeSyntax", ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class OptionalType:
    """``Wrapped?``"""

    wrapped: "TypeSyntax"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class ImplicitlyUnwrappedOptionalType:
    """``Wrapped!``"""

    wrapped: "TypeSyntax"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class AttributedType:
    """A base type preceded by specifiers/attributes (``inout T``, ``@escaping T``)."""

    specifiers: Tuple[str, ...]
    base: "TypeSyntax"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class TupleType:
    elements: Tuple["TypeSyntax", ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class LiteralType:
    """Integer value used as a generic argument (``Foo<CInt, 16>``)."""

    text: str
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class OpaqueType:
    """``some Base``; only produced by the pipeline."""

    base: "TypeSyntax"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


TypeSyntax = Union[
    IdentifierType,
    MemberType,
    OptionalType,
    ImplicitlyUnwrappedOptionalType,
    AttributedType,
    TupleType,
    LiteralType,
    OpaqueType,
]


# ════════════════════════════════════════════════════════════════════════
# §2  Expressions and statements
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IntegerLiteral:
    value: int
    text: str = ""
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class StringLiteral:
    value: str
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class BooleanLiteral:
    value: bool
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class NilLiteral:
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return "nil"


@dataclass(frozen=True, slots=True)
class DeclRef:
    """A bare identifier reference."""

    name: str
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class TypeExpr:
    """A type used in expression position, e.g. the callee of ``CInt(exactly: x)``."""

    type: TypeSyntax
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return str(self.type)


@dataclass(frozen=True, slots=True)
class MemberAccess:
    """``base.name``; ``base`` is ``None`` for implicit members (``.param``)."""

    base: Optional["Expr"]
    name: str
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class ForceUnwrap:
    operand: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class OptionalChain:
    """``operand?``; combine with :class:`MemberAccess` for ``p?.count``."""

    operand: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class LabeledExpr:
    label: Optional[str]
    expr: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class Closure:
    params: Tuple[str, ...]
    body: Tuple["Stmt", ...]
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class Call:
    callee: "Expr"
    args: Tuple[LabeledExpr, ...] = ()
    trailing_closure: Optional[Closure] = None
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)

    def argument(self, label: str) -> Optional["Expr"]:
        for arg in self.args:
            if arg.label == label:
                return arg.expr
        return None


@dataclass(frozen=True, slots=True)
class DictLiteral:
    elements: Tuple[Tuple["Expr", "Expr"], ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class TupleExpr:
    elements: Tuple["Expr", ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class BinaryExpr:
    op: str
    lhs: "Expr"
    rhs: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class PrefixExpr:
    op: str
    operand: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class ParenExpr:
    inner: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class UnsafeExpr:
    """``unsafe <inner>`` acknowledgement marker."""

    inner: "Expr"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class IfExpr:
    """``if cond { ... } else { ... }``; usable as statement or expression."""

    condition: "Expr"
    then_body: Tuple["Stmt", ...]
    else_body: Optional[Tuple["Stmt", ...]] = None
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


Expr = Union[
    IntegerLiteral,
    StringLiteral,
    BooleanLiteral,
    NilLiteral,
    DeclRef,
    TypeExpr,
    MemberAccess,
    ForceUnwrap,
    OptionalChain,
    Call,
    Closure,
    DictLiteral,
    TupleExpr,
    BinaryExpr,
    PrefixExpr,
    ParenExpr,
    UnsafeExpr,
    IfExpr,
]


@dataclass(frozen=True, slots=True)
class VarDecl:
    name: str
    type: Optional[TypeSyntax]
    value: Expr
    keyword: str = "let"
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class ReturnStmt:
    value: Optional[Expr] = None
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class ExprStmt:
    expr: Expr
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


Stmt = Union[VarDecl, ReturnStmt, ExprStmt]


# ════════════════════════════════════════════════════════════════════════
# §3  Declarations
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Token:
    """A bare piece of source text with its position (e.g. a declaration name)."""

    text: str
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class Param:
    """``first second: Type``; ``second_name`` is ``None`` when only one name is given."""

    first_name: str
    second_name: Optional[str]
    type: TypeSyntax
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    @property
    def name(self) -> str:
        """The name the parameter is referred to by inside the body."""
        return self.second_name if self.second_name is not None else self.first_name

    @property
    def label(self) -> Optional[str]:
        """The argument label at call sites, ``None`` for ``_``."""
        return None if self.first_name == "_" else self.first_name

    def with_type(self, new_type: TypeSyntax) -> "Param":
        return replace(self, type=new_type)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class Attribute:
    """``@name`` or ``@name(arguments)``.

    ``arguments`` is kept as raw text; only the import marker's
    arguments are parsed further (see
    :func:`spanify.grammar.parse_attribute_arguments`).
    ``arguments_offset`` is the absolute offset of the argument text in
    ``source_text`` so that annotation diagnostics point into the file.
    """

    name: str
    arguments: Optional[str] = None
    arguments_offset: int = 0
    source_text: str = field(default="", compare=False, repr=False)
    file: str = field(default="", compare=False, repr=False)
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class FunctionSignature:
    params: Tuple[Param, ...] = ()
    return_type: Optional[TypeSyntax] = None
    effects: Tuple[str, ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def param_index(self, name: str) -> Optional[int]:
        """0-based index of the parameter called *name*, or ``None``."""
        for i, param in enumerate(self.params):
            if param.name == name:
                return i
        return None

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class FunctionDecl:
    name: Token
    signature: FunctionSignature
    attributes: Tuple[Attribute, ...] = ()
    modifiers: Tuple[str, ...] = ()
    body: Optional[Tuple[Stmt, ...]] = None
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    @property
    def params(self) -> Tuple[Param, ...]:
        return self.signature.params

    def attribute(self, name: str) -> Optional[Attribute]:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None

    def __str__(self) -> str:
        return to_source(self)


@dataclass(frozen=True, slots=True)
class OpaqueDecl:
    """Any declaration the host parser understood but that is not a function."""

    kind: str
    name: Token
    attributes: Tuple[Attribute, ...] = ()
    span: SourceSpan = field(default=NO_SPAN, compare=False, repr=False)

    def __str__(self) -> str:
        return f"{self.kind} {self.name}"


Decl = Union[FunctionDecl, OpaqueDecl]


# ════════════════════════════════════════════════════════════════════════
# §4  Printer
# ════════════════════════════════════════════════════════════════════════
#
# One printer function per node class, registered in ``_PRINTERS``.
# Block-carrying nodes (closures, ifs, declarations with bodies) print
# their nested statements one ``indent`` deeper than their own first
# line; callers that embed the result shift every line uniformly.
# ────────────────────────────────────────────────────────────────────────

_Printer = Callable[[object, str], str]
_PRINTERS: Dict[type, _Printer] = {}


def _register(cls: type):
    """Decorator: register a printer for *cls*."""
    def deco(fn):
        _PRINTERS[cls] = fn
        return fn
    return deco


def to_source(node: object, indent: str = DEFAULT_INDENT) -> str:
    """Print *node* as source text."""
    printer = _PRINTERS.get(type(node))
    if printer is None:
        raise TypeError(f"no printer for {type(node).__name__}")
    return printer(node, indent)


def indent_lines(text: str, indent: str) -> str:
    """Prefix every non-empty line of *text* with *indent*."""
    return "\n".join(indent + line if line else line for line in text.split("\n"))


def _block(stmts: Tuple[Stmt, ...], indent: str) -> str:
    if not stmts:
        return "{\n}"
    inner = "\n".join(indent_lines(to_source(s, indent), indent) for s in stmts)
    return "{\n" + inner + "\n}"


def _generic_suffix(args: Tuple[TypeSyntax, ...], indent: str) -> str:
    if not args:
        return ""
    return "<" + ", ".join(to_source(a, indent) for a in args) + ">"


@_register(IdentifierType)
def _print_identifier_type(node: IdentifierType, indent: str) -> str:
    return node.name + _generic_suffix(node.generic_args, indent)


@_register(MemberType)
def _print_member_type(node: MemberType, indent: str) -> str:
    base = to_source(node.base, indent)
    return f"{base}.{node.name}" + _generic_suffix(node.generic_args, indent)


@_register(OptionalType)
def _print_optional_type(node: OptionalType, indent: str) -> str:
    return to_source(node.wrapped, indent) + "?"


@_register(ImplicitlyUnwrappedOptionalType)
def _print_iuo_type(node: ImplicitlyUnwrappedOptionalType, indent: str) -> str:
    return to_source(node.wrapped, indent) + "!"


@_register(AttributedType)
def _print_attributed_type(node: AttributedType, indent: str) -> str:
    return " ".join(node.specifiers + (to_source(node.base, indent),))


@_register(TupleType)
def _print_tuple_type(node: TupleType, indent: str) -> str:
    return "(" + ", ".join(to_source(e, indent) for e in node.elements) + ")"


@_register(LiteralType)
def _print_literal_type(node: LiteralType, indent: str) -> str:
    return node.text


@_register(OpaqueType)
def _print_opaque_type(node: OpaqueType, indent: str) -> str:
    return "some " + to_source(node.base, indent)


@_register(IntegerLiteral)
def _print_int(node: IntegerLiteral, indent: str) -> str:
    return node.text or str(node.value)


@_register(StringLiteral)
def _print_string(node: StringLiteral, indent: str) -> str:
    escaped = (
        node.value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


@_register(BooleanLiteral)
def _print_bool(node: BooleanLiteral, indent: str) -> str:
    return "true" if node.value else "false"


@_register(NilLiteral)
def _print_nil(node: NilLiteral, indent: str) -> str:
    return "nil"


@_register(DeclRef)
def _print_declref(node: DeclRef, indent: str) -> str:
    return node.name


@_register(TypeExpr)
def _print_type_expr(node: TypeExpr, indent: str) -> str:
    return to_source(node.type, indent)


@_register(MemberAccess)
def _print_member(node: MemberAccess, indent: str) -> str:
    if node.base is None:
        return "." + node.name
    return f"{to_source(node.base, indent)}.{node.name}"


@_register(ForceUnwrap)
def _print_force_unwrap(node: ForceUnwrap, indent: str) -> str:
    return to_source(node.operand, indent) + "!"


@_register(OptionalChain)
def _print_optional_chain(node: OptionalChain, indent: str) -> str:
    return to_source(node.operand, indent) + "?"


@_register(LabeledExpr)
def _print_labeled(node: LabeledExpr, indent: str) -> str:
    value = to_source(node.expr, indent)
    if node.label is None:
        return value
    return f"{node.label}: {value}"


@_register(Closure)
def _print_closure(node: Closure, indent: str) -> str:
    head = "{ " + ", ".join(node.params) + " in" if node.params else "{"
    inner = "\n".join(indent_lines(to_source(s, indent), indent) for s in node.body)
    return head + "\n" + inner + "\n}"


@_register(Call)
def _print_call(node: Call, indent: str) -> str:
    callee = to_source(node.callee, indent)
    args = ", ".join(to_source(a, indent) for a in node.args)
    if node.trailing_closure is not None:
        closure = to_source(node.trailing_closure, indent)
        if node.args:
            return f"{callee}({args}) {closure}"
        return f"{callee} {closure}"
    return f"{callee}({args})"


@_register(DictLiteral)
def _print_dict(node: DictLiteral, indent: str) -> str:
    if not node.elements:
        return "[:]"
    entries = ", ".join(
        f"{to_source(k, indent)}: {to_source(v, indent)}" for k, v in node.elements
    )
    return f"[{entries}]"


@_register(TupleExpr)
def _print_tuple_expr(node: TupleExpr, indent: str) -> str:
    return "(" + ", ".join(to_source(e, indent) for e in node.elements) + ")"


@_register(BinaryExpr)
def _print_binary(node: BinaryExpr, indent: str) -> str:
    return f"{to_source(node.lhs, indent)} {node.op} {to_source(node.rhs, indent)}"


@_register(PrefixExpr)
def _print_prefix(node: PrefixExpr, indent: str) -> str:
    return node.op + to_source(node.operand, indent)


@_register(ParenExpr)
def _print_paren(node: ParenExpr, indent: str) -> str:
    return f"({to_source(node.inner, indent)})"


@_register(UnsafeExpr)
def _print_unsafe(node: UnsafeExpr, indent: str) -> str:
    return "unsafe " + to_source(node.inner, indent)


@_register(IfExpr)
def _print_if(node: IfExpr, indent: str) -> str:
    text = f"if {to_source(node.condition, indent)} " + _block(node.then_body, indent)
    if node.else_body is not None:
        text += " else " + _block(node.else_body, indent)
    return text


@_register(VarDecl)
def _print_var(node: VarDecl, indent: str) -> str:
    annotation = f": {to_source(node.type, indent)}" if node.type is not None else ""
    return f"{node.keyword} {node.name}{annotation} = {to_source(node.value, indent)}"


@_register(ReturnStmt)
def _print_return(node: ReturnStmt, indent: str) -> str:
    if node.value is None:
        return "return"
    return "return " + to_source(node.value, indent)


@_register(ExprStmt)
def _print_expr_stmt(node: ExprStmt, indent: str) -> str:
    return to_source(node.expr, indent)


@_register(Token)
def _print_token(node: Token, indent: str) -> str:
    return node.text


@_register(Param)
def _print_param(node: Param, indent: str) -> str:
    names = node.first_name
    if node.second_name is not None:
        names += " " + node.second_name
    return f"{names}: {to_source(node.type, indent)}"


@_register(Attribute)
def _print_attribute(node: Attribute, indent: str) -> str:
    if node.arguments is None:
        return "@" + node.name
    return f"@{node.name}({node.arguments})"


@_register(FunctionSignature)
def _print_signature(node: FunctionSignature, indent: str) -> str:
    text = "(" + ", ".join(to_source(p, indent) for p in node.params) + ")"
    for effect in node.effects:
        text += " " + effect
    if node.return_type is not None:
        text += " -> " + to_source(node.return_type, indent)
    return text


@_register(FunctionDecl)
def _print_function(node: FunctionDecl, indent: str) -> str:
    lines = [to_source(a, indent) for a in node.attributes]
    head = " ".join(node.modifiers + ("func",))
    head += f" {node.name.text}{to_source(node.signature, indent)}"
    if node.body is not None:
        head += " " + _block(node.body, indent)
    lines.append(head)
    return "\n".join(lines)


@_register(OpaqueDecl)
def _print_opaque_decl(node: OpaqueDecl, indent: str) -> str:
    lines = [to_source(a, indent) for a in node.attributes]
    lines.append(f"{node.kind} {node.name.text}")
    return "\n".join(lines)
