"""
grammar.py — host parsers for types, expressions and declarations
=================================================================

Small PEG front-end (parsimonious) that turns host-language text into the
:mod:`spanify.syntax` model.  Four entry points share one grammar:

* :func:`parse_type` — ``UnsafeMutablePointer<CInt>?``, ``inout Foo``,
  ``std.__1.span<__cxxConst<CInt>, 16>``
* :func:`parse_expr` — count expressions and annotation arguments:
  integer literals, identifiers, member access, calls, prefix operators,
  ``* / % + - << >>``, parentheses, string/bool/nil literals and
  dictionary literals
* :func:`parse_attribute_arguments` — the comma-separated argument list
  of an attribute
* :func:`parse_source` / :func:`parse_decl` — a file of body-less
  declarations::

      @_SpanifyImport(.countedBy(pointer: .param(1), count: "len"))
      public func myFunc(_ ptr: UnsafePointer<CInt>, _ len: CInt) -> CInt

Every failure raises :class:`~spanify.errors.GrammarError` carrying the
line and column of the failure.
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Tuple

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from spanify.errors import GrammarError, SourceSpan, SpanifyError, SpanifyErrorCodes as C
from spanify.syntax import (
    Attribute,
    AttributedType,
    BinaryExpr,
    BooleanLiteral,
    Call,
    DeclRef,
    DictLiteral,
    Expr,
    FunctionDecl,
    FunctionSignature,
    IdentifierType,
    ImplicitlyUnwrappedOptionalType,
    IntegerLiteral,
    LabeledExpr,
    LiteralType,
    MemberAccess,
    MemberType,
    NilLiteral,
    OpaqueDecl,
    OptionalType,
    Param,
    ParenExpr,
    PrefixExpr,
    StringLiteral,
    Token,
    TupleType,
    TypeSyntax,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR
# ═══════════════════════════════════════════════════════════════════

HOST_GRAMMAR = Grammar(r'''
    # ─────────────────────────────────────────────────────────────
    # Declarations
    # ─────────────────────────────────────────────────────────────

    source              = _ declaration*
    declaration         = function_decl / opaque_decl

    function_decl       = attribute* modifier* func_kw identifier _ param_clause _ effect* return_clause? terminator? _
    opaque_decl         = attribute* modifier* opaque_kw identifier opaque_tail terminator? _
    opaque_tail         = ~r"[^;\n]*"

    func_kw             = ~r"func\b" _
    opaque_kw           = ~r"(struct|class|enum|protocol|extension|typealias|var|let|actor)\b" _
    modifier            = ~r"(public|internal|private|fileprivate|open|package|static|final|mutating|nonmutating|override|nonisolated|dynamic|consuming|borrowing)\b(?!\s*:)" _

    attribute           = "@" identifier attribute_args? _
    attribute_args      = "(" balanced ")"
    balanced            = balanced_part*
    balanced_part       = string_literal / nested_parens / ~r"[^()\"]+"
    nested_parens       = "(" balanced ")"

    param_clause        = "(" _ param_list? _ ")"
    param_list          = param (_ "," _ param)*
    param               = identifier second_name? _ ":" _ type
    second_name         = ws identifier

    effect              = ~r"(async|throws|rethrows)\b" _
    return_clause       = "->" _ type _
    terminator          = ";" _

    # ─────────────────────────────────────────────────────────────
    # Types
    # ─────────────────────────────────────────────────────────────

    type_text           = _ type _
    type                = attributed_type / postfix_type
    attributed_type     = type_specifier+ postfix_type
    type_specifier      = type_specifier_word _
    type_specifier_word = type_attribute / specifier_kw
    type_attribute      = "@" identifier
    specifier_kw        = ~r"(inout|borrowing|consuming|sending|__shared|__owned|some|any)\b"

    postfix_type        = primary_type type_suffix*
    type_suffix         = "?" / "!"
    primary_type        = tuple_type / member_chain
    tuple_type          = "(" _ type_list? _ ")"
    type_list           = type (_ "," _ type)*
    member_chain        = type_component member_type_suffix*
    member_type_suffix  = "." type_component
    type_component      = identifier generic_clause?
    generic_clause      = "<" _ generic_arg (_ "," _ generic_arg)* _ ">"
    generic_arg         = literal_type / type
    literal_type        = ~r"-?[0-9]+"

    # ─────────────────────────────────────────────────────────────
    # Expressions
    # ─────────────────────────────────────────────────────────────

    attribute_arguments = _ argument_list? _
    expr                = _ additive _

    additive            = multiplicative additive_tail*
    additive_tail       = _ additive_op _ multiplicative
    additive_op         = "+" / "-"

    multiplicative      = shift multiplicative_tail*
    multiplicative_tail = _ multiplicative_op _ shift
    multiplicative_op   = "*" / "/" / "%"

    shift               = prefix shift_tail*
    shift_tail          = _ shift_op _ prefix
    shift_op            = "<<" / ">>"

    prefix              = prefix_op? postfix
    prefix_op           = "-" / "!" / "~"

    postfix             = primary postfix_suffix*
    postfix_suffix      = member_suffix / call_suffix
    member_suffix       = "." identifier
    call_suffix         = "(" _ argument_list? _ ")"
    argument_list       = argument (_ "," _ argument)* (_ ",")?
    argument            = labeled_argument / expr
    labeled_argument    = identifier _ ":" expr

    primary             = string_literal / integer_literal / boolean_literal
                        / nil_literal / implicit_member / dict_literal
                        / paren_expr / identifier
    implicit_member     = "." identifier
    paren_expr          = "(" expr ")"
    dict_literal        = empty_dict / nonempty_dict
    empty_dict          = "[" _ ":" _ "]"
    nonempty_dict       = "[" _ dict_entry dict_tail* (_ ",")? _ "]"
    dict_tail           = _ "," _ dict_entry
    dict_entry          = expr ":" expr

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    string_literal      = ~r'"(?:[^"\\\n]|\\.)*"'
    integer_literal     = ~r"0[xX][0-9a-fA-F_]+|0[bB][01_]+|0[oO][0-7_]+|[0-9][0-9_]*"
    boolean_literal     = ~r"(true|false)\b"
    nil_literal         = ~r"nil\b"
    identifier          = ~r"[A-Za-z_][A-Za-z0-9_]*"

    ws                  = ~r"(?:\s+|//[^\n]*|/\*.*?\*/)+"s
    _                   = ~r"(?:\s+|//[^\n]*|/\*.*?\*/)*"s
''')


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — PARSE TREE → SYNTAX MODEL
# ═══════════════════════════════════════════════════════════════════

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", '"': '"', "\\": "\\", "'": "'"}
_ESCAPE_RE = re.compile(r"\\(.)")


def _unescape(body: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _items(value: Any) -> List[Any]:
    """Results of a ``*``/``+`` quantifier (an unmatched quantifier visits to its Node)."""
    return value if isinstance(value, list) else []


def _optional(value: Any) -> Any:
    """Result of a ``?`` quantifier, or ``None`` when it did not match."""
    if isinstance(value, list) and value:
        return value[0]
    return None


class HostSyntaxBuilder(NodeVisitor):
    """Transforms a parsimonious parse tree into :mod:`spanify.syntax` nodes.

    ``base`` is the absolute offset of the parsed text inside
    ``source_text``; spans are computed against ``source_text`` so that
    nodes parsed out of an attribute argument list still point at the
    right line of the file.  When ``fixed_span`` is given every node gets
    that span instead (used for expressions parsed from string literals).
    """

    unwrapped_exceptions = (SpanifyError,)

    def __init__(
        self,
        source_text: str,
        base: int = 0,
        file: str = "",
        fixed_span: Optional[SourceSpan] = None,
    ):
        self.source_text = source_text
        self.base = base
        self.file = file
        self.fixed_span = fixed_span

    def generic_visit(self, node, visited_children):
        """Default: children, or the node itself for leaves and unmatched quantifiers."""
        return visited_children or node

    def _span(self, node: Node, end: Optional[int] = None) -> SourceSpan:
        if self.fixed_span is not None:
            return self.fixed_span
        stop = node.end if end is None else end
        return SourceSpan.from_offsets(
            self.source_text, self.base + node.start, self.base + stop, self.file
        )

    # ─────────────────────────────────────────────────────────────
    # Declarations
    # ─────────────────────────────────────────────────────────────

    def visit_source(self, node, visited_children):
        _, decls = visited_children
        return _items(decls)

    def visit_declaration(self, node, visited_children):
        return visited_children[0]

    def visit_function_decl(self, node, visited_children):
        attrs, mods, _, name, _, params, _, effects, ret, _, _ = visited_children
        name_node = node.children[3]
        end = node.children[-1].start
        signature = FunctionSignature(
            params=params,
            return_type=_optional(ret),
            effects=tuple(_items(effects)),
            span=self._span(node.children[5]),
        )
        return FunctionDecl(
            name=Token(name, self._span(name_node)),
            signature=signature,
            attributes=tuple(_items(attrs)),
            modifiers=tuple(_items(mods)),
            span=self._span(node, end),
        )

    def visit_opaque_decl(self, node, visited_children):
        attrs, _, kind, name, _, _, _ = visited_children
        name_node = node.children[3]
        return OpaqueDecl(
            kind=kind,
            name=Token(name, self._span(name_node)),
            attributes=tuple(_items(attrs)),
            span=self._span(node, node.children[-1].start),
        )

    def visit_func_kw(self, node, visited_children):
        return "func"

    def visit_opaque_kw(self, node, visited_children):
        return node.children[0].text

    def visit_modifier(self, node, visited_children):
        return node.children[0].text

    def visit_effect(self, node, visited_children):
        return node.children[0].text

    def visit_attribute(self, node, visited_children):
        _, name, args, _ = visited_children
        end = node.children[-1].start
        arguments = _optional(args)
        if arguments is None:
            return Attribute(
                name=name,
                source_text=self.source_text,
                file=self.file,
                span=self._span(node, end),
            )
        text, offset = arguments
        return Attribute(
            name=name,
            arguments=text,
            arguments_offset=self.base + offset,
            source_text=self.source_text,
            file=self.file,
            span=self._span(node, end),
        )

    def visit_attribute_args(self, node, visited_children):
        return (node.text[1:-1], node.start + 1)

    def visit_param_clause(self, node, visited_children):
        _, _, params, _, _ = visited_children
        return tuple(_optional(params) or ())

    def visit_param_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + [item[3] for item in _items(rest)]

    def visit_param(self, node, visited_children):
        first, second, _, _, _, type_ = visited_children
        return Param(first, _optional(second), type_, self._span(node))

    def visit_second_name(self, node, visited_children):
        _, name = visited_children
        return name

    def visit_return_clause(self, node, visited_children):
        _, _, type_, _ = visited_children
        return type_

    # ─────────────────────────────────────────────────────────────
    # Types
    # ─────────────────────────────────────────────────────────────

    def visit_type_text(self, node, visited_children):
        _, type_, _ = visited_children
        return type_

    def visit_type(self, node, visited_children):
        return visited_children[0]

    def visit_attributed_type(self, node, visited_children):
        specifiers, base = visited_children
        return AttributedType(tuple(specifiers), base, self._span(node))

    def visit_type_specifier(self, node, visited_children):
        word, _ = visited_children
        return word

    def visit_type_specifier_word(self, node, visited_children):
        return visited_children[0]

    def visit_type_attribute(self, node, visited_children):
        return node.text

    def visit_specifier_kw(self, node, visited_children):
        return node.text

    def visit_postfix_type(self, node, visited_children):
        result, suffixes = visited_children
        for suffix in _items(suffixes):
            end = suffix.end
            if suffix.text == "?":
                result = OptionalType(result, self._span(node, end))
            else:
                result = ImplicitlyUnwrappedOptionalType(result, self._span(node, end))
        return result

    def visit_type_suffix(self, node, visited_children):
        return node

    def visit_primary_type(self, node, visited_children):
        return visited_children[0]

    def visit_tuple_type(self, node, visited_children):
        _, _, elements, _, _ = visited_children
        return TupleType(tuple(_optional(elements) or ()), self._span(node))

    def visit_type_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + [item[3] for item in _items(rest)]

    def visit_member_chain(self, node, visited_children):
        (name, args, end), rest = visited_children
        result: TypeSyntax = IdentifierType(name, args, self._span(node, end))
        for name, args, end in _items(rest):
            result = MemberType(result, name, args, self._span(node, end))
        return result

    def visit_member_type_suffix(self, node, visited_children):
        _, component = visited_children
        return component

    def visit_type_component(self, node, visited_children):
        name, generics = visited_children
        return (name, tuple(_optional(generics) or ()), node.end)

    def visit_generic_clause(self, node, visited_children):
        _, _, first, rest, _, _ = visited_children
        return [first] + [item[3] for item in _items(rest)]

    def visit_generic_arg(self, node, visited_children):
        return visited_children[0]

    def visit_literal_type(self, node, visited_children):
        return LiteralType(node.text, self._span(node))

    # ─────────────────────────────────────────────────────────────
    # Expressions
    # ─────────────────────────────────────────────────────────────

    def visit_attribute_arguments(self, node, visited_children):
        _, arguments, _ = visited_children
        return list(_optional(arguments) or [])

    def visit_expr(self, node, visited_children):
        _, inner, _ = visited_children
        return inner

    def _fold_binary(self, node, first, tails):
        result = first
        for op, rhs, end in _items(tails):
            result = BinaryExpr(op, result, rhs, self._span(node, end))
        return result

    def visit_additive(self, node, visited_children):
        first, tails = visited_children
        return self._fold_binary(node, first, tails)

    visit_multiplicative = visit_additive
    visit_shift = visit_additive

    def visit_additive_tail(self, node, visited_children):
        _, op, _, rhs = visited_children
        return (op, rhs, node.end)

    visit_multiplicative_tail = visit_additive_tail
    visit_shift_tail = visit_additive_tail

    def visit_additive_op(self, node, visited_children):
        return node.text

    visit_multiplicative_op = visit_additive_op
    visit_shift_op = visit_additive_op
    visit_prefix_op = visit_additive_op

    def visit_prefix(self, node, visited_children):
        op, operand = visited_children
        op = _optional(op)
        if op is None:
            return operand
        return PrefixExpr(op, operand, self._span(node))

    def visit_postfix(self, node, visited_children):
        result, suffixes = visited_children
        for kind, payload, end in _items(suffixes):
            if kind == "member":
                result = MemberAccess(result, payload, self._span(node, end))
            else:
                result = Call(result, payload, span=self._span(node, end))
        return result

    def visit_postfix_suffix(self, node, visited_children):
        return visited_children[0]

    def visit_member_suffix(self, node, visited_children):
        _, name = visited_children
        return ("member", name, node.end)

    def visit_call_suffix(self, node, visited_children):
        _, _, arguments, _, _ = visited_children
        return ("call", tuple(_optional(arguments) or ()), node.end)

    def visit_argument_list(self, node, visited_children):
        first, rest, _ = visited_children
        return [first] + [item[3] for item in _items(rest)]

    def visit_argument(self, node, visited_children):
        value = visited_children[0]
        if isinstance(value, LabeledExpr):
            return value
        return LabeledExpr(None, value, self._span(node))

    def visit_labeled_argument(self, node, visited_children):
        label, _, _, value = visited_children
        return LabeledExpr(label, value, self._span(node))

    def visit_primary(self, node, visited_children):
        value = visited_children[0]
        if isinstance(value, str):
            return DeclRef(value, self._span(node))
        return value

    def visit_implicit_member(self, node, visited_children):
        _, name = visited_children
        return MemberAccess(None, name, self._span(node))

    def visit_paren_expr(self, node, visited_children):
        _, inner, _ = visited_children
        return ParenExpr(inner, self._span(node))

    def visit_dict_literal(self, node, visited_children):
        return visited_children[0]

    def visit_empty_dict(self, node, visited_children):
        return DictLiteral((), self._span(node))

    def visit_nonempty_dict(self, node, visited_children):
        _, _, first, rest, _, _, _ = visited_children
        return DictLiteral(tuple([first] + _items(rest)), self._span(node))

    def visit_dict_tail(self, node, visited_children):
        _, _, _, entry = visited_children
        return entry

    def visit_dict_entry(self, node, visited_children):
        key, _, value = visited_children
        return (key, value)

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    def visit_string_literal(self, node, visited_children):
        return StringLiteral(_unescape(node.text[1:-1]), self._span(node))

    def visit_integer_literal(self, node, visited_children):
        text = node.text
        digits = text.replace("_", "")
        if len(digits) > 1 and digits[0] == "0" and digits[1].isdigit():
            value = int(digits, 10)
        else:
            value = int(digits, 0)
        return IntegerLiteral(value, text, self._span(node))

    def visit_boolean_literal(self, node, visited_children):
        return BooleanLiteral(node.text == "true", self._span(node))

    def visit_nil_literal(self, node, visited_children):
        return NilLiteral(self._span(node))

    def visit_identifier(self, node, visited_children):
        return node.text


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def _parse(
    rule: str,
    text: str,
    what: str,
    code,
    source_text: Optional[str] = None,
    base: int = 0,
    file: str = "",
    fixed_span: Optional[SourceSpan] = None,
):
    full = text if source_text is None else source_text
    try:
        tree = HOST_GRAMMAR[rule].parse(text)
    except ParseError as exc:
        span = SourceSpan.from_offsets(full, base + exc.pos, base + exc.pos, file)
        snippet = text[exc.pos:exc.pos + 20].split("\n", 1)[0]
        message = f"unable to parse {what} at line {span.line}, column {span.column}"
        if snippet:
            message += f" near '{snippet}'"
        logger.debug("parse failure (%s): %s", rule, exc)
        raise GrammarError(message, node=span, code=code) from exc
    builder = HostSyntaxBuilder(full, base=base, file=file, fixed_span=fixed_span)
    return builder.visit(tree)


def parse_type(text: str, file: str = "") -> TypeSyntax:
    """Parse a type such as ``UnsafeMutablePointer<CInt>?``."""
    return _parse("type_text", text, "type", C.INVALID_TYPE_SYNTAX, file=file)


def parse_expr(text: str, span: Optional[SourceSpan] = None) -> Expr:
    """Parse an expression.

    When *span* is given, every resulting node is located at *span*;
    this is how count expressions written inside string literals are
    blamed on the literal itself.
    """
    return _parse(
        "expr", text, "expression", C.INVALID_EXPRESSION_SYNTAX, fixed_span=span
    )


def parse_attribute_arguments(
    text: str,
    offset: int = 0,
    source_text: Optional[str] = None,
    file: str = "",
) -> List[Expr]:
    """Parse the comma-separated argument list of an attribute.

    *offset* is the position of *text* inside *source_text* (defaults
    to *text* itself).  Argument labels are dropped.
    """
    arguments = _parse(
        "attribute_arguments",
        text,
        "attribute arguments",
        C.INVALID_ATTRIBUTE_ARGUMENTS,
        source_text=source_text,
        base=offset,
        file=file,
    )
    return [argument.expr for argument in arguments]


def parse_marker_arguments(attr: Attribute) -> List[Expr]:
    """Parse the arguments of *attr*, located within its host file."""
    if attr.arguments is None:
        return []
    source = attr.source_text or attr.arguments
    offset = attr.arguments_offset if attr.source_text else 0
    return parse_attribute_arguments(attr.arguments, offset, source, attr.file)


def parse_source(text: str, filename: str = "") -> List[Any]:
    """Parse a file of declarations into ``FunctionDecl``/``OpaqueDecl`` nodes."""
    decls = _parse(
        "source", text, "declaration", C.INVALID_DECLARATION_SYNTAX, file=filename
    )
    logger.debug("parsed %d declaration(s) from %s", len(decls), filename or "<string>")
    return decls


def parse_decl(text: str, filename: str = "") -> Any:
    """Parse exactly one declaration."""
    decls = parse_source(text, filename)
    if len(decls) != 1:
        raise GrammarError(
            f"expected exactly one declaration, found {len(decls)}",
            code=C.INVALID_DECLARATION_SYNTAX,
        )
    return decls[0]


def split_generic(type_: TypeSyntax) -> Tuple[str, Tuple[TypeSyntax, ...]]:
    """Return ``(printed name without generics, generic arguments)``."""
    if isinstance(type_, IdentifierType):
        return type_.name, type_.generic_args
    if isinstance(type_, MemberType):
        return f"{type_.base}.{type_.name}", type_.generic_args
    return str(type_), ()
