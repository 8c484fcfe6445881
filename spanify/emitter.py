"""
spanify/emitter.py
==================

Pipeline entry point and declaration printer.

:func:`synthesize` takes one annotated declaration and returns the
bounds-checked wrapper declaration, or ``None`` after reporting a
diagnostic.  The stages run strictly in order:

1. **Marker lookup** — find the import marker and parse its arguments
2. **Annotation parsing** — records + non-escaping set + dependencies
3. **Resolution** — copy the side tables onto the records
4. **Validation** — indices, uniqueness, receiver
5. **Ordering** — parameters by index, return value last
6. **Chain folding** — one builder per record
7. **Assembly** — signature, bounds checks, call, attributes

Structural problems (``SpanifyDiagnosticError``) and unsupported shapes
(``UnimplementedFeatureError``) are reported to the sink; anything else
is a bug and propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from io import StringIO
from typing import Any, Dict, List, Optional

from spanify.annotations import ParsedAnnotations, parse_annotations
from spanify.builders import build_chain
from spanify.config import SpanifyConfig
from spanify.errors import (
    DiagnosticSink,
    SpanifyDiagnosticError,
    SpanifyErrorCodes as C,
    UnimplementedFeatureError,
)
from spanify.grammar import parse_marker_arguments
from spanify.model import LifetimeDependence, ParamInfo, Position, position_name
from spanify.resolver import filter_foreign_spans, resolve_dependencies
from spanify.syntax import (
    Attribute,
    FunctionDecl,
    OpaqueDecl,
    ReturnStmt,
    UnsafeExpr,
    to_source,
)
from spanify.validator import (
    check_args,
    check_dependencies,
    has_trivial_count_variants,
    order_param_infos,
)

__all__ = [
    "CodeEmitter",
    "AnalyzedDecl",
    "analyze",
    "synthesize",
    "lifetime_attributes",
    "render_decl",
]

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# CODE EMITTER
# ═══════════════════════════════════════════════════════════════════════════

class CodeEmitter:
    """Line-oriented emission with indentation management."""

    def __init__(self, indent_str: str = "    ") -> None:
        self._buffer = StringIO()
        self._indent_str = indent_str
        self._indent_level = 0

    def emit(self, code: str) -> None:
        """Emit one or more lines at the current indentation."""
        for line in code.split("\n"):
            if line.strip():
                self._buffer.write(self._indent_str * self._indent_level)
                self._buffer.write(line)
            self._buffer.write("\n")

    def indent(self) -> None:
        self._indent_level += 1

    def dedent(self) -> None:
        self._indent_level = max(0, self._indent_level - 1)

    def block(self, header: str, closer: str = "}") -> "CodeEmitter._BlockContext":
        """Context manager: ``header {`` ... ``}``."""
        return self._BlockContext(self, header, closer)

    class _BlockContext:
        def __init__(self, emitter: "CodeEmitter", header: str, closer: str) -> None:
            self._emitter = emitter
            self._header = header
            self._closer = closer

        def __enter__(self) -> "CodeEmitter":
            self._emitter.emit(self._header + " {")
            self._emitter.indent()
            return self._emitter

        def __exit__(self, *args: Any) -> None:
            self._emitter.dedent()
            self._emitter.emit(self._closer)

    def get_code(self) -> str:
        return self._buffer.getvalue()


def render_decl(decl: Any, config: Optional[SpanifyConfig] = None) -> str:
    """Print a declaration: attributes on their own lines, then the head and body."""
    config = config or SpanifyConfig()
    if not isinstance(decl, FunctionDecl):
        return to_source(decl, config.indent)
    out = CodeEmitter(config.indent)
    for attr in decl.attributes:
        out.emit(to_source(attr, config.indent))
    head = " ".join(decl.modifiers + ("func",))
    head += f" {decl.name.text}{to_source(decl.signature, config.indent)}"
    if decl.body is None:
        out.emit(head)
    else:
        with out.block(head):
            for stmt in decl.body:
                out.emit(to_source(stmt, config.indent))
    return out.get_code().rstrip("\n")


# ═══════════════════════════════════════════════════════════════════════════
# ANALYSIS (stages 1-5)
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AnalyzedDecl:
    """Validated, ordered records for one declaration."""

    decl: FunctionDecl
    infos: List[ParamInfo]
    annotations: ParsedAnnotations
    skip_trivial_count: bool


def analyze(decl: Any, config: Optional[SpanifyConfig] = None) -> AnalyzedDecl:
    """Run the front half of the pipeline; raises on the first problem."""
    config = config or SpanifyConfig()
    if not isinstance(decl, FunctionDecl):
        node = decl.name if isinstance(decl, OpaqueDecl) else decl
        raise SpanifyDiagnosticError(
            "the import marker only works on functions",
            node=node,
            code=C.NOT_A_FUNCTION,
        )
    marker = decl.attribute(config.marker_attribute)
    if marker is None:
        raise SpanifyDiagnosticError(
            f"function {decl.name} has no @{config.marker_attribute} attribute",
            node=decl.name,
            code=C.MISSING_MARKER,
        )
    parsed = parse_annotations(parse_marker_arguments(marker), decl)
    infos = resolve_dependencies(parsed.infos, parsed.nonescaping, parsed.dependencies)
    infos = filter_foreign_spans(infos)
    check_args(infos, decl)
    check_dependencies(parsed.dependencies, decl)
    infos = order_param_infos(infos)
    skip = has_trivial_count_variants(infos)
    logger.debug(
        "%s: ordered records [%s], trivial count elision %s",
        decl.name,
        ", ".join(str(info) for info in infos),
        "on" if skip else "off",
    )
    return AnalyzedDecl(decl, infos, parsed, skip)


# ═══════════════════════════════════════════════════════════════════════════
# SYNTHESIS (stages 6-7)
# ═══════════════════════════════════════════════════════════════════════════

def lifetime_attributes(
    decl: FunctionDecl,
    dependencies: Dict[Position, List[LifetimeDependence]],
    config: SpanifyConfig,
) -> List[Attribute]:
    """``@lifetime(borrow a, copy b)`` for the return value's dependencies."""
    edges = dependencies.get(Position.RETURN, [])
    if not edges:
        return []
    arguments = ", ".join(
        f"{edge.type.value} {position_name(decl, edge.depends_on)}" for edge in edges
    )
    return [Attribute(config.lifetime_attribute, arguments)]


def _build_wrapper(analyzed: AnalyzedDecl, config: SpanifyConfig) -> FunctionDecl:
    decl = analyzed.decl
    builder = build_chain(analyzed.infos, decl, analyzed.skip_trivial_count, config)
    signature, only_return_changed = builder.build_function_signature({}, None)
    checks = [] if analyzed.skip_trivial_count else builder.build_bounds_checks()
    call = builder.build_function_call({})
    if config.emit_unsafe_marker:
        call = UnsafeExpr(call)
    body = tuple(checks) + (ReturnStmt(call),)

    dropped = {config.marker_attribute, config.inline_attribute}
    attributes = [attr for attr in decl.attributes if attr.name not in dropped]
    attributes.append(Attribute(config.inline_attribute))
    attributes.extend(
        lifetime_attributes(decl, analyzed.annotations.dependencies, config)
    )
    if only_return_changed:
        attributes.append(Attribute(config.disfavored_attribute))
    return replace(
        decl, signature=signature, body=body, attributes=tuple(attributes)
    )


def synthesize(
    decl: Any, sink: DiagnosticSink, config: Optional[SpanifyConfig] = None
) -> Optional[FunctionDecl]:
    """Synthesize the bounds-checked wrapper for *decl*.

    Returns ``None`` after reporting exactly one diagnostic to *sink*
    when the annotations or the declaration are unusable.
    """
    config = config or SpanifyConfig()
    try:
        wrapper = _build_wrapper(analyze(decl, config), config)
    except (SpanifyDiagnosticError, UnimplementedFeatureError) as exc:
        logger.info("no wrapper for %s: %s", getattr(decl, "name", decl), exc.message)
        sink.report(exc.message, exc.node, exc.notes, exc.code)
        return None
    logger.info("synthesized wrapper for %s", decl.name)
    return wrapper
