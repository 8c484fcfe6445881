"""
spanify — bounds-safe wrapper generator.

Given a function declaration whose parameters or return value are raw
pointers with separate lengths, and an annotation list describing how
each pointer relates to its length and lifetime, spanify synthesizes a
wrapper declaration that takes safe views, checks bounds, and forwards
to the original function.

Quick start::

    from spanify import DiagnosticCollector, parse_decl, render_decl, synthesize

    decl = parse_decl('''
        @_SpanifyImport(.countedBy(pointer: .param(1), count: "len"))
        func myFunc(_ ptr: UnsafePointer<CInt>, _ len: CInt)
    ''')
    wrapper = synthesize(decl, DiagnosticCollector())
    print(render_decl(wrapper))
"""

__version__ = "0.1.0"

from spanify.config import SpanifyConfig, load_config
from spanify.emitter import analyze, render_decl, synthesize
from spanify.errors import (
    Diagnostic,
    DiagnosticCollector,
    DiagnosticSink,
    SpanifyDiagnosticError,
    SpanifyError,
    SpanifyInternalError,
    UnimplementedFeatureError,
)
from spanify.grammar import parse_decl, parse_expr, parse_source, parse_type

__all__ = [
    "__version__",
    "SpanifyConfig",
    "load_config",
    "analyze",
    "render_decl",
    "synthesize",
    "Diagnostic",
    "DiagnosticCollector",
    "DiagnosticSink",
    "SpanifyDiagnosticError",
    "SpanifyError",
    "SpanifyInternalError",
    "UnimplementedFeatureError",
    "parse_decl",
    "parse_expr",
    "parse_source",
    "parse_type",
]
