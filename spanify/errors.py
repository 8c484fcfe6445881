# spanify/errors.py
"""
Error Types and Diagnostic Reporting for the spanify pipeline

Every failure that can happen while turning an annotated declaration
into a bounds-checked wrapper is expressed as a ``SpanifyError``
subclass.  The pipeline boundary (:func:`spanify.emitter.synthesize`)
catches the recoverable ones, converts them into a single
:class:`Diagnostic` handed to a :class:`DiagnosticSink`, and yields no
output for that declaration.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                     │
├─────────────────────────────────────────────────────────────────────────────┤
│  SpanifyError (base)                                                        │
│  ├── SpanifyDiagnosticError   - structural, per-declaration, recoverable   │
│  │   ├── GrammarError         - host text could not be parsed              │
│  │   └── ConfigError          - invalid configuration                      │
│  ├── UnimplementedFeatureError - recognised but unsupported shapes         │
│  └── SpanifyInternalError     - invariant violations (never caught)        │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error has a code of the form SPAN-XXXX:
  - 1000-1999: Host syntax errors (types, expressions, declarations)
  - 2000-2999: Annotation errors
  - 3000-3999: Validation errors
  - 4000-4999: Type / builder errors
  - 8000-8999: Unimplemented features
  - 9000-9999: Internal errors
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, auto, unique
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

__all__ = [
    "ErrorSeverity",
    "ErrorPhase",
    "ErrorCode",
    "SpanifyErrorCodes",
    "SourceSpan",
    "NO_SPAN",
    "span_of",
    "ErrorNote",
    "Diagnostic",
    "SpanifyError",
    "SpanifyDiagnosticError",
    "GrammarError",
    "ConfigError",
    "UnimplementedFeatureError",
    "SpanifyInternalError",
    "DiagnosticSink",
    "DiagnosticCollector",
]


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR SEVERITY AND CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorSeverity(Enum):
    """Severity levels for spanify diagnostics."""

    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"

    def is_error(self) -> bool:
        """Check if this severity represents an error (not warning/note)."""
        return self in (ErrorSeverity.FATAL, ErrorSeverity.ERROR)


@unique
class ErrorPhase(Enum):
    """Pipeline phase where the error occurred."""

    SYNTAX = "syntax"            # host text parsing
    ANNOTATION = "annotation"    # annotation list parsing
    VALIDATION = "validation"    # index / uniqueness checks
    BUILD = "build"              # type rewriting and thunk building
    CONFIG = "config"            # configuration loading
    INTERNAL = "internal"


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorCode:
    """
    Structured error code ``SPAN-NNNN``.

    Codes are plain value objects; the registry below is the single
    place new codes are introduced.
    """

    __slots__ = ("prefix", "number", "phase", "default_severity")

    def __init__(
        self,
        prefix: str,
        number: int,
        phase: ErrorPhase,
        default_severity: ErrorSeverity = ErrorSeverity.ERROR,
    ) -> None:
        self.prefix = prefix
        self.number = number
        self.phase = phase
        self.default_severity = default_severity

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.phase.value})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return NotImplemented


class SpanifyErrorCodes:
    """Predefined error codes."""

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNTAX ERRORS (1000-1999)
    # ═══════════════════════════════════════════════════════════════════════════

    INVALID_TYPE_SYNTAX = ErrorCode("SPAN", 1000, ErrorPhase.SYNTAX)
    INVALID_EXPRESSION_SYNTAX = ErrorCode("SPAN", 1001, ErrorPhase.SYNTAX)
    INVALID_DECLARATION_SYNTAX = ErrorCode("SPAN", 1002, ErrorPhase.SYNTAX)
    INVALID_ATTRIBUTE_ARGUMENTS = ErrorCode("SPAN", 1003, ErrorPhase.SYNTAX)

    # ═══════════════════════════════════════════════════════════════════════════
    # ANNOTATION ERRORS (2000-2999)
    # ═══════════════════════════════════════════════════════════════════════════

    NOT_A_FUNCTION = ErrorCode("SPAN", 2000, ErrorPhase.ANNOTATION)
    EXPECTED_ENUM_LITERAL = ErrorCode("SPAN", 2001, ErrorPhase.ANNOTATION)
    UNKNOWN_ANNOTATION = ErrorCode("SPAN", 2002, ErrorPhase.ANNOTATION)
    MISSING_ARGUMENT = ErrorCode("SPAN", 2003, ErrorPhase.ANNOTATION)
    INVALID_POSITION = ErrorCode("SPAN", 2004, ErrorPhase.ANNOTATION)
    EXPECTED_LITERAL = ErrorCode("SPAN", 2005, ErrorPhase.ANNOTATION)
    UNKNOWN_PARAMETER = ErrorCode("SPAN", 2006, ErrorPhase.ANNOTATION)
    RETURN_DEPENDENCE = ErrorCode("SPAN", 2007, ErrorPhase.ANNOTATION)
    INVALID_DEPENDENCE_TYPE = ErrorCode("SPAN", 2008, ErrorPhase.ANNOTATION)
    MISSING_MARKER = ErrorCode("SPAN", 2009, ErrorPhase.ANNOTATION)
    SELF_REFERENTIAL_COUNT = ErrorCode("SPAN", 2010, ErrorPhase.ANNOTATION)

    # ═══════════════════════════════════════════════════════════════════════════
    # VALIDATION ERRORS (3000-3999)
    # ═══════════════════════════════════════════════════════════════════════════

    INDEX_OUT_OF_BOUNDS = ErrorCode("SPAN", 3000, ErrorPhase.VALIDATION)
    DUPLICATE_TARGET = ErrorCode("SPAN", 3001, ErrorPhase.VALIDATION)
    RECEIVER_TARGET = ErrorCode("SPAN", 3002, ErrorPhase.VALIDATION)

    # ═══════════════════════════════════════════════════════════════════════════
    # TYPE / BUILDER ERRORS (4000-4999)
    # ═══════════════════════════════════════════════════════════════════════════

    NOT_A_POINTER = ErrorCode("SPAN", 4000, ErrorPhase.BUILD)
    POINTER_KIND_MISMATCH = ErrorCode("SPAN", 4001, ErrorPhase.BUILD)
    UNKNOWN_TYPE_MAPPING = ErrorCode("SPAN", 4002, ErrorPhase.BUILD)
    UNEXPECTED_DESUGARED_TYPE = ErrorCode("SPAN", 4003, ErrorPhase.BUILD)
    NOT_CORE_MODULE = ErrorCode("SPAN", 4004, ErrorPhase.BUILD)

    # ═══════════════════════════════════════════════════════════════════════════
    # CONFIG (5000-5999)
    # ═══════════════════════════════════════════════════════════════════════════

    INVALID_CONFIG = ErrorCode("SPAN", 5000, ErrorPhase.CONFIG)

    # ═══════════════════════════════════════════════════════════════════════════
    # UNIMPLEMENTED (8000-8999)
    # ═══════════════════════════════════════════════════════════════════════════

    NOT_IMPLEMENTED = ErrorCode("SPAN", 8000, ErrorPhase.BUILD)

    # ═══════════════════════════════════════════════════════════════════════════
    # INTERNAL ERRORS (9000-9999)
    # ═══════════════════════════════════════════════════════════════════════════

    INTERNAL_ERROR = ErrorCode(
        "SPAN", 9000, ErrorPhase.INTERNAL, ErrorSeverity.FATAL
    )
    INVARIANT_VIOLATION = ErrorCode(
        "SPAN", 9001, ErrorPhase.INTERNAL, ErrorSeverity.FATAL
    )


# Short alias
C = SpanifyErrorCodes


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE LOCATION TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceSpan:
    """
    A span of source text with start and end positions.

    ``offset`` / ``end_offset`` are absolute character offsets into the
    host text; ``line`` / ``column`` are 1-based and derived from them.
    """

    file: str = ""
    line: int = 0
    column: int = 0
    end_line: int = 0
    end_column: int = 0
    offset: int = -1
    end_offset: int = -1

    def __post_init__(self) -> None:
        # Normalize: if end not specified, use start
        if self.end_line == 0:
            object.__setattr__(self, "end_line", self.line)
        if self.end_column == 0:
            object.__setattr__(self, "end_column", self.column)

    @classmethod
    def from_offsets(
        cls, text: str, start: int, end: int, file: str = ""
    ) -> "SourceSpan":
        """Build a span for ``text[start:end]``."""
        line, column = _line_col(text, start)
        end_line, end_column = _line_col(text, end)
        return cls(
            file=file,
            line=line,
            column=column,
            end_line=end_line,
            end_column=end_column,
            offset=start,
            end_offset=end,
        )

    @property
    def is_known(self) -> bool:
        return self.line > 0

    def __str__(self) -> str:
        if not self.file and self.line == 0:
            return "<unknown location>"

        parts = []
        if self.file:
            parts.append(self.file)
        if self.line > 0:
            parts.append(str(self.line))
            if self.column > 0:
                parts.append(str(self.column))

        return ":".join(parts)

    def to_range_string(self) -> str:
        """Get a string representation showing the full range."""
        start = str(self)
        if self.end_line > self.line or (
            self.end_line == self.line and self.end_column > self.column
        ):
            return f"{start}-{self.end_line}:{self.end_column}"
        return start


#: Sentinel for nodes synthesised by the pipeline (no source position).
NO_SPAN = SourceSpan()


def _line_col(text: str, offset: int) -> Tuple[int, int]:
    offset = max(0, min(offset, len(text)))
    line = text.count("\n", 0, offset) + 1
    line_start = text.rfind("\n", 0, offset) + 1
    return line, offset - line_start + 1


def span_of(node: Any) -> SourceSpan:
    """Best-effort span lookup for anything that may carry one."""
    if node is None:
        return NO_SPAN
    if isinstance(node, SourceSpan):
        return node
    span = getattr(node, "span", None)
    if isinstance(span, SourceSpan):
        return span
    return NO_SPAN


# ═══════════════════════════════════════════════════════════════════════════════
# DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ErrorNote:
    """
    Additional note attached to an error, optionally pointing at a node.
    """

    message: str
    node: Any = None
    label: str = "note"

    @property
    def span(self) -> SourceSpan:
        return span_of(self.node)

    def __str__(self) -> str:
        prefix = f"{self.label}: " if self.label else ""
        if self.span.is_known:
            return f"{self.span}: {prefix}{self.message}"
        return f"{prefix}{self.message}"


@dataclass
class Diagnostic:
    """
    A reported diagnostic: message, primary node, and notes.

    This is what a :class:`DiagnosticSink` stores; ``node`` is kept so
    that callers can inspect which syntax element was blamed.
    """

    message: str
    node: Any = None
    notes: List[ErrorNote] = field(default_factory=list)
    code: ErrorCode = C.INTERNAL_ERROR
    severity: ErrorSeverity = ErrorSeverity.ERROR

    @property
    def span(self) -> SourceSpan:
        return span_of(self.node)

    def to_gcc_format(self) -> str:
        """Format as a GCC-style error message."""
        main = f"{self.span}: {self.severity.value}: {self.message} [{self.code}]"
        lines = [main]
        for note in self.notes:
            lines.append(str(note))
        return "\n".join(lines)

    def to_json(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code.code,
            "message": self.message,
            "severity": self.severity.value,
            "location": _span_json(self.span),
            "phase": self.code.phase.value,
            "notes": [
                {
                    "message": note.message,
                    "label": note.label,
                    "location": _span_json(note.span) if note.span.is_known else None,
                }
                for note in self.notes
            ],
        }

    def __str__(self) -> str:
        return self.to_gcc_format()


def _span_json(span: SourceSpan) -> Dict[str, Any]:
    return {
        "file": span.file,
        "line": span.line,
        "column": span.column,
        "end_line": span.end_line,
        "end_column": span.end_column,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class SpanifyError(Exception):
    """
    Base exception for all spanify errors.

    Carries the blamed syntax node and any explanatory notes so that the
    pipeline boundary can turn it into a :class:`Diagnostic` verbatim.
    """

    default_code: ErrorCode = C.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        node: Any = None,
        notes: Optional[Sequence[ErrorNote]] = None,
        code: Optional[ErrorCode] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.node = node
        self.notes: List[ErrorNote] = list(notes or [])
        self.code = code or self.default_code

    @property
    def span(self) -> SourceSpan:
        return span_of(self.node)

    @property
    def severity(self) -> ErrorSeverity:
        return self.code.default_severity

    def add_note(self, message: str, node: Any = None) -> "SpanifyError":
        """Add a note to this error."""
        self.notes.append(ErrorNote(message=message, node=node))
        return self

    def rebased(self, node: Any) -> "SpanifyError":
        """Return a copy of this error blamed on *node* instead."""
        return type(self)(self.message, node=node, notes=self.notes, code=self.code)

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(
            message=self.message,
            node=self.node,
            notes=list(self.notes),
            code=self.code,
            severity=self.severity,
        )

    def __str__(self) -> str:
        return self.message


class SpanifyDiagnosticError(SpanifyError):
    """A structural problem with the annotations or the declaration."""

    default_code = C.UNKNOWN_ANNOTATION


class GrammarError(SpanifyDiagnosticError):
    """Host text (type, expression, declaration) failed to parse."""

    default_code = C.INVALID_DECLARATION_SYNTAX


class ConfigError(SpanifyDiagnosticError):
    """Invalid configuration value or file."""

    default_code = C.INVALID_CONFIG


class UnimplementedFeatureError(SpanifyError):
    """A recognised annotation shape that is not supported yet."""

    default_code = C.NOT_IMPLEMENTED


class SpanifyInternalError(SpanifyError):
    """Internal invariant violated; indicates a bug, not bad input."""

    default_code = C.INVARIANT_VIOLATION


# ═══════════════════════════════════════════════════════════════════════════════
# DIAGNOSTIC SINKS
# ═══════════════════════════════════════════════════════════════════════════════

@runtime_checkable
class DiagnosticSink(Protocol):
    """Anything that accepts reported diagnostics."""

    def report(
        self,
        message: str,
        node: Any,
        notes: Sequence[ErrorNote] = (),
        code: ErrorCode = C.INTERNAL_ERROR,
    ) -> None:
        ...


class DiagnosticCollector:
    """
    In-memory :class:`DiagnosticSink`.

    One collector should be used per pipeline run when declarations are
    processed in parallel.
    """

    def __init__(self) -> None:
        self.diagnostics: List[Diagnostic] = []

    def report(
        self,
        message: str,
        node: Any,
        notes: Sequence[ErrorNote] = (),
        code: ErrorCode = C.INTERNAL_ERROR,
    ) -> None:
        self.diagnostics.append(
            Diagnostic(
                message=message,
                node=node,
                notes=list(notes),
                code=code,
                severity=code.default_severity,
            )
        )

    def report_error(self, error: SpanifyError) -> None:
        self.report(error.message, error.node, error.notes, error.code)

    @property
    def messages(self) -> List[str]:
        return [d.message for d in self.diagnostics]

    def has_errors(self) -> bool:
        return any(d.severity.is_error() for d in self.diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)

    def __iter__(self):
        return iter(self.diagnostics)

    def clear(self) -> None:
        self.diagnostics.clear()

    def to_json(self) -> str:
        return json.dumps([d.to_json() for d in self.diagnostics], indent=2)
