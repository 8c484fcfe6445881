#!/usr/bin/env python3
"""spanify/main.py — CLI entry-point for the wrapper generator.

Usage examples
--------------
    # Print every declaration followed by its bounds-checked wrapper
    python -m spanify expand decls.swift

    # Write the result to a file, using custom attribute names
    python -m spanify expand decls.swift -o wrappers.swift --config spanify.json

    # Validate annotations only
    python -m spanify check decls.swift --format json

    # Show the resolved records as S-expressions (debugging aid)
    python -m spanify dump-sexp decls.swift

    # Show version and exit
    python -m spanify --version

Exit codes
----------
    0   Success (no errors).
    1   One or more diagnostics with severity ERROR were emitted.
    2   Infrastructure failure (missing file, bad config, unparseable input).

The module doubles as ``python -m spanify`` via the companion
``spanify/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, List, Optional, Sequence, TextIO

import sexpdata
from sexpdata import Symbol

from spanify import __version__
from spanify.config import SpanifyConfig, load_config
from spanify.emitter import analyze, render_decl, synthesize
from spanify.errors import (
    ConfigError,
    Diagnostic,
    DiagnosticCollector,
    GrammarError,
    SpanifyDiagnosticError,
    UnimplementedFeatureError,
)
from spanify.grammar import parse_source

_log = logging.getLogger("spanify")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the root ``spanify`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("spanify")
    root.setLevel(level)
    if not any(getattr(h, "_spanify_cli", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        handler._spanify_cli = True
        root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _emit_diagnostics(diagnostics: List[Diagnostic], fmt: str, stream: TextIO) -> int:
    """Write *diagnostics* to *stream* in the chosen format.

    Returns the count of error-severity diagnostics.
    """
    error_count = 0
    for diag in diagnostics:
        if diag.severity.is_error():
            error_count += 1
        if fmt == "json":
            stream.write(json.dumps(diag.to_json()) + "\n")
        else:
            stream.write(diag.to_gcc_format() + "\n")
    return error_count


def _load_config(args: argparse.Namespace) -> SpanifyConfig:
    if not getattr(args, "config", None):
        return SpanifyConfig()
    path = _resolve_path(args.config, "configuration file")
    _log.info("Loading configuration: %s", path)
    return load_config(path)


def _load_decls(args: argparse.Namespace) -> List[Any]:
    path = _resolve_path(args.file, "input file")
    _log.info("Parsing declarations: %s", path)
    return parse_source(path.read_text(encoding="utf-8"), str(args.file))


def _is_marked(decl: Any, config: SpanifyConfig) -> bool:
    return any(attr.name == config.marker_attribute for attr in decl.attributes)


def _prepare(args: argparse.Namespace):
    """Load config and declarations; infrastructure problems become exit codes."""
    try:
        config = _load_config(args)
    except ConfigError as exc:
        _log.error("%s", exc.message)
        raise SystemExit(EXIT_INFRA) from exc
    try:
        decls = _load_decls(args)
    except GrammarError as exc:
        _emit_diagnostics([exc.to_diagnostic()], args.format, sys.stderr)
        raise SystemExit(EXIT_INFRA) from exc
    return config, decls


# ===========================================================================
# Sub-command implementations
# ===========================================================================

def cmd_expand(args: argparse.Namespace) -> int:
    """Print each declaration, followed by its wrapper when it is marked."""
    config, decls = _prepare(args)
    collector = DiagnosticCollector()
    chunks: List[str] = []
    for decl in decls:
        chunks.append(render_decl(decl, config))
        if not _is_marked(decl, config):
            continue
        wrapper = synthesize(decl, collector, config)
        if wrapper is not None:
            chunks.append(render_decl(wrapper, config))

    out = _open_output(args.output)
    try:
        out.write("\n\n".join(chunks) + ("\n" if chunks else ""))
    finally:
        if out is not sys.stdout:
            out.close()

    errors = _emit_diagnostics(collector.diagnostics, args.format, sys.stderr)
    _log.info("Expanded %d declaration(s), %d error(s)", len(decls), errors)
    return EXIT_ERROR if errors else EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    """Parse, resolve and validate annotations without generating code."""
    config, decls = _prepare(args)
    collector = DiagnosticCollector()
    checked = 0
    for decl in decls:
        if not _is_marked(decl, config):
            continue
        checked += 1
        try:
            analyze(decl, config)
        except (SpanifyDiagnosticError, UnimplementedFeatureError) as exc:
            collector.report_error(exc)

    errors = _emit_diagnostics(collector.diagnostics, args.format, sys.stderr)
    sys.stdout.write(
        f"{args.file}: {checked} declaration(s) checked, {errors} error(s)\n"
    )
    return EXIT_ERROR if errors else EXIT_OK


def cmd_dump_sexp(args: argparse.Namespace) -> int:
    """Print the resolved, ordered records of each marked declaration."""
    config, decls = _prepare(args)
    collector = DiagnosticCollector()
    for decl in decls:
        if not _is_marked(decl, config):
            continue
        try:
            analyzed = analyze(decl, config)
        except (SpanifyDiagnosticError, UnimplementedFeatureError) as exc:
            collector.report_error(exc)
            continue
        form = [Symbol("decl"), Symbol(analyzed.decl.name.text)]
        form.append([Symbol("trivialCount"), Symbol("true" if analyzed.skip_trivial_count else "false")])
        form.extend(info.to_sexp() for info in analyzed.infos)
        sys.stdout.write(sexpdata.dumps(form) + "\n")

    errors = _emit_diagnostics(collector.diagnostics, args.format, sys.stderr)
    return EXIT_ERROR if errors else EXIT_OK


# ===========================================================================
# Argument parser construction
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="spanify",
        description=(
            "spanify — bounds-safe wrapper generator.\n\n"
            "Reads declarations annotated with pointer/count relationships and\n"
            "prints wrappers that take safe views instead of raw pointers."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              spanify expand decls.swift -o wrappers.swift
              spanify check  decls.swift --format json
              spanify dump-sexp decls.swift
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    parser.add_argument(
        "--format",
        choices=("gcc", "json"),
        default="gcc",
        help="Diagnostic output format (default: gcc).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_input_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("file", help="File of declarations to process.")
        p.add_argument(
            "--config",
            metavar="JSON",
            default=None,
            help="JSON file overriding attribute names and formatting.",
        )

    p_expand = subparsers.add_parser(
        "expand",
        help="Print declarations followed by their synthesized wrappers.",
    )
    _add_input_args(p_expand)
    p_expand.add_argument(
        "-o", "--output",
        default=None,
        help="Output file (default: stdout).",
    )
    p_expand.set_defaults(func=cmd_expand)

    p_check = subparsers.add_parser(
        "check",
        help="Validate annotations without generating code.",
    )
    _add_input_args(p_check)
    p_check.set_defaults(func=cmd_check)

    p_dump = subparsers.add_parser(
        "dump-sexp",
        help="Print the resolved annotation records as S-expressions.",
    )
    _add_input_args(p_dump)
    p_dump.set_defaults(func=cmd_dump_sexp)

    return parser


# ===========================================================================
# Entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the spanify CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
