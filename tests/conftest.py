# tests/conftest.py
"""
Shared fixtures for the spanify test-suite.
"""

import logging

import pytest

from spanify.config import SpanifyConfig
from spanify.emitter import render_decl, synthesize
from spanify.errors import DiagnosticCollector
from spanify.grammar import parse_decl


@pytest.fixture
def collector():
    return DiagnosticCollector()


@pytest.fixture
def annotated():
    """Factory: ``annotated(arguments, head)`` -> parsed declaration.

    *arguments* is the text inside ``@_SpanifyImport(...)``; *head* is the
    ``func`` line.
    """

    def _make(arguments, head, marker="_SpanifyImport"):
        return parse_decl(f"@{marker}({arguments})\n{head}", "test.swift")

    return _make


@pytest.fixture
def expand(annotated, collector):
    """Factory: synthesize and print the wrapper, or ``None`` on failure."""

    def _expand(arguments, head, config=None):
        config = config or SpanifyConfig()
        decl = annotated(arguments, head, marker=config.marker_attribute)
        wrapper = synthesize(decl, collector, config)
        if wrapper is None:
            return None
        return render_decl(wrapper, config)

    return _expand


@pytest.fixture
def decls_file(tmp_path):
    """Factory: write declaration text to a temporary ``.swift`` file."""

    def _write(text, name="decls.swift"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def _reset_spanify_logger():
    """The CLI attaches a handler to the package logger; drop it after each test."""
    yield
    logger = logging.getLogger("spanify")
    for handler in list(logger.handlers):
        if getattr(handler, "_spanify_cli", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
