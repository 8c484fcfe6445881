"""
Pointer-type rules.

Maps raw pointer types to their safe view counterparts and provides the
small type utilities the builders share (qualifier stripping, foreign
name unqualification, base-type replacement).

    ┌──────────────────────────┬──────────────┬─────────────────────────────────┐
    │ pointer                  │ mutability   │ raw                             │
    ├──────────────────────────┼──────────────┼─────────────────────────────────┤
    │ UnsafePointer<T>         │ immutable    │ no                              │
    │ UnsafeMutablePointer<T>  │ mutable      │ no                              │
    │ UnsafeRawPointer         │ immutable    │ yes                             │
    │ UnsafeMutableRawPointer  │ mutable      │ yes                             │
    │ OpaquePointer            │ immutable    │ yes                             │
    └──────────────────────────┴──────────────┴─────────────────────────────────┘
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from spanify.errors import SpanifyDiagnosticError, SpanifyErrorCodes as C
from spanify.syntax import (
    AttributedType,
    IdentifierType,
    ImplicitlyUnwrappedOptionalType,
    MemberType,
    OptionalType,
    TypeSyntax,
)

DEFAULT_CORE_MODULE = "Swift"


class Mutability(Enum):
    IMMUTABLE = "immutable"
    MUTABLE = "mutable"


POINTER_MUTABILITY: Dict[str, Mutability] = {
    "UnsafePointer": Mutability.IMMUTABLE,
    "UnsafeMutablePointer": Mutability.MUTABLE,
    "UnsafeRawPointer": Mutability.IMMUTABLE,
    "UnsafeMutableRawPointer": Mutability.MUTABLE,
    "OpaquePointer": Mutability.IMMUTABLE,
}

RAW_POINTER_NAMES: FrozenSet[str] = frozenset(
    {"UnsafeRawPointer", "UnsafeMutableRawPointer", "OpaquePointer"}
)

# (mutability, generate_span, is_raw) -> safe view name
SAFE_POINTER_NAMES: Dict[Tuple[Mutability, bool, bool], str] = {
    (Mutability.IMMUTABLE, True, True): "RawSpan",
    (Mutability.MUTABLE, True, True): "MutableRawSpan",
    (Mutability.IMMUTABLE, False, True): "UnsafeRawBufferPointer",
    (Mutability.MUTABLE, False, True): "UnsafeMutableRawBufferPointer",
    (Mutability.IMMUTABLE, True, False): "Span",
    (Mutability.MUTABLE, True, False): "MutableSpan",
    (Mutability.IMMUTABLE, False, False): "UnsafeBufferPointer",
    (Mutability.MUTABLE, False, False): "UnsafeMutableBufferPointer",
}

_CXX_QUALIFIERS = ("__cxxConst", "__cxxVolatile")


def get_safe_pointer_name(mut: Mutability, generate_span: bool, is_raw: bool) -> str:
    return SAFE_POINTER_NAMES[(mut, generate_span, is_raw)]


def is_core_module(type_: TypeSyntax, core_module: str = DEFAULT_CORE_MODULE) -> bool:
    return (
        isinstance(type_, IdentifierType)
        and type_.name == core_module
        and not type_.generic_args
    )


def get_unattributed_type(type_: TypeSyntax) -> TypeSyntax:
    """Strip one level of type attributes/specifiers (``inout``, ``@escaping``)."""
    if isinstance(type_, AttributedType):
        return type_.base
    return type_


def get_type_name(type_: TypeSyntax, core_module: str = DEFAULT_CORE_MODULE) -> str:
    """Name of the nominal type, looking through attributes.

    Member types are only accepted when rooted in the core module, so
    that ``Swift.UnsafePointer<T>`` is recognised but ``Foo.UnsafePointer<T>``
    is not.
    """
    if isinstance(type_, MemberType):
        if not is_core_module(type_.base, core_module):
            raise SpanifyDiagnosticError(
                f"expected pointer type in {core_module} core module, got type "
                f"{type_} with base type {type_.base}",
                node=type_,
                code=C.NOT_CORE_MODULE,
            )
        return type_.name
    if isinstance(type_, IdentifierType):
        return type_.name
    if isinstance(type_, AttributedType):
        return get_type_name(type_.base, core_module)
    raise SpanifyDiagnosticError(
        f"expected pointer type, got {type_} with kind {type(type_).__name__}",
        node=type_,
        code=C.NOT_A_POINTER,
    )


def replace_type_name(type_: TypeSyntax, name: str) -> TypeSyntax:
    if isinstance(type_, MemberType):
        return MemberType(type_.base, name, type_.generic_args, type_.span)
    if isinstance(type_, IdentifierType):
        return IdentifierType(name, type_.generic_args, type_.span)
    raise SpanifyDiagnosticError(
        f"unexpected type {type_} with kind {type(type_).__name__}",
        node=type_,
        code=C.NOT_A_POINTER,
    )


def replace_base_type(type_: TypeSyntax, base: TypeSyntax) -> TypeSyntax:
    """Swap the base of an attributed type, or return *base* outright."""
    if isinstance(type_, AttributedType):
        return AttributedType(type_.specifiers, base, type_.span)
    return base


def _drop_qualifier_generics(type_: TypeSyntax) -> TypeSyntax:
    if not isinstance(type_, IdentifierType) or not type_.generic_args:
        return type_
    if type_.name in _CXX_QUALIFIERS:
        return _drop_qualifier_generics(type_.generic_args[0])
    return type_


def drop_cxx_qualifiers(type_: TypeSyntax) -> TypeSyntax:
    """Remove ``__cxxConst<T>`` / ``__cxxVolatile<T>`` wrappers (and attributes)."""
    if isinstance(type_, AttributedType):
        return drop_cxx_qualifiers(type_.base)
    return _drop_qualifier_generics(type_)


def get_unqualified_std_name(name: str) -> Optional[str]:
    """``std.span<...>`` / ``std.__1.span<...>`` -> ``span<...>``; ``None`` if not in std."""
    if not name.startswith("std."):
        return None
    rest = name[4:]
    if rest.startswith("__1."):
        rest = rest[4:]
    return rest


def peel_optional_type(type_: TypeSyntax) -> TypeSyntax:
    if isinstance(type_, (OptionalType, ImplicitlyUnwrappedOptionalType)):
        return type_.wrapped
    return type_


def can_represent_basic_type(
    type_: TypeSyntax, name: str, core_module: str = DEFAULT_CORE_MODULE
) -> bool:
    """True for ``name`` and ``<core_module>.name`` without generic arguments."""
    if isinstance(type_, IdentifierType):
        return type_.name == name and not type_.generic_args
    if isinstance(type_, MemberType):
        return (
            type_.name == name
            and not type_.generic_args
            and is_core_module(type_.base, core_module)
        )
    return False


def transform_type(
    prev: TypeSyntax,
    generate_span: bool,
    is_sized_by: bool,
    core_module: str = DEFAULT_CORE_MODULE,
) -> TypeSyntax:
    """Map a raw pointer type to its safe view type.

    Optional and attributed wrappers are kept around the new type, an
    implicitly-unwrapped optional is peeled.  Sized views are plain
    names (``RawSpan``); typed views keep the pointee generic argument
    (``Span<CInt>``).
    """
    if isinstance(prev, OptionalType):
        return OptionalType(
            transform_type(prev.wrapped, generate_span, is_sized_by, core_module),
            prev.span,
        )
    if isinstance(prev, ImplicitlyUnwrappedOptionalType):
        return transform_type(prev.wrapped, generate_span, is_sized_by, core_module)
    if isinstance(prev, AttributedType):
        return AttributedType(
            prev.specifiers,
            transform_type(prev.base, generate_span, is_sized_by, core_module),
            prev.span,
        )

    name = get_type_name(prev, core_module)
    is_raw = name in RAW_POINTER_NAMES
    if is_raw and not is_sized_by:
        raise SpanifyDiagnosticError(
            "raw pointers only supported for SizedBy",
            node=prev,
            code=C.POINTER_KIND_MISMATCH,
        )
    if not is_raw and is_sized_by:
        raise SpanifyDiagnosticError(
            "SizedBy only supported for raw pointers",
            node=prev,
            code=C.POINTER_KIND_MISMATCH,
        )

    kind = POINTER_MUTABILITY.get(name)
    if kind is None:
        raise SpanifyDiagnosticError(
            f"expected Unsafe[Mutable][Raw]Pointer type for type {prev}"
            f" - first type token is '{name}'",
            node=prev,
            code=C.NOT_A_POINTER,
        )
    token = get_safe_pointer_name(kind, generate_span, is_sized_by)
    if is_sized_by:
        return IdentifierType(token, (), prev.span)
    return replace_type_name(prev, token)
