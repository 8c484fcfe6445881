"""Structural checks over the resolved records, plus ordering and elision."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from spanify.errors import SpanifyDiagnosticError, SpanifyErrorCodes as C
from spanify.model import CountedBy, LifetimeDependence, ParamInfo, Position
from spanify.syntax import DeclRef, FunctionDecl, IntegerLiteral


def _index_out_of_bounds(decl: FunctionDecl, node: Any) -> SpanifyDiagnosticError:
    param_count = len(decl.params)
    if param_count > 0:
        note = f"function {decl.name} has parameter indices 1..{param_count}"
    else:
        note = f"function {decl.name} has no parameters"
    err = SpanifyDiagnosticError(
        "pointer index out of bounds", node=node, code=C.INDEX_OUT_OF_BOUNDS
    )
    err.add_note(note, node=decl.name)
    return err


def check_target(position: Position, decl: FunctionDecl, node: Any) -> None:
    """Annotation targets must be the return value or an existing parameter."""
    if position.is_self:
        raise SpanifyDiagnosticError(
            "do not annotate self", node=node, code=C.RECEIVER_TARGET
        )
    if position.is_param and not 1 <= position.index <= len(decl.params):
        raise _index_out_of_bounds(decl, node)


def check_args(infos: Sequence[ParamInfo], decl: FunctionDecl) -> None:
    """Reject the whole record set on the first structural problem.

    * parameter indices must lie in ``[1, param_count]``
    * at most one record per parameter and one for the return value
    * the receiver may not be annotated
    """
    by_index: Dict[int, ParamInfo] = {}
    ret: Optional[ParamInfo] = None
    for info in infos:
        position = info.pointer_index
        check_target(position, decl, info.original)
        if position.is_param:
            i = position.index
            if i in by_index:
                raise SpanifyDiagnosticError(
                    "multiple annotations referring to parameter with index "
                    f"{i}: {info} and {by_index[i]}",
                    node=info.original,
                    code=C.DUPLICATE_TARGET,
                )
            by_index[i] = info
        else:
            if ret is not None:
                raise SpanifyDiagnosticError(
                    f"multiple annotations referring to return value: {info} and {ret}",
                    node=info.original,
                    code=C.DUPLICATE_TARGET,
                )
            ret = info


def check_dependencies(
    dependencies: Dict[Position, List[LifetimeDependence]], decl: FunctionDecl
) -> None:
    """Lifetime dependence sources must name existing parameters."""
    param_count = len(decl.params)
    for target, edges in dependencies.items():
        for edge in edges:
            source = edge.depends_on
            if source.is_param and not 1 <= source.index <= param_count:
                raise SpanifyDiagnosticError(
                    f"lifetime dependence of {target} on {source}: pointer index out of bounds",
                    node=decl.name,
                    code=C.INDEX_OUT_OF_BOUNDS,
                )


def order_param_infos(infos: Sequence[ParamInfo]) -> List[ParamInfo]:
    """Parameters by ascending index, then the return record (stable).

    The return-value view must be built last so that scoped parameter
    access never has to return a non-escapable value.
    """
    return sorted(
        infos,
        key=lambda info: (info.pointer_index.is_return, info.pointer_index.ordinal()),
    )


def has_trivial_count_variants(infos: Sequence[ParamInfo]) -> bool:
    """True when every count is a literal or a distinct bare parameter name."""
    counts = [info.count for info in infos if isinstance(info, CountedBy)]
    if any(not isinstance(c, (DeclRef, IntegerLiteral)) for c in counts):
        return False
    names = [c.name for c in counts if isinstance(c, DeclRef)]
    return len(names) == len(set(names))
