"""Dependency resolution: copy side-table facts onto the records."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Set

from spanify.model import ForeignSpan, LifetimeDependence, ParamInfo, Position

logger = logging.getLogger(__name__)


def resolve_dependencies(
    infos: List[ParamInfo],
    nonescaping: Set[Position],
    dependencies: Dict[Position, List[LifetimeDependence]],
) -> List[ParamInfo]:
    """Set each record's ``nonescaping`` flag and ``dependencies`` list.

    Each record's new state depends only on its own position, so the
    result does not depend on record order and a second run changes
    nothing.  The side tables are not modified.
    """
    for info in infos:
        info.nonescaping = info.pointer_index in nonescaping
        info.dependencies = list(dependencies.get(info.pointer_index, ()))
    return infos


def filter_foreign_spans(infos: Iterable[ParamInfo]) -> List[ParamInfo]:
    """Drop foreign spans that may escape; return-position spans are always kept."""
    kept: List[ParamInfo] = []
    for info in infos:
        if (
            isinstance(info, ForeignSpan)
            and not info.nonescaping
            and not info.pointer_index.is_return
        ):
            logger.debug("skipping escaping foreign span %s", info)
            continue
        kept.append(info)
    return kept
