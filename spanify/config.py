"""Configuration for wrapper synthesis."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, List, Mapping, Union

from spanify.errors import ConfigError

logger = logging.getLogger(__name__)

_IDENTIFIER_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_"
)


@dataclass(frozen=True)
class SpanifyConfig:
    """Names and formatting knobs used while synthesizing wrappers."""
    marker_attribute: str = "_SpanifyImport"
    inline_attribute: str = "_alwaysEmitIntoClient"
    lifetime_attribute: str = "lifetime"
    disfavored_attribute: str = "_disfavoredOverload"
    core_module: str = "Swift"
    indent: str = "    "
    emit_unsafe_marker: bool = True

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        for name in (
            "marker_attribute",
            "inline_attribute",
            "lifetime_attribute",
            "disfavored_attribute",
            "core_module",
        ):
            value = getattr(self, name)
            if not value or not set(value) <= _IDENTIFIER_CHARS or value[0].isdigit():
                warnings.append(f"{name} is not a valid identifier: {value!r}")
        if self.indent.strip(" \t"):
            warnings.append("indent must contain only spaces and tabs")
        if not self.indent:
            warnings.append("indent is empty; nested blocks will not be indented")
        if self.marker_attribute == self.inline_attribute:
            warnings.append("marker_attribute and inline_attribute must differ")
        return warnings

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SpanifyConfig":
        """Build a config from a plain mapping; unknown keys are rejected."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"unknown configuration key(s): {', '.join(unknown)}")
        for key, value in data.items():
            expected = bool if key == "emit_unsafe_marker" else str
            if not isinstance(value, expected):
                raise ConfigError(
                    f"configuration key '{key}' must be a {expected.__name__}, "
                    f"got {type(value).__name__}"
                )
        return cls(**dict(data))


def load_config(path: Union[str, Path]) -> SpanifyConfig:
    """Load a :class:`SpanifyConfig` from a JSON object file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read configuration file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"configuration file {path} must contain a JSON object")
    config = SpanifyConfig.from_mapping(data)
    for warning in config.validate():
        logger.warning("%s: %s", path, warning)
    return config
