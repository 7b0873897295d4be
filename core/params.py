"""
Runtime parameter registry.

Every parameter is registered once with a name, a typed default and a
human-readable description; values can then be overridden from a mapping,
a YAML file or ``Name=Value`` strings (CLI). Reading a parameter returns the
override if present, otherwise the registered default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import yaml

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ParameterError(KeyError):
    """Unknown parameter, conflicting registration or uncoercible value."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable
        return str(self.args[0]) if self.args else ""


@dataclass(frozen=True, slots=True)
class Parameter:
    name: str
    default: Any
    description: str
    type: type


def _coerce(param: Parameter, value: Any) -> Any:
    if param.type is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ParameterError(f"Parameter '{param.name}' expects a bool, got {value!r}")
    try:
        return param.type(value)
    except (TypeError, ValueError) as exc:
        raise ParameterError(
            f"Parameter '{param.name}' expects {param.type.__name__}, got {value!r}"
        ) from exc


class ParameterRegistry:
    """Name -> (default, description, value) store."""

    def __init__(self) -> None:
        self._params: Dict[str, Parameter] = {}
        self._values: Dict[str, Any] = {}

    def register(self, name: str, default: Any, description: str) -> None:
        existing = self._params.get(name)
        if existing is not None:
            if existing.default != default:
                raise ParameterError(
                    f"Parameter '{name}' already registered with default {existing.default!r}, "
                    f"got {default!r}"
                )
            return
        self._params[name] = Parameter(name, default, description, type(default))
        logger.debug("Registered parameter %s (default=%r)", name, default)

    def is_registered(self, name: str) -> bool:
        return name in self._params

    def get(self, name: str) -> Any:
        param = self._params.get(name)
        if param is None:
            raise ParameterError(f"Parameter '{name}' is not registered.")
        return self._values.get(name, param.default)

    def set(self, name: str, value: Any) -> None:
        param = self._params.get(name)
        if param is None:
            raise ParameterError(f"Parameter '{name}' is not registered.")
        self._values[name] = _coerce(param, value)

    def update(self, values: Mapping[str, Any]) -> None:
        for name, value in (values or {}).items():
            self.set(name, value)

    def load_yaml(self, path: Path | str) -> None:
        """Apply a flat ``Name: value`` YAML mapping."""
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Parameter file {path} must contain a mapping, got {type(raw).__name__}")
        self.update(raw)
        logger.info("Loaded %d parameter value(s) from %s", len(raw), path)

    def parse_overrides(self, items: Iterable[str]) -> None:
        """Apply ``Name=Value`` strings."""
        for item in items or ():
            name, sep, value = str(item).partition("=")
            if not sep:
                raise ParameterError(f"Parameter override must look like Name=Value, got {item!r}")
            self.set(name.strip(), value.strip())

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": p.name,
                "default": p.default,
                "value": self.get(p.name),
                "description": p.description,
            }
            for p in sorted(self._params.values(), key=lambda p: p.name)
        ]

    def reset(self) -> None:
        self._params.clear()
        self._values.clear()


PARAMETERS = ParameterRegistry()


def reset() -> None:
    """Clear the process-wide registry (tests)."""
    PARAMETERS.reset()
