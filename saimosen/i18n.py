"""Display-name lookup for attribute keys."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config import load_mapping

logger = logging.getLogger(__name__)


def _flatten(payload: Mapping[str, Any], prefix: str = "") -> Dict[str, str]:
    flat: Dict[str, str] = {}
    for key, value in payload.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(_flatten(value, dotted))
        elif value is not None:
            flat[dotted] = str(value)
    return flat


class DisplayNameResolver:
    """Resolve ``devices.<family>.<attribute>`` keys to human-readable names.

    Keys without a translation resolve to themselves.
    """

    def __init__(self, strings: Optional[Mapping[str, Any]] = None) -> None:
        self._strings = _flatten(strings or {})

    def __len__(self) -> int:
        return len(self._strings)

    def resolve_display_name(self, key: str) -> str:
        return self._strings.get(key, key)

    @classmethod
    def from_path(cls, path: Optional[Path]) -> "DisplayNameResolver":
        if path is None:
            return cls()
        resolved = path.expanduser()
        if not resolved.exists():
            logger.info("No display-name strings at %s; using attribute keys", resolved)
            return cls()
        return cls(load_mapping(resolved))


def display_name_key(family: str, attribute_id: str) -> str:
    return f"devices.{family}.{attribute_id}"
