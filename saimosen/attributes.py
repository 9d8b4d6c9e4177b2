"""Per-device attribute registry holding the latest readings and their status."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


class AttributeStatus(str, Enum):
    NORMAL = "normal"
    MALFUNCTION = "malfunction"
    EMPTY = "empty"
    ZERO_CALIBRATION = "zero_calibration"
    SPAN_CALIBRATION = "span_calibration"
    MAINTENANCE = "maintenance"


@dataclass(slots=True)
class NumericAttribute:
    """A single reading exposed by a device."""

    id: str
    display_name_key: str
    value: Optional[float] = None
    status: AttributeStatus = AttributeStatus.EMPTY
    unit: Optional[str] = None
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "value": self.value,
            "status": self.status.value,
            "unit": self.unit,
            "display_name": self.display_name or self.display_name_key,
        }


class AttributeRegistry:
    """Thread-safe map of attribute id to :class:`NumericAttribute`.

    Readers always receive copies taken under the registry lock, so a cycle
    applied with :meth:`apply` or :meth:`set_all_status` is observed either
    completely or not at all.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._attributes: Dict[str, NumericAttribute] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._attributes)

    def __contains__(self, attribute_id: object) -> bool:
        with self._lock:
            return attribute_id in self._attributes

    def reset(self, attributes: Iterable[NumericAttribute]) -> None:
        """Replace every attribute wholesale (used by device initialisation)."""

        fresh: Dict[str, NumericAttribute] = {}
        for attribute in attributes:
            fresh[attribute.id] = attribute
        with self._lock:
            self._attributes = fresh

    def get(self, attribute_id: str) -> Optional[NumericAttribute]:
        with self._lock:
            attribute = self._attributes.get(attribute_id)
            return replace(attribute) if attribute is not None else None

    def list_attributes(self) -> Dict[str, NumericAttribute]:
        with self._lock:
            return {key: replace(attribute) for key, attribute in self._attributes.items()}

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._attributes)

    def update(self, attribute_id: str, value: Optional[float], status: AttributeStatus) -> bool:
        """Write *value* and *status* to one attribute; unknown ids are ignored."""

        with self._lock:
            attribute = self._attributes.get(attribute_id)
            if attribute is None:
                logger.debug("Ignoring update for unknown attribute '%s'", attribute_id)
                return False
            attribute.value = value
            attribute.status = status
            return True

    def set_all_status(self, status: AttributeStatus) -> None:
        with self._lock:
            for attribute in self._attributes.values():
                attribute.status = status

    def apply(self, values: Mapping[str, Optional[float]], status: AttributeStatus) -> None:
        """Apply a completed cycle: write *values* and stamp every attribute with *status*."""

        with self._lock:
            for attribute_id, value in values.items():
                attribute = self._attributes.get(attribute_id)
                if attribute is not None:
                    attribute.value = value
            for attribute in self._attributes.values():
                attribute.status = status
