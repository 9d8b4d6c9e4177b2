"""Calibration-state derivation for gas analyzers."""
from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

from .attributes import AttributeStatus

DEFAULT_SPAN_CONCENTRATION = 400.0
CALIBRATION_WRITE_PROTECTION_S = 2.0


class DeviceStatus(str, Enum):
    MEASURE = "measure"
    ZERO = "zero"
    ZERO_CALIBRATION = "zero_calibration"
    SPAN = "span"
    SPAN_CALIBRATION = "span_calibration"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"


DEFAULT_STATUS_TABLE: Dict[int, DeviceStatus] = {
    0: DeviceStatus.MEASURE,
    1: DeviceStatus.ZERO_CALIBRATION,
    2: DeviceStatus.SPAN_CALIBRATION,
}

_CYCLE_STATUS: Dict[DeviceStatus, AttributeStatus] = {
    DeviceStatus.MEASURE: AttributeStatus.NORMAL,
    DeviceStatus.ZERO: AttributeStatus.NORMAL,
    DeviceStatus.SPAN: AttributeStatus.NORMAL,
    DeviceStatus.ZERO_CALIBRATION: AttributeStatus.ZERO_CALIBRATION,
    DeviceStatus.SPAN_CALIBRATION: AttributeStatus.SPAN_CALIBRATION,
    DeviceStatus.MAINTENANCE: AttributeStatus.MAINTENANCE,
}


def coerce_status_table(payload: Optional[Mapping[object, object]]) -> Dict[int, DeviceStatus]:
    """Normalise a raw-value table read from a profile file.

    Keys may be ints or numeric strings (``"0x04"`` included); values may be
    :class:`DeviceStatus` members or their names in either case.
    """

    if not payload:
        return dict(DEFAULT_STATUS_TABLE)
    table: Dict[int, DeviceStatus] = {}
    for raw_key, raw_status in payload.items():
        key = int(raw_key, 0) if isinstance(raw_key, str) else int(raw_key)  # type: ignore[arg-type]
        if isinstance(raw_status, DeviceStatus):
            status = raw_status
        else:
            name = str(raw_status).strip()
            try:
                status = DeviceStatus[name.upper()]
            except KeyError:
                status = DeviceStatus(name.lower())
        table[key & 0xFFFF] = status
    return table


def parse_device_status(raw: int, table: Optional[Mapping[int, DeviceStatus]] = None) -> DeviceStatus:
    """Map the raw calibration-status register through the family *table*."""

    lookup = table if table is not None else DEFAULT_STATUS_TABLE
    return lookup.get(int(raw) & 0xFFFF, DeviceStatus.UNKNOWN)


def select_calibration_concentration(status: DeviceStatus, span_register_value: float) -> float:
    if status in (DeviceStatus.SPAN, DeviceStatus.SPAN_CALIBRATION):
        return span_register_value if span_register_value != 0 else DEFAULT_SPAN_CONCENTRATION
    return 0.0


def status_for_cycle(status: DeviceStatus) -> AttributeStatus:
    return _CYCLE_STATUS.get(status, AttributeStatus.EMPTY)


class CalibrationWriteGuard:
    """Remember a freshly written span concentration for a short window.

    The analyzer keeps reporting the previous span register for a moment after
    a write, so cycles completing inside the window use the written value.
    """

    def __init__(
        self,
        window_s: float = CALIBRATION_WRITE_PROTECTION_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[float] = None
        self._written_at = 0.0

    @property
    def window_s(self) -> float:
        return self._window_s

    def mark(self, concentration: float) -> None:
        with self._lock:
            self._value = float(concentration)
            self._written_at = self._clock()

    def resolve(self, read_value: float) -> float:
        """Return the protected value while the window is open, else *read_value*."""

        with self._lock:
            if self._value is None:
                return read_value
            if self._clock() - self._written_at < self._window_s:
                return self._value
            return read_value
