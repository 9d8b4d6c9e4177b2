"""Acquisition cycle and scheduling."""
from __future__ import annotations

from .cycle import (
    CALIBRATION_CONCENTRATION_ATTRIBUTE,
    CALIBRATION_STATUS_ATTRIBUTE,
    AcquisitionCycle,
    DeviceStats,
    SegmentReadError,
)
from .scheduler import FixedDelayScheduler, ScheduledHandle, Scheduler

__all__ = [
    "AcquisitionCycle",
    "CALIBRATION_CONCENTRATION_ATTRIBUTE",
    "CALIBRATION_STATUS_ATTRIBUTE",
    "DeviceStats",
    "FixedDelayScheduler",
    "ScheduledHandle",
    "Scheduler",
    "SegmentReadError",
]
