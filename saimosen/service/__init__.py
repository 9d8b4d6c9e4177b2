"""Service lifecycle helpers."""
from __future__ import annotations

from .integration import Integration
from .supervisor import ServiceSupervisor, SupervisorOptions
from .watchdog import CycleWatchdog, WatchdogEvent

__all__ = [
    "CycleWatchdog",
    "Integration",
    "ServiceSupervisor",
    "SupervisorOptions",
    "WatchdogEvent",
]
