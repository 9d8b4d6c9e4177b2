"""Service supervisor coordinates the integration host and watchdogs."""
from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from ..config import WatchdogConfig
from .integration import Integration, Snapshot
from .watchdog import CycleWatchdog, WatchdogEvent

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SupervisorOptions:
    """Configuration options for the service supervisor."""

    start_watchdogs: bool = True


class ServiceSupervisor:
    """Wrapper around :class:`Integration` that manages watchdogs."""

    def __init__(
        self,
        integration: Integration,
        watchdogs: Optional[Iterable[CycleWatchdog]] = None,
        options: Optional[SupervisorOptions] = None,
    ) -> None:
        self._integration = integration
        self._watchdogs: List[CycleWatchdog] = list(watchdogs or [])
        self._options = options or SupervisorOptions()

    @property
    def integration(self) -> Integration:
        return self._integration

    @property
    def watchdogs(self) -> List[CycleWatchdog]:
        return list(self._watchdogs)

    def add_watchdog(self, watchdog: CycleWatchdog) -> None:
        self._watchdogs.append(watchdog)

    def attach_watchdog(
        self,
        config: WatchdogConfig,
        on_event: Optional[Callable[[WatchdogEvent], None]] = None,
    ) -> Optional[CycleWatchdog]:
        if not config.enabled:
            return None
        watchdog = CycleWatchdog(
            self._integration,
            timeout_s=config.timeout_s,
            poll_interval_s=config.poll_interval_s,
            on_event=on_event or self.default_watchdog_handler,
        )
        self.add_watchdog(watchdog)
        return watchdog

    def run(self, on_snapshot: Optional[Callable[[Snapshot], None]] = None) -> None:
        """Run the integration while managing watchdog lifecycle."""

        with ExitStack() as stack:
            if self._options.start_watchdogs:
                for watchdog in self._watchdogs:
                    watchdog.start()
                    stack.callback(watchdog.stop)
            self._integration.run(on_snapshot)

    def stop(self) -> None:
        self._integration.request_stop()

    @staticmethod
    def default_watchdog_handler(event: WatchdogEvent) -> None:
        """Basic handler that prints the watchdog event."""

        timestamp = event.occurred_at.isoformat()
        payload = f" payload={event.payload}" if event.payload else ""
        print(f"[watchdog] {timestamp} {event.device_id} {event.kind}: {event.message}{payload}")
