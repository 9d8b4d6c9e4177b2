"""Watchdog utilities for monitoring device acquisition cycles."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .integration import Integration

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WatchdogEvent:
    """Represents a lifecycle event emitted by a watchdog."""

    kind: str
    message: str
    occurred_at: datetime
    device_id: Optional[str] = None
    payload: Optional[dict[str, Any]] = None


class CycleWatchdog:
    """Warns when a polling device has no successful cycle within *timeout_s*."""

    def __init__(
        self,
        integration: "Integration",
        timeout_s: float = 30.0,
        poll_interval_s: float = 2.0,
        on_event: Optional[Callable[[WatchdogEvent], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if timeout_s <= 0:
            raise ValueError('timeout_s must be positive')
        if poll_interval_s <= 0:
            raise ValueError('poll_interval_s must be positive')
        self._integration = integration
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._on_event = on_event
        self._clock = clock
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._alerts: Dict[str, bool] = {}
        self._last_successes: Dict[str, int] = {}

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='cycle-watchdog', daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)

    def _emit(self, kind: str, device_id: str, message: str, payload: Optional[dict[str, Any]] = None) -> None:
        level = logging.WARNING if kind == 'timeout' else logging.INFO
        logger.log(level, "Device %s: %s", device_id, message)
        if not self._on_event:
            return
        event = WatchdogEvent(
            kind=kind,
            message=message,
            occurred_at=self._clock(),
            device_id=device_id,
            payload=payload,
        )
        try:
            self._on_event(event)
        except Exception:  # pragma: no cover
            logger.exception("Watchdog event handler failed")

    def check(self) -> None:
        """Inspect every polling device once."""

        now = self._clock()
        polling = set(self._integration.polling_device_ids())
        for device_id, stats in self._integration.stats().items():
            if device_id not in polling:
                continue
            successes = stats.successes
            alert_active = self._alerts.get(device_id, False)

            if successes > self._last_successes.get(device_id, 0):
                self._last_successes[device_id] = successes
                if alert_active:
                    self._alerts[device_id] = False
                    self._emit(
                        'recovery',
                        device_id,
                        'Successful cycle after watchdog timeout',
                        {'successes': successes, 'failures': stats.failures},
                    )
                continue

            reference = stats.last_success_at or stats.started_at
            if reference is None:
                continue
            elapsed = (now - reference).total_seconds()
            if elapsed >= self._timeout_s and not alert_active:
                self._alerts[device_id] = True
                self._emit(
                    'timeout',
                    device_id,
                    'No successful cycle within watchdog timeout',
                    {
                        'elapsed_s': elapsed,
                        'failures': stats.failures,
                        'consecutive_failures': stats.consecutive_failures,
                        'last_error': stats.last_error,
                    },
                )

    def _run(self) -> None:
        while not self._stop.wait(self._poll_interval_s):
            self.check()
