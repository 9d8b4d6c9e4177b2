"""Zero-check switch box for the particulate monitors."""
from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional, Tuple

from ..attributes import AttributeStatus
from ..commands import CommandError, CommandResult
from .base import DeviceDriver

logger = logging.getLogger(__name__)

CHANNELS = ("pm10", "pm2_5")

# One-shot "off" commands issued after start, in seconds.
STARTUP_OFF_DELAYS = {"pm2_5": 8.0, "pm10": 10.0}

CONTROL_INITIAL_DELAY_S = 10.0
CONTROL_PERIOD_S = 60.0


class ParticulateZeroChecker(DeviceDriver):
    """Switches the PM10 / PM2.5 zero-check valves; never polls.

    Only one switch may be on the wire at a time, a second request made while
    one is in flight is refused with ``CommandError``.
    """

    family = "particulate_zero_checker"

    def __init__(self, config, profile, **kwargs) -> None:
        super().__init__(config, profile, **kwargs)
        self._switch_lock = threading.Lock()
        self._control_on = False

    def _extra_attributes(self) -> Iterable[Tuple[str, Optional[str]]]:
        return [(f"{channel}_zero_check", None) for channel in CHANNELS]

    @property
    def switch_in_flight(self) -> bool:
        return self._switch_lock.locked()

    def switch(self, channel: str, on: bool) -> CommandResult:
        if channel not in CHANNELS:
            raise ValueError(f"unknown zero-check channel '{channel}'; expected one of {CHANNELS}")
        if not self._switch_lock.acquire(blocking=False):
            raise CommandError(f"Device {self.id}: a zero-check switch is already in progress")
        try:
            result = self.send_command(f"{channel}_zero_check_{'on' if on else 'off'}")
        finally:
            self._switch_lock.release()
        if result.success:
            self.registry.update(f"{channel}_zero_check", 1.0 if on else 0.0, AttributeStatus.NORMAL)
        return result

    def pm10_zero_check(self, on: bool) -> CommandResult:
        return self.switch("pm10", on)

    def pm2_5_zero_check(self, on: bool) -> CommandResult:
        return self.switch("pm2_5", on)

    def _schedule(self) -> None:
        for channel, delay in STARTUP_OFF_DELAYS.items():
            self._handles.append(self._scheduler.schedule_once(self._startup_off(channel), delay))
        if self.config.debug:
            self._handles.append(
                self._scheduler.schedule_fixed_delay(self._control_mode, CONTROL_INITIAL_DELAY_S, CONTROL_PERIOD_S)
            )

    def _startup_off(self, channel: str):
        def _task() -> None:
            self._switch_quietly(channel, False)

        return _task

    def _control_mode(self) -> None:
        self._control_on = not self._control_on
        for channel in CHANNELS:
            self._switch_quietly(channel, self._control_on)

    def _switch_quietly(self, channel: str, on: bool) -> None:
        try:
            self.switch(channel, on)
        except CommandError as exc:
            logger.warning("%s", exc)
