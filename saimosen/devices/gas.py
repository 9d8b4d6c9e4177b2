"""Gas analyzers (CO, NO2, O3, SO2)."""
from __future__ import annotations

import logging
from typing import Optional

from ..commands import CommandResult
from ..protocols import CommandDefinition
from .base import DeviceDriver

logger = logging.getLogger(__name__)


class GasAnalyzer(DeviceDriver):
    """Analyzer with a calibration status register and span concentration."""

    family = "gas"

    def __init__(self, config, profile, **kwargs) -> None:
        super().__init__(config, profile, **kwargs)
        self.family = profile.name

    def _after_command(self, definition: CommandDefinition, argument: Optional[float], result: CommandResult) -> None:
        guard = self.span_guard
        span_address = self.profile.span_address()
        if guard is None or span_address is None or argument is None:
            return
        if any(write.from_argument and write.address == span_address for write in definition.writes):
            guard.mark(float(argument))
            logger.debug("Device %s: span concentration %.1f held for %.1fs", self.id, argument, guard.window_s)

    def start_zero_calibration(self) -> CommandResult:
        return self.send_command("zero_calibration_start")

    def confirm_zero_calibration(self) -> CommandResult:
        return self.send_command("zero_calibration_confirm")

    def cancel_zero_calibration(self) -> CommandResult:
        return self.send_command("zero_calibration_cancel")

    def start_span_calibration(self, concentration: float) -> CommandResult:
        return self.send_command("span_calibration_start", concentration)

    def confirm_span_calibration(self) -> CommandResult:
        return self.send_command("span_calibration_confirm")

    def cancel_span_calibration(self) -> CommandResult:
        return self.send_command("span_calibration_cancel")

    def stop_calibration(self) -> CommandResult:
        return self.send_command("stop_calibration")
