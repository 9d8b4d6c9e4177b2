"""Heated sample manifold."""
from __future__ import annotations

from ..commands import CommandResult
from .base import DeviceDriver


class SampleTube(DeviceDriver):
    family = "sample_tube"

    def set_heating_tube_target_temp(self, value: float) -> CommandResult:
        return self.send_command("set_heating_tube_target_temp", value)

    def set_heating_tube_actual_temp(self, value: float) -> CommandResult:
        return self.send_command("set_heating_tube_actual_temp", value)

    def set_device_address(self, address: int) -> CommandResult:
        """Change the manifold bus address; only whole numbers 0-255 are accepted."""

        if isinstance(address, bool) or int(address) != address:
            raise ValueError(f"device address must be an integer, got {address!r}")
        if not 0 <= address <= 255:
            raise ValueError(f"device address {address} outside 0-255")
        return self.send_command("set_device_address", address)

    def set_calibration_status(self, value: int) -> CommandResult:
        return self.send_command("set_calibration_status", value)
