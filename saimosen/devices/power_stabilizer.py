"""Smart power stabilizer feeding the analyzer rack."""
from __future__ import annotations

from typing import List

from .base import DeviceDriver

LINES = (1, 2, 3, 4)


class SmartPowerStabilizer(DeviceDriver):
    family = "power_stabilizer"

    def line_summary(self, line: int) -> dict:
        """Current, voltage, power and relay state of one output line."""

        if line not in LINES:
            raise ValueError(f"line must be one of {LINES}, got {line}")
        summary = {}
        for quantity in ("current", "voltage", "power", "relay"):
            attribute = self.get_attribute(f"{quantity}_l{line}")
            summary[quantity] = attribute.value if attribute is not None else None
        return summary

    def tripped_lines(self) -> List[int]:
        """Lines whose over-temperature protection register is set."""

        tripped = []
        for line in LINES:
            attribute = self.get_attribute(f"over_temp_protection_l{line}")
            if attribute is not None and attribute.value:
                tripped.append(line)
        return tripped
