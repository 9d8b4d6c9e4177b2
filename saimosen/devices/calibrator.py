"""Multi-gas calibrator feeding standard gas to the analyzers."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from ..attributes import AttributeStatus
from ..commands import CommandResult
from .base import DeviceDriver

logger = logging.getLogger(__name__)

GAS_SELECT_ATTRIBUTE = "calibrator_gas_select"

# Selection code written to the gas-select register, in the order the panel offers them.
GAS_SELECT_CODES: Dict[str, int] = {
    "Choose": 0x00,
    "SO2": 0x01,
    "NO": 0x02,
    "CO": 0x03,
    "O3": 0x66,
    "M_GPTNO": 0x04,
    "M_GPTNO_O3": 0x05,
    "M_GPT": 0x6D,
}
GAS_SELECT_OPTIONS = tuple(GAS_SELECT_CODES)

SYSTEM_STATES = {
    0x01: "standby",
    0x02: "preparing standard gas",
    0x0C: "preparing O3",
}

CONTROL_INITIAL_DELAY_S = 60.0
CONTROL_PERIOD_S = 60.0


def gas_select_code(option: str) -> int:
    for name, code in GAS_SELECT_CODES.items():
        if name.lower() == str(option).strip().lower():
            return code
    raise ValueError(f"unknown gas selection '{option}'; expected one of {', '.join(GAS_SELECT_OPTIONS)}")


def gas_select_option(code: int) -> Optional[str]:
    for name, value in GAS_SELECT_CODES.items():
        if value == code:
            return name
    return None


def describe_system_state(code: Optional[float]) -> str:
    if code is None:
        return "unknown"
    return SYSTEM_STATES.get(int(code), f"error({int(code)})")


class CalibratorDevice(DeviceDriver):
    """Standard-gas calibrator; polls two blocks and selects the generated gas.

    In debug mode a control timer steps through the gas selections once a
    minute so the analyzers downstream can be exercised unattended.
    """

    family = "calibrator"

    def __init__(self, config, profile, **kwargs) -> None:
        super().__init__(config, profile, **kwargs)
        self._selected: Optional[str] = None

    def _extra_attributes(self) -> Iterable[Tuple[str, Optional[str]]]:
        return [(GAS_SELECT_ATTRIBUTE, None)]

    @property
    def selected_gas(self) -> Optional[str]:
        return self._selected

    @property
    def system_state(self) -> str:
        attribute = self.get_attribute("system_state")
        return describe_system_state(attribute.value if attribute is not None else None)

    def select_gas(self, option: str) -> CommandResult:
        """Write the selection code for *option*; unknown options raise ``ValueError`` before any write."""

        code = gas_select_code(option)
        result = self.send_command("select_gas", code)
        if result.success:
            self._selected = gas_select_option(code)
            self.registry.update(GAS_SELECT_ATTRIBUTE, float(code), AttributeStatus.NORMAL)
        return result

    def _schedule(self) -> None:
        super()._schedule()
        if self.config.debug:
            self._handles.append(
                self._scheduler.schedule_fixed_delay(self._control_mode, CONTROL_INITIAL_DELAY_S, CONTROL_PERIOD_S)
            )

    def _next_option(self) -> str:
        if self._selected not in GAS_SELECT_OPTIONS:
            return GAS_SELECT_OPTIONS[0]
        index = GAS_SELECT_OPTIONS.index(self._selected)
        return GAS_SELECT_OPTIONS[(index + 1) % len(GAS_SELECT_OPTIONS)]

    def _control_mode(self) -> None:
        option = self._next_option()
        result = self.select_gas(option)
        if not result.success:
            logger.warning("Device %s: control mode could not select %s: %s", self.id, option, result.error)
