"""Station quality-control unit."""
from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Tuple

from .base import DeviceDriver

DEFAULT_SAMPLING_TUBE_LENGTH = 3.0
RESIDENCE_TIME_UNAVAILABLE = 999.0

# Flow meter corrections applied to the particulate samplers.
PM10_FLOW_FACTOR = 1.021
PM2_5_FLOW_FACTOR = 0.997

PM10_FLOWS = ("pm10_std_flow", "pm10_working_flow")
PM2_5_FLOWS = ("pm2_5_std_flow", "pm2_5_working_flow")


def residence_time(tube_length: float, flow: Optional[float]) -> float:
    if flow is None or flow <= 0:
        return RESIDENCE_TIME_UNAVAILABLE
    return tube_length / flow


class QCDevice(DeviceDriver):
    family = "qc"

    @property
    def sampling_tube_length(self) -> float:
        raw = self.config.settings.get("sampling_tube_length", DEFAULT_SAMPLING_TUBE_LENGTH)
        try:
            return float(raw)
        except (TypeError, ValueError):
            return DEFAULT_SAMPLING_TUBE_LENGTH

    def _extra_attributes(self) -> Iterable[Tuple[str, Optional[str]]]:
        return [("sampling_tube_residence_time", "s")]

    def _derive(self, values: Mapping[str, Optional[float]]) -> Dict[str, Optional[float]]:
        derived: Dict[str, Optional[float]] = {
            "sampling_tube_residence_time": residence_time(self.sampling_tube_length, values.get("sample_tube_flow")),
        }
        for names, factor in ((PM10_FLOWS, PM10_FLOW_FACTOR), (PM2_5_FLOWS, PM2_5_FLOW_FACTOR)):
            for name in names:
                value = values.get(name)
                if value is not None:
                    derived[name] = value * factor
        return derived
