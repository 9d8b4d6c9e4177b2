"""Device drivers keyed by configuration class name."""
from __future__ import annotations

from typing import Dict, Type

from .base import DeviceDriver, DeviceState
from .calibrator import CalibratorDevice
from .gas import GasAnalyzer
from .power_stabilizer import SmartPowerStabilizer
from .qc import QCDevice
from .sample_tube import SampleTube
from .zero_checker import ParticulateZeroChecker

DEVICE_CLASSES: Dict[str, Type[DeviceDriver]] = {
    "co": GasAnalyzer,
    "no2": GasAnalyzer,
    "o3": GasAnalyzer,
    "so2": GasAnalyzer,
    "calibrator": CalibratorDevice,
    "qc": QCDevice,
    "sample_tube": SampleTube,
    "power_stabilizer": SmartPowerStabilizer,
    "particulate_zero_checker": ParticulateZeroChecker,
}

__all__ = [
    "CalibratorDevice",
    "DEVICE_CLASSES",
    "DeviceDriver",
    "DeviceState",
    "GasAnalyzer",
    "ParticulateZeroChecker",
    "QCDevice",
    "SampleTube",
    "SmartPowerStabilizer",
]
