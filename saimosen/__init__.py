"""Segmented Modbus acquisition engine for station gas analyzers and auxiliaries."""
from __future__ import annotations

from .config import AppConfig, DeviceConfig, load_config

__all__ = ["AppConfig", "DeviceConfig", "load_config"]
