"""Register transport abstraction helpers."""
from __future__ import annotations

from .transport import (
    ModbusTransport,
    RegisterTransport,
    SimulatedTransport,
    SUPPORTED_TRANSPORTS,
    TransportError,
    completed,
    create_transport,
    failed,
)

__all__ = [
    "ModbusTransport",
    "RegisterTransport",
    "SimulatedTransport",
    "SUPPORTED_TRANSPORTS",
    "TransportError",
    "completed",
    "create_transport",
    "failed",
]
