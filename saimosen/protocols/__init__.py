"""Device profile registry exports."""
from __future__ import annotations

from .profiles import DEFAULT_PROFILES
from .registry import (
    CommandDefinition,
    DeviceProfile,
    ProtocolRegistry,
    RegisterWrite,
    describe_plan,
    load_registry,
)
from .validator import (
    ValidationIssue,
    ValidationResult,
    validate_profiles,
    validate_registry_file,
    validate_registry_payload,
)

__all__ = [
    "CommandDefinition",
    "DEFAULT_PROFILES",
    "DeviceProfile",
    "ProtocolRegistry",
    "RegisterWrite",
    "ValidationIssue",
    "ValidationResult",
    "describe_plan",
    "load_registry",
    "validate_profiles",
    "validate_registry_file",
    "validate_registry_payload",
]
