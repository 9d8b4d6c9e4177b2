"""Device profile registry: register maps, status tables and control commands."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..calibration import DeviceStatus, coerce_status_table
from ..config import load_mapping
from ..registers import FieldDefinition, Segment, SegmentPlan


@dataclass(slots=True)
class RegisterWrite:
    """A single holding-register write inside a command.

    When ``from_argument`` is set the written value is the command argument
    multiplied by ``multiplier``; otherwise ``value`` is written verbatim.
    """

    address: int
    value: int = 0
    from_argument: bool = False
    multiplier: float = 1.0

    def __post_init__(self) -> None:
        if not 0 <= int(self.address) <= 0xFFFF:
            raise ValueError(f"register address {self.address} outside 0-65535")
        if not self.from_argument and not 0 <= int(self.value) <= 0xFFFF:
            raise ValueError(f"register value {self.value} outside 0-65535")
        self.address = int(self.address)
        self.value = int(self.value)


@dataclass(slots=True)
class CommandDefinition:
    """Describes a single control command as an ordered list of writes."""

    name: str
    writes: List[RegisterWrite] = field(default_factory=list)
    description: Optional[str] = None
    category: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    @property
    def takes_argument(self) -> bool:
        return any(write.from_argument for write in self.writes)


@dataclass(slots=True)
class DeviceProfile:
    """Represents a single device-family register map."""

    name: str
    description: Optional[str] = None
    segments: SegmentPlan = field(default_factory=lambda: SegmentPlan([]))
    status_segment: Optional[str] = None
    span_segment: Optional[str] = None
    status_table: Dict[int, DeviceStatus] = field(default_factory=dict)
    concentration_unit: Optional[str] = None
    initial_delay_s: float = 0.0
    poll_interval_s: Optional[float] = 5.0
    write_protection_s: Optional[float] = None
    commands: Dict[str, CommandDefinition] = field(default_factory=dict)

    @property
    def polls(self) -> bool:
        return bool(self.segments) and self.poll_interval_s is not None

    @property
    def tracks_calibration(self) -> bool:
        return self.status_segment is not None

    def data_segments(self) -> List[Segment]:
        """Segments whose fields become attributes (everything but status/span)."""

        special = {self.status_segment, self.span_segment}
        return [segment for key, segment in self.segments.items() if key not in special]

    def span_address(self) -> Optional[int]:
        if self.span_segment is None:
            return None
        return self.segments[self.span_segment].start_address


class ProtocolRegistry:
    """Container that maps profile names to device profiles."""

    def __init__(self, profiles: Dict[str, DeviceProfile]):
        self._profiles = profiles

    def get(self, name: str) -> Optional[DeviceProfile]:
        return self._profiles.get(name.lower())

    def require(self, name: str) -> DeviceProfile:
        profile = self.get(name)
        if profile is None:
            available = ", ".join(sorted(self._profiles)) or "<none>"
            raise KeyError(f"Device profile '{name}' not found. Available: {available}")
        return profile

    def names(self) -> List[str]:
        return sorted(self._profiles)

    def merged(self, other: "ProtocolRegistry") -> "ProtocolRegistry":
        """Return a registry where profiles from *other* replace same-named ones."""

        profiles = dict(self._profiles)
        profiles.update(other._profiles)
        return ProtocolRegistry(profiles)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProtocolRegistry":
        profiles: Dict[str, DeviceProfile] = {}
        for name, data in payload.items():
            if not isinstance(data, dict):
                continue
            profiles[name.lower()] = _build_profile(name, data)
        return cls(profiles)


def _build_field(data: Dict[str, Any]) -> FieldDefinition:
    return FieldDefinition(
        name=str(data["name"]),
        offset=int(data["offset"]),
        kind=str(data.get("kind", "u16")),
        divisor=float(data.get("divisor", 1.0)),
        unit=data.get("unit"),
    )


def _build_segment(data: Dict[str, Any]) -> Segment:
    fields_payload = data.get("fields") or []
    return Segment(
        id=str(data["id"]),
        start_address=_as_int(data["address"]),
        count=_as_int(data["count"]),
        fields=tuple(_build_field(entry) for entry in fields_payload if isinstance(entry, dict)),
    )


def _build_command(name: str, data: Dict[str, Any]) -> CommandDefinition:
    writes: List[RegisterWrite] = []
    for entry in data.get("writes") or []:
        if not isinstance(entry, dict):
            continue
        writes.append(
            RegisterWrite(
                address=_as_int(entry["address"]),
                value=_as_int(entry.get("value", 0)),
                from_argument=bool(entry.get("from_argument", False)),
                multiplier=float(entry.get("multiplier", 1.0)),
            )
        )
    return CommandDefinition(
        name=name,
        writes=writes,
        description=data.get("description"),
        category=data.get("category"),
        minimum=data.get("minimum"),
        maximum=data.get("maximum"),
    )


def _build_profile(name: str, data: Dict[str, Any]) -> DeviceProfile:
    segments = SegmentPlan([_build_segment(entry) for entry in data.get("segments") or [] if isinstance(entry, dict)])
    for key in ("status_segment", "span_segment"):
        ref = data.get(key)
        if ref is not None and ref not in segments:
            raise ValueError(f"Profile '{name}' {key} '{ref}' is not a defined segment")
    commands_payload = data.get("commands")
    commands: Dict[str, CommandDefinition] = {}
    if isinstance(commands_payload, dict):
        for command_name, command_fields in commands_payload.items():
            if isinstance(command_fields, dict):
                commands[command_name] = _build_command(command_name, command_fields)
    poll = data.get("poll") or {}
    interval = poll.get("interval_s", 5.0) if isinstance(poll, dict) else 5.0
    return DeviceProfile(
        name=name,
        description=data.get("description"),
        segments=segments,
        status_segment=data.get("status_segment"),
        span_segment=data.get("span_segment"),
        status_table=coerce_status_table(data.get("status_table")) if data.get("status_segment") else {},
        concentration_unit=data.get("concentration_unit"),
        initial_delay_s=float(poll.get("initial_delay_s", 0.0)) if isinstance(poll, dict) else 0.0,
        poll_interval_s=float(interval) if interval is not None else None,
        write_protection_s=data.get("write_protection_s"),
        commands=commands,
    )


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def load_registry(path: Optional[Path]) -> ProtocolRegistry:
    """Load device profiles from *path* on top of the built-in defaults."""

    from .profiles import DEFAULT_PROFILES

    defaults = ProtocolRegistry.from_dict(DEFAULT_PROFILES)
    if path is None:
        return defaults
    resolved = path.expanduser()
    if not resolved.exists():
        raise FileNotFoundError(f"Profile registry '{resolved}' not found")
    payload = load_mapping(resolved)
    profiles = payload.get("profiles")
    if not isinstance(profiles, dict):
        raise ValueError("Profile registry must contain a 'profiles' mapping")
    return defaults.merged(ProtocolRegistry.from_dict(profiles))


def describe_plan(profile: DeviceProfile) -> List[Tuple[str, int, int]]:
    return [(segment.id, segment.start_address, segment.count) for segment in profile.segments.values()]
