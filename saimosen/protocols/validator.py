from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..calibration import DeviceStatus
from ..config import load_mapping
from ..registers.segments import FIELD_KINDS, Segment, SegmentPlan

MAX_REGISTER = 0xFFFF


@dataclass(slots=True)
class ValidationIssue:
    level: str
    location: str
    message: str

    def __str__(self) -> str:  # pragma: no cover - helper for CLI
        return f"[{self.level}] {self.location}: {self.message}"


@dataclass(slots=True)
class ValidationResult:
    issues: List[ValidationIssue]

    @property
    def errors(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.level == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.level == "warning"]

    def extend(self, issues: Iterable[ValidationIssue]) -> None:
        self.issues.extend(issues)

    def merge(self, other: "ValidationResult") -> None:
        self.issues.extend(other.issues)


def validate_registry_payload(payload: Mapping[str, Any]) -> ValidationResult:
    issues: List[ValidationIssue] = []
    profiles = payload.get("profiles") if isinstance(payload, Mapping) else None
    if not isinstance(profiles, Mapping):
        issues.append(ValidationIssue("error", "profiles", "Expected 'profiles' mapping"))
        return ValidationResult(issues)
    issues.extend(validate_profiles(profiles).issues)
    return ValidationResult(issues)


def validate_registry_file(path: Path) -> ValidationResult:
    if not path.exists():
        return ValidationResult([ValidationIssue("error", str(path), "Registry file not found")])
    try:
        payload = load_mapping(path)
    except ValueError as exc:
        return ValidationResult([ValidationIssue("error", str(path), str(exc))])
    except Exception as exc:  # pragma: no cover - parsing safety
        return ValidationResult([
            ValidationIssue("error", str(path), f"Failed to parse registry: {exc}"),
        ])
    if not isinstance(payload, Mapping):
        return ValidationResult([
            ValidationIssue("error", str(path), "Registry root must be a mapping"),
        ])
    return validate_registry_payload(payload)


def validate_profiles(profiles: Mapping[str, Any]) -> ValidationResult:
    issues: List[ValidationIssue] = []
    if not profiles:
        issues.append(ValidationIssue("error", "profiles", "No device profiles defined"))
        return ValidationResult(issues)
    name_counts: Dict[str, int] = {}
    for name, profile in profiles.items():
        location = f"profiles.{name}"
        if not isinstance(profile, Mapping):
            issues.append(ValidationIssue("error", location, "Profile must be a mapping"))
            continue
        lowered = name.lower()
        name_counts[lowered] = name_counts.get(lowered, 0) + 1
        issues.extend(_validate_profile(name, profile))

    for lowered, count in name_counts.items():
        if count > 1:
            issues.append(
                ValidationIssue(
                    "error",
                    f"profiles.{lowered}",
                    "Duplicate profile name detected (case-insensitive)",
                )
            )

    return ValidationResult(issues)


def _validate_profile(name: str, profile: Mapping[str, Any]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    location = f"profiles.{name}"

    segment_ids: List[str] = []
    spans: List[Tuple[str, int, int]] = []
    segments = profile.get("segments")
    if segments is None:
        segments = []
    if not isinstance(segments, list):
        issues.append(ValidationIssue("error", f"{location}.segments", "segments must be a list"))
        segments = []
    for index, segment in enumerate(segments):
        segment_location = f"{location}.segments[{index}]"
        segment_issues, span = _validate_segment(segment_location, segment)
        issues.extend(segment_issues)
        if span is None:
            continue
        if span[0] in segment_ids:
            issues.append(ValidationIssue("error", segment_location, f"Duplicate segment id '{span[0]}'"))
        segment_ids.append(span[0])
        spans.append(span)

    unique: Dict[str, Segment] = {}
    for segment_id, start, count in spans:
        unique.setdefault(segment_id, Segment(segment_id, start, count))
    for first_id, second_id in SegmentPlan(list(unique.values())).overlapping_pairs():
        issues.append(
            ValidationIssue("error", f"{location}.segments", f"Segments '{first_id}' and '{second_id}' overlap")
        )

    for key in ("status_segment", "span_segment"):
        ref = profile.get(key)
        if ref is not None and ref not in segment_ids:
            issues.append(ValidationIssue("error", f"{location}.{key}", f"'{ref}' is not a defined segment"))

    status_table = profile.get("status_table")
    if status_table is not None:
        if not isinstance(status_table, Mapping):
            issues.append(ValidationIssue("error", f"{location}.status_table", "status_table must be a mapping"))
        else:
            issues.extend(_validate_status_table(f"{location}.status_table", status_table))

    poll = profile.get("poll")
    if poll is not None:
        if not isinstance(poll, Mapping):
            issues.append(ValidationIssue("error", f"{location}.poll", "poll must be a mapping"))
        else:
            interval = poll.get("interval_s")
            if interval is not None and not _is_positive_number(interval, allow_zero=False):
                issues.append(ValidationIssue("error", f"{location}.poll.interval_s", "interval_s must be > 0"))
            delay = poll.get("initial_delay_s")
            if delay is not None and not _is_non_negative_number(delay):
                issues.append(ValidationIssue("error", f"{location}.poll.initial_delay_s", "initial_delay_s must be >= 0"))

    protection = profile.get("write_protection_s")
    if protection is not None and not _is_non_negative_number(protection):
        issues.append(ValidationIssue("error", f"{location}.write_protection_s", "write_protection_s must be >= 0"))

    commands = profile.get("commands")
    if commands is not None:
        if not isinstance(commands, Mapping):
            issues.append(ValidationIssue("error", f"{location}.commands", "commands must be a mapping"))
        else:
            command_names: Dict[str, int] = {}
            for command_name, command_data in commands.items():
                lowered = command_name.lower()
                command_names[lowered] = command_names.get(lowered, 0) + 1
                issues.extend(_validate_command(name, command_name, command_data))
            for lowered, count in command_names.items():
                if count > 1:
                    issues.append(
                        ValidationIssue(
                            "error",
                            f"{location}.commands.{lowered}",
                            "Duplicate command name detected (case-insensitive)",
                        )
                    )

    if not segments and not commands:
        issues.append(ValidationIssue("warning", location, "Profile defines neither segments nor commands"))

    return issues


def _validate_segment(location: str, segment: Any) -> Tuple[List[ValidationIssue], Optional[Tuple[str, int, int]]]:
    issues: List[ValidationIssue] = []
    if not isinstance(segment, Mapping):
        return [ValidationIssue("error", location, "Segment must be a mapping")], None

    segment_id = segment.get("id")
    if not isinstance(segment_id, str) or not segment_id.strip():
        issues.append(ValidationIssue("error", f"{location}.id", "Segment id must be a non-empty string"))
        return issues, None

    address = _as_register(segment.get("address"))
    count = _as_register(segment.get("count"))
    if address is None:
        issues.append(ValidationIssue("error", f"{location}.address", "address must be a register number 0-65535"))
    if count is None or count <= 0:
        issues.append(ValidationIssue("error", f"{location}.count", "count must be a positive integer"))
        count = None
    if address is not None and count is not None and address + count - 1 > MAX_REGISTER:
        issues.append(ValidationIssue("error", location, "Segment extends past register 65535"))

    fields = segment.get("fields") or []
    if not isinstance(fields, list):
        issues.append(ValidationIssue("error", f"{location}.fields", "fields must be a list"))
        fields = []
    for index, entry in enumerate(fields):
        issues.extend(_validate_field(f"{location}.fields[{index}]", entry, count))

    if address is None or count is None:
        return issues, None
    return issues, (segment_id, address, count)


def _validate_field(location: str, entry: Any, segment_count: Optional[int]) -> List[ValidationIssue]:
    if not isinstance(entry, Mapping):
        return [ValidationIssue("error", location, "Field must be a mapping")]
    issues: List[ValidationIssue] = []
    if not entry.get("name"):
        issues.append(ValidationIssue("error", f"{location}.name", "Field name is required"))
    kind = entry.get("kind", "u16")
    width = FIELD_KINDS.get(kind)
    if width is None:
        issues.append(
            ValidationIssue("error", f"{location}.kind", f"Unknown kind '{kind}'; expected one of {sorted(FIELD_KINDS)}")
        )
    offset = entry.get("offset")
    if not _is_non_negative_int(offset):
        issues.append(ValidationIssue("error", f"{location}.offset", "offset must be >= 0"))
    elif width is not None and segment_count is not None and int(offset) + width > segment_count:
        issues.append(ValidationIssue("error", f"{location}.offset", "Field extends beyond the segment end"))
    divisor = entry.get("divisor")
    if divisor is not None and not _is_positive_number(divisor, allow_zero=False):
        issues.append(ValidationIssue("error", f"{location}.divisor", "divisor must be > 0"))
    return issues


def _validate_status_table(location: str, table: Mapping[Any, Any]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for raw, status in table.items():
        if _as_register(raw) is None:
            issues.append(ValidationIssue("error", f"{location}.{raw}", "Status key must be a register value 0-65535"))
        name = str(status).strip().upper()
        if name not in DeviceStatus.__members__:
            issues.append(
                ValidationIssue(
                    "error",
                    f"{location}.{raw}",
                    f"Unknown device status '{status}'; expected one of {sorted(DeviceStatus.__members__)}",
                )
            )
    return issues


def _validate_command(profile_name: str, command_name: str, command_data: Any) -> List[ValidationIssue]:
    location = f"profiles.{profile_name}.commands.{command_name}"
    issues: List[ValidationIssue] = []

    if not isinstance(command_data, Mapping):
        issues.append(ValidationIssue("error", location, "Command definition must be a mapping"))
        return issues

    writes = command_data.get("writes")
    if not isinstance(writes, list) or not writes:
        issues.append(ValidationIssue("error", f"{location}.writes", "Command must define at least one register write"))
        writes = []
    for index, write in enumerate(writes):
        write_location = f"{location}.writes[{index}]"
        if not isinstance(write, Mapping):
            issues.append(ValidationIssue("error", write_location, "Write must be a mapping"))
            continue
        if _as_register(write.get("address")) is None:
            issues.append(ValidationIssue("error", f"{write_location}.address", "address must be 0-65535"))
        if write.get("from_argument"):
            multiplier = write.get("multiplier")
            if multiplier is not None and not _is_positive_number(multiplier, allow_zero=False):
                issues.append(ValidationIssue("error", f"{write_location}.multiplier", "multiplier must be > 0"))
        elif _as_register(write.get("value", 0)) is None:
            issues.append(ValidationIssue("error", f"{write_location}.value", "value must be 0-65535"))

    minimum = command_data.get("minimum")
    maximum = command_data.get("maximum")
    for key, bound in (("minimum", minimum), ("maximum", maximum)):
        if bound is not None and not _is_number(bound):
            issues.append(ValidationIssue("error", f"{location}.{key}", f"{key} must be a number"))
    if _is_number(minimum) and _is_number(maximum) and float(minimum) > float(maximum):
        issues.append(ValidationIssue("error", location, "minimum is greater than maximum"))

    category = command_data.get("category")
    if category is not None and not isinstance(category, str):
        issues.append(ValidationIssue("error", f"{location}.category", "category must be a string"))

    return issues


def _as_register(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = int(value, 0) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return None
    if not 0 <= number <= MAX_REGISTER:
        return None
    return number


def _is_number(value: Any) -> bool:
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _is_positive_number(value: Any, *, allow_zero: bool) -> bool:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return False
    return numeric >= 0 if allow_zero else numeric > 0


def _is_non_negative_number(value: Any) -> bool:
    return _is_positive_number(value, allow_zero=True)


def _is_non_negative_int(value: Any) -> bool:
    try:
        integer = int(value)
    except (TypeError, ValueError):
        return False
    return integer >= 0
