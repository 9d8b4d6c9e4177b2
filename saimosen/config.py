"""Configuration management for the Saimosen acquisition engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

PARITIES = {"N", "E", "O"}
DEFAULT_TIMEOUT_MS = 1000
DEFAULT_TCP_PORT = 502
DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_SERIAL_REQUIRED = ("port", "baud_rate", "data_bits", "stop_bits", "parity", "slave_id")

_COMM_ALIASES = {
    "baudRate": "baud_rate",
    "numDataBit": "data_bits",
    "numStopBit": "stop_bits",
    "slaveId": "slave_id",
    "timeout": "timeout_ms",
}


@dataclass(slots=True)
class CommSettings:
    """Field-bus connection parameters for one device."""

    transport: str = "serial"
    port: Optional[str] = None
    host: Optional[str] = None
    tcp_port: int = DEFAULT_TCP_PORT
    baud_rate: int = 9600
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "N"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    slave_id: int = 1

    def __post_init__(self) -> None:
        self.transport = (self.transport or "serial").strip().lower()
        if self.transport not in {"serial", "tcp", "sim"}:
            raise ValueError(f"transport must be one of serial, sim, tcp (got '{self.transport}')")
        self.parity = (self.parity or "N").strip().upper()[:1]
        if self.parity not in PARITIES:
            raise ValueError("parity must be one of E, N, O")
        try:
            timeout = int(self.timeout_ms)
        except (TypeError, ValueError):
            timeout = DEFAULT_TIMEOUT_MS
        self.timeout_ms = timeout if timeout > 0 else DEFAULT_TIMEOUT_MS
        if not 0 <= int(self.slave_id) <= 247:
            raise ValueError("slave_id must be within 0-247")
        self.slave_id = int(self.slave_id)
        if self.transport == "tcp" and not self.host:
            raise ValueError("host is required for tcp transport")

    @property
    def label(self) -> str:
        if self.transport == "tcp":
            return f"{self.host}:{self.tcp_port}#{self.slave_id}"
        if self.transport == "sim":
            return f"sim#{self.slave_id}"
        return f"{self.port}#{self.slave_id}"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], *, device_id: str = "?") -> "CommSettings":
        data = {_COMM_ALIASES.get(key, key): value for key, value in payload.items()}
        transport = str(data.get("transport", "serial")).lower()
        if transport == "tcp" and "tcp_port" not in data and isinstance(data.get("port"), int):
            data["tcp_port"] = data.pop("port")
        if transport == "serial":
            missing = [name for name in _SERIAL_REQUIRED if data.get(name) is None]
            if missing:
                raise ValueError(f"Device '{device_id}' comm_settings missing: {', '.join(missing)}")
        try:
            return cls(**data)
        except TypeError as exc:
            raise ValueError(f"Device '{device_id}' has invalid comm_settings: {exc}") from exc


@dataclass(slots=True)
class DeviceConfig:
    """One configured instrument."""

    id: str
    name: str
    device_class: str
    comm: CommSettings = field(default_factory=lambda: CommSettings(transport="sim"))
    profile: Optional[str] = None
    debug: bool = False
    poll_interval_s: Optional[float] = None
    initial_delay_s: Optional[float] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.id = str(self.id).strip()
        self.name = str(self.name).strip()
        self.device_class = str(self.device_class).strip().lower()
        if not self.id:
            raise ValueError("device id cannot be empty")
        if not self.name:
            raise ValueError(f"Device '{self.id}' name cannot be empty")
        if not self.device_class:
            raise ValueError(f"Device '{self.id}' class cannot be empty")
        if self.poll_interval_s is not None and self.poll_interval_s <= 0:
            raise ValueError(f"Device '{self.id}' poll_interval_s must be greater than 0")
        if self.initial_delay_s is not None and self.initial_delay_s < 0:
            self.initial_delay_s = 0.0
        if self.settings is None:
            self.settings = {}

    @property
    def profile_name(self) -> str:
        return (self.profile or self.device_class).lower()

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DeviceConfig":
        if not isinstance(payload, dict):
            raise TypeError(f"Expected mapping for device entry, got {type(payload).__name__}")
        device_id = payload.get("id")
        for required in ("id", "name", "class"):
            if not payload.get(required):
                raise ValueError(f"Device '{device_id or '?'}' is missing required field '{required}'")
        comm_payload = payload.get("comm_settings")
        if comm_payload is None:
            comm = CommSettings(transport="sim")
        elif isinstance(comm_payload, dict):
            comm = CommSettings.from_dict(comm_payload, device_id=str(device_id))
        else:
            raise TypeError(f"Device '{device_id}' comm_settings must be a mapping")
        return cls(
            id=payload["id"],
            name=payload["name"],
            device_class=payload["class"],
            comm=comm,
            profile=payload.get("profile"),
            debug=bool(payload.get("debug", False)),
            poll_interval_s=payload.get("poll_interval_s"),
            initial_delay_s=payload.get("initial_delay_s"),
            settings=dict(payload.get("device_settings") or payload.get("settings") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        comm = {name: getattr(self.comm, name) for name in self.comm.__dataclass_fields__}  # type: ignore[attr-defined]
        return {
            "id": self.id,
            "name": self.name,
            "class": self.device_class,
            "comm_settings": comm,
            "profile": self.profile,
            "debug": self.debug,
            "poll_interval_s": self.poll_interval_s,
            "initial_delay_s": self.initial_delay_s,
            "settings": dict(self.settings),
        }


@dataclass(slots=True)
class AcquisitionConfig:
    '''Runtime behaviour shared by every driver.'''

    cycle_timeout_s: float = 10.0
    command_timeout_s: float = 5.0
    snapshot_interval_s: float = 30.0
    max_runtime_s: float = 0.0

    def __post_init__(self) -> None:
        try:
            timeout = float(self.cycle_timeout_s)
        except (TypeError, ValueError):
            timeout = 10.0
        self.cycle_timeout_s = timeout if timeout > 0 else 10.0
        try:
            command_timeout = float(self.command_timeout_s)
        except (TypeError, ValueError):
            command_timeout = 5.0
        self.command_timeout_s = command_timeout if command_timeout > 0 else 5.0
        if self.snapshot_interval_s < 0:
            self.snapshot_interval_s = 0.0
        if self.max_runtime_s < 0:
            self.max_runtime_s = 0.0


@dataclass(slots=True)
class LoggingConfig:
    """Root logger settings applied by the command-line entry points."""

    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT
    file: Optional[Path] = None

    def __post_init__(self) -> None:
        self.level = str(self.level or "INFO").upper()
        if not isinstance(logging.getLevelName(self.level), int):
            raise ValueError(f"Unknown log level '{self.level}'")
        if isinstance(self.file, str):
            self.file = Path(self.file) if self.file else None


@dataclass(slots=True)
class I18nConfig:
    """Location of display-name translations."""

    strings_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if isinstance(self.strings_path, str):
            self.strings_path = Path(self.strings_path) if self.strings_path else None


@dataclass(slots=True)
class WatchdogConfig:
    """Liveness monitoring of device cycles."""

    enabled: bool = False
    timeout_s: float = 30.0
    poll_interval_s: float = 2.0

    def __post_init__(self) -> None:
        if self.timeout_s <= 0:
            raise ValueError("watchdog timeout_s must be positive")
        if self.poll_interval_s <= 0:
            raise ValueError("watchdog poll_interval_s must be positive")


@dataclass(slots=True)
class AppConfig:
    """Top-level application configuration bundle."""

    devices: List[DeviceConfig] = field(default_factory=list)
    acquisition: AcquisitionConfig = field(default_factory=AcquisitionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    i18n: I18nConfig = field(default_factory=I18nConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    profiles_path: Optional[Path] = None

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for device in self.devices:
            if device.id in seen:
                raise ValueError(f"Duplicate device id '{device.id}'")
            seen.add(device.id)
        if isinstance(self.profiles_path, str):
            self.profiles_path = Path(self.profiles_path) if self.profiles_path else None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        """Create a configuration instance from a nested dictionary."""

        def _section(name: str, factory: Any) -> Any:
            data = payload.get(name, {}) if payload else {}
            if isinstance(data, dict):
                return factory(**data)
            raise TypeError(f"Expected mapping for section '{name}', got {type(data).__name__}")

        devices_payload = payload.get("devices", []) if payload else []
        if not isinstance(devices_payload, list):
            raise TypeError(f"Expected list for section 'devices', got {type(devices_payload).__name__}")

        return cls(
            devices=[DeviceConfig.from_dict(entry) for entry in devices_payload],
            acquisition=_section("acquisition", AcquisitionConfig),
            logging=_section("logging", LoggingConfig),
            i18n=_section("i18n", I18nConfig),
            watchdog=_section("watchdog", WatchdogConfig),
            profiles_path=(payload or {}).get("profiles_path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return a serialisable representation of the configuration."""

        def _asdict(obj: Any) -> Dict[str, Any]:
            return {name: getattr(obj, name) for name in obj.__dataclass_fields__}  # type: ignore[attr-defined]

        logging_payload = _asdict(self.logging)
        logging_payload["file"] = str(self.logging.file) if self.logging.file else None
        i18n_payload = {"strings_path": str(self.i18n.strings_path) if self.i18n.strings_path else None}

        return {
            "devices": [device.to_dict() for device in self.devices],
            "acquisition": _asdict(self.acquisition),
            "logging": logging_payload,
            "i18n": i18n_payload,
            "watchdog": _asdict(self.watchdog),
            "profiles_path": str(self.profiles_path) if self.profiles_path else None,
        }


def load_config(path: Optional[Path]) -> AppConfig:
    """Load configuration from *path* if provided, otherwise return defaults."""

    if path is None:
        return AppConfig()
    resolved = path.expanduser()
    if not resolved.exists():
        return AppConfig()
    return AppConfig.from_dict(load_mapping(resolved))


def load_mapping(path: Path) -> Dict[str, Any]:
    """Parse a JSON, TOML or YAML document chosen by the suffix of *path*."""

    suffix = path.suffix.lower()
    if suffix in {".json", ".jsn"}:
        payload = _load_json(path)
    elif suffix in {".toml", ".tml"}:
        payload = _load_toml(path)
    elif suffix in {".yaml", ".yml"}:
        payload = _load_yaml(path)
    else:
        raise ValueError(f"Unsupported configuration format: {path.suffix}")
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return payload


def configure_logging(config: LoggingConfig) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.file, encoding="utf-8"))
    logging.basicConfig(level=config.level, format=config.format, handlers=handlers, force=True)


def _load_json(path: Path) -> Dict[str, Any]:
    import json

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        import tomllib  # Python >= 3.11
    except ModuleNotFoundError as exc:  # pragma: no cover - runtime guard
        raise RuntimeError("tomllib is required to parse TOML configuration files") from exc
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _load_yaml(path: Path) -> Dict[str, Any]:
    import yaml

    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}
