"""Driver lifecycle shared by every device family."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..acquisition import (
    CALIBRATION_CONCENTRATION_ATTRIBUTE,
    CALIBRATION_STATUS_ATTRIBUTE,
    AcquisitionCycle,
    DeviceStats,
    FixedDelayScheduler,
    Scheduler,
)
from ..acquisition.scheduler import CancellableHandle
from ..attributes import AttributeRegistry, AttributeStatus, NumericAttribute
from ..calibration import CalibrationWriteGuard
from ..commands import CommandError, CommandResult, execute_command
from ..config import AcquisitionConfig, CommSettings, DeviceConfig
from ..hardware import RegisterTransport, create_transport
from ..i18n import DisplayNameResolver, display_name_key
from ..protocols import CommandDefinition, DeviceProfile

logger = logging.getLogger(__name__)


class DeviceState(str, Enum):
    CREATED = "created"
    READY = "ready"
    POLLING = "polling"
    RELEASED = "released"


class DeviceDriver:
    """Polls one instrument through its profile's segment plan.

    ``init`` builds the attribute registry and the acquisition cycle,
    ``start`` schedules the cycle on a fixed delay, ``stop`` cancels the
    schedule and ``release`` stops and closes the transport.
    """

    family = "device"
    # Drivers whose polling only runs with `debug` switched on in their config.
    debug_gated = False

    def __init__(
        self,
        config: DeviceConfig,
        profile: DeviceProfile,
        *,
        transport: Optional[RegisterTransport] = None,
        scheduler: Optional[Scheduler] = None,
        resolver: Optional[DisplayNameResolver] = None,
        acquisition: Optional[AcquisitionConfig] = None,
        transport_factory: Callable[[CommSettings], RegisterTransport] = create_transport,
    ) -> None:
        self._config = config
        self._profile = profile
        self._transport = transport
        self._transport_factory = transport_factory
        self._scheduler = scheduler or FixedDelayScheduler(name=config.id)
        self._resolver = resolver or DisplayNameResolver()
        self._acquisition = acquisition or AcquisitionConfig()
        self._registry = AttributeRegistry()
        self._stats = DeviceStats()
        self._cycle: Optional[AcquisitionCycle] = None
        self._handles: List[CancellableHandle] = []
        self._state = DeviceState.CREATED
        self._lock = threading.RLock()
        self._span_guard: Optional[CalibrationWriteGuard] = None
        if profile.write_protection_s:
            self._span_guard = CalibrationWriteGuard(window_s=float(profile.write_protection_s))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, state={self._state.value})"

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def profile(self) -> DeviceProfile:
        return self._profile

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def stats(self) -> DeviceStats:
        return self._stats

    @property
    def registry(self) -> AttributeRegistry:
        return self._registry

    @property
    def span_guard(self) -> Optional[CalibrationWriteGuard]:
        return self._span_guard

    @property
    def transport(self) -> RegisterTransport:
        with self._lock:
            if self._transport is None:
                self._transport = self._transport_factory(self._config.comm)
            return self._transport

    @property
    def initial_delay_s(self) -> float:
        if self._config.initial_delay_s is not None:
            return self._config.initial_delay_s
        return self._profile.initial_delay_s

    @property
    def poll_interval_s(self) -> Optional[float]:
        if self._profile.poll_interval_s is None:
            return None
        if self._config.poll_interval_s is not None:
            return self._config.poll_interval_s
        return self._profile.poll_interval_s

    # Attribute surface -------------------------------------------------
    def list_attributes(self) -> Dict[str, NumericAttribute]:
        return self._registry.list_attributes()

    def get_attribute(self, attribute_id: str) -> Optional[NumericAttribute]:
        return self._registry.get(attribute_id)

    def _attribute_specs(self) -> List[Tuple[str, Optional[str]]]:
        specs: List[Tuple[str, Optional[str]]] = []
        for segment in self._profile.data_segments():
            specs.extend((entry.name, entry.unit) for entry in segment.fields)
        if self._profile.tracks_calibration:
            specs.append((CALIBRATION_STATUS_ATTRIBUTE, None))
            specs.append((CALIBRATION_CONCENTRATION_ATTRIBUTE, self._profile.concentration_unit))
        specs.extend(self._extra_attributes())
        return specs

    def _extra_attributes(self) -> Iterable[Tuple[str, Optional[str]]]:
        return ()

    def _derive(self, values: Mapping[str, Optional[float]]) -> Mapping[str, Optional[float]]:
        return {}

    def _display_name(self, key: str) -> str:
        try:
            return self._resolver.resolve_display_name(key)
        except Exception:  # pragma: no cover
            logger.debug("Display name lookup failed for %s", key, exc_info=True)
            return key

    def _build_attributes(self) -> List[NumericAttribute]:
        attributes: List[NumericAttribute] = []
        seen: set[str] = set()
        for attribute_id, unit in self._attribute_specs():
            if attribute_id in seen:
                continue
            seen.add(attribute_id)
            key = display_name_key(self.family, attribute_id)
            attributes.append(
                NumericAttribute(
                    id=attribute_id,
                    display_name_key=key,
                    unit=unit,
                    display_name=self._display_name(key),
                )
            )
        return attributes

    # Lifecycle ---------------------------------------------------------
    def init(self) -> None:
        """Build the attribute registry and acquisition cycle; safe to repeat."""

        with self._lock:
            if self._state is DeviceState.RELEASED:
                raise RuntimeError(f"Device '{self.id}' has been released")
            self._registry.reset(self._build_attributes())
            if self._profile.segments:
                self._cycle = AcquisitionCycle(
                    self._profile.segments,
                    _LazyTransport(self),
                    self._registry,
                    status_segment=self._profile.status_segment,
                    span_segment=self._profile.span_segment,
                    status_table=self._profile.status_table,
                    span_guard=self._span_guard,
                    derive=self._derive,
                    stats=self._stats,
                    label=self.id,
                )
            if self._state is DeviceState.CREATED:
                self._state = DeviceState.READY
            logger.info("Device %s (%s) initialised with %d attributes", self.id, self.family, len(self._registry))

    def run_cycle(self) -> "Future[bool]":
        if self._cycle is None:
            raise RuntimeError(f"Device '{self.id}' has no acquisition cycle; call init() first")
        return self._cycle.run_cycle()

    def start(self) -> None:
        with self._lock:
            if self._state is DeviceState.POLLING:
                return
            if self._state is not DeviceState.READY:
                raise RuntimeError(f"Device '{self.id}' cannot start from state {self._state.value}")
            self._stats.started_at = datetime.now(timezone.utc)
            self._schedule()
            self._state = DeviceState.POLLING
            logger.info("Device %s started (%d timer(s))", self.id, len(self._handles))

    def _schedule(self) -> None:
        interval = self.poll_interval_s
        if self.debug_gated and not self._config.debug:
            logger.info("Device %s: polling disabled outside debug mode", self.id)
            return
        if self._cycle is None or interval is None:
            return
        self._handles.append(self._scheduler.schedule_fixed_delay(self._poll, self.initial_delay_s, interval))

    def _poll(self) -> None:
        future = self.run_cycle()
        try:
            future.result(timeout=self._acquisition.cycle_timeout_s)
        except FutureTimeoutError:
            logger.warning("Device %s: cycle did not settle within %.1fs", self.id, self._acquisition.cycle_timeout_s)
            self._registry.set_all_status(AttributeStatus.MALFUNCTION)

    def stop(self) -> None:
        with self._lock:
            handles, self._handles = self._handles, []
            for handle in handles:
                handle.cancel()
            if self._state is DeviceState.POLLING:
                self._state = DeviceState.READY
                logger.info("Device %s stopped", self.id)

    def release(self) -> None:
        with self._lock:
            if self._state is DeviceState.RELEASED:
                return
            self.stop()
            # Closing an unopened transport still releases its worker thread.
            if self._transport is not None:
                self._transport.close_connection()
            self._state = DeviceState.RELEASED
            logger.info("Device %s released", self.id)

    # Commands ----------------------------------------------------------
    def available_commands(self) -> List[str]:
        return list(self._profile.commands)

    def _command(self, name: str) -> CommandDefinition:
        definition = self._profile.commands.get(name)
        if definition is None:
            available = ", ".join(self._profile.commands) or "<none>"
            raise CommandError(f"Command '{name}' not defined for {self.family}. Available: {available}")
        return definition

    def send_command(self, name: str, argument: Optional[float] = None) -> CommandResult:
        """Send the named control command; invalid arguments raise ``ValueError`` before any write."""

        definition = self._command(name)
        if self._state is DeviceState.RELEASED:
            raise RuntimeError(f"Device '{self.id}' has been released")
        try:
            result = execute_command(self.transport, definition, argument, timeout_s=self._acquisition.command_timeout_s)
        except ValueError:
            logger.error("Device %s rejected command '%s' with argument %r", self.id, name, argument)
            raise
        if result.success:
            self._after_command(definition, argument, result)
        return result

    def _after_command(self, definition: CommandDefinition, argument: Optional[float], result: CommandResult) -> None:
        return None


class _LazyTransport:
    """Defers transport creation until the first read of a cycle."""

    def __init__(self, driver: DeviceDriver) -> None:
        self._driver = driver

    def read_holding_words(self, address: int, count: int):
        return self._driver.transport.read_holding_words(address, count)

    def write_word(self, address: int, value: int):
        return self._driver.transport.write_word(address, value)

    def is_connection_open(self) -> bool:
        return self._driver.transport.is_connection_open()

    def close_connection(self) -> None:
        self._driver.transport.close_connection()
