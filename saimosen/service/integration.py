"""Integration host: builds drivers from configuration and drives them together."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Type

from ..acquisition import DeviceStats, FixedDelayScheduler, Scheduler
from ..config import AppConfig, CommSettings, DeviceConfig
from ..devices import DEVICE_CLASSES, DeviceDriver
from ..hardware import RegisterTransport, create_transport
from ..i18n import DisplayNameResolver
from ..protocols import ProtocolRegistry, load_registry

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Dict[str, dict]]


class Integration:
    """Own every configured device driver and run their shared lifecycle."""

    def __init__(
        self,
        config: AppConfig,
        *,
        registry: Optional[ProtocolRegistry] = None,
        resolver: Optional[DisplayNameResolver] = None,
        scheduler: Optional[Scheduler] = None,
        transport_factory: Callable[[CommSettings], RegisterTransport] = create_transport,
        device_classes: Optional[Mapping[str, Type[DeviceDriver]]] = None,
    ) -> None:
        self._config = config
        self._registry = registry or load_registry(config.profiles_path)
        self._resolver = resolver or DisplayNameResolver.from_path(config.i18n.strings_path)
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or FixedDelayScheduler(name="saimosen")
        self._transport_factory = transport_factory
        self._device_classes = dict(device_classes or DEVICE_CLASSES)
        self._devices: Dict[str, DeviceDriver] = {}
        self._stop_requested = threading.Event()
        for device_config in config.devices:
            self._devices[device_config.id] = self.create_device(device_config)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def devices(self) -> Dict[str, DeviceDriver]:
        return dict(self._devices)

    def __iter__(self) -> Iterator[DeviceDriver]:
        return iter(list(self._devices.values()))

    def __len__(self) -> int:
        return len(self._devices)

    def get(self, device_id: str) -> Optional[DeviceDriver]:
        return self._devices.get(device_id)

    def create_device(self, device_config: DeviceConfig) -> DeviceDriver:
        driver_cls = self._device_classes.get(device_config.device_class)
        if driver_cls is None:
            available = ", ".join(sorted(self._device_classes))
            raise ValueError(
                f"Device '{device_config.id}' has unsupported class '{device_config.device_class}'. Available: {available}"
            )
        profile = self._registry.require(device_config.profile_name)
        return driver_cls(
            device_config,
            profile,
            scheduler=self._scheduler,
            resolver=self._resolver,
            acquisition=self._config.acquisition,
            transport_factory=self._transport_factory,
        )

    # Bulk lifecycle ----------------------------------------------------
    def init_all(self) -> None:
        for driver in self:
            driver.init()

    def start_all(self) -> None:
        for driver in self:
            driver.start()

    def stop_all(self) -> None:
        """Pause every device; they can be started again afterwards."""

        for driver in self:
            driver.stop()

    def release_all(self) -> None:
        for driver in self:
            try:
                driver.release()
            except Exception:
                logger.exception("Device %s failed to release cleanly", driver.id)
        if self._owns_scheduler and isinstance(self._scheduler, FixedDelayScheduler):
            self._scheduler.shutdown()

    # Observation -------------------------------------------------------
    def snapshot(self) -> Snapshot:
        return {
            driver.id: {attribute_id: attribute.to_dict() for attribute_id, attribute in driver.list_attributes().items()}
            for driver in self
        }

    def stats(self) -> Dict[str, DeviceStats]:
        return {driver.id: driver.stats for driver in self}

    def polling_device_ids(self) -> List[str]:
        return [driver.id for driver in self if driver.poll_interval_s is not None and driver.profile.polls]

    # Run loop ----------------------------------------------------------
    def request_stop(self) -> None:
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def run(self, on_snapshot: Optional[Callable[[Snapshot], None]] = None) -> None:
        """Initialise and start every device, then block until asked to stop."""

        acquisition = self._config.acquisition
        try:
            self.init_all()
            self.start_all()
            started = time.monotonic()
            next_snapshot = started + acquisition.snapshot_interval_s if acquisition.snapshot_interval_s > 0 else None
            while not self._stop_requested.is_set():
                now = time.monotonic()
                if acquisition.max_runtime_s > 0 and now - started >= acquisition.max_runtime_s:
                    logger.info("Maximum runtime of %.0fs reached", acquisition.max_runtime_s)
                    break
                if next_snapshot is not None and now >= next_snapshot:
                    next_snapshot = now + acquisition.snapshot_interval_s
                    if on_snapshot is not None:
                        on_snapshot(self.snapshot())
                self._stop_requested.wait(0.2)
        finally:
            self.release_all()
