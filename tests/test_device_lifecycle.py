from __future__ import annotations

import threading
from typing import Any, List, Optional

import pytest

from saimosen.attributes import AttributeStatus
from saimosen.config import AcquisitionConfig, CommSettings, DeviceConfig
from saimosen.devices import DEVICE_CLASSES, DeviceDriver, DeviceState
from saimosen.hardware import ModbusTransport, SimulatedTransport
from saimosen.i18n import DisplayNameResolver
from saimosen.protocols import DEFAULT_PROFILES, ProtocolRegistry


class _StubHandle:
    def __init__(self) -> None:
        self.cancel_calls = 0

    def cancel(self) -> bool:
        self.cancel_calls += 1
        return self.cancel_calls == 1

    @property
    def cancelled(self) -> bool:
        return self.cancel_calls > 0


class _RecordingScheduler:
    def __init__(self) -> None:
        self.fixed: List[tuple] = []
        self.once: List[tuple] = []

    def schedule_fixed_delay(self, task, initial_delay_s, period_s):
        handle = _StubHandle()
        self.fixed.append((task, initial_delay_s, period_s, handle))
        return handle

    def schedule_once(self, task, delay_s):
        handle = _StubHandle()
        self.once.append((task, delay_s, handle))
        return handle


def _driver(
    device_class: str = 'co',
    *,
    transport: Optional[SimulatedTransport] = None,
    scheduler: Optional[_RecordingScheduler] = None,
    transport_factory: Any = None,
    resolver: Optional[DisplayNameResolver] = None,
    **config_kwargs: Any,
) -> DeviceDriver:
    profile = ProtocolRegistry.from_dict(DEFAULT_PROFILES).require(device_class)
    config = DeviceConfig(id=f'{device_class}-1', name=device_class.upper(), device_class=device_class, **config_kwargs)
    kwargs: dict = {'scheduler': scheduler or _RecordingScheduler(), 'resolver': resolver}
    if transport_factory is not None:
        kwargs['transport_factory'] = transport_factory
    else:
        kwargs['transport'] = transport or SimulatedTransport()
    return DEVICE_CLASSES[device_class](config, profile, **kwargs)


def test_init_builds_attributes_without_touching_transport() -> None:
    created = []

    def _factory(comm):
        created.append(comm)
        return SimulatedTransport()

    driver = _driver('no2', transport_factory=_factory)
    driver.init()

    assert driver.state is DeviceState.READY
    assert created == []
    attributes = driver.list_attributes()
    assert 'no2' in attributes
    assert 'cooling_fan_status' in attributes
    assert 'calibration_concentration' in attributes
    assert attributes['no2'].unit == 'ppb'
    assert attributes['case_temp'].display_name_key == 'devices.no2.case_temp'
    assert all(attribute.status is AttributeStatus.EMPTY for attribute in attributes.values())


@pytest.mark.parametrize('device_class', sorted(DEVICE_CLASSES))
def test_init_is_idempotent(device_class: str) -> None:
    driver = _driver(device_class)
    driver.init()
    first = driver.registry.ids()
    driver.init()

    assert first
    assert driver.registry.ids() == first
    assert len(first) == len(set(first))
    assert driver.state is DeviceState.READY


def test_display_names_come_from_resolver() -> None:
    resolver = DisplayNameResolver({'devices': {'o3': {'o3': 'Ozone'}}})
    driver = _driver('o3', resolver=resolver)
    driver.init()

    assert driver.get_attribute('o3').display_name == 'Ozone'
    assert driver.get_attribute('sample_flow').display_name == 'devices.o3.sample_flow'


def test_start_schedules_one_fixed_delay_cycle() -> None:
    scheduler = _RecordingScheduler()
    driver = _driver('co', scheduler=scheduler)
    driver.init()
    driver.start()

    assert driver.state is DeviceState.POLLING
    assert [(initial, period) for _, initial, period, _ in scheduler.fixed] == [(0.0, 5.0)]
    assert scheduler.once == []


def test_start_twice_does_not_double_schedule() -> None:
    scheduler = _RecordingScheduler()
    driver = _driver('co', scheduler=scheduler)
    driver.init()
    driver.start()
    driver.start()

    assert len(scheduler.fixed) == 1


def test_config_overrides_profile_schedule() -> None:
    scheduler = _RecordingScheduler()
    driver = _driver('qc', scheduler=scheduler, poll_interval_s=2.5, initial_delay_s=1.0)
    driver.init()
    driver.start()

    assert [(initial, period) for _, initial, period, _ in scheduler.fixed] == [(1.0, 2.5)]


def test_start_requires_init() -> None:
    driver = _driver('co')
    with pytest.raises(RuntimeError):
        driver.start()


def test_debug_gated_driver_schedules_nothing_when_debug_off() -> None:
    class _BenchDriver(DEVICE_CLASSES['power_stabilizer']):
        debug_gated = True

    profile = ProtocolRegistry.from_dict(DEFAULT_PROFILES).require('power_stabilizer')
    scheduler = _RecordingScheduler()
    off = _BenchDriver(DeviceConfig('ps-1', 'PS', 'power_stabilizer'), profile, transport=SimulatedTransport(), scheduler=scheduler)
    off.init()
    off.start()
    assert scheduler.fixed == []

    on = _BenchDriver(
        DeviceConfig('ps-2', 'PS', 'power_stabilizer', debug=True), profile, transport=SimulatedTransport(), scheduler=scheduler
    )
    on.init()
    on.start()
    assert [(initial, period) for _, initial, period, _ in scheduler.fixed] == [(0.0, 5.0)]


def test_scheduled_task_runs_a_cycle() -> None:
    scheduler = _RecordingScheduler()
    transport = SimulatedTransport()
    driver = _driver('sample_tube', scheduler=scheduler, transport=transport)
    transport.load(0, [455, 231, 0, 0, 7, 12, 450, 500, 600, 0, 450])
    driver.init()
    driver.start()

    task = scheduler.fixed[0][0]
    task()

    assert transport.reads == [(0, 11)]
    assert driver.get_attribute('humidity').value == pytest.approx(45.5)
    assert driver.get_attribute('device_address').value == 7
    assert driver.get_attribute('heating_tube_target_temp').value == pytest.approx(45.0)
    assert driver.get_attribute('heating_tube_target_temp').status is AttributeStatus.NORMAL


def test_stop_cancels_and_tolerates_nothing_scheduled() -> None:
    scheduler = _RecordingScheduler()
    driver = _driver('co', scheduler=scheduler)
    driver.init()
    driver.stop()
    driver.start()
    driver.stop()
    driver.stop()

    handle = scheduler.fixed[0][3]
    assert handle.cancel_calls == 1
    assert driver.state is DeviceState.READY


def test_release_without_start_closes_transport_once() -> None:
    transport = SimulatedTransport()
    driver = _driver('power_stabilizer', transport=transport)
    driver.init()

    driver.release()
    driver.release()

    assert transport.close_calls == 1
    assert driver.state is DeviceState.RELEASED


def test_release_after_start_cancels_timer() -> None:
    scheduler = _RecordingScheduler()
    transport = SimulatedTransport()
    driver = _driver('co', scheduler=scheduler, transport=transport)
    driver.init()
    driver.start()
    driver.release()

    assert scheduler.fixed[0][3].cancelled
    assert transport.close_calls == 1
    with pytest.raises(RuntimeError):
        driver.init()


def test_release_skips_transport_that_was_never_created() -> None:
    created = []
    driver = _driver('co', transport_factory=lambda comm: created.append(comm) or SimulatedTransport())
    driver.init()
    driver.release()

    assert created == []


def test_release_tolerates_closed_transport() -> None:
    transport = SimulatedTransport()
    transport.close_connection()
    driver = _driver('co', transport=transport)
    driver.release()

    assert transport.close_calls == 1


def test_release_stops_worker_of_transport_that_never_connected() -> None:
    class _UnreachableClient:
        connected = False

        def connect(self) -> bool:
            return False

        def close(self) -> None:
            pass

    comm = CommSettings(transport='serial', port='/dev/ttyUSB9', slave_id=4)
    transport = ModbusTransport(comm, client_factory=lambda settings: _UnreachableClient())
    driver = _driver('sample_tube', transport=transport)
    driver.init()

    assert driver.run_cycle().result(timeout=1) is False
    assert not transport.is_connection_open()
    worker_prefix = f'modbus-{comm.label}'
    assert any(thread.name.startswith(worker_prefix) for thread in threading.enumerate())

    driver.release()

    assert not any(thread.name.startswith(worker_prefix) and thread.is_alive() for thread in threading.enumerate())


def test_cycle_timeout_marks_malfunction() -> None:
    from concurrent.futures import Future

    class _SilentTransport(SimulatedTransport):
        def read_holding_words(self, address, count):
            return Future()

    profile = ProtocolRegistry.from_dict(DEFAULT_PROFILES).require('sample_tube')
    scheduler = _RecordingScheduler()
    driver = DEVICE_CLASSES['sample_tube'](
        DeviceConfig('st-1', 'Tube', 'sample_tube'),
        profile,
        transport=_SilentTransport(),
        scheduler=scheduler,
        acquisition=AcquisitionConfig(cycle_timeout_s=0.05),
    )
    driver.init()
    driver.start()

    scheduler.fixed[0][0]()

    assert driver.get_attribute('humidity').status is AttributeStatus.MALFUNCTION
