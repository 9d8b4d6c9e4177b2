from __future__ import annotations

import struct
from typing import List

import pytest

from saimosen.attributes import AttributeStatus
from saimosen.commands import CommandError
from saimosen.config import DeviceConfig
from saimosen.devices import (
    CalibratorDevice,
    GasAnalyzer,
    ParticulateZeroChecker,
    QCDevice,
    SampleTube,
    SmartPowerStabilizer,
)
from saimosen.hardware import SimulatedTransport
from saimosen.protocols import DEFAULT_PROFILES, ProtocolRegistry

_REGISTRY = ProtocolRegistry.from_dict(DEFAULT_PROFILES)


class _StubHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> bool:
        self.cancelled = True
        return True


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


def _build(cls, device_class: str, transport: SimulatedTransport, **config_kwargs):
    config = DeviceConfig(id=f'{device_class}-1', name=device_class, device_class=device_class, **config_kwargs)
    driver = cls(config, _REGISTRY.require(device_class), transport=transport, scheduler=_RecordingScheduler())
    driver.init()
    return driver


def _be(value: float) -> List[int]:
    return list(struct.unpack('>HH', struct.pack('>f', value)))


# Gas analyzers -------------------------------------------------------------

def test_gas_calibration_commands_write_expected_registers() -> None:
    transport = SimulatedTransport()
    analyzer = _build(GasAnalyzer, 'so2', transport)

    analyzer.start_zero_calibration()
    analyzer.confirm_zero_calibration()
    analyzer.start_span_calibration(400)
    analyzer.confirm_span_calibration()
    analyzer.stop_calibration()

    assert transport.writes == [(0x3E8, 0), (0x3E9, 0), (0x3EB, 400), (0x3EC, 400), (0x3EE, 0)]


def test_co_span_confirm_value_differs() -> None:
    transport = SimulatedTransport()
    analyzer = _build(GasAnalyzer, 'co', transport)

    analyzer.confirm_span_calibration()
    analyzer.cancel_span_calibration()
    analyzer.cancel_zero_calibration()
    analyzer.stop_calibration()

    assert transport.writes == [(0x3EC, 40), (0x3ED, 0), (0x3EA, 0), (0x3E8, 0)]


def test_unknown_command_is_refused() -> None:
    analyzer = _build(GasAnalyzer, 'o3', SimulatedTransport())
    with pytest.raises(CommandError):
        analyzer.send_command('purge')


def test_span_write_is_held_against_stale_readback() -> None:
    transport = SimulatedTransport()
    transport.load(0x3EE, [2])
    analyzer = _build(GasAnalyzer, 'no2', transport)

    analyzer.start_span_calibration(350)
    transport.load(0x3EB, [400])
    assert analyzer.run_cycle().result(timeout=1) is True

    assert analyzer.get_attribute('calibration_concentration').value == 350
    assert analyzer.get_attribute('no2').status is AttributeStatus.SPAN_CALIBRATION


def test_co_reads_span_register_back_immediately() -> None:
    transport = SimulatedTransport()
    transport.load(0x3EE, [2])
    analyzer = _build(GasAnalyzer, 'co', transport)
    assert analyzer.span_guard is None

    analyzer.start_span_calibration(350)
    transport.load(0x3EB, [380])
    analyzer.run_cycle().result(timeout=1)

    assert analyzer.get_attribute('calibration_concentration').value == 380


def test_failed_span_write_is_not_held() -> None:
    transport = SimulatedTransport()
    transport.load(0x3EE, [2])
    transport.load(0x3EB, [300])
    transport.fail_writes(0x3EB)
    analyzer = _build(GasAnalyzer, 'o3', transport)

    result = analyzer.start_span_calibration(350)
    analyzer.run_cycle().result(timeout=1)

    assert not result.success
    assert analyzer.get_attribute('calibration_concentration').value == 300


# Sample tube ---------------------------------------------------------------

def test_sample_tube_setters_scale_values() -> None:
    transport = SimulatedTransport()
    tube = _build(SampleTube, 'sample_tube', transport)

    tube.set_heating_tube_target_temp(45.5)
    tube.set_heating_tube_actual_temp(40)
    tube.set_device_address(12)
    tube.set_calibration_status(1)

    assert transport.writes == [(10, 455), (6, 400), (4, 12), (2, 1)]


@pytest.mark.parametrize('address', [256, -1, 3.5])
def test_sample_tube_rejects_bad_address_before_writing(address) -> None:
    transport = SimulatedTransport()
    tube = _build(SampleTube, 'sample_tube', transport)

    with pytest.raises(ValueError):
        tube.set_device_address(address)

    assert transport.writes == []


def test_sample_tube_rejects_negative_temperature() -> None:
    transport = SimulatedTransport()
    tube = _build(SampleTube, 'sample_tube', transport)

    with pytest.raises(ValueError):
        tube.set_heating_tube_target_temp(-5)
    assert transport.writes == []


# QC unit -------------------------------------------------------------------

def _qc_transport(*, tube_flow: float) -> SimulatedTransport:
    transport = SimulatedTransport()
    transport.load(0, [3])
    transport.load(1, _be(24.0))
    transport.load(9, _be(tube_flow))
    transport.load(101, [35, 60])
    transport.load(112, [455])
    transport.load(225, _be(16.7) + _be(16.5) + _be(16.7) + _be(16.6))
    return transport


def test_qc_cycle_derives_residence_time_and_flow_corrections() -> None:
    qc = _build(QCDevice, 'qc', _qc_transport(tube_flow=1.5))

    assert qc.run_cycle().result(timeout=1) is True

    assert qc.get_attribute('system_state').value == 3
    assert qc.get_attribute('bench_temp').value == pytest.approx(24.0)
    assert qc.get_attribute('pm10_concentration').value == 60
    assert qc.get_attribute('heating_temp').value == pytest.approx(45.5)
    assert qc.get_attribute('sampling_tube_residence_time').value == pytest.approx(2.0)
    assert qc.get_attribute('pm10_std_flow').value == pytest.approx(16.7 * 1.021, rel=1e-6)
    assert qc.get_attribute('pm10_working_flow').value == pytest.approx(16.5 * 1.021, rel=1e-6)
    assert qc.get_attribute('pm2_5_std_flow').value == pytest.approx(16.7 * 0.997, rel=1e-6)
    assert qc.get_attribute('pm2_5_working_flow').value == pytest.approx(16.6 * 0.997, rel=1e-6)
    assert {attribute.status for attribute in qc.list_attributes().values()} == {AttributeStatus.NORMAL}


def test_qc_residence_time_uses_configured_tube_length() -> None:
    qc = _build(QCDevice, 'qc', _qc_transport(tube_flow=1.5), settings={'sampling_tube_length': 6})

    qc.run_cycle().result(timeout=1)

    assert qc.get_attribute('sampling_tube_residence_time').value == pytest.approx(4.0)


@pytest.mark.parametrize('flow', [0.0, -2.0])
def test_qc_residence_time_without_flow(flow: float) -> None:
    qc = _build(QCDevice, 'qc', _qc_transport(tube_flow=flow))

    qc.run_cycle().result(timeout=1)

    assert qc.get_attribute('sampling_tube_residence_time').value == 999.0


def test_qc_reads_two_blocks() -> None:
    transport = _qc_transport(tube_flow=1.0)
    qc = _build(QCDevice, 'qc', transport)

    qc.run_cycle().result(timeout=1)

    assert transport.reads == [(0, 110), (110, 123)]


# Power stabilizer ----------------------------------------------------------

def test_power_stabilizer_scales_line_values() -> None:
    transport = SimulatedTransport()
    transport.load(0, [150, 0, 0, 0])
    transport.load(4, [2201, 0, 0, 0])
    transport.load(8, [33012, 0, 0, 0])
    transport.load(12, [253, 456])
    transport.load(14, [1, 0, 1, 1])
    transport.load(34, [0, 1, 0, 0])
    stabilizer = _build(SmartPowerStabilizer, 'power_stabilizer', transport)

    assert stabilizer.run_cycle().result(timeout=1) is True

    assert transport.reads == [(0, 41)]
    assert stabilizer.line_summary(1) == {
        'current': pytest.approx(1.5),
        'voltage': pytest.approx(220.1),
        'power': pytest.approx(330.12),
        'relay': 1,
    }
    assert stabilizer.get_attribute('temperature').value == pytest.approx(25.3)
    assert stabilizer.get_attribute('humidity').value == pytest.approx(45.6)
    assert stabilizer.tripped_lines() == [2]
    with pytest.raises(ValueError):
        stabilizer.line_summary(5)


def test_power_stabilizer_release_closes_transport() -> None:
    transport = SimulatedTransport()
    stabilizer = _build(SmartPowerStabilizer, 'power_stabilizer', transport)

    stabilizer.start()
    stabilizer.release()

    assert transport.close_calls == 1


# Particulate zero checker --------------------------------------------------

def test_zero_checker_start_schedules_startup_off_commands_only() -> None:
    transport = SimulatedTransport()
    checker = _build(ParticulateZeroChecker, 'particulate_zero_checker', transport)

    checker.start()

    scheduler = checker._scheduler
    assert scheduler.fixed == []
    assert [delay for _, delay, _ in scheduler.once] == [8.0, 10.0]
    for task, _, _ in scheduler.once:
        task()
    assert transport.writes == [(0x04, 0), (0x02, 0)]
    assert transport.reads == []
    assert checker.get_attribute('pm10_zero_check').value == 0.0


def test_zero_checker_debug_mode_adds_control_timer() -> None:
    transport = SimulatedTransport()
    checker = _build(ParticulateZeroChecker, 'particulate_zero_checker', transport, debug=True)

    checker.start()

    scheduler = checker._scheduler
    assert [(initial, period) for _, initial, period, _ in scheduler.fixed] == [(10.0, 60.0)]
    control = scheduler.fixed[0][0]
    control()
    control()
    assert transport.writes == [(0x01, 0), (0x03, 0), (0x02, 0), (0x04, 0)]


def test_zero_checker_stop_cancels_every_timer() -> None:
    checker = _build(ParticulateZeroChecker, 'particulate_zero_checker', SimulatedTransport(), debug=True)
    checker.start()
    checker.stop()

    scheduler = checker._scheduler
    assert all(handle.cancelled for _, _, handle in scheduler.once)
    assert all(handle.cancelled for *_, handle in scheduler.fixed)


def test_zero_checker_refuses_switch_while_one_is_in_flight() -> None:
    class _ReentrantTransport(SimulatedTransport):
        def __init__(self) -> None:
            super().__init__()
            self.checker = None
            self.refused: List[Exception] = []

        def write_word(self, address, value):
            try:
                self.checker.pm2_5_zero_check(True)
            except CommandError as exc:
                self.refused.append(exc)
            return super().write_word(address, value)

    transport = _ReentrantTransport()
    checker = _build(ParticulateZeroChecker, 'particulate_zero_checker', transport)
    transport.checker = checker

    result = checker.pm10_zero_check(True)

    assert result.success
    assert len(transport.refused) == 1
    assert transport.writes == [(0x01, 0)]
    assert not checker.switch_in_flight
    assert checker.get_attribute('pm10_zero_check').value == 1.0
    assert checker.get_attribute('pm2_5_zero_check').status is AttributeStatus.EMPTY


def test_zero_checker_has_no_acquisition_cycle() -> None:
    checker = _build(ParticulateZeroChecker, 'particulate_zero_checker', SimulatedTransport())
    with pytest.raises(RuntimeError):
        checker.run_cycle()
    with pytest.raises(ValueError):
        checker.switch('tsp', True)


# Calibrator ------------------------------------------------------------------

def _calibrator_transport() -> SimulatedTransport:
    transport = SimulatedTransport()
    transport.load(0x00, _be(20.0) + _be(60.0) + _be(45.5) + _be(6000.0))
    transport.load(0x1E, _be(0.25) + _be(180.0))
    transport.load(0x46, [0x01, 0, 0x0C] + _be(400.0))
    return transport


def test_calibrator_cycle_decodes_both_blocks() -> None:
    transport = _calibrator_transport()
    calibrator = _build(CalibratorDevice, 'calibrator', transport)

    assert calibrator.run_cycle().result(timeout=1) is True

    values = {key: attribute.value for key, attribute in calibrator.list_attributes().items()}
    assert values['other_gas_concentration'] == pytest.approx(20.0)
    assert values['so2_std_gas_concentration'] == pytest.approx(60.0)
    assert values['no_std_gas_concentration'] == pytest.approx(45.5)
    assert values['co_std_gas_concentration'] == pytest.approx(6000.0)
    assert values['gptno_concentration'] == pytest.approx(0.25)
    assert values['gpto3_concentration'] == pytest.approx(180.0)
    assert values['o3_gas_concentration'] == pytest.approx(400.0)
    assert values['system_state'] == 0x0C
    assert calibrator.system_state == 'preparing O3'
    assert calibrator.get_attribute('o3_gas_concentration').unit == 'ppb'
    assert sorted(transport.reads) == [(0x00, 38), (0x46, 5)]
    assert {attribute.status for attribute in calibrator.list_attributes().values()} == {AttributeStatus.NORMAL}


def test_calibrator_block_failure_marks_malfunction() -> None:
    transport = _calibrator_transport()
    transport.fail_reads(0x46)
    calibrator = _build(CalibratorDevice, 'calibrator', transport)

    assert calibrator.run_cycle().result(timeout=1) is False
    assert {attribute.status for attribute in calibrator.list_attributes().values()} == {AttributeStatus.MALFUNCTION}


@pytest.mark.parametrize(
    ('option', 'code'),
    [('SO2', 0x01), ('no', 0x02), ('CO', 0x03), ('O3', 0x66), ('M_GPTNO_O3', 0x05), ('M_GPT', 0x6D)],
)
def test_calibrator_gas_select_writes_selection_code(option: str, code: int) -> None:
    transport = SimulatedTransport()
    calibrator = _build(CalibratorDevice, 'calibrator', transport)

    assert calibrator.select_gas(option).success

    assert transport.writes == [(0x46, code)]
    assert calibrator.get_attribute('calibrator_gas_select').value == code


def test_calibrator_rejects_unknown_gas_before_writing() -> None:
    transport = SimulatedTransport()
    calibrator = _build(CalibratorDevice, 'calibrator', transport)

    with pytest.raises(ValueError):
        calibrator.select_gas('H2S')

    assert transport.writes == []
    assert calibrator.selected_gas is None


def test_calibrator_unmapped_system_state_is_reported_as_error() -> None:
    transport = _calibrator_transport()
    transport.load(0x48, [0x07])
    calibrator = _build(CalibratorDevice, 'calibrator', transport)
    calibrator.run_cycle().result(timeout=1)

    assert calibrator.system_state == 'error(7)'


def test_calibrator_polls_without_control_timer_outside_debug() -> None:
    calibrator = _build(CalibratorDevice, 'calibrator', SimulatedTransport())
    calibrator.start()

    fixed = calibrator._scheduler.fixed
    assert [(delay, period) for _task, delay, period, _handle in fixed] == [(0.0, 5.0)]


def test_calibrator_debug_control_steps_through_selections() -> None:
    transport = SimulatedTransport()
    calibrator = _build(CalibratorDevice, 'calibrator', transport, debug=True)
    calibrator.start()

    fixed = calibrator._scheduler.fixed
    assert [(delay, period) for _task, delay, period, _handle in fixed] == [(0.0, 5.0), (60.0, 60.0)]

    control = fixed[1][0]
    control()
    control()
    control()
    assert transport.writes == [(0x46, 0x00), (0x46, 0x01), (0x46, 0x02)]
    assert calibrator.selected_gas == 'NO'

    calibrator.stop()
    assert all(handle.cancelled for *_rest, handle in fixed)
