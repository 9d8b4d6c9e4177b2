from __future__ import annotations

import struct
from concurrent.futures import Future
from typing import List, Tuple

import pytest

from saimosen.acquisition import AcquisitionCycle, DeviceStats
from saimosen.attributes import AttributeRegistry, AttributeStatus, NumericAttribute
from saimosen.config import DeviceConfig
from saimosen.devices import GasAnalyzer
from saimosen.hardware import SimulatedTransport
from saimosen.protocols import DEFAULT_PROFILES, ProtocolRegistry
from saimosen.registers import FieldDefinition, Segment, SegmentPlan


def _swapped(value: float) -> List[int]:
    raw = struct.pack('<f', value)
    return [(raw[2] << 8) | raw[3], (raw[0] << 8) | raw[1]]


class _StubScheduler:
    def schedule_fixed_delay(self, task, initial_delay_s, period_s):  # pragma: no cover - not used
        raise AssertionError('no scheduling expected')

    def schedule_once(self, task, delay_s):  # pragma: no cover - not used
        raise AssertionError('no scheduling expected')


def _co_transport(*, status: int = 0, span: int = 0) -> SimulatedTransport:
    transport = SimulatedTransport()
    words: List[int] = []
    for index in range(20):
        words.extend(_swapped(float(index) + 0.5))
    transport.load(0, words)
    transport.load(60, [12000 + index for index in range(13)])
    transport.load(0x3EB, [span])
    transport.load(0x3EE, [status])
    return transport


def _co_analyzer(transport: SimulatedTransport) -> GasAnalyzer:
    profile = ProtocolRegistry.from_dict(DEFAULT_PROFILES).require('co')
    config = DeviceConfig(id='co-1', name='CO analyzer', device_class='co')
    analyzer = GasAnalyzer(config, profile, transport=transport, scheduler=_StubScheduler())
    analyzer.init()
    return analyzer


def test_cycle_reads_each_segment_once() -> None:
    transport = _co_transport()
    analyzer = _co_analyzer(transport)

    assert analyzer.run_cycle().result(timeout=1) is True

    assert transport.reads == [(0, 40), (60, 13), (0x3EB, 1), (0x3EE, 1)]


def test_measure_cycle_applies_values_with_normal_status() -> None:
    analyzer = _co_analyzer(_co_transport(status=0, span=350))

    assert analyzer.run_cycle().result(timeout=1) is True

    attributes = analyzer.list_attributes()
    assert attributes['co'].value == pytest.approx(0.5)
    assert attributes['co'].unit == 'ppm'
    assert attributes['sample_flow'].value == pytest.approx(9.5)
    assert attributes['voltage_12v'].value == 12000
    assert attributes['fault_code2'].value == 12012
    assert attributes['calibration_status'].value == 0
    assert attributes['calibration_concentration'].value == 0.0
    assert {attribute.status for attribute in attributes.values()} == {AttributeStatus.NORMAL}


def test_span_calibration_cycle_reports_span_concentration() -> None:
    analyzer = _co_analyzer(_co_transport(status=2, span=400))

    assert analyzer.run_cycle().result(timeout=1) is True

    attributes = analyzer.list_attributes()
    assert attributes['calibration_concentration'].value == 400
    assert {attribute.status for attribute in attributes.values()} == {AttributeStatus.SPAN_CALIBRATION}


def test_span_register_zero_falls_back_to_default_concentration() -> None:
    analyzer = _co_analyzer(_co_transport(status=2, span=0))

    assert analyzer.run_cycle().result(timeout=1) is True

    assert analyzer.get_attribute('calibration_concentration').value == 400.0


def test_zero_calibration_cycle_reports_zero_concentration() -> None:
    analyzer = _co_analyzer(_co_transport(status=1, span=400))

    assert analyzer.run_cycle().result(timeout=1) is True

    assert analyzer.get_attribute('calibration_concentration').value == 0
    statuses = {attribute.status for attribute in analyzer.list_attributes().values()}
    assert statuses == {AttributeStatus.ZERO_CALIBRATION}


def test_unmapped_status_marks_attributes_empty() -> None:
    analyzer = _co_analyzer(_co_transport(status=9, span=400))

    assert analyzer.run_cycle().result(timeout=1) is True

    assert analyzer.get_attribute('co').status is AttributeStatus.EMPTY
    assert analyzer.get_attribute('calibration_status').value == 9


def test_failed_segment_read_marks_everything_malfunction_and_keeps_values() -> None:
    transport = _co_transport()
    analyzer = _co_analyzer(transport)
    assert analyzer.run_cycle().result(timeout=1) is True
    before = {key: attribute.value for key, attribute in analyzer.list_attributes().items()}

    transport.load(0, _swapped(77.0))
    transport.fail_reads(0)

    assert analyzer.run_cycle().result(timeout=1) is False
    attributes = analyzer.list_attributes()
    assert {attribute.status for attribute in attributes.values()} == {AttributeStatus.MALFUNCTION}
    assert {key: attribute.value for key, attribute in attributes.items()} == before
    assert analyzer.stats.failures == 1
    assert analyzer.stats.consecutive_failures == 1


@pytest.mark.parametrize(('address', 'length'), [(60, 5), (0, 39), (0x3EE, None), (0x3EB, 0)])
def test_short_or_missing_payload_fails_the_cycle(address: int, length) -> None:
    transport = _co_transport(status=2, span=400)
    transport.truncate_reads(address, length)
    analyzer = _co_analyzer(transport)

    assert analyzer.run_cycle().result(timeout=1) is False

    attribute = analyzer.get_attribute('co')
    assert attribute.status is AttributeStatus.MALFUNCTION
    assert attribute.value is None


def test_cycle_recovers_after_failure() -> None:
    transport = _co_transport()
    transport.fail_reads(60)
    analyzer = _co_analyzer(transport)
    assert analyzer.run_cycle().result(timeout=1) is False

    transport.clear_faults()

    assert analyzer.run_cycle().result(timeout=1) is True
    assert analyzer.get_attribute('co').status is AttributeStatus.NORMAL
    assert analyzer.stats.successes == 1
    assert analyzer.stats.consecutive_failures == 0


def test_repeated_cycles_over_unchanged_registers_are_identical() -> None:
    analyzer = _co_analyzer(_co_transport(status=2, span=350))

    analyzer.run_cycle().result(timeout=1)
    first = {key: (attribute.value, attribute.status) for key, attribute in analyzer.list_attributes().items()}
    analyzer.run_cycle().result(timeout=1)
    second = {key: (attribute.value, attribute.status) for key, attribute in analyzer.list_attributes().items()}

    assert first == second


class _DeferredTransport:
    """Returns unresolved futures so the test decides completion order."""

    def __init__(self) -> None:
        self.pending: List[Tuple[int, int, Future]] = []

    def read_holding_words(self, address: int, count: int) -> Future:
        future: Future = Future()
        self.pending.append((address, count, future))
        return future

    def write_word(self, address: int, value: int) -> Future:  # pragma: no cover - not used
        raise AssertionError('unexpected write')

    def is_connection_open(self) -> bool:
        return True

    def close_connection(self) -> None:  # pragma: no cover - not used
        pass


def _small_cycle(transport) -> Tuple[AcquisitionCycle, AttributeRegistry]:
    plan = SegmentPlan(
        [
            Segment('a', 0, 2, (FieldDefinition('first', 0, 'float32_swapped'),)),
            Segment('b', 10, 1, (FieldDefinition('second', 0, 'u16', divisor=10),)),
        ]
    )
    registry = AttributeRegistry()
    registry.reset([NumericAttribute('first', 'devices.test.first'), NumericAttribute('second', 'devices.test.second')])
    return AcquisitionCycle(plan, transport, registry, label='test'), registry


def test_all_reads_are_issued_before_any_completes() -> None:
    transport = _DeferredTransport()
    cycle, registry = _small_cycle(transport)

    result = cycle.run_cycle()

    assert [(address, count) for address, count, _ in transport.pending] == [(0, 2), (10, 1)]
    transport.pending[1][2].set_result([235])
    assert not result.done()
    assert registry.get('second').value is None
    transport.pending[0][2].set_result([0x803F, 0x0000])

    assert result.result(timeout=1) is True
    assert registry.get('first').value == 1.0
    assert registry.get('second').value == pytest.approx(23.5)
    assert registry.get('first').status is AttributeStatus.NORMAL


def test_failure_waits_for_every_read_to_settle() -> None:
    transport = _DeferredTransport()
    cycle, registry = _small_cycle(transport)

    result = cycle.run_cycle()
    transport.pending[0][2].set_exception(RuntimeError('timeout'))
    assert not result.done()
    transport.pending[1][2].set_result([235])

    assert result.result(timeout=1) is False
    assert registry.get('second').value is None
    assert registry.get('second').status is AttributeStatus.MALFUNCTION


def test_transport_raising_synchronously_fails_the_cycle() -> None:
    class _Raising(_DeferredTransport):
        def read_holding_words(self, address: int, count: int) -> Future:
            raise ConnectionError('port closed')

    cycle, registry = _small_cycle(_Raising())

    assert cycle.run_cycle().result(timeout=1) is False
    assert registry.get('first').status is AttributeStatus.MALFUNCTION


def test_cycle_requires_a_plan() -> None:
    with pytest.raises(ValueError):
        AcquisitionCycle(SegmentPlan([]), _DeferredTransport(), AttributeRegistry())


def test_stats_count_cycles() -> None:
    stats = DeviceStats()
    transport = SimulatedTransport()
    plan = SegmentPlan([Segment('a', 0, 1, (FieldDefinition('value', 0),))])
    registry = AttributeRegistry()
    registry.reset([NumericAttribute('value', 'devices.test.value')])
    cycle = AcquisitionCycle(plan, transport, registry, stats=stats)

    cycle.run_cycle().result(timeout=1)
    transport.fail_reads(0)
    cycle.run_cycle().result(timeout=1)

    assert stats.cycles == 2
    assert stats.successes == 1
    assert stats.failures == 1
    assert stats.last_success_at is not None
    assert 'segment' in stats.last_error
