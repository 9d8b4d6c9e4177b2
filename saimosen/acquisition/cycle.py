"""One polling pass over a device's segment plan."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from ..attributes import AttributeRegistry, AttributeStatus
from ..calibration import (
    CalibrationWriteGuard,
    DeviceStatus,
    parse_device_status,
    select_calibration_concentration,
    status_for_cycle,
)
from ..hardware import RegisterTransport, failed
from ..registers import DecodeError, SegmentPlan
from ..registers.decoding import require_words

logger = logging.getLogger(__name__)

CALIBRATION_STATUS_ATTRIBUTE = "calibration_status"
CALIBRATION_CONCENTRATION_ATTRIBUTE = "calibration_concentration"

DeriveHook = Callable[[Mapping[str, Optional[float]]], Mapping[str, Optional[float]]]


class SegmentReadError(RuntimeError):
    """Wraps the failure of a single segment read."""

    def __init__(self, segment_id: str, cause: BaseException) -> None:
        super().__init__(f"segment '{segment_id}' failed: {cause}")
        self.segment_id = segment_id
        self.cause = cause


@dataclass(slots=True)
class DeviceStats:
    cycles: int = 0
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_device_status: Optional[DeviceStatus] = None
    started_at: Optional[datetime] = None


class AcquisitionCycle:
    """Read every segment, decode, and apply the result to the registry.

    The cycle is all-or-nothing: a failed read or an undecodable payload in
    any segment marks every attribute ``MALFUNCTION`` and leaves the values
    from the previous successful cycle untouched.
    """

    def __init__(
        self,
        plan: SegmentPlan,
        transport: RegisterTransport,
        registry: AttributeRegistry,
        *,
        status_segment: Optional[str] = None,
        span_segment: Optional[str] = None,
        status_table: Optional[Mapping[int, DeviceStatus]] = None,
        span_guard: Optional[CalibrationWriteGuard] = None,
        derive: Optional[DeriveHook] = None,
        stats: Optional[DeviceStats] = None,
        label: str = "device",
    ) -> None:
        if plan is None or len(plan) == 0:
            raise ValueError(f"{label}: acquisition cycle needs a non-empty segment plan")
        for ref in (status_segment, span_segment):
            if ref is not None and ref not in plan:
                raise ValueError(f"{label}: segment '{ref}' is not part of the plan")
        self._plan = plan
        self._transport = transport
        self._registry = registry
        self._status_segment = status_segment
        self._span_segment = span_segment
        self._status_table = status_table
        self._span_guard = span_guard
        self._derive = derive
        self._stats = stats if stats is not None else DeviceStats()
        self._stats_lock = threading.Lock()
        self._label = label

    @property
    def stats(self) -> DeviceStats:
        return self._stats

    @property
    def plan(self) -> SegmentPlan:
        return self._plan

    def run_cycle(self) -> "Future[bool]":
        """Issue one read per segment and resolve to ``True`` only if all succeed."""

        result: Future[bool] = Future()
        result.set_running_or_notify_cancel()
        pending: Dict[str, Future] = {}
        for segment_id, segment in self._plan.items():
            try:
                pending[segment_id] = self._transport.read_holding_words(segment.start_address, segment.count)
            except Exception as exc:
                pending[segment_id] = failed(exc)

        remaining = [len(pending)]
        counter_lock = threading.Lock()

        def _settled(_: Future) -> None:
            with counter_lock:
                remaining[0] -= 1
                last = remaining[0] == 0
            if last:
                self._complete(pending, result)

        for future in list(pending.values()):
            future.add_done_callback(_settled)
        return result

    def _complete(self, pending: Dict[str, Future], result: "Future[bool]") -> None:
        try:
            success = self._apply(pending)
        except Exception as exc:
            logger.exception("%s: unexpected error while applying cycle", self._label)
            result.set_exception(exc)
            return
        result.set_result(success)

    def _apply(self, pending: Dict[str, Future]) -> bool:
        words: Dict[str, List[int]] = {}
        try:
            for segment_id, future in pending.items():
                if future.cancelled():
                    raise SegmentReadError(segment_id, RuntimeError("read cancelled"))
                exc = future.exception()
                if exc is not None:
                    raise SegmentReadError(segment_id, exc)
                words[segment_id] = future.result()
            values, device_status = self._decode(words)
        except (SegmentReadError, DecodeError) as exc:
            self._registry.set_all_status(AttributeStatus.MALFUNCTION)
            self._record(False, error=str(exc))
            logger.warning("%s: cycle failed: %s", self._label, exc)
            return False

        if device_status is None:
            status = AttributeStatus.NORMAL
        else:
            status = status_for_cycle(device_status)
        if self._derive is not None:
            values.update(self._derive(values))
        self._registry.apply(values, status)
        self._record(True, device_status=device_status)
        return True

    def _decode(self, words: Dict[str, List[int]]) -> tuple[Dict[str, Optional[float]], Optional[DeviceStatus]]:
        values: Dict[str, Optional[float]] = {}
        special = {self._status_segment, self._span_segment}
        for segment_id, segment in self._plan.items():
            if segment_id in special:
                continue
            values.update(segment.decode(words.get(segment_id)))

        if self._status_segment is None:
            return values, None

        raw_status = _first_word(words, self._status_segment)
        device_status = parse_device_status(raw_status, self._status_table)
        span_value = 0.0
        if self._span_segment is not None:
            span_value = float(_first_word(words, self._span_segment))
        if self._span_guard is not None:
            span_value = self._span_guard.resolve(span_value)
        values[CALIBRATION_STATUS_ATTRIBUTE] = float(raw_status)
        values[CALIBRATION_CONCENTRATION_ATTRIBUTE] = select_calibration_concentration(device_status, span_value)
        return values, device_status

    def _record(self, success: bool, *, error: Optional[str] = None, device_status: Optional[DeviceStatus] = None) -> None:
        now = datetime.now(timezone.utc)
        with self._stats_lock:
            stats = self._stats
            stats.cycles += 1
            if success:
                stats.successes += 1
                stats.consecutive_failures = 0
                stats.last_success_at = now
                stats.last_device_status = device_status
            else:
                stats.failures += 1
                stats.consecutive_failures += 1
                stats.last_failure_at = now
                stats.last_error = error


def _first_word(words: Mapping[str, List[int]], segment_id: str) -> int:
    data = require_words(words.get(segment_id), 1, label=segment_id)
    try:
        return int(data[0]) & 0xFFFF
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"{segment_id}: malformed register word {data[0]!r}") from exc
