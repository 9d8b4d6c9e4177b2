"""Register transports used by device drivers."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar

from ..config import CommSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUPPORTED_TRANSPORTS = {"serial", "tcp", "sim"}


class TransportError(RuntimeError):
    """A register read or write was rejected, timed out or could not be sent."""


class RegisterTransport(Protocol):
    """Logical holding-register operations a driver relies on."""

    def read_holding_words(self, address: int, count: int) -> "Future[List[int]]":  # pragma: no cover - protocol signature
        ...

    def write_word(self, address: int, value: int) -> "Future[bool]":  # pragma: no cover - protocol signature
        ...

    def is_connection_open(self) -> bool:  # pragma: no cover - protocol signature
        ...

    def close_connection(self) -> None:  # pragma: no cover - protocol signature
        ...


def completed(value: T) -> "Future[T]":
    future: Future[T] = Future()
    future.set_result(value)
    return future


def failed(exc: BaseException) -> "Future[Any]":
    future: Future[Any] = Future()
    future.set_exception(exc)
    return future


def _check_word(value: int, label: str) -> int:
    if not 0 <= int(value) <= 0xFFFF:
        raise ValueError(f"{label} {value} outside 0-65535")
    return int(value)


class ModbusTransport:
    """Holding-register access through a pymodbus synchronous client.

    Transactions run on a single worker thread so the physical link sees one
    request at a time while callers still receive independent futures.
    """

    def __init__(self, comm: CommSettings, client_factory: Optional[Callable[[CommSettings], Any]] = None) -> None:
        self._comm = comm
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def comm(self) -> CommSettings:
        return self._comm

    def _submit(self, fn: Callable[[], T]) -> "Future[T]":
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"modbus-{self._comm.label}")
            return self._executor.submit(fn)

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory(self._comm)
        if not getattr(self._client, "connected", False):
            if not self._client.connect():
                raise TransportError(f"Unable to connect to {self._comm.label}")
            logger.info("Connected to %s", self._comm.label)
        return self._client

    def read_holding_words(self, address: int, count: int) -> "Future[List[int]]":
        _check_word(address, "address")
        _check_word(count, "count")

        def _read() -> List[int]:
            client = self._ensure_client()
            try:
                response = client.read_holding_registers(address=address, count=count, device_id=self._comm.slave_id)
            except Exception as exc:
                raise TransportError(f"read {address:#06x}x{count} failed: {exc}") from exc
            if response.isError():
                raise TransportError(f"read {address:#06x}x{count} rejected: {response}")
            return list(response.registers)

        return self._submit(_read)

    def write_word(self, address: int, value: int) -> "Future[bool]":
        _check_word(address, "address")
        _check_word(value, "value")

        def _write() -> bool:
            client = self._ensure_client()
            try:
                response = client.write_register(address=address, value=value, device_id=self._comm.slave_id)
            except Exception as exc:
                raise TransportError(f"write {address:#06x}={value} failed: {exc}") from exc
            if response.isError():
                raise TransportError(f"write {address:#06x}={value} rejected: {response}")
            return True

        return self._submit(_write)

    def is_connection_open(self) -> bool:
        return bool(self._client is not None and getattr(self._client, "connected", False))

    def close_connection(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        if self._client is not None:
            was_open = self.is_connection_open()
            self._client.close()
            if was_open:
                logger.info("Closed connection to %s", self._comm.label)


def _default_client_factory(comm: CommSettings) -> Any:
    from pymodbus.client import ModbusSerialClient, ModbusTcpClient

    timeout_s = comm.timeout_ms / 1000.0
    if comm.transport == "tcp":
        return ModbusTcpClient(comm.host, port=comm.tcp_port, timeout=timeout_s)
    return ModbusSerialClient(
        port=comm.port,
        baudrate=comm.baud_rate,
        bytesize=comm.data_bits,
        parity=comm.parity,
        stopbits=comm.stop_bits,
        timeout=timeout_s,
    )


class SimulatedTransport:
    """In-memory register bank for bench runs and tests."""

    def __init__(self, registers: Optional[Dict[int, int]] = None) -> None:
        self._lock = threading.Lock()
        self._registers: Dict[int, int] = dict(registers or {})
        self._read_failures: Dict[int, BaseException] = {}
        self._short_reads: Dict[int, Optional[int]] = {}
        self._write_failures: Dict[int, BaseException] = {}
        self.reads: List[Tuple[int, int]] = []
        self.writes: List[Tuple[int, int]] = []
        self.close_calls = 0
        self._open = True

    def load(self, address: int, words: Sequence[int]) -> None:
        with self._lock:
            for offset, word in enumerate(words):
                self._registers[address + offset] = int(word) & 0xFFFF

    def fail_reads(self, address: int, exc: Optional[BaseException] = None) -> None:
        with self._lock:
            self._read_failures[address] = exc or TransportError(f"simulated read failure at {address:#06x}")

    def truncate_reads(self, address: int, length: Optional[int]) -> None:
        """Answer reads at *address* with *length* words (``None`` answers with no payload)."""

        with self._lock:
            self._short_reads[address] = length

    def fail_writes(self, address: int, exc: Optional[BaseException] = None) -> None:
        with self._lock:
            self._write_failures[address] = exc or TransportError(f"simulated write failure at {address:#06x}")

    def clear_faults(self) -> None:
        with self._lock:
            self._read_failures.clear()
            self._short_reads.clear()
            self._write_failures.clear()

    def read_holding_words(self, address: int, count: int) -> "Future[List[int]]":
        with self._lock:
            self.reads.append((address, count))
            if address in self._read_failures:
                return failed(self._read_failures[address])
            words = [self._registers.get(address + offset, 0) for offset in range(count)]
            if address in self._short_reads:
                length = self._short_reads[address]
                return completed(None if length is None else words[:length])  # type: ignore[arg-type]
            return completed(words)

    def write_word(self, address: int, value: int) -> "Future[bool]":
        with self._lock:
            if address in self._write_failures:
                return failed(self._write_failures[address])
            self.writes.append((address, int(value)))
            self._registers[address] = int(value) & 0xFFFF
            return completed(True)

    def is_connection_open(self) -> bool:
        return self._open

    def close_connection(self) -> None:
        if self._open:
            self.close_calls += 1
        self._open = False


def create_transport(comm: CommSettings, client_factory: Optional[Callable[[CommSettings], Any]] = None) -> RegisterTransport:
    """Return the transport adapter configured by *comm*."""

    transport = comm.transport.lower()
    if transport in {"serial", "tcp"}:
        return ModbusTransport(comm, client_factory=client_factory)
    if transport == "sim":
        return SimulatedTransport()
    raise ValueError(f"Unsupported transport '{comm.transport}'")
