"""Command execution helpers."""
from __future__ import annotations

import logging
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..hardware import RegisterTransport
from ..protocols import CommandDefinition
from ..registers import encode_scaled_u16

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a command cannot be dispatched at all."""


@dataclass(slots=True)
class CommandResult:
    name: str
    success: bool
    writes: List[Tuple[int, int]] = field(default_factory=list)
    duration_s: float = 0.0
    error: Optional[str] = None

    @property
    def writes_as_hex(self) -> List[str]:
        return [f"{address:#06x}={value}" for address, value in self.writes]


def prepare_writes(definition: CommandDefinition, argument: Optional[float] = None) -> List[Tuple[int, int]]:
    """Resolve the register writes of *definition*, validating *argument* first.

    Raises ``ValueError`` before anything is sent when the argument is missing,
    outside the command's declared range or does not fit a register.
    """

    if not definition.writes:
        raise CommandError(f"Command '{definition.name}' does not define any register writes")
    if definition.takes_argument:
        if argument is None:
            raise ValueError(f"Command '{definition.name}' requires an argument")
        if definition.minimum is not None and argument < definition.minimum:
            raise ValueError(f"Command '{definition.name}' argument {argument} below {definition.minimum}")
        if definition.maximum is not None and argument > definition.maximum:
            raise ValueError(f"Command '{definition.name}' argument {argument} above {definition.maximum}")
    payloads: List[Tuple[int, int]] = []
    for write in definition.writes:
        if write.from_argument:
            payloads.append((write.address, encode_scaled_u16(float(argument), write.multiplier)))  # type: ignore[arg-type]
        else:
            payloads.append((write.address, write.value))
    return payloads


def execute_command(
    transport: RegisterTransport,
    definition: CommandDefinition,
    argument: Optional[float] = None,
    timeout_s: float = 5.0,
) -> CommandResult:
    """Send the writes of *definition* in order, stopping at the first failure."""

    payloads = prepare_writes(definition, argument)
    start = time.perf_counter()
    sent: List[Tuple[int, int]] = []
    error: Optional[str] = None
    for address, value in payloads:
        try:
            transport.write_word(address, value).result(timeout=timeout_s)
        except FutureTimeoutError:
            error = f"write {address:#06x}={value} timed out after {timeout_s:.1f}s"
            break
        except Exception as exc:
            error = f"write {address:#06x}={value} failed: {exc}"
            break
        sent.append((address, value))
    result = CommandResult(
        name=definition.name,
        success=error is None,
        writes=sent,
        duration_s=time.perf_counter() - start,
        error=error,
    )
    if result.success:
        logger.info("Command '%s' sent %s", definition.name, ", ".join(result.writes_as_hex))
    else:
        logger.error("Command '%s' failed: %s", definition.name, error)
    return result
