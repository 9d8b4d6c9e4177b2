"""Pure conversions from raw holding-register words to numeric values."""
from __future__ import annotations

import struct
from typing import Optional, Sequence

WORD_MASK = 0xFFFF


class DecodeError(ValueError):
    """Raised when a register payload is absent or too short for its fields."""


def _word(value: int) -> int:
    # Transports may hand back signed shorts; the wire value is always unsigned.
    return int(value) & WORD_MASK


def _swap_bytes(word: int) -> int:
    word = _word(word)
    return ((word & 0xFF) << 8) | (word >> 8)


def require_words(words: Optional[Sequence[int]], needed: int, *, label: str = "segment") -> Sequence[int]:
    """Return *words* when it holds at least *needed* entries, otherwise raise :class:`DecodeError`."""

    if words is None:
        raise DecodeError(f"{label}: no register payload")
    if len(words) < needed:
        raise DecodeError(f"{label}: expected at least {needed} words, got {len(words)}")
    return words


def decode_u16(word: int, divisor: float = 1.0) -> float:
    """Zero-extend *word* and divide by *divisor* (1, 10 or 100 in practice)."""

    value = _word(word)
    if divisor in (0, 1):
        return float(value)
    return value / divisor


def decode_float32_swapped(first: int, second: int) -> float:
    """Decode the byte-swapped little-endian float held in a register pair.

    *first* is the even-indexed word ``A`` and *second* the odd-indexed word
    ``B``. Both words are byte-swapped and the bytes are laid out as
    ``[byte0(B), byte1(B), byte0(A), byte1(A)]`` before being read as a
    little-endian IEEE-754 binary32. The words ``0xBF3E, 0xFB7C`` therefore
    decode to ``0.3740004``.
    """

    payload = struct.pack("<HH", _swap_bytes(second), _swap_bytes(first))
    return struct.unpack("<f", payload)[0]


def decode_float32_be(high: int, low: int) -> float:
    """Decode a big-endian float with the high word first."""

    payload = struct.pack(">HH", _word(high), _word(low))
    return struct.unpack(">f", payload)[0]


def decode_float32_array(words: Optional[Sequence[int]], count: int, *, label: str = "segment") -> list[float]:
    """Decode *count* swapped floats from ``2 * count`` words in pair order."""

    data = require_words(words, 2 * count, label=label)
    return [decode_float32_swapped(data[2 * index], data[2 * index + 1]) for index in range(count)]


def decode_u16_array(
    words: Optional[Sequence[int]],
    count: int,
    divisor: float = 1.0,
    *,
    label: str = "segment",
) -> list[float]:
    data = require_words(words, count, label=label)
    return [decode_u16(data[index], divisor) for index in range(count)]


def encode_scaled_u16(value: float, multiplier: float = 1.0) -> int:
    """Scale *value* for a register write, rejecting results outside 0-65535."""

    raw = int(round(float(value) * multiplier))
    if raw < 0 or raw > WORD_MASK:
        raise ValueError(f"register value {raw} outside 0-{WORD_MASK}")
    return raw
