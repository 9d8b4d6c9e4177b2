"""Segment plans: named register ranges read once per acquisition cycle."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple

from .decoding import (
    DecodeError,
    decode_float32_be,
    decode_float32_swapped,
    decode_u16,
    require_words,
)

FIELD_KINDS = {"u16": 1, "float32_swapped": 2, "float32_be": 2}


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    """One value carried inside a segment, located by its word offset."""

    name: str
    offset: int
    kind: str = "u16"
    divisor: float = 1.0
    unit: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in FIELD_KINDS:
            allowed = ", ".join(sorted(FIELD_KINDS))
            raise ValueError(f"field '{self.name}' kind must be one of {allowed}")
        if self.offset < 0:
            raise ValueError(f"field '{self.name}' offset must not be negative")

    @property
    def width(self) -> int:
        return FIELD_KINDS[self.kind]

    def decode(self, words: Sequence[int]) -> float:
        if self.kind == "float32_swapped":
            return decode_float32_swapped(words[self.offset], words[self.offset + 1])
        if self.kind == "float32_be":
            return decode_float32_be(words[self.offset], words[self.offset + 1])
        return decode_u16(words[self.offset], self.divisor)


@dataclass(frozen=True, slots=True)
class Segment:
    """A contiguous register range read as one transport operation."""

    id: str
    start_address: int
    count: int
    fields: Tuple[FieldDefinition, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not 0 <= self.start_address <= 0xFFFF:
            raise ValueError(f"segment '{self.id}' start address out of range")
        if not 0 < self.count <= 0xFFFF:
            raise ValueError(f"segment '{self.id}' count out of range")
        object.__setattr__(self, "fields", tuple(self.fields))

    @property
    def end_address(self) -> int:
        return self.start_address + self.count

    @property
    def required_words(self) -> int:
        """Words needed to decode every declared field."""

        if not self.fields:
            return self.count
        return max(entry.offset + entry.width for entry in self.fields)

    def overlaps(self, other: "Segment") -> bool:
        return self.start_address < other.end_address and other.start_address < self.end_address

    def decode(self, words: Optional[Sequence[int]]) -> Dict[str, float]:
        """Decode every field of this segment, raising :class:`DecodeError` on a short payload."""

        data = require_words(words, self.required_words, label=self.id)
        values: Dict[str, float] = {}
        for entry in self.fields:
            try:
                values[entry.name] = entry.decode(data)
            except (IndexError, TypeError) as exc:
                raise DecodeError(f"{self.id}: cannot decode field '{entry.name}'") from exc
        return values


class SegmentPlan(Mapping[str, Segment]):
    """Ordered, immutable mapping of segment id to :class:`Segment`."""

    def __init__(self, segments: Sequence[Segment]):
        ordered: Dict[str, Segment] = {}
        for segment in segments:
            if segment.id in ordered:
                raise ValueError(f"duplicate segment id '{segment.id}'")
            ordered[segment.id] = segment
        self._segments = ordered

    def __getitem__(self, key: str) -> Segment:
        return self._segments[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        parts = ", ".join(f"{seg.id}@{seg.start_address:#x}x{seg.count}" for seg in self._segments.values())
        return f"SegmentPlan({parts})"

    def overlapping_pairs(self) -> list[Tuple[str, str]]:
        segments = list(self._segments.values())
        pairs: list[Tuple[str, str]] = []
        for index, left in enumerate(segments):
            for right in segments[index + 1:]:
                if left.overlaps(right):
                    pairs.append((left.id, right.id))
        return pairs
