"""Register decoding and segment plan helpers."""
from __future__ import annotations

from .decoding import (
    DecodeError,
    decode_float32_array,
    decode_float32_be,
    decode_float32_swapped,
    decode_u16,
    decode_u16_array,
    encode_scaled_u16,
)
from .segments import FIELD_KINDS, FieldDefinition, Segment, SegmentPlan

__all__ = [
    "DecodeError",
    "FIELD_KINDS",
    "FieldDefinition",
    "Segment",
    "SegmentPlan",
    "decode_float32_array",
    "decode_float32_be",
    "decode_float32_swapped",
    "decode_u16",
    "decode_u16_array",
    "encode_scaled_u16",
]
