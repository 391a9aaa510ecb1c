"""
hub.py: normalization & calibration hub.

Opcodes:
    BROADCAST   fp32 value -> every one of the nine formats at once
    NORMALIZE   value * scale + bias in fp32, also narrowed to fp16 and bf16
    QUANTIZE    index = round(value / scale) + zero_point, saturated to int8
    DEQUANTIZE  value = (index - zero_point) * scale, in fp32
    CALIBRATE   running min/max update

Unlike the arithmetic units the hub keeps state between operations: the
running calibration range. The first sample sets both ends; later samples
only move an end on a strict comparison. `quant_params()` turns the range
into an int8 scale / zero point.

Rounding for QUANTIZE (and for the int8 leg of BROADCAST) defaults to
truncation toward zero; pass rounding="nearest" for half-away-from-zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .convert import (
    ROUNDING_MODES,
    bits_to_f32,
    from_reference,
    int_to_reference,
    ref_value,
    round_to_int,
    saturate_int8,
    to_reference,
)
from .formats import INT8_MAX, INT8_MIN, Format, PackedValue, StatusFlags
from .fp32_unit import ref_add, ref_mul
from .pipeline import Unit


@dataclass
class HubResult:
    flags: StatusFlags
    fp32: Optional[PackedValue] = None
    fp16: Optional[PackedValue] = None
    bf16: Optional[PackedValue] = None
    index: Optional[PackedValue] = None          # int8 code from QUANTIZE
    converted: Dict[Format, PackedValue] = field(default_factory=dict)
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    samples: int = 0


def _ref(x) -> PackedValue:
    if isinstance(x, PackedValue):
        return to_reference(x)
    return ref_value(x)


class NormalizationHub(Unit):

    BROADCAST = 0
    NORMALIZE = 1
    QUANTIZE = 2
    DEQUANTIZE = 3
    CALIBRATE = 4
    OPCODES = {
        BROADCAST: "broadcast",
        NORMALIZE: "normalize",
        QUANTIZE: "quantize",
        DEQUANTIZE: "dequantize",
        CALIBRATE: "calibrate",
    }

    def __init__(self, rounding: str = "truncate") -> None:
        super().__init__()
        self.rounding = rounding
        self.minimum: Optional[float] = None
        self.maximum: Optional[float] = None
        self.samples = 0

    # ---------- calibration state ----------

    def reset_calibration(self) -> None:
        self.minimum = self.maximum = None
        self.samples = 0

    @property
    def absmax(self) -> float:
        if self.samples == 0:
            return 0.0
        return max(abs(self.minimum), abs(self.maximum))

    def quant_params(self, symmetric: bool = True) -> Tuple[float, int]:
        """(scale, zero_point) covering the calibrated range in int8."""
        if self.samples == 0:
            return 0.0, 0
        if symmetric:
            return self.absmax / INT8_MAX, 0
        lo, hi = min(self.minimum, 0.0), max(self.maximum, 0.0)
        scale = (hi - lo) / (INT8_MAX - INT8_MIN)
        if scale == 0:
            return 0.0, 0
        zero_point = saturate_int8(round_to_int(INT8_MIN - lo / scale, "nearest"))
        return scale, zero_point

    # ---------- stages ----------

    def unpack(self, op, value=0.0, scale=1.0, bias=0.0, zero_point: int = 0,
               index: int = 0, absmax: float = 1.0, rounding: Optional[str] = None):
        rounding = rounding or self.rounding
        if rounding not in ROUNDING_MODES:
            raise ValueError(f"Unknown rounding mode '{rounding}' (expected one of {ROUNDING_MODES})")
        if op == self.DEQUANTIZE:
            if isinstance(index, PackedValue):
                index = index.as_int
            return int(index), _ref(scale), int(zero_point)
        if op == self.NORMALIZE:
            return _ref(value), _ref(scale), _ref(bias)
        if op == self.QUANTIZE:
            return _ref(value), _ref(scale), int(zero_point), rounding
        if op == self.BROADCAST:
            return _ref(value), absmax, rounding
        return _ref(value)

    def compute(self, op, work):
        if op == self.NORMALIZE:
            v, s, b = work
            return PackedValue(Format.FP32, ref_add(ref_mul(v.bits, s.bits, self.flags), b.bits, self.flags))
        if op == self.DEQUANTIZE:
            index, scale, zero_point = work
            steps = int_to_reference(index - zero_point, self.flags)
            return PackedValue(Format.FP32, ref_mul(steps.bits, scale.bits, self.flags))
        if op == self.QUANTIZE:
            v, s, zero_point, rounding = work
            scale = bits_to_f32(s.bits)
            if scale == 0:
                self.flags.degenerate = True
                return zero_point
            q = bits_to_f32(v.bits) / scale
            if math.isnan(q):
                self.flags.degenerate = True
                return zero_point
            return round_to_int(q, rounding) + zero_point
        if op == self.CALIBRATE:
            self._observe(bits_to_f32(work.bits))
            return None
        return work

    def _observe(self, x: float) -> None:
        if math.isnan(x):
            return
        if self.samples == 0:
            self.minimum = self.maximum = x
        else:
            if x < self.minimum:
                self.minimum = x
            if x > self.maximum:
                self.maximum = x
        self.samples += 1

    def normalize(self, op, work):
        if op == self.QUANTIZE:
            return PackedValue(Format.INT8, saturate_int8(work, self.flags) & 0xFF)
        if op == self.BROADCAST:
            ref, absmax, rounding = work
            return {
                fmt: from_reference(ref, fmt, self.flags, absmax=absmax, rounding=rounding)
                for fmt in Format
            }
        if op == self.NORMALIZE:
            return work, from_reference(work, Format.FP16, self.flags), from_reference(work, Format.BF16, self.flags)
        return work

    def pack(self, op, work) -> HubResult:
        out = HubResult(self.flags.copy(), minimum=self.minimum, maximum=self.maximum, samples=self.samples)
        if op == self.BROADCAST:
            out.converted = work
            out.fp32 = work[Format.FP32]
        elif op == self.NORMALIZE:
            out.fp32, out.fp16, out.bf16 = work
        elif op == self.QUANTIZE:
            out.index = work
        elif op == self.DEQUANTIZE:
            out.fp32 = work
        return out
