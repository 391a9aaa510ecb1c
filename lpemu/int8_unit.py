# lpemu/int8_unit.py
# Signed 8-bit integer unit with a 32-bit accumulator.
#   MUL      a * b                                    -> acc, saturated int8
#   DOT4     sum(a[i] * b[i]) for 4 lanes             -> acc, saturated int8
#   RELU     max(a, 0)                                (never saturates)
#   REQUANT  ((x * scale) >> frac_bits) + zero_point  -> saturated int8
# `>>` is Python's arithmetic shift, so negative products floor.

from __future__ import annotations

from dataclasses import dataclass

from .convert import saturate_int8
from .formats import INT8_MAX, INT8_MIN, Format, PackedValue, StatusFlags
from .pipeline import Unit

DOT_WIDTH = 4
INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1
DEFAULT_FRAC_BITS = 16


@dataclass
class Int8Result:
    acc: int             # 32-bit intermediate
    value: PackedValue   # int8 output
    flags: StatusFlags

    @property
    def as_int(self) -> int:
        return self.value.as_int


def _int8(x) -> int:
    if isinstance(x, PackedValue):
        if x.fmt is not Format.INT8:
            raise ValueError(f"expected an int8 operand, got {x.fmt.value}")
        return x.as_int
    x = int(x)
    if not INT8_MIN <= x <= INT8_MAX:
        raise ValueError(f"{x} is outside the int8 range")
    return x


def _lanes(x) -> list[int]:
    if isinstance(x, (int, PackedValue)):
        return [_int8(x)]
    return [_int8(v) for v in x]


class Int8Unit(Unit):

    MUL = 0
    DOT4 = 1
    RELU = 2
    REQUANT = 3
    OPCODES = {MUL: "mul", DOT4: "dot4", RELU: "relu", REQUANT: "requant"}

    def unpack(self, op, a=0, b=0, scale: int = 1 << DEFAULT_FRAC_BITS,
               frac_bits: int = DEFAULT_FRAC_BITS, zero_point: int = 0):
        if op == self.REQUANT:
            x = int(a)
            if not INT32_MIN <= x <= INT32_MAX:
                raise ValueError(f"{x} is outside the int32 accumulator range")
            if frac_bits < 0:
                raise ValueError("frac_bits must be non-negative")
            return x, int(scale), frac_bits, int(zero_point)
        if op == self.RELU:
            return _lanes(a)[:1], []
        width = DOT_WIDTH if op == self.DOT4 else 1
        xs, ys = _lanes(a), _lanes(b)
        if len(xs) < width or len(ys) < width:
            raise ValueError(f"{self.OPCODES[op]} needs {width} lanes per operand")
        return xs[:width], ys[:width]

    def compute(self, op, work) -> int:
        if op == self.MUL:
            xs, ys = work
            return xs[0] * ys[0]
        if op == self.DOT4:
            xs, ys = work
            return sum(x * y for x, y in zip(xs, ys))
        if op == self.RELU:
            xs, _ = work
            return xs[0] if xs[0] > 0 else 0
        x, scale, frac_bits, zero_point = work
        return ((x * scale) >> frac_bits) + zero_point

    def normalize(self, op, work: int):
        if op == self.RELU:
            return work, work
        return work, saturate_int8(work, self.flags)

    def pack(self, op, work) -> Int8Result:
        acc, narrow = work
        return Int8Result(acc, PackedValue(Format.INT8, narrow & 0xFF), self.flags.copy())
