"""
fp8_unit.py: 8-bit float unit.

Operand A is E4M3 (precision-optimized), operand B is E5M2 (range-optimized,
IEEE-style inf/NaN). Both are widened to fp32, the math runs on the fp32
rules, and the fp32 result is narrowed to *both* 8-bit shapes.

Opcodes:
    MUL       a[0] * b[0]
    ADD_E4M3  a[0] + a[1]
    ADD_E5M2  b[0] + b[1]
    DOT4      a[0]*b[0] + a[1]*b[1] + a[2]*b[2] + a[3]*b[3], summed left to right
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .convert import from_reference, to_reference
from .formats import Format, PackedValue, StatusFlags
from .fp32_unit import ref_add, ref_mul, ref_sum
from .pipeline import Unit

DOT_WIDTH = 4


@dataclass
class Fp8Result:
    fp32: PackedValue
    e4m3: PackedValue
    e5m2: PackedValue
    flags: StatusFlags   # merged over both downcasts


def _as_list(x) -> list:
    if isinstance(x, PackedValue):
        return [x]
    return list(x)


def _widen(values: Sequence[PackedValue], fmt: Format, name: str) -> list[int]:
    out = []
    for v in values:
        if v.fmt is not fmt:
            raise ValueError(f"operand {name} must be {fmt.value}, got {v.fmt.value}")
        out.append(to_reference(v).bits)
    return out


class Fp8Unit(Unit):

    MUL = 0
    ADD_E4M3 = 1
    ADD_E5M2 = 2
    DOT4 = 3
    OPCODES = {MUL: "mul", ADD_E4M3: "add_e4m3", ADD_E5M2: "add_e5m2", DOT4: "dot4"}

    _NEEDS = {MUL: (1, 1), ADD_E4M3: (2, 0), ADD_E5M2: (0, 2), DOT4: (DOT_WIDTH, DOT_WIDTH)}

    def unpack(self, op, a=(), b=()):
        a = _widen(_as_list(a), Format.FP8_E4M3, "a")
        b = _widen(_as_list(b), Format.FP8_E5M2, "b")
        need_a, need_b = self._NEEDS[op]
        if len(a) < need_a or len(b) < need_b:
            raise ValueError(f"{self.OPCODES[op]} needs {need_a} E4M3 and {need_b} E5M2 operands")
        return a, b

    def compute(self, op, work) -> int:
        a, b = work
        if op == self.MUL:
            return ref_mul(a[0], b[0], self.flags)
        if op == self.ADD_E4M3:
            return ref_add(a[0], a[1], self.flags)
        if op == self.ADD_E5M2:
            return ref_add(b[0], b[1], self.flags)
        products = [ref_mul(x, y, self.flags) for x, y in zip(a[:DOT_WIDTH], b[:DOT_WIDTH])]
        return ref_sum(products, self.flags)

    def normalize(self, op, work: int) -> PackedValue:
        return PackedValue(Format.FP32, work)

    def pack(self, op, work: PackedValue) -> Fp8Result:
        e4m3 = from_reference(work, Format.FP8_E4M3, self.flags)
        e5m2 = from_reference(work, Format.FP8_E5M2, self.flags)
        return Fp8Result(work, e4m3, e5m2, self.flags.copy())
