# lpemu/mixed_unit.py
# bf16 inputs, fp32 math, optional fused accumulate, bf16 output.
#   MUL: out = a * b
#   FMA: out = acc + a * b      (acc is an fp32 value the caller threads through)
# Both the fp32 result and its truncated bf16 form are returned so the caller
# can see exactly what the narrow output loses.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .convert import from_reference, to_reference
from .formats import Format, PackedValue, StatusFlags
from .fp32_unit import mul_raw, normalize, pack, ref_add, unpack
from .pipeline import Unit


@dataclass
class MixedResult:
    fp32: PackedValue    # full-precision result (also the next accumulator)
    bf16: PackedValue    # truncated output
    flags: StatusFlags


class MixedPrecisionUnit(Unit):

    MUL = 0
    FMA = 1
    OPCODES = {MUL: "mul", FMA: "fma"}

    def unpack(self, op, a: PackedValue, b: PackedValue, acc: Optional[PackedValue] = None):
        if a.fmt is not Format.BF16 or b.fmt is not Format.BF16:
            raise ValueError("MixedPrecisionUnit takes bf16 operands")
        if acc is None:
            acc = PackedValue(Format.FP32, 0)
        elif acc.fmt is not Format.FP32:
            raise ValueError(f"accumulator must be fp32, got {acc.fmt.value}")
        return unpack(to_reference(a).bits), unpack(to_reference(b).bits), acc

    def compute(self, op, work):
        a, b, acc = work
        return mul_raw(a, b), acc

    def normalize(self, op, work):
        product, acc = work
        bits = pack(normalize(product), self.flags)
        if op == self.FMA:
            bits = ref_add(acc.bits, bits, self.flags)
        return PackedValue(Format.FP32, bits)

    def pack(self, op, work: PackedValue) -> MixedResult:
        narrow = from_reference(work, Format.BF16, self.flags)
        return MixedResult(work, narrow, self.flags.copy())
