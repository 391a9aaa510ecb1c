"""
fp4_unit.py: 4-bit unit with two independent paths.

MX path (E2M1 elements, one shared 8-bit block exponent):

    element value = fp32(code) * 2**(block_exp - 127)

NF4 path (table indices, one absmax per operand side):

    element value = NF4_TABLE[index] * absmax

Products and sums run on the fp32 rules. Every result is re-quantized three
ways: the fp32 value itself, an MXFP4 code at block exponent 127 (scale 1.0),
and an NF4 index against absmax = max(|result|, 1.0).

Opcodes 4 and 5 take no operands and enumerate the 16 codes of each format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from .convert import (
    bits_to_f32,
    nf4_quantize,
    quantize_mxfp4,
    ref_value,
    to_reference,
)
from .formats import (
    MX_SCALE_BIAS,
    MXFP4_MAGNITUDES,
    NF4_TABLE,
    NF4_TABLE_FIXED,
    NF4_ZERO_INDEX,
    Format,
    PackedValue,
    StatusFlags,
)
from .fp32_unit import ref_mul, ref_scale_pow2, ref_sum
from .pipeline import Unit

DOT_WIDTH = 4


@dataclass
class Fp4Result:
    fp32: PackedValue
    mxfp4: PackedValue
    nf4: PackedValue
    nf4_absmax: float
    flags: StatusFlags
    mx_block_exp: int = MX_SCALE_BIAS
    values: Tuple[float, ...] = field(default_factory=tuple)   # enumeration modes
    fixed: Tuple[int, ...] = field(default_factory=tuple)      # nf4 fixed-point table


def _codes(x, fmt: Format) -> list[PackedValue]:
    items = [x] if isinstance(x, (int, PackedValue)) else list(x)
    out = []
    for item in items:
        pv = item if isinstance(item, PackedValue) else PackedValue(fmt, item)
        if pv.fmt is not fmt:
            raise ValueError(f"expected {fmt.value} codes, got {pv.fmt.value}")
        out.append(pv)
    return out


class Fp4Unit(Unit):

    MX_MUL = 0
    MX_DOT4 = 1
    NF4_MUL = 2
    NF4_DOT4 = 3
    MX_ENUM = 4
    NF4_ENUM = 5
    OPCODES = {
        MX_MUL: "mx_mul",
        MX_DOT4: "mx_dot4",
        NF4_MUL: "nf4_mul",
        NF4_DOT4: "nf4_dot4",
        MX_ENUM: "mx_enum",
        NF4_ENUM: "nf4_enum",
    }

    def unpack(self, op, a=(), b=(), block_exp: int = MX_SCALE_BIAS,
               absmax_a: float = 1.0, absmax_b: float = 1.0):
        if op in (self.MX_ENUM, self.NF4_ENUM):
            return None
        width = DOT_WIDTH if op in (self.MX_DOT4, self.NF4_DOT4) else 1

        if op in (self.MX_MUL, self.MX_DOT4):
            if not 0 <= block_exp <= 0xFF:
                raise ValueError(f"block exponent {block_exp} is not an 8-bit value")
            fmt = Format.MXFP4
            a, b = _codes(a, fmt), _codes(b, fmt)
            scale_a = scale_b = block_exp - MX_SCALE_BIAS
            widen = self._widen_mx
        else:
            fmt = Format.NF4
            a, b = _codes(a, fmt), _codes(b, fmt)
            scale_a, scale_b = ref_value(absmax_a).bits, ref_value(absmax_b).bits
            widen = self._widen_nf4

        if len(a) < width or len(b) < width:
            raise ValueError(f"{self.OPCODES[op]} needs {width} elements per side")
        xs = [widen(pv, scale_a) for pv in a[:width]]
        ys = [widen(pv, scale_b) for pv in b[:width]]
        return xs, ys

    def _widen_mx(self, pv: PackedValue, k: int) -> int:
        return ref_scale_pow2(to_reference(pv).bits, k, self.flags)

    def _widen_nf4(self, pv: PackedValue, absmax_bits: int) -> int:
        return ref_mul(to_reference(pv).bits, absmax_bits, self.flags)

    def compute(self, op, work):
        if work is None:
            return None
        xs, ys = work
        products = [ref_mul(x, y, self.flags) for x, y in zip(xs, ys)]
        if len(products) == 1:
            return products[0]
        return ref_sum(products, self.flags)

    def normalize(self, op, work):
        if op == self.MX_ENUM:
            return MXFP4_MAGNITUDES + tuple(-m for m in MXFP4_MAGNITUDES)
        if op == self.NF4_ENUM:
            return NF4_TABLE
        return PackedValue(Format.FP32, work)

    def pack(self, op, work) -> Fp4Result:
        if op in (self.MX_ENUM, self.NF4_ENUM):
            return Fp4Result(
                PackedValue(Format.FP32, 0),
                PackedValue(Format.MXFP4, 0),
                PackedValue(Format.NF4, NF4_ZERO_INDEX),
                1.0,
                self.flags.copy(),
                values=work,
                fixed=NF4_TABLE_FIXED if op == self.NF4_ENUM else (),
            )

        value = bits_to_f32(work.bits)
        absmax = max(abs(value), 1.0)
        mx = quantize_mxfp4(work, self.flags)
        nf4 = PackedValue(Format.NF4, nf4_quantize(value, absmax, self.flags))
        return Fp4Result(work, mx, nf4, absmax, self.flags.copy())
