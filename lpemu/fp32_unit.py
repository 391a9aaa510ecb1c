"""
fp32_unit.py: reference (fp32) add / multiply on integer bit fields.

Working representation: sign, unbiased exponent and a significand whose
leading one sits at bit 23; bit 24 is the carry-out position. All low bits
that fall off during alignment or normalization are dropped (round toward
zero). The module-level functions are the numeric rules every other unit
reuses; Fp32Unit wraps them in the pipeline contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional

from .formats import Format, PackedValue, StatusFlags
from .pipeline import Unit

MAN_BITS = 23
BIAS = 127
EXP_MAX = 255
LEAD_BIT = 1 << MAN_BITS
CARRY_BIT = 1 << (MAN_BITS + 1)
FRAC_MASK = LEAD_BIT - 1
NAN_BITS = 0x7FC00000
INF_BITS = 0x7F800000


class Unpacked(NamedTuple):
    sign: int
    exp: int      # unbiased
    mant: int     # 24-bit significand, no implicit one for zero exponent
    kind: str     # "finite" | "zero" | "inf" | "nan"


class Work(NamedTuple):
    sign: int
    exp: int
    mant: int
    special: Optional[int] = None   # finished fp32 bits (zero / inf / NaN)


def unpack(bits: int) -> Unpacked:
    sign = (bits >> 31) & 1
    e = (bits >> MAN_BITS) & 0xFF
    frac = bits & FRAC_MASK
    if e == EXP_MAX:
        return Unpacked(sign, e - BIAS, frac, "nan" if frac else "inf")
    if e == 0:
        return Unpacked(sign, 1 - BIAS, frac, "finite" if frac else "zero")
    return Unpacked(sign, e - BIAS, frac | LEAD_BIT, "finite")


def _signed_zero(sign: int) -> int:
    return sign << 31


def add_raw(a: Unpacked, b: Unpacked) -> Work:
    if a.kind == "nan" or b.kind == "nan":
        return Work(0, 0, 0, NAN_BITS)
    if a.kind == "inf" or b.kind == "inf":
        if a.kind == b.kind and a.sign != b.sign:
            return Work(0, 0, 0, NAN_BITS)
        inf = a if a.kind == "inf" else b
        return Work(inf.sign, 0, 0, INF_BITS | _signed_zero(inf.sign))

    if a.exp < b.exp:
        a, b = b, a
    shift = a.exp - b.exp
    mb = 0 if shift >= MAN_BITS else b.mant >> shift

    if a.sign == b.sign:
        return Work(a.sign, a.exp, a.mant + mb)
    if a.mant >= mb:
        sign, mant = a.sign, a.mant - mb
    else:
        sign, mant = b.sign, mb - a.mant
    if mant == 0:
        sign = 0   # exact cancellation is +0
    return Work(sign, a.exp, mant)


def mul_raw(a: Unpacked, b: Unpacked) -> Work:
    sign = a.sign ^ b.sign
    if a.kind == "nan" or b.kind == "nan":
        return Work(0, 0, 0, NAN_BITS)
    if a.kind == "inf" or b.kind == "inf":
        if a.kind == "zero" or b.kind == "zero":
            return Work(0, 0, 0, NAN_BITS)
        return Work(sign, 0, 0, INF_BITS | _signed_zero(sign))
    if a.kind == "zero" or b.kind == "zero":
        return Work(sign, 0, 0, _signed_zero(sign))
    # 24x24 -> 48 bits with 46 fraction bits; keep 23 of them
    return Work(sign, a.exp + b.exp, (a.mant * b.mant) >> MAN_BITS)


def normalize(w: Work) -> Work:
    if w.special is not None:
        return w
    mant, exp = w.mant, w.exp
    if mant == 0:
        return Work(w.sign, 0, 0, _signed_zero(w.sign))
    if mant & CARRY_BIT:
        mant >>= 1
        exp += 1
    else:
        while not mant & LEAD_BIT:
            mant <<= 1
            exp -= 1
    return Work(w.sign, exp, mant)


def pack(w: Work, flags: Optional[StatusFlags] = None) -> int:
    if w.special is not None:
        return w.special
    if flags is None:
        flags = StatusFlags()
    biased = w.exp + BIAS
    if biased >= EXP_MAX:
        flags.overflow = True
        return INF_BITS | _signed_zero(w.sign)
    if biased <= 0:
        flags.underflow = True
        return _signed_zero(w.sign)
    return _signed_zero(w.sign) | (biased << MAN_BITS) | (w.mant & FRAC_MASK)


def ref_add(a: int, b: int, flags: Optional[StatusFlags] = None) -> int:
    return pack(normalize(add_raw(unpack(a), unpack(b))), flags)


def ref_mul(a: int, b: int, flags: Optional[StatusFlags] = None) -> int:
    return pack(normalize(mul_raw(unpack(a), unpack(b))), flags)


def ref_scale_pow2(bits: int, k: int, flags: Optional[StatusFlags] = None) -> int:
    """Multiply by 2**k with an exponent add (block scaling)."""
    u = unpack(bits)
    if u.kind != "finite":
        return bits
    return pack(normalize(Work(u.sign, u.exp + k, u.mant)), flags)


def ref_sum(values, flags: Optional[StatusFlags] = None) -> int:
    """Left-to-right fp32 sum of bit patterns, starting from +0."""
    acc = 0
    for v in values:
        acc = ref_add(acc, v, flags)
    return acc


# ---------------------------------------------------------------------------
# Pipelined unit
# ---------------------------------------------------------------------------

@dataclass
class Fp32Result:
    value: PackedValue
    flags: StatusFlags


class Fp32Unit(Unit):
    """fp32 adder/multiplier: IDLE -> unpack/compute -> normalize/pack -> DONE."""

    ADD = 0
    MUL = 1
    OPCODES = {ADD: "add", MUL: "mul"}

    def unpack(self, op, a: PackedValue, b: PackedValue):
        for v in (a, b):
            if v.fmt is not Format.FP32:
                raise ValueError(f"Fp32Unit takes fp32 operands, got {v.fmt.value}")
        return unpack(a.bits), unpack(b.bits)

    def compute(self, op, work):
        a, b = work
        if op == self.ADD:
            return add_raw(a, b)
        return mul_raw(a, b)

    def normalize(self, op, work):
        return normalize(work)

    def pack(self, op, work) -> Fp32Result:
        bits = pack(work, self.flags)
        return Fp32Result(PackedValue(Format.FP32, bits), self.flags.copy())
