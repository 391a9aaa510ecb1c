"""
convert.py: the conversion engine.

Every conversion routes through the fp32 reference format:

    widen  (any -> fp32):  zero-extend the mantissa, rebias the exponent,
                           normalize source subnormals (exact in fp32).
    narrow (fp32 -> any):  truncate the low mantissa bits (never round),
                           rebias; too large -> inf or saturate, too small
                           -> signed zero.

MXFP4 and NF4 have their own table-driven quantizers, and int8 clamps.
Conditions are reported through a StatusFlags object, never raised.

Host floats only show up at the edges (from_float / to_float) and in the
NF4 nearest-entry search, which is defined on real values.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional

import numpy as np

from .formats import (
    FORMAT_SPECS,
    INT8_MAX,
    INT8_MIN,
    NF4_FRAC_BITS,
    NF4_TABLE,
    NF4_TABLE_FIXED,
    NF4_ZERO_INDEX,
    Format,
    PackedValue,
    StatusFlags,
)

REF = FORMAT_SPECS[Format.FP32]
REF_MAN_BITS = REF.man_bits
ROUNDING_MODES = ("truncate", "nearest")


# ---------- fp32 <-> bits ----------

def f32_to_bits(x: float) -> int:
    """Host float -> fp32 bit pattern (numpy's cast, the only rounding step)."""
    with np.errstate(over="ignore"):
        arr = np.array([x], dtype=np.float32)
    return int(arr.view(np.uint32)[0])


def bits_to_f32(u: int) -> float:
    return float(np.array([u & 0xFFFFFFFF], dtype=np.uint32).view(np.float32)[0])


def ref_value(x: float) -> PackedValue:
    return PackedValue(Format.FP32, f32_to_bits(x))


_NF4_REF_BITS = tuple(f32_to_bits(v) for v in NF4_TABLE)


# ---------- decode / encode ----------

class Decoded(NamedTuple):
    sign: int
    exponent: int       # unbiased
    significand: int    # implicit leading one included for normals
    kind: str           # "zero" | "subnormal" | "normal" | "inf" | "nan"


def decode(pv: PackedValue) -> Decoded:
    """Split a float code into sign, unbiased exponent and significand.

    nf4 and int8 have no float fields and are decoded through fp32.
    """
    spec = pv.spec
    if not spec.is_float:
        return decode(to_reference(pv))

    sign, e, m = pv.sign, pv.exponent, pv.mantissa
    if e == spec.exp_all_ones and spec.has_inf:
        return Decoded(sign, e - spec.bias, m, "nan" if m else "inf")
    if e == spec.exp_all_ones and spec.has_nan and m == spec.man_mask:
        return Decoded(sign, e - spec.bias, m, "nan")
    if e == 0:
        return Decoded(sign, 1 - spec.bias, m, "subnormal" if m else "zero")
    return Decoded(sign, e - spec.bias, m | (1 << spec.man_bits), "normal")


def encode(sign: int, exponent: int, fraction: int, fmt, flags: Optional[StatusFlags] = None) -> PackedValue:
    """Pack (sign, unbiased exponent, fraction field) into a float format.

    `fraction` must already be truncated to the target's mantissa width.
    Out-of-range exponents resolve to inf / saturation / signed zero.
    """
    fmt = Format(fmt)
    spec = FORMAT_SPECS[fmt]
    if not spec.is_float:
        raise ValueError(f"{fmt.value} has no sign/exponent/mantissa fields")
    if flags is None:
        flags = StatusFlags()

    biased = exponent + spec.bias
    too_big = biased > spec.max_exp_field or (
        biased == spec.max_exp_field and fraction > spec.max_finite_fraction
    )
    if too_big:
        flags.overflow = True
        if spec.has_inf:
            return PackedValue(fmt, spec.inf_bits(sign))
        flags.saturated = True
        return PackedValue(fmt, spec.max_finite_bits(sign))
    if biased <= 0:
        flags.underflow = True
        return PackedValue(fmt, spec.zero_bits(sign))
    return PackedValue(fmt, spec.pack_fields(sign, biased, fraction))


# ---------- widening ----------

def int_to_reference(n: int, flags: Optional[StatusFlags] = None) -> PackedValue:
    """Exact integer -> fp32 (low bits truncated above 2**24)."""
    if n == 0:
        return PackedValue(Format.FP32, 0)
    sign = 1 if n < 0 else 0
    mag = -n if sign else n
    exp = mag.bit_length() - 1
    if exp > REF_MAN_BITS:
        frac = mag >> (exp - REF_MAN_BITS)
    else:
        frac = mag << (REF_MAN_BITS - exp)
    return encode(sign, exp, frac & REF.man_mask, Format.FP32, flags)


def to_reference(pv: PackedValue) -> PackedValue:
    """Widen any code to fp32. Exact for every format."""
    fmt = pv.fmt
    if fmt is Format.FP32:
        return pv
    if fmt is Format.INT8:
        return int_to_reference(pv.as_int)
    if fmt is Format.NF4:
        return PackedValue(Format.FP32, _NF4_REF_BITS[pv.index])

    spec = pv.spec
    d = decode(pv)
    if d.kind == "inf":
        return PackedValue(Format.FP32, REF.inf_bits(d.sign))
    if d.kind == "nan":
        return PackedValue(Format.FP32, REF.nan_bits() | (d.sign << 31))
    if d.kind == "zero":
        return PackedValue(Format.FP32, REF.zero_bits(d.sign))

    exp, sig = d.exponent, d.significand
    # subnormal source: shift up to the implicit-one position
    while not sig & (1 << spec.man_bits):
        sig <<= 1
        exp -= 1
    frac = (sig & spec.man_mask) << (REF_MAN_BITS - spec.man_bits)
    return PackedValue(Format.FP32, REF.pack_fields(d.sign, exp + REF.bias, frac))


# ---------- narrowing ----------

def quantize_mxfp4(ref: PackedValue, flags: Optional[StatusFlags] = None) -> PackedValue:
    """fp32 -> E2M1 code, table driven on the rebiased exponent."""
    if flags is None:
        flags = StatusFlags()
    sign, e, m = ref.sign, ref.exponent, ref.mantissa
    top = (m >> (REF_MAN_BITS - 1)) & 1

    if e == REF.exp_all_ones:
        # no inf/NaN codes in E2M1
        flags.overflow = flags.saturated = True
        return PackedValue(Format.MXFP4, (sign << 3) | 0b111)
    if e == 0 and not m:
        return PackedValue(Format.MXFP4, sign << 3)

    # fp32 subnormals land in the eo <= 0 row like any other small value
    eo = e - REF.bias + FORMAT_SPECS[Format.MXFP4].bias
    if eo >= 3:
        flags.saturated = True
        if eo > 3:
            flags.overflow = True
        return PackedValue(Format.MXFP4, (sign << 3) | 0b111)
    if eo <= 0:
        if top:
            return PackedValue(Format.MXFP4, (sign << 3) | 0b001)
        flags.underflow = True
        return PackedValue(Format.MXFP4, sign << 3)
    return PackedValue(Format.MXFP4, (sign << 3) | (eo << 1) | top)


def nf4_quantize(value: float, absmax: float, flags: Optional[StatusFlags] = None) -> int:
    """Nearest NF4 index for value/absmax; ties keep the lowest index."""
    if flags is None:
        flags = StatusFlags()
    if absmax == 0 or math.isnan(value):
        flags.degenerate = True
        return NF4_ZERO_INDEX

    x = value / absmax
    if math.isnan(x):
        # inf / inf
        flags.degenerate = True
        return NF4_ZERO_INDEX
    if x > 1.0:
        x = 1.0
    elif x < -1.0:
        x = -1.0

    best, best_dist = 0, abs(x - NF4_TABLE[0])
    for i in range(1, len(NF4_TABLE)):
        dist = abs(x - NF4_TABLE[i])
        if dist < best_dist:
            best, best_dist = i, dist
    return best


def nf4_dequantize(index: int, absmax: float) -> float:
    return NF4_TABLE[index] * absmax


def nf4_dequantize_fixed(index: int, absmax_q: int) -> int:
    """Integer-only dequant: fixed-point table entry times a fixed-point absmax."""
    return (NF4_TABLE_FIXED[index] * absmax_q) >> NF4_FRAC_BITS


def round_to_int(v: float, rounding: str = "truncate") -> int:
    if rounding not in ROUNDING_MODES:
        raise ValueError(f"Unknown rounding mode '{rounding}' (expected one of {ROUNDING_MODES})")
    # anything this large saturates anyway; keeps inf away from int()
    if abs(v) > 2.0 ** 31:
        v = math.copysign(2.0 ** 31, v)
    if rounding == "truncate":
        return math.trunc(v)
    return int(math.copysign(math.floor(abs(v) + 0.5), v))


def saturate_int8(n: int, flags: Optional[StatusFlags] = None) -> int:
    if flags is None:
        flags = StatusFlags()
    if n > INT8_MAX:
        flags.saturated = True
        return INT8_MAX
    if n < INT8_MIN:
        flags.saturated = True
        return INT8_MIN
    return n


def to_int8(ref: PackedValue, flags: Optional[StatusFlags] = None, rounding: str = "truncate") -> PackedValue:
    if flags is None:
        flags = StatusFlags()
    v = bits_to_f32(ref.bits)
    if math.isnan(v):
        flags.degenerate = True
        return PackedValue(Format.INT8, 0)
    n = saturate_int8(round_to_int(v, rounding), flags)
    return PackedValue(Format.INT8, n & 0xFF)


def from_reference(
    ref: PackedValue,
    fmt,
    flags: Optional[StatusFlags] = None,
    *,
    absmax: float = 1.0,
    rounding: str = "truncate",
) -> PackedValue:
    """Narrow an fp32 code into `fmt` (absmax is the nf4 block scale)."""
    if ref.fmt is not Format.FP32:
        raise ValueError(f"expected an fp32 value, got {ref.fmt.value}")
    fmt = Format(fmt)
    if flags is None:
        flags = StatusFlags()

    if fmt is Format.FP32:
        return ref
    if fmt is Format.MXFP4:
        return quantize_mxfp4(ref, flags)
    if fmt is Format.NF4:
        return PackedValue(Format.NF4, nf4_quantize(bits_to_f32(ref.bits), absmax, flags))
    if fmt is Format.INT8:
        return to_int8(ref, flags, rounding)

    spec = FORMAT_SPECS[fmt]
    sign, e, m = ref.sign, ref.exponent, ref.mantissa
    if e == REF.exp_all_ones:
        if m:
            return PackedValue(fmt, spec.nan_bits() | (sign << (spec.exp_bits + spec.man_bits)))
        if spec.has_inf:
            return PackedValue(fmt, spec.inf_bits(sign))
        flags.overflow = flags.saturated = True
        return PackedValue(fmt, spec.max_finite_bits(sign))
    if e == 0:
        if m:
            flags.underflow = True
        return PackedValue(fmt, spec.zero_bits(sign))
    return encode(sign, e - REF.bias, m >> (REF_MAN_BITS - spec.man_bits), fmt, flags)


def convert(pv: PackedValue, fmt, flags: Optional[StatusFlags] = None, **kwargs) -> PackedValue:
    """Any format -> any format, through fp32."""
    return from_reference(to_reference(pv), fmt, flags, **kwargs)


# ---------- host float edges ----------

def from_float(x: float, fmt, flags: Optional[StatusFlags] = None, **kwargs) -> PackedValue:
    return from_reference(ref_value(x), fmt, flags, **kwargs)


def to_float(pv: PackedValue, absmax: float = 1.0) -> float:
    """Exact real value of a code (nf4 scaled by absmax)."""
    if pv.fmt is Format.NF4:
        return nf4_dequantize(pv.index, absmax)
    if pv.fmt is Format.INT8:
        return float(pv.as_int)
    return bits_to_f32(to_reference(pv).bits)
