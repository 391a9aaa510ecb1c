"""
formats.py — the format registry.

Bit-layout descriptors for the nine formats the accelerator models handle,
plus the tagged bit pattern (`PackedValue`) every other module passes around.

Layouts (sign/exponent/mantissa, bias):

    fp32      1/8/23  127   reference format, IEEE-style inf/NaN
    fp16      1/5/10  15    IEEE-style inf/NaN
    bf16      1/8/7   127   IEEE-style inf/NaN
    fp19      1/8/10  127   19 bits carried top-aligned in a 32-bit field
    fp8_e4m3  1/4/3   7     no infinity, S.1111.111 is the only NaN
    fp8_e5m2  1/5/2   15    IEEE-style inf/NaN
    mxfp4     1/2/1   1     no inf/NaN, scaled by a shared block exponent
    nf4       4-bit index into a 16-entry normal-quantile table
    int8      two's complement

Everything here is built once at import time and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Format(str, Enum):
    FP32     = "fp32"
    FP16     = "fp16"
    BF16     = "bf16"
    FP19     = "fp19"
    FP8_E4M3 = "fp8_e4m3"
    FP8_E5M2 = "fp8_e5m2"
    MXFP4    = "mxfp4"
    NF4      = "nf4"
    INT8     = "int8"


# NF4 quantiles of N(0, 1), normalized to [-1, 1]. Index 7 is the exact zero.
NF4_TABLE: Tuple[float, ...] = (
    -1.0,
    -0.6961928009986877,
    -0.5250730514526367,
    -0.39491748809814453,
    -0.28444138169288635,
    -0.18477343022823334,
    -0.09105003625154495,
    0.0,
    0.07958029955625534,
    0.16093020141124725,
    0.24611230194568634,
    0.33791524171829224,
    0.44070982933044434,
    0.5626170039176941,
    0.7229568362236023,
    1.0,
)
NF4_ZERO_INDEX = 7

# Signed fixed point with 14 fractional bits (1.0 == 16384), truncated.
NF4_FRAC_BITS = 14
NF4_TABLE_FIXED: Tuple[int, ...] = tuple(int(v * (1 << NF4_FRAC_BITS)) for v in NF4_TABLE)

# MXFP4 magnitudes in code order (codes 8..15 are the negated copies).
MXFP4_MAGNITUDES: Tuple[float, ...] = (0.0, 0.5, 1.0, 1.5, 2.0, 3.0, 4.0, 6.0)

# Unbiased "scale 1.0" shared exponent for MX blocks.
MX_SCALE_BIAS = 127

INT8_MIN = -128
INT8_MAX = 127


@dataclass(frozen=True)
class FormatSpec:
    """Immutable bit-layout descriptor."""
    name: Format
    width: int
    sign_bits: int
    exp_bits: int
    man_bits: int
    bias: int
    has_inf: bool
    has_nan: bool
    table: Optional[Tuple[float, ...]] = None
    table_fixed: Optional[Tuple[int, ...]] = None
    container_width: Optional[int] = None

    @property
    def is_float(self) -> bool:
        return self.exp_bits > 0

    @property
    def exp_all_ones(self) -> int:
        return (1 << self.exp_bits) - 1

    @property
    def man_mask(self) -> int:
        return (1 << self.man_bits) - 1

    @property
    def max_exp_field(self) -> int:
        """Largest biased exponent that still encodes a finite value."""
        if self.has_inf:
            return self.exp_all_ones - 1
        return self.exp_all_ones

    @property
    def max_finite_fraction(self) -> int:
        # With NaN but no inf (E4M3) the all-ones fraction at the top
        # exponent is the NaN code.
        if self.has_nan and not self.has_inf:
            return self.man_mask - 1
        return self.man_mask

    def pack_fields(self, sign: int, exponent: int, fraction: int) -> int:
        return (sign << (self.exp_bits + self.man_bits)) | (exponent << self.man_bits) | fraction

    def zero_bits(self, sign: int = 0) -> int:
        return self.pack_fields(sign, 0, 0)

    def inf_bits(self, sign: int = 0) -> int:
        return self.pack_fields(sign, self.exp_all_ones, 0)

    def nan_bits(self) -> int:
        if self.has_inf:
            # quiet NaN: top fraction bit set
            return self.pack_fields(0, self.exp_all_ones, 1 << (self.man_bits - 1))
        return self.pack_fields(0, self.exp_all_ones, self.man_mask)

    def max_finite_bits(self, sign: int = 0) -> int:
        return self.pack_fields(sign, self.max_exp_field, self.max_finite_fraction)


FORMAT_SPECS = {
    Format.FP32:     FormatSpec(Format.FP32,     32, 1, 8, 23, 127, True,  True),
    Format.FP16:     FormatSpec(Format.FP16,     16, 1, 5, 10, 15,  True,  True),
    Format.BF16:     FormatSpec(Format.BF16,     16, 1, 8, 7,  127, True,  True),
    Format.FP19:     FormatSpec(Format.FP19,     19, 1, 8, 10, 127, True,  True, container_width=32),
    Format.FP8_E4M3: FormatSpec(Format.FP8_E4M3, 8,  1, 4, 3,  7,   False, True),
    Format.FP8_E5M2: FormatSpec(Format.FP8_E5M2, 8,  1, 5, 2,  15,  True,  True),
    Format.MXFP4:    FormatSpec(Format.MXFP4,    4,  1, 2, 1,  1,   False, False),
    Format.NF4:      FormatSpec(Format.NF4,      4,  0, 0, 4,  0,   False, False,
                                table=NF4_TABLE, table_fixed=NF4_TABLE_FIXED),
    Format.INT8:     FormatSpec(Format.INT8,     8,  0, 0, 8,  0,   False, False),
}


def spec_for(fmt) -> FormatSpec:
    """Look up a FormatSpec by Format or by its string name ('bf16', ...)."""
    try:
        return FORMAT_SPECS[Format(fmt)]
    except ValueError:
        raise ValueError(f"Unknown format '{fmt}' (expected one of {[f.value for f in Format]})")


# ---------------------------------------------------------------------------
# Packed values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PackedValue:
    """A fixed-width bit pattern tagged with its format."""
    fmt: Format
    bits: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "fmt", Format(self.fmt))
        width = self.spec.width
        if not 0 <= self.bits < (1 << width):
            raise ValueError(f"0x{self.bits:x} does not fit the {width}-bit {self.fmt.value} layout")

    @property
    def spec(self) -> FormatSpec:
        return FORMAT_SPECS[self.fmt]

    @property
    def sign(self) -> int:
        s = self.spec
        if self.fmt is Format.INT8:
            return (self.bits >> 7) & 1
        if not s.sign_bits:
            return 0
        return (self.bits >> (s.exp_bits + s.man_bits)) & 1

    @property
    def exponent(self) -> int:
        s = self.spec
        return (self.bits >> s.man_bits) & s.exp_all_ones

    @property
    def mantissa(self) -> int:
        return self.bits & self.spec.man_mask

    @property
    def index(self) -> int:
        """NF4 table index (the whole 4-bit pattern)."""
        return self.bits

    @property
    def as_int(self) -> int:
        """INT8 two's-complement value."""
        return self.bits - 256 if self.bits & 0x80 else self.bits

    def container(self) -> int:
        """Bits left-aligned in the format's storage field (fp19 -> 32 bits)."""
        cw = self.spec.container_width
        if cw is None:
            return self.bits
        return self.bits << (cw - self.spec.width)

    def __repr__(self) -> str:
        digits = (self.spec.width + 3) // 4
        return f"PackedValue({self.fmt.value}, 0x{self.bits:0{digits}x})"


def from_int8(value: int) -> PackedValue:
    if not INT8_MIN <= value <= INT8_MAX:
        raise ValueError(f"{value} is outside the int8 range")
    return PackedValue(Format.INT8, value & 0xFF)


# ---------------------------------------------------------------------------
# Status flags
# ---------------------------------------------------------------------------

@dataclass
class StatusFlags:
    """Conditions raised while normalizing/quantizing one operation."""
    overflow: bool = False
    underflow: bool = False
    saturated: bool = False
    degenerate: bool = False   # zero absmax / zero scale took its fallback

    def clear(self) -> None:
        self.overflow = self.underflow = self.saturated = self.degenerate = False

    def any(self) -> bool:
        return self.overflow or self.underflow or self.saturated or self.degenerate

    def copy(self) -> "StatusFlags":
        return StatusFlags(self.overflow, self.underflow, self.saturated, self.degenerate)
