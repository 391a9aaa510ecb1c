"""Format registry: bit layouts, constants and the PackedValue container."""

from __future__ import annotations

import pytest

from lpemu.formats import (
    FORMAT_SPECS,
    MXFP4_MAGNITUDES,
    NF4_TABLE,
    NF4_TABLE_FIXED,
    NF4_ZERO_INDEX,
    Format,
    PackedValue,
    StatusFlags,
    from_int8,
    spec_for,
)


# ============================================================================
# Layout table
# ============================================================================

LAYOUTS = [
    # fmt, width, sign, exp, man, bias
    (Format.FP32, 32, 1, 8, 23, 127),
    (Format.FP16, 16, 1, 5, 10, 15),
    (Format.BF16, 16, 1, 8, 7, 127),
    (Format.FP19, 19, 1, 8, 10, 127),
    (Format.FP8_E4M3, 8, 1, 4, 3, 7),
    (Format.FP8_E5M2, 8, 1, 5, 2, 15),
    (Format.MXFP4, 4, 1, 2, 1, 1),
]


class TestLayouts:

    @pytest.mark.parametrize("fmt,width,sign,exp,man,bias", LAYOUTS)
    def test_float_layout(self, fmt, width, sign, exp, man, bias):
        s = FORMAT_SPECS[fmt]
        assert (s.width, s.sign_bits, s.exp_bits, s.man_bits, s.bias) == (width, sign, exp, man, bias)

    @pytest.mark.parametrize("fmt", list(Format))
    def test_width_is_sum_of_fields(self, fmt):
        s = FORMAT_SPECS[fmt]
        assert s.sign_bits + s.exp_bits + s.man_bits == s.width

    def test_formats_without_infinity(self):
        floats = [f for f in Format if FORMAT_SPECS[f].is_float]
        assert sorted(f.value for f in floats if not FORMAT_SPECS[f].has_inf) == ["fp8_e4m3", "mxfp4"]

    @pytest.mark.parametrize("fmt,bits", [
        (Format.FP8_E4M3, 0x7E),
        (Format.FP8_E5M2, 0x7B),
        (Format.FP16, 0x7BFF),
        (Format.BF16, 0x7F7F),
        (Format.MXFP4, 0x7),
    ])
    def test_max_finite(self, fmt, bits):
        assert FORMAT_SPECS[fmt].max_finite_bits() == bits

    def test_nan_codes(self):
        assert FORMAT_SPECS[Format.FP8_E4M3].nan_bits() == 0x7F
        assert FORMAT_SPECS[Format.FP8_E5M2].nan_bits() == 0x7E
        assert FORMAT_SPECS[Format.FP32].nan_bits() == 0x7FC00000

    def test_spec_for_accepts_names(self):
        assert spec_for("bf16") is FORMAT_SPECS[Format.BF16]
        with pytest.raises(ValueError):
            spec_for("fp7")


# ============================================================================
# Tables
# ============================================================================

class TestTables:

    def test_nf4_table_shape(self):
        assert len(NF4_TABLE) == 16
        assert all(a < b for a, b in zip(NF4_TABLE, NF4_TABLE[1:]))
        assert NF4_TABLE[0] == -1.0 and NF4_TABLE[-1] == 1.0
        assert NF4_TABLE[NF4_ZERO_INDEX] == 0.0

    def test_nf4_fixed_point(self):
        assert len(NF4_TABLE_FIXED) == 16
        assert NF4_TABLE_FIXED[0] == -16384
        assert NF4_TABLE_FIXED[NF4_ZERO_INDEX] == 0
        assert NF4_TABLE_FIXED[15] == 16384
        # truncated toward zero, so never larger in magnitude than the real entry
        for real, fixed in zip(NF4_TABLE, NF4_TABLE_FIXED):
            assert abs(fixed) <= abs(real) * 16384

    def test_mxfp4_magnitudes(self):
        assert MXFP4_MAGNITUDES == (0.0, 0.5, 1.0, 1.5, 2.0, 3.0, 4.0, 6.0)


# ============================================================================
# PackedValue
# ============================================================================

class TestPackedValue:

    def test_fields(self):
        pv = PackedValue(Format.FP32, 0xBFC00000)   # -1.5
        assert (pv.sign, pv.exponent, pv.mantissa) == (1, 127, 0x400000)

    def test_string_format_is_coerced(self):
        assert PackedValue("fp8_e4m3", 0x38).fmt is Format.FP8_E4M3

    @pytest.mark.parametrize("fmt,bits", [
        (Format.FP8_E4M3, 0x100),
        (Format.MXFP4, 16),
        (Format.FP19, 1 << 19),
        (Format.NF4, -1),
    ])
    def test_rejects_wrong_width(self, fmt, bits):
        with pytest.raises(ValueError):
            PackedValue(fmt, bits)

    def test_fp19_container_is_top_aligned(self):
        one = PackedValue(Format.FP19, 127 << 10)
        assert one.container() == 0x3F800000

    def test_int8(self):
        assert from_int8(-1).bits == 0xFF
        assert from_int8(-128).as_int == -128
        assert from_int8(5).sign == 0
        with pytest.raises(ValueError):
            from_int8(128)

    def test_equality_and_repr(self):
        assert PackedValue(Format.BF16, 0x3F80) == PackedValue(Format.BF16, 0x3F80)
        assert repr(PackedValue(Format.BF16, 0x3F80)) == "PackedValue(bf16, 0x3f80)"


def test_status_flags_clear_and_copy():
    flags = StatusFlags(overflow=True, saturated=True)
    snap = flags.copy()
    flags.clear()
    assert not flags.any()
    assert snap.overflow and snap.saturated and not snap.underflow
