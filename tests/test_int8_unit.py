"""Signed 8-bit unit with a 32-bit accumulator."""

from __future__ import annotations

import pytest

from lpemu.formats import Format, PackedValue, from_int8
from lpemu.int8_unit import Int8Unit


@pytest.fixture
def unit():
    return Int8Unit()


class TestMul:

    @pytest.mark.parametrize("a,b,acc,value,saturated", [
        (10, 10, 100, 100, False),
        (127, 127, 16129, 127, True),
        (-128, 127, -16256, -128, True),
        (-128, -128, 16384, 127, True),
        (-3, 5, -15, -15, False),
    ])
    def test_mul(self, unit, a, b, acc, value, saturated):
        res = unit.run(Int8Unit.MUL, a=a, b=b)
        assert res.acc == acc
        assert res.as_int == value
        assert res.flags.saturated is saturated

    def test_packed_operands(self, unit):
        res = unit.run(Int8Unit.MUL, a=from_int8(-2), b=PackedValue(Format.INT8, 0x03))
        assert res.as_int == -6
        assert res.value.bits == 0xFA

    def test_out_of_range_operand(self, unit):
        with pytest.raises(ValueError):
            unit.run(Int8Unit.MUL, a=128, b=1)


class TestDot4:

    def test_dot4(self, unit):
        assert unit.run(Int8Unit.DOT4, a=[1, 2, 3, 4], b=[4, 3, 2, 1]).acc == 20
        res = unit.run(Int8Unit.DOT4, a=[10, -10, 10, -10], b=[10, 10, 10, 10])
        assert res.acc == 0 and res.as_int == 0

    def test_accumulator_keeps_full_sum(self, unit):
        res = unit.run(Int8Unit.DOT4, a=[-128] * 4, b=[-128] * 4)
        assert res.acc == 65536
        assert res.as_int == 127
        assert res.flags.saturated

    def test_needs_four_lanes(self, unit):
        with pytest.raises(ValueError):
            unit.run(Int8Unit.DOT4, a=[1, 2, 3], b=[1, 2, 3, 4])


class TestRelu:

    @pytest.mark.parametrize("a,expected", [(-128, 0), (127, 127), (0, 0), (-1, 0), (5, 5)])
    def test_relu(self, unit, a, expected):
        res = unit.run(Int8Unit.RELU, a=a)
        assert res.as_int == expected
        assert not res.flags.any()


class TestRequant:

    HALF = 1 << 15   # 0.5 with 16 fractional bits

    def test_saturates(self, unit):
        res = unit.run(Int8Unit.REQUANT, a=1000, scale=self.HALF)
        assert res.acc == 500
        assert res.as_int == 127
        assert res.flags.saturated

    def test_zero_point(self, unit):
        assert unit.run(Int8Unit.REQUANT, a=100, scale=self.HALF, zero_point=3).as_int == 53

    def test_negative_floors(self, unit):
        assert unit.run(Int8Unit.REQUANT, a=-3, scale=self.HALF, frac_bits=16).as_int == -2

    def test_other_frac_bits(self, unit):
        # 3 / 4 with 2 fractional bits
        assert unit.run(Int8Unit.REQUANT, a=40, scale=3, frac_bits=2).as_int == 30

    def test_accumulator_range(self, unit):
        with pytest.raises(ValueError):
            unit.run(Int8Unit.REQUANT, a=1 << 31, scale=self.HALF)
