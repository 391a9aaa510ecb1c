from __future__ import annotations

import mpmath as mp
import numpy as np
import pytest

from lpemu.formats import Format, PackedValue, from_int8
from lpemu.oracle import exact_dot, exact_value, relative_error, set_oracle


def test_exact_value_of_codes():
    assert exact_value(PackedValue(Format.FP8_E4M3, 0x3C)) == mp.mpf(1.5)
    assert exact_value(PackedValue(Format.FP8_E4M3, 0x01)) == mp.ldexp(1, -9)
    assert exact_value(PackedValue(Format.MXFP4, 0b1111)) == -6
    assert exact_value(PackedValue(Format.NF4, 15), absmax=2.0) == 2
    assert exact_value(from_int8(-7)) == -7


def test_exact_value_of_specials():
    assert exact_value(PackedValue(Format.FP8_E5M2, 0x7C)) == mp.inf
    assert exact_value(PackedValue(Format.FP8_E5M2, 0xFC)) == -mp.inf
    assert mp.isnan(exact_value(PackedValue(Format.FP8_E4M3, 0x7F)))


def test_exact_dot_has_no_intermediate_rounding():
    set_oracle(200)
    big = mp.mpf(2) ** 80
    assert exact_dot([big, 1, -big], [1, 1, 1]) == 1
    assert exact_dot([1, 2], [3, 4]) == 11


def test_relative_error():
    x = np.array([1.0, 2.0], dtype=np.float32)
    assert relative_error(x, x) == 0.0
    assert relative_error(np.array([1.0, 0.0]), np.array([1.0, 1.0])) == pytest.approx(np.sqrt(0.5))
