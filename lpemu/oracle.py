import numpy as np
import mpmath as mp

from .convert import decode
from .formats import NF4_TABLE, Format


def set_oracle(bits=200):
    mp.mp.dps = int(bits * 0.30103)  # bits -> decimal digits approx.


def exact_value(pv, absmax=1.0):
    """Exact real value of a packed code as an mpf (nf4 scaled by absmax)."""
    if pv.fmt is Format.NF4:
        return mp.mpf(NF4_TABLE[pv.index]) * mp.mpf(absmax)
    if pv.fmt is Format.INT8:
        return mp.mpf(pv.as_int)
    d = decode(pv)
    if d.kind == "nan":
        return mp.nan
    if d.kind == "inf":
        return -mp.inf if d.sign else mp.inf
    mag = mp.ldexp(d.significand, d.exponent - pv.spec.man_bits)
    return -mag if d.sign else mag


def exact_dot(xs, ys):
    """Dot product of mpf (or float) sequences with no intermediate rounding."""
    return mp.fsum(mp.mpf(x) * mp.mpf(y) for x, y in zip(xs, ys))


def relative_error(x_hat: np.ndarray, x_star: np.ndarray) -> float:
    x_hat = np.asarray(x_hat, dtype=np.float64)
    x_star = np.asarray(x_star, dtype=np.float64)
    num = np.linalg.norm(x_hat - x_star)
    den = np.linalg.norm(x_star) + 1e-30
    return float(num / den)
