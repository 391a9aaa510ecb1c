import numpy as np

from .convert import from_float, to_float
from .formats import Format
from .fp32_unit import ref_add, ref_mul
from .precision import f32_bits, truncate_bfloat16, truncate_fp19

# Array-level helpers on top of the bit-exact engine: a quantize-dequantize
# function per format, and elementwise add/mul on the fp32 rules.

_FAST = {
    Format.FP32: lambda a: np.asarray(a, dtype=np.float32),
    Format.BF16: truncate_bfloat16,
    Format.FP19: truncate_fp19,
}


def get_quantizer(fmt, absmax: float = 1.0, rounding: str = "truncate"):
    """Array -> array of the values representable in `fmt` (as float32)."""
    try:
        fmt = Format(fmt)
    except ValueError:
        raise ValueError(f"Unknown format '{fmt}' (expected one of {[f.value for f in Format]})")
    if fmt in _FAST:
        return _FAST[fmt]

    def q(x):
        return to_float(from_float(float(x), fmt, absmax=absmax, rounding=rounding), absmax)

    vq = np.vectorize(q, otypes=[np.float64])
    return lambda a: vq(np.asarray(a, dtype=np.float32)).astype(np.float32)


def _elementwise(fn, a, b) -> np.ndarray:
    ua, ub = np.broadcast_arrays(f32_bits(a), f32_bits(b))
    out = np.array([fn(int(x), int(y)) for x, y in zip(ua.ravel(), ub.ravel())], dtype=np.uint32)
    return out.reshape(ua.shape).view(np.float32)


def fadd(a, b, fmt, accum='small'):
    q = get_quantizer(fmt)
    if accum == 'fp32':
        return q(_elementwise(ref_add, a, b))
    else:
        return q(_elementwise(ref_add, q(a), q(b)))


def fmul(a, b, fmt, accum='small'):
    q = get_quantizer(fmt)
    if accum == 'fp32':
        return q(_elementwise(ref_mul, a, b))
    else:
        return q(_elementwise(ref_mul, q(a), q(b)))
