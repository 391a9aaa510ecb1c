import numpy as np

# Vectorized counterparts of the scalar conversion engine for the formats that
# keep the fp32 exponent (bf16, fp19): only the mantissa gets truncated.
# Same rules as convert.from_reference: chop, never round; fp32 subnormals
# flush to signed zero; NaN stays NaN.

_SIGN_MASK = np.uint32(0x80000000)


def f32_bits(x) -> np.ndarray:
    return np.asarray(x, dtype=np.float32).view(np.uint32)


def _truncate_mantissa(x32: np.ndarray, frac_bits: int):
    x32 = np.asarray(x32, dtype=np.float32)
    shift = 23 - frac_bits
    if shift <= 0:
        return x32.copy()
    u = x32.view(np.uint32)
    keep = np.uint32((0xFFFFFFFF << shift) & 0xFFFFFFFF)
    exp = (u >> np.uint32(23)) & np.uint32(0xFF)

    u_q = u & keep
    u_q = np.where(exp == 0, u & _SIGN_MASK, u_q).astype(np.uint32)
    out = u_q.view(np.float32)
    # a NaN whose payload sits in the dropped bits would turn into inf
    return np.where(np.isnan(x32), np.float32(np.nan), out).astype(np.float32)


def truncate_bfloat16(x):  return _truncate_mantissa(np.asarray(x, dtype=np.float32), 7)
def truncate_fp19(x):      return _truncate_mantissa(np.asarray(x, dtype=np.float32), 10)
