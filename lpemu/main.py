# lpemu/main.py
# Error-characterisation orchestrator:
# - Reads config.yaml
# - Conversion sweep: N(0, mag^2) samples pushed through each format's
#   quantize/dequantize, error against the fp32 input
# - Dot-product sweep: random codes through each unit's 4-wide dot product,
#   error against an exact mpmath oracle, plus flag counts
# - Logs CSVs into results/ and prints concise progress

import os
import logging

import mpmath as mp
import numpy as np

from .config import load_config, get_quant_cfg, get_sweep_cfg, get_logging_cfg
from .convert import decode, to_float
from .formats import Format, PackedValue
from .fp4_unit import Fp4Unit
from .fp8_unit import Fp8Unit
from .int8_unit import Int8Unit
from .logging_utils import setup_logging, write_row
from .ops import get_quantizer
from .oracle import exact_dot, exact_value, relative_error, set_oracle

logger = logging.getLogger(__name__)

CONV_FIELDS = ["fmt", "magnitude", "samples", "rounding", "rel_error", "max_abs_error", "flushed"]
DOT_FIELDS = ["unit", "trials", "mean_rel_error", "max_rel_error", "overflow", "underflow", "saturated"]


# ---------- conversion sweep ----------

def run_conversion_sweep(out_csv, fmt, magnitude, samples, rounding, rng):
    """Quantize one batch of samples to `fmt` and append an error row."""
    x = (rng.standard_normal(samples) * magnitude).astype(np.float32)
    # nf4 is block-scaled: the whole batch is one block
    absmax = float(np.max(np.abs(x))) if fmt == Format.NF4.value else 1.0
    q = get_quantizer(fmt, absmax=absmax, rounding=rounding)(x)

    rel = relative_error(q, x)
    max_abs = float(np.max(np.abs(q.astype(np.float64) - x.astype(np.float64))))
    flushed = float(np.mean((q == 0) & (x != 0)))
    write_row(out_csv, CONV_FIELDS, [
        fmt, f"{magnitude:g}", samples, rounding,
        f"{rel:.6e}", f"{max_abs:.6e}", f"{flushed:.4f}",
    ])
    return rel


# ---------- dot-product sweep ----------

def _finite_code(rng, fmt):
    while True:
        pv = PackedValue(fmt, int(rng.integers(0, 256)))
        if decode(pv).kind not in ("inf", "nan"):
            return pv


def _fp8_trial(unit, rng, qcfg):
    a = [_finite_code(rng, Format.FP8_E4M3) for _ in range(4)]
    b = [_finite_code(rng, Format.FP8_E5M2) for _ in range(4)]
    res = unit.run(Fp8Unit.DOT4, a=a, b=b)
    exact = exact_dot([exact_value(v) for v in a], [exact_value(v) for v in b])
    return to_float(res.fp32), exact, res.flags


def _mx_trial(unit, rng, qcfg):
    a = [int(c) for c in rng.integers(0, 16, 4)]
    b = [int(c) for c in rng.integers(0, 16, 4)]
    block_exp = int(rng.integers(120, 135))
    res = unit.run(Fp4Unit.MX_DOT4, a=a, b=b, block_exp=block_exp)
    xs = [exact_value(PackedValue(Format.MXFP4, c)) for c in a]
    ys = [exact_value(PackedValue(Format.MXFP4, c)) for c in b]
    exact = exact_dot(xs, ys) * mp.ldexp(1, 2 * (block_exp - 127))
    return to_float(res.fp32), exact, res.flags


def _nf4_trial(unit, rng, qcfg):
    a = [int(c) for c in rng.integers(0, 16, 4)]
    b = [int(c) for c in rng.integers(0, 16, 4)]
    absmax_a = float(np.float32(rng.uniform(0.5, 4.0)))
    absmax_b = float(np.float32(rng.uniform(0.5, 4.0)))
    res = unit.run(Fp4Unit.NF4_DOT4, a=a, b=b, absmax_a=absmax_a, absmax_b=absmax_b)
    xs = [exact_value(PackedValue(Format.NF4, i), absmax_a) for i in a]
    ys = [exact_value(PackedValue(Format.NF4, i), absmax_b) for i in b]
    return to_float(res.fp32), exact_dot(xs, ys), res.flags


def _int8_trial(unit, rng, qcfg):
    a = [int(v) for v in rng.integers(-128, 128, 4)]
    b = [int(v) for v in rng.integers(-128, 128, 4)]
    acc = unit.run(Int8Unit.DOT4, a=a, b=b).acc
    frac_bits = qcfg["requant_frac_bits"]
    scale = int(qcfg["requant_scale"] * (1 << frac_bits))
    res = unit.run(Int8Unit.REQUANT, a=acc, scale=scale, frac_bits=frac_bits)
    exact = exact_dot(a, b) * mp.mpf(scale) / (1 << frac_bits)
    return float(res.as_int), exact, res.flags


_TRIALS = {
    "fp8":  (Fp8Unit, _fp8_trial),
    "mx":   (Fp4Unit, _mx_trial),
    "nf4":  (Fp4Unit, _nf4_trial),
    "int8": (Int8Unit, _int8_trial),
}


def run_dot_sweep(out_csv, unit_name, trials, qcfg, rng):
    if unit_name not in _TRIALS:
        raise ValueError(f"Unknown dot unit '{unit_name}' (expected one of {list(_TRIALS)})")
    cls, trial = _TRIALS[unit_name]
    unit = cls()

    errs = []
    counts = {"overflow": 0, "underflow": 0, "saturated": 0}
    for _ in range(trials):
        got, exact, flags = trial(unit, rng, qcfg)
        exact = float(exact)
        if exact == 0.0:
            errs.append(abs(got))
        else:
            errs.append(abs(got - exact) / abs(exact))
        for k in counts:
            counts[k] += int(getattr(flags, k))

    mean_err = float(np.mean(errs)) if errs else 0.0
    max_err = float(np.max(errs)) if errs else 0.0
    write_row(out_csv, DOT_FIELDS, [
        unit_name, trials, f"{mean_err:.6e}", f"{max_err:.6e}",
        counts["overflow"], counts["underflow"], counts["saturated"],
    ])
    logger.debug("dot sweep %s: %s", unit_name, counts)
    return mean_err


def main():
    cfg = load_config()
    setup_logging(get_logging_cfg(cfg)["level"])
    qcfg = get_quant_cfg(cfg)
    scfg = get_sweep_cfg(cfg)

    # -------------------------
    # Global seed (reproducible)
    # -------------------------
    seed = int(cfg.get("seed", 42))
    rng = np.random.default_rng(seed)
    set_oracle(200)

    out_dir = scfg["results_dir"]
    os.makedirs(out_dir, exist_ok=True)

    # =========================
    # Conversion sweep
    # =========================
    conv_csv = os.path.join(out_dir, "conversion.csv")
    print(f"[CONVERT] formats={scfg['formats']}, magnitudes={scfg['magnitudes']}, "
          f"samples={scfg['samples']}, rounding={qcfg['rounding']}")
    for fmt in scfg["formats"]:
        for mag in scfg["magnitudes"]:
            rel = run_conversion_sweep(conv_csv, fmt, mag, scfg["samples"], qcfg["rounding"], rng)
            print(f"  {fmt:<9} |x|~{mag:<8g} rel_error={rel:.3e}")

    # =========================
    # Dot-product sweep
    # =========================
    dot_csv = os.path.join(out_dir, "dot.csv")
    print(f"[DOT4] units={scfg['dot_units']}, trials={scfg['dot_trials']}")
    for name in scfg["dot_units"]:
        err = run_dot_sweep(dot_csv, name, scfg["dot_trials"], qcfg, rng)
        print(f"  {name:<5} mean_rel_error={err:.3e}")


if __name__ == "__main__":
    main()
