from pathlib import Path

import yaml

_CFG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def load_config(path=None):
    """Read config.yaml (repo root by default). A missing file means all defaults."""
    path = Path(path) if path is not None else _CFG_PATH
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}

# --- helpers that fill defaults so partial config files keep working ---------

def get_quant_cfg(cfg):
    q = cfg.get("quantize", {}) or {}
    i = cfg.get("int8", {}) or {}
    return {
        "rounding": str(q.get("rounding", "truncate")),
        "requant_frac_bits": int(i.get("requant_frac_bits", 16)),
        "requant_scale": float(i.get("requant_scale", 1.0 / 16)),
    }


def get_sweep_cfg(cfg):
    s = cfg.get("sweep", {}) or {}
    return {
        "samples": int(s.get("samples", 4096)),
        "formats": [str(f) for f in s.get("formats", ["fp16", "bf16", "fp19", "fp8_e4m3",
                                                     "fp8_e5m2", "mxfp4", "nf4", "int8"])],
        "magnitudes": [float(m) for m in s.get("magnitudes", [1e-3, 1.0, 1e2])],
        "dot_units": [str(u) for u in s.get("dot_units", ["fp8", "mx", "nf4", "int8"])],
        "dot_trials": int(s.get("dot_trials", 256)),
        "results_dir": str(s.get("results_dir", "results")),
    }


def get_logging_cfg(cfg):
    lg = cfg.get("logging", {}) or {}
    return {"level": str(lg.get("level", "INFO")).upper()}
