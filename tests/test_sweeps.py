"""Error-characterisation sweeps and their summaries."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from lpemu.config import get_quant_cfg
from lpemu.main import CONV_FIELDS, DOT_FIELDS, run_conversion_sweep, run_dot_sweep
from lpemu.summarize import main as summarize_main
from lpemu.summarize import summarize_conversion, summarize_dot


def test_conversion_sweep_writes_row(tmp_path):
    out = tmp_path / "conversion.csv"
    rng = np.random.default_rng(0)
    rel = run_conversion_sweep(str(out), "bf16", 1.0, 64, "truncate", rng)
    assert 0.0 < rel < 2.0 ** -7
    df = pd.read_csv(out)
    assert list(df.columns) == CONV_FIELDS
    assert df.loc[0, "fmt"] == "bf16"


@pytest.mark.parametrize("unit", ["fp8", "mx", "nf4", "int8"])
def test_dot_sweep(tmp_path, unit):
    out = tmp_path / "dot.csv"
    rng = np.random.default_rng(1)
    err = run_dot_sweep(str(out), unit, 8, get_quant_cfg({}), rng)
    assert err >= 0.0
    df = pd.read_csv(out)
    assert list(df.columns) == DOT_FIELDS
    assert df.loc[0, "trials"] == 8


def test_unknown_dot_unit(tmp_path):
    with pytest.raises(ValueError):
        run_dot_sweep(str(tmp_path / "dot.csv"), "fp64", 1, get_quant_cfg({}), np.random.default_rng(0))


def test_summaries(tmp_path):
    conv = tmp_path / "conversion.csv"
    pd.DataFrame([
        {"fmt": "bf16", "magnitude": 1.0, "samples": 8, "rounding": "truncate",
         "rel_error": 1e-3, "max_abs_error": 1e-3, "flushed": 0.0},
        {"fmt": "fp8_e4m3", "magnitude": 1.0, "samples": 8, "rounding": "truncate",
         "rel_error": 0.2, "max_abs_error": 0.5, "flushed": 0.0},
    ]).to_csv(conv, index=False)
    s = summarize_conversion(str(conv)).set_index("fmt")
    assert s.loc["bf16", "label"] == "Safe"
    assert s.loc["fp8_e4m3", "label"] == "Risky"

    dot = tmp_path / "dot.csv"
    pd.DataFrame([
        {"unit": "int8", "trials": 10, "mean_rel_error": 0.1, "max_rel_error": 0.3,
         "overflow": 0, "underflow": 0, "saturated": 5},
        {"unit": "fp8", "trials": 10, "mean_rel_error": 0.01, "max_rel_error": 0.02,
         "overflow": 1, "underflow": 1, "saturated": 0},
    ]).to_csv(dot, index=False)
    d = summarize_dot(str(dot))
    assert list(d["unit"]) == ["fp8", "int8"]
    assert d.loc[1, "flag_rate"] == 0.5


def test_summary_follows_results_dir(tmp_path):
    out_dir = tmp_path / "elsewhere"
    rng = np.random.default_rng(2)
    run_conversion_sweep(str(out_dir / "conversion.csv"), "fp16", 1.0, 32, "truncate", rng)
    run_dot_sweep(str(out_dir / "dot.csv"), "int8", 4, get_quant_cfg({}), rng)

    summarize_main(str(out_dir))

    assert (out_dir / "conversion_summary.csv").exists()
    assert pd.read_csv(out_dir / "dot_summary.csv").loc[0, "unit"] == "int8"
