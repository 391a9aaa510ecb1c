from __future__ import annotations

from lpemu.config import get_logging_cfg, get_quant_cfg, get_sweep_cfg, load_config


def test_missing_file_means_defaults(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg == {}
    assert get_quant_cfg(cfg) == {"rounding": "truncate", "requant_frac_bits": 16, "requant_scale": 0.0625}
    assert get_sweep_cfg(cfg)["dot_units"] == ["fp8", "mx", "nf4", "int8"]
    assert get_logging_cfg(cfg)["level"] == "INFO"


def test_partial_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("quantize:\n  rounding: nearest\nsweep:\n  samples: 16\n  formats: [bf16]\nlogging:\n  level: debug\n")
    cfg = load_config(path)
    assert get_quant_cfg(cfg)["rounding"] == "nearest"
    sweep = get_sweep_cfg(cfg)
    assert sweep["samples"] == 16
    assert sweep["formats"] == ["bf16"]
    assert sweep["dot_trials"] == 256
    assert get_logging_cfg(cfg)["level"] == "DEBUG"


def test_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == {}


def test_repo_config_loads():
    cfg = load_config()
    assert get_sweep_cfg(cfg)["results_dir"] == "results"
