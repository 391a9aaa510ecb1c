import pandas as pd
import numpy as np
import os

from .config import get_sweep_cfg, load_config
from .formats import Format, spec_for

def _bound(fmt):
    """Worst relative error one truncation step should cost in `fmt`."""
    spec = spec_for(fmt)
    if spec.is_float:
        return 2.0 ** -spec.man_bits
    return 0.1 if spec.name is Format.NF4 else 0.5

def summarize_conversion(path='results/conversion.csv'):
    df = pd.read_csv(path)
    out = df.groupby(['fmt', 'magnitude'], as_index=False).agg(
        rel_error=('rel_error', 'mean'),
        max_abs_error=('max_abs_error', 'max'),
        flushed=('flushed', 'mean'),
    )
    def label(row):
        e = row['rel_error']; b = _bound(row['fmt'])
        if np.isnan(e): return '—'
        if e <= b: return 'Safe'
        if e <= 5e-2: return 'Borderline'
        return 'Risky'
    out['bound'] = out['fmt'].map(_bound)
    out['label'] = out.apply(label, axis=1)
    return out[['fmt','magnitude','rel_error','bound','max_abs_error','flushed','label']]

def summarize_dot(path='results/dot.csv'):
    df = pd.read_csv(path)
    out = df.groupby('unit', as_index=False).agg(
        trials=('trials', 'sum'),
        mean_rel_error=('mean_rel_error', 'mean'),
        max_rel_error=('max_rel_error', 'max'),
        overflow=('overflow', 'sum'),
        underflow=('underflow', 'sum'),
        saturated=('saturated', 'sum'),
    )
    out['flag_rate'] = (out['overflow'] + out['underflow'] + out['saturated']) / out['trials']
    return out.sort_values('mean_rel_error').reset_index(drop=True)

def main(results_dir=None):
    if results_dir is None:
        results_dir = get_sweep_cfg(load_config())["results_dir"]
    os.makedirs(results_dir, exist_ok=True)
    c = summarize_conversion(os.path.join(results_dir, "conversion.csv"))
    d = summarize_dot(os.path.join(results_dir, "dot.csv"))
    c_out = os.path.join(results_dir, "conversion_summary.csv")
    d_out = os.path.join(results_dir, "dot_summary.csv")
    c.to_csv(c_out, index=False)
    d.to_csv(d_out, index=False)
    print(f"Wrote {c_out} and {d_out}")

if __name__ == "__main__":
    main()
