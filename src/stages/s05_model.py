#!/usr/bin/env python3
"""
Stage 05: Regression Model

Purpose: Fit a cross-sectional OLS model on the linked area dataset.

Model
-----
    no2 = b0 + b1*per_mixed + ... + b9*ulez + e

Homoskedastic standard errors; two-sided p-values from the t distribution.
Regressors missing from the dataset are dropped with a warning, rows with a
missing outcome or regressor are excluded.

Input Files
-----------
- data_work/final.parquet

Output Files
------------
- data_work/model_estimates.csv

Usage
-----
    python src/pipeline.py fit_model
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pandas as pd
from scipy import stats

from config import FINAL_FILE, MODEL_FILE, MODEL_SPECIFICATION, SIGNIFICANCE_LEVEL
from utils.helpers import add_significance_stars, format_pvalue, get_data_dir, load_data
from stages._qa_utils import qa_for_stage


# ============================================================
# ESTIMATION
# ============================================================

def run_ols(
    df: pd.DataFrame,
    y_var: str,
    x_vars: list[str],
    alpha: float = SIGNIFICANCE_LEVEL,
) -> tuple[pd.DataFrame, dict]:
    """
    Run OLS regression with an intercept.

    Parameters
    ----------
    df : pd.DataFrame
        Data; geometry columns are ignored
    y_var : str
        Outcome variable
    x_vars : list[str]
        Regressor variables
    alpha : float
        Significance level for confidence intervals

    Returns
    -------
    tuple[pd.DataFrame, dict]
        Coefficient table (term, coefficient, std_error, t_stat, p_value,
        ci_lower, ci_upper) and fit statistics (n_obs, r_squared,
        adj_r_squared, dof).
    """
    df_clean = pd.DataFrame(df[[y_var] + x_vars]).astype(float).dropna()

    n = len(df_clean)
    k = len(x_vars) + 1
    if n <= k:
        raise ValueError(f"Insufficient observations: {n} for {k} parameters")

    # Design matrix with intercept
    y = df_clean[y_var].values
    X = np.column_stack([np.ones(n)] + [df_clean[x].values for x in x_vars])

    # beta = (X'X)^-1 X'y; pseudo-inverse for collinear regressors
    XtX_inv = np.linalg.pinv(X.T @ X)
    beta = XtX_inv @ X.T @ y

    residuals = y - X @ beta
    ss_res = float(np.sum(residuals ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0

    dof = n - k
    s2 = ss_res / dof
    se = np.sqrt(np.clip(np.diag(s2 * XtX_inv), 0, None))

    with np.errstate(divide='ignore', invalid='ignore'):
        t_stat = np.where(se > 0, beta / se, np.nan)
    p_value = 2 * stats.t.sf(np.abs(t_stat), dof)
    t_crit = stats.t.ppf(1 - alpha / 2, dof)

    table = pd.DataFrame({
        'term': ['const'] + list(x_vars),
        'coefficient': beta,
        'std_error': se,
        't_stat': t_stat,
        'p_value': p_value,
        'ci_lower': beta - t_crit * se,
        'ci_upper': beta + t_crit * se,
    })
    fit = {
        'n_obs': n,
        'r_squared': r_squared,
        'adj_r_squared': 1 - (1 - r_squared) * (n - 1) / dof,
        'dof': dof,
    }
    return table, fit


def available_regressors(df: pd.DataFrame, regressors: list[str]) -> list[str]:
    """Regressors present in ``df``; warns about the rest."""
    present = [x for x in regressors if x in df.columns]
    missing = [x for x in regressors if x not in df.columns]
    if missing:
        print(f"  Warning: Regressors not in dataset, dropped: {', '.join(missing)}")
    return present


def print_estimates(table: pd.DataFrame, fit: dict) -> None:
    """Print coefficient table in a readable layout."""
    print(f"\n  {'Term':<14} {'Coef':>12} {'SE':>10} {'p':>8}")
    print("  " + "-" * 48)
    for _, row in table.iterrows():
        stars = add_significance_stars(row['p_value']) if pd.notna(row['p_value']) else ''
        p_str = format_pvalue(row['p_value']) if pd.notna(row['p_value']) else 'n/a'
        print(f"  {row['term']:<14} {row['coefficient']:>12.4f} "
              f"{row['std_error']:>10.4f} {p_str:>8} {stars}")
    print("  " + "-" * 48)
    print(f"  N = {fit['n_obs']:,}, R2 = {fit['r_squared']:.3f}, "
          f"adj. R2 = {fit['adj_r_squared']:.3f}")


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(specification: Optional[dict] = None, verbose: bool = True) -> pd.DataFrame:
    """Execute model estimation."""
    print("=" * 60)
    print("Stage 05: Regression Model")
    print("=" * 60)

    spec = specification or MODEL_SPECIFICATION
    work_dir = get_data_dir('work')
    input_path = work_dir / FINAL_FILE

    if not input_path.exists():
        print(f"  ERROR: Input file not found: {input_path}")
        print("  Run 'interpolate_surface' stage first.")
        sys.exit(1)

    df = load_data(input_path)
    print(f"\n  Loaded: {len(df):,} areas")
    print(f"  Specification: {spec['name']}")
    print(f"  Outcome: {spec['outcome']}")

    if spec['outcome'] not in df.columns:
        print(f"  ERROR: Outcome '{spec['outcome']}' not in dataset")
        sys.exit(1)

    regressors = available_regressors(df, spec['regressors'])
    table, fit = run_ols(df, spec['outcome'], regressors)
    table.insert(0, 'specification', spec['name'])
    for key, value in fit.items():
        table[key] = value

    if verbose:
        print_estimates(table, fit)

    output_path = work_dir / MODEL_FILE
    print(f"\n  Saving to: {output_path}")
    table.to_csv(output_path, index=False)

    qa_for_stage('s05_model', table, output_file=str(output_path))

    print("\n" + "=" * 60)
    print("Stage 05 complete.")
    print("=" * 60)

    return table


if __name__ == '__main__':
    main()
