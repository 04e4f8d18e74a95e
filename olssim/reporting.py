"""
Monte Carlo Summaries
=====================

Aggregates a ``SimulationBatch`` into per-term sampling statistics: the
mean and spread of the estimates, and how well the reported standard errors
track the empirical one. With the true coefficients, bias, RMSE and the
coverage of the normal 95% interval are added.
"""

from __future__ import annotations

from typing import List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from olssim.exceptions import InvalidInputError
from olssim.simulation import SimulationBatch

Z_95: float = 1.959963984540054  # Normal 97.5% quantile

TrueCoefficients = Union[Mapping[str, float], Sequence[float]]


def _true_values(terms: List[str], beta: TrueCoefficients) -> pd.Series:
    if isinstance(beta, Mapping):
        unknown = set(beta) - set(terms)
        if unknown:
            raise InvalidInputError(f"beta names terms not in the results: {sorted(unknown)}")
        return pd.Series({t: float(beta.get(t, np.nan)) for t in terms})
    values = np.asarray(beta, dtype=float).ravel()
    if values.size != len(terms):
        raise InvalidInputError(
            f"beta has {values.size} entries for {len(terms)} estimated terms {terms}; "
            f"pass a {{term: value}} mapping when variables are omitted"
        )
    return pd.Series(values, index=terms)


def summarize_batch(
    batch: Union[SimulationBatch, pd.DataFrame],
    beta: Optional[TrueCoefficients] = None,
    by: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Compute per-term summary statistics from Monte Carlo results.

    Parameters
    ----------
    batch : SimulationBatch or pd.DataFrame
        Output of ``run_simulation`` / ``run_simulation_grid`` (or its
        results table).
    beta : mapping or sequence, optional
        True coefficients, either {term: value} or one value per estimated
        term in model order (intercept first). Terms without a true value
        get NaN bias, RMSE and coverage.
    by : sequence of str, optional
        Metadata columns to group by in addition to ``term``, e.g.
        ``["sample_size"]``.

    Returns
    -------
    pd.DataFrame
        One row per (group, term) with ``n_trials, mean_estimate,
        sd_estimate, mean_se, se_ratio`` and, given ``beta``, ``true_value,
        mean_bias, rmse, coverage``. ``se_ratio`` is mean SE over the
        empirical sd of the estimates; values near 1 mean the standard
        errors are calibrated.
    """
    df = batch.results if isinstance(batch, SimulationBatch) else batch
    if df.empty:
        raise InvalidInputError("no completed trials to summarize")

    keys = list(by or []) + ["term"]
    missing = [k for k in keys if k not in df.columns]
    if missing:
        raise InvalidInputError(f"columns not in results: {missing}")

    df = df.copy()
    terms = list(dict.fromkeys(df["term"]))
    term_order = {t: i for i, t in enumerate(terms)}

    if beta is not None:
        truth = _true_values(terms, beta)
        df["true_value"] = df["term"].map(truth)
        df["error"] = df["estimate"] - df["true_value"]
        df["squared_error"] = df["error"] ** 2
        half_width = Z_95 * df["std_error"]
        covered = (df["true_value"] - df["estimate"]).abs() <= half_width
        df["covered"] = covered.astype(float).where(df["true_value"].notna())

    grouped = df.groupby(keys, sort=False)
    summary = grouped.agg(
        n_trials=("estimate", "count"),
        mean_estimate=("estimate", "mean"),
        sd_estimate=("estimate", "std"),
        mean_se=("std_error", "mean"),
    ).reset_index()
    summary["se_ratio"] = summary["mean_se"] / summary["sd_estimate"]

    if beta is not None:
        extra = grouped.agg(
            true_value=("true_value", "first"),
            mean_bias=("error", "mean"),
            mse=("squared_error", "mean"),
            coverage=("covered", "mean"),
        ).reset_index()
        extra["rmse"] = np.sqrt(extra.pop("mse"))
        summary = summary.merge(extra, on=keys)

    summary["_order"] = summary["term"].map(term_order)
    summary = summary.sort_values(list(by or []) + ["_order"], kind="stable")
    return summary.drop(columns="_order").reset_index(drop=True)


def print_summary(summary: pd.DataFrame, title: str = "OLS MONTE CARLO SUMMARY") -> None:
    """
    Print a summary table from ``summarize_batch`` to the console.
    """
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)

    group_cols = [c for c in summary.columns if c not in _SUMMARY_COLUMNS]
    for i, (_, row) in enumerate(summary.iterrows()):
        if i > 0 and group_cols:
            prev = summary.iloc[i - 1]
            if any(prev[c] != row[c] for c in group_cols):
                print("-" * 70)

        label = ", ".join(f"{c}={row[c]}" for c in group_cols)
        header = f"{row['term']}" + (f"  [{label}]" if label else "")
        print(f"\n{header}")
        print(f"  mean = {row['mean_estimate']:.4f}  (sd = {row['sd_estimate']:.4f}, "
              f"mean SE = {row['mean_se']:.4f}, ratio = {row['se_ratio']:.3f})")
        if "mean_bias" in summary.columns and not pd.isna(row["true_value"]):
            print(f"  bias = {row['mean_bias']:.4f}  |  RMSE = {row['rmse']:.4f}  |  "
                  f"coverage = {100 * row['coverage']:.1f}%  |  trials = {row['n_trials']}")
        else:
            print(f"  trials = {row['n_trials']}")

    print("\n" + "=" * 70 + "\n")


_SUMMARY_COLUMNS = {
    "term", "n_trials", "mean_estimate", "sd_estimate", "mean_se", "se_ratio",
    "true_value", "mean_bias", "rmse", "coverage",
}


__all__ = ["summarize_batch", "print_summary", "Z_95"]
