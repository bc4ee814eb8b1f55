"""
Result aggregation: relative fit within each (dataset_id, condition_id)
group, multi-dataset combination and family summaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

GROUP_KEYS = ["dataset_id", "condition_id"]
ROW_KEY = GROUP_KEYS + ["family"]
RELATIVE_COLUMNS = ["best_aic", "best_bic", "delta_aic", "delta_bic", "aic_weight"]


@dataclass(frozen=True)
class RunReport:
    """Bookkeeping for one run."""
    n_datasets: int
    n_conditions: int
    n_skipped: int
    n_rows: int
    n_failed_fits: int
    n_failed_gof: int

    def summary(self) -> str:
        return (f"{self.n_datasets} dataset(s), {self.n_conditions} condition(s) evaluated, "
                f"{self.n_skipped} skipped, {self.n_rows} rows, "
                f"{self.n_failed_fits} failed fit(s), {self.n_failed_gof} failed GoF test(s)")


def _group_relative(group: pd.DataFrame) -> pd.DataFrame:
    ok = group["aic"].notna()
    out = pd.DataFrame(index=group.index, columns=RELATIVE_COLUMNS, dtype=object)
    if not ok.any():
        return out
    fitted = group[ok]
    min_aic = fitted["aic"].min()
    min_bic = fitted["bic"].min()
    out["best_aic"] = fitted.loc[fitted["aic"].idxmin(), "family"]
    out["best_bic"] = fitted.loc[fitted["bic"].idxmin(), "family"]

    delta_aic = fitted["aic"] - min_aic
    # Clamp the exponent input at 0 so extreme deltas underflow to 0, not NaN.
    raw = np.exp(-np.maximum(delta_aic.to_numpy(dtype=float), 0.0) / 2.0)
    out.loc[ok, "delta_aic"] = delta_aic.to_numpy(dtype=float)
    out.loc[ok, "delta_bic"] = (fitted["bic"] - min_bic).to_numpy(dtype=float)
    out.loc[ok, "aic_weight"] = raw / raw.sum()
    return out


def add_relative_fit(results: pd.DataFrame) -> pd.DataFrame:
    """
    Add best_aic, best_bic, delta_aic, delta_bic and aic_weight.

    Computed within (dataset_id, condition_id) groups over successful fits;
    failed fits keep NaN in the numeric columns.

    Args:
        results: Rows with dataset_id, condition_id, family, aic and bic

    Returns:
        Copy of ``results`` with the relative-fit columns (replaced if present)
    """
    df = results.drop(columns=[c for c in RELATIVE_COLUMNS if c in results.columns])
    df = df.reset_index(drop=True)
    if df.empty:
        for col in RELATIVE_COLUMNS:
            df[col] = pd.Series(dtype=float if col not in ("best_aic", "best_bic") else object)
        return df
    df["aic"] = pd.to_numeric(df["aic"], errors="coerce")
    df["bic"] = pd.to_numeric(df["bic"], errors="coerce")

    parts = [_group_relative(group) for _, group in df.groupby(GROUP_KEYS, sort=False)]
    relative = pd.concat(parts)
    for col in RELATIVE_COLUMNS:
        df[col] = relative[col]
    for col in ("delta_aic", "delta_bic", "aic_weight"):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def check_unique_keys(results: pd.DataFrame) -> None:
    """
    Raises:
        ValueError: If (dataset_id, condition_id, family) repeats
    """
    dupes = results.duplicated(subset=ROW_KEY, keep=False)
    if dupes.any():
        sample = results.loc[dupes, ROW_KEY].head(5).to_dict(orient="records")
        raise ValueError(f"Duplicate (dataset_id, condition_id, family) rows: {sample}")


def combine_results(frames: Iterable[pd.DataFrame]) -> pd.DataFrame:
    """Concatenate per-dataset results and recompute relative fit."""
    frames = [f for f in frames if f is not None and not f.empty]
    if not frames:
        return pd.DataFrame()
    combined = pd.concat(frames, ignore_index=True)
    check_unique_keys(combined)
    return add_relative_fit(combined)


def selection_frequency(results: pd.DataFrame, criterion: str = "aic") -> pd.DataFrame:
    """How often each family is best by AIC or BIC across condition groups."""
    if criterion not in ("aic", "bic"):
        raise ValueError(f"criterion must be 'aic' or 'bic', got {criterion!r}")
    best = results.drop_duplicates(GROUP_KEYS)[f"best_{criterion}"].dropna()
    if best.empty:
        return pd.DataFrame(columns=["family", "n_best", "percent"])
    counts = best.value_counts()
    out = counts.rename_axis("family").reset_index(name="n_best")
    out["percent"] = 100.0 * out["n_best"] / counts.sum()
    return out


def family_summary(results: pd.DataFrame) -> pd.DataFrame:
    """Per-family averages of fit and GoF columns."""
    df = results.copy()
    df["is_best"] = df["family"] == df["best_aic"]
    df["gof_pass_numeric"] = df["gof_pass"].map({True: 1.0, False: 0.0})
    df["gof_statistic"] = pd.to_numeric(df["gof_statistic"], errors="coerce")
    summary = df.groupby("family").agg(
        n_fits=("aic", "count"),
        mean_aic=("aic", "mean"),
        sd_aic=("aic", "std"),
        mean_delta_aic=("delta_aic", "mean"),
        mean_aic_weight=("aic_weight", "mean"),
        median_aic_weight=("aic_weight", "median"),
        n_best=("is_best", "sum"),
        gof_pass_rate=("gof_pass_numeric", "mean"),
        mean_gof_statistic=("gof_statistic", "mean"),
    )
    return summary.sort_values("mean_delta_aic").reset_index()


def build_report(n_datasets: int, n_conditions: int, n_skipped: int,
                 results: pd.DataFrame) -> RunReport:
    if results.empty:
        return RunReport(n_datasets, n_conditions, n_skipped, 0, 0, 0)
    failed_fits = int(results["fit_error"].notna().sum())
    failed_gof = int(results["gof_method"].astype(str).str.startswith("gof_failed").sum())
    return RunReport(n_datasets, n_conditions, n_skipped, len(results), failed_fits, failed_gof)


def result_columns() -> List[str]:
    """Preferred column order of the result table."""
    return [
        "dataset_id", "dataset_name", "condition_id", "span",
        "grouping_prior", "grouping_current", "period_prior", "period_current",
        "subgroup", "crosses_transition", "transition_side",
        "prior_scaling", "current_scaling", "scaling_transition",
        "n_pairs", "family", "loglik", "aic", "bic", "kendall_tau", "empirical_tau",
        "tail_dep_lower", "tail_dep_upper", "parameter_1", "parameter_2",
        "correlation_rho", "degrees_freedom", "theta",
        "gof_statistic", "gof_pvalue", "gof_pass", "gof_method", "gof_replicates",
        "fit_error",
    ] + RELATIVE_COLUMNS


def order_columns(results: pd.DataFrame) -> pd.DataFrame:
    preferred = [c for c in result_columns() if c in results.columns]
    rest = [c for c in results.columns if c not in preferred]
    return results[preferred + rest]
