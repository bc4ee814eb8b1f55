"""
Parameter-uncertainty bootstrap.

Resamples the raw prior/current scores of one condition, refits every family
on each resample and records the estimated parameters, Kendall's tau and the
AIC-best family. ``paired`` sampling keeps each subject's two scores
together; ``independent`` sampling draws the two margins separately and so
breaks the within-subject dependence (a null reference).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .config import DEFAULT_SEED, FAMILY_TAGS
from .fitting import CopulaFit, fit_all
from .pseudo_obs import pseudo_observations

logger = logging.getLogger(__name__)

SAMPLING_METHODS = ("paired", "independent")


@dataclass
class BootstrapEstimates:
    """Per-replicate estimates; NaN where a family failed on a replicate."""
    families: Sequence[str]
    params: Dict[str, np.ndarray]
    taus: pd.DataFrame
    best_families: pd.Series
    sample_size: int
    sampling: str
    replace: bool

    @property
    def n_bootstrap(self) -> int:
        return len(self.taus)


def bootstrap_parameters(
    prior,
    current,
    families: Sequence[str] = FAMILY_TAGS[:-1],
    n_bootstrap: int = 100,
    sample_size: Optional[int] = None,
    sampling: str = "paired",
    replace: bool = True,
    seed: int = DEFAULT_SEED,
) -> BootstrapEstimates:
    """
    Refit copula families on bootstrap resamples of raw scores.

    Args:
        prior: Prior scores (aligned with ``current``)
        current: Current scores
        families: Families to fit on every resample
        n_bootstrap: Number of resamples
        sample_size: Resample size (defaults to the number of pairs)
        sampling: "paired" or "independent"
        replace: Sample with replacement (standard bootstrap)
        seed: Seed of the resampling stream

    Returns:
        BootstrapEstimates

    Raises:
        ValueError: On an unknown sampling method or an impossible sample size
    """
    prior = np.asarray(prior, dtype=float)
    current = np.asarray(current, dtype=float)
    if len(prior) != len(current):
        raise ValueError(f"Length mismatch: prior={len(prior)}, current={len(current)}")
    if sampling not in SAMPLING_METHODS:
        raise ValueError(f"sampling must be one of {SAMPLING_METHODS}, got {sampling!r}")
    n = len(prior)
    size = n if sample_size is None else int(sample_size)
    if size < 2 or (not replace and size > n):
        raise ValueError(f"Invalid sample_size {size} for {n} pairs (replace={replace})")

    families = list(families)
    rng = np.random.default_rng(seed)
    params = {f: np.full((n_bootstrap, 2), np.nan) for f in families}
    taus = pd.DataFrame(np.nan, index=range(n_bootstrap), columns=families)
    best = pd.Series([None] * n_bootstrap, dtype=object)

    for b in range(n_bootstrap):
        if sampling == "paired":
            idx = rng.choice(n, size=size, replace=replace)
            x, y = prior[idx], current[idx]
        else:
            x = prior[rng.choice(n, size=size, replace=replace)]
            y = current[rng.choice(n, size=size, replace=replace)]

        pobs = pseudo_observations(x, y, seed=int(rng.integers(2 ** 31)))
        fits = fit_all(pobs.u, pobs.v, families)
        best_aic = np.inf
        for family, fit in fits.items():
            if not isinstance(fit, CopulaFit):
                continue
            params[family][b, :fit.k] = fit.params
            taus.loc[b, family] = fit.kendall_tau
            if fit.aic < best_aic:
                best_aic = fit.aic
                best[b] = family
        if (b + 1) % 10 == 0:
            logger.info("Bootstrap iteration %d / %d", b + 1, n_bootstrap)

    return BootstrapEstimates(
        families=families,
        params=params,
        taus=taus,
        best_families=best,
        sample_size=size,
        sampling=sampling,
        replace=replace,
    )


def summarize_bootstrap(estimates: BootstrapEstimates,
                        reference_taus: Optional[Dict[str, float]] = None) -> pd.DataFrame:
    """
    Per-family spread of Kendall's tau across replicates.

    Args:
        estimates: Output of ``bootstrap_parameters``
        reference_taus: Optional full-sample taus; adds tau_reference and tau_bias

    Returns:
        DataFrame with n_successful, tau_mean, tau_sd, tau_median, tau_q05,
        tau_q95, ci_width and selection_freq per family
    """
    counts = estimates.best_families.dropna().value_counts()
    rows = []
    for family in estimates.families:
        taus = estimates.taus[family].dropna().to_numpy()
        if len(taus) == 0:
            continue
        q05, q95 = np.quantile(taus, [0.05, 0.95])
        row = {
            "family": family,
            "n_successful": len(taus),
            "tau_mean": float(np.mean(taus)),
            "tau_sd": float(np.std(taus, ddof=1)) if len(taus) > 1 else np.nan,
            "tau_median": float(np.median(taus)),
            "tau_q05": float(q05),
            "tau_q95": float(q95),
            "ci_width": float(q95 - q05),
            "selection_freq": counts.get(family, 0) / estimates.n_bootstrap,
        }
        if reference_taus and family in reference_taus:
            row["tau_reference"] = reference_taus[family]
            row["tau_bias"] = row["tau_mean"] - reference_taus[family]
        rows.append(row)
    return pd.DataFrame(rows)
