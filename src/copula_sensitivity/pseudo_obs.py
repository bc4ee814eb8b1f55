"""
Rank-based pseudo-observations.

Maps paired raw scores onto the unit square with u = rank / (n + 1). Ties are
split at random with a seeded permutation so that repeated scores (common on
integer score scales) never collapse onto the same pseudo-observation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.stats import rankdata

# Keeps u strictly inside (0, 1) after floating point division.
_EPS = 1e-10


@dataclass(frozen=True)
class PseudoObservations:
    """Pseudo-observations for one condition."""
    u: np.ndarray
    v: np.ndarray
    seed: Optional[int]
    ties: str

    @property
    def n(self) -> int:
        return len(self.u)


def _validate_pair(x: np.ndarray, y: np.ndarray) -> None:
    if x.ndim != 1 or y.ndim != 1:
        raise ValueError("prior and current must be one-dimensional")
    if len(x) != len(y):
        raise ValueError(f"Length mismatch: prior={len(x)}, current={len(y)}")
    if len(x) < 2:
        raise ValueError(f"Need at least 2 pairs, got {len(x)}")
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise ValueError("prior and current must be finite (drop missing scores first)")


def random_ranks(x: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """
    Ordinal ranks 1..n with ties broken by a random permutation.

    Args:
        x: 1-D numeric array
        rng: Generator supplying the tie-breaking permutation

    Returns:
        Integer ranks, a permutation of 1..n
    """
    n = len(x)
    tiebreak = rng.permutation(n)
    # lexsort sorts by the last key first: primary key x, secondary tiebreak.
    order = np.lexsort((tiebreak, x))
    ranks = np.empty(n, dtype=np.int64)
    ranks[order] = np.arange(1, n + 1)
    return ranks


def pseudo_observations(
    prior,
    current,
    seed: Optional[int] = None,
    ties: str = "random",
) -> PseudoObservations:
    """
    Transform paired scores to pseudo-observations in (0, 1).

    Args:
        prior: Scores at the earlier period
        current: Scores at the later period, aligned with ``prior``
        seed: Seed for random tie-breaking; identical seed and input give
            identical output
        ties: "random" (default) or "average" (mid-ranks, diagnostics only)

    Returns:
        PseudoObservations with u, v strictly inside (0, 1)

    Raises:
        ValueError: On mismatched lengths, fewer than 2 pairs, non-finite
            values or an unknown tie method
    """
    x = np.asarray(prior, dtype=float)
    y = np.asarray(current, dtype=float)
    _validate_pair(x, y)
    n = len(x)

    if ties == "random":
        rng = np.random.default_rng(seed)
        rx = random_ranks(x, rng)
        ry = random_ranks(y, rng)
    elif ties == "average":
        rx = rankdata(x, method="average")
        ry = rankdata(y, method="average")
    else:
        raise ValueError(f"ties must be 'random' or 'average', got {ties!r}")

    u = np.clip(rx / (n + 1.0), _EPS, 1.0 - _EPS)
    v = np.clip(ry / (n + 1.0), _EPS, 1.0 - _EPS)
    u.setflags(write=False)
    v.setflags(write=False)
    return PseudoObservations(u=u, v=v, seed=seed, ties=ties)


def rank_transform(x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Pseudo-observations of continuous (tie-free) simulated data."""
    n = len(x)
    u = (np.argsort(np.argsort(x)) + 1.0) / (n + 1.0)
    v = (np.argsort(np.argsort(y)) + 1.0) / (n + 1.0)
    return u, v


def has_sufficient_data(n_pairs: int, min_sample_size: int) -> bool:
    return n_pairs >= min_sample_size
