"""
Copula fitting engine: maximum pseudo-likelihood fits with information
criteria, Kendall's tau and tail dependence for every family.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np

from .exceptions import FitError
from .families import CopulaFamily, get_family

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CopulaFit:
    """Container for one successful family fit"""
    family: str
    params: Tuple[float, ...]
    param_names: Tuple[str, ...]
    n: int
    loglik: float
    aic: float
    bic: float
    kendall_tau: float
    tail_lower: float
    tail_upper: float

    @property
    def k(self) -> int:
        return len(self.params)

    def param(self, name: str) -> Optional[float]:
        if name in self.param_names:
            return self.params[self.param_names.index(name)]
        return None

    @property
    def rho(self) -> Optional[float]:
        return self.param("rho")

    @property
    def nu(self) -> Optional[float]:
        return self.param("nu")

    @property
    def theta(self) -> Optional[float]:
        return self.param("theta")

    def to_dict(self) -> Dict[str, Optional[float]]:
        """Flat result-table fields (parameter_1/2 plus named parameters)."""
        return {
            "family": self.family,
            "loglik": self.loglik,
            "aic": self.aic,
            "bic": self.bic,
            "kendall_tau": self.kendall_tau,
            "tail_dep_lower": self.tail_lower,
            "tail_dep_upper": self.tail_upper,
            "parameter_1": self.params[0] if self.k > 0 else None,
            "parameter_2": self.params[1] if self.k > 1 else None,
            "correlation_rho": self.rho,
            "degrees_freedom": self.nu,
            "theta": self.theta,
        }


@dataclass(frozen=True)
class FitFailure:
    """A family that could not be fitted to a condition."""
    family: str
    n: int
    message: str

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"family": self.family, "fit_error": self.message}


FitOutcome = Union[CopulaFit, FitFailure]


def information_criteria(loglik: float, k: int, n: int) -> Tuple[float, float]:
    """AIC = -2 logLik + 2k, BIC = -2 logLik + k ln(n)."""
    return -2.0 * loglik + 2.0 * k, -2.0 * loglik + k * math.log(n)


def build_fit(family: CopulaFamily, params, u, v) -> CopulaFit:
    """
    Assemble a CopulaFit from already-estimated parameters.

    Raises:
        FitError: If the log-likelihood at ``params`` is not finite
    """
    params = family.check_params(params)
    loglik = family.log_likelihood(params, u, v)
    if not np.isfinite(loglik):
        raise FitError(family.name, "non-finite log-likelihood")
    n = len(u)
    aic, bic = information_criteria(loglik, family.n_params, n)
    lower, upper = family.tail_dependence(params)
    return CopulaFit(
        family=family.name,
        params=tuple(float(p) for p in params),
        param_names=family.param_names,
        n=n,
        loglik=float(loglik),
        aic=float(aic),
        bic=float(bic),
        kendall_tau=float(family.kendall_tau(params)),
        tail_lower=float(lower),
        tail_upper=float(upper),
    )


def fit_copula(u, v, family: Union[str, CopulaFamily]) -> FitOutcome:
    """
    Fit one copula family to pseudo-observations.

    Args:
        u: Pseudo-observations of the earlier period
        v: Pseudo-observations of the later period
        family: Family tag or CopulaFamily instance

    Returns:
        CopulaFit, or FitFailure carrying the diagnostic message when the
        optimizer fails or the estimate is degenerate
    """
    if isinstance(family, str):
        family = get_family(family)
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    try:
        params = family.estimate(u, v)
        return build_fit(family, params, u, v)
    except FitError as e:
        logger.debug("Fit failed for %s (n=%d): %s", family.name, len(u), e.reason)
        return FitFailure(family=family.name, n=len(u), message=e.reason)


def fit_all(u, v, families: Iterable[str]) -> Dict[str, FitOutcome]:
    """Fit several families independently; one failure never blocks another."""
    return {name: fit_copula(u, v, name) for name in families}
