"""
Bivariate copula families.

Each family is one ``CopulaFamily`` subclass exposing the same interface:
a pure maximum pseudo-likelihood estimator (``estimate``) shared by the
initial fit and every bootstrap replicate, the log-likelihood, Kendall's tau,
tail dependence, a sampler, the copula surface C(u, v) and the Kendall
distribution function K(w) = P(C(U, V) <= w).

Families: gaussian, t, clayton, gumbel, frank, comonotonic.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import numpy as np
from numpy.polynomial.legendre import leggauss
from scipy import integrate, stats
from scipy.optimize import minimize_scalar
from scipy.special import gammaln
from statsmodels.distributions.copula import api as sm_copula

from .exceptions import ConfigurationError, FitError

RHO_BOUNDS = (-0.999, 0.999)
NU_BOUNDS = (2.01, 100.0)
CLAYTON_BOUNDS = (1e-4, 50.0)
GUMBEL_BOUNDS = (1.0, 50.0)
FRANK_BOUNDS = (-50.0, 50.0)

# Brent tolerance on the parameter scale.
_XATOL = 1e-6

# Gauss-Legendre nodes for the elliptical copula surface.
_QUAD_NODES, _QUAD_WEIGHTS = leggauss(64)

# Lower clip for Kendall-function arguments (w log w, log expm1 at w=0).
_W_FLOOR = 1e-12


def _bounded_argmin(objective: Callable[[float], float], bounds: Tuple[float, float],
                    family: str, xatol: float = _XATOL) -> float:
    res = minimize_scalar(objective, bounds=bounds, method="bounded",
                          options={"xatol": xatol, "maxiter": 500})
    if not res.success:
        raise FitError(family, f"optimizer did not converge ({res.message})")
    if not np.isfinite(res.fun):
        raise FitError(family, "non-finite log-likelihood at optimum")
    return float(res.x)


def _safe_negative(loglik: float) -> float:
    # Brent needs a finite objective; infeasible points are pushed far away.
    return -loglik if np.isfinite(loglik) else 1e300


def dominance_counts(u: np.ndarray, v: np.ndarray,
                     weights: Optional[np.ndarray] = None) -> np.ndarray:
    """
    For each point i, the (weighted) number of points j with u_j < u_i and
    v_j < v_i.

    Runs in O(n log^2 n) with numpy sorts over the bit levels of the v-ranks
    instead of an O(n^2) pairwise comparison. Values are assumed distinct
    within each coordinate; tied values are ordered by position.

    Args:
        u: First coordinate
        v: Second coordinate
        weights: Optional per-point weights counted when a point is dominated

    Returns:
        Array of counts (int64, or float when weights are given)
    """
    u = np.asarray(u)
    v = np.asarray(v)
    n = len(u)
    if weights is None:
        w = np.ones(n, dtype=np.int64)
    else:
        w = np.asarray(weights)

    order = np.argsort(u, kind="stable")
    w_sorted = w[order]
    r = np.empty(n, dtype=np.int64)
    r[np.argsort(v[order], kind="stable")] = np.arange(n)

    counts_sorted = np.zeros(n, dtype=w.dtype)
    for b in range(max(n - 1, 0).bit_length()):
        key = r >> (b + 1)
        bit = (r >> b) & 1
        idx = np.argsort(key, kind="stable")
        key_idx = key[idx]
        zeros = np.where(bit[idx] == 0, w_sorted[idx], 0)
        before = np.cumsum(zeros) - zeros
        starts = np.ones(n, dtype=bool)
        starts[1:] = key_idx[1:] != key_idx[:-1]
        base = np.maximum.accumulate(np.where(starts, before, 0))
        counts_sorted[idx] += np.where(bit[idx] == 1, before - base, 0)

    counts = np.empty_like(counts_sorted)
    counts[order] = counts_sorted
    return counts


def empirical_kendall_cdf(sample_u: np.ndarray, sample_v: np.ndarray) -> Callable:
    """Kendall distribution estimated from a (large) reference sample."""
    m = len(sample_u)
    w_ref = np.sort(dominance_counts(sample_u, sample_v) / (m - 1.0))

    def cdf(w):
        return np.searchsorted(w_ref, np.asarray(w, dtype=float), side="right") / m

    return cdf


class CopulaFamily(ABC):
    """
    Interface shared by every copula family.

    Subclasses set ``name``, ``param_names`` and ``bounds`` and implement the
    abstract methods. Parameters travel as 1-D float arrays in the order of
    ``param_names``.
    """

    name: str = ""
    param_names: Tuple[str, ...] = ()
    bounds: Tuple[Tuple[float, float], ...] = ()
    # Kendall function available in closed form.
    closed_form_kendall: bool = True

    @property
    def n_params(self) -> int:
        return len(self.param_names)

    @abstractmethod
    def estimate(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Maximum pseudo-likelihood estimate; raises FitError on failure."""

    @abstractmethod
    def log_likelihood(self, params, u: np.ndarray, v: np.ndarray) -> float:
        """Sum of log copula densities at the pseudo-observations."""

    @abstractmethod
    def kendall_tau(self, params) -> float:
        pass

    @abstractmethod
    def tail_dependence(self, params) -> Tuple[float, float]:
        """(lower, upper) tail dependence coefficients."""

    @abstractmethod
    def sample(self, params, n: int, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
        pass

    @abstractmethod
    def cdf(self, params, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        pass

    def kendall_cdf(self, params, w: np.ndarray,
                    rng: Optional[np.random.Generator] = None,
                    reference_size: int = 20000) -> np.ndarray:
        """
        Kendall distribution function K(w).

        Families without a closed form estimate K from ``reference_size``
        draws of the fitted copula using ``rng``.
        """
        if rng is None:
            rng = np.random.default_rng(0)
        su, sv = self.sample(params, reference_size, rng)
        return empirical_kendall_cdf(su, sv)(w)

    def check_params(self, params) -> np.ndarray:
        params = np.atleast_1d(np.asarray(params, dtype=float))
        if params.shape != (self.n_params,):
            raise ValueError(
                f"{self.name} expects {self.n_params} parameter(s) "
                f"{self.param_names}, got {params.tolist()}"
            )
        return params

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ---------------------------------------------------------------------------
# Elliptical families
# ---------------------------------------------------------------------------

def _elliptical_surface(x: np.ndarray, y: np.ndarray, marginal_pdf: Callable,
                        conditional_cdf: Callable) -> np.ndarray:
    """
    C(u, v) = integral over z < x of P(Y <= y | Z = z) f(z) dz, computed by
    Gauss-Legendre quadrature after the substitution z = tan(phi).
    """
    lower = -0.5 * np.pi
    upper = np.arctan(x)
    half = 0.5 * (upper - lower)
    phi = lower + half[:, None] * (_QUAD_NODES[None, :] + 1.0)
    z = np.tan(phi)
    jacobian = 1.0 / np.cos(phi) ** 2
    integrand = marginal_pdf(z) * jacobian * conditional_cdf(y[:, None], z)
    return np.clip(half * (integrand @ _QUAD_WEIGHTS), 0.0, 1.0)


class GaussianCopula(CopulaFamily):
    name = "gaussian"
    param_names = ("rho",)
    bounds = (RHO_BOUNDS,)
    closed_form_kendall = False

    @staticmethod
    def _loglik_xy(rho: float, x: np.ndarray, y: np.ndarray) -> float:
        one_m = 1.0 - rho * rho
        q = (rho * rho * (x * x + y * y) - 2.0 * rho * x * y) / (2.0 * one_m)
        return float(-0.5 * len(x) * np.log(one_m) - np.sum(q))

    def log_likelihood(self, params, u, v) -> float:
        (rho,) = self.check_params(params)
        return self._loglik_xy(rho, stats.norm.ppf(u), stats.norm.ppf(v))

    def estimate(self, u, v) -> np.ndarray:
        x = stats.norm.ppf(u)
        y = stats.norm.ppf(v)
        rho = _bounded_argmin(lambda r: _safe_negative(self._loglik_xy(r, x, y)),
                              RHO_BOUNDS, self.name)
        if abs(rho) >= RHO_BOUNDS[1] - 1e-4:
            raise FitError(self.name, f"correlation at boundary (rho={rho:.4f})")
        return np.array([rho])

    def kendall_tau(self, params) -> float:
        (rho,) = self.check_params(params)
        return float(2.0 / np.pi * np.arcsin(rho))

    def tail_dependence(self, params) -> Tuple[float, float]:
        return 0.0, 0.0

    def sample(self, params, n, rng):
        (rho,) = self.check_params(params)
        z1 = rng.standard_normal(n)
        z2 = rho * z1 + np.sqrt(1.0 - rho * rho) * rng.standard_normal(n)
        return stats.norm.cdf(z1), stats.norm.cdf(z2)

    def cdf(self, params, u, v):
        (rho,) = self.check_params(params)
        scale = np.sqrt(1.0 - rho * rho)
        return _elliptical_surface(
            stats.norm.ppf(u),
            stats.norm.ppf(v),
            stats.norm.pdf,
            lambda y, z: stats.norm.cdf((y - rho * z) / scale),
        )


class StudentTCopula(CopulaFamily):
    """
    Student-t copula with correlation rho and degrees of freedom nu.

    Estimation profiles the likelihood: for each candidate nu the marginal
    quantiles are computed once and rho is optimized; nu is then optimized on
    the log scale over the profile.
    """

    name = "t"
    param_names = ("rho", "nu")
    bounds = (RHO_BOUNDS, NU_BOUNDS)
    closed_form_kendall = False

    @staticmethod
    def _loglik_xy(rho: float, nu: float, x: np.ndarray, y: np.ndarray) -> float:
        n = len(x)
        one_m = 1.0 - rho * rho
        const = (gammaln((nu + 2.0) / 2.0) + gammaln(nu / 2.0)
                 - 2.0 * gammaln((nu + 1.0) / 2.0) - 0.5 * np.log(one_m))
        quad = (x * x - 2.0 * rho * x * y + y * y) / (nu * one_m)
        joint = -(nu + 2.0) / 2.0 * np.log1p(quad)
        margins = (nu + 1.0) / 2.0 * (np.log1p(x * x / nu) + np.log1p(y * y / nu))
        return float(n * const + np.sum(joint + margins))

    def log_likelihood(self, params, u, v) -> float:
        rho, nu = self.check_params(params)
        return self._loglik_xy(rho, nu, stats.t.ppf(u, nu), stats.t.ppf(v, nu))

    def _profile(self, nu: float, u, v) -> Tuple[float, float]:
        x = stats.t.ppf(u, nu)
        y = stats.t.ppf(v, nu)
        res = minimize_scalar(
            lambda r: _safe_negative(self._loglik_xy(r, nu, x, y)),
            bounds=RHO_BOUNDS, method="bounded",
            options={"xatol": _XATOL, "maxiter": 500},
        )
        return float(res.x), float(res.fun)

    def estimate_with_fixed_nu(self, u, v, nu: float) -> np.ndarray:
        """Estimate rho only, holding nu fixed. Diagnostics only."""
        rho, fun = self._profile(nu, u, v)
        if not np.isfinite(fun):
            raise FitError(self.name, "non-finite log-likelihood at optimum")
        return np.array([rho, nu])

    def estimate(self, u, v) -> np.ndarray:
        log_bounds = (math.log(NU_BOUNDS[0]), math.log(NU_BOUNDS[1]))
        log_nu = _bounded_argmin(lambda ln: self._profile(math.exp(ln), u, v)[1],
                                 log_bounds, self.name, xatol=1e-4)
        nu = math.exp(log_nu)
        rho, fun = self._profile(nu, u, v)
        if not np.isfinite(fun):
            raise FitError(self.name, "non-finite log-likelihood at optimum")
        if abs(rho) >= RHO_BOUNDS[1] - 1e-4:
            raise FitError(self.name, f"correlation at boundary (rho={rho:.4f})")
        return np.array([rho, nu])

    def kendall_tau(self, params) -> float:
        rho, _ = self.check_params(params)
        return float(2.0 / np.pi * np.arcsin(rho))

    def tail_dependence(self, params) -> Tuple[float, float]:
        rho, nu = self.check_params(params)
        arg = -np.sqrt((nu + 1.0) * (1.0 - rho) / (1.0 + rho))
        lam = float(2.0 * stats.t.cdf(arg, nu + 1.0))
        return lam, lam

    def sample(self, params, n, rng):
        rho, nu = self.check_params(params)
        z1 = rng.standard_normal(n)
        z2 = rho * z1 + np.sqrt(1.0 - rho * rho) * rng.standard_normal(n)
        scale = np.sqrt(rng.chisquare(nu, n) / nu)
        return stats.t.cdf(z1 / scale, nu), stats.t.cdf(z2 / scale, nu)

    def cdf(self, params, u, v):
        rho, nu = self.check_params(params)
        one_m = 1.0 - rho * rho

        def conditional(y, z):
            s = np.sqrt((nu + z * z) * one_m / (nu + 1.0))
            return stats.t.cdf((y - rho * z) / s, nu + 1.0)

        return _elliptical_surface(
            stats.t.ppf(u, nu),
            stats.t.ppf(v, nu),
            lambda z: stats.t.pdf(z, nu),
            conditional,
        )


# ---------------------------------------------------------------------------
# Archimedean families
# ---------------------------------------------------------------------------

class ArchimedeanFamily(CopulaFamily):
    """One-parameter Archimedean family estimated by bounded Brent search."""

    param_names = ("theta",)
    # statsmodels class supplying the copula surface.
    _surface_class = None

    @abstractmethod
    def _logpdf(self, theta: float, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def _kendall(self, theta: float, w: np.ndarray) -> np.ndarray:
        pass

    def log_likelihood(self, params, u, v) -> float:
        (theta,) = self.check_params(params)
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            return float(np.sum(self._logpdf(theta, u, v)))

    def _degenerate(self, theta: float) -> Optional[str]:
        return None

    def estimate(self, u, v) -> np.ndarray:
        theta = _bounded_argmin(
            lambda th: _safe_negative(self.log_likelihood([th], u, v)),
            self.bounds[0], self.name,
        )
        reason = self._degenerate(theta)
        if reason:
            raise FitError(self.name, reason)
        return np.array([theta])

    def cdf(self, params, u, v):
        (theta,) = self.check_params(params)
        surface = self._surface_class(theta=theta)
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            values = surface.cdf(np.column_stack([u, v]))
        return np.clip(np.asarray(values, dtype=float), 0.0, 1.0)

    def kendall_cdf(self, params, w, rng=None, reference_size=20000):
        (theta,) = self.check_params(params)
        w = np.clip(np.asarray(w, dtype=float), _W_FLOOR, 1.0)
        return np.clip(self._kendall(theta, w), 0.0, 1.0)


class ClaytonCopula(ArchimedeanFamily):
    name = "clayton"
    bounds = (CLAYTON_BOUNDS,)
    _surface_class = sm_copula.ClaytonCopula

    def _logpdf(self, theta, u, v):
        a = -theta * np.log(u)
        b = -theta * np.log(v)
        s = np.logaddexp(a, b)
        # log(u^-theta + v^-theta - 1)
        log_inner = s + np.log1p(-np.exp(-s))
        return (np.log1p(theta) - (1.0 + theta) * (np.log(u) + np.log(v))
                - (2.0 + 1.0 / theta) * log_inner)

    def _degenerate(self, theta):
        if theta <= CLAYTON_BOUNDS[0] + 1e-3:
            return (f"estimate at lower bound (theta={theta:.2e}); "
                    "no positive lower-tail dependence in the data")
        return None

    def kendall_tau(self, params) -> float:
        (theta,) = self.check_params(params)
        return float(theta / (theta + 2.0))

    def tail_dependence(self, params):
        (theta,) = self.check_params(params)
        return float(2.0 ** (-1.0 / theta)), 0.0

    def sample(self, params, n, rng):
        (theta,) = self.check_params(params)
        frailty = rng.gamma(1.0 / theta, 1.0, n)
        e1 = rng.standard_exponential(n)
        e2 = rng.standard_exponential(n)
        return (1.0 + e1 / frailty) ** (-1.0 / theta), (1.0 + e2 / frailty) ** (-1.0 / theta)

    def _kendall(self, theta, w):
        return w + (w - w ** (theta + 1.0)) / theta


class GumbelCopula(ArchimedeanFamily):
    name = "gumbel"
    bounds = (GUMBEL_BOUNDS,)
    _surface_class = sm_copula.GumbelCopula

    def _logpdf(self, theta, u, v):
        lx = np.log(-np.log(u))
        ly = np.log(-np.log(v))
        log_s = np.logaddexp(theta * lx, theta * ly)
        a = np.exp(log_s / theta)
        return (-a - np.log(u) - np.log(v) + (theta - 1.0) * (lx + ly)
                + (1.0 / theta - 2.0) * log_s + np.log(a + theta - 1.0))

    def kendall_tau(self, params) -> float:
        (theta,) = self.check_params(params)
        return float((theta - 1.0) / theta)

    def tail_dependence(self, params):
        (theta,) = self.check_params(params)
        return 0.0, float(2.0 - 2.0 ** (1.0 / theta))

    def sample(self, params, n, rng):
        (theta,) = self.check_params(params)
        alpha = 1.0 / theta
        # Positive stable frailty with Laplace transform exp(-t^alpha) (Kanter).
        angle = rng.uniform(0.0, np.pi, n)
        expo = rng.standard_exponential(n)
        if alpha >= 1.0:
            frailty = np.ones(n)
        else:
            frailty = (np.sin(alpha * angle) / np.sin(angle) ** (1.0 / alpha)
                       * (np.sin((1.0 - alpha) * angle) / expo) ** ((1.0 - alpha) / alpha))
        e1 = rng.standard_exponential(n)
        e2 = rng.standard_exponential(n)
        return np.exp(-(e1 / frailty) ** alpha), np.exp(-(e2 / frailty) ** alpha)

    def _kendall(self, theta, w):
        return w - w * np.log(w) / theta


def _debye1(x: float) -> float:
    """First Debye function D1(x) = (1/x) * int_0^x t / (e^t - 1) dt, x > 0."""
    value, _ = integrate.quad(lambda t: t / np.expm1(t) if t > 0 else 1.0, 0.0, x)
    return value / x


class FrankCopula(ArchimedeanFamily):
    name = "frank"
    bounds = (FRANK_BOUNDS,)
    _surface_class = sm_copula.FrankCopula

    def _logpdf(self, theta, u, v):
        if abs(theta) < 1e-8:
            return np.zeros_like(u)
        if theta < 0:
            # c_{-theta}(u, v) = c_theta(u, 1 - v)
            theta = -theta
            v = 1.0 - v
        eu = np.exp(-theta * u)
        ev = np.exp(-theta * v)
        denom = eu + ev - eu * ev - np.exp(-theta)
        return (np.log(theta) + np.log(-np.expm1(-theta)) - theta * (u + v)
                - 2.0 * np.log(denom))

    def _degenerate(self, theta):
        if abs(theta) < 1e-4:
            return "estimate at independence (theta ~ 0)"
        return None

    def kendall_tau(self, params) -> float:
        (theta,) = self.check_params(params)
        if abs(theta) < 1e-8:
            return 0.0
        a = abs(theta)
        tau = 1.0 - 4.0 / a * (1.0 - _debye1(a))
        return float(math.copysign(tau, theta))

    def tail_dependence(self, params):
        return 0.0, 0.0

    def sample(self, params, n, rng):
        (theta,) = self.check_params(params)
        u = rng.uniform(size=n)
        w = rng.uniform(size=n)
        if abs(theta) < 1e-8:
            return u, w
        g = np.expm1(-theta)
        ratio = w * g / (w + (1.0 - w) * np.exp(-theta * u))
        v = -np.log1p(ratio) / theta
        return u, np.clip(v, 0.0, 1.0)

    def cdf(self, params, u, v):
        (theta,) = self.check_params(params)
        if abs(theta) < 1e-8:
            return np.asarray(u) * np.asarray(v)
        return super().cdf(params, u, v)

    def _kendall(self, theta, w):
        if abs(theta) < 1e-8:
            return w - w * np.log(w)
        return w - np.log(np.expm1(-theta * w) / np.expm1(-theta)) * np.expm1(theta * w) / theta


# ---------------------------------------------------------------------------
# Comonotonic (singular) family
# ---------------------------------------------------------------------------

class ComonotonicCopula(CopulaFamily):
    """
    Perfect positive dependence, C(u, v) = min(u, v).

    The copula has no density; its pseudo log-likelihood is the negative sum
    of squared deviations from the diagonal, -sum((u - v)^2), with no free
    parameters.
    """

    name = "comonotonic"
    param_names = ()
    bounds = ()

    def estimate(self, u, v) -> np.ndarray:
        return np.array([], dtype=float)

    def log_likelihood(self, params, u, v) -> float:
        return float(-np.sum((np.asarray(u) - np.asarray(v)) ** 2))

    def kendall_tau(self, params) -> float:
        return 1.0

    def tail_dependence(self, params):
        return 1.0, 1.0

    def sample(self, params, n, rng):
        u = rng.uniform(size=n)
        return u, u.copy()

    def cdf(self, params, u, v):
        return np.minimum(u, v)

    def kendall_cdf(self, params, w, rng=None, reference_size=20000):
        return np.clip(np.asarray(w, dtype=float), 0.0, 1.0)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

FAMILIES: Dict[str, CopulaFamily] = {
    family.name: family
    for family in (
        GaussianCopula(),
        StudentTCopula(),
        ClaytonCopula(),
        GumbelCopula(),
        FrankCopula(),
        ComonotonicCopula(),
    )
}


def get_family(name: str) -> CopulaFamily:
    """
    Look up a family by tag.

    Raises:
        ConfigurationError: If the tag is unknown
    """
    try:
        return FAMILIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown copula family: {name!r}. Available: {list(FAMILIES)}"
        ) from None
