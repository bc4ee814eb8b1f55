"""
Tests for the Cramer-von Mises statistics and the parametric bootstrap.
"""

import numpy as np
import pytest

from copula_sensitivity.exceptions import FitError, GoFError
from copula_sensitivity.families import get_family
from copula_sensitivity.fitting import fit_copula
from copula_sensitivity.gof import (
    COMONOTONIC_METHOD,
    bootstrap_pvalue,
    bootstrap_statistics,
    cvm_statistic,
    gof_test,
    kendall_cvm,
    kendall_pseudo_observations,
    surface_cvm,
)
from copula_sensitivity.pseudo_obs import rank_transform


def simulate(family, params, n, seed):
    rng = np.random.default_rng(seed)
    u, v = get_family(family).sample(params, n, rng)
    return rank_transform(u, v)


class TestStatistics:
    def test_kendall_cvm_small_for_evenly_spread_steps(self):
        # K(w) = w against an evenly spread step function: small but positive.
        n = 1000
        w = (np.arange(n) + 0.5) / n
        stat = kendall_cvm(w, lambda x: x)
        assert 0 < stat < 1e-3

    def test_kendall_cvm_matches_numeric_integral(self):
        rng = np.random.default_rng(1)
        w = rng.beta(2.0, 3.0, 50)

        def k(x):
            return np.asarray(x) ** 2

        grid = np.linspace(0, 1, 200001)
        kn = np.searchsorted(np.sort(w), grid, side="right") / len(w)
        dk = np.diff(k(grid))
        mid = 0.5 * ((kn[1:] - k(grid[1:])) ** 2 + (kn[:-1] - k(grid[:-1])) ** 2)
        expected = len(w) * np.sum(mid * dk)
        assert kendall_cvm(w, k) == pytest.approx(expected, rel=1e-3)

    def test_surface_cvm_zero_for_perfect_match(self):
        u = np.array([0.25, 0.5, 0.75])
        v = np.array([0.25, 0.5, 0.75])
        # C_n = (count + 1) / n = 1/3, 2/3, 1
        fitted = np.array([1 / 3, 2 / 3, 1.0])
        assert surface_cvm(u, v, fitted) == pytest.approx(0.0)

    def test_statistic_larger_for_wrong_family(self):
        u, v = simulate("clayton", [3.0], 1500, seed=2)
        clayton = fit_copula(u, v, "clayton")
        gumbel = fit_copula(u, v, "gumbel")
        t_clayton = cvm_statistic(get_family("clayton"), clayton.params, u, v)
        t_gumbel = cvm_statistic(get_family("gumbel"), gumbel.params, u, v)
        assert t_gumbel > t_clayton

    def test_unknown_statistic(self):
        u, v = simulate("gumbel", [2.0], 100, seed=0)
        with pytest.raises(ValueError):
            cvm_statistic(get_family("gumbel"), [2.0], u, v, statistic="anderson")


class TestPValue:
    def test_never_zero(self):
        assert bootstrap_pvalue(10.0, np.array([0.1, 0.2, 0.3])) == pytest.approx(0.25)

    def test_all_exceed(self):
        assert bootstrap_pvalue(0.0, np.ones(9)) == pytest.approx(1.0)

    def test_ties_count_as_exceedances(self):
        assert bootstrap_pvalue(1.0, np.array([1.0, 0.5, 2.0])) == pytest.approx(0.75)


class TestGoFTest:
    @pytest.fixture(scope="class")
    def gumbel_data(self):
        return simulate("gumbel", [2.0], 400, seed=17)

    def test_bootstrap_result(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "gumbel")
        res = gof_test(fit, u, v, n_bootstrap=10, seed=5)
        assert res.method == "parametric_bootstrap_kendall_cvm"
        assert res.n_bootstrap == 10
        assert 1 / 11 - 1e-12 <= res.p_value <= 1.0
        assert res.passed == (res.p_value > 0.05)
        assert res.statistic >= 0

    def test_same_seed_same_result(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "frank")
        a = gof_test(fit, u, v, n_bootstrap=5, seed=9)
        b = gof_test(fit, u, v, n_bootstrap=5, seed=9)
        assert a == b

    def test_surface_statistic(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "clayton")
        res = gof_test(fit, u, v, n_bootstrap=5, seed=1, statistic="surface")
        assert res.method == "parametric_bootstrap_surface_cvm"
        assert 0 < res.p_value <= 1

    def test_statistic_only(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "gumbel")
        res = gof_test(fit, u, v, n_bootstrap=0)
        assert res.method == "kendall_cvm_statistic_only"
        assert res.p_value is None and res.passed is None
        assert res.n_bootstrap == 0

    def test_comonotonic_observed_only(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "comonotonic")
        res = gof_test(fit, u, v, n_bootstrap=50)
        assert res.method == COMONOTONIC_METHOD
        assert res.p_value is None and res.passed is None
        assert res.statistic > 0
        assert res.to_dict()["gof_replicates"] == 0

    def test_comonotonic_distance_per_statistic(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "comonotonic")
        kendall = gof_test(fit, u, v, n_bootstrap=0, statistic="kendall")
        surface = gof_test(fit, u, v, n_bootstrap=0, statistic="surface")
        w = kendall_pseudo_observations(u, v)
        assert kendall.statistic == pytest.approx(kendall_cvm(w, lambda x: x))
        assert surface.statistic == pytest.approx(surface_cvm(u, v, np.minimum(u, v)))
        assert kendall.method == surface.method == COMONOTONIC_METHOD

    def test_elliptical_kendall_uses_reference_sample(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "gaussian")
        res = gof_test(fit, u, v, n_bootstrap=3, seed=2, reference_size=2000)
        assert res.n_bootstrap == 3
        assert np.isfinite(res.statistic)

    def test_all_replicates_failing(self, gumbel_data):
        u, v = gumbel_data
        fit = fit_copula(u, v, "gumbel")

        def broken(ru, rv):
            raise FitError("gumbel", "forced")

        with pytest.raises(GoFError):
            gof_test(fit, u, v, n_bootstrap=3, seed=0, estimator=broken)


class TestFullReestimation:
    """Every bootstrap replicate must re-estimate all parameters, nu included."""

    def test_fixed_nu_inflates_statistics(self):
        fam = get_family("t")
        u, v = simulate("t", [0.75, 2.5], 1500, seed=31)
        params = fam.estimate(u, v)
        assert params[1] < 6.0

        n, b = len(u), 15
        free = bootstrap_statistics(fam, params, n, b, np.random.default_rng(4),
                                    statistic="surface")
        fixed = bootstrap_statistics(
            fam, params, n, b, np.random.default_rng(4), statistic="surface",
            estimator=lambda ru, rv: fam.estimate_with_fixed_nu(ru, rv, 50.0),
        )
        assert len(free) == len(fixed) == b
        assert np.median(fixed) > 1.5 * np.median(free)

        observed = cvm_statistic(fam, params, u, v, statistic="surface")
        assert bootstrap_pvalue(observed, fixed) >= bootstrap_pvalue(observed, free)
