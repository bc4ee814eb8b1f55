"""
Unit tests for copula families: closed-form summaries, sampling and
maximum pseudo-likelihood estimation.
"""

import numpy as np
import pytest
from scipy import stats
from statsmodels.distributions.copula import api as sm_copula

from copula_sensitivity.exceptions import ConfigurationError, FitError
from copula_sensitivity.families import FAMILIES, dominance_counts, get_family
from copula_sensitivity.pseudo_obs import rank_transform


def sample_pobs(family, params, n=2000, seed=0):
    rng = np.random.default_rng(seed)
    u, v = get_family(family).sample(np.asarray(params, dtype=float), n, rng)
    return rank_transform(u, v)


class TestRegistry:
    def test_all_families_registered(self):
        assert set(FAMILIES) == {"gaussian", "t", "clayton", "gumbel", "frank", "comonotonic"}

    def test_parameter_counts(self):
        counts = {name: fam.n_params for name, fam in FAMILIES.items()}
        assert counts == {"gaussian": 1, "t": 2, "clayton": 1, "gumbel": 1,
                          "frank": 1, "comonotonic": 0}

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError):
            get_family("joe")

    def test_wrong_parameter_count(self):
        with pytest.raises(ValueError):
            get_family("t").kendall_tau([0.5])


class TestClosedForms:
    def test_gumbel_tau_and_tail(self):
        fam = get_family("gumbel")
        assert fam.kendall_tau([2.0]) == pytest.approx(0.5)
        assert fam.tail_dependence([2.0]) == pytest.approx((0.0, 2 - np.sqrt(2)))

    def test_clayton_tau_and_tail(self):
        fam = get_family("clayton")
        assert fam.kendall_tau([2.0]) == pytest.approx(0.5)
        assert fam.tail_dependence([2.0]) == pytest.approx((2 ** -0.5, 0.0))

    def test_elliptical_tau(self):
        expected = 2 / np.pi * np.arcsin(0.5)
        assert get_family("gaussian").kendall_tau([0.5]) == pytest.approx(expected)
        assert get_family("t").kendall_tau([0.5, 4.0]) == pytest.approx(expected)

    def test_t_tail_dependence_symmetric_and_positive(self):
        lower, upper = get_family("t").tail_dependence([0.7, 4.0])
        arg = -np.sqrt(5 * 0.3 / 1.7)
        assert lower == upper
        assert lower == pytest.approx(2 * stats.t.cdf(arg, 5))
        assert 0 < lower < 1

    def test_frank_tau_odd_and_known_value(self):
        fam = get_family("frank")
        # Frank theta = 5.736 corresponds to tau = 0.5
        assert fam.kendall_tau([5.736]) == pytest.approx(0.5, abs=1e-3)
        assert fam.kendall_tau([-5.736]) == pytest.approx(-0.5, abs=1e-3)

    def test_comonotonic_summaries(self):
        fam = get_family("comonotonic")
        assert fam.kendall_tau([]) == 1.0
        assert fam.tail_dependence([]) == (1.0, 1.0)
        u = np.array([0.2, 0.7])
        v = np.array([0.5, 0.4])
        np.testing.assert_allclose(fam.cdf([], u, v), [0.2, 0.4])

    @pytest.mark.parametrize("family,cls,theta", [
        ("clayton", sm_copula.ClaytonCopula, 2.0),
        ("gumbel", sm_copula.GumbelCopula, 2.0),
        ("frank", sm_copula.FrankCopula, 5.0),
    ])
    def test_log_density_matches_statsmodels(self, family, cls, theta):
        grid = np.linspace(0.05, 0.95, 7)
        u, v = (a.ravel() for a in np.meshgrid(grid, grid))
        expected = cls(theta=theta).logpdf(np.column_stack([u, v]))
        fam = get_family(family)
        ours = [fam.log_likelihood([theta], u[i:i + 1], v[i:i + 1]) for i in range(len(u))]
        np.testing.assert_allclose(ours, expected, rtol=1e-6, atol=1e-9)


class TestSampling:
    @pytest.mark.parametrize("family,params", [
        ("gaussian", [0.7071]),
        ("t", [0.7071, 5.0]),
        ("clayton", [2.0]),
        ("gumbel", [2.0]),
        ("frank", [5.736]),
    ])
    def test_sample_matches_kendall_tau(self, family, params):
        u, v = sample_pobs(family, params, n=4000, seed=11)
        tau = stats.kendalltau(u, v)[0]
        assert tau == pytest.approx(get_family(family).kendall_tau(params), abs=0.03)

    def test_negative_frank_sample(self):
        u, v = sample_pobs("frank", [-5.736], n=4000, seed=3)
        assert stats.kendalltau(u, v)[0] == pytest.approx(-0.5, abs=0.03)

    def test_samples_inside_unit_square(self):
        rng = np.random.default_rng(5)
        for name, params in [("clayton", [8.0]), ("gumbel", [6.0]), ("frank", [30.0])]:
            u, v = get_family(name).sample(params, 1000, rng)
            assert np.all((u >= 0) & (u <= 1)) and np.all((v >= 0) & (v <= 1))


class TestEstimation:
    @pytest.mark.parametrize("family,params,tol", [
        ("gaussian", [0.6], 0.05),
        ("clayton", [2.0], 0.3),
        ("gumbel", [2.0], 0.2),
        ("frank", [5.0], 0.6),
    ])
    def test_recovers_parameter(self, family, params, tol):
        u, v = sample_pobs(family, params, n=3000, seed=21)
        est = get_family(family).estimate(u, v)
        assert est[0] == pytest.approx(params[0], abs=tol)

    def test_t_recovers_rho_and_small_nu(self):
        u, v = sample_pobs("t", [0.6, 4.0], n=4000, seed=8)
        rho, nu = get_family("t").estimate(u, v)
        assert rho == pytest.approx(0.6, abs=0.05)
        assert 2.5 < nu < 8.0

    def test_estimate_maximizes_likelihood(self):
        fam = get_family("gumbel")
        u, v = sample_pobs("gumbel", [1.8], n=1500, seed=4)
        (theta,) = fam.estimate(u, v)
        best = fam.log_likelihood([theta], u, v)
        assert best >= fam.log_likelihood([theta + 0.1], u, v)
        assert best >= fam.log_likelihood([theta - 0.1], u, v)

    def test_clayton_fails_on_negative_dependence(self):
        u, v = sample_pobs("gaussian", [-0.6], n=1000, seed=2)
        with pytest.raises(FitError):
            get_family("clayton").estimate(u, v)

    def test_independence_density_is_flat(self):
        u = np.array([0.1, 0.5, 0.9])
        v = np.array([0.3, 0.6, 0.2])
        assert get_family("gumbel").log_likelihood([1.0], u, v) == pytest.approx(0.0, abs=1e-10)
        assert get_family("gaussian").log_likelihood([0.0], u, v) == pytest.approx(0.0, abs=1e-10)


class TestSurfaceAndKendall:
    def test_gaussian_surface_matches_bivariate_normal(self):
        u = np.array([0.2, 0.5, 0.8, 0.95])
        v = np.array([0.3, 0.5, 0.6, 0.9])
        rho = 0.6
        expected = [
            stats.multivariate_normal(mean=[0, 0], cov=[[1, rho], [rho, 1]]).cdf(
                [stats.norm.ppf(a), stats.norm.ppf(b)])
            for a, b in zip(u, v)
        ]
        got = get_family("gaussian").cdf([rho], u, v)
        np.testing.assert_allclose(got, expected, atol=1e-4)

    def test_t_surface_bounds(self):
        u = np.array([0.1, 0.5, 0.9])
        v = np.array([0.2, 0.5, 0.7])
        got = get_family("t").cdf([0.5, 4.0], u, v)
        assert np.all(got >= np.maximum(u + v - 1, 0) - 1e-4)
        assert np.all(got <= np.minimum(u, v) + 1e-4)

    @pytest.mark.parametrize("family,params", [
        ("clayton", [2.0]), ("gumbel", [2.0]), ("frank", [5.0]), ("frank", [-3.0]),
    ])
    def test_archimedean_kendall_function_is_cdf(self, family, params):
        w = np.linspace(0.0, 1.0, 101)
        k = get_family(family).kendall_cdf(params, w)
        assert k[-1] == pytest.approx(1.0, abs=1e-8)
        assert np.all(np.diff(k) >= -1e-12)
        assert np.all(k >= w - 1e-12)

    def test_kendall_function_matches_simulation(self):
        fam = get_family("gumbel")
        rng = np.random.default_rng(9)
        u, v = fam.sample([2.0], 20000, rng)
        w = dominance_counts(u, v) / (len(u) - 1.0)
        grid = np.array([0.1, 0.3, 0.5, 0.7])
        empirical = np.array([np.mean(w <= g) for g in grid])
        np.testing.assert_allclose(fam.kendall_cdf([2.0], grid), empirical, atol=0.02)


class TestDominanceCounts:
    def brute_force(self, u, v):
        return np.array([np.sum((u < ui) & (v < vi)) for ui, vi in zip(u, v)])

    @pytest.mark.parametrize("n", [1, 2, 7, 64, 257])
    def test_matches_quadratic_count(self, n):
        rng = np.random.default_rng(n)
        u = rng.permutation(n) + 0.5
        v = rng.permutation(n) + 0.25
        np.testing.assert_array_equal(dominance_counts(u, v), self.brute_force(u, v))

    def test_weighted_counts(self):
        rng = np.random.default_rng(3)
        u = rng.random(100)
        v = rng.random(100)
        weights = (np.arange(100) % 2).astype(float)
        expected = np.array([np.sum(weights[(u < a) & (v < b)]) for a, b in zip(u, v)])
        np.testing.assert_allclose(dominance_counts(u, v, weights), expected)
