"""
Tests for relative-fit aggregation across condition groups.
"""

import numpy as np
import pandas as pd
import pytest

from copula_sensitivity.aggregate import (
    RELATIVE_COLUMNS,
    add_relative_fit,
    build_report,
    check_unique_keys,
    combine_results,
    family_summary,
    order_columns,
    selection_frequency,
)


def rows(dataset_id, condition_id, aics, bics=None, fit_error=None):
    bics = bics or aics
    fit_error = fit_error or {}
    out = []
    for family, aic in aics.items():
        out.append({
            "dataset_id": dataset_id,
            "condition_id": condition_id,
            "family": family,
            "aic": aic,
            "bic": bics[family],
            "fit_error": fit_error.get(family),
            "gof_pass": None,
            "gof_statistic": None,
            "gof_method": None,
        })
    return out


@pytest.fixture
def two_conditions():
    data = rows("d1", 1, {"gaussian": -100.0, "gumbel": -120.0, "comonotonic": 50.0})
    data += rows("d1", 2, {"gaussian": -80.0, "gumbel": -60.0, "comonotonic": 90.0},
                 bics={"gaussian": -70.0, "gumbel": -75.0, "comonotonic": 90.0})
    return pd.DataFrame(data)


class TestRelativeFit:
    def test_best_and_deltas(self, two_conditions):
        df = add_relative_fit(two_conditions)
        first = df[df["condition_id"] == 1]
        assert set(first["best_aic"]) == {"gumbel"}
        assert first.set_index("family")["delta_aic"].to_dict() == pytest.approx(
            {"gaussian": 20.0, "gumbel": 0.0, "comonotonic": 170.0})
        second = df[df["condition_id"] == 2]
        assert set(second["best_aic"]) == {"gaussian"}
        assert set(second["best_bic"]) == {"gumbel"}

    def test_exactly_one_zero_delta_per_group(self, two_conditions):
        df = add_relative_fit(two_conditions)
        zeros = df[df["delta_aic"] == 0.0].groupby("condition_id").size()
        assert zeros.to_dict() == {1: 1, 2: 1}

    def test_weights_sum_to_one(self, two_conditions):
        df = add_relative_fit(two_conditions)
        sums = df.groupby("condition_id")["aic_weight"].sum()
        np.testing.assert_allclose(sums.to_numpy(), 1.0, atol=1e-9)
        assert (df["aic_weight"] >= 0).all()

    def test_weight_formula(self, two_conditions):
        df = add_relative_fit(two_conditions)
        first = df[df["condition_id"] == 1].set_index("family")
        raw = np.exp(-np.array([20.0, 0.0, 170.0]) / 2)
        expected = raw / raw.sum()
        np.testing.assert_allclose(
            first.loc[["gaussian", "gumbel", "comonotonic"], "aic_weight"], expected)

    def test_extreme_delta_underflows_to_zero(self):
        df = add_relative_fit(pd.DataFrame(
            rows("d1", 1, {"gumbel": -5000.0, "comonotonic": 1e6})))
        weights = df.set_index("family")["aic_weight"]
        assert weights["gumbel"] == pytest.approx(1.0)
        assert weights["comonotonic"] == 0.0
        assert not df["aic_weight"].isna().any()

    def test_failed_fits_excluded(self):
        data = rows("d1", 1, {"gaussian": -10.0, "clayton": np.nan},
                    fit_error={"clayton": "estimate at lower bound"})
        df = add_relative_fit(pd.DataFrame(data)).set_index("family")
        assert df.loc["gaussian", "aic_weight"] == pytest.approx(1.0)
        assert np.isnan(df.loc["clayton", "delta_aic"])
        assert np.isnan(df.loc["clayton", "aic_weight"])
        assert df.loc["clayton", "best_aic"] == "gaussian"

    def test_all_failed_group(self):
        data = rows("d1", 1, {"clayton": np.nan}, fit_error={"clayton": "x"})
        df = add_relative_fit(pd.DataFrame(data))
        assert df["delta_aic"].isna().all()

    def test_recompute_replaces_columns(self, two_conditions):
        once = add_relative_fit(two_conditions)
        twice = add_relative_fit(once)
        pd.testing.assert_frame_equal(once, twice)


class TestCombine:
    def test_same_condition_id_in_two_datasets(self):
        # Both datasets number their conditions from 1; groups must stay apart.
        a = pd.DataFrame(rows("d1", 1, {"gaussian": -10.0, "gumbel": -30.0}))
        b = pd.DataFrame(rows("d2", 1, {"gaussian": -50.0, "gumbel": -20.0}))
        combined = combine_results([a, b])
        best = combined.drop_duplicates("dataset_id").set_index("dataset_id")["best_aic"]
        assert best.to_dict() == {"d1": "gumbel", "d2": "gaussian"}
        sums = combined.groupby("dataset_id")["aic_weight"].sum()
        np.testing.assert_allclose(sums.to_numpy(), 1.0, atol=1e-9)

    def test_duplicate_keys_rejected(self):
        a = pd.DataFrame(rows("d1", 1, {"gaussian": -10.0}))
        with pytest.raises(ValueError, match="Duplicate"):
            combine_results([a, a.copy()])
        with pytest.raises(ValueError):
            check_unique_keys(pd.concat([a, a]))

    def test_empty_inputs(self):
        assert combine_results([]).empty
        assert combine_results([pd.DataFrame()]).empty


class TestSummaries:
    def test_selection_frequency(self, two_conditions):
        df = add_relative_fit(two_conditions)
        freq = selection_frequency(df, "aic").set_index("family")
        assert freq["n_best"].to_dict() == {"gumbel": 1, "gaussian": 1}
        assert freq["percent"].sum() == pytest.approx(100.0)
        with pytest.raises(ValueError):
            selection_frequency(df, "hqc")

    def test_family_summary(self, two_conditions):
        df = add_relative_fit(two_conditions)
        summary = family_summary(df).set_index("family")
        assert summary.loc["comonotonic", "n_best"] == 0
        assert summary.loc["gumbel", "n_fits"] == 2
        assert summary.index[0] in ("gaussian", "gumbel")

    def test_report(self, two_conditions):
        df = add_relative_fit(two_conditions)
        df.loc[0, "gof_method"] = "gof_failed: all 10 bootstrap replicates failed"
        report = build_report(1, 3, 1, df)
        assert (report.n_rows, report.n_failed_fits, report.n_failed_gof) == (6, 0, 1)
        assert "1 skipped" in report.summary()

    def test_order_columns(self, two_conditions):
        df = order_columns(add_relative_fit(two_conditions))
        cols = list(df.columns)
        assert cols[:2] == ["dataset_id", "condition_id"]
        assert cols.index("aic") < cols.index("fit_error") < cols.index(RELATIVE_COLUMNS[0])
