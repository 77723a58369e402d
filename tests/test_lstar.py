"""Tests for the LSTAR estimator."""

import logging

import numpy as np
import pytest
from numpy.linalg import LinAlgError

from empfin import lstar
from empfin.data import simulate_lstar
from empfin.lstar import (
    EstimationType,
    compose_theta,
    estimate_lstar,
    grid_argmin,
    logistic_weight,
    lstar_loss,
    lstar_parameters,
    lstar_predict,
    moment_conditions,
    sse_over_grid,
)
from empfin.util import ols

G_GRID = [0.1, 1.0, 10.0]
C_GRID = [-1.0, 0.0, 1.0]


@pytest.fixture(scope="module")
def sample():
    return simulate_lstar(nobs=500, g=2.0, c=0.3, sigma=0.01, seed=11)


@pytest.fixture(scope="module")
def fitted(sample):
    return estimate_lstar(sample["y"], sample["x0"], sample["w"], sample["z"], G_GRID, C_GRID)


class TestParameters:
    @pytest.mark.parametrize(
        "gc_keep, theta, est_type",
        [
            (None, [1.5, -0.2, 1.0, 2.0, 3.0], EstimationType.BOTH),
            ([np.nan, np.nan], [1.5, -0.2, 1.0, 2.0, 3.0], EstimationType.BOTH),
            ([1.5, np.nan], [-0.2, 1.0, 2.0, 3.0], EstimationType.C_ONLY),
            ([np.nan, -0.2], [1.5, 1.0, 2.0, 3.0], EstimationType.G_ONLY),
            ([1.5, -0.2], [1.0, 2.0, 3.0], EstimationType.NEITHER),
        ],
    )
    def test_round_trip(self, gc_keep, theta, est_type):
        g, c, b, _, found = lstar_parameters(gc_keep, theta)
        assert found is est_type
        assert (g, c) == (1.5, -0.2)
        np.testing.assert_array_equal(b, [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(compose_theta(g, c, b, found), theta)

    def test_starting_values(self):
        assert lstar_parameters(None, [np.nan] * 3, (2.0, 0.5))[3].tolist() == [2.0, 0.5]
        assert lstar_parameters([1.0, np.nan], [np.nan] * 3, (2.0, 0.5))[3].tolist() == [0.5]
        assert lstar_parameters([np.nan, 1.0], [np.nan] * 3, (2.0, 0.5))[3].tolist() == [2.0]
        assert lstar_parameters([1.0, 1.0], [np.nan] * 3, (2.0, 0.5))[3].size == 0

    def test_slope_enters_in_absolute_value(self):
        g, _, _, _, _ = lstar_parameters(None, [-1.5, 0.0, 1.0])
        assert g == 1.5

    def test_invalid_configuration(self):
        with pytest.raises(ValueError, match="invalid case"):
            lstar_parameters([1.0, np.nan, 2.0], [1.0, 2.0])

    def test_transition_count(self):
        assert [t.n_transition for t in EstimationType] == [2, 1, 1, 0]


class TestTransition:
    def test_logistic_weight(self):
        G = logistic_weight(np.array([0.3, -1e3, 1e3]), 2.0, 0.3)
        np.testing.assert_allclose(G, [0.5, 0.0, 1.0])

    def test_symmetry_in_slope(self):
        z = np.linspace(-2, 2, 9)
        np.testing.assert_allclose(logistic_weight(z, -2.0, 0.1), 1.0 - logistic_weight(z, 2.0, 0.1))


class TestPredict:
    def setup_method(self):
        rng = np.random.default_rng(0)
        self.x0 = np.column_stack([np.ones(20), rng.normal(size=20)])
        self.w = rng.normal(size=(20, 1))
        self.z = rng.uniform(-1.0, 1.0, size=20)
        self.b = np.array([0.1, 0.2, -0.3, 0.4, 0.5])

    def test_lower_regime_only(self):
        y_hat, y_hat2, G = lstar_predict(self.x0, self.w, self.z, self.b, gc_keep=[50.0, 10.0])
        np.testing.assert_allclose(G, 0.0, atol=1e-100)
        np.testing.assert_allclose(y_hat, self.x0 @ self.b[:2] + self.w @ self.b[4:], atol=1e-12)
        np.testing.assert_allclose(y_hat2, 0.0, atol=1e-100)

    def test_upper_regime_only(self):
        y_hat, y_hat2, G = lstar_predict(self.x0, self.w, self.z, self.b, gc_keep=[50.0, -10.0])
        np.testing.assert_allclose(G, 1.0)
        np.testing.assert_allclose(y_hat, self.x0 @ self.b[2:4] + self.w @ self.b[4:], atol=1e-12)
        np.testing.assert_allclose(y_hat2, self.x0 @ self.b[2:4], atol=1e-12)


class TestLoss:
    def test_loss_matches_ols_on_blended_regressors(self, sample):
        G = logistic_weight(sample["z"], 1.0, 0.0)
        x = np.column_stack([sample["x0"] * (1 - G)[:, None], sample["x0"] * G[:, None]])
        expected = np.sum(ols(sample["y"], x).residuals ** 2)
        sse, det = lstar_loss([1.0, 0.0], sample["y"], sample["x0"], sample["w"], sample["z"])
        assert sse == pytest.approx(expected)
        assert det is None

    def test_details_with_fixed_transition(self, sample):
        sse, det = lstar_loss(
            [], sample["y"], sample["x0"], sample["w"], sample["z"], gc_keep=[2.0, 0.3], details=True
        )
        assert det.theta.size == 4
        np.testing.assert_allclose(det.theta, det.b)
        np.testing.assert_allclose(det.gc_hat, [2.0, 0.3])
        assert det.nobs == 500
        assert np.all(det.std_theta > 0)
        np.testing.assert_allclose(det.cov_theta, det.cov_theta.T, atol=1e-14)

    def test_moments_vanish_at_ls_estimate(self, sample):
        _, det = lstar_loss(
            [], sample["y"], sample["x0"], sample["w"], sample["z"], gc_keep=[2.0, 0.3], details=True
        )
        mbar, m = moment_conditions(det.theta, sample["y"], sample["x0"], sample["w"], sample["z"], [2.0, 0.3])
        assert m.shape == (500, 4)
        np.testing.assert_allclose(mbar, 0.0, atol=1e-12)

    def test_theta_of_wrong_length(self, sample):
        with pytest.raises(ValueError):
            moment_conditions([1.0, 2.0], sample["y"], sample["x0"], sample["w"], sample["z"], [2.0, 0.3])

    def test_rank_deficiency_propagates(self, sample):
        x0 = np.column_stack([sample["x0"], sample["x0"][:, 1]])
        with pytest.raises(LinAlgError):
            lstar_loss([1.0, 0.0], sample["y"], x0, None, sample["z"])

    @pytest.mark.parametrize("c", [10.0, -10.0])
    def test_one_sided_transition_is_single_regime(self, c):
        rng = np.random.default_rng(4)
        z = rng.uniform(-2.0, 2.0, size=500)
        x0 = np.column_stack([np.ones(500), z])
        y = x0 @ np.array([0.5, 1.5]) + 0.1 * rng.normal(size=500)
        single = np.sum(ols(y, x0).residuals ** 2)
        sse, _ = lstar_loss([1.0, c], y, x0, None, z)
        assert sse <= single * (1 + 1e-10)
        assert sse == pytest.approx(single, rel=0.02)


class TestGrid:
    def test_ties_resolved_in_row_major_order(self):
        assert grid_argmin(np.array([[2.0, 1.0], [1.0, 3.0]])) == (0, 1)
        assert grid_argmin(np.ones((2, 2))) == (0, 0)
        assert grid_argmin(np.array([[np.nan, 4.0], [0.5, 0.5]])) == (1, 0)

    def test_two_by_two_grid(self, sample):
        sse = sse_over_grid(sample["y"], sample["x0"], sample["w"], sample["z"], [1.0, 2.0], [0.0, 1.0])
        assert sse.shape == (2, 2)
        i, j = grid_argmin(sse)
        assert sse[i, j] == sse.min()
        assert np.flatnonzero(sse.ravel() == sse.min())[0] == i * 2 + j


class TestEstimation:
    def test_recovers_transition(self, fitted):
        assert fitted is not None
        assert fitted.est_type is EstimationType.BOTH
        assert fitted.theta.size == 6
        assert fitted.gc_hat[0] == pytest.approx(2.0, abs=0.3)
        assert fitted.gc_hat[1] == pytest.approx(0.3, abs=0.05)
        assert fitted.sse < 0.1
        assert fitted.r_squared > 0.99
        assert fitted.sse_grid.shape == (3, 3)

    def test_regime_coefficients(self, fitted):
        np.testing.assert_allclose(fitted.b, [0.0, 1.0, 1.0, -1.0], atol=0.05)
        np.testing.assert_allclose(fitted.slope_diff["diff"], [1.0, -2.0], atol=0.1)
        assert np.all(np.abs(fitted.slope_diff["tstat"]) > 10)

    def test_standard_errors(self, fitted):
        assert np.all(np.isfinite(fitted.std_theta))
        assert np.all(fitted.std_theta > 0)
        np.testing.assert_allclose(fitted.std_theta, np.sqrt(np.diag(fitted.cov_theta)))
        assert fitted.std_b_ols.size == 4

    def test_estimate_slope_only(self, sample):
        res = estimate_lstar(
            sample["y"], sample["x0"], sample["w"], sample["z"], G_GRID, C_GRID, gc_keep=[np.nan, 0.3]
        )
        assert res.est_type is EstimationType.G_ONLY
        assert res.theta.size == 5
        assert res.theta[0] == pytest.approx(2.0, abs=0.3)
        assert res.gc_hat[1] == 0.3

    def test_estimate_location_only(self, sample):
        res = estimate_lstar(
            sample["y"], sample["x0"], sample["w"], sample["z"], G_GRID, C_GRID, gc_keep=[2.0, np.nan]
        )
        assert res.est_type is EstimationType.C_ONLY
        assert res.theta[0] == pytest.approx(0.3, abs=0.05)

    def test_fixed_transition(self, sample):
        res = estimate_lstar(
            sample["y"], sample["x0"], sample["w"], sample["z"], G_GRID, C_GRID, gc_keep=[2.0, 0.3], nw_lags=3
        )
        assert res.est_type is EstimationType.NEITHER
        assert res.theta.size == 4
        np.testing.assert_allclose(res.gc_hat, [2.0, 0.3])

    def test_excise(self, sample):
        y = sample["y"].copy()
        z = sample["z"].copy()
        y[[3, 50]] = np.nan
        z[100] = np.nan
        res = estimate_lstar(y, sample["x0"], sample["w"], z, G_GRID, C_GRID, gc_keep=[2.0, 0.3], excise_it=True)
        keep = np.ones(500, dtype=bool)
        keep[[3, 50, 100]] = False
        ref = estimate_lstar(
            sample["y"][keep], sample["x0"][keep], sample["w"][keep], sample["z"][keep],
            G_GRID, C_GRID, gc_keep=[2.0, 0.3],
        )
        assert res.nobs == 497
        np.testing.assert_allclose(res.theta, ref.theta)

    def test_non_convergence_returns_none(self, sample, monkeypatch, caplog):
        monkeypatch.setattr(lstar, "LSTAR_MAXITER", 1)
        with caplog.at_level(logging.WARNING, logger="empfin.lstar"):
            res = estimate_lstar(sample["y"], sample["x0"], sample["w"], sample["z"], G_GRID, C_GRID)
        assert res is None
        assert "no convergence" in caplog.text
