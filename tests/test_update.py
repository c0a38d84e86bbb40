"""Tests for the fast parameter-space EnKF analysis step."""
import warnings

import numpy as np
import pytest
from scipy.linalg import LinAlgWarning

from fastpenkf.enkf import (
    anomaly,
    fastpenkf_update,
    kalman_gain,
    normalize_obs_cov,
    EnKFError,
    InvalidArgumentError,
    ShapeMismatchError,
    SingularMatrixError,
)


def _problem(Np, No, Ne, seed=0):
    rng = np.random.default_rng(seed)
    T = rng.standard_normal((Np, Ne))
    H = rng.standard_normal((No, Np))
    HX = H @ T + 0.1 * rng.standard_normal((No, Ne))
    y = rng.standard_normal(No)
    return T, HX, y


class TestFastpEnKFUpdate:

    @pytest.mark.parametrize("Np", [1, 3])
    @pytest.mark.parametrize("No", [1, 2, 5])
    @pytest.mark.parametrize("Ne", [2, 5, 50])
    def test_output_shape(self, Np, No, Ne):
        T, HX, y = _problem(Np, No, Ne)
        T_a = fastpenkf_update(T, HX, y, 0.1, rng=np.random.default_rng(1))

        assert T_a.shape == (Np, Ne)
        assert np.all(np.isfinite(T_a))

    def test_deterministic_with_seed(self):
        T, HX, y = _problem(3, 4, 20)
        T_a1 = fastpenkf_update(T, HX, y, 0.5, alpha=2.0, pert_stat=True, rng=np.random.default_rng(42))
        T_a2 = fastpenkf_update(T, HX, y, 0.5, alpha=2.0, pert_stat=True, rng=np.random.default_rng(42))
        np.testing.assert_array_equal(T_a1, T_a2)

    def test_reperturbs_on_each_call(self):
        T, HX, y = _problem(3, 4, 20)
        rng = np.random.default_rng(7)
        T_a1 = fastpenkf_update(T, HX, y, 0.5, rng=rng)
        T_a2 = fastpenkf_update(T, HX, y, 0.5, rng=rng)
        assert not np.array_equal(T_a1, T_a2)

    def test_default_rng(self):
        T, HX, y = _problem(2, 3, 10)
        assert fastpenkf_update(T, HX, y, 1.0).shape == (2, 10)

    def test_r_forms_are_equivalent(self):
        T, HX, y = _problem(3, 4, 30)
        r = 0.7
        forms = [r, np.full(4, r), r * np.eye(4)]

        results = [fastpenkf_update(T, HX, y, R, alpha=1.0, rng=np.random.default_rng(11)) for R in forms]

        np.testing.assert_allclose(results[1], results[0], rtol=1e-12, atol=1e-12)
        np.testing.assert_allclose(results[2], results[0], rtol=1e-12, atol=1e-12)

    def test_column_vector_y(self):
        T, HX, y = _problem(2, 3, 10)
        T_a1 = fastpenkf_update(T, HX, y, 1.0, rng=np.random.default_rng(3))
        T_a2 = fastpenkf_update(T, HX, y[:, None], 1.0, rng=np.random.default_rng(3))
        np.testing.assert_array_equal(T_a1, T_a2)

    def test_no_spread_in_predictions_leaves_prior(self):
        T = np.array([[0.0, 0.0, 0.0]])
        HX = np.array([[1.0, 1.0, 1.0]])
        y = np.array([2.0])

        T_a = fastpenkf_update(T, HX, y, 1.0, alpha=1.0, pert_stat=False, rng=np.random.default_rng(0))

        np.testing.assert_array_equal(T_a, T)

    def test_strong_observation_limit(self):
        rng = np.random.default_rng(5)
        T = rng.standard_normal((3, 50))
        HX = T.copy()
        y = np.array([0.3, -1.2, 2.0])

        T_a = fastpenkf_update(T, HX, y, 1e-10, rng=rng)

        np.testing.assert_allclose(T_a, np.repeat(y[:, None], 50, axis=1), atol=1e-3)

    def test_no_information_limit(self):
        T, HX, y = _problem(3, 2, 40)
        T_a = fastpenkf_update(T, HX, y, 1e12, rng=np.random.default_rng(8))
        np.testing.assert_allclose(T_a, T, atol=1e-3)

    def test_inputs_not_modified(self):
        T, HX, y = _problem(2, 2, 10)
        R = np.array([[1.0, 0.2], [0.2, 0.5]])
        copies = [a.copy() for a in (T, HX, y, R)]

        T_a = fastpenkf_update(T, HX, y, R, alpha=3.0, pert_stat=True, rng=np.random.default_rng(0))

        for before, after in zip(copies, (T, HX, y, R)):
            np.testing.assert_array_equal(before, after)
        assert T_a is not T

    def test_update_reduces_spread(self):
        T, HX, y = _problem(3, 5, 200, seed=9)
        T_a = fastpenkf_update(T, HX, y, 0.01, rng=np.random.default_rng(9))
        assert np.all(T_a.std(axis=1) < T.std(axis=1))

    def test_inflation_weakens_update(self):
        T, HX, y = _problem(3, 5, 200, seed=10)
        shift_1 = np.abs(fastpenkf_update(T, HX, y, 0.1, alpha=1.0, rng=np.random.default_rng(0)).mean(axis=1) - T.mean(axis=1))
        shift_100 = np.abs(fastpenkf_update(T, HX, y, 0.1, alpha=100.0, rng=np.random.default_rng(0)).mean(axis=1) - T.mean(axis=1))
        assert shift_100.sum() < shift_1.sum()


class TestKalmanGain:

    def test_matches_normalized_covariance_form(self):
        T, HX, _ = _problem(3, 4, 25)
        R = normalize_obs_cov(np.array([0.2, 0.3, 0.4, 0.5]), 4)
        alpha = 2.0
        Ne = T.shape[1]

        A, HE = anomaly(T), anomaly(HX)
        C_md = A @ HE.T / (Ne - 1)
        C_dd = HE @ HE.T / (Ne - 1)
        # unnormalized form scales R by Ne instead of Ne - 1
        K_ref = C_md @ np.linalg.inv(C_dd + alpha * Ne / (Ne - 1) * R)

        K = kalman_gain(A, HE, R, alpha)

        assert K.shape == (3, 4)
        np.testing.assert_allclose(K, K_ref, rtol=1e-8, atol=1e-12)

    def test_singular_system_raises(self):
        A = np.array([[1.0, -1.0]])
        HE = np.zeros((2, 2))
        with pytest.raises(SingularMatrixError):
            kalman_gain(A, HE, np.zeros((2, 2)))

    def test_scalar_r_matches_identity_form(self):
        T, HX, _ = _problem(2, 3, 10)
        A, HE = anomaly(T), anomaly(HX)

        K_scalar = kalman_gain(A, HE, 0.5)
        K_full = kalman_gain(A, HE, 0.5 * np.eye(3))
        K_vec = kalman_gain(A, HE, np.full(3, 0.5))

        np.testing.assert_allclose(K_scalar, K_full, rtol=1e-12, atol=1e-14)
        np.testing.assert_allclose(K_vec, K_full, rtol=1e-12, atol=1e-14)

    def test_member_count_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            kalman_gain(np.zeros((2, 4)), np.ones((3, 5)), np.eye(3))

    def test_r_shape_mismatch(self):
        T, HX, _ = _problem(2, 3, 10)
        with pytest.raises(ShapeMismatchError):
            kalman_gain(anomaly(T), anomaly(HX), np.eye(2))

    def test_bad_alpha(self):
        T, HX, _ = _problem(2, 3, 10)
        with pytest.raises(InvalidArgumentError):
            kalman_gain(anomaly(T), anomaly(HX), 1.0, alpha=-2.0)

    def test_ill_conditioned_system_raises(self):
        # second observation is a 1e-9 copy of the first; R leaves the
        # (1, 1) pivot at about 2e-30
        A = np.array([[1.0, -1.0]])
        HE = np.array([[1.0, -1.0], [1e-9, -1e-9]])
        R = np.array([0.0, 1e-30])

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            with pytest.raises(SingularMatrixError) as ei:
                kalman_gain(A, HE, R)

        assert 0.0 < ei.value.rcond < np.finfo(float).eps
        assert "reciprocal condition" in str(ei.value)
        assert not any(issubclass(w.category, LinAlgWarning) for w in caught)

    def test_exactly_singular_reports_zero_rcond(self):
        with pytest.raises(SingularMatrixError) as ei:
            kalman_gain(np.array([[1.0, -1.0]]), np.zeros((2, 2)), 0.0)
        assert ei.value.rcond == 0.0


class TestFastpEnKFErrors:

    def test_r_element_count_mismatch(self):
        T = np.zeros((1, 3))
        HX = np.array([[1.0, 2.0, 3.0]])
        with pytest.raises(ShapeMismatchError):
            fastpenkf_update(T, HX, np.array([2.0]), np.ones(4))

    def test_singular_gain_system(self):
        T = np.array([[0.0, 1.0, 2.0]])
        HX = np.ones((2, 3))
        with pytest.raises(SingularMatrixError):
            fastpenkf_update(T, HX, np.zeros(2), 0.0, rng=np.random.default_rng(0))

    def test_nearly_rank_deficient_predictions(self):
        T = np.array([[0.0, 1.0, 2.0]])
        HX = np.array([[0.0, 1.0, 2.0], [0.0, 1.0, 2.0 + 1e-9]])
        with pytest.raises(SingularMatrixError) as ei:
            fastpenkf_update(T, HX, np.array([1.0, 2.0]), 1e-20, rng=np.random.default_rng(0))
        assert ei.value.rcond < np.finfo(float).eps

    @pytest.mark.parametrize("pert_stat", ["no", 0, None])
    def test_non_bool_pert_stat(self, pert_stat):
        T, HX, y = _problem(2, 2, 5)
        with pytest.raises(InvalidArgumentError):
            fastpenkf_update(T, HX, y, 1.0, alpha=2.0, pert_stat=pert_stat)

    def test_single_member(self):
        with pytest.raises(InvalidArgumentError):
            fastpenkf_update(np.zeros((2, 1)), np.zeros((1, 1)), np.zeros(1), 1.0)

    @pytest.mark.parametrize("alpha", [0.0, -1.0, np.inf])
    def test_bad_alpha(self, alpha):
        T, HX, y = _problem(2, 2, 5)
        with pytest.raises(InvalidArgumentError):
            fastpenkf_update(T, HX, y, 1.0, alpha=alpha)

    def test_ensemble_size_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            fastpenkf_update(np.zeros((2, 5)), np.zeros((3, 4)), np.zeros(3), 1.0)

    def test_wrong_y_size(self):
        T, HX, _ = _problem(2, 3, 5)
        with pytest.raises(ShapeMismatchError):
            fastpenkf_update(T, HX, np.zeros(2), 1.0)

    def test_1d_ensemble(self):
        with pytest.raises(ShapeMismatchError):
            fastpenkf_update(np.zeros(5), np.zeros((1, 5)), np.zeros(1), 1.0)

    def test_indefinite_r(self):
        T, HX, y = _problem(2, 2, 5)
        with pytest.raises(InvalidArgumentError):
            fastpenkf_update(T, HX, y, np.array([[1.0, 2.0], [2.0, 1.0]]))

    def test_non_finite_input(self):
        T, HX, y = _problem(2, 2, 5)
        HX[0, 0] = np.nan
        with pytest.raises(InvalidArgumentError):
            fastpenkf_update(T, HX, y, 1.0)

    def test_error_hierarchy(self):
        assert issubclass(ShapeMismatchError, ValueError)
        assert issubclass(InvalidArgumentError, ValueError)
        assert issubclass(SingularMatrixError, np.linalg.LinAlgError)
        for exc in (ShapeMismatchError, InvalidArgumentError, SingularMatrixError):
            assert issubclass(exc, EnKFError)
