# src/fastpenkf/enkf/update.py
from __future__ import annotations
import logging
import numpy as np
from scipy.linalg import get_lapack_funcs

from .anomaly import anomaly
from .covariance import normalize_obs_cov, perturb_observations, check_alpha, check_pert_stat
from .errors import InvalidArgumentError, ShapeMismatchError, SingularMatrixError

logger = logging.getLogger(__name__)


def _solve_gain_system(S: np.ndarray, B: np.ndarray) -> np.ndarray:
    """
    Solve S X = B by LU with partial pivoting.

    Same LAPACK path as scipy.linalg.solve (getrf, gecon, getrs), but a
    reciprocal condition below machine epsilon raises SingularMatrixError
    instead of emitting a LinAlgWarning.
    """
    getrf, gecon, getrs = get_lapack_funcs(("getrf", "gecon", "getrs"), (S, B))
    n = S.shape[0]

    anorm = np.linalg.norm(S, 1)
    lu, piv, info = getrf(S)
    if info > 0:
        raise SingularMatrixError(
            f"Gain system ({n}x{n}) is exactly singular: pivot {info - 1} is zero",
            rcond=0.0,
        )

    rcond, info = gecon(lu, anorm, norm="1")
    rcond = float(rcond)
    if not rcond >= np.finfo(float).eps:
        raise SingularMatrixError(
            f"Gain system ({n}x{n}) is ill-conditioned: reciprocal condition number {rcond:.3e}",
            rcond=rcond,
        )

    X, info = getrs(lu, piv, B)
    return X


def kalman_gain(
    A: np.ndarray,        # (Np, Ne) parameter anomalies
    HE: np.ndarray,       # (No, Ne) predicted-observation anomalies
    R: np.ndarray | float,
    alpha: float = 1.0,
) -> np.ndarray:
    """
    K = C_AHE (C_HEHE + Ne alpha R)^{-1},  shape (Np, No)

    C_AHE = A HE^T and C_HEHE = HE HE^T are left unnormalized; the Ne factor
    on R matches them. Only No x No systems are formed, never Ne x Ne.
    R takes any form accepted by normalize_obs_cov.
    """
    A = np.asarray(A, dtype=float)
    HE = np.asarray(HE, dtype=float)
    if A.ndim != 2 or HE.ndim != 2:
        raise ShapeMismatchError(f"A and HE must be 2D, got shapes {A.shape} and {HE.shape}")
    n_obs, n_members = HE.shape
    if A.shape[1] != n_members:
        raise ShapeMismatchError(
            f"A and HE must have the same ensemble size, got {A.shape[1]} and {n_members}"
        )
    R = normalize_obs_cov(R, n_obs)
    alpha = check_alpha(alpha)

    C_AHE = A @ HE.T                      # (Np, No)
    C_HEHE = HE @ HE.T                    # (No, No)
    aC_DD = (n_members * alpha) * R       # (No, No)

    # K S = C_AHE  <=>  S^T K^T = C_AHE^T
    Kt = _solve_gain_system((C_HEHE + aC_DD).T, C_AHE.T)
    return Kt.T


def _validate_inputs(
    T: np.ndarray,
    HX: np.ndarray,
    y: np.ndarray,
    alpha: float | None,
    pert_stat: bool,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, float, bool]:
    T = np.asarray(T, dtype=float)
    HX = np.asarray(HX, dtype=float)
    y = np.asarray(y, dtype=float)

    if T.ndim != 2:
        raise ShapeMismatchError(f"T must be 2D (Np, Ne), got shape {T.shape}")
    if HX.ndim != 2:
        raise ShapeMismatchError(f"HX must be 2D (No, Ne), got shape {HX.shape}")
    n_obs, n_members = HX.shape
    if T.shape[1] != n_members:
        raise ShapeMismatchError(
            f"T and HX must have the same ensemble size, got {T.shape[1]} and {n_members}"
        )
    if n_members < 2:
        raise InvalidArgumentError(f"Ensemble size must be >= 2, got {n_members}")

    if y.ndim == 2 and y.shape[1] == 1:
        y = y[:, 0]
    if y.shape != (n_obs,):
        raise ShapeMismatchError(f"y must have shape ({n_obs},) or ({n_obs}, 1), got {y.shape}")

    alpha = check_alpha(alpha)
    pert_stat = check_pert_stat(pert_stat)

    for name, arr in (("T", T), ("HX", HX), ("y", y)):
        if not np.all(np.isfinite(arr)):
            raise InvalidArgumentError(f"{name} contains non-finite entries")

    return T, HX, y, alpha, pert_stat


def fastpenkf_update(
    T: np.ndarray,                    # (Np, Ne)
    HX: np.ndarray,                   # (No, Ne)
    y: np.ndarray,                    # (No,) or (No, 1)
    R: np.ndarray | float,            # scalar, (No,) or (No, No)
    alpha: float | None = None,
    pert_stat: bool = False,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Parameter-space EnKF analysis with perturbed observations:

      T_a = T + K (Y - HX),   K = C_AHE (C_HEHE + Ne alpha R)^{-1}

    where Y = y + sqrt(alpha_pert R) Z and alpha_pert = alpha if pert_stat
    else 1. Works sequentially (No = observations at one time) or as a batch
    smoother (all observations of a window stacked into y and HX).

    Parameters
    ----------
    T : (Np, Ne) prior parameter ensemble
    HX : (No, Ne) predicted observations of each member
    y : (No,) observations
    R : observation error covariance; scalar (R I), (No,) diagonal or (No, No)
    alpha : R inflation for multiple data assimilation, None -> 1
    pert_stat : scale the observation perturbation by alpha as well
    rng : random generator for the perturbation; None -> fresh default_rng()

    Returns
    -------
    T_a : (Np, Ne) posterior ensemble (new array; inputs are not modified)

    Raises
    ------
    ShapeMismatchError, InvalidArgumentError, SingularMatrixError
    """
    T, HX, y, alpha, pert_stat = _validate_inputs(T, HX, y, alpha, pert_stat)
    n_obs, n_members = HX.shape
    R = normalize_obs_cov(R, n_obs)

    logger.debug(
        "EnKF analysis: Np=%d No=%d Ne=%d alpha=%g pert_stat=%s",
        T.shape[0], n_obs, n_members, alpha, pert_stat,
    )

    Y = perturb_observations(y, R, n_members, alpha=alpha, pert_stat=pert_stat, rng=rng)

    A = anomaly(T)            # (Np, Ne)
    HE = anomaly(HX)          # (No, Ne)
    Inn = Y - HX              # (No, Ne)

    K = kalman_gain(A, HE, R, alpha)   # (Np, No)
    T_a = T + K @ Inn

    if not np.all(np.isfinite(T_a)):
        raise SingularMatrixError("Analysis produced non-finite values")
    return T_a
