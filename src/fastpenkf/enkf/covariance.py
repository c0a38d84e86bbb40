# src/fastpenkf/enkf/covariance.py
from __future__ import annotations
import logging
import numpy as np
from scipy.linalg import eigh

from .errors import InvalidArgumentError, ShapeMismatchError

logger = logging.getLogger(__name__)


def normalize_obs_cov(R: np.ndarray | float, n_obs: int) -> np.ndarray:
    """
    Expand an observation-error covariance to a full (No, No) matrix.

    Accepted forms
    --------------
    - one element      -> R * I_No
    - No elements (1D) -> diag(R)
    - (No, No) matrix  -> R itself, checked to be symmetric PSD

    Returns a new array; R is never modified.
    """
    C = np.asarray(R, dtype=float)
    if not np.all(np.isfinite(C)):
        raise InvalidArgumentError("R contains non-finite entries")

    if C.size == 1:
        r = float(C.reshape(()))
        if r < 0:
            raise InvalidArgumentError(f"Scalar R must be >= 0, got {r}")
        return r * np.eye(n_obs)

    if C.size == n_obs and (C.ndim == 1 or (C.ndim == 2 and 1 in C.shape)):
        variances = C.ravel()
        if np.any(variances < 0):
            raise InvalidArgumentError("Diagonal R must have non-negative variances")
        return np.diag(variances)

    if C.shape != (n_obs, n_obs):
        raise ShapeMismatchError(
            f"R must be a scalar, shape ({n_obs},) or ({n_obs}, {n_obs}); got shape {C.shape}"
        )

    scale = np.abs(C).max()
    if not np.allclose(C, C.T, rtol=1e-8, atol=1e-12 * scale):
        raise InvalidArgumentError("Full R must be symmetric")
    C = 0.5 * (C + C.T)

    w = np.linalg.eigvalsh(C)
    tol = n_obs * np.finfo(float).eps * np.abs(w).max()
    if w.min() < -tol:
        raise InvalidArgumentError(
            f"Full R must be positive semi-definite; smallest eigenvalue is {w.min():.3e}"
        )
    return C


def cov_sqrt(C: np.ndarray) -> np.ndarray:
    """
    Symmetric square root S of a PSD matrix, S @ S = C.

    Diagonal matrices take the elementwise root of the diagonal, so a scalar,
    a vector and the equivalent diagonal matrix produce the same factor.
    """
    C = np.asarray(C, dtype=float)
    d = np.diagonal(C)
    if np.count_nonzero(C - np.diag(d)) == 0:
        return np.diag(np.sqrt(np.clip(d, 0.0, None)))

    w, V = eigh(C)
    w = np.clip(w, 0.0, None)  # round-off below zero
    return (V * np.sqrt(w)) @ V.T


def check_alpha(alpha: float | None) -> float:
    """alpha as a float; None means no inflation."""
    if alpha is None:
        return 1.0
    if isinstance(alpha, (bool, np.bool_)):
        raise InvalidArgumentError(f"alpha must be a number, got {alpha!r}")
    try:
        alpha = float(alpha)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"alpha must be a number, got {alpha!r}") from exc
    if not np.isfinite(alpha) or alpha <= 0:
        raise InvalidArgumentError(f"alpha must be a finite positive number, got {alpha}")
    return alpha


def check_pert_stat(pert_stat: bool) -> bool:
    if not isinstance(pert_stat, (bool, np.bool_)):
        raise InvalidArgumentError(f"pert_stat must be a bool, got {pert_stat!r}")
    return bool(pert_stat)


def inflation_for_perturbation(alpha: float | None, pert_stat: bool) -> float:
    alpha = check_alpha(alpha)
    return alpha if check_pert_stat(pert_stat) else 1.0


def perturb_observations(
    y: np.ndarray,                # (No,)
    R: np.ndarray,                # (No, No) normalized
    n_members: int,
    alpha: float | None = None,
    pert_stat: bool = False,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Perturbed observation ensemble:

      Y = y 1^T + sqrt(alpha_pert R) Z,   Z ~ N(0, I), shape (No, Ne)

    Z is drawn fresh on every call; re-perturbing on each MDA pass
    reduces the accumulated sampling error.
    """
    if rng is None:
        rng = np.random.default_rng()

    y = np.asarray(y, dtype=float).reshape(-1)
    n_obs = y.size
    R = np.asarray(R, dtype=float)
    if R.shape != (n_obs, n_obs):
        raise ShapeMismatchError(f"R must have shape ({n_obs}, {n_obs}), got {R.shape}")

    alpha_pert = inflation_for_perturbation(alpha, pert_stat)
    logger.debug("Perturbing %d observations for %d members (alpha_pert=%g)", n_obs, n_members, alpha_pert)

    Z = rng.standard_normal(size=(n_obs, n_members))
    return y[:, None] + cov_sqrt(alpha_pert * R) @ Z
