# src/fastpenkf/enkf/diagnostics.py
from __future__ import annotations
import numpy as np

from .covariance import normalize_obs_cov
from .errors import ShapeMismatchError


def nrms_of_mean_prediction(
    y: np.ndarray,              # (No,)
    HX: np.ndarray,             # (No, Ne)
    R: np.ndarray | float,
) -> float:
    """
    RMS of the ensemble-mean residual, whitened by the observation
    standard deviations sqrt(diag(R)). Values near 1 mean the mean
    prediction fits y to within the noise level.
    """
    y = np.asarray(y, float).reshape(-1)
    HX = np.asarray(HX, float)
    if HX.ndim != 2 or HX.shape[0] != y.size:
        raise ShapeMismatchError(f"HX must be ({y.size}, Ne), got shape {HX.shape}")

    sigma = np.sqrt(np.diagonal(normalize_obs_cov(R, y.size)))
    r = (y - HX.mean(axis=1)) / np.clip(sigma, 1e-12, None)
    return float(np.sqrt(np.mean(r**2)))


def ensemble_spread(ens: np.ndarray) -> np.ndarray:
    """Per-row standard deviation across members (ddof=1), shape (M,)."""
    ens = np.asarray(ens, float)
    if ens.ndim != 2:
        raise ShapeMismatchError(f"Ensemble must be 2D (M, Ne), got shape {ens.shape}")
    return ens.std(axis=1, ddof=1)
