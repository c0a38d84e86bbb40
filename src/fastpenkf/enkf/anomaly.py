# src/fastpenkf/enkf/anomaly.py
from __future__ import annotations
import numpy as np

from .errors import ShapeMismatchError


def anomaly(ens: np.ndarray) -> np.ndarray:
    """
    Deviations of each member (column) from the ensemble mean.

    ens : (M, Ne)  ->  (M, Ne), every row sums to zero across members.
    A single member gives an all-zero array.
    """
    ens = np.asarray(ens, dtype=float)
    if ens.ndim != 2:
        raise ShapeMismatchError(f"Ensemble must be 2D (M, Ne), got shape {ens.shape}")
    return ens - ens.mean(axis=1, keepdims=True)
