# src/fastpenkf/enkf/types.py
from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from .errors import ShapeMismatchError
from .covariance import normalize_obs_cov, check_alpha, check_pert_stat


@dataclass(frozen=True)
class EnsembleState:
    """
    Prior ensemble and its predicted observations.

      - params:    (Np, Ne) parameter ensemble, one member per column
      - predicted: (No, Ne) forward-model output for each member
    """
    params: np.ndarray            # (Np, Ne)
    predicted: np.ndarray         # (No, Ne)

    def __post_init__(self) -> None:
        params = np.asarray(self.params, dtype=float)
        predicted = np.asarray(self.predicted, dtype=float)

        if params.ndim != 2 or predicted.ndim != 2:
            raise ShapeMismatchError(
                f"params and predicted must be 2D, got {params.shape} and {predicted.shape}"
            )
        if params.shape[1] != predicted.shape[1]:
            raise ShapeMismatchError(
                f"params and predicted must have the same ensemble size, "
                f"got {params.shape[1]} and {predicted.shape[1]}"
            )

        object.__setattr__(self, "params", params)
        object.__setattr__(self, "predicted", predicted)

    @property
    def n_params(self) -> int:
        return int(self.params.shape[0])

    @property
    def n_obs(self) -> int:
        return int(self.predicted.shape[0])

    @property
    def n_members(self) -> int:
        return int(self.params.shape[1])


@dataclass(frozen=True)
class ObservationBatch:
    """
    Observed values and their error covariance.

    error_cov may be a scalar (r * I), a (No,) vector of variances
    or a full (No, No) covariance matrix.
    """
    values: np.ndarray                  # (No,)
    error_cov: np.ndarray | float

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=float)
        if values.ndim == 2 and values.shape[1] == 1:
            values = values[:, 0]
        if values.ndim != 1:
            raise ShapeMismatchError(f"values must be 1D (No,), got shape {values.shape}")
        object.__setattr__(self, "values", values)

    @property
    def n_obs(self) -> int:
        return int(self.values.size)

    def cov(self) -> np.ndarray:
        return normalize_obs_cov(self.error_cov, self.n_obs)


@dataclass(frozen=True)
class AnalysisConfig:
    alpha: float = 1.0        # R inflation for MDA passes
    pert_stat: bool = False   # also scale the y perturbation by alpha

    def __post_init__(self) -> None:
        object.__setattr__(self, "alpha", check_alpha(self.alpha))
        object.__setattr__(self, "pert_stat", check_pert_stat(self.pert_stat))


@dataclass(frozen=True)
class AnalysisResult:
    params_updated: np.ndarray        # (Np, Ne)
    prior_nrms: float
    prior_spread: np.ndarray          # (Np,)
    posterior_spread: np.ndarray      # (Np,)
