# src/fastpenkf/enkf/__init__.py
from .errors import (
    EnKFError,
    InvalidArgumentError,
    ShapeMismatchError,
    SingularMatrixError,
)

from .types import (
    EnsembleState,
    ObservationBatch,
    AnalysisConfig,
    AnalysisResult,
)

from .anomaly import anomaly
from .covariance import normalize_obs_cov, cov_sqrt, perturb_observations
from .update import fastpenkf_update, kalman_gain
from .diagnostics import nrms_of_mean_prediction, ensemble_spread
from .workflow import run_analysis

__all__ = [
    "EnKFError",
    "InvalidArgumentError",
    "ShapeMismatchError",
    "SingularMatrixError",
    "EnsembleState",
    "ObservationBatch",
    "AnalysisConfig",
    "AnalysisResult",
    "anomaly",
    "normalize_obs_cov",
    "cov_sqrt",
    "perturb_observations",
    "fastpenkf_update",
    "kalman_gain",
    "nrms_of_mean_prediction",
    "ensemble_spread",
    "run_analysis",
]
