"""
Fast parameter-space Ensemble Kalman Filter (EnKF) with perturbed observations.

This package provides:
- The EnKF analysis step in observation space (No x No systems only)
- Covariance normalization and perturbed-observation generation
- Ensemble diagnostics (nRMS of the mean prediction, spread)
"""
from .enkf import (
    AnalysisConfig,
    AnalysisResult,
    EnsembleState,
    ObservationBatch,
    EnKFError,
    InvalidArgumentError,
    ShapeMismatchError,
    SingularMatrixError,
    anomaly,
    fastpenkf_update,
    run_analysis,
)

__all__ = [
    "AnalysisConfig",
    "AnalysisResult",
    "EnsembleState",
    "ObservationBatch",
    "EnKFError",
    "InvalidArgumentError",
    "ShapeMismatchError",
    "SingularMatrixError",
    "anomaly",
    "fastpenkf_update",
    "run_analysis",
]
