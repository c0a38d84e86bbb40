# src/fastpenkf/enkf/workflow.py
from __future__ import annotations
import numpy as np

from .types import EnsembleState, ObservationBatch, AnalysisConfig, AnalysisResult
from .diagnostics import nrms_of_mean_prediction, ensemble_spread
from .errors import ShapeMismatchError
from .update import fastpenkf_update


def run_analysis(
    state: EnsembleState,
    obs: ObservationBatch,
    config: AnalysisConfig = AnalysisConfig(),
    rng: np.random.Generator | None = None,
) -> AnalysisResult:
    """
    One analysis step on typed inputs:
      1) prior misfit of the mean prediction
      2) fast EnKF update of the parameters
      3) prior / posterior parameter spread
    """
    if obs.n_obs != state.n_obs:
        raise ShapeMismatchError(
            f"Observation batch has {obs.n_obs} values but the ensemble predicts {state.n_obs}"
        )

    R = obs.cov()
    prior_nrms = nrms_of_mean_prediction(obs.values, state.predicted, R)

    params_upd = fastpenkf_update(
        state.params,
        state.predicted,
        obs.values,
        R,
        alpha=config.alpha,
        pert_stat=config.pert_stat,
        rng=rng,
    )

    return AnalysisResult(
        params_updated=params_upd,
        prior_nrms=prior_nrms,
        prior_spread=ensemble_spread(state.params),
        posterior_spread=ensemble_spread(params_upd),
    )
