"""One-call dose-response network analysis: fit, predict every agent, landmarks."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from numpy.typing import ArrayLike

from pynetdose._common import (
    DEFAULT_CONF_LEVEL,
    DEFAULT_PLATEAU_THRESHOLD,
    DEFAULT_TOL,
    Contrast,
    ReferenceSpec,
    UnknownAgentError,
)
from pynetdose._fit import FittedModel, fit_network
from pynetdose._landmarks import Landmarks, extract_landmarks
from pynetdose._predict import PredictionCurve, predict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    """Fitted model plus predicted curve and landmarks of each agent."""

    model: FittedModel
    curves: dict[str, PredictionCurve]
    landmarks: dict[str, Landmarks]

    def summary(self) -> str:
        lines = [self.model.summary(), "", "Landmarks:"]
        lines.append(f"  {'agent':>15s} {'BMD':>10s} {'BMDL':>10s} {'MED':>10s}  status")
        for agent, lm in self.landmarks.items():
            lines.append(
                f"  {agent:>15s} {lm.bmd:>10.4g} {lm.bmdl:>10.4g} {lm.med:>10.4g}  {lm.med_status}"
            )
        return "\n".join(lines)


def analyze(
    contrasts: Sequence[Contrast],
    reference: ReferenceSpec,
    effects_model: str = "random",
    *,
    benchmark_threshold: float | None = None,
    benchmark_type: str = "absolute",
    plateau_threshold: float = DEFAULT_PLATEAU_THRESHOLD,
    confidence_level: float = DEFAULT_CONF_LEVEL,
    dose_grids: Mapping[str, ArrayLike] | None = None,
    tol: float = DEFAULT_TOL,
) -> AnalysisResult:
    """Fit the network and derive curves and landmarks for every agent.

    Parameters
    ----------
    contrasts, reference, effects_model, tol
        Passed to :func:`fit_network`.
    benchmark_threshold, benchmark_type, plateau_threshold
        Passed to :func:`extract_landmarks`.
    confidence_level : float
        Confidence level of the predicted bands (and BMDL).
    dose_grids : mapping or None
        Optional per-agent dose grids; agents not listed use the default grid.
        The reference agent is not predicted and may not be listed.

    Returns
    -------
    AnalysisResult
    """
    model = fit_network(contrasts, reference, effects_model, tol=tol)

    grids = dict(dose_grids or {})
    unknown = sorted(set(grids) - set(model.agents))
    if unknown:
        raise UnknownAgentError(unknown[0], model.agents)
    if reference.agent in grids:
        raise ValueError(
            f"dose_grids cannot include the reference agent {reference.agent!r}; "
            "its curve is identically zero"
        )

    curves: dict[str, PredictionCurve] = {}
    landmarks: dict[str, Landmarks] = {}
    for agent in model.design.agents:
        curve = predict(model, agent, grids.get(agent), confidence_level)
        curves[agent] = curve
        landmarks[agent] = extract_landmarks(
            curve,
            benchmark_threshold,
            plateau_threshold,
            benchmark_type=benchmark_type,
        )
        if landmarks[agent].med_status == "not_estimable":
            logger.warning("curve of %r is not estimable on its dose grid", agent)

    logger.debug("analysed %d agents", len(curves))
    return AnalysisResult(model=model, curves=curves, landmarks=landmarks)
