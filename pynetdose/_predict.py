"""Predicted dose-response curves with delta-method confidence bands.

For an agent ``a`` and grid doses ``d_1 < ... < d_m`` the predicted effect
relative to the reference is ``B beta`` where row ``i`` of ``B`` is the
reference-relative basis of ``a`` at ``d_i``.  Its standard error is
``sqrt(diag(B Cov(beta) B'))``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.stats import norm
from scipy.stats import t as t_dist

from pynetdose._common import (
    DEFAULT_CONF_LEVEL,
    DEFAULT_N_POINTS,
    InvalidDoseError,
    UnknownAgentError,
)
from pynetdose._fit import FittedModel


@dataclass(frozen=True)
class PredictionCurve:
    """Predicted response of one agent over an increasing dose grid."""

    agent: str
    dose: NDArray[np.floating]
    response: NDArray[np.floating]
    se: NDArray[np.floating]
    ci_lower: NDArray[np.floating]
    ci_upper: NDArray[np.floating]
    conf_level: float
    ci_method: str  # 'normal' or 't'
    effects_model: str
    reference_dose: float = 0.0
    estimable: NDArray[np.bool_] | None = None  # NaN response where False

    @property
    def is_estimable(self) -> bool:
        """True if every grid point lies in the identifiable row space."""
        if self.estimable is None:
            return bool(np.all(np.isfinite(self.response)))
        return bool(np.all(self.estimable))

    def __len__(self) -> int:
        return len(self.dose)

    def summary(self, n_rows: int = 10) -> str:
        """Tabular summary of (up to) *n_rows* evenly spread grid points."""
        idx = np.unique(np.linspace(0, len(self.dose) - 1, min(n_rows, len(self.dose))).astype(int))
        pct = f"{self.conf_level:.0%}"
        lines = [
            f"Predicted dose-response: {self.agent} ({self.effects_model} effects)",
            "",
            f"  {'dose':>10s} {'response':>10s} {'SE':>10s}   {pct} CI",
        ]
        for i in idx:
            lines.append(
                f"  {self.dose[i]:>10.4g} {self.response[i]:>10.4f} {self.se[i]:>10.4f}"
                f"   [{self.ci_lower[i]:.4f}, {self.ci_upper[i]:.4f}]"
            )
        return "\n".join(lines)


def default_dose_grid(
    model: FittedModel,
    agent: str,
    n_points: int = DEFAULT_N_POINTS,
) -> NDArray[np.floating]:
    """Evenly spaced grid from the reference dose to the agent's maximum dose.

    A single point is returned when the agent was never observed above the
    reference dose.
    """
    if agent not in model.design.bases:
        raise UnknownAgentError(agent, model.agents)
    if n_points < 2:
        raise ValueError(f"n_points must be >= 2, got {n_points}")
    lo = model.reference.dose
    hi = model.design.max_dose.get(agent, lo)
    if hi <= lo:
        return np.array([lo])
    return np.linspace(lo, hi, n_points)


def estimable_rows(
    B: NDArray[np.floating],
    row_space: NDArray[np.floating],
    tol: float,
) -> NDArray[np.bool_]:
    """Rows of *B* lying in the estimable coefficient space.

    A row ``b`` is estimable when ``||b - b R R'|| <= sqrt(tol) * ||b||``
    for the orthonormal row space ``R`` of the fit; zero rows always are.
    """
    off = B - (B @ row_space) @ row_space.T
    return np.linalg.norm(off, axis=1) <= np.sqrt(tol) * np.linalg.norm(B, axis=1)


def _check_grid(dose_grid: ArrayLike) -> NDArray[np.floating]:
    grid = np.asarray(dose_grid, dtype=np.float64)
    if grid.ndim != 1:
        raise ValueError("dose_grid must be a 1-D array")
    if len(grid) == 0:
        raise ValueError("dose_grid must not be empty")
    bad = ~np.isfinite(grid) | (grid < 0)
    if np.any(bad):
        d = float(grid[np.argmax(bad)])
        raise InvalidDoseError(f"dose_grid must be finite and >= 0, got {d!r}", dose=d)
    if np.any(np.diff(grid) <= 0):
        raise ValueError("dose_grid must be strictly increasing")
    return grid


def predict(
    model: FittedModel,
    agent: str,
    dose_grid: ArrayLike | None = None,
    confidence_level: float = DEFAULT_CONF_LEVEL,
    *,
    ci_method: str = "normal",
    n_points: int = DEFAULT_N_POINTS,
) -> PredictionCurve:
    """Predict an agent's dose-response curve relative to the reference.

    Parameters
    ----------
    model : FittedModel
        Common- or random-effects fit from :func:`fit_network`.
    agent : str
        Agent to predict.
    dose_grid : array or None
        Strictly increasing, non-negative doses.  Default: *n_points*
        evenly spaced doses from the reference dose to the maximum dose
        observed for *agent*.
    confidence_level : float
        Two-sided confidence level (default 0.95).
    ci_method : str
        ``'normal'`` (z quantile) or ``'t'`` (t quantile on the residual
        degrees of freedom of the fit).
    n_points : int
        Size of the default grid.

    Returns
    -------
    PredictionCurve
        Grid points outside the identifiable row space of a rank-deficient
        fit have NaN response, SE and bounds; ``estimable`` marks them.

    Raises
    ------
    UnknownAgentError
        If *agent* is not in the fitted network.
    """
    if agent not in model.design.bases:
        raise UnknownAgentError(agent, model.agents)
    if not (0.0 < confidence_level < 1.0):
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
    if ci_method not in ("normal", "t"):
        raise ValueError(f"ci_method must be 'normal' or 't', got {ci_method!r}")

    if dose_grid is None:
        grid = default_dose_grid(model, agent, n_points)
    else:
        grid = _check_grid(dose_grid)

    B = model.design.basis_rows(agent, grid)
    estimable = estimable_rows(B, model.row_space, model.tol)
    response = B @ model.coefficients
    var = np.einsum("ij,jk,ik->i", B, model.cov, B)
    se = np.sqrt(np.maximum(var, 0.0))
    response[~estimable] = np.nan
    se[~estimable] = np.nan

    alpha = 1.0 - confidence_level
    if ci_method == "normal":
        q = norm.ppf(1.0 - alpha / 2.0)
    else:
        if model.df_Q < 1:
            raise ValueError(
                f"t intervals need at least 1 residual degree of freedom, got {model.df_Q}"
            )
        q = t_dist.ppf(1.0 - alpha / 2.0, model.df_Q)

    return PredictionCurve(
        agent=agent,
        dose=grid,
        response=response,
        se=se,
        ci_lower=response - q * se,
        ci_upper=response + q * se,
        conf_level=confidence_level,
        ci_method=ci_method,
        effects_model=model.effects_model,
        reference_dose=model.reference.dose,
        estimable=estimable,
    )
