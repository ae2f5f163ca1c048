"""Shared types, defaults and errors for dose-response network meta-analysis."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_TOL = 1e-10  # relative singular-value cutoff for the pseudo-inverse
DEFAULT_CONF_LEVEL = 0.95
DEFAULT_N_POINTS = 100
DEFAULT_PLATEAU_THRESHOLD = 1e-4
DEFAULT_KNOT_QUANTILES = (0.1, 0.5, 0.9)

EFFECTS_MODELS = ("common", "random")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class NetdoseError(ValueError):
    """Base class for dose-response network errors."""


class InvalidReferenceError(NetdoseError):
    """Reference agent is missing or some agents cannot be reached from it."""

    def __init__(self, message: str, unreachable: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.unreachable = tuple(unreachable)


class InvalidDoseError(NetdoseError):
    """Negative or non-finite dose."""

    def __init__(
        self,
        message: str,
        *,
        studlab: str | None = None,
        agent: str | None = None,
        dose: float | None = None,
    ) -> None:
        super().__init__(message)
        self.studlab = studlab
        self.agent = agent
        self.dose = dose


class SingularDesignError(NetdoseError):
    """Weighted normal equations cannot be pseudo-inverted to tolerance."""

    def __init__(self, message: str, aliased: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.aliased = tuple(aliased)


class UnknownAgentError(NetdoseError):
    """Agent was not part of the fitted network."""

    def __init__(self, agent: str, known: Sequence[str] = ()) -> None:
        super().__init__(
            f"agent {agent!r} is not in the fitted network "
            f"(known agents: {', '.join(known)})"
        )
        self.agent = agent


def check_dose(
    dose: float,
    *,
    studlab: str | None = None,
    agent: str | None = None,
) -> float:
    """Return *dose* as float, raising InvalidDoseError if negative or non-finite."""
    dose = float(dose)
    if not math.isfinite(dose) or dose < 0:
        where = []
        if studlab is not None:
            where.append(f"study {studlab!r}")
        if agent is not None:
            where.append(f"agent {agent!r}")
        ctx = f" ({', '.join(where)})" if where else ""
        raise InvalidDoseError(
            f"dose must be finite and >= 0, got {dose!r}{ctx}",
            studlab=studlab,
            agent=agent,
            dose=dose,
        )
    return dose


# ---------------------------------------------------------------------------
# Input types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Contrast:
    """One pairwise comparison reported by a study.

    ``te`` is the treatment effect of arm 1 versus arm 2 (e.g. a log odds
    ratio) and ``se_te`` its standard error.  ``agent1 == agent2`` is a
    within-agent comparison of two doses.
    """

    studlab: str
    agent1: str
    dose1: float
    agent2: str
    dose2: float
    te: float
    se_te: float


def contrasts_from_arrays(
    te: ArrayLike,
    se_te: ArrayLike,
    agent1: ArrayLike,
    dose1: ArrayLike,
    agent2: ArrayLike,
    dose2: ArrayLike,
    studlab: ArrayLike,
) -> tuple[Contrast, ...]:
    """Build contrasts from parallel columns of a long contrast table.

    Parameters
    ----------
    te, se_te : array
        Treatment effects and their standard errors.
    agent1, dose1, agent2, dose2 : array
        Agent labels and doses of the two arms.
    studlab : array
        Study labels.

    Returns
    -------
    tuple of Contrast
    """
    columns = {
        "te": np.asarray(te, dtype=np.float64),
        "se_te": np.asarray(se_te, dtype=np.float64),
        "agent1": np.asarray(agent1, dtype=object),
        "dose1": np.asarray(dose1, dtype=np.float64),
        "agent2": np.asarray(agent2, dtype=object),
        "dose2": np.asarray(dose2, dtype=np.float64),
        "studlab": np.asarray(studlab, dtype=object),
    }
    for name, col in columns.items():
        if col.ndim != 1:
            raise ValueError(f"{name} must be a 1-D array")
    lengths = {name: len(col) for name, col in columns.items()}
    if len(set(lengths.values())) != 1:
        raise ValueError(f"all columns must have the same length, got {lengths}")

    return tuple(
        Contrast(
            studlab=str(columns["studlab"][i]),
            agent1=str(columns["agent1"][i]),
            dose1=float(columns["dose1"][i]),
            agent2=str(columns["agent2"][i]),
            dose2=float(columns["dose2"][i]),
            te=float(columns["te"][i]),
            se_te=float(columns["se_te"][i]),
        )
        for i in range(lengths["te"])
    )


@dataclass(frozen=True)
class ReferenceSpec:
    """Reference agent/dose and the dose-response form for one analysis.

    Parameters
    ----------
    agent : str
        Reference agent (typically placebo).
    dose : float
        Reference dose; every agent's curve is anchored to zero here.
    form : str
        Dose-response form: ``'linear'``, ``'exponential'``,
        ``'quadratic'`` or ``'rcs'``.
    param : float or None
        Rate of the exponential form (default 1).
    knot_quantiles : tuple
        Quantiles of each agent's observed doses used as the three
        restricted cubic spline knots.
    """

    agent: str
    dose: float = 0.0
    form: str = "linear"
    param: float | None = None
    knot_quantiles: tuple[float, float, float] = DEFAULT_KNOT_QUANTILES

    def __post_init__(self) -> None:
        from pynetdose._forms import VALID_FORMS

        check_dose(self.dose, agent=self.agent)
        if self.form not in VALID_FORMS:
            raise ValueError(f"form must be one of {VALID_FORMS}, got {self.form!r}")
        if self.param is not None:
            if not math.isfinite(self.param) or self.param <= 0:
                raise ValueError(f"param must be finite and > 0, got {self.param}")
        q = tuple(self.knot_quantiles)
        if len(q) != 3 or not all(0.0 <= x <= 1.0 for x in q) or not q[0] < q[1] < q[2]:
            raise ValueError(
                f"knot_quantiles must be three increasing values in [0, 1], got {q}"
            )
