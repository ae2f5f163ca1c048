"""Network design assembly for dose-response network meta-analysis.

Turns a table of pairwise contrasts into the weighted regression problem
``y = X beta + e``, ``Var(e) = diag(v)``.  Each non-reference agent owns a
block of columns (one per basis term); a contrast row holds the
reference-relative basis of arm 1 minus that of arm 2, so the reference
agent and the reference dose contribute nothing.

Connectivity of the comparison graph (agents as nodes, contrasts as edges)
is checked explicitly by breadth-first search before any numerical work.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from pynetdose._common import (
    Contrast,
    InvalidReferenceError,
    ReferenceSpec,
    check_dose,
)
from pynetdose._forms import DoseResponseForm, get_form

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentBasis:
    """Reference-relative basis expansion of one agent.

    ``columns`` is the slice of the coefficient vector owned by the agent;
    it is empty for the reference agent.
    """

    agent: str
    form: DoseResponseForm
    columns: slice
    reference_dose: float
    knots: NDArray[np.floating] | None = None
    param: float | None = None

    @property
    def is_reference(self) -> bool:
        return self.columns.start == self.columns.stop

    def expand(self, dose: NDArray[np.floating]) -> NDArray[np.floating]:
        """Basis at *dose* minus basis at the reference dose, ``(n, n_terms)``."""
        dose = np.atleast_1d(np.asarray(dose, dtype=np.float64))
        if self.is_reference:
            return np.zeros((len(dose), 0))
        at_dose = self.form.expand(dose, self.knots, self.param)
        at_ref = self.form.expand(np.array([self.reference_dose]), self.knots, self.param)
        return at_dose - at_ref

    def rows(self, dose: NDArray[np.floating], n_coef: int) -> NDArray[np.floating]:
        """Full-width design rows ``(n, n_coef)`` for this agent at *dose*."""
        dose = np.atleast_1d(np.asarray(dose, dtype=np.float64))
        out = np.zeros((len(dose), n_coef))
        if not self.is_reference:
            out[:, self.columns] = self.expand(dose)
        return out


@dataclass(frozen=True)
class NetworkDesign:
    """Numeric design of a dose-response network.

    Row ``i`` of ``X``, ``y`` and ``v`` corresponds to ``contrasts[i]``.
    """

    X: NDArray[np.floating]  # (k, p)
    y: NDArray[np.floating]  # (k,) observed effects
    v: NDArray[np.floating]  # (k,) sampling variances
    contrasts: tuple[Contrast, ...]
    reference: ReferenceSpec
    agents: tuple[str, ...]  # non-reference agents, column-block order
    bases: dict[str, AgentBasis] = field(repr=False)
    term_names: tuple[str, ...] = ()
    max_dose: dict[str, float] = field(default_factory=dict, repr=False)
    n_studies: int = 0

    @property
    def n_contrasts(self) -> int:
        return self.X.shape[0]

    @property
    def n_coef(self) -> int:
        return self.X.shape[1]

    def basis_rows(self, agent: str, dose: NDArray[np.floating]) -> NDArray[np.floating]:
        """Design rows for *agent* at *dose* (KeyError if the agent is unknown)."""
        return self.bases[agent].rows(dose, self.n_coef)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def arm_doses(
    contrasts: Iterable[Contrast],
    *,
    reference: str | None = None,
    drop_single_dose: bool = False,
) -> list[tuple[str, str, float]]:
    """Distinct ``(studlab, agent, dose)`` arms in first-seen order.

    Parameters
    ----------
    contrasts : iterable of Contrast
    reference : str or None
        If given, arms of this agent are dropped.
    drop_single_dose : bool
        Drop agents observed at a single dose only.
    """
    seen: dict[tuple[str, str, float], None] = {}
    for c in contrasts:
        seen.setdefault((c.studlab, c.agent1, float(c.dose1)), None)
        seen.setdefault((c.studlab, c.agent2, float(c.dose2)), None)
    arms = list(seen)

    if reference is not None:
        arms = [a for a in arms if a[1] != reference]

    if drop_single_dose:
        doses: dict[str, set[float]] = defaultdict(set)
        for _, agent, dose in arms:
            doses[agent].add(dose)
        arms = [a for a in arms if len(doses[a[1]]) > 1]

    return arms


def _validate_contrasts(contrasts: Sequence[Contrast]) -> None:
    if len(contrasts) == 0:
        raise ValueError("need at least one contrast")
    for c in contrasts:
        check_dose(c.dose1, studlab=c.studlab, agent=c.agent1)
        check_dose(c.dose2, studlab=c.studlab, agent=c.agent2)
        if not np.isfinite(c.te):
            raise ValueError(f"te must be finite, got {c.te!r} (study {c.studlab!r})")
        if not np.isfinite(c.se_te) or c.se_te <= 0:
            raise ValueError(
                f"se_te must be finite and > 0, got {c.se_te!r} (study {c.studlab!r})"
            )


def unreachable_agents(contrasts: Iterable[Contrast], reference: str) -> list[str]:
    """Agents with no direct or indirect comparison path to *reference*."""
    graph: dict[str, set[str]] = {}
    for c in contrasts:
        graph.setdefault(c.agent1, set())
        graph.setdefault(c.agent2, set())
        if c.agent1 != c.agent2:
            graph[c.agent1].add(c.agent2)
            graph[c.agent2].add(c.agent1)

    if reference not in graph:
        return sorted(graph)

    visited = {reference}
    queue = deque([reference])
    while queue:
        node = queue.popleft()
        for nb in graph[node]:
            if nb not in visited:
                visited.add(nb)
                queue.append(nb)

    return sorted(set(graph) - visited)


def _compute_knots(doses: Sequence[float], quantiles: Sequence[float]) -> NDArray[np.floating]:
    return np.quantile(np.asarray(doses, dtype=np.float64), quantiles)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_design(
    contrasts: Sequence[Contrast],
    reference: ReferenceSpec,
) -> NetworkDesign:
    """Assemble the network design matrix from pairwise contrasts.

    Parameters
    ----------
    contrasts : sequence of Contrast
        Long contrast table (one entry per pairwise comparison).
    reference : ReferenceSpec
        Reference agent/dose and dose-response form.

    Returns
    -------
    NetworkDesign

    Raises
    ------
    InvalidDoseError
        If any arm has a negative or non-finite dose.
    InvalidReferenceError
        If the reference agent is absent or some agent is not connected to it.
    ValueError
        On empty input or invalid effect/standard error.
    """
    contrasts = tuple(contrasts)
    _validate_contrasts(contrasts)

    missing = unreachable_agents(contrasts, reference.agent)
    if missing:
        present = {c.agent1 for c in contrasts} | {c.agent2 for c in contrasts}
        if reference.agent not in present:
            raise InvalidReferenceError(
                f"reference agent {reference.agent!r} does not occur in any contrast",
                unreachable=missing,
            )
        raise InvalidReferenceError(
            f"network is disconnected: no comparison path from reference "
            f"{reference.agent!r} to {', '.join(repr(a) for a in missing)}",
            unreachable=missing,
        )

    form = get_form(reference.form)
    arms = arm_doses(contrasts)
    doses_by_agent: dict[str, list[float]] = defaultdict(list)
    for _, agent, dose in arms:
        doses_by_agent[agent].append(dose)

    agents = tuple(sorted(a for a in doses_by_agent if a != reference.agent))
    if not agents:
        raise ValueError(
            f"need at least one agent besides the reference {reference.agent!r}"
        )
    p_block = form.n_terms
    n_coef = p_block * len(agents)

    bases: dict[str, AgentBasis] = {
        reference.agent: AgentBasis(
            agent=reference.agent,
            form=form,
            columns=slice(0, 0),
            reference_dose=reference.dose,
        )
    }
    term_names: list[str] = []
    for j, agent in enumerate(agents):
        knots = (
            _compute_knots(doses_by_agent[agent], reference.knot_quantiles)
            if form.needs_knots
            else None
        )
        bases[agent] = AgentBasis(
            agent=agent,
            form=form,
            columns=slice(j * p_block, (j + 1) * p_block),
            reference_dose=reference.dose,
            knots=knots,
            param=reference.param,
        )
        term_names.extend(f"{agent}:{t}" for t in form.term_names)

    k = len(contrasts)
    X = np.zeros((k, n_coef))
    for i, c in enumerate(contrasts):
        X[i] = (
            bases[c.agent1].rows(np.array([c.dose1]), n_coef)[0]
            - bases[c.agent2].rows(np.array([c.dose2]), n_coef)[0]
        )

    y = np.array([c.te for c in contrasts], dtype=np.float64)
    v = np.array([c.se_te for c in contrasts], dtype=np.float64) ** 2
    max_dose = {agent: float(max(d)) for agent, d in doses_by_agent.items()}
    n_studies = len({c.studlab for c in contrasts})

    logger.debug(
        "design: %d contrasts from %d studies, %d agents, %d coefficients (%s)",
        k, n_studies, len(agents), n_coef, form.name,
    )

    return NetworkDesign(
        X=X,
        y=y,
        v=v,
        contrasts=contrasts,
        reference=reference,
        agents=agents,
        bases=bases,
        term_names=tuple(term_names),
        max_dose=max_dose,
        n_studies=n_studies,
    )
