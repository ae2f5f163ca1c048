"""Weighted network regression for dose-response network meta-analysis.

Estimates the dose-response coefficients of all agents jointly by
generalised least squares on the network design:

    beta = (X' W X)^+ X' W y,    Cov(beta) = (X' W X)^+

with ``W = diag(1 / v)`` for the common-effect model.  The Moore-Penrose
inverse is computed from an explicit SVD with a relative tolerance, so
rank-deficient designs (agents sharing information only partially) still
fit and the identifiable row space is reported.

The random-effects model first estimates the between-study variance
``tau^2`` with the generalised DerSimonian-Laird moment estimator and refits
with ``W = diag(1 / (v + tau^2))``.

Validates against: R netdose::netdose(), metafor::rma(method = "DL")
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray
from scipy.stats import chi2

from pynetdose._common import (
    DEFAULT_TOL,
    EFFECTS_MODELS,
    Contrast,
    ReferenceSpec,
    SingularDesignError,
)
from pynetdose._network import NetworkDesign, build_design

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FittedModel:
    """Result of fitting a dose-response network.

    Attributes
    ----------
    coefficients : array
        Dose-response coefficients, one per basis term per non-reference
        agent (see ``term_names``).
    cov : array
        Coefficient covariance (pseudo-inverse of the weighted normal matrix).
    se : array
        Standard errors of the coefficients.
    effects_model : str
        ``'common'`` or ``'random'``.
    tau2, tau : float
        Between-study variance and its square root (0 for common effect).
    Q, df_Q, pval_Q : float, int, float
        Heterogeneity statistic of the common-effect fit, its degrees of
        freedom and p-value.
    I2 : float
        Proportion of variability due to heterogeneity.
    rank : int
        Rank of the weighted normal matrix.
    row_space : array
        Orthonormal basis ``(p, rank)`` of the estimable coefficient space.
    aliased : tuple of str
        Terms that are not identifiable from the network.
    """

    coefficients: NDArray[np.floating]
    cov: NDArray[np.floating]
    se: NDArray[np.floating]
    effects_model: str
    tau2: float
    tau: float
    Q: float
    df_Q: int
    pval_Q: float
    I2: float
    rank: int
    row_space: NDArray[np.floating]
    aliased: tuple[str, ...]
    tol: float
    fitted: NDArray[np.floating]
    residuals: NDArray[np.floating]
    weights: NDArray[np.floating]
    design: NetworkDesign = field(repr=False)

    @property
    def reference(self) -> ReferenceSpec:
        return self.design.reference

    @property
    def term_names(self) -> tuple[str, ...]:
        return self.design.term_names

    @property
    def agents(self) -> tuple[str, ...]:
        """All agents in the network, reference first."""
        return (self.design.reference.agent,) + self.design.agents

    @property
    def is_rank_deficient(self) -> bool:
        return self.rank < len(self.coefficients)

    def agent_coefficients(self, agent: str) -> NDArray[np.floating]:
        """Coefficients of *agent* (empty for the reference agent)."""
        return self.coefficients[self.design.bases[agent].columns]

    def summary(self) -> str:
        """Human-readable summary, similar to R netdose print()."""
        ref = self.design.reference
        label = "Common effects" if self.effects_model == "common" else "Random effects"
        lines = [
            f"Dose-response network meta-analysis ({label} model)",
            "",
            f"  Dose-response form: {ref.form}",
            f"  Reference: {ref.agent} (dose {ref.dose:g})",
            f"  Studies: {self.design.n_studies}   Contrasts: {self.design.n_contrasts}"
            f"   Agents: {len(self.agents)}",
            "",
            "Coefficients:",
        ]
        for name, val, se_val in zip(self.term_names, self.coefficients, self.se):
            flag = "  (aliased)" if name in self.aliased else ""
            lines.append(f"  {name:>20s} = {val:>12.6f}  (SE = {se_val:.6f}){flag}")

        lines.append("")
        lines.append("Heterogeneity:")
        lines.append(f"  tau^2 = {self.tau2:.4f}   tau = {self.tau:.4f}   I^2 = {self.I2:.1%}")
        lines.append(f"  Q = {self.Q:.2f}   df = {self.df_Q}   p = {self.pval_Q:.4g}")
        if self.is_rank_deficient:
            lines.append("")
            lines.append(f"  Rank-deficient design: rank {self.rank} of {len(self.coefficients)}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Linear algebra
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Solve:
    beta: NDArray[np.floating]
    pinv: NDArray[np.floating]
    rank: int
    row_space: NDArray[np.floating]
    aliased: tuple[str, ...]


def _pinv_normal(
    M: NDArray[np.floating],
    tol: float,
    term_names: Sequence[str],
) -> tuple[NDArray, int, NDArray, tuple[str, ...]]:
    """Moore-Penrose inverse of the symmetric normal matrix *M* via SVD.

    Singular values ``<= tol * max(s)`` are treated as zero.  Returns the
    pseudo-inverse, rank, orthonormal row space and aliased term names.
    """
    if not np.all(np.isfinite(M)):
        bad = [term_names[j] for j in np.where(~np.all(np.isfinite(M), axis=0))[0]]
        raise SingularDesignError(
            "weighted normal matrix has non-finite entries", aliased=bad
        )

    try:
        U, s, Vt = np.linalg.svd(M, hermitian=True)
    except np.linalg.LinAlgError as exc:
        raise SingularDesignError(f"SVD of the normal matrix failed: {exc}") from exc

    if s.size == 0 or s[0] <= 0:
        raise SingularDesignError(
            "design carries no information about any coefficient",
            aliased=term_names,
        )

    keep = s > tol * s[0]
    rank = int(np.sum(keep))
    row_space = Vt[keep].T
    null_space = Vt[~keep].T
    pinv = (row_space / s[keep]) @ U[:, keep].T

    # A term is aliased if its unit vector leaves the row space
    loading = np.linalg.norm(null_space, axis=1) if null_space.size else np.zeros(len(s))
    aliased = tuple(name for name, ld in zip(term_names, loading) if ld > np.sqrt(tol))

    resid = np.linalg.norm(M @ pinv @ M - M) / np.linalg.norm(M)
    if not np.isfinite(resid) or resid > np.sqrt(tol):
        raise SingularDesignError(
            f"pseudo-inverse failed tolerance (relative residual {resid:.3g}); "
            f"collinear terms: {', '.join(aliased) or 'none identified'}",
            aliased=aliased,
        )

    return pinv, rank, row_space, aliased


def _weighted_solve(
    X: NDArray[np.floating],
    y: NDArray[np.floating],
    w: NDArray[np.floating],
    tol: float,
    term_names: Sequence[str],
) -> _Solve:
    M = X.T @ (w[:, None] * X)
    pinv, rank, row_space, aliased = _pinv_normal(M, tol, term_names)
    beta = pinv @ (X.T @ (w * y))
    return _Solve(beta=beta, pinv=pinv, rank=rank, row_space=row_space, aliased=aliased)


def _tau2_dl(
    X: NDArray[np.floating],
    w: NDArray[np.floating],
    Q: float,
    df: int,
    pinv: NDArray[np.floating],
) -> float:
    """Generalised DerSimonian-Laird estimator, floored at zero.

    ``E[Q] = df + tau^2 * (tr(W) - tr((X'WX)^+ X'W^2 X))`` under the
    random-effects model.
    """
    denom = float(np.sum(w) - np.trace(pinv @ (X.T @ ((w**2)[:, None] * X))))
    if df <= 0 or denom <= 0:
        return 0.0
    return max(0.0, (Q - df) / denom)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_design(
    design: NetworkDesign,
    effects_model: str = "common",
    *,
    tol: float = DEFAULT_TOL,
    strict: bool = False,
) -> FittedModel:
    """Fit an already assembled network design.

    See :func:`fit_network` for parameters.
    """
    if effects_model not in EFFECTS_MODELS:
        raise ValueError(
            f"effects_model must be one of {EFFECTS_MODELS}, got {effects_model!r}"
        )
    if not (0.0 < tol < 1.0):
        raise ValueError(f"tol must be in (0, 1), got {tol}")

    X, y, v = design.X, design.y, design.v
    names = design.term_names
    k = design.n_contrasts

    # --- Common effect ---
    w = 1.0 / v
    common = _weighted_solve(X, y, w, tol, names)

    if common.aliased:
        if strict:
            raise SingularDesignError(
                f"design is rank deficient (rank {common.rank} of {design.n_coef}); "
                f"collinear terms: {', '.join(common.aliased)}",
                aliased=common.aliased,
            )
        logger.warning(
            "rank-deficient design (rank %d of %d); aliased terms: %s",
            common.rank, design.n_coef, ", ".join(common.aliased),
        )

    resid = y - X @ common.beta
    Q = float(np.sum(w * resid**2))
    df_Q = k - common.rank
    pval_Q = float(chi2.sf(Q, df_Q)) if df_Q > 0 else float("nan")
    if df_Q > 0 and Q > 0:
        I2 = max(0.0, (Q - df_Q) / Q)
    elif df_Q > 0:
        I2 = 0.0
    else:
        I2 = float("nan")

    # --- Random effects ---
    if effects_model == "random":
        tau2 = _tau2_dl(X, w, Q, df_Q, common.pinv)
        w_fit = 1.0 / (v + tau2)
        sol = _weighted_solve(X, y, w_fit, tol, names)
    else:
        tau2 = 0.0
        w_fit = w
        sol = common

    cov = sol.pinv
    se = np.sqrt(np.maximum(np.diag(cov), 0.0))
    fitted = X @ sol.beta

    logger.debug(
        "%s-effects fit: rank %d of %d, Q=%.4g on %d df, tau2=%.4g",
        effects_model, sol.rank, design.n_coef, Q, df_Q, tau2,
    )

    return FittedModel(
        coefficients=sol.beta,
        cov=cov,
        se=se,
        effects_model=effects_model,
        tau2=tau2,
        tau=float(np.sqrt(tau2)),
        Q=Q,
        df_Q=df_Q,
        pval_Q=pval_Q,
        I2=I2,
        rank=sol.rank,
        row_space=sol.row_space,
        aliased=sol.aliased,
        tol=tol,
        fitted=fitted,
        residuals=y - fitted,
        weights=w_fit,
        design=design,
    )


def fit_network(
    contrasts: Sequence[Contrast],
    reference: ReferenceSpec,
    effects_model: str = "common",
    *,
    tol: float = DEFAULT_TOL,
    strict: bool = False,
) -> FittedModel:
    """Fit a dose-response network meta-analysis.

    Parameters
    ----------
    contrasts : sequence of Contrast
        Pairwise contrasts (study label, both arms, effect, standard error).
    reference : ReferenceSpec
        Reference agent/dose and dose-response form.
    effects_model : str
        ``'common'`` (inverse-variance weights) or ``'random'``
        (DerSimonian-Laird heterogeneity added to every variance).
    tol : float
        Relative singular-value cutoff of the pseudo-inverse
        (default ``1e-10``).  Also sets the precision ``sqrt(tol)`` that the
        pseudo-inverse must satisfy.
    strict : bool
        Raise :class:`SingularDesignError` on rank-deficient designs instead
        of fitting the identifiable part.

    Returns
    -------
    FittedModel

    Raises
    ------
    InvalidReferenceError, InvalidDoseError, SingularDesignError

    Examples
    --------
    >>> from pynetdose import Contrast, ReferenceSpec, fit_network
    >>> data = [
    ...     Contrast("s1", "A", 10, "placebo", 0, 1.0, 0.2),
    ...     Contrast("s2", "A", 20, "placebo", 0, 2.0, 0.2),
    ... ]
    >>> fit = fit_network(data, ReferenceSpec("placebo"))
    >>> round(float(fit.coefficients[0]), 3)
    0.1

    Validates against: R netdose::netdose()
    """
    design = build_design(contrasts, reference)
    return fit_design(design, effects_model, tol=tol, strict=strict)
