"""Benchmark dose (BMD/BMDL) and plateau dose (MED) from predicted curves.

All landmarks are read off a :class:`PredictionCurve` by walking its grid
from the low-dose side; nothing is refitted.  Landmarks that cannot be
attained on the grid are NaN, never errors.

- **BMD**: first dose at which the predicted response reaches the
  benchmark level, linearly interpolated between grid points.
- **BMDL**: the same walk over the confidence bound on the benchmark's
  side (upper bound for increases, lower bound for decreases), i.e. the
  conservative dose at which the benchmark may already be reached.
- **MED**: first dose from which every step of the curve changes the
  response by less than the plateau threshold.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from pynetdose._common import DEFAULT_PLATEAU_THRESHOLD
from pynetdose._predict import PredictionCurve

MED_STATUSES = ("reached", "flat", "not_reached", "before_bmdl", "not_estimable")


@dataclass(frozen=True)
class Landmarks:
    """BMD, BMDL and MED of one predicted curve.

    ``med_status`` tells apart why MED may be undefined:

    - ``'reached'``: a stable plateau starts at ``med``.
    - ``'flat'``: the curve never changes by more than the threshold;
      ``med`` is the first grid dose (degenerate).
    - ``'not_reached'``: the curve is still changing at the last grid dose.
    - ``'before_bmdl'``: the plateau starts below BMDL and is suppressed.
    - ``'not_estimable'``: some grid point lies outside the identifiable
      row space of the fit; every landmark is NaN.
    """

    agent: str
    bmd: float
    bmdl: float
    med: float
    med_status: str
    benchmark: float | None
    benchmark_type: str
    target: float
    plateau_threshold: float
    conf_level: float

    @property
    def is_flat(self) -> bool:
        return self.med_status == "flat"

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [f"Landmarks: {self.agent}", ""]
        if self.benchmark is None:
            lines.append("  BMD / BMDL    : not requested")
        else:
            lines.append(
                f"  Benchmark     : {self.benchmark:g} ({self.benchmark_type}), "
                f"target response {self.target:.4f}"
            )
            lines.append(f"  BMD           = {self.bmd:.4g}")
            lines.append(f"  BMDL ({self.conf_level:.0%})   = {self.bmdl:.4g}")
        lines.append(
            f"  MED           = {self.med:.4g}  [{self.med_status}, "
            f"threshold {self.plateau_threshold:g}]"
        )
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _first_crossing(
    dose: NDArray[np.floating],
    values: NDArray[np.floating],
    target: float,
    increasing: bool,
) -> float:
    """First dose at which *values* reach *target*, interpolated linearly."""
    if np.isnan(target):
        return float("nan")
    hit = values >= target if increasing else values <= target
    if not np.any(hit):
        return float("nan")
    i = int(np.argmax(hit))
    if i == 0:
        return float(dose[0])
    v0, v1 = values[i - 1], values[i]
    d0, d1 = dose[i - 1], dose[i]
    if v1 == v0:
        return float(d1)
    frac = (target - v0) / (v1 - v0)
    return float(d0 + frac * (d1 - d0))


def _benchmark_target(
    response: NDArray[np.floating],
    benchmark: float,
    benchmark_type: str,
) -> float:
    baseline = float(response[0])
    if benchmark_type == "absolute":
        return baseline + benchmark
    # relative: fraction of the range attained in the benchmark's direction
    extreme = float(np.max(response)) if benchmark > 0 else float(np.min(response))
    span = extreme - baseline
    if span == 0 or np.sign(span) != np.sign(benchmark):
        return float("nan")
    return baseline + abs(benchmark) * span


def _plateau_start(response: NDArray[np.floating], threshold: float) -> int | None:
    """Index from which all consecutive changes stay below *threshold*."""
    steps = np.abs(np.diff(response))
    if len(steps) == 0:
        return 0
    below = steps < threshold
    if not below[-1]:
        return None
    above = np.where(~below)[0]
    return int(above[-1]) + 1 if len(above) else 0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_landmarks(
    curve: PredictionCurve,
    benchmark_threshold: float | None = None,
    plateau_threshold: float = DEFAULT_PLATEAU_THRESHOLD,
    *,
    benchmark_type: str = "absolute",
) -> Landmarks:
    """Compute BMD, BMDL and MED from a predicted curve.

    Parameters
    ----------
    curve : PredictionCurve
        Output of :func:`predict`.
    benchmark_threshold : float or None
        Benchmark response.  For ``'absolute'`` the change from the
        response at the first grid dose; for ``'relative'`` the fraction
        (in ``(-1, 1)``) of the range attained by the curve.  Negative
        values look for a decrease.  ``None`` skips BMD/BMDL.
    plateau_threshold : float
        Largest change between consecutive grid points still counted as
        plateau (default ``1e-4``).
    benchmark_type : str
        ``'absolute'`` or ``'relative'``.

    Returns
    -------
    Landmarks

    Notes
    -----
    A plateau must be stable: a single small step followed by further
    change does not count.  MED below a defined BMDL is suppressed
    (``med_status='before_bmdl'``).

    BMDL is the first crossing of the confidence bound on the benchmark's
    side: the upper bound for an increase, the lower bound for a decrease.
    For an increasing benchmark this walks the upper bound of the response,
    not its lower confidence bound, and it keeps ``BMDL <= BMD`` in both
    directions.

    A curve that is not fully estimable (see
    :attr:`PredictionCurve.is_estimable`) has NaN BMD, BMDL, MED and target
    and ``med_status='not_estimable'``.
    """
    if benchmark_type not in ("absolute", "relative"):
        raise ValueError(
            f"benchmark_type must be 'absolute' or 'relative', got {benchmark_type!r}"
        )
    if not (plateau_threshold > 0):
        raise ValueError(f"plateau_threshold must be > 0, got {plateau_threshold}")
    if benchmark_threshold is not None:
        if not np.isfinite(benchmark_threshold) or benchmark_threshold == 0:
            raise ValueError(
                f"benchmark_threshold must be finite and non-zero, got {benchmark_threshold}"
            )
        if benchmark_type == "relative" and not (0 < abs(benchmark_threshold) < 1):
            raise ValueError(
                f"relative benchmark_threshold must be in (-1, 0) or (0, 1), "
                f"got {benchmark_threshold}"
            )

    dose = np.asarray(curve.dose, dtype=np.float64)
    response = np.asarray(curve.response, dtype=np.float64)

    if not curve.is_estimable or not np.all(np.isfinite(response)):
        nan = float("nan")
        return Landmarks(
            agent=curve.agent,
            bmd=nan,
            bmdl=nan,
            med=nan,
            med_status="not_estimable",
            benchmark=benchmark_threshold,
            benchmark_type=benchmark_type,
            target=nan,
            plateau_threshold=plateau_threshold,
            conf_level=curve.conf_level,
        )

    # --- BMD / BMDL ---
    if benchmark_threshold is None:
        target = bmd_val = bmdl_val = float("nan")
    else:
        increasing = benchmark_threshold > 0
        target = _benchmark_target(response, benchmark_threshold, benchmark_type)
        bound = curve.ci_upper if increasing else curve.ci_lower
        bmd_val = _first_crossing(dose, response, target, increasing)
        bmdl_val = _first_crossing(dose, np.asarray(bound, dtype=np.float64), target, increasing)

    # --- MED ---
    start = _plateau_start(response, plateau_threshold)
    if start is None:
        med, status = float("nan"), "not_reached"
    else:
        med = float(dose[start])
        status = "flat" if start == 0 else "reached"
        if not np.isnan(bmdl_val) and med < bmdl_val:
            med, status = float("nan"), "before_bmdl"

    return Landmarks(
        agent=curve.agent,
        bmd=bmd_val,
        bmdl=bmdl_val,
        med=med,
        med_status=status,
        benchmark=benchmark_threshold,
        benchmark_type=benchmark_type,
        target=target,
        plateau_threshold=plateau_threshold,
        conf_level=curve.conf_level,
    )
