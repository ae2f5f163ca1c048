"""Dose-response functional forms.

Each form is a basis expansion ``f(dose) -> (n, n_terms)`` that is linear in
its coefficients, so the whole network can be fitted by weighted least
squares.  The expansion used in the design is reference-relative:
``f(dose) - f(reference_dose)``, which pins every agent's curve to zero at
the reference dose.

Forms:

- ``linear``:      ``d``
- ``exponential``: ``1 - exp(-param * d)``
- ``quadratic``:   ``d, d^2``
- ``rcs``:         ``d, s(d)``, restricted cubic spline with three knots

Validates against: R netdose::netdose(method = ...)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


# ---------------------------------------------------------------------------
# Basis functions
# ---------------------------------------------------------------------------

def linear_basis(
    dose: NDArray[np.floating],
    knots: NDArray[np.floating] | None = None,
    param: float | None = None,
) -> NDArray[np.floating]:
    """Linear basis: a single column ``d``."""
    dose = np.asarray(dose, dtype=np.float64)
    return dose[:, None]


def exponential_basis(
    dose: NDArray[np.floating],
    knots: NDArray[np.floating] | None = None,
    param: float | None = None,
) -> NDArray[np.floating]:
    """Exponential basis ``1 - exp(-rate * d)``.

    The coefficient is the asymptotic maximal effect; ``rate`` (default 1)
    sets how quickly the curve saturates.
    """
    dose = np.asarray(dose, dtype=np.float64)
    rate = 1.0 if param is None else param
    return (-np.expm1(-rate * dose))[:, None]


def quadratic_basis(
    dose: NDArray[np.floating],
    knots: NDArray[np.floating] | None = None,
    param: float | None = None,
) -> NDArray[np.floating]:
    """Quadratic basis: columns ``d`` and ``d^2``."""
    dose = np.asarray(dose, dtype=np.float64)
    return np.column_stack([dose, dose**2])


def rcs_basis(
    dose: NDArray[np.floating],
    knots: NDArray[np.floating] | None = None,
    param: float | None = None,
) -> NDArray[np.floating]:
    """Restricted cubic spline with three knots (Harrell parameterisation).

    .. math::
        s(d) = \\frac{(d - t_1)_+^3
               - (d - t_2)_+^3 \\frac{t_3 - t_1}{t_3 - t_2}
               + (d - t_3)_+^3 \\frac{t_2 - t_1}{t_3 - t_2}}{(t_3 - t_1)^2}

    The curve is linear beyond the outer knots.  Coinciding knots give a
    zero spline column, which the fitter reports as an aliased term.
    """
    dose = np.asarray(dose, dtype=np.float64)
    if knots is None or len(knots) != 3:
        raise ValueError("rcs basis needs exactly three knots")
    t1, t2, t3 = (float(k) for k in knots)

    if t3 - t2 <= 0 or t3 - t1 <= 0:
        spline = np.zeros_like(dose)
    else:
        def pos3(x: NDArray) -> NDArray:
            return np.maximum(x, 0.0) ** 3

        spline = (
            pos3(dose - t1)
            - pos3(dose - t2) * (t3 - t1) / (t3 - t2)
            + pos3(dose - t3) * (t2 - t1) / (t3 - t2)
        ) / (t3 - t1) ** 2

    return np.column_stack([dose, spline])


# ---------------------------------------------------------------------------
# Form registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DoseResponseForm:
    """A basis-expansion strategy, chosen once per analysis."""

    name: str
    term_names: tuple[str, ...]
    func: Callable[..., NDArray[np.floating]]
    needs_knots: bool = False

    @property
    def n_terms(self) -> int:
        return len(self.term_names)

    def expand(
        self,
        dose: NDArray[np.floating],
        knots: NDArray[np.floating] | None = None,
        param: float | None = None,
    ) -> NDArray[np.floating]:
        """Evaluate the basis at *dose*, shape ``(n, n_terms)``."""
        dose = np.atleast_1d(np.asarray(dose, dtype=np.float64))
        return self.func(dose, knots, param)


FORMS: dict[str, DoseResponseForm] = {
    "linear": DoseResponseForm("linear", ("dose",), linear_basis),
    "exponential": DoseResponseForm("exponential", ("exp",), exponential_basis),
    "quadratic": DoseResponseForm("quadratic", ("dose", "dose^2"), quadratic_basis),
    "rcs": DoseResponseForm("rcs", ("dose", "rcs"), rcs_basis, needs_knots=True),
}

VALID_FORMS = tuple(FORMS.keys())


def get_form(name: str) -> DoseResponseForm:
    """Look up a dose-response form by name."""
    if name not in FORMS:
        raise ValueError(f"form must be one of {VALID_FORMS}, got {name!r}")
    return FORMS[name]
