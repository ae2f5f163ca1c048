"""Shared synthetic networks."""

import pytest

from pynetdose import Contrast

SLOPE_A = 0.05
SLOPE_B = 0.02


def _linear_contrast(studlab, a1, d1, a2, d2, se, noise=0.0):
    slopes = {"placebo": 0.0, "A": SLOPE_A, "B": SLOPE_B}
    te = slopes[a1] * d1 - slopes[a2] * d2 + noise
    return Contrast(studlab, a1, d1, a2, d2, te, se)


@pytest.fixture
def exact_network():
    """Placebo, A and B with exact linear truth (no sampling noise)."""
    return [
        _linear_contrast("s1", "A", 10.0, "placebo", 0.0, 0.10),
        _linear_contrast("s2", "A", 20.0, "placebo", 0.0, 0.15),
        _linear_contrast("s3", "B", 25.0, "placebo", 0.0, 0.12),
        _linear_contrast("s4", "A", 10.0, "B", 50.0, 0.20),
        _linear_contrast("s5", "A", 20.0, "A", 10.0, 0.10),
    ]


@pytest.fixture
def heterogeneous_network():
    """Linear truth with between-study disagreement far beyond sampling error."""
    return [
        _linear_contrast("s1", "A", 10.0, "placebo", 0.0, 0.1, noise=0.40),
        _linear_contrast("s2", "A", 20.0, "placebo", 0.0, 0.1, noise=-0.30),
        _linear_contrast("s3", "B", 25.0, "placebo", 0.0, 0.1, noise=0.50),
        _linear_contrast("s4", "B", 50.0, "placebo", 0.0, 0.1, noise=-0.60),
        _linear_contrast("s5", "A", 10.0, "B", 50.0, 0.1, noise=0.30),
        _linear_contrast("s6", "A", 20.0, "A", 10.0, 0.1, noise=-0.40),
        _linear_contrast("s7", "B", 50.0, "B", 25.0, 0.1, noise=0.45),
        _linear_contrast("s8", "A", 40.0, "placebo", 0.0, 0.1, noise=-0.35),
    ]
