"""Tests for BMD, BMDL and MED extraction."""

import numpy as np
import pytest

from pynetdose import PredictionCurve, extract_landmarks

Z95 = 1.959963984540054


def make_curve(dose, response, se=None):
    dose = np.asarray(dose, dtype=float)
    response = np.asarray(response, dtype=float)
    se = np.zeros_like(response) if se is None else np.asarray(se, dtype=float)
    return PredictionCurve(
        agent="A",
        dose=dose,
        response=response,
        se=se,
        ci_lower=response - Z95 * se,
        ci_upper=response + Z95 * se,
        conf_level=0.95,
        ci_method="normal",
        effects_model="common",
    )


@pytest.fixture
def linear_curve():
    """response = 0.1 * dose, se = 0.02 * dose on [0, 10]."""
    dose = np.linspace(0, 10, 101)
    return make_curve(dose, 0.1 * dose, 0.02 * dose)


# ---------------------------------------------------------------------------
# BMD / BMDL
# ---------------------------------------------------------------------------

class TestBenchmarkDose:
    """Benchmark dose and its conservative limit."""

    def test_bmd_analytic_crossing(self, linear_curve):
        lm = extract_landmarks(linear_curve, 0.5)
        assert lm.bmd == pytest.approx(5.0, abs=0.1)
        assert lm.target == pytest.approx(0.5)

    def test_bmdl_analytic_crossing(self, linear_curve):
        """Upper band 0.1392 * dose reaches 0.5 at dose 0.5 / 0.1392."""
        lm = extract_landmarks(linear_curve, 0.5)
        assert lm.bmdl == pytest.approx(0.5 / (0.1 + Z95 * 0.02), abs=0.1)

    def test_bmdl_not_above_bmd(self, linear_curve):
        for level in (0.1, 0.3, 0.7, 0.9):
            lm = extract_landmarks(linear_curve, level)
            assert lm.bmdl <= lm.bmd

    def test_interpolates_between_grid_points(self):
        c = make_curve([0.0, 1.0, 2.0], [0.0, 1.0, 2.0])
        assert extract_landmarks(c, 1.5).bmd == pytest.approx(1.5)

    def test_decreasing_curve(self):
        dose = np.linspace(0, 10, 101)
        c = make_curve(dose, -0.1 * dose, 0.02 * dose)
        lm = extract_landmarks(c, -0.5)
        assert lm.bmd == pytest.approx(5.0, abs=0.1)
        assert lm.bmdl <= lm.bmd

    def test_first_crossing_on_non_monotone_curve(self):
        c = make_curve([0, 1, 2, 3, 4], [0.0, 0.6, 0.2, 0.8, 1.0])
        assert extract_landmarks(c, 0.5).bmd == pytest.approx(1 - 0.1 / 0.6)

    def test_no_crossing_is_undefined(self, linear_curve):
        lm = extract_landmarks(linear_curve, 5.0)
        assert np.isnan(lm.bmd)
        assert np.isnan(lm.bmdl)

    def test_relative_benchmark(self, linear_curve):
        lm = extract_landmarks(linear_curve, 0.5, benchmark_type="relative")
        assert lm.target == pytest.approx(0.5)
        assert lm.bmd == pytest.approx(5.0, abs=0.1)

    def test_relative_benchmark_wrong_direction(self, linear_curve):
        lm = extract_landmarks(linear_curve, -0.5, benchmark_type="relative")
        assert np.isnan(lm.bmd)

    def test_not_requested(self, linear_curve):
        lm = extract_landmarks(linear_curve)
        assert lm.benchmark is None
        assert np.isnan(lm.bmd)
        assert np.isnan(lm.bmdl)


# ---------------------------------------------------------------------------
# MED
# ---------------------------------------------------------------------------

class TestPlateau:
    """Plateau (MED) detection."""

    def test_stable_plateau(self):
        values = [0, 0.5, 0.9, 0.99, 0.991, 0.9912, 0.9913]
        c = make_curve(np.arange(7.0), values)
        lm = extract_landmarks(c, plateau_threshold=0.001)
        assert lm.med == 4.0
        assert lm.med_status == "reached"

    def test_transient_dip_ignored(self):
        values = [0.0, 0.5, 0.50001, 0.8, 0.9, 0.9, 0.9]
        c = make_curve(np.arange(7.0), values)
        lm = extract_landmarks(c, plateau_threshold=0.001)
        assert lm.med == 4.0

    def test_still_changing(self):
        c = make_curve([0, 1, 2, 3], [0, 1, 2, 3])
        lm = extract_landmarks(c)
        assert np.isnan(lm.med)
        assert lm.med_status == "not_reached"

    def test_flat_curve_is_degenerate(self):
        c = make_curve([0, 1, 2, 3], [0, 0, 0, 0])
        lm = extract_landmarks(c)
        assert lm.med == 0.0
        assert lm.is_flat
        assert lm.med_status == "flat"

    def test_med_after_bmdl_reported(self):
        c = make_curve([0, 1, 2, 3, 4], [0, 0.5, 1, 1, 1])
        lm = extract_landmarks(c, 0.5)
        assert lm.bmdl == pytest.approx(1.0)
        assert lm.med == 2.0
        assert lm.med_status == "reached"

    def test_med_before_bmdl_suppressed(self):
        dose = [0, 1, 2, 3, 4, 5, 6]
        response = [0, 0.5, 1, 1, 1, 1, 1]
        se = [0, 0, 0, 0.01, 0.02, 0.05, 0.1]
        lm = extract_landmarks(make_curve(dose, response, se), 1.05)
        assert np.isnan(lm.bmd)
        assert 4.0 < lm.bmdl < 5.0
        assert np.isnan(lm.med)
        assert lm.med_status == "before_bmdl"

    def test_med_never_below_bmdl(self, linear_curve):
        dose = linear_curve.dose
        response = np.minimum(0.1 * dose, 0.6)
        c = make_curve(dose, response, 0.02 * dose)
        for level in (0.2, 0.4, 0.59):
            lm = extract_landmarks(c, level)
            if not np.isnan(lm.med):
                assert lm.med >= lm.bmdl

    def test_single_point_curve(self):
        lm = extract_landmarks(make_curve([0.0], [0.0]))
        assert lm.med == 0.0
        assert lm.is_flat


class TestNonEstimableCurve:
    """Curves with points outside the identifiable row space."""

    def test_nan_points_not_reported_as_flat(self):
        dose = np.array([0.0, 5.0, 10.0, 20.0])
        response = np.array([0.0, np.nan, 1.1, np.nan])
        se = np.array([0.0, np.nan, 0.07, np.nan])
        c = PredictionCurve(
            agent="A",
            dose=dose,
            response=response,
            se=se,
            ci_lower=response - Z95 * se,
            ci_upper=response + Z95 * se,
            conf_level=0.95,
            ci_method="normal",
            effects_model="common",
            estimable=np.isfinite(response),
        )
        lm = extract_landmarks(c, 0.5)
        assert lm.med_status == "not_estimable"
        assert not lm.is_flat
        assert np.isnan(lm.bmd)
        assert np.isnan(lm.bmdl)
        assert np.isnan(lm.med)
        assert np.isnan(lm.target)

    def test_from_aliased_fit(self):
        from pynetdose import Contrast, ReferenceSpec, fit_network, predict

        data = [
            Contrast("s1", "A", 10.0, "placebo", 0.0, 0.5, 0.1),
            Contrast("s2", "B", 0.0, "placebo", 0.0, 0.1, 0.1),
        ]
        fit = fit_network(data, ReferenceSpec("placebo"))
        lm = extract_landmarks(predict(fit, "B", [0.0, 5.0, 10.0]))
        assert lm.med_status == "not_estimable"
        assert np.isnan(lm.med)

    def test_nan_response_without_mask(self):
        lm = extract_landmarks(make_curve([0, 1, 2], [0.0, np.nan, 0.0]))
        assert lm.med_status == "not_estimable"

    def test_validation_still_applies(self):
        c = make_curve([0, 1], [0.0, np.nan])
        with pytest.raises(ValueError, match="plateau_threshold"):
            extract_landmarks(c, plateau_threshold=-1.0)


class TestLandmarkValidation:
    """Argument validation."""

    def test_invalid_plateau_threshold(self, linear_curve):
        with pytest.raises(ValueError, match="plateau_threshold"):
            extract_landmarks(linear_curve, plateau_threshold=0.0)

    def test_zero_benchmark(self, linear_curve):
        with pytest.raises(ValueError, match="benchmark_threshold"):
            extract_landmarks(linear_curve, 0.0)

    def test_relative_out_of_range(self, linear_curve):
        with pytest.raises(ValueError, match="relative"):
            extract_landmarks(linear_curve, 1.5, benchmark_type="relative")

    def test_invalid_benchmark_type(self, linear_curve):
        with pytest.raises(ValueError, match="benchmark_type"):
            extract_landmarks(linear_curve, 0.5, benchmark_type="extra")

    def test_summary(self, linear_curve):
        s = extract_landmarks(linear_curve, 0.5).summary()
        assert "BMD" in s
        assert "MED" in s
