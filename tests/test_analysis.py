"""Tests for the one-call analysis pipeline."""

import logging

import numpy as np
import pytest

from pynetdose import Contrast, ReferenceSpec, UnknownAgentError, analyze


class TestAnalyze:
    """Fit, predict and extract landmarks for every agent."""

    def test_agents_covered(self, heterogeneous_network):
        res = analyze(heterogeneous_network, ReferenceSpec("placebo"))
        assert set(res.curves) == {"A", "B"}
        assert set(res.landmarks) == {"A", "B"}
        assert res.model.effects_model == "random"

    def test_landmarks_match_direct_calls(self, exact_network):
        res = analyze(exact_network, ReferenceSpec("placebo"), "common", benchmark_threshold=0.5)
        # A: 0.05 per unit dose reaches 0.5 at dose 10
        assert res.landmarks["A"].bmd == pytest.approx(10.0, abs=0.25)
        assert res.landmarks["A"].bmdl <= res.landmarks["A"].bmd
        # linear curves never plateau
        assert res.landmarks["A"].med_status == "not_reached"

    def test_custom_grid(self, exact_network):
        grid = np.linspace(0, 100, 11)
        res = analyze(exact_network, ReferenceSpec("placebo"), dose_grids={"B": grid})
        np.testing.assert_array_equal(res.curves["B"].dose, grid)
        assert len(res.curves["A"]) == 100

    def test_unknown_grid_agent(self, exact_network):
        with pytest.raises(UnknownAgentError):
            analyze(exact_network, ReferenceSpec("placebo"), dose_grids={"Z": [0.0, 1.0]})

    def test_reference_grid_rejected(self, exact_network):
        with pytest.raises(ValueError, match="reference agent 'placebo'"):
            analyze(exact_network, ReferenceSpec("placebo"), dose_grids={"placebo": [0.0, 1.0]})

    def test_non_estimable_agent_flagged(self, caplog):
        data = [
            Contrast("s1", "A", 10.0, "placebo", 0.0, 0.5, 0.1),
            Contrast("s2", "B", 0.0, "placebo", 0.0, 0.1, 0.1),
        ]
        with caplog.at_level(logging.WARNING, logger="pynetdose"):
            res = analyze(
                data, ReferenceSpec("placebo"), "common", dose_grids={"B": [0.0, 5.0]}
            )
        assert res.landmarks["B"].med_status == "not_estimable"
        assert res.landmarks["A"].med_status != "not_estimable"
        assert "not estimable" in caplog.text

    def test_summary(self, heterogeneous_network):
        s = analyze(heterogeneous_network, ReferenceSpec("placebo"), benchmark_threshold=0.3).summary()
        assert "Landmarks" in s
        assert "BMDL" in s
