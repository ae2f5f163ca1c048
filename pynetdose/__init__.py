"""
PyNetdose: frequentist dose-response network meta-analysis for Python.

Synthesises pairwise study contrasts between (agent, dose) arms into one
dose-response curve per agent relative to a reference agent, under a
common-effect or random-effects model.  Provides predicted curves with
confidence bands and the landmarks BMD, BMDL and MED.

Usage:
    from pynetdose import Contrast, ReferenceSpec, fit_network, predict, extract_landmarks

Validates against: R package netdose.
"""

__version__ = "0.1.0"

from pynetdose._common import (
    Contrast,
    ReferenceSpec,
    contrasts_from_arrays,
    NetdoseError,
    InvalidReferenceError,
    InvalidDoseError,
    SingularDesignError,
    UnknownAgentError,
)
from pynetdose._forms import DoseResponseForm, FORMS, VALID_FORMS, get_form
from pynetdose._network import AgentBasis, NetworkDesign, build_design, arm_doses
from pynetdose._fit import FittedModel, fit_network, fit_design
from pynetdose._predict import PredictionCurve, predict, default_dose_grid
from pynetdose._landmarks import Landmarks, MED_STATUSES, extract_landmarks
from pynetdose._analysis import AnalysisResult, analyze

__all__ = [
    "__version__",
    "Contrast",
    "ReferenceSpec",
    "contrasts_from_arrays",
    "NetdoseError",
    "InvalidReferenceError",
    "InvalidDoseError",
    "SingularDesignError",
    "UnknownAgentError",
    "DoseResponseForm",
    "FORMS",
    "VALID_FORMS",
    "get_form",
    "AgentBasis",
    "NetworkDesign",
    "build_design",
    "arm_doses",
    "FittedModel",
    "fit_network",
    "fit_design",
    "PredictionCurve",
    "predict",
    "default_dose_grid",
    "Landmarks",
    "MED_STATUSES",
    "extract_landmarks",
    "AnalysisResult",
    "analyze",
]
