"""
PySurvStat: survival analysis for right-censored time-to-event data.

Kaplan-Meier curves, Cox proportional hazards regression with the Breslow
baseline hazard, and log-rank tests, with outputs matching R's survival
package.

Submodules:
    core: Result envelope, exceptions, validation, timing
    survival: Survival data container and estimators
"""

__version__ = "0.1.0"

from pysurvstat import survival
from pysurvstat.survival import (
    CoxConfig,
    SurvivalDesign,
    baseline_hazard,
    build_design_matrix,
    coxph,
    kaplan_meier,
    survdiff,
)

__all__ = [
    "__version__",
    "survival",
    "CoxConfig",
    "SurvivalDesign",
    "baseline_hazard",
    "build_design_matrix",
    "coxph",
    "kaplan_meier",
    "survdiff",
]
