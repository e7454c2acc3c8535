"""
Survival analysis.

Public API:
    SurvivalDesign.for_survival(time, event, ...) -> SurvivalDesign
    build_design_matrix(design, terms, ...) -> DesignMatrix
    kaplan_meier(time, event, ...) -> KMSolution | StratifiedKMSolution
    survdiff(time, event, group, ...) -> LogRankSolution
    coxph(time, event, X, ...) -> CoxSolution
    baseline_hazard(fit, ...) -> BaselineHazardSolution
"""

from pysurvstat.survival.design import Observation, RiskTable, SurvivalDesign
from pysurvstat.survival._contrasts import DesignMatrix, build_design_matrix
from pysurvstat.survival._common import CoxConfig, SurvivalCurve, SurvivalPoint
from pysurvstat.survival.solvers import (
    baseline_hazard,
    coxph,
    kaplan_meier,
    survdiff,
)
from pysurvstat.survival.solution import (
    BaselineHazardSolution,
    CoxSolution,
    KMSolution,
    LogRankSolution,
    StratifiedKMSolution,
)

__all__ = [
    "Observation",
    "RiskTable",
    "SurvivalDesign",
    "DesignMatrix",
    "build_design_matrix",
    "CoxConfig",
    "SurvivalCurve",
    "SurvivalPoint",
    "baseline_hazard",
    "coxph",
    "kaplan_meier",
    "survdiff",
    "BaselineHazardSolution",
    "CoxSolution",
    "KMSolution",
    "LogRankSolution",
    "StratifiedKMSolution",
]
