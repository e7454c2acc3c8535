"""
Public API for survival analysis.

    kaplan_meier(time, event) → KMSolution | StratifiedKMSolution
    survdiff(time, event, group) → LogRankSolution
    coxph(time, event, X) → CoxSolution
    baseline_hazard(fit) → BaselineHazardSolution

Each function validates inputs, creates a SurvivalDesign, runs the
estimator and wraps the Result in a Solution.
"""

from __future__ import annotations

import warnings
from typing import Literal

import numpy as np

from pysurvstat.core.compute.timing import Timer
from pysurvstat.core.exceptions import DataValidationError, ValidationError
from pysurvstat.core.result import Result
from pysurvstat.core.validation import check_1d, check_2d, check_conf_level
from pysurvstat.survival._breslow import breslow_fit
from pysurvstat.survival._ci import CONF_TYPES
from pysurvstat.survival._common import CoxConfig, StratifiedKMParams
from pysurvstat.survival._contrasts import DesignMatrix, build_design_matrix
from pysurvstat.survival._cox import cox_fit
from pysurvstat.survival._km import kaplan_meier_fit
from pysurvstat.survival._logrank import logrank_test
from pysurvstat.survival.design import SurvivalDesign
from pysurvstat.survival.solution import (
    BaselineHazardSolution,
    CoxSolution,
    KMSolution,
    LogRankSolution,
    StratifiedKMSolution,
)


def _as_design(time, event, *, strata=None) -> SurvivalDesign:
    """Accept a SurvivalDesign in place of (time, event)."""
    if isinstance(time, SurvivalDesign):
        if event is not None:
            raise ValidationError(
                "event must be omitted when a SurvivalDesign is passed"
            )
        if strata is not None:
            return time.with_strata(strata)
        return time
    if event is None:
        raise ValidationError("event is required with a time array")
    return SurvivalDesign.for_survival(time, event, strata=strata)


def kaplan_meier(
    time,
    event=None,
    *,
    strata=None,
    conf_level: float = 0.95,
    conf_type: Literal["log-log", "log", "plain"] = "log-log",
) -> KMSolution | StratifiedKMSolution:
    """Kaplan-Meier survival curve estimation.

    Matches R's survival::survfit(Surv(time, event) ~ 1,
    conf.type="log-log").

    Parameters
    ----------
    time : array-like or SurvivalDesign
        Time to event or censoring, or a prepared SurvivalDesign.
    event : array-like
        Event indicator (1=event, 0=censored).
    strata : array-like, str or None
        Strata labels (or covariate name); each stratum is estimated
        independently.
    conf_level : float
        Confidence level for CI (default 0.95).
    conf_type : str
        CI transformation: "log-log" (default), "log", "plain".

    Returns
    -------
    KMSolution, or StratifiedKMSolution when strata are given
    """
    check_conf_level(conf_level)
    if conf_type not in CONF_TYPES:
        raise ValueError(
            f"conf_type must be 'log-log', 'log', or 'plain', "
            f"got '{conf_type}'"
        )
    design = _as_design(time, event, strata=strata)

    timer = Timer()
    timer.start()

    if design.strata is None:
        params = kaplan_meier_fit(design, conf_level, conf_type)
        timer.stop()
        result = Result(
            params=params,
            info={"method": "Kaplan-Meier", "conf_type": conf_type},
            timing=timer.result(),
            backend_name="cpu_km",
            warnings=(),
        )
        return KMSolution(_result=result)

    warnings_list = []
    labels = []
    fits = []
    for label, part in design.split_strata().items():
        if part.n_events == 0:
            msg = f"Stratum {label!r} has no events; its curve is constant 1"
            warnings.warn(msg, RuntimeWarning, stacklevel=2)
            warnings_list.append(msg)
        labels.append(label)
        fits.append(kaplan_meier_fit(part, conf_level, conf_type))

    timer.stop()

    result = Result(
        params=StratifiedKMParams(labels=tuple(labels), fits=tuple(fits)),
        info={
            "method": "Kaplan-Meier",
            "conf_type": conf_type,
            "n_strata": len(labels),
        },
        timing=timer.result(),
        backend_name="cpu_km",
        warnings=tuple(warnings_list),
    )
    return StratifiedKMSolution(_result=result)


def survdiff(
    time,
    event=None,
    group=None,
    *,
    rho: float = 0.0,
) -> LogRankSolution:
    """Log-rank test (and G-rho family).

    Matches R's survival::survdiff().

    Parameters
    ----------
    time : array-like or SurvivalDesign
        Time to event or censoring.
    event : array-like
        Event indicator (1=event, 0=censored).
    group : array-like or str
        Group labels (e.g. treatment vs control), or a covariate name when
        ``time`` is a SurvivalDesign.
    rho : float
        G-rho weight parameter. rho=0 (default) gives the standard
        log-rank test. rho=1 gives Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankSolution
    """
    design = _as_design(time, event)
    if group is None:
        raise ValidationError("group is required for survdiff()")
    if isinstance(group, str):
        group = design.column(group)
    group = np.asarray(group)
    check_1d(group, "group")

    if len(group) != design.n:
        raise DataValidationError(
            f"group must have {design.n} elements to match time, "
            f"got {len(group)}",
            field="group",
        )
    if not np.isfinite(rho) or rho < 0:
        raise ValidationError(f"rho must be a non-negative number, got {rho}")

    timer = Timer()
    timer.start()

    params = logrank_test(design, group, rho=rho)

    timer.stop()

    result = Result(
        params=params,
        info={"method": "Log-rank test", "rho": rho},
        timing=timer.result(),
        backend_name="cpu_logrank",
        warnings=(),
    )

    return LogRankSolution(_result=result)


def coxph(
    time,
    event=None,
    X=None,
    *,
    ties: Literal["breslow", "efron"] | None = None,
    config: CoxConfig | None = None,
    column_names=None,
    tol: float | None = None,
    max_iter: int | None = None,
    conf_level: float = 0.95,
) -> CoxSolution:
    """Cox proportional hazards model.

    Matches R's survival::coxph(ties="breslow").

    Parameters
    ----------
    time : array-like or SurvivalDesign
        Time to event or censoring. With a SurvivalDesign, ``X`` defaults
        to ``build_design_matrix(design)``.
    event : array-like
        Event indicator (1=event, 0=censored).
    X : array-like, DesignMatrix or None
        Covariate matrix (n, p) without an intercept column; the baseline
        hazard absorbs it. p may be 0 for the null model.
    ties : str or None
        "breslow" or "efron"; overrides ``config.ties``.
    config : CoxConfig or None
        Newton-Raphson settings (default CoxConfig()).
    column_names : sequence of str or None
        Labels of the columns of X (default x0, x1, ...).
    tol, max_iter : optional
        Overrides for ``config.tolerance`` / ``config.max_iterations``.
    conf_level : float
        Level of the hazard-ratio intervals.

    Returns
    -------
    CoxSolution

    Raises
    ------
    DesignError
        If the design matrix is rank deficient (including constant columns).
    ConvergenceError
        If there are no events or Newton-Raphson does not converge.
    """
    check_conf_level(conf_level)
    config = config if config is not None else CoxConfig()
    overrides = {}
    if ties is not None:
        overrides["ties"] = ties
    if tol is not None:
        overrides["tolerance"] = tol
    if max_iter is not None:
        overrides["max_iterations"] = max_iter
    if overrides:
        config = CoxConfig(**{
            "tolerance": config.tolerance,
            "max_iterations": config.max_iterations,
            "ties": config.ties,
            **overrides,
        })

    if isinstance(time, SurvivalDesign):
        design = _as_design(time, event)
        if X is None:
            X = build_design_matrix(design)
    else:
        design = _as_design(time, event)
        if X is None:
            raise ValidationError("X (covariates) is required for coxph()")

    design_matrix = None
    if isinstance(X, DesignMatrix):
        design_matrix = X
        if column_names is None:
            column_names = X.column_names
        X = X.X

    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    check_2d(X, "X")
    if column_names is None:
        column_names = tuple(f"x{j}" for j in range(X.shape[1]))
    column_names = tuple(str(c) for c in column_names)
    if len(column_names) != X.shape[1]:
        raise ValidationError(
            f"column_names has {len(column_names)} entries for "
            f"{X.shape[1]} columns"
        )

    # Route the matrix through the design for row-count and finiteness checks
    checked = SurvivalDesign.for_survival(
        design.time, design.event, X if X.shape[1] > 0 else None,
        names=list(column_names),
    )
    X = checked.numeric_matrix()

    timer = Timer()
    timer.start()

    with timer.section("newton_raphson"):
        params = cox_fit(
            design.time, design.event, X, column_names, config,
            conf_level=conf_level,
        )

    timer.stop()

    warnings_list = []
    bounds = np.concatenate([params.hr_ci_lower, params.hr_ci_upper])
    if not np.all(np.isfinite(bounds)) or np.any(bounds == 0.0):
        msg = (
            "Hazard-ratio confidence bounds overflow; coefficients may be "
            "near separation"
        )
        warnings.warn(msg, RuntimeWarning, stacklevel=2)
        warnings_list.append(msg)

    result = Result(
        params=params,
        info={
            "method": "Cox PH",
            "ties": config.ties,
            "n_iter": params.n_iter,
            "score_norm": params.score_norm,
            "tolerance": config.tolerance,
        },
        timing=timer.result(),
        backend_name="cpu_cox",
        warnings=tuple(warnings_list),
    )

    return CoxSolution(
        _result=result,
        _design=design,
        _X=X,
        _design_matrix=design_matrix,
    )


def baseline_hazard(
    fit: CoxSolution,
    *,
    centered: bool = False,
    conf_level: float | None = None,
) -> BaselineHazardSolution:
    """Breslow baseline cumulative hazard of a fitted Cox model.

    Matches R's survival::basehaz(fit, centered=...).

    Parameters
    ----------
    fit : CoxSolution
        Converged Cox model.
    centered : bool
        Measure covariates from the column means (R's default for survfit)
        rather than from zero.
    conf_level : float or None
        Level for derived survival curves (default: the fit's level).

    Returns
    -------
    BaselineHazardSolution
    """
    if not isinstance(fit, CoxSolution):
        raise TypeError(
            f"baseline_hazard() needs a CoxSolution, got {type(fit).__name__}"
        )
    conf_level = fit.conf_level if conf_level is None else conf_level
    check_conf_level(conf_level)

    timer = Timer()
    timer.start()

    params = breslow_fit(
        fit.design.time, fit.design.event, fit.X,
        fit.coefficients, fit.covariance,
        column_names=fit.column_names,
        centered=centered,
        conf_level=conf_level,
    )

    timer.stop()

    result = Result(
        params=params,
        info={"method": "Breslow", "centered": centered},
        timing=timer.result(),
        backend_name="cpu_breslow",
        warnings=(),
    )
    return BaselineHazardSolution(
        _result=result, _design_matrix=fit.design_matrix,
    )
