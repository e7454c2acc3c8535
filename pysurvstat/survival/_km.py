"""
Kaplan-Meier product-limit estimator.

Matches R's survival::survfit(Surv(time, event) ~ 1):
- Product-limit survival estimate: S(t) = prod(1 - d_j / n_j)
- Greenwood variance: Var(S(t)) = S(t)^2 * sum(d_j / (n_j * (n_j - d_j)))
- Confidence intervals via log-log (default), log, or plain transformation

Censorings tied with an event time stay in that time's risk set and leave
it afterwards. When the whole risk set fails (n_j == d_j), S drops to 0,
the Greenwood term is taken as 0 and every later bound is [0, 0].

References:
    Kaplan, E. L., & Meier, P. (1958). Nonparametric estimation from
        incomplete observations. JASA, 53(282), 457-481.
    R Core Team. survival::survfit.formula
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pysurvstat.survival._ci import survival_interval
from pysurvstat.survival._common import KMParams, SurvivalCurve
from pysurvstat.survival.design import SurvivalDesign


def greenwood_terms(n_risk: NDArray, n_events: NDArray) -> NDArray:
    """d_j / (n_j (n_j - d_j)), with 0 where the whole risk set fails."""
    denom = n_risk * (n_risk - n_events)
    return np.divide(
        n_events, denom,
        out=np.zeros_like(n_events, dtype=np.float64),
        where=denom > 0,
    )


def kaplan_meier_fit(
    design: SurvivalDesign,
    conf_level: float,
    conf_type: str,
) -> KMParams:
    """Compute Kaplan-Meier survival curve.

    Parameters
    ----------
    design : SurvivalDesign
        Validated survival data (strata ignored).
    conf_level : float
        Confidence level for CI (e.g. 0.95).
    conf_type : str
        CI type: "log-log" (default), "log", "plain".

    Returns
    -------
    KMParams
    """
    table = design.risk_table()

    if len(table) == 0:
        empty = np.array([], dtype=np.float64)
        return KMParams(
            time=empty,
            survival=empty,
            n_risk=empty,
            n_events=empty,
            n_censored=empty,
            variance=empty,
            se=empty,
            ci_lower=empty,
            ci_upper=empty,
            conf_level=conf_level,
            conf_type=conf_type,
            n_observations=design.n,
            n_events_total=0,
        )

    n_risk = table.n_risk
    d = table.n_events

    survival = np.cumprod(1.0 - d / n_risk)
    variance = survival ** 2 * np.cumsum(greenwood_terms(n_risk, d))

    # Everyone leaving [t_k, t_{k+1}) without an event at t_k was censored
    next_risk = np.append(n_risk[1:], 0.0)
    n_censored = n_risk - d - next_risk

    ci_lower, ci_upper = survival_interval(
        survival, variance, conf_level, conf_type,
    )

    return KMParams(
        time=table.time,
        survival=survival,
        n_risk=n_risk,
        n_events=d,
        n_censored=n_censored,
        variance=variance,
        se=np.sqrt(variance),
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=conf_level,
        conf_type=conf_type,
        n_observations=design.n,
        n_events_total=design.n_events,
    )


def km_curve(params: KMParams) -> SurvivalCurve:
    """The KM estimate as a SurvivalCurve."""
    return SurvivalCurve(
        time=params.time,
        survival=params.survival,
        variance=params.variance,
        ci_lower=params.ci_lower,
        ci_upper=params.ci_upper,
        conf_level=params.conf_level,
        conf_type=params.conf_type,
    )
