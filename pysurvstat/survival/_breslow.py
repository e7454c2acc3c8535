"""
Breslow estimator of the Cox baseline cumulative hazard.

At each distinct event time t_k:

    h_0(t_k) = d_k / sum_{j in R(t_k)} exp(beta @ z_j)
    H_0(t)   = sum_{t_k <= t} h_0(t_k)
    S(t | z) = exp(-H_0(t) * exp(beta @ z))

Covariates are measured from a center: zero (uncentered, the baseline is a
subject with all covariates 0) or the design column means (centered, the
baseline is the "average" subject; R's survfit.coxph default). The two
baselines differ by the factor exp(beta @ mean) and give identical
predictions because prediction measures z from the same center. Risk sets
are always summed at the column means and the offset to the requested
center is carried on the log scale, so covariates far from zero do not
overflow exp(beta @ z).

Variance of H(t | z) combines the Poisson term of the hazard increments and
the propagated coefficient covariance V:

    Var[H(t|z)] = exp(2 beta @ z) * (sum_k d_k / S0_k^2 + a(t)' V a(t))
    a(t)        = sum_{t_k <= t} d_k (z - xbar_k) / S0_k

and Var[S(t|z)] = S^2 Var[H(t|z)] by the delta method.

References:
    Breslow, N. (1972). Discussion of Professor Cox's paper. JRSS-B, 34, 216-217.
    Tsiatis, A. A. (1981). A large sample study of Cox's regression model.
        Annals of Statistics, 9(1), 93-108.
    R Core Team. survival::survfit.coxph, basehaz
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pysurvstat.survival._ci import survival_interval
from pysurvstat.survival._common import BaselineHazardParams, SurvivalCurve
from pysurvstat.survival._cox import RiskSets, risk_set_sums

SURVIVAL_ESTIMATES = ("exponential", "product-limit")


def breslow_fit(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    coefficients: NDArray,
    covariance: NDArray,
    *,
    column_names: tuple[str, ...] = (),
    centered: bool = False,
    conf_level: float = 0.95,
) -> BaselineHazardParams:
    """Compute the Breslow baseline cumulative hazard.

    Parameters
    ----------
    time, event : NDArray
        (n,) data the model was fitted on.
    X : NDArray
        (n, p) design matrix the model was fitted on.
    coefficients : NDArray
        (p,) fitted log hazard ratios.
    covariance : NDArray
        (p, p) coefficient covariance.
    centered : bool
        Measure covariates from the column means instead of zero.
    conf_level : float
        Level for curves derived from this baseline.

    Returns
    -------
    BaselineHazardParams
    """
    coefficients = np.asarray(coefficients, dtype=np.float64)
    p = X.shape[1]
    reference = X.mean(axis=0) if len(X) > 0 else np.zeros(p)
    center = reference if centered else np.zeros(p)
    risk = RiskSets.build(time, event, X - reference)

    # risk_set_sums() shifts the linear predictor by its max; add it back
    # on the log scale so S0 is exp(beta @ (z - reference)) summed
    eta = (X - reference) @ coefficients
    shift = np.max(eta) if len(eta) > 0 else 0.0
    _, _, S0, S1, _ = risk_set_sums(coefficients, risk)
    xbar = S1 / S0[:, np.newaxis]
    log_S0 = np.log(S0) + shift

    d = risk.d
    hazard_ref = d * np.exp(-log_S0)
    cumulative_ref = np.cumsum(hazard_ref)
    poisson_variance = np.cumsum(d * np.exp(-2.0 * log_S0))
    weighted_means = np.cumsum(hazard_ref[:, np.newaxis] * xbar, axis=0)

    # h_0 at center = h_0 at reference * exp(beta @ (center - reference))
    offset = float(coefficients @ (center - reference))
    log_hazard = np.log(d) - log_S0 + offset
    log_cumulative_hazard = np.log(cumulative_ref) + offset
    with np.errstate(over="ignore", under="ignore"):
        hazard = np.exp(log_hazard)
        cumulative_hazard = np.exp(log_cumulative_hazard)

    n_risk = (len(risk.time) - risk.first).astype(np.float64)

    return BaselineHazardParams(
        time=risk.event_times,
        n_risk=n_risk,
        n_events=d,
        hazard=hazard,
        cumulative_hazard=cumulative_hazard,
        log_hazard=log_hazard,
        log_cumulative_hazard=log_cumulative_hazard,
        variance=_hazard_variance(
            center - reference, coefficients, covariance,
            cumulative_ref, poisson_variance, weighted_means,
        ),
        reference_cumulative_hazard=cumulative_ref,
        poisson_variance=poisson_variance,
        weighted_means=weighted_means,
        coefficients=coefficients,
        covariance=np.asarray(covariance, dtype=np.float64),
        center=center,
        reference=reference,
        centered=centered,
        conf_level=conf_level,
        column_names=tuple(column_names),
    )


def _hazard_variance(
    zc: NDArray,
    coefficients: NDArray,
    covariance: NDArray,
    cumulative_ref: NDArray,
    poisson_variance: NDArray,
    weighted_means: NDArray,
) -> NDArray:
    """Var[H(t | z)] for a profile zc measured from the reference."""
    a = np.outer(cumulative_ref, zc) - weighted_means
    propagated = np.einsum("ki,ij,kj->k", a, covariance, a)
    with np.errstate(over="ignore", under="ignore"):
        scale = np.exp(2.0 * (zc @ coefficients))
    return scale * (poisson_variance + propagated)


def cumulative_hazard_at(
    params: BaselineHazardParams, z: NDArray,
) -> tuple[NDArray, NDArray]:
    """H(t | z) and Var[H(t | z)] at each event time for one profile z."""
    z = np.asarray(z, dtype=np.float64)
    log_risk = (z - params.center) @ params.coefficients
    with np.errstate(over="ignore", under="ignore"):
        H = np.exp(params.log_cumulative_hazard + log_risk)
    var_H = _hazard_variance(
        z - params.reference, params.coefficients, params.covariance,
        params.reference_cumulative_hazard, params.poisson_variance,
        params.weighted_means,
    )
    return H, var_H


def _product_limit(params: BaselineHazardParams, log_risk: float) -> NDArray:
    """prod(1 - h_0(t_k)) ** exp(log_risk), evaluated on the log scale.

    Factors with h_0 >= 1 are clipped to 0.
    """
    log_h = params.log_hazard
    with np.errstate(divide="ignore", over="ignore", under="ignore",
                     invalid="ignore"):
        h = np.exp(np.minimum(log_h, 0.0))
        # log(-log(1 - h)); equals log h once h underflows
        log_terms = np.where(
            log_h < -700.0, log_h, np.log(-np.log1p(-h)),
        )
        log_terms = np.where(log_h >= 0.0, np.inf, log_terms)
        return np.exp(-np.exp(np.logaddexp.accumulate(log_terms) + log_risk))


def survival_curve(
    params: BaselineHazardParams,
    z: NDArray,
    *,
    estimate: str = "exponential",
    conf_type: str = "log-log",
) -> SurvivalCurve:
    """Predicted survival S(t | z) with pointwise bounds.

    ``estimate="exponential"`` gives exp(-H_0(t) exp(beta @ z));
    ``estimate="product-limit"`` gives prod(1 - h_0(t_k))^exp(beta @ z),
    which reduces to the Kaplan-Meier estimate under the null model.
    """
    if estimate not in SURVIVAL_ESTIMATES:
        raise ValueError(
            f"estimate must be one of {SURVIVAL_ESTIMATES}, got '{estimate}'"
        )
    z = np.asarray(z, dtype=np.float64)
    H, var_H = cumulative_hazard_at(params, z)

    if estimate == "exponential":
        survival = np.exp(-H)
    else:
        log_risk = float((z - params.center) @ params.coefficients)
        survival = _product_limit(params, log_risk)

    with np.errstate(over="ignore", invalid="ignore"):
        variance = np.where(survival > 0.0, survival ** 2 * var_H, 0.0)
    ci_lower, ci_upper = survival_interval(
        survival, variance, params.conf_level, conf_type,
    )
    return SurvivalCurve(
        time=params.time,
        survival=survival,
        variance=variance,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=params.conf_level,
        conf_type=conf_type,
    )
