"""
Pointwise confidence intervals for survival estimates.

Shared by the Kaplan-Meier and Cox/Breslow paths. The log-log transform

    theta = log(-log S),   Var[theta] = Var[S] / (S log S)^2
    CI    = exp(-exp(theta -/+ z * sqrt(Var[theta])))

keeps bounds inside [0, 1] but is undefined at S = 0 and S = 1. The raw
transform functions raise DomainError there; survival_interval() handles
the boundaries ([1, 1] at S = 1, [0, 0] at S = 0).

References:
    Kalbfleisch, J. D. & Prentice, R. L. (2002). The Statistical Analysis
        of Failure Time Data, 2nd ed., section 1.4.
    R Core Team. survival::survfit, conf.type
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import DomainError
from pysurvstat.core.validation import check_conf_level

CONF_TYPES = ("log-log", "log", "plain")


def z_critical(conf_level: float) -> float:
    """Two-sided standard normal quantile (1.96 at 95%)."""
    check_conf_level(conf_level)
    return float(stats.norm.ppf((1.0 + conf_level) / 2.0))


def _check_open_unit(s: NDArray) -> None:
    bad = ~((s > 0.0) & (s < 1.0))
    if np.any(bad):
        value = float(np.asarray(s)[bad][0]) if np.ndim(s) else float(s)
        raise DomainError(
            f"log-log transform is undefined at S={value}; "
            f"it requires 0 < S < 1",
            value=value,
        )


def loglog(s):
    """theta = log(-log S). Raises DomainError outside (0, 1)."""
    s = np.asarray(s, dtype=np.float64)
    _check_open_unit(s)
    out = np.log(-np.log(s))
    return float(out) if out.ndim == 0 else out


def inverse_loglog(theta):
    """S = exp(-exp(theta))."""
    out = np.exp(-np.exp(np.asarray(theta, dtype=np.float64)))
    return float(out) if out.ndim == 0 else out


def loglog_variance(s, variance):
    """Var[theta] = Var[S] / (S log S)^2 by the delta method."""
    s = np.asarray(s, dtype=np.float64)
    _check_open_unit(s)
    out = np.asarray(variance, dtype=np.float64) / (s * np.log(s)) ** 2
    return float(out) if out.ndim == 0 else out


def loglog_interval(s, variance, conf_level: float = 0.95):
    """Raw log-log interval; raises DomainError at S in {0, 1}.

    Returns
    -------
    (lower, upper)
    """
    z = z_critical(conf_level)
    theta = loglog(s)
    half = z * np.sqrt(loglog_variance(s, variance))
    return inverse_loglog(theta + half), inverse_loglog(theta - half)


def survival_interval(
    survival: NDArray,
    variance: NDArray,
    conf_level: float = 0.95,
    conf_type: str = "log-log",
) -> tuple[NDArray, NDArray]:
    """Boundary-aware pointwise CI for S(t).

    Parameters
    ----------
    survival : S(t) values in [0, 1]
    variance : Var[S(t)]
    conf_level : e.g. 0.95
    conf_type : "log-log" (default), "log", or "plain"

    Returns
    -------
    (ci_lower, ci_upper), each within [0, 1]; [1, 1] where S = 1 and
    [0, 0] where S = 0.
    """
    if conf_type not in CONF_TYPES:
        raise ValueError(
            f"Unknown conf_type '{conf_type}'. "
            f"Choose from 'log-log', 'log', 'plain'."
        )
    z = z_critical(conf_level)

    s = np.asarray(survival, dtype=np.float64)
    var = np.asarray(variance, dtype=np.float64)
    lower = s.copy()
    upper = s.copy()

    interior = (s > 0.0) & (s < 1.0)
    si = s[interior]
    se = np.sqrt(var[interior])

    if conf_type == "log-log":
        theta = np.log(-np.log(si))
        half = z * se / np.abs(si * np.log(si))
        lower[interior] = np.exp(-np.exp(theta + half))
        upper[interior] = np.exp(-np.exp(theta - half))
    elif conf_type == "log":
        half = z * se / si
        lower[interior] = np.exp(np.log(si) - half)
        upper[interior] = np.exp(np.log(si) + half)
    else:
        lower[interior] = si - z * se
        upper[interior] = si + z * se

    return np.clip(lower, 0.0, 1.0), np.clip(upper, 0.0, 1.0)
