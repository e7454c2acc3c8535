"""
Parameter payloads for survival analysis results.

Each dataclass is a frozen payload carried inside a Result[P] envelope.
SurvivalCurve is the shared step-function output of the Kaplan-Meier and
Breslow paths; CoxConfig holds the Newton-Raphson settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from pysurvstat.core.exceptions import ValidationError


class SurvivalPoint(NamedTuple):
    """One step of a survival curve."""

    time: float
    estimate: float
    lower: float
    upper: float


@dataclass(frozen=True)
class SurvivalCurve:
    """Right-continuous survival step function with pointwise bounds.

    The arrays hold values at the jump times; S(t) = 1 and its variance is
    0 for t before the first jump.
    """

    time: NDArray                # (m,) jump times, ascending
    survival: NDArray            # (m,) S(t)
    variance: NDArray            # (m,) Var[S(t)]
    ci_lower: NDArray            # (m,)
    ci_upper: NDArray            # (m,)
    conf_level: float
    conf_type: str

    def _index(self, t) -> NDArray:
        return np.searchsorted(self.time, np.asarray(t, dtype=np.float64),
                               side="right") - 1

    def _step(self, values: NDArray, t, before: float):
        idx = self._index(t)
        padded = np.concatenate([[before], values])
        out = padded[idx + 1]
        return float(out) if np.ndim(out) == 0 else out

    def survival_at(self, t):
        """S(t) for scalar or array t."""
        return self._step(self.survival, t, 1.0)

    def variance_at(self, t):
        """Var[S(t)] for scalar or array t."""
        return self._step(self.variance, t, 0.0)

    def bounds_at(self, t):
        """(lower, upper) confidence bounds at t."""
        return (
            self._step(self.ci_lower, t, 1.0),
            self._step(self.ci_upper, t, 1.0),
        )

    def points(self) -> list[SurvivalPoint]:
        """Curve as (time, estimate, lower, upper) tuples from the origin."""
        out = [SurvivalPoint(0.0, 1.0, 1.0, 1.0)]
        out.extend(
            SurvivalPoint(float(t), float(s), float(lo), float(hi))
            for t, s, lo, hi in zip(
                self.time, self.survival, self.ci_lower, self.ci_upper,
            )
        )
        return out


@dataclass(frozen=True)
class KMParams:
    """Kaplan-Meier survival curve parameters.

    Matches the output of R's survival::survfit().
    """

    time: NDArray                # (m,) unique event times
    survival: NDArray            # (m,) S(t) at each event time
    n_risk: NDArray              # (m,) number at risk at each time
    n_events: NDArray            # (m,) events at each time
    n_censored: NDArray          # (m,) censored in [t_k, t_{k+1})
    variance: NDArray            # (m,) Greenwood variance
    se: NDArray                  # (m,) Greenwood standard error
    ci_lower: NDArray            # (m,) lower CI for S(t)
    ci_upper: NDArray            # (m,) upper CI for S(t)
    conf_level: float
    conf_type: str               # "log-log" (default), "log", "plain"
    n_observations: int
    n_events_total: int


@dataclass(frozen=True)
class StratifiedKMParams:
    """Independent Kaplan-Meier fits, one per stratum."""

    labels: tuple                # stratum labels, sorted
    fits: tuple[KMParams, ...]   # aligned with labels


@dataclass(frozen=True)
class LogRankParams:
    """Log-rank test parameters.

    Matches the output of R's survival::survdiff().
    """

    statistic: float             # chi-squared statistic
    df: int                      # n_groups - 1
    p_value: float
    n_groups: int
    observed: NDArray            # (n_groups,) weighted observed events
    expected: NDArray            # (n_groups,) weighted expected events
    variance: NDArray            # (n_groups, n_groups)
    n_per_group: NDArray         # (n_groups,)
    rho: float                   # 0 = log-rank, 1 = Peto-Peto
    group_labels: NDArray


@dataclass(frozen=True)
class CoxConfig:
    """Newton-Raphson settings for the Cox fitter.

    Attributes:
        tolerance: stop once the Euclidean norm of the score falls below this
        max_iterations: maximum number of Newton steps
        ties: "breslow" (default) or "efron"
    """

    tolerance: float = 1e-9
    max_iterations: int = 25
    ties: str = "breslow"

    def __post_init__(self) -> None:
        if not self.tolerance > 0:
            raise ValidationError(
                f"tolerance must be positive, got {self.tolerance}"
            )
        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 1:
            raise ValidationError(
                f"max_iterations must be a positive integer, "
                f"got {self.max_iterations}"
            )
        if self.ties not in ("breslow", "efron"):
            raise ValidationError(
                f"ties must be 'breslow' or 'efron', got '{self.ties}'"
            )


@dataclass(frozen=True)
class CoxParams:
    """Cox proportional hazards model parameters.

    Matches the output of R's survival::coxph(ties="breslow").
    """

    coefficients: NDArray        # (p,) log hazard ratios
    covariance: NDArray          # (p, p) inverse observed information
    standard_errors: NDArray     # (p,)
    z_statistics: NDArray        # (p,) coef / se
    p_values: NDArray            # (p,) two-sided Wald test
    hazard_ratios: NDArray       # (p,) exp(coef)
    hr_ci_lower: NDArray         # (p,) exp(coef - z * se)
    hr_ci_upper: NDArray         # (p,) exp(coef + z * se)
    conf_level: float
    loglik: tuple[float, float]  # (null log-lik, model log-lik)
    concordance: float           # Harrell's C
    column_names: tuple[str, ...]
    column_means: NDArray        # (p,) design column means
    score_norm: float            # ||U(beta_hat)|| at convergence
    n_events: int
    n_observations: int
    n_iter: int                  # Newton-Raphson steps taken
    ties: str


@dataclass(frozen=True)
class BaselineHazardParams:
    """Breslow baseline hazard of a fitted Cox model.

    The hazard fields are expressed for covariates measured from ``center``
    (column means when centered, zeros otherwise). The variance terms are
    kept at ``reference`` (always the column means), where the linear
    predictor stays small; the log fields let predictions combine the two
    without overflow.
    """

    time: NDArray                # (m,) unique event times
    n_risk: NDArray              # (m,)
    n_events: NDArray            # (m,)
    hazard: NDArray              # (m,) increments d_k / S0_k
    cumulative_hazard: NDArray   # (m,) H_0(t)
    log_hazard: NDArray          # (m,) log h_0(t_k)
    log_cumulative_hazard: NDArray  # (m,) log H_0(t)
    variance: NDArray            # (m,) Var[H_0(t)] at the center profile
    reference_cumulative_hazard: NDArray  # (m,) H(t) at the column means
    poisson_variance: NDArray    # (m,) cumsum(d_k / S0_k^2) at reference
    weighted_means: NDArray      # (m, p) cumsum(d_k (xbar_k - ref) / S0_k)
    coefficients: NDArray        # (p,)
    covariance: NDArray          # (p, p)
    center: NDArray              # (p,)
    reference: NDArray           # (p,) column means
    centered: bool
    conf_level: float
    column_names: tuple[str, ...]

    @property
    def baseline_survival(self) -> NDArray:
        """S_0(t) = exp(-H_0(t))."""
        return np.exp(-self.cumulative_hazard)
