"""
Solution wrappers for survival analysis results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.result import Result
from pysurvstat.survival._breslow import cumulative_hazard_at, survival_curve
from pysurvstat.survival._common import (
    BaselineHazardParams,
    CoxParams,
    KMParams,
    LogRankParams,
    StratifiedKMParams,
    SurvivalCurve,
    SurvivalPoint,
)
from pysurvstat.survival._contrasts import DesignMatrix
from pysurvstat.survival._km import km_curve
from pysurvstat.survival.design import SurvivalDesign


class KMSolution:
    """Kaplan-Meier survival curve solution.

    Properties mirror R's survfit() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[KMParams]) -> None:
        self._result = _result

    # -- Properties delegating to KMParams --

    @property
    def time(self):
        """Unique event times."""
        return self._result.params.time

    @property
    def survival(self):
        """S(t) at each event time."""
        return self._result.params.survival

    @property
    def n_risk(self):
        """Number at risk at each event time."""
        return self._result.params.n_risk

    @property
    def n_events(self):
        """Number of events at each event time."""
        return self._result.params.n_events

    @property
    def n_censored(self):
        """Number censored from each event time up to the next."""
        return self._result.params.n_censored

    @property
    def variance(self):
        """Greenwood variance of S(t)."""
        return self._result.params.variance

    @property
    def se(self):
        """Greenwood standard error of S(t)."""
        return self._result.params.se

    @property
    def ci_lower(self):
        return self._result.params.ci_lower

    @property
    def ci_upper(self):
        return self._result.params.ci_upper

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def conf_type(self) -> str:
        return self._result.params.conf_type

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_events_total(self) -> int:
        return self._result.params.n_events_total

    @property
    def survival_curve(self) -> SurvivalCurve:
        return km_curve(self._result.params)

    def survival_at(self, t):
        """Step-function S(t); 1 before the first event time."""
        return self.survival_curve.survival_at(t)

    def variance_at(self, t):
        return self.survival_curve.variance_at(t)

    def curve(self) -> list[SurvivalPoint]:
        """(time, estimate, lower, upper) tuples starting at (0, 1, 1, 1)."""
        return self.survival_curve.points()

    @property
    def median_survival(self) -> float | None:
        """Median survival time (smallest t where S(t) <= 0.5)."""
        if len(self.survival) == 0:
            return None
        idx = self.survival <= 0.5
        if not idx.any():
            return None
        return float(self.time[idx][0])

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        """R-style summary of Kaplan-Meier fit."""
        lines = []
        lines.append("Call: kaplan_meier()")
        lines.append("")
        lines.append(
            f"  n={self.n_observations}, "
            f"events={self.n_events_total}"
        )
        lines.append("")

        median = self.median_survival
        median_str = f"{median:.4g}" if median is not None else "NA"
        lines.append(f"  median survival = {median_str}")
        lines.append("")

        ci_pct = int(round(self.conf_level * 100))
        lines.append(
            f"  {'time':>8s}  {'n.risk':>8s}  {'n.event':>8s}  "
            f"{'survival':>10s}  {'std.err':>10s}  "
            f"{f'lower {ci_pct}%':>10s}  {f'upper {ci_pct}%':>10s}"
        )

        m = len(self.time)
        show = min(m, 20)
        for i in range(show):
            lines.append(
                f"  {self.time[i]:8.4g}  {self.n_risk[i]:8.0f}  "
                f"{self.n_events[i]:8.0f}  "
                f"{self.survival[i]:10.6f}  {self.se[i]:10.6f}  "
                f"{self.ci_lower[i]:10.6f}  {self.ci_upper[i]:10.6f}"
            )
        if m > 20:
            lines.append(f"  ... ({m - 20} more rows)")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"KMSolution(n={self.n_observations}, "
            f"events={self.n_events_total}, "
            f"median={self.median_survival})"
        )


class StratifiedKMSolution:
    """Independent Kaplan-Meier curves, one per stratum."""

    __slots__ = ('_result',)

    def __init__(self, _result: Result[StratifiedKMParams]) -> None:
        self._result = _result

    @property
    def labels(self) -> tuple:
        return self._result.params.labels

    def _solution(self, params: KMParams) -> KMSolution:
        return KMSolution(Result(
            params=params,
            info={"method": "Kaplan-Meier"},
            timing=None,
            backend_name=self._result.backend_name,
            warnings=(),
        ))

    def __getitem__(self, label) -> KMSolution:
        for lab, params in zip(self.labels, self._result.params.fits):
            if lab == label:
                return self._solution(params)
        raise KeyError(label)

    def __iter__(self):
        return iter(self.labels)

    def __len__(self) -> int:
        return len(self.labels)

    def items(self) -> list[tuple[Any, KMSolution]]:
        return [(lab, self[lab]) for lab in self.labels]

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        blocks = []
        for label, fit in self.items():
            blocks.append(f"strata={label}")
            blocks.append(fit.summary())
            blocks.append("")
        return "\n".join(blocks).rstrip()

    def __repr__(self) -> str:
        return f"StratifiedKMSolution(strata={list(self.labels)})"


class LogRankSolution:
    """Log-rank test solution.

    Properties mirror R's survdiff() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[LogRankParams]) -> None:
        self._result = _result

    @property
    def statistic(self) -> float:
        return self._result.params.statistic

    @property
    def df(self) -> int:
        return self._result.params.df

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def n_groups(self) -> int:
        return self._result.params.n_groups

    @property
    def observed(self):
        return self._result.params.observed

    @property
    def expected(self):
        return self._result.params.expected

    @property
    def variance(self):
        return self._result.params.variance

    @property
    def n_per_group(self):
        return self._result.params.n_per_group

    @property
    def rho(self) -> float:
        return self._result.params.rho

    @property
    def group_labels(self):
        return self._result.params.group_labels

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def summary(self) -> str:
        """R-style summary of log-rank test."""
        lines = []
        lines.append("Call: survdiff()")
        lines.append("")

        lines.append(
            f"  {'':>12s}  {'N':>6s}  {'Observed':>10s}  "
            f"{'Expected':>10s}  {'(O-E)^2/E':>10s}"
        )
        for i in range(self.n_groups):
            oe = ((self.observed[i] - self.expected[i]) ** 2
                  / self.expected[i]) if self.expected[i] > 0 else 0
            label = str(self.group_labels[i])
            lines.append(
                f"  {label:>12s}  {self.n_per_group[i]:6.0f}  "
                f"{self.observed[i]:10.1f}  {self.expected[i]:10.1f}  "
                f"{oe:10.3f}"
            )

        lines.append("")
        lines.append(
            f"  Chisq= {self.statistic:.4f} on {self.df} degrees of freedom, "
            f"p= {self.p_value:.4g}"
        )

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LogRankSolution(chisq={self.statistic:.4f}, "
            f"df={self.df}, p={self.p_value:.4g})"
        )


class CoxSolution:
    """Cox proportional hazards solution.

    Properties mirror R's coxph() output. Keeps the data it was fitted on
    so the Breslow baseline hazard can be derived from it.
    """

    __slots__ = ('_result', '_design', '_X', '_design_matrix')

    def __init__(
        self,
        _result: Result[CoxParams],
        _design: SurvivalDesign,
        _X: NDArray,
        _design_matrix: DesignMatrix | None = None,
    ) -> None:
        self._result = _result
        self._design = _design
        self._X = _X
        self._design_matrix = _design_matrix

    @property
    def coefficients(self):
        return self._result.params.coefficients

    @property
    def covariance(self):
        """Inverse observed information at the estimate."""
        return self._result.params.covariance

    @property
    def standard_errors(self):
        return self._result.params.standard_errors

    @property
    def z_statistics(self):
        return self._result.params.z_statistics

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def hazard_ratios(self):
        return self._result.params.hazard_ratios

    @property
    def hr_ci_lower(self):
        return self._result.params.hr_ci_lower

    @property
    def hr_ci_upper(self):
        return self._result.params.hr_ci_upper

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def loglik(self):
        """(null, model) partial log-likelihood."""
        return self._result.params.loglik

    @property
    def lr_statistic(self) -> float:
        """Likelihood-ratio statistic 2 (L(beta) - L(0))."""
        return 2.0 * (self.loglik[1] - self.loglik[0])

    @property
    def lr_p_value(self) -> float:
        df = len(self.coefficients)
        if df == 0:
            return 1.0
        return float(stats.chi2.sf(self.lr_statistic, df))

    @property
    def concordance(self) -> float:
        return self._result.params.concordance

    @property
    def column_names(self) -> tuple[str, ...]:
        return self._result.params.column_names

    @property
    def column_means(self):
        return self._result.params.column_means

    @property
    def score_norm(self) -> float:
        return self._result.params.score_norm

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_iter(self) -> int:
        return self._result.params.n_iter

    @property
    def ties(self) -> str:
        return self._result.params.ties

    @property
    def design(self) -> SurvivalDesign:
        """Survival data the model was fitted on."""
        return self._design

    @property
    def X(self) -> NDArray:
        """Numeric design matrix the model was fitted on."""
        return self._X

    @property
    def design_matrix(self) -> DesignMatrix | None:
        """Encoded design (None when fitted on a plain array)."""
        return self._design_matrix

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def baseline_hazard(
        self, *, centered: bool = False, conf_level: float | None = None,
    ) -> BaselineHazardSolution:
        """Breslow baseline cumulative hazard of this fit."""
        from pysurvstat.survival.solvers import baseline_hazard

        return baseline_hazard(self, centered=centered, conf_level=conf_level)

    def summary(self) -> str:
        """R-style summary of Cox PH fit."""
        lines = []
        lines.append("Call: coxph()")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, "
            f"number of events= {self.n_events}"
        )
        lines.append("")

        lines.append(
            f"  {'':>14s}  {'coef':>10s}  {'exp(coef)':>10s}  "
            f"{'se(coef)':>10s}  {'z':>10s}  {'Pr(>|z|)':>12s}"
        )
        for i, name in enumerate(self.column_names):
            lines.append(
                f"  {name:>14s}  {self.coefficients[i]:10.6f}  "
                f"{self.hazard_ratios[i]:10.6f}  "
                f"{self.standard_errors[i]:10.6f}  "
                f"{self.z_statistics[i]:10.4f}  "
                f"{self.p_values[i]:12.4g}"
            )

        ci_pct = int(round(self.conf_level * 100))
        lines.append("")
        lines.append(
            f"  {'':>14s}  {'exp(coef)':>10s}  "
            f"{f'lower .{ci_pct}':>10s}  {f'upper .{ci_pct}':>10s}"
        )
        for i, name in enumerate(self.column_names):
            lines.append(
                f"  {name:>14s}  {self.hazard_ratios[i]:10.6f}  "
                f"{self.hr_ci_lower[i]:10.6f}  {self.hr_ci_upper[i]:10.6f}"
            )

        lines.append("")
        lines.append(f"  Concordance= {self.concordance:.4f}")
        lines.append(
            f"  Likelihood ratio test= {self.lr_statistic:.4f} "
            f"on {len(self.coefficients)} df, p={self.lr_p_value:.4g}"
        )
        lines.append(f"  Ties: {self.ties}, iterations: {self.n_iter}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CoxSolution(n={self.n_observations}, "
            f"events={self.n_events}, "
            f"concordance={self.concordance:.4f})"
        )


class BaselineHazardSolution:
    """Breslow baseline hazard and the survival curves derived from it.

    Profiles passed to the prediction methods are on the original covariate
    scale (raw design rows, or mappings encoded through the DesignMatrix);
    centering is applied internally.
    """

    __slots__ = ('_result', '_design_matrix')

    def __init__(
        self,
        _result: Result[BaselineHazardParams],
        _design_matrix: DesignMatrix | None = None,
    ) -> None:
        self._result = _result
        self._design_matrix = _design_matrix

    @property
    def params(self) -> BaselineHazardParams:
        return self._result.params

    @property
    def time(self):
        return self.params.time

    @property
    def n_risk(self):
        return self.params.n_risk

    @property
    def n_events(self):
        return self.params.n_events

    @property
    def hazard(self):
        """Baseline hazard increments h_0(t_k)."""
        return self.params.hazard

    @property
    def cumulative_hazard(self):
        """H_0(t) at each event time."""
        return self.params.cumulative_hazard

    @property
    def variance(self):
        """Var[H_0(t)] including coefficient uncertainty."""
        return self.params.variance

    @property
    def se(self):
        return np.sqrt(self.params.variance)

    @property
    def centered(self) -> bool:
        return self.params.centered

    @property
    def center(self):
        return self.params.center

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def cumulative_hazard_at(self, t):
        """Step-function H_0(t); 0 before the first event time."""
        idx = np.searchsorted(self.time, np.asarray(t, dtype=np.float64),
                              side="right") - 1
        padded = np.concatenate([[0.0], self.cumulative_hazard])
        out = padded[idx + 1]
        return float(out) if np.ndim(out) == 0 else out

    def points(self) -> list[tuple[float, float]]:
        """(time, cumulative_hazard) pairs."""
        return [
            (float(t), float(h))
            for t, h in zip(self.time, self.cumulative_hazard)
        ]

    def _profile(self, z) -> NDArray:
        if isinstance(z, Mapping):
            if self._design_matrix is None:
                raise TypeError(
                    "covariate mappings need a model fitted on a DesignMatrix"
                )
            return self._design_matrix.encode(z)
        z = np.asarray(z, dtype=np.float64).ravel()
        p = len(self.params.coefficients)
        if len(z) != p:
            raise ValueError(f"profile must have {p} values, got {len(z)}")
        return z

    def baseline_survival(
        self, *, estimate: str = "exponential", conf_type: str = "log-log",
    ) -> SurvivalCurve:
        """S_0(t) for the reference profile (zero or the column means)."""
        return survival_curve(
            self.params, self.params.center,
            estimate=estimate, conf_type=conf_type,
        )

    def predict_cumulative_hazard(self, z) -> tuple[NDArray, NDArray]:
        """H(t | z) and its variance at each event time."""
        return cumulative_hazard_at(self.params, self._profile(z))

    def predict_survival(
        self, z, *, estimate: str = "exponential", conf_type: str = "log-log",
    ) -> SurvivalCurve:
        """S(t | z) = S_0(t) ** exp(beta @ z) with log-log bounds."""
        return survival_curve(
            self.params, self._profile(z),
            estimate=estimate, conf_type=conf_type,
        )

    def group_survival(
        self, Z, *, estimate: str = "exponential", conf_type: str = "log-log",
    ) -> SurvivalCurve:
        """Survival curve at the group's mean covariate profile."""
        if isinstance(Z, (list, tuple)) and Z and isinstance(Z[0], Mapping):
            rows = np.vstack([self._profile(z) for z in Z])
        else:
            rows = np.atleast_2d(np.asarray(Z, dtype=np.float64))
        return survival_curve(
            self.params, rows.mean(axis=0),
            estimate=estimate, conf_type=conf_type,
        )

    def __repr__(self) -> str:
        return (
            f"BaselineHazardSolution(times={len(self.time)}, "
            f"centered={self.centered})"
        )
