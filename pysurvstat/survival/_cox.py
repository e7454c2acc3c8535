"""
Cox Proportional Hazards model via Newton-Raphson.

Implements Breslow's (default) and Efron's methods for tied event times,
matching R's survival::coxph(ties="breslow") / coxph(ties="efron").

Algorithm:
    Initialize beta = 0
    Repeat:
        Compute: partial log-likelihood L(beta), score U(beta),
                 observed information I(beta)
        Stop when ||U(beta)|| < tolerance
        beta_new = beta + I(beta)^{-1} @ U(beta)   (halved while L decreases)
    Raise ConvergenceError after max_iterations steps, on a singular
    information matrix, or on non-finite iterates.

Breslow partial likelihood:
    L(beta) = sum_j [ sum_{i in D_j} x_i @ beta
                      - d_j * log(sum_{l in R_j} exp(x_l @ beta)) ]

    where D_j = set of events at time t_j, d_j = |D_j|,
          R_j = risk set at time t_j (time >= t_j).

Risk-set sums S0, S1, S2 are reverse cumulative sums over subjects sorted by
time, so each Newton step costs O(n p^2). Columns are centered before
fitting; the partial likelihood is invariant to that shift.

References:
    Cox, D. R. (1972). Regression models and life-tables. JRSS-B, 34(2), 187-220.
    Breslow, N. (1974). Covariance analysis of censored survival data.
        Biometrics, 30(1), 89-99.
    Efron, B. (1977). The efficiency of Cox's likelihood function for
        censored data. JASA, 72(359), 557-565.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import ConvergenceError
from pysurvstat.core.validation import check_column_rank
from pysurvstat.survival._ci import z_critical
from pysurvstat.survival._common import CoxConfig, CoxParams

MAX_HALVINGS = 20


@dataclass(frozen=True)
class RiskSets:
    """Subjects sorted by time, indexed by distinct event time."""

    time: NDArray            # (n,) ascending
    event: NDArray           # (n,)
    X: NDArray               # (n, p)
    event_times: NDArray     # (m,)
    first: NDArray           # (m,) first sorted index with time >= t_j
    d: NDArray               # (m,) events at t_j
    event_rows: NDArray      # (D,) sorted indices of events
    event_group: NDArray     # (D,) event-time index of each event row

    @classmethod
    def build(cls, time: NDArray, event: NDArray, X: NDArray) -> RiskSets:
        order = np.lexsort((-event, time))
        t = time[order]
        e = event[order]
        Xs = X[order]

        event_rows = np.flatnonzero(e == 1)
        event_times = np.unique(t[event_rows])
        first = np.searchsorted(t, event_times, side="left")
        event_group = np.searchsorted(event_times, t[event_rows])
        d = np.bincount(event_group, minlength=len(event_times)).astype(np.float64)

        return cls(
            time=t,
            event=e,
            X=Xs,
            event_times=event_times,
            first=first,
            d=d,
            event_rows=event_rows,
            event_group=event_group,
        )


def _revcumsum(a: NDArray) -> NDArray:
    return np.cumsum(a[::-1], axis=0)[::-1]


def risk_set_sums(
    beta: NDArray, risk: RiskSets,
) -> tuple[NDArray, NDArray, NDArray, NDArray, NDArray]:
    """Weighted risk-set sums at each event time.

    Returns
    -------
    (eta_c, w, S0, S1, S2) with eta_c = X @ beta - max, w = exp(eta_c),
    S0 (m,), S1 (m, p), S2 (m, p, p) summed over R(t_j).
    """
    X = risk.X
    eta = X @ beta
    eta_c = eta - (np.max(eta) if len(eta) > 0 else 0.0)
    w = np.exp(eta_c)

    wX = w[:, np.newaxis] * X
    S0 = _revcumsum(w)[risk.first]
    S1 = _revcumsum(wX)[risk.first]
    S2 = _revcumsum(wX[:, :, np.newaxis] * X[:, np.newaxis, :])[risk.first]
    return eta_c, w, S0, S1, S2


def _score_and_information(
    beta: NDArray,
    risk: RiskSets,
    ties: str,
) -> tuple[float, NDArray, NDArray]:
    """Compute log-likelihood, score vector, and observed information matrix.

    Returns
    -------
    (loglik, score, info_matrix)
        loglik : float
        score : (p,) gradient of log-likelihood
        info_matrix : (p, p) negative Hessian
    """
    m = len(risk.event_times)
    p = risk.X.shape[1]
    eta_c, w, S0, S1, S2 = risk_set_sums(beta, risk)

    rows = risk.event_rows
    group = risk.event_group
    event_eta = np.bincount(group, weights=eta_c[rows], minlength=m)
    event_X = risk.X[rows].sum(axis=0)

    loglik = float(np.sum(event_eta))
    score = event_X.astype(np.float64)

    if ties == "breslow":
        d = risk.d
        xbar = S1 / S0[:, np.newaxis]
        loglik -= float(np.sum(d * np.log(S0)))
        score = score - d @ xbar
        info_matrix = np.einsum(
            "k,kij->ij",
            d,
            S2 / S0[:, np.newaxis, np.newaxis]
            - xbar[:, :, np.newaxis] * xbar[:, np.newaxis, :],
        )
        return loglik, score, info_matrix

    # Efron: the tied deaths' own weight is removed fractionally
    death_w = np.bincount(group, weights=w[rows], minlength=m)
    death_wX = np.zeros((m, p))
    np.add.at(death_wX, group, w[rows][:, np.newaxis] * risk.X[rows])
    death_wXX = np.zeros((m, p, p))
    np.add.at(
        death_wXX, group,
        w[rows][:, np.newaxis, np.newaxis]
        * risk.X[rows][:, :, np.newaxis] * risk.X[rows][:, np.newaxis, :],
    )

    info_matrix = np.zeros((p, p))
    for j in range(m):
        d_j = int(risk.d[j])
        for s in range(d_j):
            frac = s / d_j
            denom = S0[j] - frac * death_w[j]
            mean = (S1[j] - frac * death_wX[j]) / denom
            loglik -= float(np.log(denom))
            score = score - mean
            info_matrix += (
                (S2[j] - frac * death_wXX[j]) / denom - np.outer(mean, mean)
            )

    return loglik, score, info_matrix


def _solve_information(
    info_matrix: NDArray, rhs: NDArray | None, n_iter: int, score_norm: float,
    tol: float,
) -> NDArray:
    """Solve I x = rhs (or invert I when rhs is None), refusing singular I."""
    with np.errstate(divide="ignore", invalid="ignore"):
        cond = np.linalg.cond(info_matrix)
    if not np.isfinite(cond) or cond > 1.0 / np.finfo(np.float64).eps:
        raise ConvergenceError(
            f"Information matrix is singular (condition number {cond:.3g}) "
            f"after {n_iter} Newton-Raphson iterations",
            iterations=n_iter,
            final_change=score_norm,
            reason="singular_information",
            threshold=tol,
        )
    try:
        if rhs is None:
            return np.linalg.inv(info_matrix)
        return np.linalg.solve(info_matrix, rhs)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError(
            f"Information matrix is singular after {n_iter} "
            f"Newton-Raphson iterations: {e}",
            iterations=n_iter,
            final_change=score_norm,
            reason="singular_information",
            threshold=tol,
        ) from e


def newton_raphson(
    risk: RiskSets,
    config: CoxConfig,
) -> tuple[NDArray, float, float, NDArray, float, int]:
    """Maximize the partial likelihood from beta = 0.

    Returns
    -------
    (beta, null_loglik, loglik, info_matrix, score_norm, n_iter)

    Raises
    ------
    ConvergenceError
    """
    p = risk.X.shape[1]
    tol = config.tolerance
    beta = np.zeros(p, dtype=np.float64)

    loglik, score, info_matrix = _score_and_information(beta, risk, config.ties)
    null_loglik = loglik
    n_iter = 0

    while True:
        score_norm = float(np.linalg.norm(score))
        if not (np.isfinite(loglik) and np.isfinite(score_norm)):
            raise ConvergenceError(
                f"Non-finite partial likelihood after {n_iter} iterations",
                iterations=n_iter,
                final_change=score_norm,
                reason="non_finite",
                threshold=tol,
            )
        if score_norm < tol:
            return beta, null_loglik, loglik, info_matrix, score_norm, n_iter
        if n_iter >= config.max_iterations:
            raise ConvergenceError(
                f"Newton-Raphson did not converge in {config.max_iterations} "
                f"iterations (score norm {score_norm:.3g} >= {tol:.3g})",
                iterations=n_iter,
                final_change=score_norm,
                reason="max_iterations",
                threshold=tol,
            )

        step = _solve_information(info_matrix, score, n_iter, score_norm, tol)
        # Step-halving while the likelihood gets worse
        slack = 1e-10 * (abs(loglik) + 1.0)
        for _ in range(MAX_HALVINGS + 1):
            beta_new = beta + step
            new = _score_and_information(beta_new, risk, config.ties)
            if np.isfinite(new[0]) and new[0] >= loglik - slack:
                break
            step = step / 2.0

        beta = beta_new
        loglik, score, info_matrix = new
        n_iter += 1


def _fenwick_add(tree: list, k: int) -> None:
    while k < len(tree):
        tree[k] += 1
        k += k & -k


def _fenwick_prefix(tree: list, k: int) -> int:
    total = 0
    while k > 0:
        total += tree[k]
        k -= k & -k
    return total


def concordance_index(eta: NDArray, time: NDArray, event: NDArray) -> float:
    """Harrell's concordance statistic (C-statistic).

    C = P(risk_i > risk_j | T_i < T_j, event_i = 1), risk ties count 1/2.

    Subjects are visited in decreasing time; a Fenwick tree over the ranks
    of eta counts, for each event, the later subjects with lower, equal and
    higher risk. O(n log n) time and O(n) memory.
    """
    events = event == 1
    if not np.any(events):
        return 0.5

    _, rank = np.unique(eta, return_inverse=True)
    rank = (rank.ravel() + 1).tolist()
    tree = [0] * (max(rank) + 1)

    order = np.argsort(-time, kind="stable")
    sorted_time = time[order]
    starts = np.flatnonzero(np.r_[True, sorted_time[1:] != sorted_time[:-1]])
    ends = np.r_[starts[1:], len(order)]
    is_event = events.tolist()
    order = order.tolist()

    concordant = discordant = tied_risk = 0
    inserted = 0
    for lo, hi in zip(starts.tolist(), ends.tolist()):
        block = order[lo:hi]
        # Subjects sharing this time are not comparable with each other
        for i in block:
            if is_event[i]:
                below = _fenwick_prefix(tree, rank[i] - 1)
                upto = _fenwick_prefix(tree, rank[i])
                concordant += below
                tied_risk += upto - below
                discordant += inserted - upto
        for i in block:
            _fenwick_add(tree, rank[i])
        inserted += len(block)

    total = concordant + discordant + tied_risk
    if total == 0:
        return 0.5
    return float((concordant + 0.5 * tied_risk) / total)


def cox_fit(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    column_names: tuple[str, ...],
    config: CoxConfig,
    conf_level: float = 0.95,
) -> CoxParams:
    """Fit Cox proportional hazards model.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    X : NDArray
        (n, p) covariate matrix (NO intercept); p may be 0 (null model).
    column_names : tuple of str
        Label per column of X.
    config : CoxConfig
        Tolerance, iteration cap and tie method.
    conf_level : float
        Level of the hazard-ratio intervals.

    Returns
    -------
    CoxParams

    Raises
    ------
    DesignError
        If the centered design is rank-deficient.
    ConvergenceError
        If there are no events or Newton-Raphson fails.
    """
    n, p = X.shape
    check_column_rank(X, column_names)

    n_events = int(np.sum(event))
    if n_events == 0:
        raise ConvergenceError(
            "Cannot fit a Cox model without events: the partial likelihood "
            "is constant and the information matrix is zero",
            iterations=0,
            reason="no_events",
            threshold=config.tolerance,
        )

    means = X.mean(axis=0) if n > 0 else np.zeros(p)
    risk = RiskSets.build(time, event, X - means)

    beta, null_loglik, loglik, info_matrix, score_norm, n_iter = (
        newton_raphson(risk, config)
    )

    if p > 0:
        covariance = _solve_information(
            info_matrix, None, n_iter, score_norm, config.tolerance,
        )
        covariance = (covariance + covariance.T) / 2.0
    else:
        covariance = np.zeros((0, 0))
    se = np.sqrt(np.maximum(np.diag(covariance), 0.0))

    z = np.divide(beta, se, out=np.zeros_like(beta), where=se > 0)
    p_values = 2.0 * stats.norm.sf(np.abs(z))
    q = z_critical(conf_level)

    return CoxParams(
        coefficients=beta,
        covariance=covariance,
        standard_errors=se,
        z_statistics=z,
        p_values=p_values,
        hazard_ratios=np.exp(beta),
        hr_ci_lower=np.exp(beta - q * se),
        hr_ci_upper=np.exp(beta + q * se),
        conf_level=conf_level,
        loglik=(null_loglik, loglik),
        concordance=concordance_index(X @ beta, time, event),
        column_names=tuple(column_names),
        column_means=means,
        score_norm=score_norm,
        n_events=n_events,
        n_observations=n,
        n_iter=n_iter,
        ties=config.ties,
    )
