"""
Log-rank test (G-rho family) for comparing survival curves across groups.

Matches R's survival::survdiff(Surv(time, event) ~ group, rho=0):
- rho = 0: Mantel-Haenszel log-rank test
- rho = 1: Peto & Peto modification of the Gehan-Wilcoxon test

At each pooled distinct event time t_j, with n_kj at risk and d_kj events in
group k (N_j, D_j pooled) and weight w_j = S(t_j-)^rho from the pooled
Kaplan-Meier estimate:

    O_k - E_k = sum_j w_j (d_kj - n_kj D_j / N_j)
    V_kl      = sum_j w_j^2 D_j (N_j - D_j) / (N_j^2 (N_j - 1))
                      * n_kj (delta_kl N_j - n_lj)

The statistic drops the last group: (O - E)' V^{-1} (O - E) on k - 1 df.

References:
    Harrington, D. P. & Fleming, T. R. (1982). A class of rank test
        procedures for censored survival data. Biometrika, 69(3), 553-566.
    R Core Team. survival::survdiff
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import ValidationError
from pysurvstat.survival._common import LogRankParams
from pysurvstat.survival.design import SurvivalDesign


def logrank_test(
    design: SurvivalDesign,
    group: NDArray,
    rho: float = 0.0,
) -> LogRankParams:
    """Compute log-rank test (G-rho family).

    Parameters
    ----------
    design : SurvivalDesign
        Pooled survival data.
    group : NDArray
        (n,) group labels.
    rho : float
        G-rho weight parameter.

    Returns
    -------
    LogRankParams
    """
    labels, group_idx = np.unique(group, return_inverse=True)
    n_groups = len(labels)
    if n_groups < 2:
        raise ValidationError(
            f"Need at least 2 groups for log-rank test, got {n_groups}"
        )

    pooled = design.risk_table()
    times = pooled.time
    m = len(times)
    n_per_group = np.bincount(group_idx, minlength=n_groups).astype(np.float64)

    if m == 0:
        zeros = np.zeros(n_groups, dtype=np.float64)
        return LogRankParams(
            statistic=0.0,
            df=n_groups - 1,
            p_value=1.0,
            n_groups=n_groups,
            observed=zeros,
            expected=zeros,
            variance=np.zeros((n_groups, n_groups)),
            n_per_group=n_per_group,
            rho=rho,
            group_labels=labels,
        )

    n_kg = np.zeros((m, n_groups), dtype=np.float64)
    d_kg = np.zeros((m, n_groups), dtype=np.float64)
    for k in range(n_groups):
        in_k = group_idx == k
        t_k = np.sort(design.time[in_k])
        n_kg[:, k] = len(t_k) - np.searchsorted(t_k, times, side="left")
        ev_k = np.sort(design.time[in_k & (design.event == 1)])
        d_kg[:, k] = (
            np.searchsorted(ev_k, times, side="right")
            - np.searchsorted(ev_k, times, side="left")
        )

    N = pooled.n_risk
    D = pooled.n_events

    if rho == 0.0:
        weights = np.ones(m, dtype=np.float64)
    else:
        surv = np.cumprod(1.0 - D / N)
        s_before = np.concatenate([[1.0], surv[:-1]])
        weights = s_before ** rho

    observed = weights @ d_kg
    expected = weights @ (n_kg * (D / N)[:, np.newaxis])

    multi = N > 1
    factor = np.zeros(m, dtype=np.float64)
    factor[multi] = (
        weights[multi] ** 2 * D[multi] * (N[multi] - D[multi])
        / (N[multi] ** 2 * (N[multi] - 1))
    )
    V = (
        np.diag(np.einsum("j,jk,j->k", factor, n_kg, N))
        - np.einsum("j,jk,jl->kl", factor, n_kg, n_kg)
    )

    df = n_groups - 1
    diff = (observed - expected)[:df]
    V_sub = V[:df, :df]
    if np.linalg.matrix_rank(V_sub) < df:
        statistic = 0.0
    else:
        statistic = float(diff @ np.linalg.solve(V_sub, diff))

    return LogRankParams(
        statistic=statistic,
        df=df,
        p_value=float(stats.chi2.sf(statistic, df)),
        n_groups=n_groups,
        observed=observed,
        expected=expected,
        variance=V,
        n_per_group=n_per_group,
        rho=rho,
        group_labels=labels,
    )
