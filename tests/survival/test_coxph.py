"""
Tests for coxph() matching R survival::coxph(ties="breslow").

R reference code:
    library(survival)
    coxph(Surv(time, event) ~ x1 + x2, data=..., ties="breslow")
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from pysurvstat.core.exceptions import (
    ConvergenceError,
    DataValidationError,
    DesignError,
    DimensionError,
    ValidationError,
)
from pysurvstat.survival import (
    CoxConfig,
    CoxSolution,
    SurvivalDesign,
    build_design_matrix,
    coxph,
)
from pysurvstat.survival._cox import concordance_index


# ── Fixtures ─────────────────────────────────────────────────────────

# Three subjects, closed-form maximum
#   L(beta) = beta - log(2 e^beta + 1) - log(1 + e^beta)
#   U(beta) = 0  <=>  2 e^{2 beta} = 1  <=>  beta = -log(2) / 2
TINY_TIME = np.array([1.0, 2.0, 3.0])
TINY_EVENT = np.array([1.0, 1.0, 1.0])
TINY_X = np.array([[1.0], [0.0], [1.0]])

# Both arms share every time and event: the score at beta = 0 vanishes
SYMMETRIC_TIME = np.tile([3.0, 5.0, 6.0, 8.0, 11.0, 14.0], 2)
SYMMETRIC_EVENT = np.tile([1.0, 1.0, 0.0, 1.0, 1.0, 0.0], 2)
SYMMETRIC_X = np.repeat([0.0, 1.0], 6).reshape(-1, 1)


class TestCoxPHClosedForm:

    def test_coefficient(self):
        result = coxph(TINY_TIME, TINY_EVENT, TINY_X)
        assert isinstance(result, CoxSolution)
        assert result.coefficients[0] == pytest.approx(-0.5 * np.log(2), abs=1e-8)
        assert result.hazard_ratios[0] == pytest.approx(1 / np.sqrt(2), abs=1e-8)

    def test_standard_error(self):
        u = 1 / np.sqrt(2)
        info = 2 * u / (2 * u + 1) ** 2 + u / (1 + u) ** 2
        result = coxph(TINY_TIME, TINY_EVENT, TINY_X)
        assert result.standard_errors[0] == pytest.approx(np.sqrt(1 / info), rel=1e-7)
        assert_allclose(result.covariance, [[1 / info]], rtol=1e-7)

    def test_log_likelihood(self):
        u = 1 / np.sqrt(2)
        result = coxph(TINY_TIME, TINY_EVENT, TINY_X)
        null, model = result.loglik
        assert null == pytest.approx(-np.log(6.0))
        assert model == pytest.approx(np.log(u) - np.log(2 * u + 1) - np.log(1 + u))
        assert result.lr_statistic == pytest.approx(2 * (model - null))

    def test_concordance(self):
        """One concordant, one discordant and one tied-risk pair."""
        result = coxph(TINY_TIME, TINY_EVENT, TINY_X)
        assert result.concordance == pytest.approx(0.5)

    def test_converged_score(self):
        result = coxph(TINY_TIME, TINY_EVENT, TINY_X)
        assert result.score_norm < 1e-9
        assert result.n_iter >= 1
        assert result.n_events == 3
        assert result.n_observations == 3
        assert result.ties == "breslow"


class TestConcordance:

    @staticmethod
    def pairwise(eta, time, event):
        concordant = discordant = tied = 0
        for i in range(len(time)):
            if event[i] != 1:
                continue
            later = time > time[i]
            concordant += np.sum(later & (eta[i] > eta))
            discordant += np.sum(later & (eta[i] < eta))
            tied += np.sum(later & (eta[i] == eta))
        return (concordant + 0.5 * tied) / (concordant + discordant + tied)

    def test_matches_pairwise_count_with_ties(self, rng):
        n = 300
        time = np.ceil(rng.exponential(4.0, n))
        event = (rng.random(n) < 0.6).astype(np.float64)
        eta = np.round(rng.standard_normal(n), 1)
        assert concordance_index(eta, time, event) == pytest.approx(
            self.pairwise(eta, time, event), rel=1e-12,
        )

    def test_perfect_ordering(self):
        time = np.array([1.0, 2.0, 3.0, 4.0])
        event = np.ones(4)
        assert concordance_index(np.array([4.0, 3.0, 2.0, 1.0]), time, event) == 1.0
        assert concordance_index(np.array([1.0, 2.0, 3.0, 4.0]), time, event) == 0.0

    def test_no_comparable_pairs(self):
        assert concordance_index(np.zeros(3), np.ones(3), np.ones(3)) == 0.5
        assert concordance_index(np.zeros(3), np.arange(1.0, 4.0), np.zeros(3)) == 0.5

    def test_large_sample_fit(self, rng):
        n = 50_000
        X = np.column_stack([
            rng.standard_normal(n),
            rng.integers(0, 2, n).astype(np.float64),
        ])
        t_event = rng.exponential(1.0, n) / np.exp(X @ np.array([0.7, -0.5]))
        t_censor = rng.exponential(3.0, n)
        time = np.minimum(t_event, t_censor)
        event = (t_event <= t_censor).astype(np.float64)
        result = coxph(time, event, X)
        assert result.score_norm < 1e-9
        assert 0.6 < result.concordance < 0.8


class TestCoxPHNullAssociation:

    def test_symmetric_data_gives_zero(self):
        result = coxph(SYMMETRIC_TIME, SYMMETRIC_EVENT, SYMMETRIC_X)
        assert abs(result.coefficients[0]) < 1e-10
        assert result.n_iter == 0
        assert result.hazard_ratios[0] == pytest.approx(1.0)
        assert result.p_values[0] == pytest.approx(1.0)

    def test_symmetric_data_efron(self):
        result = coxph(SYMMETRIC_TIME, SYMMETRIC_EVENT, SYMMETRIC_X, ties="efron")
        assert abs(result.coefficients[0]) < 1e-10
        assert result.ties == "efron"


class TestCoxPHRecovery:

    def test_hazard_ratio_recovery(self, proportional_hazards_data):
        time, event, X, beta_true = proportional_hazards_data
        result = coxph(time, event, X, column_names=["x", "treated"])
        assert_allclose(result.coefficients, beta_true, atol=0.15)
        assert result.column_names == ("x", "treated")
        assert result.concordance > 0.6
        assert result.lr_p_value < 1e-10

    def test_recovery_improves_with_sample_size(self, rng):
        """exp(beta_hat) approaches the true hazard ratio as n grows."""
        beta_true = np.array([0.7, -0.5])

        def mean_error(n, reps=5):
            errors = []
            for _ in range(reps):
                X = np.column_stack([
                    rng.standard_normal(n),
                    rng.integers(0, 2, n).astype(np.float64),
                ])
                t_event = rng.exponential(1.0, n) / np.exp(X @ beta_true)
                t_censor = rng.exponential(3.0, n)
                time = np.minimum(t_event, t_censor)
                event = (t_event <= t_censor).astype(np.float64)
                hr = coxph(time, event, X).hazard_ratios
                errors.append(np.max(np.abs(hr - np.exp(beta_true))))
            return np.mean(errors)

        small, medium, large = mean_error(200), mean_error(2000), mean_error(20000)
        assert large < medium < small
        assert large < 0.05

    def test_scale_equivariance(self, proportional_hazards_data):
        """Rescaling a covariate by 1/1000 rescales its coefficient by 1000."""
        time, event, X, _ = proportional_hazards_data
        base = coxph(time, event, X)
        scaled = coxph(time, event, X / np.array([1000.0, 1.0]))
        assert scaled.coefficients[0] == pytest.approx(
            1000.0 * base.coefficients[0], rel=1e-6,
        )
        assert scaled.coefficients[1] == pytest.approx(base.coefficients[1], rel=1e-6)
        assert_allclose(scaled.loglik, base.loglik, rtol=1e-10)
        assert scaled.concordance == pytest.approx(base.concordance)

    def test_wald_quantities(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        result = coxph(time, event, X)
        se = result.standard_errors
        beta = result.coefficients
        z = stats.norm.ppf(0.975)
        assert_allclose(se, np.sqrt(np.diag(result.covariance)))
        assert_allclose(result.z_statistics, beta / se)
        assert_allclose(result.p_values, 2 * stats.norm.sf(np.abs(beta / se)))
        assert_allclose(result.hazard_ratios, np.exp(beta))
        assert_allclose(result.hr_ci_lower, np.exp(beta - z * se))
        assert_allclose(result.hr_ci_upper, np.exp(beta + z * se))
        assert_allclose(result.covariance, result.covariance.T)

    def test_conf_level(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        wide = coxph(time, event, X, conf_level=0.99)
        narrow = coxph(time, event, X, conf_level=0.8)
        assert np.all(wide.hr_ci_lower < narrow.hr_ci_lower)
        assert wide.conf_level == 0.99

    def test_shift_invariance(self, proportional_hazards_data):
        """Adding a constant to a column leaves the partial likelihood unchanged."""
        time, event, X, _ = proportional_hazards_data
        base = coxph(time, event, X)
        shifted = coxph(time, event, X + np.array([100.0, -3.0]))
        assert_allclose(shifted.coefficients, base.coefficients, atol=1e-8)
        assert_allclose(shifted.loglik, base.loglik, rtol=1e-10)

    def test_keeps_fitting_data(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        result = coxph(time, event, X)
        assert_allclose(result.X, X)
        assert_allclose(result.design.time, time)
        assert_allclose(result.column_means, X.mean(axis=0))
        assert result.design_matrix is None


class TestCoxPHTies:

    def test_no_ties_efron_equals_breslow(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        n = 300
        breslow = coxph(time[:n], event[:n], X[:n], ties="breslow")
        efron = coxph(time[:n], event[:n], X[:n], ties="efron")
        assert_allclose(efron.coefficients, breslow.coefficients, atol=1e-8)

    def test_efron_vs_breslow_differ_with_ties(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        n = 300
        tied = np.ceil(time[:n] * 4)
        breslow = coxph(tied, event[:n], X[:n], ties="breslow")
        efron = coxph(tied, event[:n], X[:n], ties="efron")
        assert not np.allclose(efron.coefficients, breslow.coefficients, atol=1e-6)


class TestCoxPHNullModel:

    def test_null_model_log_likelihood(self, six_subjects):
        """Null Breslow partial likelihood is -sum d log n at each event time."""
        time, event = six_subjects
        result = coxph(time, event, np.empty((6, 0)))
        assert result.coefficients.shape == (0,)
        assert result.covariance.shape == (0, 0)
        assert result.loglik[0] == pytest.approx(-np.log(6 * 5 * 3 * 2))
        assert result.loglik[1] == result.loglik[0]
        assert result.lr_statistic == 0.0
        assert result.lr_p_value == 1.0
        assert result.n_iter == 0

    def test_design_without_covariates(self, six_subjects):
        design = SurvivalDesign.for_survival(*six_subjects)
        result = coxph(design)
        assert result.coefficients.shape == (0,)
        assert result.column_names == ()


class TestCoxPHDesignMatrix:

    def test_factor_coding(self, rng):
        n = 1500
        arm = rng.choice(["control", "high", "low"], n)
        age = rng.normal(60, 8, n)
        effect = {"control": 0.0, "low": 0.4, "high": 0.9}
        lp = np.array([effect[a] for a in arm]) + 0.03 * (age - 60)
        t_event = rng.exponential(1.0, n) / np.exp(lp)
        t_censor = rng.exponential(2.0, n)
        time = np.minimum(t_event, t_censor)
        event = (t_event <= t_censor).astype(float)

        design = SurvivalDesign.for_survival(time, event, {"arm": arm, "age": age})
        dm = build_design_matrix(design)
        result = coxph(time, event, dm)

        assert result.column_names == ("arm[high]", "arm[low]", "age")
        assert result.design_matrix is dm
        assert_allclose(result.coefficients, [0.9, 0.4, 0.03], atol=0.3)

        same = coxph(design)
        assert_allclose(same.coefficients, result.coefficients)


class TestCoxPHErrors:

    def test_no_events(self):
        with pytest.raises(ConvergenceError) as exc_info:
            coxph([1.0, 2.0, 3.0], [0, 0, 0], [[0.5], [1.0], [-1.0]])
        assert exc_info.value.reason == "no_events"
        assert exc_info.value.iterations == 0

    def test_singular_information(self):
        """Full-rank design whose risk sets never separate the covariate."""
        with pytest.raises(ConvergenceError) as exc_info:
            coxph(
                [1.0, 1.0, 2.0, 3.0], [0, 0, 1, 1],
                [[1.0], [0.0], [0.5], [0.5]],
            )
        assert exc_info.value.reason == "singular_information"
        assert exc_info.value.threshold == 1e-9

    def test_max_iterations(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        with pytest.raises(ConvergenceError) as exc_info:
            coxph(time, event, X, max_iter=1)
        err = exc_info.value
        assert err.reason == "max_iterations"
        assert err.iterations == 1
        assert err.final_change >= 1e-9
        assert err.threshold == 1e-9

    def test_config_object(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        with pytest.raises(ConvergenceError):
            coxph(time, event, X, config=CoxConfig(max_iterations=1))
        loose = coxph(time, event, X, config=CoxConfig(tolerance=1e-2))
        assert loose.score_norm < 1e-2

    def test_collinear(self, collinear_data):
        time, event, X = collinear_data
        with pytest.raises(DesignError) as exc_info:
            coxph(time, event, X)
        assert exc_info.value.rank == 2
        assert exc_info.value.expected_rank == 3

    def test_constant_column(self, rng):
        X = np.column_stack([rng.standard_normal(20), np.ones(20)])
        with pytest.raises(DesignError, match="Constant columns"):
            coxph(rng.exponential(1.0, 20), np.ones(20), X,
                  column_names=["x", "intercept"])

    def test_missing_X(self):
        with pytest.raises(ValidationError, match="X"):
            coxph([1.0, 2.0], [1, 1])

    def test_non_finite_X(self):
        with pytest.raises(DataValidationError):
            coxph([1.0, 2.0, 3.0], [1, 1, 0], [[0.0], [np.nan], [1.0]])

    def test_X_rows_mismatch(self):
        with pytest.raises(DataValidationError):
            coxph([1.0, 2.0, 3.0], [1, 1, 0], [[0.0], [1.0]])

    def test_X_3d(self):
        with pytest.raises(DimensionError):
            coxph([1.0, 2.0], [1, 1], np.zeros((2, 1, 1)))

    def test_column_names_length(self):
        with pytest.raises(ValidationError, match="column_names"):
            coxph(TINY_TIME, TINY_EVENT, TINY_X, column_names=["a", "b"])

    def test_invalid_ties(self):
        with pytest.raises(ValidationError, match="ties"):
            coxph(TINY_TIME, TINY_EVENT, TINY_X, ties="exact")


class TestCoxConfig:

    def test_defaults(self):
        config = CoxConfig()
        assert config.tolerance == 1e-9
        assert config.max_iterations == 25
        assert config.ties == "breslow"

    @pytest.mark.parametrize("kwargs", [
        {"tolerance": 0.0},
        {"max_iterations": 0},
        {"max_iterations": 2.5},
        {"ties": "exact"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            CoxConfig(**kwargs)


class TestCoxPHSummary:

    def test_summary_contents(self, proportional_hazards_data):
        time, event, X, _ = proportional_hazards_data
        result = coxph(time, event, X, column_names=["x", "treated"])
        text = result.summary()
        assert "exp(coef)" in text
        assert "treated" in text
        assert "Concordance=" in text
        assert "Ties: breslow" in text
        assert "CoxSolution" in repr(result)

    def test_timing_recorded(self):
        result = coxph(TINY_TIME, TINY_EVENT, TINY_X)
        assert result.backend_name == "cpu_cox"
        assert "newton_raphson" in result.timing
        assert result.warnings == ()
