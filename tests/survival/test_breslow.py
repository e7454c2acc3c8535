"""
Tests for the Breslow baseline hazard and predicted survival curves.

R reference code:
    library(survival)
    fit <- coxph(Surv(time, event) ~ x1 + x2, ties="breslow")
    basehaz(fit, centered=FALSE)
    survfit(fit, newdata=data.frame(x1=0, x2=1), conf.type="log-log")
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pysurvstat.survival import (
    BaselineHazardSolution,
    SurvivalDesign,
    baseline_hazard,
    build_design_matrix,
    coxph,
    kaplan_meier,
)
from pysurvstat.survival._breslow import breslow_fit, cumulative_hazard_at


@pytest.fixture
def fit(proportional_hazards_data):
    time, event, X, _ = proportional_hazards_data
    n = 250
    return coxph(time[:n], event[:n], X[:n])


class TestNullModel:
    """With no covariates the Breslow estimator is Nelson-Aalen."""

    def test_cumulative_hazard_is_nelson_aalen(self, six_subjects):
        time, event = six_subjects
        bh = coxph(time, event, np.empty((6, 0))).baseline_hazard()
        assert isinstance(bh, BaselineHazardSolution)
        assert_allclose(bh.time, [5, 10, 15, 20])
        assert_allclose(bh.n_risk, [6, 5, 3, 2])
        assert_allclose(bh.hazard, [1/6, 1/5, 1/3, 1/2], rtol=1e-14)
        assert_allclose(
            bh.cumulative_hazard, np.cumsum([1/6, 1/5, 1/3, 1/2]), rtol=1e-14,
        )
        assert_allclose(
            bh.variance, np.cumsum([1/36, 1/25, 1/9, 1/4]), rtol=1e-14,
        )

    def test_product_limit_equals_kaplan_meier(self, six_subjects):
        time, event = six_subjects
        bh = coxph(time, event, np.empty((6, 0))).baseline_hazard()
        curve = bh.baseline_survival(estimate="product-limit")
        km = kaplan_meier(time, event)
        assert_allclose(curve.time, km.time)
        assert_allclose(curve.survival, km.survival, rtol=1e-13)

    def test_product_limit_equals_kaplan_meier_random(self, rng):
        time = np.ceil(rng.exponential(5.0, 80))
        event = (rng.random(80) < 0.7).astype(float)
        bh = coxph(time, event, np.empty((80, 0))).baseline_hazard()
        km = kaplan_meier(time, event)
        curve = bh.baseline_survival(estimate="product-limit")
        assert_allclose(curve.survival, km.survival, rtol=1e-12, atol=1e-15)

    def test_exponential_estimate(self, six_subjects):
        time, event = six_subjects
        bh = coxph(time, event, np.empty((6, 0))).baseline_hazard()
        curve = bh.baseline_survival()
        assert_allclose(curve.survival, np.exp(-bh.cumulative_hazard))
        assert_allclose(bh.params.baseline_survival, curve.survival)


class TestBaselineHazard:

    def test_non_decreasing(self, fit):
        bh = fit.baseline_hazard()
        assert np.all(bh.cumulative_hazard >= 0)
        assert np.all(np.diff(bh.cumulative_hazard) >= 0)
        assert np.all(bh.variance >= 0)
        assert_allclose(bh.se, np.sqrt(bh.variance))

    def test_direct_formula(self, fit):
        """h_0(t_k) = d_k / sum_{time_j >= t_k} exp(beta @ x_j)."""
        bh = fit.baseline_hazard()
        time, event = fit.design.time, fit.design.event
        risk = np.exp(fit.X @ fit.coefficients)
        for k in (0, len(bh.time) // 2, len(bh.time) - 1):
            t = bh.time[k]
            d = np.sum((time == t) & (event == 1))
            assert bh.hazard[k] == pytest.approx(d / risk[time >= t].sum(), rel=1e-10)

    def test_function_matches_method(self, fit):
        a = baseline_hazard(fit)
        b = fit.baseline_hazard()
        assert_allclose(a.cumulative_hazard, b.cumulative_hazard)
        assert a.backend_name == "cpu_breslow"

    def test_rejects_non_cox_input(self, six_subjects):
        with pytest.raises(TypeError, match="CoxSolution"):
            baseline_hazard(kaplan_meier(*six_subjects))

    def test_step_evaluation(self, fit):
        bh = fit.baseline_hazard()
        assert bh.cumulative_hazard_at(bh.time[0] / 2) == 0.0
        assert bh.cumulative_hazard_at(bh.time[3]) == pytest.approx(bh.cumulative_hazard[3])
        assert bh.cumulative_hazard_at(1e6) == pytest.approx(bh.cumulative_hazard[-1])
        points = bh.points()
        assert points[0] == (float(bh.time[0]), float(bh.cumulative_hazard[0]))


class TestCentering:

    def test_centered_factor(self, fit):
        raw = fit.baseline_hazard(centered=False)
        centered = fit.baseline_hazard(centered=True)
        factor = np.exp(fit.coefficients @ fit.X.mean(axis=0))
        assert_allclose(centered.cumulative_hazard, factor * raw.cumulative_hazard, rtol=1e-10)
        assert centered.centered and not raw.centered
        assert_allclose(centered.center, fit.X.mean(axis=0))
        assert_allclose(raw.center, 0.0)

    @pytest.mark.parametrize("z", [[0.0, 0.0], [1.2, 1.0], [-0.5, 0.0]])
    def test_identical_predictions(self, fit, z):
        raw = fit.baseline_hazard(centered=False).predict_survival(z)
        centered = fit.baseline_hazard(centered=True).predict_survival(z)
        assert_allclose(raw.survival, centered.survival, rtol=1e-10)
        assert_allclose(raw.variance, centered.variance, rtol=1e-8, atol=1e-15)
        assert_allclose(raw.ci_lower, centered.ci_lower, rtol=1e-8, atol=1e-15)

    def test_uncentered_far_from_zero(self, fit):
        """Covariates near 1000 make exp(beta @ z) overflow without centering."""
        shift = np.array([1000.0, 0.0])
        far = coxph(fit.design.time, fit.design.event, fit.X + shift)
        raw = far.baseline_hazard(centered=False)
        centered = far.baseline_hazard(centered=True)
        z = fit.X.mean(axis=0) + shift

        a = raw.predict_survival(z)
        b = centered.predict_survival(z)
        assert np.all(np.isfinite(a.survival)) and np.all(np.isfinite(a.variance))
        assert_allclose(a.survival, b.survival, rtol=1e-8)
        assert_allclose(a.variance, b.variance, rtol=1e-8, atol=1e-15)
        assert_allclose(a.ci_lower, b.ci_lower, rtol=1e-8, atol=1e-15)

        near = fit.baseline_hazard().predict_survival(fit.X.mean(axis=0))
        assert_allclose(a.survival, near.survival, rtol=1e-6)

        H, var_H = raw.predict_cumulative_hazard(z)
        assert_allclose(H, centered.cumulative_hazard, rtol=1e-8)
        assert np.all(np.isfinite(var_H))

    def test_product_limit_uncentered_far_from_zero(self, fit):
        shift = np.array([1000.0, 0.0])
        far = coxph(fit.design.time, fit.design.event, fit.X + shift)
        raw = far.baseline_hazard(centered=False)
        z = fit.X.mean(axis=0) + shift
        pl = raw.predict_survival(z, estimate="product-limit")
        assert np.all((pl.survival >= 0) & (pl.survival <= 1))
        assert np.all(np.diff(pl.survival) <= 0)
        # Baseline increments are negligible, so the two estimates coincide
        assert_allclose(pl.survival, raw.predict_survival(z).survival, rtol=1e-10)


class TestPrediction:

    def test_reference_profile_is_baseline(self, fit):
        bh = fit.baseline_hazard()
        assert_allclose(
            bh.predict_survival([0.0, 0.0]).survival,
            bh.baseline_survival().survival,
        )
        assert_allclose(
            bh.baseline_survival().survival, np.exp(-bh.cumulative_hazard),
        )

    def test_proportional_hazards(self, fit):
        bh = fit.baseline_hazard()
        z = np.array([0.8, 1.0])
        H, _ = bh.predict_cumulative_hazard(z)
        assert_allclose(H, np.exp(fit.coefficients @ z) * bh.cumulative_hazard)
        curve = bh.predict_survival(z)
        assert_allclose(curve.survival, bh.baseline_survival().survival ** np.exp(fit.coefficients @ z))

    def test_variance_matches_numerical_delta_method(self, fit):
        """Var H(t|z) = r^2 sum d / S0^2 + g' V g with g = dH/dbeta."""
        time, event, X = fit.design.time, fit.design.event, fit.X
        beta, V = fit.coefficients, fit.covariance
        z = np.array([0.5, 1.0])

        params = breslow_fit(time, event, X, beta, V)
        H, var_H = cumulative_hazard_at(params, z)

        eps = 1e-6
        grad = np.zeros((len(H), len(beta)))
        for i in range(len(beta)):
            step = np.zeros_like(beta)
            step[i] = eps
            up = cumulative_hazard_at(breslow_fit(time, event, X, beta + step, V), z)[0]
            down = cumulative_hazard_at(breslow_fit(time, event, X, beta - step, V), z)[0]
            grad[:, i] = (up - down) / (2 * eps)

        risk_score = np.exp(beta @ (z - params.reference))
        poisson = risk_score ** 2 * params.poisson_variance
        propagated = np.einsum("ki,ij,kj->k", grad, V, grad)
        assert_allclose(var_H, poisson + propagated, rtol=1e-5)

    def test_bounds_bracket_estimate(self, fit):
        curve = fit.baseline_hazard().predict_survival([1.0, 1.0])
        assert np.all(curve.ci_lower <= curve.survival)
        assert np.all(curve.survival <= curve.ci_upper)
        assert np.all((curve.ci_lower >= 0) & (curve.ci_upper <= 1))
        assert curve.conf_type == "log-log"
        assert curve.points()[0] == (0.0, 1.0, 1.0, 1.0)

    def test_product_limit_below_exponential(self, fit):
        bh = fit.baseline_hazard()
        pl = bh.predict_survival([0.3, 1.0], estimate="product-limit")
        ex = bh.predict_survival([0.3, 1.0])
        assert np.all(pl.survival <= ex.survival + 1e-15)

    def test_group_survival_uses_mean_profile(self, fit):
        bh = fit.baseline_hazard()
        Z = fit.X[:10]
        group = bh.group_survival(Z)
        direct = bh.predict_survival(Z.mean(axis=0))
        assert_allclose(group.survival, direct.survival)
        assert_allclose(group.ci_upper, direct.ci_upper)

    def test_conf_level_override(self, fit):
        narrow = fit.baseline_hazard(conf_level=0.5).predict_survival([0.0, 1.0])
        wide = fit.baseline_hazard().predict_survival([0.0, 1.0])
        interior = (wide.survival > 0) & (wide.survival < 1)
        assert np.all(narrow.ci_lower[interior] >= wide.ci_lower[interior])
        assert narrow.conf_level == 0.5

    def test_unknown_estimate(self, fit):
        with pytest.raises(ValueError, match="estimate"):
            fit.baseline_hazard().baseline_survival(estimate="spline")

    def test_wrong_profile_length(self, fit):
        with pytest.raises(ValueError, match="2 values"):
            fit.baseline_hazard().predict_survival([1.0, 2.0, 3.0])

    def test_mapping_needs_design_matrix(self, fit):
        with pytest.raises(TypeError, match="DesignMatrix"):
            fit.baseline_hazard().predict_survival({"x0": 1.0, "x1": 0.0})


class TestNamedProfiles:

    def test_profiles_through_design_matrix(self, rng):
        n = 300
        arm = rng.choice(["control", "treated"], n)
        age = rng.normal(60, 8, n)
        lp = 0.6 * (arm == "treated") + 0.02 * (age - 60)
        t_event = rng.exponential(1.0, n) / np.exp(lp)
        time = np.minimum(t_event, 2.0)
        event = (t_event <= 2.0).astype(float)

        design = SurvivalDesign.for_survival(time, event, {"arm": arm, "age": age})
        dm = build_design_matrix(design)
        bh = coxph(time, event, dm).baseline_hazard(centered=True)

        named = bh.predict_survival({"arm": "treated", "age": 55.0})
        coded = bh.predict_survival(dm.encode({"arm": "treated", "age": 55.0}))
        assert_allclose(named.survival, coded.survival)

        group = bh.group_survival([
            {"arm": "treated", "age": 50.0},
            {"arm": "control", "age": 70.0},
        ])
        mean_row = np.array([0.5, 60.0])
        assert_allclose(group.survival, bh.predict_survival(mean_row).survival)
