"""Tests for the optimiser strategies and the keypoint objective."""

import time

import numpy as np
import pytest

from pagedewarp.config import DewarpConfig
from pagedewarp.services.keypoints import make_keypoint_index, project_keypoints
from pagedewarp.services.optimise import (
    CoordinateDescentStrategy,
    PowellStrategy,
    ScipyPowellStrategy,
    bracket_minimum,
    brent_search,
    get_strategy,
    golden_section_search,
    line_search,
    make_objective,
    optimise_params,
)
from pagedewarp.utils.metrics import MetricsCollector

_A = np.array([[3.0, 1.0, 0.5], [1.0, 2.0, 0.3], [0.5, 0.3, 1.5]])
_B = np.array([1.0, -2.0, 0.5])


def _coupled_quadratic(x):
    return float(0.5 * x @ _A @ x - _B @ x)


def _separable_quadratic(n=50):
    center = np.linspace(-1.0, 1.0, n)
    weights = 1.0 + np.arange(n) % 5

    def f(x):
        return float(np.sum(weights * (x - center) ** 2))

    return f, center


class TestOneDimensionalSearch:
    """Tests for bracketing, Brent and golden-section searches."""

    def test_bracket_downhill(self):
        a, b, c, fb = bracket_minimum(lambda x: (x - 3.0) ** 2, 0.0)
        f = lambda x: (x - 3.0) ** 2  # noqa: E731
        assert a <= b <= c
        assert fb <= f(a) and fb <= f(c)
        assert fb == pytest.approx(f(b))

    def test_bracket_uphill_direction(self):
        f = lambda x: (x + 2.0) ** 2  # noqa: E731
        a, b, c, fb = bracket_minimum(f, 0.0)
        assert a <= b <= c
        assert fb <= f(a) and fb <= f(c)

    def test_bracket_already_at_minimum(self):
        a, b, c, fb = bracket_minimum(lambda x: x**2, 0.0)
        assert b == 0.0
        assert a < 0.0 < c

    def test_brent(self):
        f = lambda x: (x - 3.0) ** 2 + 1.0  # noqa: E731
        a, b, c, fb = bracket_minimum(f, 0.0)
        xmin, fmin = brent_search(f, a, b, c, 1e-8, fb=fb)
        assert xmin == pytest.approx(3.0, abs=1e-6)
        assert fmin == pytest.approx(1.0, abs=1e-10)

    def test_brent_non_quadratic(self):
        f = lambda x: np.cosh(x - 0.7)  # noqa: E731
        a, b, c, fb = bracket_minimum(f, 0.0)
        xmin, _ = brent_search(f, a, b, c, 1e-8, fb=fb)
        assert xmin == pytest.approx(0.7, abs=1e-6)

    def test_golden_section(self):
        f = lambda x: (x - 3.0) ** 2 + 1.0  # noqa: E731
        a, b, c, _ = bracket_minimum(f, 0.0)
        xmin, fmin = golden_section_search(f, a, b, c, 1e-8)
        assert xmin == pytest.approx(3.0, abs=1e-5)
        assert fmin == pytest.approx(1.0, abs=1e-9)

    def test_line_search_moves_point(self):
        x = np.zeros(2)
        f = lambda v: float((v[0] - 1.0) ** 2 + (v[1] - 2.0) ** 2)  # noqa: E731
        alpha, fx = line_search(f, x, np.array([1.0, 2.0]), f(x), 1e-8)
        np.testing.assert_allclose(x, [1.0, 2.0], atol=1e-6)
        assert alpha == pytest.approx(1.0, abs=1e-6)
        assert fx == pytest.approx(0.0, abs=1e-10)

    @pytest.mark.parametrize("method", ["brent", "golden"])
    def test_line_search_evaluates_points_on_line(self, method):
        x = np.array([0.5, -1.0, 2.0])
        direction = np.array([1.0, 0.0, 0.0])
        seen = []

        def f(v):
            seen.append(v.copy())
            return float((v[0] - 1.5) ** 2)

        line_search(f, x, direction, f(x), 1e-8, method=method)

        trials = np.array(seen)
        np.testing.assert_array_equal(trials[:, 1:], np.tile([-1.0, 2.0], (len(seen), 1)))
        np.testing.assert_allclose(x, [1.5, -1.0, 2.0], atol=1e-5)

    def test_line_search_skips_zero_direction(self):
        x = np.array([0.5, 0.5])
        f = lambda v: float(np.sum(v**2))  # noqa: E731
        alpha, fx = line_search(f, x, np.zeros(2), f(x), 1e-8)
        assert alpha == 0.0
        assert fx == f(x)
        np.testing.assert_array_equal(x, [0.5, 0.5])


class TestPowellStrategy:
    """Tests for PowellStrategy."""

    def test_separable_quadratic_50d(self):
        f, center = _separable_quadratic()
        result = PowellStrategy().minimize(f, np.zeros(50), max_iter=60, tol=1e-8)
        np.testing.assert_allclose(result.x, center, atol=1e-4)
        assert result.fun < 1e-6
        assert result.converged

    def test_coupled_quadratic(self):
        result = PowellStrategy().minimize(_coupled_quadratic, np.zeros(3), max_iter=100, tol=1e-12)
        np.testing.assert_allclose(result.x, np.linalg.solve(_A, _B), atol=1e-4)

    def test_history_is_monotone(self):
        result = PowellStrategy().minimize(_coupled_quadratic, np.zeros(3), max_iter=100, tol=1e-12)
        assert len(result.history) == result.iterations
        assert np.all(np.diff(result.history) <= 1e-12)
        assert result.fun <= _coupled_quadratic(np.zeros(3))

    def test_iteration_cap(self):
        f, _ = _separable_quadratic()
        result = PowellStrategy().minimize(f, np.zeros(50), max_iter=1, tol=1e-8)
        assert result.iterations == 1
        assert not result.converged

    def test_does_not_modify_start(self):
        x0 = np.zeros(3)
        PowellStrategy().minimize(_coupled_quadratic, x0, max_iter=10, tol=1e-8)
        np.testing.assert_array_equal(x0, np.zeros(3))

    def test_expired_deadline_returns_start(self):
        x0 = np.array([0.3, -0.2, 0.1])
        result = PowellStrategy().minimize(
            _coupled_quadratic, x0, max_iter=10, tol=1e-8, deadline=time.monotonic() - 1.0
        )
        assert result.iterations == 0
        assert not result.converged
        np.testing.assert_array_equal(result.x, x0)

    def test_counts_evaluations(self):
        calls = []

        def f(x):
            calls.append(1)
            return _coupled_quadratic(x)

        result = PowellStrategy().minimize(f, np.zeros(3), max_iter=5, tol=1e-8)
        assert result.evaluations == len(calls)


class TestAlternateStrategies:
    """Tests for the coordinate descent and SciPy strategies."""

    def test_coordinate_descent(self):
        result = CoordinateDescentStrategy().minimize(
            _coupled_quadratic, np.zeros(3), max_iter=200, tol=1e-12
        )
        np.testing.assert_allclose(result.x, np.linalg.solve(_A, _B), atol=1e-4)
        assert np.all(np.diff(result.history) <= 1e-12)

    def test_scipy_powell(self):
        result = ScipyPowellStrategy().minimize(
            _coupled_quadratic, np.zeros(3), max_iter=200, tol=1e-12
        )
        np.testing.assert_allclose(result.x, np.linalg.solve(_A, _B), atol=1e-4)
        assert result.evaluations > 0


class TestGetStrategy:
    """Tests for get_strategy."""

    @pytest.mark.parametrize(
        "name, cls",
        [
            ("powell", PowellStrategy),
            ("coordinate", CoordinateDescentStrategy),
            ("scipy", ScipyPowellStrategy),
        ],
    )
    def test_known(self, name, cls):
        assert isinstance(get_strategy(name), cls)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown optimiser"):
            get_strategy("nelder-mead")


# ── Keypoint objective ───────────────────────────────────────────────────────

_SPAN_COUNTS = [3, 4]
_TRUE_PARAMS = np.array(
    [0.02, -0.01, 0.0, -0.5, -0.6, 1.2, 0.05, -0.03, 0.2, 0.6]
    + [0.1, 0.4, 0.7]
    + [0.15, 0.45, 0.75, 0.9]
)


def _observed_points():
    return project_keypoints(_TRUE_PARAMS, make_keypoint_index(_SPAN_COUNTS), 1.2)


class TestOptimiseParams:
    """Tests for make_objective and optimise_params."""

    def test_objective_zero_at_truth(self):
        f = make_objective(_observed_points(), _SPAN_COUNTS, 1.2)
        assert f(_TRUE_PARAMS) == pytest.approx(0.0, abs=1e-20)

    def test_objective_rejects_wrong_point_count(self):
        with pytest.raises(ValueError):
            make_objective(np.zeros((5, 2)), _SPAN_COUNTS, 1.2)

    def test_improves_on_start(self):
        rng = np.random.default_rng(1)
        start = _TRUE_PARAMS + rng.normal(scale=0.01, size=_TRUE_PARAMS.size)
        f = make_objective(_observed_points(), _SPAN_COUNTS, 1.2)
        config = DewarpConfig(optim_max_iter=5)

        result = optimise_params(_observed_points(), _SPAN_COUNTS, start, config)

        assert result.fun < f(start)
        assert result.fun == pytest.approx(f(result.x))
        assert result.x.shape == start.shape

    def test_start_not_modified(self):
        start = _TRUE_PARAMS + 0.01
        before = start.copy()
        optimise_params(_observed_points(), _SPAN_COUNTS, start, DewarpConfig(optim_max_iter=2))
        np.testing.assert_array_equal(start, before)

    def test_records_metrics(self):
        metrics = MetricsCollector()
        start = _TRUE_PARAMS + 0.01
        result = optimise_params(
            _observed_points(),
            _SPAN_COUNTS,
            start,
            DewarpConfig(optim_max_iter=2),
            strategy=CoordinateDescentStrategy(),
            metrics=metrics,
        )
        assert metrics.get("final_cost") == pytest.approx(result.fun)
        assert metrics.get("initial_cost") >= metrics.get("final_cost")
        assert len(metrics.get("final_params")) == _TRUE_PARAMS.size
        assert metrics.get("optimization_time") >= 0

    def test_timeout_stops_early(self):
        start = _TRUE_PARAMS + 0.01
        result = optimise_params(
            _observed_points(), _SPAN_COUNTS, start, DewarpConfig(), timeout=1e-9
        )
        assert not result.converged
        assert result.iterations <= 1
