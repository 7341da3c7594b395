"""Global reprojection optimisation.

Refines the whole parameter vector (pose, curvature and per-keypoint page
coordinates) so that the projected keypoints land on the observed ones.

The minimiser is a swappable strategy:
- ``PowellStrategy`` (default): Powell's conjugate direction method with
  golden-ratio bracketing and Brent line searches, written out here
- ``CoordinateDescentStrategy``: one golden-section search per coordinate
- ``ScipyPowellStrategy``: ``scipy.optimize.minimize(method="Powell")``,
  useful as a benchmark reference

Only a local minimum near the starting point is found.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
from scipy import optimize

from pagedewarp.config import DewarpConfig
from pagedewarp.constants import (
    BRACKET_INITIAL_STEP,
    BRACKET_MAX_ITER,
    BRENT_MAX_ITER,
    BRENT_ZEPS,
    CGOLD,
    DIRECTION_EPS,
    GOLDEN_RATIO,
)
from pagedewarp.services.keypoints import make_keypoint_index, project_keypoints
from pagedewarp.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)

Objective = Callable[[np.ndarray], float]


@dataclass
class OptimizationResult:
    """Outcome of a minimisation.

    Attributes:
        x: Best parameters found
        fun: Objective value at ``x``
        iterations: Outer iterations performed
        evaluations: Objective evaluations performed
        converged: False when the iteration cap or deadline was hit first
        history: Objective value after each outer iteration
    """

    x: np.ndarray
    fun: float
    iterations: int = 0
    evaluations: int = 0
    converged: bool = False
    history: list[float] = field(default_factory=list)


class OptimizerStrategy(Protocol):
    """Anything that can minimise a scalar function of a vector."""

    name: str

    def minimize(
        self,
        objective: Objective,
        x0: np.ndarray,
        max_iter: int,
        tol: float,
        deadline: float | None = None,
    ) -> OptimizationResult: ...


class _CountingObjective:
    """Wraps an objective and counts its evaluations."""

    def __init__(self, objective: Objective) -> None:
        self._objective = objective
        self.count = 0

    def __call__(self, x: np.ndarray) -> float:
        self.count += 1
        return float(self._objective(x))


def _past_deadline(deadline: float | None) -> bool:
    return deadline is not None and time.monotonic() >= deadline


# ── One-dimensional searches ─────────────────────────────────────────────────


def bracket_minimum(
    f: Callable[[float], float],
    x0: float = 0.0,
    step: float = BRACKET_INITIAL_STEP,
    f0: float | None = None,
) -> tuple[float, float, float, float]:
    """Find ``a < b < c`` (in either order) with ``f(b) <= f(a), f(c)``.

    Steps away from ``x0`` downhill, growing the step by the golden ratio.

    Returns:
        (a, b, c, f(b)) with ``a <= c``.
    """
    a = x0
    fa = f(a) if f0 is None else f0
    b = x0 + step
    fb = f(b)

    if fb > fa:
        step = -step
        b = x0 + step
        fb = f(b)
        if fb > fa:
            # x0 itself is lower than both neighbours
            return x0 - abs(step), x0, x0 + abs(step), fa

    c = b + step
    fc = f(c)

    iterations = 0
    while fc < fb and iterations < BRACKET_MAX_ITER:
        a, fa = b, fb
        b, fb = c, fc
        step *= GOLDEN_RATIO
        c = b + step
        fc = f(c)
        iterations += 1

    if a > c:
        a, c = c, a
    return a, b, c, fb


def brent_search(
    f: Callable[[float], float],
    a: float,
    b: float,
    c: float,
    tol: float,
    fb: float | None = None,
) -> tuple[float, float]:
    """Brent's method: parabolic interpolation with golden-section fallback.

    Args:
        f: Function of one variable.
        a, b, c: Bracket with ``a <= b <= c`` and ``f(b)`` below both ends.
        tol: Fractional precision on the abscissa.
        fb: ``f(b)`` if already known.

    Returns:
        (xmin, f(xmin)); ``f(xmin) <= f(b)``.
    """
    x = w = v = b
    fx = f(x) if fb is None else fb
    fw = fv = fx
    e = 0.0
    d = 0.0

    for _ in range(BRENT_MAX_ITER):
        xm = 0.5 * (a + c)
        tol1 = tol * abs(x) + BRENT_ZEPS
        tol2 = 2.0 * tol1

        if abs(x - xm) <= tol2 - 0.5 * (c - a):
            break

        if abs(e) > tol1:
            r = (x - w) * (fx - fv)
            q = (x - v) * (fx - fw)
            p = (x - v) * q - (x - w) * r
            q = 2.0 * (q - r)
            if q > 0.0:
                p = -p
            q = abs(q)
            etemp = e
            e = d

            if abs(p) >= abs(0.5 * q * etemp) or p <= q * (a - x) or p >= q * (c - x):
                e = a - x if x >= xm else c - x
                d = CGOLD * e
            else:
                d = p / q
                u = x + d
                if u - a < tol2 or c - u < tol2:
                    d = tol1 if xm - x >= 0 else -tol1
        else:
            e = a - x if x >= xm else c - x
            d = CGOLD * e

        u = x + d if abs(d) >= tol1 else x + (tol1 if d >= 0 else -tol1)
        fu = f(u)

        if fu <= fx:
            if u >= x:
                a = x
            else:
                c = x
            v, w, x = w, x, u
            fv, fw, fx = fw, fx, fu
        else:
            if u < x:
                a = u
            else:
                c = u
            if fu <= fw or w == x:
                v, w = w, u
                fv, fw = fw, fu
            elif fu <= fv or v == x or v == w:
                v = u
                fv = fu

    return x, fx


def golden_section_search(
    f: Callable[[float], float], a: float, b: float, c: float, tol: float
) -> tuple[float, float]:
    """Golden-section search inside the bracket ``[a, c]`` around ``b``."""
    x0, x3 = a, c
    if abs(c - b) > abs(b - a):
        x1, x2 = b, b + CGOLD * (c - b)
    else:
        x2, x1 = b, b - CGOLD * (b - a)
    f1, f2 = f(x1), f(x2)

    r = 1.0 - CGOLD
    while abs(x3 - x0) > tol * (abs(x1) + abs(x2)) + BRENT_ZEPS:
        if f2 < f1:
            x0, x1, x2 = x1, x2, r * x2 + CGOLD * x3
            f1, f2 = f2, f(x2)
        else:
            x3, x2, x1 = x2, x1, r * x1 + CGOLD * x0
            f2, f1 = f1, f(x1)

    return (x1, f1) if f1 < f2 else (x2, f2)


def line_search(
    objective: Objective,
    x: np.ndarray,
    direction: np.ndarray,
    fx: float,
    tol: float,
    method: str = "brent",
) -> tuple[float, float]:
    """Minimise ``objective(x + alpha * direction)`` over ``alpha``, moving ``x``.

    Args:
        objective: Function of the full parameter vector.
        x: Current point, updated in place.
        direction: Search direction.
        fx: ``objective(x)``.
        tol: Fractional tolerance on ``alpha``.
        method: ``brent`` or ``golden``.

    Returns:
        (alpha, new objective value). ``x`` is left untouched when no
        lower point is found.
    """
    if float(np.max(np.abs(direction))) < DIRECTION_EPS:
        return 0.0, fx

    scratch = np.empty_like(x)

    def phi(alpha: float) -> float:
        np.multiply(direction, alpha, out=scratch)
        np.add(scratch, x, out=scratch)
        return objective(scratch)

    a, b, c, fb = bracket_minimum(phi, 0.0, f0=fx)
    if method == "golden":
        alpha, f_alpha = golden_section_search(phi, a, b, c, tol)
    else:
        alpha, f_alpha = brent_search(phi, a, b, c, tol, fb=fb)

    if alpha == 0.0 or not f_alpha < fx:
        return 0.0, fx
    x += alpha * direction
    return alpha, f_alpha


# ── Strategies ───────────────────────────────────────────────────────────────


class PowellStrategy:
    """Powell's direction-set method with Brent line searches."""

    name = "powell"

    def minimize(
        self,
        objective: Objective,
        x0: np.ndarray,
        max_iter: int,
        tol: float,
        deadline: float | None = None,
    ) -> OptimizationResult:
        f = _CountingObjective(objective)
        x = np.array(x0, dtype=np.float64)
        n = x.size
        fx = f(x)
        directions = np.eye(n)
        history: list[float] = []
        converged = False
        iteration = 0

        while iteration < max_iter:
            if _past_deadline(deadline):
                logger.warning(f"Optimisation deadline reached after {iteration} iterations")
                break
            iteration += 1

            x_old = x.copy()
            fx_old = fx
            biggest_decrease = 0.0
            biggest_idx = -1

            for i in range(n):
                f_before = fx
                _, fx = line_search(f, x, directions[i], fx, tol)
                decrease = f_before - fx
                if decrease > biggest_decrease:
                    biggest_decrease = decrease
                    biggest_idx = i

            delta = x - x_old
            f_ext = f(x + delta)
            if (
                f_ext < fx_old
                and biggest_idx >= 0
                and 2.0 * (fx_old - 2.0 * fx + f_ext) * (fx_old - fx - biggest_decrease) ** 2
                < biggest_decrease * (fx_old - f_ext) ** 2
            ):
                alpha, fx = line_search(f, x, delta, fx, tol)
                if alpha != 0.0:
                    directions[biggest_idx] = delta

            history.append(fx)
            logger.debug(f"  iter {iteration}: loss {fx:.6f}")

            if abs(fx_old - fx) < tol:
                converged = True
                break

        return OptimizationResult(
            x=x,
            fun=fx,
            iterations=iteration,
            evaluations=f.count,
            converged=converged,
            history=history,
        )


class CoordinateDescentStrategy:
    """Cyclic coordinate descent with golden-section line searches."""

    name = "coordinate"

    def minimize(
        self,
        objective: Objective,
        x0: np.ndarray,
        max_iter: int,
        tol: float,
        deadline: float | None = None,
    ) -> OptimizationResult:
        f = _CountingObjective(objective)
        x = np.array(x0, dtype=np.float64)
        fx = f(x)
        basis = np.eye(x.size)
        history: list[float] = []
        converged = False
        iteration = 0

        while iteration < max_iter:
            if _past_deadline(deadline):
                logger.warning(f"Optimisation deadline reached after {iteration} iterations")
                break
            iteration += 1
            fx_old = fx
            for direction in basis:
                _, fx = line_search(f, x, direction, fx, tol, method="golden")
            history.append(fx)
            logger.debug(f"  iter {iteration}: loss {fx:.6f}")
            if abs(fx_old - fx) < tol:
                converged = True
                break

        return OptimizationResult(
            x=x,
            fun=fx,
            iterations=iteration,
            evaluations=f.count,
            converged=converged,
            history=history,
        )


class ScipyPowellStrategy:
    """SciPy's Powell implementation, for comparison runs."""

    name = "scipy"

    def minimize(
        self,
        objective: Objective,
        x0: np.ndarray,
        max_iter: int,
        tol: float,
        deadline: float | None = None,
    ) -> OptimizationResult:
        f = _CountingObjective(objective)
        history: list[float] = []

        def callback(xk: np.ndarray) -> None:
            history.append(float(objective(xk)))
            if _past_deadline(deadline):
                raise StopIteration

        res = optimize.minimize(
            f,
            np.asarray(x0, dtype=np.float64),
            method="Powell",
            callback=callback,
            options={"maxiter": max_iter, "ftol": tol, "xtol": tol},
        )
        return OptimizationResult(
            x=np.asarray(res.x, dtype=np.float64),
            fun=float(res.fun),
            iterations=int(res.nit),
            evaluations=f.count,
            converged=bool(res.success),
            history=history,
        )


_STRATEGIES: dict[str, type] = {
    PowellStrategy.name: PowellStrategy,
    CoordinateDescentStrategy.name: CoordinateDescentStrategy,
    ScipyPowellStrategy.name: ScipyPowellStrategy,
}


def get_strategy(name: str) -> OptimizerStrategy:
    """Instantiate the strategy registered under ``name``."""
    try:
        return _STRATEGIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown optimiser '{name}', expected one of {', '.join(_STRATEGIES)}"
        ) from None


# ── Keypoint objective ───────────────────────────────────────────────────────


def make_objective(
    dstpoints: np.ndarray,
    span_counts: Sequence[int],
    focal_length: float,
    metrics: MetricsCollector | None = None,
) -> Objective:
    """Sum of squared distances between observed and projected keypoints."""
    dst = np.asarray(dstpoints, dtype=np.float64).reshape(-1, 2)
    keypoint_index = make_keypoint_index(span_counts)
    if len(keypoint_index) != len(dst):
        raise ValueError(
            f"{len(dst)} observed keypoints for an index of {len(keypoint_index)} entries"
        )

    def objective(pvec: np.ndarray) -> float:
        ppts = project_keypoints(pvec, keypoint_index, focal_length, metrics)
        return float(np.sum((dst - ppts) ** 2))

    return objective


def optimise_params(
    dstpoints: np.ndarray,
    span_counts: Sequence[int],
    params: np.ndarray,
    config: DewarpConfig,
    strategy: OptimizerStrategy | None = None,
    metrics: MetricsCollector | None = None,
    timeout: float | None = None,
) -> OptimizationResult:
    """Refine the page model to minimise reprojection error.

    Args:
        dstpoints: Observed keypoints; entry 0 is the first page corner,
            the rest are the span samples in span order.
        span_counts: Number of samples per span.
        params: Initial parameter vector (not modified).
        config: Focal length, iteration cap, tolerance and strategy name.
        strategy: Overrides ``config.optim_method`` when given.
        metrics: Optional diagnostic collector.
        timeout: Wall-clock budget in seconds; defaults to
            ``config.optim_timeout``.

    Returns:
        OptimizationResult; ``converged`` is False when the cap was hit.
    """
    strategy = strategy or get_strategy(config.optim_method)
    objective = make_objective(dstpoints, span_counts, config.focal_length, metrics)

    initial_cost = objective(params)
    logger.info(f"  initial objective is {initial_cost:.6f}")
    logger.info(f"  optimizing {len(params)} parameters using {strategy.name}...")

    if timeout is None:
        timeout = config.optim_timeout
    deadline = time.monotonic() + timeout if timeout is not None else None
    start = time.monotonic()
    result = strategy.minimize(
        objective, np.asarray(params, dtype=np.float64), config.optim_max_iter, config.optim_tol, deadline
    )
    elapsed = time.monotonic() - start

    logger.info(f"  optimization took {elapsed:.2f} sec.")
    logger.info(f"  final objective is {result.fun:.6f}")
    if not result.converged:
        logger.info(f"  stopped after {result.iterations} iterations without converging")

    if metrics is not None:
        metrics.add("initial_params", params)
        metrics.add("initial_cost", initial_cost)
        metrics.add("final_params", result.x)
        metrics.add("final_cost", result.fun)
        metrics.add("optimization_time", elapsed)
        metrics.add("optimization_iterations", result.iterations)
        metrics.add("optimization_evaluations", result.evaluations)
        metrics.add("optimization_converged", result.converged)
    return result
