"""Least-squares fitting of the curve ``y = exp(a*x^2 + b*x + c)``."""

from __future__ import annotations

import argparse
import math
import time
from dataclasses import dataclass

import numpy as np

_GRADIENT_TOLERANCE = 1e-10
_STEP_TOLERANCE = 1e-10
_TAU = 1e-3


@dataclass(frozen=True, eq=False)
class FitResult:
    """Outcome of a curve fit: the parameters (a, b, c) and how the solver fared."""

    params: np.ndarray
    cost: float
    iterations: int
    converged: bool


def generate_data(a=1.0, b=2.0, c=1.0, count=100, sigma=1.0, seed=0):
    """Samples at ``x = i / 100`` of the curve with Gaussian noise of deviation ``sigma``."""
    if count < 0:
        raise ValueError("count must not be negative")
    if sigma < 0:
        raise ValueError("sigma must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(count) / 100.0
    y = np.exp(a * x * x + b * x + c) + rng.normal(0.0, sigma, size=count)
    return x, y


def _samples(x, y) -> tuple[np.ndarray, np.ndarray]:
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if xs.ndim != 1 or ys.ndim != 1:
        raise ValueError("x and y must be one-dimensional")
    if xs.shape != ys.shape:
        raise ValueError(f"x and y differ in length: {xs.size} and {ys.size}")
    if xs.size == 0:
        raise ValueError("at least one sample is needed")
    return xs, ys


def _parameters(values) -> np.ndarray:
    p = np.asarray(values, dtype=float)
    if p.shape != (3,):
        raise ValueError(f"parameters must have 3 components, got shape {p.shape}")
    return p.copy()


def _model(params: np.ndarray, x: np.ndarray) -> np.ndarray:
    a, b, c = params
    with np.errstate(over="ignore", invalid="ignore"):
        return np.exp(a * x * x + b * x + c)


def residuals(params, x, y) -> np.ndarray:
    """Residuals ``y - exp(a*x^2 + b*x + c)`` for every sample."""
    p = _parameters(params)
    xs, ys = _samples(x, y)
    with np.errstate(over="ignore", invalid="ignore"):
        return ys - _model(p, xs)


def _jacobian(params: np.ndarray, x: np.ndarray) -> np.ndarray:
    e = _model(params, x)
    with np.errstate(over="ignore", invalid="ignore"):
        return -e[:, None] * np.column_stack([x * x, x, np.ones_like(x)])


def _cost(r: np.ndarray) -> float:
    with np.errstate(over="ignore", invalid="ignore"):
        return float(0.5 * (r @ r))


def _start(x, y, initial):
    xs, ys = _samples(x, y)
    p = _parameters(initial)
    r = residuals(p, xs, ys)
    cost = _cost(r)
    if not math.isfinite(cost):
        raise ValueError("initial parameters give a non-finite cost")
    return xs, ys, p, r, cost


def _small_step(dx: np.ndarray, p: np.ndarray) -> bool:
    return float(np.linalg.norm(dx)) < _STEP_TOLERANCE * (
        float(np.linalg.norm(p)) + _STEP_TOLERANCE
    )


def fit_gauss_newton(x, y, initial=(0.0, 0.0, 0.0), iterations=100) -> FitResult:
    """Fit (a, b, c) by plain Gauss-Newton steps."""
    xs, ys, p, r, cost = _start(x, y, initial)
    done = 0
    converged = False
    for _ in range(iterations):
        j = _jacobian(p, xs)
        g = j.T @ r
        if not np.all(np.isfinite(g)):
            break
        if float(np.max(np.abs(g))) < _GRADIENT_TOLERANCE:
            converged = True
            break
        dx, *_ = np.linalg.lstsq(j.T @ j, -g, rcond=None)
        done += 1
        new_p = p + dx
        new_r = residuals(new_p, xs, ys)
        new_cost = _cost(new_r)
        if not math.isfinite(new_cost):
            break
        p, r, cost = new_p, new_r, new_cost
        if _small_step(dx, p):
            converged = True
            break
    return FitResult(params=p, cost=cost, iterations=done, converged=converged)


def fit_levenberg_marquardt(x, y, initial=(0.0, 0.0, 0.0), iterations=100) -> FitResult:
    """Fit (a, b, c) by Levenberg-Marquardt with an adaptive damping factor."""
    xs, ys, p, r, cost = _start(x, y, initial)
    mu: float | None = None
    nu = 2.0
    done = 0
    converged = False
    for _ in range(iterations):
        j = _jacobian(p, xs)
        h = j.T @ j
        g = j.T @ r
        if float(np.max(np.abs(g))) < _GRADIENT_TOLERANCE:
            converged = True
            break
        if mu is None:
            largest = float(np.max(np.diag(h)))
            mu = _TAU * largest if largest > 0 else _TAU
        done += 1
        try:
            dx = np.linalg.solve(h + mu * np.eye(3), -g)
        except np.linalg.LinAlgError:
            mu *= nu
            nu *= 2.0
            continue
        if _small_step(dx, p):
            converged = True
            break
        new_p = p + dx
        new_r = residuals(new_p, xs, ys)
        new_cost = _cost(new_r)
        predicted = 0.5 * float(dx @ (mu * dx - g))
        if math.isfinite(new_cost) and predicted > 0 and new_cost < cost:
            rho = (cost - new_cost) / predicted
            p, r, cost = new_p, new_r, new_cost
            mu *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
            nu = 2.0
        else:
            mu *= nu
            nu *= 2.0
    return FitResult(params=p, cost=cost, iterations=done, converged=converged)


def main(argv=None) -> int:
    """Generate noisy samples of the curve and estimate its parameters."""
    parser = argparse.ArgumentParser(
        description="Fit y = exp(a*x^2 + b*x + c) to generated noisy data."
    )
    parser.add_argument("--a", type=float, default=1.0)
    parser.add_argument("--b", type=float, default=2.0)
    parser.add_argument("--c", type=float, default=1.0)
    parser.add_argument("--count", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--iterations", type=int, default=100)
    parser.add_argument("--method", choices=("lm", "gn"), default="lm")
    args = parser.parse_args(argv)

    print("generating data: ")
    x, y = generate_data(args.a, args.b, args.c, args.count, args.sigma, args.seed)
    for xi, yi in zip(x, y):
        print(f"{xi:g} {yi:g}")

    fit = fit_levenberg_marquardt if args.method == "lm" else fit_gauss_newton
    start = time.perf_counter()
    result = fit(x, y, (0.0, 0.0, 0.0), args.iterations)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed:g} seconds. ")
    print(
        f"iterations: {result.iterations}, final cost: {result.cost:g}, "
        f"converged: {'yes' if result.converged else 'no'}"
    )
    print("estimated a,b,c = " + " ".join(f"{v:g}" for v in result.params) + " ")
    return 0