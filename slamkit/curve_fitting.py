"""Least-squares fitting of the curve ``y = exp(a x^2 + b x + c)``."""

from __future__ import annotations

from enum import Enum

import numpy as np

_LM_TAU = 1e-5
_DOGLEG_RADIUS = 1e4
_STEP_EPS = 1e-12


class Method(Enum):
    """Descent strategy for :func:`fit_curve`."""

    GAUSS_NEWTON = "gauss-newton"
    LEVENBERG_MARQUARDT = "levenberg-marquardt"
    DOGLEG = "dogleg"


def generate_data(
    a: float = 1.0,
    b: float = 2.0,
    c: float = 1.0,
    n: int = 100,
    sigma: float = 1.0,
    seed: int | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Samples ``x = i / 100`` of the curve with Gaussian noise of deviation ``sigma``."""
    if n < 0:
        raise ValueError("n must be non-negative")
    if sigma < 0:
        raise ValueError("sigma must be non-negative")
    rng = np.random.default_rng(seed)
    x = np.arange(n) / 100.0
    y = np.exp(a * x * x + b * x + c) + rng.normal(0.0, sigma, n)
    return x, y


def _residuals(abc: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore", invalid="ignore"):
        return y - np.exp(abc[0] * x * x + abc[1] * x + abc[2])


def _linearise(abc, x, y):
    with np.errstate(over="ignore", invalid="ignore"):
        f = np.exp(abc[0] * x * x + abc[1] * x + abc[2])
        r = y - f
        J = -f[:, None] * np.column_stack([x * x, x, np.ones_like(x)])
    return r, J


def _cost(r: np.ndarray) -> float:
    return float(r @ r)


def _gauss_newton(abc, x, y, iterations):
    for _ in range(iterations):
        r, J = _linearise(abc, x, y)
        if not np.all(np.isfinite(J)):
            break
        try:
            dx = np.linalg.solve(J.T @ J, -(J.T @ r))
        except np.linalg.LinAlgError:
            break
        if not np.all(np.isfinite(dx)):
            break
        abc = abc + dx
        if np.linalg.norm(dx) < _STEP_EPS * (np.linalg.norm(abc) + _STEP_EPS):
            break
    return abc


def _levenberg_marquardt(abc, x, y, iterations):
    r, J = _linearise(abc, x, y)
    cost = _cost(r)
    H = J.T @ J
    lam = _LM_TAU * float(H.diagonal().max()) or _LM_TAU
    nu = 2.0
    for _ in range(iterations):
        g = J.T @ r
        try:
            dx = np.linalg.solve(H + lam * np.eye(3), -g)
        except np.linalg.LinAlgError:
            lam *= nu
            nu *= 2.0
            continue
        candidate = abc + dx
        new_r = _residuals(candidate, x, y)
        new_cost = _cost(new_r)
        predicted = float(dx @ (lam * dx - g))
        if np.isfinite(new_cost) and new_cost < cost and predicted > 0.0:
            rho = (cost - new_cost) / predicted
            lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
            nu = 2.0
            abc = candidate
            r, J = _linearise(abc, x, y)
            cost = new_cost
            H = J.T @ J
            if np.linalg.norm(dx) < _STEP_EPS * (np.linalg.norm(abc) + _STEP_EPS):
                break
        else:
            lam *= nu
            nu *= 2.0
            if not np.isfinite(lam):
                break
    return abc


def _dogleg(abc, x, y, iterations):
    radius = _DOGLEG_RADIUS
    r, J = _linearise(abc, x, y)
    cost = _cost(r)
    for _ in range(iterations):
        g = J.T @ r
        H = J.T @ J
        g_norm = float(np.linalg.norm(g))
        if g_norm < _STEP_EPS:
            break
        curvature = float(g @ H @ g)
        alpha = g_norm * g_norm / curvature if curvature > 0.0 else radius / g_norm
        try:
            h_gn = np.linalg.solve(H, -g)
        except np.linalg.LinAlgError:
            h_gn = None
        if h_gn is not None and np.linalg.norm(h_gn) <= radius:
            h = h_gn
        elif h_gn is None or alpha * g_norm >= radius:
            h = -(radius / g_norm) * g
        else:
            a_vec = -alpha * g
            d_vec = h_gn - a_vec
            qa = float(d_vec @ d_vec)
            qb = 2.0 * float(a_vec @ d_vec)
            qc = float(a_vec @ a_vec) - radius * radius
            beta = (-qb + np.sqrt(qb * qb - 4.0 * qa * qc)) / (2.0 * qa)
            h = a_vec + beta * d_vec

        candidate = abc + h
        new_r = _residuals(candidate, x, y)
        new_cost = _cost(new_r)
        predicted = -2.0 * float(h @ g) - float(h @ H @ h)
        rho = (cost - new_cost) / predicted if predicted > 0.0 else -1.0
        step = float(np.linalg.norm(h))
        if np.isfinite(new_cost) and rho > 0.0:
            abc = candidate
            r, J = _linearise(abc, x, y)
            cost = new_cost
            if rho > 0.75:
                radius = max(radius, 3.0 * step)
        if not (np.isfinite(new_cost) and rho > 0.0) or rho < 0.25:
            radius *= 0.5
        if step < _STEP_EPS * (np.linalg.norm(abc) + _STEP_EPS) or radius < _STEP_EPS:
            break
    return abc


_SOLVERS = {
    Method.GAUSS_NEWTON: _gauss_newton,
    Method.LEVENBERG_MARQUARDT: _levenberg_marquardt,
    Method.DOGLEG: _dogleg,
}


def fit_curve(
    x,
    y,
    initial=(0.0, 0.0, 0.0),
    method: Method | str = Method.LEVENBERG_MARQUARDT,
    iterations: int = 100,
) -> np.ndarray:
    """Estimate ``(a, b, c)`` minimising ``sum (y - exp(a x^2 + b x + c))^2``."""
    x = np.asarray(x, dtype=float).reshape(-1)
    y = np.asarray(y, dtype=float).reshape(-1)
    if x.shape != y.shape:
        raise ValueError(f"x and y differ in size: {x.size} and {y.size}")
    if x.size == 0:
        raise ValueError("at least one data point is needed")
    if iterations < 0:
        raise ValueError("iterations must be non-negative")
    abc = np.asarray(initial, dtype=float).reshape(-1)
    if abc.shape != (3,):
        raise ValueError(f"initial must have 3 elements, got {abc.size}")
    solver = _SOLVERS[Method(method)]
    return solver(abc.copy(), x, y, iterations)