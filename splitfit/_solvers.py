"""
_solvers.py
===========
Iterative solvers for  min 0.5 ||A x - d||^2  subject to  x >= 0.

Every solver has the same signature::

    solver(op, x, d, config, cancel=None) -> SolverStats

``op`` is a :class:`~splitfit._operator.CircularOperator`, ``x`` a feasible
starting point that is overwritten with the result, ``d`` the distances in
cycle order and ``config`` a :class:`~splitfit._config.SolverConfig` already
passed through ``resolved()``.  A solver stops when the squared projected
gradient drops below ``config.projected_gradient_bound`` or when the
iteration or time cap is reached; the latter is reported through
``stats.converged = False``, not an exception.  The only exception a solver
raises is ``Cancelled``, and ``x`` then holds the last completed iterate.

Solvers
-------
  gradient_projection   projected steepest descent, step chosen by a
                        Generalized Cauchy Point search
  active_set            CGNR on the free coordinates, with face switching
  apgd                  Nesterov-accelerated projected gradient with restarts
  ipg                   interior-point gradient scaling
"""

import logging
import math
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from splitfit._config import Algorithm
from splitfit._operator import CircularOperator, projected_gradient_squared
from splitfit._stats import SolverMonitor, SolverStats
from splitfit._utils import zero_negative_entries, threshold_entries
from splitfit._logging import log_solver_start, log_solver_iteration, log_solver_finish


logger = logging.getLogger(__name__)

# Bisection/doubling steps allowed in one Cauchy point search
_GCP_MAX_STEPS = 100


def _start(algorithm: Algorithm, op: CircularOperator, config, cancel) -> SolverMonitor:
    log_solver_start(algorithm.value, op.n_taxa, config.max_iterations)
    return SolverMonitor(
        algorithm.value,
        max_iterations=config.max_iterations,
        max_time=config.max_time,
        cancel=cancel,
    )


def _finish(monitor: SolverMonitor, pg: float, bound: float) -> SolverStats:
    stats = monitor.finish(pg, pg < bound)
    log_solver_finish(stats)
    return stats


# ======================================================================== #
# CGNR                                                                      #
# ======================================================================== #


def cgnr(
    op: CircularOperator,
    x: np.ndarray,
    d: np.ndarray,
    active: np.ndarray,
    max_iterations: int,
    tolerance: float,
    monitor: Optional[SolverMonitor] = None,
) -> int:
    """
    Conjugate gradients on the normal equations, restricted to free entries.

    Minimises ``||A x - d||`` over x with ``x[active] == 0`` (Saad,
    *Iterative Methods for Sparse Linear Systems*, CGNR).  Negative entries
    of the starting point are clamped first; the result may be infeasible.

    Parameters
    ----------
    op : CircularOperator
    x : np.ndarray
        Starting point, overwritten with the result.
    d : np.ndarray
        Distances in cycle order.
    active : np.ndarray[bool]
        Entries held at zero.
    max_iterations : int
        Iteration cap.
    tolerance : float
        Stop once the squared norm of the restricted gradient is below this.
    monitor : SolverMonitor, optional
        Polled for cancellation every ``n_taxa`` iterations.

    Returns
    -------
    int
        Iterations used.  Equal to *max_iterations* when the cap stopped it.
    """
    zero_negative_entries(x)
    x[active] = 0.0

    r = d - op.forward(x)
    z = op.adjoint(r)
    z[active] = 0.0
    p = z.copy()
    ztz = float(z @ z)

    k = 1
    while ztz > 0.0:
        w = op.forward(p)
        ww = float(w @ w)
        if ww <= 0.0:
            break
        alpha = ztz / ww
        x += alpha * p
        r -= alpha * w

        z = op.adjoint(r)
        z[active] = 0.0
        ztz2 = float(z @ z)
        if ztz2 < tolerance or k >= max_iterations:
            break

        beta = ztz2 / ztz
        p = z + beta * p
        ztz = ztz2

        k += 1
        if monitor is not None and k % op.n_taxa == 0:
            monitor.check_cancel()
    return k


# ======================================================================== #
# Active set                                                                #
# ======================================================================== #


def feasible_move(x: np.ndarray, xstar: np.ndarray, active: np.ndarray, fraction: float) -> bool:
    """
    Move x towards xstar as far as feasibility allows.

    If xstar is feasible, x becomes xstar and True is returned.  Otherwise
    x moves along the segment to xstar until the first entry hits zero, and
    the first ``max(1, ceil(fraction * #negative))`` entries to hit zero on
    that segment join the active set (and are set to zero).

    Returns
    -------
    bool
        Whether xstar was feasible.
    """
    neg = np.flatnonzero(xstar < 0)
    if neg.size == 0:
        x[:] = xstar
        return True

    vals = x[neg] / (x[neg] - xstar[neg])
    order = np.argsort(vals, kind="stable")
    t = float(vals[order[0]])

    n_new = max(1, int(math.ceil(neg.size * fraction)))
    newly = neg[order[:n_new]]
    active[newly] = True
    x[newly] = 0.0

    free = ~active
    x[free] = (1.0 - t) * x[free] + t * xstar[free]
    zero_negative_entries(x)
    return False


def active_set(op: CircularOperator, x: np.ndarray, d: np.ndarray, config, cancel=None) -> SolverStats:
    """
    Active-set method with CGNR inner solves.

    Entries of x that are zero start out active.  Each inner pass solves the
    least-squares problem on the free entries with CGNR; if the solution is
    infeasible, x moves towards it and a fraction of the offending entries
    becomes active.  Once a pass is feasible and CGNR converged, the KKT
    conditions are checked and the active entry with the most negative
    gradient (or every one with a negative gradient, with
    ``active_set_release_all``) is released.
    """
    monitor = _start(Algorithm.ACTIVE_SET, op, config, cancel)
    bound = config.projected_gradient_bound

    zero_negative_entries(x)
    active = x <= 0.0
    x[active] = 0.0

    pg = projected_gradient_squared(x, op.gradient(x, d))
    while pg >= bound:
        while True:
            xstar = x.copy()
            used = cgnr(op, xstar, d, active, config.cgnr_iterations, config.cgnr_tolerance, monitor)
            monitor.stats.cgnr_iterations += used

            feasible = feasible_move(x, xstar, active, config.active_set_fraction)
            monitor.iteration(op.objective(x, d))

            if feasible and used < config.cgnr_iterations:
                break
            if monitor.exhausted():
                pg = projected_gradient_squared(x, op.gradient(x, d))
                return _finish(monitor, pg, bound)

        g = op.gradient(x, d)
        pg = projected_gradient_squared(x, g)
        log_solver_iteration("active-set", monitor.stats.iterations, monitor.stats.final_objective, pg)
        if pg < bound:
            break

        candidates = active & (g < 0.0)
        if not candidates.any():
            logger.debug("active set: no constraint to release, stopping")
            break
        if config.active_set_release_all:
            active[candidates] = False
        else:
            idx = np.flatnonzero(candidates)
            active[idx[np.argmin(g[idx])]] = False

        if monitor.exhausted():
            break

    return _finish(monitor, pg, bound)


# ======================================================================== #
# Gradient projection                                                       #
# ======================================================================== #


def _cauchy_point(op, x, p, r, d, ku, kl, ke) -> Tuple[bool, float]:
    """
    Generalized Cauchy Point along the projected path ``[x + t p]_+``.

    The search starts halfway to the last breakpoint (or at the exact line
    minimiser when no entry is blocked), then halves or doubles t until

        f(t) <= f(0) - ku * p.(x(t) - x)                      (sufficient decrease)

    holds and neither  f(t) < f(0) - kl * p.(x(t) - x)  nor a large free
    direction ``||p_free|| > ke * |p.(x(t) - x)|`` ask for a longer step.

    Returns
    -------
    (moved, objective)
        Whether x was updated, and the objective at the returned x.
    """
    f0 = 0.5 * float(r @ r)

    blocking = (p < 0.0) & (x > 0.0)
    tlimit = float(np.max(-x[blocking] / p[blocking])) if blocking.any() else 0.0

    if tlimit > 0.0:
        tk = 0.5 * tlimit
    else:
        phat = np.maximum(p, 0.0)
        ap = op.forward(phat)
        denom = float(ap @ ap)
        if denom <= 0.0:
            return False, f0
        tk = -float(r @ ap) / denom
        if tk <= 0.0:
            return False, f0

    tmin, tmax = 0.0, math.inf
    best = None
    for _ in range(_GCP_MAX_STEPS):
        xt = np.maximum(x + tk * p, 0.0)
        fk = op.objective(xt, d)
        ptz = float(p @ (xt - x))

        if fk > f0 - ku * ptz:
            tmax = tk
            tk = 0.5 * (tmin + tmax)
            continue

        best = (xt, fk)
        free = (p > 0.0) | (x + tk * p > 0.0)
        wnorm = math.sqrt(float(p[free] @ p[free]))
        if fk < f0 - kl * ptz and wnorm > ke * abs(ptz):
            tmin = tk
            tk = 2.0 * tk if tmax == math.inf else 0.5 * (tmin + tmax)
        else:
            break

    if best is None:
        return False, f0
    x[:] = best[0]
    return True, best[1]


def gradient_projection(op: CircularOperator, x: np.ndarray, d: np.ndarray, config, cancel=None) -> SolverStats:
    """
    Projected steepest descent with a Generalized Cauchy Point step.

    Each iteration searches along ``[x - t grad f(x)]_+`` and accepts the
    Cauchy point, so the objective never increases.
    """
    monitor = _start(Algorithm.GRADIENT_PROJECTION, op, config, cancel)
    bound = config.projected_gradient_bound
    ku, kl, ke = config.gcp_ku, config.gcp_kl, config.gcp_ke

    zero_negative_entries(x)
    r = op.residual(x, d)
    g = op.adjoint(r)
    pg = projected_gradient_squared(x, g)

    while pg >= bound and not monitor.exhausted():
        moved, f = _cauchy_point(op, x, -g, r, d, ku, kl, ke)
        if not moved:
            logger.debug("gradient projection: Cauchy point search made no progress")
            break
        monitor.iteration(f)

        r = op.residual(x, d)
        g = op.adjoint(r)
        pg = projected_gradient_squared(x, g)
        log_solver_iteration("gradient-projection", monitor.stats.iterations, f, pg)

    return _finish(monitor, pg, bound)


# ======================================================================== #
# Accelerated projected gradient                                           #
# ======================================================================== #


def apgd(op: CircularOperator, x: np.ndarray, d: np.ndarray, config, cancel=None) -> SolverStats:
    """
    Nesterov-accelerated projected gradient descent.

    Steps have the fixed length ``1 / L`` with L the polynomial estimate of
    ``||A^T A||``.  Whenever the objective rises, the step is redone as a
    plain projected gradient step from the previous iterate and the momentum
    sequence restarts, so the recorded objective never increases.
    """
    monitor = _start(Algorithm.APGD, op, config, cancel)
    bound = config.projected_gradient_bound
    step = 1.0 / op.estimate_norm()
    theta0 = config.apgd_theta

    zero_negative_entries(x)
    theta = theta0
    y = x.copy()
    error_old = op.objective(x, d)
    pg = projected_gradient_squared(x, op.gradient(x, d))

    while pg >= bound and not monitor.exhausted():
        x_old = x.copy()
        theta_old = theta
        a2 = theta * theta
        theta = 0.5 * (-a2 + theta * math.sqrt(a2 + 4.0))
        beta = theta_old * (1.0 - theta_old) / (a2 + theta)

        x[:] = np.maximum(y - step * op.gradient(y, d), 0.0)
        y = x + beta * (x - x_old)

        error = op.objective(x, d)
        if error > error_old:
            x[:] = np.maximum(x_old - step * op.gradient(x_old, d), 0.0)
            y = x.copy()
            theta = theta0
            monitor.stats.restarts += 1
            error = op.objective(x, d)
        error_old = error
        monitor.iteration(error)

        pg = projected_gradient_squared(x, op.gradient(x, d))
        log_solver_iteration("apgd", monitor.stats.iterations, error, pg)

    return _finish(monitor, pg, bound)


# ======================================================================== #
# Interior-point gradient                                                   #
# ======================================================================== #


def ipg(op: CircularOperator, x: np.ndarray, d: np.ndarray, config, cancel=None) -> SolverStats:
    """
    Interior-point gradient method.

    The iterate is kept strictly positive: it starts from x shifted by
    ``sum(d) / n^3`` and every step is capped at ``ipg_tau`` times the
    distance to the nearest boundary along the scaled direction
    ``-x / (A^T A x) * grad f(x)``.  Convergence is tested on a copy with
    entries below ``ipg_threshold`` snapped to zero; that copy becomes the
    result once it passes.
    """
    monitor = _start(Algorithm.IPG, op, config, cancel)
    bound = config.projected_gradient_bound
    n = op.n_taxa

    zero_negative_entries(x)
    dsum = float(np.sum(d))
    if dsum <= 0.0:
        # all distances zero: the origin is optimal
        x[:] = 0.0
        return _finish(monitor, 0.0, bound)
    x += dsum / (n * n * n)

    pg = math.inf
    while not monitor.exhausted():
        r = op.residual(x, d)
        g = op.adjoint(r)
        z = op.adjoint(op.forward(x))
        p = np.zeros_like(x)
        np.divide(-x * g, z, out=p, where=z > 0.0)

        shrinking = p < 0.0
        alpha_hat = float(np.min(-x[shrinking] / p[shrinking])) if shrinking.any() else math.inf

        ap = op.forward(p)
        apap = float(ap @ ap)
        if apap <= 0.0:
            break
        alpha_star = -float(p @ g) / apap
        alpha = min(config.ipg_tau * alpha_hat, alpha_star)
        x += alpha * p

        mapped = threshold_entries(x, config.ipg_threshold)
        pg = projected_gradient_squared(mapped, op.gradient(mapped, d))
        monitor.iteration(op.objective(x, d))
        log_solver_iteration("ipg", monitor.stats.iterations, monitor.stats.final_objective, pg)
        if pg < bound:
            x[:] = mapped
            break

    zero_negative_entries(x)
    if math.isinf(pg):
        pg = projected_gradient_squared(x, op.gradient(x, d))
    return _finish(monitor, pg, bound)


# ======================================================================== #
# Registry                                                                 #
# ======================================================================== #


SOLVERS: Dict[Algorithm, Callable[..., SolverStats]] = {
    Algorithm.GRADIENT_PROJECTION: gradient_projection,
    Algorithm.ACTIVE_SET: active_set,
    Algorithm.APGD: apgd,
    Algorithm.IPG: ipg,
}


def get_solver(algorithm) -> Callable[..., SolverStats]:
    """Solver function for an ``Algorithm`` or its string name."""
    return SOLVERS[Algorithm.parse(algorithm)]
