"""
_stats.py
=========
Per-run solver statistics and the monitor every solver loop reports to.

``SolverMonitor`` owns the bookkeeping that each iterative method would
otherwise repeat: the iteration counter, the objective history, the
iteration and wall-clock caps, and the cancellation poll.  The finished
``SolverStats`` is returned to the caller instead of being kept in
process-wide counters.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from splitfit._cancel import Cancelled, as_cancel_check


@dataclass
class SolverStats:
    """
    Diagnostics of one split-weight computation.

    Attributes
    ----------
    algorithm : str
        Name of the method that produced the weights ('exact' when the
        unconstrained solution was already feasible).
    iterations : int
        Outer iterations performed.
    wall_time : float
        Seconds spent in the solver.
    converged : bool
        Whether the projected-gradient bound was met.
    projected_gradient : float
        Final squared norm of the projected gradient.
    objective_history : list[float]
        ``0.5 ||A x - d||^2`` after each outer iteration.
    restarts : int
        Momentum restarts (APGD only).
    cgnr_iterations : int
        Inner CGNR iterations (active set only).
    exact : bool
        True when no constrained solve was needed.
    seeded : bool
        True when the solver started from an incremental fit.
    """

    algorithm: str = ""
    iterations: int = 0
    wall_time: float = 0.0
    converged: bool = False
    projected_gradient: float = 0.0
    objective_history: List[float] = field(default_factory=list)
    restarts: int = 0
    cgnr_iterations: int = 0
    exact: bool = False
    seeded: bool = False

    @property
    def final_objective(self) -> Optional[float]:
        return self.objective_history[-1] if self.objective_history else None

    def merge(self, other: "SolverStats") -> None:
        """Fold a follow-up run (e.g. active-set cleanup) into these stats."""
        self.algorithm = f"{self.algorithm}+{other.algorithm}"
        self.iterations += other.iterations
        self.wall_time += other.wall_time
        self.converged = other.converged
        self.projected_gradient = other.projected_gradient
        self.objective_history.extend(other.objective_history)
        self.restarts += other.restarts
        self.cgnr_iterations += other.cgnr_iterations


class SolverMonitor:
    """
    Iteration, time and cancellation bookkeeping for one solver run.

    Parameters
    ----------
    algorithm : str
        Name recorded in the stats.
    max_iterations : int
        Outer iteration cap.
    max_time : float or None
        Wall-clock cap in seconds.
    cancel : CancellationToken, callable or None
        Polled by :meth:`check_cancel`.
    """

    def __init__(self, algorithm: str, max_iterations: int, max_time: Optional[float] = None, cancel=None):
        self.stats = SolverStats(algorithm=algorithm)
        self.max_iterations = int(max_iterations)
        self.max_time = max_time
        self._cancel = as_cancel_check(cancel)
        self._start = time.perf_counter()

    def elapsed(self) -> float:
        return time.perf_counter() - self._start

    def check_cancel(self) -> None:
        """Raise ``Cancelled`` (carrying the stats so far) if cancellation was requested."""
        if self._cancel is not None and self._cancel():
            self.stats.wall_time = self.elapsed()
            raise Cancelled(f"{self.stats.algorithm} cancelled", stats=self.stats)

    def exhausted(self) -> bool:
        """True once the iteration or time cap has been reached."""
        if self.stats.iterations >= self.max_iterations:
            return True
        return self.max_time is not None and self.elapsed() > self.max_time

    def iteration(self, objective: Optional[float] = None) -> None:
        """Record a completed outer iteration and poll for cancellation."""
        self.stats.iterations += 1
        if objective is not None:
            self.stats.objective_history.append(objective)
        self.check_cancel()

    def finish(self, projected_gradient: float, converged: bool) -> SolverStats:
        self.stats.wall_time = self.elapsed()
        self.stats.projected_gradient = float(projected_gradient)
        self.stats.converged = bool(converged)
        return self.stats
