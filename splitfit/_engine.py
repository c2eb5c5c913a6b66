"""
_engine.py
==========
Split-weight estimation for a circular ordering.

Public API
----------
  compute(cycle, distances, config=None, cancel=None, context=None) -> list[Split]
      Least-squares non-negative weights for every circular split of
      *cycle*, filtered by the weight cutoff.

  SplitWeightsEngine(config=None, context=None).run(cycle, distances, cancel=None)
      Same computation, returning a :class:`SplitWeightsResult` with the
      flat weight vector, solver statistics and the least-squares fit.

Pipeline
--------
1. ``n <= 2`` is answered directly.
2. Distances are reindexed into cycle order; ``||A^T d||`` sets the
   projected-gradient bound.
3. The unconstrained solution ``A^{-1} d`` is computed.  If it is
   non-negative up to round-off, the distances are circular and it is the
   answer.
4. Otherwise negative entries are zeroed (or the incremental fit is used as
   the starting point) and the configured solver runs, optionally followed
   by an active-set cleanup.
5. One split is emitted per pair ``i < j`` of cycle positions whose weight
   exceeds the cutoff; trivial splits are always emitted.
"""

import logging
import time
from typing import List, Optional

import numpy as np

from splitfit._indexing import triu_indices, reindex_distances
from splitfit._config import Algorithm, SolverConfig
from splitfit._context import ComputeContext
from splitfit._operator import CircularOperator, projected_gradient_squared
from splitfit._incremental import incremental_fitting
from splitfit._solvers import get_solver, active_set
from splitfit._stats import SolverStats
from splitfit._cancel import Cancelled
from splitfit._splits import Split, least_squares_fit
from splitfit._utils import validate_cycle, validate_distances, zero_negative_entries
from splitfit._logging import (
    log_problem,
    log_exact_solution,
    log_infeasible_start,
    log_split_summary,
    log_cancelled,
)


logger = logging.getLogger(__name__)


class SplitWeightsResult:
    """
    Outcome of one split-weight computation.

    Attributes
    ----------
    splits : list[Split]
        Emitted splits, ordered by cycle position pair ``(i, j)``.
    weights : np.ndarray
        All ``n(n-1)/2`` fitted weights in cycle order (flat layout),
        before the cutoff.
    stats : SolverStats
    fit : float
        Least-squares fit of *splits* to the input distances, in percent.
    cycle : list[int]
    """

    def __init__(self, splits, weights, stats, fit, cycle):
        self.splits = splits
        self.weights = weights
        self.stats = stats
        self.fit = fit
        self.cycle = cycle

    def __repr__(self):
        return (
            f"SplitWeightsResult({len(self.splits)} splits, fit={self.fit:.2f}%, "
            f"algorithm={self.stats.algorithm!r})"
        )


class SplitWeightsEngine:
    """
    Fits circular split weights to distance matrices.

    Parameters
    ----------
    config : SolverConfig, optional
        Defaults to ``SolverConfig()``.
    context : ComputeContext, optional
        Backend and thread settings.  Defaults to a context built from
        ``config.backend``.

    Examples
    --------
    >>> engine = SplitWeightsEngine(SolverConfig(algorithm='active-set'))
    >>> result = engine.run([1, 2, 3, 4], d)
    >>> result.stats.converged
    True
    """

    def __init__(self, config: Optional[SolverConfig] = None, context: Optional[ComputeContext] = None):
        if config is None:
            config = SolverConfig()
        elif not isinstance(config, SolverConfig):
            raise TypeError(f"config must be a SolverConfig, got {type(config).__name__}")
        if context is not None and not isinstance(context, ComputeContext):
            raise TypeError(f"context must be a ComputeContext, got {type(context).__name__}")
        self.config = config
        self.context = context

    def run(self, cycle, distances, cancel=None) -> SplitWeightsResult:
        """
        Compute split weights for one ordering and distance matrix.

        Parameters
        ----------
        cycle : sequence of int
            Circular ordering, a permutation of ``1..n``.
        distances : array_like, shape (n, n)
            Symmetric non-negative distances indexed by ``taxon - 1``.
        cancel : CancellationToken or callable, optional
            Polled by the solvers.

        Returns
        -------
        SplitWeightsResult

        Raises
        ------
        Cancelled
            With ``partial_weights`` (flat, cycle order) and ``stats``.
        ValueError, TypeError
            For malformed input.
        """
        cycle = validate_cycle(cycle)
        n = len(cycle)
        dm = validate_distances(distances, n)

        if n <= 2:
            return self._degenerate(cycle, dm)

        context = self.context if self.context is not None else ComputeContext(self.config.backend)
        with context:
            weights, stats = self._solve(cycle, dm, context.backend, cancel)

        splits, n_dropped = self._emit(cycle, weights, self.config.cutoff)
        fit = least_squares_fit(dm, splits)
        log_split_summary(len(splits), sum(s.is_trivial for s in splits), n_dropped, fit)
        return SplitWeightsResult(splits, weights, stats, fit, cycle)

    # ── stages ───────────────────────────────────────────────────────────

    def _degenerate(self, cycle, dm) -> SplitWeightsResult:
        stats = SolverStats(algorithm="exact", converged=True, exact=True)
        if len(cycle) == 1:
            return SplitWeightsResult([], np.zeros(0), stats, 0.0, cycle)

        w = float(dm[cycle[0] - 1, cycle[1] - 1])
        splits = [Split({cycle[0]}, 2, w)] if w > 0 else []
        fit = 100.0 if w > 0 else 0.0
        return SplitWeightsResult(splits, np.array([w]), stats, fit, cycle)

    def _solve(self, cycle, dm, backend, cancel):
        start = time.perf_counter()
        n = len(cycle)
        d = reindex_distances(dm, cycle)
        op = CircularOperator(n, backend=backend)

        atd = op.adjoint(d)
        cfg = self.config.resolved(n, float(np.linalg.norm(atd)))
        log_problem(n, op.backend, cfg.projected_gradient_bound)

        x = op.inverse(d)
        min_weight = float(x.min())
        if min_weight >= -cfg.feasibility_tolerance * max(1.0, float(d.max())):
            zero_negative_entries(x)
            log_exact_solution(min_weight)
            stats = SolverStats(algorithm="exact", converged=True, exact=True)
            stats.projected_gradient = projected_gradient_squared(x, op.gradient(x, d))
            stats.wall_time = time.perf_counter() - start
            return x, stats

        n_negative = int(np.count_nonzero(x < 0))
        log_infeasible_start(n_negative, x.size, cfg.use_incremental_seed)
        stats = None
        stage = "incremental fit"
        try:
            if cfg.use_incremental_seed:
                x = incremental_fitting(
                    d,
                    n,
                    tol=cfg.incremental_tolerance,
                    refine=cfg.refine_incremental,
                    backend=op.backend,
                    cancel=cancel,
                )
            else:
                zero_negative_entries(x)

            stage = cfg.algorithm.value
            stats = get_solver(cfg.algorithm)(op, x, d, cfg, cancel)
            if cfg.active_cleanup and cfg.algorithm is not Algorithm.ACTIVE_SET:
                stage = "active-set cleanup"
                stats.merge(active_set(op, x, d, cfg, cancel))
        except Cancelled as e:
            if e.partial_weights is None:
                e.partial_weights = np.maximum(x, 0.0)
            if e.stats is None:
                e.stats = stats
            log_cancelled(stage, e.partial_weights)
            raise

        stats.seeded = cfg.use_incremental_seed
        stats.wall_time = time.perf_counter() - start
        return x, stats

    @staticmethod
    def _emit(cycle, x, cutoff):
        n = len(cycle)
        rows, cols = triu_indices(n)
        splits: List[Split] = []
        n_dropped = 0
        for pos, (i, j) in enumerate(zip(rows.tolist(), cols.tolist())):
            size = j - i
            w = float(x[pos])
            if w > cutoff or size == 1 or size == n - 1:
                splits.append(Split(cycle[i:j], n, max(0.0, w)))
            else:
                n_dropped += 1
        return splits, n_dropped


def compute(cycle, distances, config: Optional[SolverConfig] = None, cancel=None, context: Optional[ComputeContext] = None) -> List[Split]:
    """
    Circular split weights fitted to a distance matrix.

    Parameters
    ----------
    cycle : sequence of int
        Circular ordering, a permutation of ``1..n``.
    distances : array_like, shape (n, n)
        Symmetric non-negative distances; ``distances[a-1, b-1]`` is the
        distance between taxa a and b.
    config : SolverConfig, optional
    cancel : CancellationToken or callable, optional
    context : ComputeContext, optional

    Returns
    -------
    list[Split]
        Non-trivial splits heavier than ``config.cutoff`` and every trivial
        split, ordered by cycle positions.

    Raises
    ------
    Cancelled
        If *cancel* fired; carries the partial weights.

    Examples
    --------
    >>> compute([1, 2], [[0, 5], [5, 0]])
    [Split([1], n_taxa=2, weight=5)]
    >>> compute([1], [[0]])
    []
    """
    return SplitWeightsEngine(config, context).run(cycle, distances, cancel=cancel).splits
