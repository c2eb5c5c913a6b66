"""
splitfit
========

Least-squares split weights for circular orderings, the weighting stage of
the Neighbor-Net phylogenetic network method.

Given a circular ordering of n taxa and their pairwise distances,
*splitfit* finds non-negative weights for every circular split (an arc of
the ordering against its complement) so that the metric induced by the
weighted splits is as close as possible to the distances in the
least-squares sense.  The split operator is applied matrix-free with O(n^2)
recurrences, optionally in parallel through numba.

Main API
--------
compute : Fit split weights, return the filtered split list
SplitWeightsEngine : Same, returning weights, solver statistics and fit
SolverConfig : Algorithm choice and tuning options
Algorithm : 'gradient-projection', 'active-set', 'apgd', 'ipg'
Split : Weighted bipartition of the taxa

Building Blocks
---------------
CircularOperator : Matrix-free forward, adjoint and inverse of the split map
incremental_fitting : Fast non-negative starting point
max_divergence_order : Insertion order used by incremental_fitting

Cancellation and Diagnostics
----------------------------
CancellationToken : Cooperative cancellation flag
Cancelled : Raised when a computation is aborted; carries partial weights
SolverStats : Iterations, wall time, convergence and residual history

Context Managers
----------------
quiet : Suppress splitfit logging
suppress_logger : Suppress a specific logger
suppress_warnings : Suppress specific warnings
use_backend : Force a specific operator backend
silent_benchmark : Combine quiet + backend selection + warning suppression
ComputeContext : Explicit backend and thread settings for the engine

Split Utilities
---------------
splits_to_distances : Metric induced by a weighted split system
least_squares_fit : Percentage of squared distances explained by splits
is_circular : Whether a split is an arc of a circular ordering

Backend Information
-------------------
get_available_backends : Query available computational backends
get_backend_info : Get comprehensive backend status
check_numba_available : Check if numba is available

Examples
--------
Basic usage:

>>> import numpy as np
>>> from splitfit import compute
>>> d = np.array([[0, 3, 4, 3],
...               [3, 0, 3, 4],
...               [4, 3, 0, 3],
...               [3, 4, 3, 0]], dtype=float)
>>> for split in compute([1, 2, 3, 4], d):
...     print(sorted(split.side), split.weight)

Choosing a solver:

>>> from splitfit import SplitWeightsEngine, SolverConfig
>>> engine = SplitWeightsEngine(SolverConfig(algorithm='apgd', max_time=10.0))
>>> result = engine.run(cycle, d)
>>> result.stats.converged, result.fit

With context managers:

>>> from splitfit import quiet, use_backend
>>> with quiet(), use_backend('python'):
...     splits = compute(cycle, d)
"""

__version__ = "0.1.0"
__author__ = "Your Name"
__license__ = "MIT"

# Main API
from ._engine import compute, SplitWeightsEngine, SplitWeightsResult
from ._config import Algorithm, SolverConfig
from ._splits import Split, splits_to_distances, least_squares_fit, is_circular

# Building blocks
from ._operator import CircularOperator
from ._incremental import incremental_fitting, max_divergence_order
from ._solvers import SOLVERS, get_solver

# Cancellation and diagnostics
from ._cancel import Cancelled, CancellationToken
from ._stats import SolverStats

# Context managers (user-facing utilities)
from ._context import (
    suppress_logger,
    quiet,
    suppress_warnings,
    use_backend,
    silent_benchmark,
    ComputeContext,
)

# Backend information (useful for checking capabilities)
from ._backend import (
    get_available_backends,
    get_backend_info,
    check_numba_available,
)

# Public API
__all__ = [
    # Main API
    "compute",
    "SplitWeightsEngine",
    "SplitWeightsResult",
    "Algorithm",
    "SolverConfig",
    "Split",
    # Building blocks
    "CircularOperator",
    "incremental_fitting",
    "max_divergence_order",
    "SOLVERS",
    "get_solver",
    # Cancellation and diagnostics
    "Cancelled",
    "CancellationToken",
    "SolverStats",
    # Context managers
    "suppress_logger",
    "quiet",
    "suppress_warnings",
    "use_backend",
    "silent_benchmark",
    "ComputeContext",
    # Split utilities
    "splits_to_distances",
    "least_squares_fit",
    "is_circular",
    # Backend information
    "get_available_backends",
    "get_backend_info",
    "check_numba_available",
    # Version info
    "__version__",
]
