"""
_logging.py
===========
Logging functions for splitfit.

All functions in this module have NO side effects except logging. They take
computed data as parameters and format/emit log messages.

This separation ensures:
- Logging can be easily disabled/mocked in tests
- Computation is separate from presentation
- Clear boundaries between fitting and reporting
"""

import logging
from typing import List, Optional

import numpy as np


logger = logging.getLogger(__name__)


# ============================================================================ #
# System and Backend Logging (called at module import time)
# ============================================================================ #


def log_optimization_status(numba_available: bool) -> None:
    """
    Log system capabilities and optimization library availability at INFO level.

    Called once when the operator module is first imported. Reports CPU count,
    memory, numba version (if available), LLVM info, and threading
    configuration.

    Parameters
    ----------
    numba_available : bool
        Whether numba was successfully imported.
    """
    import os
    import platform

    cpu_count = os.cpu_count() or 1
    logger.info(
        f"System: {platform.machine()} ({platform.system()}), "
        f"{cpu_count} CPU cores, Python {platform.python_version()}"
    )

    # Memory info (optional psutil)
    try:
        import psutil

        mem = psutil.virtual_memory()
        logger.info(
            f"Memory: {mem.total / (1024**3):.1f} GB total, "
            f"{mem.available / (1024**3):.1f} GB available"
        )
    except ImportError:
        pass  # psutil not required

    if numba_available:
        import numba

        logger.info(f"Numba {numba.__version__} loaded successfully")

        try:
            import llvmlite

            logger.info(f"LLVM backend: llvmlite {llvmlite.__version__}")
        except (ImportError, AttributeError):
            pass  # LLVM version unavailable

        # threading_layer() raises until the first parallel kernel has run
        try:
            num_threads = numba.get_num_threads()
            logger.info(f"Numba threading: {num_threads} threads available")
            logger.debug(f"Numba threading layer: {numba.threading_layer()}")
        except ValueError:
            logger.debug("Numba threading layer not initialised yet")

    else:
        logger.info("Numba not installed, operator kernels will run as numpy")
        logger.info("Install numba for parallel recurrences: pip install numba")


def install_numba_warning_filter(numba_available: bool) -> None:
    """
    Capture NumbaPerformanceWarning and route it through our logger.

    numba issues performance warnings (e.g., "parallel=True but no prange found")
    via Python's warnings module. This filter intercepts them and logs them at
    WARNING level so they appear in the same stream as other splitfit
    diagnostics.

    Parameters
    ----------
    numba_available : bool
        Whether numba was successfully imported.
    """
    import warnings

    if not numba_available:
        return

    try:
        from numba.core.errors import NumbaPerformanceWarning
    except ImportError:
        return  # NumbaPerformanceWarning not available in this numba version

    original_showwarning = warnings.showwarning

    def custom_showwarning(message, category, filename, lineno, file=None, line=None):
        if issubclass(category, NumbaPerformanceWarning):
            logger.warning(f"Numba performance issue: {message}")
            logger.warning(f"  at {filename}:{lineno}")
            return
        original_showwarning(message, category, filename, lineno, file, line)

    warnings.showwarning = custom_showwarning


def log_backend_availability(
    backends_available: List[str], numba_available: bool
) -> None:
    """
    Log which execution backends are available for the circular operator.

    Parameters
    ----------
    backends_available : List[str]
        List of available backends (e.g., ['python', 'cpu-parallel'])
    numba_available : bool
        Whether numba was successfully imported.
    """
    logger.info(f"Available backends: {', '.join(backends_available)}")

    if "cpu-parallel" in backends_available:
        logger.info("  cpu-parallel: LLVM-compiled parallel code (numba.njit + prange)")
    elif numba_available:
        logger.info("  cpu-parallel: unavailable (kernels failed to import)")

    if "python" in backends_available:
        logger.info("  python: numpy reference implementation, one diagonal at a time")

    best = backends_available[-1]
    logger.info(f"Default backend='best' will use: {best}")


# ============================================================================ #
# Engine and Solver Logging (called during a computation)
# ============================================================================ #


def log_problem(n_taxa: int, backend: str, bound: float) -> None:
    """Log the size of a split-weight problem and its stopping bound."""
    logger.info(
        "Fitting %d circular splits for %d taxa (backend=%s, bound=%.3e)",
        n_taxa * (n_taxa - 1) // 2,
        n_taxa,
        backend,
        bound,
    )


def log_exact_solution(min_weight: float) -> None:
    """Log that the unconstrained solution was already non-negative."""
    logger.info(
        "Unconstrained solution is feasible (min weight %.3e); "
        "distances are circular for this ordering",
        min_weight,
    )


def log_infeasible_start(n_negative: int, n_total: int, seeded: bool) -> None:
    """Log how the solver will be initialised for an infeasible problem."""
    logger.info(
        "Unconstrained solution has %d/%d negative weights; starting from %s",
        n_negative,
        n_total,
        "incremental fit" if seeded else "zero-clamped inverse",
    )


def log_solver_start(algorithm: str, n_taxa: int, max_iterations: int) -> None:
    logger.info(
        "Running %s (n=%d, max_iterations=%d)", algorithm, n_taxa, max_iterations
    )


def log_solver_iteration(algorithm: str, iteration: int, objective: float, pg: float) -> None:
    logger.debug(
        "%s iteration %d: objective=%.6e, |pg|^2=%.3e",
        algorithm,
        iteration,
        objective,
        pg,
    )


def log_solver_finish(stats) -> None:
    """
    Log the outcome of a solver run.

    Parameters
    ----------
    stats : SolverStats
        Statistics of the finished run.
    """
    logger.info(
        "%s finished after %d iterations in %.3fs (|pg|^2=%.3e)",
        stats.algorithm,
        stats.iterations,
        stats.wall_time,
        stats.projected_gradient,
    )
    if stats.restarts:
        logger.info("  %d momentum restarts", stats.restarts)
    if stats.cgnr_iterations:
        logger.info("  %d CGNR iterations", stats.cgnr_iterations)
    if not stats.converged:
        log_non_convergence(stats.algorithm, stats.iterations, stats.projected_gradient)


def log_non_convergence(algorithm: str, iterations: int, pg: float) -> None:
    logger.warning(
        "%s failed to converge after %d iterations (|pg|^2=%.3e); "
        "using best weights found",
        algorithm,
        iterations,
        pg,
    )


def log_incremental_progress(inserted: int, n_taxa: int, residual: float) -> None:
    logger.debug(
        "Incremental fit: inserted %d/%d taxa, residual %.6e",
        inserted,
        n_taxa,
        residual,
    )


def log_split_summary(
    n_splits: int, n_trivial: int, n_dropped: int, fit: Optional[float]
) -> None:
    """
    Log a summary of the emitted split system.

    Parameters
    ----------
    n_splits : int
        Number of splits emitted.
    n_trivial : int
        How many of them are trivial (side of size 1 or n-1).
    n_dropped : int
        Non-trivial splits removed by the weight cutoff.
    fit : float or None
        Least-squares fit percentage, when computed.
    """
    if fit is None:
        logger.info(
            "Emitted %d splits (%d trivial, %d below cutoff)",
            n_splits,
            n_trivial,
            n_dropped,
        )
    else:
        logger.info(
            "Emitted %d splits (%d trivial, %d below cutoff), fit %.2f%%",
            n_splits,
            n_trivial,
            n_dropped,
            fit,
        )


def log_cancelled(stage: str, weights: np.ndarray) -> None:
    logger.warning(
        "Computation cancelled during %s; %d partial weights retained",
        stage,
        int(np.count_nonzero(weights)),
    )
