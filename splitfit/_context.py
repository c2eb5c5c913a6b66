"""
_context.py
===========
Context managers and the explicit compute context for splitfit.

Provides clean, Pythonic context managers for temporarily changing state:
- Logging control (suppress/change levels)
- Warning control (suppress specific warnings)
- Backend selection (force specific backend)
- Thread count for the numba kernels (``ComputeContext``)

All context managers properly restore state on exit, even if exceptions occur.
"""

import logging
import threading
import warnings
from contextlib import contextmanager
from typing import Optional, Type


# Module-level state for backend override
_backend_override = None


# ============================================================================ #
# Logging Context Managers
# ============================================================================ #


@contextmanager
def suppress_logger(logger_name: str, level: int = logging.CRITICAL):
    """
    Temporarily change a logger's level.

    Parameters
    ----------
    logger_name : str
        Name of the logger to suppress (e.g., 'splitfit._solvers')
    level : int, default logging.CRITICAL
        Temporary logging level.

    Examples
    --------
    >>> # Hide per-solver chatter but keep engine summaries
    >>> with suppress_logger('splitfit._solvers'):
    ...     splits = compute(cycle, d)

    Notes
    -----
    - Exception-safe: Logger level restored even if exception raised
    - Nesting-safe: Can nest multiple suppress_logger contexts
    """
    logger = logging.getLogger(logger_name)
    original_level = logger.level

    try:
        logger.setLevel(level)
        yield
    finally:
        logger.setLevel(original_level)


@contextmanager
def quiet(level: int = logging.CRITICAL):
    """
    Temporarily suppress all splitfit logging.

    Every module logs through a child of the ``splitfit`` logger, so raising
    the level of that one logger silences the whole tree.

    Examples
    --------
    >>> with quiet():
    ...     splits = compute(cycle, d)

    >>> # Show only warnings such as non-convergence
    >>> with quiet(logging.WARNING):
    ...     splits = compute(cycle, d)
    """
    with suppress_logger("splitfit", level):
        yield


# ============================================================================ #
# Warning Context Managers
# ============================================================================ #


@contextmanager
def suppress_warnings(category: Optional[Type[Warning]] = None):
    """
    Temporarily suppress warnings.

    Parameters
    ----------
    category : Type[Warning] or None, default None
        Warning category to suppress. If None, suppresses all warnings.

    Examples
    --------
    >>> from numba.core.errors import NumbaPerformanceWarning
    >>> with suppress_warnings(NumbaPerformanceWarning):
    ...     splits = compute(cycle, d)
    """
    with warnings.catch_warnings():
        if category is None:
            warnings.simplefilter("ignore")
        else:
            warnings.filterwarnings("ignore", category=category)
        yield


# ============================================================================ #
# Backend Context Managers
# ============================================================================ #


@contextmanager
def use_backend(backend: str):
    """
    Temporarily force a specific backend for the circular operator.

    Parameters
    ----------
    backend : str
        Backend to use. Valid options:
        - 'python': numpy reference (always available)
        - 'cpu-parallel': Numba parallel (requires numba)
        - 'best': Use best available (default behavior)

    Raises
    ------
    ValueError
        If requested backend is not available.

    Examples
    --------
    >>> with use_backend('python'):
    ...     splits = compute(cycle, d)

    Notes
    -----
    **Not thread-safe**: uses module-level state.  Pass a ``ComputeContext``
    to the engine instead when several computations run concurrently.
    """
    global _backend_override

    from ._backend import get_available_backends

    available = get_available_backends()

    if backend != "best" and backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )

    original_override = _backend_override

    try:
        _backend_override = backend
        yield
    finally:
        _backend_override = original_override


def get_backend_override() -> Optional[str]:
    """
    Get the current backend override, if any.

    Returns
    -------
    str or None
        Current backend override, or None if no override active.
    """
    return _backend_override


# ============================================================================ #
# Combined Context Managers
# ============================================================================ #


@contextmanager
def silent_benchmark(backend: str = "best"):
    """
    Suppress logging and warnings while forcing a specific backend.

    Examples
    --------
    >>> for backend in ['python', 'cpu-parallel']:
    ...     with silent_benchmark(backend):
    ...         start = time.time()
    ...         compute(cycle, d)
    ...         print(f"{backend}: {time.time() - start:.3f}s")
    """
    with quiet():
        with use_backend(backend):
            with suppress_warnings():
                yield


# ============================================================================ #
# Explicit Compute Context
# ============================================================================ #


class ComputeContext:
    """
    Execution resources for one or more split-weight computations.

    Holds the backend choice and the number of worker threads the
    ``cpu-parallel`` kernels may use.  Passing a context to the engine
    replaces the module-level ``use_backend`` override, so concurrent callers
    can use different settings.

    Parameters
    ----------
    backend : str, default 'best'
        'python', 'cpu-parallel' or 'best'.  A ``use_backend`` override, if
        active, takes precedence over 'best' but not over an explicit name.
    n_threads : int or None
        Numba thread count while the context is entered.  None leaves the
        numba default untouched.

    Examples
    --------
    >>> with ComputeContext('cpu-parallel', n_threads=4) as ctx:
    ...     splits = compute(cycle, d, context=ctx)

    Notes
    -----
    Numba keeps its thread count per calling thread, so the counts saved on
    entry are kept per thread as well.  One context may be shared by engines
    running in several threads, and may be entered again while active.
    """

    def __init__(self, backend: str = "best", n_threads: Optional[int] = None):
        from ._backend import resolve_backend

        if n_threads is not None:
            if isinstance(n_threads, bool) or not isinstance(n_threads, int):
                raise TypeError(f"n_threads must be an int, got {n_threads!r}")
            if n_threads < 1:
                raise ValueError(f"n_threads must be positive, got {n_threads}")

        if backend == "best" and _backend_override is not None:
            backend = _backend_override
        self.backend = resolve_backend(backend)
        self.n_threads = n_threads
        self._local = threading.local()

    def _saved(self) -> list:
        # stack of thread counts saved by the calling thread
        if not hasattr(self._local, "stack"):
            self._local.stack = []
        return self._local.stack

    def __enter__(self):
        if self.n_threads is not None and self.backend == "cpu-parallel":
            import numba

            self._saved().append(numba.get_num_threads())
            numba.set_num_threads(min(self.n_threads, numba.config.NUMBA_NUM_THREADS))
        return self

    def __exit__(self, exc_type, exc, tb):
        saved = self._saved()
        if saved:
            import numba

            numba.set_num_threads(saved.pop())
        return False

    def __repr__(self):
        return f"ComputeContext(backend={self.backend!r}, n_threads={self.n_threads!r})"
