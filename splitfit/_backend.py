"""
_backend.py
===========
Which implementations of the circular operator can run here.

splitfit ships two:

  python        numpy recurrences, one diagonal level per vector operation
  cpu-parallel  the same recurrences compiled by numba, with ``prange``
                over the entries of each level

The numba kernels are compiled on first import of ``_cpu_kernels``, which
is slow enough that the outcome is remembered for the life of the process.
Nothing here logs; ``CircularOperator`` reports the backend it settled on.
"""

from functools import lru_cache
from typing import Callable, List, Optional, Tuple


def check_numba_available() -> bool:
    """True when numba can be imported."""
    try:
        import numba  # noqa: F401
    except ImportError:
        return False
    return True


@lru_cache(maxsize=None)
def import_cpu_kernels() -> Tuple[
    bool, Optional[Callable], Optional[Callable], Optional[Callable]
]:
    """
    Load the compiled operator kernels.

    Returns
    -------
    tuple
        ``(ok, ax, atx, ainv)``: the forward, adjoint and inverse kernels,
        or ``(False, None, None, None)`` when numba is missing.
    """
    try:
        from ._cpu_kernels import _calc_ainv_nb, _calc_atx_nb, _calc_ax_nb
    except ImportError:
        return (False, None, None, None)
    return (True, _calc_ax_nb, _calc_atx_nb, _calc_ainv_nb)


def get_available_backends() -> List[str]:
    """
    Backends usable in this process, slowest first.

    'python' is always first; 'cpu-parallel' follows when the kernels load.
    """
    ok = import_cpu_kernels()[0]
    return ["python", "cpu-parallel"] if ok else ["python"]


def get_best_backend() -> str:
    return get_available_backends()[-1]


def resolve_backend(backend: str) -> str:
    """
    Turn a backend request into the name of a backend that can run.

    Parameters
    ----------
    backend : str
        'best', 'python' or 'cpu-parallel'.

    Raises
    ------
    ValueError
        If *backend* names nothing usable here.  The message lists the
        backends that are.
    """
    if backend == "best":
        return get_best_backend()
    available = get_available_backends()
    if backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )
    return backend


def get_backend_info() -> dict:
    """
    Summary of what was detected, for bug reports.

    Keys are ``numba_available``, ``backends``, ``best_backend`` and
    ``cpu_kernels_available``.
    """
    backends = get_available_backends()
    return {
        "numba_available": check_numba_available(),
        "backends": backends,
        "best_backend": backends[-1],
        "cpu_kernels_available": "cpu-parallel" in backends,
    }
