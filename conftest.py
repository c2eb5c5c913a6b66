"""
conftest.py
===========
Session-level pytest configuration for the splitfit test suite.

Custom marks
------------
slow
    Applied to tests that run a solver to convergence on larger or noisy
    problems.  Deselect with ``-m 'not slow'``.

    Registration here suppresses PytestUnknownMarkWarning and makes the mark
    visible in ``pytest --markers``.

Warning filters
---------------
NumbaPerformanceWarning messages are filtered out during tests.  The small
problems used here leave most threads idle, which numba reports, and that is
not informative for correctness testing.
"""

import warnings


def pytest_configure(config):
    """
    Configure pytest before test collection begins.

    This runs before any test module is imported, so the filter is in place
    when the kernels are compiled.
    """
    config.addinivalue_line(
        "markers",
        "slow: solver runs to convergence on larger problems "
        "(deselect with -m 'not slow')",
    )

    try:
        from numba.core.errors import NumbaPerformanceWarning
    except ImportError:
        return  # Numba not available, no warnings to suppress
    warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)


def pytest_unconfigure(config):
    """Restore default warning behavior."""
    warnings.resetwarnings()
