"""
_cancel.py
==========
Cooperative cancellation.

A computation never stops on its own account except for its iteration and
time caps.  Callers that need to abort a long fit hand the engine a
``CancellationToken`` (or any zero-argument callable returning True once the
work should stop); the solvers poll it between iterations and raise
``Cancelled``.
"""

import threading
from typing import Callable, Optional


class Cancelled(Exception):
    """
    Raised when a computation is aborted through its cancellation check.

    Attributes
    ----------
    partial_weights : np.ndarray or None
        Split weights (flat, cycle order) at the last completed iteration.
        Filled in by the engine before the exception leaves ``compute``.
    stats : SolverStats or None
        Statistics of the interrupted solver run, when one was running.
    """

    def __init__(self, message: str = "computation cancelled", partial_weights=None, stats=None):
        super().__init__(message)
        self.partial_weights = partial_weights
        self.stats = stats


class CancellationToken:
    """
    Thread-safe cancellation flag.

    Examples
    --------
    >>> token = CancellationToken()
    >>> worker = threading.Thread(target=compute, args=(cycle, d),
    ...                           kwargs={'cancel': token})
    >>> worker.start()
    >>> token.cancel()
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()

    def __repr__(self):
        return f"CancellationToken(cancelled={self.cancelled})"


def as_cancel_check(cancel) -> Optional[Callable[[], bool]]:
    """
    Normalise a cancellation argument to a zero-argument callable.

    Parameters
    ----------
    cancel : CancellationToken, callable or None

    Returns
    -------
    callable or None

    Raises
    ------
    TypeError
        If *cancel* is neither None, a token, nor callable.
    """
    if cancel is None:
        return None
    if isinstance(cancel, CancellationToken):
        return cancel.__call__
    if callable(cancel):
        return cancel
    raise TypeError(
        f"cancel must be a CancellationToken or a callable, got {type(cancel).__name__}"
    )
