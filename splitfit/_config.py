"""
_config.py
==========
Solver selection and tuning options.

``SolverConfig`` holds every option the engine recognises.  Options whose
sensible value depends on the problem (iteration caps, the projected-gradient
bound, CGNR limits, the IPG threshold) default to None and are filled in by
:meth:`SolverConfig.resolved` once the number of taxa and ``||A^T d||`` are
known.
"""

import copy
from datetime import timedelta
from enum import Enum
from typing import Optional, Union


class Algorithm(str, Enum):
    """The constrained least-squares methods available to the engine."""

    GRADIENT_PROJECTION = "gradient-projection"
    ACTIVE_SET = "active-set"
    APGD = "apgd"
    IPG = "ipg"

    @classmethod
    def parse(cls, value) -> "Algorithm":
        """
        Accept an ``Algorithm`` or its string name.

        Matching ignores case and treats '_' like '-', so 'ACTIVE_SET' and
        'active-set' are the same algorithm.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == key:
                    return member
            raise ValueError(
                f"Unknown algorithm '{value}'. "
                f"Valid options: {', '.join(m.value for m in cls)}"
            )
        raise TypeError(f"algorithm must be an Algorithm or str, got {type(value).__name__}")


def _positive(name, value, allow_none=True):
    if value is None:
        if allow_none:
            return None
        raise ValueError(f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number, got {value!r}")
    if not value > 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _fraction(name, value, low=0.0, high=1.0):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number, got {value!r}")
    if not low < value < high:
        raise ValueError(f"{name} must lie in ({low}, {high}), got {value}")
    return float(value)


class SolverConfig:
    """
    Options for one split-weight computation.

    Parameters
    ----------
    algorithm : Algorithm or str, default Algorithm.GRADIENT_PROJECTION
        'gradient-projection', 'active-set', 'apgd' or 'ipg'.
    cutoff : float, default 1e-4
        Non-trivial splits with weight at or below the cutoff are dropped.
    max_iterations : int or None
        Outer iteration cap.  None means ``100 * n * n``.
    max_time : float, timedelta or None
        Wall-clock cap for the solver.  None means no cap.
    projected_gradient_bound : float or None
        Stop once the squared projected gradient falls below this.  None
        means ``(1e-4 * ||A^T d||)^2``.
    active_set_fraction : float, default 0.4
        Fraction of the infeasible entries moved into the active set at once.
    active_set_release_all : bool, default False
        Release every active entry with a negative gradient at a KKT check,
        rather than only the most negative one.
    use_incremental_seed : bool, default False
        Start infeasible problems from the incremental fit instead of the
        zero-clamped unconstrained solution.
    refine_incremental : bool, default False
        One projected steepest-descent step after each insertion of the
        incremental fit.
    active_cleanup : bool, default False
        Run the active-set method after the selected solver.
    gcp_ku, gcp_kl, gcp_ke : float
        Generalized Cauchy Point constants, ``0 < ku < kl < 1`` and
        ``0 < ke < 0.5``.
    cgnr_iterations : int or None
        CGNR inner iteration cap.  None means ``max(50, n(n-1)/2)``.
    cgnr_tolerance : float or None
        CGNR stop criterion on the squared restricted gradient.  None means
        half the projected-gradient bound.
    apgd_theta : float, default 1.0
        Initial momentum parameter of APGD.
    ipg_tau : float, default 0.9
        Fraction of the distance to the boundary IPG may step.
    ipg_threshold : float or None
        Entries below this are snapped to zero for the IPG convergence
        check.  None means ``cutoff / 100``.
    incremental_tolerance : float, default 1e-10
        Absolute tolerance of the bounded line search in the incremental fit.
    feasibility_tolerance : float, default 1e-10
        The unconstrained solution counts as feasible when its smallest
        entry is at least ``-feasibility_tolerance * max(1, max d)``.
    backend : str, default 'best'
        Operator backend.
    """

    def __init__(
        self,
        algorithm: Union[Algorithm, str] = Algorithm.GRADIENT_PROJECTION,
        cutoff: float = 1e-4,
        max_iterations: Optional[int] = None,
        max_time: Union[float, timedelta, None] = None,
        projected_gradient_bound: Optional[float] = None,
        active_set_fraction: float = 0.4,
        active_set_release_all: bool = False,
        use_incremental_seed: bool = False,
        refine_incremental: bool = False,
        active_cleanup: bool = False,
        gcp_ku: float = 0.2,
        gcp_kl: float = 0.8,
        gcp_ke: float = 0.1,
        cgnr_iterations: Optional[int] = None,
        cgnr_tolerance: Optional[float] = None,
        apgd_theta: float = 1.0,
        ipg_tau: float = 0.9,
        ipg_threshold: Optional[float] = None,
        incremental_tolerance: float = 1e-10,
        feasibility_tolerance: float = 1e-10,
        backend: str = "best",
    ):
        self.algorithm = Algorithm.parse(algorithm)

        if isinstance(cutoff, bool) or not isinstance(cutoff, (int, float)):
            raise TypeError(f"cutoff must be a number, got {cutoff!r}")
        if cutoff < 0:
            raise ValueError(f"cutoff must be non-negative, got {cutoff}")
        self.cutoff = float(cutoff)

        if max_iterations is not None:
            if isinstance(max_iterations, bool) or not isinstance(max_iterations, int):
                raise TypeError(f"max_iterations must be an int, got {max_iterations!r}")
            if max_iterations < 1:
                raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.max_iterations = max_iterations

        if isinstance(max_time, timedelta):
            max_time = max_time.total_seconds()
        self.max_time = _positive("max_time", max_time)

        self.projected_gradient_bound = _positive(
            "projected_gradient_bound", projected_gradient_bound
        )
        self.active_set_fraction = _positive("active_set_fraction", active_set_fraction, allow_none=False)
        if self.active_set_fraction > 1:
            raise ValueError(f"active_set_fraction must be at most 1, got {active_set_fraction}")
        self.active_set_release_all = bool(active_set_release_all)
        self.use_incremental_seed = bool(use_incremental_seed)
        self.refine_incremental = bool(refine_incremental)
        self.active_cleanup = bool(active_cleanup)

        self.gcp_ku = _fraction("gcp_ku", gcp_ku)
        self.gcp_kl = _fraction("gcp_kl", gcp_kl)
        if not self.gcp_ku < self.gcp_kl:
            raise ValueError(f"gcp_ku ({gcp_ku}) must be smaller than gcp_kl ({gcp_kl})")
        self.gcp_ke = _fraction("gcp_ke", gcp_ke, high=0.5)

        if cgnr_iterations is not None:
            if isinstance(cgnr_iterations, bool) or not isinstance(cgnr_iterations, int):
                raise TypeError(f"cgnr_iterations must be an int, got {cgnr_iterations!r}")
            if cgnr_iterations < 1:
                raise ValueError(f"cgnr_iterations must be positive, got {cgnr_iterations}")
        self.cgnr_iterations = cgnr_iterations
        self.cgnr_tolerance = _positive("cgnr_tolerance", cgnr_tolerance)

        self.apgd_theta = _positive("apgd_theta", apgd_theta, allow_none=False)
        self.ipg_tau = _fraction("ipg_tau", ipg_tau)
        self.ipg_threshold = _positive("ipg_threshold", ipg_threshold)
        self.incremental_tolerance = _positive(
            "incremental_tolerance", incremental_tolerance, allow_none=False
        )
        self.feasibility_tolerance = _positive(
            "feasibility_tolerance", feasibility_tolerance, allow_none=False
        )

        if not isinstance(backend, str):
            raise TypeError(f"backend must be a str, got {type(backend).__name__}")
        self.backend = backend

    def copy(self, **changes) -> "SolverConfig":
        """Shallow copy, optionally with some options replaced."""
        out = copy.copy(self)
        if changes:
            options = dict(vars(self))
            options.update(changes)
            out = SolverConfig(**options)
        return out

    def resolved(self, n_taxa: int, atd_norm: float) -> "SolverConfig":
        """
        Copy with every automatic option filled in for a concrete problem.

        Parameters
        ----------
        n_taxa : int
            Number of taxa.
        atd_norm : float
            ``||A^T d||`` for the reindexed distances.
        """
        out = copy.copy(self)
        if out.max_iterations is None:
            out.max_iterations = 100 * n_taxa * n_taxa
        if out.projected_gradient_bound is None:
            bound = (1e-4 * atd_norm) ** 2
            # all-zero distances give a zero bound; keep the test satisfiable
            out.projected_gradient_bound = bound if bound > 0 else 1e-30
        if out.cgnr_iterations is None:
            out.cgnr_iterations = max(50, n_taxa * (n_taxa - 1) // 2)
        if out.cgnr_tolerance is None:
            out.cgnr_tolerance = out.projected_gradient_bound / 2
        if out.ipg_threshold is None:
            out.ipg_threshold = out.cutoff / 100 if out.cutoff > 0 else 1e-12
        return out

    def __repr__(self):
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"SolverConfig({fields})"

    def __eq__(self, other):
        if not isinstance(other, SolverConfig):
            return NotImplemented
        return vars(self) == vars(other)
