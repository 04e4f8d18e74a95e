"""
Monte Carlo Runner
==================

Repeats a DGP + OLS pipeline over many independent trials and collects the
per-term estimates in a long-format table

    trial_id | term | estimate | std_error | nobs [| metadata ...]

Reproducibility
---------------
Every trial draws from its own ``numpy.random.Generator`` seeded by a child
of ``numpy.random.SeedSequence(seed)``. Child streams are statistically
independent, and trial ``i`` always receives child ``i``, so results are
identical whether trials run sequentially or in parallel.

Failure Policy
--------------
``on_error='raise'`` (default): a failing trial aborts the run; the error
carries ``trial_id`` and ``params``. Sequential runs stop at the lowest
failing trial; in parallel runs it is whichever failure joblib returns
first. Configuration errors are systematic, so continuing would only
repeat them.

``on_error='skip'``: failing trials are recorded as ``TrialFailure`` entries
in the batch and the run continues (useful when e.g. an aggressive selection
occasionally empties a sample).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, effective_n_jobs
from tqdm.auto import tqdm

from olssim.dgp import LinearDGP
from olssim.estimator import FitResult, OLSEstimator
from olssim.exceptions import InvalidInputError, OLSSimError

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_SEED: int = 20241205     # Root seed for reproducibility
N_TRIALS_DEFAULT: int = 500      # Number of Monte Carlo trials
ON_ERROR: Tuple[str, ...] = ("raise", "skip")
RESULT_COLUMNS: List[str] = ["trial_id", "term", "estimate", "std_error", "nobs"]

Seed = Union[int, np.random.SeedSequence, None]


# =============================================================================
# RESULT CONTAINERS
# =============================================================================

@dataclass
class TrialFailure:
    """A trial that raised an olssim error while ``on_error='skip'``."""
    trial_id: int
    error: str
    message: str
    params: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SimulationBatch:
    """
    Results of a Monte Carlo run.

    Attributes
    ----------
    results : pd.DataFrame
        One row per (trial, term) with columns ``trial_id, term, estimate,
        std_error, nobs`` plus any metadata columns, ordered by trial.
    failures : list of TrialFailure
        Trials skipped because they failed.
    n_requested : int
        Number of trials requested.
    timed_out : bool
        True if the time budget stopped the run before all trials were
        scheduled.
    """
    results: pd.DataFrame
    failures: List[TrialFailure] = field(default_factory=list)
    n_requested: int = 0
    timed_out: bool = False

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    @property
    def n_completed(self) -> int:
        """Number of trials with a fit (excludes failures)."""
        if self.results.empty:
            return 0
        keys = [c for c in self.results.columns if c not in RESULT_COLUMNS[1:]]
        return len(self.results[keys].drop_duplicates())

    def to_frame(self) -> pd.DataFrame:
        return self.results.copy()

    def failures_frame(self) -> pd.DataFrame:
        rows = [
            {"trial_id": f.trial_id, "error": f.error, "message": f.message, **f.metadata}
            for f in self.failures
        ]
        return pd.DataFrame(rows)

    @classmethod
    def concat(cls, batches: Iterable["SimulationBatch"]) -> "SimulationBatch":
        """Stack several batches (e.g. one per configuration) into one."""
        batches = list(batches)
        if not batches:
            return cls(results=pd.DataFrame(columns=RESULT_COLUMNS))
        return cls(
            results=pd.concat([b.results for b in batches], ignore_index=True),
            failures=[f for b in batches for f in b.failures],
            n_requested=sum(b.n_requested for b in batches),
            timed_out=any(b.timed_out for b in batches),
        )

    def __repr__(self) -> str:
        status = " (timed out)" if self.timed_out else ""
        return (
            f"SimulationBatch({self.n_completed}/{self.n_requested} trials, "
            f"{self.n_failed} failed{status})"
        )


# =============================================================================
# SINGLE TRIAL
# =============================================================================

def run_single_trial(
    dgp: LinearDGP,
    design: Optional[pd.DataFrame],
    estimator: OLSEstimator,
    rng: np.random.Generator,
) -> FitResult:
    """
    Simulate one dataset and fit OLS to it.

    Random-design variants draw their own design from ``rng``; fixed-design
    variants use ``design`` (never modified).
    """
    if not dgp.fixed_design:
        design = dgp.make_design(rng)
    dataset = dgp.simulate(design, rng)
    return estimator.fit(dataset)


def _run_trial(
    trial_id: int,
    dgp: LinearDGP,
    design: Optional[pd.DataFrame],
    estimator: OLSEstimator,
    seed_seq: np.random.SeedSequence,
    on_error: str,
) -> Tuple[int, Union[FitResult, TrialFailure]]:
    rng = np.random.default_rng(seed_seq)
    try:
        return trial_id, run_single_trial(dgp, design, estimator, rng)
    except OLSSimError as err:
        err.trial_id = trial_id
        err.params = dgp.params
        if on_error == "raise":
            raise
        return trial_id, TrialFailure(
            trial_id=trial_id,
            error=type(err).__name__,
            message=str(err),
            params=dgp.params,
        )


def _budget_spent(start: float, max_seconds: Optional[float]) -> bool:
    return max_seconds is not None and time.perf_counter() - start >= max_seconds


# =============================================================================
# MONTE CARLO RUN
# =============================================================================

def run_simulation(
    dgp: LinearDGP,
    n_trials: int = N_TRIALS_DEFAULT,
    design: Optional[pd.DataFrame] = None,
    estimator: Optional[OLSEstimator] = None,
    seed: Seed = DEFAULT_SEED,
    n_jobs: int = 1,
    backend: Optional[str] = None,
    on_error: str = "raise",
    max_seconds: Optional[float] = None,
    progress: bool = False,
    metadata: Optional[Mapping[str, Any]] = None,
) -> SimulationBatch:
    """
    Run ``n_trials`` independent trials of a DGP + OLS pipeline.

    Parameters
    ----------
    dgp : LinearDGP
        Configured DGP variant.
    n_trials : int, default 500
        Number of trials.
    design : pd.DataFrame, optional
        Covariate table shared read-only by all trials. Required for
        fixed-design variants; ignored by ``RandomXDGP``.
    estimator : OLSEstimator, optional
        Defaults to classical OLS standard errors.
    seed : int or numpy.random.SeedSequence, default 20241205
        Root seed; trial i uses the i-th spawned child sequence.
    n_jobs : int, default 1
        1 runs sequentially; otherwise trials are dispatched with joblib
        (-1 = all cores).
    backend : str, optional
        joblib backend, e.g. 'threading' or 'loky'.
    on_error : {'raise', 'skip'}, default 'raise'
        Failure policy (see module docstring).
    max_seconds : float, optional
        Time budget. Once exceeded no new trials are scheduled; completed
        trials are kept and ``timed_out`` is set.
    progress : bool, default False
        Show a tqdm progress bar.
    metadata : mapping, optional
        Constant columns added to the results, e.g. ``{'sample_size': 100}``.

    Returns
    -------
    SimulationBatch

    Raises
    ------
    OLSSimError
        With ``on_error='raise'``, a trial error annotated with
        ``trial_id`` and ``params``.
    """
    if int(n_trials) != n_trials or n_trials < 1:
        raise InvalidInputError(f"n_trials must be a positive integer, got {n_trials}")
    n_trials = int(n_trials)
    if on_error not in ON_ERROR:
        raise InvalidInputError(f"on_error must be one of {ON_ERROR}, got '{on_error}'")
    if n_jobs is not None and (int(n_jobs) != n_jobs or n_jobs == 0):
        raise InvalidInputError(f"n_jobs must be a non-zero integer, got {n_jobs}")
    if max_seconds is not None and not max_seconds > 0:
        raise InvalidInputError(f"max_seconds must be positive, got {max_seconds}")
    if dgp.fixed_design and design is None:
        raise InvalidInputError(f"{type(dgp).__name__} needs a design matrix")
    if not dgp.fixed_design and design is not None:
        logger.warning("%s draws its own design; the supplied design is ignored", dgp.name)
        design = None

    estimator = estimator if estimator is not None else OLSEstimator()
    metadata = dict(metadata or {})
    seed_seq = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    children = seed_seq.spawn(n_trials)

    logger.info("%s: running %d trials (n_jobs=%s)", dgp.name, n_trials, n_jobs)
    start = time.perf_counter()
    outcomes: List[Tuple[int, Union[FitResult, TrialFailure]]] = []
    timed_out = False

    pbar = tqdm(total=n_trials, desc=dgp.name, disable=not progress)
    try:
        if n_jobs == 1:
            for i, child in enumerate(children):
                if _budget_spent(start, max_seconds):
                    timed_out = True
                    break
                outcomes.append(_run_trial(i, dgp, design, estimator, child, on_error))
                pbar.update(1)
        else:
            # chunks bound how much work is queued when the budget runs out
            chunk = 4 * effective_n_jobs(n_jobs)
            with Parallel(n_jobs=n_jobs, backend=backend) as parallel:
                for lo in range(0, n_trials, chunk):
                    if _budget_spent(start, max_seconds):
                        timed_out = True
                        break
                    hi = min(lo + chunk, n_trials)
                    outcomes.extend(parallel(
                        delayed(_run_trial)(i, dgp, design, estimator, children[i], on_error)
                        for i in range(lo, hi)
                    ))
                    pbar.update(hi - lo)
    except OLSSimError as err:
        logger.error("%s: trial %s failed: %s", dgp.name, err.trial_id, err)
        raise
    finally:
        pbar.close()

    records: List[Dict[str, Any]] = []
    failures: List[TrialFailure] = []
    for trial_id, outcome in sorted(outcomes, key=lambda item: item[0]):
        if isinstance(outcome, TrialFailure):
            outcome.metadata = metadata
            failures.append(outcome)
            logger.debug("trial %d skipped: %s", trial_id, outcome.message)
            continue
        for rec in outcome.to_records():
            records.append({"trial_id": trial_id, **rec})

    results = pd.DataFrame(records, columns=RESULT_COLUMNS)
    for key, value in reversed(list(metadata.items())):
        results.insert(0, key, value)

    elapsed = time.perf_counter() - start
    if failures:
        logger.warning("%s: %d of %d trials failed and were skipped",
                       dgp.name, len(failures), len(outcomes))
    if timed_out:
        logger.warning("%s: time budget of %.1fs reached after %d of %d trials",
                       dgp.name, max_seconds, len(outcomes), n_trials)
    logger.info("%s: finished %d trials in %.1fs", dgp.name, len(outcomes), elapsed)

    return SimulationBatch(
        results=results,
        failures=failures,
        n_requested=n_trials,
        timed_out=timed_out,
    )


def run_simulation_grid(
    configs: Iterable[Mapping[str, Any]],
    n_trials: int = N_TRIALS_DEFAULT,
    estimator: Optional[OLSEstimator] = None,
    seed: int = DEFAULT_SEED,
    **kwargs: Any,
) -> SimulationBatch:
    """
    Run Monte Carlo simulations across a grid of configurations.

    Parameters
    ----------
    configs : iterable of dict
        Each dict has a ``dgp`` (a DGP variant), an optional ``design``, and
        any number of metadata keys (e.g. ``sample_size``, ``dgp_id``) that
        become columns of the result.
    n_trials : int, default 500
        Trials per configuration.
    estimator : OLSEstimator, optional
    seed : int
        Root seed; each configuration gets its own spawned sequence.
    **kwargs
        Passed on to ``run_simulation`` (n_jobs, on_error, max_seconds, ...).

    Returns
    -------
    SimulationBatch
        All configurations stacked, tagged by their metadata columns.

    Notes
    -----
    A sample-size sweep is a list of configs sharing one DGP, each with a
    design of a different length and a ``sample_size`` key.
    """
    configs = [dict(c) for c in configs]
    children = np.random.SeedSequence(seed).spawn(len(configs))

    batches = []
    for idx, (config, child) in enumerate(zip(configs, children)):
        if "dgp" not in config:
            raise InvalidInputError(f"config {idx} has no 'dgp' entry")
        dgp = config.pop("dgp")
        design = config.pop("design", None)
        logger.info("[%d/%d] %s %s", idx + 1, len(configs), dgp.name, config)
        batches.append(run_simulation(
            dgp, n_trials, design=design, estimator=estimator,
            seed=child, metadata=config, **kwargs,
        ))
    return SimulationBatch.concat(batches)


__all__ = [
    "run_simulation",
    "run_simulation_grid",
    "run_single_trial",
    "SimulationBatch",
    "TrialFailure",
    "DEFAULT_SEED",
    "N_TRIALS_DEFAULT",
    "RESULT_COLUMNS",
]
