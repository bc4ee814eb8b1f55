"""
Parallel work distribution over the (condition x family) task matrix.

Every task carries its own inputs: the condition metadata, the condition's
pseudo-observations and the frozen ``RunSettings`` snapshot. Nothing is read
from module state inside a worker, so isolated (loky/multiprocessing)
workers see the same values as the sequential path. Large read-only arrays
are memory-mapped by joblib instead of being copied to every worker.
"""

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from joblib import Parallel, cpu_count, delayed

from .config import FAMILY_TAGS, RunSettings
from .conditions import Condition
from .exceptions import GoFError
from .fitting import CopulaFit, fit_copula
from .gof import gof_test

logger = logging.getLogger(__name__)

# Arrays above this size are memory-mapped into loky workers.
MAX_NBYTES = "1M"

NUMERIC_FIT_FIELDS = (
    "loglik", "aic", "bic", "kendall_tau", "tail_dep_lower", "tail_dep_upper",
    "parameter_1", "parameter_2", "correlation_rho", "degrees_freedom", "theta",
)
GOF_FIELDS = ("gof_statistic", "gof_pvalue", "gof_pass", "gof_method", "gof_replicates")


@dataclass(frozen=True)
class FitTask:
    """One family fitted to one condition."""
    condition: Condition
    family: str
    u: np.ndarray
    v: np.ndarray
    empirical_tau: float
    settings: RunSettings

    @property
    def n_pairs(self) -> int:
        return len(self.u)


def task_seed(base_seed: int, dataset_id: str, condition_id: int, family: str) -> np.random.SeedSequence:
    """Seed stream of one task, independent of scheduling order."""
    family_index = FAMILY_TAGS.index(family) if family in FAMILY_TAGS else len(FAMILY_TAGS)
    return np.random.SeedSequence(
        [base_seed, zlib.crc32(dataset_id.encode("utf-8")), condition_id, family_index]
    )


def worker_count(n_jobs: Optional[int] = None, reserve_cores: int = 1) -> int:
    """Available cores minus a system reserve, at least 1, capped by n_jobs."""
    available = max(1, cpu_count() - reserve_cores)
    if n_jobs is not None:
        return max(1, min(n_jobs, available))
    return available


def _base_row(task: FitTask) -> Dict[str, Any]:
    row = task.condition.to_dict()
    row["n_pairs"] = task.n_pairs
    row["empirical_tau"] = task.empirical_tau
    row["family"] = task.family
    for name in NUMERIC_FIT_FIELDS:
        row[name] = None
    for name in GOF_FIELDS:
        row[name] = None
    row["fit_error"] = None
    return row


def run_task(task: FitTask) -> Dict[str, Any]:
    """
    Fit one family and test its goodness of fit.

    Never raises: fit failures, GoF failures and unexpected errors are
    returned as rows carrying a diagnostic so sibling tasks keep running.
    A GoF failure keeps the fit and is reported in ``gof_method``.
    """
    row = _base_row(task)
    settings = task.settings
    try:
        outcome = fit_copula(task.u, task.v, task.family)
    except Exception as e:  # task isolation boundary
        logger.exception("%s %s: fit failed", task.condition.label(), task.family)
        row["fit_error"] = f"{type(e).__name__}: {e}"
        return row
    if not isinstance(outcome, CopulaFit):
        row["fit_error"] = outcome.message
        return row
    row.update(outcome.to_dict())

    seed = task_seed(settings.seed, task.condition.dataset_id,
                     task.condition.condition_id, task.family)
    try:
        gof = gof_test(
            outcome, task.u, task.v,
            n_bootstrap=settings.n_bootstrap,
            alpha=settings.alpha,
            seed=seed,
            statistic=settings.statistic,
            reference_size=settings.reference_size,
        )
    except GoFError as e:
        logger.warning("%s %s: GoF failed: %s", task.condition.label(), task.family, e)
        row["gof_method"] = f"gof_failed: {e}"
    except Exception as e:  # task isolation boundary
        logger.exception("%s %s: GoF test raised", task.condition.label(), task.family)
        row["gof_method"] = f"gof_failed: {type(e).__name__}: {e}"
    else:
        row.update(gof.to_dict())
    return row


def distribute(
    tasks: Sequence[FitTask],
    n_jobs: Optional[int] = None,
    reserve_cores: int = 1,
    backend: str = "loky",
) -> List[Dict[str, Any]]:
    """
    Run tasks across a joblib worker pool and return rows in task order.

    Args:
        tasks: Fully-specified tasks (inputs and settings captured up front)
        n_jobs: Cap on worker count; 1 runs the single-threaded path
        reserve_cores: Cores left free for the host
        backend: "loky" (default), "multiprocessing", "threading" or "sequential"

    Returns:
        One row dict per task
    """
    if not tasks:
        return []
    workers = worker_count(n_jobs, reserve_cores)
    if backend == "sequential" or workers == 1:
        backend, workers = "sequential", 1

    logger.info("Dispatching %d tasks on %d worker(s) [%s]", len(tasks), workers, backend)
    with Parallel(n_jobs=workers, backend=backend, max_nbytes=MAX_NBYTES) as parallel:
        rows = parallel(delayed(run_task)(task) for task in tasks)
    return list(rows)
