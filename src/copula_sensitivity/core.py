# core.py
"""
Copula sensitivity core: one import surface for running analyses.

- analyze_dataset(...) -> DatasetResult   : all conditions x families of one dataset
- run_analysis(...) -> AnalysisResult     : several datasets, combined result table
- analyze_pairs(...) -> pd.DataFrame      : one ad-hoc prior/current sample
- analyze_csv(...) / analyze_excel(...)   : load a long table and analyze it
- results_to_dict(...) -> dict            : JSON-friendly view of a result
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import kendalltau

from .aggregate import (
    RunReport,
    add_relative_fit,
    build_report,
    combine_results,
    order_columns,
)
from .conditions import Condition, ConditionSample, enumerate_conditions
from .config import AnalysisConfig
from .datasets import DatasetSpec, LongitudinalRecords, dataset_from_records
from .exceptions import InsufficientDataError
from .parallel import FitTask, distribute
from .pseudo_obs import has_sufficient_data, pseudo_observations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetResult:
    """Rows of one dataset plus its condition bookkeeping."""
    spec: DatasetSpec
    results: pd.DataFrame
    n_conditions: int
    skipped: Tuple[Tuple[int, int], ...] = ()

    @property
    def n_skipped(self) -> int:
        return len(self.skipped)


@dataclass(frozen=True)
class AnalysisResult:
    results: pd.DataFrame
    report: RunReport
    datasets: Tuple[DatasetResult, ...] = field(default_factory=tuple)


def condition_sample(records: LongitudinalRecords, condition: Condition,
                     min_sample_size: int,
                     min_valid_score: Optional[float] = None) -> ConditionSample:
    """
    Extract the paired scores of a condition.

    Raises:
        InsufficientDataError: If fewer than ``min_sample_size`` pairs exist
    """
    ids, prior, current = records.pairs(condition, min_valid_score=min_valid_score)
    if not has_sufficient_data(len(prior), min_sample_size):
        raise InsufficientDataError(len(prior), min_sample_size)
    return ConditionSample(condition=condition, subject_ids=ids, prior=prior, current=current)


def build_tasks(sample: ConditionSample, config: AnalysisConfig) -> List[FitTask]:
    """One task per configured family, all sharing the condition's pseudo-observations."""
    pobs = pseudo_observations(sample.prior, sample.current, seed=config.seed, ties=config.ties)
    tau = float(kendalltau(pobs.u, pobs.v)[0])
    settings = config.settings()
    return [
        FitTask(
            condition=sample.condition,
            family=family,
            u=pobs.u,
            v=pobs.v,
            empirical_tau=tau,
            settings=settings,
        )
        for family in config.families
    ]


def _rows_to_frame(rows: List[Dict[str, Any]], spec: DatasetSpec) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    df.insert(1, "dataset_name", spec.name)
    return order_columns(add_relative_fit(df))


def analyze_dataset(records: LongitudinalRecords, spec: DatasetSpec,
                    config: Optional[AnalysisConfig] = None,
                    conditions: Optional[Iterable[Condition]] = None) -> DatasetResult:
    """
    Fit every configured family to every condition of one dataset.

    Args:
        records: Long-format scores of the dataset
        spec: Dataset metadata (periods, groupings, subgroups, transition)
        config: Run configuration, validated before any fitting
        conditions: Pre-built conditions; enumerated from ``spec`` when omitted

    Returns:
        DatasetResult with one row per (condition, family)

    Raises:
        ConfigurationError: If ``config`` is invalid
    """
    config = (config or AnalysisConfig()).validate()
    if conditions is None:
        conditions = enumerate_conditions(
            spec,
            mode=config.condition_mode,
            max_span=config.max_span,
            available_subgroups=records.subgroups(),
        )
    conditions = list(conditions)

    tasks: List[FitTask] = []
    skipped = []
    for condition in conditions:
        try:
            sample = condition_sample(records, condition, config.min_sample_size,
                                      config.min_valid_score)
        except InsufficientDataError as e:
            logger.info("Skipping %s: %s", condition.label(), e)
            skipped.append((condition.condition_id, e.n_pairs))
            continue
        tasks.extend(build_tasks(sample, config))

    logger.info("%s: %d conditions, %d skipped, %d fit tasks",
                spec.id, len(conditions), len(skipped), len(tasks))
    rows = distribute(tasks, n_jobs=config.n_jobs, reserve_cores=config.reserve_cores,
                      backend=config.backend)
    return DatasetResult(
        spec=spec,
        results=_rows_to_frame(rows, spec),
        n_conditions=len(conditions),
        skipped=tuple(skipped),
    )


def run_analysis(datasets: Iterable[Tuple[LongitudinalRecords, DatasetSpec]],
                 config: Optional[AnalysisConfig] = None) -> AnalysisResult:
    """
    Analyze several datasets and combine their rows.

    Each dataset returns its own table; the tables are concatenated once all
    datasets are done and relative fit is recomputed per
    (dataset_id, condition_id).
    """
    config = (config or AnalysisConfig()).validate()
    per_dataset = tuple(analyze_dataset(records, spec, config) for records, spec in datasets)
    combined = combine_results(r.results for r in per_dataset)
    if not combined.empty:
        combined = order_columns(combined)
    report = build_report(
        n_datasets=len(per_dataset),
        n_conditions=sum(r.n_conditions for r in per_dataset),
        n_skipped=sum(r.n_skipped for r in per_dataset),
        results=combined,
    )
    logger.info("Run complete: %s", report.summary())
    return AnalysisResult(results=combined, report=report, datasets=per_dataset)


def analyze_pairs(prior, current, config: Optional[AnalysisConfig] = None,
                  dataset_id: str = "adhoc", subgroup: str = "ALL") -> pd.DataFrame:
    """
    Run the family comparison on one in-memory prior/current sample.

    Raises:
        InsufficientDataError: If the sample is below ``min_sample_size``
    """
    config = (config or AnalysisConfig()).validate()
    prior = np.array(prior, dtype=float)
    current = np.array(current, dtype=float)
    if not has_sufficient_data(len(prior), config.min_sample_size):
        raise InsufficientDataError(len(prior), config.min_sample_size)
    condition = Condition(
        dataset_id=dataset_id, condition_id=1, span=1,
        grouping_prior=0, grouping_current=1, period_prior=0, period_current=1,
        subgroup=subgroup,
    )
    sample = ConditionSample(condition=condition, subject_ids=np.arange(len(prior)),
                             prior=prior, current=current)
    rows = distribute(build_tasks(sample, config), n_jobs=config.n_jobs,
                      reserve_cores=config.reserve_cores, backend=config.backend)
    spec = DatasetSpec(id=dataset_id, name=dataset_id, periods=(0, 1),
                       groupings=(0, 1), subgroups=(subgroup,))
    return _rows_to_frame(rows, spec)


def analyze_csv(file_path: str, dataset_id: str = "dataset",
                config: Optional[AnalysisConfig] = None,
                column_map: Optional[Dict[str, str]] = None,
                spec: Optional[DatasetSpec] = None) -> AnalysisResult:
    """Load a long-format CSV and analyze it as one dataset."""
    records = LongitudinalRecords.from_csv(file_path, column_map=column_map)
    spec = spec or dataset_from_records(records, dataset_id)
    return run_analysis([(records, spec)], config)


def analyze_excel(file_path: str, dataset_id: str = "dataset", sheet_name="Sheet1",
                  config: Optional[AnalysisConfig] = None,
                  column_map: Optional[Dict[str, str]] = None,
                  spec: Optional[DatasetSpec] = None) -> AnalysisResult:
    """Load a long-format Excel sheet and analyze it as one dataset."""
    records = LongitudinalRecords.from_excel(file_path, sheet_name=sheet_name,
                                             column_map=column_map)
    spec = spec or dataset_from_records(records, dataset_id)
    return run_analysis([(records, spec)], config)


def results_to_dict(result: AnalysisResult) -> Dict[str, Any]:
    """
    Convert an AnalysisResult to a plain dict with JSON-friendly fields.
    """
    df = result.results.astype(object).where(result.results.notna(), None)
    return {
        "report": asdict(result.report),
        "results": df.to_dict(orient="records"),
    }
