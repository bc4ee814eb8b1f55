"""
Dataset metadata and longitudinal record queries.

A dataset is described by the periods (e.g. test years), groupings (e.g.
grade levels) and subgroups (e.g. content areas) it covers, plus an optional
methodology transition period at which its score scaling changed. Records
live in a long table with one row per (subject, period, grouping, subgroup).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SUBJECT_COL = "subject_id"
PERIOD_COL = "period"
GROUPING_COL = "grouping"
SUBGROUP_COL = "subgroup"
SCORE_COL = "score"
RECORD_COLUMNS = [SUBJECT_COL, PERIOD_COL, GROUPING_COL, SUBGROUP_COL, SCORE_COL]


@dataclass(frozen=True)
class DatasetSpec:
    """Metadata for one longitudinal dataset."""
    id: str
    name: str
    periods: Tuple[int, ...]
    groupings: Tuple[int, ...]
    subgroups: Tuple[str, ...]
    transition_period: Optional[int] = None
    scaling_by_period: Dict[int, str] = field(default_factory=dict)
    description: str = ""

    @property
    def has_transition(self) -> bool:
        return self.transition_period is not None

    def scaling_type(self, period: int) -> Optional[str]:
        scaling = self.scaling_by_period.get(period)
        if scaling is None and self.scaling_by_period:
            warnings.warn(f"Period {period} has no scaling type in dataset {self.id}")
        return scaling

    def crosses_transition(self, period_prior: int, period_current: int) -> bool:
        """True when prior < transition <= current."""
        if not self.has_transition:
            return False
        return period_prior < self.transition_period <= period_current

    def transition_side(self, period_prior: int, period_current: int) -> Optional[str]:
        """'before', 'after' or 'during' the transition; None without one."""
        if not self.has_transition:
            return None
        if period_current < self.transition_period:
            return "before"
        if period_prior >= self.transition_period:
            return "after"
        return "during"

    def scaling_transition(self, period_prior: int, period_current: int) -> Optional[str]:
        prior = self.scaling_type(period_prior)
        current = self.scaling_type(period_current)
        if prior is None or current is None:
            return None
        return f"{prior}_to_{current}"


def _uniform_scaling(periods, scaling: str) -> Dict[int, str]:
    return {p: scaling for p in periods}


DATASETS: Dict[str, DatasetSpec] = {
    "dataset_1": DatasetSpec(
        id="dataset_1",
        name="Dataset 1 (Vertical Scale)",
        periods=tuple(range(2005, 2015)),
        groupings=tuple(range(3, 11)),
        subgroups=("MATHEMATICS", "READING", "WRITING"),
        scaling_by_period=_uniform_scaling(range(2005, 2015), "vertical"),
        description="Multi-year vertically scaled assessment",
    ),
    "dataset_2": DatasetSpec(
        id="dataset_2",
        name="Dataset 2 (Non-Vertical Scale)",
        periods=tuple(range(2007, 2015)),
        groupings=(3, 4, 5, 6, 7, 8, 10),
        subgroups=("MATHEMATICS", "READING"),
        scaling_by_period=_uniform_scaling(range(2007, 2015), "non_vertical"),
        description="Multi-year non-vertically scaled assessment",
    ),
    "dataset_3": DatasetSpec(
        id="dataset_3",
        name="Dataset 3 (Transition)",
        periods=tuple(range(2013, 2018)),
        groupings=tuple(range(3, 9)),
        subgroups=("ELA", "MATHEMATICS"),
        transition_period=2015,
        scaling_by_period={
            2013: "vertical",
            2014: "vertical",
            2015: "non_vertical",
            2016: "non_vertical",
            2017: "non_vertical",
        },
        description="Multi-year assessment with a scaling transition in 2015",
    ),
}


def get_dataset(dataset_id: str) -> DatasetSpec:
    try:
        return DATASETS[dataset_id]
    except KeyError:
        raise KeyError(
            f"Unknown dataset: {dataset_id!r}. Available: {list(DATASETS)}"
        ) from None


class LongitudinalRecords:
    """
    Read-only query surface over a long table of scores.

    Args:
        df: Table with subject, period, grouping, subgroup and score columns
        column_map: Optional renaming from source column names to the
            standard names in ``RECORD_COLUMNS``

    Raises:
        ValueError: If required columns are missing
    """

    def __init__(self, df: pd.DataFrame, column_map: Optional[Dict[str, str]] = None):
        if column_map:
            df = df.rename(columns=column_map)
        missing_cols = [col for col in RECORD_COLUMNS if col not in df.columns]
        if missing_cols:
            raise ValueError(
                f"Missing columns: {missing_cols}. "
                f"Available columns: {df.columns.tolist()}"
            )
        df = df[RECORD_COLUMNS]

        n_before = len(df)
        df = df.dropna()
        n_after = len(df)
        if n_after < n_before:
            warnings.warn(f"Dropped {n_before - n_after} rows with missing values")

        df = df.astype({PERIOD_COL: int, GROUPING_COL: int, SCORE_COL: float})
        self._df = df.reset_index(drop=True)
        self._groups = self._df.groupby([PERIOD_COL, GROUPING_COL, SUBGROUP_COL]).indices

    @property
    def frame(self) -> pd.DataFrame:
        return self._df.copy()

    def __len__(self) -> int:
        return len(self._df)

    def subgroups(self) -> List[str]:
        return sorted(self._df[SUBGROUP_COL].unique().tolist())

    def records(self, period: int, grouping: int, subgroup: str) -> pd.DataFrame:
        """Rows for one (period, grouping, subgroup) cell; empty when absent."""
        idx = self._groups.get((period, grouping, subgroup))
        if idx is None:
            return self._df.iloc[0:0]
        return self._df.iloc[idx]

    def pairs(self, condition, min_valid_score: Optional[float] = None
              ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Prior/current scores of subjects observed in both cells of a condition.

        Args:
            condition: Object with period/grouping prior/current and subgroup
            min_valid_score: Drop pairs where either score is below this value

        Returns:
            (subject_ids, prior_scores, current_scores), sorted by subject id
        """
        prior = self.records(condition.period_prior, condition.grouping_prior,
                             condition.subgroup)
        current = self.records(condition.period_current, condition.grouping_current,
                               condition.subgroup)
        prior = prior.drop_duplicates(SUBJECT_COL)
        current = current.drop_duplicates(SUBJECT_COL)
        merged = prior[[SUBJECT_COL, SCORE_COL]].merge(
            current[[SUBJECT_COL, SCORE_COL]],
            on=SUBJECT_COL,
            suffixes=("_prior", "_current"),
        )
        if min_valid_score is not None:
            keep = ((merged[f"{SCORE_COL}_prior"] >= min_valid_score)
                    & (merged[f"{SCORE_COL}_current"] >= min_valid_score))
            merged = merged[keep]
        merged = merged.sort_values(SUBJECT_COL, kind="stable")
        return (
            merged[SUBJECT_COL].to_numpy(),
            merged[f"{SCORE_COL}_prior"].to_numpy(dtype=float),
            merged[f"{SCORE_COL}_current"].to_numpy(dtype=float),
        )

    # --- Loaders -------------------------------------------------------------

    @classmethod
    def from_csv(cls, file_path: str, column_map: Optional[Dict[str, str]] = None,
                 **read_kwargs) -> "LongitudinalRecords":
        """
        Load a long-format CSV.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file can't be parsed or columns are missing
        """
        try:
            df = pd.read_csv(file_path, **read_kwargs)
        except FileNotFoundError as e:
            raise FileNotFoundError(f"CSV file not found: {file_path}") from e
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise ValueError(f"Error reading CSV file: {e}") from e
        logger.info("Loaded %d records from %s", len(df), file_path)
        return cls(df, column_map=column_map)

    @classmethod
    def from_excel(cls, file_path: str, sheet_name="Sheet1",
                   column_map: Optional[Dict[str, str]] = None) -> "LongitudinalRecords":
        """
        Load a long-format Excel sheet (requires openpyxl for .xlsx).

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the sheet can't be read or columns are missing
        """
        try:
            df = pd.read_excel(file_path, sheet_name=sheet_name)
        except FileNotFoundError as e:
            raise FileNotFoundError(f"Excel file not found: {file_path}") from e
        except (ValueError, KeyError, OSError) as e:
            raise ValueError(f"Error reading Excel file: {e}") from e
        logger.info("Loaded %d records from %s[%s]", len(df), file_path, sheet_name)
        return cls(df, column_map=column_map)


def dataset_from_records(records: LongitudinalRecords, dataset_id: str,
                         name: Optional[str] = None,
                         transition_period: Optional[int] = None,
                         scaling_by_period: Optional[Dict[int, str]] = None) -> DatasetSpec:
    """Derive dataset metadata from the cells actually present in a table."""
    df = records.frame
    return DatasetSpec(
        id=dataset_id,
        name=name or dataset_id,
        periods=tuple(sorted(int(p) for p in df[PERIOD_COL].unique())),
        groupings=tuple(sorted(int(g) for g in df[GROUPING_COL].unique())),
        subgroups=tuple(sorted(df[SUBGROUP_COL].unique())),
        transition_period=transition_period,
        scaling_by_period=dict(scaling_by_period or {}),
    )


def subgroups_present(records: LongitudinalRecords, subgroups: Sequence[str]) -> List[str]:
    present = set(records.subgroups())
    return [s for s in subgroups if s in present]
