"""
Condition enumeration.

A condition is one longitudinal comparison inside a dataset: the same
subgroup observed at grouping g in period p and at grouping g + span in
period p + span. Conditions are produced exhaustively from the dataset bounds
or from a curated list, then filtered to what the dataset actually holds.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .datasets import DatasetSpec

logger = logging.getLogger(__name__)

# (grouping_prior, span, period_prior, subgroup)
CuratedEntry = Tuple[int, int, int, str]

# Representative 1-4 period spans across three subgroups.
CURATED_CONDITIONS: Tuple[CuratedEntry, ...] = (
    # 1-period spans
    (4, 1, 2010, "MATHEMATICS"),
    (4, 1, 2011, "MATHEMATICS"),
    (5, 1, 2010, "MATHEMATICS"),
    (6, 1, 2010, "MATHEMATICS"),
    (4, 1, 2010, "READING"),
    (5, 1, 2010, "READING"),
    (4, 1, 2010, "WRITING"),
    # 2-period spans
    (4, 2, 2010, "MATHEMATICS"),
    (4, 2, 2011, "MATHEMATICS"),
    (5, 2, 2010, "MATHEMATICS"),
    (6, 2, 2010, "MATHEMATICS"),
    (4, 2, 2010, "READING"),
    (5, 2, 2010, "READING"),
    (4, 2, 2010, "WRITING"),
    # 3-period spans
    (4, 3, 2010, "MATHEMATICS"),
    (4, 3, 2009, "MATHEMATICS"),
    (5, 3, 2010, "MATHEMATICS"),
    (6, 3, 2010, "MATHEMATICS"),
    (4, 3, 2010, "READING"),
    (5, 3, 2010, "READING"),
    (4, 3, 2010, "WRITING"),
    # 4-period spans
    (4, 4, 2009, "MATHEMATICS"),
    (4, 4, 2010, "MATHEMATICS"),
    (5, 4, 2009, "MATHEMATICS"),
    (6, 4, 2009, "MATHEMATICS"),
    (4, 4, 2009, "READING"),
    (5, 4, 2009, "READING"),
    (4, 4, 2009, "WRITING"),
)


@dataclass(frozen=True)
class Condition:
    """One (dataset, condition) comparison with its derived metadata."""
    dataset_id: str
    condition_id: int
    span: int
    grouping_prior: int
    grouping_current: int
    period_prior: int
    period_current: int
    subgroup: str
    crosses_transition: bool = False
    transition_side: Optional[str] = None
    prior_scaling: Optional[str] = None
    current_scaling: Optional[str] = None
    scaling_transition: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int]:
        return self.dataset_id, self.condition_id

    def label(self) -> str:
        return (f"{self.dataset_id}#{self.condition_id} {self.subgroup} "
                f"G{self.grouping_prior}->{self.grouping_current} "
                f"{self.period_prior}->{self.period_current}")

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class ConditionSample:
    """Paired scores of one condition, stored column-wise and read-only."""
    condition: Condition
    subject_ids: np.ndarray
    prior: np.ndarray
    current: np.ndarray

    def __post_init__(self):
        if len(self.prior) != len(self.current):
            raise ValueError(
                f"{self.condition.label()}: prior/current length mismatch "
                f"({len(self.prior)} vs {len(self.current)})"
            )
        for arr in (self.subject_ids, self.prior, self.current):
            arr.setflags(write=False)

    @property
    def n_pairs(self) -> int:
        return len(self.prior)


def _make_condition(spec: DatasetSpec, condition_id: int, grouping_prior: int,
                    span: int, period_prior: int, subgroup: str) -> Condition:
    period_current = period_prior + span
    return Condition(
        dataset_id=spec.id,
        condition_id=condition_id,
        span=span,
        grouping_prior=grouping_prior,
        grouping_current=grouping_prior + span,
        period_prior=period_prior,
        period_current=period_current,
        subgroup=subgroup,
        crosses_transition=spec.crosses_transition(period_prior, period_current),
        transition_side=spec.transition_side(period_prior, period_current),
        prior_scaling=spec.scaling_type(period_prior),
        current_scaling=spec.scaling_type(period_current),
        scaling_transition=spec.scaling_transition(period_prior, period_current),
    )


def _exhaustive_entries(spec: DatasetSpec, max_span: int) -> List[CuratedEntry]:
    periods = set(spec.periods)
    groupings = set(spec.groupings)
    entries = []
    for span in range(1, max_span + 1):
        for period_prior in spec.periods:
            if period_prior + span not in periods:
                continue
            for grouping_prior in spec.groupings:
                if grouping_prior + span not in groupings:
                    continue
                for subgroup in spec.subgroups:
                    entries.append((grouping_prior, span, period_prior, subgroup))
    return entries


def _within_bounds(spec: DatasetSpec, entry: CuratedEntry,
                   available_subgroups: Sequence[str]) -> bool:
    grouping_prior, span, period_prior, subgroup = entry
    return (
        period_prior in spec.periods
        and period_prior + span in spec.periods
        and grouping_prior in spec.groupings
        and grouping_prior + span in spec.groupings
        and subgroup in available_subgroups
    )


def enumerate_conditions(
    spec: DatasetSpec,
    mode: str = "exhaustive",
    max_span: int = 4,
    curated: Optional[Iterable[CuratedEntry]] = None,
    available_subgroups: Optional[Sequence[str]] = None,
) -> List[Condition]:
    """
    Build the conditions of one dataset.

    Args:
        spec: Dataset metadata
        mode: "exhaustive" (every valid span/period/grouping/subgroup) or
            "curated" (a fixed list, ``CURATED_CONDITIONS`` by default)
        max_span: Largest span enumerated in exhaustive mode
        curated: Entries (grouping_prior, span, period_prior, subgroup)
        available_subgroups: Subgroups present in the loaded records; defaults
            to the dataset metadata

    Returns:
        Conditions with ids 1..N, unique within the dataset

    Raises:
        ValueError: On an unknown mode or max_span < 1
    """
    if max_span < 1:
        raise ValueError(f"max_span must be >= 1, got {max_span}")
    if available_subgroups is None:
        available_subgroups = spec.subgroups
    available = [s for s in spec.subgroups if s in set(available_subgroups)]

    if mode == "exhaustive":
        entries = _exhaustive_entries(spec, max_span)
    elif mode == "curated":
        entries = list(CURATED_CONDITIONS if curated is None else curated)
    else:
        raise ValueError(f"mode must be 'exhaustive' or 'curated', got {mode!r}")

    kept = [e for e in entries if _within_bounds(spec, e, available)]
    n_filtered = len(entries) - len(kept)
    if n_filtered:
        logger.info("%s: filtered %d of %d %s conditions outside dataset bounds "
                    "or with absent subgroups", spec.id, n_filtered, len(entries), mode)

    conditions = [_make_condition(spec, i, *entry) for i, entry in enumerate(kept, start=1)]
    logger.info("%s: %d %s conditions (spans 1-%d)", spec.id, len(conditions), mode,
                max(c.span for c in conditions) if conditions else 0)
    return conditions
