"""
Run configuration.

``AnalysisConfig`` is the user-facing set of knobs; ``RunSettings`` is the
immutable snapshot of the subset that workers need. The snapshot is taken
once, before the worker pool exists, and handed to every task explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
import numbers
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ConfigurationError

FAMILY_TAGS: Tuple[str, ...] = (
    "gaussian",
    "t",
    "clayton",
    "gumbel",
    "frank",
    "comonotonic",
)

STATISTICS = ("kendall", "surface")
TIE_METHODS = ("random", "average")
CONDITION_MODES = ("exhaustive", "curated")
BACKENDS = ("loky", "multiprocessing", "threading", "sequential")

DEFAULT_SEED = 314159


@dataclass(frozen=True)
class RunSettings:
    """Read-only settings shipped to every (condition, family) task."""
    n_bootstrap: int
    alpha: float
    statistic: str
    seed: int
    reference_size: int


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Configuration for a full sensitivity run.

    Attributes:
        families: Copula family tags to fit for every condition
        n_bootstrap: GoF bootstrap replicates (0 = observed statistic only)
        min_sample_size: Conditions with fewer pairs are skipped
        alpha: GoF significance level; a fit passes when p > alpha
        seed: Base seed for tie-breaking and bootstrap streams
        ties: Rank tie handling, "random" (default) or "average"
        statistic: CvM flavour, "kendall" (default) or "surface"
        reference_size: Monte-Carlo sample size for elliptical Kendall functions
        condition_mode: "exhaustive" or "curated" condition enumeration
        max_span: Largest period span enumerated
        n_jobs: Hard cap on worker processes (None = cores - reserve_cores)
        reserve_cores: Cores left free for the host
        backend: joblib backend used by the work distributor
        min_valid_score: Optional lower bound applied to both scores of a pair
    """
    families: Tuple[str, ...] = FAMILY_TAGS
    n_bootstrap: int = 100
    min_sample_size: int = 100
    alpha: float = 0.05
    seed: int = DEFAULT_SEED
    ties: str = "random"
    statistic: str = "kendall"
    reference_size: int = 20000
    condition_mode: str = "exhaustive"
    max_span: int = 4
    n_jobs: Optional[int] = None
    reserve_cores: int = 1
    backend: str = "loky"
    min_valid_score: Optional[float] = None

    def __post_init__(self):
        # Accept lists from callers and keep the instance hashable.
        object.__setattr__(self, "families", tuple(self.families))

    def validate(self) -> "AnalysisConfig":
        """
        Check every field and return self.

        Raises:
            ConfigurationError: On the first invalid field
        """
        if not self.families:
            raise ConfigurationError("families must not be empty")
        unknown = [f for f in self.families if f not in FAMILY_TAGS]
        if unknown:
            raise ConfigurationError(
                f"Unknown copula families: {unknown}. Available: {list(FAMILY_TAGS)}"
            )
        if len(set(self.families)) != len(self.families):
            raise ConfigurationError(f"Duplicate families in {list(self.families)}")

        _require_int(self.n_bootstrap, "n_bootstrap", minimum=0)
        _require_int(self.min_sample_size, "min_sample_size", minimum=2)
        _require_int(self.seed, "seed", minimum=0)
        _require_int(self.reference_size, "reference_size", minimum=1000)
        _require_int(self.max_span, "max_span", minimum=1)
        _require_int(self.reserve_cores, "reserve_cores", minimum=0)
        if self.n_jobs is not None:
            _require_int(self.n_jobs, "n_jobs", minimum=1)

        if not isinstance(self.alpha, (int, float)) or not 0.0 < self.alpha < 1.0:
            raise ConfigurationError(f"alpha must lie in (0, 1), got {self.alpha!r}")

        _require_choice(self.ties, "ties", TIE_METHODS)
        _require_choice(self.statistic, "statistic", STATISTICS)
        _require_choice(self.condition_mode, "condition_mode", CONDITION_MODES)
        _require_choice(self.backend, "backend", BACKENDS)

        if self.min_valid_score is not None and not isinstance(
            self.min_valid_score, (int, float)
        ):
            raise ConfigurationError(
                f"min_valid_score must be numeric or None, got {self.min_valid_score!r}"
            )
        return self

    def settings(self) -> RunSettings:
        """Snapshot the worker-facing settings."""
        return RunSettings(
            n_bootstrap=self.n_bootstrap,
            alpha=float(self.alpha),
            statistic=self.statistic,
            seed=self.seed,
            reference_size=self.reference_size,
        )

    def with_overrides(self, **changes: Any) -> "AnalysisConfig":
        return replace(self, **changes).validate()

    def to_dict(self) -> Dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["families"] = list(self.families)
        return d

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "AnalysisConfig":
        """
        Build and validate a config from a plain mapping (e.g. parsed JSON).

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        try:
            config = cls(**dict(mapping))
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        return config.validate()


def _require_int(value: Any, name: str, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")


def _require_choice(value: Any, name: str, choices: Tuple[str, ...]) -> None:
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {list(choices)}, got {value!r}")
