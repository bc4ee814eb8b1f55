"""
Copula Sensitivity: copula family selection for paired longitudinal scores

Fits Gaussian, Student-t, Clayton, Gumbel, Frank and comonotonic copulas to
prior/current score pairs, ranks them by AIC/BIC within each condition and
checks absolute fit with a parametric-bootstrap Cramer-von Mises test.
"""

from .config import AnalysisConfig, RunSettings
from .exceptions import (
    ConfigurationError,
    CopulaSensitivityError,
    FitError,
    GoFError,
    InsufficientDataError,
)
from .pseudo_obs import PseudoObservations, pseudo_observations
from .families import FAMILIES, CopulaFamily, get_family
from .fitting import CopulaFit, FitFailure, fit_copula
from .gof import GoFResult, gof_test
from .conditions import Condition, enumerate_conditions
from .datasets import DATASETS, DatasetSpec, LongitudinalRecords
from .aggregate import add_relative_fit, combine_results, selection_frequency
from .core import (
    AnalysisResult,
    DatasetResult,
    analyze_csv,
    analyze_dataset,
    analyze_excel,
    analyze_pairs,
    results_to_dict,
    run_analysis,
)

__version__ = "1.0.0"

__all__ = [
    "AnalysisConfig",
    "RunSettings",
    "CopulaSensitivityError",
    "ConfigurationError",
    "InsufficientDataError",
    "FitError",
    "GoFError",
    "PseudoObservations",
    "pseudo_observations",
    "FAMILIES",
    "CopulaFamily",
    "get_family",
    "CopulaFit",
    "FitFailure",
    "fit_copula",
    "GoFResult",
    "gof_test",
    "Condition",
    "enumerate_conditions",
    "DATASETS",
    "DatasetSpec",
    "LongitudinalRecords",
    "add_relative_fit",
    "combine_results",
    "selection_frequency",
    "AnalysisResult",
    "DatasetResult",
    "analyze_csv",
    "analyze_dataset",
    "analyze_excel",
    "analyze_pairs",
    "results_to_dict",
    "run_analysis",
    "__version__",
]
