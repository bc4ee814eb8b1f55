# src/copula_sensitivity/demo.py
from __future__ import annotations

import argparse
import csv
import json
import logging
import math
import sys
from typing import List, Optional

import pandas as pd

from .aggregate import family_summary, selection_frequency
from .config import BACKENDS, CONDITION_MODES, FAMILY_TAGS, STATISTICS, AnalysisConfig
from .core import AnalysisResult, run_analysis
from .datasets import DATASETS, LongitudinalRecords, dataset_from_records, get_dataset
from .exceptions import ConfigurationError
from .synthetic import simulate_longitudinal_records


def _fmt(value, spec: str = ".3f") -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "-"
    return format(value, spec)


def format_summary(result: AnalysisResult, max_conditions: int = 8) -> str:
    df = result.results
    lines = []
    lines.append("=" * 76)
    lines.append("Copula family selection — Summary")
    lines.append("=" * 76)
    lines.append(f"Run                       : {result.report.summary()}")
    if df.empty:
        lines.append("No conditions had enough paired observations.")
        lines.append("=" * 76)
        return "\n".join(lines)

    lines.append("")
    lines.append("Best family by AIC (share of conditions)")
    for _, row in selection_frequency(df, "aic").iterrows():
        lines.append(f"  {row['family']:15s}: {int(row['n_best']):4d}  ({row['percent']:.1f}%)")
    lines.append("")
    lines.append("Family averages")
    lines.append(f"  {'family':12s} {'mean ΔAIC':>12s} {'mean w':>8s} {'GoF pass':>9s} {'mean T':>9s}")
    for _, row in family_summary(df).iterrows():
        lines.append(
            f"  {row['family']:12s} {_fmt(row['mean_delta_aic'], '12.1f')} "
            f"{_fmt(row['mean_aic_weight'], '8.3f')} {_fmt(row['gof_pass_rate'], '9.2f')} "
            f"{_fmt(row['mean_gof_statistic'], '9.4f')}"
        )
    lines.append("")
    lines.append("Conditions — first few")
    best = df[df["family"] == df["best_aic"]]
    for shown, (_, row) in enumerate(best.iterrows()):
        if shown >= max_conditions:
            lines.append("  …")
            break
        lines.append(
            f"  {row['dataset_id']}#{row['condition_id']:<4d} {row['subgroup']:12s} "
            f"G{row['grouping_prior']}→{row['grouping_current']} "
            f"{row['period_prior']}→{row['period_current']}  n={row['n_pairs']:<6d} "
            f"best={row['family']:11s} τ={_fmt(row['empirical_tau'])}"
        )
    lines.append("=" * 76)
    return "\n".join(lines)


def write_csv(df: pd.DataFrame, path: str) -> None:
    """Write the full result table, one row per (dataset, condition, family)."""
    fieldnames = list(df.columns)
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in df.astype(object).where(df.notna(), None).to_dict(orient="records"):
            writer.writerow(row)


def build_config(args: argparse.Namespace) -> AnalysisConfig:
    overrides = {}
    if args.config:
        with open(args.config) as f:
            overrides.update(json.load(f))
    cli = {
        "families": args.families,
        "n_bootstrap": args.bootstrap,
        "statistic": args.statistic,
        "condition_mode": args.mode,
        "max_span": args.max_span,
        "n_jobs": args.n_jobs,
        "backend": args.backend,
        "seed": args.seed,
        "min_sample_size": args.min_sample_size,
    }
    overrides.update({k: v for k, v in cli.items() if v is not None})
    return AnalysisConfig.from_mapping(overrides)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="python -m copula_sensitivity.demo",
        description="Fit copula families to paired longitudinal scores and test their fit.",
    )
    src = p.add_mutually_exclusive_group()
    src.add_argument("--csv", default=None, help="Long-format CSV of scores.")
    src.add_argument("--excel", default=None, help="Long-format Excel file of scores.")
    p.add_argument("--sheet", default="Sheet1", help="Excel sheet name (default: Sheet1).")
    p.add_argument("--dataset", default="dataset_3", choices=sorted(DATASETS),
                   help="Dataset preset for synthetic data or file metadata (default: dataset_3).")
    p.add_argument("--infer-dataset", action="store_true",
                   help="Derive periods/groupings/subgroups from the file instead of the preset.")
    p.add_argument("--true-family", default="gumbel", choices=FAMILY_TAGS,
                   help="Copula used to simulate synthetic data (default: gumbel).")
    p.add_argument("--true-params", type=float, nargs="+", default=[2.0],
                   help="Parameters of the simulating copula (default: 2.0).")
    p.add_argument("--n-subjects", type=int, default=1000,
                   help="Synthetic subjects per condition (default: 1000).")
    p.add_argument("--families", nargs="+", default=None, choices=FAMILY_TAGS,
                   help="Families to fit (default: all).")
    p.add_argument("--bootstrap", type=int, default=None,
                   help="GoF bootstrap replicates; 0 = statistic only (default: 100).")
    p.add_argument("--statistic", default=None, choices=STATISTICS, help="GoF statistic.")
    p.add_argument("--mode", default=None, choices=CONDITION_MODES, help="Condition enumeration.")
    p.add_argument("--max-span", type=int, default=None, help="Largest span (default: 4).")
    p.add_argument("--min-sample-size", type=int, default=None, help="Minimum pairs (default: 100).")
    p.add_argument("--n-jobs", type=int, default=None, help="Cap on worker processes.")
    p.add_argument("--backend", default=None, choices=BACKENDS, help="joblib backend.")
    p.add_argument("--seed", type=int, default=None, help="Random seed (default: 314159).")
    p.add_argument("--config", default=None, help="JSON file of configuration values.")
    p.add_argument("--out-csv", default=None, help="Optional path to write the result CSV.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress.")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except (ConfigurationError, OSError, json.JSONDecodeError) as e:
        sys.stderr.write(f"[copula_sensitivity.demo] Configuration error: {e}\n")
        return 2

    spec = get_dataset(args.dataset)
    try:
        if args.csv:
            records = LongitudinalRecords.from_csv(args.csv)
        elif args.excel:
            records = LongitudinalRecords.from_excel(args.excel, sheet_name=args.sheet)
        else:
            df = simulate_longitudinal_records(
                spec,
                family=args.true_family,
                params=args.true_params,
                n_subjects=args.n_subjects,
                max_span=config.max_span,
                seed=config.seed,
            )
            records = LongitudinalRecords(df)
    except (FileNotFoundError, ValueError) as e:
        # Provide a clear message and a non-zero exit code.
        sys.stderr.write(f"[copula_sensitivity.demo] Error: {e}\n")
        return 2

    if args.infer_dataset:
        spec = dataset_from_records(records, args.dataset)

    result = run_analysis([(records, spec)], config)
    print(format_summary(result))

    if args.out_csv:
        try:
            write_csv(result.results, args.out_csv)
            print(f"\nWrote result CSV → {args.out_csv}")
        except OSError as e:
            sys.stderr.write(f"[copula_sensitivity.demo] Failed to write CSV: {e}\n")
            return 3

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
