import json

import pandas as pd

from copula_sensitivity.demo import main

FAST_ARGS = [
    "--dataset", "dataset_3",
    "--families", "gumbel", "frank", "comonotonic",
    "--bootstrap", "0",
    "--max-span", "1",
    "--n-subjects", "120",
    "--n-jobs", "1",
    "--backend", "sequential",
]


def test_synthetic_run_writes_csv(tmp_path, capsys):
    out = tmp_path / "results.csv"
    assert main(FAST_ARGS + ["--out-csv", str(out)]) == 0
    printed = capsys.readouterr().out
    assert "Best family by AIC" in printed
    df = pd.read_csv(out)
    assert set(df["family"]) == {"gumbel", "frank", "comonotonic"}
    # 4 period pairs x 5 grouping pairs x 2 subgroups, three families each
    assert len(df) == 40 * 3


def test_csv_input(tmp_path):
    src = tmp_path / "scores.csv"
    pd.DataFrame({
        "subject_id": list(range(150)) * 2,
        "period": [2015] * 150 + [2016] * 150,
        "grouping": [3] * 150 + [4] * 150,
        "subgroup": ["ELA"] * 300,
        "score": [float(i % 37) for i in range(150)] + [float(i % 41) for i in range(150)],
    }).to_csv(src, index=False)
    out = tmp_path / "out.csv"
    code = main(["--csv", str(src), "--infer-dataset", "--families", "frank",
                 "--bootstrap", "0", "--n-jobs", "1", "--out-csv", str(out)])
    assert code == 0
    assert len(pd.read_csv(out)) == 1


def test_config_file_overrides(tmp_path, capsys):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"families": ["gumbel"], "min_sample_size": 500}))
    assert main(FAST_ARGS[:2] + ["--config", str(cfg), "--max-span", "1",
                                 "--n-subjects", "120", "--n-jobs", "1"]) == 0
    assert "No conditions had enough paired observations" in capsys.readouterr().out


def test_bad_config_exit_code(tmp_path, capsys):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"n_boot": 3}))
    assert main(["--config", str(cfg)]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_missing_input_file(tmp_path, capsys):
    assert main(["--csv", str(tmp_path / "missing.csv"), "--n-jobs", "1"]) == 2
    assert "not found" in capsys.readouterr().err
