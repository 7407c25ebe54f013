import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from rich.console import Console

from genolab.components.np_encoder import NpEncoder
from genolab.data.utils import filter_df, select_data_classes
from genolab.utils import print_table, run_func_dict, setup_logging


def _divide(a, b):
    return a / b


def test_run_func_dict():
    assert run_func_dict({"a": 6, "b": 3}, _divide) == 2


def test_run_func_dict_logs_errors(caplog):
    with caplog.at_level(logging.ERROR):
        assert run_func_dict({"a": 1, "b": 0}, _divide) is None
    assert "_divide" in caplog.text


def test_setup_logging():
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    setup_logging("INFO")


def test_print_table():
    console = Console(record=True, width=120)
    df = pd.DataFrame(
        {"pvalue": [0.000123456, 0.5], "SYMBOL": ["TP53", "EGFR"]},
        index=pd.Index(["probe_0", "probe_1"], name="PROBEID"),
    )
    print_table(df, title="Top genes", max_rows=1, console=console)

    output = console.export_text()
    assert "Top genes" in output
    assert "0.000123" in output
    assert "TP53" in output
    assert "EGFR" not in output


def test_np_encoder():
    encoded = json.dumps(
        {
            "n": np.int64(3),
            "pi0": np.float64(0.8),
            "missing": np.float64("nan"),
            "flag": np.bool_(True),
            "values": np.array([1, 2]),
            "counts": pd.Series({"up": 2}),
            "path": Path("results"),
        },
        cls=NpEncoder,
    )
    assert json.loads(encoded) == {
        "n": 3,
        "pi0": 0.8,
        "missing": None,
        "flag": True,
        "values": [1, 2],
        "counts": {"up": 2},
        "path": "results",
    }

    with pytest.raises(TypeError):
        json.dumps({"x": object()}, cls=NpEncoder)


def test_filter_df(eset):
    filtered = filter_df(eset.pheno_data, {"group": ["control"], "sex": ["F", "M"]})
    assert list(filtered.index) == ["S5", "S6", "S7", "S8"]
    assert filter_df(eset.pheno_data, {}).equals(eset.pheno_data)
    with pytest.raises(ValueError):
        filter_df(eset.pheno_data, {"tissue": ["liver"]})


def test_select_data_classes(eset):
    treated, control = select_data_classes(
        eset.pheno_data, [{"group": ["treated"]}, {"group": ["control"]}]
    )
    assert list(treated) == ["S1", "S2", "S3", "S4"]
    assert list(control) == ["S5", "S6", "S7", "S8"]

    with pytest.raises(ValueError):
        select_data_classes(eset.pheno_data, [{"group": ["treated"]}, {"sex": ["M"]}])
