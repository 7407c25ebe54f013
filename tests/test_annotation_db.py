import numpy as np
import pandas as pd
import pytest

from genolab.components.annotation_db import AnnotationDB


def test_keytypes_and_keys(annotation_db):
    assert annotation_db.keytypes() == ["PROBEID", "ENTREZID", "SYMBOL", "GENENAME", "CHR"]
    assert annotation_db.keys("ENTREZID") == ["7157", "672", "675", "1956"]
    with pytest.raises(ValueError):
        annotation_db.keys("GO")


def test_select_keeps_input_order_and_unmapped_keys(annotation_db):
    result = annotation_db.select(
        ["probe_2", "probe_1", "probe_99"], columns=["SYMBOL"], keytype="PROBEID"
    )

    assert list(result["PROBEID"]) == ["probe_2", "probe_1", "probe_1", "probe_99"]
    assert list(result["SYMBOL"].iloc[:3]) == ["EGFR", "BRCA1", "BRCA2"]
    assert pd.isna(result["SYMBOL"].iloc[3])


def test_select_invalid_column(annotation_db):
    with pytest.raises(ValueError):
        annotation_db.select(["probe_0"], columns=["ENSEMBL"], keytype="PROBEID")


@pytest.mark.parametrize(
    "multi_vals,expected",
    [
        ("first", ["TP53", "BRCA1", np.nan]),
        ("list", ["TP53", "BRCA1/BRCA2", np.nan]),
        ("asNA", ["TP53", np.nan, np.nan]),
    ],
)
def test_map_ids_multiple_values(annotation_db, multi_vals, expected):
    mapped = annotation_db.map_ids(
        ["probe_0", "probe_1", "probe_99"], "SYMBOL", "PROBEID", multi_vals=multi_vals
    )

    assert mapped.name == "SYMBOL"
    assert list(mapped.index) == ["probe_0", "probe_1", "probe_99"]
    for value, exp in zip(mapped, expected):
        if isinstance(exp, str):
            assert value == exp
        else:
            assert pd.isna(value)


def test_map_ids_filter_drops_ambiguous_keys(annotation_db):
    mapped = annotation_db.map_ids(
        ["probe_0", "probe_1"], "SYMBOL", "PROBEID", multi_vals="filter"
    )
    assert list(mapped.index) == ["probe_0"]

    with pytest.raises(ValueError):
        annotation_db.map_ids(["probe_0"], "SYMBOL", "PROBEID", multi_vals="all")


def test_map_ids_nothing_mapped(annotation_db):
    mapped = annotation_db.map_ids(["x", "y"], "SYMBOL", "PROBEID")
    assert mapped.isna().all()
    assert len(mapped) == 2


def test_annotate(annotation_db):
    results = pd.DataFrame({"pvalue": [0.01, 0.2, 0.5]}, index=["probe_1", "probe_2", "probe_7"])
    annotated = annotation_db.annotate(
        results, from_type="PROBEID", to_types=["SYMBOL", "CHR"]
    )

    assert list(annotated.columns) == ["pvalue", "SYMBOL", "CHR"]
    assert annotated.loc["probe_1", "SYMBOL"] == "BRCA1/BRCA2"
    assert annotated.loc["probe_1", "CHR"] == "17/13"
    assert pd.isna(annotated.loc["probe_7", "SYMBOL"])

    replaced = annotation_db.annotate(
        results, from_type="PROBEID", to_types=["SYMBOL"], replace_na=True
    )
    assert replaced.loc["probe_7", "SYMBOL"] == "probe_7"


def test_annotate_unmapped_column_falls_back_to_ids(annotation_db):
    results = pd.DataFrame({"pvalue": [0.01]}, index=["unknown"])
    annotated = annotation_db.annotate(results, from_type="PROBEID", to_types=["SYMBOL"])
    assert annotated.loc["unknown", "SYMBOL"] == "unknown"


def test_filter_unique(annotation_db):
    # probe_1 is ambiguous, probe_0 and probe_3 share the same gene
    assert annotation_db.filter_unique(
        ["probe_0", "probe_1", "probe_2", "probe_3"],
        from_type="PROBEID",
        to_type="ENTREZID",
    ) == ["probe_2"]


def test_keys_where(annotation_db):
    assert annotation_db.keys_where("CHR", "17", "SYMBOL") == ["TP53", "BRCA1"]
    assert annotation_db.keys_where("CHR", ["13", "7"], "ENTREZID") == ["675", "1956"]


def test_values_are_strings():
    db = AnnotationDB(table=pd.DataFrame({"ENTREZID": [7157, 672], "CHR": ["17", None]}))
    assert db.keys("ENTREZID") == ["7157", "672"]
    assert db.map_ids([7157], "CHR", "ENTREZID").item() == "17"


def test_duplicated_columns_raise():
    table = pd.DataFrame([[1, 2]], columns=["SYMBOL", "SYMBOL"])
    with pytest.raises(ValueError):
        AnnotationDB(table=table)


def test_from_csv(tmp_path, annotation_table):
    path = tmp_path.joinpath("org.tsv")
    annotation_table.to_csv(path, sep="\t", index=False)

    db = AnnotationDB.from_csv(path, species="Homo sapiens")
    assert db.keytypes() == list(annotation_table.columns)
    assert db.map_ids(["1956"], "SYMBOL", "ENTREZID").item() == "EGFR"
