import numpy as np
import pandas as pd
import pytest

try:
    import rpy2.robjects as ro
    from rpy2.robjects.packages import importr

    from genolab.r_wrappers.limma import limma_top_table
    from genolab.r_wrappers.orgdb import OrgDB
    from genolab.r_wrappers.utils import (
        get_design_matrix,
        granges_to_genomic_ranges,
        homogenize_seqlevels_style,
        make_granges_from_dataframe,
        map_gene_id,
        pd_df_to_r_matrix,
        read_rds,
    )
except Exception as e:  # rpy2, R or the Bioconductor packages are missing
    pytest.skip(f"R wrappers not available: {e}", allow_module_level=True)

from genolab.components.genomic_ranges import GenomicRanges
from genolab.data.stats import differential_table, row_ttests


def test_pd_df_to_r_matrix():
    df = pd.DataFrame([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]], index=["a", "b", "c"])
    r_matrix = pd_df_to_r_matrix(df)

    assert tuple(r_matrix.dim) == (3, 2)
    assert list(r_matrix.rownames) == ["a", "b", "c"]
    # R matrices are filled by column
    assert list(r_matrix) == [1.0, 3.0, 5.0, 2.0, 4.0, 6.0]


def test_get_design_matrix(eset):
    design = get_design_matrix(eset.pheno_data, ["group"])

    assert sorted(design.colnames) == ["control", "treated"]
    assert list(design.rownames) == list(eset.sample_names)
    with pytest.raises(ValueError):
        get_design_matrix(eset.pheno_data, ["tissue"])


def test_read_rds_suffix(tmp_path):
    with pytest.raises(ValueError):
        read_rds(tmp_path.joinpath("object.csv"))


def test_granges_round_trip():
    ranges = GenomicRanges(["chr1", "chr2"], [10, 100], [20, 200], ["+", "-"])
    granges = make_granges_from_dataframe(ranges)
    back = granges_to_genomic_ranges(granges)

    assert list(back.seqnames) == ["chr1", "chr2"]
    assert list(back.start) == [10, 100]
    assert list(back.strand) == ["+", "-"]


def test_limma_top_table(eset):
    results = limma_top_table(eset, "group", "treated", "control")
    ttests = row_ttests(eset.exprs, eset.group_labels("group"), "treated", "control")

    assert list(results.index) == list(eset.feature_names)
    np.testing.assert_allclose(results["dm"], ttests["dm"])
    top = results.sort_values("pvalue").index[:20]
    assert set(top) == {f"probe_{i}" for i in range(20)}

    with pytest.raises(ValueError):
        limma_top_table(eset.subset(samples=["S1", "S5", "S6"]), "group", "treated", "control")


def test_differential_table_limma(eset):
    table = differential_table(eset, "group", "treated", "control", method="limma")
    assert {"padj", "qvalue"}.issubset(table.columns)


def test_homogenize_seqlevels_style():
    peaks = make_granges_from_dataframe(
        GenomicRanges(["chr1", "chr3"], [10, 100], [20, 200])
    )
    genes = make_granges_from_dataframe(
        GenomicRanges(["1", "2"], [5, 50], [500, 600], ["+", "-"])
    )

    renamed = granges_to_genomic_ranges(homogenize_seqlevels_style(peaks, genes))
    assert list(renamed.seqnames) == ["1"]
    assert list(renamed.start) == [10]


def test_map_gene_id():
    try:
        importr("org.Hs.eg.db")
    except Exception as e:
        pytest.skip(f"org.Hs.eg.db not installed: {e}")

    org_db = OrgDB()
    org_db._db = ro.r("org.Hs.eg.db::org.Hs.eg.db")

    mapped = map_gene_id(["7157", "0"], org_db, "ENTREZID", "SYMBOL")
    assert mapped["7157"] == "TP53"
    assert pd.isna(mapped["0"])

    with pytest.raises(ValueError):
        map_gene_id(["7157"], org_db, "ENTREZID", "NOT_A_COLUMN")
