"""
Conversions between pandas/genolab objects and R objects, plus the few
AnnotationDbi and GenomicRanges helpers the R backend needs.
"""

import re
from pathlib import Path
from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd
import rpy2.robjects as ro
from rpy2.rinterface_lib.sexp import NACharacterType
from rpy2.robjects import pandas2ri
from rpy2.robjects.conversion import localconverter
from rpy2.robjects.packages import importr

from genolab.components.genomic_ranges import GenomicRanges
from genolab.r_wrappers.orgdb import OrgDB

r_annotation_dbi = importr("AnnotationDbi")
r_genomic_ranges = importr("GenomicRanges")


def rpy2_df_to_pd_df(rpy2_df: Any) -> pd.DataFrame:
    """R data.frame (or anything `as.data.frame` accepts) to pandas."""
    with localconverter(ro.default_converter):
        rpy2_df = ro.r("as.data.frame")(rpy2_df)

    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.rpy2py(rpy2_df)


def pd_df_to_rpy2_df(pd_df: pd.DataFrame) -> ro.DataFrame:
    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.py2rpy(pd_df)


def pd_df_to_r_matrix(pd_df: pd.DataFrame) -> Any:
    """
    Converts a numeric pandas DataFrame into an R matrix, keeping row and
    column names (e.g. an expression matrix for limma).
    """
    r_matrix = ro.r.matrix(
        ro.FloatVector(pd_df.to_numpy(dtype=float).ravel(order="F")),
        nrow=pd_df.shape[0],
        ncol=pd_df.shape[1],
    )
    r_matrix.rownames = ro.StrVector(pd_df.index.astype(str))
    r_matrix.colnames = ro.StrVector(pd_df.columns.astype(str))
    return r_matrix


def read_rds(load_path: Path) -> Any:
    """
    Load an R object serialised with saveRDS.
    """
    if load_path.suffix.upper() != ".RDS":
        raise ValueError(f"Expected an .RDS file, got {load_path.name}")

    return ro.r.readRDS(str(load_path))


def map_gene_id(
    genes: Iterable[str],
    org_db: OrgDB,
    from_type: str = "ENSEMBL",
    to_type: str = "ENTREZID",
    multiple_values: str = "list",
) -> pd.Series:
    """AnnotationDbi `mapIds` on an OrgDb, the R twin of `AnnotationDB.map_ids`.

    Args:
        genes: Keys to translate.
        org_db: Organism annotation database.
        from_type: Keytype of `genes`, e.g. "ENSEMBL" or "SYMBOL".
        to_type: Column to translate to.
        multiple_values: One of "first", "list", "filter" or "asNA".

    Returns:
        Series indexed by `genes`, unmapped keys as NaN and multiple values
        joined by "/" when `multiple_values="list"`.

    References:
        https://rdrr.io/bioc/AnnotationDbi/man/AnnotationDb-class.html
    """
    genes = list(map(str, genes))

    # 0. Check arguments
    allowed_types = list(ro.r("columns")(org_db.db))
    if from_type not in allowed_types:
        raise ValueError(f'from_type "{from_type}" not allowed')
    if to_type not in allowed_types:
        raise ValueError(f'to_type "{to_type}" not allowed')

    # 1. Annotate all genes
    ann_genes = list(
        r_annotation_dbi.mapIds(
            org_db.db,
            keys=ro.StrVector(genes),
            column=to_type,
            keytype=from_type,
            multiVals=multiple_values,
        )
    )

    # 2. Process mapped results
    if multiple_values == "list":
        ann_genes = [
            "/".join(x) if not isinstance(x[0], NACharacterType) else np.nan
            for x in ann_genes
        ]
    else:
        ann_genes = [
            x if not isinstance(x, NACharacterType) else np.nan for x in ann_genes
        ]

    # 3. Missing values marked as `np.nan`
    return pd.Series(ann_genes, index=pd.Index(genes, name=from_type), name=to_type)


def get_design_matrix(
    targets: pd.DataFrame,
    factors: Iterable[str],
    id_col: Optional[str] = None,
    **kwargs,
) -> Any:
    """
    Get design matrix (no intercept) for differential analysis.

    Args:
        targets: Samples annotations.
        factors: factors used for differential analysis. Must be
            columns available in "targets".
        id_col: Column containing sample ids, the index is used if None.

    Returns:
        R model matrix with one column per level of the factors, named by the
        level only (e.g. "tumor" instead of "sample_typetumor").
    """
    factors = list(dict.fromkeys(factors))
    if len(missing := set(factors).difference(targets.columns)) > 0:
        raise ValueError(f"Factors not found in targets: {sorted(missing)}")

    # 0. All factors as characters, so that they are converted to R factors
    targets = targets.copy()
    for factor in factors:
        targets[factor] = targets[factor].astype(str)
    rpy2_targets = pd_df_to_rpy2_df(targets)

    # 1. Build design matrix
    fmla = ro.r(f"~ 0 + {'+'.join(factors)}")
    design_matrix = ro.r("model.matrix")(
        ro.r("terms")(fmla, keep_order=True), data=rpy2_targets, **kwargs
    )

    cleaned_colnames = []
    for colname in design_matrix.colnames:
        for factor in factors:
            colname = re.sub("^" + factor, "", colname)
        cleaned_colnames.append(colname)
    design_matrix.colnames = ro.StrVector(cleaned_colnames)

    design_matrix.rownames = ro.StrVector(
        targets[id_col].astype(str) if id_col is not None else targets.index.astype(str)
    )

    return design_matrix


def make_granges_from_dataframe(df: Any, **kwargs) -> Any:
    """
    R GRanges from a table with seqnames/start/end(/strand) columns.

    Args:
        df: An R data.frame, a pandas DataFrame or a GenomicRanges object.
        **kwargs: Passed on to `makeGRangesFromDataFrame`, e.g.
            `keep_extra_columns=True`.

    References:
        https://rdrr.io/bioc/GenomicRanges/man/makeGRangesFromDataFrame.html
    """
    if isinstance(df, GenomicRanges):
        df = df.to_dataframe().drop(columns="width")
    df = pd_df_to_rpy2_df(df) if isinstance(df, pd.DataFrame) else df
    return r_genomic_ranges.makeGRangesFromDataFrame(df, **kwargs)


def granges_to_genomic_ranges(granges_obj: Any) -> GenomicRanges:
    """Converts an R GRanges object into a GenomicRanges object."""
    return GenomicRanges.from_dataframe(
        rpy2_df_to_pd_df(granges_obj), keep_extra_columns=True
    )


def homogenize_seqlevels_style(granges_obj: Any, annotations: Any) -> Any:
    """
    R counterpart of `GenomicRanges.set_seqlevels_style`: renames the
    chromosomes of `granges_obj` to the style of `annotations` and drops
    ranges on chromosomes the annotations do not have.
    """
    return ro.r(
        """
        library(GenomicRanges)
        f <- function(x, annotations) {
            seqlevelsStyle(x) = seqlevelsStyle(annotations)
            seqlevels(x, pruning.mode="tidy") = seqlevels(annotations)
            seqinfo(x) = seqinfo(annotations)
            return(x)
        }
        """
    )(granges_obj, annotations)
