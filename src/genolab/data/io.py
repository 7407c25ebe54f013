"""Readers and writers for the file formats used in the course.

Expression data come as delimited matrices or as GEO series matrix files,
gene models as GTF files and binding sites (ChIP-seq peaks) as BED or
narrowPeak files.
"""

import csv
import gzip
import io
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from genolab.components.expression_set import ExpressionSet
from genolab.components.genomic_ranges import GenomicRanges

GTF_COLUMNS = (
    "seqname",
    "source",
    "feature",
    "start",
    "end",
    "score",
    "strand",
    "frame",
    "attribute",
)
BED_COLUMNS = (
    "chrom",
    "chromStart",
    "chromEnd",
    "name",
    "score",
    "strand",
    "thickStart",
    "thickEnd",
    "itemRgb",
    "blockCount",
    "blockSizes",
    "blockStarts",
)
NARROW_PEAK_COLUMNS = (
    *BED_COLUMNS[:6],
    "signalValue",
    "pValue",
    "qValue",
    "peak",
)
GTF_ATTRIBUTE_PATTERN = re.compile(r'\s*([^\s";]+)\s+"?([^";]*)"?\s*;?')


def _sep_from_suffix(path: Path) -> str:
    suffixes = [s for s in path.suffixes if s != ".gz"]
    return "\t" if suffixes and suffixes[-1] in (".tsv", ".txt", ".tab") else ","


def _open_text(path: Path):
    if path.suffix == ".gz":
        return gzip.open(path, "rt")
    return path.open("r")


def read_expression_set(
    exprs_path: Path,
    pheno_path: Optional[Path] = None,
    feature_path: Optional[Path] = None,
    sep: Optional[str] = None,
    annotation: str = "",
) -> ExpressionSet:
    """Build an expression set from delimited files.

    The first column of every file holds the row labels: feature names for
    the expression matrix and the feature table, sample names for the
    phenotype table. Only samples (and features) present in both the matrix
    and the metadata are kept.

    Args:
        exprs_path: Features x samples matrix.
        pheno_path: Optional samples x variables table.
        feature_path: Optional features x annotations table.
        sep: Column separator, inferred from the file suffix if None
            (tab for .tsv/.txt/.tab, comma otherwise).
        annotation: Free text stored in the expression set.

    Returns:
        ExpressionSet: The aligned expression set.
    """

    def read(path: Path) -> pd.DataFrame:
        return pd.read_csv(path, sep=sep or _sep_from_suffix(path), index_col=0)

    exprs = read(exprs_path)
    exprs.index = exprs.index.astype(str)
    exprs.columns = exprs.columns.astype(str)

    pheno_data = None
    if pheno_path is not None:
        pheno_data = read(pheno_path)
        pheno_data.index = pheno_data.index.astype(str)
        common_samples = exprs.columns.intersection(pheno_data.index, sort=False)
        if len(dropped := exprs.columns.symmetric_difference(pheno_data.index)) > 0:
            logging.warning(
                f"Dropping {len(dropped)} samples not present in both the matrix "
                f"and the phenotype table: {list(dropped[:5])}"
            )
        exprs = exprs.loc[:, common_samples]
        pheno_data = pheno_data.loc[common_samples]

    feature_data = None
    if feature_path is not None:
        feature_data = read(feature_path)
        feature_data.index = feature_data.index.astype(str)
        common_features = exprs.index.intersection(feature_data.index, sort=False)
        if len(common_features) < len(exprs):
            logging.warning(
                f"Dropping {len(exprs) - len(common_features)} features without "
                "annotation."
            )
        exprs = exprs.loc[common_features]
        feature_data = feature_data.loc[common_features]

    return ExpressionSet(
        exprs=exprs,
        pheno_data=pheno_data,
        feature_data=feature_data,
        annotation=annotation,
    )


def _split_geo_line(line: str) -> List[str]:
    return next(csv.reader([line.rstrip("\n")], delimiter="\t", quotechar='"'))


def read_geo_series_matrix(path: Path) -> ExpressionSet:
    """Parse a GEO series matrix file (``GSExxx_series_matrix.txt[.gz]``).

    `!Sample_*` lines become phenotype columns. Characteristics of the form
    "key: value" are split into one column per key. The expression table
    between `!series_matrix_table_begin` and `!series_matrix_table_end`
    becomes the matrix, and the series title and platform are stored as
    annotation.

    Raises:
        ValueError: If the file has no expression table.
    """
    series_meta: Dict[str, List[str]] = defaultdict(list)
    sample_meta: Dict[str, List[str]] = {}
    table_lines: List[str] = []
    in_table = False
    found_table = False

    with _open_text(path) as fh:
        for line_no, line in enumerate(fh, start=1):
            if line.startswith("!series_matrix_table_begin"):
                in_table = found_table = True
                continue
            if line.startswith("!series_matrix_table_end"):
                in_table = False
                continue
            if in_table:
                table_lines.append(line)
                continue
            if not line.strip():
                continue

            fields = _split_geo_line(line)
            key, values = fields[0], fields[1:]
            if key.startswith("!Series_"):
                series_meta[key[len("!Series_") :]].extend(values)
            elif key.startswith("!Sample_"):
                key = key[len("!Sample_") :]
                if key.startswith("characteristics"):
                    # one "key: value" entry per sample, keys may vary by sample
                    for i, value in enumerate(values):
                        if ":" not in value:
                            continue
                        char_key, char_value = value.split(":", 1)
                        char_key = char_key.strip().replace(" ", "_")
                        sample_meta.setdefault(char_key, [np.nan] * len(values))
                        sample_meta[char_key][i] = char_value.strip()
                else:
                    suffix = 1
                    unique_key = key
                    while unique_key in sample_meta:
                        unique_key = f"{key}_{suffix}"
                        suffix += 1
                    sample_meta[unique_key] = values
            else:
                logging.debug(f"{path.name}:{line_no}: ignoring line {key}")

    if not found_table:
        raise ValueError(f"{path}: no !series_matrix_table_begin section found")

    exprs = pd.read_csv(
        io.StringIO("".join(table_lines)),
        sep="\t",
        index_col=0,
        na_values=["null", "NA", ""],
    )
    exprs.index = exprs.index.astype(str)
    exprs.columns = exprs.columns.astype(str)

    sample_meta = {k: v for k, v in sample_meta.items() if len(v) == exprs.shape[1]}
    pheno_data = pd.DataFrame(
        sample_meta,
        index=pd.Index(sample_meta.get("geo_accession", list(exprs.columns))),
    )

    annotation = "; ".join(
        f"{k}: {' '.join(series_meta[k])}"
        for k in ("geo_accession", "title", "platform_id")
        if k in series_meta
    )
    return ExpressionSet(exprs=exprs, pheno_data=pheno_data, annotation=annotation)


def parse_gtf_attributes(attributes: str) -> Dict[str, str]:
    """Parse the 9th GTF column (``key "value"; key "value";``)."""
    parsed = {}
    for key, value in GTF_ATTRIBUTE_PATTERN.findall(attributes):
        # repeated keys (e.g. "tag") keep the first value
        parsed.setdefault(key, value)
    return parsed


def read_gtf(path: Path, feature: Optional[str] = "exon") -> pd.DataFrame:
    """Read a GTF file into a table with one column per attribute.

    Args:
        path: GTF file, optionally gzipped.
        feature: Keep only rows of this feature type (e.g. "exon", "gene",
            "transcript"). All rows are kept if None.

    Returns:
        pd.DataFrame: GTF columns (without "attribute") plus the parsed
        attributes such as "gene_id" and "transcript_id".

    Raises:
        ValueError: If a line does not have 9 tab-separated columns.
    """
    gtf_df = pd.read_csv(
        path,
        sep="\t",
        comment="#",
        header=None,
        names=list(GTF_COLUMNS),
        dtype={"seqname": str},
        na_values=["."],
        keep_default_na=False,
    )
    if (bad_rows := gtf_df["attribute"].isna()).any():
        raise ValueError(
            f"{path}: expected 9 tab-separated columns in GTF record "
            f"{int(np.flatnonzero(bad_rows.to_numpy())[0]) + 1}"
        )

    if feature is not None:
        gtf_df = gtf_df[gtf_df["feature"] == feature].reset_index(drop=True)

    attributes = pd.DataFrame(
        [parse_gtf_attributes(a) for a in gtf_df["attribute"]], index=gtf_df.index
    )
    gtf_df["strand"] = gtf_df["strand"].fillna("*")
    return pd.concat([gtf_df.drop(columns="attribute"), attributes], axis=1)


def read_bed(path: Path) -> GenomicRanges:
    """Read a BED (or narrowPeak) file of regions, e.g. ChIP-seq peaks.

    BED starts are 0-based and ends exclusive, so ranges are converted to
    1-based closed coordinates. `track` and `browser` lines are skipped.
    """
    with _open_text(path) as fh:
        records = [
            line
            for line in fh
            if line.strip() and not line.startswith(("#", "track", "browser"))
        ]
    bed_df = pd.read_csv(
        io.StringIO("".join(records)), sep="\t", header=None, dtype={0: str}
    )

    column_names = (
        NARROW_PEAK_COLUMNS
        if ".narrowPeak" in path.suffixes and bed_df.shape[1] == 10
        else BED_COLUMNS
    )
    if bed_df.shape[1] > len(column_names) or bed_df.shape[1] < 3:
        raise ValueError(f"{path}: unexpected number of BED columns ({bed_df.shape[1]})")
    bed_df.columns = list(column_names[: bed_df.shape[1]])
    if "strand" in bed_df.columns:
        bed_df["strand"] = bed_df["strand"].replace({".": "*"})

    return GenomicRanges.from_dataframe(
        bed_df.reset_index(drop=True), starts_in_df_are_0based=True
    )


def write_bed(granges: GenomicRanges, path: Path) -> None:
    """Write ranges as a 6-column BED file (0-based starts)."""
    mcols = granges.mcols
    if "name" in mcols.columns:
        names = mcols["name"].astype(str).to_numpy()
    elif not isinstance(granges.names, pd.RangeIndex):
        names = granges.names.astype(str).to_numpy()
    else:
        names = ["."] * len(granges)

    bed_df = pd.DataFrame(
        {
            "chrom": granges.seqnames.to_numpy(),
            "chromStart": granges.start.to_numpy() - 1,
            "chromEnd": granges.end.to_numpy(),
            "name": names,
            "score": mcols["score"].to_numpy() if "score" in mcols.columns else 0,
            "strand": granges.strand.replace({"*": "."}).to_numpy(),
        }
    )
    path.parent.mkdir(exist_ok=True, parents=True)
    bed_df.to_csv(path, sep="\t", header=False, index=False)


def save_results(df: pd.DataFrame, save_path: Path) -> None:
    """Save a result table as .csv or .tsv, creating parent directories."""
    if save_path.suffix not in (".csv", ".tsv"):
        raise ValueError(
            f"Save file had suffix {save_path.suffix}, but only .csv and .tsv are "
            "possible."
        )
    save_path.parent.mkdir(exist_ok=True, parents=True)
    df.to_csv(save_path, sep="\t" if save_path.suffix == ".tsv" else ",")
