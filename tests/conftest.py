from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from genolab.components.annotation_db import AnnotationDB
from genolab.components.expression_set import ExpressionSet

N_FEATURES = 200
N_DE = 20

GTF_RECORDS = [
    ("1", "gene", 1000, 2300, "+", 'gene_id "G1"; gene_name "ALPHA";'),
    ("1", "exon", 1000, 1200, "+", 'gene_id "G1"; transcript_id "T1"; gene_name "ALPHA"; exon_number "1";'),
    ("1", "exon", 1500, 1700, "+", 'gene_id "G1"; transcript_id "T1"; gene_name "ALPHA"; exon_number "2";'),
    ("1", "exon", 2000, 2300, "+", 'gene_id "G1"; transcript_id "T1"; gene_name "ALPHA"; exon_number "3";'),
    ("1", "exon", 1000, 1200, "+", 'gene_id "G1"; transcript_id "T2"; gene_name "ALPHA"; exon_number "1";'),
    ("1", "exon", 2000, 2300, "+", 'gene_id "G1"; transcript_id "T2"; gene_name "ALPHA"; exon_number "2";'),
    ("1", "gene", 5000, 6000, "-", 'gene_id "G2"; gene_name "BETA";'),
    ("1", "exon", 5600, 6000, "-", 'gene_id "G2"; transcript_id "T3"; gene_name "BETA"; exon_number "1";'),
    ("1", "exon", 5000, 5200, "-", 'gene_id "G2"; transcript_id "T3"; gene_name "BETA"; exon_number "2";'),
    ("2", "exon", 3000, 4000, "+", 'gene_id "G3"; transcript_id "T4"; gene_name "GAMMA"; exon_number "1";'),
]

# 0-based BED records: chrom, start, end, name, score
BED_RECORDS = [
    ("chr1", 900, 1100, "peak1", 100),  # contains the TSS of G1
    ("chr1", 1800, 1900, "peak2", 50),  # intron of G1
    ("chr1", 6200, 6300, "peak3", 80),  # upstream of G2 (minus strand)
    ("chr1", 20000, 20100, "peak4", 10),  # far from any gene
    ("chr3", 100, 200, "peak5", 5),  # chromosome without genes
]


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(8080)


@pytest.fixture
def eset(rng) -> ExpressionSet:
    """Log2 expression of 200 probes in 4 treated and 4 control samples.

    The first 20 probes are 3 units higher in the treated samples.
    """
    samples = [f"S{i}" for i in range(1, 9)]
    probes = [f"probe_{i}" for i in range(N_FEATURES)]
    exprs = pd.DataFrame(
        rng.normal(8, 0.5, size=(N_FEATURES, len(samples))),
        index=probes,
        columns=samples,
    )
    exprs.iloc[:N_DE, :4] += 3

    pheno_data = pd.DataFrame(
        {
            "group": ["treated"] * 4 + ["control"] * 4,
            "sex": ["M", "F"] * 4,
            "pair": ["P1", "P2", "P3", "P4"] * 2,
        },
        index=samples,
    )
    feature_data = pd.DataFrame(
        {"chip_symbol": [f"GENE{i}" for i in range(N_FEATURES)]}, index=probes
    )
    return ExpressionSet(
        exprs=exprs, pheno_data=pheno_data, feature_data=feature_data, annotation="test"
    )


@pytest.fixture
def annotation_table() -> pd.DataFrame:
    """Long association table, probe_1 maps to two genes."""
    return pd.DataFrame(
        {
            "PROBEID": ["probe_0", "probe_1", "probe_1", "probe_2", "probe_3"],
            "ENTREZID": ["7157", "672", "675", "1956", "7157"],
            "SYMBOL": ["TP53", "BRCA1", "BRCA2", "EGFR", "TP53"],
            "GENENAME": [
                "tumor protein p53",
                "BRCA1 DNA repair associated",
                "BRCA2 DNA repair associated",
                "epidermal growth factor receptor",
                "tumor protein p53",
            ],
            "CHR": ["17", "17", "13", "7", "17"],
        }
    )


@pytest.fixture
def annotation_db(annotation_table) -> AnnotationDB:
    return AnnotationDB(table=annotation_table, species="Homo sapiens")


@pytest.fixture
def gtf_path(tmp_path) -> Path:
    path = tmp_path.joinpath("genes.gtf")
    lines = ["#!genome-build test"]
    for seqname, feature, start, end, strand, attributes in GTF_RECORDS:
        lines.append(
            "\t".join(
                [seqname, "test", feature, str(start), str(end), ".", strand, ".", attributes]
            )
        )
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def bed_path(tmp_path) -> Path:
    path = tmp_path.joinpath("peaks.bed")
    lines = ['track name="peaks"']
    for chrom, start, end, name, score in BED_RECORDS:
        lines.append("\t".join([chrom, str(start), str(end), name, str(score), "."]))
    path.write_text("\n".join(lines) + "\n")
    return path
