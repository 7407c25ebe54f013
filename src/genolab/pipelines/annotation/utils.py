"""
Utilities for genome annotation lookups.

This module answers the questions of the genome annotation lecture with an
annotation database (`components.annotation_db.AnnotationDB`):

1. Which symbols, names and chromosomes correspond to a list of gene ids
2. Which genes lie on a given chromosome
3. How many genes each chromosome holds
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd
import plotly.express as px

from genolab.components.annotation_db import AnnotationDB
from genolab.data.io import save_results
from genolab.data.visualization import save_figure


def annotate_genes(
    genes: Iterable[str],
    annotation_db: AnnotationDB,
    from_type: str = "ENTREZID",
    to_types: Iterable[str] = ("SYMBOL", "GENENAME", "CHR"),
) -> pd.DataFrame:
    """
    Annotation table of a list of genes.

    Args:
        genes: Gene identifiers of type `from_type`. Duplicates are dropped.
        annotation_db: Annotation database.
        from_type: Identifier type of `genes`.
        to_types: Annotations to retrieve. Several values for the same gene
            are joined by "/".

    Returns:
        A table indexed by the genes (input order), one column per annotation.
        Genes without annotation have missing values.
    """
    genes = list(dict.fromkeys(str(g) for g in genes))
    return annotation_db.annotate(
        pd.DataFrame(index=pd.Index(genes, name=from_type)),
        from_type=from_type,
        to_types=to_types,
    )


def genes_on_chromosome(
    annotation_db: AnnotationDB,
    chromosome: str,
    keytype: str = "ENTREZID",
    chr_col: str = "CHR",
) -> List[str]:
    """Genes of type `keytype` annotated to `chromosome` ("chr" prefix optional)."""
    chromosome = str(chromosome)
    chromosome = chromosome[3:] if chromosome.lower().startswith("chr") else chromosome
    return annotation_db.keys_where(chr_col, chromosome, keytype)


def genes_per_chromosome(
    annotation_db: AnnotationDB, keytype: str = "ENTREZID", chr_col: str = "CHR"
) -> pd.Series:
    """Number of distinct genes per chromosome, in karyotype order."""
    associations = (
        annotation_db.table[[keytype, chr_col]].dropna().drop_duplicates()
    )
    counts = associations.groupby(chr_col)[keytype].nunique()

    def karyotype_key(chromosome: str):
        return (0, int(chromosome), "") if chromosome.isdigit() else (1, 0, chromosome)

    return counts.loc[sorted(counts.index, key=karyotype_key)].rename("n_genes")


def annotation_pipeline(
    annotation_db: AnnotationDB,
    results_path: Path,
    exp_prefix: str,
    genes: Optional[Iterable[str]] = None,
    chromosomes: Iterable[str] = (),
    from_type: str = "ENTREZID",
    to_types: Iterable[str] = ("SYMBOL", "GENENAME", "CHR"),
    chr_col: str = "CHR",
    plots_suffix: str = ".html",
) -> pd.DataFrame:
    """
    Annotate genes and summarise an annotation database.

    Writes `{exp_prefix}_genes_per_chromosome.csv` and its bar plot and, if
    given, the annotation of `genes` and the genes on each of `chromosomes`.

    Args:
        annotation_db: Annotation database.
        results_path: Directory where results (and a plots/ subdirectory) are
            stored.
        exp_prefix: Prefix of all output file names.
        genes: Optional gene identifiers to annotate.
        chromosomes: Chromosomes whose genes are listed and annotated.
        from_type: Identifier type of `genes`.
        to_types: Annotations to retrieve.
        chr_col: Chromosome column of the annotation database.
        plots_suffix: File format of the plot.

    Returns:
        The annotation table of `genes` (empty if no genes were given).
    """
    results_path.mkdir(exist_ok=True, parents=True)
    plots_path = results_path.joinpath("plots")

    # 1. Genes per chromosome
    if chr_col in annotation_db.columns():
        counts = genes_per_chromosome(annotation_db, from_type, chr_col)
        save_results(
            counts.to_frame(),
            results_path.joinpath(f"{exp_prefix}_genes_per_chromosome.csv"),
        )
        fig = px.bar(
            counts.reset_index(),
            x=chr_col,
            y="n_genes",
            title=f"Genes per chromosome ({annotation_db.species})",
        )
        save_figure(
            fig, plots_path.joinpath(f"{exp_prefix}_genes_per_chromosome{plots_suffix}")
        )
    else:
        logging.warning(f"No {chr_col} column, skipping chromosome summary.")

    # 2. Genes of the requested chromosomes
    for chromosome in chromosomes:
        chr_genes = genes_on_chromosome(annotation_db, chromosome, from_type, chr_col)
        logging.info(f"{len(chr_genes)} genes on chromosome {chromosome}")
        save_results(
            annotate_genes(chr_genes, annotation_db, from_type, to_types),
            results_path.joinpath(f"{exp_prefix}_chr{chromosome}_genes.csv"),
        )

    # 3. Annotation of the given genes
    if genes is None:
        return pd.DataFrame(columns=list(to_types))

    genes_annotated = annotate_genes(genes, annotation_db, from_type, to_types)
    n_unmapped = int(genes_annotated.isna().all(axis=1).sum())
    if n_unmapped > 0:
        logging.warning(f"{n_unmapped} genes could not be annotated")
    save_results(
        genes_annotated, results_path.joinpath(f"{exp_prefix}_genes_annotated.csv")
    )
    return genes_annotated
