"""
Utilities to study binding sites (e.g. ChIP-seq peaks) relative to genes.

This module reproduces the peak annotation of ChIPseeker's `annotatePeak` with
the Python gene models of `components.gene_model`:

1. Every peak is assigned the nearest transcription start site (TSS)
2. The signed distance to that TSS is computed (negative upstream)
3. Peaks are classified as "Promoter", "Gene body" or "Distal intergenic"
"""

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import plotly.express as px
from pydantic import ConfigDict
from pydantic.dataclasses import dataclass

from genolab.components.gene_model import GeneModel
from genolab.components.genomic_ranges import GenomicRanges
from genolab.data.io import read_bed, save_results, write_bed
from genolab.data.visualization import gene_model_plot, save_figure

PEAK_CATEGORIES = ("Promoter", "Gene body", "Distal intergenic")
CATEGORY_COLORS = {
    "Promoter": "#8B3A3A",
    "Gene body": "#4A708B",
    "Distal intergenic": "#808080",
}


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class BindingSiteSettings:
    """
    Settings of a binding site annotation run.

    Args:
        upstream: Bases upstream of the TSS included in the promoter.
        downstream: Bases downstream of the TSS included in the promoter.
        n_gene_plots: Number of genes (those with most peaks) drawn with their
            binding sites.
        plots_suffix: File format of the plots.
    """

    upstream: int = 3000
    downstream: int = 3000
    n_gene_plots: int = 5
    plots_suffix: str = ".html"

    def __post_init__(self) -> None:
        if self.upstream < 0 or self.downstream < 0:
            raise ValueError("upstream and downstream must be non-negative")
        if self.n_gene_plots < 0:
            raise ValueError("n_gene_plots must be non-negative")


def _match_seqlevels_style(peaks: GenomicRanges, gene_model: GeneModel) -> GenomicRanges:
    peaks_style = peaks.seqlevels_style()
    genes_style = gene_model.exons.seqlevels_style()
    known = {peaks_style, genes_style} <= {"UCSC", "NCBI"}
    if peaks_style == genes_style or not known:
        return peaks

    logging.info(f"Renaming peak sequences from {peaks_style} to {genes_style} style")
    return peaks.set_seqlevels_style(genes_style)


def signed_distance_to_tss(
    peak_starts: np.ndarray,
    peak_ends: np.ndarray,
    tss: np.ndarray,
    minus_strand: np.ndarray,
) -> np.ndarray:
    """
    Distance from a TSS to a peak, in the direction of transcription.

    Negative values are upstream of the TSS and positive ones downstream;
    peaks containing the TSS are at distance 0.
    """
    plus_distance = np.where(peak_ends < tss, peak_ends - tss, peak_starts - tss)
    minus_distance = np.where(peak_starts > tss, tss - peak_starts, tss - peak_ends)
    distance = np.where(minus_strand, minus_distance, plus_distance)
    return np.where((peak_starts <= tss) & (peak_ends >= tss), 0, distance)


def annotate_peaks(
    peaks: GenomicRanges,
    gene_model: GeneModel,
    upstream: int = 3000,
    downstream: int = 3000,
) -> pd.DataFrame:
    """
    Annotate every peak with its nearest gene and genomic category.

    Args:
        peaks: Binding sites. Their strand is ignored.
        gene_model: Gene models providing TSSs and gene bodies.
        upstream: Bases upstream of the TSS considered promoter.
        downstream: Bases downstream of the TSS considered promoter.

    Returns:
        The peaks as a table with the added columns `transcript_id`,
        `gene_id`, `gene_name` (if available), `distance_to_tss` and
        `annotation`. Peaks on sequences without any gene have missing gene
        columns and are "Distal intergenic".
    """
    peaks = _match_seqlevels_style(peaks, gene_model)
    peaks_df = peaks.to_dataframe()
    tss = gene_model.tss()
    tss_df = tss.to_dataframe()

    # 1. Nearest TSS
    hits = peaks.distance_to_nearest(tss, ignore_strand=True)
    query_hits = hits["query_hits"].to_numpy()
    subject_hits = hits["subject_hits"].to_numpy()

    annotated = peaks_df.copy()
    annotated["transcript_id"] = np.full(len(annotated), np.nan, dtype=object)
    annotated["gene_id"] = np.full(len(annotated), np.nan, dtype=object)
    annotated["distance_to_tss"] = np.nan
    annotated.iloc[query_hits, annotated.columns.get_loc("transcript_id")] = (
        tss_df.index.to_numpy()[subject_hits]
    )
    annotated.iloc[query_hits, annotated.columns.get_loc("gene_id")] = tss_df[
        "gene_id"
    ].to_numpy()[subject_hits]
    if "gene_name" in tss_df.columns:
        annotated["gene_name"] = np.full(len(annotated), np.nan, dtype=object)
        annotated.iloc[query_hits, annotated.columns.get_loc("gene_name")] = tss_df[
            "gene_name"
        ].to_numpy()[subject_hits]

    # 2. Signed distance to TSS
    annotated.iloc[query_hits, annotated.columns.get_loc("distance_to_tss")] = (
        signed_distance_to_tss(
            peaks_df["start"].to_numpy()[query_hits],
            peaks_df["end"].to_numpy()[query_hits],
            tss_df["start"].to_numpy()[subject_hits],
            (tss_df["strand"] == "-").to_numpy()[subject_hits],
        )
    )

    # 3. Genomic category
    distance = annotated["distance_to_tss"].to_numpy()
    in_promoter = (distance >= -upstream) & (distance <= downstream)
    in_gene = peaks.overlaps_any(gene_model.genes(), ignore_strand=True)
    annotated["annotation"] = np.select(
        [in_promoter, in_gene], list(PEAK_CATEGORIES[:2]), default=PEAK_CATEGORIES[2]
    )

    return annotated


def peaks_in_promoters(
    peaks: GenomicRanges,
    gene_model: GeneModel,
    upstream: int = 3000,
    downstream: int = 3000,
) -> GenomicRanges:
    """Peaks overlapping the promoter of any transcript (strand ignored)."""
    peaks = _match_seqlevels_style(peaks, gene_model)
    promoters = gene_model.promoters(upstream=upstream, downstream=downstream)
    return peaks.subset_by_overlaps(promoters, ignore_strand=True)


def annotation_summary(annotated: pd.DataFrame) -> pd.DataFrame:
    """Number and percentage of peaks per genomic category."""
    counts = (
        annotated["annotation"]
        .value_counts()
        .reindex(list(PEAK_CATEGORIES), fill_value=0)
        .rename("n_peaks")
    )
    summary = counts.to_frame()
    summary["percentage"] = (
        100 * summary["n_peaks"] / summary["n_peaks"].sum() if len(annotated) else 0.0
    )
    summary.index.name = "annotation"
    return summary


def binding_site_pipeline(
    peaks_path: Path,
    gtf_path: Path,
    results_path: Path,
    plots_path: Path,
    exp_prefix: str,
    settings: Optional[BindingSiteSettings] = None,
) -> pd.DataFrame:
    """
    Annotate the binding sites of a BED/narrowPeak file with the genes of a
    GTF file.

    Writes to `results_path`:
        - `{exp_prefix}_peaks_annotated.csv`: every peak with nearest gene,
          distance to TSS and category
        - `{exp_prefix}_annotation_summary.csv`: peaks per category
        - `{exp_prefix}_promoter_peaks.bed`: peaks in promoters
    and to `plots_path` the category bar plot, the histogram of distances to
    the TSS and a gene model plot for the genes with most peaks.

    Args:
        peaks_path: BED or narrowPeak file of binding sites.
        gtf_path: GTF file with exon records.
        results_path: Directory where tables are stored.
        plots_path: Directory where plots are stored.
        exp_prefix: Prefix of all output file names.
        settings: Promoter window and plotting options.

    Returns:
        The annotated peaks.
    """
    settings = settings if settings is not None else BindingSiteSettings()
    results_path.mkdir(exist_ok=True, parents=True)
    plots_path.mkdir(exist_ok=True, parents=True)

    # 1. Load data
    peaks = read_bed(peaks_path)
    gene_model = GeneModel.from_gtf(gtf_path)
    logging.info(f"[{exp_prefix}] {len(peaks)} peaks, {gene_model}")

    # 2. Annotate peaks
    annotated = annotate_peaks(
        peaks, gene_model, upstream=settings.upstream, downstream=settings.downstream
    )
    save_results(annotated, results_path.joinpath(f"{exp_prefix}_peaks_annotated.csv"))

    summary = annotation_summary(annotated)
    save_results(summary, results_path.joinpath(f"{exp_prefix}_annotation_summary.csv"))
    logging.info(
        f"[{exp_prefix}] "
        + ", ".join(f"{k}: {v}" for k, v in summary["n_peaks"].items())
    )

    promoter_peaks = peaks_in_promoters(
        peaks, gene_model, upstream=settings.upstream, downstream=settings.downstream
    )
    write_bed(promoter_peaks, results_path.joinpath(f"{exp_prefix}_promoter_peaks.bed"))

    # 3. Plots
    # 3.1. Peaks per category
    fig = px.bar(
        summary.reset_index(),
        x="annotation",
        y="percentage",
        color="annotation",
        color_discrete_map=CATEGORY_COLORS,
        hover_data=["n_peaks"],
        title=(
            f"Peak annotation (promoter: -{settings.upstream}/+{settings.downstream})"
        ),
    )
    save_figure(
        fig, plots_path.joinpath(f"{exp_prefix}_annotation_bar{settings.plots_suffix}")
    )

    # 3.2. Distances to TSS
    fig = px.histogram(
        annotated.dropna(subset=["distance_to_tss"]),
        x="distance_to_tss",
        color="annotation",
        color_discrete_map=CATEGORY_COLORS,
        nbins=100,
        title="Distance of binding sites to the nearest TSS",
    )
    save_figure(
        fig, plots_path.joinpath(f"{exp_prefix}_distance_to_tss{settings.plots_suffix}")
    )

    # 3.3. Genes with most binding sites
    top_genes = (
        annotated[annotated["annotation"] != PEAK_CATEGORIES[2]]["gene_id"]
        .value_counts()
        .head(settings.n_gene_plots)
    )
    genes = gene_model.genes()
    genes_df = genes.to_dataframe()
    peaks = _match_seqlevels_style(peaks, gene_model)
    for gene_id in top_genes.index:
        gene = genes_df.loc[gene_id]
        gene_label = gene.get("gene_name", np.nan)
        gene_label = gene_id if pd.isna(gene_label) else gene_label
        gene_model_plot(
            gene_model,
            seqname=gene["seqnames"],
            start=max(1, int(gene["start"]) - settings.upstream),
            end=int(gene["end"]) + settings.upstream,
            peaks=peaks,
            title=f"{gene_label} ({top_genes[gene_id]} peaks)",
            save_path=plots_path.joinpath(
                f"{exp_prefix}_{gene_id}_gene_model{settings.plots_suffix}"
            ),
        )

    # 4. Settings used
    save_results(
        pd.DataFrame([asdict(settings)]),
        results_path.joinpath(f"{exp_prefix}_settings.csv"),
    )

    return annotated
