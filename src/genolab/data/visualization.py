"""Visualization utilities for expression and genomic data analysis.

This module provides functions to create and save interactive visualizations
of per-gene test results, expression values and gene models with binding
sites using Plotly. Every function returns the figure and, if a path is given,
saves it as HTML or as a static image (the latter needs kaleido).
"""

from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from sklearn.decomposition import PCA

from genolab.components.expression_set import ExpressionSet
from genolab.components.gene_model import GeneModel
from genolab.components.genomic_ranges import GenomicRanges

SIGNIFICANCE_COLORS: Dict[str, str] = {
    "Up": "#8B3A3A",
    "Down": "#4A708B",
    "Not significant": "#808080",
}
IMAGE_SUFFIXES = (".pdf", ".png", ".svg")


def save_figure(fig: go.Figure, save_path: Path) -> None:
    """Save a figure, the format depends on the file name extension.

    Raises:
        ValueError: If save_path has an extension other than .html,
            .pdf, .png or .svg.
    """
    save_path.parent.mkdir(exist_ok=True, parents=True)
    if save_path.suffix == ".html":
        fig.write_html(str(save_path))
    elif save_path.suffix in IMAGE_SUFFIXES:
        fig.write_image(str(save_path))
    else:
        raise ValueError(
            f"Save file had suffix {save_path.suffix}, "
            f"but only .html and {', '.join(IMAGE_SUFFIXES)} are possible."
        )


def _significance(
    results: pd.DataFrame, lfc_col: str, p_col: str, p_th: float, lfc_th: float
) -> pd.Series:
    significant = (results[p_col] < p_th) & (results[lfc_col].abs() > lfc_th)
    return pd.Series(
        np.select(
            [significant & (results[lfc_col] > 0), significant & (results[lfc_col] < 0)],
            ["Up", "Down"],
            default="Not significant",
        ),
        index=results.index,
        name="significance",
    )


def volcano_plot(
    results: pd.DataFrame,
    lfc_col: str = "dm",
    p_col: str = "pvalue",
    p_th: float = 0.05,
    lfc_th: float = 1.0,
    label_col: Optional[str] = None,
    title: str = "",
    save_path: Optional[Path] = None,
) -> go.Figure:
    """Create a volcano plot: fold change against -log10 p-value.

    Args:
        results: Per-feature results, e.g. from `differential_table`.
        lfc_col: Column with (log) fold changes.
        p_col: Column with p-values (raw or adjusted).
        p_th: Significance threshold, drawn as a horizontal line.
        lfc_th: Fold change threshold, drawn as vertical lines.
        label_col: Column used as hover label, the index if None.
        title: Title for the plot.
        save_path: Optional path where the plot will be saved.

    Returns:
        go.Figure: Plotly scatter figure colored by significance.
    """
    plot_df = results.dropna(subset=[lfc_col, p_col]).copy()
    plot_df["neg_log10_p"] = -np.log10(plot_df[p_col].clip(lower=np.finfo(float).tiny))
    plot_df["significance"] = _significance(plot_df, lfc_col, p_col, p_th, lfc_th)
    plot_df["label"] = (
        plot_df[label_col].astype(str) if label_col else plot_df.index.astype(str)
    )

    fig = px.scatter(
        plot_df,
        x=lfc_col,
        y="neg_log10_p",
        color="significance",
        color_discrete_map=SIGNIFICANCE_COLORS,
        hover_name="label",
        labels={"neg_log10_p": f"-log10({p_col})", lfc_col: "log2 fold change"},
        title=title,
    )
    fig.add_hline(y=-np.log10(p_th), line_dash="dash", line_color="black")
    if lfc_th > 0:
        for x in (-lfc_th, lfc_th):
            fig.add_vline(x=x, line_dash="dash", line_color="black")

    if save_path is not None:
        save_figure(fig, save_path)
    return fig


def pvalue_histogram(
    pvalues: Union[pd.Series, np.ndarray, Iterable[float]],
    bins: int = 20,
    title: str = "",
    save_path: Optional[Path] = None,
) -> go.Figure:
    """Histogram of p-values with the count expected under the global null.

    A flat histogram means no signal; a peak close to zero over the flat
    null level indicates differentially expressed features.
    """
    p = np.asarray(list(pvalues), dtype=float)
    p = p[~np.isnan(p)]

    fig = go.Figure(
        go.Histogram(
            x=p,
            xbins=dict(start=0, end=1, size=1 / bins),
            marker_color=SIGNIFICANCE_COLORS["Down"],
            name="p-values",
        )
    )
    fig.add_hline(
        y=len(p) / bins,
        line_dash="dash",
        line_color="black",
        annotation_text="uniform (null) level",
    )
    fig.update_layout(title=title, xaxis_title="p-value", yaxis_title="Count")

    if save_path is not None:
        save_figure(fig, save_path)
    return fig


def ma_plot(
    results: pd.DataFrame,
    mean_col: Optional[str] = None,
    lfc_col: str = "dm",
    p_col: str = "pvalue",
    p_th: float = 0.05,
    title: str = "",
    save_path: Optional[Path] = None,
) -> go.Figure:
    """Mean-difference (MA) plot.

    Args:
        results: Per-feature results.
        mean_col: Column with average expression. If None, the mean of
            `mean_test` and `mean_control` is used.
        lfc_col: Column with (log) fold changes.
        p_col: Column with p-values used to highlight significant features.
        p_th: Significance threshold.
    """
    plot_df = results.dropna(subset=[lfc_col]).copy()
    if mean_col is None:
        mean_col = "average_expression"
        plot_df[mean_col] = (plot_df["mean_test"] + plot_df["mean_control"]) / 2
    plot_df["significance"] = _significance(plot_df, lfc_col, p_col, p_th, 0.0)
    plot_df["label"] = plot_df.index.astype(str)

    fig = px.scatter(
        plot_df,
        x=mean_col,
        y=lfc_col,
        color="significance",
        color_discrete_map=SIGNIFICANCE_COLORS,
        hover_name="label",
        labels={mean_col: "A (average expression)", lfc_col: "M (log2 fold change)"},
        title=title,
    )
    fig.add_hline(y=0, line_color="black")

    if save_path is not None:
        save_figure(fig, save_path)
    return fig


def expression_boxplot(
    eset: ExpressionSet,
    feature: str,
    factor: str,
    color_discrete_map: Optional[Dict[str, str]] = None,
    save_path: Optional[Path] = None,
) -> go.Figure:
    """Expression of one feature across the groups defined by `factor`."""
    if feature not in eset.feature_names:
        raise KeyError(f'Unknown feature "{feature}"')

    plot_df = pd.DataFrame(
        {
            "expression": eset.exprs.loc[feature],
            factor: eset.group_labels(factor).astype(str),
        }
    )
    fig = px.box(
        plot_df,
        x=factor,
        y="expression",
        color=factor,
        points="all",
        hover_name=plot_df.index,
        color_discrete_map=color_discrete_map,
        title=feature,
    )

    if save_path is not None:
        save_figure(fig, save_path)
    return fig


def pca_plot(
    eset: ExpressionSet,
    factor: str,
    color_discrete_map: Optional[Dict[str, str]] = None,
    title: str = "",
    save_path: Optional[Path] = None,
) -> go.Figure:
    """Samples projected on the first two principal components."""
    exprs = eset.exprs.dropna()
    pca = PCA(n_components=2, random_state=8080)
    components = pca.fit_transform(exprs.transpose())
    ratios = pca.explained_variance_ratio_ * 100

    fig = px.scatter(
        components,
        x=0,
        y=1,
        labels={"0": f"PC 1 ({ratios[0]:.2f}%)", "1": f"PC 2 ({ratios[1]:.2f}%)"},
        color=eset.group_labels(factor).loc[exprs.columns].astype(str).to_numpy(),
        color_discrete_map=color_discrete_map,
        hover_name=exprs.columns,
        title=title,
    )

    if save_path is not None:
        save_figure(fig, save_path)
    return fig


def gene_model_plot(
    gene_model: GeneModel,
    seqname: str,
    start: int,
    end: int,
    peaks: Optional[GenomicRanges] = None,
    peak_score_col: Optional[str] = None,
    title: str = "",
    save_path: Optional[Path] = None,
) -> go.Figure:
    """Interactive view of transcripts and binding sites in a region.

    Every transcript overlapping seqname:start-end gets its own track, with
    introns drawn as thin lines and exons as boxes. Binding sites (e.g.
    ChIP-seq peaks) overlapping the region are drawn on an extra bottom
    track.

    Args:
        gene_model: Gene models to draw.
        seqname: Sequence (chromosome) of the region.
        start: First base of the region (1-based).
        end: Last base of the region.
        peaks: Optional binding sites.
        peak_score_col: Optional metadata column of `peaks` shown on hover.
        title: Title for the plot.
        save_path: Optional path where the plot will be saved.
    """
    region = GenomicRanges([seqname], [start], [end])
    transcripts = gene_model.transcripts().subset_by_overlaps(region)
    tx_df = transcripts.to_dataframe()

    fig = go.Figure()
    tick_vals, tick_text = [], []

    for track, (tx_id, tx) in enumerate(tx_df.iterrows(), start=1):
        arrow = "→" if tx["strand"] == "+" else ("←" if tx["strand"] == "-" else "")
        gene_label = tx.get("gene_name", np.nan)
        if pd.isna(gene_label):
            gene_label = tx["gene_id"]
        label = f"{gene_label} ({tx_id}) {arrow}"
        tick_vals.append(track)
        tick_text.append(label)

        # 1. Intron line spanning the transcript
        fig.add_trace(
            go.Scatter(
                x=[tx["start"], tx["end"]],
                y=[track, track],
                mode="lines",
                line=dict(color="black", width=1),
                hoverinfo="skip",
                showlegend=False,
            )
        )

        # 2. Exon boxes
        exons_df = gene_model.exons_by_transcript(tx_id).to_dataframe()
        for _, exon in exons_df.iterrows():
            fig.add_shape(
                type="rect",
                x0=exon["start"],
                x1=exon["end"],
                y0=track - 0.3,
                y1=track + 0.3,
                fillcolor=SIGNIFICANCE_COLORS["Down"],
                line=dict(width=0),
            )
        fig.add_trace(
            go.Scatter(
                x=(exons_df["start"] + exons_df["end"]) / 2,
                y=[track] * len(exons_df),
                mode="markers",
                marker=dict(size=1, opacity=0),
                hovertext=[
                    f"{tx_id} exon {i + 1}: {e['seqnames']}:{e['start']}-{e['end']}"
                    for i, (_, e) in enumerate(exons_df.iterrows())
                ],
                hoverinfo="text",
                showlegend=False,
            )
        )

    # 3. Binding sites track
    if peaks is not None:
        peaks_df = peaks.subset_by_overlaps(region, ignore_strand=True).to_dataframe()
        tick_vals.append(0)
        tick_text.append("binding sites")
        for _, peak in peaks_df.iterrows():
            fig.add_shape(
                type="rect",
                x0=peak["start"],
                x1=peak["end"],
                y0=-0.3,
                y1=0.3,
                fillcolor=SIGNIFICANCE_COLORS["Up"],
                line=dict(width=0),
            )
        hover_text = [
            f"{p['seqnames']}:{p['start']}-{p['end']}"
            + (f" {peak_score_col}={p[peak_score_col]}" if peak_score_col else "")
            for _, p in peaks_df.iterrows()
        ]
        fig.add_trace(
            go.Scatter(
                x=(peaks_df["start"] + peaks_df["end"]) / 2,
                y=[0] * len(peaks_df),
                mode="markers",
                marker=dict(size=1, opacity=0),
                hovertext=hover_text,
                hoverinfo="text",
                showlegend=False,
            )
        )

    fig.update_layout(
        title=title or f"{seqname}:{start}-{end}",
        xaxis=dict(title=seqname, range=[start, end]),
        yaxis=dict(tickvals=tick_vals, ticktext=tick_text, range=[-1, len(tx_df) + 1]),
        plot_bgcolor="white",
    )

    if save_path is not None:
        save_figure(fig, save_path)
    return fig
