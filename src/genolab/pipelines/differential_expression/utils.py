"""
Utilities for differential gene expression analysis of microarray data.

This module provides functions to analyze differential expression between sample
groups of an expression set. It supports:

1. Running full differential expression analysis pipelines, including:
   - Per-feature tests between sample groups (Student's, Welch's and moderated
     t-tests, or limma through rpy2)
   - Multiple testing adjustment and q-values
   - Filtering and annotating significant differentially expressed genes (DEGs)

2. Generating visualizations for expression data:
   - PCA plots to visualize sample clustering
   - Volcano, MA and p-value histogram plots per contrast

3. Processing and managing differential expression results:
   - Filtering results by significance thresholds and fold change
   - Annotating genes with additional identifiers
   - Saving results and a JSON summary of DEG counts
"""

import json
import logging
from collections import defaultdict
from dataclasses import asdict
from itertools import product
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pandas as pd
from pydantic import ConfigDict
from pydantic.dataclasses import dataclass

from genolab.components.annotation_db import AnnotationDB
from genolab.components.expression_set import ExpressionSet
from genolab.components.np_encoder import NpEncoder
from genolab.data.io import save_results
from genolab.data.stats import (
    ADJUST_METHODS,
    STATSMODELS_METHODS,
    TEST_METHODS,
    differential_table,
    estimate_pi0,
    select_by_pvalue,
)
from genolab.data.visualization import (
    ma_plot,
    pca_plot,
    pvalue_histogram,
    volcano_plot,
)
from genolab.utils import print_table


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class DifferentialExpressionSettings:
    """
    Settings of a differential expression run.

    Args:
        method: Per-feature test, one of "ttest", "welch", "moderated" or
            "limma".
        adjust_method: Multiple testing method (Bioconductor or statsmodels
            name).
        p_cols: P-value columns used to filter results ("pvalue", "padj",
            "qvalue").
        p_ths: Significance thresholds.
        lfc_levels: Directions of change to report ("all", "up", "down").
        lfc_ths: Fold change thresholds (absolute log2 fold change).
        from_type: Identifier type of the features, used for annotation.
        to_types: Annotations added to the results.
        plots_suffix: File format of the plots (".html", ".pdf", ...).
    """

    method: str = "ttest"
    adjust_method: str = "BH"
    p_cols: Tuple[str, ...] = ("padj",)
    p_ths: Tuple[float, ...] = (0.05,)
    lfc_levels: Tuple[str, ...] = ("all", "up", "down")
    lfc_ths: Tuple[float, ...] = (1.0,)
    from_type: str = "PROBEID"
    to_types: Tuple[str, ...] = ("ENTREZID", "SYMBOL", "GENENAME")
    plots_suffix: str = ".html"

    def __post_init__(self) -> None:
        if self.method not in TEST_METHODS:
            raise ValueError(
                f'Unknown method "{self.method}". Options are: {TEST_METHODS}'
            )
        if (
            self.adjust_method not in ADJUST_METHODS
            and self.adjust_method not in STATSMODELS_METHODS
        ):
            raise ValueError(f'Unknown adjust_method "{self.adjust_method}"')
        if len(bad := set(self.p_cols).difference(("pvalue", "padj", "qvalue"))) > 0:
            raise ValueError(f"Unknown p-value columns: {sorted(bad)}")
        if any(not 0 < p_th <= 1 for p_th in self.p_ths):
            raise ValueError("P-value thresholds must be in (0, 1]")
        if len(bad := set(self.lfc_levels).difference(("all", "up", "down"))) > 0:
            raise ValueError(f"Unknown LFC levels: {sorted(bad)}")
        if any(lfc_th < 0 for lfc_th in self.lfc_ths):
            raise ValueError("LFC thresholds must be non-negative")


def _thr_str(th: float) -> str:
    return str(th).replace(".", "_")


def proc_diff_expr_dataset_plots(
    eset: ExpressionSet,
    plots_path: Path,
    exp_prefix: str,
    contrast_factor: str,
    contrast_levels_colors: Optional[Dict[str, str]] = None,
    plots_suffix: str = ".html",
) -> None:
    """
    Plot the samples of an expression set on their first two principal
    components, colored by the contrast factor.

    Args:
        eset: Expression set to plot.
        plots_path: Directory where the plot is stored.
        exp_prefix: Prefix of the output file name.
        contrast_factor: Phenotype column used to color the samples.
        contrast_levels_colors: Optional mapping of factor levels to colors.
        plots_suffix: File format of the plot.
    """
    pca_plot(
        eset,
        factor=contrast_factor,
        color_discrete_map=contrast_levels_colors,
        title=f"All samples ({contrast_factor})",
        save_path=plots_path.joinpath(f"{exp_prefix}_pca{plots_suffix}"),
    )


def proc_diff_expr_results(
    result: pd.DataFrame,
    test: str,
    control: str,
    results_path: Path,
    plots_path: Path,
    exp_prefix: str,
    settings: DifferentialExpressionSettings,
    label_col: Optional[str] = None,
) -> Dict[str, int]:
    """
    Save a contrast's top table, its filtered versions and its plots.

    One filtered table is written for every combination of p-value column,
    p-value threshold, LFC level and LFC threshold.

    Args:
        result: Annotated top table of the contrast.
        test: Test level of the contrast.
        control: Control level of the contrast.
        results_path: Directory where tables are stored.
        plots_path: Directory where plots are stored.
        exp_prefix: Prefix of all output file names.
        settings: Thresholds and output format.
        label_col: Column used to label features in the plots.

    Returns:
        Number of significant features per filter combination, keyed by
        "{p_col}_{p_th}_{lfc_level}_{lfc_th}".
    """
    contrast_prefix = f"{exp_prefix}_{test}_vs_{control}"

    # 1. Full results
    save_results(result, results_path.joinpath(f"{contrast_prefix}_top_table.csv"))

    # 2. Filtered results
    n_degs = {}
    for p_col, p_th, lfc_level, lfc_th in product(
        settings.p_cols, settings.p_ths, settings.lfc_levels, settings.lfc_ths
    ):
        result_filtered = select_by_pvalue(
            result,
            p_col=p_col,
            p_th=p_th,
            lfc_col="dm",
            lfc_level=lfc_level,
            lfc_th=lfc_th,
        )
        filter_str = f"{p_col}_{_thr_str(p_th)}_{lfc_level}_{_thr_str(lfc_th)}"
        save_results(
            result_filtered.sort_values("dm"),
            results_path.joinpath(f"{contrast_prefix}_{filter_str}_top_table.csv"),
        )
        n_degs[filter_str] = len(result_filtered)

    # 3. Plots
    p_col, p_th, lfc_th = settings.p_cols[0], settings.p_ths[0], settings.lfc_ths[0]
    volcano_plot(
        result,
        lfc_col="dm",
        p_col=p_col,
        p_th=p_th,
        lfc_th=lfc_th,
        label_col=label_col,
        title=f"{test} vs {control}",
        save_path=plots_path.joinpath(
            f"{contrast_prefix}_volcano_plot{settings.plots_suffix}"
        ),
    )
    ma_plot(
        result,
        lfc_col="dm",
        p_col=p_col,
        p_th=p_th,
        title=f"{test} vs {control}",
        save_path=plots_path.joinpath(f"{contrast_prefix}_ma_plot{settings.plots_suffix}"),
    )
    pvalue_histogram(
        result["pvalue"],
        title=f"{test} vs {control}",
        save_path=plots_path.joinpath(
            f"{contrast_prefix}_pvalue_histogram{settings.plots_suffix}"
        ),
    )

    return n_degs


def differential_expression(
    eset: ExpressionSet,
    contrast_factor: str,
    contrasts_levels: Iterable[Tuple[str, str]],
    results_path: Path,
    plots_path: Path,
    exp_prefix: str,
    method: str = "ttest",
    adjust_method: str = "BH",
    p_cols: Iterable[str] = ("padj",),
    p_ths: Iterable[float] = (0.05,),
    lfc_levels: Iterable[str] = ("all", "up", "down"),
    lfc_ths: Iterable[float] = (1.0,),
    annotation_db: Optional[AnnotationDB] = None,
    from_type: str = "PROBEID",
    to_types: Iterable[str] = ("ENTREZID", "SYMBOL", "GENENAME"),
    contrast_levels_colors: Optional[Dict[str, str]] = None,
    plots_suffix: str = ".html",
) -> Dict[Tuple[str, str], pd.DataFrame]:
    """
    Run a complete differential expression analysis workflow.

    A full differential expression run considers only one contrast factor (e.g.,
    comparisons between levels of a single phenotype column, such as the
    strain of mice) but can include multiple pairwise comparisons within that
    factor. For every contrast a top table is computed, annotated, filtered by
    every threshold combination and plotted.

    Args:
        eset: Expression set, usually with log2 values.
        contrast_factor: Phenotype column used for grouping samples.
        contrasts_levels: List of tuples (test_group, control_group) specifying the
            contrasts to analyze, where each group is a level of the contrast_factor.
            Example: [("B6", "BTBR")]
        results_path: Directory path where all analysis results will be saved.
        plots_path: Directory path where all visualization plots will be saved.
        exp_prefix: String prefix for all generated files and plot titles.
        method: Per-feature test, see `data.stats.differential_table`.
        adjust_method: Multiple testing method.
        p_cols: List of p-value columns to use for filtering results.
        p_ths: List of p-value thresholds to apply when filtering.
        lfc_levels: List of log fold-change filtering categories ("up", "down", "all").
        lfc_ths: List of log fold-change threshold values.
        annotation_db: Optional annotation database used to annotate results.
        from_type: Identifier type of the features in `annotation_db`.
        to_types: Annotations added to the results.
        contrast_levels_colors: Optional mapping of factor levels to colors.
        plots_suffix: File format of the plots.

    Returns:
        The annotated top table of every contrast, keyed by (test, control).
        Tables, plots and a JSON summary (`{exp_prefix}_degs_summary.json`)
        are written to disk.

    Examples:
        >>> differential_expression(
        ...     eset=eset,
        ...     contrast_factor="strain",
        ...     contrasts_levels=[("B6", "BTBR")],
        ...     results_path=Path("/results/diff_expr"),
        ...     plots_path=Path("/results/diff_expr/plots"),
        ...     exp_prefix="strain",
        ...     method="moderated",
        ... )
    """
    settings = DifferentialExpressionSettings(
        method=method,
        adjust_method=adjust_method,
        p_cols=tuple(p_cols),
        p_ths=tuple(p_ths),
        lfc_levels=tuple(lfc_levels),
        lfc_ths=tuple(lfc_ths),
        from_type=from_type,
        to_types=tuple(to_types),
        plots_suffix=plots_suffix,
    )
    contrasts_levels = [tuple(levels) for levels in contrasts_levels]
    results_path.mkdir(exist_ok=True, parents=True)
    plots_path.mkdir(exist_ok=True, parents=True)

    # 1. Dataset visualizations
    proc_diff_expr_dataset_plots(
        eset,
        plots_path=plots_path,
        exp_prefix=exp_prefix,
        contrast_factor=contrast_factor,
        contrast_levels_colors=contrast_levels_colors,
        plots_suffix=settings.plots_suffix,
    )

    # 2. Get results for each contrast
    results = {}
    for test, control in contrasts_levels:
        results[(test, control)] = differential_table(
            eset,
            factor=contrast_factor,
            test_level=test,
            control_level=control,
            method=settings.method,
            adjust_method=settings.adjust_method,
        )

    # 3. Annotate results
    label_col = None
    if annotation_db is not None:
        to_types = [t for t in settings.to_types if t in annotation_db.columns()]
        if len(missing := set(settings.to_types).difference(to_types)) > 0:
            logging.warning(f"Annotations not available: {sorted(missing)}")
        results = {
            k: annotation_db.annotate(
                result, from_type=settings.from_type, to_types=to_types
            )
            for k, result in results.items()
        }
        if "SYMBOL" in to_types:
            label_col = "SYMBOL"

    # 4. Save tables and plots, collect summary
    summary_degs = defaultdict(dict)
    for (test, control), result in results.items():
        n_degs = proc_diff_expr_results(
            result,
            test=test,
            control=control,
            results_path=results_path,
            plots_path=plots_path,
            exp_prefix=exp_prefix,
            settings=settings,
            label_col=label_col,
        )
        # constant features have no p-value
        tested = result["pvalue"].notna().any()
        summary_degs[f"{test}_vs_{control}"] = {
            "n_features": len(result),
            "pi0": estimate_pi0(result["pvalue"]) if tested else None,
            "n_degs": n_degs,
        }
        print_table(
            result,
            title=f"{exp_prefix}: {test} vs {control} ({settings.method})",
            columns=[
                c
                for c in ("dm", "statistic", "pvalue", "padj", "qvalue", label_col)
                if c is not None
            ],
        )
        logging.info(
            f"[{exp_prefix}] {test} vs {control}: "
            + ", ".join(f"{k}={v}" for k, v in n_degs.items())
        )

    # 5. Summary statistics
    with results_path.joinpath(f"{exp_prefix}_degs_summary.json").open("w") as fp:
        json.dump(
            {"settings": asdict(settings), "contrasts": summary_degs},
            fp,
            indent=True,
            cls=NpEncoder,
        )

    return results
