import json

import numpy as np
import pandas as pd
import pytest

from genolab.components.expression_set import ExpressionSet
from genolab.components.gene_model import GeneModel
from genolab.data.io import read_bed
from genolab.pipelines.annotation.utils import (
    annotate_genes,
    annotation_pipeline,
    genes_on_chromosome,
    genes_per_chromosome,
)
from genolab.pipelines.binding_sites.utils import (
    BindingSiteSettings,
    annotate_peaks,
    annotation_summary,
    binding_site_pipeline,
    peaks_in_promoters,
    signed_distance_to_tss,
)
from genolab.pipelines.differential_expression.utils import (
    DifferentialExpressionSettings,
    differential_expression,
)


# ---------------------------------------------------------------------------
# Differential expression
# ---------------------------------------------------------------------------


def test_differential_expression_pipeline(eset, annotation_db, tmp_path):
    results_path = tmp_path.joinpath("diff_expr")
    plots_path = results_path.joinpath("plots")

    results = differential_expression(
        eset,
        contrast_factor="group",
        contrasts_levels=[("treated", "control")],
        results_path=results_path,
        plots_path=plots_path,
        exp_prefix="toy",
        method="moderated",
        p_cols=["padj"],
        p_ths=[0.05],
        lfc_levels=["all", "up"],
        lfc_ths=[1.0],
        annotation_db=annotation_db,
        to_types=["SYMBOL", "ENSEMBL"],
    )

    result = results[("treated", "control")]
    assert result.loc["probe_1", "SYMBOL"] == "BRCA1/BRCA2"
    assert "ENSEMBL" not in result.columns

    assert results_path.joinpath("toy_treated_vs_control_top_table.csv").exists()
    assert results_path.joinpath(
        "toy_treated_vs_control_padj_0_05_up_1_0_top_table.csv"
    ).exists()
    for plot in ("pca", "treated_vs_control_volcano_plot", "treated_vs_control_ma_plot"):
        assert plots_path.joinpath(f"toy_{plot}.html").exists()

    with results_path.joinpath("toy_degs_summary.json").open() as fp:
        summary = json.load(fp)
    assert summary["settings"]["method"] == "moderated"
    contrast = summary["contrasts"]["treated_vs_control"]
    assert contrast["n_features"] == 200
    assert contrast["n_degs"]["padj_0_05_all_1_0"] >= 15
    assert contrast["n_degs"]["padj_0_05_up_1_0"] == contrast["n_degs"]["padj_0_05_all_1_0"]


def test_differential_expression_without_testable_features(tmp_path):
    samples = [f"S{i}" for i in range(1, 7)]
    eset = ExpressionSet(
        exprs=pd.DataFrame(
            np.repeat(np.arange(1.0, 6.0)[:, None], len(samples), axis=1),
            index=[f"f{i}" for i in range(5)],
            columns=samples,
        ),
        pheno_data=pd.DataFrame({"g": ["a"] * 3 + ["b"] * 3}, index=samples),
    )

    results = differential_expression(
        eset,
        contrast_factor="g",
        contrasts_levels=[("a", "b")],
        results_path=tmp_path,
        plots_path=tmp_path.joinpath("plots"),
        exp_prefix="flat",
    )

    assert results[("a", "b")]["pvalue"].isna().all()
    with tmp_path.joinpath("flat_degs_summary.json").open() as fp:
        contrast = json.load(fp)["contrasts"]["a_vs_b"]
    assert contrast["pi0"] is None
    assert set(contrast["n_degs"].values()) == {0}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"method": "anova"},
        {"adjust_method": "magic"},
        {"p_cols": ("pval",)},
        {"p_ths": (0.0,)},
        {"lfc_levels": ("sideways",)},
        {"lfc_ths": (-1.0,)},
    ],
)
def test_differential_expression_settings_validation(kwargs):
    with pytest.raises(ValueError):
        DifferentialExpressionSettings(**kwargs)


# ---------------------------------------------------------------------------
# Annotation
# ---------------------------------------------------------------------------


def test_annotate_genes(annotation_db):
    annotated = annotate_genes(["7157", "675", "7157", "999"], annotation_db)

    assert list(annotated.index) == ["7157", "675", "999"]
    assert list(annotated.columns) == ["SYMBOL", "GENENAME", "CHR"]
    assert annotated.loc["675", "CHR"] == "13"
    assert annotated.loc["999"].isna().all()


def test_genes_by_chromosome(annotation_db):
    assert genes_on_chromosome(annotation_db, "chr17") == ["7157", "672"]
    assert genes_on_chromosome(annotation_db, 7, keytype="SYMBOL") == ["EGFR"]

    counts = genes_per_chromosome(annotation_db)
    assert list(counts.index) == ["7", "13", "17"]
    assert list(counts) == [1, 1, 2]


def test_annotation_pipeline(annotation_db, tmp_path):
    annotated = annotation_pipeline(
        annotation_db,
        results_path=tmp_path,
        exp_prefix="hs",
        genes=["1956", "672"],
        chromosomes=["17"],
    )

    assert list(annotated["SYMBOL"]) == ["EGFR", "BRCA1"]
    assert tmp_path.joinpath("hs_genes_per_chromosome.csv").exists()
    assert tmp_path.joinpath("plots", "hs_genes_per_chromosome.html").exists()
    chr17 = pd.read_csv(tmp_path.joinpath("hs_chr17_genes.csv"), index_col=0)
    assert list(chr17["SYMBOL"]) == ["TP53", "BRCA1"]

    empty = annotation_pipeline(annotation_db, results_path=tmp_path, exp_prefix="hs")
    assert empty.empty


# ---------------------------------------------------------------------------
# Binding sites
# ---------------------------------------------------------------------------


def test_signed_distance_to_tss():
    distance = signed_distance_to_tss(
        peak_starts=np.array([100, 500, 100, 500, 250]),
        peak_ends=np.array([200, 600, 200, 600, 350]),
        tss=np.array([300, 300, 300, 300, 300]),
        minus_strand=np.array([False, False, True, True, True]),
    )
    assert list(distance) == [-100, 200, 100, -200, 0]


def test_annotate_peaks(gtf_path, bed_path):
    gene_model = GeneModel.from_gtf(gtf_path)
    peaks = read_bed(bed_path)

    annotated = annotate_peaks(peaks, gene_model, upstream=500, downstream=500)
    annotated = annotated.set_index("name")

    assert list(annotated["seqnames"]) == ["1", "1", "1", "1", "3"]
    assert list(annotated["annotation"]) == [
        "Promoter",
        "Gene body",
        "Promoter",
        "Distal intergenic",
        "Distal intergenic",
    ]
    assert list(annotated["distance_to_tss"].iloc[:4]) == [0, 801, -201, -14001]
    assert list(annotated["gene_name"].iloc[:4]) == ["ALPHA", "ALPHA", "BETA", "BETA"]
    assert annotated.loc["peak3", "transcript_id"] == "T3"
    assert pd.isna(annotated.loc["peak5", "gene_id"])
    assert np.isnan(annotated.loc["peak5", "distance_to_tss"])

    summary = annotation_summary(annotated)
    assert list(summary["n_peaks"]) == [2, 1, 2]
    assert summary["percentage"].sum() == pytest.approx(100)


def test_peaks_in_promoters(gtf_path, bed_path):
    gene_model = GeneModel.from_gtf(gtf_path)
    peaks = read_bed(bed_path)

    promoter_peaks = peaks_in_promoters(peaks, gene_model, upstream=500, downstream=500)
    assert list(promoter_peaks.mcol("name")) == ["peak1", "peak3"]


def test_binding_site_pipeline(gtf_path, bed_path, tmp_path):
    annotated = binding_site_pipeline(
        peaks_path=bed_path,
        gtf_path=gtf_path,
        results_path=tmp_path,
        plots_path=tmp_path.joinpath("plots"),
        exp_prefix="peaks",
    )

    # default promoter window is -3000/+3000
    assert list(annotated["annotation"]) == [
        "Promoter",
        "Promoter",
        "Promoter",
        "Distal intergenic",
        "Distal intergenic",
    ]
    for file_name in (
        "peaks_peaks_annotated.csv",
        "peaks_annotation_summary.csv",
        "peaks_settings.csv",
        "plots/peaks_annotation_bar.html",
        "plots/peaks_distance_to_tss.html",
        "plots/peaks_G1_gene_model.html",
        "plots/peaks_G2_gene_model.html",
    ):
        assert tmp_path.joinpath(file_name).exists(), file_name

    promoter_bed = tmp_path.joinpath("peaks_promoter_peaks.bed").read_text().splitlines()
    assert [line.split("\t")[3] for line in promoter_bed] == ["peak1", "peak2", "peak3"]


def test_binding_site_settings_validation():
    with pytest.raises(ValueError):
        BindingSiteSettings(upstream=-1)
    with pytest.raises(ValueError):
        BindingSiteSettings(n_gene_plots=-2)
