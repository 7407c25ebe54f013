"""
Wrappers for the R package limma, used as the reference implementation of the
moderated t-test in `data.stats`.

Arguments in python use "_" instead of "." (rpy2 translates them), e.g.
`sort.by` in R is `sort_by` here.
"""

from typing import Any

import numpy as np
import pandas as pd
import rpy2
from rpy2.robjects import StrVector
from rpy2.robjects.packages import importr

from genolab.components.expression_set import ExpressionSet
from genolab.r_wrappers.utils import pd_df_to_r_matrix, rpy2_df_to_pd_df

r_limma = importr("limma")


def linear_model_fit(obj: Any, design: Any, **kwargs: Any) -> Any:
    """Gene-wise linear models (limma `lmFit`) of a log-expression matrix.

    Args:
        obj: Features x samples matrix of log-expression values.
        design: Samples x coefficients design matrix.
        **kwargs: Passed on to lmFit, e.g. `weights` or `method`.

    Returns:
        An MArrayLM object.

    References:
        https://rdrr.io/bioc/limma/man/lmFit.html
    """
    return r_limma.lmFit(obj, design, **kwargs)


def make_contrasts(contrasts: StrVector, levels: Any) -> Any:
    """Contrast matrix for comparisons such as "test-control", `levels`
    being the coefficient names or the design matrix itself."""
    return r_limma.makeContrasts(contrasts=contrasts, levels=levels)


def fit_contrasts(fit: Any, contrasts: Any) -> Any:
    return r_limma.contrasts_fit(fit=fit, contrasts=contrasts)


def empirical_bayes(fit: Any, **kwargs: Any) -> Any:
    """Moderated t-statistics (limma `eBayes`).

    Adds `t`, `p.value`, `lods`, `df.prior`, `s2.prior` and `df.total` to the
    fit.

    References:
        https://rdrr.io/bioc/limma/man/ebayes.html
    """
    return r_limma.eBayes(fit=fit, **kwargs)


def decide_tests(obj: Any, **kwargs: Any) -> Any:
    """-1 (down), 0 or 1 (up) for every feature and contrast of a fit."""
    return r_limma.decideTests(obj, **kwargs)


def top_table(fit: Any, **kwargs: Any) -> rpy2.robjects.DataFrame:
    """Results table of one coefficient of a moderated fit (limma `topTable`).

    Returns:
        Table with columns logFC, AveExpr, t, P.Value, adj.P.Val and B.

    References:
        https://rdrr.io/bioc/limma/man/toptable.html
    """
    return r_limma.topTable(fit, **kwargs)


def limma_top_table(
    eset: ExpressionSet, factor: str, test_level: Any, control_level: Any
) -> pd.DataFrame:
    """
    Run the limma workflow (lmFit, contrasts.fit, eBayes, topTable) comparing
    two groups of an expression set.

    Args:
        eset: Expression set with log-expression values.
        factor: Phenotype column that defines the groups.
        test_level: Level of `factor` for the test group.
        control_level: Level of `factor` for the control group.

    Returns:
        Per-feature results with the same columns as `data.stats.row_ttests`:
        `mean_test`, `mean_control`, `dm` (limma's logFC), `statistic`
        (moderated t), `pvalue` and `df` (total degrees of freedom).
    """
    groups = eset.group_labels(factor)
    test_samples = groups.index[groups == test_level]
    control_samples = groups.index[groups == control_level]
    if len(test_samples) < 2 or len(control_samples) < 2:
        raise ValueError(
            f"At least two samples per group are needed, got {len(test_samples)} "
            f"({test_level}) and {len(control_samples)} ({control_level})."
        )

    # 0. Design matrix with one column per group
    exprs = eset.exprs.loc[:, test_samples.append(control_samples)]
    design = pd.DataFrame(
        {
            "test": np.r_[np.ones(len(test_samples)), np.zeros(len(control_samples))],
            "control": np.r_[
                np.zeros(len(test_samples)), np.ones(len(control_samples))
            ],
        },
        index=exprs.columns,
    )
    r_design = pd_df_to_r_matrix(design)

    # 1. Fit, contrast and moderate
    fit = linear_model_fit(pd_df_to_r_matrix(exprs), r_design)
    fit = fit_contrasts(fit, make_contrasts(StrVector(["test-control"]), r_design))
    fit = empirical_bayes(fit)

    # 2. Results in input feature order
    top_df = rpy2_df_to_pd_df(
        top_table(fit, coef=1, number=float("inf"), sort_by="none")
    )
    top_df.index = top_df.index.astype(str)
    df_total = pd.Series(
        np.asarray(fit.rx2("df.total"), dtype=float), index=exprs.index
    )

    results = pd.DataFrame(
        {
            "mean_test": exprs.loc[:, test_samples].mean(axis=1),
            "mean_control": exprs.loc[:, control_samples].mean(axis=1),
        },
        index=exprs.index,
    )
    results["dm"] = top_df["logFC"]
    results["statistic"] = top_df["t"]
    results["pvalue"] = top_df["P.Value"]
    results["df"] = df_total
    return results
