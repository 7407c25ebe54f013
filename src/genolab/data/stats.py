"""Per-feature hypothesis tests and multiple testing correction.

This module covers the statistics used in the microarray lectures:

1. Two-sample tests for every feature (gene/probe) of an expression matrix:
   - Student's and Welch's t-tests (scipy.stats)
   - Paired t-tests
   - Empirical Bayes moderated t-tests, in the spirit of limma

2. Multiple testing:
   - P-value adjustment (statsmodels multipletests), accepting Bioconductor
     method names such as "BH" or "bonferroni"
   - Storey's estimate of the proportion of true null hypotheses and q-values

3. Helpers for reporting and planning:
   - Filtering of result tables by p-value and fold change
   - Power and sample size of two-sample t-tests
   - Permutation null distributions of t statistics
"""

import logging
from typing import Any, Optional, Tuple, Union

import numpy as np
import pandas as pd
import scipy.stats as ss
from scipy.special import digamma, polygamma
from statsmodels.stats.multitest import multipletests
from statsmodels.stats.power import TTestIndPower

from genolab.components.expression_set import ExpressionSet
from genolab.data.utils import select_data_classes

# Bioconductor's p.adjust names mapped to statsmodels' names
ADJUST_METHODS = {
    "BH": "fdr_bh",
    "fdr": "fdr_bh",
    "BY": "fdr_by",
    "bonferroni": "bonferroni",
    "holm": "holm",
    "hochberg": "simes-hochberg",
    "hommel": "hommel",
    "none": None,
}
STATSMODELS_METHODS = (
    "bonferroni",
    "sidak",
    "holm-sidak",
    "holm",
    "simes-hochberg",
    "hommel",
    "fdr_bh",
    "fdr_by",
    "fdr_tsbh",
    "fdr_tsbky",
)
TEST_METHODS = ("ttest", "welch", "moderated", "limma")


def _split_groups(
    exprs: pd.DataFrame,
    groups: Union[pd.Series, Any],
    test_level: Any,
    control_level: Any,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Columns of `exprs` labelled `test_level` and `control_level`."""
    if not isinstance(groups, pd.Series):
        groups = pd.Series(list(groups), index=exprs.columns)
    if len(groups) != exprs.shape[1]:
        raise ValueError(
            f"Got {len(groups)} group labels for {exprs.shape[1]} samples."
        )
    groups = groups.rename("group").loc[exprs.columns]

    test_ids, control_ids = select_data_classes(
        groups.to_frame(), [{"group": [test_level]}, {"group": [control_level]}]
    )
    for level, ids in ((test_level, test_ids), (control_level, control_ids)):
        if len(ids) < 2:
            raise ValueError(
                f'Group "{level}" has {len(ids)} samples, at least 2 are needed.'
            )

    return exprs.loc[:, test_ids], exprs.loc[:, control_ids]


def row_ttests(
    exprs: pd.DataFrame,
    groups: Union[pd.Series, Any],
    test_level: Any,
    control_level: Any,
    equal_var: bool = True,
) -> pd.DataFrame:
    """
    Two-sample t-test for every feature (row) of an expression matrix.

    Args:
        exprs: Features x samples matrix, usually log2 expression values.
        groups: Group label of every sample, as a Series indexed by sample
            names or a sequence in column order.
        test_level: Label of the test group (e.g. "treated").
        control_level: Label of the control group (e.g. "control").
        equal_var: Student's test with pooled variance if True, Welch's test
            otherwise.

    Returns:
        A DataFrame indexed by feature with columns `mean_test`,
        `mean_control`, `dm` (difference of means, i.e. log fold change on log
        data), `statistic`, `pvalue` and `df`. Features without variance in
        either group get NaN statistics.

    Raises:
        ValueError: If any group has less than two samples.
    """
    x_df, y_df = _split_groups(exprs, groups, test_level, control_level)
    x, y = x_df.to_numpy(dtype=float), y_df.to_numpy(dtype=float)
    n1, n2 = x.shape[1], y.shape[1]

    with np.errstate(divide="ignore", invalid="ignore"):
        statistic, pvalue = ss.ttest_ind(x, y, axis=1, equal_var=equal_var)
        v1, v2 = x.var(axis=1, ddof=1), y.var(axis=1, ddof=1)
        if equal_var:
            df = np.full(x.shape[0], float(n1 + n2 - 2))
        else:
            se1, se2 = v1 / n1, v2 / n2
            df = (se1 + se2) ** 2 / (se1**2 / (n1 - 1) + se2**2 / (n2 - 1))

    no_variance = (v1 + v2) == 0
    statistic = np.where(no_variance, np.nan, statistic)
    pvalue = np.where(no_variance, np.nan, pvalue)
    df = np.where(no_variance, np.nan, df)

    mean_test, mean_control = x.mean(axis=1), y.mean(axis=1)
    return pd.DataFrame(
        {
            "mean_test": mean_test,
            "mean_control": mean_control,
            "dm": mean_test - mean_control,
            "statistic": statistic,
            "pvalue": pvalue,
            "df": df,
        },
        index=exprs.index,
    )


def paired_ttests(
    exprs: pd.DataFrame,
    groups: Union[pd.Series, Any],
    pairs: Union[pd.Series, Any],
    test_level: Any,
    control_level: Any,
) -> pd.DataFrame:
    """
    Paired t-test for every feature, e.g. tumour vs. normal tissue of the same
    patient.

    Args:
        exprs: Features x samples matrix.
        groups: Group label of every sample.
        pairs: Pair identifier of every sample (e.g. patient ID). Every pair
            must have exactly one test and one control sample.
        test_level: Label of the test group.
        control_level: Label of the control group.

    Returns:
        Same columns as `row_ttests`, with `dm` being the mean of the paired
        differences.
    """
    if not isinstance(pairs, pd.Series):
        pairs = pd.Series(list(pairs), index=exprs.columns)
    x_df, y_df = _split_groups(exprs, groups, test_level, control_level)

    x_pairs, y_pairs = pairs.loc[x_df.columns], pairs.loc[y_df.columns]
    if x_pairs.duplicated().any() or y_pairs.duplicated().any():
        raise ValueError("Each pair must have exactly one sample per group.")
    if set(x_pairs) != set(y_pairs):
        raise ValueError(
            "Unmatched pairs between groups: "
            f"{sorted(set(x_pairs) ^ set(y_pairs), key=str)[:5]}"
        )

    # Order both matrices by pair identifier
    order = sorted(set(x_pairs), key=str)
    x = x_df.loc[:, pd.Series(x_pairs.index, index=x_pairs.values).loc[order]]
    y = y_df.loc[:, pd.Series(y_pairs.index, index=y_pairs.values).loc[order]]
    x, y = x.to_numpy(dtype=float), y.to_numpy(dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        statistic, pvalue = ss.ttest_rel(x, y, axis=1)

    no_variance = (x - y).var(axis=1, ddof=1) == 0
    return pd.DataFrame(
        {
            "mean_test": x.mean(axis=1),
            "mean_control": y.mean(axis=1),
            "dm": (x - y).mean(axis=1),
            "statistic": np.where(no_variance, np.nan, statistic),
            "pvalue": np.where(no_variance, np.nan, pvalue),
            "df": np.where(no_variance, np.nan, float(len(order) - 1)),
        },
        index=exprs.index,
    )


def _trigamma_inverse(x: float, max_iter: int = 50, tol: float = 1e-8) -> float:
    """Solve trigamma(y) = x for y with Newton's method."""
    if x > 1e7:
        return 1 / np.sqrt(x)
    if x < 1e-6:
        return 1 / x

    y = 0.5 + 1 / x
    for _ in range(max_iter):
        tri = polygamma(1, y)
        dif = tri * (1 - tri / x) / polygamma(2, y)
        y += dif
        if -dif / y < tol:
            break
    else:
        logging.warning("Inverse trigamma did not converge.")
    return float(y)


def fit_f_dist(variances: np.ndarray, df: np.ndarray) -> Tuple[float, float]:
    """
    Moment estimation of the scaled F-distribution followed by sample variances.

    The prior of the true variances is a scaled inverse chi-square
    distribution with `d0` degrees of freedom and scale `s0^2`.

    Args:
        variances: Per-feature residual variances.
        df: Per-feature residual degrees of freedom.

    Returns:
        Tuple (d0, s0^2). `d0` is infinite when the sample variances are not
        more dispersed than expected by chance.
    """
    variances = np.asarray(variances, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), variances.shape)

    ok = np.isfinite(variances) & np.isfinite(df) & (df > 1e-15)
    x, d = np.maximum(variances[ok], 0), df[ok]
    if len(x) < 2:
        raise ValueError("At least two finite variances are needed.")

    # Avoid log(0) for features without variance
    m = np.median(x)
    if m == 0:
        logging.warning("More than half of residual variances are exactly zero.")
        m = 1
    x = np.maximum(x, 1e-5 * m)

    e = np.log(x) - digamma(d / 2) + np.log(d / 2)
    e_mean = e.mean()
    e_var = e.var(ddof=1) - polygamma(1, d / 2).mean()

    if e_var > 0:
        d0 = 2 * _trigamma_inverse(e_var)
        s0_2 = float(np.exp(e_mean + digamma(d0 / 2) - np.log(d0 / 2)))
    else:
        d0, s0_2 = np.inf, float(np.exp(e_mean))

    return d0, s0_2


def moderated_ttests(
    exprs: pd.DataFrame,
    groups: Union[pd.Series, Any],
    test_level: Any,
    control_level: Any,
) -> pd.DataFrame:
    """
    Empirical Bayes moderated t-test for every feature.

    Per-feature pooled variances are shrunk towards a common prior value
    estimated from all features (`fit_f_dist`), which stabilizes the tests
    when there are few replicates per group.

    Returns:
        Same columns as `row_ttests` plus `s2_post`, the moderated variance.
        The prior parameters are stored in `result.attrs["d0"]` and
        `result.attrs["s0_2"]`.
    """
    x_df, y_df = _split_groups(exprs, groups, test_level, control_level)
    x, y = x_df.to_numpy(dtype=float), y_df.to_numpy(dtype=float)
    n1, n2 = x.shape[1], y.shape[1]
    d = n1 + n2 - 2

    mean_test, mean_control = x.mean(axis=1), y.mean(axis=1)
    s2 = ((n1 - 1) * x.var(axis=1, ddof=1) + (n2 - 1) * y.var(axis=1, ddof=1)) / d

    d0, s0_2 = fit_f_dist(s2, np.full(len(s2), float(d)))
    if np.isfinite(d0):
        s2_post = (d0 * s0_2 + d * s2) / (d0 + d)
        df_total = min(d0 + d, d * len(s2))
    else:
        s2_post = np.full(len(s2), s0_2)
        df_total = d * len(s2)
    logging.info(f"Moderated t-test prior: d0={d0:.3f}, s0^2={s0_2:.4g}")

    dm = mean_test - mean_control
    statistic = dm / (np.sqrt(s2_post) * np.sqrt(1 / n1 + 1 / n2))
    pvalue = 2 * ss.t.sf(np.abs(statistic), df_total)

    result = pd.DataFrame(
        {
            "mean_test": mean_test,
            "mean_control": mean_control,
            "dm": dm,
            "statistic": statistic,
            "pvalue": pvalue,
            "df": float(df_total),
            "s2_post": s2_post,
        },
        index=exprs.index,
    )
    result.attrs.update({"d0": d0, "s0_2": s0_2})
    return result


def adjust_pvalues(
    pvalues: Union[pd.Series, np.ndarray, Any], method: str = "BH"
) -> Union[pd.Series, np.ndarray]:
    """
    Adjust p-values for multiple testing.

    Args:
        pvalues: Raw p-values. Missing values stay missing and do not count as
            tests.
        method: Either a Bioconductor name ("BH", "fdr", "BY", "bonferroni",
            "holm", "hochberg", "hommel", "none") or a statsmodels name
            (e.g. "fdr_bh").

    Returns:
        Adjusted p-values, as a Series with the input index if a Series was
        given, otherwise as an array.

    Raises:
        ValueError: If the method is not known.
    """
    if method in ADJUST_METHODS:
        sm_method = ADJUST_METHODS[method]
    elif method in STATSMODELS_METHODS:
        sm_method = method
    else:
        raise ValueError(
            f'Unknown adjustment method "{method}". Options are: '
            f"{list(ADJUST_METHODS) + list(STATSMODELS_METHODS)}"
        )

    p = np.asarray(pvalues, dtype=float)
    adjusted = np.full(p.shape, np.nan)
    mask = ~np.isnan(p)
    if mask.any():
        adjusted[mask] = (
            p[mask] if sm_method is None else multipletests(p[mask], method=sm_method)[1]
        )

    if isinstance(pvalues, pd.Series):
        return pd.Series(adjusted, index=pvalues.index, name=pvalues.name)
    return adjusted


def estimate_pi0(pvalues: Union[pd.Series, np.ndarray, Any], lambda_: float = 0.5) -> float:
    """
    Storey's estimate of the proportion of true null hypotheses.

    Under the null, p-values are uniform, so the density of p-values above
    `lambda_` estimates the proportion of null features.
    """
    if not 0 <= lambda_ < 1:
        raise ValueError("lambda_ must be in [0, 1).")
    p = np.asarray(pvalues, dtype=float)
    p = p[~np.isnan(p)]
    if len(p) == 0:
        raise ValueError("No p-values provided.")
    return float(min(1.0, np.mean(p > lambda_) / (1 - lambda_)))


def qvalues(
    pvalues: Union[pd.Series, np.ndarray, Any], lambda_: float = 0.5
) -> Union[pd.Series, np.ndarray]:
    """Storey's q-values: BH adjusted p-values scaled by the estimated pi0."""
    pi0 = estimate_pi0(pvalues, lambda_=lambda_)
    q = np.minimum(pi0 * np.asarray(adjust_pvalues(pvalues, "BH"), dtype=float), 1.0)

    if isinstance(pvalues, pd.Series):
        return pd.Series(q, index=pvalues.index, name="qvalue")
    return q


def select_by_pvalue(
    results: pd.DataFrame,
    p_col: str = "pvalue",
    p_th: float = 0.05,
    lfc_col: str = "dm",
    lfc_level: str = "all",
    lfc_th: float = 0.0,
) -> pd.DataFrame:
    """
    Filter a result table by significance and fold change.

    Args:
        results: Table of per-feature results.
        p_col: By which column to filter, usually "pvalue", "padj" or "qvalue".
        p_th: Significance threshold, rows must have `p_col < p_th`.
        lfc_col: Column with (log) fold changes.
        lfc_level: "up" for up-regulated, "down" for down-regulated, and
            "all" for both.
        lfc_th: Fold change threshold, rows must have `|lfc_col| > lfc_th`
            when it is positive.

    Returns:
        Filtered table, sorted by `p_col`.
    """
    if lfc_level not in ("all", "up", "down"):
        raise ValueError(f'lfc_level must be "all", "up" or "down", got "{lfc_level}"')

    # 1. Filter by LFC level
    if lfc_level == "up":
        results = results[results[lfc_col] > 0]
    elif lfc_level == "down":
        results = results[results[lfc_col] < 0]

    # 2. Filter by LFC and significance thresholds
    results = results[(results[p_col] < p_th)]
    if lfc_th > 0:
        results = results[results[lfc_col].abs() > lfc_th]

    return results.sort_values(p_col)


def differential_table(
    eset: ExpressionSet,
    factor: str,
    test_level: Any,
    control_level: Any,
    method: str = "ttest",
    adjust_method: str = "BH",
) -> pd.DataFrame:
    """
    Compare two groups of samples of an expression set (a "top table").

    Args:
        eset: Expression set, usually with log2 values.
        factor: Phenotype column that defines the groups.
        test_level: Level of `factor` for the test group.
        control_level: Level of `factor` for the control group.
        method: "ttest" (Student), "welch", "moderated" (empirical Bayes) or
            "limma" (R limma through rpy2, requires the `r` extra).
        adjust_method: Multiple testing method, see `adjust_pvalues`.

    Returns:
        Per-feature results with `padj` and `qvalue` columns and feature
        annotations appended, sorted by p-value.
    """
    groups = eset.group_labels(factor)

    if method == "ttest":
        results = row_ttests(eset.exprs, groups, test_level, control_level)
    elif method == "welch":
        results = row_ttests(
            eset.exprs, groups, test_level, control_level, equal_var=False
        )
    elif method == "moderated":
        results = moderated_ttests(eset.exprs, groups, test_level, control_level)
    elif method == "limma":
        from genolab.r_wrappers.limma import limma_top_table

        results = limma_top_table(eset, factor, test_level, control_level)
    else:
        raise ValueError(f'Unknown method "{method}". Options are: {TEST_METHODS}')

    results["padj"] = adjust_pvalues(results["pvalue"], adjust_method)
    if results["pvalue"].notna().any():
        results["qvalue"] = qvalues(results["pvalue"])
    else:
        results["qvalue"] = np.nan

    n_sig = int((results["padj"] < 0.05).sum())
    logging.info(
        f"[{test_level} vs {control_level}] {method}: {n_sig} features "
        f"with {adjust_method} adjusted p-value < 0.05"
    )

    return results.join(eset.feature_data).sort_values("pvalue", na_position="last")


def ttest_power(
    effect_size: float, nobs: int, alpha: float = 0.05, ratio: float = 1.0
) -> float:
    """Power of a two-sided two-sample t-test.

    Args:
        effect_size: Cohen's d, the standardized difference between two means
        nobs: Sample size of the first group
        alpha: Significance level of the test
        ratio: Ratio of the second group size to the first one
    """
    return float(
        TTestIndPower().solve_power(
            effect_size=effect_size,
            nobs1=nobs,
            alpha=alpha,
            ratio=ratio,
            alternative="two-sided",
        )
    )


def ttest_sample_size(
    effect_size: float, power: float = 0.8, alpha: float = 0.05, ratio: float = 1.0
) -> int:
    """Smallest size of the first group reaching the requested power."""
    nobs = TTestIndPower().solve_power(
        effect_size=effect_size,
        power=power,
        alpha=alpha,
        ratio=ratio,
        alternative="two-sided",
    )
    return int(np.ceil(nobs))


def permutation_null(
    exprs: pd.DataFrame,
    groups: Union[pd.Series, Any],
    test_level: Any,
    control_level: Any,
    n_permutations: int = 100,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Null distribution of t statistics obtained by permuting group labels.

    Args:
        exprs: Features x samples matrix.
        groups: Group label of every sample.
        test_level: Label of the test group.
        control_level: Label of the control group.
        n_permutations: Number of label permutations.
        seed: Seed of the random generator.

    Returns:
        A features x permutations DataFrame of t statistics.
    """
    x_df, y_df = _split_groups(exprs, groups, test_level, control_level)
    data = pd.concat([x_df, y_df], axis=1).to_numpy(dtype=float)
    n1 = x_df.shape[1]
    rng = np.random.default_rng(seed)

    null_stats = np.empty((data.shape[0], n_permutations))
    with np.errstate(divide="ignore", invalid="ignore"):
        for i in range(n_permutations):
            perm = rng.permutation(data.shape[1])
            null_stats[:, i] = ss.ttest_ind(
                data[:, perm[:n1]], data[:, perm[n1:]], axis=1
            ).statistic

    return pd.DataFrame(
        null_stats,
        index=exprs.index,
        columns=[f"perm_{i}" for i in range(n_permutations)],
    )
