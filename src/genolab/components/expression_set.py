import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from pydantic import ConfigDict
from pydantic.dataclasses import dataclass

from genolab.data.utils import filter_df


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class ExpressionSet:
    """
    Container bundling a measurement matrix with sample and feature metadata.

    The three tables are always kept aligned: the columns of `exprs` are the
    index of `pheno_data` and the index of `exprs` is the index of
    `feature_data`, in the same order.

    Args:
        exprs: Features x samples matrix of measurements (e.g. log2 intensities
            of a microarray or normalized counts).
        pheno_data: Samples x variables table. Created empty if not given.
        feature_data: Features x annotations table. Created empty if not given.
        annotation: Free text describing the platform or the data source.

    Examples:
        >>> eset = ExpressionSet(exprs=exprs_df, pheno_data=pheno_df)
        >>> eset.dims
        (8793, 24)
        >>> males = eset.select_samples({"sex": ["M"]})
    """

    exprs: pd.DataFrame
    pheno_data: Optional[pd.DataFrame] = None
    feature_data: Optional[pd.DataFrame] = None
    annotation: str = ""

    def __post_init__(self) -> None:
        # 0. Empty metadata tables default to the matrix labels
        if self.pheno_data is None:
            self.pheno_data = pd.DataFrame(index=self.exprs.columns.copy())
        if self.feature_data is None:
            self.feature_data = pd.DataFrame(index=self.exprs.index.copy())

        # 1. Names must be unique
        if self.exprs.columns.has_duplicates:
            raise ValueError("Sample names in exprs are not unique.")
        if self.exprs.index.has_duplicates:
            raise ValueError("Feature names in exprs are not unique.")
        if self.pheno_data.index.has_duplicates:
            raise ValueError("Sample names in pheno_data are not unique.")
        if self.feature_data.index.has_duplicates:
            raise ValueError("Feature names in feature_data are not unique.")

        # 2. Metadata must describe exactly the samples and features of exprs
        if set(self.pheno_data.index) != set(self.exprs.columns):
            raise ValueError(
                "Sample names of exprs columns and pheno_data index differ: "
                f"{sorted(set(self.pheno_data.index) ^ set(self.exprs.columns))[:5]}"
            )
        if set(self.feature_data.index) != set(self.exprs.index):
            raise ValueError(
                "Feature names of exprs index and feature_data index differ: "
                f"{sorted(set(self.feature_data.index) ^ set(self.exprs.index))[:5]}"
            )

        # 3. Align metadata to the matrix order
        self.pheno_data = self.pheno_data.loc[self.exprs.columns]
        self.feature_data = self.feature_data.loc[self.exprs.index]

    def __repr__(self) -> str:
        n_features, n_samples = self.dims
        return (
            f"ExpressionSet(features={n_features}, samples={n_samples}, "
            f"pheno_vars={list(self.pheno_data.columns)}, "
            f"feature_vars={list(self.feature_data.columns)})"
        )

    @property
    def dims(self) -> Tuple[int, int]:
        """Number of features and number of samples."""
        return self.exprs.shape

    @property
    def sample_names(self) -> pd.Index:
        return self.exprs.columns

    @property
    def feature_names(self) -> pd.Index:
        return self.exprs.index

    def copy(self) -> "ExpressionSet":
        return ExpressionSet(
            exprs=self.exprs.copy(),
            pheno_data=self.pheno_data.copy(),
            feature_data=self.feature_data.copy(),
            annotation=self.annotation,
        )

    def subset(
        self, features: Optional[Any] = None, samples: Optional[Any] = None
    ) -> "ExpressionSet":
        """
        Subset features and/or samples, keeping all tables aligned.

        Args:
            features: Feature labels or a boolean mask over features. All
                features are kept if None.
            samples: Sample labels or a boolean mask over samples. All samples
                are kept if None.

        Returns:
            A new ExpressionSet.

        Raises:
            KeyError: If any of the labels is not in the set.
        """
        feature_idx = self._resolve(self.feature_names, features, "features")
        sample_idx = self._resolve(self.sample_names, samples, "samples")

        return ExpressionSet(
            exprs=self.exprs.loc[feature_idx, sample_idx].copy(),
            pheno_data=self.pheno_data.loc[sample_idx].copy(),
            feature_data=self.feature_data.loc[feature_idx].copy(),
            annotation=self.annotation,
        )

    @staticmethod
    def _resolve(labels: pd.Index, selection: Optional[Any], what: str) -> pd.Index:
        if selection is None:
            return labels

        selection = np.asarray(selection)
        if selection.dtype == bool:
            if len(selection) != len(labels):
                raise ValueError(
                    f"Boolean mask over {what} has length {len(selection)}, "
                    f"expected {len(labels)}."
                )
            return labels[selection]

        selection = pd.Index(selection)
        if len(missing := selection.difference(labels)) > 0:
            raise KeyError(f"Unknown {what}: {list(missing[:5])}")
        return selection

    def select_samples(self, filters: Dict[str, Iterable[Any]]) -> "ExpressionSet":
        """
        Keep the samples whose phenotype columns take the given values.

        Args:
            filters: Mapping of pheno_data column names to allowed values,
                e.g. {"sex": ["M"], "tissue": ["brain", "liver"]}.

        Raises:
            ValueError: If a column is not in pheno_data.
        """
        if len(unknown := set(filters) - set(self.pheno_data.columns)) > 0:
            raise ValueError(f"Unknown phenotype columns: {sorted(unknown)}")
        return self.subset(samples=filter_df(self.pheno_data, filters).index)

    def group_labels(self, factor: str) -> pd.Series:
        """Phenotype column `factor`, indexed by sample names."""
        if factor not in self.pheno_data.columns:
            raise KeyError(f'"{factor}" is not a column of pheno_data')
        return self.pheno_data[factor]

    def log2_transform(self, pseudocount: float = 0.0) -> "ExpressionSet":
        """
        Return a new set with log2(exprs + pseudocount).

        Raises:
            ValueError: If any shifted value is not strictly positive.
        """
        shifted = self.exprs + pseudocount
        if (shifted <= 0).any().any():
            raise ValueError(
                "Non-positive values found, use a larger pseudocount before "
                "taking logarithms."
            )

        eset = self.copy()
        eset.exprs = np.log2(shifted)
        return eset

    def drop_missing(self) -> "ExpressionSet":
        """Drop features with at least one missing value."""
        keep = self.exprs.notna().all(axis=1)
        if (n_dropped := int((~keep).sum())) > 0:
            logging.info(f"Dropping {n_dropped} features with missing values.")
        return self.subset(features=keep.to_numpy())

    def feature_variance(self) -> pd.Series:
        return self.exprs.var(axis=1).rename("variance")

    def top_variable_features(self, n: int = 500) -> pd.Index:
        """Names of the `n` features with highest variance across samples."""
        top_n = min(n, self.dims[0])
        return self.feature_variance().sort_values(ascending=False).index[:top_n]

    def to_long(self) -> pd.DataFrame:
        """
        Tidy representation: one row per (feature, sample) with the sample
        phenotype columns attached. Convenient for plotting.
        """
        long_df = (
            self.exprs.rename_axis(index="feature")
            .reset_index()
            .melt(id_vars="feature", var_name="sample", value_name="value")
        )
        return long_df.merge(
            self.pheno_data.rename_axis(index="sample").reset_index(),
            on="sample",
            how="left",
        )
