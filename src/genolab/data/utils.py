"""Utility functions for tabular data handling and parallel execution.

This module provides small helpers shared by the course pipelines: filtering
metadata tables by column values, splitting samples into non-overlapping
classes and running independent units of work in a process pool.
"""

from multiprocessing import get_context
from typing import Any, Callable, Dict, Iterable, List, Sequence, TypeVar

import numpy as np
import pandas as pd
from tqdm.rich import tqdm

T = TypeVar("T")
R = TypeVar("R")


def parallelize_map(
    func: Callable[[T], R],
    inputs: Sequence[T],
    processes: int = 8,
    method: str = "spawn",
) -> List[R]:
    """Run `func` on every input in a process pool, with a progress bar.

    Used by the run scripts to process several contrasts or peak files at
    once. Each worker process handles a single input.

    Args:
        func: Picklable function of one argument.
        inputs: Arguments, one per unit of work.
        processes: Size of the pool.
        method: Start method of the pool ("spawn", "fork" or "forkserver").

    Returns:
        The results, in completion order rather than input order.
    """
    with get_context(method).Pool(processes, maxtasksperchild=1) as pool:
        return list(
            tqdm(
                pool.imap_unordered(func, inputs),
                total=len(inputs),
            )
        )


def filter_df(
    df: pd.DataFrame, filter_values: Dict[str, Iterable[Any]]
) -> pd.DataFrame:
    """Rows whose columns take any of the given values, for every column.

    Args:
        df: Table to filter, e.g. the phenotype table of an expression set.
        filter_values: Accepted values per column. An empty mapping keeps
            every row.

    Raises:
        ValueError: If a column of `filter_values` is not in `df`.

    Example:
        >>> filter_df(pheno_df, {"strain": ["A", "B"], "sex": ["F"]})
        # female samples of strains A and B
    """
    if len(missing := [k for k in filter_values if k not in df.columns]) > 0:
        raise ValueError(f"Columns not found in dataframe: {missing}")

    if len(filter_values) == 0:
        return df

    return df[
        np.logical_and.reduce(
            [
                df[column].isin(list(target_values)).to_numpy()
                for column, target_values in filter_values.items()
            ]
        )
    ]


def select_data_classes(
    metadata: pd.DataFrame, classes_filters: Iterable[Dict[str, Iterable[Any]]]
) -> List[pd.Index]:
    """Sample names of each class, every class given by a `filter_df` filter.

    Raises:
        ValueError: If a sample falls into more than one class.

    Example:
        >>> test_ids, control_ids = select_data_classes(
        ...     pheno_df, [{"treatment": ["drug"]}, {"treatment": ["placebo"]}]
        ... )
    """
    # 1. Samples of each class
    class_samples_ids = [
        filter_df(metadata, classes_filter).index for classes_filter in classes_filters
    ]

    # 2. Classes must be disjoint
    seen = set()
    for samples_ids in class_samples_ids:
        if len(overlap := seen.intersection(samples_ids)) > 0:
            raise ValueError(
                "There are overlapping samples among classes, please check the "
                f"class filters: {sorted(overlap)[:5]}"
            )
        seen.update(samples_ids)

    return class_samples_ids
