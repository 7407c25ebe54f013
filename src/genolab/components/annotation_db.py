import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import numpy as np
import pandas as pd
from pydantic import ConfigDict
from pydantic.dataclasses import dataclass

MULTI_VALS = ("first", "list", "filter", "asNA")


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class AnnotationDB:
    """
    Annotation database mapping gene identifiers to biological metadata.

    Behaves like a Bioconductor `OrgDb` package queried with AnnotationDbi:
    each column of the backing table is a keytype (e.g. "ENTREZID",
    "ENSEMBL", "SYMBOL", "GENENAME", "CHR", "GO") and each row is one
    association. One-to-many mappings (a gene with several GO terms, a symbol
    with several Ensembl IDs) are simply several rows.

    Attributes:
        table: Long table of associations. All values are handled as strings.
        species: Species name, e.g. "Homo sapiens".

    Examples:
        >>> db = AnnotationDB.from_csv(Path("org_hs.csv"), species="Homo sapiens")
        >>> db.select(["7157"], columns=["SYMBOL", "CHR"], keytype="ENTREZID")
          ENTREZID SYMBOL CHR
        0     7157   TP53  17
    """

    table: pd.DataFrame
    species: str = "Homo sapiens"

    def __post_init__(self) -> None:
        if self.table.columns.has_duplicates:
            raise ValueError("Annotation table has duplicated columns.")
        self.table = self.table.apply(
            lambda col: col.where(col.isna(), col.astype(str))
        ).reset_index(drop=True)

    @classmethod
    def from_csv(
        cls, path: Path, species: str = "Homo sapiens", sep: Optional[str] = None
    ) -> "AnnotationDB":
        """Load an association table from a .csv (or .tsv/.txt) file."""
        if sep is None:
            sep = "\t" if path.suffix in (".tsv", ".txt") else ","
        return cls(table=pd.read_csv(path, sep=sep, dtype=str), species=species)

    def keytypes(self) -> List[str]:
        return list(self.table.columns)

    def columns(self) -> List[str]:
        return list(self.table.columns)

    def keys(self, keytype: str) -> List[str]:
        """All distinct non-missing values of `keytype`."""
        self._check_columns([keytype])
        return self.table[keytype].dropna().unique().tolist()

    def _check_columns(self, columns: Iterable[str]) -> None:
        if len(unknown := [c for c in columns if c not in self.table.columns]) > 0:
            raise ValueError(
                f"Invalid columns/keytypes {unknown}. Options are: {self.columns()}"
            )

    def select(
        self, keys: Iterable[str], columns: Iterable[str], keytype: str
    ) -> pd.DataFrame:
        """
        Retrieve `columns` for the given keys.

        Args:
            keys: Identifiers of type `keytype`.
            columns: Annotations to retrieve.
            keytype: Identifier type of the keys.

        Returns:
            A long DataFrame with one row per key and combination of mapped
            values, keys in input order. Keys without any mapping are kept
            with missing values.

        Raises:
            ValueError: If `keytype` or any of `columns` is not available.
        """
        columns = [c for c in columns if c != keytype]
        self._check_columns([keytype, *columns])
        keys = pd.unique(pd.Series([str(k) for k in keys], dtype=object))

        associations = self.table.loc[
            self.table[keytype].isin(keys), [keytype, *columns]
        ].drop_duplicates()
        if len(columns) > 0:
            associations = associations.dropna(subset=columns, how="all")

        result = (
            pd.DataFrame({keytype: keys})
            .merge(associations, on=keytype, how="left")
            .reset_index(drop=True)
        )

        if len(result) > len(keys):
            logging.info(
                f"select() returned 1:many mapping between keys and columns "
                f"({len(keys)} keys, {len(result)} rows)"
            )
        return result

    def map_ids(
        self,
        keys: Iterable[str],
        column: str,
        keytype: str,
        multi_vals: str = "first",
    ) -> pd.Series:
        """
        Map each key to a single value of `column`.

        Args:
            keys: Identifiers of type `keytype`.
            column: Target identifier type or annotation.
            keytype: Identifier type of the keys.
            multi_vals: What to do when a key maps to multiple values:
                "first" keeps the first one, "list" joins them with "/",
                "filter" drops the key and "asNA" returns a missing value.

        Returns:
            A Series indexed by the keys (input order), named `column`.
            Unmapped keys are missing values.
        """
        if multi_vals not in MULTI_VALS:
            raise ValueError(f"multi_vals must be one of {MULTI_VALS}")
        keys = [str(k) for k in keys]

        mapped = (
            self.select(keys, [column], keytype)
            .dropna(subset=[column])
            .groupby(keytype, sort=False)[column]
            .agg(list)
        )
        if mapped.empty:
            return pd.Series(
                np.nan, index=pd.Index(keys, name=keytype), name=column, dtype=object
            )

        if multi_vals == "first":
            mapped = mapped.str[0]
        elif multi_vals == "list":
            mapped = mapped.str.join("/")
        else:
            is_multi = mapped.str.len() > 1
            if multi_vals == "filter":
                keys = [k for k in keys if not is_multi.get(k, False)]
                mapped = mapped[~is_multi]
            mapped = mapped.str[0].where(~is_multi, np.nan)

        result = mapped.reindex(keys)
        result.index.name = keytype
        return result.rename(column)

    def annotate(
        self,
        df: pd.DataFrame,
        from_type: str = "ENTREZID",
        to_types: Iterable[str] = ("SYMBOL", "GENENAME"),
        replace_na: bool = False,
    ) -> pd.DataFrame:
        """
        Append annotation columns to a table indexed by gene identifiers.

        Multiple values are joined with "/". A column that could not be mapped
        for any gene is filled with the original identifiers.

        Args:
            df: Table indexed by identifiers of type `from_type`, e.g. the
                result of a differential expression test.
            from_type: Identifier type of the index.
            to_types: Annotations to add.
            replace_na: Whether to replace every unmapped value with the
                original identifier.
        """
        # 1. Get gene annotations
        to_types = [t for t in to_types if t != from_type]
        if len(to_types) == 0:
            return df.copy()
        feature_annotations = pd.concat(
            [
                self.map_ids(df.index, to_type, from_type, multi_vals="list")
                for to_type in to_types
            ],
            axis=1,
        )
        feature_annotations.index = df.index
        original_ids = df.index.astype(str).to_numpy()

        # 2. [Optional] Replace nans with original unmapped IDs
        for col in feature_annotations.columns:
            if replace_na or feature_annotations[col].isna().all():
                feature_annotations[col] = feature_annotations[col].where(
                    feature_annotations[col].notna(), original_ids
                )

        # 3. Existing columns are overwritten
        return pd.concat(
            [
                df.drop(columns=feature_annotations.columns, errors="ignore"),
                feature_annotations,
            ],
            axis=1,
        )

    def filter_unique(
        self, genes: Iterable[str], from_type: str = "ENSEMBL", to_type: str = "ENTREZID"
    ) -> List[str]:
        """
        Keep genes that map to exactly one `to_type` identifier which, in turn,
        is not shared with any other of the given genes.
        """
        mapped = self.map_ids(genes, to_type, from_type, multi_vals="list")
        mapped = mapped[~mapped.str.contains("/", na=False)].dropna()
        mapped = mapped.drop_duplicates(keep=False)
        return mapped.index.tolist()

    def keys_where(
        self, column: str, values: Union[str, Iterable[str]], keytype: str
    ) -> List[str]:
        """Keys of type `keytype` annotated with any of `values` in `column`."""
        self._check_columns([column, keytype])
        values = [values] if isinstance(values, str) else [str(v) for v in values]
        rows = self.table[self.table[column].isin(values)]
        return rows[keytype].dropna().unique().tolist()
