"""
Genomic ranges: intervals on chromosomes with strand and metadata.

Coordinates follow Bioconductor's GenomicRanges conventions: 1-based and
closed, so a range with `start=10, end=12` covers three bases and a zero-width
range has `end == start - 1`. Strands are "+", "-" or "*" (unknown).

All operations return new objects, the original ranges are never modified.
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

STRANDS = ("+", "-", "*")
CORE_COLUMNS = ("seqnames", "start", "end", "strand")
COLUMN_SYNONYMS = {
    "seqnames": ("seqnames", "seqname", "chrom", "chr", "chromosome", "seqid"),
    "start": ("start", "chromStart", "txStart", "begin"),
    "end": ("end", "stop", "chromEnd", "txEnd"),
    "strand": ("strand",),
}
# Number of query ranges whose overlap candidates are expanded at once
_CHUNK_SIZE = 2048


def natural_key(seqname: str) -> List[Any]:
    """Sort key ordering chr2 before chr10."""
    return [int(t) if t.isdigit() else t for t in re.split(r"(\d+)", str(seqname))]


class GenomicRanges:
    """
    Collection of genomic ranges with optional names and metadata columns.

    Args:
        seqnames: Chromosome (sequence) name of every range.
        starts: 1-based start positions.
        ends: 1-based, inclusive end positions.
        strands: Strand of every range, or a single strand for all of them.
        names: Optional range names, used as index of `to_dataframe()`.
        metadata: Optional table of metadata columns, one row per range.

    Raises:
        ValueError: On inconsistent lengths, negative widths, starts lower
            than 1 or invalid strands.

    Examples:
        >>> peaks = GenomicRanges(["chr1", "chr1"], [100, 500], [200, 650])
        >>> genes = GenomicRanges.from_dataframe(genes_df)
        >>> peaks.find_overlaps(genes.promoters(2000, 200))
    """

    def __init__(
        self,
        seqnames: Iterable[str],
        starts: Iterable[int],
        ends: Iterable[int],
        strands: Union[str, Iterable[str]] = "*",
        names: Optional[Iterable[Any]] = None,
        metadata: Optional[pd.DataFrame] = None,
    ) -> None:
        seqnames = [str(s) for s in seqnames]
        n = len(seqnames)
        if isinstance(strands, str):
            strands = [strands] * n

        df = pd.DataFrame(
            {
                "seqnames": pd.Series(seqnames, dtype=object),
                "start": np.asarray(list(starts), dtype=np.int64),
                "end": np.asarray(list(ends), dtype=np.int64),
                "strand": pd.Series([str(s) for s in strands], dtype=object),
            }
        )
        if len(df) != n or df.isna().any().any():
            raise ValueError("seqnames, starts, ends and strands must have equal length.")

        if metadata is not None:
            if len(metadata) != n:
                raise ValueError(
                    f"Metadata has {len(metadata)} rows but there are {n} ranges."
                )
            if len(clash := set(CORE_COLUMNS).intersection(metadata.columns)) > 0:
                raise ValueError(f"Metadata columns clash with core columns: {clash}")
            df = pd.concat([df, metadata.reset_index(drop=True)], axis=1)

        if names is not None:
            df.index = pd.Index(list(names), name="name")

        self._df = self._validate(df)

    @staticmethod
    def _validate(df: pd.DataFrame) -> pd.DataFrame:
        if (df["start"] < 1).any():
            raise ValueError("Range starts must be >= 1 (1-based coordinates).")
        if (df["end"] < df["start"] - 1).any():
            bad = df[df["end"] < df["start"] - 1].iloc[0]
            raise ValueError(
                f"Negative width range {bad['seqnames']}:{bad['start']}-{bad['end']}"
            )
        if len(bad_strands := set(df["strand"]).difference(STRANDS)) > 0:
            raise ValueError(f"Invalid strands {bad_strands}, must be one of {STRANDS}")
        return df

    @classmethod
    def _from_frame(cls, df: pd.DataFrame) -> "GenomicRanges":
        gr = cls.__new__(cls)
        gr._df = cls._validate(df)
        return gr

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        keep_extra_columns: bool = True,
        starts_in_df_are_0based: bool = False,
        names_col: Optional[str] = None,
    ) -> "GenomicRanges":
        """
        Build ranges from a table, finding the columns that describe them.

        Column names are matched case-insensitively against common synonyms
        (e.g. "chrom", "chromStart", "chromEnd" for BED-like tables). A
        missing strand column means unknown strand.

        Args:
            df: Table with one range per row.
            keep_extra_columns: Keep the remaining columns as metadata.
            starts_in_df_are_0based: Starts are 0-based (BED), 1 is added.
            names_col: Column holding the range names. The index of `df` is
                used when it is not a default integer index.

        Raises:
            ValueError: If the sequence name, start or end column is missing.
        """
        lower_cols = {str(c).lower(): c for c in df.columns}
        found = {}
        for core_col, synonyms in COLUMN_SYNONYMS.items():
            for synonym in synonyms:
                if synonym.lower() in lower_cols:
                    found[core_col] = lower_cols[synonym.lower()]
                    break
        if len(missing := {"seqnames", "start", "end"}.difference(found)) > 0:
            raise ValueError(f"Could not find columns for {sorted(missing)}.")

        starts = df[found["start"]].astype(np.int64)
        if starts_in_df_are_0based:
            starts = starts + 1

        names = None
        if names_col is not None:
            names = df[names_col]
        elif not isinstance(df.index, pd.RangeIndex):
            names = df.index

        metadata = None
        if keep_extra_columns:
            metadata = df.drop(
                columns=[*found.values(), *([names_col] if names_col else [])]
            )
            metadata = metadata.drop(
                columns=[*CORE_COLUMNS, "width"], errors="ignore"
            )

        strands = (
            df[found["strand"]].fillna("*").replace({".": "*"})
            if "strand" in found
            else "*"
        )
        return cls(
            seqnames=df[found["seqnames"]],
            starts=starts,
            ends=df[found["end"]],
            strands=strands,
            names=names,
            metadata=metadata,
        )

    @classmethod
    def concat(cls, ranges: Sequence["GenomicRanges"]) -> "GenomicRanges":
        """Concatenate several range collections, metadata columns are unioned."""
        return cls._from_frame(pd.concat([gr._df for gr in ranges]))

    def __len__(self) -> int:
        return len(self._df)

    def __repr__(self) -> str:
        return f"GenomicRanges with {len(self)} ranges\n{self.to_dataframe().head(10)}"

    def __getitem__(self, key: Any) -> "GenomicRanges":
        """Select ranges by position, slice, boolean mask or names."""
        if isinstance(key, (int, np.integer)):
            key = [key]
        if isinstance(key, (pd.Series, pd.Index)):
            key = key.to_numpy()
        if isinstance(key, slice):
            return self._from_frame(self._df.iloc[key])

        key_array = np.asarray(key) if not isinstance(key, str) else np.asarray([key])
        if key_array.size == 0:
            return self._from_frame(self._df.iloc[[]])
        if key_array.dtype.kind in "iub":
            return self._from_frame(self._df.iloc[key_array])

        if len(missing := set(key_array.tolist()).difference(self._df.index)) > 0:
            raise KeyError(f"Unknown range names: {sorted(map(str, missing))}")
        return self._from_frame(self._df.loc[key_array])

    @property
    def seqnames(self) -> pd.Series:
        return self._df["seqnames"]

    @property
    def start(self) -> pd.Series:
        return self._df["start"]

    @property
    def end(self) -> pd.Series:
        return self._df["end"]

    @property
    def strand(self) -> pd.Series:
        return self._df["strand"]

    @property
    def width(self) -> pd.Series:
        return (self._df["end"] - self._df["start"] + 1).rename("width")

    @property
    def names(self) -> pd.Index:
        return self._df.index

    @property
    def mcols(self) -> pd.DataFrame:
        """Metadata columns."""
        return self._df.drop(columns=list(CORE_COLUMNS))

    def mcol(self, name: str) -> pd.Series:
        if name not in self.mcols.columns:
            raise KeyError(f'"{name}" is not a metadata column')
        return self._df[name]

    def with_mcols(self, **columns: Any) -> "GenomicRanges":
        """Return a copy with the given metadata columns added or replaced."""
        if len(clash := set(CORE_COLUMNS).intersection(columns)) > 0:
            raise ValueError(f"Cannot replace core columns {clash}")
        df = self._df.copy()
        for name, values in columns.items():
            df[name] = values.to_numpy() if isinstance(values, pd.Series) else values
        return self._from_frame(df)

    def to_dataframe(self) -> pd.DataFrame:
        df = self._df.copy()
        df.insert(3, "width", self.width)
        return df

    def seqlevels(self) -> List[str]:
        return sorted(self._df["seqnames"].unique(), key=natural_key)

    def sort(self, ignore_strand: bool = False) -> "GenomicRanges":
        """Sort by sequence name (natural order), strand, start and end."""
        df = self._df.copy()
        df["_seq_rank"] = df["seqnames"].map(
            {s: i for i, s in enumerate(self.seqlevels())}
        )
        df["_strand_rank"] = 0 if ignore_strand else df["strand"].map(
            {s: i for i, s in enumerate(STRANDS)}
        )
        df = df.sort_values(
            ["_seq_rank", "_strand_rank", "start", "end"], kind="mergesort"
        )
        return self._from_frame(df.drop(columns=["_seq_rank", "_strand_rank"]))

    # ------------------------------------------------------------------
    # Intra-range operations
    # ------------------------------------------------------------------

    def _with_coordinates(self, starts: np.ndarray, ends: np.ndarray) -> "GenomicRanges":
        df = self._df.copy()
        starts = np.asarray(starts, dtype=np.int64)
        ends = np.asarray(ends, dtype=np.int64)

        # Ranges are trimmed at the beginning of the sequence
        if (out_of_bounds := starts < 1).any():
            logging.debug(f"Trimming {int(out_of_bounds.sum())} ranges at position 1")
            ends = np.where(out_of_bounds, np.maximum(ends, 0), ends)
            starts = np.maximum(starts, 1)

        df["start"], df["end"] = starts, ends
        return self._from_frame(df)

    def _is_minus(self) -> np.ndarray:
        return (self._df["strand"] == "-").to_numpy()

    def shift(self, n: int) -> "GenomicRanges":
        return self._with_coordinates(self.start + n, self.end + n)

    def resize(self, width: int, fix: str = "start") -> "GenomicRanges":
        """
        Resize ranges to `width`, anchoring them at `fix` ("start", "end" or
        "center"). "start" and "end" are strand-aware: the start of a range
        on the minus strand is its rightmost position.
        """
        if width < 0:
            raise ValueError("width must be non-negative")
        if fix not in ("start", "end", "center"):
            raise ValueError('fix must be "start", "end" or "center"')

        start, end = self.start.to_numpy(), self.end.to_numpy()
        if fix == "center":
            new_start = start + (end - start + 1 - width) // 2
        else:
            anchor_left = self._is_minus() != (fix == "start")
            new_start = np.where(anchor_left, start, end - width + 1)

        return self._with_coordinates(new_start, new_start + width - 1)

    def flank(self, width: int, start: bool = True, both: bool = False) -> "GenomicRanges":
        """
        Regions of `width` bases flanking the ranges, upstream (`start=True`)
        or downstream (`start=False`) with respect to the strand. With
        `both=True` the flank extends `width` bases into the range too.
        """
        s, e = self.start.to_numpy(), self.end.to_numpy()
        use_left = self._is_minus() != start

        if both:
            new_start = np.where(use_left, s - width, e - width + 1)
            new_end = np.where(use_left, s + width - 1, e + width)
        else:
            new_start = np.where(use_left, s - width, e + 1)
            new_end = np.where(use_left, s - 1, e + width)

        return self._with_coordinates(new_start, new_end)

    def promoters(self, upstream: int = 2000, downstream: int = 200) -> "GenomicRanges":
        """
        Promoter regions around the start of every range: `upstream` bases
        before it and `downstream` bases from it (the start included).
        """
        if upstream < 0 or downstream < 0:
            raise ValueError("upstream and downstream must be non-negative")

        s, e = self.start.to_numpy(), self.end.to_numpy()
        minus = self._is_minus()
        new_start = np.where(minus, e - downstream + 1, s - upstream)
        new_end = np.where(minus, e + upstream, s + downstream - 1)
        return self._with_coordinates(new_start, new_end)

    def tss(self) -> "GenomicRanges":
        """One-base ranges at the strand-aware start of every range."""
        return self.resize(1, fix="start")

    # ------------------------------------------------------------------
    # Inter-range operations
    # ------------------------------------------------------------------

    def _grouped(self, ignore_strand: bool) -> pd.DataFrame:
        df = self._df[list(CORE_COLUMNS)].copy()
        if ignore_strand:
            df["strand"] = "*"
        return df.sort_values(["seqnames", "strand", "start", "end"], kind="mergesort")

    def reduce(self, ignore_strand: bool = False, min_gapwidth: int = 1) -> "GenomicRanges":
        """
        Merge overlapping ranges, and ranges separated by less than
        `min_gapwidth` bases, per sequence and strand. Metadata is dropped.
        """
        reduced = []
        for (seqname, strand), group in self._grouped(ignore_strand).groupby(
            ["seqnames", "strand"], sort=False
        ):
            starts, ends = group["start"].to_numpy(), group["end"].to_numpy()
            running_end = np.maximum.accumulate(ends)
            new_block = np.ones(len(starts), dtype=bool)
            new_block[1:] = starts[1:] > running_end[:-1] + min_gapwidth

            reduced.append(
                pd.DataFrame(
                    {
                        "seqnames": seqname,
                        "start": starts[new_block],
                        "end": np.maximum.reduceat(ends, np.flatnonzero(new_block)),
                        "strand": strand,
                    }
                )
            )

        if len(reduced) == 0:
            return self._from_frame(self._df[list(CORE_COLUMNS)].iloc[0:0])
        return self._from_frame(pd.concat(reduced, ignore_index=True)).sort()

    def gaps(self, ignore_strand: bool = False) -> "GenomicRanges":
        """Regions between the reduced ranges of each sequence and strand."""
        reduced = self.reduce(ignore_strand=ignore_strand)._df
        gap_dfs = []
        for (seqname, strand), group in reduced.groupby(["seqnames", "strand"]):
            starts, ends = group["start"].to_numpy(), group["end"].to_numpy()
            gap_dfs.append(
                pd.DataFrame(
                    {
                        "seqnames": seqname,
                        "start": ends[:-1] + 1,
                        "end": starts[1:] - 1,
                        "strand": strand,
                    }
                )
            )

        gaps_df = (
            pd.concat(gap_dfs, ignore_index=True)
            if len(gap_dfs) > 0
            else reduced.iloc[0:0]
        )
        gaps_df = gaps_df[gaps_df["end"] >= gaps_df["start"]]
        return self._from_frame(gaps_df.reset_index(drop=True)).sort()

    # ------------------------------------------------------------------
    # Between-range operations
    # ------------------------------------------------------------------

    @staticmethod
    def _compatible_strands(
        strand_a: np.ndarray, strand_b: np.ndarray, ignore_strand: bool
    ) -> np.ndarray:
        if ignore_strand:
            return np.ones(len(strand_a), dtype=bool)
        return (strand_a == strand_b) | (strand_a == "*") | (strand_b == "*")

    def find_overlaps(
        self,
        subject: "GenomicRanges",
        max_gap: int = -1,
        min_overlap: int = 0,
        ignore_strand: bool = False,
    ) -> pd.DataFrame:
        """
        Find all pairs of overlapping query (self) and subject ranges.

        Args:
            subject: Ranges to compare against.
            max_gap: Ranges separated by at most `max_gap` bases count as
                overlapping. The default (-1) requires at least one shared base.
            min_overlap: Minimum number of shared bases.
            ignore_strand: Compare ranges regardless of strand. Otherwise
                strands must be equal or one of them must be "*".

        Returns:
            A DataFrame with positional indices `query_hits` and
            `subject_hits`, sorted by query and then subject.
        """
        slack = max_gap + 1
        hits = []
        subject_df = subject._df

        for seqname, query_group in self._df.groupby("seqnames", sort=False):
            subject_group = subject_df[subject_df["seqnames"] == seqname]
            if subject_group.empty:
                continue

            # 1. Subjects sorted by start for binary search of candidates
            s_pos = np.flatnonzero((subject_df["seqnames"] == seqname).to_numpy())
            s_start = subject_group["start"].to_numpy()
            s_end = subject_group["end"].to_numpy()
            order = np.argsort(s_start, kind="mergesort")
            s_start_sorted = s_start[order]
            max_width = int((s_end - s_start + 1).max())

            q_pos = np.flatnonzero((self._df["seqnames"] == seqname).to_numpy())
            q_start = query_group["start"].to_numpy()
            q_end = query_group["end"].to_numpy()

            lo = np.searchsorted(
                s_start_sorted, q_start - slack - max_width + 1, side="left"
            )
            hi = np.searchsorted(s_start_sorted, q_end + slack, side="right")
            counts = np.maximum(hi - lo, 0)
            if counts.sum() == 0:
                continue

            # 2. Expand candidate pairs
            q_idx = np.repeat(np.arange(len(q_start)), counts)
            offsets = np.arange(counts.sum()) - np.repeat(
                np.cumsum(counts) - counts, counts
            )
            s_idx = order[np.repeat(lo, counts) + offsets]

            # 3. Keep exact hits
            qs, qe = q_start[q_idx], q_end[q_idx]
            sub_s, sub_e = s_start[s_idx], s_end[s_idx]
            keep = (sub_s <= qe + slack) & (sub_e >= qs - slack)
            if max_gap == -1:
                keep &= (qe >= qs) & (sub_e >= sub_s)
            if min_overlap > 0:
                keep &= (np.minimum(qe, sub_e) - np.maximum(qs, sub_s) + 1) >= min_overlap
            keep &= self._compatible_strands(
                query_group["strand"].to_numpy()[q_idx],
                subject_group["strand"].to_numpy()[s_idx],
                ignore_strand,
            )

            hits.append(
                pd.DataFrame(
                    {"query_hits": q_pos[q_idx[keep]], "subject_hits": s_pos[s_idx[keep]]}
                )
            )

        if len(hits) == 0:
            return pd.DataFrame(
                {
                    "query_hits": pd.Series(dtype=np.int64),
                    "subject_hits": pd.Series(dtype=np.int64),
                }
            )
        return (
            pd.concat(hits, ignore_index=True)
            .sort_values(["query_hits", "subject_hits"])
            .reset_index(drop=True)
        )

    def count_overlaps(self, subject: "GenomicRanges", **kwargs: Any) -> np.ndarray:
        """Number of subject ranges overlapping each query range."""
        hits = self.find_overlaps(subject, **kwargs)
        return np.bincount(hits["query_hits"].to_numpy(), minlength=len(self))

    def overlaps_any(self, subject: "GenomicRanges", **kwargs: Any) -> np.ndarray:
        return self.count_overlaps(subject, **kwargs) > 0

    def subset_by_overlaps(
        self, subject: "GenomicRanges", invert: bool = False, **kwargs: Any
    ) -> "GenomicRanges":
        """Query ranges overlapping (or not, with `invert`) any subject range."""
        mask = self.overlaps_any(subject, **kwargs)
        return self[~mask if invert else mask]

    @staticmethod
    def pairwise_distance(
        start_a: np.ndarray, end_a: np.ndarray, start_b: np.ndarray, end_b: np.ndarray
    ) -> np.ndarray:
        """Bases between ranges, 0 for overlapping or adjacent ranges."""
        return np.maximum(0, np.maximum(start_a - end_b, start_b - end_a) - 1)

    def distance(self, other: "GenomicRanges", ignore_strand: bool = False) -> np.ndarray:
        """
        Element-wise distance between the i-th range of self and of `other`.
        NaN for ranges on different sequences or incompatible strands.
        """
        if len(self) != len(other):
            raise ValueError("Both range collections must have the same length.")
        dist = self.pairwise_distance(
            self.start.to_numpy(),
            self.end.to_numpy(),
            other.start.to_numpy(),
            other.end.to_numpy(),
        ).astype(float)
        valid = (self.seqnames.to_numpy() == other.seqnames.to_numpy()) & (
            self._compatible_strands(
                self.strand.to_numpy(), other.strand.to_numpy(), ignore_strand
            )
        )
        return np.where(valid, dist, np.nan)

    @staticmethod
    def _nearest_sorted(
        q_start: np.ndarray,
        q_end: np.ndarray,
        s_start: np.ndarray,
        s_end: np.ndarray,
        s_pos: np.ndarray,
    ) -> np.ndarray:
        """
        Nearest subject of every query on one sequence, by binary search over
        subjects sorted by start and by end. Returns subject positions or -1.
        """
        n_query = len(q_start)
        nearest_idx = np.full(n_query, -1, dtype=np.int64)
        if len(s_pos) == 0 or n_query == 0:
            return nearest_idx
        big = np.iinfo(np.int64).max

        # 0. Overlapping subjects, lowest position wins
        by_start = np.lexsort((s_pos, s_start))
        start_sorted = s_start[by_start]
        max_width = int(np.maximum(s_end - s_start + 1, 1).max())
        overlap_best = np.full(n_query, big, dtype=np.int64)
        for chunk_start in range(0, n_query, _CHUNK_SIZE):
            chunk = np.arange(chunk_start, min(chunk_start + _CHUNK_SIZE, n_query))
            lo = np.searchsorted(start_sorted, q_start[chunk] - max_width + 1, "left")
            hi = np.searchsorted(start_sorted, q_end[chunk], side="right")
            counts = np.maximum(hi - lo, 0)
            if counts.sum() == 0:
                continue
            q_idx = np.repeat(chunk, counts)
            offsets = np.arange(counts.sum()) - np.repeat(
                np.cumsum(counts) - counts, counts
            )
            s_idx = by_start[np.repeat(lo, counts) + offsets]
            keep = s_end[s_idx] >= q_start[q_idx]
            np.minimum.at(overlap_best, q_idx[keep], s_pos[s_idx[keep]])

        # 1. Closest subject ending before each query; among equal ends the
        # lowest position sorts last
        by_end = np.lexsort((-s_pos, s_end))
        end_sorted = s_end[by_end]
        left = np.searchsorted(end_sorted, q_start, side="left") - 1
        has_left = left >= 0
        left_idx = by_end[np.maximum(left, 0)]
        left_gap = np.where(has_left, q_start - s_end[left_idx], big)
        left_pos = np.where(has_left, s_pos[left_idx], big)

        # 2. Closest subject starting after each query
        right = np.searchsorted(start_sorted, q_end, side="right")
        has_right = right < len(start_sorted)
        right_idx = by_start[np.minimum(right, len(start_sorted) - 1)]
        right_gap = np.where(has_right, s_start[right_idx] - q_end, big)
        right_pos = np.where(has_right, s_pos[right_idx], big)

        take_left = (left_gap < right_gap) | (
            (left_gap == right_gap) & (left_pos < right_pos)
        )
        flank_pos = np.where(take_left, left_pos, right_pos)
        best = np.where(overlap_best < big, overlap_best, flank_pos)
        found = best < big
        nearest_idx[found] = best[found]
        return nearest_idx

    def nearest(self, subject: "GenomicRanges", ignore_strand: bool = False) -> np.ndarray:
        """
        Positional index of the nearest subject range for every query range.

        Overlapping subjects are preferred over adjacent ones; among equally
        near subjects, the first one is chosen. -1 when there is no subject on
        the same sequence (and compatible strand).
        """
        nearest_idx = np.full(len(self), -1, dtype=np.int64)
        subject_df = subject._df
        q_seqnames = self._df["seqnames"].to_numpy()
        q_strands = self._df["strand"].to_numpy()
        s_seqnames = subject_df["seqnames"].to_numpy()
        s_strands = subject_df["strand"].to_numpy()

        for seqname in pd.unique(q_seqnames):
            s_on_seq = s_seqnames == seqname
            if not s_on_seq.any():
                continue
            q_on_seq = q_seqnames == seqname
            strand_groups = (
                [None] if ignore_strand else pd.unique(q_strands[q_on_seq])
            )

            for strand in strand_groups:
                q_mask = q_on_seq if strand is None else q_on_seq & (q_strands == strand)
                s_mask = s_on_seq
                if strand is not None and strand != "*":
                    s_mask = s_on_seq & ((s_strands == strand) | (s_strands == "*"))

                q_pos = np.flatnonzero(q_mask)
                s_pos = np.flatnonzero(s_mask)
                nearest_idx[q_pos] = self._nearest_sorted(
                    self._df["start"].to_numpy()[q_pos],
                    self._df["end"].to_numpy()[q_pos],
                    subject_df["start"].to_numpy()[s_pos],
                    subject_df["end"].to_numpy()[s_pos],
                    s_pos,
                )

        return nearest_idx

    def distance_to_nearest(
        self, subject: "GenomicRanges", ignore_strand: bool = False
    ) -> pd.DataFrame:
        """
        Nearest subject of every query range and the distance between them.

        Returns:
            A DataFrame with `query_hits`, `subject_hits` and `distance`.
            Queries without any candidate subject are left out.
        """
        nearest_idx = self.nearest(subject, ignore_strand=ignore_strand)
        query_hits = np.flatnonzero(nearest_idx >= 0)
        subject_hits = nearest_idx[query_hits]

        distance = self.pairwise_distance(
            self.start.to_numpy()[query_hits],
            self.end.to_numpy()[query_hits],
            subject.start.to_numpy()[subject_hits],
            subject.end.to_numpy()[subject_hits],
        )
        return pd.DataFrame(
            {
                "query_hits": query_hits,
                "subject_hits": subject_hits,
                "distance": distance,
            }
        )

    # ------------------------------------------------------------------
    # Sequence naming styles
    # ------------------------------------------------------------------

    def seqlevels_style(self) -> str:
        """
        Naming style of the sequences: UCSC ("chr1"), NCBI ("1"), "mixed", or
        "unknown" when there are no ranges.
        """
        if len(self) == 0:
            return "unknown"
        has_prefix = self._df["seqnames"].str.startswith("chr")
        if has_prefix.all():
            return "UCSC"
        if not has_prefix.any():
            return "NCBI"
        return "mixed"

    def set_seqlevels_style(self, style: str) -> "GenomicRanges":
        """Rename sequences to the "UCSC" or the "NCBI" naming style."""
        if style == "UCSC":
            rename = {
                s: (
                    s
                    if s.startswith("chr")
                    else ("chrM" if s == "MT" else f"chr{s}")
                )
                for s in self._df["seqnames"].unique()
            }
        elif style == "NCBI":
            rename = {
                s: ("MT" if s == "chrM" else re.sub("^chr", "", s))
                for s in self._df["seqnames"].unique()
            }
        else:
            raise ValueError('style must be "UCSC" or "NCBI"')

        df = self._df.copy()
        df["seqnames"] = df["seqnames"].map(rename)
        return self._from_frame(df)
