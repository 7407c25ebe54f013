import numpy as np
import pandas as pd
import pytest

from genolab.components.genomic_ranges import GenomicRanges, natural_key


@pytest.fixture
def ranges() -> GenomicRanges:
    return GenomicRanges(
        seqnames=["chr1", "chr1", "chr1", "chr2"],
        starts=[100, 150, 400, 100],
        ends=[200, 300, 500, 200],
        strands=["+", "+", "-", "*"],
        names=["a", "b", "c", "d"],
        metadata=pd.DataFrame({"score": [1, 2, 3, 4]}),
    )


def test_construction(ranges):
    assert len(ranges) == 4
    assert list(ranges.width) == [101, 151, 101, 101]
    assert list(ranges.names) == ["a", "b", "c", "d"]
    assert list(ranges.mcol("score")) == [1, 2, 3, 4]
    assert list(ranges.to_dataframe().columns[:5]) == [
        "seqnames",
        "start",
        "end",
        "width",
        "strand",
    ]


@pytest.mark.parametrize(
    "starts,ends,strands",
    [
        ([0], [10], "*"),  # start before position 1
        ([10], [5], "*"),  # negative width
        ([10], [20], "x"),  # invalid strand
    ],
)
def test_invalid_ranges(starts, ends, strands):
    with pytest.raises(ValueError):
        GenomicRanges(["chr1"], starts, ends, strands)


def test_zero_width_range_allowed():
    gr = GenomicRanges(["chr1"], [10], [9])
    assert gr.width.item() == 0


def test_metadata_clash_raises():
    with pytest.raises(ValueError):
        GenomicRanges(["chr1"], [1], [2], metadata=pd.DataFrame({"start": [1]}))


def test_from_dataframe_bed_like():
    df = pd.DataFrame(
        {
            "chrom": ["chr1", "chr2"],
            "chromStart": [0, 99],
            "chromEnd": [10, 200],
            "strand": [".", "-"],
            "name": ["p1", "p2"],
        }
    )
    gr = GenomicRanges.from_dataframe(df, starts_in_df_are_0based=True)

    assert list(gr.start) == [1, 100]
    assert list(gr.end) == [10, 200]
    assert list(gr.strand) == ["*", "-"]
    assert list(gr.mcols.columns) == ["name"]

    with pytest.raises(ValueError):
        GenomicRanges.from_dataframe(df.drop(columns="chromEnd"))


def test_natural_sort(ranges):
    assert sorted(["chr10", "chr2", "chrX", "chr1"], key=natural_key) == [
        "chr1",
        "chr2",
        "chr10",
        "chrX",
    ]
    shuffled = ranges[[3, 2, 1, 0]]
    assert list(shuffled.sort().names) == ["a", "b", "c", "d"]


def test_intra_range_operations(ranges):
    shifted = ranges.shift(10)
    assert list(shifted.start) == [110, 160, 410, 110]

    resized = ranges.resize(10, fix="start")
    # the start of a minus strand range is its rightmost base
    assert (resized.start.iloc[0], resized.end.iloc[0]) == (100, 109)
    assert (resized.start.iloc[2], resized.end.iloc[2]) == (491, 500)

    tss = ranges.tss()
    assert list(tss.start) == [100, 150, 500, 100]
    assert (tss.width == 1).all()

    # original ranges untouched
    assert list(ranges.start) == [100, 150, 400, 100]


def test_flank(ranges):
    upstream = ranges.flank(10)
    assert (upstream.start.iloc[0], upstream.end.iloc[0]) == (90, 99)
    assert (upstream.start.iloc[2], upstream.end.iloc[2]) == (501, 510)

    downstream = ranges.flank(10, start=False)
    assert (downstream.start.iloc[0], downstream.end.iloc[0]) == (201, 210)


def test_promoters_trimmed_at_sequence_start(ranges):
    promoters = ranges.promoters(upstream=150, downstream=20)

    assert (promoters.start.iloc[0], promoters.end.iloc[0]) == (1, 119)
    assert (promoters.start.iloc[2], promoters.end.iloc[2]) == (481, 650)
    with pytest.raises(ValueError):
        ranges.promoters(upstream=-1)


def test_reduce_and_gaps():
    gr = GenomicRanges(
        ["chr1", "chr1", "chr1", "chr1"],
        [1, 50, 101, 300],
        [60, 100, 120, 400],
    )
    reduced = gr.reduce()
    assert list(zip(reduced.start, reduced.end)) == [(1, 120), (300, 400)]

    kept_apart = gr.reduce(min_gapwidth=0)
    assert list(zip(kept_apart.start, kept_apart.end)) == [(1, 100), (101, 120), (300, 400)]

    gaps = gr.gaps()
    assert list(zip(gaps.start, gaps.end)) == [(121, 299)]


def test_reduce_by_strand(ranges):
    reduced = ranges.reduce()
    assert len(reduced) == 3
    assert len(ranges.reduce(ignore_strand=True)) == 3


def test_find_overlaps(ranges):
    subject = GenomicRanges(
        ["chr1", "chr1", "chr2"], [250, 450, 150], [260, 460, 160], ["+", "+", "-"]
    )
    hits = ranges.find_overlaps(subject)

    assert list(zip(hits["query_hits"], hits["subject_hits"])) == [(1, 0), (3, 2)]
    # strand of "c" (-) is incompatible with subject 1 (+) unless ignored
    hits = ranges.find_overlaps(subject, ignore_strand=True)
    assert (2, 1) in list(zip(hits["query_hits"], hits["subject_hits"]))


def test_find_overlaps_max_gap_and_min_overlap():
    query = GenomicRanges(["chr1"], [100], [200])
    subject = GenomicRanges(["chr1", "chr1"], [201, 195], [250, 300])

    assert list(query.find_overlaps(subject)["subject_hits"]) == [1]
    assert list(query.find_overlaps(subject, max_gap=0)["subject_hits"]) == [0, 1]
    assert len(query.find_overlaps(subject, min_overlap=10)) == 0


def test_count_and_subset_by_overlaps(ranges):
    subject = GenomicRanges(["chr1"], [180], [420])

    assert list(ranges.count_overlaps(subject)) == [1, 1, 1, 0]
    assert list(ranges.subset_by_overlaps(subject).names) == ["a", "b", "c"]
    assert list(ranges.subset_by_overlaps(subject, invert=True).names) == ["d"]


def test_distance(ranges):
    other = GenomicRanges(
        ["chr1", "chr1", "chr2", "chr2"], [201, 350, 400, 50], [210, 360, 410, 60]
    )
    distance = ranges.distance(other)

    # adjacent ranges are at distance 0
    assert distance[0] == 0
    assert distance[1] == 49
    assert np.isnan(distance[2])
    assert distance[3] == 39

    with pytest.raises(ValueError):
        ranges.distance(other[[0, 1]])


def test_nearest_prefers_overlapping_subjects():
    query = GenomicRanges(["chr1", "chr1", "chr3"], [100, 1000, 5], [110, 1010, 10])
    subject = GenomicRanges(
        ["chr1", "chr1", "chr1", "chr1"],
        [111, 90, 900, 1100],
        [120, 100, 950, 1160],
    )

    assert list(query.nearest(subject)) == [1, 2, -1]

    hits = query.distance_to_nearest(subject)
    assert list(hits["query_hits"]) == [0, 1]
    assert list(hits["distance"]) == [0, 49]


def test_nearest_respects_strand():
    query = GenomicRanges(["chr1"], [100], [110], ["+"])
    subject = GenomicRanges(["chr1", "chr1"], [120, 500], [130, 510], ["-", "+"])

    assert list(query.nearest(subject)) == [1]
    assert list(query.nearest(subject, ignore_strand=True)) == [0]


def test_seqlevels_style():
    ucsc = GenomicRanges(["chr1", "chrM", "chrX"], [1, 1, 1], [5, 5, 5])
    assert ucsc.seqlevels_style() == "UCSC"

    ncbi = ucsc.set_seqlevels_style("NCBI")
    assert ncbi.seqlevels_style() == "NCBI"
    assert list(ncbi.seqnames) == ["1", "MT", "X"]
    assert list(ncbi.set_seqlevels_style("UCSC").seqnames) == ["chr1", "chrM", "chrX"]

    mixed = GenomicRanges(["chr1", "2"], [1, 1], [5, 5])
    assert mixed.seqlevels_style() == "mixed"
    with pytest.raises(ValueError):
        ucsc.set_seqlevels_style("Ensembl")


def test_with_mcols_and_concat(ranges):
    annotated = ranges.with_mcols(gene=["g1", "g2", "g3", "g4"])
    assert list(annotated.mcols.columns) == ["score", "gene"]
    assert "gene" not in ranges.mcols.columns

    with pytest.raises(ValueError):
        ranges.with_mcols(start=[1, 1, 1, 1])

    combined = GenomicRanges.concat([ranges, ranges[[0]]])
    assert len(combined) == 5


def test_select_by_names(ranges):
    selected = ranges[["b"]]
    assert list(selected.names) == ["b"]
    assert list(selected.start) == [150]

    assert list(ranges["c"].end) == [500]
    assert list(ranges[pd.Index(["d", "a"])].names) == ["d", "a"]
    assert list(ranges[ranges.seqnames == "chr2"].names) == ["d"]
    assert list(ranges[1:3].names) == ["b", "c"]
    assert len(ranges[[]]) == 0

    with pytest.raises(KeyError):
        ranges[["a", "z"]]


@pytest.mark.parametrize(
    "fix,expected_a,expected_c",
    [
        ("end", (190, 200), (400, 410)),
        ("center", (145, 155), (445, 455)),
    ],
)
def test_resize_anchors(ranges, fix, expected_a, expected_c):
    resized = ranges.resize(11, fix=fix)
    assert (resized.start.iloc[0], resized.end.iloc[0]) == expected_a
    assert (resized.start.iloc[2], resized.end.iloc[2]) == expected_c


def test_flank_both_sides(ranges):
    upstream = ranges.flank(10, both=True)
    assert (upstream.start.iloc[0], upstream.end.iloc[0]) == (90, 109)
    assert (upstream.start.iloc[2], upstream.end.iloc[2]) == (491, 510)

    downstream = ranges.flank(10, start=False, both=True)
    assert (downstream.start.iloc[0], downstream.end.iloc[0]) == (191, 210)
    assert (downstream.start.iloc[2], downstream.end.iloc[2]) == (390, 409)


def test_nearest_ties_go_to_first_subject():
    query = GenomicRanges(["chr1"], [100], [110])
    right_first = GenomicRanges(["chr1", "chr1"], [120, 80], [130, 90])
    left_first = GenomicRanges(["chr1", "chr1"], [80, 120], [90, 130])

    assert list(query.nearest(right_first)) == [0]
    assert list(query.nearest(left_first)) == [0]


def _nearest_brute_force(query, subject, ignore_strand):
    expected = []
    for q in query.to_dataframe().itertuples():
        best, best_score = -1, np.inf
        for j, s in enumerate(subject.to_dataframe().itertuples()):
            if s.seqnames != q.seqnames:
                continue
            compatible = "*" in (q.strand, s.strand) or q.strand == s.strand
            if not (ignore_strand or compatible):
                continue
            gap = max(q.start - s.end, s.start - q.end)
            score = 0 if gap <= 0 else 2 * (gap - 1) + 1
            if score < best_score:
                best, best_score = j, score
        expected.append(best)
    return expected


def _random_ranges(rng, n):
    starts = rng.integers(1, 5000, size=n)
    return GenomicRanges(
        seqnames=rng.choice(["chr1", "chr2"], size=n),
        starts=starts,
        ends=starts + rng.integers(0, 150, size=n),
        strands=rng.choice(["+", "-", "*"], size=n),
    )


@pytest.mark.parametrize("ignore_strand", [False, True])
def test_nearest_matches_exhaustive_search(ignore_strand):
    rng = np.random.default_rng(11)
    query = _random_ranges(rng, 150)
    subject = _random_ranges(rng, 120)

    assert list(query.nearest(subject, ignore_strand=ignore_strand)) == (
        _nearest_brute_force(query, subject, ignore_strand)
    )


def test_nearest_many_subjects():
    n_subjects = 50_000
    subject = GenomicRanges(
        ["chr1"] * n_subjects,
        np.arange(n_subjects) * 100 + 1,
        np.arange(n_subjects) * 100 + 1,
    )
    query = GenomicRanges(["chr1"] * 3, [40, 250_020, 10_000_000], [45, 250_030, 10_000_010])

    assert list(query.nearest(subject)) == [0, 2500, n_subjects - 1]


def test_seqlevels_style_without_ranges():
    empty = GenomicRanges([], [], [])
    assert empty.seqlevels_style() == "unknown"
