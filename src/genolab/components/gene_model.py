from pathlib import Path
from typing import List

import pandas as pd

from genolab.components.genomic_ranges import GenomicRanges

REQUIRED_MCOLS = ("gene_id", "transcript_id")


class GeneModel:
    """
    Gene models built from exon ranges, like a Bioconductor TxDb.

    Every exon must carry `gene_id` and `transcript_id` metadata columns;
    `gene_name` and `exon_number` are used when present. Transcripts and genes
    span from their first to their last exon.

    Examples:
        >>> gene_model = GeneModel.from_gtf(Path("genes.gtf"))
        >>> gene_model.transcripts_by_gene("ENSG00000141510")
        >>> gene_model.promoters(upstream=2000, downstream=200)
    """

    def __init__(self, exons: GenomicRanges) -> None:
        if len(missing := set(REQUIRED_MCOLS).difference(exons.mcols.columns)) > 0:
            raise ValueError(f"Exons are missing metadata columns: {sorted(missing)}")
        self.exons = exons

        exons_df = self.exons.to_dataframe()
        inconsistent = exons_df.groupby("transcript_id")[["seqnames", "strand"]].nunique()
        if (inconsistent > 1).any().any():
            raise ValueError(
                "Transcripts with exons on several sequences or strands: "
                f"{inconsistent[(inconsistent > 1).any(axis=1)].index[:5].tolist()}"
            )

    @classmethod
    def from_gtf(cls, path: Path) -> "GeneModel":
        """Build gene models from the exon records of a GTF file."""
        from genolab.data.io import read_gtf

        gtf_df = read_gtf(path, feature="exon")
        gtf_df = gtf_df.drop(columns=["source", "feature", "score", "frame"])
        return cls(GenomicRanges.from_dataframe(gtf_df))

    def __repr__(self) -> str:
        return (
            f"GeneModel with {self.exons.mcol('gene_id').nunique()} genes, "
            f"{self.exons.mcol('transcript_id').nunique()} transcripts and "
            f"{len(self.exons)} exons"
        )

    def _spans(self, by: str, keep: List[str]) -> GenomicRanges:
        exons_df = self.exons.to_dataframe()
        keep = [c for c in keep if c in exons_df.columns and c != by]
        spans = exons_df.groupby(by, sort=False).agg(
            seqnames=("seqnames", "first"),
            start=("start", "min"),
            end=("end", "max"),
            strand=("strand", "first"),
            **{c: (c, "first") for c in keep},
        )
        return GenomicRanges(
            seqnames=spans["seqnames"],
            starts=spans["start"],
            ends=spans["end"],
            strands=spans["strand"],
            names=spans.index,
            metadata=spans[keep].reset_index(drop=True),
        ).sort()

    def genes(self) -> GenomicRanges:
        """One range per gene, named by gene_id."""
        return self._spans("gene_id", ["gene_name"])

    def transcripts(self) -> GenomicRanges:
        """One range per transcript, named by transcript_id."""
        return self._spans("transcript_id", ["gene_id", "gene_name"])

    def exons_by_transcript(self, transcript_id: str) -> GenomicRanges:
        """Exons of a transcript in transcription order (5' to 3')."""
        mask = (self.exons.mcol("transcript_id") == transcript_id).to_numpy()
        if not mask.any():
            raise KeyError(f'Unknown transcript "{transcript_id}"')

        exons = self.exons[mask].sort()
        if (exons.strand == "-").all():
            exons = exons[::-1]
        return exons

    def transcripts_by_gene(self, gene_id: str) -> GenomicRanges:
        transcripts = self.transcripts()
        mask = (transcripts.mcol("gene_id") == gene_id).to_numpy()
        if not mask.any():
            raise KeyError(f'Unknown gene "{gene_id}"')
        return transcripts[mask]

    def introns(self, transcript_id: str) -> GenomicRanges:
        """Regions between consecutive exons of a transcript."""
        exons = self.exons_by_transcript(transcript_id)
        introns = exons.gaps()
        return introns.with_mcols(transcript_id=transcript_id)

    def tss(self) -> GenomicRanges:
        """Transcription start sites, one per transcript."""
        return self.transcripts().tss()

    def promoters(self, upstream: int = 2000, downstream: int = 200) -> GenomicRanges:
        return self.transcripts().promoters(upstream=upstream, downstream=downstream)

    def genes_in_region(self, seqname: str, start: int, end: int) -> GenomicRanges:
        """Genes overlapping the region seqname:start-end (any strand)."""
        region = GenomicRanges([seqname], [start], [end])
        return self.genes().subset_by_overlaps(region)

    def gene_ids_for_symbol(self, symbol: str) -> List[str]:
        if "gene_name" not in self.exons.mcols.columns:
            raise KeyError("Exons have no gene_name metadata column")
        exons_df = self.exons.mcols
        return exons_df.loc[exons_df["gene_name"] == symbol, "gene_id"].unique().tolist()
