"""Thin rpy2 wrappers around Bioconductor packages (limma, AnnotationDbi,
GenomicRanges). Importing any of these modules requires R and rpy2."""
