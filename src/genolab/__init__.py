"""Companion code for a genomics data-analysis course.

Expression sets and per-gene tests, gene annotation lookups, genomic ranges,
gene models and binding site annotation, written with pandas, numpy, scipy,
statsmodels and plotly. Optional wrappers around Bioconductor packages live in
`genolab.r_wrappers` and need the `r` extra (rpy2).
"""
