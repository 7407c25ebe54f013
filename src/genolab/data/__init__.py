"""Data processing, analysis, and visualization utilities.

This package provides functions for processing genomic and expression data, including:
- File I/O operations for expression matrices, GEO series matrices, GTF and BED files
- Per-feature statistical tests, multiple testing correction and power analysis
- Data filtering and parallel execution utilities
- Visualization tools for gene expression data and gene models
"""
