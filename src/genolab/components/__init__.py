"""Core data containers: expression sets, annotation databases, genomic ranges
and gene models."""
