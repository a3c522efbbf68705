"""Genome QC metrics."""

from .genome_qc import (
    ChromosomeStats,
    GenomeSummary,
    classify_transition_transversion,
    compute_allele_frequencies,
    compute_chromosome_stats,
    compute_ts_tv_ratio,
    summarize_genome,
)

__all__ = [
    "ChromosomeStats",
    "GenomeSummary",
    "classify_transition_transversion",
    "compute_allele_frequencies",
    "compute_chromosome_stats",
    "compute_ts_tv_ratio",
    "summarize_genome",
]
