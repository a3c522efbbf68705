"""Genome-level QC metrics for a single genotyped individual.

Computes:
- Heterozygosity rate (overall and per chromosome)
- Allele frequencies over A, C, G, T
- Ts/Tv ratio over heterozygous calls

Ts/Tv here classifies the two alleles of each heterozygous call: A/G and
C/T pairs are transitions, every other nucleotide pair is a transversion.
Homozygous calls carry no substitution and are left out.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..genome import GenomeStore, heterozygosity_rate
from ..models import NUCLEOTIDES, chromosome_sort_key, normalize_chromosome

logger = logging.getLogger(__name__)

TRANSITIONS = {
    ("A", "G"),
    ("G", "A"),
    ("C", "T"),
    ("T", "C"),
}


def classify_transition_transversion(allele1: str, allele2: str) -> str | None:
    """Classify an allele pair as transition or transversion.

    Returns:
        "transition", "transversion", or None for identical or non-ACGT alleles
    """
    allele1 = allele1.upper()
    allele2 = allele2.upper()

    if allele1 not in NUCLEOTIDES or allele2 not in NUCLEOTIDES:
        return None

    if allele1 == allele2:
        return None

    if (allele1, allele2) in TRANSITIONS:
        return "transition"

    return "transversion"


def count_transitions_transversions(store: GenomeStore) -> tuple[int, int]:
    transitions = 0
    transversions = 0
    for snp in store:
        if not snp.is_heterozygous:
            continue
        kind = classify_transition_transversion(snp.genotype[0], snp.genotype[1])
        if kind == "transition":
            transitions += 1
        elif kind == "transversion":
            transversions += 1
    return transitions, transversions


def compute_ts_tv_ratio(store: GenomeStore) -> float | None:
    """Transition to transversion ratio, or None if there are no transversions."""
    transitions, transversions = count_transitions_transversions(store)
    if transversions == 0:
        return None
    return transitions / transversions


def compute_allele_frequencies(store: GenomeStore) -> dict[str, float]:
    """Relative frequency of each nucleotide across all called alleles.

    No-call, insertion and deletion markers are ignored. Returns an empty
    dict when the genome holds no nucleotide alleles.
    """
    counts: dict[str, int] = {}
    total = 0
    for snp in store:
        for allele in snp.genotype:
            if allele in NUCLEOTIDES:
                counts[allele] = counts.get(allele, 0) + 1
                total += 1

    if total == 0:
        return {}

    return {allele: count / total for allele, count in sorted(counts.items())}


@dataclass
class ChromosomeStats:
    """Per-chromosome heterozygosity summary."""

    chromosome: str
    total_snps: int = 0
    heterozygous_count: int = 0
    heterozygosity_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "chromosome": self.chromosome,
            "total_snps": self.total_snps,
            "heterozygous_count": self.heterozygous_count,
            "heterozygosity_rate": self.heterozygosity_rate,
        }


def compute_chromosome_stats(store: GenomeStore, chromosome: str) -> ChromosomeStats:
    chrom = normalize_chromosome(chromosome)
    snps = store.snps_for_chromosome(chrom)
    return ChromosomeStats(
        chromosome=chrom,
        total_snps=len(snps),
        heterozygous_count=sum(1 for snp in snps if snp.is_heterozygous),
        heterozygosity_rate=heterozygosity_rate(snps),
    )


@dataclass
class GenomeSummary:
    """Summary statistics for one genome."""

    total_snps: int
    heterozygosity_rate: float
    ts_tv_ratio: float | None
    allele_frequencies: dict[str, float] = field(default_factory=dict)
    chromosome_counts: dict[str, int] = field(default_factory=dict)
    build: str = "GRCh37"
    malformed_lines: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_snps": self.total_snps,
            "heterozygosity_rate": self.heterozygosity_rate,
            "ts_tv_ratio": self.ts_tv_ratio,
            "allele_frequencies": dict(self.allele_frequencies),
            "chromosome_counts": dict(self.chromosome_counts),
            "build": self.build,
            "malformed_lines": self.malformed_lines,
        }

    def display(self) -> str:
        """Render the summary as a plain-text report."""
        lines = [
            "Genome Data Summary",
            "===================",
            "",
            f"Total SNPs: {self.total_snps}",
            f"Build: {self.build}",
            f"Heterozygosity Rate: {self.heterozygosity_rate:.4f} "
            f"({self.heterozygosity_rate * 100:.2f}%)",
        ]
        if self.ts_tv_ratio is None:
            lines.append("Transition/Transversion Ratio: n/a")
        else:
            lines.append(f"Transition/Transversion Ratio: {self.ts_tv_ratio:.4f}")
        if self.malformed_lines:
            lines.append(f"Malformed lines skipped: {self.malformed_lines}")

        lines.append("")
        lines.append("Allele Frequencies:")
        for allele, freq in sorted(
            self.allele_frequencies.items(), key=lambda item: item[1], reverse=True
        ):
            lines.append(f"  {allele}: {freq:.4f} ({freq * 100:.2f}%)")

        lines.append("")
        lines.append("SNPs per Chromosome:")
        for chrom in sorted(self.chromosome_counts, key=chromosome_sort_key):
            lines.append(f"  Chr {chrom}: {self.chromosome_counts[chrom]}")

        return "\n".join(lines) + "\n"


def summarize_genome(store: GenomeStore) -> GenomeSummary:
    summary = GenomeSummary(
        total_snps=store.total_snps,
        heterozygosity_rate=store.heterozygosity_rate(),
        ts_tv_ratio=compute_ts_tv_ratio(store),
        allele_frequencies=compute_allele_frequencies(store),
        chromosome_counts=store.chromosome_counts(),
        build=store.metadata.build,
        malformed_lines=store.parse_report.malformed_lines,
    )
    logger.debug(
        "Summarized %d SNPs: het=%.4f ts/tv=%s",
        summary.total_snps,
        summary.heterozygosity_rate,
        summary.ts_tv_ratio,
    )
    return summary
