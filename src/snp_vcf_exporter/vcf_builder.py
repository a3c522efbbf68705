"""Reference-guided VCF construction.

With a reference panel, REF and ALT always come from the panel entry at the
SNP's position; the user's genotype is only ever encoded against them. Sites
missing from the panel, or not clean biallelic there, are left out. This is
what makes the output safe to hand to an imputation server.

Without a panel the builder falls back to deriving REF/ALT from the user's
own alleles. That output is not imputation-ready and is flagged as such in
the header.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, fields
from datetime import date
from typing import Any

from . import __version__
from .genome import GenomeStore
from .models import (
    CHROMOSOMES,
    CONTIG_LENGTHS,
    NUCLEOTIDES,
    SNP,
    VcfRecord,
    chromosome_sort_key,
    is_known_chromosome,
    normalize_chromosome,
)
from .references.panel import ReferencePanel

logger = logging.getLogger(__name__)

VCF_FILEFORMAT = "VCFv4.2"
DEFAULT_SAMPLE_NAME = "mygenome"
MISSING_GT = "./."

_BUILD_ALIASES = {
    "grch37": "GRCh37",
    "hg19": "GRCh37",
    "grch38": "GRCh38",
    "hg38": "GRCh38",
}


@dataclass
class BuildOptions:
    """Knobs for VCF construction."""

    drop_strand_ambiguous: bool = False
    file_date: str | None = None
    include_contig_lengths: bool = True


@dataclass
class BuildStats:
    """Why SNPs did or did not make it into the VCF."""

    snps_considered: int = 0
    records_written: int = 0
    not_in_panel: int = 0
    non_biallelic: int = 0
    strand_ambiguous: int = 0
    allele_mismatch: int = 0
    duplicate_position: int = 0
    uncalled_skipped: int = 0

    def merge(self, other: "BuildStats") -> "BuildStats":
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def resolve_build(name: str) -> str | None:
    """Map a build label such as 'GRCh37/hg19' or 'hg38' to GRCh37/GRCh38."""
    lowered = name.lower()
    for alias, build in _BUILD_ALIASES.items():
        if alias in lowered:
            return build
    return None


def genotype_to_gt(genotype: str, ref: str, alt: str) -> tuple[str, bool]:
    """Encode a raw genotype against panel alleles.

    Returns:
        (GT string, allele_mismatch). No-calls, indel markers and empty
        genotypes give './.'; an allele that is neither REF nor ALT gives
        './.' with the mismatch flag set. Alleles are never re-oriented.
    """
    if not genotype or any(allele not in NUCLEOTIDES for allele in genotype):
        return MISSING_GT, False

    codes = []
    for allele in genotype:
        if allele == ref:
            codes.append(0)
        elif allele == alt:
            codes.append(1)
        else:
            return MISSING_GT, True

    if len(codes) == 1:
        return str(codes[0]), False
    codes.sort()
    return f"{codes[0]}/{codes[1]}", False


def _called_samples(sample_genotypes: Iterable[str]) -> int:
    return sum(1 for gt in sample_genotypes if "." not in gt)


def fallback_record(snp: SNP) -> VcfRecord | None:
    """Legacy record with REF/ALT taken from the user's own alleles."""
    if not snp.is_called:
        return None

    genotype = snp.genotype
    if len(genotype) == 1:
        return VcfRecord(snp.chromosome, snp.position, snp.rsid, genotype, ".", ("0",), info="NS=1")
    if snp.is_heterozygous:
        return VcfRecord(
            snp.chromosome, snp.position, snp.rsid, genotype[0], genotype[1], ("0/1",), info="NS=1"
        )
    return VcfRecord(
        snp.chromosome, snp.position, snp.rsid, genotype[0], ".", ("0/0",), info="NS=1"
    )


class VcfRecordBuilder:
    """Join a genome against an optional reference panel and emit VCF text.

    Usage:
        builder = VcfRecordBuilder(genome, panel, sample_name="me")
        text = builder.generate_vcf("22")
        builder.stats  # counts accumulated across calls
    """

    def __init__(
        self,
        genome: GenomeStore,
        panel: ReferencePanel | None = None,
        sample_name: str = DEFAULT_SAMPLE_NAME,
        options: BuildOptions | None = None,
        warn_on_fallback: bool = True,
    ):
        self.genome = genome
        self.panel = panel
        self.sample_name = sample_name
        self.options = options or BuildOptions()
        self.stats = BuildStats()

        if panel is None:
            if warn_on_fallback:
                logger.warning(
                    "No reference panel available; REF/ALT will be derived from the "
                    "sample's own alleles and the output is not imputation-ready"
                )
        else:
            genome_build = resolve_build(genome.metadata.build)
            panel_build = resolve_build(panel.build)
            if genome_build and panel_build and genome_build != panel_build:
                logger.warning(
                    "Genome build %s does not match reference panel build %s",
                    genome.metadata.build,
                    panel.build,
                )

    @property
    def imputation_ready(self) -> bool:
        return self.panel is not None

    @property
    def build(self) -> str:
        if self.panel is not None:
            return self.panel.build
        return self.genome.metadata.build

    @property
    def sample_names(self) -> tuple[str, ...]:
        if self.panel is None:
            return (self.sample_name,)
        return self.panel.sample_names + (self.sample_name,)

    def build_records(self, chromosome: str) -> tuple[list[VcfRecord], BuildStats]:
        """Records for one chromosome, sorted by position, plus their stats."""
        chrom = normalize_chromosome(chromosome)
        stats = BuildStats()
        records: dict[int, VcfRecord] = {}

        for snp in self.genome.snps_for_chromosome(chrom):
            stats.snps_considered += 1
            record = self._record_for(snp, stats)
            if record is None:
                continue
            if record.pos in records:
                stats.duplicate_position += 1
                continue
            records[record.pos] = record

        ordered = sorted(records.values(), key=lambda r: r.pos)
        stats.records_written = len(ordered)
        self.stats.merge(stats)

        logger.debug(
            "chr%s: %d of %d SNPs retained (%s)",
            chrom,
            stats.records_written,
            stats.snps_considered,
            stats.to_dict(),
        )
        return ordered, stats

    def _record_for(self, snp: SNP, stats: BuildStats) -> VcfRecord | None:
        if self.panel is None:
            record = fallback_record(snp)
            if record is None:
                stats.uncalled_skipped += 1
            return record

        entry = self.panel.lookup(snp.chromosome, snp.position)
        if entry is None:
            stats.not_in_panel += 1
            return None

        if not entry.is_clean_biallelic:
            stats.non_biallelic += 1
            return None

        if self.options.drop_strand_ambiguous and entry.is_strand_ambiguous:
            stats.strand_ambiguous += 1
            return None

        user_gt, mismatch = genotype_to_gt(snp.genotype, entry.ref, entry.alt)
        if mismatch:
            stats.allele_mismatch += 1
            logger.debug(
                "%s genotype %s does not match panel alleles %s/%s",
                snp.rsid,
                snp.genotype,
                entry.ref,
                entry.alt,
            )

        sample_genotypes = entry.sample_genotypes + (user_gt,)
        return VcfRecord(
            chrom=snp.chromosome,
            pos=snp.position,
            id=snp.rsid,
            ref=entry.ref,
            alt=entry.alt,
            sample_genotypes=sample_genotypes,
            info=f"NS={_called_samples(sample_genotypes)}",
        )

    def header_lines(self, chromosomes: Iterable[str]) -> list[str]:
        file_date = self.options.file_date or date.today().strftime("%Y%m%d")
        lines = [
            f"##fileformat={VCF_FILEFORMAT}",
            f"##fileDate={file_date}",
            f"##source=snp-vcf-exporter-{__version__}",
            f"##reference={self.build}",
            f"##imputationReady={'true' if self.imputation_ready else 'false'}",
        ]

        lengths = CONTIG_LENGTHS.get(resolve_build(self.build) or "", {})
        for chrom in chromosomes:
            length = lengths.get(chrom) if self.options.include_contig_lengths else None
            if length:
                lines.append(f"##contig=<ID={chrom},length={length}>")
            else:
                lines.append(f"##contig=<ID={chrom}>")

        lines.extend(
            [
                '##INFO=<ID=NS,Number=1,Type=Integer,Description="Number of Samples With Data">',
                '##FILTER=<ID=PASS,Description="All filters passed">',
                '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
                "\t".join(
                    ["#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO", "FORMAT"]
                    + list(self.sample_names)
                ),
            ]
        )
        return lines

    def generate_vcf(self, chromosome: str | None = None) -> str:
        """VCF text for one chromosome, or for every chromosome when None.

        An unrecognized chromosome gives an empty string. A recognized
        chromosome with nothing retained gives a header-only document.
        """
        if chromosome is None:
            chromosomes = sorted(
                (c for c in self.genome.chromosomes if c in CHROMOSOMES), key=chromosome_sort_key
            )
        else:
            if not is_known_chromosome(chromosome):
                logger.warning("Unknown chromosome '%s'; nothing to export", chromosome)
                return ""
            chromosomes = [normalize_chromosome(chromosome)]

        lines = self.header_lines(chromosomes)
        for chrom in chromosomes:
            records, _ = self.build_records(chrom)
            lines.extend(record.to_line() for record in records)

        return "\n".join(lines) + "\n"
