"""Parsing of 23andMe-style genotype exports.

Format (one call per line, tab separated):
    rsid    chromosome    position    genotype

Lines starting with '#' carry free-form metadata. Malformed data lines are
counted and skipped so that a file with a few corrupt rows still loads.
"""

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .models import (
    GENOTYPE_ALPHABET,
    SNP,
    GenomeMetadata,
    is_known_chromosome,
    normalize_chromosome,
)

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 20

BUILD_NAMES = {
    "36": "NCBI36",
    "37": "GRCh37",
    "38": "GRCh38",
}

ASSEMBLY_ALIASES = {
    "ncbi36": "NCBI36",
    "grch37": "GRCh37",
    "grch38": "GRCh38",
    "hg19": "GRCh37",
    "hg38": "GRCh38",
}

_KEY_VALUE_PATTERN = re.compile(r"^#\s*([A-Za-z_][\w ]*?)\s*:\s*(.+)$")
_GENERATED_PATTERN = re.compile(r"generated by .+? at:\s*(.+)$", re.IGNORECASE)
_BUILD_PATTERN = re.compile(r"\bbuild\s+(\d{2})\b", re.IGNORECASE)
_ASSEMBLY_PATTERN = re.compile(r"\b(GRCh3[78]|NCBI36|hg19|hg38)\b", re.IGNORECASE)


class ParseError(ValueError):
    """Raised when a single genotype line cannot be parsed."""

    def __init__(self, reason: str, line_number: int = 0, line: str = ""):
        self.reason = reason
        self.line_number = line_number
        self.line = line
        super().__init__(f"line {line_number}: {reason}")


@dataclass
class ParseReport:
    """Counters collected while streaming a genotype file."""

    lines_read: int = 0
    snps_parsed: int = 0
    comment_lines: int = 0
    blank_lines: int = 0
    malformed_lines: int = 0
    errors: list[ParseError] = field(default_factory=list)

    @property
    def data_lines(self) -> int:
        return self.snps_parsed + self.malformed_lines

    @property
    def malformed_fraction(self) -> float:
        if self.data_lines == 0:
            return 0.0
        return self.malformed_lines / self.data_lines


def parse_line(line: str, line_number: int = 0) -> SNP:
    """Parse one data line into an SNP.

    Raises:
        ParseError: On wrong field count, bad position, unknown chromosome
            or a genotype outside the {A,C,G,T,-,I,D} alphabet.
    """
    parts = line.rstrip("\r\n").split("\t")
    if len(parts) != 4:
        raise ParseError(
            f"expected 4 tab-separated fields, got {len(parts)}", line_number, line
        )

    rsid, chrom, position_str, genotype = (p.strip() for p in parts)

    if not rsid:
        raise ParseError("missing rsid", line_number, line)

    if not is_known_chromosome(chrom):
        raise ParseError(f"unknown chromosome '{chrom}'", line_number, line)

    try:
        position = int(position_str)
    except ValueError:
        raise ParseError(f"non-numeric position '{position_str}'", line_number, line) from None
    if position < 0:
        raise ParseError(f"negative position {position}", line_number, line)

    genotype = genotype.upper()
    if len(genotype) > 2:
        raise ParseError(f"genotype '{genotype}' longer than 2 alleles", line_number, line)
    if any(allele not in GENOTYPE_ALPHABET for allele in genotype):
        raise ParseError(f"invalid genotype '{genotype}'", line_number, line)

    return SNP(
        rsid=rsid,
        chromosome=normalize_chromosome(chrom),
        position=position,
        genotype=genotype,
    )


def parse_metadata_line(line: str, metadata: GenomeMetadata) -> None:
    """Fold one '#' comment line into the metadata object."""
    text = line.strip()

    generated = _GENERATED_PATTERN.search(text)
    if generated:
        metadata.generated_at = generated.group(1).strip()

    build = _BUILD_PATTERN.search(text)
    if build and build.group(1) in BUILD_NAMES:
        metadata.build = BUILD_NAMES[build.group(1)]
    else:
        assembly = _ASSEMBLY_PATTERN.search(text)
        if assembly:
            metadata.build = ASSEMBLY_ALIASES[assembly.group(1).lower()]

    if generated:
        return

    match = _KEY_VALUE_PATTERN.match(text)
    if not match:
        return

    key = match.group(1).strip().lower().replace(" ", "_")
    value = match.group(2).strip()
    if key in ("file_id", "signature", "timestamp"):
        setattr(metadata, key, value)
    else:
        metadata.extra[key] = value


def _is_column_header(line: str) -> bool:
    return line.lower().startswith("rsid\t") or line.lower() == "rsid"


class GenotypeFileParser:
    """Single forward pass over genotype lines.

    Usage:
        parser = GenotypeFileParser(lines)
        snps = list(parser)
        parser.metadata, parser.report
    """

    def __init__(self, lines: Iterable[str]):
        self._lines = lines
        self.metadata = GenomeMetadata()
        self.report = ParseReport()

    def __iter__(self) -> Iterator[SNP]:
        report = self.report

        for line_number, raw in enumerate(self._lines, start=1):
            report.lines_read += 1
            line = raw.rstrip("\r\n")

            if not line.strip():
                report.blank_lines += 1
                continue

            if line.startswith("#"):
                report.comment_lines += 1
                parse_metadata_line(line, self.metadata)
                continue

            if _is_column_header(line):
                continue

            try:
                snp = parse_line(line, line_number)
            except ParseError as e:
                report.malformed_lines += 1
                if len(report.errors) < MAX_RECORDED_ERRORS:
                    report.errors.append(e)
                logger.debug("Skipping malformed genotype line %s", e)
                continue

            report.snps_parsed += 1
            yield snp

        if report.malformed_lines:
            logger.warning(
                "Skipped %d malformed genotype lines out of %d data lines (%.2f%%)",
                report.malformed_lines,
                report.data_lines,
                report.malformed_fraction * 100,
            )
