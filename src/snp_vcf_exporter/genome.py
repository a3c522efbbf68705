"""In-memory genome store built from a genotype export."""

import gzip
import io
import logging
import zipfile
import zlib
from collections.abc import Iterable, Iterator
from pathlib import Path

from .genotype_parser import GenotypeFileParser, ParseReport
from .models import SNP, GenomeMetadata, chromosome_sort_key, normalize_chromosome

logger = logging.getLogger(__name__)

GENOTYPE_MEMBER_SUFFIXES = (".txt", ".tsv", ".csv")


class GenomeLoadError(Exception):
    """Raised when the primary genotype input cannot be read at all."""

    pass


class GenomeStore:
    """Immutable, indexed collection of SNP calls for one analysis session."""

    def __init__(
        self,
        snps: Iterable[SNP] = (),
        metadata: GenomeMetadata | None = None,
        parse_report: ParseReport | None = None,
    ):
        self.metadata = metadata or GenomeMetadata()
        self.parse_report = parse_report or ParseReport()
        self.duplicate_rsids = 0

        kept: list[SNP] = []
        by_rsid: dict[str, SNP] = {}
        by_chrom: dict[str, list[SNP]] = {}

        for snp in snps:
            if snp.rsid in by_rsid:
                self.duplicate_rsids += 1
                continue
            by_rsid[snp.rsid] = snp
            by_chrom.setdefault(snp.chromosome, []).append(snp)
            kept.append(snp)

        if self.duplicate_rsids:
            logger.warning("Ignored %d duplicate rsid entries", self.duplicate_rsids)

        self._snps = tuple(kept)
        self._by_rsid = by_rsid
        self._by_chrom = {
            chrom: tuple(by_chrom[chrom]) for chrom in sorted(by_chrom, key=chromosome_sort_key)
        }

    def __len__(self) -> int:
        return len(self._snps)

    def __iter__(self) -> Iterator[SNP]:
        return iter(self._snps)

    @property
    def snps(self) -> tuple[SNP, ...]:
        return self._snps

    @property
    def total_snps(self) -> int:
        return len(self._snps)

    @property
    def chromosomes(self) -> tuple[str, ...]:
        return tuple(self._by_chrom)

    def find_by_rsid(self, rsid: str) -> SNP | None:
        return self._by_rsid.get(rsid.strip())

    def lookup_many(self, rsids: Iterable[str]) -> list[SNP]:
        """Return the SNPs found for the given rsids, in request order."""
        return [snp for snp in (self.find_by_rsid(r) for r in rsids) if snp is not None]

    def snps_for_chromosome(self, chrom: str) -> tuple[SNP, ...]:
        return self._by_chrom.get(normalize_chromosome(chrom), ())

    def chromosome_counts(self) -> dict[str, int]:
        return {chrom: len(snps) for chrom, snps in self._by_chrom.items()}

    def heterozygosity_rate(self) -> float:
        """Fraction of two-character genotypes whose characters differ.

        Every two-character genotype is in the denominator, '--' included.
        Returns 0.0 when there are none.
        """
        return heterozygosity_rate(self._snps)


def heterozygosity_rate(snps: Iterable[SNP]) -> float:
    diploid = 0
    heterozygous = 0
    for snp in snps:
        if len(snp.genotype) != 2:
            continue
        diploid += 1
        if snp.is_heterozygous:
            heterozygous += 1
    if diploid == 0:
        return 0.0
    return heterozygous / diploid


def parse_genome_lines(lines: Iterable[str]) -> GenomeStore:
    parser = GenotypeFileParser(lines)
    snps = list(parser)
    store = GenomeStore(snps, metadata=parser.metadata, parse_report=parser.report)
    logger.info(
        "Parsed %d SNPs (%d malformed lines skipped), build %s",
        store.total_snps,
        parser.report.malformed_lines,
        store.metadata.build,
    )
    return store


def parse_genome_text(text: str) -> GenomeStore:
    """Build a GenomeStore from in-memory file content."""
    return parse_genome_lines(io.StringIO(text))


def _load_zip_archive(path: Path) -> GenomeStore:
    """23andMe ships exports as a zip holding a single text file."""
    with zipfile.ZipFile(path) as archive:
        members = [
            name
            for name in archive.namelist()
            if name.lower().endswith(GENOTYPE_MEMBER_SUFFIXES) and not name.startswith("__MACOSX")
        ]
        if not members:
            raise GenomeLoadError(f"No genotype text file found inside archive: {path}")
        logger.debug("Reading %s from archive %s", members[0], path.name)
        with archive.open(members[0]) as raw:
            return parse_genome_lines(io.TextIOWrapper(raw, encoding="utf-8", errors="replace"))


def load_genome(path: Path | str) -> GenomeStore:
    """Load a genotype export (.txt, .txt.gz or .zip) from disk.

    Raises:
        GenomeLoadError: If the file is missing or cannot be read. No partial
            store is returned in that case.
    """
    path = Path(path)
    logger.info("Importing genotype data from %s", path)

    if not path.exists():
        raise GenomeLoadError(f"Genotype file not found: {path}")
    if not path.is_file():
        raise GenomeLoadError(f"Genotype path is not a file: {path}")

    try:
        if zipfile.is_zipfile(path):
            return _load_zip_archive(path)

        with open(path, "rb") as f:
            is_gzip = f.read(2) == b"\x1f\x8b"

        open_func = gzip.open if is_gzip else open
        with open_func(path, "rt", encoding="utf-8", errors="replace") as f:
            return parse_genome_lines(f)
    except (OSError, EOFError, zipfile.BadZipFile, zlib.error) as e:
        raise GenomeLoadError(f"Failed to read genotype file {path}: {e}") from e
