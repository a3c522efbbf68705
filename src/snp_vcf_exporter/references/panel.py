"""Reference panel of canonical REF/ALT alleles for imputation-ready export.

The panel maps (chromosome, position) to the reference genome's REF and ALT
bases plus the genotypes of a handful of anonymous samples. Assigning
REF/ALT from the panel, never from the raw call, is what keeps exported
VCFs free of allele switches.

Two on-disk layouts are accepted, each optionally gzip-compressed:

Packed binary (little-endian):
    magic "SVXP", format version (u8),
    build and version strings (u16 length + UTF-8),
    sample count (u8), record count (u32),
    rsid table (u32 byte length + NUL-separated UTF-8, one slot per record),
    records of 16 bytes: chromosome code (u8), position (u32),
    ref/alt/flags (u8), MAF * 10000 (u16, 0xFFFF = unknown),
    packed sample genotypes (u64, 8 bits per sample).

TSV:
    chrom    pos    rsid    ref    alt    maf    <sample columns...>
"""

import csv
import gzip
import io
import logging
import re
import struct
import threading
import zlib
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..models import NUCLEOTIDES, chromosome_sort_key, normalize_chromosome

logger = logging.getLogger(__name__)

MAGIC = b"SVXP"
FORMAT_VERSION = 1
MAX_PACKED_SAMPLES = 8

_RECORD = struct.Struct("<BIBHQ")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")

BASES = "ACGT"
BASE_CODES = {base: code for code, base in enumerate(BASES)}

CHROMOSOME_CODES = {str(i): i for i in range(1, 23)} | {"X": 23, "Y": 24, "MT": 25}
CODE_CHROMOSOMES = {code: chrom for chrom, code in CHROMOSOME_CODES.items()}

FLAG_MULTIALLELIC = 0x01

ALLELE_MISSING = 2
ALLELE_ABSENT = 3
MAF_UNKNOWN = 0xFFFF

_GENOTYPE_PATTERN = re.compile(r"^[01.]([/|][01.])?$")

TSV_CHROM_COLUMNS = ("chrom", "chromosome", "chr")
TSV_POS_COLUMNS = ("pos", "position", "bp")
TSV_RESERVED_COLUMNS = set(TSV_CHROM_COLUMNS + TSV_POS_COLUMNS) | {
    "rsid",
    "id",
    "ref",
    "alt",
    "maf",
}


class PanelLoadError(Exception):
    """Raised when a reference panel file cannot be read or decoded."""

    pass


def complement_allele(allele: str) -> str:
    """Return the complement of a nucleotide allele."""
    complements = {"A": "T", "T": "A", "C": "G", "G": "C"}
    return complements.get(allele.upper(), allele)


def is_strand_ambiguous(allele1: str, allele2: str) -> bool:
    """Check if a SNP is strand-ambiguous (A/T or C/G)."""
    pair = frozenset([allele1.upper(), allele2.upper()])
    return pair in (frozenset(["A", "T"]), frozenset(["C", "G"]))


@dataclass(frozen=True)
class PanelEntry:
    """Canonical alleles and anonymous-sample genotypes for one site."""

    chromosome: str
    position: int
    ref: str
    alt: str
    sample_genotypes: tuple[str, ...] = ()
    rsid: str | None = None
    maf: float | None = None
    multiallelic: bool = False

    @property
    def is_clean_biallelic(self) -> bool:
        return (
            not self.multiallelic
            and len(self.ref) == 1
            and len(self.alt) == 1
            and self.ref in NUCLEOTIDES
            and self.alt in NUCLEOTIDES
            and self.ref != self.alt
        )

    @property
    def is_strand_ambiguous(self) -> bool:
        return is_strand_ambiguous(self.ref, self.alt)


@dataclass(frozen=True)
class PanelStats:
    """Load statistics exposed to callers."""

    version: str
    build: str
    entry_count: int
    sample_count: int
    duplicates_skipped: int = 0
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "build": self.build,
            "entry_count": self.entry_count,
            "sample_count": self.sample_count,
            "duplicates_skipped": self.duplicates_skipped,
            "source": self.source,
        }


class ReferencePanel:
    """Read-only, position-keyed reference panel.

    Built once and shared by every export task; nothing mutates it after
    construction.
    """

    def __init__(
        self,
        entries: Iterable[PanelEntry],
        sample_count: int | None = None,
        build: str = "GRCh37",
        version: str = "unknown",
        source: str | None = None,
    ):
        self.build = build
        self.version = version
        self.source = source
        self.duplicates_skipped = 0

        by_position: dict[tuple[str, int], PanelEntry] = {}
        by_rsid: dict[str, PanelEntry] = {}

        for entry in entries:
            if sample_count is None:
                sample_count = len(entry.sample_genotypes)
            elif len(entry.sample_genotypes) != sample_count:
                raise PanelLoadError(
                    f"Entry {entry.chromosome}:{entry.position} has "
                    f"{len(entry.sample_genotypes)} sample genotypes, expected {sample_count}"
                )

            key = (entry.chromosome, entry.position)
            if key in by_position:
                self.duplicates_skipped += 1
                continue
            by_position[key] = entry
            if entry.rsid:
                by_rsid.setdefault(entry.rsid, entry)

        self.sample_count = sample_count or 0
        self._by_position = by_position
        self._by_rsid = by_rsid

        if self.duplicates_skipped:
            logger.warning(
                "Skipped %d duplicate reference panel positions", self.duplicates_skipped
            )

    def __len__(self) -> int:
        return len(self._by_position)

    def __contains__(self, key: tuple[str, int]) -> bool:
        return key in self._by_position

    @property
    def sample_names(self) -> tuple[str, ...]:
        return tuple(f"anonymous-{i}" for i in range(1, self.sample_count + 1))

    @property
    def chromosomes(self) -> tuple[str, ...]:
        return tuple(
            sorted({chrom for chrom, _ in self._by_position}, key=chromosome_sort_key)
        )

    def lookup(self, chromosome: str, position: int) -> PanelEntry | None:
        return self._by_position.get((normalize_chromosome(chromosome), position))

    def lookup_rsid(self, rsid: str) -> PanelEntry | None:
        return self._by_rsid.get(rsid)

    def entries(self) -> list[PanelEntry]:
        """All entries in chromosome/position order."""
        return sorted(
            self._by_position.values(),
            key=lambda e: (chromosome_sort_key(e.chromosome), e.position),
        )

    def subset(self, chromosomes: Iterable[str]) -> "ReferencePanel":
        """Smaller panel limited to the given chromosomes."""
        wanted = {normalize_chromosome(c) for c in chromosomes}
        return ReferencePanel(
            (e for e in self._by_position.values() if e.chromosome in wanted),
            sample_count=self.sample_count,
            build=self.build,
            version=self.version,
            source=self.source,
        )

    def stats(self) -> PanelStats:
        return PanelStats(
            version=self.version,
            build=self.build,
            entry_count=len(self._by_position),
            sample_count=self.sample_count,
            duplicates_skipped=self.duplicates_skipped,
            source=self.source,
        )

    @classmethod
    def load(cls, path: Path | str) -> "ReferencePanel":
        """Load a packed or TSV panel, gzip-compressed or not.

        Raises:
            PanelLoadError: If the file is missing, truncated or malformed.
        """
        path = Path(path)
        if not path.is_file():
            raise PanelLoadError(f"Reference panel not found: {path}")

        try:
            data = path.read_bytes()
            if data[:2] == b"\x1f\x8b":
                data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise PanelLoadError(f"Failed to read reference panel {path}: {e}") from e

        if data[: len(MAGIC)] == MAGIC:
            panel = decode_packed_panel(data, source=str(path))
        else:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise PanelLoadError(f"Reference panel {path} is neither packed nor text") from e
            panel = parse_tsv_panel(io.StringIO(text), source=str(path))

        logger.info(
            "Loaded %d reference panel entries (%d samples, build %s) from %s",
            len(panel),
            panel.sample_count,
            panel.build,
            path.name,
        )
        return panel


def _encode_genotype(genotype: str) -> int:
    """Pack a genotype string into 4 bits (allele 1 low, allele 2 high)."""
    if not _GENOTYPE_PATTERN.match(genotype):
        raise ValueError(f"Invalid sample genotype '{genotype}'")

    alleles = re.split(r"[/|]", genotype)
    codes = [ALLELE_MISSING if a == "." else int(a) for a in alleles]
    if len(codes) == 1:
        codes.append(ALLELE_ABSENT)
    return codes[0] | (codes[1] << 2)


def _decode_genotype(bits: int) -> str:
    allele1 = bits & 0x03
    allele2 = (bits >> 2) & 0x03

    if allele2 == ALLELE_ABSENT:
        return "." if allele1 == ALLELE_MISSING else str(allele1)
    if ALLELE_MISSING in (allele1, allele2) or allele1 == ALLELE_ABSENT:
        return "./."
    return f"{allele1}/{allele2}"


def pack_sample_genotypes(genotypes: Iterable[str]) -> int:
    packed = 0
    for i, genotype in enumerate(genotypes):
        if i >= MAX_PACKED_SAMPLES:
            raise ValueError(f"At most {MAX_PACKED_SAMPLES} samples can be packed")
        packed |= _encode_genotype(genotype) << (i * 8)
    return packed


def unpack_sample_genotypes(packed: int, sample_count: int) -> tuple[str, ...]:
    return tuple(_decode_genotype((packed >> (i * 8)) & 0xFF) for i in range(sample_count))


def _read_string(data: bytes, offset: int) -> tuple[str, int]:
    (length,) = _U16.unpack_from(data, offset)
    offset += _U16.size
    raw = data[offset : offset + length]
    if len(raw) != length:
        raise PanelLoadError("Truncated string in panel header")
    return raw.decode("utf-8"), offset + length


def decode_packed_panel(data: bytes, source: str | None = None) -> ReferencePanel:
    """Decode the packed binary layout into a ReferencePanel."""
    if data[: len(MAGIC)] != MAGIC:
        raise PanelLoadError("Not a packed reference panel (bad magic)")

    try:
        offset = len(MAGIC)
        format_version = data[offset]
        offset += 1
        if format_version != FORMAT_VERSION:
            raise PanelLoadError(f"Unsupported panel format version {format_version}")

        build, offset = _read_string(data, offset)
        version, offset = _read_string(data, offset)

        sample_count = data[offset]
        offset += 1
        if sample_count > MAX_PACKED_SAMPLES:
            raise PanelLoadError(f"Panel declares {sample_count} samples, max {MAX_PACKED_SAMPLES}")

        (record_count,) = _U32.unpack_from(data, offset)
        offset += _U32.size
        (table_length,) = _U32.unpack_from(data, offset)
        offset += _U32.size
    except (IndexError, struct.error, UnicodeDecodeError) as e:
        raise PanelLoadError(f"Corrupt panel header: {e}") from e

    table = data[offset : offset + table_length]
    if len(table) != table_length:
        raise PanelLoadError("Truncated rsid table")
    offset += table_length

    if table_length:
        rsids: list[str | None] = [r or None for r in table.decode("utf-8").split("\0")]
        if len(rsids) != record_count:
            raise PanelLoadError(
                f"rsid table has {len(rsids)} entries for {record_count} records"
            )
    else:
        rsids = [None] * record_count

    end = offset + record_count * _RECORD.size
    if len(data) < end:
        raise PanelLoadError(
            f"Truncated panel: expected {record_count} records, "
            f"found {(len(data) - offset) // _RECORD.size}"
        )

    entries = []
    for i, (chrom_code, position, ref_alt_flags, maf, genotypes) in enumerate(
        _RECORD.iter_unpack(data[offset:end])
    ):
        chromosome = CODE_CHROMOSOMES.get(chrom_code)
        if chromosome is None:
            raise PanelLoadError(f"Record {i} has unknown chromosome code {chrom_code}")
        entries.append(
            PanelEntry(
                chromosome=chromosome,
                position=position,
                ref=BASES[(ref_alt_flags >> 6) & 0x03],
                alt=BASES[(ref_alt_flags >> 4) & 0x03],
                sample_genotypes=unpack_sample_genotypes(genotypes, sample_count),
                rsid=rsids[i],
                maf=None if maf == MAF_UNKNOWN else maf / 10000,
                multiallelic=bool(ref_alt_flags & FLAG_MULTIALLELIC),
            )
        )

    return ReferencePanel(
        entries, sample_count=sample_count, build=build, version=version, source=source
    )


def _first_column(fieldnames: list[str], candidates: tuple[str, ...]) -> str | None:
    for name in candidates:
        if name in fieldnames:
            return name
    return None


def _parse_maf(value: str | None) -> float | None:
    if value is None or value.strip() in ("", "."):
        return None
    return float(value)


def parse_tsv_panel(
    handle: io.TextIOBase,
    source: str | None = None,
    build: str = "GRCh37",
    version: str = "tsv",
) -> ReferencePanel:
    """Parse a tab-separated panel.

    Expected header (order free, leading '#' allowed):
        chrom    pos    rsid    ref    alt    maf    <sample1> ... <sampleN>
    """
    reader = csv.DictReader(handle, delimiter="\t")
    if not reader.fieldnames:
        raise PanelLoadError("Reference panel TSV has no header")

    fieldnames = [name.lstrip("#").strip().lower() for name in reader.fieldnames]
    reader.fieldnames = fieldnames

    chrom_col = _first_column(fieldnames, TSV_CHROM_COLUMNS)
    pos_col = _first_column(fieldnames, TSV_POS_COLUMNS)
    if chrom_col is None or pos_col is None or "ref" not in fieldnames or "alt" not in fieldnames:
        raise PanelLoadError(
            f"Reference panel TSV must have chrom, pos, ref and alt columns, got {fieldnames}"
        )
    sample_cols = [name for name in fieldnames if name not in TSV_RESERVED_COLUMNS]
    rsid_col = "rsid" if "rsid" in fieldnames else ("id" if "id" in fieldnames else None)

    entries = []
    for row_number, row in enumerate(reader, start=2):
        try:
            alt = row["alt"].strip().upper()
            genotypes = tuple(row[col].strip() for col in sample_cols)
            for genotype in genotypes:
                if not _GENOTYPE_PATTERN.match(genotype):
                    raise ValueError(f"invalid sample genotype '{genotype}'")
            rsid = row[rsid_col].strip() if rsid_col else ""
            entries.append(
                PanelEntry(
                    chromosome=normalize_chromosome(row[chrom_col]),
                    position=int(row[pos_col]),
                    ref=row["ref"].strip().upper(),
                    alt=alt,
                    sample_genotypes=genotypes,
                    rsid=rsid if rsid not in ("", ".") else None,
                    maf=_parse_maf(row.get("maf")),
                    multiallelic="," in alt,
                )
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise PanelLoadError(f"Malformed reference panel row {row_number}: {e}") from e

    return ReferencePanel(
        entries, sample_count=len(sample_cols), build=build, version=version, source=source
    )


@dataclass
class PanelWriteResult:
    """Result of writing a packed panel."""

    path: Path
    entries_written: int
    entries_skipped: int


def _encode_entry(entry: PanelEntry) -> tuple[int, int, int, int, int] | None:
    chrom_code = CHROMOSOME_CODES.get(entry.chromosome)
    alt = entry.alt.split(",")[0]
    if (
        chrom_code is None
        or entry.ref not in BASE_CODES
        or alt not in BASE_CODES
        or not 0 <= entry.position <= 0xFFFFFFFF
    ):
        return None

    flags = FLAG_MULTIALLELIC if (entry.multiallelic or "," in entry.alt) else 0
    ref_alt_flags = (BASE_CODES[entry.ref] << 6) | (BASE_CODES[alt] << 4) | flags
    maf = MAF_UNKNOWN if entry.maf is None else min(round(entry.maf * 10000), 10000)
    return chrom_code, entry.position, ref_alt_flags, maf, pack_sample_genotypes(
        entry.sample_genotypes
    )


def encode_packed_panel(
    entries: Iterable[PanelEntry],
    sample_count: int,
    build: str = "GRCh37",
    version: str = "1",
) -> tuple[bytes, int, int]:
    """Serialize entries; returns (payload, written, skipped).

    Entries whose alleles do not fit the 2-bit base encoding are skipped.
    """
    if sample_count > MAX_PACKED_SAMPLES:
        raise ValueError(f"At most {MAX_PACKED_SAMPLES} samples can be packed")

    records = []
    rsids = []
    skipped = 0
    for entry in entries:
        if len(entry.sample_genotypes) != sample_count:
            raise ValueError(
                f"Entry {entry.chromosome}:{entry.position} has "
                f"{len(entry.sample_genotypes)} samples, expected {sample_count}"
            )
        record = _encode_entry(entry)
        if record is None:
            skipped += 1
            continue
        records.append(_RECORD.pack(*record))
        rsids.append(entry.rsid or "")

    table = "\0".join(rsids).encode("utf-8") if any(rsids) else b""
    build_raw = build.encode("utf-8")
    version_raw = version.encode("utf-8")

    header = b"".join(
        (
            MAGIC,
            bytes([FORMAT_VERSION]),
            _U16.pack(len(build_raw)),
            build_raw,
            _U16.pack(len(version_raw)),
            version_raw,
            bytes([sample_count]),
            _U32.pack(len(records)),
            _U32.pack(len(table)),
            table,
        )
    )
    return header + b"".join(records), len(records), skipped


def write_packed_panel(
    entries: Iterable[PanelEntry] | ReferencePanel,
    path: Path | str,
    build: str | None = None,
    version: str | None = None,
    compress: bool = True,
) -> PanelWriteResult:
    """Write panel entries in the packed binary layout (gzip by default).

    A ReferencePanel may be passed in place of entries; its build and
    version are used unless overridden.
    """
    path = Path(path)
    if isinstance(entries, ReferencePanel):
        panel = entries
        entries = panel.entries()
        sample_count = panel.sample_count
        build = build or panel.build
        version = version or panel.version
    else:
        entries = list(entries)
        sample_count = len(entries[0].sample_genotypes) if entries else 0

    payload, written, skipped = encode_packed_panel(
        entries, sample_count, build=build or "GRCh37", version=version or "1"
    )
    if compress:
        payload = gzip.compress(payload)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)

    if skipped:
        logger.warning("Skipped %d panel entries with non-encodable alleles", skipped)
    logger.info("Wrote %d packed panel entries to %s", written, path)
    return PanelWriteResult(path=path, entries_written=written, entries_skipped=skipped)


def convert_tsv_to_packed(
    tsv_path: Path | str,
    output_path: Path | str,
    build: str = "GRCh37",
    version: str = "1",
    compress: bool = True,
) -> PanelWriteResult:
    """Convert a TSV panel (optionally .gz) into the packed layout."""
    tsv_path = Path(tsv_path)
    if not tsv_path.is_file():
        raise PanelLoadError(f"Reference panel not found: {tsv_path}")

    with open(tsv_path, "rb") as f:
        is_gzip = f.read(2) == b"\x1f\x8b"
    open_func = gzip.open if is_gzip else open
    with open_func(tsv_path, "rt", encoding="utf-8", newline="") as f:
        panel = parse_tsv_panel(f, source=str(tsv_path), build=build, version=version)

    return write_packed_panel(panel, output_path, compress=compress)


_PANEL_CACHE: dict[Path, ReferencePanel] = {}
_PANEL_CACHE_LOCK = threading.Lock()


def load_reference_panel(path: Path | str, reload: bool = False) -> ReferencePanel:
    """Load a panel once per process and hand out the shared instance.

    A reload swaps the cached instance; panels already handed out stay
    valid and unchanged.
    """
    key = Path(path).resolve()
    with _PANEL_CACHE_LOCK:
        if not reload and key in _PANEL_CACHE:
            return _PANEL_CACHE[key]
        panel = ReferencePanel.load(key)
        _PANEL_CACHE[key] = panel
        return panel


def clear_panel_cache() -> None:
    with _PANEL_CACHE_LOCK:
        _PANEL_CACHE.clear()
