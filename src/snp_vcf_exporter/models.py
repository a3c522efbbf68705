"""Data models for genotype calls and VCF records."""

from dataclasses import dataclass, field

AUTOSOMES: tuple[str, ...] = tuple(str(i) for i in range(1, 23))
CHROMOSOMES: tuple[str, ...] = AUTOSOMES + ("X", "Y", "MT")

_CHROMOSOME_ORDER = {chrom: idx for idx, chrom in enumerate(CHROMOSOMES)}

_CHROMOSOME_ALIASES = {
    "M": "MT",
    "23": "X",
    "24": "Y",
    "25": "MT",
    "26": "MT",
}

NUCLEOTIDES = frozenset("ACGT")
NO_CALL_CHARS = frozenset("-ID")
GENOTYPE_ALPHABET = NUCLEOTIDES | NO_CALL_CHARS

# Chromosome lengths in bp, from the UCSC chrom.sizes tables.
CONTIG_LENGTHS: dict[str, dict[str, int]] = {
    "GRCh37": {
        "1": 249250621, "2": 243199373, "3": 198022430, "4": 191154276,
        "5": 180915260, "6": 171115067, "7": 159138663, "8": 146364022,
        "9": 141213431, "10": 135534747, "11": 135006516, "12": 133851895,
        "13": 115169878, "14": 107349540, "15": 102531392, "16": 90354753,
        "17": 81195210, "18": 78077248, "19": 59128983, "20": 63025520,
        "21": 48129895, "22": 51304566, "X": 155270560, "Y": 59373566,
        "MT": 16569,
    },
    "GRCh38": {
        "1": 248956422, "2": 242193529, "3": 198295559, "4": 190214555,
        "5": 181538259, "6": 170805979, "7": 159345973, "8": 145138636,
        "9": 138394717, "10": 133797422, "11": 135086622, "12": 133275309,
        "13": 114364328, "14": 107043718, "15": 101991189, "16": 90338345,
        "17": 83257441, "18": 80373285, "19": 58617616, "20": 64444167,
        "21": 46709983, "22": 50818468, "X": 156040895, "Y": 57227415,
        "MT": 16569,
    },
}


def normalize_chromosome(chrom: str) -> str:
    """Normalize chromosome to bare format (no 'chr' prefix, MT for mito)."""
    chrom = chrom.strip()
    if chrom.lower().startswith("chr"):
        chrom = chrom[3:]
    chrom = chrom.upper()
    return _CHROMOSOME_ALIASES.get(chrom, chrom)


def is_known_chromosome(chrom: str) -> bool:
    return normalize_chromosome(chrom) in _CHROMOSOME_ORDER


def chromosome_sort_key(chrom: str) -> tuple[int, str]:
    """Sort key placing 1-22 numerically, then X, Y, MT, then anything else."""
    return (_CHROMOSOME_ORDER.get(chrom, len(_CHROMOSOME_ORDER)), chrom)


@dataclass(frozen=True)
class SNP:
    """A single genotype call from a consumer genotyping export."""

    rsid: str
    chromosome: str
    position: int
    genotype: str

    @property
    def is_heterozygous(self) -> bool:
        return len(self.genotype) == 2 and self.genotype[0] != self.genotype[1]

    @property
    def is_homozygous(self) -> bool:
        return len(self.genotype) == 2 and self.genotype[0] == self.genotype[1]

    @property
    def is_no_call(self) -> bool:
        """True for empty calls and any call holding a no-call, I or D marker."""
        return not self.genotype or any(a in NO_CALL_CHARS for a in self.genotype)

    @property
    def is_called(self) -> bool:
        """True when every allele is a plain nucleotide."""
        return bool(self.genotype) and all(a in NUCLEOTIDES for a in self.genotype)


@dataclass
class GenomeMetadata:
    """Metadata extracted from the comment header of a genotype export."""

    build: str = "GRCh37"
    generated_at: str | None = None
    file_id: str | None = None
    signature: str | None = None
    timestamp: str | None = None
    extra: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VcfRecord:
    """One biallelic VCF data line."""

    chrom: str
    pos: int
    id: str
    ref: str
    alt: str
    sample_genotypes: tuple[str, ...]
    qual: str = "."
    filter: str = "PASS"
    info: str = "."
    format: str = "GT"

    def to_line(self) -> str:
        return "\t".join(
            (
                self.chrom,
                str(self.pos),
                self.id or ".",
                self.ref,
                self.alt,
                self.qual,
                self.filter,
                self.info,
                self.format,
                *self.sample_genotypes,
            )
        )
