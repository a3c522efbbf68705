"""Synthetic genotype exports and reference panels for unit tests."""

from dataclasses import dataclass, field
from pathlib import Path

GENOME_HEADER = """# This data file generated by 23andMe at: Mon Jan 01 00:00:00 2024
#
# More information on reference human assembly build 37 (a.k.a. GRCh37):
# http://www.ncbi.nlm.nih.gov/mapview/map_search.cgi?taxid=9606&build=37
#
# file_id: abc123
# signature: deadbeef
# timestamp: 2024-01-01T00:00:00
#
# rsid\tchromosome\tposition\tgenotype
"""

# (rsid, chromosome, position, genotype)
BASIC_SNPS = [
    ("rs123", "1", 1000, "AG"),
    ("rs124", "1", 2000, "CC"),
    ("rs125", "1", 3000, "--"),
    ("rs126", "2", 1500, "CT"),
    ("rs127", "2", 2500, "AT"),
    ("rs128", "X", 5000, "A"),
    ("rs129", "MT", 100, "G"),
    ("rs130", "1", 500, "TT"),
]


@dataclass
class SyntheticPanelSite:
    """One reference panel row."""

    chrom: str
    pos: int
    ref: str
    alt: str
    rsid: str | None = None
    maf: float | None = None
    samples: list[str] = field(default_factory=lambda: ["0/0"] * 5)


BASIC_PANEL_SITES = [
    SyntheticPanelSite("1", 500, "C", "T", "rs130", 0.2, ["0/0", "0/1", "1/1", "0/0", "0/0"]),
    SyntheticPanelSite("1", 1000, "A", "G", "rs123", 0.3, ["0/1", "0/0", "0/0", "1/1", "./."]),
    SyntheticPanelSite("1", 3000, "G", "A", "rs125", 0.1, ["0/0", "0/0", "0/1", "0/0", "0/0"]),
    SyntheticPanelSite("1", 4000, "A", "C,T", "rs131", 0.05),
    SyntheticPanelSite("2", 1500, "C", "T", "rs126", 0.4, ["1/1", "0/1", "0/0", "0/1", "0/0"]),
    SyntheticPanelSite("2", 2500, "A", "T", "rs127", 0.25, ["0/1", "0/1", "0/0", "0/0", "1/1"]),
]


def make_genome_text(
    snps: list[tuple[str, str, int, str]] | None = None, header: bool = True
) -> str:
    snps = BASIC_SNPS if snps is None else snps
    lines = [GENOME_HEADER.rstrip("\n")] if header else []
    lines.extend(f"{rsid}\t{chrom}\t{pos}\t{gt}" for rsid, chrom, pos, gt in snps)
    return "\n".join(lines) + "\n"


def make_genome_file(tmp_dir: Path, snps=None, name: str = "genome.txt") -> Path:
    path = Path(tmp_dir) / name
    path.write_text(make_genome_text(snps))
    return path


def make_panel_tsv(sites: list[SyntheticPanelSite] | None = None, n_samples: int = 5) -> str:
    sites = BASIC_PANEL_SITES if sites is None else sites
    header = ["#chrom", "pos", "rsid", "ref", "alt", "maf"] + [
        f"S{i}" for i in range(1, n_samples + 1)
    ]
    lines = ["\t".join(header)]
    for site in sites:
        row = [
            site.chrom,
            str(site.pos),
            site.rsid or ".",
            site.ref,
            site.alt,
            "." if site.maf is None else str(site.maf),
            *site.samples,
        ]
        lines.append("\t".join(row))
    return "\n".join(lines) + "\n"


def make_panel_file(tmp_dir: Path, sites=None, name: str = "panel.tsv") -> Path:
    path = Path(tmp_dir) / name
    path.write_text(make_panel_tsv(sites))
    return path


def make_panel(sites: list[SyntheticPanelSite] | None = None, build: str = "GRCh37"):
    from snp_vcf_exporter.references.panel import PanelEntry, ReferencePanel

    sites = BASIC_PANEL_SITES if sites is None else sites
    entries = [
        PanelEntry(
            chromosome=site.chrom,
            position=site.pos,
            ref=site.ref,
            alt=site.alt,
            sample_genotypes=tuple(site.samples),
            rsid=site.rsid,
            maf=site.maf,
            multiallelic="," in site.alt,
        )
        for site in sites
    ]
    return ReferencePanel(entries, build=build, version="test")
