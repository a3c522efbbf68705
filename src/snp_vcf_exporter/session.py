"""Analysis sessions: one loaded genome plus an optional reference panel.

These are the entry points the CLI (or any other front end) calls. Panel
problems never abort a session; they degrade export to fallback mode.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .batch import BatchExporter, BatchResult, write_outputs
from .config import ExportConfig
from .genome import GenomeStore, load_genome, parse_genome_text
from .models import AUTOSOMES, SNP
from .qc.genome_qc import ChromosomeStats, GenomeSummary, compute_chromosome_stats, summarize_genome
from .references.panel import PanelLoadError, PanelStats, ReferencePanel, load_reference_panel
from .vcf_builder import BuildOptions, VcfRecordBuilder

logger = logging.getLogger(__name__)


class SessionClosedError(RuntimeError):
    """Raised when a closed session is used."""

    pass


@dataclass(frozen=True)
class Capabilities:
    """What the current session can do."""

    reference_guided_export: bool
    bgzf_compression: bool = True
    parallel_batch: bool = True
    panel_stats: PanelStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference_guided_export": self.reference_guided_export,
            "bgzf_compression": self.bgzf_compression,
            "parallel_batch": self.parallel_batch,
            "panel_stats": self.panel_stats.to_dict() if self.panel_stats else None,
        }


@dataclass
class PanelLoadResult:
    """Outcome of a panel load that never raises."""

    ok: bool
    panel: ReferencePanel | None = None
    stats: PanelStats | None = None
    error: str | None = None


def load_reference_panel_safe(path: Path | str, reload: bool = False) -> PanelLoadResult:
    try:
        panel = load_reference_panel(path, reload=reload)
    except PanelLoadError as e:
        logger.warning("Reference panel unavailable, falling back: %s", e)
        return PanelLoadResult(ok=False, error=str(e))
    return PanelLoadResult(ok=True, panel=panel, stats=panel.stats())


def parse_file(path: Path | str) -> GenomeStore:
    return load_genome(path)


class AnalysisSession:
    """Owns one genome for the duration of an analysis.

    Usage:
        with AnalysisSession.open("genome.txt", panel_path="panel.svxp.gz") as session:
            print(session.summarize().display())
            vcf = session.generate_single_chromosome_vcf("22")
    """

    def __init__(
        self,
        genome: GenomeStore,
        panel: ReferencePanel | None = None,
        config: ExportConfig | None = None,
    ):
        self._genome: GenomeStore | None = genome
        self.panel = panel
        self.config = config or ExportConfig()
        self.panel_error: str | None = None

    @classmethod
    def open(
        cls,
        path: Path | str,
        panel_path: Path | str | None = None,
        config: ExportConfig | None = None,
    ) -> "AnalysisSession":
        """Load a genotype file and, if given, a reference panel.

        Raises:
            GenomeLoadError: If the genotype file cannot be read.
        """
        session = cls(parse_file(path), config=config)
        panel_path = panel_path or session.config.panel_path
        if panel_path is not None:
            session.load_panel(panel_path)
        return session

    @classmethod
    def from_text(
        cls,
        text: str,
        panel: ReferencePanel | None = None,
        config: ExportConfig | None = None,
    ) -> "AnalysisSession":
        return cls(parse_genome_text(text), panel=panel, config=config)

    def __enter__(self) -> "AnalysisSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._genome = None
        self.panel = None

    @property
    def closed(self) -> bool:
        return self._genome is None

    @property
    def genome(self) -> GenomeStore:
        if self._genome is None:
            raise SessionClosedError("Analysis session is closed")
        return self._genome

    def load_panel(self, path: Path | str, reload: bool = False) -> PanelLoadResult:
        """Attach a panel; on failure the session keeps working in fallback mode."""
        result = load_reference_panel_safe(path, reload=reload)
        if result.ok:
            self.panel = result.panel
            self.panel_error = None
        else:
            self.panel_error = result.error
        return result

    def _options(self) -> BuildOptions:
        return BuildOptions(drop_strand_ambiguous=self.config.drop_strand_ambiguous)

    def summarize(self) -> GenomeSummary:
        return summarize_genome(self.genome)

    def lookup_by_rsid(self, rsid: str) -> SNP | None:
        return self.genome.find_by_rsid(rsid)

    def lookup_traits(self, rsids: Iterable[str]) -> list[SNP]:
        return self.genome.lookup_many(rsids)

    def chromosome_statistics(self, chromosome: str) -> ChromosomeStats:
        return compute_chromosome_stats(self.genome, chromosome)

    def generate_single_chromosome_vcf(self, chromosome: str | None) -> str:
        builder = VcfRecordBuilder(
            self.genome,
            self.panel,
            sample_name=self.config.sample_name,
            options=self._options(),
        )
        return builder.generate_vcf(chromosome)

    def generate_all_chromosomes_vcf(
        self,
        chromosomes: Iterable[str] = AUTOSOMES,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> BatchResult:
        exporter = BatchExporter(
            self.genome,
            self.panel,
            sample_name=self.config.sample_name,
            options=self._options(),
            max_workers=self.config.workers,
            executor=self.config.executor,
        )
        return exporter.generate_all(
            chromosomes, cancel_event=cancel_event, progress_callback=progress_callback
        )

    def write_batch(
        self,
        output_dir: Path | str | None = None,
        chromosomes: Iterable[str] = AUTOSOMES,
        compress: bool | None = None,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> tuple[BatchResult, list[Path]]:
        """Export chromosomes and write one file per chromosome."""
        result = self.generate_all_chromosomes_vcf(
            chromosomes, cancel_event=cancel_event, progress_callback=progress_callback
        )
        paths = write_outputs(
            result,
            output_dir if output_dir is not None else self.config.output_dir,
            sample_label=self.config.sample_name,
            compress=self.config.compress if compress is None else compress,
        )
        return result, paths

    def capabilities(self) -> Capabilities:
        if self.closed:
            raise SessionClosedError("Analysis session is closed")
        return Capabilities(
            reference_guided_export=self.panel is not None,
            panel_stats=self.panel.stats() if self.panel is not None else None,
        )
