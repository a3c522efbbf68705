"""Parallel per-chromosome VCF export.

Each chromosome is an independent task that receives only its own SNPs and
the matching slice of the reference panel, so process-pool pickles stay
small. Results are collected as tasks complete; a failing chromosome is
recorded and does not stop its siblings.
"""

import logging
import os
import re
import signal
import threading
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import (
    FIRST_COMPLETED,
    BrokenExecutor,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path

from .bgzf import write_bgzf
from .genome import GenomeStore
from .models import (
    AUTOSOMES,
    SNP,
    GenomeMetadata,
    chromosome_sort_key,
    is_known_chromosome,
    normalize_chromosome,
)
from .references.panel import ReferencePanel
from .vcf_builder import DEFAULT_SAMPLE_NAME, BuildOptions, BuildStats, VcfRecordBuilder

logger = logging.getLogger(__name__)

EXECUTORS = ("process", "thread")
POLL_INTERVAL = 0.1

_UNSAFE_LABEL_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@dataclass
class ChromosomeTask:
    """Everything one worker needs to export one chromosome."""

    chromosome: str
    snps: tuple[SNP, ...]
    metadata: GenomeMetadata
    panel: ReferencePanel | None
    sample_name: str
    options: BuildOptions


@dataclass
class BatchResult:
    """Outcome of a batch export.

    vcfs is filled in completion order; use ordered_vcfs() for chromosome
    order.
    """

    vcfs: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    sample_count: int = 1
    stats: BuildStats = field(default_factory=BuildStats)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    def ordered_vcfs(self) -> list[tuple[str, str]]:
        return sorted(self.vcfs.items(), key=lambda item: chromosome_sort_key(item[0]))


def export_chromosome(task: ChromosomeTask) -> tuple[str, str, BuildStats]:
    """Worker entry point; must stay importable at module level for pickling."""
    genome = GenomeStore(task.snps, metadata=task.metadata)
    builder = VcfRecordBuilder(
        genome,
        task.panel,
        sample_name=task.sample_name,
        options=task.options,
        warn_on_fallback=False,
    )
    text = builder.generate_vcf(task.chromosome)
    return task.chromosome, text, builder.stats


def _ignore_worker_sigint() -> None:
    """Pool initializer; Ctrl-C is handled by the parent through the cancel event."""
    signal.signal(signal.SIGINT, signal.SIG_IGN)


def sanitize_label(label: str) -> str:
    """Restrict a sample label to characters safe in file names."""
    return _UNSAFE_LABEL_CHARS.sub("_", label) or "sample"


class BatchExporter:
    """Export many chromosomes concurrently.

    Usage:
        exporter = BatchExporter(genome, panel, sample_name="me")
        result = exporter.generate_all(cancel_event=event)
        paths = write_outputs(result, "out/", "me", compress=True)
    """

    def __init__(
        self,
        genome: GenomeStore,
        panel: ReferencePanel | None = None,
        sample_name: str = DEFAULT_SAMPLE_NAME,
        options: BuildOptions | None = None,
        max_workers: int | None = None,
        executor: str = "process",
    ):
        if executor not in EXECUTORS:
            raise ValueError(f"Invalid executor '{executor}'. Must be one of: {EXECUTORS}")
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.genome = genome
        self.panel = panel
        self.sample_name = sample_name
        self.executor = executor
        self.max_workers = max_workers or os.cpu_count() or 1

        options = options or BuildOptions()
        if options.file_date is None:
            # Pin the date so every chromosome's header agrees.
            options = replace(options, file_date=date.today().strftime("%Y%m%d"))
        self.options = options

        if panel is None:
            logger.warning(
                "No reference panel available; batch output is not imputation-ready"
            )

    @property
    def sample_count(self) -> int:
        return (self.panel.sample_count if self.panel is not None else 0) + 1

    def _task(self, chromosome: str) -> ChromosomeTask:
        return ChromosomeTask(
            chromosome=chromosome,
            snps=self.genome.snps_for_chromosome(chromosome),
            metadata=self.genome.metadata,
            panel=self.panel.subset([chromosome]) if self.panel is not None else None,
            sample_name=self.sample_name,
            options=self.options,
        )

    def _make_executor(self) -> Executor:
        if self.executor == "thread":
            return ThreadPoolExecutor(max_workers=self.max_workers)
        return ProcessPoolExecutor(
            max_workers=self.max_workers, initializer=_ignore_worker_sigint
        )

    def generate_all(
        self,
        chromosomes: Iterable[str] = AUTOSOMES,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> BatchResult:
        """Export each chromosome; cancellation is checked between tasks.

        On cancellation pending tasks are dropped and any chromosome that had
        not finished is left out of the result.
        """
        cancel_event = cancel_event or threading.Event()
        result = BatchResult(sample_count=self.sample_count)

        queue: deque[str] = deque()
        for chrom in chromosomes:
            if not is_known_chromosome(chrom):
                result.failures[chrom] = f"unknown chromosome '{chrom}'"
                continue
            queue.append(normalize_chromosome(chrom))
        total = len(queue)

        logger.info(
            "Exporting %d chromosomes with %d %s workers",
            total,
            self.max_workers,
            self.executor,
        )

        executor = self._make_executor()
        in_flight: dict[Future, str] = {}
        try:
            while queue or in_flight:
                if cancel_event.is_set():
                    result.cancelled = True
                    break

                while queue and len(in_flight) < self.max_workers:
                    chrom = queue.popleft()
                    try:
                        future = executor.submit(export_chromosome, self._task(chrom))
                    except BrokenExecutor as e:
                        logger.error(
                            "Worker pool broke; %d chromosomes not exported", len(queue) + 1
                        )
                        for unsubmitted in (chrom, *queue):
                            result.failures[unsubmitted] = f"worker pool unavailable: {e}"
                        queue.clear()
                        break
                    in_flight[future] = chrom

                done, _ = wait(in_flight, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    chrom = in_flight.pop(future)
                    try:
                        _, text, stats = future.result()
                    except Exception as e:
                        logger.error("Export of chromosome %s failed: %s", chrom, e)
                        result.failures[chrom] = str(e) or type(e).__name__
                        continue
                    except KeyboardInterrupt:
                        logger.error("Export of chromosome %s was interrupted", chrom)
                        result.failures[chrom] = "interrupted"
                        continue
                    result.vcfs[chrom] = text
                    result.stats.merge(stats)
                    if progress_callback:
                        progress_callback(chrom, len(result.vcfs), total)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        if result.cancelled:
            logger.warning(
                "Batch export cancelled after %d of %d chromosomes", len(result.vcfs), total
            )
        else:
            logger.info(
                "Exported %d chromosomes (%d failed)", len(result.vcfs), len(result.failures)
            )
        return result


def output_filename(sample_label: str, sample_count: int, chromosome: str, compress: bool) -> str:
    suffix = ".vcf.gz" if compress else ".vcf"
    return f"{sanitize_label(sample_label)}_merged_{sample_count}samples_chr{chromosome}{suffix}"


def write_outputs(
    result: BatchResult,
    output_dir: Path | str,
    sample_label: str = DEFAULT_SAMPLE_NAME,
    compress: bool = False,
) -> list[Path]:
    """Write each exported chromosome to its own file, BGZF-compressed if asked."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for chrom, text in result.ordered_vcfs():
        path = output_dir / output_filename(sample_label, result.sample_count, chrom, compress)
        if compress:
            write_bgzf(path, text)
        else:
            path.write_text(text, encoding="utf-8")
        paths.append(path)

    logger.info("Wrote %d VCF files to %s", len(paths), output_dir)
    return paths
