"""snp-vcf-exporter: genotype statistics and imputation-ready VCF export CLI."""

import asyncio
import json
import logging
import signal
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from . import __version__
from .bgzf import write_bgzf
from .config import ConfigValidationError, ExportConfig, load_config
from .genome import GenomeLoadError
from .models import AUTOSOMES, CHROMOSOMES, is_known_chromosome
from .references.panel import PanelLoadError, ReferencePanel, convert_tsv_to_packed
from .references.panel_download import PanelDownloadConfig, PanelDownloader, PanelDownloadError
from .session import AnalysisSession

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def version_callback(value: bool) -> None:
    if value:
        print(__version__)
        raise typer.Exit()


app = typer.Typer(
    name="snp-vcf-exporter",
    help="Summarize 23andMe-style genotype files and export imputation-ready VCFs",
)
console = Console()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version", callback=version_callback, is_eager=True, help="Show version and exit"
        ),
    ] = None,
) -> None:
    pass


def setup_logging(verbose: bool, quiet: bool, log_file: Path | None = None) -> None:
    """Configure logging based on verbosity flags."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S")
    logging.getLogger("snp_vcf_exporter").setLevel(level)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logging.getLogger("snp_vcf_exporter").addHandler(file_handler)


def _open_session(
    genome_path: Path,
    panel_path: Path | None = None,
    config: ExportConfig | None = None,
    quiet: bool = False,
) -> AnalysisSession:
    if not genome_path.exists():
        console.print(f"[red]Error: Genotype file not found: {genome_path}[/red]")
        raise typer.Exit(1)

    try:
        session = AnalysisSession.open(genome_path, panel_path=panel_path, config=config)
    except GenomeLoadError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if session.panel_error and not quiet:
        console.print(f"[yellow]Warning:[/yellow] {session.panel_error}")
        console.print("  Exporting in fallback mode (not imputation-ready)")
    return session


def _load_export_config(config_file: Path | None, **overrides) -> ExportConfig:
    try:
        return load_config(config_file, overrides)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None
    except ConfigValidationError as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1) from None


def _parse_chromosomes(value: str | None) -> list[str]:
    if not value:
        return list(AUTOSOMES)
    chromosomes = [c.strip() for c in value.split(",") if c.strip()]
    unknown = [c for c in chromosomes if not is_known_chromosome(c)]
    if unknown:
        console.print(f"[red]Error: Unknown chromosome(s): {', '.join(unknown)}[/red]")
        raise typer.Exit(1)
    return chromosomes


@app.command()
def summarize(
    genome_path: Annotated[Path, typer.Argument(help="Genotype file (.txt, .txt.gz or .zip)")],
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    log_file: Annotated[Path | None, typer.Option("--log", help="Write log to file")] = None,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Print summary statistics for a genotype file."""
    setup_logging(verbose, quiet, log_file)

    with _open_session(genome_path, quiet=quiet) as session:
        summary = session.summarize()

    if json_output:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        console.print(summary.display(), markup=False, highlight=False)


@app.command()
def lookup(
    genome_path: Annotated[Path, typer.Argument(help="Genotype file")],
    rsids: Annotated[list[str], typer.Argument(help="One or more rsids")],
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Look up genotypes by rsid."""
    setup_logging(False, True)

    with _open_session(genome_path, quiet=quiet) as session:
        found = {rsid: session.lookup_by_rsid(rsid) for rsid in rsids}

    if json_output:
        output = {
            rsid: (
                {"chromosome": snp.chromosome, "position": snp.position, "genotype": snp.genotype}
                if snp
                else None
            )
            for rsid, snp in found.items()
        }
        print(json.dumps(output, indent=2))
    else:
        for rsid, snp in found.items():
            if snp is None:
                console.print(f"[yellow]{rsid}: not found[/yellow]")
            else:
                console.print(
                    f"{rsid}\tchr{snp.chromosome}:{snp.position}\t{snp.genotype or '--'}",
                    markup=False,
                    highlight=False,
                )

    if not any(found.values()):
        raise typer.Exit(1)


@app.command("chrom-stats")
def chrom_stats(
    genome_path: Annotated[Path, typer.Argument(help="Genotype file")],
    chromosome: Annotated[
        str | None, typer.Argument(help="Chromosome (default: every chromosome present)")
    ] = None,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Per-chromosome heterozygosity statistics."""
    setup_logging(False, True)

    if chromosome is not None and not is_known_chromosome(chromosome):
        console.print(f"[red]Error: Unknown chromosome: {chromosome}[/red]")
        raise typer.Exit(1)

    with _open_session(genome_path, quiet=quiet) as session:
        chromosomes = [chromosome] if chromosome else list(session.genome.chromosomes)
        stats = [session.chromosome_statistics(c) for c in chromosomes]

    if json_output:
        print(json.dumps([s.to_dict() for s in stats], indent=2))
        return

    for s in stats:
        console.print(
            f"Chr {s.chromosome}: {s.total_snps:,} SNPs, {s.heterozygous_count:,} heterozygous "
            f"({s.heterozygosity_rate * 100:.2f}%)"
        )


@app.command()
def export(
    genome_path: Annotated[Path, typer.Argument(help="Genotype file")],
    chromosome: Annotated[
        str | None,
        typer.Option("--chromosome", "-c", help="Chromosome to export (default: all)"),
    ] = None,
    panel_path: Annotated[
        Path | None, typer.Option("--panel", "-p", help="Reference panel file")
    ] = None,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Output file (default: stdout)")
    ] = None,
    bgzip: Annotated[
        bool | None, typer.Option("--bgzip/--no-bgzip", help="BGZF-compress the output")
    ] = None,
    sample_name: Annotated[
        str | None, typer.Option("--sample-name", "-s", help="Sample column name")
    ] = None,
    drop_strand_ambiguous: Annotated[
        bool | None,
        typer.Option("--drop-strand-ambiguous/--keep-strand-ambiguous", help="Drop A/T, C/G sites"),
    ] = None,
    config_file: Annotated[
        Path | None, typer.Option("--config", help="TOML configuration file")
    ] = None,
    log_file: Annotated[Path | None, typer.Option("--log", help="Write log to file")] = None,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Export a VCF for one chromosome or the whole genome."""
    setup_logging(verbose, quiet or output is None, log_file)

    config = _load_export_config(
        config_file,
        panel_path=panel_path,
        compress=bgzip,
        sample_name=sample_name,
        drop_strand_ambiguous=drop_strand_ambiguous,
    )

    if chromosome is not None and not is_known_chromosome(chromosome):
        console.print(f"[red]Error: Unknown chromosome: {chromosome}[/red]")
        raise typer.Exit(1)
    if config.compress and output is None:
        console.print("[red]Error: --bgzip requires --output[/red]")
        raise typer.Exit(1)

    # stdout carries the VCF itself when no output file is given
    with _open_session(genome_path, config=config, quiet=quiet or output is None) as session:
        text = session.generate_single_chromosome_vcf(chromosome)

    if output is None:
        print(text, end="")
        return

    try:
        if config.compress:
            write_bgzf(output, text)
        else:
            output.write_text(text, encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if not quiet:
        console.print(f"[green]✓[/green] Wrote {output}")


@app.command()
def batch(
    genome_path: Annotated[Path, typer.Argument(help="Genotype file")],
    output_dir: Annotated[
        Path | None, typer.Option("--output-dir", "-o", help="Directory for VCF files")
    ] = None,
    panel_path: Annotated[
        Path | None, typer.Option("--panel", "-p", help="Reference panel file")
    ] = None,
    chromosomes: Annotated[
        str | None,
        typer.Option("--chromosomes", help="Comma-separated chromosomes (default: 1-22)"),
    ] = None,
    workers: Annotated[
        int | None, typer.Option("--workers", "-w", help="Parallel workers (default: CPU count)")
    ] = None,
    executor: Annotated[
        str | None, typer.Option("--executor", help="'process' or 'thread'")
    ] = None,
    bgzip: Annotated[
        bool | None, typer.Option("--bgzip/--no-bgzip", help="BGZF-compress each file")
    ] = None,
    sample_name: Annotated[
        str | None, typer.Option("--sample-name", "-s", help="Sample column name and file label")
    ] = None,
    config_file: Annotated[
        Path | None, typer.Option("--config", help="TOML configuration file")
    ] = None,
    log_file: Annotated[Path | None, typer.Option("--log", help="Write log to file")] = None,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show progress bar"),
) -> None:
    """Export one VCF per chromosome in parallel.

    Ctrl-C stops after the chromosomes already running; unfinished ones are
    not written.
    """
    setup_logging(verbose, quiet, log_file)

    config = _load_export_config(
        config_file,
        panel_path=panel_path,
        output_dir=output_dir,
        workers=workers,
        executor=executor,
        compress=bgzip,
        sample_name=sample_name,
    )
    selected = _parse_chromosomes(chromosomes)

    cancel_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel_event.set())

    try:
        with _open_session(genome_path, config=config, quiet=quiet) as session:
            if progress and not quiet:
                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    console=console,
                ) as progress_bar:
                    task = progress_bar.add_task("Exporting chromosomes...", total=len(selected))

                    def update_progress(chrom: str, completed: int, total: int):
                        progress_bar.update(
                            task, completed=completed, description=f"Exported chr{chrom}"
                        )

                    result, paths = session.write_batch(
                        chromosomes=selected,
                        cancel_event=cancel_event,
                        progress_callback=update_progress,
                    )
            else:
                result, paths = session.write_batch(
                    chromosomes=selected, cancel_event=cancel_event
                )
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if not quiet:
        console.print(f"[green]✓[/green] Wrote {len(paths)} VCF files to {config.output_dir}")
        stats = result.stats
        console.print(
            f"  Records: {stats.records_written:,}  not in panel: {stats.not_in_panel:,}  "
            f"allele mismatch: {stats.allele_mismatch:,}"
        )

    for chrom, error in result.failures.items():
        console.print(f"[red]Failed chr{chrom}: {error}[/red]")
    if result.cancelled:
        console.print("[yellow]Cancelled; remaining chromosomes were not written[/yellow]")
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def capabilities(
    genome_path: Annotated[Path, typer.Argument(help="Genotype file")],
    panel_path: Annotated[
        Path | None, typer.Option("--panel", "-p", help="Reference panel file")
    ] = None,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show which export features are available for a genome/panel pair."""
    setup_logging(False, True)

    with _open_session(genome_path, panel_path=panel_path, quiet=json_output) as session:
        caps = session.capabilities()

    if json_output:
        print(json.dumps(caps.to_dict(), indent=2))
        return

    ready = "[green]yes[/green]" if caps.reference_guided_export else "[yellow]no[/yellow]"
    console.print(f"Reference-guided export: {ready}")
    console.print(f"BGZF compression: {'yes' if caps.bgzf_compression else 'no'}")
    console.print(f"Parallel batch export: {'yes' if caps.parallel_batch else 'no'}")
    if caps.panel_stats:
        console.print(
            f"Panel: {caps.panel_stats.entry_count:,} sites, "
            f"{caps.panel_stats.sample_count} samples, build {caps.panel_stats.build}"
        )


panel_app = typer.Typer(help="Reference panel management")
app.add_typer(panel_app, name="panel")


@panel_app.command("info")
def panel_info(
    path: Annotated[Path, typer.Argument(help="Reference panel file")],
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show reference panel statistics."""
    setup_logging(False, True)

    try:
        panel = ReferencePanel.load(path)
    except PanelLoadError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    stats = panel.stats()
    if json_output:
        print(json.dumps(stats.to_dict(), indent=2))
        return

    console.print(f"[bold]Reference panel[/bold] {path.name}")
    console.print(f"  Version: {stats.version}")
    console.print(f"  Build: {stats.build}")
    console.print(f"  Sites: {stats.entry_count:,}")
    console.print(f"  Samples: {stats.sample_count}")
    if stats.duplicates_skipped:
        console.print(f"  Duplicates skipped: {stats.duplicates_skipped:,}")
    present = [c for c in CHROMOSOMES if c in panel.chromosomes]
    console.print(f"  Chromosomes: {', '.join(present)}")


@panel_app.command("convert")
def panel_convert(
    tsv_path: Annotated[Path, typer.Argument(help="TSV panel (optionally gzipped)")],
    output: Annotated[Path, typer.Argument(help="Packed panel output path")],
    build: str = typer.Option("GRCh37", "--build", "-b", help="Genome build label"),
    panel_version: str = typer.Option("1", "--panel-version", help="Panel version label"),
    compress: bool = typer.Option(True, "--compress/--no-compress", help="Gzip the output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Convert a TSV reference panel to the packed binary layout."""
    setup_logging(False, True)

    try:
        result = convert_tsv_to_packed(
            tsv_path, output, build=build, version=panel_version, compress=compress
        )
    except (PanelLoadError, ValueError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if not quiet:
        console.print(f"[green]✓[/green] Wrote {result.entries_written:,} sites to {output}")
        if result.entries_skipped:
            console.print(f"  Skipped {result.entries_skipped:,} non-encodable sites")


@panel_app.command("download")
def panel_download(
    url: Annotated[str, typer.Argument(help="URL of a packed reference panel")],
    build: str = typer.Option("grch37", "--build", "-b", help="Genome build (grch37, grch38)"),
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Cache directory")
    ] = None,
    checksum: Annotated[
        str | None, typer.Option("--checksum", help="Expected SHA256 of the file")
    ] = None,
    force: bool = typer.Option(False, "--force", "-f", help="Re-download even if cached"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Download and cache a reference panel."""
    setup_logging(False, quiet)

    try:
        kwargs = {"url": url, "build": build, "checksum": checksum}
        if output is not None:
            kwargs["cache_dir"] = output
        downloader = PanelDownloader(PanelDownloadConfig(**kwargs))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    try:
        path = asyncio.run(downloader.download(force=force))
    except PanelDownloadError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if not quiet:
        console.print(f"[green]✓[/green] Reference panel available at {path}")
