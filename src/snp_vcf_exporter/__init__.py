"""snp-vcf-exporter: consumer genotype exports to imputation-ready VCF."""

__version__ = "0.1.0"

from .genome import GenomeLoadError, GenomeStore, load_genome, parse_genome_text  # noqa: E402
from .models import SNP, GenomeMetadata, VcfRecord  # noqa: E402
from .references.panel import PanelLoadError, ReferencePanel, load_reference_panel  # noqa: E402
from .session import AnalysisSession, Capabilities, load_reference_panel_safe  # noqa: E402
from .vcf_builder import BuildOptions, VcfRecordBuilder  # noqa: E402

__all__ = [
    "AnalysisSession",
    "BuildOptions",
    "Capabilities",
    "GenomeLoadError",
    "GenomeMetadata",
    "GenomeStore",
    "PanelLoadError",
    "ReferencePanel",
    "SNP",
    "VcfRecord",
    "VcfRecordBuilder",
    "__version__",
    "load_genome",
    "load_reference_panel",
    "load_reference_panel_safe",
    "parse_genome_text",
]
