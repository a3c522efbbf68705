"""Reference panel support for imputation-ready export."""

from .panel import (
    PanelEntry,
    PanelLoadError,
    PanelStats,
    ReferencePanel,
    complement_allele,
    convert_tsv_to_packed,
    is_strand_ambiguous,
    load_reference_panel,
    write_packed_panel,
)

__all__ = [
    "PanelEntry",
    "PanelLoadError",
    "PanelStats",
    "ReferencePanel",
    "complement_allele",
    "convert_tsv_to_packed",
    "is_strand_ambiguous",
    "load_reference_panel",
    "write_packed_panel",
]
