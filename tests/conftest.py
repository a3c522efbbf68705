"""Pytest configuration and fixtures for snp-vcf-exporter tests."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from fixtures.genome_generator import (  # noqa: E402
    make_genome_file,
    make_genome_text,
    make_panel,
    make_panel_file,
)


@pytest.fixture
def genome_text() -> str:
    return make_genome_text()


@pytest.fixture
def genome_store(genome_text):
    from snp_vcf_exporter.genome import parse_genome_text

    return parse_genome_text(genome_text)


@pytest.fixture
def genome_file(tmp_path) -> Path:
    return make_genome_file(tmp_path)


@pytest.fixture
def panel():
    return make_panel()


@pytest.fixture
def panel_tsv_file(tmp_path) -> Path:
    return make_panel_file(tmp_path)


@pytest.fixture(autouse=True)
def _clear_panel_cache():
    from snp_vcf_exporter.references.panel import clear_panel_cache

    clear_panel_cache()
    yield
    clear_panel_cache()

