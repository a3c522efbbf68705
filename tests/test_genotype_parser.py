"""Tests for 23andMe-style genotype line and file parsing."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st


class TestParseLine:
    """Test parse_line on single data lines."""

    def test_valid_line(self):
        from snp_vcf_exporter.genotype_parser import parse_line

        snp = parse_line("rs123\t1\t1000\tAG")

        assert snp.rsid == "rs123"
        assert snp.chromosome == "1"
        assert snp.position == 1000
        assert snp.genotype == "AG"

    def test_lowercase_genotype_uppercased(self):
        from snp_vcf_exporter.genotype_parser import parse_line

        assert parse_line("rs1\t1\t10\tag").genotype == "AG"

    def test_trailing_newline_stripped(self):
        from snp_vcf_exporter.genotype_parser import parse_line

        assert parse_line("rs1\t2\t10\tCC\r\n").genotype == "CC"

    def test_chromosome_aliases(self):
        from snp_vcf_exporter.genotype_parser import parse_line

        assert parse_line("rs1\tchr7\t10\tCC").chromosome == "7"
        assert parse_line("rs1\tM\t10\tC").chromosome == "MT"
        assert parse_line("rs1\t23\t10\tC").chromosome == "X"

    def test_haploid_and_empty_genotypes(self):
        from snp_vcf_exporter.genotype_parser import parse_line

        assert parse_line("rs1\tY\t10\tA").genotype == "A"
        assert parse_line("rs1\t1\t10\t").genotype == ""

    def test_no_call_and_indel_markers(self):
        from snp_vcf_exporter.genotype_parser import parse_line

        assert parse_line("rs1\t1\t10\t--").is_no_call
        assert parse_line("i700\t1\t10\tDI").genotype == "DI"
        assert parse_line("i700\t1\t10\tDI").is_no_call
        assert parse_line("i701\t1\t10\tII").is_no_call
        assert parse_line("i702\t1\t10\tA-").is_no_call
        assert not parse_line("rs1\t1\t10\tAG").is_no_call

    @pytest.mark.parametrize(
        "line,reason",
        [
            ("rs1\t1\t100", "expected 4"),
            ("rs1\t1\t100\tAA\textra", "expected 4"),
            ("rs1\t1\tabc\tAA", "non-numeric position"),
            ("rs1\t1\t-5\tAA", "negative position"),
            ("rs1\t99\t100\tAA", "unknown chromosome"),
            ("rs1\t1\t100\tAAA", "longer than 2"),
            ("rs1\t1\t100\tXY", "invalid genotype"),
            ("\t1\t100\tAA", "missing rsid"),
        ],
    )
    def test_malformed_lines_raise(self, line, reason):
        from snp_vcf_exporter.genotype_parser import ParseError, parse_line

        with pytest.raises(ParseError, match=reason) as exc_info:
            parse_line(line, line_number=42)

        assert exc_info.value.line_number == 42
        assert exc_info.value.line == line

    def test_parse_error_is_value_error(self):
        from snp_vcf_exporter.genotype_parser import ParseError

        assert issubclass(ParseError, ValueError)

    @given(
        position=st.integers(min_value=0, max_value=300_000_000),
        genotype=st.text(alphabet="ACGT-ID", min_size=0, max_size=2),
        chrom=st.sampled_from([str(i) for i in range(1, 23)] + ["X", "Y", "MT"]),
    )
    @settings(max_examples=100)
    def test_valid_lines_always_parse(self, position, genotype, chrom):
        from snp_vcf_exporter.genotype_parser import parse_line

        snp = parse_line(f"rs1\t{chrom}\t{position}\t{genotype}")
        assert snp.position == position
        assert snp.genotype == genotype
        assert snp.chromosome == chrom


class TestMetadataParsing:
    """Test extraction of metadata from comment lines."""

    def test_generated_at(self):
        from snp_vcf_exporter.genotype_parser import parse_metadata_line
        from snp_vcf_exporter.models import GenomeMetadata

        metadata = GenomeMetadata()
        parse_metadata_line("# This data file generated by 23andMe at: Mon Jan 01 2024", metadata)

        assert metadata.generated_at == "Mon Jan 01 2024"

    @pytest.mark.parametrize(
        "line,build",
        [
            ("# reference human assembly build 36 (a.k.a. NCBI36)", "NCBI36"),
            ("# reference human assembly build 37 (a.k.a. GRCh37):", "GRCh37"),
            ("# assembly: GRCh38", "GRCh38"),
            ("# aligned to hg19", "GRCh37"),
        ],
    )
    def test_build_detection(self, line, build):
        from snp_vcf_exporter.genotype_parser import parse_metadata_line
        from snp_vcf_exporter.models import GenomeMetadata

        metadata = GenomeMetadata()
        parse_metadata_line(line, metadata)

        assert metadata.build == build

    def test_key_value_pairs(self):
        from snp_vcf_exporter.genotype_parser import parse_metadata_line
        from snp_vcf_exporter.models import GenomeMetadata

        metadata = GenomeMetadata()
        for line in ["# file_id: abc", "# signature: sig", "# timestamp: t0", "# Lab Name: x"]:
            parse_metadata_line(line, metadata)

        assert metadata.file_id == "abc"
        assert metadata.signature == "sig"
        assert metadata.timestamp == "t0"
        assert metadata.extra["lab_name"] == "x"

    def test_default_build(self):
        from snp_vcf_exporter.models import GenomeMetadata

        assert GenomeMetadata().build == "GRCh37"


class TestGenotypeFileParser:
    """Test streaming parsing of whole files."""

    def test_parses_all_snps(self, genome_text):
        from snp_vcf_exporter.genotype_parser import GenotypeFileParser

        parser = GenotypeFileParser(genome_text.splitlines(keepends=True))
        snps = list(parser)

        assert len(snps) == 8
        assert snps[0].rsid == "rs123"
        assert parser.metadata.file_id == "abc123"
        assert parser.metadata.build == "GRCh37"
        assert parser.report.malformed_lines == 0

    def test_uncommented_header_skipped(self):
        from snp_vcf_exporter.genotype_parser import GenotypeFileParser

        parser = GenotypeFileParser(["rsid\tchromosome\tposition\tgenotype\n", "rs1\t1\t10\tAA\n"])

        assert [snp.rsid for snp in parser] == ["rs1"]
        assert parser.report.malformed_lines == 0

    def test_blank_lines_skipped(self):
        from snp_vcf_exporter.genotype_parser import GenotypeFileParser

        parser = GenotypeFileParser(["\n", "rs1\t1\t10\tAA\n", "   \n"])

        assert len(list(parser)) == 1
        assert parser.report.blank_lines == 2

    def test_malformed_lines_counted_not_fatal(self):
        from snp_vcf_exporter.genotype_parser import GenotypeFileParser

        lines = ["rs1\t1\t10\tAA", "garbage", "rs2\t1\tx\tAA", "rs3\t2\t20\tCT"]
        parser = GenotypeFileParser(lines)
        snps = list(parser)

        assert [snp.rsid for snp in snps] == ["rs1", "rs3"]
        assert parser.report.malformed_lines == 2
        assert parser.report.errors[0].line_number == 2
        assert parser.report.malformed_fraction == pytest.approx(0.5)

    def test_every_line_malformed_yields_nothing(self):
        from snp_vcf_exporter.genotype_parser import GenotypeFileParser

        parser = GenotypeFileParser(["bad", "also bad"])

        assert list(parser) == []
        assert parser.report.malformed_lines == 2

    def test_recorded_errors_capped(self):
        from snp_vcf_exporter.genotype_parser import MAX_RECORDED_ERRORS, GenotypeFileParser

        parser = GenotypeFileParser(["bad"] * (MAX_RECORDED_ERRORS + 10))
        list(parser)

        assert parser.report.malformed_lines == MAX_RECORDED_ERRORS + 10
        assert len(parser.report.errors) == MAX_RECORDED_ERRORS

    def test_empty_input(self):
        from snp_vcf_exporter.genotype_parser import GenotypeFileParser

        parser = GenotypeFileParser([])

        assert list(parser) == []
        assert parser.report.data_lines == 0
        assert parser.report.malformed_fraction == 0.0
