"""Tests for reference panel download, checksum verification and caching."""

import hashlib
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

PANEL_URL = "https://example.org/panels/reference_panel_grch37.svxp.gz"


class TestPanelDownloadConfig:
    """Test download configuration."""

    def test_default_values(self):
        from snp_vcf_exporter.references.panel_download import PanelDownloadConfig

        config = PanelDownloadConfig(url=PANEL_URL)

        assert config.build == "grch37"
        assert "snp-vcf-exporter" in str(config.cache_dir)
        assert config.get_cache_path().name == "reference_panel_grch37.svxp.gz"

    def test_custom_filename_and_cache_dir(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import PanelDownloadConfig

        config = PanelDownloadConfig(url=PANEL_URL, cache_dir=str(tmp_path), filename="p.svxp")

        assert config.get_cache_path() == tmp_path / "p.svxp"

    def test_build_normalized(self):
        from snp_vcf_exporter.references.panel_download import PanelDownloadConfig

        assert PanelDownloadConfig(url=PANEL_URL, build="GRCh38").build == "grch38"

    def test_invalid_build_raises_error(self):
        from snp_vcf_exporter.references.panel_download import PanelDownloadConfig

        with pytest.raises(ValueError, match="build"):
            PanelDownloadConfig(url=PANEL_URL, build="hg17")

    def test_invalid_url_raises_error(self):
        from snp_vcf_exporter.references.panel_download import PanelDownloadConfig

        with pytest.raises(ValueError, match="url"):
            PanelDownloadConfig(url="ftp://example.org/panel")


class TestChecksum:
    """Test checksum verification."""

    def test_verify_checksum_valid(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import verify_checksum

        path = tmp_path / "f.bin"
        path.write_bytes(b"panel bytes")

        assert verify_checksum(path, hashlib.sha256(b"panel bytes").hexdigest()) is True

    def test_verify_checksum_case_insensitive(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import verify_checksum

        path = tmp_path / "f.bin"
        path.write_bytes(b"x")

        assert verify_checksum(path, hashlib.sha256(b"x").hexdigest().upper()) is True

    def test_verify_checksum_invalid(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import verify_checksum

        path = tmp_path / "f.bin"
        path.write_bytes(b"panel bytes")

        assert verify_checksum(path, "0" * 64) is False

    def test_verify_checksum_missing_file(self):
        from snp_vcf_exporter.references.panel_download import verify_checksum

        with pytest.raises(FileNotFoundError):
            verify_checksum(Path("/nonexistent/panel.svxp"), "checksum")


class TestPanelDownloader:
    """Test download behavior with mocked HTTP."""

    def test_is_cached(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import (
            PanelDownloadConfig,
            PanelDownloader,
        )

        config = PanelDownloadConfig(url=PANEL_URL, cache_dir=tmp_path)
        downloader = PanelDownloader(config)
        assert downloader.is_cached() is False

        config.get_cache_path().write_bytes(b"data")
        assert downloader.is_cached() is True

    @pytest.mark.asyncio
    async def test_cached_file_returned_without_download(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import (
            PanelDownloadConfig,
            PanelDownloader,
        )

        config = PanelDownloadConfig(url=PANEL_URL, cache_dir=tmp_path)
        config.get_cache_path().write_bytes(b"cached")
        downloader = PanelDownloader(config)

        with patch.object(downloader, "_download_file", new_callable=AsyncMock) as mock_download:
            result = await downloader.download()

        mock_download.assert_not_called()
        assert result == config.get_cache_path()

    @pytest.mark.asyncio
    async def test_force_redownloads(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import (
            PanelDownloadConfig,
            PanelDownloader,
        )

        config = PanelDownloadConfig(url=PANEL_URL, cache_dir=tmp_path)
        config.get_cache_path().write_bytes(b"cached")
        downloader = PanelDownloader(config)

        with patch.object(downloader, "_download_file", new_callable=AsyncMock) as mock_download:
            await downloader.download(force=True)

        mock_download.assert_called_once()

    @pytest.mark.asyncio
    async def test_streams_to_cache_with_progress(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import (
            PanelDownloadConfig,
            PanelDownloader,
        )

        content = b"SVXP" + b"\x00" * 100
        config = PanelDownloadConfig(
            url=PANEL_URL,
            cache_dir=tmp_path / "nested",
            checksum=hashlib.sha256(content).hexdigest(),
        )
        downloader = PanelDownloader(config)

        async def aiter_bytes(chunk_size=8192):
            yield content[:50]
            yield content[50:]

        mock_response = MagicMock()
        mock_response.headers = {"content-length": str(len(content))}
        mock_response.raise_for_status = MagicMock()
        mock_response.aiter_bytes = aiter_bytes

        mock_client = MagicMock()
        mock_client.stream = MagicMock(
            return_value=MagicMock(
                __aenter__=AsyncMock(return_value=mock_response),
                __aexit__=AsyncMock(return_value=False),
            )
        )

        progress = []
        with patch("httpx.AsyncClient") as client_cls:
            client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            client_cls.return_value.__aexit__ = AsyncMock(return_value=False)

            path = await downloader.download(
                progress_callback=lambda done, total: progress.append((done, total))
            )

        assert path.read_bytes() == content
        assert progress == [(50, 104), (104, 104)]

    @pytest.mark.asyncio
    async def test_checksum_mismatch_removes_file(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import (
            PanelDownloadConfig,
            PanelDownloader,
            PanelDownloadError,
        )

        config = PanelDownloadConfig(url=PANEL_URL, cache_dir=tmp_path, checksum="0" * 64)
        downloader = PanelDownloader(config)

        async def fake_download(progress_callback=None):
            config.get_cache_path().write_bytes(b"tampered")

        with patch.object(downloader, "_download_file", side_effect=fake_download):
            with pytest.raises(PanelDownloadError, match="Checksum verification failed"):
                await downloader.download()

        assert not config.get_cache_path().exists()

    @pytest.mark.asyncio
    async def test_http_error_wrapped(self, tmp_path):
        from snp_vcf_exporter.references.panel_download import (
            PanelDownloadConfig,
            PanelDownloader,
            PanelDownloadError,
        )

        config = PanelDownloadConfig(url=PANEL_URL, cache_dir=tmp_path)
        downloader = PanelDownloader(config)

        with patch.object(
            downloader,
            "_download_file",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("connection refused"),
        ):
            with pytest.raises(PanelDownloadError, match="Failed to download"):
                await downloader.download()

        assert not config.get_cache_path().exists()
