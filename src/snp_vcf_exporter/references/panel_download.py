"""Reference panel download with checksum verification and on-disk caching.

Panels are published as gzip-compressed packed files (see panel.py). A
download that fails checksum verification is removed from the cache.
"""

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

VALID_BUILDS = ("grch37", "grch38")

DEFAULT_FILENAMES = {
    "grch37": "reference_panel_grch37.svxp.gz",
    "grch38": "reference_panel_grch38.svxp.gz",
}


class PanelDownloadError(Exception):
    """Raised when a panel download fails or does not verify."""

    pass


def get_default_cache_dir() -> Path:
    """Get the default cache directory for reference panels."""
    return Path.home() / ".snp-vcf-exporter" / "panels"


def compute_checksum(file_path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def verify_checksum(file_path: Path, expected: str) -> bool:
    """Verify SHA256 checksum of a file.

    Raises:
        FileNotFoundError: If file does not exist
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    return compute_checksum(file_path) == expected.lower()


@dataclass
class PanelDownloadConfig:
    """Where to fetch a panel from and where to keep it."""

    url: str
    build: str = "grch37"
    cache_dir: Path = field(default_factory=get_default_cache_dir)
    filename: str | None = None
    checksum: str | None = None

    def __post_init__(self):
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid panel url '{self.url}'. Must be http(s)")

        if self.build.lower() not in VALID_BUILDS:
            raise ValueError(f"Invalid build '{self.build}'. Must be one of: {VALID_BUILDS}")
        self.build = self.build.lower()

        if isinstance(self.cache_dir, str):
            self.cache_dir = Path(self.cache_dir)

    def get_cache_path(self) -> Path:
        return self.cache_dir / (self.filename or DEFAULT_FILENAMES[self.build])


class PanelDownloader:
    """Downloads and caches reference panel files."""

    def __init__(self, config: PanelDownloadConfig):
        self.config = config

    def is_cached(self) -> bool:
        cache_path = self.config.get_cache_path()
        return cache_path.exists() and cache_path.stat().st_size > 0

    async def download(
        self,
        force: bool = False,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> Path:
        """Download the panel unless a cached copy exists.

        Args:
            force: Force re-download even if cached
            progress_callback: Optional callback for (downloaded, total) bytes

        Returns:
            Path to the downloaded/cached file

        Raises:
            PanelDownloadError: On HTTP failure or checksum mismatch
        """
        cache_path = self.config.get_cache_path()

        if self.is_cached() and not force:
            logger.info("Using cached reference panel: %s", cache_path)
            return cache_path

        cache_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            await self._download_file(progress_callback)
        except httpx.HTTPError as e:
            cache_path.unlink(missing_ok=True)
            raise PanelDownloadError(f"Failed to download {self.config.url}: {e}") from e

        if self.config.checksum and not verify_checksum(cache_path, self.config.checksum):
            cache_path.unlink(missing_ok=True)
            raise PanelDownloadError(
                f"Checksum verification failed for {cache_path}. "
                "The file may be corrupted or tampered with."
            )

        logger.info("Downloaded reference panel to: %s", cache_path)
        return cache_path

    async def _download_file(
        self, progress_callback: Callable[[int, int], None] | None = None
    ) -> None:
        url = self.config.url
        cache_path = self.config.get_cache_path()

        logger.info("Downloading reference panel from: %s", url)

        async with httpx.AsyncClient(follow_redirects=True, timeout=300.0) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                total_size = int(response.headers.get("content-length", 0))
                downloaded = 0

                with open(cache_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=8192):
                        f.write(chunk)
                        downloaded += len(chunk)
                        if progress_callback and total_size:
                            progress_callback(downloaded, total_size)
