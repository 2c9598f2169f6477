"""File downloader with an explicit, purgeable cache.

Release archives are cached under ``<project>/.tapship/cache/downloads/``.
The artifact resolver always purges the entry for the archive it is about
to hash: a stale cached tarball is the classic source of a formula whose
sha256 does not match what users download.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from tapship.core.result import Err, Ok, Result
from tapship.tools.http import HttpError

if TYPE_CHECKING:
    from tapship.tools.http import HttpClient

__all__ = ["Downloader", "DownloadResult"]


@dataclass(frozen=True, slots=True)
class DownloadResult:
    """Result of a download operation.

    Attributes:
        path: Path to the downloaded file
        from_cache: True if file was served from cache
        size: File size in bytes
    """

    path: Path
    from_cache: bool
    size: int


class Downloader:
    """File downloader with caching.

    Cache key is based on URL, so two URLs for the same tag are separate
    entries.
    """

    def __init__(self, http: HttpClient, cache_dir: Path) -> None:
        self._http = http
        self._cache_dir = cache_dir

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def cache_key(self, url: str) -> str:
        """Cache file name for URL: ``<url-hash>_<basename>``.

        codeload URLs end in the bare tag (``.../refs/tags/v1.2.3``), so the
        basename alone would collide across projects.
        """
        parsed = urlparse(url)
        filename = Path(parsed.path).name or "download"
        url_hash = hashlib.sha256(url.encode()).hexdigest()[:8]
        return f"{url_hash}_{filename}"

    def cache_path(self, url: str) -> Path:
        return self._cache_dir / self.cache_key(url)

    def clear_cache(self, url: str | None = None) -> int:
        """Clear cached downloads.

        Args:
            url: Specific URL to clear, or None for all

        Returns:
            Number of files removed
        """
        if url is not None:
            path = self.cache_path(url)
            if path.exists():
                path.unlink()
                return 1
            return 0

        count = 0
        if self._cache_dir.exists():
            for file in self._cache_dir.iterdir():
                if file.is_file():
                    file.unlink()
                    count += 1
        return count

    def download(
        self,
        url: str,
        *,
        force: bool = False,
        progress: Callable[[int, int], None] | None = None,
    ) -> Result[DownloadResult, HttpError]:
        """Download file from URL.

        Args:
            url: URL to download
            force: If True, re-download even if cached
            progress: Optional callback(downloaded_bytes, total_bytes)

        Returns:
            Ok with DownloadResult, or Err with HttpError
        """
        cache_path = self.cache_path(url)

        if not force and cache_path.exists():
            size = cache_path.stat().st_size
            return Ok(DownloadResult(path=cache_path, from_cache=True, size=size))

        self._cache_dir.mkdir(parents=True, exist_ok=True)

        result = self._http.download(url, cache_path, progress=progress)

        if isinstance(result, Err):
            # Never leave a partial archive behind to be hashed later.
            if cache_path.exists():
                cache_path.unlink()
            return result

        size = cache_path.stat().st_size
        return Ok(DownloadResult(path=cache_path, from_cache=False, size=size))
