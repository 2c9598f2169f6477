"""Source archive resolution.

The formula must carry the sha256 of the archive users will actually
download, not of a locally built or cached tarball. Resolution therefore:

1. purges every cached copy of the archive (our own cache and Homebrew's),
2. waits for the hosting service to settle after the tag push,
3. downloads the canonical archive twice and requires identical digests.

A ``git archive`` digest of the local tag is computed as a diagnostic only;
GitHub's archives are not byte-identical to local ones and must never be
used in the formula.
"""

from __future__ import annotations

from pathlib import Path
from time import sleep

from tapship.core.config import ArtifactConfig
from tapship.core.result import Err, Ok, Result
from tapship.git.repository import Repository
from tapship.output.console import ConsoleProtocol, Style
from tapship.platform.files import sha256_file
from tapship.platform.process import run as run_process
from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import Artifact
from tapship.services.release.semver import SemVer
from tapship.services.release.timeouts import BREW_TIMEOUT_SECONDS, DOWNLOAD_RETRY_BACKOFF_FACTOR
from tapship.tools.download import Downloader

CODELOAD_URL = "https://codeload.github.com/{repo}/tar.gz/refs/tags/{tag}"
ARCHIVE_URL = "https://github.com/{repo}/archive/refs/tags/{tag}.tar.gz"


def codeload_url(repo: str, version: SemVer) -> str:
    """Canonical download location (what is hashed)."""
    return CODELOAD_URL.format(repo=repo, tag=version.to_tag())


def archive_url(repo: str, version: SemVer) -> str:
    """Public archive URL written into the formula (redirects to codeload)."""
    return ARCHIVE_URL.format(repo=repo, tag=version.to_tag())


class ArtifactResolver:
    def __init__(
        self,
        *,
        repo: str,
        name: str,
        downloader: Downloader,
        settings: ArtifactConfig,
        console: ConsoleProtocol,
        workdir: Path,
        local_repo: Repository | None = None,
    ) -> None:
        self._repo = repo
        self._name = name
        self._downloader = downloader
        self._settings = settings
        self._console = console
        self._workdir = workdir
        self._local_repo = local_repo

    def resolve(self, version: SemVer) -> Result[Artifact, ReleaseError]:
        """Fetch a fresh copy of the tag archive and compute its sha256."""
        url = codeload_url(self._repo, version)

        purged = self._downloader.clear_cache(url) + self.purge_brew_cache(version)
        if purged:
            self._console.print(f"purged {purged} cached archive(s) for {version}", Style.DIM)

        if self._settings.settle_seconds > 0:
            self._console.print(
                f"waiting {self._settings.settle_seconds:g}s for {version.to_tag()} archive",
                Style.DIM,
            )
            sleep(self._settings.settle_seconds)

        first = self._fetch_digest(url)
        if isinstance(first, Err):
            return first
        second = self._fetch_digest(url)
        if isinstance(second, Err):
            return second

        if first.value != second.value:
            return Err(
                ReleaseError(
                    kind="checksum_unstable",
                    message=f"archive digest changed between downloads of {url}",
                    hint=f"{first.value} != {second.value}; wait and resume",
                )
            )

        local = self.local_archive_digest(version)
        if local is not None and local != first.value:
            self._console.warning(
                f"local git archive digest differs from {url} (expected; formula uses the download)"
            )

        return Ok(Artifact(url=archive_url(self._repo, version), sha256=first.value))

    def purge_brew_cache(self, version: SemVer) -> int:
        """Delete Homebrew's cached downloads of this archive.

        Returns the number of files removed; 0 when brew is unavailable.
        """
        cache_dir = self._brew_cache_dir()
        if cache_dir is None or not cache_dir.is_dir():
            return 0

        patterns = (f"*{self._name}-{version}*", f"*{self._name}--{version}*")
        removed = 0
        for directory in (cache_dir, cache_dir / "downloads"):
            if not directory.is_dir():
                continue
            seen: set[Path] = set()
            for pattern in patterns:
                for path in directory.glob(pattern):
                    if path in seen or not (path.is_file() or path.is_symlink()):
                        continue
                    seen.add(path)
                    path.unlink()
                    removed += 1
        return removed

    def local_archive_digest(self, version: SemVer) -> str | None:
        """sha256 of ``git archive`` for the local tag; diagnostic only."""
        if self._local_repo is None:
            return None
        dest = self._downloader.cache_dir / f"local-{self._name}-{version}.tar.gz"
        result = self._local_repo.archive(
            version.to_tag(), prefix=f"{self._name}-{version}/", dest=dest
        )
        if isinstance(result, Err):
            return None
        try:
            return sha256_file(dest)
        finally:
            dest.unlink(missing_ok=True)

    def _fetch_digest(self, url: str) -> Result[str, ReleaseError]:
        attempts = max(1, self._settings.download_attempts)
        last_error = ""
        for attempt in range(attempts):
            result = self._downloader.download(url, force=True)
            if isinstance(result, Ok):
                try:
                    return Ok(sha256_file(result.value.path))
                finally:
                    result.value.path.unlink(missing_ok=True)

            error = result.error
            last_error = str(error)
            if attempt < attempts - 1 and error.is_transient:
                delay = self._settings.retry_delay_seconds * DOWNLOAD_RETRY_BACKOFF_FACTOR**attempt
                self._console.print(
                    f"download failed ({last_error}); retry {attempt + 2}/{attempts} in {delay:g}s",
                    Style.DIM,
                )
                sleep(delay)
                continue
            break

        return Err(
            ReleaseError(
                kind="download_unavailable",
                message=f"could not download {url}",
                hint=last_error or None,
            )
        )

    def _brew_cache_dir(self) -> Path | None:
        if self._settings.brew_cache is not None:
            return self._settings.brew_cache
        result = run_process(["brew", "--cache"], cwd=self._workdir, timeout=BREW_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            return None
        out = result.value.strip()
        return Path(out) if out else None
