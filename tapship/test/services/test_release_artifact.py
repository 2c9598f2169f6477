from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from tapship.core.config import ArtifactConfig
from tapship.core.result import Err, Ok
from tapship.git.repository import Repository
from tapship.output.console import MockConsole
from tapship.platform.process import ProcessError
from tapship.services.release import artifact as artifact_mod
from tapship.services.release.artifact import ArtifactResolver, archive_url, codeload_url
from tapship.services.release.model import Artifact
from tapship.services.release.semver import SemVer
from tapship.test._repos import git, init_remote_repo, requires_git
from tapship.tools.download import Downloader
from tapship.tools.http import HttpError, MockHttpClient

REPO = "ducktapeai/ducktape"
V = SemVer(0, 13, 5)
URL = codeload_url(REPO, V)


def _resolver(
    tmp_path: Path,
    client: MockHttpClient,
    *,
    attempts: int = 3,
    settle: float = 0.0,
    local_repo: Repository | None = None,
    console: MockConsole | None = None,
) -> ArtifactResolver:
    return ArtifactResolver(
        repo=REPO,
        name="ducktape",
        downloader=Downloader(client, tmp_path / "cache"),
        settings=ArtifactConfig(
            settle_seconds=settle,
            download_attempts=attempts,
            retry_delay_seconds=1.0,
            brew_cache=tmp_path / "brew",
        ),
        console=console or MockConsole(),
        workdir=tmp_path,
        local_repo=local_repo,
    )


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    calls: list[float] = []
    monkeypatch.setattr(artifact_mod, "sleep", calls.append)
    return calls


def test_urls() -> None:
    assert URL == "https://codeload.github.com/ducktapeai/ducktape/tar.gz/refs/tags/v0.13.5"
    assert archive_url(REPO, V) == "https://github.com/ducktapeai/ducktape/archive/refs/tags/v0.13.5.tar.gz"


def test_resolve_downloads_twice_and_returns_formula_url(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(URL, b"tarball")

    result = _resolver(tmp_path, client).resolve(V)

    assert result == Ok(
        Artifact(url=archive_url(REPO, V), sha256=hashlib.sha256(b"tarball").hexdigest())
    )
    assert client.calls == [("download", URL), ("download", URL)]
    assert sleeps == []
    # Nothing is left cached to be trusted later.
    assert list((tmp_path / "cache").iterdir()) == []


def test_resolve_waits_for_settle(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(URL, b"tarball")

    _resolver(tmp_path, client, settle=5.0).resolve(V)

    assert sleeps == [5.0]


def test_unstable_checksum_is_fatal(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(URL, [b"first", b"second"])

    result = _resolver(tmp_path, client).resolve(V)

    assert isinstance(result, Err)
    assert result.error.kind == "checksum_unstable"


def test_transient_errors_retry_with_backoff(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(
        URL, [HttpError(URL, 404, "Not Found"), HttpError(URL, 503, "busy"), b"tarball"]
    )

    result = _resolver(tmp_path, client).resolve(V)

    assert isinstance(result, Ok)
    assert result.value.sha256 == hashlib.sha256(b"tarball").hexdigest()
    assert sleeps == [1.0, 2.0]
    assert len(client.calls) == 4


def test_download_unavailable_after_last_attempt(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(URL, HttpError(URL, 502, "Bad Gateway"))

    result = _resolver(tmp_path, client, attempts=3).resolve(V)

    assert isinstance(result, Err)
    assert result.error.kind == "download_unavailable"
    assert "502" in (result.error.hint or "")
    assert len(client.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_permanent_error_is_not_retried(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(URL, HttpError(URL, 403, "Forbidden"))

    result = _resolver(tmp_path, client).resolve(V)

    assert isinstance(result, Err)
    assert result.error.kind == "download_unavailable"
    assert len(client.calls) == 1
    assert sleeps == []


def test_stale_cache_entries_are_purged(tmp_path: Path, sleeps: list[float]) -> None:
    client = MockHttpClient()
    client.set_download(URL, b"fresh")
    stale = Downloader(client, tmp_path / "cache").cache_path(URL)
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"stale")

    brew = tmp_path / "brew"
    (brew / "downloads").mkdir(parents=True)
    (brew / "ducktape-0.13.5.tar.gz").write_bytes(b"old")
    (brew / "downloads" / "abc123--ducktape--0.13.5.tar.gz").write_bytes(b"old")
    (brew / "ducktape-0.13.4.tar.gz").write_bytes(b"keep")
    (brew / "other-0.13.5.tar.gz").write_bytes(b"keep")

    console = MockConsole()
    resolver = _resolver(tmp_path, client, console=console)
    result = resolver.resolve(V)

    assert isinstance(result, Ok)
    assert result.value.sha256 == hashlib.sha256(b"fresh").hexdigest()
    assert sorted(p.name for p in brew.iterdir() if p.is_file()) == [
        "ducktape-0.13.4.tar.gz",
        "other-0.13.5.tar.gz",
    ]
    assert list((brew / "downloads").iterdir()) == []
    assert console.find("purged 3 cached archive(s)")


def test_purge_without_brew_cache(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd: list[str], *, cwd: Path, timeout: float | None = None):
        del cwd, timeout
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr="no brew"))

    monkeypatch.setattr(artifact_mod, "run_process", fake_run)
    resolver = ArtifactResolver(
        repo=REPO,
        name="ducktape",
        downloader=Downloader(MockHttpClient(), tmp_path / "cache"),
        settings=ArtifactConfig(settle_seconds=0),
        console=MockConsole(),
        workdir=tmp_path,
    )

    assert resolver.purge_brew_cache(V) == 0


def test_brew_cache_dir_from_brew(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    brew = tmp_path / "Caches" / "Homebrew"
    brew.mkdir(parents=True)
    (brew / "ducktape-0.13.5.tar.gz").write_bytes(b"old")
    seen: list[list[str]] = []

    def fake_run(cmd: list[str], *, cwd: Path, timeout: float | None = None):
        del cwd, timeout
        seen.append(cmd)
        return Ok(f"{brew}\n")

    monkeypatch.setattr(artifact_mod, "run_process", fake_run)
    resolver = ArtifactResolver(
        repo=REPO,
        name="ducktape",
        downloader=Downloader(MockHttpClient(), tmp_path / "cache"),
        settings=ArtifactConfig(settle_seconds=0),
        console=MockConsole(),
        workdir=tmp_path,
    )

    assert resolver.purge_brew_cache(V) == 1
    assert seen == [["brew", "--cache"]]


@requires_git
def test_local_digest_mismatch_is_only_a_warning(tmp_path: Path, sleeps: list[float]) -> None:
    _, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    git(checkout, "tag", "-a", "v0.13.5", "-m", "Release 0.13.5")
    client = MockHttpClient()
    client.set_download(URL, b"github bytes differ")
    console = MockConsole()

    resolver = _resolver(tmp_path, client, local_repo=Repository(checkout), console=console)
    local = resolver.local_archive_digest(V)
    result = resolver.resolve(V)

    assert local is not None
    assert isinstance(result, Ok)
    assert result.value.sha256 == hashlib.sha256(b"github bytes differ").hexdigest()
    assert console.has_warning()


def test_local_digest_without_repo(tmp_path: Path) -> None:
    assert _resolver(tmp_path, MockHttpClient()).local_archive_digest(V) is None
