from __future__ import annotations

from pathlib import Path

from tapship.core.result import Err, Ok
from tapship.services.release.semver import SemVer
from tapship.services.release.version_store import VersionStore

CARGO = """[package]
name = "ducktape"
version = "0.13.4"
edition = "2021"

[dependencies]
serde = { version = "1.0", features = ["derive"] }

[dev-dependencies.tokio]
version = "1.40.0"
"""


def _store(tmp_path: Path, content: str = CARGO, name: str = "Cargo.toml") -> VersionStore:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return VersionStore(path, lock_files=("Cargo.lock",))


def test_current_version_reads_package_table(tmp_path: Path) -> None:
    assert _store(tmp_path).current_version() == Ok(SemVer(0, 13, 4))


def test_current_version_top_level_key(tmp_path: Path) -> None:
    store = _store(tmp_path, 'name = "x"\nversion = "2.0.1"\n\n[tool]\nversion = "9.9.9"\n', "meta.toml")
    assert store.current_version() == Ok(SemVer(2, 0, 1))


def test_missing_declaration(tmp_path: Path) -> None:
    result = _store(tmp_path, '[package]\nname = "x"\n').current_version()

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_input"


def test_invalid_declared_version(tmp_path: Path) -> None:
    result = _store(tmp_path, '[package]\nversion = "1.2"\n').current_version()

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_version_format"


def test_missing_file(tmp_path: Path) -> None:
    result = VersionStore(tmp_path / "Cargo.toml").current_version()

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_input"


def test_propose_next_bumps(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.propose_next("patch") == Ok(SemVer(0, 13, 5))
    assert store.propose_next("minor") == Ok(SemVer(0, 14, 0))
    assert store.propose_next("major") == Ok(SemVer(1, 0, 0))


def test_propose_next_explicit(tmp_path: Path) -> None:
    assert _store(tmp_path).propose_next(None, explicit="0.14.2") == Ok(SemVer(0, 14, 2))


def test_propose_next_explicit_not_greater_is_conflict(tmp_path: Path) -> None:
    store = _store(tmp_path)

    lower = store.propose_next(None, explicit="0.13.3")
    same = store.propose_next(None, explicit="0.13.4")

    assert isinstance(lower, Err)
    assert lower.error.kind == "version_conflict"
    assert isinstance(same, Err)
    assert same.error.kind == "version_conflict"
    assert "0.13.5" in (same.error.hint or "")


def test_propose_next_same_allowed_for_republish(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.propose_next(None, explicit="0.13.4", allow_same=True) == Ok(SemVer(0, 13, 4))


def test_propose_next_explicit_malformed(tmp_path: Path) -> None:
    result = _store(tmp_path).propose_next(None, explicit="0.13")

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_version_format"


def test_propose_next_requires_bump_or_version(tmp_path: Path) -> None:
    result = _store(tmp_path).propose_next(None)

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_input"


def test_commit_rewrites_only_the_package_version(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.commit(SemVer(0, 13, 5)) == Ok(True)

    text = store.path.read_text(encoding="utf-8")
    assert text == CARGO.replace('version = "0.13.4"', 'version = "0.13.5"')
    assert 'version = "1.40.0"' in text
    assert store.current_version() == Ok(SemVer(0, 13, 5))


def test_commit_same_version_is_noop(tmp_path: Path) -> None:
    store = _store(tmp_path)
    before = store.path.stat().st_mtime_ns

    assert store.commit(SemVer(0, 13, 4)) == Ok(False)
    assert store.path.stat().st_mtime_ns == before


def test_metadata_paths_include_existing_lock_files(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.metadata_paths == (store.path,)

    (tmp_path / "Cargo.lock").write_text("# lock\n", encoding="utf-8")
    assert store.metadata_paths == (store.path, tmp_path / "Cargo.lock")
