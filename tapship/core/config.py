"""Typed configuration loading and access.

The release orchestrator is configured by a ``tapship.toml`` file that
lives in (or above) the project checkout:

    [project]
    name = "ducktape"
    repo = "ducktapeai/ducktape"
    version_file = "Cargo.toml"
    lock_files = ["Cargo.lock"]
    build = ["cargo build --release", "cargo test --release"]

    [formula]
    tap_root = "../homebrew-ducktape"
    tap = "ducktapeai/ducktape"
    desc = "AI-powered terminal tool"
    depends_on = ["rust:build"]
    smoke = ["calendar", "list"]

Relative paths are resolved against the directory holding the file.
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_obj_list,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "CONFIG_FILENAME",
    "ArtifactConfig",
    "ChangelogConfig",
    "Config",
    "ConfigError",
    "FormulaConfig",
    "ProjectConfig",
    "VerifyConfig",
    "find_config",
    "load_config",
]

CONFIG_FILENAME = "tapship.toml"

DEFAULT_CARGO_INSTALL: tuple[tuple[str, ...], ...] = (
    ("cargo", "install", "--root", "{prefix}", "--path", "."),
)


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """The project being released."""

    name: str
    repo: str  # owner/name on GitHub
    root: Path
    branch: str = "main"
    remote: str = "origin"
    version_file: str = "Cargo.toml"
    lock_files: tuple[str, ...] = ("Cargo.lock",)
    build: tuple[tuple[str, ...], ...] = ()

    @property
    def homepage(self) -> str:
        return f"https://github.com/{self.repo}"


@dataclass(frozen=True, slots=True)
class ChangelogConfig:
    path: str = "CHANGELOG.md"
    # Regenerate compare links at the bottom of the changelog.
    links: bool = True


@dataclass(frozen=True, slots=True)
class FormulaConfig:
    """The Homebrew tap and the shape of the generated formula."""

    tap_root: Path
    tap: str | None = None
    path: str | None = None
    branch: str = "main"
    remote: str = "origin"
    desc: str = ""
    homepage: str | None = None
    license: str = "MIT"
    depends_on: tuple[str, ...] = ()
    install: tuple[tuple[str, ...], ...] = DEFAULT_CARGO_INSTALL
    version_args: tuple[str, ...] = ("--version",)
    smoke: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ArtifactConfig:
    settle_seconds: float = 5.0
    download_attempts: int = 3
    retry_delay_seconds: float = 2.0
    timeout_seconds: float = 60.0
    # Override for `brew --cache`; None means ask brew.
    brew_cache: Path | None = None


@dataclass(frozen=True, slots=True)
class VerifyConfig:
    enabled: bool = True
    audit: bool = True
    # Binary to run after install; defaults to the project name.
    command: str | None = None


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    path: Path
    project: ProjectConfig
    formula: FormulaConfig
    changelog: ChangelogConfig = field(default_factory=ChangelogConfig)
    artifact: ArtifactConfig = field(default_factory=ArtifactConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)

    @property
    def state_dir(self) -> Path:
        return self.project.root / ".tapship"

    @property
    def changelog_path(self) -> Path:
        return self.project.root / self.changelog.path

    @property
    def version_path(self) -> Path:
        return self.project.root / self.project.version_file

    @property
    def formula_rel_path(self) -> str:
        return self.formula.path or f"Formula/{self.project.name}.rb"

    @property
    def formula_path(self) -> Path:
        return self.formula.tap_root / self.formula_rel_path

    @property
    def binary(self) -> str:
        return self.verify.command or self.project.name

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: Path) -> Config:
        """Create Config from a mapping (parsed TOML).

        Raises:
            ValueError: when a required key is missing or malformed.
        """
        base = path.parent
        project: StrDict = get_table(data, "project") or {}
        formula: StrDict = get_table(data, "formula") or {}
        changelog: StrDict = get_table(data, "changelog") or {}
        artifact: StrDict = get_table(data, "artifact") or {}
        verify: StrDict = get_table(data, "verify") or {}

        name = get_str(project, "name")
        repo = get_str(project, "repo")
        if name is None:
            raise ValueError("[project] name is required")
        if repo is None or repo.count("/") != 1:
            raise ValueError("[project] repo must be 'owner/name'")

        tap_root = get_str(formula, "tap_root")
        if tap_root is None:
            raise ValueError("[formula] tap_root is required")

        brew_cache = get_str(artifact, "brew_cache")

        return cls(
            path=path,
            project=ProjectConfig(
                name=name,
                repo=repo,
                root=_resolve(base, get_str(project, "root") or "."),
                branch=get_str(project, "branch") or "main",
                remote=get_str(project, "remote") or "origin",
                version_file=get_str(project, "version_file") or "Cargo.toml",
                lock_files=_str_tuple(project, "lock_files", ("Cargo.lock",)),
                build=tuple(tuple(shlex.split(c)) for c in _str_tuple(project, "build", ())),
            ),
            formula=FormulaConfig(
                tap_root=_resolve(base, tap_root),
                tap=get_str(formula, "tap"),
                path=get_str(formula, "path"),
                branch=get_str(formula, "branch") or "main",
                remote=get_str(formula, "remote") or "origin",
                desc=get_str(formula, "desc") or "",
                homepage=get_str(formula, "homepage"),
                license=get_str(formula, "license") or "MIT",
                depends_on=_str_tuple(formula, "depends_on", ()),
                install=_argv_list(formula, "install") or DEFAULT_CARGO_INSTALL,
                version_args=_str_tuple(formula, "version_args", ("--version",)),
                smoke=_str_tuple(formula, "smoke", ()),
            ),
            changelog=ChangelogConfig(
                path=get_str(changelog, "path") or "CHANGELOG.md",
                links=_bool_or(changelog, "links", True),
            ),
            artifact=ArtifactConfig(
                settle_seconds=_float_or(artifact, "settle_seconds", 5.0),
                download_attempts=max(1, get_int(artifact, "download_attempts") or 3),
                retry_delay_seconds=_float_or(artifact, "retry_delay_seconds", 2.0),
                timeout_seconds=_float_or(artifact, "timeout_seconds", 60.0),
                brew_cache=_resolve(base, brew_cache) if brew_cache else None,
            ),
            verify=VerifyConfig(
                enabled=_bool_or(verify, "enabled", True),
                audit=_bool_or(verify, "audit", True),
                command=get_str(verify, "command"),
            ),
        )


def _resolve(base: Path, value: str) -> Path:
    p = Path(value).expanduser()
    if not p.is_absolute():
        p = base / p
    return p.resolve()


def _str_tuple(table: Mapping[str, object], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    if key not in table:
        return default
    items = get_str_list(table, key)
    if items is None:
        raise ValueError(f"{key} must be a list of strings")
    return tuple(items)


def _argv_list(table: Mapping[str, object], key: str) -> tuple[tuple[str, ...], ...] | None:
    if key not in table:
        return None
    rows = as_obj_list(table.get(key))
    if rows is None:
        raise ValueError(f"{key} must be a list of commands")
    out: list[tuple[str, ...]] = []
    for row in rows:
        if isinstance(row, str):
            out.append(tuple(shlex.split(row)))
            continue
        argv = as_obj_list(row)
        if argv is None or not argv or not all(isinstance(a, str) for a in argv):
            raise ValueError(f"{key} entries must be strings or lists of strings")
        out.append(tuple(str(a) for a in argv))
    return tuple(out)


def _bool_or(table: Mapping[str, object], key: str, default: bool) -> bool:
    value = get_bool(table, key)
    return default if value is None else value


def _float_or(table: Mapping[str, object], key: str, default: float) -> float:
    value = get_float(table, key)
    return default if value is None else value


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling import and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to tapship.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    path = path.expanduser().resolve()
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value, path=path))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def find_config(start: Path) -> Path | None:
    """Walk up from ``start`` looking for tapship.toml."""
    current = start.resolve()
    for parent in (current, *current.parents):
        candidate = parent / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None
