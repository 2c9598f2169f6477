"""CHANGELOG.md ledger.

The ledger is a Keep-a-Changelog style markdown file:

    # Changelog

    ## [Unreleased]

    ## [0.13.5] - 2026-10-18
    ### Fixed
    - fix note parsing

    [unreleased]: https://github.com/owner/repo/compare/v0.13.5...HEAD
    [0.13.5]: https://github.com/owner/repo/releases/tag/v0.13.5

It is parsed into sections, edited structurally and rendered back
wholesale. Rendering is deterministic, so parse(render(x)) == x and
repeated repairs are no-ops.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path

from tapship.core.result import Err, Ok, Result
from tapship.platform.files import atomic_write_text
from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import Category, category_heading
from tapship.services.release.semver import SemVer, parse_version

_HEADING_RE = re.compile(r"^##\s+\[(?P<label>[^\]]*)\](?P<rest>.*)$")
_CATEGORY_RE = re.compile(r"^###\s+(?P<name>.+?)\s*$")
_LINK_RE = re.compile(r"^\[(?P<label>[^\]]+)\]:\s*\S+")
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_FENCE_RE = re.compile(r"^(```|~~~)")

DEFAULT_PREAMBLE: tuple[str, ...] = (
    "# Changelog",
    "",
    "All notable changes to this project will be documented in this file.",
)

Block = tuple[str, tuple[str, ...]]


@dataclass(frozen=True, slots=True)
class ChangelogEntry:
    version: SemVer
    date: str
    category: Category
    message: str


@dataclass(frozen=True, slots=True)
class Section:
    """One ``## [label] - date`` section.

    ``blocks`` keeps ``(category heading, lines)`` pairs in file order; the
    heading is "" for lines written before any ``###`` heading.
    """

    version: SemVer | None  # None for Unreleased
    date: str | None
    blocks: tuple[Block, ...] = ()

    @property
    def label(self) -> str:
        return "Unreleased" if self.version is None else str(self.version)

    def lines(self) -> tuple[str, ...]:
        return tuple(line for _, lines in self.blocks for line in lines)


@dataclass(frozen=True, slots=True)
class Ledger:
    preamble: tuple[str, ...]
    sections: tuple[Section, ...]
    footer: tuple[str, ...] = ()

    def find(self, version: SemVer | None) -> list[int]:
        return [i for i, s in enumerate(self.sections) if s.version == version]


@dataclass(frozen=True, slots=True)
class RepairReport:
    merged: tuple[str, ...]
    reordered: bool
    added_unreleased: bool
    changed: bool
    backup: Path | None = None


# -----------------------------------------------------------------------------
# Parsing / rendering
# -----------------------------------------------------------------------------


def parse_ledger(text: str) -> Result[Ledger, ReleaseError]:
    lines = text.splitlines()

    footer_start = len(lines)
    for i in range(len(lines) - 1, -1, -1):
        line = lines[i].strip()
        if not line:
            continue
        if _LINK_RE.match(line) or line == "# Version Links":
            footer_start = i
            continue
        break
    footer = tuple(ln.strip() for ln in lines[footer_start:] if ln.strip())

    preamble: list[str] = []
    sections: list[Section] = []
    current: Section | None = None
    blocks: list[tuple[str, list[str]]] = []

    def close() -> None:
        if current is not None:
            kept = [(h, _trim_blank(ls)) for h, ls in blocks]
            sections.append(replace(current, blocks=tuple((h, ls) for h, ls in kept if h or ls)))

    in_fence = False
    for lineno, raw in enumerate(lines[:footer_start], start=1):
        # Code blocks are content: nothing inside them is a heading.
        fence = _FENCE_RE.match(raw.strip()) is not None
        if in_fence or fence:
            if fence:
                in_fence = not in_fence
            if current is None:
                preamble.append(raw.rstrip())
            else:
                blocks[-1][1].append(raw.rstrip())
            continue

        heading = _HEADING_RE.match(raw.strip())
        if heading is not None:
            close()
            label = heading.group("label").strip()
            version: SemVer | None = None
            if label.lower() != "unreleased":
                version = parse_version(label)
                if version is None:
                    return Err(
                        ReleaseError(
                            kind="ledger_corrupt",
                            message=f"unparseable changelog heading at line {lineno}: {raw.strip()}",
                            hint="Fix the heading by hand, then retry.",
                        )
                    )
            rest = heading.group("rest").strip().lstrip("-").strip()
            current = Section(version=version, date=rest or None)
            blocks = [("", [])]
            continue

        if current is None:
            preamble.append(raw.rstrip())
            continue

        line = raw.rstrip()
        if not line.strip():
            blocks[-1][1].append("")
            continue
        category = _CATEGORY_RE.match(line.strip())
        if category is not None:
            blocks.append((category.group("name"), []))
            continue
        blocks[-1][1].append(line)

    close()

    while preamble and not preamble[-1].strip():
        preamble.pop()
    while preamble and not preamble[0].strip():
        preamble.pop(0)

    return Ok(Ledger(preamble=tuple(preamble), sections=tuple(sections), footer=footer))


def _trim_blank(lines: list[str]) -> tuple[str, ...]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return tuple(lines[start:end])


def render_section(section: Section) -> list[str]:
    if section.date:
        out = [f"## [{section.label}] - {section.date}"]
    else:
        out = [f"## [{section.label}]"]
    for heading, lines in section.blocks:
        if heading:
            out.append(f"### {heading}")
        out.extend(lines)
        out.append("")
    if not section.blocks:
        out.append("")
    return out


def render_ledger(ledger: Ledger, *, repo: str | None = None) -> str:
    out: list[str] = list(ledger.preamble or DEFAULT_PREAMBLE)
    out.append("")
    for section in ledger.sections:
        out.extend(render_section(section))

    footer = compare_links(ledger, repo) if repo else list(ledger.footer)
    if footer:
        out.extend(footer)

    while out and not out[-1].strip():
        out.pop()
    return "\n".join(out) + "\n"


def compare_links(ledger: Ledger, repo: str) -> list[str]:
    """Rebuild version link references, keeping unrelated footer lines."""
    base = f"https://github.com/{repo}"
    kept: list[str] = []
    for line in ledger.footer:
        m = _LINK_RE.match(line)
        if m is not None:
            label = m.group("label").strip()
            if label.lower() == "unreleased" or parse_version(label) is not None:
                continue
        kept.append(line)

    versions = sorted(
        {s.version for s in ledger.sections if s.version is not None}, reverse=True
    )
    links: list[str] = []
    if versions:
        links.append(f"[unreleased]: {base}/compare/{versions[0].to_tag()}...HEAD")
        for newer, older in zip(versions, versions[1:]):
            links.append(f"[{newer}]: {base}/compare/{older.to_tag()}...{newer.to_tag()}")
        links.append(f"[{versions[-1]}]: {base}/releases/tag/{versions[-1].to_tag()}")
    return kept + links


# -----------------------------------------------------------------------------
# Repair helpers
# -----------------------------------------------------------------------------


def _iso_date(text: str | None) -> date | None:
    if not text:
        return None
    m = _DATE_RE.search(text)
    if m is None:
        return None
    try:
        return date.fromisoformat(m.group(0))
    except ValueError:
        return None


def _items(lines: tuple[str, ...]) -> list[tuple[str, ...]]:
    """Split block lines into single lines and whole fenced code blocks."""
    items: list[tuple[str, ...]] = []
    fenced: list[str] | None = None
    for line in lines:
        is_fence = _FENCE_RE.match(line.strip()) is not None
        if fenced is not None:
            fenced.append(line)
            if is_fence:
                items.append(tuple(fenced))
                fenced = None
        elif is_fence:
            fenced = [line]
        else:
            items.append((line,))
    if fenced is not None:
        items.append(tuple(fenced))
    return items


def merge_sections(sections: list[Section], *, today: date) -> Section:
    """Union of lines per category (first-seen order) and the earliest real date."""
    order: list[str] = []
    headings: dict[str, str] = {}
    merged: dict[str, list[str]] = {}
    seen: dict[str, set[tuple[str, ...]]] = {}
    for section in sections:
        for heading, lines in section.blocks:
            key = heading.strip().lower()
            if key not in merged:
                order.append(key)
                headings[key] = heading
                merged[key] = []
                seen[key] = set()
            out = merged[key]
            for item in _items(lines):
                if not item[0].strip():
                    if out and out[-1].strip():
                        out.append("")
                    continue
                ident = tuple(ln.strip() for ln in item)
                if ident not in seen[key]:
                    out.extend(item)
                    seen[key].add(ident)

    version = sections[0].version
    new_date: str | None = None
    if version is not None:
        dates = [d for d in (_iso_date(s.date) for s in sections) if d is not None]
        new_date = (min(dates) if dates else today).isoformat()

    return Section(
        version=version,
        date=new_date,
        blocks=tuple((headings[k], _trim_blank(merged[k])) for k in order),
    )


def repair_ledger(ledger: Ledger, *, today: date) -> tuple[Ledger, tuple[str, ...], bool, bool]:
    groups: dict[SemVer | None, list[Section]] = {}
    for section in ledger.sections:
        groups.setdefault(section.version, []).append(section)

    merged_labels = tuple(g[0].label for g in groups.values() if len(g) > 1)
    unique = [merge_sections(g, today=today) if len(g) > 1 else g[0] for g in groups.values()]

    added_unreleased = None not in groups
    if added_unreleased:
        unique.append(Section(version=None, date=None))

    # Unreleased first, then versions newest first.
    ordered = sorted(unique, key=lambda s: (s.version is not None, _neg(s.version)))
    reordered = [s.version for s in ordered] != [s.version for s in unique]
    return (
        replace(ledger, sections=tuple(ordered)),
        merged_labels,
        reordered,
        added_unreleased,
    )


def _neg(version: SemVer | None) -> tuple[int, int, int]:
    if version is None:
        return (0, 0, 0)
    return (-version.major, -version.minor, -version.patch)


# -----------------------------------------------------------------------------
# Ledger facade
# -----------------------------------------------------------------------------


class ChangelogLedger:
    """File-backed changelog with prepend / count / repair operations.

    Args:
        path: CHANGELOG.md location (created on first prepend if missing).
        repo: ``owner/name``; when set, compare links are regenerated on write.
    """

    def __init__(self, path: Path, *, repo: str | None = None) -> None:
        self.path = path
        self._repo = repo

    def load(self) -> Result[Ledger, ReleaseError]:
        if not self.path.exists():
            return Ok(Ledger(preamble=DEFAULT_PREAMBLE, sections=()))
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                ReleaseError(
                    kind="ledger_corrupt",
                    message=f"failed to read changelog: {e}",
                    hint=str(self.path),
                )
            )
        return parse_ledger(text)

    def count_entries_for(self, version: SemVer) -> Result[int, ReleaseError]:
        ledger = self.load()
        if isinstance(ledger, Err):
            return ledger
        return Ok(len(ledger.value.find(version)))

    def section_text(self, version: SemVer) -> Result[str | None, ReleaseError]:
        """Body of the (first) section for ``version``, without its heading."""
        ledger = self.load()
        if isinstance(ledger, Err):
            return ledger
        idx = ledger.value.find(version)
        if not idx:
            return Ok(None)
        body = render_section(ledger.value.sections[idx[0]])[1:]
        return Ok("\n".join(body).strip())

    def prepend(self, entry: ChangelogEntry) -> Result[bool, ReleaseError]:
        """Add ``entry`` as the newest release section, below Unreleased.

        If the version already has a section the message is merged into it.
        Returns Ok(True) when the file changed.
        """
        message = " ".join(entry.message.split())
        if not message:
            return Err(ReleaseError(kind="invalid_input", message="changelog message is empty"))
        bullet = f"- {message}"
        heading = category_heading(entry.category)

        loaded = self.load()
        if isinstance(loaded, Err):
            return loaded
        ledger = loaded.value
        sections = list(ledger.sections)

        if not ledger.find(None):
            sections.insert(0, Section(version=None, date=None))
        unreleased_at = next(i for i, s in enumerate(sections) if s.version is None)

        existing = [i for i, s in enumerate(sections) if s.version == entry.version]
        if existing:
            target = sections[existing[0]]
            if bullet not in {ln.strip() for ln in target.lines()}:
                sections[existing[0]] = _add_line(target, heading, bullet)
        else:
            sections.insert(
                unreleased_at + 1,
                Section(version=entry.version, date=entry.date, blocks=((heading, (bullet,)),)),
            )

        return self._write(replace(ledger, sections=tuple(sections)), backup=False).map(
            lambda written: written is not None
        )

    def repair(self, *, today: date | None = None) -> Result[RepairReport, ReleaseError]:
        """Merge duplicate sections, restore newest-first order, ensure Unreleased.

        A ``.bak`` copy of the original file is written before any change.
        """
        loaded = self.load()
        if isinstance(loaded, Err):
            return loaded

        repaired, merged, reordered, added = repair_ledger(
            loaded.value, today=today or date.today()
        )
        written = self._write(repaired, backup=True)
        if isinstance(written, Err):
            return written

        return Ok(
            RepairReport(
                merged=merged,
                reordered=reordered,
                added_unreleased=added,
                changed=written.value is not None,
                backup=written.value if written.value and written.value != self.path else None,
            )
        )

    def _write(self, ledger: Ledger, *, backup: bool) -> Result[Path | None, ReleaseError]:
        """Render and write if different. Ok(None) when nothing changed.

        When ``backup`` is set and a change is written, returns the backup path.
        """
        rendered = render_ledger(ledger, repo=self._repo)
        try:
            previous = self.path.read_text(encoding="utf-8") if self.path.exists() else None
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                ReleaseError(kind="ledger_corrupt", message=f"failed to read changelog: {e}")
            )
        if previous == rendered:
            return Ok(None)

        backup_path: Path | None = None
        try:
            if backup and previous is not None:
                backup_path = self.path.with_name(self.path.name + ".bak")
                shutil.copy2(self.path, backup_path)
            atomic_write_text(self.path, rendered, encoding="utf-8")
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="ledger_corrupt",
                    message=f"failed to write changelog: {e}",
                    hint=str(self.path),
                )
            )
        return Ok(backup_path or self.path)


def _add_line(section: Section, heading: str, line: str) -> Section:
    blocks = list(section.blocks)
    for i, (h, lines) in enumerate(blocks):
        if h.strip().lower() == heading.lower():
            blocks[i] = (h, (*lines, line))
            return replace(section, blocks=tuple(blocks))
    blocks.insert(0, (heading, (line,)))
    return replace(section, blocks=tuple(blocks))
