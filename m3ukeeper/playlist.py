"""M3U/M3U8 playlist store.

A ``Playlist`` holds the track entries of one playlist file. Every entry is
identified by a checksum of its original line, so ids stay stable while the
client updates, removes, sorts or shuffles entries. The class makes no
assumptions about how the output file should look: callers inspect entries,
decide what to change and finally ``save()`` when ``is_dirty`` says so.
"""

from __future__ import annotations

import logging
import os
import random
import re
import zlib
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from m3ukeeper.errors import PlaylistError
from m3ukeeper.tagger import Tagger

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("m3u", "m3u8")
BOM = b"\xef\xbb\xbf"
COMMENT = "#"

_SEP_RE = re.compile(r"[\\/]")


def entry_id(line: str) -> int:
    """Stable id of a playlist line (CRC32 of its UTF-8 text)."""
    return zlib.crc32(line.encode("utf-8"))


def split_line(line: str) -> tuple[str, str]:
    """Split a playlist line into (directory, filename).

    Both slash styles are accepted since playlists are often written on
    Windows and read elsewhere.
    """
    parts = _SEP_RE.split(line)
    name = parts[-1]
    return line[: len(line) - len(name)].rstrip("\\/"), name


def supported_types() -> str:
    return ", ".join(f"*.{t}" for t in SUPPORTED_TYPES)


def backup_name(path: str | Path) -> str:
    """Get a free backup file name: ``<name> (<n>).<ext>.bak``."""
    p = Path(path)
    ext = p.suffix.lstrip(".")
    i = 1
    while True:
        candidate = p.with_name(f"{p.stem} ({i}).{ext}.bak")
        if not candidate.exists():
            return str(candidate)
        i += 1


@dataclass
class PlaylistEntry:
    id: int
    orig: str  # line as read from the file
    path: str  # resolved absolute path, "" if not found
    name: str  # filename part of orig
    extra: dict[str, str] = field(default_factory=dict)  # custom kinds, e.g. "map"

    def value(self, kind: str = "path") -> str:
        if kind in ("orig", "path", "name"):
            return getattr(self, kind)
        return self.extra.get(kind, "")


@dataclass
class SaveResult:
    file: str
    backup: str = ""
    bytes: int = 0


def _new_stats() -> dict:
    return {
        "duped": [],    # lines (or paths) found more than once
        "dupes": {},    # line/path -> [id, ...] of the extra occurrences
        "moved": {},    # id -> new path
        "removed": {},  # id -> orig
        "deduped": {},  # id -> orig, removed as duplicates
        "missing": {},  # id -> orig
    }


class Playlist:
    """Ordered collection of playlist entries bound to an optional file."""

    def __init__(
        self,
        file: str | Path = "",
        *,
        base: str | Path | None = None,
        type: str | None = None,
        code_page: str = "ascii",
        tagger: Tagger | None = None,
        on_load: Callable[[int, int, str, PlaylistEntry | None], None] | None = None,
    ):
        self.file = str(file) if file else ""
        if base is None:
            base = os.path.dirname(os.path.realpath(self.file)) if self.file else os.getcwd()
        self.base = str(base)
        if type is None:
            type = Path(self.file).suffix.lstrip(".").lower() if self.file else ""
        self.type = type
        self.code_page = code_page
        self.tagger = tagger
        self.on_load = on_load

        self._order: list[int] = []
        self._entries: dict[int, PlaylistEntry] = {}
        self._stats = _new_stats()
        self._dirty = False
        self._loaded = False
        self._shuffled = False

    # ------------------------------------------------------------------
    # State

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_shuffled(self) -> bool:
        return self._shuffled

    def stats(self, key: str | None = None):
        if key is None:
            return self._stats
        return self._stats[key]

    def count(self) -> int:
        self.load()
        return len(self._order)

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[PlaylistEntry]:
        return iter(self.entries())

    def entries(self) -> list[PlaylistEntry]:
        """Snapshot of entries in playlist order."""
        self.load()
        return [self._entries[i] for i in self._order]

    def entry(self, id: int) -> PlaylistEntry | None:
        return self._entries.get(id)

    def paths(self, kind: str = "path") -> dict[int, str]:
        """Map id -> value of given kind (orig|path|name|custom)."""
        return {e.id: e.value(kind) for e in self.entries()}

    # ------------------------------------------------------------------
    # Loading

    def load(self) -> bool:
        """Read entries from the playlist file, once.

        Returns True if the file was actually read. Loading never changes
        the dirty flag.
        """
        if self._loaded or not self.file or not os.path.isfile(self.file):
            return False

        if self.type not in SUPPORTED_TYPES:
            raise PlaylistError(
                f'File type "{self.type}" not in supported extensions: {supported_types()}'
            )

        raw = Path(self.file).read_bytes()
        if raw.startswith(BOM):
            raw = raw[len(BOM):]
        encoding = self.code_page if self.type == "m3u" else "utf-8"
        try:
            text = raw.decode(encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            raise PlaylistError(
                f'Unable to read "{self.file}" with code page "{encoding}": {exc}'
            ) from exc
        lines = [line for line in text.splitlines() if line.strip()]
        count = len(lines)

        was_dirty = self._dirty
        # on_load callbacks may query the playlist while it is being read
        self._loaded = True

        for current, line in enumerate(lines, start=1):
            entry = None
            if not line.startswith(COMMENT):
                ids = self.insert(line, resolve=True)
                if ids:
                    entry = self._entries[next(iter(ids))]
            if self.on_load:
                self.on_load(current, count, line, entry)

        self._dirty = was_dirty
        logger.debug("Loaded %d entries from %s", len(self._order), self.file)
        return True

    def _resolve(self, line: str) -> str:
        path = line if os.path.isabs(line) else os.path.join(self.base, line)
        if os.path.exists(path):
            return os.path.realpath(path)
        return ""

    # ------------------------------------------------------------------
    # Mutation

    def insert(self, lines: str | Iterable[str], resolve: bool = False) -> dict[int, str]:
        """Add new entries. Returns inserted {id: line}.

        Lines already present (same text) are recorded as dupes and skipped.
        With ``resolve`` the absolute path is looked up relative to ``base``;
        unresolved lines are still added, with an empty path.
        """
        if isinstance(lines, str):
            lines = [lines]

        inserted: dict[int, str] = {}
        dupes: dict[str, list[int]] = {}

        for line in lines:
            if not line:
                continue

            id = entry_id(line)
            if id in self._entries:
                dupes.setdefault(line, []).append(id)
                continue

            path = self._resolve(line) if resolve else line
            if not path:
                self._stats["missing"][id] = line

            self._entries[id] = PlaylistEntry(
                id=id, orig=line, path=path, name=split_line(line)[1]
            )
            self._order.append(id)
            inserted[id] = line
            self._dirty = True

        self._record_dupes(dupes)
        return inserted

    def update(self, id: int, value: str, kind: str = "path") -> bool:
        """Set entry value of given kind. Returns True if it changed.

        A changed ``path`` is recorded as moved.
        """
        entry = self._entries[id]
        changed = entry.value(kind) != value
        if kind in ("orig", "path", "name"):
            setattr(entry, kind, value)
        else:
            entry.extra[kind] = value
        if changed and kind == "path":
            self._stats["moved"][id] = value
        self._dirty |= changed
        return changed

    def reset(self, id: int) -> bool:
        """Put the original line back as the entry path (no move recorded)."""
        entry = self._entries[id]
        changed = entry.path != entry.orig
        entry.path = entry.orig
        self._dirty |= changed
        return changed

    def remove(self, ids: int | Iterable[int], stat: str = "removed") -> None:
        self.load()
        if isinstance(ids, int):
            ids = [ids]
        for id in ids:
            entry = self._entries.pop(id, None)
            if entry is None:
                continue
            self._order.remove(id)
            self._stats.setdefault(stat, {})[id] = entry.orig
            self._dirty = True

    def clear(self) -> None:
        """Drop all entries without reading the file (e.g. to overwrite it)."""
        self._order.clear()
        self._entries.clear()
        self._loaded = True
        self._dirty = True

    def duplicates(self, remove: bool = False) -> dict[str, list[int]]:
        """Find entries resolving to the same file.

        Unresolved entries are never considered duplicates. Returns
        {path: [extra ids]}; with ``remove`` all but the first are dropped.
        """
        unique: dict[str, int] = {}
        dupes: dict[str, list[int]] = {}
        for entry in self.entries():
            if not entry.path:
                continue
            if entry.path not in unique:
                unique[entry.path] = entry.id
                continue
            dupes.setdefault(entry.path, []).append(entry.id)

        if remove:
            for ids in dupes.values():
                self.remove(ids, stat="deduped")

        self._record_dupes(dupes)
        return dupes

    def _record_dupes(self, dupes: dict[str, list[int]]) -> None:
        for key, ids in dupes.items():
            self._stats["duped"].append(key)
            self._stats["dupes"].setdefault(key, []).extend(ids)

    def sort(self, field: str = "name", ascending: bool = True) -> bool:
        """Sort entries by field. Returns True if the order changed."""
        self.load()
        before = list(self._order)
        self._order.sort(
            key=lambda i: self._entries[i].value(field), reverse=not ascending
        )
        changed = before != self._order
        self._dirty |= changed
        return changed

    def shuffle(self) -> bool:
        self.load()
        before = list(self._order)
        random.shuffle(self._order)
        changed = before != self._order
        self._shuffled = True
        self._dirty |= changed
        return changed

    def reduce(self, length: int) -> bool:
        """Keep only the first ``length`` entries. Returns True if any were dropped."""
        self.load()
        if length >= len(self._order):
            return False
        for id in self._order[length:]:
            del self._entries[id]
        del self._order[length:]
        self._dirty = True
        return True

    # ------------------------------------------------------------------
    # Saving

    def _extinf(self, path: str) -> str | None:
        try:
            self.tagger.analyze(path)
            return f"#EXTINF:{self.tagger.seconds()},{self.tagger.artist()} - {self.tagger.title()}"
        except Exception as exc:
            # Any tagger failure only costs the #EXTINF line
            logger.debug("No tags for %s: %s", path, exc)
            return None

    def render(self, kind: str = "path") -> str:
        """Build playlist text (without BOM/encoding applied)."""
        lines: list[str] = []
        if self.tagger:
            lines.append("#EXTM3U")
        for entry in self.entries():
            value = entry.value(kind)
            if not value:
                continue
            if self.tagger and os.path.isfile(entry.path):
                tag = self._extinf(entry.path)
                if tag:
                    lines.append(tag)
            lines.append(value)
        return "".join(f"{line}\n" for line in lines)

    def save(
        self,
        write: bool = True,
        backup: bool = True,
        fmt: str = "",
        kind: str = "path",
    ) -> SaveResult:
        """Save entries to the playlist file.

        ``fmt`` forces the output type (m3u|m3u8), by default the input type
        is kept. ``kind`` selects which entry value gets written. With
        ``write=False`` nothing touches the disk. The dirty flag is cleared
        in every case.
        """
        self.load()

        ext = fmt or self.type
        if ext not in SUPPORTED_TYPES:
            raise PlaylistError(f'Unsupported output format "{ext}"')
        if not self.file:
            raise PlaylistError("Playlist has no file assigned")

        text = self.render(kind)
        if ext == "m3u":
            try:
                data = text.encode(self.code_page)
            except (UnicodeEncodeError, LookupError) as exc:
                raise PlaylistError(
                    f'Unable to write "{self.file}" with code page "{self.code_page}": {exc}'
                ) from exc
        else:
            data = BOM + text.encode("utf-8")

        result = SaveResult(file=f"{os.path.splitext(self.file)[0]}.{ext}")

        # Nothing to back up if we're not overwriting anything
        if write and backup and os.path.isfile(result.file):
            result.backup = backup_name(result.file)
            os.rename(result.file, result.backup)
            result.backup = os.path.realpath(result.backup)

        if write:
            Path(result.file).write_bytes(data)
            result.bytes = len(data)
            result.file = os.path.realpath(result.file)

        self._dirty = False
        return result


MATH_METHODS = ("add", "sub")


def playlist_math(a: Iterable[str], b: Iterable[str], method: str = "sub") -> list[str]:
    """Playlist arithmetic on original lines.

    ``sub``: lines of A not found in B. ``add``: the same, followed by B.
    """
    if method not in MATH_METHODS:
        raise PlaylistError(f'Method "{method}" is not supported')
    b = list(b)
    exclude = set(b)
    out = [line for line in a if line not in exclude]
    if method == "add":
        out.extend(b)
    return out
