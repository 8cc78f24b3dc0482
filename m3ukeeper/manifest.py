"""Manifest of exported files, used to sync an export dir between runs.

Each export dir keeps a JSON manifest of the files written there by the
previous run. Before writing new output the old manifest is compared with
the new one: files that will be exported again unchanged are kept, all
others are deleted so they get copied fresh.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from m3ukeeper.errors import ExportError

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST = "export.json"
# Some filesystems (FAT) round copied timestamps to 2 seconds
MTIME_TOLERANCE = 2.0


def manifest_id(dst: str) -> str:
    """Stable id of a destination path."""
    return str(zlib.crc32(dst.encode("utf-8")))


@dataclass
class ManifestEntry:
    dst: str
    src: str = ""  # empty for generated files (playlists)

    def to_dict(self) -> dict[str, str]:
        data = {"dst": self.dst}
        if self.src:
            data["src"] = self.src
        return data


@dataclass
class SyncResult:
    kept: int = 0
    kept_bytes: int = 0
    deleted: int = 0
    orphaned: int = 0
    invalid: int = 0
    failed: int = 0  # unlink errors, tolerated
    manifest_found: bool = False
    manifest_deleted: bool = False


class Manifest:
    def __init__(self):
        self.entries: dict[str, ManifestEntry] = {}

    def __len__(self) -> int:
        return len(self.entries)

    def insert(self, dst: str, src: str = "") -> str:
        """Record an output file. Returns its id.

        With only ``dst`` the file is simply deleted on the next sync. With
        ``src`` too, the next sync compares both before deleting.
        """
        if not dst:
            raise ExportError("Missing manifest [dst] file")
        entry = ManifestEntry(dst=os.path.normpath(dst))
        if src:
            if not os.path.exists(src):
                raise ExportError(f'Missing manifest [src] file: "{src}"')
            entry.src = os.path.realpath(src)
        id = manifest_id(entry.dst)
        self.entries[id] = entry
        return id

    def get(self, id: str) -> ManifestEntry | None:
        return self.entries.get(id)

    def write(self, path: str | Path) -> None:
        data = {k: v.to_dict() for k, v in self.entries.items()}
        Path(path).write_text(
            json.dumps(data, indent=4, ensure_ascii=False, sort_keys=True),
            encoding="utf-8",
        )

    @classmethod
    def load(cls, path: str | Path) -> Manifest:
        manifest = cls()
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        for id, item in data.items():
            manifest.entries[id] = ManifestEntry(dst=item["dst"], src=item.get("src", ""))
        return manifest


def same_file(src: str, dst: str, tolerance: float = MTIME_TOLERANCE) -> bool:
    """Compare size and modification time of two files."""
    s, d = os.stat(src), os.stat(dst)
    return s.st_size == d.st_size and abs(s.st_mtime - d.st_mtime) <= tolerance


def clear_dir(path: str | Path) -> None:
    """Delete everything inside a directory, keeping the directory itself."""
    for child in Path(path).iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _unlink(path: str) -> bool:
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning('Unable to delete "%s": %s', path, exc)
        raise
    return True


def sync(
    manifest_path: str | Path,
    new: Manifest,
    confirm_clear: Callable[[str], bool] | None = None,
    on_item: Callable[[ManifestEntry], None] | None = None,
) -> SyncResult:
    """Delete files listed in the old manifest unless they are exported again.

    A file is kept only if the new manifest has it with a source file whose
    size and mtime match the existing copy. Kept files are reported in
    ``kept``/``kept_bytes`` so the caller can drop them from the copy
    workload. The old manifest file is deleted at the end; it gets written
    fresh once the new output is done.
    """
    result = SyncResult()
    manifest_path = Path(manifest_path)

    old = None
    problem = "not found"
    if manifest_path.is_file():
        try:
            old = Manifest.load(manifest_path)
        except (ValueError, OSError, KeyError, TypeError, AttributeError) as exc:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors
            logger.warning('Ignoring unreadable manifest "%s": %s', manifest_path, exc)
            problem = "unreadable"

    if old is None:
        out_dir = manifest_path.parent
        if confirm_clear and out_dir.is_dir() and confirm_clear(
            f'Manifest file {problem}! Clear export dir "{out_dir}"?'
        ):
            logger.info("- clearing export dir...")
            clear_dir(out_dir)
        return result

    result.manifest_found = True

    for id, old_entry in old.entries.items():
        if on_item:
            on_item(old_entry)

        new_entry = new.get(id)
        keep = False
        size = 0

        if new_entry and (manifest_id(old_entry.dst) != id or new_entry.dst != old_entry.dst):
            logger.warning(
                'Manifest [Id:%s] mismatch! old [dst:"%s"] != new [dst:"%s"]',
                id, old_entry.dst, new_entry.dst,
            )
            result.invalid += 1
        elif (
            new_entry
            and old_entry.src
            and new_entry.src
            and os.path.isfile(new_entry.src)
            and os.path.isfile(new_entry.dst)
        ):
            keep = same_file(new_entry.src, new_entry.dst)
            size = os.stat(new_entry.dst).st_size
            logger.debug(
                '%s [Id:%s] "%s"', "Keep" if keep else "Replace", id, old_entry.dst
            )
        elif not new_entry:
            result.orphaned += 1
            logger.debug('Orphaned [Id:%s] "%s"', id, old_entry.dst)

        if keep:
            result.kept += 1
            result.kept_bytes += size
            continue

        try:
            if _unlink(old_entry.dst):
                result.deleted += 1
        except OSError:
            result.failed += 1

    if result.deleted:
        logger.info(
            "- deleted %d previously exported files (%d orphaned)",
            result.deleted, result.orphaned,
        )

    try:
        result.manifest_deleted = _unlink(str(manifest_path))
    except OSError:
        result.manifest_deleted = False
    return result


def copy_missing(
    manifest: Manifest,
    on_copy: Callable[[ManifestEntry], None] | None = None,
) -> list[ManifestEntry]:
    """Copy every source file whose destination doesn't exist yet.

    The copy gets the source modification time, which is what lets the
    next ``sync()`` recognize it as unchanged.
    """
    copied: list[ManifestEntry] = []
    for entry in manifest.entries.values():
        if not entry.src or os.path.isfile(entry.dst):
            continue
        if on_copy:
            on_copy(entry)
        os.makedirs(os.path.dirname(entry.dst) or ".", exist_ok=True)
        shutil.copyfile(entry.src, entry.dst)
        st = os.stat(entry.src)
        os.utime(entry.dst, (st.st_atime, st.st_mtime))
        copied.append(entry)
    return copied
