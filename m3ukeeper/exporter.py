"""Export Winamp ML playlists (and optionally their media) to a folder.

The exporter loads several playlists, builds one de-duplicated set of all
their tracks under an optional total size limit, writes each playlist plus
an "all tracks" playlist to the output dir and copies the media files to the
export dir. Manifests kept in both dirs make repeated runs incremental.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from m3ukeeper import APP_NAME, __version__
from m3ukeeper.config import ExportConfig, PlaylistDef
from m3ukeeper.errors import ExportError
from m3ukeeper.manifest import Manifest, ManifestEntry, SyncResult, copy_missing, sync
from m3ukeeper.playlist import Playlist, entry_id
from m3ukeeper.sizes import byte_number, byte_string
from m3ukeeper.winamp import load_playlists

logger = logging.getLogger(__name__)

OUTPUT = "output"
EXPORT = "export"


@dataclass
class ExportStats:
    items: int = 0  # unique tracks
    bytes: int = 0  # total size of unique tracks
    asize: float = 0.0  # average track size
    dupes: int = 0  # same track found on more than one playlist

    def recompute(self) -> None:
        self.asize = self.bytes / self.items if self.items else 0.0

    def add(self, size: int) -> None:
        self.items += 1
        self.bytes += size
        self.recompute()

    def subtract(self, items: int, size: int) -> None:
        self.items -= items
        self.bytes -= size
        self.recompute()


def _ask_default(message: str, default: str) -> str:
    return default


def _never(message: str) -> bool:
    return False


class Exporter:
    """Run one export job.

    ``prompt(message, default)`` and ``confirm(message)`` are used for
    settings marked as interactive (empty or ``?`` prefixed) and to confirm
    clearing an export dir without manifest. By default nothing is asked.
    """

    def __init__(
        self,
        config: ExportConfig,
        *,
        prompt: Callable[[str, str], str] = _ask_default,
        confirm: Callable[[str], bool] = _never,
        on_progress: Callable[[str, int, int, str], None] | None = None,
    ):
        config.winamp_dir = os.path.expanduser(config.winamp_dir)
        if not os.path.isdir(config.winamp_dir):
            raise ExportError(
                f'Winamp ML dir "{config.winamp_dir}" not found. Check config [winamp_dir]'
            )
        self.config = config
        self.prompt = prompt
        self.confirm = confirm
        self.on_progress = on_progress

        self.total_size = 0
        self.stats = ExportStats()
        self.playlists: list[tuple[Playlist, PlaylistDef]] = []
        self.all_def = PlaylistDef(name=config.playlist_all)
        self.all = Playlist(code_page=config.code_page)
        self._all_bytes: dict[int, int] = {}  # unique track id -> size
        self.manifests = {OUTPUT: Manifest(), EXPORT: Manifest()}
        self._loaded = False

    def _progress(self, stage: str, current: int, total: int, label: str = "") -> None:
        if self.on_progress:
            self.on_progress(stage, current, total, label)

    # ------------------------------------------------------------------
    # Settings

    def import_path(self, path: str, label: str) -> str:
        if not path or path.startswith("?"):
            path = self.prompt(label, path[1:] if path else "")
            if not path:
                raise ExportError(f"{label}: empty path not allowed")
        return os.path.normpath(os.path.expanduser(path))

    def import_bytes(self, value: int | str, label: str) -> int:
        if isinstance(value, int):
            return value
        if not value or value.startswith("?"):
            value = self.prompt(label, value.lstrip("?") if value else "") or "0"
        try:
            return byte_number(value)
        except ValueError as exc:
            raise ExportError(f"{label}: {exc}. Use integer or size string: 100M, 3.4G") from exc

    def set_total_size(self) -> int:
        self.total_size = self.import_bytes(
            self.config.total_size, "Set Total size (0 - unlimited)"
        )
        logger.info(
            'Total size set: "%s"',
            byte_string(self.total_size) if self.total_size else "no limit",
        )
        return self.total_size

    def prepare_dir(self, kind: str, label: str) -> str:
        attr = f"{kind}_dir"
        path = self.import_path(getattr(self.config, attr), f"{label} output dir")
        if not os.path.isdir(path):
            if not self.config.auto_dirs:
                raise ExportError(f'{label} output dir not found: "{path}"')
            os.makedirs(path, exist_ok=True)
        setattr(self.config, attr, path)
        logger.info('%s output dir set: "%s"', label, path)
        return path

    # ------------------------------------------------------------------
    # Loading

    def playlists_from_titles(self, titles: list[str]) -> list[PlaylistDef]:
        """Convert catalog titles to playlist definitions, keeping given order."""
        titles = list(dict.fromkeys(titles))
        if not titles:
            return []

        catalog = load_playlists(Path(self.config.winamp_dir) / self.config.winamp_xml)
        found: dict[str, PlaylistDef] = {}
        for title in titles:
            for pl in catalog:
                if pl.get("title") == title:
                    found[title] = PlaylistDef(
                        name=title, file=str(pl["filename"]), is_total=False
                    )

        missing = [t for t in titles if t not in found]
        if missing:
            raise ExportError(f"Unable to locate playlist name: [{'], ['.join(missing)}]")
        return [found[t] for t in titles]

    def playlists_load(self) -> list[tuple[Playlist, PlaylistDef]]:
        """Load extra playlists, then configured ones, into the unique set."""
        if self._loaded:
            return self.playlists

        defs = self.playlists_from_titles(self.config.extra) + list(self.config.playlists)
        for pl in defs:
            playlist = self.load_playlist(pl)
            if playlist is not None:
                self.playlists.append((playlist, pl))

        self.verify()
        self._loaded = True
        return self.playlists

    def load_playlist(self, pl: PlaylistDef) -> Playlist | None:
        """Load one playlist and add its tracks to the unique set.

        Returns None when the total size limit leaves no room for it.
        """
        total = self.total_size if pl.is_total else 0
        m3u = os.path.join(self.config.winamp_dir, pl.file)
        sep = self.config.export_sep
        logger.info('Playlist [%s] "%s"', pl.name, m3u)

        if not os.path.isfile(m3u):
            raise ExportError(f'Unable to locate playlist file: "{m3u}"')

        if total and self.stats.bytes + self.stats.asize > total:
            logger.info(
                "- skipped! Less than %s left (total size limit: %s)",
                byte_string(self.stats.asize), byte_string(total),
            )
            return None

        playlist = Playlist(
            m3u,
            code_page=self.config.code_page,
            on_load=lambda current, count, line, entry: self._progress(
                "loading", current, count, entry.name if entry else ""
            ),
        )
        playlist.load()
        playlist.on_load = None
        count = playlist.count()
        logger.info("- found: %d tracks", count)

        if pl.shuffle:
            logger.info("- shuffle...")
            playlist.shuffle()

        if pl.limit and pl.limit < count:
            playlist.reduce(pl.limit)
            count = playlist.count()
            logger.info("- reduced to %d tracks (user limit)", count)

        done = 0
        for entry in playlist.entries():
            self._progress("adding", done + 1, count, entry.name)
            last = f"{Path(entry.path).parent.name}{sep}{entry.name}"
            mapped = f"{self.config.export_map}{sep}{last}" if self.config.export_map else last
            playlist.update(entry.id, mapped, "map")

            # Same track on another playlist doesn't count twice
            track_id = entry_id(entry.path)
            if entry.path and track_id in self._all_bytes:
                self.stats.dupes += 1
                done += 1
                continue

            try:
                size = os.stat(entry.path).st_size
            except OSError as exc:
                raise ExportError(
                    f'Missing track "{entry.orig}" in playlist [{pl.name}].'
                    " Please rebuild the playlist first!"
                ) from exc

            if total and self.stats.bytes + size > total:
                playlist.reduce(done)
                logger.info(
                    "- reduced to %d tracks (total size limit: %s)", done, byte_string(total)
                )
                break

            self.all.insert(entry.path)
            self.all.update(track_id, mapped, "map")
            self._all_bytes[track_id] = size

            if self.config.is_export:
                self.manifests[EXPORT].insert(f"{self.config.export_dir}{sep}{last}", entry.path)

            self.stats.add(size)
            done += 1

        logger.info(
            "Total tracks: %d | total size: %s | ~%s per track",
            self.stats.items, byte_string(self.stats.bytes), byte_string(self.stats.asize),
        )
        return playlist

    def verify(self) -> None:
        """Both counters of unique tracks must agree."""
        items = len(self._all_bytes)
        size = sum(self._all_bytes.values())
        if items != self.stats.items or size != self.stats.bytes:
            raise ExportError(
                "Data integrity check failed!\n"
                f"unique set items: {items} <-> stats items: {self.stats.items}\n"
                f"unique set bytes: {size} <-> stats bytes: {self.stats.bytes}"
            )

    # ------------------------------------------------------------------
    # Output

    def header(self, playlist: Playlist, pl: PlaylistDef, file: str) -> str:
        return (
            f"# {self.config.cmd_title}\n"
            f"# {APP_NAME} v{__version__}\n"
            f"# {datetime.now():%Y-%m-%d %H:%M:%S}\n"
            f"# Playlist: {pl.name} | {os.path.basename(file)} | {playlist.count()} tracks"
            f" | shuffled: {'yes' if pl.shuffle else 'no'}\n"
            "\n"
        )

    def write_playlist(self, playlist: Playlist, pl: PlaylistDef, file: str) -> None:
        if pl.shuffle:
            playlist.shuffle()
        kind = "map" if self.config.is_export else "path"
        tracks = [v for v in playlist.paths(kind).values() if v]
        body = self.header(playlist, pl, file) + "".join(f"{t}\n" for t in tracks)
        Path(file).write_text(body, encoding="utf-8")
        self.manifests[OUTPUT].insert(file)
        logger.info('Save [%s] "%s"', pl.name, os.path.realpath(file))

    def output_files(self, pl: PlaylistDef) -> list[str]:
        """Output file name(s) of one playlist, numbered when saved more than once."""
        out = self.config.output_dir
        if pl.save <= 1:
            return [os.path.join(out, f"{pl.name}.m3u8")]
        width = pl.save // 10 + 1
        return [
            os.path.join(out, f"{pl.name}_{i:0{width}d}.m3u8") for i in range(1, pl.save + 1)
        ]

    def _sync(self, kind: str) -> SyncResult:
        out_dir = getattr(self.config, f"{kind}_dir")
        logger.info('Export dir: "%s"', out_dir)
        total = 0

        def on_item(entry: ManifestEntry) -> None:
            nonlocal total
            total += 1
            self._progress("analyzing", total, 0, os.path.basename(entry.dst))

        result = sync(
            os.path.join(out_dir, self.config.manifest),
            self.manifests[kind],
            confirm_clear=self.confirm,
            on_item=on_item,
        )
        if result.kept:
            self.stats.subtract(result.kept, result.kept_bytes)
            logger.info(
                "- saved %s by not exporting %d matched files.",
                byte_string(result.kept_bytes), result.kept,
            )
        return result

    def run_output(self) -> list[str]:
        """Write all playlists to the output dir."""
        self._sync(OUTPUT)
        files = []
        for playlist, pl in self.playlists:
            for file in self.output_files(pl):
                self.write_playlist(playlist, pl, file)
                files.append(file)
        all_file = os.path.join(self.config.output_dir, f"{self.all_def.name}.m3u8")
        self.write_playlist(self.all, self.all_def, all_file)
        files.append(all_file)
        self.manifests[OUTPUT].write(os.path.join(self.config.output_dir, self.config.manifest))
        return files

    def run_export(self) -> list[ManifestEntry]:
        """Copy media files to the export dir."""
        if not self.config.is_export:
            return []

        # Write the new manifest before copying, so an interrupted export
        # still gets cleaned up next time.
        self._sync(EXPORT)
        self.manifests[EXPORT].write(os.path.join(self.config.export_dir, self.config.manifest))

        logger.info(
            "Export %d tracks | %s", self.stats.items, byte_string(self.stats.bytes)
        )
        copied = 0

        def on_copy(entry: ManifestEntry) -> None:
            nonlocal copied
            copied += 1
            self._progress("copying", copied, self.stats.items, os.path.basename(entry.dst))

        return copy_missing(self.manifests[EXPORT], on_copy)

    def run(self) -> ExportStats:
        self.set_total_size()
        self.prepare_dir(OUTPUT, "Playlists")
        if self.config.is_export:
            self.prepare_dir(EXPORT, "Music")

        self.playlists_load()
        logger.info(
            "Playlist [%s] - all tracks: %d (%d dupes) | total size: %s | ~%s per track",
            self.all_def.name, self.stats.items, self.stats.dupes,
            byte_string(self.stats.bytes), byte_string(self.stats.asize),
        )

        self.run_output()
        self.run_export()
        logger.info("Done.")
        return self.stats
