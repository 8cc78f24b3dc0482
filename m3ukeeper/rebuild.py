"""Rebuild playlists: repair track paths after media files were moved."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from m3ukeeper.errors import ConfigError, ResolverError
from m3ukeeper.playlist import SUPPORTED_TYPES, Playlist, PlaylistEntry
from m3ukeeper.report import PlaylistReport, RebuildReport
from m3ukeeper.resolver import (
    DEFAULT_ACTIONS,
    DEFAULT_ESCAPE,
    MediaFolder,
    OutcomeKind,
    Prompter,
    Resolver,
)
from m3ukeeper.tagger import MutagenTagger
from m3ukeeper.winamp import playlist_files

logger = logging.getLogger(__name__)

INPUT_TYPES = ("xml", *SUPPORTED_TYPES)

OnLoad = Callable[[int, int, str, PlaylistEntry | None], None]


@dataclass
class RebuildOptions:
    media_dir: str
    escape: str = DEFAULT_ESCAPE
    sort: bool = False
    dupes: bool = False
    action: str = "ask"
    backup: bool = True
    fmt: str = ""
    tags: bool = True
    force: bool = False
    dry_run: bool = False
    code_page: str = "ascii"


def validate_options(options: RebuildOptions) -> tuple[str, str]:
    """Check options before touching any file. Returns (media_dir, escape_dir)."""
    media_dir = os.path.realpath(options.media_dir)
    if not os.path.isdir(media_dir):
        raise ConfigError(f'Media folder "{options.media_dir}" not found in "{os.getcwd()}"')

    escape_dir = os.path.join(media_dir, options.escape)
    if not os.path.isdir(escape_dir):
        raise ConfigError(f'Escape folder "{options.escape}" not found in "{media_dir}"')

    if options.fmt and options.fmt not in SUPPORTED_TYPES:
        raise ConfigError(f'Unsupported output format "{options.fmt}"')

    if options.action not in DEFAULT_ACTIONS:
        raise ConfigError(
            f'Unknown action "{options.action}", use one of: {"|".join(DEFAULT_ACTIONS)}'
        )
    return media_dir, escape_dir


def collect_playlists(infile: str) -> dict[str, str]:
    """Playlist name -> path, from a playlists.xml catalog or a single file."""
    ext = Path(infile).suffix.lstrip(".").lower()
    if ext not in INPUT_TYPES:
        raise ConfigError(
            f'Input file "{infile}" not in supported extensions: '
            + ", ".join(f"*.{t}" for t in INPUT_TYPES)
        )
    if not os.path.isfile(infile):
        raise ConfigError(f'Playlist file not found: "{infile}"')

    if ext != "xml":
        return {os.path.basename(infile): infile}
    logger.info('Load "%s"', infile)
    return playlist_files(infile)


def rebuild_playlist(
    playlist: Playlist,
    resolver: Resolver,
    options: RebuildOptions,
    name: str = "",
) -> PlaylistReport:
    """Repair every entry of one playlist, then dedupe, sort and save it.

    Sets ``action`` to "exit" on the report and returns early, without
    saving, when the user chose to stop.
    """
    report = PlaylistReport(name=name or os.path.basename(playlist.file), path=playlist.file)
    report.before = playlist.count()
    logger.info("- tracks: %d", report.before)
    logger.info("- analyzing...")

    for entry in playlist.entries():
        outcome = resolver.resolve(entry)

        if outcome.kind is OutcomeKind.SKIP:
            logger.info('- skip "%s"', entry.orig)
            # Keep the original text instead of an empty path
            playlist.reset(entry.id)
            report.skipped += 1
            continue

        if outcome.kind is OutcomeKind.REMOVE:
            logger.info('- remove "%s"', entry.orig)
            playlist.remove(entry.id)
            continue

        if outcome.kind is OutcomeKind.EXIT:
            logger.warning("User exit")
            report.action = "exit"
            report.after = playlist.count()
            return report

        if not os.path.isfile(outcome.path):
            raise ResolverError(
                f'Computed path "{outcome.path}" is invalid for playlist entry "{entry.orig}"'
            )

        path = os.path.realpath(outcome.path)
        if entry.orig != path:
            if playlist.update(entry.id, path):
                logger.info('- update:\n  <-- "%s"\n  --> "%s"', entry.orig, path)

    if resolver.session.dir_map:
        logger.debug("Relocate map: %s", resolver.session.dir_map)
    if resolver.session.rename_map:
        logger.debug("Rename map: %s", resolver.session.rename_map)

    # Updated paths may now point to the same file
    if options.dupes:
        dupes = playlist.duplicates(remove=True)
        report.dupes = {path: len(ids) for path, ids in dupes.items()}

    if options.sort:
        report.sort_changed = playlist.sort()
        logger.info("- sort: %s", "changed" if report.sort_changed else "not changed")

    report.moved = list(playlist.stats("moved").values())
    report.removed = list(playlist.stats("removed").values())
    report.after = playlist.count()

    out_format = options.fmt or playlist.type
    force = options.force or out_format != playlist.type

    if playlist.is_dirty or force:
        result = playlist.save(
            write=not options.dry_run, backup=options.backup, fmt=out_format
        )
        report.action = "dry-run" if options.dry_run else "saved"
        report.saved_file = result.file
        report.backup_file = result.backup
        logger.info('- saved: "%s"', result.file)

    return report


def rebuild(
    infile: str,
    options: RebuildOptions,
    prompter: Prompter | None = None,
    on_load: OnLoad | None = None,
) -> RebuildReport:
    """Rebuild every playlist found in ``infile``.

    Relocation and rename mappings learned on one playlist are applied to
    all the following ones. Processing stops on user exit.
    """
    media_dir, _ = validate_options(options)
    playlists = collect_playlists(infile)

    resolver = Resolver(
        MediaFolder(media_dir, options.escape),
        base=media_dir,
        action=options.action,
        prompter=prompter,
    )
    tagger = MutagenTagger() if options.tags else None

    report = RebuildReport(timestamp=datetime.now(), dry_run=options.dry_run)
    for name, path in playlists.items():
        logger.info('Playlist [%s] "%s"', name, path)
        playlist = Playlist(
            path,
            base=media_dir,
            code_page=options.code_page,
            tagger=tagger,
            on_load=on_load,
        )
        pl_report = rebuild_playlist(playlist, resolver, options, name)
        report.playlists.append(pl_report)
        if pl_report.action == "exit":
            report.exited = True
            break

    return report
