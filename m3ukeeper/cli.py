"""CLI entry point for m3ukeeper."""

import logging
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from m3ukeeper import APP_NAME, __version__
from m3ukeeper.config import ConfigManager, default_code_page, load_export_config
from m3ukeeper.errors import M3UKeeperError
from m3ukeeper.exporter import Exporter
from m3ukeeper.log import configure_logging
from m3ukeeper.playlist import (
    MATH_METHODS,
    SUPPORTED_TYPES,
    Playlist,
    PlaylistEntry,
    playlist_math,
    supported_types,
)
from m3ukeeper.rebuild import RebuildOptions, rebuild
from m3ukeeper.report import print_report, save_report
from m3ukeeper.resolver import DEFAULT_ACTIONS, DEFAULT_ESCAPE, Action, Check, RenameCheck
from m3ukeeper.sizes import byte_string
from m3ukeeper.tagger import MutagenTagger
from m3ukeeper.winamp import (
    SORT_FIELDS,
    format_duration,
    load_playlists,
    sort_catalog,
    validate_playlists_xml,
)

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", count=True, help="Increase console verbosity (-v info, -vv debug).")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also log everything to this file.")
@click.option("--code-page", "-p", default=None, help="Code page of *.m3u files [env: M3UKEEPER_CODE_PAGE].")
@click.option("--dry-run", is_flag=True, help="Don't write any files.")
@click.version_option(__version__, prog_name=APP_NAME)
@click.pass_context
def cli(ctx, verbose: int, log_file: str | None, code_page: str | None, dry_run: bool):
    """m3ukeeper - Keep Winamp playlists pointing at the right files."""
    load_dotenv()
    configure_logging(verbose, log_file)
    ctx.obj = {
        "code_page": code_page,
        "dry_run": dry_run,
        "log_file": log_file,
    }


def _code_page(obj: dict) -> str:
    return obj["code_page"] or default_code_page()


def _resolve_xml_path(explicit_xml_path: str | None) -> str:
    """Resolve playlists.xml path from explicit arg or saved local config."""
    if explicit_xml_path:
        return explicit_xml_path

    cfg = ConfigManager()
    cfg.load()
    saved_path = cfg.get_playlists_xml_path()
    if not saved_path:
        raise click.ClickException(
            "No Winamp playlists.xml path configured. "
            "Run `m3ukeeper library set /path/to/playlists.xml` "
            "or pass an explicit path."
        )

    p = Path(saved_path).expanduser()
    if not p.exists() or not p.is_file():
        raise click.ClickException(
            "Configured playlists.xml path is missing or invalid:\n"
            f"  {p}\n"
            "Run `m3ukeeper library set /path/to/playlists.xml` to update it."
        )
    return str(p)


def _echo_table(headers: list[str], rows: list[list[str]]) -> None:
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]
    line = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    click.echo(line)
    click.echo("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    click.echo(line)
    for row in rows:
        click.echo("| " + " | ".join(c.rjust(w) if c.isdigit() else c.ljust(w)
                                     for c, w in zip(row, widths)) + " |")
    click.echo(line)


class ClickPrompter:
    """Ask the user how to fix a track that can't be found."""

    def choose(self, entry: PlaylistEntry) -> Action:
        click.echo(f'\nNot found: "{entry.orig}"')
        answer = click.prompt(
            "Action",
            type=click.Choice([a.value for a in Action], case_sensitive=False),
            default=Action.SKIP.value,
        )
        return Action(answer)

    def _ask(self, label: str, check: Check) -> str:
        while True:
            value = click.prompt(label, default="", show_default=False).strip()
            if not value:
                return ""
            error = check(value)
            if not error:
                return value
            click.echo(error, err=True)

    def ask_path(self, entry: PlaylistEntry, check: Check) -> str:
        return self._ask("New path (empty to skip)", check)

    def ask_relocation(self, entry: PlaylistEntry, base: str, check: Check) -> str:
        click.echo(f'Current dir: "{base}"')
        return self._ask("Replace with dir (empty to skip)", check)

    def ask_rename(self, entry: PlaylistEntry, check: RenameCheck) -> tuple[str, str] | None:
        click.echo(f'Filename: "{entry.name}"')
        while True:
            pattern = click.prompt("Regex pattern (empty to skip)", default="", show_default=False)
            if not pattern:
                return None
            sub = click.prompt("Replacement", default="", show_default=False)
            error = check(pattern, sub)
            if not error:
                return pattern, sub
            click.echo(error, err=True)


def _load_progress(label: str):
    """Progress bar driven by Playlist on_load callbacks."""
    state = {}

    def on_load(current: int, count: int, line: str, entry: PlaylistEntry | None) -> None:
        if current == 1:
            state["bar"] = click.progressbar(
                length=count,
                label=label,
                show_pos=True,
                item_show_func=lambda e: e.name[:50] if e else "",
            )
        bar = state["bar"]
        bar.update(1, entry)
        if current == count:
            bar.render_finish()

    return on_load


@cli.group()
def library():
    """Manage local playlists.xml path configuration."""


@library.command("set")
@click.argument("xml_path", type=click.Path(exists=True, dir_okay=False))
def library_set(xml_path: str):
    """Validate and save the default Winamp playlists.xml path."""
    ok, error = validate_playlists_xml(xml_path)
    if not ok:
        raise click.ClickException(error or "Invalid playlists.xml file.")

    cfg = ConfigManager()
    cfg.load()
    cfg.set_playlists_xml_path(xml_path)
    cfg.save()

    click.echo(f"Saved playlists.xml path: {cfg.get_playlists_xml_path()}")


@library.command("show")
def library_show():
    """Show configured playlists.xml path and validation status."""
    cfg = ConfigManager()
    cfg.load()
    xml_path = cfg.get_playlists_xml_path()
    if not xml_path:
        click.echo("Winamp playlists.xml path is not configured.")
        click.echo("Set it with: m3ukeeper library set /path/to/playlists.xml")
        return

    click.echo(f"Configured playlists.xml path: {xml_path}")
    ok, error = validate_playlists_xml(xml_path)
    if ok:
        click.echo("Status: OK (exists and parseable)")
    else:
        click.echo(f"Status: INVALID ({error})")


@cli.command()
@click.option("--infile", "-i", type=click.Path(exists=True, dir_okay=False), default=None, help="Winamp playlists.xml (optional if configured via `library set`).")
@click.option("--sort", "-s", "sort_by", type=click.Choice(SORT_FIELDS), default="lp", show_default=True, help="Sort playlists by.")
@click.option("--dir", "-d", "direction", type=click.Choice(["asc", "desc"]), default="asc", show_default=True, help="Sort direction.")
@click.option("--format", "-f", "fmt", type=click.Choice(["raw", "formatted"]), default="raw", show_default=True, help="Display format.")
def show(infile: str | None, sort_by: str, direction: str, fmt: str):
    """Display Winamp playlists."""
    xml_path = _resolve_xml_path(infile)
    playlists = [{"lp": i, **pl} for i, pl in enumerate(load_playlists(xml_path), start=1)]
    if not playlists:
        raise click.ClickException(f"No playlists found in {xml_path}")

    playlists = sort_catalog(playlists, sort_by, direction)
    logger.info("Sorting playlists by %s, %s", sort_by, direction)

    if fmt == "raw":
        headers = list(playlists[0])
        rows = [[str(pl.get(h, "")) for h in headers] for pl in playlists]
    else:
        headers = ["Playlist", "Songs", "Duration"]
        rows = [
            [str(pl.get("title", "")), str(pl.get("songs", 0)), format_duration(int(pl.get("seconds", 0)))]
            for pl in playlists
        ]
    _echo_table(headers, rows)

    songs = sum(int(pl.get("songs", 0)) for pl in playlists)
    seconds = sum(int(pl.get("seconds", 0)) for pl in playlists)
    click.echo(f"Total: {len(playlists)} playlists | {songs} songs | {format_duration(seconds)}")


@cli.command("rebuild")
@click.argument("media_folder", type=click.Path(file_okay=False))
@click.option("--infile", "-i", type=click.Path(dir_okay=False), default=None, help=f"Winamp playlists.xml or a single playlist ({supported_types()}). Defaults to the configured playlists.xml.")
@click.option("--esc", "-e", default=DEFAULT_ESCAPE, show_default=True, help="Media sub folder for files not matching any other sub folder.")
@click.option("--sort", is_flag=True, help="Sort playlists by filename.")
@click.option("--dupes", is_flag=True, help="Remove duplicated tracks.")
@click.option("--action", "-a", type=click.Choice(DEFAULT_ACTIONS), default="ask", show_default=True, help="What to do with tracks that can't be found.")
@click.option("--no-backup", is_flag=True, help="Don't back up modified playlists.")
@click.option("--format", "fmt", type=click.Choice(SUPPORTED_TYPES), default=None, help="Output format (default: same as input).")
@click.option("--no-ext", is_flag=True, help="Don't write #EXTINF lines.")
@click.option("--force", is_flag=True, help="Save playlists even if nothing changed.")
@click.option("--report", "report_path", type=click.Path(), default=None, help="Save detailed Markdown report to this path.")
@click.pass_obj
def rebuild_cmd(
    obj: dict,
    media_folder: str,
    infile: str | None,
    esc: str,
    sort: bool,
    dupes: bool,
    action: str,
    no_backup: bool,
    fmt: str | None,
    no_ext: bool,
    force: bool,
    report_path: str | None,
):
    """Fix moved tracks in Winamp playlists.

    MEDIA_FOLDER holds the media files, split into sub folders named after
    letter ranges, e.g. [A-D], [E-H], ..., [0-9].
    """
    infile = _resolve_xml_path(infile)

    if action == "ask" and not sys.stdin.isatty():
        logger.warning("Not an interactive terminal, using --action=skip")
        action = "skip"

    options = RebuildOptions(
        media_dir=media_folder,
        escape=esc,
        sort=sort,
        dupes=dupes,
        action=action,
        backup=not no_backup,
        fmt=fmt or "",
        tags=not no_ext,
        force=force,
        dry_run=obj["dry_run"],
        code_page=_code_page(obj),
    )

    try:
        report = rebuild(infile, options, ClickPrompter(), _load_progress("Loading"))
    except M3UKeeperError as e:
        raise click.ClickException(str(e))

    print_report(report)
    if report_path:
        save_report(report, report_path)
        click.echo(f"\nDetailed report saved to {report_path}")

    if report.exited:
        sys.exit(1)


@cli.command()
@click.argument("a", type=click.Path(exists=True, dir_okay=False))
@click.argument("b", type=click.Path(exists=True, dir_okay=False))
@click.argument("out", type=click.Path(dir_okay=False))
@click.option("--method", "-m", type=click.Choice(MATH_METHODS), default="sub", show_default=True, help="add: A + B, sub: A - B.")
@click.option("--no-ext", is_flag=True, help="Don't write #EXTINF lines in the output playlist.")
@click.option("--no-backup", is_flag=True, help="Don't back up an overwritten output playlist.")
@click.pass_obj
def math(obj: dict, a: str, b: str, out: str, method: str, no_ext: bool, no_backup: bool):
    """Add or subtract two playlists: A + B = OUT, A - B = OUT."""
    for path in (a, b, out):
        if Path(path).suffix.lstrip(".").lower() not in SUPPORTED_TYPES:
            raise click.ClickException(f'Playlist "{path}" not in supported extensions: {supported_types()}')

    code_page = _code_page(obj)
    try:
        lines_a = list(Playlist(a, code_page=code_page).paths("orig").values())
        lines_b = list(Playlist(b, code_page=code_page).paths("orig").values())
        lines = playlist_math(lines_a, lines_b, method)

        tagger = None if no_ext else MutagenTagger()
        output = Playlist(out, code_page=code_page, tagger=tagger)
        output.clear()
        output.insert(lines)
        result = output.save(write=not obj["dry_run"], backup=not no_backup, kind="orig")
    except M3UKeeperError as e:
        raise click.ClickException(str(e))

    sign = "+" if method == "add" else "-"
    click.echo(f"A:{len(lines_a)} {sign} B:{len(lines_b)} = OUT:{output.count()} entries.")
    click.echo(f"Saved: {result.file}")
    if result.backup:
        click.echo(f"Backup: {result.backup}")


@cli.command("export")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def export_cmd(obj: dict, config_path: str):
    """Export Winamp playlists (and media files) to a folder.

    CONFIG_PATH is a JSON export job, see README for the keys.
    """
    def on_progress(stage: str, current: int, total: int, label: str) -> None:
        if stage == "copying":
            click.echo(f"[{current}/{total}] {label}")

    try:
        config = load_export_config(config_path)
        if obj["code_page"]:
            config.code_page = obj["code_page"]

        exporter = Exporter(
            config,
            prompt=lambda message, default: click.prompt(message, default=default, show_default=bool(default)),
            confirm=lambda message: click.confirm(message, default=False),
            on_progress=on_progress,
        )
        if obj["dry_run"]:
            exporter.set_total_size()
            exporter.playlists_load()
        else:
            exporter.run()
    except M3UKeeperError as e:
        raise click.ClickException(str(e))

    stats = exporter.stats
    click.echo(
        f"Tracks: {stats.items} ({stats.dupes} dupes) | {byte_string(stats.bytes)}"
        f" | ~{byte_string(stats.asize)} per track"
    )
    for playlist, pl in exporter.playlists:
        click.echo(f"  {pl.name}: {playlist.count()} tracks")


@cli.command()
@click.argument("info", type=click.Choice(["name", "version", "logfile"]), default="name")
def app(info: str):
    """Display app info: name, version or current log file."""
    if info == "name":
        click.echo(APP_NAME)
    elif info == "version":
        click.echo(__version__)
    else:
        files = [
            os.path.realpath(h.baseFilename)
            for h in logging.getLogger().handlers
            if isinstance(h, logging.FileHandler)
        ]
        click.echo("\n".join(files) if files else "No log file configured.")
