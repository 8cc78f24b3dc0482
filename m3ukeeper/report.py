"""Post-rebuild report generation for terminal and Markdown output."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class PlaylistReport:
    name: str
    path: str
    before: int = 0
    after: int = 0
    moved: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    dupes: dict[str, int] = field(default_factory=dict)  # path -> extra copies
    skipped: int = 0
    sort_changed: bool | None = None
    action: str = "unchanged"  # "saved", "dry-run", "unchanged" or "exit"
    saved_file: str = ""
    backup_file: str = ""

    @property
    def duped(self) -> int:
        return sum(self.dupes.values())

    @property
    def updated(self) -> int:
        return len(self.moved) + len(self.removed) + self.duped

    @property
    def erased(self) -> int:
        return self.before - self.after


@dataclass
class RebuildReport:
    timestamp: datetime
    dry_run: bool
    playlists: list[PlaylistReport] = field(default_factory=list)
    exited: bool = False

    @property
    def total_items(self) -> int:
        return sum(p.before for p in self.playlists)

    @property
    def total_after(self) -> int:
        return sum(p.after for p in self.playlists)

    @property
    def total_moved(self) -> int:
        return sum(len(p.moved) for p in self.playlists)

    @property
    def total_removed(self) -> int:
        return sum(len(p.removed) for p in self.playlists)

    @property
    def total_duped(self) -> int:
        return sum(p.duped for p in self.playlists)

    @property
    def total_skipped(self) -> int:
        return sum(p.skipped for p in self.playlists)

    @property
    def total_updated(self) -> int:
        return sum(p.updated for p in self.playlists)

    @property
    def total_erased(self) -> int:
        return sum(p.erased for p in self.playlists)


def print_report(report: RebuildReport) -> None:
    """Print a concise terminal summary of the rebuild report."""
    import click

    ts = report.timestamp.strftime("%Y-%m-%d %H:%M")
    mode = "dry-run" if report.dry_run else "live"

    click.echo()
    click.echo("═" * 42)
    click.echo(f"  Rebuild Report  {ts}")
    click.echo(f"  Mode: {mode}")
    click.echo("═" * 42)

    for pl in report.playlists:
        click.echo()
        click.echo(f"Playlist: {pl.name}  ({pl.action})")
        click.echo(f"  File:     {pl.path}")
        click.echo(
            f"  Summary:  {pl.updated} paths updated: {len(pl.moved)} moved,"
            f" {len(pl.removed)} removed, {pl.duped} dupes"
        )
        click.echo(
            f"  Tracks:   {pl.before} before, {pl.after} after"
            f" ({pl.erased} erased, {pl.skipped} skipped)"
        )
        if pl.sort_changed is not None:
            click.echo(f"  Sort:     {'changed' if pl.sort_changed else 'not changed'}")

        if pl.removed:
            click.echo(f"  Removed ({len(pl.removed)}):")
            for line in pl.removed:
                click.echo(f"    <-- {line}")

        if pl.dupes:
            click.echo(f"  Duplicates ({len(pl.dupes)}):")
            for path, count in pl.dupes.items():
                click.echo(f"    x{count} - {path}")

        if pl.saved_file:
            click.echo(f"  Saved:    {pl.saved_file}")
        if pl.backup_file:
            click.echo(f"  Backup:   {pl.backup_file}")

    if len(report.playlists) > 1:
        click.echo()
        click.echo("─" * 42)
        click.echo(
            f"  TOTALS: {len(report.playlists)} playlists"
            f" | {report.total_items} entries"
            f" ({report.total_moved} moved, {report.total_removed} removed,"
            f" {report.total_duped} dupes)"
        )
        click.echo(
            f"  {report.total_items} before, {report.total_after} after"
            f" ({report.total_updated} updated, {report.total_erased} erased,"
            f" {report.total_skipped} skipped)"
        )
        click.echo("─" * 42)

    if report.exited:
        click.echo("Stopped by user. Remaining playlists were not processed.")


def save_report(report: RebuildReport, path: str) -> None:
    """Save a detailed Markdown report to a file."""
    ts = report.timestamp.strftime("%Y-%m-%d %H:%M")
    mode = "dry-run" if report.dry_run else "live"
    lines: list[str] = []

    lines.append(f"# Rebuild Report - {ts}")
    lines.append("")
    lines.append(f"**Mode:** {mode}")
    lines.append("")

    for pl in report.playlists:
        lines.append(f"## {pl.name}  ({pl.action})")
        lines.append("")
        lines.append(f"**File:** {pl.path}")
        lines.append(
            f"**Tracks:** {pl.before} before | {pl.after} after"
            f" | {len(pl.moved)} moved | {len(pl.removed)} removed"
            f" | {pl.duped} dupes | {pl.skipped} skipped"
        )
        lines.append("")

        if pl.moved:
            lines.append(f"### Moved ({len(pl.moved)})")
            lines.append("")
            for new_path in pl.moved:
                lines.append(f"- {new_path}")
            lines.append("")

        if pl.removed:
            lines.append(f"### Removed ({len(pl.removed)})")
            lines.append("")
            for line in pl.removed:
                lines.append(f"- {line}")
            lines.append("")

        if pl.dupes:
            lines.append(f"### Duplicates ({len(pl.dupes)})")
            lines.append("")
            lines.append("| Path | Extra copies |")
            lines.append("|------|--------------|")
            for dup_path, count in pl.dupes.items():
                lines.append(f"| {dup_path} | {count} |")
            lines.append("")

    lines.append("---")
    lines.append("")
    lines.append(
        f"**Totals:** {len(report.playlists)} playlists"
        f" | {report.total_items} before"
        f" | {report.total_after} after"
        f" | {report.total_updated} updated"
    )
    if report.exited:
        lines.append("")
        lines.append("**Stopped by user.**")
    lines.append("")

    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
