"""Local app configuration and export job configuration."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path

from m3ukeeper.errors import ConfigError

CONFIG_VERSION = 1
DEFAULT_CONFIG_PATH = ".m3ukeeper_config.json"
CODE_PAGE_ENV = "M3UKEEPER_CODE_PAGE"
DEFAULT_CODE_PAGE = "ascii"


def default_code_page() -> str:
    return os.environ.get(CODE_PAGE_ENV) or DEFAULT_CODE_PAGE


@dataclass
class AppConfig:
    playlists_xml_path: str | None = None
    last_set_at: str | None = None


class ConfigManager:
    def __init__(self, path: str = DEFAULT_CONFIG_PATH):
        self.path = Path(path)
        self.config = AppConfig()

    def load(self) -> None:
        """Load config from disk. No-op if file doesn't exist or is invalid."""
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError):
            return
        if data.get("version") != CONFIG_VERSION:
            return
        self.config = AppConfig(
            playlists_xml_path=data.get("playlists_xml_path"),
            last_set_at=data.get("last_set_at"),
        )

    def save(self) -> None:
        """Write config to disk."""
        data = {"version": CONFIG_VERSION, **asdict(self.config)}
        self.path.write_text(json.dumps(data, indent=2))

    def get_playlists_xml_path(self) -> str | None:
        return self.config.playlists_xml_path

    def set_playlists_xml_path(self, path: str) -> None:
        self.config.playlists_xml_path = str(Path(path).expanduser())
        self.config.last_set_at = datetime.now().isoformat()


@dataclass
class PlaylistDef:
    """One playlist to export.

    ``save`` is the number of output copies (Name_1, Name_2, ...); more than
    one copy always implies ``shuffle``. ``is_total`` playlists count against
    the total size limit, extra playlists don't.
    """

    name: str = "Unknown"
    file: str = ""
    shuffle: bool = False
    limit: int = 0
    save: int = 1
    is_total: bool = True

    def __post_init__(self):
        self.limit = int(self.limit)
        self.save = int(self.save)
        self.shuffle = bool(self.shuffle) or self.save > 1


@dataclass
class ExportConfig:
    """Export job settings.

    ``total_size`` accepts bytes or size strings (120M, 3.4G); 0 means no
    limit. Directory and size values that are empty or start with ``?`` are
    asked for interactively.
    """

    winamp_dir: str
    winamp_xml: str = "playlists.xml"
    manifest: str = "export.json"
    playlist_all: str = "Export"
    cmd_title: str = "Export Winamp ML"
    auto_dirs: bool = False
    total_size: int | str = 0
    output_dir: str = ""
    export_dir: str = ""
    export_map: str = ""
    export_sep: str = "/"
    code_page: str = field(default_factory=default_code_page)
    playlists: list[PlaylistDef] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    @property
    def is_export(self) -> bool:
        """Copy media files too, not only playlists?"""
        return bool(self.export_dir)


def load_export_config(path: str | Path) -> ExportConfig:
    """Load an export job from a JSON file."""
    p = Path(path).expanduser()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Unable to read export config {p}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in export config {p}: {exc}") from exc
    return export_config_from_dict(data)


def export_config_from_dict(data: dict) -> ExportConfig:
    known = {f.name for f in fields(ExportConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown export config keys: {', '.join(sorted(unknown))}")
    if not data.get("winamp_dir"):
        raise ConfigError("Missing export config key: winamp_dir")

    pl_fields = {f.name for f in fields(PlaylistDef)}
    playlists = []
    for pl in data.get("playlists", []):
        bad = set(pl) - pl_fields
        if bad:
            raise ConfigError(f"Unknown playlist keys: {', '.join(sorted(bad))}")
        playlists.append(PlaylistDef(**pl))

    return ExportConfig(**{**data, "playlists": playlists})
