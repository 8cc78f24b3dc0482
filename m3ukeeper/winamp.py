"""Read the Winamp Media Library playlists.xml catalog."""

import logging
import os
import re
import xml.etree.ElementTree as ET
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PLAYLISTS_XML = "playlists.xml"

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")


def _coerce(key: str, value: str) -> str | int:
    # Titles may look like numbers but must stay strings (sorting)
    if key == "title" or not _NUMERIC_RE.match(value):
        return value
    return int(float(value))


def load_playlists(xml_path: str | Path) -> list[dict[str, str | int]]:
    """Parse playlists.xml into a list of attribute dicts, in file order.

    e.g. [{"filename": "plf_TOP.m3u8", "title": "Top", "id": "{F4DA...}",
           "songs": 3, "seconds": 123}, ...]
    """
    tree = ET.parse(xml_path)
    root = tree.getroot()

    playlists: list[dict[str, str | int]] = []
    for el in root.findall("playlist"):
        playlists.append({k: _coerce(k, v) for k, v in el.attrib.items()})
    return playlists


def playlist_files(xml_path: str | Path) -> dict[str, str]:
    """Map playlist title -> playlist file located next to playlists.xml.

    Entries whose file doesn't exist are skipped with a warning.
    """
    base = Path(xml_path).parent
    files: dict[str, str] = {}
    for pl in load_playlists(xml_path):
        loc = base / str(pl.get("filename", ""))
        if loc.is_file():
            files[str(pl.get("title", loc.name))] = os.fspath(loc)
        else:
            logger.warning('Failed to locate "%s"', pl.get("filename"))
    logger.info("- playlists: %d", len(files))
    return files


def validate_playlists_xml(path: str | Path) -> tuple[bool, str | None]:
    """Validate a Winamp playlists.xml file path and basic structure."""
    p = Path(path).expanduser()
    if not p.exists():
        return False, f"File not found: {p}"
    if not p.is_file():
        return False, f"Not a file: {p}"

    try:
        tree = ET.parse(p)
    except ET.ParseError as exc:
        return False, f"Invalid XML: {exc}"
    except OSError as exc:
        return False, f"Unable to read file: {exc}"

    root = tree.getroot()
    if root.tag != "playlists":
        return False, "XML parsed, but missing Winamp <playlists> root node"
    return True, None


SORT_FIELDS = ("lp", "filename", "title", "id", "songs", "seconds")


def sort_catalog(
    playlists: list[dict[str, str | int]], field: str = "lp", direction: str = "asc"
) -> list[dict[str, str | int]]:
    """Sort catalog entries. ``lp`` is the file order."""
    if field not in SORT_FIELDS:
        raise ValueError(f'Unknown sort field "{field}"')
    reverse = direction == "desc"
    if field == "lp":
        return list(reversed(playlists)) if reverse else list(playlists)
    # Numbers sort before strings (missing attributes count as "")
    return sorted(
        playlists,
        key=lambda pl: (isinstance(pl.get(field), str), pl.get(field, "")),
        reverse=reverse,
    )


def format_duration(seconds: int) -> str:
    """Format a duration as H:MM:SS."""
    seconds = max(int(seconds), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"
