"""Shared pytest fixtures."""

import os
from pathlib import Path

import pytest

from m3ukeeper.playlist import BOM

BUCKETS = ("[A-M]", "[N-Z]", "[0-9]")


@pytest.fixture
def root(tmp_path):
    """tmp_path without symlinks, so resolved paths compare equal."""
    return Path(os.path.realpath(tmp_path))


@pytest.fixture
def media_dir(root):
    """Media folder split into letter range sub folders."""
    media = root / "media"
    for bucket in BUCKETS:
        (media / bucket).mkdir(parents=True)
    return media


@pytest.fixture
def make_file():
    """Create a file of given size, including parent dirs."""

    def _make(path, size=100):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\0" * size)
        return path

    return _make


@pytest.fixture
def write_playlist():
    """Write playlist lines to a file (m3u8 files get a BOM)."""

    def _write(path, lines, encoding="utf-8"):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = "".join(f"{line}\n" for line in lines).encode(encoding)
        if path.suffix == ".m3u8":
            data = BOM + data
        path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def write_catalog():
    """Write a Winamp playlists.xml from (filename, title, songs, seconds) rows."""

    def _write(path, rows):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        items = "".join(
            f'  <playlist filename="{f}" title="{t}" id="{{ID-{i}}}" songs="{s}" seconds="{sec}"/>\n'
            for i, (f, t, s, sec) in enumerate(rows)
        )
        path.write_text(
            f'<?xml version="1.0" encoding="UTF-8"?>\n<playlists playlists="{len(rows)}">\n{items}</playlists>\n',
            encoding="utf-8",
        )
        return path

    return _write
