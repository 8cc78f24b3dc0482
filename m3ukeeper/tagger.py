"""ID3/metadata reader used to generate #EXTINF lines."""

from __future__ import annotations

from typing import Protocol

import mutagen

from m3ukeeper.errors import TagError

UNKNOWN = "n/a"


class Tagger(Protocol):
    def analyze(self, path: str) -> None: ...

    def artist(self) -> str: ...

    def title(self) -> str: ...

    def seconds(self) -> int: ...


class MutagenTagger:
    """Tagger backed by mutagen's easy tag interface."""

    def __init__(self):
        self._audio = None

    def analyze(self, path: str) -> None:
        try:
            audio = mutagen.File(path, easy=True)
        except (mutagen.MutagenError, OSError) as exc:
            raise TagError(f"Unable to read tags from {path}: {exc}") from exc
        if audio is None:
            raise TagError(f"Unsupported media file: {path}")
        self._audio = audio

    def _first(self, key: str) -> str:
        tags = getattr(self._audio, "tags", None)
        if not tags:
            return UNKNOWN
        values = tags.get(key) or []
        return str(values[0]) if values else UNKNOWN

    def artist(self) -> str:
        return self._first("artist")

    def title(self) -> str:
        return self._first("title")

    def seconds(self) -> int:
        info = getattr(self._audio, "info", None)
        length = getattr(info, "length", None)
        return int(length) if length is not None else -1
