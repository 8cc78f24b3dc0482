"""Find the current location of playlist tracks that moved on disk.

Every entry goes through the same chain of lookups until one finds an
existing file:

  1. the path resolved while loading the playlist
  2. the relocation map (old dir -> new dir) learned during this run
  3. the rename map (regex pattern -> substitution) learned during this run
  4. the alphabetic bucket in the media folder, e.g. ``[A-D]/track.mp3``
  5. a decision: configured default action or a question to the user

The resolver never talks to the terminal. Questions are delegated to a
``Prompter`` supplied by the caller, so the whole chain can run unattended
with a fixed default action.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from m3ukeeper.playlist import PlaylistEntry, split_line

logger = logging.getLogger(__name__)

DEFAULT_ESCAPE = "[0-9]"
DEFAULT_ACTIONS = ("skip", "remove", "exit", "ask")


class Action(str, Enum):
    UPDATE = "Update"
    RELOCATE = "Relocate"
    RENAME = "Rename"
    REMOVE = "Remove"
    SKIP = "Skip"
    EXIT = "Exit"


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    SKIP = "skip"
    REMOVE = "remove"
    EXIT = "exit"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    path: str = ""

    @classmethod
    def resolved(cls, path: str) -> Outcome:
        return cls(OutcomeKind.RESOLVED, path)


SKIP = Outcome(OutcomeKind.SKIP)
REMOVE = Outcome(OutcomeKind.REMOVE)
EXIT = Outcome(OutcomeKind.EXIT)

_ACTION_OUTCOMES = {
    Action.SKIP: SKIP,
    Action.REMOVE: REMOVE,
    Action.EXIT: EXIT,
    "skip": SKIP,
    "remove": REMOVE,
    "exit": EXIT,
}

# Returns an error message for an invalid answer, None if accepted
Check = Callable[[str], str | None]
RenameCheck = Callable[[str, str], str | None]


class Prompter(Protocol):
    def choose(self, entry: PlaylistEntry) -> Action: ...

    def ask_path(self, entry: PlaylistEntry, check: Check) -> str: ...

    def ask_relocation(self, entry: PlaylistEntry, base: str, check: Check) -> str: ...

    def ask_rename(self, entry: PlaylistEntry, check: RenameCheck) -> tuple[str, str] | None: ...


def rename(pattern: str, substitution: str, name: str) -> str:
    """Apply a rename mapping to a filename (case sensitive)."""
    return re.sub(pattern, substitution, name)


class MediaFolder:
    """Media folder split into sub folders named after letter ranges.

    Each sub folder name is a regex character class, e.g. ``[A-D]`` or
    ``[0-9]``, matched case-insensitively against the first character of a
    filename. Filenames with no matching folder go to the escape folder.
    """

    def __init__(self, media_dir: str, escape: str = DEFAULT_ESCAPE):
        self.media_dir = media_dir
        self.escape_dir = os.path.join(media_dir, escape)
        self._buckets: list[str] | None = None

    def buckets(self) -> list[str]:
        if self._buckets is None:
            self._buckets = sorted(
                d.name for d in os.scandir(self.media_dir)
                if d.is_dir() and d.name.startswith("[") and d.name.endswith("]")
            )
        return self._buckets

    def match(self, filename: str) -> str:
        """Name of the bucket holding ``filename``, "" if none matches."""
        if not filename:
            return ""
        for bucket in self.buckets():
            try:
                if re.search(bucket, filename[0], re.IGNORECASE):
                    return bucket
            except re.error:
                logger.debug('Ignoring media sub folder "%s": not a valid pattern', bucket)
        return ""

    def locate(self, filename: str) -> str:
        bucket = self.match(filename)
        folder = os.path.join(self.media_dir, bucket) if bucket else self.escape_dir
        return os.path.join(folder, filename)


@dataclass
class ResolverSession:
    """Mappings learned from the user, shared by all entries of one run."""

    dir_map: dict[str, str] = field(default_factory=dict)
    rename_map: dict[str, str] = field(default_factory=dict)


class Resolver:
    def __init__(
        self,
        media: MediaFolder,
        *,
        base: str | None = None,
        action: str = "ask",
        prompter: Prompter | None = None,
        session: ResolverSession | None = None,
    ):
        if action not in DEFAULT_ACTIONS:
            raise ValueError(f'Unknown default action "{action}"')
        self.media = media
        self.base = base or media.media_dir
        self.action = action
        self.prompter = prompter
        self.session = session or ResolverSession()

    def _abs(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.base, path)

    def resolve(self, entry: PlaylistEntry) -> Outcome:
        path = (
            self.find_direct(entry)
            or self.find_relocated(entry)
            or self.find_renamed(entry)
            or self.find_in_media(entry)
        )
        if path:
            return Outcome.resolved(path)
        return self.decide(entry)

    # #1
    def find_direct(self, entry: PlaylistEntry) -> str:
        if entry.path:
            return entry.path
        logger.debug('Not found (#1): "%s" at "%s"', entry.orig, self.base)
        return ""

    # #2
    def find_relocated(self, entry: PlaylistEntry) -> str:
        base = split_line(entry.orig)[0]
        new_dir = self.session.dir_map.get(base)
        if new_dir:
            path = os.path.join(new_dir, entry.name)
            if os.path.exists(self._abs(path)):
                return self._abs(path)
        logger.debug('Not found (#2): no path mapping for "%s"', base)
        return ""

    # #3
    def find_renamed(self, entry: PlaylistEntry) -> str:
        base = split_line(entry.orig)[0]
        for pattern, sub in self.session.rename_map.items():
            path = self._abs(os.path.join(base, rename(pattern, sub, entry.name)))
            if os.path.exists(path):
                return path
        logger.debug('Not found (#3): no pattern mapping for "%s"', entry.orig)
        return ""

    # #4
    def find_in_media(self, entry: PlaylistEntry) -> str:
        path = self.media.locate(entry.name)
        if os.path.exists(path):
            return path
        logger.debug('Not found (#4): not in media folder "%s"', path)
        return ""

    # #5
    def decide(self, entry: PlaylistEntry) -> Outcome:
        if self.action != "ask":
            return _ACTION_OUTCOMES[self.action]
        if self.prompter is None:
            return SKIP

        logger.warning('Invalid "%s"', entry.orig)
        choice = self.prompter.choose(entry)
        base, name = split_line(entry.orig)

        if choice is Action.UPDATE:
            path = self.prompter.ask_path(entry, self._check_file)
            if not path:
                return SKIP
            logger.info('Updated to "%s"', path)
            return Outcome.resolved(self._abs(path))

        if choice is Action.RELOCATE:
            new_dir = self.prompter.ask_relocation(
                entry, base, lambda d: self._check_file(os.path.join(d, name))
            )
            if not new_dir:
                return SKIP
            self.session.dir_map[base] = new_dir
            path = os.path.join(new_dir, name)
            logger.debug('New path mapping "%s" -> "%s"', base, new_dir)
            logger.info('Relocated to "%s"', path)
            return Outcome.resolved(self._abs(path))

        if choice is Action.RENAME:
            answer = self.prompter.ask_rename(
                entry, lambda pat, sub: self._check_rename(base, name, pat, sub)
            )
            if not answer:
                return SKIP
            pattern, sub = answer
            self.session.rename_map[pattern] = sub
            new_name = rename(pattern, sub, name)
            logger.debug('New pattern mapping "%s" -> "%s"', pattern, sub)
            logger.info('Renamed to "%s"', new_name)
            return Outcome.resolved(self._abs(os.path.join(base, new_name)))

        return _ACTION_OUTCOMES[choice]

    def _check_file(self, path: str) -> str | None:
        if not os.path.isfile(self._abs(path)):
            return f'Not found "{path}"'
        return None

    def _check_rename(self, base: str, name: str, pattern: str, sub: str) -> str | None:
        try:
            new_name = rename(pattern, sub, name)
        except re.error as exc:
            return f"Invalid pattern: {exc}"
        return self._check_file(os.path.join(base, new_name))
