"""Exception types shared across m3ukeeper."""


class M3UKeeperError(Exception):
    """Base class for all m3ukeeper errors."""


class ConfigError(M3UKeeperError):
    """Invalid configuration detected before any file was touched."""


class PlaylistError(M3UKeeperError):
    """Playlist file cannot be read or written in the requested format."""


class ResolverError(M3UKeeperError):
    """A resolved track path failed verification at commit time."""


class ExportError(M3UKeeperError):
    """Export run aborted: missing playlist/track or broken bookkeeping."""


class TagError(M3UKeeperError):
    """Media file could not be analyzed for tags."""
