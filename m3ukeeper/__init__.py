"""m3ukeeper - keep M3U playlists pointing at the right files."""

APP_NAME = "m3ukeeper"
__version__ = "1.0.0"
