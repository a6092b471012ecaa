"""Migrate Spotify playlists to YouTube Music."""

__version__ = "0.1.0"
