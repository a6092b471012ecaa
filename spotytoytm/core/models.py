"""Data models for migration operations."""

from dataclasses import dataclass, field
from typing import Any


class MigrationAbortError(Exception):
    """Raised when the whole migration run must stop (quota, cancellation)."""
    pass


class QuotaExceededError(MigrationAbortError):
    """Destination API quota exhausted; every further call would fail."""
    pass


class MigrationCancelledError(MigrationAbortError):
    """Run cancelled by signal or run deadline."""
    pass


class DestinationError(Exception):
    """A single destination call failed (per-item, not fatal)."""
    pass


def _require_str(data: dict, key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _list_or_empty(data: dict, key: str) -> list:
    # Snapshots from older runs encode empty lists as null
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"'{key}' must be a list, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Artist:
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name}

    @classmethod
    def from_dict(cls, data: dict) -> "Artist":
        return cls(name=_require_str(data, "name"))


@dataclass(frozen=True)
class Album:
    name: str
    artists: tuple[Artist, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "artists": [a.to_dict() for a in self.artists]}

    @classmethod
    def from_dict(cls, data: dict) -> "Album":
        return cls(
            name=_require_str(data, "name"),
            artists=tuple(Artist.from_dict(a) for a in _list_or_empty(data, "artists")),
        )


@dataclass(frozen=True)
class Track:
    """A track as collected from Spotify."""
    name: str
    artists: tuple[Artist, ...] = ()
    album: Album = field(default_factory=lambda: Album(name=""))

    @property
    def search_query(self) -> str:
        """Track name followed by every artist name, in original order."""
        return f"{self.name} {' '.join(a.name for a in self.artists)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "artists": [a.to_dict() for a in self.artists],
            "album": self.album.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Track":
        album = data.get("album")
        return cls(
            name=_require_str(data, "name"),
            artists=tuple(Artist.from_dict(a) for a in _list_or_empty(data, "artists")),
            album=Album.from_dict(album) if album is not None else Album(name=""),
        )


@dataclass(frozen=True)
class Playlist:
    """A source playlist with its tracks in collection order."""
    name: str
    tracks: tuple[Track, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "tracks": [t.to_dict() for t in self.tracks]}

    @classmethod
    def from_dict(cls, data: dict) -> "Playlist":
        if not isinstance(data, dict):
            raise TypeError(f"playlist must be an object, got {type(data).__name__}")
        return cls(
            name=_require_str(data, "name"),
            tracks=tuple(Track.from_dict(t) for t in _list_or_empty(data, "tracks")),
        )


@dataclass(frozen=True)
class PlaylistHandle:
    """A playlist created on the destination during this run."""
    id: str
    title: str


@dataclass
class MigrationStats:
    """Counters for one reconciliation pass."""
    units_seen: int = 0
    units_skipped: int = 0
    playlists_created: int = 0
    tracks_added: int = 0
    tracks_failed: int = 0
    skipped: list[str] = field(default_factory=list)
