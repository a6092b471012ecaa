"""
Source Collector

Turns the source catalog's raw playlist and item records into Playlist
models. Paging lives in the source client; the collector only sees
complete item lists.
"""

import logging
from typing import Iterator, Protocol

from spotytoytm.core.cancel import CancelToken
from spotytoytm.core.models import Album, Artist, MigrationAbortError, Playlist, Track

logger = logging.getLogger(__name__)


class CollectionError(Exception):
    """The playlist listing itself failed; nothing can be collected."""
    pass


class SourceClientProtocol(Protocol):
    def list_playlists(self) -> list[dict]: ...
    def list_playlist_items(self, playlist_id: str) -> list[dict]: ...


def _artists(raw: list | None) -> tuple[Artist, ...]:
    return tuple(Artist(name=a.get("name") or "") for a in raw or [])


def extract_track(item: dict) -> Track | None:
    """Build a Track from a playlist item, or None if it holds no playable track."""
    data = item.get("track")
    if not data:
        return None
    # Episodes share the "track" slot in playlist items
    if data.get("type", "track") != "track":
        return None

    album = data.get("album") or {}
    return Track(
        name=data.get("name") or "",
        artists=_artists(data.get("artists")),
        album=Album(name=album.get("name") or "", artists=_artists(album.get("artists"))),
    )


def iter_playlists(source: SourceClientProtocol,
                   cancel: CancelToken | None = None) -> Iterator[Playlist]:
    """Yield every playlist with all of its tracks, in source order.

    Each playlist is yielded as soon as its items are fetched, so callers can
    persist it before the next one is requested. Raises CollectionError if
    the playlists can not be listed. A playlist whose items can not be
    fetched is logged and skipped. MigrationAbortError always propagates.
    """
    cancel = cancel or CancelToken()

    cancel.raise_if_cancelled()
    try:
        summaries = source.list_playlists()
    except MigrationAbortError:
        raise
    except Exception as e:
        raise CollectionError(f"Could not list playlists: {e}") from e
    logger.info(f"Found {len(summaries)} playlists")

    for summary in summaries:
        name = summary.get("name") or ""
        cancel.raise_if_cancelled()
        try:
            items = source.list_playlist_items(summary["id"])
        except MigrationAbortError:
            raise
        except Exception as e:
            logger.warning(f"Could not get items for playlist '{name}': {e}. Skipping playlist.")
            continue

        tracks = []
        for item in items:
            track = extract_track(item)
            if track is not None:
                tracks.append(track)

        dropped = len(items) - len(tracks)
        logger.info(f"Playlist '{name}': {len(tracks)} tracks" +
                    (f" ({dropped} unavailable items dropped)" if dropped else ""))
        yield Playlist(name=name, tracks=tuple(tracks))


def collect(source: SourceClientProtocol, cancel: CancelToken | None = None) -> list[Playlist]:
    """Fetch every playlist with all of its tracks, in source order."""
    return list(iter_playlists(source, cancel))
