"""
Migration Engine

Re-creates snapshot playlists on the destination service.

For every snapshot unit:
1. Decode it; skip malformed units and playlists without a name
2. Create a private destination playlist with the same title
3. For each track, in order, search "<name> <artists>" and add the
   top-ranked result
4. Record tracks with no result, or whose add failed, in the ledger
   under the destination playlist id

Matching is best-effort: the top result is taken as-is. Per-unit and
per-track failures never stop the run. Only MigrationAbortError
(quota exhausted, cancellation) does, and the ledger handed to
migrate() keeps whatever was recorded before the abort.
"""

import logging
import time
from typing import Iterable, Protocol

from spotytoytm.core.cancel import CancelToken
from spotytoytm.core.ledger import FailureLedger
from spotytoytm.core.models import (
    DestinationError, MigrationAbortError, MigrationStats, PlaylistHandle, Track,
)
from spotytoytm.core.snapshot import SnapshotError, SnapshotStore, SnapshotUnit

logger = logging.getLogger(__name__)

MIGRATED_DESCRIPTION = "Migrated from Spotify"


class DestinationClientProtocol(Protocol):
    def create_playlist(self, title: str, description: str) -> PlaylistHandle: ...
    def search(self, query: str, kind: str = "video", max_results: int = 1) -> list[str]: ...
    def add_item(self, playlist_id: str, item_id: str) -> None: ...


class MigrationEngine:
    """Runs one reconciliation pass over snapshot units."""

    def __init__(self, store: SnapshotStore, destination: DestinationClientProtocol,
                 cancel: CancelToken | None = None,
                 description: str = MIGRATED_DESCRIPTION):
        self._store = store
        self._destination = destination
        self._cancel = cancel or CancelToken()
        self._description = description
        self.stats = MigrationStats()

    def _skip(self, unit: SnapshotUnit, reason: str) -> None:
        logger.warning(f"Skipping {unit.path.name}: {reason}")
        self.stats.units_skipped += 1
        self.stats.skipped.append(unit.path.name)

    def _migrate_track(self, track: Track, playlist: PlaylistHandle,
                       ledger: FailureLedger) -> None:
        query = track.search_query
        logger.debug(f"Searching for track: {query}")

        self._cancel.raise_if_cancelled()
        try:
            results = self._destination.search(query, kind="video", max_results=1)
        except DestinationError as e:
            logger.warning(f"Search failed for '{query}': {e}")
            results = None

        if not results:
            if results is not None:
                logger.warning(f"No results for '{query}'")
            ledger.record(playlist.id, track)
            self.stats.tracks_failed += 1
            return

        self._cancel.raise_if_cancelled()
        try:
            self._destination.add_item(playlist.id, results[0])
        except DestinationError as e:
            logger.warning(f"Could not add '{query}' to '{playlist.title}': {e}")
            ledger.record(playlist.id, track)
            self.stats.tracks_failed += 1
            return

        logger.info(f"Added '{query}' to '{playlist.title}'")
        self.stats.tracks_added += 1

    def _migrate_unit(self, unit: SnapshotUnit, ledger: FailureLedger) -> None:
        logger.info(f"Migrating playlist from file: {unit.path.name}")

        try:
            playlist = self._store.read(unit)
        except SnapshotError as e:
            self._skip(unit, str(e))
            return

        if not playlist.name:
            self._skip(unit, "playlist name is empty")
            return

        self._cancel.raise_if_cancelled()
        try:
            handle = self._destination.create_playlist(playlist.name, self._description)
        except DestinationError as e:
            self._skip(unit, f"could not create playlist '{playlist.name}': {e}")
            return

        self.stats.playlists_created += 1
        logger.info(f"Created playlist: {handle.title} (ID: {handle.id})")

        for track in playlist.tracks:
            self._migrate_track(track, handle, ledger)

    def migrate(self, units: Iterable[SnapshotUnit],
                ledger: FailureLedger | None = None) -> FailureLedger:
        """Migrate every unit in order and return the failure ledger.

        Pass a ledger to keep hold of partial results when the run aborts
        with MigrationAbortError.
        """
        ledger = ledger if ledger is not None else FailureLedger()
        self.stats = MigrationStats()
        start = time.time()

        logger.info("=" * 50)
        logger.info("Starting migration")

        try:
            for unit in units:
                self.stats.units_seen += 1
                self._migrate_unit(unit, ledger)
        except MigrationAbortError as e:
            logger.error(f"Migration aborted: {e}")
            raise
        finally:
            s = self.stats
            logger.info(
                f"Completed in {time.time() - start:.1f}s: {s.playlists_created} playlists created, "
                f"{s.units_skipped} skipped, +{s.tracks_added} tracks, {s.tracks_failed} failed"
            )
            logger.info("=" * 50)

        return ledger
