"""Failure Ledger: tracks that could not be migrated, keyed by destination playlist id"""

import json
import logging
from pathlib import Path

from spotytoytm.core.models import Track
from spotytoytm.core.storage import atomic_write_json

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    pass


class FailureLedger:
    def __init__(self):
        self._failed: dict[str, list[Track]] = {}

    def record(self, playlist_id: str, track: Track) -> None:
        self._failed.setdefault(playlist_id, []).append(track)

    def is_empty(self) -> bool:
        return not self._failed

    def playlist_ids(self) -> list[str]:
        return list(self._failed)

    def tracks_for(self, playlist_id: str) -> list[Track]:
        return list(self._failed.get(playlist_id, []))

    def to_dict(self) -> dict[str, list[dict]]:
        return {pid: [t.to_dict() for t in tracks] for pid, tracks in self._failed.items()}

    def persist(self, path: Path) -> bool:
        """Write the ledger. Returns False, writing nothing, when empty."""
        if self.is_empty():
            logger.info("No tracks failed to migrate")
            return False

        try:
            atomic_write_json(Path(path), self.to_dict(), prefix=".failed_")
        except OSError as e:
            raise LedgerError(f"Could not write failed tracks to {path}: {e}") from e
        logger.info(f"Failed tracks saved to {path}")
        return True

    @classmethod
    def load(cls, path: Path) -> "FailureLedger":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            ledger = cls()
            for playlist_id, tracks in data.items():
                for track in tracks:
                    ledger.record(playlist_id, Track.from_dict(track))
            return ledger
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise LedgerError(f"Could not load failed tracks from {path}: {e}") from e

    def __len__(self) -> int:
        return sum(len(tracks) for tracks in self._failed.values())
