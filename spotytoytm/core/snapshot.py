"""
Snapshot Store

One JSON file per playlist, named after the sanitized playlist name.
Files are written atomically, so a crash mid-run leaves every earlier
snapshot intact, and a later (possibly separate) run can list and decode
them again.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from spotytoytm.core.models import Playlist
from spotytoytm.core.storage import atomic_write_json

logger = logging.getLogger(__name__)

SUFFIX = ".json"
_UNSAFE_CHARS = ("/", "\\", "\x00")


class SnapshotError(Exception):
    """Snapshot directory or unit could not be used."""
    pass


class SnapshotWriteError(SnapshotError):
    pass


class SnapshotReadError(SnapshotError):
    pass


class SnapshotDecodeError(SnapshotError):
    """Snapshot file exists but does not hold a valid playlist."""
    pass


def sanitize_name(name: str) -> str:
    """Make a playlist name safe to use as a single path component."""
    for char in _UNSAFE_CHARS:
        name = name.replace(char, "_")
    return name


@dataclass(frozen=True)
class SnapshotUnit:
    path: Path

    @property
    def name(self) -> str:
        return self.path.name[:-len(SUFFIX)]


class SnapshotStore:
    def __init__(self, directory: Path):
        self._dir = Path(directory)
        # casefolded filename stem -> original playlist name, for this run only.
        # Case-insensitive filesystems treat "Chill" and "chill" as one file.
        self._written: dict[str, str] = {}

    @property
    def directory(self) -> Path:
        return self._dir

    def ensure_directory(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotWriteError(f"Could not create snapshot directory {self._dir}: {e}") from e

    def _unique_stem(self, playlist_name: str) -> str:
        base = sanitize_name(playlist_name)
        stem = base
        n = 1
        while stem.casefold() in self._written:
            n += 1
            stem = f"{base} ({n})"
        if stem != base:
            logger.warning(
                f"Playlist '{playlist_name}' collides with '{self._written[base.casefold()]}' "
                f"as '{base}{SUFFIX}', saving as '{stem}{SUFFIX}'"
            )
        return stem

    def write(self, playlist: Playlist) -> SnapshotUnit:
        """Persist one playlist. Raises SnapshotWriteError."""
        stem = self._unique_stem(playlist.name)
        unit = SnapshotUnit(self._dir / f"{stem}{SUFFIX}")
        try:
            atomic_write_json(unit.path, playlist.to_dict(), prefix=".snapshot_")
        except OSError as e:
            raise SnapshotWriteError(f"Could not write {unit.path}: {e}") from e
        self._written[stem.casefold()] = playlist.name
        logger.debug(f"Saved '{playlist.name}' ({len(playlist.tracks)} tracks) to {unit.path}")
        return unit

    def list_units(self) -> list[SnapshotUnit]:
        """All snapshot files in the directory, sorted by filename."""
        try:
            entries = sorted(self._dir.iterdir())
        except OSError as e:
            raise SnapshotError(f"Could not read snapshot directory {self._dir}: {e}") from e
        return [
            SnapshotUnit(p) for p in entries
            if p.name.endswith(SUFFIX) and p.is_file()
        ]

    def read(self, unit: SnapshotUnit) -> Playlist:
        """Decode one unit. Raises SnapshotReadError or SnapshotDecodeError."""
        try:
            text = unit.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SnapshotReadError(f"Could not read {unit.path}: {e}") from e
        try:
            return Playlist.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SnapshotDecodeError(f"Malformed snapshot {unit.path}: {e}") from e
