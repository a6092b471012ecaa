#!/usr/bin/env python3
"""SpotyToYTM - migrate Spotify playlists to YouTube Music"""

import argparse
import fcntl
import logging
import os
import signal
import sys
from pathlib import Path

from spotytoytm.clients.spotify import (
    DEFAULT_REDIRECT_URI, SpotifyAPIError, SpotifyAuthError, SpotifyClient,
)
from spotytoytm.clients.youtube import YouTubeAuthError, YouTubeClient, load_credentials
from spotytoytm.core.cancel import CancelToken
from spotytoytm.core.collector import CollectionError, iter_playlists
from spotytoytm.core.ledger import FailureLedger, LedgerError
from spotytoytm.core.migrator import MigrationEngine
from spotytoytm.core.models import MigrationAbortError
from spotytoytm.core.snapshot import SnapshotError, SnapshotStore

DEFAULT_PLAYLISTS_DIR = "playlists"
DEFAULT_FAILED_TRACKS = "failed_tracks.json"
DEFAULT_CLIENT_SECRET = "client_secret.json"
LOCK_NAME = ".spotytoytm.lock"
LOG_NAME = "spotytoytm.log"

logger = logging.getLogger(__name__)


def data_dir() -> Path:
    return Path(os.environ.get("SPOTYTOYTM_DATA_DIR", Path.home() / ".spotytoytm")).expanduser()


def setup_logging(directory: Path) -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    directory.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(directory / LOG_NAME, encoding="utf-8"),
            logging.StreamHandler()
        ]
    )


def acquire_lock(lock_file: Path) -> int | None:
    """Hold an exclusive flock on lock_file, or return None if another run does.

    The kernel drops the flock when its holder exits, so a crashed run never
    leaves a lock behind and the file's age means nothing.
    """
    try:
        fd = os.open(str(lock_file), os.O_CREAT | os.O_RDWR)
    except OSError as e:
        logger.error(f"Could not open lock file {lock_file}: {e}")
        return None
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        os.close(fd)
        return None
    os.ftruncate(fd, 0)
    os.write(fd, f"{os.getpid()}\n".encode())
    return fd


def release_lock(fd: int) -> None:
    # The file stays; unlinking it would let a waiting run lock a stale inode
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
    except OSError as e:
        logger.debug(f"Lock release failed: {e}")


def _float_env(name: str, default: float | None) -> float | None:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.error(f"{name} must be a number, got '{value}'")
        sys.exit(1)


def load_config(required: list[str]) -> dict:
    config = {
        "SPOTIFY_REDIRECT_URI": os.environ.get("SPOTIFY_REDIRECT_URI", DEFAULT_REDIRECT_URI),
        "YOUTUBE_REFRESH_TOKEN": os.environ.get("YOUTUBE_REFRESH_TOKEN"),
        "HTTP_TIMEOUT": _float_env("HTTP_TIMEOUT", 30.0),
        "RUN_TIMEOUT": _float_env("RUN_TIMEOUT", None),
    }
    missing = []

    for var in required:
        value = os.environ.get(var)
        if value:
            config[var] = value
        else:
            missing.append(var)

    if missing:
        logger.error(f"Missing config: {', '.join(missing)}")
        sys.exit(1)

    return config


def install_signal_handlers(cancel: CancelToken) -> None:
    """Route SIGINT/SIGTERM to the cancel token.

    The first signal cancels and puts the default handlers back, so a second
    Ctrl-C interrupts immediately.
    """
    def handler(signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name}, stopping after the current call")
        cancel.cancel(f"interrupted by {signal.Signals(signum).name}")
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_prepare(args: argparse.Namespace, config: dict, cancel: CancelToken) -> int:
    store = SnapshotStore(Path(args.dir))

    logger.info("Initializing Spotify client...")
    try:
        spotify = SpotifyClient(
            config["SPOTIFY_CLIENT_ID"], config["SPOTIFY_CLIENT_SECRET"],
            data_dir=data_dir(),
            redirect_uri=config["SPOTIFY_REDIRECT_URI"],
            timeout=config["HTTP_TIMEOUT"],
            open_browser=not args.no_browser,
            cancel=cancel,
        )
    except (SpotifyAuthError, SpotifyAPIError) as e:
        logger.error(f"Spotify auth failed: {e}")
        return 1
    install_signal_handlers(cancel)

    saved = 0
    failed = 0
    try:
        store.ensure_directory()
        # Each playlist is on disk before the next one is fetched
        for playlist in iter_playlists(spotify, cancel):
            try:
                store.write(playlist)
                saved += 1
            except SnapshotError as e:
                failed += 1
                logger.error(f"Could not save playlist '{playlist.name}': {e}")
    except (CollectionError, SnapshotError, MigrationAbortError) as e:
        logger.error(f"Could not prepare migration: {e}")
        logger.info(f"Saved {saved} playlists to {store.directory} before stopping")
        return 1

    logger.info(f"Saved {saved} of {saved + failed} playlists to {store.directory}")
    return 0


def run_migrate(args: argparse.Namespace, config: dict, cancel: CancelToken) -> int:
    store = SnapshotStore(Path(args.dir))
    try:
        units = store.list_units()
    except SnapshotError as e:
        logger.error(str(e))
        return 1
    logger.info(f"Found {len(units)} playlist files in {store.directory}")

    logger.info("Initializing YouTube client...")
    try:
        credentials = load_credentials(
            data_dir(), Path(args.client_secret), config["YOUTUBE_REFRESH_TOKEN"]
        )
        youtube = YouTubeClient(credentials, timeout=config["HTTP_TIMEOUT"], cancel=cancel)
    except YouTubeAuthError as e:
        logger.error(f"YouTube auth failed: {e}")
        return 1
    install_signal_handlers(cancel)

    ledger = FailureLedger()
    engine = MigrationEngine(store, youtube, cancel)
    aborted = None
    try:
        engine.migrate(units, ledger)
    except (MigrationAbortError, YouTubeAuthError) as e:
        aborted = e
    except Exception as e:
        logger.exception(f"Unexpected error during migration: {e}")
        aborted = e

    # Persist whatever accumulated, including after an abort
    try:
        ledger.persist(Path(args.failed_tracks))
    except LedgerError as e:
        logger.error(str(e))
        return 1

    if aborted is not None:
        logger.error(f"Migration stopped early: {aborted}")
        return 1

    logger.info(f"Migration completed: {len(ledger)} tracks failed")
    return 0


def run_failures(args: argparse.Namespace) -> int:
    path = Path(args.failed_tracks)
    if not path.exists():
        print(f"No failed tracks recorded ({path} does not exist)")
        return 0
    try:
        ledger = FailureLedger.load(path)
    except LedgerError as e:
        logger.error(str(e))
        return 1

    for playlist_id in ledger.playlist_ids():
        tracks = ledger.tracks_for(playlist_id)
        print(f"{playlist_id}: {len(tracks)} failed")
        for track in tracks:
            print(f"  {track.search_query}")
    print(f"Total: {len(ledger)} failed tracks in {len(ledger.playlist_ids())} playlists")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spotytoytm",
        description="A tool to migrate playlists from Spotify to YouTube Music",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    prepare = subparsers.add_parser(
        "prepare", help="Fetch Spotify playlists and save them locally."
    )
    prepare.add_argument(
        "--dir", default=DEFAULT_PLAYLISTS_DIR,
        help="Directory to save playlist files into."
    )
    prepare.add_argument(
        "--no-browser", action="store_true",
        help="Only print the Spotify login URL instead of opening a browser."
    )

    migrate = subparsers.add_parser(
        "migrate", help="Create YouTube Music playlists from saved playlist files."
    )
    migrate.add_argument(
        "--dir", default=DEFAULT_PLAYLISTS_DIR,
        help="Directory holding playlist files written by 'prepare'."
    )
    migrate.add_argument(
        "--failed-tracks", default=DEFAULT_FAILED_TRACKS,
        help="Where to write tracks that could not be migrated."
    )
    migrate.add_argument(
        "-c", "--client-secret", default=DEFAULT_CLIENT_SECRET,
        help="Path to the client_secret.json file for YouTube API authentication."
    )

    failures = subparsers.add_parser(
        "failures", help="Summarize tracks recorded by a previous 'migrate'."
    )
    failures.add_argument("--failed-tracks", default=DEFAULT_FAILED_TRACKS)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "failures":
        return run_failures(args)

    directory = data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    setup_logging(directory)

    lock_file = directory / LOCK_NAME
    lock_fd = acquire_lock(lock_file)
    if lock_fd is None:
        logger.warning("Another run in progress, exiting")
        return 1

    try:
        if args.command == "prepare":
            config = load_config(["SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET"])
        else:
            config = load_config([])

        # Signal handlers go in once the clients exist, so Ctrl-C still aborts a login
        cancel = CancelToken(config["RUN_TIMEOUT"])

        if args.command == "prepare":
            return run_prepare(args, config, cancel)
        return run_migrate(args, config, cancel)

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        release_lock(lock_fd)


if __name__ == "__main__":
    sys.exit(main())
