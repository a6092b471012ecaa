"""Spotify Web API Client - spotipy with the authorization-code flow"""

import logging
from pathlib import Path

import requests
import spotipy
from spotipy.cache_handler import CacheFileHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from spotytoytm.core.cancel import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URI = "http://localhost:8080/callback"
SCOPES = "playlist-read-private playlist-read-collaborative"
TOKEN_FILE = ".spotify_token.json"
PAGE_LIMIT = 50
RETRIES = 3


class SpotifyAuthError(Exception):
    pass


class SpotifyAPIError(Exception):
    pass


class SpotifyClient:
    def __init__(self, client_id: str, client_secret: str,
                 data_dir: Path = Path.home() / ".spotytoytm",
                 redirect_uri: str = DEFAULT_REDIRECT_URI,
                 timeout: float = 30.0,
                 open_browser: bool = True,
                 cancel: CancelToken | None = None):
        self._cancel = cancel or CancelToken()
        self._auth = SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=SCOPES,
            open_browser=open_browser,
            cache_handler=CacheFileHandler(cache_path=str(Path(data_dir) / TOKEN_FILE)),
        )
        # 429 responses are retried by spotipy, honoring Retry-After
        self._sp = spotipy.Spotify(
            auth_manager=self._auth,
            requests_timeout=timeout,
            retries=RETRIES,
        )

        # Log in (or refresh the cached token) now, so auth problems are fatal up front
        try:
            self._auth.get_access_token(as_dict=False)
        except (SpotifyOauthError, SpotifyException, requests.RequestException) as e:
            raise SpotifyAuthError(f"Spotify login failed: {e}") from e

        logger.info("Spotify client initialized")

    def _call(self, name: str, operation, *args, **kwargs) -> dict:
        self._cancel.raise_if_cancelled()
        try:
            return operation(*args, **kwargs)
        except SpotifyOauthError as e:
            raise SpotifyAuthError(f"Auth error on {name}: {e}") from e
        except SpotifyException as e:
            if e.http_status == 401:
                raise SpotifyAuthError(f"Unauthorized on {name}: {e}") from e
            logger.error(f"Spotify API error {e.http_status} on {name}: {e.msg}")
            raise SpotifyAPIError(f"Spotify API error {e.http_status} on {name}") from e
        except requests.RequestException as e:
            raise SpotifyAPIError(f"Request failed on {name}: {e}") from e

    def list_playlists(self) -> list[dict]:
        """All playlists of the current user, following `next` links."""
        playlists = []
        page = self._call("list playlists", self._sp.current_user_playlists, limit=PAGE_LIMIT)

        while page:
            playlists.extend(p for p in page.get("items", []) if p)
            if not page.get("next"):
                break
            page = self._call("list playlists", self._sp.next, page)

        logger.info(f"Retrieved {len(playlists)} playlists from Spotify")
        return playlists

    def list_playlist_items(self, playlist_id: str) -> list[dict]:
        """All items of one playlist, paged by offset until `next` is null."""
        items = []
        offset = 0

        while True:
            page = self._call(
                f"items of {playlist_id}", self._sp.playlist_items,
                playlist_id, limit=PAGE_LIMIT, offset=offset,
            )
            items.extend(page.get("items", []))
            if not page.get("next"):
                break
            offset += PAGE_LIMIT

        return items
