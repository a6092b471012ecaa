"""
YouTube Data API v3 Client

Handles OAuth authentication and the three calls a migration needs:
playlist creation, search and playlist item insertion.
Read-only search is retried on transient errors; writes are not, since a
retried insert may land twice.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, TypeVar

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from spotytoytm.core.cancel import CancelToken
from spotytoytm.core.models import DestinationError, PlaylistHandle, QuotaExceededError

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/youtube"]
TOKEN_FILE = "youtube_token.json"
LOGIN_TIMEOUT = 300

T = TypeVar('T')


class YouTubeAuthError(Exception):
    """YouTube authentication failed."""
    pass


class YouTubeAPIError(DestinationError):
    """YouTube API operation failed."""
    pass


class YouTubeQuotaExceededError(QuotaExceededError):
    """YouTube API quota exceeded."""
    pass


def _load_client_credentials(secrets_file: Path) -> tuple[str, str] | None:
    """Load OAuth client credentials from env vars or the client secrets file."""
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")

    if client_id and client_secret:
        return client_id, client_secret

    if secrets_file.exists():
        try:
            secrets = json.loads(secrets_file.read_text())
            creds = secrets.get("installed") or secrets.get("web")
            if creds:
                return creds["client_id"], creds["client_secret"]
        except (ValueError, KeyError, AttributeError) as e:
            logger.warning(f"Failed to parse {secrets_file}: {e}")

    return None


def _persist_token(token_path: Path, creds: Credentials) -> None:
    try:
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json(), encoding="utf-8")
        os.chmod(token_path, 0o600)
        logger.debug("Saved YouTube OAuth token")
    except OSError as e:
        logger.warning(f"Failed to save YouTube token: {e}")


def load_credentials(data_dir: Path, secrets_file: Path,
                     refresh_token: str | None = None) -> Credentials:
    """
    Resolve YouTube OAuth credentials.

    Order: an explicit refresh token (with client id/secret), the cached
    token in the data directory, then the interactive installed-app flow
    using the client secrets file.
    """
    token_path = Path(data_dir) / TOKEN_FILE

    if refresh_token:
        client = _load_client_credentials(secrets_file)
        if client is None:
            raise YouTubeAuthError(
                "OAuth client not found. Set GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET "
                f"or provide {secrets_file}"
            )
        return Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=client[0],
            client_secret=client[1],
            scopes=SCOPES
        )

    creds: Credentials | None = None
    if token_path.exists():
        try:
            creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
            logger.debug("Loaded cached YouTube credentials")
        except (ValueError, OSError) as e:
            logger.warning(f"Failed to load cached credentials: {e}")

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
            _persist_token(token_path, creds)
            return creds
        except GoogleAuthError as e:
            logger.warning(f"Failed to refresh YouTube token, logging in again: {e}")

    if not secrets_file.exists():
        raise YouTubeAuthError(f"Missing OAuth client secrets file: {secrets_file}")

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(secrets_file), SCOPES)
        creds = flow.run_local_server(port=0, timeout_seconds=LOGIN_TIMEOUT)
    except Exception as e:
        raise YouTubeAuthError(f"OAuth login failed: {e}") from e
    _persist_token(token_path, creds)
    return creds


def _is_quota_exceeded(e: HttpError) -> bool:
    status = e.resp.status if e.resp else 0
    if status != 403:
        return False
    content = e.content or b""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="ignore")
    return "quotaExceeded" in content or "quotaExceeded" in str(e)


class YouTubeClient:
    """YouTube Data API client for playlist migration."""

    def __init__(self, credentials: Credentials, timeout: float = 30.0, pause: float = 0.5,
                 cancel: CancelToken | None = None):
        self._pause = pause
        self._cancel = cancel or CancelToken()
        try:
            http = google_auth_httplib2.AuthorizedHttp(
                credentials, http=httplib2.Http(timeout=timeout)
            )
            self._service = build("youtube", "v3", http=http, cache_discovery=False)
            logger.info("YouTube client initialized")
        except Exception as e:
            raise YouTubeAuthError(f"Failed to build YouTube client: {e}") from e

    def _retry(self, operation: Callable[[], T], name: str, max_retries: int = 1) -> T:
        """Execute operation, retrying transient errors when max_retries > 1."""
        for attempt in range(max_retries):
            last = attempt == max_retries - 1
            self._cancel.raise_if_cancelled()
            try:
                return operation()
            except HttpError as e:
                status = e.resp.status if e.resp else 0

                # Quota exceeded - nothing else will succeed today
                if _is_quota_exceeded(e):
                    raise YouTubeQuotaExceededError(f"Quota exceeded on {name}: {e}") from e

                # Rate limit - wait and retry once
                if status == 403 and attempt == 0 and not last:
                    logger.warning(f"Rate limited on {name}, waiting 60s...")
                    self._cancel.sleep(60)
                    continue

                # Server error - retry with backoff
                if status >= 500 and not last:
                    wait = 2 ** attempt
                    logger.warning(f"Server error on {name}, retrying in {wait}s...")
                    self._cancel.sleep(wait)
                    continue

                raise YouTubeAPIError(f"API error on {name}: {e}") from e

            except GoogleAuthError as e:
                raise YouTubeAuthError(f"Credentials rejected on {name}: {e}") from e

            except (ConnectionError, TimeoutError, OSError, httplib2.HttpLib2Error) as e:
                if not last:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {name}, retrying in {wait}s...")
                    self._cancel.sleep(wait)
                    continue
                raise YouTubeAPIError(f"Network error on {name}: {e}") from e

        raise YouTubeAPIError(f"{name} failed after {max_retries} attempts")

    def create_playlist(self, title: str, description: str) -> PlaylistHandle:
        """Create a private playlist. Raises YouTubeAPIError."""
        def do_insert():
            return self._service.playlists().insert(
                part="snippet,status",
                body={
                    "snippet": {"title": title, "description": description},
                    "status": {"privacyStatus": "private"},
                }
            ).execute()

        response = self._retry(do_insert, f"create playlist '{title}'")
        return PlaylistHandle(
            id=response["id"],
            title=response.get("snippet", {}).get("title", title),
        )

    def search(self, query: str, kind: str = "video", max_results: int = 1) -> list[str]:
        """Search and return ranked video ids. An empty list means no match."""
        def do_search():
            return self._service.search().list(
                part="snippet",
                q=query,
                type=kind,
                maxResults=max_results
            ).execute()

        response = self._retry(do_search, f"search '{query}'", max_retries=3)
        self._cancel.sleep(self._pause)
        return [
            item["id"]["videoId"]
            for item in response.get("items", [])
            if item.get("id", {}).get("videoId")
        ][:max_results]

    def add_item(self, playlist_id: str, video_id: str) -> None:
        """Append a video to a playlist. Raises YouTubeAPIError."""
        def do_insert():
            return self._service.playlistItems().insert(
                part="snippet",
                body={
                    "snippet": {
                        "playlistId": playlist_id,
                        "resourceId": {"kind": "youtube#video", "videoId": video_id}
                    }
                }
            ).execute()

        self._retry(do_insert, f"add {video_id}")
        self._cancel.sleep(self._pause)
