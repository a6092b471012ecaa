import json
import shutil
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import httplib2
from googleapiclient.errors import HttpError

from spotytoytm.clients.youtube import (
    LOGIN_TIMEOUT,
    YouTubeAPIError,
    YouTubeAuthError,
    YouTubeClient,
    YouTubeQuotaExceededError,
    load_credentials,
)
from spotytoytm.core.cancel import CancelToken
from spotytoytm.core.models import (
    DestinationError, MigrationCancelledError, PlaylistHandle, QuotaExceededError,
)


def http_error(status, reason="backendError"):
    content = json.dumps({"error": {"code": status, "message": reason,
                                    "errors": [{"reason": reason}]}}).encode()
    return HttpError(httplib2.Response({"status": status}), content)


@patch.object(CancelToken, "sleep")
@patch("spotytoytm.clients.youtube.google_auth_httplib2.AuthorizedHttp")
@patch("spotytoytm.clients.youtube.build")
class TestYouTubeClient(unittest.TestCase):
    def make_client(self, mock_build):
        self.service = MagicMock()
        mock_build.return_value = self.service
        return YouTubeClient(MagicMock(), timeout=5, pause=0)

    def test_create_playlist_is_private(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        self.service.playlists().insert().execute.return_value = {
            "id": "PL1", "snippet": {"title": "Road Trip"}
        }

        handle = client.create_playlist("Road Trip", "Migrated from Spotify")

        self.assertEqual(handle, PlaylistHandle("PL1", "Road Trip"))
        body = self.service.playlists().insert.call_args.kwargs["body"]
        self.assertEqual(body["status"], {"privacyStatus": "private"})
        self.assertEqual(body["snippet"]["description"], "Migrated from Spotify")

    def test_search_returns_video_ids(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        self.service.search().list().execute.return_value = {
            "items": [{"id": {"kind": "youtube#video", "videoId": "abc"}}]
        }

        self.assertEqual(client.search("Africa Toto"), ["abc"])
        kwargs = self.service.search().list.call_args.kwargs
        self.assertEqual(kwargs["q"], "Africa Toto")
        self.assertEqual(kwargs["type"], "video")
        self.assertEqual(kwargs["maxResults"], 1)

    def test_search_no_results(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        self.service.search().list().execute.return_value = {"items": []}
        self.assertEqual(client.search("nothing"), [])

    def test_search_retries_server_errors(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        self.service.search().list().execute.side_effect = [
            http_error(503), {"items": [{"id": {"videoId": "v"}}]}
        ]
        self.assertEqual(client.search("q"), ["v"])

    def test_add_item_failure_not_retried(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        execute = self.service.playlistItems().insert().execute
        execute.side_effect = http_error(503)

        with self.assertRaises(YouTubeAPIError) as ctx:
            client.add_item("PL1", "abc")
        self.assertIsInstance(ctx.exception, DestinationError)
        self.assertEqual(execute.call_count, 1)

    def test_add_item_body(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        client.add_item("PL1", "abc")
        body = self.service.playlistItems().insert.call_args.kwargs["body"]
        self.assertEqual(body["snippet"]["playlistId"], "PL1")
        self.assertEqual(body["snippet"]["resourceId"], {"kind": "youtube#video", "videoId": "abc"})

    def test_quota_exceeded_aborts(self, mock_build, _http, _sleep):
        client = self.make_client(mock_build)
        self.service.search().list().execute.side_effect = http_error(403, "quotaExceeded")

        with self.assertRaises(YouTubeQuotaExceededError) as ctx:
            client.search("q")
        self.assertIsInstance(ctx.exception, QuotaExceededError)
        self.assertNotIsInstance(ctx.exception, DestinationError)

    def test_search_backoff_uses_cancel_token(self, mock_build, _http, mock_sleep):
        client = self.make_client(mock_build)
        self.service.search().list().execute.side_effect = [
            http_error(503), {"items": [{"id": {"videoId": "v"}}]}
        ]
        client.search("q")
        mock_sleep.assert_any_call(1)


@patch("spotytoytm.clients.youtube.google_auth_httplib2.AuthorizedHttp")
@patch("spotytoytm.clients.youtube.build")
class TestYouTubeClientCancel(unittest.TestCase):
    def make_client(self, mock_build, cancel):
        self.service = MagicMock()
        mock_build.return_value = self.service
        return YouTubeClient(MagicMock(), timeout=5, pause=0, cancel=cancel)

    def test_cancel_interrupts_rate_limit_wait(self, mock_build, _http):
        cancel = CancelToken()
        client = self.make_client(mock_build, cancel)
        execute = self.service.search().list().execute
        execute.side_effect = http_error(403, "rateLimitExceeded")

        timer = threading.Timer(0.05, cancel.cancel, args=("interrupted by SIGINT",))
        timer.start()
        started = time.monotonic()
        try:
            with self.assertRaises(MigrationCancelledError):
                client.search("q")
        finally:
            timer.cancel()

        self.assertLess(time.monotonic() - started, 5)
        self.assertEqual(execute.call_count, 1)

    def test_cancel_during_server_error_backoff(self, mock_build, _http):
        cancel = CancelToken()
        client = self.make_client(mock_build, cancel)
        execute = self.service.search().list().execute

        def fail_and_cancel():
            cancel.cancel("interrupted by SIGTERM")
            raise http_error(503)
        execute.side_effect = fail_and_cancel

        with self.assertRaises(MigrationCancelledError):
            client.search("q")
        self.assertEqual(execute.call_count, 1)

    def test_cancelled_token_stops_before_request(self, mock_build, _http):
        cancel = CancelToken()
        cancel.cancel()
        client = self.make_client(mock_build, cancel)

        with self.assertRaises(MigrationCancelledError):
            client.create_playlist("Road Trip", "Migrated from Spotify")
        self.service.playlists().insert().execute.assert_not_called()


class TestLoadCredentials(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp)

    @patch.dict("os.environ", {"GOOGLE_CLIENT_ID": "cid", "GOOGLE_CLIENT_SECRET": "csecret"})
    def test_refresh_token_with_env_client(self):
        creds = load_credentials(self.tmp, self.tmp / "missing.json", refresh_token="rt")
        self.assertEqual(creds.refresh_token, "rt")
        self.assertEqual(creds.client_id, "cid")

    @patch.dict("os.environ", {}, clear=True)
    def test_refresh_token_with_secrets_file(self):
        secrets = self.tmp / "client_secret.json"
        secrets.write_text(json.dumps({"installed": {"client_id": "fid", "client_secret": "fs"}}))
        creds = load_credentials(self.tmp, secrets, refresh_token="rt")
        self.assertEqual(creds.client_id, "fid")

    @patch.dict("os.environ", {}, clear=True)
    def test_missing_everything(self):
        with self.assertRaises(YouTubeAuthError):
            load_credentials(self.tmp, self.tmp / "missing.json")
        with self.assertRaises(YouTubeAuthError):
            load_credentials(self.tmp, self.tmp / "missing.json", refresh_token="rt")

    @patch.dict("os.environ", {}, clear=True)
    @patch("spotytoytm.clients.youtube.InstalledAppFlow")
    def test_interactive_login_has_timeout(self, mock_flow):
        secrets = self.tmp / "client_secret.json"
        secrets.write_text(json.dumps({"installed": {"client_id": "fid", "client_secret": "fs"}}))
        creds = MagicMock()
        creds.to_json.return_value = "{}"
        mock_flow.from_client_secrets_file.return_value.run_local_server.return_value = creds

        self.assertIs(load_credentials(self.tmp, secrets), creds)
        kwargs = mock_flow.from_client_secrets_file.return_value.run_local_server.call_args.kwargs
        self.assertEqual(kwargs["timeout_seconds"], LOGIN_TIMEOUT)


if __name__ == "__main__":
    unittest.main()
