"""Tests for the HTTP transport, token provider and remote lookups.

HTTP is served by httpx.MockTransport; nothing touches the network.
"""

import json

import httpx
import pytest

from yearsync.protocols import AuthError, RemoteLookup, RemoteLookupError, Transport, TransportError
from yearsync.remote import HttpRemoteLookup
from yearsync.testing import FakeTokens
from yearsync.transport import HttpTransport, StaticTokenProvider

SERVER = "https://api.test"
CACHE = "https://cache.test"


def client_for(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


# ============================================================================
# StaticTokenProvider
# ============================================================================


class TestStaticTokenProvider:
    def test_returns_token(self):
        assert StaticTokenProvider(" abc ").acquire_token() == "abc"

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing_token(self, token):
        with pytest.raises(AuthError):
            StaticTokenProvider(token).acquire_token()


# ============================================================================
# HttpTransport
# ============================================================================


class TestHttpTransport:
    def test_post_sends_body_and_bearer(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["type"] = request.headers["Content-Type"]
            seen["body"] = request.content
            return httpx.Response(200, content=b"\x08\x05")

        transport = HttpTransport(client=client_for(handler))
        data, status = transport.post(f"{SERVER}/history/year", "tok", b"\x18\xe6\x0f")

        assert (data, status) == (b"\x08\x05", 200)
        assert seen == {
            "method": "POST",
            "url": f"{SERVER}/history/year",
            "auth": "Bearer tok",
            "type": "application/octet-stream",
            "body": b"\x18\xe6\x0f",
        }
        assert isinstance(transport, Transport)

    def test_error_status_is_returned_not_raised(self):
        transport = HttpTransport(client=client_for(lambda r: httpx.Response(500, content=b"oops")))

        assert transport.post(f"{SERVER}/history/year", "tok", b"") == (b"oops", 500)

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = HttpTransport(client=client_for(handler))

        with pytest.raises(TransportError):
            transport.post(f"{SERVER}/history/year", "tok", b"")

    def test_injected_client_not_closed(self):
        client = client_for(lambda r: httpx.Response(200))
        with HttpTransport(client=client):
            pass
        assert not client.is_closed


# ============================================================================
# HttpRemoteLookup
# ============================================================================


STUB_JSON = {
    "podcast": {
        "uuid": "p1",
        "title": "A Show",
        "author": "Someone",
        "url": "https://feeds.test/a.xml",
        "episodes": [
            {"uuid": "other", "title": "Other"},
            {
                "uuid": "e1",
                "title": "Pilot",
                "published": "2022-01-02T03:04:05Z",
                "duration": 1800,
            },
        ],
    }
}


class TestFetchStub:
    def test_parses_podcast_and_episode(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=STUB_JSON)

        remote = HttpRemoteLookup(SERVER, CACHE, FakeTokens(), client=client_for(handler))
        stub = remote.fetch_podcast_and_episode_stub("e1", "p1")

        assert seen["url"] == f"{CACHE}/mobile/podcast/findbyepisode/p1/e1"
        assert stub.podcast.title == "A Show"
        assert stub.podcast.feed_url == "https://feeds.test/a.xml"
        assert stub.podcast.subscribed is False
        assert stub.episode.uuid == "e1"
        assert stub.episode.podcast_uuid == "p1"
        assert stub.episode.title == "Pilot"
        assert stub.episode.duration == 1800.0
        assert stub.episode.published_date.year == 2022
        assert isinstance(remote, RemoteLookup)

    def test_episode_not_in_response(self):
        body = {"podcast": {"uuid": "p1", "title": "A Show", "episodes": []}}
        remote = HttpRemoteLookup(
            SERVER, CACHE, FakeTokens(), client=client_for(lambda r: httpx.Response(200, json=body))
        )

        stub = remote.fetch_podcast_and_episode_stub("e1", "p1")

        assert stub.podcast.uuid == "p1"
        assert stub.episode is None

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(404),
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json=[1, 2]),
            httpx.Response(200, json={"status": "ok"}),
            httpx.Response(200, json={"podcast": {"title": "no uuid"}}),
        ],
    )
    def test_bad_responses(self, response):
        remote = HttpRemoteLookup(SERVER, CACHE, FakeTokens(), client=client_for(lambda r: response))

        with pytest.raises(RemoteLookupError):
            remote.fetch_podcast_and_episode_stub("e1", "p1")

    def test_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        remote = HttpRemoteLookup(SERVER, CACHE, FakeTokens(), client=client_for(handler))

        with pytest.raises(RemoteLookupError):
            remote.fetch_podcast_and_episode_stub("e1", "p1")


class TestFetchListing:
    def test_posts_uuid_with_token(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "episodes": [
                        {"uuid": "e1", "playingStatus": 3, "playedUpTo": 1200, "starred": True},
                        {"uuid": "e2", "playing_status": 1, "isDeleted": True, "starred": "false"},
                    ]
                },
            )

        remote = HttpRemoteLookup(SERVER, CACHE, FakeTokens("tok"), client=client_for(handler))
        records = remote.fetch_episode_listing("p1")

        assert seen["url"] == f"{SERVER}/user/podcast/episodes"
        assert seen["auth"] == "Bearer tok"
        assert seen["body"] == {"uuid": "p1"}
        assert [r.uuid for r in records] == ["e1", "e2"]
        assert records[0].playing_status == 3
        assert records[0].played_up_to == 1200.0
        assert records[0].starred is True
        assert records[0].title is None
        assert records[1].archived is True
        assert records[1].starred is False
        assert all(r.podcast_uuid == "p1" for r in records)

    def test_malformed_entries_are_skipped(self):
        body = {"episodes": [{"title": "no uuid"}, "junk", {"uuid": "e2", "duration": "long"}, {"uuid": "e3"}]}
        remote = HttpRemoteLookup(
            SERVER, CACHE, FakeTokens(), client=client_for(lambda r: httpx.Response(200, json=body))
        )

        assert [r.uuid for r in remote.fetch_episode_listing("p1")] == ["e3"]

    def test_missing_episodes_key(self):
        remote = HttpRemoteLookup(
            SERVER, CACHE, FakeTokens(), client=client_for(lambda r: httpx.Response(200, json={}))
        )

        assert remote.fetch_episode_listing("p1") == []

    def test_auth_failure(self):
        calls = []
        remote = HttpRemoteLookup(
            SERVER, CACHE, FakeTokens(None), client=client_for(lambda r: calls.append(r))
        )

        with pytest.raises(RemoteLookupError):
            remote.fetch_episode_listing("p1")
        assert calls == []

    def test_server_error(self):
        remote = HttpRemoteLookup(
            SERVER, CACHE, FakeTokens(), client=client_for(lambda r: httpx.Response(503))
        )

        with pytest.raises(RemoteLookupError):
            remote.fetch_episode_listing("p1")
