"""Remote lookups for podcasts and episodes missing from local storage.

Two endpoints are used:
- the podcast cache server, to find a podcast together with one episode
  (``GET /mobile/podcast/findbyepisode/{podcast}/{episode}``)
- the sync API, to list a podcast's episodes with the user's sync info
  (``POST /user/podcast/episodes``)

Both speak JSON. Every failure surfaces as :class:`RemoteLookupError` so the
resolver can drop the item and carry on.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from yearsync.protocols import AuthError, RemoteLookupError, TokenProvider
from yearsync.types import EpisodeRecord, PodcastRecord, PodcastStub

logger = logging.getLogger(__name__)


class HttpRemoteLookup:
    """Fetch podcast stubs and episode listings over HTTP.

    Args:
        server_url: Sync API base url.
        cache_url: Podcast cache server base url.
        token_provider: Supplies the bearer token for the sync API.
        client: Optional pre-built httpx client; must be safe to share across
            threads (httpx.Client is).
        timeout: Request timeout in seconds; None blocks indefinitely.
    """

    def __init__(
        self,
        server_url: str,
        cache_url: str,
        token_provider: TokenProvider,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.cache_url = cache_url.rstrip("/")
        self._tokens = token_provider
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def _json(self, response: httpx.Response, what: str) -> Dict[str, Any]:
        if response.status_code != 200:
            raise RemoteLookupError(f"{what}: server returned status {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteLookupError(f"{what}: invalid JSON response") from e
        if not isinstance(data, dict):
            raise RemoteLookupError(f"{what}: expected a JSON object")
        return data

    def fetch_podcast_and_episode_stub(self, episode_uuid: str, podcast_uuid: str) -> PodcastStub:
        what = f"podcast {podcast_uuid} / episode {episode_uuid}"
        url = f"{self.cache_url}/mobile/podcast/findbyepisode/{podcast_uuid}/{episode_uuid}"
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            raise RemoteLookupError(f"{what}: {e}") from e

        data = self._json(response, what)
        podcast_data = data.get("podcast")
        if not isinstance(podcast_data, dict):
            raise RemoteLookupError(f"{what}: response has no podcast")
        try:
            podcast = PodcastRecord.from_dict(podcast_data)
        except ValueError as e:
            raise RemoteLookupError(f"{what}: {e}") from e

        episode = None
        for item in podcast_data.get("episodes") or []:
            if isinstance(item, dict) and item.get("uuid") == episode_uuid:
                try:
                    episode = EpisodeRecord.from_dict(item, podcast.uuid)
                except (TypeError, ValueError) as e:
                    raise RemoteLookupError(f"{what}: {e}") from e
                break
        if episode is None:
            logger.debug(f"Lookup for {what} returned no matching episode")
        return PodcastStub(podcast=podcast, episode=episode)

    def fetch_episode_listing(self, podcast_uuid: str) -> List[EpisodeRecord]:
        what = f"episode listing for podcast {podcast_uuid}"
        try:
            token = self._tokens.acquire_token()
        except AuthError as e:
            raise RemoteLookupError(f"{what}: {e}") from e

        url = f"{self.server_url}/user/podcast/episodes"
        try:
            response = self._client.post(
                url,
                json={"uuid": podcast_uuid},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise RemoteLookupError(f"{what}: {e}") from e

        data = self._json(response, what)
        records = []
        for item in data.get("episodes") or []:
            if not isinstance(item, dict):
                continue
            try:
                records.append(EpisodeRecord.from_dict(item, podcast_uuid))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed entry in {what}: {e}")
        return records

    def close(self):
        if self._owns_client:
            self._client.close()
