"""HTTP transport and token provider for the sync API."""

import logging
from typing import Optional, Tuple

import httpx

from yearsync.protocols import AuthError, TransportError

logger = logging.getLogger(__name__)

HTTP_OK = 200


class StaticTokenProvider:
    """Hands out a pre-issued bearer token read from configuration."""

    def __init__(self, token: Optional[str]):
        self._token = token

    def acquire_token(self) -> str:
        if not self._token or not self._token.strip():
            raise AuthError("No auth token configured (set YEARSYNC_AUTH_TOKEN)")
        return self._token.strip()


class HttpTransport:
    """POSTs binary payloads with a bearer token.

    Args:
        client: Optional pre-built httpx client (tests inject one with a
            MockTransport). Owned by the caller when given.
        timeout: Request timeout in seconds; None blocks indefinitely.
    """

    def __init__(self, client: Optional[httpx.Client] = None, timeout: Optional[float] = None):
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def post(self, url: str, token: str, body: bytes) -> Tuple[bytes, int]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/octet-stream",
            "Accept": "application/octet-stream",
        }
        logger.debug(f"POST {url} ({len(body)} bytes)")
        try:
            response = self._client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e
        return response.content, response.status_code

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
