"""
yearsync Protocol Definitions
=============================

The interface contracts between the reconciliation engine and its
collaborators.

Collaborators:
- TokenProvider:  hands out a bearer token for the sync API.
- Transport:      posts encoded request bytes, returns (body, status).
- HistoryStorage: local podcast/episode store with existence checks and upserts.
- RemoteLookup:   fetches podcast/episode stubs and full episode listings.

Error handling philosophy:
- Phase failures (AuthError, TransportError, CodecError) end a session with
  ``success = False``
- Item failures (RemoteLookupError, StorageError during resolution) are
  logged and the item is dropped; the session continues
- Merge failures (MergeError) are logged; the session still succeeds
- Nothing here retries; callers re-run a sync later
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from yearsync.types import EpisodeRecord, PodcastRecord, PodcastStub

# =============================================================================
# ERRORS
# =============================================================================


class YearSyncError(Exception):
    """Base for all yearsync errors."""

    pass


class AuthError(YearSyncError):
    """Raised when no API token could be acquired."""

    pass


class TransportError(YearSyncError):
    """Raised on network failure while talking to the sync API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CodecError(YearSyncError):
    """Base for wire encode/decode failures."""

    pass


class EncodeError(CodecError):
    """Raised when a request cannot be serialized."""

    pass


class DecodeError(CodecError):
    """Raised when response bytes are not a valid message."""

    pass


class RemoteLookupError(YearSyncError):
    """Raised when a single podcast/episode lookup fails. Recovered per item."""

    pass


class StorageError(YearSyncError):
    """Raised by storage backends on write or read failures."""

    pass


class MergeError(StorageError):
    """Raised when a bulk upsert of an episode listing fails."""

    pass


# =============================================================================
# COLLABORATORS
# =============================================================================


@runtime_checkable
class TokenProvider(Protocol):
    def acquire_token(self) -> str:
        """Return a bearer token.

        Raises:
            AuthError: If no token is available.
        """
        ...


@runtime_checkable
class Transport(Protocol):
    def post(self, url: str, token: str, body: bytes) -> Tuple[bytes, int]:
        """POST ``body`` and return ``(response_bytes, status_code)``.

        Non-2xx statuses are returned, not raised; the caller decides.

        Raises:
            TransportError: On connection or protocol failure.
        """
        ...


@runtime_checkable
class HistoryStorage(Protocol):
    """Local store. Must tolerate concurrent reads and upserts from worker threads."""

    def count_interactions_for_year(self, year: int) -> int: ...

    def episode_exists(self, uuid: str) -> bool: ...

    def record_interaction_timestamp(self, episode_uuid: str, when: datetime) -> bool: ...

    def bulk_upsert_episodes(self, podcast_uuid: str, records: Sequence[EpisodeRecord]) -> int: ...

    def find_podcast(
        self, uuid: str, include_unsubscribed: bool = False
    ) -> Optional[PodcastRecord]: ...

    def save_podcast_stub(self, podcast: PodcastRecord) -> None: ...

    def save_episode_stub(self, episode: EpisodeRecord) -> None: ...


@runtime_checkable
class RemoteLookup(Protocol):
    def fetch_podcast_and_episode_stub(self, episode_uuid: str, podcast_uuid: str) -> PodcastStub:
        """Raises RemoteLookupError on failure."""
        ...

    def fetch_episode_listing(self, podcast_uuid: str) -> List[EpisodeRecord]:
        """Raises RemoteLookupError on failure."""
        ...
