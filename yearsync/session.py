"""Reconciliation session: one probe-then-pull sync of a year's history.

State machine::

    PENDING -> ACQUIRE_TOKEN -> PROBE -> PULL -> RESOLVE -> MERGE -> DONE
                     |            |        |
                     +------------+--------+--> FAILED

The probe asks the server only for the number of episodes played in the
year. If that does not exceed the local count the session ends successfully
without transferring any history. Otherwise the same request is re-sent
without the count flag and the returned changes are resolved and merged.

``sync()`` never raises for sync failures; it returns a boolean and keeps
the details on ``outcome``.
"""

import logging
from typing import Callable, Optional

from yearsync.cache import ExistenceCache
from yearsync.config import API_VERSION
from yearsync.merge import BulkMerge
from yearsync.protocols import (
    HistoryStorage,
    RemoteLookup,
    TokenProvider,
    Transport,
    TransportError,
    YearSyncError,
)
from yearsync.resolver import ConcurrentResolver
from yearsync.transport import HTTP_OK
from yearsync.types import SessionState, SyncOutcome, SyncRequest, current_time_millis
from yearsync.wire import decode_diff, decode_probe, encode_request

logger = logging.getLogger(__name__)


class ReconciliationSession:
    """A single-use sync attempt for one year.

    Args:
        token_provider: Source of the API token (acquired once per session).
        transport: Posts encoded requests to ``url``.
        storage: Local podcast/episode store.
        remote: Lookup client for missing podcasts/episodes and listings.
        url: The year-history endpoint.
        api_version: Protocol version sent in every request.
        max_workers: Resolver concurrency cap; None is one worker per item.
        apply_remote_changes: When False the diff is downloaded but not applied.
        clock: Returns the device time in epoch milliseconds.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        transport: Transport,
        storage: HistoryStorage,
        remote: RemoteLookup,
        url: str,
        api_version: int = API_VERSION,
        max_workers: Optional[int] = None,
        apply_remote_changes: bool = True,
        clock: Callable[[], int] = current_time_millis,
    ):
        self._tokens = token_provider
        self._transport = transport
        self._storage = storage
        self._url = url
        self._api_version = api_version
        self._apply_remote_changes = apply_remote_changes
        self._clock = clock
        self._resolver = ConcurrentResolver(storage, remote, max_workers=max_workers)
        self._merge = BulkMerge(storage)
        self._token: Optional[str] = None
        self.outcome: Optional[SyncOutcome] = None

    @property
    def state(self) -> SessionState:
        return self.outcome.state if self.outcome else SessionState.PENDING

    def sync(self, year: int) -> bool:
        """Reconcile local history for ``year`` with the server.

        Returns:
            True if local history is caught up (or was brought up to date).

        Raises:
            RuntimeError: If this session has already been used.
        """
        if self.outcome is not None:
            raise RuntimeError("ReconciliationSession is single-use; create a new one")
        self.outcome = SyncOutcome(year=year)

        # Session-scoped caches, dropped when this call returns
        episode_cache = ExistenceCache(self._storage.episode_exists, "episode")
        podcast_cache = ExistenceCache(self._podcast_exists, "podcast")

        try:
            self._run(year, episode_cache, podcast_cache)
        except YearSyncError as e:
            logger.error(
                f"Year history sync for {year} failed during {self.state.value}: "
                f"{type(e).__name__}: {e}"
            )
            self._finish(False, f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error during year history sync ({self.state.value})")
            self._finish(False, f"unexpected: {e}")
        return self.outcome.success

    def _podcast_exists(self, uuid: str) -> bool:
        return self._storage.find_podcast(uuid, include_unsubscribed=True) is not None

    # === Phases ===

    def _run(self, year: int, episode_cache: ExistenceCache, podcast_cache: ExistenceCache):
        outcome = self.outcome

        self._enter(SessionState.ACQUIRE_TOKEN)
        self._token = self._tokens.acquire_token()

        self._enter(SessionState.PROBE)
        probe = decode_probe(self._post(year, count_only=True))
        outcome.remote_count = probe.count
        outcome.local_count = self._storage.count_interactions_for_year(year)

        if probe.count <= outcome.local_count:
            # A lower remote count is local-only activity, not a divergence
            logger.debug(
                f"Year {year} up to date (remote={probe.count}, local={outcome.local_count})"
            )
            self._finish(True)
            return

        logger.info(
            f"Year {year}: {probe.count - outcome.local_count} episodes missing, pulling history"
        )
        self._enter(SessionState.PULL)
        diff = decode_diff(self._post(year, count_only=False))
        outcome.changes = len(diff.changes)

        if not self._apply_remote_changes:
            logger.info(f"Downloaded {len(diff.changes)} changes; applying remote changes is disabled")
            self._finish(True)
            return

        self._enter(SessionState.RESOLVE)
        resolved = self._resolver.resolve(diff.changes, episode_cache, podcast_cache)
        outcome.missing = resolved.missing
        outcome.resolved = resolved.resolved
        outcome.refreshed_podcasts = len(resolved.listings)
        outcome.errors.extend(resolved.errors)

        self._enter(SessionState.MERGE)
        merged = self._merge.merge(resolved.listings)
        outcome.merged_episodes = merged.episodes
        outcome.errors.extend(merged.errors)

        self._finish(True)

    def _post(self, year: int, count_only: bool) -> bytes:
        request = SyncRequest(
            device_time_millis=self._clock(),
            version=self._api_version,
            year=year,
            count_only=count_only,
        )
        body = encode_request(request)
        data, status = self._transport.post(self._url, self._token, body)
        self.outcome.round_trips += 1
        if status != HTTP_OK:
            raise TransportError(f"Unable to sync with server, got status {status}", status)
        return data

    # === State ===

    def _enter(self, state: SessionState):
        if self.outcome.state.terminal:
            raise RuntimeError(f"Session already finished in state {self.outcome.state.value}")
        logger.debug(f"Session {self.outcome.year}: {self.outcome.state.value} -> {state.value}")
        self.outcome.state = state

    def _finish(self, success: bool, error: Optional[str] = None):
        if self.outcome.state.terminal:
            return
        self.outcome.success = success
        self.outcome.state = SessionState.DONE if success else SessionState.FAILED
        if error:
            self.outcome.errors.append(error)
