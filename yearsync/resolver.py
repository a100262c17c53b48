"""Concurrent resolution of history changes that reference missing episodes.

The resolver runs two fork/join rounds on a thread pool:

1. For every change whose episode is not stored locally: fetch a stub from
   the remote, store the podcast (if absent) and the episode, record the
   interaction date, and mark the podcast for a listing refresh.
2. For every podcast marked in round 1: fetch its full episode listing.

Each round blocks until every unit of work has finished. A failing unit is
logged and recorded in ``ResolveResult.errors``; it never aborts the round.
"""

import logging
import threading
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence, Set

from yearsync.cache import ExistenceCache
from yearsync.protocols import HistoryStorage, RemoteLookup, StorageError
from yearsync.types import EpisodeRecord, HistoryChange, ResolveResult

logger = logging.getLogger(__name__)


class ConcurrentResolver:
    """Resolve missing podcasts/episodes and collect listings to merge.

    Args:
        storage: Local store; must accept concurrent calls.
        remote: Remote lookup client; must accept concurrent calls.
        max_workers: Cap on in-flight units per round. None runs one worker
            per unit of work.
    """

    def __init__(
        self,
        storage: HistoryStorage,
        remote: RemoteLookup,
        max_workers: Optional[int] = None,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._storage = storage
        self._remote = remote
        self._max_workers = max_workers

    def resolve(
        self,
        changes: Sequence[HistoryChange],
        episode_cache: ExistenceCache,
        podcast_cache: ExistenceCache,
    ) -> ResolveResult:
        """Run both rounds and return what should be merged."""
        result = ResolveResult()
        missing = self.partition(changes, episode_cache, result.errors)
        result.missing = len(missing)
        if not missing:
            logger.info(f"All {len(changes)} changed episodes already exist locally")
            return result

        logger.info(f"Resolving {len(missing)} missing episodes")
        refresh, resolved = self.resolve_missing(missing, podcast_cache, result.errors)
        result.resolved = resolved
        result.refresh = frozenset(refresh)
        result.listings = self.fetch_listings(refresh, result.errors)
        return result

    # === Partition ===

    def partition(
        self,
        changes: Sequence[HistoryChange],
        episode_cache: ExistenceCache,
        errors: Optional[List[str]] = None,
    ) -> List[HistoryChange]:
        """Return the changes whose episode is not stored locally.

        Server order is kept. Repeated changes for the same episode collapse
        into one, carrying the latest ``modified_at``.
        """
        missing: Dict[str, HistoryChange] = {}
        for change in changes:
            if change.episode_uuid in missing:
                current = missing[change.episode_uuid]
                if change.modified_at_millis > current.modified_at_millis:
                    missing[change.episode_uuid] = change
                continue
            try:
                if episode_cache.exists(change.episode_uuid):
                    continue
            except StorageError as e:
                message = f"episode {change.episode_uuid}: existence check failed: {e}"
                logger.warning(message)
                if errors is not None:
                    errors.append(message)
                continue
            missing[change.episode_uuid] = change
        return list(missing.values())

    # === Fork/join rounds ===

    def _workers_for(self, count: int) -> int:
        if self._max_workers is None:
            return max(count, 1)
        return max(min(self._max_workers, count), 1)

    def _fork_join(self, fn: Callable, items: Sequence, describe: Callable) -> List[str]:
        """Run ``fn`` over ``items`` concurrently and wait for all of them.

        Returns:
            One message per failed item, in submission order.
        """
        if not items:
            return []
        with ThreadPoolExecutor(
            max_workers=self._workers_for(len(items)), thread_name_prefix="yearsync"
        ) as pool:
            futures = [(item, pool.submit(fn, item)) for item in items]
            wait([future for _, future in futures], return_when=ALL_COMPLETED)

        failures = []
        for item, future in futures:
            exc = future.exception()
            if exc is not None:
                message = f"{describe(item)}: {exc}"
                logger.warning(f"Lookup failed for {message}")
                failures.append(message)
        return failures

    def resolve_missing(
        self,
        missing: Sequence[HistoryChange],
        podcast_cache: ExistenceCache,
        errors: Optional[List[str]] = None,
    ):
        """Create stubs and record interaction dates for missing episodes.

        Returns:
            ``(refresh, resolved)``: the podcasts to refresh and how many
            changes were fully applied.
        """
        refresh: Set[str] = set()
        lock = threading.Lock()
        resolved = 0

        def resolve_one(change: HistoryChange):
            nonlocal resolved
            # An unrepresentable timestamp must fail before anything is written
            when = change.interaction_date
            stub = self._remote.fetch_podcast_and_episode_stub(
                change.episode_uuid, change.podcast_uuid
            )
            if not podcast_cache.exists(change.podcast_uuid):
                self._storage.save_podcast_stub(stub.podcast)
            episode = stub.episode or EpisodeRecord(
                uuid=change.episode_uuid, podcast_uuid=change.podcast_uuid
            )
            self._storage.save_episode_stub(episode)
            self._storage.record_interaction_timestamp(change.episode_uuid, when)
            with lock:
                refresh.add(change.podcast_uuid)
                resolved += 1

        failures = self._fork_join(
            resolve_one,
            missing,
            lambda c: f"episode {c.episode_uuid} (podcast {c.podcast_uuid})",
        )
        if errors is not None:
            errors.extend(failures)
        return refresh, resolved

    def fetch_listings(
        self, podcasts: Set[str], errors: Optional[List[str]] = None
    ) -> Dict[str, List[EpisodeRecord]]:
        """Fetch the full episode listing of every podcast in ``podcasts``."""
        listings: Dict[str, List[EpisodeRecord]] = {}
        lock = threading.Lock()

        def fetch_one(podcast_uuid: str):
            episodes = self._remote.fetch_episode_listing(podcast_uuid)
            with lock:
                listings[podcast_uuid] = list(episodes)

        failures = self._fork_join(fetch_one, sorted(podcasts), lambda p: f"podcast {p} listing")
        if errors is not None:
            errors.extend(failures)
        return listings
