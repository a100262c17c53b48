"""Bulk merge of refreshed episode listings into local storage."""

import logging
from typing import Mapping, Sequence

from yearsync.protocols import HistoryStorage, StorageError
from yearsync.types import EpisodeRecord, MergeResult

logger = logging.getLogger(__name__)


class BulkMerge:
    """Upsert episode listings podcast by podcast.

    Writes are keyed by episode uuid, so merging the same listings twice
    leaves storage unchanged. There is no rollback across podcasts: if one
    podcast's batch fails, the batches already written stay written and the
    remaining podcasts are still attempted.
    """

    def __init__(self, storage: HistoryStorage):
        self._storage = storage

    def merge(self, listings: Mapping[str, Sequence[EpisodeRecord]]) -> MergeResult:
        result = MergeResult()
        for podcast_uuid, records in listings.items():
            if not records:
                logger.debug(f"Empty listing for podcast {podcast_uuid}; nothing to merge")
                continue
            try:
                written = self._storage.bulk_upsert_episodes(podcast_uuid, records)
            except StorageError as e:
                message = f"podcast {podcast_uuid}: {e}"
                logger.error(f"Merge failed for {message}")
                result.errors.append(message)
                continue
            result.podcasts += 1
            result.episodes += written

        if listings:
            logger.info(
                f"Merged {result.episodes} episodes across {result.podcasts} podcasts"
                + (f" ({len(result.errors)} failed)" if result.errors else "")
            )
        return result
