"""SQLite storage backend for yearsync.

Local-first storage of podcasts and episodes with:
- a per-operation connection, so worker threads can read and upsert
  concurrently (WAL journal, busy timeout)
- idempotent upserts keyed by episode uuid
"""

import contextlib
import logging
import sqlite3
from datetime import MAXYEAR, MINYEAR, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from yearsync.config import get_yearsync_home
from yearsync.protocols import MergeError, StorageError
from yearsync.types import EpisodeRecord, PodcastRecord, parse_datetime, to_iso, year_bounds

from .schema import init_db

logger = logging.getLogger(__name__)

_EPISODE_UPSERT = """
INSERT INTO episodes (
    uuid, podcast_uuid, title, published_date, duration,
    playing_status, played_up_to, starred, archived
) VALUES (?, ?, ?, ?, ?, ?, ?, COALESCE(?, 0), COALESCE(?, 0))
ON CONFLICT(uuid) DO UPDATE SET
    podcast_uuid = excluded.podcast_uuid,
    title = COALESCE(?, episodes.title),
    published_date = COALESCE(?, episodes.published_date),
    duration = COALESCE(?, episodes.duration),
    playing_status = COALESCE(?, episodes.playing_status),
    played_up_to = COALESCE(?, episodes.played_up_to),
    starred = COALESCE(?, episodes.starred),
    archived = COALESCE(?, episodes.archived)
"""


def _bool_or_none(value: Optional[bool]) -> Optional[int]:
    return None if value is None else int(bool(value))


def _row_to_podcast(row: sqlite3.Row) -> PodcastRecord:
    return PodcastRecord(
        uuid=row["uuid"],
        title=row["title"],
        author=row["author"],
        feed_url=row["feed_url"],
        subscribed=bool(row["subscribed"]),
        added_at=parse_datetime(row["added_at"]),
    )


def _row_to_episode(row: sqlite3.Row) -> EpisodeRecord:
    return EpisodeRecord(
        uuid=row["uuid"],
        podcast_uuid=row["podcast_uuid"],
        title=row["title"],
        published_date=parse_datetime(row["published_date"]),
        duration=row["duration"],
        playing_status=row["playing_status"],
        played_up_to=row["played_up_to"],
        starred=bool(row["starred"]),
        archived=bool(row["archived"]),
        last_interaction_date=parse_datetime(row["last_playback_interaction_date"]),
    )


class SQLiteHistoryStorage:
    """SQLite-based local storage of podcasts and listening history.

    Args:
        db_path: Database file. Defaults to <data dir>/yearsync.db.
    """

    BUSY_TIMEOUT_MS = 5000

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else get_yearsync_home() / "yearsync.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            init_db(conn)
        logger.debug(f"SQLiteHistoryStorage ready at {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.BUSY_TIMEOUT_MS / 1000)
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={self.BUSY_TIMEOUT_MS}")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self):
        """Connections are per-operation; kept for API symmetry."""
        pass

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # === Reads ===

    def count_interactions_for_year(self, year: int) -> int:
        """Number of episodes whose last playback interaction falls in ``year`` (UTC)."""
        if not MINYEAR <= year <= MAXYEAR:
            # No stored datetime can fall in this year
            logger.debug(f"Year {year} is outside the calendar range; no local interactions")
            return 0
        start, end = year_bounds(year)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """SELECT COUNT(*) FROM episodes
                       WHERE last_playback_interaction_date >= ?
                         AND last_playback_interaction_date < ?""",
                    (start, end),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count interactions for {year}: {e}") from e
        return int(row[0])

    def episode_exists(self, uuid: str) -> bool:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT 1 FROM episodes WHERE uuid = ?", (uuid,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to check episode {uuid}: {e}") from e
        return row is not None

    def find_podcast(self, uuid: str, include_unsubscribed: bool = False) -> Optional[PodcastRecord]:
        query = "SELECT * FROM podcasts WHERE uuid = ?"
        if not include_unsubscribed:
            query += " AND subscribed = 1"
        try:
            with self._connect() as conn:
                row = conn.execute(query, (uuid,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to look up podcast {uuid}: {e}") from e
        return _row_to_podcast(row) if row else None

    def get_episode(self, uuid: str) -> Optional[EpisodeRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM episodes WHERE uuid = ?", (uuid,)).fetchone()
        return _row_to_episode(row) if row else None

    def get_stats(self, year: Optional[int] = None) -> Dict[str, Any]:
        """Row counts for status reporting."""
        with self._connect() as conn:
            podcasts = conn.execute("SELECT COUNT(*) FROM podcasts").fetchone()[0]
            episodes = conn.execute("SELECT COUNT(*) FROM episodes").fetchone()[0]
        stats = {"podcasts": podcasts, "episodes": episodes}
        if year is not None:
            stats["interactions"] = self.count_interactions_for_year(year)
        return stats

    # === Writes ===

    def record_interaction_timestamp(self, episode_uuid: str, when: datetime) -> bool:
        """Set an episode's last playback interaction date.

        Writing the same value twice leaves the row unchanged.

        Returns:
            True if the episode exists and was updated.
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """UPDATE episodes
                       SET last_playback_interaction_date = ?
                       WHERE uuid = ?""",
                    (to_iso(when), episode_uuid),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to record interaction for {episode_uuid}: {e}") from e
        if cursor.rowcount == 0:
            logger.debug(f"No local episode {episode_uuid} to record an interaction on")
        return cursor.rowcount > 0

    def save_podcast_stub(self, podcast: PodcastRecord) -> None:
        """Insert a podcast unless one with that uuid already exists."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT OR IGNORE INTO podcasts
                       (uuid, title, author, feed_url, subscribed, added_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        podcast.uuid,
                        podcast.title,
                        podcast.author,
                        podcast.feed_url,
                        int(podcast.subscribed),
                        to_iso(podcast.added_at) if podcast.added_at else self._now(),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save podcast {podcast.uuid}: {e}") from e

    def save_episode_stub(self, episode: EpisodeRecord) -> None:
        """Insert an episode unless one with that uuid already exists."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT OR IGNORE INTO episodes
                       (uuid, podcast_uuid, title, published_date, duration,
                        playing_status, played_up_to, starred, archived)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        episode.uuid,
                        episode.podcast_uuid,
                        episode.title,
                        to_iso(episode.published_date) if episode.published_date else None,
                        episode.duration,
                        episode.playing_status,
                        episode.played_up_to,
                        int(bool(episode.starred)),
                        int(bool(episode.archived)),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save episode {episode.uuid}: {e}") from e

    def bulk_upsert_episodes(self, podcast_uuid: str, records: Sequence[EpisodeRecord]) -> int:
        """Upsert a podcast's episode listing keyed by episode uuid.

        Fields that are None on a record keep their stored value. The batch
        runs in one transaction.

        Returns:
            Number of records written.

        Raises:
            MergeError: If the batch could not be written.
        """
        if not records:
            return 0
        rows = []
        for record in records:
            published = to_iso(record.published_date) if record.published_date else None
            starred = _bool_or_none(record.starred)
            archived = _bool_or_none(record.archived)
            rows.append(
                (
                    record.uuid,
                    podcast_uuid,
                    record.title,
                    published,
                    record.duration,
                    record.playing_status,
                    record.played_up_to,
                    starred,
                    archived,
                    # ON CONFLICT parameters
                    record.title,
                    published,
                    record.duration,
                    record.playing_status,
                    record.played_up_to,
                    starred,
                    archived,
                )
            )
        try:
            with self._connect() as conn:
                conn.executemany(_EPISODE_UPSERT, rows)
        except sqlite3.Error as e:
            raise MergeError(f"Failed to upsert {len(rows)} episodes for {podcast_uuid}: {e}") from e
        return len(rows)
