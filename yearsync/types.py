"""
Shared types for yearsync.

These dataclasses are the vocabulary passed between the session, the
resolver, the storage backend and the remote collaborators. Wire messages
are decoded into these types by :mod:`yearsync.wire`; nothing outside the
codec touches protobuf objects.
"""

import time
from dataclasses import dataclass, field
from datetime import MAXYEAR, MINYEAR, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# === Shared Utility Functions ===


def current_time_millis() -> int:
    """Current UTC wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def millis_to_datetime(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime.

    Sub-second precision is dropped; interaction dates are stored with
    whole-second resolution.
    """
    return datetime.fromtimestamp(millis // 1000, tz=timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as an ISO string in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def year_bounds(year: int) -> Tuple[str, str]:
    """Return the ISO bounds ``[start, end)`` of a calendar year in UTC.

    Stored dates have whole-second precision, so for the last representable
    year the end bound is ``datetime.max``, which sorts after every stored
    value of that year.

    Raises:
        ValueError: If ``year`` is outside ``MINYEAR..MAXYEAR``.
    """
    if not MINYEAR <= year <= MAXYEAR:
        raise ValueError(f"year {year} is out of range")
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    if year == MAXYEAR:
        end = datetime.max.replace(tzinfo=timezone.utc)
    else:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return start.isoformat(), end.isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, returning None for empty or invalid input."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None


def _json_bool(value: Any, field_name: str) -> Optional[bool]:
    """Read a boolean that servers send as a bool, 0/1, or "true"/"false"."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    raise ValueError(f"{field_name} must be a boolean, got {value!r}")


# === Enums ===


class SessionState(str, Enum):
    """States of a reconciliation session."""

    PENDING = "pending"
    ACQUIRE_TOKEN = "acquire_token"
    PROBE = "probe"
    PULL = "pull"
    RESOLVE = "resolve"
    MERGE = "merge"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.FAILED)


# === Wire-level records ===


@dataclass(frozen=True)
class SyncRequest:
    """One year-history request. Built fresh for every phase."""

    device_time_millis: int
    version: int
    year: int
    count_only: bool


@dataclass(frozen=True)
class HistoryChange:
    """A remote interaction event: an episode was played at ``modified_at_millis``."""

    episode_uuid: str
    podcast_uuid: str
    modified_at_millis: int

    @property
    def interaction_date(self) -> datetime:
        return millis_to_datetime(self.modified_at_millis)


@dataclass(frozen=True)
class ProbeResponse:
    """Count-only response."""

    count: int


@dataclass(frozen=True)
class DiffResponse:
    """Full response carrying the individual history changes, in server order."""

    changes: Tuple[HistoryChange, ...] = ()


# === Local entities ===


@dataclass
class PodcastRecord:
    """A podcast (parent entity)."""

    uuid: str
    title: str = ""
    author: str = ""
    feed_url: str = ""
    subscribed: bool = False
    added_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PodcastRecord":
        uuid = data.get("uuid")
        if not uuid:
            raise ValueError("podcast record is missing 'uuid'")
        return cls(
            uuid=str(uuid),
            title=data.get("title") or "",
            author=data.get("author") or "",
            feed_url=data.get("url") or data.get("feed_url") or "",
        )


@dataclass
class EpisodeRecord:
    """An episode (child entity) together with its sync info.

    Listing refreshes carry only the sync fields; stubs carry the metadata.
    Fields left as None are not overwritten on upsert.
    """

    uuid: str
    podcast_uuid: str
    title: Optional[str] = None
    published_date: Optional[datetime] = None
    duration: Optional[float] = None
    playing_status: Optional[int] = None
    played_up_to: Optional[float] = None
    starred: Optional[bool] = None
    archived: Optional[bool] = None
    last_interaction_date: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], podcast_uuid: str) -> "EpisodeRecord":
        """Build from the remote JSON shape (camelCase or snake_case keys)."""
        uuid = data.get("uuid")
        if not uuid:
            raise ValueError("episode record is missing 'uuid'")

        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        published = pick("published", "publishedDate", "published_date")
        duration = pick("duration")
        status = pick("playingStatus", "playing_status")
        played_up_to = pick("playedUpTo", "played_up_to")
        starred = pick("starred")
        archived = pick("isDeleted", "archived")
        return cls(
            uuid=str(uuid),
            podcast_uuid=str(data.get("podcast") or data.get("podcastUuid") or podcast_uuid),
            title=pick("title"),
            published_date=parse_datetime(published) if isinstance(published, str) else None,
            duration=float(duration) if duration is not None else None,
            playing_status=int(status) if status is not None else None,
            played_up_to=float(played_up_to) if played_up_to is not None else None,
            starred=_json_bool(starred, "starred"),
            archived=_json_bool(archived, "archived"),
        )


@dataclass
class PodcastStub:
    """Minimal podcast (and optionally episode) returned by a remote lookup."""

    podcast: PodcastRecord
    episode: Optional[EpisodeRecord] = None


# === Results ===


@dataclass
class ResolveResult:
    """What the resolver produced for one session."""

    missing: int = 0
    resolved: int = 0
    refresh: frozenset = frozenset()
    listings: Dict[str, List[EpisodeRecord]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


@dataclass
class MergeResult:
    """Outcome of a bulk merge."""

    podcasts: int = 0
    episodes: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


@dataclass
class SyncOutcome:
    """Diagnostic record of one session. ``success`` is owned by the session."""

    year: int
    state: SessionState = SessionState.PENDING
    success: bool = False
    local_count: Optional[int] = None
    remote_count: Optional[int] = None
    round_trips: int = 0
    changes: int = 0
    missing: int = 0
    resolved: int = 0
    refreshed_podcasts: int = 0
    merged_episodes: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "state": self.state.value,
            "success": self.success,
            "local_count": self.local_count,
            "remote_count": self.remote_count,
            "round_trips": self.round_trips,
            "changes": self.changes,
            "missing": self.missing,
            "resolved": self.resolved,
            "refreshed_podcasts": self.refreshed_podcasts,
            "merged_episodes": self.merged_episodes,
            "errors": list(self.errors),
        }
