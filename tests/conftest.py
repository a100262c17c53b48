"""
Pytest fixtures and test configuration for yearsync tests.
"""

import os
from datetime import datetime
from typing import Optional
from unittest.mock import MagicMock

import pytest

from yearsync.storage import SQLiteHistoryStorage
from yearsync.testing import FakeRemote, FakeTokens
from yearsync.types import EpisodeRecord, PodcastRecord


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the host's YEARSYNC_* settings and ~/.yearsync out of tests."""
    for name in [k for k in os.environ if k.startswith("YEARSYNC_")]:
        monkeypatch.delenv(name)
    monkeypatch.setenv("YEARSYNC_DATA_DIR", str(tmp_path / "home"))


@pytest.fixture
def storage(tmp_path):
    """A SQLiteHistoryStorage in a temp dir."""
    s = SQLiteHistoryStorage(db_path=tmp_path / "history.db")
    yield s
    s.close()


@pytest.fixture
def seed(storage):
    """Insert a subscribed podcast and an episode, optionally with a play date."""

    def _seed(podcast: str, episode: str, played_at: Optional[datetime] = None):
        storage.save_podcast_stub(PodcastRecord(uuid=podcast, title=podcast, subscribed=True))
        storage.save_episode_stub(EpisodeRecord(uuid=episode, podcast_uuid=podcast, title=episode))
        if played_at is not None:
            storage.record_interaction_timestamp(episode, played_at)

    return _seed


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def mock_storage():
    """A MagicMock storage where nothing exists and every write succeeds."""
    mock = MagicMock()
    mock.count_interactions_for_year.return_value = 0
    mock.episode_exists.return_value = False
    mock.find_podcast.return_value = None
    mock.record_interaction_timestamp.return_value = True
    mock.bulk_upsert_episodes.side_effect = lambda podcast, records: len(records)
    return mock
