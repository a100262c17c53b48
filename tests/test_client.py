"""Tests for the YearSync entry point and the CLI."""

import argparse
import json
from unittest.mock import patch

import pytest

from yearsync import YearSync
from yearsync.cli.__main__ import build_parser, main, validate_positive_int, validate_year
from yearsync.config import SyncSettings
from yearsync.remote import HttpRemoteLookup
from yearsync.storage import SQLiteHistoryStorage
from yearsync.testing import FakeRemote, FakeTokens, FakeTransport, diff_reply, make_change, millis, probe_reply
from yearsync.transport import HttpTransport, StaticTokenProvider
from yearsync.types import EpisodeRecord, PodcastRecord


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(
        server_url="https://api.test",
        auth_token="tok",
        db_path=tmp_path / "cli.db",
    )


# ============================================================================
# YearSync
# ============================================================================


class TestYearSync:
    def test_builds_default_collaborators(self, settings):
        ys = YearSync(settings)
        try:
            assert isinstance(ys.storage, SQLiteHistoryStorage)
            assert isinstance(ys.transport, HttpTransport)
            assert isinstance(ys.remote, HttpRemoteLookup)
            assert isinstance(ys.token_provider, StaticTokenProvider)
            assert ys.storage.db_path == settings.db_path
        finally:
            ys.close()

    def test_session_uses_settings(self, settings, storage):
        settings.max_workers = 4
        settings.apply_remote_changes = False
        transport = FakeTransport(probe_reply(1), diff_reply([make_change("e1", "p1", millis(2022))]))
        ys = YearSync(settings, storage=storage, transport=transport, remote=FakeRemote(), token_provider=FakeTokens())

        assert ys.run(2022) is True

        assert transport.posts[0]["url"] == "https://api.test/history/year"
        assert transport.posts[0]["request"].version == settings.api_version
        assert not storage.episode_exists("e1")
        assert ys.last_outcome.changes == 1

    def test_each_run_is_a_new_session(self, settings, storage):
        transport = FakeTransport(probe_reply(0), probe_reply(0))
        ys = YearSync(settings, storage=storage, transport=transport, remote=FakeRemote(), token_provider=FakeTokens())

        assert ys.run(2022) is True
        first = ys.last_outcome
        assert ys.run(2023) is True

        assert ys.last_outcome is not first
        assert ys.last_outcome.year == 2023

    def test_run_never_raises(self, settings, storage):
        ys = YearSync(
            settings,
            storage=storage,
            transport=FakeTransport(),
            remote=FakeRemote(),
            token_provider=StaticTokenProvider(None),
        )

        assert ys.run(2022) is False
        assert "AuthError" in ys.last_outcome.errors[0]

    def test_from_settings_loads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("YEARSYNC_AUTH_TOKEN", "env-token")
        monkeypatch.setenv("YEARSYNC_DB_PATH", str(tmp_path / "env.db"))

        ys = YearSync.from_settings()
        try:
            assert ys.settings.auth_token == "env-token"
            assert ys.token_provider.acquire_token() == "env-token"
        finally:
            ys.close()


# ============================================================================
# CLI
# ============================================================================


class TestValidateYear:
    def test_accepts_year(self):
        assert validate_year("2022") == 2022

    @pytest.mark.parametrize("value", ["nope", "1999", "10000"])
    def test_rejects(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            validate_year(value)


class TestValidatePositiveInt:
    def test_accepts(self):
        assert validate_positive_int("3") == 3

    @pytest.mark.parametrize("value", ["0", "-1", "x"])
    def test_rejects(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            validate_positive_int(value)


class TestCli:
    def _run(self, argv):
        with pytest.raises(SystemExit) as exc:
            main(argv)
        return exc.value.code

    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_status_json(self, tmp_path, capsys):
        db = tmp_path / "status.db"
        storage = SQLiteHistoryStorage(db)
        storage.save_podcast_stub(PodcastRecord(uuid="p1", title="Show"))
        storage.save_episode_stub(EpisodeRecord(uuid="e1", podcast_uuid="p1"))

        code = self._run(["status", "--year", "2022", "--json", "--db", str(db)])

        assert code == 0
        status = json.loads(capsys.readouterr().out)
        assert status["year"] == 2022
        assert status["podcasts"] == 1
        assert status["episodes"] == 1
        assert status["interactions"] == 0
        assert status["authenticated"] is False

    def test_run_without_token_fails(self, tmp_path, capsys):
        code = self._run(["run", "--year", "2022", "--db", str(tmp_path / "run.db")])

        assert code == 1
        out = capsys.readouterr().out
        assert "✗ 2022" in out
        assert "AuthError" in out

    def test_run_json(self, settings, storage, capsys):
        ys = YearSync(
            settings,
            storage=storage,
            transport=FakeTransport(probe_reply(0)),
            remote=FakeRemote(),
            token_provider=FakeTokens(),
        )

        with patch("yearsync.cli.__main__.YearSync.from_settings", return_value=ys):
            code = self._run(["run", "--year", "2022", "--json"])

        assert code == 0
        outcome = json.loads(capsys.readouterr().out)
        assert outcome["success"] is True
        assert outcome["round_trips"] == 1

    def test_run_reports_pulled_changes(self, settings, storage, capsys):
        ys = YearSync(
            settings,
            storage=storage,
            transport=FakeTransport(probe_reply(1), diff_reply([make_change("e1", "p1", millis(2022))])),
            remote=FakeRemote(),
            token_provider=FakeTokens(),
        )

        with patch("yearsync.cli.__main__.YearSync.from_settings", return_value=ys):
            code = self._run(["run", "--year", "2022", "--max-workers", "2"])

        assert code == 0
        out = capsys.readouterr().out
        assert "pulled 1 changes" in out
        assert "resolved 1/1" in out

    def test_invalid_setting_exits_1(self, monkeypatch):
        monkeypatch.setenv("YEARSYNC_MAX_WORKERS", "many")

        assert self._run(["status"]) == 1

    @pytest.mark.parametrize("value", ["0", "-3", "few"])
    def test_max_workers_must_be_positive(self, value, capsys):
        assert self._run(["run", "--year", "2022", "--max-workers", value]) == 2
        assert "--max-workers" in capsys.readouterr().err

    def test_max_workers_reaches_settings(self, settings, storage):
        ys = YearSync(
            settings,
            storage=storage,
            transport=FakeTransport(probe_reply(0)),
            remote=FakeRemote(),
            token_provider=FakeTokens(),
        )

        with patch("yearsync.cli.__main__.YearSync.from_settings", return_value=ys) as build:
            assert self._run(["run", "--year", "9999", "--max-workers", "1"]) == 0

        assert build.call_args.args[0].max_workers == 1
        assert ys.last_outcome.year == 9999
