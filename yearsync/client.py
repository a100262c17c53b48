"""Public entry point: ``YearSync.run(year)``."""

import logging
from typing import Optional

from yearsync.config import SyncSettings
from yearsync.protocols import HistoryStorage, RemoteLookup, TokenProvider, Transport
from yearsync.remote import HttpRemoteLookup
from yearsync.session import ReconciliationSession
from yearsync.storage import SQLiteHistoryStorage
from yearsync.transport import HttpTransport, StaticTokenProvider
from yearsync.types import SyncOutcome

logger = logging.getLogger(__name__)


class YearSync:
    """Wires collaborators together and runs one session per call.

    Any collaborator left as None is built from ``settings``. Calls are
    independent: each gets a fresh session with its own caches. Concurrent
    calls are not coordinated here.
    """

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        storage: Optional[HistoryStorage] = None,
        transport: Optional[Transport] = None,
        remote: Optional[RemoteLookup] = None,
        token_provider: Optional[TokenProvider] = None,
    ):
        self.settings = settings or SyncSettings()
        self.token_provider = token_provider or StaticTokenProvider(self.settings.auth_token)
        self.storage = storage or SQLiteHistoryStorage(self.settings.resolved_db_path())
        self.transport = transport or HttpTransport(timeout=self.settings.timeout)
        self.remote = remote or HttpRemoteLookup(
            self.settings.server_url,
            self.settings.cache_url,
            self.token_provider,
            timeout=self.settings.timeout,
        )
        self.last_outcome: Optional[SyncOutcome] = None

    @classmethod
    def from_settings(cls, settings: Optional[SyncSettings] = None) -> "YearSync":
        """Build from settings, loading them from disk/environment if not given."""
        return cls(settings or SyncSettings.load())

    def new_session(self) -> ReconciliationSession:
        return ReconciliationSession(
            token_provider=self.token_provider,
            transport=self.transport,
            storage=self.storage,
            remote=self.remote,
            url=self.settings.history_year_url,
            api_version=self.settings.api_version,
            max_workers=self.settings.max_workers,
            apply_remote_changes=self.settings.apply_remote_changes,
        )

    def run_with_outcome(self, year: int) -> SyncOutcome:
        session = self.new_session()
        session.sync(year)
        self.last_outcome = session.outcome
        return session.outcome

    def run(self, year: int) -> bool:
        """Sync listening history for ``year``. Blocks until done; never raises."""
        return self.run_with_outcome(year).success

    def close(self):
        for collaborator in (self.transport, self.remote, self.storage):
            close = getattr(collaborator, "close", None)
            if callable(close):
                close()
