"""Per-session existence cache for local entities."""

import logging
import threading
from typing import Callable, Set

logger = logging.getLogger(__name__)


class ExistenceCache:
    """Memoizes positive "does X exist locally" answers for one session.

    Negatives are never cached: an entity missing now may be created later in
    the same session. The cache is owned by a single session and discarded
    with it, so every session re-verifies against storage on first use.

    Args:
        check: Callable returning True if the entity exists in storage.
        name: Label used in log messages.
    """

    def __init__(self, check: Callable[[str], bool], name: str = "entity"):
        self._check = check
        self._name = name
        self._known: Set[str] = set()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def exists(self, uuid: str) -> bool:
        with self._lock:
            if uuid in self._known:
                self.hits += 1
                return True
            self.misses += 1

        found = bool(self._check(uuid))
        if found:
            with self._lock:
                self._known.add(uuid)
            logger.debug(f"Cached existing {self._name} {uuid}")
        return found

    def __contains__(self, uuid: str) -> bool:
        """Membership in the cache only; never queries storage."""
        with self._lock:
            return uuid in self._known

    def __len__(self) -> int:
        with self._lock:
            return len(self._known)

    def __repr__(self) -> str:
        return f"ExistenceCache({self._name}, known={len(self)}, hits={self.hits}, misses={self.misses})"
