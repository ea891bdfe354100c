"""Process-local registry of open import sessions."""
import logging
import uuid
from threading import Lock

from cachetools import TTLCache

from hr_console.core.config import settings
from hr_console.services.hr_api import HRApiClient
from hr_console.services.import_adapters import ImportAdapter
from hr_console.services.import_session import ImportSession

logger = logging.getLogger(__name__)


class ImportSessionStore:
    """Sessions expire IMPORT_SESSION_TTL_SECONDS after they are opened."""

    def __init__(self, ttl_seconds: int | None = None, max_sessions: int | None = None):
        self._sessions: TTLCache = TTLCache(
            maxsize=max_sessions or settings.IMPORT_SESSION_MAX,
            ttl=ttl_seconds or settings.IMPORT_SESSION_TTL_SECONDS,
        )
        self._lock = Lock()

    def open(self, adapter: ImportAdapter, client: HRApiClient) -> ImportSession:
        session_id = uuid.uuid4().hex
        session = adapter.open_session(client, session_id=session_id)
        with self._lock:
            self._sessions[session_id] = session
        logger.info("Opened %s import session %s", adapter.entity, session_id)
        return session

    def get(self, session_id: str) -> ImportSession:
        """Raises KeyError if the session does not exist or has expired."""
        with self._lock:
            return self._sessions[session_id]

    def discard(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.reset()
            logger.info("Closed import session %s", session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


_store: ImportSessionStore | None = None


def get_session_store() -> ImportSessionStore:
    global _store
    if _store is None:
        _store = ImportSessionStore()
    return _store
