# store_audit/session_cache.py
import threading
import time
from typing import Dict, Optional

from store_audit.errors import SessionNotFoundError
from store_audit.session import AuditSession


class SessionCache:
    """
    In-memory active audit sessions with a sliding TTL (expires ttl_seconds
    after last touch). Thread-safe; the persistence loop sweeps it.
    """

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # session_id -> {"session": AuditSession, "expires_at": float}
        self._items: Dict[str, Dict[str, object]] = {}

    def put(self, session: AuditSession) -> AuditSession:
        with self._lock:
            self._items[session.session_id] = {
                "session": session,
                "expires_at": time.time() + self.ttl_seconds,
            }
        return session

    def find(self, session_id: str) -> Optional[AuditSession]:
        now = time.time()
        with self._lock:
            item = self._items.get(str(session_id))
            if item is None:
                return None
            if float(item["expires_at"]) <= now:
                del self._items[str(session_id)]
                return None
            item["expires_at"] = now + self.ttl_seconds
            return item["session"]  # type: ignore[return-value]

    def get(self, session_id: str) -> AuditSession:
        session = self.find(session_id)
        if session is None:
            raise SessionNotFoundError(f"Sesión de auditoría no encontrada: {session_id}")
        return session

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(str(session_id), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def sweep_expired(self) -> int:
        """
        Delete expired sessions. Returns how many entries were removed.
        """
        now = time.time()
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
        return len(expired)
