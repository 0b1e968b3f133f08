import logging
import threading
import time
import uuid
from collections.abc import Iterable
from typing import Callable, Optional

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.errors import (
    MissingFieldError,
    SessionForbiddenError,
    SessionNotFoundError,
    ValidationError,
)
from DAAS_Gateway.daas_shared.permissions import parse_data_type, parse_data_types
from DAAS_Gateway.daas_shared.types import AccessSession, DataType

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-process registry of interactive AccessSessions.

    This is the only shared mutable state in the server; every read and
    write goes through one lock.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._sessions: dict[str, AccessSession] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def create(self, identity: str, permissions: Iterable, ttl: Optional[int] = None) -> AccessSession:
        if not isinstance(identity, str) or not identity.strip():
            raise MissingFieldError("identity")
        perms = parse_data_types(permissions)
        if not perms:
            raise ValidationError("permissions", "at least one permission is required")

        ttl = config.SESSION_DEFAULT_TTL_SECONDS if ttl is None else ttl
        if ttl <= 0:
            raise ValidationError("ttl", "ttl must be a positive number of seconds")
        ttl = min(ttl, config.SESSION_MAX_TTL_SECONDS)

        session = AccessSession(
            key_id=str(uuid.uuid4()),
            identity=identity,
            permissions=perms,
            expires_at=self._clock() + ttl,
        )
        with self._lock:
            self._sessions[session.key_id] = session
        logger.info("session %s created for %s (%s)", session.key_id, identity,
                    ",".join(sorted(p.value for p in perms)))
        return session

    def get(self, key_id: str) -> Optional[AccessSession]:
        with self._lock:
            session = self._sessions.get(key_id)
            if session is None:
                return None
            if not session.active or self._clock() > session.expires_at:
                del self._sessions[key_id]
                return None
            return session

    def revoke(self, key_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(key_id, None)
        if session is None:
            return False
        session.active = False
        logger.info("session %s revoked", key_id)
        return True

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, s in self._sessions.items() if not s.active or now > s.expires_at]
            for key_id in stale:
                del self._sessions[key_id]
        if stale:
            logger.debug("swept %d sessions", len(stale))
        return len(stale)

    def authorize(self, key_id: str, data_type) -> AccessSession:
        wanted: DataType = parse_data_type(data_type)
        session = self.get(key_id)
        if session is None:
            raise SessionNotFoundError(key_id)
        if wanted not in session.permissions:
            raise SessionForbiddenError(key_id, wanted.value)
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
