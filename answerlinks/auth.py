"""Staff sessions for the admin surface.

A session remembers the bearer token its registry calls are made with, so a
401 from the registry can end exactly that session.
"""
from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Optional

from answerlinks.config import get_settings


SESSION_COOKIE_NAME = "session_token"


@dataclass
class AdminSession:
    expires_at: datetime
    api_token: str


_sessions: Dict[str, AdminSession] = {}
_sessions_lock = Lock()


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str) -> bool:
    """Return True if the supplied password matches the configured staff password."""
    if not password:
        return False
    expected_hash = _hash_password(get_settings().STAFF_PASSWORD)
    return secrets.compare_digest(expected_hash, _hash_password(password))


def create_session(api_token: Optional[str] = None) -> str:
    """Create a session bound to ``api_token`` (or the configured registry token)."""
    settings = get_settings()
    token = secrets.token_urlsafe(32)
    session = AdminSession(
        expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.SESSION_DURATION_HOURS),
        api_token=api_token or settings.REGISTRY_TOKEN,
    )
    with _sessions_lock:
        _sessions[token] = session
    return token


def get_session(token: Optional[str]) -> Optional[AdminSession]:
    """Return the live session for ``token``, dropping it if it has expired."""
    if not token:
        return None
    now = datetime.now(timezone.utc)
    with _sessions_lock:
        session = _sessions.get(token)
        if session is None:
            return None
        if session.expires_at < now:
            _sessions.pop(token, None)
            return None
        return session


def validate_session(token: Optional[str]) -> bool:
    return get_session(token) is not None


def invalidate_session(token: Optional[str]) -> None:
    """Invalidate a session token immediately."""
    if not token:
        return
    with _sessions_lock:
        _sessions.pop(token, None)


def cleanup_expired_sessions() -> None:
    """Remove expired sessions from the in-memory store."""
    now = datetime.now(timezone.utc)
    with _sessions_lock:
        expired_tokens = [token for token, session in _sessions.items() if session.expires_at < now]
        for token in expired_tokens:
            _sessions.pop(token, None)
