"""Per-browser UI state.

A browser is identified by a random cookie value. Everything the forms need
between requests (current view, pending challenge, tokens, messages) lives in
a :class:`UISession` kept in process memory. Nothing here is persisted.
"""
import logging
import secrets
import threading
import time
from typing import Dict, Optional

from pydantic import BaseModel, Field

from portal.auth.schemas import Challenge, Tokens

logger = logging.getLogger(__name__)

# Views are mutually exclusive; exactly one is shown at a time.
VIEW_LOGIN = "login"
VIEW_REGISTER = "register"
VIEW_PHONE_REGISTER = "phone-register"
VIEW_VERIFY_EMAIL = "verify-email"
VIEW_VERIFY_PHONE = "verify-phone"
VIEW_MFA = "mfa"
VIEW_NEW_PASSWORD = "new-password"
VIEW_FORGOT_PASSWORD = "forgot-password"
VIEW_RESET_PASSWORD = "reset-password"
VIEW_DASHBOARD = "dashboard"

# Views a signed-out user may switch to directly.
PUBLIC_VIEWS = {
    VIEW_LOGIN,
    VIEW_REGISTER,
    VIEW_PHONE_REGISTER,
    VIEW_FORGOT_PASSWORD,
}


class UISession(BaseModel):
    id: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    view: str = VIEW_LOGIN
    login_type: str = "email"
    pending_identifier: Optional[str] = None
    challenge: Optional[Challenge] = None
    tokens: Optional[Tokens] = None
    username: Optional[str] = None
    federated: bool = False
    error: str = ""
    success: str = ""
    form: Dict[str, str] = Field(default_factory=dict)
    oauth_state: Optional[str] = None
    totp_secret: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    last_seen: float = Field(default_factory=time.time)

    @property
    def is_authenticated(self) -> bool:
        return self.tokens is not None

    def clear_messages(self) -> None:
        self.error = ""
        self.success = ""

    def switch_to(self, view: str) -> None:
        """Move to *view*, dropping transient state from the previous form."""
        self.view = view
        self.form = {}
        self.clear_messages()
        if view != VIEW_MFA and view != VIEW_NEW_PASSWORD:
            self.challenge = None

    def sign_out(self) -> None:
        self.tokens = None
        self.username = None
        self.federated = False
        self.challenge = None
        self.pending_identifier = None
        self.totp_secret = None
        self.oauth_state = None
        self.switch_to(VIEW_LOGIN)


class SessionStore:
    """In-memory map of session id -> UISession with idle expiry."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._ttl = ttl_seconds
        self._sessions: Dict[str, UISession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _expired(self, session: UISession, now: float) -> bool:
        return now - session.last_seen > self._ttl

    def _purge(self, now: float) -> None:
        stale = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.debug("Purged %d idle UI sessions", len(stale))

    def get(self, session_id: Optional[str]) -> Optional[UISession]:
        if not session_id:
            return None
        now = time.time()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._expired(session, now):
                del self._sessions[session_id]
                return None
            session.last_seen = now
            return session

    def create(self) -> UISession:
        now = time.time()
        session = UISession(created_at=now, last_seen=now)
        with self._lock:
            self._purge(now)
            self._sessions[session.id] = session
        return session

    def get_or_create(self, session_id: Optional[str]) -> UISession:
        return self.get(session_id) or self.create()

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Return the global SessionStore, creating a default one on first use."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store


def set_session_store(store: Optional[SessionStore]) -> None:
    """Set (or replace) the global SessionStore instance."""
    global _store
    _store = store
