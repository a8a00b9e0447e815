"""
Persisted session state for API clients.

The session is a single immutable `SessionState` value. Writers replace it
whole under a lock, persist every key in one SQLite transaction and then
notify subscribers, so a reader never sees a half-updated credential pair.
"""
import logging
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, List, Optional, Union

from sqlitedict import SqliteDict

logger = logging.getLogger(__name__)

ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
TOKEN_EXPIRATION = "token_expiration"
USER_ID = "user_id"
USERNAME = "username"
EMAIL = "email"

SESSION_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, TOKEN_EXPIRATION, USER_ID, USERNAME, EMAIL)


@dataclass(frozen=True)
class SessionState:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    # epoch milliseconds, when known
    token_expiration: Optional[int] = None

    @property
    def is_logged_in(self) -> bool:
        return bool(self.access_token and self.access_token.strip())


EMPTY_SESSION = SessionState()

Subscriber = Callable[[SessionState], None]


class SessionStore:
    """Holds the current credential pair and identity; survives restarts."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._state = self._load()

    def _prefs(self) -> SqliteDict:
        # Open/close per operation to stay safe across threads
        return SqliteDict(str(self.path), tablename="auth_prefs", autocommit=False)

    def _load(self) -> SessionState:
        with self._prefs() as prefs:
            values = {key: prefs.get(key) for key in SESSION_KEYS}
        expiration = values.pop(TOKEN_EXPIRATION)
        return SessionState(
            token_expiration=int(expiration) if expiration else None,
            **values,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    def snapshot(self) -> SessionState:
        return self._state

    def save_session(
        self,
        access_token: str,
        refresh_token: str,
        user_id: str,
        username: str,
        email: str,
        expiration: Optional[int] = None,
    ) -> SessionState:
        new_state = SessionState(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=user_id,
            username=username,
            email=email,
            token_expiration=expiration,
        )
        with self._lock:
            with self._prefs() as prefs:
                prefs[ACCESS_TOKEN] = access_token
                prefs[REFRESH_TOKEN] = refresh_token
                prefs[USER_ID] = user_id
                prefs[USERNAME] = username
                prefs[EMAIL] = email
                if expiration is not None:
                    prefs[TOKEN_EXPIRATION] = expiration
                elif TOKEN_EXPIRATION in prefs:
                    del prefs[TOKEN_EXPIRATION]
                prefs.commit()
            self._state = new_state
        logger.debug("Session saved for user %s", username)
        self._publish(new_state)
        return new_state

    def update_identity(self, username: Optional[str] = None, email: Optional[str] = None) -> SessionState:
        """Refresh the cached identity fields without touching tokens."""
        with self._lock:
            changes = {}
            if username is not None:
                changes[USERNAME] = username
            if email is not None:
                changes[EMAIL] = email
            if not changes:
                return self._state
            with self._prefs() as prefs:
                for key, value in changes.items():
                    prefs[key] = value
                prefs.commit()
            self._state = replace(self._state, **changes)
            new_state = self._state
        self._publish(new_state)
        return new_state

    def clear(self) -> None:
        with self._lock:
            with self._prefs() as prefs:
                prefs.clear()
                prefs.commit()
            self._state = EMPTY_SESSION
        logger.debug("Session cleared")
        self._publish(EMPTY_SESSION)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register `callback` for state changes; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, state: SessionState) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(state)
            except Exception:
                logger.exception("Session subscriber %r failed", callback)
