"""
Bearer authentication with transparent token refresh for httpx.

`TokenAuthenticator` plugs into `httpx.Client(auth=...)`. Every outgoing
request gets the current access token; a 401 triggers at most one
refresh-and-retry per request chain. When the refresh token is missing
or rejected, the original 401 is handed back to the caller untouched.
"""
import logging
import threading
import time
from enum import Enum
from typing import Generator, Optional, Tuple

import httpx
import jwt
from pydantic import ValidationError

from client_models import Envelope, LoginData
from session import SessionState, SessionStore

logger = logging.getLogger(__name__)

AUTHORIZATION = "Authorization"
REFRESH_PATH = "/users/refresh"

# statuses with which the backend rejects a refresh token outright
REFRESH_REJECTED = (400, 401, 403)


class RefreshOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    NO_REFRESH_NEEDED = "NO_REFRESH_NEEDED"
    REFRESH_TOKEN_EXPIRED = "REFRESH_TOKEN_EXPIRED"
    ERROR = "ERROR"


def bearer(token: str) -> str:
    return f"Bearer {token}"


def token_expiration_ms(token: Optional[str]) -> Optional[int]:
    """Return the `exp` claim of a JWT in epoch milliseconds, or None."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return int(exp * 1000)


def response_count(response: httpx.Response) -> int:
    """Number of responses in the chain that produced `response`, itself included."""
    return len(response.history) + 1


def with_bearer(request: httpx.Request, token: str) -> httpx.Request:
    headers = httpx.Headers(request.headers)
    headers[AUTHORIZATION] = bearer(token)
    return httpx.Request(
        request.method,
        request.url,
        headers=headers,
        content=request.content,
        extensions=request.extensions,
    )


class TokenAuthenticator(httpx.Auth):
    requires_request_body = True

    def __init__(self, session: SessionStore, refresh_client: httpx.Client,
                 refresh_path: str = REFRESH_PATH) -> None:
        self.session = session
        self._refresh_client = refresh_client
        self._refresh_path = refresh_path
        self._refresh_lock = threading.RLock()

    # -- httpx.Auth ----------------------------------------------------

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        response = yield self.attach_credential(request)
        while response.status_code == 401:
            retry = self.on_auth_failure(request, response)
            if retry is None:
                return
            request = retry
            response = yield request

    async def async_auth_flow(self, request):
        raise RuntimeError("TokenAuthenticator refreshes synchronously; use it with httpx.Client")
        yield request

    # -- operations ----------------------------------------------------

    def attach_credential(self, request: httpx.Request) -> httpx.Request:
        token = self.session.state.access_token
        if token and token.strip():
            request.headers[AUTHORIZATION] = bearer(token)
        return request

    def on_auth_failure(self, failed_request: httpx.Request,
                        failed_response: httpx.Response) -> Optional[httpx.Request]:
        """Exchange the refresh token and rebuild `failed_request`, or return None."""
        if AUTHORIZATION in failed_request.headers and response_count(failed_response) >= 2:
            logger.info("Giving up on %s %s after a refreshed retry", failed_request.method, failed_request.url.path)
            return None

        with self._refresh_lock:
            refresh_token = self.session.state.refresh_token
            if not refresh_token or not refresh_token.strip():
                return None
            login, _ = self._exchange(refresh_token)
            if login is None:
                return None
            self._save(login)

        return with_bearer(failed_request, login.token)

    def clear(self) -> None:
        self.session.clear()

    def refresh_if_needed(self, threshold_minutes: int = 60) -> RefreshOutcome:
        """Refresh proactively when the access token expires within `threshold_minutes`."""
        state = self.session.state
        if not (state.access_token and state.refresh_token):
            return RefreshOutcome.NO_REFRESH_NEEDED
        if not self._expiring(state, threshold_minutes):
            return RefreshOutcome.NO_REFRESH_NEEDED

        with self._refresh_lock:
            refresh_token = self.session.state.refresh_token
            if not refresh_token:
                return RefreshOutcome.NO_REFRESH_NEEDED
            login, status = self._exchange(refresh_token)
            if login is not None:
                self._save(login)
                return RefreshOutcome.SUCCESS
            if status in REFRESH_REJECTED:
                self.session.clear()
                return RefreshOutcome.REFRESH_TOKEN_EXPIRED
            return RefreshOutcome.ERROR

    # -- internals -----------------------------------------------------

    @staticmethod
    def _expiring(state: SessionState, threshold_minutes: int) -> bool:
        expiration = token_expiration_ms(state.access_token) or state.token_expiration
        if expiration is None:
            # unknown lifetime, treat as due
            return True
        now_ms = int(time.time() * 1000)
        return expiration - now_ms <= threshold_minutes * 60 * 1000

    def _exchange(self, refresh_token: str) -> Tuple[Optional[LoginData], Optional[int]]:
        try:
            response = self._refresh_client.post(self._refresh_path, params={"refreshToken": refresh_token})
        except httpx.HTTPError as e:
            logger.warning("Token refresh failed: %s", e)
            return None, None

        if not response.is_success:
            logger.warning("Token refresh rejected with HTTP %s", response.status_code)
            return None, response.status_code

        try:
            envelope = Envelope.model_validate(response.json())
            if envelope.success is not True or envelope.data is None:
                logger.warning("Token refresh unsuccessful: %s", envelope.message)
                return None, response.status_code
            return LoginData.model_validate(envelope.data), response.status_code
        except (ValueError, ValidationError) as e:
            logger.warning("Malformed token refresh response: %s", e)
            return None, response.status_code

    def _save(self, login: LoginData) -> None:
        self.session.save_session(
            login.token,
            login.refresh_token,
            login.user.id,
            login.user.username,
            login.user.email,
            token_expiration_ms(login.token),
        )
        logger.info("Access token refreshed for %s", login.user.username)
