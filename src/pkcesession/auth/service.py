"""Authentication session engine.

Owns the credential lifecycle: starts authorization flows, routes browser
callbacks (delivered out of band through ``handle_uri``) to the flow waiting
for them, persists the resulting credential and refreshes it on read when it
is close to expiry.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

from pydantic import ValidationError

from pkcesession.auth.browser import BrowserOpener, open_in_browser
from pkcesession.auth.events import Emitter
from pkcesession.auth.models import (
    AuthSession,
    CallbackResult,
    SessionsChangeEvent,
    StoredCredential,
    TokenResponse,
)
from pkcesession.auth.oauth2 import OAuth2Client
from pkcesession.auth.storage import SecretStore
from pkcesession.auth.telemetry import AuthTelemetry
from pkcesession.exceptions import (
    AuthError,
    AuthenticationTimeoutError,
    BrowserOpenError,
    OAuthCallbackError,
    ServiceDisposedError,
    TokenRefreshError,
)
from pkcesession.settings import Settings

logger = logging.getLogger(__name__)


def _log_error_message(message: str) -> None:
    logger.warning(message)


def _short(nonce: str) -> str:
    return nonce[:8]


@dataclass
class _PendingCallback:
    future: asyncio.Future[CallbackResult]
    timer: asyncio.TimerHandle


class AuthenticationService:
    """Single-account authentication engine.

    Create one instance per host, ``await initialize()`` (or use it as an
    async context manager) and call ``dispose()`` on shutdown.
    """

    def __init__(
        self,
        oauth2: OAuth2Client,
        store: SecretStore,
        *,
        settings: Settings | None = None,
        redirect_uri: str | None = None,
        open_browser: BrowserOpener = open_in_browser,
        show_error: Callable[[str], None] = _log_error_message,
        telemetry: AuthTelemetry | None = None,
    ):
        self.settings = settings or oauth2.settings
        self.redirect_uri = redirect_uri or self.settings.redirect_uri()
        self._oauth2 = oauth2
        self._store = store
        self._open_browser = open_browser
        self._show_error = show_error
        self._telemetry = telemetry or AuthTelemetry()

        self.on_did_change_sessions: Emitter[SessionsChangeEvent] = Emitter("sessions")
        self.on_did_change_authentication_state: Emitter[bool] = Emitter("authentication_state")

        # nonce (the flow's state parameter) -> waiter
        self._pending: dict[str, _PendingCallback] = {}
        self._cached_sessions: list[AuthSession] = []
        self._initializing: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[bool] | None = None
        # Bumped whenever the stored credential is replaced or removed
        self._generation = 0
        self._disposed = False

    async def __aenter__(self) -> "AuthenticationService":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.dispose()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def initialize(self) -> None:
        """Load the stored credential once. Safe to call repeatedly."""
        if self._initializing is None:
            self._initializing = asyncio.ensure_future(self._load_initial_session())
        await self._initializing

    async def _load_initial_session(self) -> None:
        stored = await self._load_credential()
        if stored is not None:
            self._cached_sessions = [stored.to_session()]
            self._telemetry.session_restored(stored.account_id)
            logger.debug("Restored session %s from storage", stored.session_id)

    # Consumer-facing reads

    async def get_token(self) -> str | None:
        sessions = await self.get_sessions()
        if not sessions:
            return None
        return sessions[0].access_token

    async def is_authenticated(self) -> bool:
        return await self.get_token() is not None

    async def refresh_token(self) -> str | None:
        # Refresh happens inside get_sessions when the token is close to expiry
        return await self.get_token()

    def get_cached_sessions(self) -> list[AuthSession]:
        """Return the in-memory sessions without touching storage or the network."""
        return list(self._cached_sessions)

    async def get_sessions(
        self,
        scopes: list[str] | None = None,
        options: dict[str, Any] | None = None,
    ) -> list[AuthSession]:
        """Return the current session, refreshing its token first if it is about to expire.

        Never raises for storage or refresh failures: those clear the session
        and return an empty list.
        """
        await self.initialize()

        if not self._cached_sessions:
            return []

        stored = await self._load_credential()
        if stored is None:
            logger.warning("Cached session invalid, clearing")
            self._cached_sessions = []
            return []

        expires_at = stored.expires_at
        if expires_at is None:
            logger.debug("Token has no expires_in field")
            return list(self._cached_sessions)

        remaining = expires_at - time.time()
        needs_refresh = self._oauth2.should_refresh_token(
            stored.token,
            self.settings.refresh_buffer_seconds,
            issued_at=stored.issued_at,
        )
        logger.debug(
            "Token refresh evaluation: needs_refresh=%s, has_refresh_token=%s, remaining=%ds",
            needs_refresh,
            stored.refresh_token is not None,
            max(0, int(remaining)),
        )

        if not needs_refresh:
            return list(self._cached_sessions)

        if stored.refresh_token:
            if not await self._refresh(stored, stored.refresh_token):
                return []
        elif remaining <= 0:
            logger.warning("Token expired and no refresh_token available, clearing session")
            await self._drop_session(stored)
            return []
        else:
            logger.warning("Token needs refresh but no refresh_token available")

        return list(self._cached_sessions)

    async def _refresh(self, stored: StoredCredential, refresh_token: str) -> bool:
        # Concurrent readers share one refresh request
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._do_refresh(stored, refresh_token))
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self, stored: StoredCredential, refresh_token: str) -> bool:
        logger.info("Refreshing access token for session %s", stored.session_id)
        generation = self._generation
        try:
            refreshed = await self._oauth2.refresh_access_token(refresh_token)
        except TokenRefreshError as e:
            logger.error("Token refresh failed: %s", e)
            self._telemetry.token_refreshed(stored.account_id, success=False)
            if generation == self._generation:
                await self._drop_session(stored)
            return False

        if generation != self._generation:
            logger.info("Session %s changed during refresh, discarding refreshed token", stored.session_id)
            return False

        # RFC 6749 6: the server may keep the old refresh token
        if not refreshed.refresh_token:
            logger.debug("Server did not return new refresh_token, preserving existing one")
            refreshed = refreshed.model_copy(update={"refresh_token": refresh_token})

        updated = stored.model_copy(update={"token": refreshed, "issued_at": time.time()})
        try:
            await self._save_credential(updated)
        except OSError as e:
            logger.error("Failed to store refreshed credential: %s", e)
            self._telemetry.token_refreshed(stored.account_id, success=False)
            self._forget_session(stored)
            return False

        session = updated.to_session()
        self._cached_sessions = [session]
        self._telemetry.token_refreshed(stored.account_id, success=True)
        self.on_did_change_sessions.fire(SessionsChangeEvent(changed=[session]))
        return True

    # Flow

    async def create_session(
        self,
        scopes: list[str] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AuthSession:
        """Run the browser authorization flow and persist the resulting session.

        Raises:
            BrowserOpenError: The authorization URL could not be opened.
            AuthenticationTimeoutError: No callback arrived in time.
            OAuthCallbackError: The provider or callback validation reported an error.
            ServiceDisposedError: The service was disposed while waiting.
            TokenExchangeError: The code could not be exchanged.
        """
        if self._disposed:
            raise ServiceDisposedError("Authentication service disposed")

        logger.info("Starting OAuth2 flow")
        started = time.monotonic()
        self._telemetry.auth_started()

        try:
            session = await self._run_flow(scopes)
        except AuthError as e:
            duration_ms = (time.monotonic() - started) * 1000
            logger.error("Authentication failed after %.0fms: %s", duration_ms, e)
            self._telemetry.auth_failed(type(e).__name__, duration_ms)
            raise

        duration_ms = (time.monotonic() - started) * 1000
        self._telemetry.auth_succeeded(session.account.id, duration_ms)
        logger.info("Session created successfully in %.0fms", duration_ms)
        return session

    async def _run_flow(self, scopes: list[str] | None) -> AuthSession:
        auth_url = await self._oauth2.build_authorization_url(self.redirect_uri)

        nonce = parse_qs(urlparse(auth_url).query).get("state", [None])[0]
        if not nonce:
            raise AuthError("Failed to generate OAuth2 state/nonce")

        future = self._register_pending(nonce)
        try:
            if not await self._open_browser(auth_url):
                raise BrowserOpenError("Failed to open authentication URL")
            result = await future
        finally:
            self._discard_pending(nonce)

        if result.error or not result.code:
            raise OAuthCallbackError(f"Authentication failed: {result.error or 'no authorization code'}")

        self._telemetry.token_exchange_started()
        token = await self._oauth2.exchange_code_for_token(result.code, state=nonce)
        return await self._store_new_session(token, scopes)

    async def _store_new_session(self, token: TokenResponse, scopes: list[str] | None) -> AuthSession:
        claims = self._oauth2.get_user_info(token) or {}
        account_id = claims.get("sub") or f"user-{int(time.time() * 1000)}"
        account_label = (
            claims.get("email")
            or claims.get("preferred_username")
            or claims.get("name")
            or self.settings.default_account_label
        )
        if token.scope:
            granted = token.scope.split()
        else:
            granted = list(scopes or self.settings.scopes)

        credential = StoredCredential(
            token=token,
            issued_at=time.time(),
            session_id=f"session-{uuid.uuid4().hex}",
            account_id=str(account_id),
            account_label=str(account_label),
            scopes=granted,
        )
        self._generation += 1
        await self._save_credential(credential)

        session = credential.to_session()
        self._cached_sessions = [session]
        self.on_did_change_sessions.fire(SessionsChangeEvent(added=[session]))
        self.on_did_change_authentication_state.fire(True)
        return session

    def _register_pending(self, nonce: str) -> asyncio.Future[CallbackResult]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[CallbackResult] = loop.create_future()
        timer = loop.call_later(self.settings.callback_timeout_seconds, self._on_timeout, nonce)
        self._pending[nonce] = _PendingCallback(future=future, timer=timer)
        logger.debug("Registered pending callback: nonce=%s, pending=%d", _short(nonce), len(self._pending))
        return future

    def _discard_pending(self, nonce: str) -> None:
        pending = self._pending.pop(nonce, None)
        if pending is not None:
            pending.timer.cancel()

    def _on_timeout(self, nonce: str) -> None:
        pending = self._pending.pop(nonce, None)
        if pending is None:
            return
        logger.warning(
            "OAuth2 timeout: nonce=%s, remaining pending=%d",
            _short(nonce),
            len(self._pending),
        )
        if not pending.future.done():
            pending.future.set_exception(
                AuthenticationTimeoutError(
                    f"Authentication timed out after {self.settings.callback_timeout_seconds:g} seconds"
                )
            )

    def handle_uri(self, uri: str) -> bool:
        """Route a redirect URI to the flow waiting for it.

        Returns:
            True if an authorization code was delivered to a pending flow.
        """
        query = urlparse(uri).query
        params = parse_qs(query)
        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]
        error = params.get("error", [None])[0]
        self._telemetry.callback_received(has_code=code is not None)

        if error:
            message = params.get("error_description", [None])[0] or error
            logger.error("OAuth2 error: %s", message)
            if state:
                pending = self._pending.pop(state, None)
                if pending is not None:
                    pending.timer.cancel()
                    self._resolve(pending, CallbackResult(error=message, state=state))
            self._show_error(f"Authentication failed: {message}")
            return False

        if not code or not state:
            logger.error("Invalid callback: missing code=%s, state=%s", not code, not state)
            self._show_error("Invalid OAuth callback: missing required parameters")
            return False

        pending = self._pending.pop(state, None)
        if pending is None:
            logger.warning(
                "No pending callback found: nonce=%s, pending=%d",
                _short(state),
                len(self._pending),
            )
            self._show_error(
                "OAuth callback received but no authentication was in progress. Please try signing in again."
            )
            return False

        pending.timer.cancel()
        result = self._oauth2.validate_callback(query)
        logger.info(
            "Routing callback to pending request: nonce=%s, remaining pending=%d",
            _short(state),
            len(self._pending),
        )
        self._resolve(pending, result)
        if not result.ok:
            self._show_error(f"Authentication failed: {result.error}")
        return result.ok

    @staticmethod
    def _resolve(pending: _PendingCallback, result: CallbackResult) -> None:
        if not pending.future.done():
            pending.future.set_result(result)

    # Sign-out

    async def remove_session(self, session_id: str) -> None:
        logger.info("Removing session %s", session_id)
        stored = await self._load_credential()
        if stored is None or stored.session_id != session_id:
            logger.warning("No matching session found")
            return

        await self._drop_session(stored)

        if self.settings.revoke_on_sign_out:
            if stored.refresh_token:
                await self._oauth2.revoke_token(stored.refresh_token, "refresh_token")
            else:
                await self._oauth2.revoke_token(stored.access_token, "access_token")

        logger.info("Session removed successfully")

    async def sign_out(self) -> None:
        await self.initialize()
        if self._cached_sessions:
            await self.remove_session(self._cached_sessions[0].id)

    async def _drop_session(self, stored: StoredCredential) -> None:
        await self._clear_credential()
        self._forget_session(stored)

    def _forget_session(self, stored: StoredCredential) -> None:
        self._generation += 1
        self._refresh_task = None
        self._cached_sessions = []
        self.on_did_change_sessions.fire(SessionsChangeEvent(removed=[stored.to_session()]))
        self.on_did_change_authentication_state.fire(False)

    def dispose(self) -> None:
        """Reject every pending flow. Persisted credentials are left untouched."""
        for nonce, pending in self._pending.items():
            pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_exception(ServiceDisposedError("Authentication service disposed"))
            logger.debug("Rejected pending callback on dispose: nonce=%s", _short(nonce))
        self._pending.clear()
        self._disposed = True

        self.on_did_change_sessions.dispose()
        self.on_did_change_authentication_state.dispose()

    # Persistence

    async def _load_credential(self) -> StoredCredential | None:
        try:
            raw = await self._store.get(self.settings.secret_key)
        except OSError as e:
            logger.error("Failed to read stored credential: %s", e)
            return None
        if not raw:
            return None
        try:
            return StoredCredential.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Failed to load stored credential: %s", e)
            return None

    async def _save_credential(self, credential: StoredCredential) -> None:
        logger.debug("Saving credential for session %s", credential.session_id)
        await self._store.set(self.settings.secret_key, credential.model_dump_json())

    async def _clear_credential(self) -> None:
        await self._store.delete(self.settings.secret_key)
