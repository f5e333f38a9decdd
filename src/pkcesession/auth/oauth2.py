"""OAuth2 authorization code flow with PKCE (RFC 6749, RFC 7636, RFC 7009)."""

import logging
import time
from typing import Any, Literal
from urllib.parse import parse_qs, urlencode

import httpx
import jwt
from pydantic import ValidationError

from pkcesession.auth.models import AuthorizationFlowState, CallbackResult, TokenResponse
from pkcesession.auth.pkce import generate_nonce, generate_pkce, generate_state
from pkcesession.exceptions import (
    FlowExpiredError,
    FlowNotFoundError,
    TokenExchangeError,
    TokenRefreshError,
)
from pkcesession.settings import Settings

logger = logging.getLogger(__name__)

TokenTypeHint = Literal["access_token", "refresh_token"]


class OAuth2Client:
    """Protocol side of the authorization code flow.

    Flows are kept per ``state`` so several authorizations can await their
    callbacks at once; each one expires ``flow_ttl_seconds`` after it started.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._http_client = http_client
        self._flows: dict[str, AuthorizationFlowState] = {}
        self._current_state: str | None = None

    @property
    def flow_count(self) -> int:
        return len(self._flows)

    def get_flow(self, state: str) -> AuthorizationFlowState | None:
        return self._flows.get(state)

    def _purge_expired_flows(self) -> None:
        expired = [s for s, f in self._flows.items() if f.is_expired(self.settings.flow_ttl_seconds)]
        for state in expired:
            del self._flows[state]
        if expired:
            logger.debug("Purged %d expired authorization flows", len(expired))

    async def build_authorization_url(self, redirect_uri: str) -> str:
        """Start a new flow and return the URL to open in the browser."""
        self._purge_expired_flows()

        code_verifier, code_challenge = generate_pkce()
        state = generate_state()
        nonce = generate_nonce() if "openid" in self.settings.scopes else None

        self._flows[state] = AuthorizationFlowState(
            code_verifier=code_verifier,
            state=state,
            nonce=nonce,
            redirect_uri=redirect_uri,
        )
        self._current_state = state

        endpoints = self.settings.oauth2_endpoints()
        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "scope": " ".join(self.settings.scopes),
        }
        if nonce:
            params["nonce"] = nonce
        params.update(self.settings.additional_auth_params)

        logger.debug(
            "Built authorization URL for %s (pending flows: %d)",
            endpoints.authorization_endpoint,
            len(self._flows),
        )
        return f"{endpoints.authorization_endpoint}?{urlencode(params)}"

    def validate_callback(self, query: str) -> CallbackResult:
        """Check callback query parameters against the stored flow for their state."""
        params = parse_qs(query)
        error = params.get("error", [None])[0]
        if error:
            description = params.get("error_description", [None])[0]
            return CallbackResult(error=description or error, state=params.get("state", [None])[0])

        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]
        if not code or not state:
            logger.error("Missing code or state in callback (code=%s, state=%s)", bool(code), bool(state))
            return CallbackResult(error="Missing code or state in callback")

        flow = self._flows.get(state)
        if flow is None:
            return CallbackResult(error="Invalid state - possible CSRF attack")

        if flow.is_expired(self.settings.flow_ttl_seconds):
            return CallbackResult(error="Authorization flow expired", state=state)

        return CallbackResult(code=code, state=state)

    async def _post_form(self, url: str, data: dict[str, str]) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http_client is not None:
            return await self._http_client.post(url, data=data, headers=headers)
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
            return await client.post(url, data=data, headers=headers)

    def _with_client_auth(self, data: dict[str, str]) -> dict[str, str]:
        data["client_id"] = self.settings.client_id
        if self.settings.client_secret:
            data["client_secret"] = self.settings.client_secret
        return data

    async def exchange_code_for_token(self, code: str, state: str | None = None) -> TokenResponse:
        """Exchange an authorization code using the verifier of its flow.

        Args:
            code: Authorization code from the callback.
            state: State of the flow the code belongs to. Defaults to the most
                recently started flow.

        Raises:
            FlowNotFoundError: No flow matches.
            FlowExpiredError: The flow is past its validity window.
            TokenExchangeError: The token endpoint rejected the request.
        """
        state = state or self._current_state
        flow = self._flows.get(state) if state else None
        if flow is None:
            raise FlowNotFoundError("No active OAuth2 flow")
        if flow.is_expired(self.settings.flow_ttl_seconds):
            self._discard_flow(flow.state)
            raise FlowExpiredError("Authorization flow expired")

        data = self._with_client_auth(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": flow.redirect_uri,
                "code_verifier": flow.code_verifier,
            }
        )
        token_endpoint = self.settings.oauth2_endpoints().token_endpoint

        try:
            response = await self._post_form(token_endpoint, data)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token exchange failed: {e}") from e

        if not response.is_success:
            raise TokenExchangeError(f"Token exchange failed: {response.status_code} {response.text}")

        token = self._parse_token_response(response, TokenExchangeError)
        self._discard_flow(flow.state)
        return token

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Obtain a new access token with a refresh token.

        Raises:
            TokenRefreshError: If refresh fails.
        """
        data = self._with_client_auth({"grant_type": "refresh_token", "refresh_token": refresh_token})
        token_endpoint = self.settings.oauth2_endpoints().token_endpoint

        try:
            response = await self._post_form(token_endpoint, data)
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        if not response.is_success:
            raise TokenRefreshError(f"Token refresh failed: {response.status_code} {response.text}")

        return self._parse_token_response(response, TokenRefreshError)

    @staticmethod
    def _parse_token_response(response: httpx.Response, error_cls: type[Exception]) -> TokenResponse:
        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise error_cls(f"Malformed token response: {e}") from e

    def _discard_flow(self, state: str) -> None:
        self._flows.pop(state, None)
        if self._current_state == state:
            self._current_state = None

    def should_refresh_token(
        self,
        token: TokenResponse,
        buffer_seconds: float = 300,
        issued_at: float | None = None,
    ) -> bool:
        """True if the token expires within buffer_seconds of now.

        Expiry is issued_at + expires_in; issued_at defaults to now (a token
        that was just received). Tokens without expires_in never need refresh;
        expires_in=0 means already expired.
        """
        if token.expires_in is None:
            return False
        now = time.time()
        expires_at = (issued_at if issued_at is not None else now) + token.expires_in
        return expires_at - now < buffer_seconds

    def get_user_info(self, token: TokenResponse) -> dict[str, Any] | None:
        """Decode claims from the ID token, or from the access token if it is a JWT."""
        raw = token.id_token or token.access_token
        if not raw:
            return None
        try:
            claims = jwt.decode(raw, options={"verify_signature": False})
        except jwt.PyJWTError:
            return None
        return claims if isinstance(claims, dict) else None

    async def revoke_token(self, token: str, token_type_hint: TokenTypeHint | None = None) -> None:
        """Revoke a token. Best effort: failures are logged, never raised."""
        revocation_endpoint = self.settings.oauth2_endpoints().revocation_endpoint
        if not revocation_endpoint:
            logger.warning("Revocation endpoint not available")
            return

        data = {"token": token}
        if token_type_hint:
            data["token_type_hint"] = token_type_hint
        data = self._with_client_auth(data)

        try:
            response = await self._post_form(revocation_endpoint, data)
        except httpx.HTTPError as e:
            logger.warning("Token revocation failed: %s", e)
            return

        # RFC 7009: the endpoint answers 200 even for unknown tokens
        if not response.is_success:
            logger.warning("Token revocation returned %d", response.status_code)
