"""Shared test fixtures for auth tests."""

import asyncio
import time
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import pytest

from pkcesession.auth.models import StoredCredential, TokenResponse
from pkcesession.auth.oauth2 import OAuth2Client
from pkcesession.auth.service import AuthenticationService
from pkcesession.auth.storage import MemorySecretStore
from pkcesession.settings import Settings

REDIRECT_URI = "pkcesession://auth/oauth/callback"


class TokenEndpoint:
    """Fake token and revocation endpoints behind httpx.MockTransport."""

    def __init__(self):
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.status_code = 200
        self.token_body: dict | None = None
        self.revoke_status_code = 200

    @property
    def token_requests(self) -> list[dict[str, str]]:
        return [form for path, form in self.requests if path.endswith("/token")]

    @property
    def revoke_requests(self) -> list[dict[str, str]]:
        return [form for path, form in self.requests if path.endswith("/revoke")]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.requests.append((request.url.path, form))

        if request.url.path.endswith("/revoke"):
            return httpx.Response(self.revoke_status_code)

        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "invalid_grant"})

        if self.token_body is not None:
            return httpx.Response(200, json=self.token_body)

        # Echo the grant so tests can tell exchanges apart
        suffix = form.get("code") or form.get("refresh_token")
        return httpx.Response(
            200,
            json={
                "access_token": f"at-{suffix}",
                "refresh_token": f"rt-{suffix}",
                "expires_in": 3600,
                "token_type": "Bearer",
            },
        )


class FakeBrowser:
    """Browser opener that records URLs instead of opening them."""

    def __init__(self, result: bool = True):
        self.result = result
        self.urls: list[str] = []
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    async def __call__(self, url: str) -> bool:
        self.urls.append(url)
        self._queue.put_nowait(url)
        return self.result

    async def next_state(self, timeout: float = 2.0) -> str:
        """Wait for the next opened URL and return its state parameter."""
        url = await asyncio.wait_for(self._queue.get(), timeout)
        return parse_qs(urlparse(url).query)["state"][0]


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        auth_base_url="https://auth.test",
        issuer="https://auth.test",
        client_id="test-client",
    )


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
def oauth2(settings, token_endpoint) -> OAuth2Client:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint))
    return OAuth2Client(settings, http_client=http_client)


@pytest.fixture
def store() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def shown_errors() -> list[str]:
    """Collector for user-visible error messages."""
    return []


@pytest.fixture
def service(oauth2, store, settings, browser, shown_errors) -> AuthenticationService:
    return AuthenticationService(
        oauth2,
        store,
        settings=settings,
        redirect_uri=REDIRECT_URI,
        open_browser=browser,
        show_error=shown_errors.append,
    )


@pytest.fixture
def make_credential():
    """Factory for stored credentials with a given remaining lifetime."""

    def _make(
        remaining: float = 3600,
        refresh_token: str | None = "stored-refresh",
        expires_in: int | None = 3600,
        access_token: str = "stored-access",
    ) -> StoredCredential:
        lifetime = expires_in or 0
        return StoredCredential(
            token=TokenResponse(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=expires_in,
            ),
            issued_at=time.time() - (lifetime - remaining),
            session_id="session-abc",
            account_id="user-42",
            account_label="ada@example.com",
            scopes=["openid"],
        )

    return _make
