"""Authentication data models."""

import time

from pydantic import BaseModel, ConfigDict, Field


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 section 5.1)."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_in: int | None = None
    id_token: str | None = None
    scope: str | None = None


class AuthorizationFlowState(BaseModel):
    """PKCE material for one authorization attempt, keyed by state."""

    code_verifier: str
    state: str
    nonce: str | None = None
    redirect_uri: str
    started_at: float = Field(default_factory=time.time)

    def is_expired(self, ttl_seconds: float) -> bool:
        return time.time() - self.started_at > ttl_seconds


class CallbackResult(BaseModel):
    """Outcome of a browser redirect: either a code or an error."""

    code: str | None = None
    state: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.code is not None


class Account(BaseModel):
    """Account the session belongs to."""

    id: str
    label: str


class AuthSession(BaseModel):
    """In-memory projection of the stored credential."""

    id: str
    access_token: str
    account: Account
    scopes: list[str] = Field(default_factory=list)


class StoredCredential(BaseModel):
    """The single persisted credential record."""

    token: TokenResponse
    issued_at: float
    session_id: str
    account_id: str
    account_label: str
    scopes: list[str] = Field(default_factory=list)

    @property
    def access_token(self) -> str:
        return self.token.access_token

    @property
    def refresh_token(self) -> str | None:
        return self.token.refresh_token

    @property
    def expires_at(self) -> float | None:
        """Absolute expiry as epoch seconds, or None if the provider gave no lifetime."""
        if self.token.expires_in is None:
            return None
        return self.issued_at + self.token.expires_in

    def to_session(self) -> AuthSession:
        return AuthSession(
            id=self.session_id,
            access_token=self.token.access_token,
            account=Account(id=self.account_id, label=self.account_label),
            scopes=list(self.scopes),
        )


class SessionsChangeEvent(BaseModel):
    """Sessions added, removed or changed by an operation."""

    added: list[AuthSession] = Field(default_factory=list)
    removed: list[AuthSession] = Field(default_factory=list)
    changed: list[AuthSession] = Field(default_factory=list)
