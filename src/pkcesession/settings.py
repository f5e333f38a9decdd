"""Application settings and OAuth2 endpoint derivation."""

from functools import lru_cache
from urllib.parse import urlparse

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class OAuth2Endpoints(BaseModel):
    """Provider endpoints derived from the auth base URL."""

    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PKCESESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity provider
    auth_base_url: str = "https://auth.example.com"
    issuer: str = "https://auth.example.com"
    client_id: str = "pkcesession-client"
    client_secret: str | None = None
    scopes: list[str] = ["openid", "email", "profile"]
    additional_auth_params: dict[str, str] = {}

    # Redirect URI (<uri_scheme>://<callback_authority><callback_path>)
    uri_scheme: str = "pkcesession"
    callback_authority: str = "auth"
    callback_path: str = "/oauth/callback"

    # Loopback callback server used by the CLI
    callback_host: str = "127.0.0.1"
    callback_port: int = 0

    # Flow and token timing
    callback_timeout_seconds: float = 300
    flow_ttl_seconds: float = 600
    refresh_buffer_seconds: float = 300
    http_timeout_seconds: float = 30

    # Session persistence
    secret_key: str = "pkcesession.tokens"
    default_account_label: str = "PKCE Session User"
    revoke_on_sign_out: bool = True

    def oauth2_endpoints(self) -> OAuth2Endpoints:
        """Derive OAuth2 endpoints from auth_base_url."""
        base = self.auth_base_url.rstrip("/")
        return OAuth2Endpoints(
            authorization_endpoint=f"{base}/oauth/authorize",
            token_endpoint=f"{base}/oauth/token",
            revocation_endpoint=f"{base}/oauth/revoke",
        )

    def redirect_uri(self) -> str:
        """Build the redirect URI registered with the provider."""
        return f"{self.uri_scheme}://{self.callback_authority}{self.callback_path}"

    def validate_config(self) -> list[str]:
        """Return a list of human-readable configuration problems."""
        errors: list[str] = []
        for name in ("auth_base_url", "issuer"):
            parsed = urlparse(getattr(self, name))
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(f"Invalid {name}: {getattr(self, name)!r}")
        if not self.client_id.strip():
            errors.append("client_id must not be empty")
        if not self.callback_path.startswith("/"):
            errors.append("callback_path must start with '/'")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
