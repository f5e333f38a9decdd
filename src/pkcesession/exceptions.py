"""Exception hierarchy for pkcesession."""


class PkceSessionError(Exception):
    """Base exception for all pkcesession errors."""


class ConfigError(PkceSessionError):
    """Configuration is missing or malformed."""


class AuthError(PkceSessionError):
    """Base exception for authentication errors."""


class OAuthCallbackError(AuthError):
    """OAuth callback reported an error or failed validation."""


class AuthenticationTimeoutError(OAuthCallbackError):
    """No callback arrived before the flow timed out."""


class ServiceDisposedError(OAuthCallbackError):
    """Authentication service was disposed while a flow was pending."""


class BrowserOpenError(AuthError):
    """External browser could not be opened."""


class FlowNotFoundError(AuthError):
    """No authorization flow matches the callback state."""


class FlowExpiredError(AuthError):
    """Authorization flow is older than its validity window."""


class TokenExchangeError(AuthError):
    """Failed to exchange an authorization code for tokens."""


class TokenRefreshError(AuthError):
    """Failed to refresh OAuth token."""


class NotAuthenticatedError(AuthError):
    """No authenticated session is available."""

    def __init__(self) -> None:
        super().__init__("Not signed in. Run `pkcesession auth login` to authenticate.")
