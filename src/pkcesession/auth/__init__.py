"""Authentication module for pkcesession."""

from pkcesession.auth.client import get_authorized_client
from pkcesession.auth.events import Emitter
from pkcesession.auth.models import (
    Account,
    AuthorizationFlowState,
    AuthSession,
    CallbackResult,
    SessionsChangeEvent,
    StoredCredential,
    TokenResponse,
)
from pkcesession.auth.oauth2 import OAuth2Client
from pkcesession.auth.service import AuthenticationService
from pkcesession.auth.storage import FileSecretStore, MemorySecretStore, SecretStore

__all__ = [
    "Account",
    "AuthSession",
    "AuthenticationService",
    "AuthorizationFlowState",
    "CallbackResult",
    "Emitter",
    "FileSecretStore",
    "MemorySecretStore",
    "OAuth2Client",
    "SecretStore",
    "SessionsChangeEvent",
    "StoredCredential",
    "TokenResponse",
    "get_authorized_client",
]
