"""PKCE (Proof Key for Code Exchange) utilities for OAuth 2.0."""

import base64
import hashlib
import secrets


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier.

    Returns:
        43-character base64url string (32 random bytes, no padding).
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).rstrip(b"=").decode("ascii")


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier.

    Returns:
        base64url(SHA256(verifier)) without padding, per RFC 7636.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """Generate PKCE code verifier and challenge.

    Returns:
        Tuple of (code_verifier, code_challenge).
    """
    verifier = generate_code_verifier()
    return verifier, generate_code_challenge(verifier)


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Random value for ID token binding; required when openid scope is requested."""
    return secrets.token_urlsafe(32)
