"""Tests for auth models."""

import time

import pytest
from pydantic import ValidationError

from pkcesession.auth.models import (
    AuthorizationFlowState,
    CallbackResult,
    SessionsChangeEvent,
    StoredCredential,
    TokenResponse,
)


class TestTokenResponse:
    """Test TokenResponse model."""

    def test_minimal_response(self):
        token = TokenResponse.model_validate({"access_token": "at"})
        assert token.token_type == "Bearer"
        assert token.refresh_token is None
        assert token.expires_in is None

    def test_requires_access_token(self):
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"token_type": "Bearer"})

    def test_keeps_provider_specific_fields(self):
        """Unknown fields survive a storage round trip."""
        token = TokenResponse.model_validate({"access_token": "at", "ext_expires_in": 7200})
        restored = TokenResponse.model_validate_json(token.model_dump_json())
        assert restored.model_extra == {"ext_expires_in": 7200}


class TestAuthorizationFlowState:
    """Test AuthorizationFlowState model."""

    def test_started_at_defaults_to_now(self):
        before = time.time()
        flow = AuthorizationFlowState(code_verifier="v", state="s", redirect_uri="app://cb")
        assert before <= flow.started_at <= time.time()

    def test_is_expired(self):
        flow = AuthorizationFlowState(
            code_verifier="v", state="s", redirect_uri="app://cb", started_at=time.time() - 601
        )
        assert flow.is_expired(600)
        assert not flow.is_expired(700)


class TestCallbackResult:
    """Test CallbackResult model."""

    def test_ok_with_code(self):
        assert CallbackResult(code="c", state="s").ok

    def test_not_ok_with_error(self):
        assert not CallbackResult(code="c", error="denied").ok

    def test_not_ok_without_code(self):
        assert not CallbackResult(state="s").ok


class TestStoredCredential:
    """Test StoredCredential model."""

    def _credential(self, expires_in: int | None = 3600) -> StoredCredential:
        return StoredCredential(
            token=TokenResponse(access_token="at", refresh_token="rt", expires_in=expires_in),
            issued_at=1_000_000.0,
            session_id="session-1",
            account_id="user-1",
            account_label="ada@example.com",
            scopes=["openid", "email"],
        )

    def test_expires_at(self):
        assert self._credential().expires_at == 1_003_600.0

    def test_no_expiry(self):
        assert self._credential(expires_in=None).expires_at is None

    def test_token_accessors(self):
        credential = self._credential()
        assert credential.access_token == "at"
        assert credential.refresh_token == "rt"

    def test_to_session(self):
        session = self._credential().to_session()

        assert session.id == "session-1"
        assert session.access_token == "at"
        assert session.account.id == "user-1"
        assert session.account.label == "ada@example.com"
        assert session.scopes == ["openid", "email"]

    def test_json_round_trip(self):
        credential = self._credential()
        assert StoredCredential.model_validate_json(credential.model_dump_json()) == credential


class TestSessionsChangeEvent:
    """Test SessionsChangeEvent model."""

    def test_defaults_to_empty_lists(self):
        event = SessionsChangeEvent()
        assert event.added == []
        assert event.removed == []
        assert event.changed == []
