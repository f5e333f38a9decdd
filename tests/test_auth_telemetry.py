"""Tests for auth telemetry."""

import hashlib

from pkcesession.auth.telemetry import AuthTelemetry, hash_user_id


class TestHashUserId:
    """Test hash_user_id function."""

    def test_sha256_hex(self):
        assert hash_user_id("user-1") == hashlib.sha256(b"user-1").hexdigest()

    def test_is_stable(self):
        assert hash_user_id("user-1") == hash_user_id("user-1")
        assert hash_user_id("user-1") != hash_user_id("user-2")


class TestAuthTelemetry:
    """Test AuthTelemetry events."""

    def _recording(self) -> tuple[AuthTelemetry, list[tuple[str, dict]]]:
        events: list[tuple[str, dict]] = []
        return AuthTelemetry(sink=lambda name, props: events.append((name, props))), events

    def test_without_sink(self):
        """Events are only logged when no sink is configured."""
        AuthTelemetry().auth_started()

    def test_flow_events(self):
        telemetry, events = self._recording()

        telemetry.auth_started()
        telemetry.callback_received(has_code=True)
        telemetry.token_exchange_started()
        telemetry.auth_failed("OAuthCallbackError", duration_ms=12.5)

        assert events == [
            ("auth.started", {}),
            ("auth.callback_received", {"has_code": True}),
            ("auth.token_exchange_started", {}),
            ("auth.failed", {"error_type": "OAuthCallbackError", "duration_ms": 12.5}),
        ]

    def test_user_ids_are_hashed(self):
        """User ids never reach the sink in clear text."""
        telemetry, events = self._recording()

        telemetry.auth_succeeded("user-1", duration_ms=5)
        telemetry.session_restored("user-1")

        assert events == [
            ("auth.succeeded", {"user_id_hash": hash_user_id("user-1"), "duration_ms": 5}),
            ("auth.session_restored", {"user_id_hash": hash_user_id("user-1"), "source": "storage"}),
        ]
        assert all("user-1" not in str(props) for _, props in events)

    def test_token_refresh_outcomes(self):
        telemetry, events = self._recording()

        telemetry.token_refreshed("user-1", success=True)
        telemetry.token_refreshed("user-1", success=False)

        assert [name for name, _ in events] == ["auth.token_refreshed", "auth.token_refresh_failed"]
