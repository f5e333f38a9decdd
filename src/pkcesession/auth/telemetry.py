"""Telemetry for the authentication lifecycle.

User ids are never recorded in clear text: they are SHA-256 hashed before
leaving this module.
"""

import hashlib
import logging
from collections.abc import Callable
from functools import lru_cache
from typing import Any, Literal

logger = logging.getLogger(__name__)

TelemetrySink = Callable[[str, dict[str, Any]], None]


@lru_cache(maxsize=128)
def hash_user_id(user_id: str) -> str:
    return hashlib.sha256(user_id.encode("utf-8")).hexdigest()


class AuthTelemetry:
    """Records auth events to a logger and an optional sink."""

    def __init__(self, sink: TelemetrySink | None = None):
        self._sink = sink

    def _send(self, event: str, **properties: Any) -> None:
        logger.debug("telemetry %s %s", event, properties)
        if self._sink is not None:
            self._sink(event, properties)

    def auth_started(self) -> None:
        self._send("auth.started")

    def callback_received(self, has_code: bool) -> None:
        self._send("auth.callback_received", has_code=has_code)

    def token_exchange_started(self) -> None:
        self._send("auth.token_exchange_started")

    def auth_succeeded(self, user_id: str, duration_ms: float) -> None:
        self._send("auth.succeeded", user_id_hash=hash_user_id(user_id), duration_ms=duration_ms)

    def auth_failed(self, error_type: str, duration_ms: float) -> None:
        self._send("auth.failed", error_type=error_type, duration_ms=duration_ms)

    def session_restored(self, user_id: str, source: Literal["storage"] = "storage") -> None:
        self._send("auth.session_restored", user_id_hash=hash_user_id(user_id), source=source)

    def token_refreshed(self, user_id: str, success: bool) -> None:
        event = "auth.token_refreshed" if success else "auth.token_refresh_failed"
        self._send(event, user_id_hash=hash_user_id(user_id))
