"""Tests for OAuth callback server."""

import aiohttp
import pytest

from pkcesession.auth.server import CallbackServer, get_success_page


class TestGetSuccessPage:
    """Test success page loading."""

    def test_returns_html(self):
        """get_success_page returns HTML content."""
        html = get_success_page()
        assert "<html" in html.lower()
        assert "</html>" in html.lower()

    def test_includes_success_message(self):
        html = get_success_page()
        assert "authenticated" in html.lower() or "success" in html.lower()


class TestCallbackServer:
    """Test CallbackServer class."""

    @pytest.mark.asyncio
    async def test_server_binds_to_localhost(self):
        """Server binds to localhost on a random port."""
        async with CallbackServer(lambda uri: True, port=0) as server:
            assert server.host == "127.0.0.1"
            assert server.port > 0

    @pytest.mark.asyncio
    async def test_callback_url_format(self):
        async with CallbackServer(lambda uri: True, path="/cb") as server:
            assert server.callback_url == f"http://127.0.0.1:{server.port}/cb"

    @pytest.mark.asyncio
    async def test_forwards_full_uri(self):
        """The handler receives the callback URL with its query string."""
        received: list[str] = []

        def on_uri(uri: str) -> bool:
            received.append(uri)
            return True

        async with CallbackServer(on_uri) as server:
            async with aiohttp.ClientSession() as session:
                url = f"{server.callback_url}?code=test_code&state=test_state"
                async with session.get(url) as resp:
                    assert resp.status == 200
                    body = await resp.text()

        assert received == [f"{server.callback_url}?code=test_code&state=test_state"]
        assert body == get_success_page()

    @pytest.mark.asyncio
    async def test_rejected_callback_renders_error(self):
        """A callback the handler rejects gets an escaped error page."""
        async with CallbackServer(lambda uri: False) as server:
            async with aiohttp.ClientSession() as session:
                url = f"{server.callback_url}?error=access_denied&error_description=%3Cb%3Enope%3C%2Fb%3E"
                async with session.get(url) as resp:
                    assert resp.status == 400
                    body = await resp.text()

        assert "Authentication Error" in body
        assert "&lt;b&gt;nope&lt;/b&gt;" in body
        assert "<b>nope</b>" not in body

    @pytest.mark.asyncio
    async def test_rejected_callback_without_error_param(self):
        async with CallbackServer(lambda uri: False) as server:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{server.callback_url}?code=x&state=y") as resp:
                    assert resp.status == 400
                    assert "Please try again" in await resp.text()

    @pytest.mark.asyncio
    async def test_other_paths_not_served(self):
        calls: list[str] = []

        def on_uri(uri: str) -> bool:
            calls.append(uri)
            return True

        async with CallbackServer(on_uri) as server:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{server.port}/other") as resp:
                    assert resp.status == 404

        assert calls == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        server = CallbackServer(lambda uri: True)
        await server.start()
        await server.stop()
        await server.stop()
