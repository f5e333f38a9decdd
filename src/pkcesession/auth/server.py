"""Loopback HTTP server that delivers OAuth redirects to a URI handler."""

import html
import logging
from collections.abc import Callable
from importlib.resources import files

from aiohttp import web

logger = logging.getLogger(__name__)

UriHandler = Callable[[str], bool]


def get_success_page() -> str:
    """Load the success HTML page."""
    return files("pkcesession.auth.pages").joinpath("success.html").read_text()


def _get_error_page(message: str) -> str:
    """Generate error HTML page."""
    return f"""<!DOCTYPE html>
<html>
<head><title>Authentication Error</title></head>
<body style="background:#0d1117;color:#f85149;font-family:monospace;padding:2rem;">
<h1>Authentication Error</h1>
<p>{html.escape(message)}</p>
</body>
</html>"""


class CallbackServer:
    """Temporary HTTP server that receives the browser redirect.

    Every request to ``path`` is handed to ``on_uri`` as a full URI; the
    handler decides which pending flow it belongs to.
    """

    def __init__(
        self,
        on_uri: UriHandler,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/oauth/callback",
    ):
        """Initialize callback server.

        Args:
            on_uri: Receives each callback URI, returns True if it completed a flow.
            host: Interface to bind to.
            port: Port to bind to. 0 = random available port.
            path: Callback path registered with the provider.
        """
        self.host = host
        self.path = path
        self._requested_port = port
        self.port = 0
        self._on_uri = on_uri
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def callback_url(self) -> str:
        """Get the redirect URI served by this server."""
        return f"http://{self.host}:{self.port}{self.path}"

    async def start(self) -> None:
        """Start the callback server."""
        app = web.Application()
        app.router.add_get(self.path, self._handle_callback)

        self._runner = web.AppRunner(app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self._requested_port)
        await self._site.start()

        # Get actual port if we requested 0
        assert self._site._server is not None
        sockets = self._site._server.sockets
        if sockets:
            self.port = sockets[0].getsockname()[1]

        logger.debug("Callback server started on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the callback server."""
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    async def __aenter__(self) -> "CallbackServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _handle_callback(self, request: web.Request) -> web.Response:
        """Forward the redirect and render the outcome for the user."""
        uri = f"{self.callback_url}?{request.query_string}"
        if self._on_uri(uri):
            return web.Response(text=get_success_page(), content_type="text/html")

        message = request.query.get("error_description") or request.query.get("error")
        return web.Response(
            text=_get_error_page(message or "Authentication could not be completed. Please try again."),
            content_type="text/html",
            status=400,
        )
