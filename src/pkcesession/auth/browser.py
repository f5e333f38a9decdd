"""External browser opener capability."""

import asyncio
import logging
import webbrowser
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

BrowserOpener = Callable[[str], Awaitable[bool]]


async def open_in_browser(url: str) -> bool:
    """Open url in the system browser.

    Returns:
        True if a browser accepted the URL.
    """
    try:
        return await asyncio.to_thread(webbrowser.open, url)
    except webbrowser.Error as e:
        logger.warning("Could not open browser: %s", e)
        return False
