"""HTTP client factory for calling APIs on the user's behalf."""

import logging

import httpx

from pkcesession.auth.service import AuthenticationService

logger = logging.getLogger(__name__)


async def get_authorized_client(
    service: AuthenticationService,
    base_url: str = "",
) -> httpx.AsyncClient | None:
    """Get an httpx client carrying the current access token.

    The token is refreshed first if it is close to expiry.

    Returns:
        Configured httpx.AsyncClient if signed in, None otherwise.
    """
    token = await service.get_token()
    if token is None:
        logger.debug("No authenticated session, not building client")
        return None

    return httpx.AsyncClient(
        base_url=base_url,
        headers={"Authorization": f"Bearer {token}"},
    )
