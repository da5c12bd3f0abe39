"""
Dynamic client registration (RFC 7591) for public clients.
"""

import asyncio
import logging

import aiohttp
from pydantic import ValidationError

from mcp_hub.auth import http
from mcp_hub.auth.models import ClientRegistration
from mcp_hub.core.exceptions import ClientRegistrationFailedError

logger = logging.getLogger(__name__)

GRANT_TYPES = ["authorization_code", "refresh_token"]
RESPONSE_TYPES = ["code"]


def registration_request(client_name: str, redirect_uri: str) -> dict:
    return {
        "client_name": client_name,
        "redirect_uris": [redirect_uri],
        "grant_types": GRANT_TYPES,
        "response_types": RESPONSE_TYPES,
        "token_endpoint_auth_method": "none",
    }


async def register_client(
    registration_endpoint: str,
    redirect_uri: str,
    client_name: str,
    timeout: float = 30.0,
) -> ClientRegistration:
    """Register this application as a public client.

    Args:
        registration_endpoint: The server's advertised registration URL.
        redirect_uri: Callback URI the authorization server redirects to.
        client_name: Human-readable application name.
        timeout: Total request timeout in seconds.

    Returns:
        The issued client credentials (used for this flow only).

    Raises:
        ClientRegistrationFailedError: On a network error, a status other than
            200/201, or a body without ``client_id``.
    """
    logger.info(f"Registering OAuth client at {registration_endpoint}")
    try:
        response = await http.post_json(
            registration_endpoint,
            registration_request(client_name, redirect_uri),
            timeout=timeout,
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ClientRegistrationFailedError(str(e)) from e

    if response.status not in (200, 201):
        raise ClientRegistrationFailedError(f"HTTP {response.status}: {response.text[:200]}")

    try:
        registration = ClientRegistration.model_validate(response.body)
    except ValidationError as e:
        raise ClientRegistrationFailedError("response missing client_id") from e

    logger.info(f"Registered OAuth client {registration.client_id}")
    return registration
