"""
Bounded-timeout HTTP helpers for the OAuth flow.

Every call opens its own aiohttp session, applies a total timeout, and
returns the status with the body parsed as JSON when possible. Network
errors (``aiohttp.ClientError``, ``asyncio.TimeoutError``) propagate to the
caller, which maps them onto the OAuth error taxonomy.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Accept": "application/json"}


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: Optional[Any]
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _parse(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


async def _read(response: aiohttp.ClientResponse) -> HttpResponse:
    text = await response.text()
    return HttpResponse(status=response.status, body=_parse(text), text=text)


async def get_json(url: str, timeout: float) -> HttpResponse:
    """GET url expecting a JSON document."""
    async with aiohttp.ClientSession() as session:
        async with session.get(
            url, headers=JSON_HEADERS, timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            return await _read(response)


async def post_form(url: str, data: Mapping[str, str], timeout: float) -> HttpResponse:
    """POST an application/x-www-form-urlencoded body."""
    async with aiohttp.ClientSession() as session:
        async with session.post(
            url,
            data=dict(data),
            headers=JSON_HEADERS,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            return await _read(response)


async def post_json(url: str, payload: Mapping[str, Any], timeout: float) -> HttpResponse:
    """POST a JSON body."""
    async with aiohttp.ClientSession() as session:
        async with session.post(
            url,
            json=dict(payload),
            headers=JSON_HEADERS,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            return await _read(response)
