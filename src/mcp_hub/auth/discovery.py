"""
OAuth metadata discovery for remote tool servers.

Providers publish their authorization metadata in different places, so
discovery is an ordered list of strategies, each proposing candidate URLs.
The first candidate that yields a structurally valid document wins:

1. Protected resource document (RFC 9728) at the host root, under a
   service-name segment, or next to the server path; its first
   ``authorization_servers`` entry is then resolved to authorization server
   metadata, falling back to conventional ``/oauth/authorize`` and
   ``/oauth/token`` endpoints when that server publishes no document.
2. Authorization server document (RFC 8414) probed directly at the host
   root or under the service-name segment, for servers that skip the
   protected resource indirection.

Discovery results are never cached: endpoints may rotate between attempts.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import SplitResult, urlsplit

import aiohttp
from pydantic import ValidationError

from mcp_hub.auth import http
from mcp_hub.auth.models import AuthorizationServerMetadata, ProtectedResourceMetadata
from mcp_hub.core.exceptions import InvalidServerURLError, MetadataNotFoundError

logger = logging.getLogger(__name__)

PROTECTED_RESOURCE_PATH = ".well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_PATH = ".well-known/oauth-authorization-server"


def _origin(url: SplitResult) -> str:
    return f"{url.scheme}://{url.netloc}"


def service_name(url: SplitResult) -> str:
    """First path segment, e.g. ``googlecalendar`` for ``/googlecalendar/mcp``."""
    segments = [segment for segment in url.path.split("/") if segment]
    return segments[0] if segments else ""


def _dedupe(urls: list[str]) -> list[str]:
    seen: set[str] = set()
    return [u for u in urls if not (u in seen or seen.add(u))]


class DiscoveryStrategy(ABC):
    """One metadata publishing convention."""

    name: str = ""

    @abstractmethod
    def candidates(self, server_url: SplitResult) -> list[str]:
        """URLs to probe, in order."""
        pass

    @abstractmethod
    async def probe(
        self, url: str, discovery: "MetadataDiscovery"
    ) -> Optional[AuthorizationServerMetadata]:
        """Return metadata if url yields a valid result, else None."""
        pass


class ProtectedResourceStrategy(DiscoveryStrategy):
    name = "oauth-protected-resource"

    def candidates(self, server_url: SplitResult) -> list[str]:
        origin = _origin(server_url)
        urls = [f"{origin}/{PROTECTED_RESOURCE_PATH}"]

        service = service_name(server_url)
        if service:
            urls.append(f"{origin}/{PROTECTED_RESOURCE_PATH}/{service}")

        parent = server_url.path.rstrip("/").rsplit("/", 1)[0]
        urls.append(f"{origin}{parent}/{PROTECTED_RESOURCE_PATH}")
        return _dedupe(urls)

    async def probe(
        self, url: str, discovery: "MetadataDiscovery"
    ) -> Optional[AuthorizationServerMetadata]:
        document = await discovery.fetch_document(url)
        if document is None:
            return None
        try:
            resource = ProtectedResourceMetadata.model_validate(document)
        except ValidationError as e:
            logger.debug(f"Invalid protected resource document at {url}: {e}")
            return None
        if not resource.authorization_servers:
            return None

        logger.info(f"Found OAuth resource metadata at {url}")
        return await discovery.fetch_authorization_server(
            resource.authorization_servers[0], allow_fallback=True
        )


class DirectAuthorizationServerStrategy(DiscoveryStrategy):
    name = "oauth-authorization-server"

    def candidates(self, server_url: SplitResult) -> list[str]:
        origin = _origin(server_url)
        urls = [origin]
        service = service_name(server_url)
        if service:
            urls.append(f"{origin}/{service}")
        return urls

    async def probe(
        self, url: str, discovery: "MetadataDiscovery"
    ) -> Optional[AuthorizationServerMetadata]:
        return await discovery.fetch_authorization_server(url, allow_fallback=False)


DEFAULT_STRATEGIES: tuple[DiscoveryStrategy, ...] = (
    ProtectedResourceStrategy(),
    DirectAuthorizationServerStrategy(),
)


class MetadataDiscovery:
    """Runs discovery strategies in order with early exit.

    Args:
        timeout: Seconds allowed per probe.
        strategies: Strategies to evaluate (defaults to DEFAULT_STRATEGIES).
    """

    def __init__(
        self,
        timeout: float = 10.0,
        strategies: Optional[tuple[DiscoveryStrategy, ...]] = None,
    ) -> None:
        self.timeout = timeout
        self.strategies = strategies or DEFAULT_STRATEGIES

    async def discover(self, server_url: str) -> AuthorizationServerMetadata:
        """Find authorization server metadata for a tool server URL.

        Raises:
            InvalidServerURLError: If server_url is not an absolute http(s) URL.
            MetadataNotFoundError: If every candidate fails.
        """
        parsed = urlsplit(server_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidServerURLError(server_url)

        for strategy in self.strategies:
            for url in strategy.candidates(parsed):
                logger.info(f"Trying {strategy.name} URL: {url}")
                metadata = await strategy.probe(url, self)
                if metadata is not None:
                    return metadata

        raise MetadataNotFoundError(server_url)

    async def fetch_document(self, url: str) -> Optional[dict[str, Any]]:
        """GET a JSON object; any failure yields None."""
        try:
            response = await http.get_json(url, timeout=self.timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Failed to fetch {url}: {e}")
            return None
        if response.status != 200 or not isinstance(response.body, dict):
            logger.debug(f"No metadata at {url} (status {response.status})")
            return None
        return response.body

    async def fetch_authorization_server(
        self, base_url: str, allow_fallback: bool
    ) -> Optional[AuthorizationServerMetadata]:
        """Fetch ``<base_url>/.well-known/oauth-authorization-server``.

        With allow_fallback, a missing or invalid document produces
        conventional endpoints derived from base_url instead of None.
        """
        base = base_url.rstrip("/")
        metadata_url = f"{base}/{AUTHORIZATION_SERVER_PATH}"
        logger.info(f"Trying auth server metadata URL: {metadata_url}")

        document = await self.fetch_document(metadata_url)
        if document is not None:
            try:
                metadata = AuthorizationServerMetadata.model_validate(document)
            except ValidationError as e:
                logger.debug(f"Invalid authorization server document at {metadata_url}: {e}")
            else:
                if metadata.has_endpoints:
                    return metadata

        if not allow_fallback:
            return None

        logger.info(f"Using fallback OAuth endpoint construction for: {base}")
        return AuthorizationServerMetadata(
            issuer=base,
            authorization_endpoint=f"{base}/oauth/authorize",
            token_endpoint=f"{base}/oauth/token",
            response_types_supported=["code"],
            code_challenge_methods_supported=["S256"],
        )
