"""
Tests for OAuth metadata discovery, client registration and the HTTP helpers.

Tests validate:
- Candidate URL order across both conventions
- Fallback endpoint construction for a resolved authorization server
- Direct authorization server probing
- Metadata-not-found after all candidates fail
- Registration request shape and failure handling
"""

import asyncio
from unittest.mock import AsyncMock, patch
from urllib.parse import urlsplit

import aiohttp
import pytest
from conftest import create_mock_response, create_mock_session, json_response

from mcp_hub.auth import http
from mcp_hub.auth.discovery import (
    DirectAuthorizationServerStrategy,
    MetadataDiscovery,
    ProtectedResourceStrategy,
    service_name,
)
from mcp_hub.auth.registration import register_client
from mcp_hub.core.exceptions import (
    ClientRegistrationFailedError,
    InvalidServerURLError,
    MetadataNotFoundError,
)

SERVER_URL = "https://mcp.example.com/googlecalendar/mcp"


def _responder(documents: dict):
    """get_json stand-in serving documents by URL; anything else is a 404."""

    async def _get_json(url, timeout):
        if url in documents:
            document = documents[url]
            if isinstance(document, Exception):
                raise document
            return json_response(200, document)
        return json_response(404, {"error": "not_found"})

    return AsyncMock(side_effect=_get_json)


class TestCandidates:
    """Candidate URL construction tests."""

    def test_service_name_is_first_path_segment(self):
        assert service_name(urlsplit(SERVER_URL)) == "googlecalendar"
        assert service_name(urlsplit("https://mcp.example.com")) == ""

    def test_protected_resource_candidates(self):
        assert ProtectedResourceStrategy().candidates(urlsplit(SERVER_URL)) == [
            "https://mcp.example.com/.well-known/oauth-protected-resource",
            "https://mcp.example.com/.well-known/oauth-protected-resource/googlecalendar",
            "https://mcp.example.com/googlecalendar/.well-known/oauth-protected-resource",
        ]

    def test_root_url_candidates_deduplicated(self):
        assert ProtectedResourceStrategy().candidates(urlsplit("https://mcp.linear.app/sse")) == [
            "https://mcp.linear.app/.well-known/oauth-protected-resource",
            "https://mcp.linear.app/.well-known/oauth-protected-resource/sse",
        ]

    def test_direct_candidates(self):
        assert DirectAuthorizationServerStrategy().candidates(urlsplit(SERVER_URL)) == [
            "https://mcp.example.com",
            "https://mcp.example.com/googlecalendar",
        ]


class TestDiscover:
    """Discovery sequence tests."""

    @pytest.mark.asyncio
    async def test_protected_resource_then_authorization_server(self):
        get_json = _responder(
            {
                "https://mcp.example.com/.well-known/oauth-protected-resource": {
                    "resource": SERVER_URL,
                    "authorization_servers": ["https://auth.example.com"],
                },
                "https://auth.example.com/.well-known/oauth-authorization-server": {
                    "issuer": "https://auth.example.com",
                    "authorization_endpoint": "https://auth.example.com/authorize",
                    "token_endpoint": "https://auth.example.com/token",
                    "registration_endpoint": "https://auth.example.com/register",
                    "scopes_supported": ["read", "write"],
                },
            }
        )
        with patch("mcp_hub.auth.http.get_json", get_json):
            metadata = await MetadataDiscovery(timeout=1.0).discover(SERVER_URL)

        assert metadata.authorization_endpoint == "https://auth.example.com/authorize"
        assert metadata.registration_endpoint == "https://auth.example.com/register"
        assert get_json.await_count == 2

    @pytest.mark.asyncio
    async def test_namespaced_resource_with_fallback_endpoints(self):
        get_json = _responder(
            {
                "https://mcp.example.com/.well-known/oauth-protected-resource/googlecalendar": {
                    "authorization_servers": ["https://auth.example.com/tenant/"],
                },
            }
        )
        with patch("mcp_hub.auth.http.get_json", get_json):
            metadata = await MetadataDiscovery(timeout=1.0).discover(SERVER_URL)

        assert metadata.authorization_endpoint == "https://auth.example.com/tenant/oauth/authorize"
        assert metadata.token_endpoint == "https://auth.example.com/tenant/oauth/token"
        assert metadata.registration_endpoint is None

    @pytest.mark.asyncio
    async def test_resource_without_authorization_servers_is_skipped(self):
        get_json = _responder(
            {
                "https://mcp.example.com/.well-known/oauth-protected-resource": {"resource": SERVER_URL},
                "https://mcp.example.com/.well-known/oauth-authorization-server": {
                    "authorization_endpoint": "https://mcp.example.com/authorize",
                    "token_endpoint": "https://mcp.example.com/token",
                },
            }
        )
        with patch("mcp_hub.auth.http.get_json", get_json):
            metadata = await MetadataDiscovery(timeout=1.0).discover(SERVER_URL)

        assert metadata.token_endpoint == "https://mcp.example.com/token"

    @pytest.mark.asyncio
    async def test_network_errors_advance_to_next_candidate(self):
        get_json = _responder(
            {
                "https://mcp.example.com/.well-known/oauth-protected-resource": asyncio.TimeoutError(),
                "https://mcp.example.com/googlecalendar/.well-known/oauth-authorization-server": {
                    "authorization_endpoint": "https://mcp.example.com/googlecalendar/authorize",
                    "token_endpoint": "https://mcp.example.com/googlecalendar/token",
                },
            }
        )
        with patch("mcp_hub.auth.http.get_json", get_json):
            metadata = await MetadataDiscovery(timeout=1.0).discover(SERVER_URL)

        assert metadata.authorization_endpoint.endswith("/googlecalendar/authorize")

    @pytest.mark.asyncio
    async def test_direct_document_without_endpoints_is_rejected(self):
        get_json = _responder(
            {"https://mcp.example.com/.well-known/oauth-authorization-server": {"issuer": "x"}}
        )
        with patch("mcp_hub.auth.http.get_json", get_json):
            with pytest.raises(MetadataNotFoundError):
                await MetadataDiscovery(timeout=1.0).discover(SERVER_URL)

    @pytest.mark.asyncio
    async def test_nothing_found(self):
        get_json = _responder({})
        with patch("mcp_hub.auth.http.get_json", get_json):
            with pytest.raises(MetadataNotFoundError):
                await MetadataDiscovery(timeout=1.0).discover(SERVER_URL)

        # 3 protected-resource probes + 2 direct probes
        assert get_json.await_count == 5

    @pytest.mark.asyncio
    async def test_invalid_url(self):
        with pytest.raises(InvalidServerURLError):
            await MetadataDiscovery().discover("not a url")


class TestRegistration:
    """Dynamic client registration tests."""

    @pytest.mark.asyncio
    async def test_registration_request_shape(self):
        post_json = AsyncMock(return_value=json_response(201, {"client_id": "dyn-123"}))
        with patch("mcp_hub.auth.http.post_json", post_json):
            registration = await register_client(
                "https://auth.example.com/register",
                redirect_uri="mcphub://oauth-callback",
                client_name="MCP Hub",
            )

        assert registration.client_id == "dyn-123"
        assert registration.client_secret is None
        payload = post_json.await_args.args[1]
        assert payload == {
            "client_name": "MCP Hub",
            "redirect_uris": ["mcphub://oauth-callback"],
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
        }

    @pytest.mark.asyncio
    async def test_registration_rejected(self):
        post_json = AsyncMock(return_value=json_response(400, {"error": "invalid_client_metadata"}))
        with patch("mcp_hub.auth.http.post_json", post_json):
            with pytest.raises(ClientRegistrationFailedError):
                await register_client("https://auth.example.com/register", "mcphub://oauth-callback", "MCP Hub")

    @pytest.mark.asyncio
    async def test_registration_network_error(self):
        post_json = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        with patch("mcp_hub.auth.http.post_json", post_json):
            with pytest.raises(ClientRegistrationFailedError):
                await register_client("https://auth.example.com/register", "mcphub://oauth-callback", "MCP Hub")


class TestHttpHelpers:
    """aiohttp helper tests."""

    @pytest.mark.asyncio
    async def test_get_json_parses_body(self):
        captured = {}
        mock_client = create_mock_session(create_mock_response(200, '{"a": 1}'), captured)
        with patch("aiohttp.ClientSession", mock_client):
            response = await http.get_json("https://example.com/doc", timeout=2.0)

        assert response.ok
        assert response.body == {"a": 1}
        assert captured["url"] == "https://example.com/doc"
        assert captured["timeout"].total == 2.0

    @pytest.mark.asyncio
    async def test_non_json_body_is_none(self):
        mock_client = create_mock_session(create_mock_response(502, "<html>bad gateway</html>"))
        with patch("aiohttp.ClientSession", mock_client):
            response = await http.post_form("https://example.com/token", {"a": "b"}, timeout=2.0)

        assert not response.ok
        assert response.body is None
        assert response.text.startswith("<html>")

    @pytest.mark.asyncio
    async def test_post_form_sends_form_data(self):
        captured = {}
        mock_client = create_mock_session(create_mock_response(200, "{}"), captured)
        with patch("aiohttp.ClientSession", mock_client):
            await http.post_form("https://example.com/token", {"grant_type": "refresh_token"}, timeout=2.0)

        assert captured["data"] == {"grant_type": "refresh_token"}
