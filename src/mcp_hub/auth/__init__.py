"""
OAuth support for remote tool servers.

This package provides:
- Metadata discovery across protected-resource and authorization-server conventions
- Dynamic client registration
- PKCE authorization through a browser-presented session
- Token exchange, refresh and persistence
"""

from mcp_hub.auth.browser import AuthorizationPresenter, SingleFireCompletion, SystemBrowserPresenter
from mcp_hub.auth.discovery import MetadataDiscovery
from mcp_hub.auth.flow import AuthState, OAuthFlowEngine, build_authorization_url
from mcp_hub.auth.models import (
    AuthorizationServerMetadata,
    OAuthTokenRecord,
    ProtectedResourceMetadata,
)
from mcp_hub.auth.pkce import PKCEPair
from mcp_hub.auth.store import TokenStore

__all__ = [
    "AuthState",
    "AuthorizationPresenter",
    "AuthorizationServerMetadata",
    "MetadataDiscovery",
    "OAuthFlowEngine",
    "OAuthTokenRecord",
    "PKCEPair",
    "ProtectedResourceMetadata",
    "SingleFireCompletion",
    "SystemBrowserPresenter",
    "TokenStore",
    "build_authorization_url",
]
