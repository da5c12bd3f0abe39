"""
Core module for tool server connections, the tool catalog and tool invocation.

Only the exception hierarchy is re-exported here; import the components from
their own modules.
"""

from .exceptions import (
    AuthenticationFailedError,
    ClientRegistrationFailedError,
    ConfigurationError,
    ConnectionTimeoutError,
    InvalidAuthorizationURLError,
    InvalidCallbackError,
    InvalidMetadataError,
    InvalidResponseError,
    InvalidServerURLError,
    MCPHubError,
    MetadataNotFoundError,
    OAuthError,
    ProcessLaunchError,
    ServerConnectionError,
    SessionStartFailedError,
    TokenExchangeFailedError,
    TokenRefreshFailedError,
    ToolExecutionError,
    UserCancelledError,
)

__all__ = [
    "MCPHubError",
    "ConfigurationError",
    "ProcessLaunchError",
    "ConnectionTimeoutError",
    "ServerConnectionError",
    "ToolExecutionError",
    "OAuthError",
    "InvalidServerURLError",
    "InvalidResponseError",
    "MetadataNotFoundError",
    "InvalidMetadataError",
    "InvalidAuthorizationURLError",
    "InvalidCallbackError",
    "UserCancelledError",
    "SessionStartFailedError",
    "AuthenticationFailedError",
    "TokenExchangeFailedError",
    "TokenRefreshFailedError",
    "ClientRegistrationFailedError",
]
