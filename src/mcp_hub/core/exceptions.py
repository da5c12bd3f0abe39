"""
Custom exception hierarchy for the MCP hub.

Provides explicit failure modes instead of silent failures and generic exceptions.
This allows callers to tell a connection timeout from a protocol error, and a
user cancelling authentication from an authorization server that is broken.
"""

from typing import Optional


class MCPHubError(Exception):
    """
    Base exception for all MCP hub errors.

    All custom exceptions in the hub inherit from this class
    to allow catching all hub-related errors with a single except clause.
    """

    pass


class ConfigurationError(MCPHubError):
    """
    Configuration validation failed.

    Raised when a server definition or settings document is missing or invalid.
    Examples:
    - A local server without a command
    - A remote server without a url
    - An unreadable mcpServers document
    """

    pass


class ProcessLaunchError(MCPHubError):
    """
    A local tool server process could not be started.

    Fatal to that connection attempt; no session is created.
    """

    pass


class ConnectionTimeoutError(MCPHubError):
    """
    The handshake with a tool server did not finish within the connect timeout.

    Deliberately not a subclass of ServerConnectionError so the two are never
    conflated by callers.
    """

    def __init__(self, server_name: str, timeout: float) -> None:
        self.server_name = server_name
        self.timeout = timeout
        super().__init__("Connection timeout")


class ServerConnectionError(MCPHubError):
    """
    The protocol handshake with a tool server failed.
    """

    pass


class ToolExecutionError(MCPHubError):
    """
    Tool input could not be converted into protocol call arguments.

    Never escapes ``execute``; converted into an error result instead.
    """

    pass


# =============================================================================
# OAuth errors
# =============================================================================

CANCELLED = "cancelled"
SERVER_BROKEN = "server"
REAUTHENTICATE = "reauthenticate"


class OAuthError(MCPHubError):
    """
    Base class for OAuth failures.

    Each subclass carries a fixed description and a category used to pick
    the message shown to the user.
    """

    description = "OAuth error"
    category = SERVER_BROKEN

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail
        if detail:
            super().__init__(f"{self.description}: {detail}")
        else:
            super().__init__(self.description)

    def user_message(self) -> str:
        """Explain the failure in terms the user can act on."""
        if self.category == CANCELLED:
            return "You cancelled the sign-in."
        if self.category == REAUTHENTICATE:
            return "Your session has expired. Please sign in again."
        return f"The server's authentication is not working: {self}"


class InvalidServerURLError(OAuthError):
    description = "Invalid server URL"


class InvalidResponseError(OAuthError):
    description = "Invalid response from server"


class MetadataNotFoundError(OAuthError):
    description = "OAuth metadata not found"


class InvalidMetadataError(OAuthError):
    description = "Invalid OAuth metadata"


class InvalidAuthorizationURLError(OAuthError):
    description = "Invalid authorization URL"


class InvalidCallbackError(OAuthError):
    description = "Invalid callback from authentication"


class UserCancelledError(OAuthError):
    description = "Authentication cancelled by user"
    category = CANCELLED


class SessionStartFailedError(OAuthError):
    description = "Failed to start authentication session"


class AuthenticationFailedError(OAuthError):
    description = "Authentication failed"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TokenExchangeFailedError(OAuthError):
    description = "Token exchange failed"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TokenRefreshFailedError(OAuthError):
    description = "Failed to refresh token"
    category = REAUTHENTICATE


class ClientRegistrationFailedError(OAuthError):
    description = "Failed to register OAuth client"
