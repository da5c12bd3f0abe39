"""
OAuth data models: token records, discovery documents and wire envelopes.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_EXPIRY_BUFFER_SECONDS = 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthTokenRecord(BaseModel):
    """Tokens for one server, persisted across restarts.

    A record counts as expired from ``expires_at - buffer`` onwards so that a
    token is never sent with only seconds of validity left.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at: datetime = Field(alias="expiresAt")
    token_type: str = Field(default="Bearer", alias="tokenType")
    scope: Optional[str] = None

    def is_expired(
        self,
        now: Optional[datetime] = None,
        buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
    ) -> bool:
        now = now or utcnow()
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource document."""

    model_config = ConfigDict(extra="ignore")

    resource: Optional[str] = None
    authorization_servers: list[str] = Field(default_factory=list)
    scopes_supported: Optional[list[str]] = None


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server document (fields this client uses)."""

    model_config = ConfigDict(extra="ignore")

    issuer: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    registration_endpoint: Optional[str] = None
    scopes_supported: Optional[list[str]] = None
    response_types_supported: Optional[list[str]] = None
    code_challenge_methods_supported: Optional[list[str]] = None

    @property
    def has_endpoints(self) -> bool:
        return bool(self.authorization_endpoint and self.token_endpoint)


class ClientRegistration(BaseModel):
    """Result of dynamic client registration; used once, never persisted."""

    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: Optional[int] = None
    client_secret_expires_at: Optional[int] = None


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    def to_record(
        self,
        default_expires_in: int = 3600,
        fallback_refresh_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OAuthTokenRecord:
        now = now or utcnow()
        return OAuthTokenRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token or fallback_refresh_token,
            expires_at=now + timedelta(seconds=self.expires_in or default_expires_in),
            token_type=self.token_type or "Bearer",
            scope=self.scope,
        )


class OAuthErrorResponse(BaseModel):
    """Standard OAuth error envelope."""

    model_config = ConfigDict(extra="ignore")

    error: str
    error_description: Optional[str] = None

    @property
    def message(self) -> str:
        return self.error_description or self.error
