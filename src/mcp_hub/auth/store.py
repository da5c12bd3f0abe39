"""
Token store: server name -> token record, persisted as one map under a
single settings key.

The map is loaded once at construction and the whole map is written back
after every mutation. A malformed entry is dropped with a warning rather
than failing startup.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from mcp_hub.auth.models import OAuthTokenRecord
from mcp_hub.config.storage import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_TOKENS_KEY = "MCPOAuthTokens"


class TokenStore:
    def __init__(self, settings_store: SettingsStore, key: str = DEFAULT_TOKENS_KEY) -> None:
        self.settings_store = settings_store
        self.key = key
        self._tokens: dict[str, OAuthTokenRecord] = self._load()

    def _load(self) -> dict[str, OAuthTokenRecord]:
        raw = self.settings_store.get(self.key)
        if not isinstance(raw, dict):
            return {}

        tokens: dict[str, OAuthTokenRecord] = {}
        for server_name, entry in raw.items():
            try:
                tokens[server_name] = OAuthTokenRecord.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Dropping unreadable stored token for {server_name}: {e}")
        logger.debug(f"Loaded {len(tokens)} stored OAuth token(s)")
        return tokens

    def _save(self) -> None:
        self.settings_store.set(
            self.key,
            {
                name: record.model_dump(mode="json", by_alias=True)
                for name, record in self._tokens.items()
            },
        )

    def get(self, server_name: str) -> Optional[OAuthTokenRecord]:
        return self._tokens.get(server_name)

    def put(self, server_name: str, record: OAuthTokenRecord) -> None:
        self._tokens[server_name] = record
        self._save()

    def remove(self, server_name: str) -> bool:
        if self._tokens.pop(server_name, None) is None:
            return False
        self._save()
        return True

    def all(self) -> dict[str, OAuthTokenRecord]:
        return dict(self._tokens)

    def __contains__(self, server_name: str) -> bool:
        return server_name in self._tokens
