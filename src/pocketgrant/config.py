# Configuration: routes, TTLs, clients, users, token strategy.
# Created: 2026-10-17
#
# Values come from (highest first): Settings.load() file contents, then
# POCKETGRANT_* environment variables, then the defaults below.

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pocketgrant.oauth2.models import OAuthClient

logger = logging.getLogger(__name__)

# Path of a JSON config file read by get_settings()
CONFIG_ENV_VAR = "POCKETGRANT_CONFIG"


class ClientConfig(BaseModel):
    """A statically registered client."""

    client_secret: str
    scopes: dict[str, bool] = Field(default_factory=dict)
    redirect_uris: list[str] = Field(default_factory=list)
    name: str = ""

    def to_client(self, client_id: str) -> OAuthClient:
        return OAuthClient(
            client_id=client_id,
            client_secret=self.client_secret,
            scopes=dict(self.scopes),
            redirect_uris=list(self.redirect_uris),
            name=self.name,
        )


class Settings(BaseSettings):
    """Authorization server settings."""

    model_config = SettingsConfigDict(
        env_prefix="POCKETGRANT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    authorize_route: str = "/oauth/authorize"
    access_token_route: str = "/oauth/access_token"
    revoke_route: str = "/oauth/revoke"

    auth_code_ttl: int = Field(default=600, gt=0)
    access_token_ttl: int = Field(default=3600, gt=0)

    clients: dict[str, ClientConfig] = Field(default_factory=dict)
    users: dict[str, str] = Field(default_factory=dict)  # password grant: username → password

    # Setting a secret switches tokens from opaque strings to signed JWTs.
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"

    persist_path: Path | None = None
    log_level: str = "INFO"

    @classmethod
    def load(cls, path: Path | str | None = None) -> Settings:
        """Load settings, overlaying a JSON config file when one is given."""
        if path is None:
            return cls()
        path = Path(path)
        if not path.exists():
            logger.warning("Config file %s not found, using defaults", path)
            return cls()
        data = json.loads(path.read_text())
        logger.debug("Loaded config from %s", path)
        return cls(**data)


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load(os.environ.get(CONFIG_ENV_VAR))
    return _settings


def reset_settings() -> None:
    """Reset singleton (for testing)."""
    global _settings
    _settings = None
