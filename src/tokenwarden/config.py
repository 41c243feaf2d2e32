# Runtime configuration.
# Created: 2026-03-02
#
# Values come from TOKENWARDEN_* environment variables or a local .env file.
# The JWT signing key is generated on first use when not configured and kept
# in the config directory (chmod 600) so tokens survive restarts.

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_SIGNING_KEY_FILE = "signing.key"


def get_config_dir() -> Path:
    """Return the tokenwarden home directory, creating it if needed."""
    base = os.environ.get("TOKENWARDEN_HOME")
    path = Path(base).expanduser() if base else Path.home() / ".tokenwarden"
    path.mkdir(parents=True, exist_ok=True)
    return path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOKENWARDEN_",
        env_file=".env",
        extra="ignore",
    )

    # Issuer / signing
    issuer: str = "http://localhost:8888"
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"

    # Persistence
    data_dir: Path | None = None
    persist: bool = True

    # Scopes a client may register for
    supported_scopes: list[str] = Field(default_factory=lambda: ["read", "write", "profile"])

    # Lifetimes (seconds)
    access_token_ttl: int = 3600
    refresh_token_ttl: int = 30 * 24 * 3600
    authorization_code_ttl: int = 600

    # Registry limits
    max_clients_per_owner: int = 10
    max_redirect_uris: int = 5
    max_webhooks_per_client: int = 5

    # Webhook delivery
    webhook_timeout: float = 10.0
    webhook_max_attempts: int = 3
    webhook_retry_base_delay: int = 60
    delivery_retention_days: int = 30

    # Background sweeps (seconds)
    background_tasks: bool = True
    cleanup_interval: int = 3600
    webhook_retry_interval: int = 60

    # HTTP surface
    user_header: str = "X-User-Id"
    cors_allowed_origins: list[str] = Field(default_factory=list)
    rate_limit_token: int = 20
    rate_limit_authorize: int = 30
    rate_limit_revoke: int = 30
    rate_limit_userinfo: int = 60
    host: str = "127.0.0.1"
    port: int = 8888
    log_level: str = "INFO"

    @field_validator("supported_scopes")
    @classmethod
    def _no_blank_scopes(cls, v: list[str]) -> list[str]:
        scopes = [s.strip() for s in v if s.strip()]
        if not scopes:
            raise ValueError("supported_scopes must not be empty")
        if any(" " in s for s in scopes):
            raise ValueError("scope names must not contain spaces")
        return scopes

    @classmethod
    def load(cls) -> Settings:
        return cls()

    def get_data_dir(self) -> Path:
        path = self.data_dir if self.data_dir is not None else get_config_dir() / "data"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def signing_key(self) -> str:
        """Return the JWT signing key, generating and persisting one if unset."""
        if self.jwt_secret:
            return self.jwt_secret

        path = get_config_dir() / _SIGNING_KEY_FILE
        if path.exists():
            key = path.read_text().strip()
            if key:
                return key

        key = secrets.token_urlsafe(48)
        path.write_text(key)
        try:
            path.chmod(0o600)
        except OSError:
            logger.debug("Could not chmod %s", path)
        logger.info("Generated new signing key at %s", path)
        self.jwt_secret = key
        return key


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for tests)."""
    global _settings
    _settings = None
