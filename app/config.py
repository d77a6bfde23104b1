"""Configuration loader — reads config.yaml, validates with Pydantic.

Holds the single upstream endpoint (base URL, API key, default model) plus
the static bearer-token users allowed on authenticated routes. Secrets can
be supplied through environment variables instead of the file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

logger = logging.getLogger(__name__)

# Environment variable → (section, field) overrides applied after the file is read.
_ENV_OVERRIDES = {
    "UPSTREAM_BASE_URL": "base_url",
    "UPSTREAM_API_KEY": "api_key",
    "UPSTREAM_DEFAULT_MODEL": "default_model",
}


class UpstreamConfig(BaseModel):
    """The upstream chat-completion endpoint."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    api_key: str = ""
    default_model: str = "deepseek-v3-250324"
    timeout: float = 300.0  # seconds, applies per read on streaming bodies

    @field_validator("base_url")
    @classmethod
    def must_be_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got '{v}'")
        return v


class UserConfig(BaseModel):
    """A user that may call bearer-protected routes."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str | None = None
    token: str


class RelayConfig(BaseModel):
    """Top-level relay configuration."""

    model_config = ConfigDict(frozen=True)

    upstream: UpstreamConfig
    users: list[UserConfig] = []

    # CORS & logging
    allowed_origins: list[str] = ["*"]
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def validate_tokens(self) -> RelayConfig:
        tokens = [u.token for u in self.users]
        if len(tokens) != len(set(tokens)):
            raise ValueError("User tokens must be unique")
        return self

    def get_user_by_token(self, token: str) -> UserConfig | None:
        """Return the user owning this bearer token, or None."""
        for user in self.users:
            if user.token == token:
                return user
        return None


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: RelayConfig | None = None
_config_path: str = "config.yaml"


def _apply_env_overrides(raw: dict) -> dict:
    upstream = dict(raw.get("upstream") or {})
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            upstream[key] = value
    return {**raw, "upstream": upstream}


def load_config(path: str | None = None) -> RelayConfig:
    """Read config.yaml from disk, validate, and cache.

    The path defaults to the RELAY_CONFIG environment variable, then
    ``config.yaml`` in the working directory.
    """
    global _config, _config_path
    _config_path = path or os.environ.get("RELAY_CONFIG", "config.yaml")

    config_file = Path(_config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    _config = RelayConfig(**_apply_env_overrides(raw))

    if not _config.upstream.api_key:
        logger.warning("No upstream API key configured (set UPSTREAM_API_KEY)")
    logger.info(
        f"Loaded config: upstream={_config.upstream.base_url}, "
        f"default_model={_config.upstream.default_model}, users={len(_config.users)}"
    )
    return _config


def get_config() -> RelayConfig:
    """Return cached config. Raises if not yet loaded."""
    if _config is None:
        raise RuntimeError("Config not loaded — call load_config() first")
    return _config


def reload_config() -> RelayConfig:
    """Re-read config from disk. Called by /reload endpoint."""
    logger.info(f"Reloading config from {_config_path}")
    return load_config(_config_path)
