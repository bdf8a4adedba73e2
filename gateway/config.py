"""Configuration handling for the authentication gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache


CALLBACK_PATH = "/auth/callback"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_SESSION_COOKIE_NAME = "SESSION_ID"


@dataclass
class Settings:
    """Runtime settings loaded from the environment."""

    client_id: str
    client_secret: str
    authorization_endpoint: str
    token_endpoint: str
    redirect_uri: str
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    scopes: list[str] = field(default_factory=lambda: ["openid"])
    session_cookie_name: str = DEFAULT_SESSION_COOKIE_NAME
    cookie_secure: bool = True
    cookie_samesite: str = "lax"
    session_idle_timeout_seconds: int = 0
    session_absolute_timeout_seconds: int = 0
    token_exchange_timeout_seconds: float = 10.0
    state_check_enabled: bool = False
    log_level: str = "INFO"

    @property
    def callback_path(self) -> str:
        """Path the identity provider redirects back to."""

        return CALLBACK_PATH


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Environment variable '{name}' must be set")
    return value


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    return value if value else None


@lru_cache
def get_settings() -> Settings:
    """Load settings from environment variables (cached)."""

    client_id = _required_env("IDP_CLIENT_ID")
    client_secret = _required_env("IDP_CLIENT_SECRET")
    authorization_endpoint = _required_env("IDP_AUTHORIZATION_ENDPOINT")
    token_endpoint = _required_env("IDP_TOKEN_ENDPOINT")
    redirect_uri = _required_env("REDIRECT_URI")

    scopes_raw = _optional_env("IDP_SCOPES") or "openid"
    scopes = [scope for scope in scopes_raw.split() if scope]

    idle_timeout = _parse_int(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS"), 0)
    absolute_timeout = _parse_int(os.getenv("SESSION_ABSOLUTE_TIMEOUT_SECONDS"), 0)
    exchange_timeout = _parse_float(
        os.getenv("TOKEN_EXCHANGE_TIMEOUT_SECONDS"), 10.0
    )

    return Settings(
        client_id=client_id,
        client_secret=client_secret,
        authorization_endpoint=authorization_endpoint,
        token_endpoint=token_endpoint,
        redirect_uri=redirect_uri,
        frontend_origin=_optional_env("FRONTEND_ORIGIN") or DEFAULT_FRONTEND_ORIGIN,
        scopes=scopes,
        session_cookie_name=os.getenv(
            "SESSION_COOKIE_NAME", DEFAULT_SESSION_COOKIE_NAME
        ),
        cookie_secure=_parse_bool(os.getenv("SESSION_COOKIE_SECURE"), True),
        cookie_samesite=_optional_env("SESSION_COOKIE_SAMESITE") or "lax",
        session_idle_timeout_seconds=idle_timeout,
        session_absolute_timeout_seconds=absolute_timeout,
        token_exchange_timeout_seconds=exchange_timeout,
        state_check_enabled=_parse_bool(os.getenv("OAUTH_STATE_CHECK"), False),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
