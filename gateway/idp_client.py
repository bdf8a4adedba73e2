"""Client for the identity provider's authorization and token endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class ExchangeError(Exception):
    """Raised when an authorization code cannot be exchanged for a token."""

    def __init__(self, reason: str, *, unavailable: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        # ``True`` when the IdP could not be reached at all, as opposed to
        # the IdP answering and rejecting the code.
        self.unavailable = unavailable


class IdentityProviderClient:
    """Builds the login redirect and redeems authorization codes."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings
        # Tests hand in an ``httpx.MockTransport``; production uses the
        # default network transport.
        self._transport = transport

    def build_authorization_url(self, state: Optional[str] = None) -> str:
        """Return the IdP authorization URL for a browser redirect."""

        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": self._settings.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._settings.scopes),
        }
        if state:
            params["state"] = state
        endpoint = self._settings.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> str:
        """Redeem ``code`` at the token endpoint and return the access token.

        Authorization codes are single use, so a failure is never retried.
        """

        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        }
        try:
            with httpx.Client(
                transport=self._transport,
                timeout=self._settings.token_exchange_timeout_seconds,
            ) as client:
                response = client.post(
                    self._settings.token_endpoint,
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise ExchangeError("Token endpoint timed out", unavailable=True) from exc
        except httpx.HTTPError as exc:
            raise ExchangeError(
                f"Token endpoint unreachable: {exc}", unavailable=True
            ) from exc

        if response.status_code >= 500:
            raise ExchangeError(
                f"Token endpoint returned HTTP {response.status_code}", unavailable=True
            )

        body = _json_or_empty(response)
        if not response.is_success or "error" in body:
            description = (
                body.get("error_description")
                or body.get("error")
                or f"HTTP {response.status_code}"
            )
            raise ExchangeError(description)

        access_token = body.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ExchangeError("Token response missing access_token")

        logger.debug(
            "Token endpoint returned %s token (expires_in=%s)",
            body.get("token_type", "Bearer"),
            body.get("expires_in"),
        )
        return access_token


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
