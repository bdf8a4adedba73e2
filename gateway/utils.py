"""Miscellaneous helpers for the authentication gateway."""

from __future__ import annotations

import base64
import json
import logging
from pprint import pformat
from typing import Any, Dict, Optional


def decode_jwt_without_verification(token: str) -> Dict[str, Any]:
    """Decode the payload of a JWT without validating the signature."""

    try:
        _, payload, _ = token.split(".")
    except ValueError as exc:
        raise ValueError("Token is not a valid JWT") from exc

    padded_payload = payload + "=" * (-len(payload) % 4)
    decoded_bytes = base64.urlsafe_b64decode(padded_payload.encode("ascii"))
    claims = json.loads(decoded_bytes.decode("utf-8"))
    if not isinstance(claims, dict):
        raise ValueError("Token payload is not a JSON object")
    return claims


def token_claims_for_logging(token: str) -> Dict[str, Any]:
    """Decode a token for logging without raising on failure."""

    try:
        return decode_jwt_without_verification(token)
    except ValueError as exc:
        return {"error": str(exc)}


def log_flow_step(
    logger: logging.Logger, step: str, details: Optional[Dict[str, Any]] = None
) -> None:
    """Emit structured log entries for the OAuth flow steps."""

    if details:
        pretty_details = pformat(details, sort_dicts=True)
        logger.info("[OAuth flow] %s\n%s", step, pretty_details)
    else:
        logger.info("[OAuth flow] %s", step)


def short_id(session_id: Optional[str]) -> str:
    """Shorten a session id so logs can correlate requests without leaking it."""

    if not session_id:
        return "<none>"
    return f"{session_id[:8]}..."
