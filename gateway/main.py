"""FastAPI application exposing the authentication gateway."""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, Iterable, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import CALLBACK_PATH, Settings, get_settings
from .idp_client import ExchangeError, IdentityProviderClient
from .middleware import GatewayFilter
from .session import SessionStore
from .utils import (
    decode_jwt_without_verification,
    log_flow_step,
    short_id,
    token_claims_for_logging,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


@router.get("/")
async def root() -> Dict[str, str]:
    return {"status": "ok"}


@router.get(CALLBACK_PATH)
def callback(request: Request, code: str | None = None, state: str | None = None):
    # Plain ``def``: the token exchange blocks, so this runs in the worker
    # thread pool rather than on the event loop.
    settings: Settings = request.app.state.settings
    store: SessionStore = request.app.state.session_store
    idp_client: IdentityProviderClient = request.app.state.idp_client

    if not code:
        raise HTTPException(status_code=400, detail="Authorization code missing")

    session_id = request.cookies.get(store.cookie_name)
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing session ID cookie")

    with store.lock(session_id):
        session = store.get(session_id)
        if session is None:
            logger.info("Callback for unknown session %s", short_id(session_id))
            raise HTTPException(status_code=400, detail="Unknown or expired session")

        if settings.state_check_enabled and session.state and state != session.state:
            logger.info("State mismatch on callback for session %s", short_id(session_id))
            raise HTTPException(status_code=400, detail="Invalid state parameter")

        # ``put`` below is an upsert that clears the original URL, so the
        # redirect target has to be captured first.
        original_url = session.original_url

        log_flow_step(
            logger,
            "Processing authorization callback",
            {"original_url": original_url, "session": short_id(session_id)},
        )

        try:
            token = idp_client.exchange_code_for_token(code)
        except ExchangeError as exc:
            if exc.unavailable:
                logger.error("Token exchange could not reach the IdP: %s", exc.reason)
                raise HTTPException(
                    status_code=502, detail="Identity provider unavailable"
                ) from exc
            logger.warning("Token exchange rejected: %s", exc.reason)
            raise HTTPException(
                status_code=400, detail=f"Token exchange failed: {exc.reason}"
            ) from exc

        store.put(session_id, token, "")

    log_flow_step(
        logger,
        "Authorization code exchanged for token",
        {
            "session": short_id(session_id),
            "token_claims": token_claims_for_logging(token),
        },
    )

    if original_url:
        return RedirectResponse(url=original_url, status_code=302)
    return PlainTextResponse("Authenticated")


@router.get("/auth/session")
async def current_session(request: Request) -> Dict[str, Any]:
    store: SessionStore = request.app.state.session_store
    session_id = request.cookies.get(store.cookie_name)
    session = store.get(session_id)
    if session is None or not session.authenticated:
        # The gateway filter normally redirects before this point.
        raise HTTPException(status_code=401, detail="User is not signed in")

    try:
        # Only the downstream services validate the token signature; this
        # endpoint surfaces claims for the frontend.
        claims = decode_jwt_without_verification(session.token)
    except ValueError:
        return {"claims": None}

    return {
        "claims": {
            "sub": claims.get("sub"),
            "preferred_username": claims.get("preferred_username"),
            "exp": claims.get("exp"),
            "iss": claims.get("iss"),
            "aud": claims.get("aud"),
        },
    }


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> PlainTextResponse:
    return PlainTextResponse(
        str(exc.detail),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def create_app(
    settings: Optional[Settings] = None,
    session_store: Optional[SessionStore] = None,
    idp_client: Optional[IdentityProviderClient] = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """Build the gateway application.

    ``routers`` are the downstream APIs to protect; they are mounted behind
    the same gateway filter as the built-in routes.
    """

    settings = settings or get_settings()
    _configure_logging(settings.log_level)

    if session_store is None:
        session_store = SessionStore(
            cookie_name=settings.session_cookie_name,
            idle_timeout_seconds=settings.session_idle_timeout_seconds,
            absolute_timeout_seconds=settings.session_absolute_timeout_seconds,
            cookie_secure=settings.cookie_secure,
            cookie_samesite=settings.cookie_samesite,
        )
    if idp_client is None:
        idp_client = IdentityProviderClient(settings)

    app = FastAPI(title="Task List Auth Gateway", version="1.0.0")
    app.state.settings = settings
    app.state.session_store = session_store
    app.state.idp_client = idp_client

    app.add_middleware(
        GatewayFilter,
        settings=settings,
        session_store=session_store,
        idp_client=idp_client,
    )
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)

    app.include_router(router)
    for downstream in routers:
        app.include_router(downstream)

    logger.info(
        "Gateway configured: callback=%s frontend_origin=%s state_check=%s",
        settings.callback_path,
        settings.frontend_origin,
        settings.state_check_enabled,
    )
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gateway.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8080,
        log_level=get_settings().log_level.lower(),
    )
