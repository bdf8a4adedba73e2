"""Request filter that gates every route behind an authenticated session."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from .config import Settings
from .idp_client import IdentityProviderClient
from .session import SessionStore
from .utils import log_flow_step, short_id

logger = logging.getLogger(__name__)

# Preflight OPTIONS requests carry no cookie, so each one is gated like any
# other request and records a PENDING session; bound the store with a TTL.
ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOWED_HEADERS = "Origin, X-Requested-With, Content-Type, Accept, Authorization"


def cors_headers(frontend_origin: str) -> dict[str, str]:
    """Headers letting the frontend make credentialed cross-origin calls."""

    return {
        "Access-Control-Allow-Origin": frontend_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
    }


class GatewayFilter(BaseHTTPMiddleware):
    """Redirect requests without an authenticated session to the IdP.

    Every response leaving the application, including redirects and errors,
    carries the CORS headers. The callback path is never gated; the
    callback route owns it.
    """

    def __init__(
        self,
        app,
        *,
        settings: Settings,
        session_store: SessionStore,
        idp_client: IdentityProviderClient,
    ) -> None:
        super().__init__(app)
        self._settings = settings
        self._store = session_store
        self._idp = idp_client

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            response = await self._handle(request, call_next)
        except Exception:
            logger.exception(
                "Unhandled error while serving %s %s", request.method, request.url.path
            )
            response = PlainTextResponse("Internal Server Error", status_code=500)
        response.headers.update(cors_headers(self._settings.frontend_origin))
        return response

    async def _handle(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path == self._settings.callback_path:
            return await call_next(request)

        session_id = request.cookies.get(self._store.cookie_name)
        referer = request.headers.get("referer", "")
        # The per-session lock may be held by a callback waiting on the IdP,
        # so the check runs off the event loop.
        redirect = await run_in_threadpool(self._admit, session_id, referer)
        if redirect is not None:
            return redirect
        return await call_next(request)

    def _admit(self, session_id: Optional[str], referer: str) -> Optional[Response]:
        """Return ``None`` for an authenticated session, else the IdP redirect."""

        issued_id = None
        if not session_id:
            # Without a cookie there is nothing to correlate the callback
            # with, so a fresh id is issued alongside the redirect.
            session_id = issued_id = self._store.new_session_id()

        with self._store.lock(session_id):
            session = self._store.get(session_id)
            if session is not None and session.authenticated:
                return None
            state = secrets.token_urlsafe(32) if self._settings.state_check_enabled else ""
            self._store.put(session_id, "", referer, state=state)

        auth_url = self._idp.build_authorization_url(state=state or None)
        log_flow_step(
            logger,
            "Redirecting unauthenticated request to identity provider",
            {
                "authorization_url": auth_url,
                "new_session": issued_id is not None,
                "original_url": referer,
                "session": short_id(session_id),
            },
        )
        response = RedirectResponse(auth_url, status_code=302)
        if issued_id is not None:
            self._store.set_cookie(response, issued_id)
        return response
