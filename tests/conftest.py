"""Shared fixtures for the gateway test-suite."""

from __future__ import annotations

import base64
import json
import threading
from typing import Dict, Set
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from gateway.config import Settings
from gateway.idp_client import IdentityProviderClient
from gateway.main import create_app
from gateway.middleware import ALLOWED_HEADERS, ALLOWED_METHODS
from gateway.session import SessionStore

TOKEN_ENDPOINT = "https://idp.example.com/realms/tasks/protocol/openid-connect/token"
AUTHORIZATION_ENDPOINT = "https://idp.example.com/realms/tasks/protocol/openid-connect/auth"

CORS_HEADERS = {
    "access-control-allow-origin": "http://localhost:3000",
    "access-control-allow-credentials": "true",
    "access-control-allow-methods": ALLOWED_METHODS,
    "access-control-allow-headers": ALLOWED_HEADERS,
}


def assert_cors(response) -> None:
    for name, value in CORS_HEADERS.items():
        assert response.headers.get(name) == value


def make_jwt(claims: Dict[str, object]) -> str:
    """Build an unsigned JWT-shaped token carrying ``claims``."""

    def _segment(data: Dict[str, object]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment(claims)}.sig"


class FakeTokenEndpoint:
    """Token endpoint that honours each issued code exactly once."""

    def __init__(self) -> None:
        self.codes: Dict[str, str] = {}
        self.redeemed: Set[str] = set()
        self.requests: list[Dict[str, list[str]]] = []
        self.fail_with: Exception | None = None
        self.status_override: int | None = None
        # When set, each exchange blocks until the event is released.
        self.hold: threading.Event | None = None
        self.entered = threading.Event()

    def issue(self, code: str, token: str) -> None:
        self.codes[code] = token

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.entered.set()
        if self.hold is not None:
            assert self.hold.wait(timeout=5)
        if self.fail_with is not None:
            raise self.fail_with
        if self.status_override is not None:
            return httpx.Response(self.status_override, text="unavailable")
        form = parse_qs(request.content.decode("utf-8"))
        self.requests.append(form)
        code = form.get("code", [""])[0]
        if code not in self.codes or code in self.redeemed:
            return httpx.Response(
                400,
                json={
                    "error": "invalid_grant",
                    "error_description": "Code not valid",
                },
            )
        self.redeemed.add(code)
        return httpx.Response(
            200,
            json={
                "access_token": self.codes[code],
                "token_type": "Bearer",
                "expires_in": 300,
            },
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        client_id="tasks-backend",
        client_secret="backend-secret",
        authorization_endpoint=AUTHORIZATION_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        redirect_uri="http://testserver/auth/callback",
        frontend_origin="http://localhost:3000",
        cookie_secure=False,
    )


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    return FakeTokenEndpoint()


@pytest.fixture
def session_store(settings: Settings) -> SessionStore:
    return SessionStore(
        cookie_name=settings.session_cookie_name,
        cookie_secure=settings.cookie_secure,
        cookie_samesite=settings.cookie_samesite,
    )


@pytest.fixture
def idp_client(settings: Settings, token_endpoint: FakeTokenEndpoint) -> IdentityProviderClient:
    return IdentityProviderClient(
        settings, transport=httpx.MockTransport(token_endpoint.handle)
    )


@pytest.fixture
def tasks_router() -> APIRouter:
    router = APIRouter()

    @router.get("/tasks")
    async def list_tasks():
        return {"lists": []}

    @router.get("/boom")
    async def boom():
        raise RuntimeError("downstream failure")

    return router


@pytest.fixture
def app(settings, session_store, idp_client, tasks_router):
    return create_app(
        settings=settings,
        session_store=session_store,
        idp_client=idp_client,
        routers=[tasks_router],
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)
