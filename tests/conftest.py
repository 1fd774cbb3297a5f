import httpx
import pytest
from fastapi.testclient import TestClient

from recordgate.config import Settings, get_settings
from recordgate.server import app, get_http

SECRET = "s3cret"
KEY_ID = "rzp_test_key"
SUPABASE_URL = "https://proj.supabase.co"
ADMIN = "boss@example.com"


def make_settings(**overrides) -> Settings:
    base = dict(
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=SECRET,
        supabase_url=SUPABASE_URL,
        supabase_anon_key="anon-key",
        admin_emails=frozenset({ADMIN}),
    )
    base.update(overrides)
    return Settings(**base)


class Upstream:
    """Stands in for every outbound HTTP call (gateway and backend).
    Routes are keyed by (method, path); unrouted calls get a 404."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, response):
        self.routes[(method, path)] = response

    def calls(self, method, path):
        return [r for r in self.requests
                if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "no such route"})
        return route(request) if callable(route) else route


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def configure():
    def _configure(**overrides):
        settings = make_settings(**overrides)
        app.dependency_overrides[get_settings] = lambda: settings
        return settings
    return _configure


@pytest.fixture
def client(upstream, configure):
    configure()
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_http] = lambda: http
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sign_in(client, upstream):
    def _sign_in(email="reader@example.com"):
        upstream.on("POST", "/auth/v1/token", httpx.Response(200, json={
            "access_token": "jwt-token",
            "refresh_token": "refresh",
            "user": {"id": "user-1", "email": email},
        }))
        r = client.post(
            "/auth/login",
            data={"email": email, "password": "pw"},
            follow_redirects=False,
        )
        assert r.status_code == 303
    return _sign_in
