from urllib.parse import parse_qs, urlparse

import httpx


def test_login_page_modes(client):
    assert "Sign in" in client.get("/login").text
    r = client.get("/login", params={"mode": "signup"})
    assert "Create an account" in r.text
    assert 'action="/auth/signup"' in r.text


def test_login_success_sets_session(client, upstream, sign_in):
    sign_in("reader@example.com")
    upstream.on("GET", "/rest/v1/students", httpx.Response(200, json=[]))
    r = client.get("/")
    assert "Signed in as <strong>reader@example.com</strong>" in r.text


def test_login_failure_shows_error(client, upstream):
    upstream.on("POST", "/auth/v1/token", httpx.Response(400, json={
        "error": "invalid_grant",
        "error_description": "Invalid login credentials",
    }))
    r = client.post("/auth/login",
                    data={"email": "a@b.co", "password": "nope"})
    assert r.status_code == 400
    assert "Sign in error: Invalid login credentials" in r.text


def test_login_rejects_invalid_email(client, upstream):
    r = client.post("/auth/login", data={"email": "nope", "password": "x"})
    assert r.status_code == 400
    assert upstream.requests == []


def test_signup_with_email_confirmation(client, upstream):
    upstream.on("POST", "/auth/v1/signup", httpx.Response(200, json={
        "id": "u2", "email": "new@example.com",
    }))
    r = client.post("/auth/signup",
                    data={"email": "new@example.com", "password": "pw123456"})
    assert r.status_code == 200
    assert "Sign up successful" in r.text
    assert client.get("/api/students/1").status_code == 401


def test_signup_with_auto_confirm_signs_in(client, upstream):
    upstream.on("POST", "/auth/v1/signup", httpx.Response(200, json={
        "access_token": "jwt",
        "user": {"id": "u2", "email": "new@example.com"},
    }))
    r = client.post("/auth/signup", follow_redirects=False,
                    data={"email": "new@example.com", "password": "pw123456"})
    assert r.status_code == 303
    assert client.get("/api/students/1").status_code == 402


def test_signup_error(client, upstream):
    upstream.on("POST", "/auth/v1/signup", httpx.Response(422, json={
        "msg": "Password should be at least 6 characters",
    }))
    r = client.post("/auth/signup",
                    data={"email": "new@example.com", "password": "x"})
    assert r.status_code == 400
    assert "at least 6 characters" in r.text


def test_logout_clears_session(client, upstream, sign_in):
    sign_in()
    upstream.on("POST", "/auth/v1/logout", httpx.Response(204))
    r = client.get("/auth/logout", follow_redirects=False)
    assert r.status_code == 303
    (req,) = upstream.calls("POST", "/auth/v1/logout")
    assert req.headers["authorization"] == "Bearer jwt-token"
    assert client.get("/api/students/1").status_code == 401


def test_logout_survives_backend_failure(client, upstream, sign_in):
    sign_in()
    upstream.on("POST", "/auth/v1/logout", httpx.Response(500, text="down"))
    r = client.get("/auth/logout", follow_redirects=False)
    assert r.status_code == 303
    assert client.get("/api/students/1").status_code == 401


def test_oauth_redirects_to_backend(client):
    r = client.get("/auth/oauth/google", follow_redirects=False)
    assert r.status_code == 303
    u = urlparse(r.headers["location"])
    assert u.netloc == "proj.supabase.co"
    assert u.path == "/auth/v1/authorize"
    qs = parse_qs(u.query)
    assert qs["provider"] == ["google"]
    assert qs["redirect_to"] == ["http://testserver/auth/callback"]


def test_oauth_prefers_public_base_url(client, configure):
    configure(public_base_url="https://students.example.org/")
    r = client.get("/auth/oauth/google", follow_redirects=False)
    qs = parse_qs(urlparse(r.headers["location"]).query)
    assert qs["redirect_to"] == ["https://students.example.org/auth/callback"]


def test_oauth_unknown_provider(client):
    assert client.get("/auth/oauth/myspace").status_code == 404


def test_oauth_callback_page(client):
    r = client.get("/auth/callback")
    assert r.status_code == 200
    assert "/auth/session" in r.text


def test_session_from_oauth_token(client, upstream):
    upstream.on("GET", "/auth/v1/user", httpx.Response(200, json={
        "id": "u3", "email": "oauth@example.com",
    }))
    r = client.post("/auth/session",
                    json={"access_token": "jwt", "refresh_token": "r"})
    assert r.json() == {"ok": True, "email": "oauth@example.com"}
    assert client.get("/api/students/1").status_code == 402


def test_session_rejects_bad_token(client, upstream):
    upstream.on("GET", "/auth/v1/user",
                httpx.Response(401, json={"msg": "invalid JWT"}))
    r = client.post("/auth/session", json={"access_token": "forged"})
    assert r.status_code == 401
    assert client.get("/api/students/1").status_code == 401


def test_session_requires_token(client):
    assert client.post("/auth/session", json={}).status_code == 400
