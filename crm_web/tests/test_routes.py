"""Tests for the login / callback / logout flow and session-protected routes."""
import html
import re
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from unittest.mock import patch

from crm_web.auth import SESSION_COOKIE, TEMP_SESSION_COOKIE, get_oauth_client, get_pending_store, get_session_store
from crm_web.errors import TokenExchangeFailed
from crm_web.main import app
from crm_web.pkce import code_challenge_for
from crm_web.salesforce import OAuth2Client
from crm_web.session_store import InMemorySessionStore


def _authorize_params(page_html: str) -> dict:
    m = re.search(r'href="([^"]*/services/oauth2/authorize[^"]*)"', page_html)
    assert m, "authorize link not found"
    return parse_qs(urlparse(html.unescape(m.group(1))).query)


def _set_cookie_headers(r) -> list[str]:
    return r.headers.get_list("set-cookie")


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "crm_web"


def test_login_page_has_authorize_link_and_temp_cookie(client, pending_store):
    r = client.get("/login")
    assert r.status_code == 200
    params = _authorize_params(r.text)
    assert params["response_type"] == ["code"]
    assert params["code_challenge_method"] == ["S256"]
    assert "code_challenge" in params
    assert client.cookies.get(TEMP_SESSION_COOKIE)
    cookie_header = next(h for h in _set_cookie_headers(r) if h.startswith(TEMP_SESSION_COOKIE))
    assert "HttpOnly" in cookie_header
    assert "Max-Age=600" in cookie_header
    assert len(pending_store) == 1


def test_second_login_replaces_pending_verifier(client, pending_store):
    client.get("/login")
    first = client.cookies.get(TEMP_SESSION_COOKIE)
    client.get("/login")
    second = client.cookies.get(TEMP_SESSION_COOKIE)
    assert first != second
    assert pending_store.get(first) is None
    assert pending_store.get(second) is not None
    assert len(pending_store) == 1


def test_callback_without_temp_cookie_verifier_not_found(client, session_store, oauth):
    fresh = TestClient(app)
    r = fresh.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 400
    assert "verifier not found" in r.text.lower()
    assert SESSION_COOKIE not in fresh.cookies
    assert len(session_store) == 0
    assert oauth.calls == []


def test_callback_success_creates_session(client, pending_store, session_store, oauth):
    login = client.get("/login")
    challenge = _authorize_params(login.text)["code_challenge"][0]

    r = client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/"
    session_id = client.cookies.get(SESSION_COOKIE)
    assert session_id
    cookie_header = next(h for h in _set_cookie_headers(r) if h.startswith(SESSION_COOKIE))
    assert "HttpOnly" in cookie_header
    assert "Max-Age=86400" in cookie_header

    assert len(session_store) == 1
    session = session_store.get(session_id)
    assert session.identity.user_id == "u1"
    assert session.identity.organization_id == "org1"
    assert session.connection is oauth.connection

    # the verifier sent to the token endpoint matches the challenge sent to authorize
    code, verifier = oauth.calls[0]
    assert code == "abc"
    assert code_challenge_for(verifier) == challenge
    assert len(pending_store) == 0


def test_callback_replay_fails_with_verifier_missing(client, session_store):
    client.get("/login")
    temp_id = client.cookies.get(TEMP_SESSION_COOKIE)
    first = client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert first.status_code == 302

    replay = TestClient(app)
    replay.cookies.set(TEMP_SESSION_COOKIE, temp_id)
    r = replay.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 400
    assert "verifier not found" in r.text.lower()
    assert SESSION_COOKIE not in replay.cookies
    assert len(session_store) == 1


def test_callback_forged_temp_cookie(client, session_store):
    client.cookies.set(TEMP_SESSION_COOKIE, "forged-value")
    r = client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 400
    assert "verifier not found" in r.text.lower()
    assert len(session_store) == 0


def test_callback_error_from_salesforce_consumes_verifier(client, pending_store, session_store, oauth):
    client.get("/login")
    assert len(pending_store) == 1
    r = client.get(
        "/oauth/callback",
        params={"error": "access_denied", "error_description": "end-user denied authorization"},
        follow_redirects=False,
    )
    assert r.status_code == 400
    assert "end-user denied authorization" in r.text
    assert 'href="/login"' in r.text
    assert len(pending_store) == 0
    assert len(session_store) == 0
    assert oauth.calls == []
    assert SESSION_COOKIE not in client.cookies


def test_callback_error_message_is_escaped(client):
    r = client.get("/oauth/callback", params={"error": "x", "error_description": "<script>alert(1)</script>"})
    assert "<script>" not in r.text
    assert "&lt;script&gt;" in r.text


def test_callback_missing_code(client, session_store):
    client.get("/login")
    r = client.get("/oauth/callback", follow_redirects=False)
    assert r.status_code == 400
    assert "code" in r.text.lower()
    assert len(session_store) == 0


def test_callback_token_exchange_rejected(client, session_store, oauth):
    oauth.error = TokenExchangeFailed("invalid authorization code")
    client.get("/login")
    r = client.get("/oauth/callback", params={"code": "bad"}, follow_redirects=False)
    assert r.status_code == 400
    assert "invalid authorization code" in r.text
    assert SESSION_COOKIE not in client.cookies
    assert len(session_store) == 0


def test_callback_token_endpoint_unreachable(client, session_store, oauth):
    oauth.error = TokenExchangeFailed("Token endpoint unreachable: timed out", unreachable=True)
    client.get("/login")
    r = client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 502
    assert len(session_store) == 0


def test_whoami_returns_stored_identity(client, session_store):
    client.get("/login")
    client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    session = session_store.get(client.cookies.get(SESSION_COOKIE))

    r = client.get("/whoami")
    assert r.status_code == 200
    assert r.json() == {
        "user_id": session.identity.user_id,
        "organization_id": session.identity.organization_id,
        "username": None,
        "email": None,
        "display_name": None,
    }


def test_protected_routes_redirect_without_session(client):
    for path in ("/", "/whoami", "/accounts", "/accounts/table", "/query"):
        r = client.get(path, follow_redirects=False)
        assert r.status_code == 302, path
        assert r.headers["location"] == "/login"


def test_unknown_session_cookie_redirects(client):
    client.cookies.set(SESSION_COOKIE, "not-a-session")
    r = client.get("/whoami", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


def test_temp_cookie_is_not_a_session(client):
    client.get("/login")
    client.cookies.set(SESSION_COOKIE, client.cookies.get(TEMP_SESSION_COOKIE))
    r = client.get("/whoami", follow_redirects=False)
    assert r.status_code == 302


def test_logout_then_whoami_redirects(client, session_store):
    client.get("/login")
    client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    old_session_id = client.cookies.get(SESSION_COOKIE)
    assert client.get("/whoami").status_code == 200

    r = client.post("/logout", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"
    assert session_store.get(old_session_id) is None

    # even if the browser kept the old cookie
    client.cookies.set(SESSION_COOKIE, old_session_id)
    r = client.get("/whoami", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


def test_get_logout_also_works(logged_in, session_store):
    r = logged_in.get("/logout", follow_redirects=False)
    assert r.status_code == 302
    assert len(session_store) == 0


def test_home_shows_identity(logged_in):
    r = logged_in.get("/")
    assert r.status_code == 200
    assert "jane@example.com" in r.text
    assert "org1" in r.text
    assert 'action="/logout"' in r.text


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_expired_temp_cookie_verifier_not_found(client, session_store, oauth):
    clock = FakeClock()
    pending = InMemorySessionStore(ttl_seconds=600, clock=clock)
    app.dependency_overrides[get_pending_store] = lambda: pending

    client.get("/login")
    assert len(pending) == 1
    clock.now += 601
    r = client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 400
    assert "verifier not found" in r.text.lower()
    assert SESSION_COOKIE not in client.cookies
    assert len(session_store) == 0
    assert oauth.calls == []


def test_session_past_ttl_redirects_to_login(client):
    clock = FakeClock()
    sessions = InMemorySessionStore(ttl_seconds=86400, clock=clock)
    app.dependency_overrides[get_session_store] = lambda: sessions

    client.get("/login")
    client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert client.get("/whoami").status_code == 200

    clock.now += 86401
    r = client.get("/whoami", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"
    assert len(sessions) == 0


class _Resp:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body
        self.text = ""
        self.content = b"x" if body is not None else b""

    def json(self):
        return self._body


def test_callback_logs_in_when_identity_lookup_returns_no_body(client, session_store):
    app.dependency_overrides[get_oauth_client] = lambda: OAuth2Client(
        login_url="https://login.salesforce.com", client_id="cid", redirect_uri="http://localhost:3000/oauth/callback"
    )
    token = {
        "access_token": "tok",
        "instance_url": "https://example.my.salesforce.com",
        "id": "https://login.salesforce.com/id/00D000000000001EAA/005000000000001AAA",
    }
    client.get("/login")
    with patch("crm_web.salesforce.httpx.post", return_value=_Resp(200, token)), patch(
        "crm_web.salesforce.httpx.request", return_value=_Resp(302)
    ):
        r = client.get("/oauth/callback", params={"code": "abc"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/"
    session = session_store.get(client.cookies.get(SESSION_COOKIE))
    assert session.identity.user_id == "005000000000001AAA"
    assert session.identity.username is None


def test_default_stores_use_configured_ttls():
    from crm_web import config

    assert get_pending_store().ttl_seconds == config.PENDING_TTL_SECONDS
    assert get_session_store().ttl_seconds == config.SESSION_TTL_SECONDS
    assert get_pending_store() is not get_session_store()
