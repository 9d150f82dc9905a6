"""Unit tests for auth/dependencies.py -- the authentication gate.

Covers:
- public roots pass without a principal
- the first checker to answer sets request.state.username
- the challenge carries error parts only when credentials were presented
- the login redirect carries the original URL, encoded once
- unauthorized_response(): 401, headers, meta refresh, cookie clearing
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from auth.checkers import RequestChecker
from auth.dependencies import AuthenticationGate, NotAuthenticated, get_username, unauthorized_response
from auth.tokens import COOKIE_NAME


class _Fixed(RequestChecker):
    def __init__(self, answer: str = "", presented: bool = False) -> None:
        self.answer = answer
        self.presented = presented

    def authenticate(self, request) -> str:
        return self.answer

    def credentials_presented(self, request) -> bool:
        return self.presented


def _gate(checker: RequestChecker) -> AuthenticationGate:
    return AuthenticationGate(checker, public_roots=["/oauth/token"], auth_root="/auth/", realm="authsvc")


def test_public_root_skips_checkers(make_request):
    gate = _gate(_Fixed())
    assert gate(make_request("/oauth/token")) == ""
    assert gate.is_public("/oauth/token/extra")
    assert not gate.is_public("/oauth/authorize")


def test_authenticated_request_records_username(make_request):
    request = make_request("/api/v4/user")
    assert _gate(_Fixed("alice"))(request) == "alice"
    assert get_username(request) == "alice"


def test_get_username_defaults_to_empty(make_request):
    assert get_username(make_request()) == ""


def test_no_credentials_plain_challenge(make_request):
    with pytest.raises(NotAuthenticated) as excinfo:
        _gate(_Fixed())(make_request("/api/v4/user"))
    exc = excinfo.value
    assert exc.challenge == 'authsvc realm="authsvc"'
    assert exc.clear_cookie is False


def test_failed_credentials_challenge_has_error(make_request):
    request = make_request("/api/v4/user", cookies={COOKIE_NAME: "stale"})
    with pytest.raises(NotAuthenticated) as excinfo:
        _gate(_Fixed(presented=True))(request)
    exc = excinfo.value
    assert exc.challenge == (
        'authsvc realm="authsvc", error="invalid_token", '
        'error_description="invalid or expired authentication token", error_uri="/auth/login/"'
    )
    assert exc.clear_cookie is True


def test_challenge_without_realm():
    gate = AuthenticationGate(_Fixed(), realm="")
    assert gate.challenge() == "authsvc"
    assert gate.challenge("invalid_token").startswith('authsvc error="invalid_token"')


def test_login_url_encodes_original_once(make_request):
    request = make_request("/oauth/authorize", query="client_id=example.com&redirect_uri=https%3A%2F%2Fexample.com%2Fdone")
    with pytest.raises(NotAuthenticated) as excinfo:
        _gate(_Fixed())(request)
    parts = urlsplit(excinfo.value.login_url)
    assert parts.path == "/auth/login/"
    original = parse_qs(parts.query)["redirect_uri"][0]
    assert original == str(request.url)
    assert parse_qs(urlsplit(original).query)["redirect_uri"] == ["https://example.com/done"]


# ---------------------------------------------------------------------------
# unauthorized_response
# ---------------------------------------------------------------------------


def test_unauthorized_response_headers():
    exc = NotAuthenticated("/auth/login/?redirect_uri=x", 'authsvc realm="authsvc"')
    resp = unauthorized_response(exc)
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == 'authsvc realm="authsvc"'
    assert resp.headers["location"] == "/auth/login/?redirect_uri=x"
    assert "set-cookie" not in resp.headers
    body = resp.body.decode()
    assert 'http-equiv="refresh"' in body
    assert "URL='/auth/login/?redirect_uri=x'" in body


def test_unauthorized_response_escapes_login_url():
    resp = unauthorized_response(NotAuthenticated("/auth/login/?a=1&b='", "authsvc"))
    body = resp.body.decode()
    assert "&amp;" in body
    assert "b='" not in body


def test_unauthorized_response_clears_cookie():
    resp = unauthorized_response(NotAuthenticated("/auth/login/", "authsvc", clear_cookie=True))
    header = resp.headers["set-cookie"]
    assert header.startswith(f"{COOKIE_NAME}=")
    assert "Max-Age=0" in header
