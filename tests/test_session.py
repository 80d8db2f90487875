""" SessionManager bootstrap, refresh and token validity """

from unittest.mock import MagicMock

import pytest

from suno_gateway.errors import AuthBootstrapError, TokenRefreshError, TransportError
from suno_gateway.session import SessionManager, decode_jwt_claims, parse_cookie_header
from suno_gateway.transport import HttpResponse, Transport

COOKIE = "__client=client-token; ajs_anonymous_id=anon-42; __client_uat=1761870513"


class Clock:
    """ Settable time source in epoch seconds """

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clerk():
    return MagicMock(spec=Transport)


@pytest.fixture
def clock():
    return Clock(1_000.0)


@pytest.fixture
def session(clerk, clock):
    return SessionManager(clerk, clock=clock)


def session_response(session_id="sess_1", cookies=None) -> HttpResponse:
    return HttpResponse(200, {"response": {"last_active_session_id": session_id}}, cookies=cookies or {})


def test_bootstrap_resolves_session_id(session, clerk):
    clerk.request.return_value = session_response(cookies={"__cf_bm": "bm"})

    assert session.bootstrap(COOKIE) == "sess_1"

    _, kwargs = clerk.request.call_args
    assert kwargs["headers"] == {"Authorization": "client-token"}
    assert kwargs["device_id"] == "anon-42"
    assert session.session_id == "sess_1"
    assert session.cookies["__cf_bm"] == "bm"
    assert session.cookies["__client"] == "client-token"


def test_bootstrap_without_session_is_an_auth_error(session, clerk):
    clerk.request.return_value = HttpResponse(401, {"response": None})
    with pytest.raises(AuthBootstrapError, match="fresh cookie"):
        session.bootstrap(COOKIE)


def test_bootstrap_with_unexpected_body(session, clerk):
    clerk.request.return_value = HttpResponse(200, "<html>maintenance</html>")
    with pytest.raises(AuthBootstrapError):
        session.bootstrap(COOKIE)


def test_generated_device_id_is_stable(session, clerk):
    clerk.request.return_value = session_response()
    session.bootstrap("__client=abc")
    first = session.device_id
    session.bootstrap("__client=abc")

    assert first
    assert session.device_id == first


def test_refresh_requires_bootstrap(session):
    with pytest.raises(TokenRefreshError, match="bootstrap"):
        session.refresh()


def test_refresh_installs_token_and_notifies(clerk, clock, make_jwt):
    listener = MagicMock()
    session = SessionManager(clerk, on_token_refresh=listener, clock=clock)
    token = make_jwt(int(clock.now) + 3600)
    clerk.request.side_effect = [session_response(), HttpResponse(200, {"jwt": token}, cookies={"__session": token})]

    session.bootstrap(COOKIE)
    assert session.refresh() == token

    listener.assert_called_once_with(token)
    assert session.is_valid()
    assert session.cookies["__session"] == token
    assert session.token_expiration() is not None
    assert "/v1/client/sessions/sess_1/tokens" in clerk.request.call_args.args[0]


def test_valid_token_is_not_refreshed_unless_forced(session, clerk, clock, make_jwt):
    token = make_jwt(int(clock.now) + 3600)
    clerk.request.side_effect = [session_response(), HttpResponse(200, {"jwt": token}),
                                 HttpResponse(200, {"jwt": token})]
    session.bootstrap(COOKIE)
    session.refresh()

    session.keep_alive()
    assert clerk.request.call_count == 2

    session.keep_alive(force=True)
    assert clerk.request.call_count == 3


def test_refresh_without_jwt_fails(session, clerk):
    clerk.request.side_effect = [session_response(), HttpResponse(403, {"errors": []})]
    session.bootstrap(COOKIE)
    with pytest.raises(TokenRefreshError):
        session.refresh()


def test_validity_boundary(session, clock, make_jwt):
    session.set_token(make_jwt(1_000))

    clock.now = 940.0
    assert not session.is_valid(buffer_ms=60_000)
    clock.now = 939.5
    assert session.is_valid(buffer_ms=60_000)


def test_token_expiring_in_100_seconds(session, clock, make_jwt):
    session.set_token(make_jwt(int(clock.now) + 100))
    assert session.is_valid()

    clock.now += 40.5
    assert not session.is_valid()


def test_undecodable_token_is_kept_but_invalid(session):
    session.set_token("not-a-jwt")
    assert session.token == "not-a-jwt"
    assert not session.is_valid()
    assert session.token_expiration() is None


def test_snapshot_is_detached(session):
    session.update_cookies({"a": "1"})
    snapshot = session.snapshot()
    snapshot.cookies["a"] = "2"
    assert session.cookies["a"] == "1"


def test_clerk_version_is_scraped(session, clerk):
    clerk.request.return_value = HttpResponse(200, '<script src="/npm/@clerk/clerk-js@5.31.2/dist"></script>')
    assert session.update_clerk_version() == "5.31.2"


def test_clerk_version_kept_on_failure(session, clerk):
    clerk.request.side_effect = TransportError("unreachable")
    assert session.update_clerk_version() == "5.15.0"


def test_cookie_header_parsing():
    parsed = parse_cookie_header("a=1; Path=/; b=c=d; HttpOnly; ; Max-Age=10")
    assert parsed == {"a": "1", "b": "c=d"}


def test_decode_jwt_claims(make_jwt):
    assert decode_jwt_claims(make_jwt(42))["exp"] == 42
    with pytest.raises(ValueError):
        decode_jwt_claims("onlyonepart")
    with pytest.raises(ValueError):
        decode_jwt_claims("a.!!!.c")
