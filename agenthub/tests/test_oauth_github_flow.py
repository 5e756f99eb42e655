"""End-to-end tests for the GitHub OAuth start/callback handshake."""

import re
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

pytestmark = pytest.mark.security

from agenthub.auth.identity import IdentityFederationStore
from agenthub.auth.oauth import (
    FlowContext,
    IdentityStoreError,
    ProviderExchangeError,
    decode_flow_context,
    encode_flow_context,
    pkce_challenge,
)
from agenthub.config import get_settings
from agenthub.db import dispose_engine
from agenthub.db.models import AppExchangeToken, AuditLog, User, UserAPIKey, UserIdentity
from agenthub.main import create_app
from agenthub.tests.helpers import FakeGitHubClient, setup_db

STATE_COOKIE = "aihub_oauth_state"
PKCE_COOKIE = "aihub_oauth_pkce"
FLOW_COOKIE = "aihub_oauth_flow"
HANDSHAKE_COOKIES = (STATE_COOKIE, PKCE_COOKIE, FLOW_COOKIE)
_KEY_IN_PAGE = re.compile(r'"(ak_[A-Za-z0-9_-]+)"')
_EXCHANGE_TOKEN_IN_PAGE = re.compile(r"aihub://auth/github\?exchange_token=([A-Za-z0-9_-]+)")


def _make_client(fake: FakeGitHubClient) -> TestClient:
    app = create_app()
    app.state.oauth_client = fake
    return TestClient(app, follow_redirects=False)


def _start(client: TestClient, **query) -> dict:
    res = client.get("/v1/auth/github/start", params=query)
    assert res.status_code == 302
    return {k: v[0] for k, v in parse_qs(urlsplit(res.headers["location"]).query).items()}


def _cookie_headers(res, name: str) -> list[str]:
    return [h for h in res.headers.get_list("set-cookie") if h.startswith(f"{name}=")]


def _assert_cookies_cleared(res) -> None:
    for name in HANDSHAKE_COOKIES:
        headers = _cookie_headers(res, name)
        assert headers, f"{name} not cleared"
        assert "max-age=0" in headers[0].lower()


class TestStart:
    def test_start_redirects_to_github_with_pkce(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get("/v1/auth/github/start")

            assert res.status_code == 302
            location = urlsplit(res.headers["location"])
            assert f"{location.scheme}://{location.netloc}{location.path}" == (
                "https://github.com/login/oauth/authorize"
            )
            params = parse_qs(location.query)
            assert params["client_id"] == ["test-client-id"]
            assert params["scope"] == ["read:user"]
            assert params["code_challenge_method"] == ["S256"]
            assert params["allow_signup"] == ["true"]
            assert params["redirect_uri"] == ["http://testserver/v1/auth/github/callback"]

            state = params["state"][0]
            assert client.cookies.get(STATE_COOKIE) == state
            verifier = client.cookies.get(PKCE_COOKIE)
            assert params["code_challenge"] == [pkce_challenge(verifier)]

        dispose_engine()

    def test_start_cookie_attributes(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get("/v1/auth/github/start")
            for name in HANDSHAKE_COOKIES:
                header = _cookie_headers(res, name)[0].lower()
                assert "httponly" in header
                assert "max-age=600" in header
                assert "path=/" in header
                assert "samesite=lax" in header
                # plain http request: no Secure flag
                assert "secure" not in header

        dispose_engine()

    def test_start_over_forwarded_https_sets_secure(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get(
                "/v1/auth/github/start",
                headers={"X-Forwarded-Proto": "https, http", "X-Forwarded-Host": "hub.example.com"},
            )
            params = parse_qs(urlsplit(res.headers["location"]).query)
            assert params["redirect_uri"] == ["https://hub.example.com/v1/auth/github/callback"]
            assert "secure" in _cookie_headers(res, STATE_COOKIE)[0].lower()

        dispose_engine()

    def test_each_start_issues_fresh_state(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            first = _start(client)["state"]
            second = _start(client)["state"]
            assert first != second
            assert client.cookies.get(STATE_COOKIE) == second

        dispose_engine()

    def test_start_not_configured_returns_503_page(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GITHUB_CLIENT_SECRET", "  ")
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get("/v1/auth/github/start")
            assert res.status_code == 503
            assert res.headers["content-type"].startswith("text/html")
            assert res.headers["cache-control"] == "no-store"
            assert not _cookie_headers(res, STATE_COOKIE)

        dispose_engine()

    def test_start_without_pepper_returns_503(self, monkeypatch, tmp_path):
        monkeypatch.setenv("API_KEY_PEPPER", "")
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get("/v1/auth/github/start")
            assert res.status_code == 503

        dispose_engine()

    def test_start_on_non_canonical_host_redirects(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PUBLIC_BASE_URL", "https://hub.example.com/")
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get("/v1/auth/github/start?next=1")
            assert res.status_code == 302
            assert res.headers["location"] == "https://hub.example.com/v1/auth/github/start?next=1"
            assert not _cookie_headers(res, STATE_COOKIE)

        dispose_engine()

    def test_start_on_canonical_host_uses_public_base_url(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PUBLIC_BASE_URL", "https://hub.example.com")
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get(
                "/v1/auth/github/start",
                headers={"Forwarded": 'for=203.0.113.9;proto=https;host="hub.example.com"'},
            )
            assert res.status_code == 302
            params = parse_qs(urlsplit(res.headers["location"]).query)
            assert params["redirect_uri"] == ["https://hub.example.com/v1/auth/github/callback"]

        dispose_engine()


class TestCallback:
    def test_successful_callback_issues_key(self, monkeypatch, tmp_path):
        engine = setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            params = _start(client)
            verifier = client.cookies.get(PKCE_COOKIE)

            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc123", "state": params["state"]},
            )

            assert res.status_code == 200
            assert res.headers["cache-control"] == "no-store"
            assert res.headers["referrer-policy"] == "no-referrer"
            body = res.text
            assert 'localStorage.setItem("aihub_user_api_key",' in body
            assert 'location.replace("/app/me")' in body
            match = _KEY_IN_PAGE.search(body)
            assert match is not None
            api_key = match.group(1)
            assert api_key not in "".join(res.headers.values())
            _assert_cookies_cleared(res)

            assert fake.exchanges == [
                {
                    "code": "abc123",
                    "redirect_uri": "http://testserver/v1/auth/github/callback",
                    "code_verifier": verifier,
                }
            ]

            me = client.get("/v1/me", headers={"Authorization": f"Bearer {api_key}"})
            assert me.status_code == 200
            assert me.json() == {
                "provider": "github",
                "login": "octo",
                "name": "Octo Cat",
                "avatar_url": "https://avatars.example/u/4242",
                "profile_url": "https://github.com/octo",
                "is_admin": True,
            }

        SessionLocal = sessionmaker(bind=engine)
        db = SessionLocal()
        try:
            identity = db.query(UserIdentity).one()
            assert identity.subject == "4242"
            assert db.query(UserAPIKey).count() == 1
            assert db.query(UserAPIKey).one().key_hash != api_key
            actions = {row.action for row in db.query(AuditLog).all()}
            assert {"user_oauth_login", "user_api_key_issued", "admin_bootstrap"} <= actions
        finally:
            db.close()
        dispose_engine()

    def test_second_login_keeps_user_and_adds_key(self, monkeypatch, tmp_path):
        engine = setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            for _ in range(2):
                params = _start(client)
                res = client.get(
                    "/v1/auth/github/callback",
                    params={"code": "abc", "state": params["state"]},
                )
                assert res.status_code == 200

        db = sessionmaker(bind=engine)()
        try:
            assert db.query(User).count() == 1
            assert db.query(UserIdentity).count() == 1
            assert db.query(UserAPIKey).count() == 2
        finally:
            db.close()
        dispose_engine()

    def test_state_mismatch_rejected(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            state = _start(client)["state"]
            tampered = state[:-1] + ("A" if state[-1] != "A" else "B")
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": tampered},
            )
            assert res.status_code == 400
            assert res.headers["content-type"].startswith("text/html")
            assert fake.exchanges == []
            _assert_cookies_cleared(res)

        dispose_engine()

    def test_missing_state_cookie_rejected(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            state = _start(client)["state"]
            client.cookies.delete(STATE_COOKIE)
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": state},
            )
            assert res.status_code == 400
            assert fake.exchanges == []

        dispose_engine()

    def test_mismatch_and_expiry_share_message(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            _start(client)
            mismatch = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": "not-the-state"},
            )
            client.cookies.clear()
            missing = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": "not-the-state"},
            )
            assert mismatch.status_code == missing.status_code == 400
            assert mismatch.text == missing.text

        dispose_engine()

    @pytest.mark.parametrize(
        "params",
        [
            {"state": "s"},
            {"code": "c"},
            {"code": "", "state": ""},
            {},
        ],
    )
    def test_missing_params_rejected(self, monkeypatch, tmp_path, params):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            _start(client)
            res = client.get("/v1/auth/github/callback", params=params)
            assert res.status_code == 400
            assert fake.exchanges == []
            _assert_cookies_cleared(res)

        dispose_engine()

    def test_provider_error_param_does_not_echo_description(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            state = _start(client)["state"]
            res = client.get(
                "/v1/auth/github/callback",
                params={
                    "error": "access_denied",
                    "error_description": "<script>alert(1)</script>",
                    "state": state,
                },
            )
            assert res.status_code == 400
            assert "alert(1)" not in res.text
            assert "access_denied" not in res.text
            assert fake.exchanges == []
            _assert_cookies_cleared(res)

        dispose_engine()

    def test_missing_pkce_cookie_degrades_by_default(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            state = _start(client)["state"]
            client.cookies.delete(PKCE_COOKIE)
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": state},
            )
            assert res.status_code == 200
            assert fake.exchanges[0]["code_verifier"] == ""

        dispose_engine()

    def test_missing_pkce_cookie_rejected_when_required(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OAUTH_REQUIRE_PKCE", "true")
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            state = _start(client)["state"]
            client.cookies.delete(PKCE_COOKIE)
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": state},
            )
            assert res.status_code == 400
            assert fake.exchanges == []

        dispose_engine()

    def test_exchange_failure_is_generic_400(self, monkeypatch, tmp_path):
        engine = setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient(exchange_error=ProviderExchangeError("token endpoint error: bad_verification_code"))
        with _make_client(fake) as client:
            state = _start(client)["state"]
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": state},
            )
            assert res.status_code == 400
            assert "bad_verification_code" not in res.text
            _assert_cookies_cleared(res)

        db = sessionmaker(bind=engine)()
        try:
            assert db.query(User).count() == 0
        finally:
            db.close()
        dispose_engine()

    def test_store_failure_returns_500_page(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)

        def broken_upsert(self, *args, **kwargs):
            raise IdentityStoreError("identity upsert failed: OperationalError")

        monkeypatch.setattr(IdentityFederationStore, "upsert", broken_upsert)
        with _make_client(FakeGitHubClient()) as client:
            state = _start(client)["state"]
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": state},
            )
            assert res.status_code == 500
            assert "OperationalError" not in res.text
            _assert_cookies_cleared(res)

        dispose_engine()

    def test_callback_on_non_canonical_host_rejected(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PUBLIC_BASE_URL", "https://hub.example.com")
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": "s"},
            )
            assert res.status_code == 400
            assert fake.exchanges == []

        dispose_engine()

    def test_callback_not_configured_returns_503(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GITHUB_CLIENT_ID", "")
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": "s"},
            )
            assert res.status_code == 503
            _assert_cookies_cleared(res)

        dispose_engine()

    def test_injected_client_is_not_closed_on_shutdown(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake):
            pass
        assert fake.closed is False
        assert get_settings().oauth_configured
        dispose_engine()


def _callback(client: TestClient, state: str):
    return client.get("/v1/auth/github/callback", params={"code": "abc", "state": state})


class TestRedirectTarget:
    def test_start_records_default_web_flow(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            _start(client)
            assert decode_flow_context(client.cookies.get(FLOW_COOKIE)) == FlowContext()

        dispose_engine()

    def test_redirect_to_is_carried_through_the_round_trip(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            state = _start(client, redirect_to="/app/topics/42?tab=runs")["state"]
            res = _callback(client, state)
            assert res.status_code == 200
            assert 'location.replace("/app/topics/42?tab=runs")' in res.text

        dispose_engine()

    @pytest.mark.parametrize(
        "redirect_to",
        [
            "https://evil.example/app/me",
            "//evil.example/app/me",
            "/app/../admin",
            "/console",
            "javascript:alert(1)",
            "/app/" + "a" * 600,
        ],
    )
    def test_unsafe_redirect_to_falls_back_to_console(self, monkeypatch, tmp_path, redirect_to):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            state = _start(client, redirect_to=redirect_to)["state"]
            res = _callback(client, state)
            assert res.status_code == 200
            assert 'location.replace("/app/me")' in res.text

        dispose_engine()

    def test_unsupported_flow_rejected_at_start(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.get("/v1/auth/github/start", params={"flow": "desktop"})
            assert res.status_code == 400
            assert res.headers["content-type"].startswith("text/html")
            assert not _cookie_headers(res, STATE_COOKIE)

        dispose_engine()

    @pytest.mark.parametrize(
        "context",
        [FlowContext(flow="admin"), FlowContext(redirect_to="https://evil.example/")],
    )
    def test_tampered_flow_cookie_rejected(self, monkeypatch, tmp_path, context):
        setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient()
        with _make_client(fake) as client:
            state = _start(client)["state"]
            verifier = client.cookies.get(PKCE_COOKIE)
            client.cookies.clear()
            forged = (
                f"{STATE_COOKIE}={state}; {PKCE_COOKIE}={verifier}; "
                f"{FLOW_COOKIE}={encode_flow_context(context)}"
            )
            res = client.get(
                "/v1/auth/github/callback",
                params={"code": "abc", "state": state},
                headers={"Cookie": forged},
            )
            assert res.status_code == 400
            assert fake.exchanges == []
            _assert_cookies_cleared(res)

        dispose_engine()

    def test_missing_flow_cookie_means_web_flow(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            state = _start(client, flow="app")["state"]
            client.cookies.delete(FLOW_COOKIE)
            res = _callback(client, state)
            assert res.status_code == 200
            assert _KEY_IN_PAGE.search(res.text) is not None

        dispose_engine()


class TestAppFlow:
    def test_app_flow_hands_out_exchange_token_then_key(self, monkeypatch, tmp_path):
        engine = setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            state = _start(client, flow="app")["state"]
            res = _callback(client, state)

            assert res.status_code == 200
            assert res.headers["cache-control"] == "no-store"
            assert _KEY_IN_PAGE.search(res.text) is None
            match = _EXCHANGE_TOKEN_IN_PAGE.search(res.text)
            assert match is not None
            token = match.group(1)
            assert "intent://auth/github?exchange_token=" in res.text
            _assert_cookies_cleared(res)

            db = sessionmaker(bind=engine)()
            try:
                assert db.query(UserAPIKey).count() == 0
                assert db.query(AppExchangeToken).count() == 1
            finally:
                db.close()

            exchanged = client.post("/v1/auth/app/exchange", json={"exchange_token": token})
            assert exchanged.status_code == 200
            assert exchanged.headers["cache-control"] == "no-store"
            body = exchanged.json()
            assert body["user"] == {
                "login": "octo",
                "name": "Octo Cat",
                "avatar_url": "https://avatars.example/u/4242",
                "profile_url": "https://github.com/octo",
            }
            api_key = body["api_key"]
            assert api_key.startswith("ak_")

            me = client.get("/v1/me", headers={"Authorization": f"Bearer {api_key}"})
            assert me.status_code == 200
            assert me.json()["login"] == "octo"

            replay = client.post("/v1/auth/app/exchange", json={"exchange_token": token})
            assert replay.status_code == 401
            assert replay.json()["error"]["code"] == "E2000"

        db = sessionmaker(bind=engine)()
        try:
            assert db.query(UserAPIKey).count() == 1
            actions = {row.action for row in db.query(AuditLog).all()}
            assert {
                "user_oauth_login",
                "app_exchange_token_issued",
                "app_exchange_token_used",
                "user_api_key_issued",
            } <= actions
        finally:
            db.close()
        dispose_engine()

    def test_unknown_exchange_token_is_401(self, monkeypatch, tmp_path):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.post("/v1/auth/app/exchange", json={"exchange_token": "nope"})
            assert res.status_code == 401
            assert "api_key" not in res.json()

        dispose_engine()

    @pytest.mark.parametrize("payload", [{"exchange_token": ""}, {}, {"exchange_token": "x" * 513}])
    def test_malformed_exchange_request_is_422(self, monkeypatch, tmp_path, payload):
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.post("/v1/auth/app/exchange", json=payload)
            assert res.status_code == 422

        dispose_engine()

    def test_exchange_without_pepper_is_503(self, monkeypatch, tmp_path):
        monkeypatch.setenv("API_KEY_PEPPER", "")
        setup_db(tmp_path, monkeypatch)
        with _make_client(FakeGitHubClient()) as client:
            res = client.post("/v1/auth/app/exchange", json={"exchange_token": "tok"})
            assert res.status_code == 503
            assert res.json()["error"]["code"] == "E5030"

        dispose_engine()


class TestCallbackDeadline:
    def test_slow_provider_hits_overall_deadline(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OAUTH_HTTP_TIMEOUT_SECONDS", "0.1")
        monkeypatch.setenv("OAUTH_CALLBACK_TIMEOUT_SECONDS", "0.2")
        engine = setup_db(tmp_path, monkeypatch)
        fake = FakeGitHubClient(delay=5)
        with _make_client(fake) as client:
            state = _start(client)["state"]
            res = _callback(client, state)

            assert res.status_code == 400
            assert "GitHub did not accept the sign-in" in res.text
            assert len(fake.exchanges) == 1
            _assert_cookies_cleared(res)

        db = sessionmaker(bind=engine)()
        try:
            assert db.query(User).count() == 0
        finally:
            db.close()
        dispose_engine()


def test_callback_without_lifespan_fails_loudly(monkeypatch, tmp_path):
    setup_db(tmp_path, monkeypatch)
    app = create_app()
    # no context manager: the lifespan never runs, so no provider client exists
    client = TestClient(app, raise_server_exceptions=False, follow_redirects=False)
    res = client.get("/v1/auth/github/callback", params={"code": "abc", "state": "s"})

    assert res.status_code == 500
    assert getattr(app.state, "oauth_client", None) is None
    dispose_engine()
