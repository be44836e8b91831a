"""
tests/test_auth_rate_limit.py -- Tests for api/limiter.py.

Unit coverage:
  - identifier derivation (IP, trimmed lowercased email, non-string emails ignored)
  - client IP selection with and without a trusted proxy, repeated header lines
  - Retry-After rounding (ceil, minimum 1 second)
  - LoginRateLimit: attempt ceiling checked before the failure ceiling,
    outcome recording on 200 / 401 / other statuses

Integration coverage (real app, FakeClock):
  - 5 consecutive 401s -> 6th login gets 429 with Retry-After and the generic message
  - a 200 clears the failure count
  - failures count against the IP and the email independently
  - the email is tracked whatever JSON content type the body arrives with
  - the failure window expires
  - validation failures (400) are not counted as failures
  - the attempt ceiling trips even with correct credentials
  - 12 registrations per hour, the 13th gets 429
"""

from __future__ import annotations

import json

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from api.limiter import (
    GENERIC_MESSAGE,
    LoginRateLimit,
    RegisterRateLimit,
    build_identifiers,
    client_ip,
    create_login_rate_limit,
    rate_limited_response,
)
from api.main import create_app
from auth.ratelimit import SlidingWindowRateLimiter
from conftest import PASSWORD, FakeClock, login, seed_user

_FIFTEEN_MINUTES_MS = 15 * 60 * 1000


# ---------------------------------------------------------------------------
# Unit tests
# ---------------------------------------------------------------------------


class TestBuildIdentifiers:
    def test_ip_and_normalized_email(self) -> None:
        assert build_identifiers("1.2.3.4", {"email": "  User@X.com "}) == ["ip:1.2.3.4", "email:user@x.com"]

    def test_missing_or_non_string_email_yields_ip_only(self) -> None:
        assert build_identifiers("1.2.3.4", {}) == ["ip:1.2.3.4"]
        assert build_identifiers("1.2.3.4", {"email": 42}) == ["ip:1.2.3.4"]
        assert build_identifiers("1.2.3.4", {"email": "   "}) == ["ip:1.2.3.4"]
        assert build_identifiers("1.2.3.4", ["not", "a", "dict"]) == ["ip:1.2.3.4"]
        assert build_identifiers("1.2.3.4", None) == ["ip:1.2.3.4"]

    def test_no_ip(self) -> None:
        assert build_identifiers(None, {"email": "a@b.co"}) == ["email:a@b.co"]


class TestClientIp:
    def _ip_for(self, headers, trust_proxy: bool) -> str:
        app = FastAPI()

        @app.get("/ip")
        async def ip(request: Request) -> dict:
            return {"ip": client_ip(request, trust_proxy)}

        with TestClient(app) as client:
            return client.get("/ip", headers=headers).json()["ip"]

    def test_last_forwarded_hop_when_proxy_trusted(self) -> None:
        assert self._ip_for({"X-Forwarded-For": "6.6.6.6, 10.0.0.9"}, trust_proxy=True) == "10.0.0.9"

    def test_repeated_forwarded_lines_are_joined(self) -> None:
        """A proxy adding its own header line still supplies the last hop."""
        headers = [("X-Forwarded-For", "6.6.6.6"), ("X-Forwarded-For", "10.0.0.9")]
        assert self._ip_for(headers, trust_proxy=True) == "10.0.0.9"

    def test_forwarded_header_ignored_without_proxy(self) -> None:
        assert self._ip_for({"X-Forwarded-For": "6.6.6.6"}, trust_proxy=False) == "testclient"


class TestRateLimitedResponse:
    def test_rounds_up_to_whole_seconds(self) -> None:
        resp = rate_limited_response(1_500)
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "2"

    def test_minimum_one_second(self) -> None:
        assert rate_limited_response(1).headers["Retry-After"] == "1"

    def test_generic_body(self) -> None:
        assert rate_limited_response(1_000).body == b'{"message":"Too many attempts. Please try again later."}'


class TestLoginRateLimitPolicy:
    def _policy(self, clock: FakeClock, attempts: int = 30, failures: int = 5) -> LoginRateLimit:
        return LoginRateLimit(
            attempts=SlidingWindowRateLimiter(_FIFTEEN_MINUTES_MS, attempts),
            failures=SlidingWindowRateLimiter(_FIFTEEN_MINUTES_MS, failures),
            clock=clock,
        )

    def test_failures_trip_after_limit(self, clock: FakeClock) -> None:
        policy = self._policy(clock)
        ids = ["ip:1.1.1.1", "email:a@b.co"]
        for _ in range(5):
            assert policy.check(ids) == 0
            policy.record_outcome(ids, 401)
        assert policy.check(ids) == _FIFTEEN_MINUTES_MS

    def test_success_clears_failures(self, clock: FakeClock) -> None:
        policy = self._policy(clock)
        ids = ["ip:1.1.1.1"]
        for _ in range(4):
            policy.record_outcome(ids, 401)
        policy.record_outcome(ids, 200)
        for _ in range(4):
            policy.record_outcome(ids, 401)
        assert policy.check(ids) == 0

    def test_other_statuses_are_ignored(self, clock: FakeClock) -> None:
        policy = self._policy(clock, failures=1)
        ids = ["ip:1.1.1.1"]
        for status in (400, 403, 429, 500):
            policy.record_outcome(ids, status)
        assert policy.check(ids) == 0

    def test_attempt_limiter_reported_first(self, clock: FakeClock) -> None:
        """When both limiters would trip, the attempt limiter's retry-after wins."""
        policy = self._policy(clock, attempts=1, failures=1)
        ids = ["ip:1.1.1.1"]
        policy.check(ids)
        policy.record_outcome(ids, 401)
        clock.advance(60_000)
        # attempts window opened at t0; failures window opened at t0 too but the
        # attempt limiter is evaluated first and already rejects.
        assert policy.check(ids) == _FIFTEEN_MINUTES_MS - 60_000

    def test_worst_identifier_wins(self, clock: FakeClock) -> None:
        policy = self._policy(clock, failures=1)
        policy.record_outcome(["ip:1.1.1.1"], 401)
        clock.advance(5 * 60_000)
        policy.record_outcome(["email:a@b.co"], 401)
        assert policy.check(["ip:1.1.1.1", "email:a@b.co"]) == _FIFTEEN_MINUTES_MS

    def test_reset_all_clears_both_limiters(self, clock: FakeClock) -> None:
        policy = self._policy(clock, attempts=1, failures=1)
        ids = ["ip:1.1.1.1"]
        policy.check(ids)
        policy.record_outcome(ids, 401)
        policy.reset_all()
        assert policy.check(ids) == 0

    def test_factory_uses_settings(self, test_settings, clock: FakeClock) -> None:
        policy = create_login_rate_limit(test_settings, clock=clock)
        assert policy.attempts.limit == test_settings.login_attempt_limit
        assert policy.failures.limit == test_settings.login_failure_limit
        assert policy.failures.window_ms == test_settings.login_window_seconds * 1000


class TestRegisterRateLimitPolicy:
    def test_consumes_every_identifier(self, clock: FakeClock) -> None:
        policy = RegisterRateLimit(SlidingWindowRateLimiter(60_000, 2), clock=clock)
        assert policy.check(["ip:1.1.1.1", "email:a@b.co"]) == 0
        assert policy.check(["ip:1.1.1.1", "email:b@b.co"]) == 0
        # IP is now at 3 > 2 even though this email is new.
        assert policy.check(["ip:1.1.1.1", "email:c@b.co"]) == 60_000
        policy.reset_all()
        assert policy.check(["ip:1.1.1.1", "email:c@b.co"]) == 0


# ---------------------------------------------------------------------------
# Integration tests
# ---------------------------------------------------------------------------


class TestLoginRateLimitIntegration:
    def test_sixth_attempt_after_five_failures_is_throttled(self, api_client: TestClient, store) -> None:
        seed_user(store, "tester@example.com")
        for attempt in range(5):
            resp = login(api_client, "tester@example.com", "WrongPassword")
            assert resp.status_code == 401, f"attempt {attempt}: {resp.text}"

        limited = login(api_client, "tester@example.com", "WrongPassword")
        assert limited.status_code == 429
        assert limited.headers["Retry-After"] == "900"
        assert limited.json() == {"message": GENERIC_MESSAGE}

    def test_correct_password_is_also_throttled_once_limited(self, api_client: TestClient, store) -> None:
        seed_user(store, "tester@example.com")
        for _ in range(5):
            login(api_client, "tester@example.com", "WrongPassword")
        assert login(api_client, "tester@example.com").status_code == 429

    def test_success_resets_failure_count(self, api_client: TestClient, store) -> None:
        seed_user(store, "tester@example.com")
        for _ in range(4):
            assert login(api_client, "tester@example.com", "WrongPassword").status_code == 401
        assert login(api_client, "tester@example.com", PASSWORD).status_code == 200

        after = login(api_client, "tester@example.com", "WrongPassword")
        assert after.status_code == 401
        assert "retry-after" not in after.headers
        for _ in range(3):
            assert login(api_client, "tester@example.com", "WrongPassword").status_code == 401

    def test_failures_follow_the_email_across_ips(self, api_client: TestClient, store) -> None:
        seed_user(store, "tester@example.com")
        for i in range(5):
            login(api_client, "tester@example.com", "WrongPassword", headers={"X-Forwarded-For": f"10.0.0.{i}"})
        resp = login(api_client, "tester@example.com", "WrongPassword", headers={"X-Forwarded-For": "10.9.9.9"})
        assert resp.status_code == 429

    @pytest.mark.parametrize("content_type", [None, "", "application/merge-patch+json", "Application/JSON; charset=utf-8"])
    def test_email_is_tracked_for_any_json_content_type(
        self, api_client: TestClient, store, content_type: str | None
    ) -> None:
        """Bodies the login handler reads as JSON also feed the email identifier."""
        seed_user(store, "tester@example.com")
        headers = {} if content_type is None else {"Content-Type": content_type}
        body = json.dumps({"email": "tester@example.com", "password": "WrongPassword"}).encode()

        statuses = []
        for i in range(6):
            resp = api_client.post(
                "/api/auth/login",
                content=body,
                headers={**headers, "X-Forwarded-For": f"10.1.0.{i}"},
            )
            statuses.append(resp.status_code)
        assert statuses == [401, 401, 401, 401, 401, 429]

    def test_failures_follow_the_ip_across_emails(self, api_client: TestClient, store) -> None:
        seed_user(store, "tester@example.com")
        for i in range(5):
            login(api_client, f"guess{i}@example.com", "WrongPassword")
        resp = login(api_client, "tester@example.com")
        assert resp.status_code == 429
        assert resp.json() == {"message": GENERIC_MESSAGE}

    def test_unknown_and_known_accounts_are_indistinguishable(self, api_client: TestClient, store) -> None:
        """Throttled responses are identical whether or not the email exists."""
        seed_user(store, "tester@example.com")
        for _ in range(5):
            login(api_client, "tester@example.com", "bad", headers={"X-Forwarded-For": "10.0.0.1"})
            login(api_client, "nobody@example.com", "bad", headers={"X-Forwarded-For": "10.0.0.2"})
        known = login(api_client, "tester@example.com", "bad", headers={"X-Forwarded-For": "10.0.0.1"})
        unknown = login(api_client, "nobody@example.com", "bad", headers={"X-Forwarded-For": "10.0.0.2"})
        assert known.status_code == unknown.status_code == 429
        assert known.json() == unknown.json()
        assert known.headers["Retry-After"] == unknown.headers["Retry-After"]

    def test_failure_window_expires(self, api_client: TestClient, store, clock: FakeClock) -> None:
        seed_user(store, "tester@example.com")
        for _ in range(5):
            login(api_client, "tester@example.com", "WrongPassword")
        assert login(api_client, "tester@example.com").status_code == 429

        clock.advance(_FIFTEEN_MINUTES_MS)
        assert login(api_client, "tester@example.com").status_code == 200

    def test_validation_errors_do_not_count_as_failures(self, api_client: TestClient, store) -> None:
        seed_user(store, "tester@example.com")
        for _ in range(6):
            resp = api_client.post("/api/auth/login", json={"email": "tester@example.com"})
            assert resp.status_code == 400
        assert login(api_client, "tester@example.com").status_code == 200

    def test_attempt_ceiling(self, test_settings, store, clock: FakeClock) -> None:
        settings = test_settings.model_copy(update={"login_attempt_limit": 3})
        seed_user(store, "tester@example.com")
        app = create_app(settings, user_store=store, clock=clock)
        with TestClient(app) as client:
            for _ in range(3):
                assert login(client, "tester@example.com").status_code == 200
            limited = login(client, "tester@example.com")
        assert limited.status_code == 429
        assert limited.json() == {"message": GENERIC_MESSAGE}

    def test_other_paths_are_not_limited(self, api_client: TestClient) -> None:
        for _ in range(40):
            assert api_client.get("/api/auth/me").status_code == 401


class TestRegisterRateLimitIntegration:
    def test_thirteenth_registration_from_one_ip_is_throttled(self, api_client: TestClient) -> None:
        for attempt in range(12):
            resp = api_client.post(
                "/api/auth/register",
                json={"email": f"user{attempt}@example.com", "password": PASSWORD, "role": "builder"},
            )
            assert resp.status_code == 201, f"attempt {attempt}: {resp.text}"

        limited = api_client.post(
            "/api/auth/register",
            json={"email": "blocked@example.com", "password": PASSWORD, "role": "builder"},
        )
        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) == 3600
        assert limited.json() == {"message": GENERIC_MESSAGE}
