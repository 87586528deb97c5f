"""
tests/test_sessions.py -- Unit tests for SessionCodec and the session cookie.

No HTTP stack involved except a bare Starlette Response for the cookie
attributes. The clock is injected so expiry is tested without sleeping.
"""

from __future__ import annotations

import base64

import pytest
from starlette.responses import Response

from auth.sessions import SESSION_COOKIE, SessionCodec, clear_session_cookie, set_session_cookie

SECRET = "k" * 40


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock) -> SessionCodec:
    return SessionCodec(SECRET, ttl_seconds=3600, clock=clock)


class TestIssueAndValidate:
    def test_round_trip(self, codec) -> None:
        assert codec.validate(codec.issue("alice")) == ("alice", True)

    def test_token_is_unpadded_urlsafe(self, codec) -> None:
        token = codec.issue("alice")
        assert "=" not in token
        assert "+" not in token and "/" not in token

    def test_valid_until_ttl(self, codec, clock) -> None:
        token = codec.issue("alice")
        clock.now += 3600
        assert codec.validate(token) == ("alice", True)

    def test_expired_after_ttl(self, codec, clock) -> None:
        token = codec.issue("alice")
        clock.now += 3601
        assert codec.validate(token) == ("", False)

    def test_other_secret_rejects(self, codec, clock) -> None:
        token = codec.issue("alice")
        other = SessionCodec("z" * 40, ttl_seconds=3600, clock=clock)
        assert other.validate(token) == ("", False)

    def test_shared_secret_accepts_across_instances(self, codec, clock) -> None:
        token = codec.issue("alice")
        twin = SessionCodec(SECRET, ttl_seconds=3600, clock=clock)
        assert twin.validate(token) == ("alice", True)

    @pytest.mark.parametrize("username", ["", "a|b", "|"])
    def test_issue_rejects_bad_usernames(self, codec, username) -> None:
        with pytest.raises(ValueError):
            codec.issue(username)

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            SessionCodec("", ttl_seconds=60)


class TestTampering:
    def test_every_single_character_flip_fails(self, codec) -> None:
        """Changing any one character of a genuine token must invalidate it."""
        token = codec.issue("alice")
        for i, ch in enumerate(token):
            replacement = "A" if ch != "A" else "B"
            forged = token[:i] + replacement + token[i + 1 :]
            assert codec.validate(forged) == ("", False), f"flip at {i} accepted"

    def test_truncated_token_fails(self, codec) -> None:
        token = codec.issue("alice")
        assert codec.validate(token[:-1]) == ("", False)
        assert codec.validate(token[1:]) == ("", False)

    def test_forged_username_with_copied_mac_fails(self, codec) -> None:
        token = codec.issue("alice")
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)).decode()
        _, issued, mac = raw.split("|")
        forged_raw = f"mallory|{issued}|{mac}".encode()
        forged = base64.urlsafe_b64encode(forged_raw).rstrip(b"=").decode()
        assert codec.validate(forged) == ("", False)

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "not base64 at all!",
            "YWxpY2U",  # "alice": one field
            "YWxpY2V8MTIz",  # "alice|123": two fields
            "YXxifGN8ZA",  # "a|b|c|d": four fields
            "YWxpY2V8eHl6fGFiYw",  # "alice|xyz|abc": non-numeric timestamp
            "YWxpY2U=",  # padded
        ],
    )
    def test_malformed_tokens_fail(self, codec, token) -> None:
        assert codec.validate(token) == ("", False)

    def test_non_ascii_digits_in_timestamp_fail(self, codec) -> None:
        raw = "alice|١٢٣|abc".encode()
        token = base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
        assert codec.validate(token) == ("", False)

    def test_oversized_timestamp_fails(self, codec) -> None:
        raw = f"alice|{'9' * 5000}|abc".encode()
        token = base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
        assert codec.validate(token) == ("", False)


class TestCookie:
    def test_set_cookie_attributes(self) -> None:
        response = Response()
        set_session_cookie(response, "tok", max_age=3600, secure=False)
        header = response.headers["set-cookie"]
        assert header.startswith(f"{SESSION_COOKIE}=tok")
        assert "HttpOnly" in header
        assert "Path=/" in header
        assert "samesite=lax" in header.lower()
        assert "Max-Age=3600" in header
        assert "Secure" not in header

    def test_secure_flag(self) -> None:
        response = Response()
        set_session_cookie(response, "tok", max_age=60, secure=True)
        assert "Secure" in response.headers["set-cookie"]

    def test_clear_cookie_expires_it(self) -> None:
        response = Response()
        clear_session_cookie(response)
        header = response.headers["set-cookie"]
        assert header.startswith(f'{SESSION_COOKIE}=""')
        assert "Max-Age=0" in header
