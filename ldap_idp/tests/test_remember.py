"""
Unit Tests for the Remember Store
================================

Tests for ldap_idp/auth/remember.py

Test Coverage:
--------------
1. Issued tokens verify back to the same subject
2. Tampered, foreign and expired tokens are treated as absent
3. Session-only tokens (remember_for = 0)
4. Non-sliding refresh
5. Cookie attributes
"""

import jwt
import pytest
from fastapi.responses import Response

from ldap_idp.auth.remember import RememberStore

from .conftest import JANE_DN, TEST_SECRET, FakeClock


def test_issued_token_verifies_to_same_subject(remember_store):
    issued = remember_store.issue(JANE_DN)

    verified = remember_store.verify(issued.value)

    assert verified is not None
    assert verified.subject == JANE_DN
    assert verified.session_only is False
    assert issued.max_age == 3600


def test_missing_token_is_absent(remember_store):
    assert remember_store.verify(None) is None
    assert remember_store.verify("") is None


def test_tampered_token_is_absent(remember_store):
    token = remember_store.issue(JANE_DN).value
    forged = remember_store.issue("uid=admin,ou=people,dc=example").value
    header, _, signature = token.split(".")
    tampered = ".".join([header, forged.split(".")[1], signature])

    assert remember_store.verify(tampered) is None


def test_token_signed_with_other_secret_is_absent(clock):
    other = RememberStore("another-secret-0123456789abcdefghij", remember_for=3600, clock=clock)
    store = RememberStore(TEST_SECRET, remember_for=3600, clock=clock)

    assert store.verify(other.issue(JANE_DN).value) is None


def test_garbage_token_is_absent(remember_store):
    assert remember_store.verify("not-a-jwt") is None


def test_token_of_other_type_is_absent(remember_store, clock):
    now = int(clock())
    token = jwt.encode(
        {"sub": JANE_DN, "iat": now, "exp": now + 60, "typ": "session"},
        TEST_SECRET,
        algorithm="HS256",
    )

    assert remember_store.verify(token) is None


def test_expired_token_is_absent(remember_store, clock):
    token = remember_store.issue(JANE_DN).value

    clock.advance(3599)
    assert remember_store.verify(token) is not None

    clock.advance(1)
    assert remember_store.verify(token) is None


def test_session_only_token_uses_nominal_lifetime():
    clock = FakeClock()
    store = RememberStore(TEST_SECRET, remember_for=0, max_lifetime=7200, clock=clock)

    issued = store.issue(JANE_DN)

    assert issued.max_age is None
    verified = store.verify(issued.value)
    assert verified.session_only is True

    clock.advance(7200)
    assert store.verify(issued.value) is None


def test_refresh_does_not_extend_expiry(remember_store, clock):
    issued = remember_store.issue(JANE_DN)
    clock.advance(600)

    refreshed = remember_store.refresh(issued.value, remember_store.verify(issued.value))

    assert refreshed.value == issued.value
    assert refreshed.expires_at == issued.expires_at
    assert refreshed.max_age == 3000


def test_issue_requires_subject(remember_store):
    with pytest.raises(ValueError):
        remember_store.issue("")


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        RememberStore("")


def test_attach_sets_http_only_cookie(remember_store):
    response = Response()

    remember_store.attach(response, remember_store.issue(JANE_DN))

    cookie = response.headers["set-cookie"]
    assert cookie.startswith("idp_remember=")
    assert "HttpOnly" in cookie
    assert "Max-Age=3600" in cookie
    assert "samesite=lax" in cookie.lower()


def test_destroy_expires_cookie(remember_store):
    response = Response()

    remember_store.destroy(response)

    cookie = response.headers["set-cookie"]
    assert cookie.startswith('idp_remember=""')
    assert "Max-Age=0" in cookie
