"""Shared fixtures for the identity provider tests."""

from unittest.mock import AsyncMock

import pytest

from ldap_idp.auth.remember import RememberStore
from ldap_idp.auth.resolver import ChallengeResolver
from ldap_idp.config import Settings
from ldap_idp.models import Challenge, ChallengeKind, Identity

JANE_DN = "uid=jane,ou=people,dc=example"
REDIRECT_URL = "https://hydra.example/oauth2/auth?login_verifier=v1"
TEST_SECRET = "test-remember-secret-0123456789abcdef"


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings():
    return Settings(
        HYDRA_URL="http://hydra:4445",
        LDAP_URL="ldap://ldap.example:389",
        LDAP_BIND_DN="cn=idp,dc=example",
        LDAP_BIND_PW="service-password",
        LDAP_USERS_DN="ou=people,dc=example",
        LDAP_SUBJECT_ATTRIBUTE="dn",
        REMEMBER_SECRET=TEST_SECRET,
        REMEMBER_COOKIE_SECURE=False,
        OAUTH_LOGIN_REMEMBER_FOR=3600,
        OAUTH_CONSENT_REMEMBER_FOR=86400,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remember_store(clock):
    return RememberStore(
        TEST_SECRET,
        remember_for=3600,
        cookie_secure=False,
        clock=clock,
    )


@pytest.fixture
def jane_attributes():
    return {
        "cn": ["Jane Doe"],
        "sn": ["Doe"],
        "givenName": ["Jane"],
        "mail": ["jane@example.org", "j.doe@example.org"],
    }


@pytest.fixture
def jane_identity(jane_attributes):
    return Identity(subject=JANE_DN, dn=JANE_DN, attributes=jane_attributes)


@pytest.fixture
def login_challenge():
    return Challenge(id="abc123", kind=ChallengeKind.LOGIN, client_id="webapp")


@pytest.fixture
def consent_challenge():
    return Challenge(
        id="def456",
        kind=ChallengeKind.CONSENT,
        subject=JANE_DN,
        requested_scopes=["openid", "profile", "email"],
        requested_audience=["api"],
        client_id="webapp",
        client_name="Web App",
    )


@pytest.fixture
def mock_admin(login_challenge, consent_challenge):
    """Admin API double answering every call with a redirect."""
    admin = AsyncMock()
    admin.get_login_challenge.return_value = login_challenge
    admin.get_consent_challenge.return_value = consent_challenge
    admin.accept_login.return_value = REDIRECT_URL
    admin.reject_login.return_value = REDIRECT_URL
    admin.accept_consent.return_value = REDIRECT_URL
    admin.reject_consent.return_value = REDIRECT_URL
    admin.accept_logout.return_value = "https://hydra.example/oauth2/sessions/logout?done=1"
    return admin


@pytest.fixture
def mock_directory(jane_identity, jane_attributes):
    directory = AsyncMock()
    directory.authenticate.return_value = jane_identity
    directory.fetch_attributes.return_value = jane_attributes
    return directory


@pytest.fixture
def resolver(settings, mock_admin, mock_directory, remember_store):
    return ChallengeResolver.from_settings(settings, mock_admin, mock_directory, remember_store)
