"""
Unit Tests for the LDAP Directory Client
========================================

Tests for ldap_idp/directory/ldap.py

The directory is simulated with ldap3's MOCK_SYNC strategy; entries are
shared by every connection opened on the same Server object.
"""

from unittest.mock import patch

import pytest
from ldap3 import MOCK_SYNC, Connection, Server

from ldap_idp.directory.ldap import LdapDirectory, entry_attributes
from ldap_idp.errors import (
    AmbiguousUser,
    DirectoryUnavailable,
    InvalidCredentials,
    UserNotFound,
)

from .conftest import JANE_DN

SERVICE_DN = "cn=idp,dc=example"
SERVICE_PW = "service-password"
USERS_FILTER = "(&(objectClass=inetOrgPerson)(|(uid={login})(mail={login})))"


@pytest.fixture
def server():
    server = Server("fake_ldap")
    conn = Connection(server, user=SERVICE_DN, password=SERVICE_PW, client_strategy=MOCK_SYNC)

    conn.strategy.add_entry("dc=example", {"objectClass": ["domain"], "dc": "example"})
    conn.strategy.add_entry("ou=people,dc=example", {"objectClass": ["organizationalUnit"], "ou": "people"})
    conn.strategy.add_entry("ou=groups,dc=example", {"objectClass": ["organizationalUnit"], "ou": "groups"})
    conn.strategy.add_entry(SERVICE_DN, {"objectClass": ["person"], "cn": "idp", "userPassword": SERVICE_PW})
    conn.strategy.add_entry(JANE_DN, {
        "objectClass": ["inetOrgPerson"],
        "uid": "jane",
        "cn": "Jane Doe",
        "sn": "Doe",
        "givenName": "Jane",
        "mail": ["jane@example.org", "j.doe@example.org"],
        "userPassword": "correct-password",
    })
    # two entries sharing a mail address
    for uid in ("twin1", "twin2"):
        conn.strategy.add_entry(f"uid={uid},ou=people,dc=example", {
            "objectClass": ["inetOrgPerson"],
            "uid": uid,
            "cn": uid,
            "sn": uid,
            "mail": "twins@example.org",
            "userPassword": "twin-password",
        })
    conn.strategy.add_entry("cn=admins,ou=groups,dc=example", {
        "objectClass": ["groupOfNames"],
        "cn": "admins",
        "member": [JANE_DN],
    })
    conn.strategy.add_entry("cn=devs,ou=groups,dc=example", {
        "objectClass": ["groupOfNames"],
        "cn": "devs",
        "member": [JANE_DN, "uid=twin1,ou=people,dc=example"],
    })
    conn.strategy.add_entry("cn=ops,ou=groups,dc=example", {
        "objectClass": ["groupOfNames"],
        "cn": "ops",
        "member": ["uid=twin2,ou=people,dc=example"],
    })

    return server


def make_directory(server, **kwargs) -> LdapDirectory:
    options = dict(
        url="ldap://fake_ldap",
        bind_dn=SERVICE_DN,
        bind_pw=SERVICE_PW,
        users_dn="ou=people,dc=example",
        attributes=["cn", "sn", "givenName", "mail"],
        subject_attribute="dn",
        server=server,
        client_strategy=MOCK_SYNC,
    )
    options.update(kwargs)
    return LdapDirectory(**options)


# ============================================================================
# Authentication
# ============================================================================

@pytest.mark.asyncio
async def test_authenticate_by_uid(server):
    identity = await make_directory(server).authenticate(USERS_FILTER, "jane", "correct-password")

    assert identity.subject == JANE_DN
    assert identity.dn == JANE_DN
    assert identity.attributes["cn"] == ["Jane Doe"]
    assert identity.attributes["mail"] == ["jane@example.org", "j.doe@example.org"]


@pytest.mark.asyncio
async def test_authenticate_by_mail(server):
    identity = await make_directory(server).authenticate(USERS_FILTER, "jane@example.org", "correct-password")

    assert identity.subject == JANE_DN


@pytest.mark.asyncio
async def test_subject_from_attribute(server):
    directory = make_directory(server, subject_attribute="uid")

    identity = await directory.authenticate(USERS_FILTER, "jane", "correct-password")

    assert identity.subject == "jane"


@pytest.mark.asyncio
async def test_wrong_password(server):
    with pytest.raises(InvalidCredentials):
        await make_directory(server).authenticate(USERS_FILTER, "jane", "wrong-password")


@pytest.mark.asyncio
async def test_empty_password_never_binds(server):
    with pytest.raises(InvalidCredentials):
        await make_directory(server).authenticate(USERS_FILTER, "jane", "")


@pytest.mark.asyncio
async def test_unknown_user(server):
    with pytest.raises(UserNotFound):
        await make_directory(server).authenticate(USERS_FILTER, "nobody", "whatever")


@pytest.mark.asyncio
async def test_ambiguous_user(server):
    with pytest.raises(AmbiguousUser):
        await make_directory(server).authenticate(USERS_FILTER, "twins@example.org", "twin-password")


@pytest.mark.parametrize("login, error", [
    ("nobody", UserNotFound),
    ("twins@example.org", AmbiguousUser),
])
@pytest.mark.asyncio
async def test_unmatched_login_still_binds_once(server, login, error):
    directory = make_directory(server)

    with patch.object(directory, "_dummy_bind", wraps=directory._dummy_bind) as dummy_bind:
        with pytest.raises(error):
            await directory.authenticate(USERS_FILTER, login, "some-password")

    dummy_bind.assert_called_once_with("some-password")


@pytest.mark.asyncio
async def test_matched_login_skips_dummy_bind(server):
    directory = make_directory(server)

    with patch.object(directory, "_dummy_bind") as dummy_bind:
        with pytest.raises(InvalidCredentials):
            await directory.authenticate(USERS_FILTER, "jane", "wrong-password")
        await directory.authenticate(USERS_FILTER, "jane", "correct-password")

    dummy_bind.assert_not_called()


def test_dummy_bind_targets_missing_entry(server):
    directory = make_directory(server)

    with patch.object(directory, "_connection", wraps=directory._connection) as connection:
        directory._dummy_bind("some-password")
        directory._dummy_bind("")

    connection.assert_called_once_with("cn=nonexistent,ou=people,dc=example", "some-password")


@pytest.mark.asyncio
async def test_filter_injection_is_escaped(server):
    with pytest.raises(UserNotFound):
        await make_directory(server).authenticate(USERS_FILTER, "*", "correct-password")


@pytest.mark.asyncio
async def test_groups_lookup(server):
    directory = make_directory(server, groups_dn="ou=groups,dc=example")

    identity = await directory.authenticate(USERS_FILTER, "jane", "correct-password")

    assert sorted(identity.attributes["groups"]) == ["admins", "devs"]


@pytest.mark.asyncio
async def test_service_bind_failure(server):
    directory = make_directory(server, bind_pw="not-the-password")

    with pytest.raises(DirectoryUnavailable):
        await directory.authenticate(USERS_FILTER, "jane", "correct-password")


@pytest.mark.asyncio
async def test_unreachable_server():
    directory = LdapDirectory(
        url="ldap://127.0.0.1:1",
        bind_dn=SERVICE_DN,
        bind_pw=SERVICE_PW,
        users_dn="ou=people,dc=example",
        timeout=2,
    )

    with pytest.raises(DirectoryUnavailable):
        await directory.authenticate(USERS_FILTER, "jane", "correct-password")


# ============================================================================
# Attribute Lookup
# ============================================================================

@pytest.mark.asyncio
async def test_fetch_attributes_by_dn(server):
    attributes = await make_directory(server).fetch_attributes(JANE_DN)

    assert attributes["givenName"] == ["Jane"]
    assert "userPassword" not in attributes


@pytest.mark.asyncio
async def test_fetch_attributes_by_subject_attribute(server):
    directory = make_directory(server, subject_attribute="uid", groups_dn="ou=groups,dc=example")

    attributes = await directory.fetch_attributes("jane")

    assert attributes["sn"] == ["Doe"]
    assert sorted(attributes["groups"]) == ["admins", "devs"]


@pytest.mark.asyncio
async def test_fetch_attributes_of_missing_entry(server):
    with pytest.raises(UserNotFound):
        await make_directory(server).fetch_attributes("uid=ghost,ou=people,dc=example")


def test_groups_is_never_requested_from_directory(server):
    directory = make_directory(server, attributes=["cn", "groups"], subject_attribute="entryUUID")

    assert directory.attributes == ["cn", "entryUUID"]


def test_entry_attributes_decodes_raw_values():
    entry = {
        "dn": JANE_DN,
        "raw_attributes": {"cn": [b"Jane Doe"], "mail": [b"a@example.org", b"b@example.org"], "empty": []},
    }

    assert entry_attributes(entry) == {
        "cn": ["Jane Doe"],
        "mail": ["a@example.org", "b@example.org"],
    }
