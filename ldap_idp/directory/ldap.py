"""
LDAP directory client.

Implements bind-then-search-then-bind-as-user authentication and attribute
lookups with ldap3. ldap3 is blocking, so every public coroutine runs the
actual directory work in a worker thread. Connections are opened per
operation and always unbound before returning, whatever the outcome.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol, Sequence

from ldap3 import BASE, NONE, SUBTREE, SYNC, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from ..errors import (
    AmbiguousUser,
    DirectoryUnavailable,
    InvalidCredentials,
    UserNotFound,
)
from ..models import Identity

logger = logging.getLogger(__name__)

Attributes = Dict[str, List[str]]

# invalidCredentials, unwillingToPerform (locked or disabled accounts)
REJECTED_BIND_CODES = frozenset({49, 53})
# noSuchObject, invalidDNSyntax
NOT_FOUND_CODES = frozenset({32, 34})

DN_SUBJECT = "dn"


class DirectoryClient(Protocol):
    """Operations the challenge resolver needs from the directory."""

    async def authenticate(self, filter_template: str, login: str, password: str) -> Identity:
        ...

    async def fetch_attributes(self, subject: str) -> Attributes:
        ...


def _to_text(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def entry_attributes(entry: dict) -> Attributes:
    """
    Extract attribute values from an ldap3 search response entry.

    Values keep the order the server returned them in; attributes without
    any value are dropped.
    """
    raw = entry.get("raw_attributes") or entry.get("attributes") or {}

    attributes: Attributes = {}
    for name, values in raw.items():
        if not isinstance(values, (list, tuple)):
            values = [values]
        decoded = [_to_text(value) for value in values]
        if decoded:
            attributes[name] = decoded

    return attributes


class LdapDirectory:
    """
    DirectoryClient backed by an LDAP server.

    Args:
        url: LDAP URL (``ldap://`` or ``ldaps://``)
        bind_dn: service account DN used for searches
        bind_pw: service account password
        users_dn: base DN to search for users
        attributes: user attributes to fetch
        subject_attribute: attribute holding the subject, ``dn`` for the entry DN
        groups_dn: base DN to search for groups, None to skip groups
        groups_filter: group filter with a ``{user_dn}`` placeholder
        timeout: connect and receive timeout in seconds
        server: pre-built ldap3 Server (overrides ``url``)
        client_strategy: ldap3 client strategy
    """

    def __init__(
        self,
        url: str,
        bind_dn: str,
        bind_pw: str,
        users_dn: str,
        attributes: Sequence[str] = (),
        subject_attribute: str = "entryUUID",
        groups_dn: Optional[str] = None,
        groups_filter: str = "(&(objectClass=groupOfNames)(member={user_dn}))",
        timeout: int = 10,
        server: Optional[Server] = None,
        client_strategy=SYNC,
    ):
        self._server = server or Server(url, connect_timeout=timeout, get_info=NONE)
        self._strategy = client_strategy
        self._timeout = timeout
        self.bind_dn = bind_dn
        self._bind_pw = bind_pw
        self.users_dn = users_dn
        self.subject_attribute = subject_attribute
        self.groups_dn = groups_dn
        self.groups_filter = groups_filter

        requested = list(attributes)
        if subject_attribute.lower() != DN_SUBJECT and subject_attribute not in requested:
            requested.append(subject_attribute)
        # the groups pseudo-attribute is computed, never fetched
        self.attributes = [a for a in requested if a.lower() != "groups"]

    # =========================================================================
    # Public API
    # =========================================================================

    async def authenticate(self, filter_template: str, login: str, password: str) -> Identity:
        """
        Find the user matching ``login`` and check ``password`` by binding as it.

        Raises:
            UserNotFound: No entry matched
            AmbiguousUser: More than one entry matched
            InvalidCredentials: The user bind was refused
            DirectoryUnavailable: The directory failed
        """
        return await asyncio.to_thread(self._authenticate, filter_template, login, password)

    async def fetch_attributes(self, subject: str) -> Attributes:
        """
        Fetch the current attributes of the entry identified by ``subject``.

        Raises:
            UserNotFound: No single entry has this subject
            DirectoryUnavailable: The directory failed
        """
        return await asyncio.to_thread(self._fetch_attributes, subject)

    # =========================================================================
    # Blocking Implementation
    # =========================================================================

    def _authenticate(self, filter_template: str, login: str, password: str) -> Identity:
        if not login:
            raise UserNotFound("empty login")

        search_filter = filter_template.replace("{login}", escape_filter_chars(login))

        with self._connection(self.bind_dn, self._bind_pw) as conn:
            self._service_bind(conn)
            entries = self._search(conn, self.users_dn, search_filter, SUBTREE, self.attributes)

            if len(entries) != 1:
                # keeps the response time close to a refused password
                self._dummy_bind(password)
            if not entries:
                raise UserNotFound(f"can't find user {login}")
            if len(entries) > 1:
                raise AmbiguousUser(f"{len(entries)} entries match {login}")

            entry = entries[0]
            dn = entry["dn"]

            # an empty password would be an unauthenticated bind, which succeeds
            if not password:
                raise InvalidCredentials("empty password")
            self._check_password(dn, password)

            attributes = entry_attributes(entry)
            subject = self._subject(dn, attributes)
            if self.groups_dn:
                attributes["groups"] = self._search_groups(conn, dn)

        logger.debug("Authenticated directory entry", extra={"dn": dn})
        return Identity(subject=subject, dn=dn, attributes=attributes)

    def _fetch_attributes(self, subject: str) -> Attributes:
        if not subject:
            raise UserNotFound("empty subject")

        if self.subject_attribute.lower() == DN_SUBJECT:
            base, scope, search_filter = subject, BASE, "(objectClass=*)"
        else:
            base, scope = self.users_dn, SUBTREE
            search_filter = f"({self.subject_attribute}={escape_filter_chars(subject)})"

        with self._connection(self.bind_dn, self._bind_pw) as conn:
            self._service_bind(conn)
            entries = self._search(conn, base, search_filter, scope, self.attributes)

            if len(entries) != 1:
                raise UserNotFound(f"{len(entries)} entries for subject {subject}")

            dn = entries[0]["dn"]
            attributes = entry_attributes(entries[0])
            if self.groups_dn:
                attributes["groups"] = self._search_groups(conn, dn)

        return attributes

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _connection(self, user: str, password: str) -> Iterator[Connection]:
        """Open a connection and always unbind it on exit."""
        conn = Connection(
            self._server,
            user=user,
            password=password,
            client_strategy=self._strategy,
            read_only=True,
            raise_exceptions=False,
            receive_timeout=self._timeout,
            auto_referrals=False,
        )
        try:
            yield conn
        except LDAPException as e:
            logger.warning(f"LDAP Error: {e}")
            raise DirectoryUnavailable(str(e)) from e
        finally:
            try:
                conn.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while closing LDAP connection: {e}")

    def _service_bind(self, conn: Connection) -> None:
        if not conn.bind():
            logger.error(
                "Unable to bind to LDAP with the service account",
                extra={"bind_dn": self.bind_dn, "result": conn.result.get("description")},
            )
            raise DirectoryUnavailable("service account bind failed")

    def _check_password(self, dn: str, password: str) -> None:
        with self._connection(dn, password) as conn:
            if conn.bind():
                return

            code = conn.result.get("result")
            if code in REJECTED_BIND_CODES:
                raise InvalidCredentials("invalid credentials")

            raise DirectoryUnavailable(f"user bind failed with result {code}")

    def _dummy_bind(self, password: str) -> None:
        """Bind as a DN that does not exist; the result is ignored."""
        if not password:
            return
        with self._connection(f"cn=nonexistent,{self.users_dn}", password) as conn:
            conn.bind()

    def _search(
        self,
        conn: Connection,
        base: str,
        search_filter: str,
        scope,
        attributes: Sequence[str],
    ) -> List[dict]:
        conn.search(
            search_base=base,
            search_filter=search_filter,
            search_scope=scope,
            attributes=list(attributes) or None,
        )

        code = conn.result.get("result")
        if code in NOT_FOUND_CODES:
            return []
        if code != 0:
            raise DirectoryUnavailable(f"search failed with result {code}")

        return [entry for entry in (conn.response or []) if entry.get("type") == "searchResEntry"]

    def _search_groups(self, conn: Connection, user_dn: str) -> List[str]:
        search_filter = self.groups_filter.replace("{user_dn}", escape_filter_chars(user_dn))

        groups: List[str] = []
        for entry in self._search(conn, self.groups_dn, search_filter, SUBTREE, ["cn"]):
            for name, values in entry_attributes(entry).items():
                if name.lower() == "cn":
                    groups.append(values[0])

        return groups

    def _subject(self, dn: str, attributes: Attributes) -> str:
        if self.subject_attribute.lower() == DN_SUBJECT:
            return dn

        for name, values in attributes.items():
            if name.lower() == self.subject_attribute.lower():
                return values[0]

        logger.error(
            f"Entry has no '{self.subject_attribute}' attribute",
            extra={"dn": dn},
        )
        raise DirectoryUnavailable(f"entry {dn} has no subject attribute")
