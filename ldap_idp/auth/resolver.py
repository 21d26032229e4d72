"""
Challenge Resolver
==================

Drives every login and consent challenge to exactly one decision.

Each browser request builds a fresh ``ChallengeFlow``: the challenge is
fetched from the admin API, the flow moves through explicit states and ends
either waiting for user input (login or consent form), with a submitted
decision, or in the error state. Moves the transition table does not allow,
including a second decision for the same flow, raise ``IllegalTransition``.

Login:
    START -> ACCEPT                      (skip, or valid remember token)
    START -> AWAIT_CREDENTIALS           (render the form)
    AWAIT_CREDENTIALS -> AUTHENTICATE -> ACCEPT | AWAIT_CREDENTIALS
    AWAIT_CREDENTIALS -> REJECT          (user cancelled)

Consent:
    START -> ACCEPT                      (skip, claims from the login context)
    START -> AWAIT_CONSENT -> ACCEPT | REJECT

ACCEPT and REJECT end in SUBMITTED once the admin API returned the redirect
URL. Any error moves the flow to ERROR and is re-raised.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterator, List, Optional, Sequence

from ..admin.client import AdminApi
from ..directory.ldap import DirectoryClient
from ..errors import (
    ChallengeNotFound,
    DecisionAlreadySubmitted,
    IdpError,
    IllegalTransition,
    InvalidChallenge,
    InvalidCredentials,
    ProtocolViolation,
    UserNotFound,
)
from ..models import Challenge, ChallengeKind, Credentials, Decision, IssuedToken
from .claims import AttributeRule, ClaimSet, ScopeRule, map_claims
from .remember import RememberStore

logger = logging.getLogger(__name__)

INVALID_LOGIN_MESSAGE = "Invalid login or password."
ACCESS_DENIED = "access_denied"
# login context key holding the directory attributes, read back at consent
CONTEXT_ATTRIBUTES = "attrs"


class FlowState(str, Enum):
    START = "start"
    AWAIT_CREDENTIALS = "await_credentials"
    AUTHENTICATE = "authenticate"
    AWAIT_CONSENT = "await_consent"
    ACCEPT = "accept"
    REJECT = "reject"
    SUBMITTED = "submitted"
    ERROR = "error"


TRANSITIONS: Dict[FlowState, FrozenSet[FlowState]] = {
    FlowState.START: frozenset({
        FlowState.AWAIT_CREDENTIALS,
        FlowState.AWAIT_CONSENT,
        FlowState.ACCEPT,
    }),
    FlowState.AWAIT_CREDENTIALS: frozenset({FlowState.AUTHENTICATE, FlowState.REJECT}),
    FlowState.AUTHENTICATE: frozenset({FlowState.ACCEPT, FlowState.AWAIT_CREDENTIALS}),
    FlowState.AWAIT_CONSENT: frozenset({FlowState.ACCEPT, FlowState.REJECT}),
    FlowState.ACCEPT: frozenset({FlowState.SUBMITTED}),
    FlowState.REJECT: frozenset({FlowState.SUBMITTED}),
    FlowState.SUBMITTED: frozenset(),
    FlowState.ERROR: frozenset(),
}


class ChallengeFlow:
    """State of one challenge resolution."""

    def __init__(self, challenge_id: str, kind: ChallengeKind):
        self.challenge_id = challenge_id
        self.kind = kind
        self.state = FlowState.START
        self.challenge: Optional[Challenge] = None
        self.decision: Optional[Decision] = None
        self.redirect_to: Optional[str] = None
        self.error: Optional[IdpError] = None

    def move(self, target: FlowState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise IllegalTransition(
                f"{self.kind.value} flow cannot go from {self.state.value} to {target.value}"
            )
        self.state = target

    def claim_submission(self, decision: Decision) -> None:
        """Reserve the flow's single decision slot."""
        if self.decision is not None or self.state == FlowState.SUBMITTED:
            raise DecisionAlreadySubmitted(
                f"a decision was already submitted for {self.kind.value} challenge"
            )
        if self.state not in (FlowState.ACCEPT, FlowState.REJECT):
            raise IllegalTransition(f"cannot submit a decision from {self.state.value}")
        self.decision = decision

    @contextmanager
    def failing(self) -> Iterator["ChallengeFlow"]:
        """Move to ERROR when an identity provider error escapes."""
        try:
            yield self
        except IdpError as e:
            self.state = FlowState.ERROR
            self.error = e
            raise


@dataclass
class Outcome:
    """What the web layer has to do once a request was resolved."""

    flow: ChallengeFlow
    redirect_to: Optional[str] = None
    form_error: Optional[str] = None
    login: Optional[str] = None
    remember_cookie: Optional[IssuedToken] = None
    scope_claims: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def state(self) -> FlowState:
        return self.flow.state

    @property
    def challenge(self) -> Optional[Challenge]:
        return self.flow.challenge


class ChallengeResolver:
    """
    Resolves login and consent challenges.

    Args:
        admin: authorization server admin API
        directory: LDAP directory
        remember: remember-me token store
        users_filter: user search filter with a ``{login}`` placeholder
        attribute_rules: (attribute, claim) pairs
        scope_rules: (claim, scope) pairs
        scalar_claims: claims carrying only the first attribute value
        login_remember_for: seconds Hydra remembers a login when asked to
        consent_remember_for: seconds Hydra remembers a consent when asked to
    """

    def __init__(
        self,
        admin: AdminApi,
        directory: DirectoryClient,
        remember: RememberStore,
        users_filter: str,
        attribute_rules: Sequence[AttributeRule],
        scope_rules: Sequence[ScopeRule],
        scalar_claims: FrozenSet[str] = frozenset(),
        login_remember_for: int = 0,
        consent_remember_for: int = 0,
    ):
        self.admin = admin
        self.directory = directory
        self.remember = remember
        self.users_filter = users_filter
        self.attribute_rules = list(attribute_rules)
        self.scope_rules = list(scope_rules)
        self.scalar_claims = scalar_claims
        self.login_remember_for = login_remember_for
        self.consent_remember_for = consent_remember_for

    @classmethod
    def from_settings(cls, settings, admin: AdminApi, directory: DirectoryClient,
                      remember: RememberStore) -> "ChallengeResolver":
        return cls(
            admin=admin,
            directory=directory,
            remember=remember,
            users_filter=settings.LDAP_USERS_FILTER,
            attribute_rules=settings.attribute_rules,
            scope_rules=settings.scope_rules,
            scalar_claims=settings.scalar_claims,
            login_remember_for=settings.OAUTH_LOGIN_REMEMBER_FOR,
            consent_remember_for=settings.OAUTH_CONSENT_REMEMBER_FOR,
        )

    # =========================================================================
    # Login
    # =========================================================================

    async def start_login(self, challenge_id: str, remember_cookie: Optional[str] = None) -> Outcome:
        """
        Handle ``GET /login``: bypass the form when possible, else ask for credentials.
        """
        flow = ChallengeFlow(challenge_id, ChallengeKind.LOGIN)

        with flow.failing():
            challenge = await self._fetch(flow)

            if challenge.skip:
                if not challenge.subject:
                    raise ProtocolViolation("login challenge skipped without a subject")
                flow.move(FlowState.ACCEPT)
                return await self._accept_login(flow, challenge.subject, remember=False)

            remembered = self.remember.verify(remember_cookie)
            if remembered is not None:
                flow.move(FlowState.ACCEPT)
                outcome = await self._accept_login(flow, remembered.subject, remember=False)
                outcome.remember_cookie = self.remember.refresh(remember_cookie, remembered)
                return outcome

            flow.move(FlowState.AWAIT_CREDENTIALS)
            return Outcome(flow)

    async def submit_login(
        self,
        challenge_id: str,
        login: str,
        password: str,
        remember: bool = False,
    ) -> Outcome:
        """
        Handle ``POST /login``: authenticate against the directory.

        Unknown users, ambiguous logins and wrong passwords all produce the
        same form error.
        """
        flow = ChallengeFlow(challenge_id, ChallengeKind.LOGIN)
        credentials = Credentials(login, password)

        with flow.failing():
            try:
                await self._fetch(flow)
                flow.move(FlowState.AWAIT_CREDENTIALS)
                flow.move(FlowState.AUTHENTICATE)

                try:
                    identity = await self.directory.authenticate(
                        self.users_filter, credentials.login, credentials.password
                    )
                except InvalidCredentials as e:
                    logger.info(
                        f"Invalid login or password for {credentials.login}",
                        extra={"reason": type(e).__name__},
                    )
                    flow.move(FlowState.AWAIT_CREDENTIALS)
                    return Outcome(flow, form_error=INVALID_LOGIN_MESSAGE, login=credentials.login)
            finally:
                credentials.clear()

            flow.move(FlowState.ACCEPT)
            outcome = await self._accept_login(
                flow, identity.subject, remember=remember,
                context={CONTEXT_ATTRIBUTES: identity.attributes},
            )
            if remember:
                outcome.remember_cookie = self.remember.issue(identity.subject)

            logger.info(
                f"accepted login request for `{credentials.login}`",
                extra={"subject": identity.subject, "remember": remember},
            )
            return outcome

    async def cancel_login(self, challenge_id: str) -> Outcome:
        """Handle a cancelled login form: reject the challenge."""
        flow = ChallengeFlow(challenge_id, ChallengeKind.LOGIN)

        with flow.failing():
            await self._fetch(flow)
            flow.move(FlowState.AWAIT_CREDENTIALS)
            flow.move(FlowState.REJECT)
            decision = Decision.reject(ACCESS_DENIED, "The resource owner cancelled the login")
            redirect_to = await self._submit(flow, decision, self.admin.reject_login)
            return Outcome(flow, redirect_to=redirect_to)

    async def _accept_login(
        self,
        flow: ChallengeFlow,
        subject: str,
        remember: bool,
        context: Optional[Dict[str, Any]] = None,
    ) -> Outcome:
        decision = Decision.accept_login(
            subject=subject,
            remember=remember,
            remember_for=self.login_remember_for if remember else 0,
            context=context,
        )
        redirect_to = await self._submit(flow, decision, self.admin.accept_login)
        return Outcome(flow, redirect_to=redirect_to)

    # =========================================================================
    # Consent
    # =========================================================================

    async def start_consent(self, challenge_id: str) -> Outcome:
        """
        Handle ``GET /consent``: accept remembered consents, else show the form.
        """
        flow = ChallengeFlow(challenge_id, ChallengeKind.CONSENT)

        with flow.failing():
            challenge = await self._fetch(flow)
            subject = self._require_subject(challenge)

            if challenge.skip:
                # Hydra only skips once every requested scope was granted before
                grant_scope = list(challenge.requested_scopes)
                claim_set = self._established_claims(challenge)
                if claim_set is None:
                    claim_set = await self._claim_set(subject)
                if claim_set is None:
                    flow.move(FlowState.AWAIT_CONSENT)
                    return await self._deny_unknown_subject(flow)

                flow.move(FlowState.ACCEPT)
                decision = Decision.accept_consent(
                    grant_scope=grant_scope,
                    grant_audience=challenge.requested_audience,
                    claims=claim_set.restrict(grant_scope),
                    remember=False,
                    remember_for=0,
                )
                redirect_to = await self._submit(flow, decision, self.admin.accept_consent)
                return Outcome(flow, redirect_to=redirect_to)

            flow.move(FlowState.AWAIT_CONSENT)
            claim_set = await self._claim_set(subject)
            if claim_set is None:
                return await self._deny_unknown_subject(flow)

            return Outcome(
                flow,
                scope_claims={
                    scope: claim_set.claims_for_scope(scope)
                    for scope in challenge.requested_scopes
                },
            )

    async def submit_consent(
        self,
        challenge_id: str,
        selected_scopes: Sequence[str],
        accept: bool,
        remember: bool = False,
    ) -> Outcome:
        """
        Handle ``POST /consent``.

        The granted scopes are the selected ones that were requested, in the
        requested order; anything else the browser sent is dropped.
        """
        flow = ChallengeFlow(challenge_id, ChallengeKind.CONSENT)

        with flow.failing():
            challenge = await self._fetch(flow)
            subject = self._require_subject(challenge)
            flow.move(FlowState.AWAIT_CONSENT)

            if not accept:
                flow.move(FlowState.REJECT)
                decision = Decision.reject(ACCESS_DENIED, "The resource owner denied the request")
                redirect_to = await self._submit(flow, decision, self.admin.reject_consent)
                logger.info("rejected consent request", extra={"subject": subject})
                return Outcome(flow, redirect_to=redirect_to)

            selected = set(selected_scopes)
            grant_scope = [scope for scope in challenge.requested_scopes if scope in selected]

            claim_set = await self._claim_set(subject)
            if claim_set is None:
                return await self._deny_unknown_subject(flow)

            flow.move(FlowState.ACCEPT)
            decision = Decision.accept_consent(
                grant_scope=grant_scope,
                grant_audience=challenge.requested_audience,
                claims=claim_set.restrict(grant_scope),
                remember=remember,
                remember_for=self.consent_remember_for if remember else 0,
            )
            redirect_to = await self._submit(flow, decision, self.admin.accept_consent)

            logger.info(
                "accepted consent request",
                extra={"subject": subject, "grant_scope": grant_scope},
            )
            return Outcome(flow, redirect_to=redirect_to)

    async def _claim_set(self, subject: str) -> Optional[ClaimSet]:
        """Fresh attribute lookup; None when the subject left the directory."""
        try:
            attributes = await self.directory.fetch_attributes(subject)
        except UserNotFound:
            logger.warning(
                "Subject of consent request not found in directory",
                extra={"subject": subject},
            )
            return None

        return map_claims(attributes, self.attribute_rules, self.scope_rules, self.scalar_claims)

    async def _deny_unknown_subject(self, flow: ChallengeFlow) -> Outcome:
        flow.move(FlowState.REJECT)
        decision = Decision.reject(ACCESS_DENIED, "The user is no longer known")
        redirect_to = await self._submit(flow, decision, self.admin.reject_consent)
        return Outcome(flow, redirect_to=redirect_to)

    @staticmethod
    def _require_subject(challenge: Challenge) -> str:
        if not challenge.subject:
            raise ProtocolViolation("consent challenge has no subject")
        return challenge.subject

    def _established_claims(self, challenge: Challenge) -> Optional[ClaimSet]:
        """
        Claims from the attributes stored in the login context.

        Returns None when the login did not go through the credentials form
        (skipped or remembered login) or the context is malformed.
        """
        attributes = challenge.context.get(CONTEXT_ATTRIBUTES)
        if not isinstance(attributes, dict):
            return None

        if not all(
            isinstance(values, list) and all(isinstance(v, str) for v in values)
            for values in attributes.values()
        ):
            logger.warning(
                "Ignoring malformed attributes in consent request context",
                extra={"subject": challenge.subject},
            )
            return None

        return map_claims(attributes, self.attribute_rules, self.scope_rules, self.scalar_claims)

    # =========================================================================
    # Logout
    # =========================================================================

    async def accept_logout(self, challenge_id: str) -> str:
        try:
            return await self.admin.accept_logout(challenge_id)
        except InvalidChallenge as e:
            raise ChallengeNotFound(f"logout challenge {challenge_id} refused") from e

    # =========================================================================
    # Admin API Round-trips
    # =========================================================================

    async def _fetch(self, flow: ChallengeFlow) -> Challenge:
        if flow.kind == ChallengeKind.LOGIN:
            fetch = self.admin.get_login_challenge
        else:
            fetch = self.admin.get_consent_challenge

        try:
            challenge = await fetch(flow.challenge_id)
        except InvalidChallenge as e:
            raise ChallengeNotFound(
                f"{flow.kind.value} challenge {flow.challenge_id} refused"
            ) from e

        flow.challenge = challenge
        return challenge

    async def _submit(
        self,
        flow: ChallengeFlow,
        decision: Decision,
        submit: Callable[[str, Decision], Awaitable[str]],
    ) -> str:
        """
        Submit the flow's only decision.

        The slot is reserved before the call, so a failed submission is never
        retried for this flow.
        """
        flow.claim_submission(decision)

        try:
            redirect_to = await submit(flow.challenge_id, decision)
        except InvalidChallenge as e:
            raise ChallengeNotFound(
                f"{flow.kind.value} challenge {flow.challenge_id} was refused on submission"
            ) from e

        flow.redirect_to = redirect_to
        flow.move(FlowState.SUBMITTED)
        return redirect_to


__all__ = [
    "ACCESS_DENIED",
    "CONTEXT_ATTRIBUTES",
    "ChallengeFlow",
    "ChallengeResolver",
    "FlowState",
    "INVALID_LOGIN_MESSAGE",
    "Outcome",
    "TRANSITIONS",
]
