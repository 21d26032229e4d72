"""
Hydra Admin API Client
======================

Calls the authorization server's administrative endpoints to fetch login,
consent and logout requests and to submit accept/reject decisions.

Error Model:
------------
- ``InvalidChallenge``: Hydra answered with a 4xx status (unknown, expired
  or already handled challenge, malformed request)
- ``AdminApiUnavailable``: network error, timeout, 5xx status or a response
  that is not the expected JSON document

No call is retried here; connection-level retries, when configured, are
done by the httpx transport before any request reaches Hydra.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from ..errors import AdminApiUnavailable, InvalidChallenge
from ..models import Challenge, ChallengeKind, Decision

logger = logging.getLogger(__name__)


class AdminApi(Protocol):
    """Operations the challenge resolver needs from the authorization server."""

    async def get_login_challenge(self, challenge_id: str) -> Challenge:
        ...

    async def get_consent_challenge(self, challenge_id: str) -> Challenge:
        ...

    async def accept_login(self, challenge_id: str, decision: Decision) -> str:
        ...

    async def reject_login(self, challenge_id: str, decision: Decision) -> str:
        ...

    async def accept_consent(self, challenge_id: str, decision: Decision) -> str:
        ...

    async def reject_consent(self, challenge_id: str, decision: Decision) -> str:
        ...

    async def accept_logout(self, challenge_id: str) -> str:
        ...


class HydraAdminClient:
    """
    AdminApi implementation for ORY Hydra.

    Args:
        base_url: Hydra admin URL (used when no client is given)
        client: shared httpx.AsyncClient, owned by the caller when provided
        api_prefix: path of the request endpoints
        timeout: request timeout in seconds
        retries: connection retries done by the httpx transport
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        api_prefix: str = "/oauth2/auth/requests",
        timeout: float = 10.0,
        retries: int = 0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=httpx.AsyncHTTPTransport(retries=retries),
            headers={"Accept": "application/json"},
        )
        self._prefix = api_prefix.rstrip("/")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Challenge Retrieval
    # =========================================================================

    async def get_login_challenge(self, challenge_id: str) -> Challenge:
        data = await self._request("GET", "login", "login_challenge", challenge_id)
        return self._to_challenge(challenge_id, ChallengeKind.LOGIN, data)

    async def get_consent_challenge(self, challenge_id: str) -> Challenge:
        data = await self._request("GET", "consent", "consent_challenge", challenge_id)
        return self._to_challenge(challenge_id, ChallengeKind.CONSENT, data)

    # =========================================================================
    # Decisions
    # =========================================================================

    async def accept_login(self, challenge_id: str, decision: Decision) -> str:
        data = await self._request(
            "PUT", "login/accept", "login_challenge", challenge_id, decision.login_payload()
        )
        return self._redirect_to(data)

    async def reject_login(self, challenge_id: str, decision: Decision) -> str:
        data = await self._request(
            "PUT", "login/reject", "login_challenge", challenge_id, decision.reject_payload()
        )
        return self._redirect_to(data)

    async def accept_consent(self, challenge_id: str, decision: Decision) -> str:
        data = await self._request(
            "PUT", "consent/accept", "consent_challenge", challenge_id, decision.consent_payload()
        )
        return self._redirect_to(data)

    async def reject_consent(self, challenge_id: str, decision: Decision) -> str:
        data = await self._request(
            "PUT", "consent/reject", "consent_challenge", challenge_id, decision.reject_payload()
        )
        return self._redirect_to(data)

    async def accept_logout(self, challenge_id: str) -> str:
        data = await self._request("PUT", "logout/accept", "logout_challenge", challenge_id)
        return self._redirect_to(data)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _request(
        self,
        method: str,
        endpoint: str,
        param: str,
        challenge_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform one request against Hydra and return the decoded JSON body.

        Raises:
            InvalidChallenge: On 4xx responses
            AdminApiUnavailable: On transport errors, 5xx or invalid bodies
        """
        url = f"{self._prefix}/{endpoint}"

        try:
            response = await self._client.request(
                method,
                url,
                params={param: challenge_id},
                json=payload,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Hydra request timeout: {method} {url}")
            raise AdminApiUnavailable("Hydra admin API timeout") from e
        except httpx.HTTPError as e:
            logger.error(f"Hydra network error: {e}", extra={"endpoint": endpoint})
            raise AdminApiUnavailable("Cannot reach Hydra admin API") from e

        if response.status_code >= 500:
            logger.error(
                f"Hydra server error: {response.status_code}",
                extra={"endpoint": endpoint},
            )
            raise AdminApiUnavailable(f"Hydra answered {response.status_code}")

        if response.status_code >= 400:
            logger.warning(
                f"Hydra rejected {endpoint} request: {response.status_code} {_error_text(response)}",
                extra={"endpoint": endpoint},
            )
            raise InvalidChallenge(f"Hydra answered {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise AdminApiUnavailable("Invalid JSON from Hydra admin API") from e

        if not isinstance(data, dict):
            raise AdminApiUnavailable("Unexpected response from Hydra admin API")

        return data

    @staticmethod
    def _redirect_to(data: Dict[str, Any]) -> str:
        redirect_to = data.get("redirect_to")
        if not redirect_to or not isinstance(redirect_to, str):
            raise AdminApiUnavailable("Hydra response missing redirect_to")
        return redirect_to

    @staticmethod
    def _to_challenge(challenge_id: str, kind: ChallengeKind, data: Dict[str, Any]) -> Challenge:
        client = data.get("client") or {}

        try:
            return Challenge(
                id=data.get("challenge") or challenge_id,
                kind=kind,
                subject=data.get("subject") or None,
                requested_scopes=data.get("requested_scope") or [],
                requested_audience=data.get("requested_access_token_audience") or [],
                skip=bool(data.get("skip", False)),
                client_id=client.get("client_id"),
                client_name=client.get("client_name") or None,
                context=data.get("context") or {},
            )
        except (ValidationError, AttributeError) as e:
            raise AdminApiUnavailable("Unexpected challenge document from Hydra admin API") from e


def _error_text(response: httpx.Response) -> str:
    """Best-effort Hydra error description for logs."""
    try:
        body = response.json()
    except ValueError:
        return ""

    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("error") or "")
    return ""


__all__ = [
    "AdminApi",
    "HydraAdminClient",
]
