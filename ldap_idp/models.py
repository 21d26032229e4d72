"""
Data Models Module

This module defines Pydantic models for the values exchanged between the
challenge resolver, the Hydra admin API client and the directory client.

Models are organized by functional area:
- Challenge models (login/consent requests fetched from Hydra)
- Identity models (directory authentication results, credentials)
- Decision models (accept/reject payloads submitted to Hydra)
- Remember-me models (issued and verified remember tokens)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Challenge Models
# ============================================================================

class ChallengeKind(str, Enum):
    LOGIN = "login"
    CONSENT = "consent"


class Challenge(BaseModel):
    """One pending login or consent decision requested by Hydra."""
    id: str = Field(..., description="Opaque challenge identifier", min_length=1)
    kind: ChallengeKind = Field(..., description="Login or consent")
    subject: Optional[str] = Field(None, description="Subject already bound to the flow")
    requested_scopes: List[str] = Field(default_factory=list, description="Scopes requested by the client")
    requested_audience: List[str] = Field(default_factory=list, description="Requested access token audiences")
    skip: bool = Field(default=False, description="Interactive login/consent may be bypassed")
    client_id: Optional[str] = Field(None, description="OAuth2 client identifier")
    client_name: Optional[str] = Field(None, description="Human readable client name")
    context: Dict[str, Any] = Field(default_factory=dict, description="Context attached to the login accept, forwarded by Hydra")

    @field_validator("requested_scopes", "requested_audience")
    @classmethod
    def dedupe(cls, v: List[str]) -> List[str]:
        """Remove duplicates while keeping the order Hydra sent."""
        return list(dict.fromkeys(item for item in v if item))

    @property
    def display_name(self) -> str:
        return self.client_name or self.client_id or "An application"


# ============================================================================
# Identity Models
# ============================================================================

class Credentials:
    """
    Login and password for a single authentication attempt.

    Plain object, never serialized.
    """

    __slots__ = ("login", "password")

    def __init__(self, login: str, password: str):
        self.login = login
        self.password = password

    def clear(self) -> None:
        self.password = ""

    def __repr__(self) -> str:
        return f"Credentials(login={self.login!r}, password='***')"


class Identity(BaseModel):
    """Outcome of a successful directory authentication."""
    subject: str = Field(..., description="Stable identifier used as OAuth2 subject")
    dn: str = Field(..., description="Distinguished name of the directory entry")
    attributes: Dict[str, List[str]] = Field(default_factory=dict, description="Attribute values in directory order")


# ============================================================================
# Decision Models
# ============================================================================

class DecisionKind(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class Decision(BaseModel):
    """The single verdict produced for a challenge."""
    kind: DecisionKind
    subject: Optional[str] = None
    remember: bool = False
    remember_for: int = Field(default=0, ge=0)
    grant_scope: List[str] = Field(default_factory=list)
    grant_audience: List[str] = Field(default_factory=list)
    claims: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict, description="Handed to the consent request by Hydra")
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def accept_login(
        cls,
        subject: str,
        remember: bool,
        remember_for: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> "Decision":
        return cls(
            kind=DecisionKind.ACCEPT,
            subject=subject,
            remember=remember,
            remember_for=remember_for,
            context=context or {},
        )

    @classmethod
    def accept_consent(
        cls,
        grant_scope: List[str],
        grant_audience: List[str],
        claims: Dict[str, Any],
        remember: bool,
        remember_for: int,
    ) -> "Decision":
        return cls(
            kind=DecisionKind.ACCEPT,
            grant_scope=grant_scope,
            grant_audience=grant_audience,
            claims=claims,
            remember=remember,
            remember_for=remember_for,
        )

    @classmethod
    def reject(cls, error: str, description: str) -> "Decision":
        return cls(kind=DecisionKind.REJECT, error=error, error_description=description)

    def login_payload(self) -> Dict[str, Any]:
        """Body of Hydra's ``login/accept`` call."""
        payload: Dict[str, Any] = {
            "subject": self.subject,
            "remember": self.remember,
            "remember_for": self.remember_for,
        }
        if self.context:
            payload["context"] = self.context
        return payload

    def consent_payload(self) -> Dict[str, Any]:
        """Body of Hydra's ``consent/accept`` call."""
        return {
            "grant_scope": self.grant_scope,
            "grant_access_token_audience": self.grant_audience,
            "remember": self.remember,
            "remember_for": self.remember_for,
            "session": {"id_token": self.claims},
        }

    def reject_payload(self) -> Dict[str, Any]:
        """Body of Hydra's ``login/reject`` and ``consent/reject`` calls."""
        return {
            "error": self.error,
            "error_description": self.error_description,
        }


# ============================================================================
# Remember-me Models
# ============================================================================

class RememberToken(BaseModel):
    """A verified remember token."""
    subject: str
    expires_at: datetime
    session_only: bool = Field(default=False, description="Cookie lives for the browser session")


class IssuedToken(BaseModel):
    """An encoded remember token ready to be set as cookie."""
    value: str
    expires_at: datetime
    max_age: Optional[int] = Field(None, description="Cookie Max-Age, None for a session cookie")
