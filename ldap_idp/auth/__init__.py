"""
Authentication Package
======================

Login, consent and logout handling for Hydra challenges.

Main Components:
----------------
- resolver.py: challenge state machine driving each challenge to one decision
- claims.py: LDAP attribute to OIDC claim mapping
- remember.py: signed remember-me cookie
- routes.py: FastAPI routes for the browser
- pages.py: HTML pages
"""

from .claims import ClaimSet, map_claims
from .remember import RememberStore
from .resolver import ChallengeFlow, ChallengeResolver, FlowState, Outcome
from .routes import auth_router

__all__ = [
    "ChallengeFlow",
    "ChallengeResolver",
    "ClaimSet",
    "FlowState",
    "Outcome",
    "RememberStore",
    "auth_router",
    "map_claims",
]
