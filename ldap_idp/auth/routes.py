"""
Browser-facing routes for Hydra's login, consent and logout challenges.

Every handler delegates to the ``ChallengeResolver`` held in the application
state and turns its ``Outcome`` into either an HTML page or a redirect to the
URL returned by Hydra. Errors raised by the resolver are rendered by the
application's exception handlers, except on logout where the cookie must
still be cleared.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Form, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from ..errors import ChallengeNotFound, IdpError
from .pages import (
    render_consent_page,
    render_error_page,
    render_failure_page,
    render_login_page,
    render_post_logout_page,
)
from .remember import RememberStore
from .resolver import ChallengeResolver, FlowState, Outcome

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])

TRUTHY = frozenset({"1", "true", "on", "yes"})


def get_resolver(request: Request) -> ChallengeResolver:
    return request.app.state.app_state.resolver


def get_remember_store(request: Request) -> RememberStore:
    return request.app.state.app_state.remember


def _require_challenge(value: Optional[str], name: str) -> str:
    if not value or not value.strip():
        raise ChallengeNotFound(f"missing {name}")
    return value.strip()


def _is_checked(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in TRUTHY


def _redirect(outcome: Outcome, store: RememberStore, code: int) -> RedirectResponse:
    response = RedirectResponse(url=outcome.redirect_to, status_code=code)
    if outcome.remember_cookie is not None:
        store.attach(response, outcome.remember_cookie)
    return response


# =============================================================================
# Login
# =============================================================================

@auth_router.get("/login", response_class=HTMLResponse)
async def login_page(
    request: Request,
    login_challenge: Optional[str] = Query(None, description="Login challenge issued by Hydra"),
    resolver: ChallengeResolver = Depends(get_resolver),
    store: RememberStore = Depends(get_remember_store),
):
    """
    Start a login challenge.

    Skipped challenges and browsers holding a valid remember cookie are
    redirected straight back to Hydra; everybody else gets the login form.
    """
    challenge_id = _require_challenge(login_challenge, "login_challenge")

    outcome = await resolver.start_login(
        challenge_id, remember_cookie=request.cookies.get(store.cookie_name)
    )

    if outcome.state == FlowState.SUBMITTED:
        return _redirect(outcome, store, status.HTTP_302_FOUND)

    return render_login_page(challenge_id, action=request.url.path)


@auth_router.post("/login", response_class=HTMLResponse)
async def login_submit(
    request: Request,
    login_challenge: Optional[str] = Form(None),
    login: str = Form(""),
    password: str = Form(""),
    remember: Optional[str] = Form(None),
    action: str = Form("login"),
    resolver: ChallengeResolver = Depends(get_resolver),
    store: RememberStore = Depends(get_remember_store),
):
    """
    Check the submitted credentials, or reject the challenge on cancel.

    Wrong credentials re-render the form with a generic error message.
    """
    challenge_id = _require_challenge(login_challenge, "login_challenge")

    if action in ("cancel", "deny"):
        outcome = await resolver.cancel_login(challenge_id)
        return _redirect(outcome, store, status.HTTP_303_SEE_OTHER)

    outcome = await resolver.submit_login(
        challenge_id, login, password, remember=_is_checked(remember)
    )

    if outcome.state == FlowState.AWAIT_CREDENTIALS:
        return render_login_page(
            challenge_id,
            action=request.url.path,
            form_error=outcome.form_error,
            login=outcome.login,
        )

    return _redirect(outcome, store, status.HTTP_303_SEE_OTHER)


# =============================================================================
# Consent
# =============================================================================

@auth_router.get("/consent", response_class=HTMLResponse)
async def consent_page(
    request: Request,
    consent_challenge: Optional[str] = Query(None, description="Consent challenge issued by Hydra"),
    resolver: ChallengeResolver = Depends(get_resolver),
    store: RememberStore = Depends(get_remember_store),
):
    challenge_id = _require_challenge(consent_challenge, "consent_challenge")

    outcome = await resolver.start_consent(challenge_id)

    if outcome.state == FlowState.SUBMITTED:
        return _redirect(outcome, store, status.HTTP_302_FOUND)

    return render_consent_page(outcome.challenge, request.url.path, outcome.scope_claims)


@auth_router.post("/consent")
async def consent_submit(
    consent_challenge: Optional[str] = Form(None),
    grant_scope: List[str] = Form([]),
    remember: Optional[str] = Form(None),
    action: str = Form("deny"),
    resolver: ChallengeResolver = Depends(get_resolver),
    store: RememberStore = Depends(get_remember_store),
):
    """
    Accept or deny a consent challenge.

    Anything other than ``action=accept`` denies the request.
    """
    challenge_id = _require_challenge(consent_challenge, "consent_challenge")

    outcome = await resolver.submit_consent(
        challenge_id,
        selected_scopes=grant_scope,
        accept=action == "accept",
        remember=_is_checked(remember),
    )
    return _redirect(outcome, store, status.HTTP_303_SEE_OTHER)


# =============================================================================
# Logout
# =============================================================================

@auth_router.get("/logout")
async def logout(
    request: Request,
    logout_challenge: Optional[str] = Query(None, description="Logout challenge issued by Hydra"),
    resolver: ChallengeResolver = Depends(get_resolver),
    store: RememberStore = Depends(get_remember_store),
):
    """
    Clear the remember cookie and accept Hydra's logout request if any.

    The cookie is cleared even when Hydra refuses or cannot be reached.
    """
    response: Response
    if logout_challenge and logout_challenge.strip():
        try:
            redirect_to = await resolver.accept_logout(logout_challenge.strip())
        except IdpError as e:
            logger.warning(
                f"Logout accept failed: {e}",
                extra={"path": request.url.path, "exception_type": type(e).__name__},
            )
            response = render_failure_page(e)
        else:
            response = RedirectResponse(url=redirect_to, status_code=status.HTTP_302_FOUND)
    else:
        response = render_post_logout_page()

    store.destroy(response)
    logger.info("Cleared remember cookie", extra={"path": request.url.path})
    return response


@auth_router.api_route("/post-logout", methods=["GET", "POST"], response_class=HTMLResponse)
async def post_logout(store: RememberStore = Depends(get_remember_store)):
    response = render_post_logout_page()
    store.destroy(response)
    return response


# =============================================================================
# Error Page
# =============================================================================

@auth_router.get("/error", response_class=HTMLResponse)
async def error_page(
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    error_hint: Optional[str] = Query(None),
):
    """Landing page for errors Hydra redirects the browser to."""
    logger.warning(
        "Authorization server reported an error",
        extra={"error": error, "error_description": error_description},
    )
    return render_error_page(
        title="Authentication Error",
        message=error_description or error or "An unknown error occurred.",
        status_code=status.HTTP_400_BAD_REQUEST,
        hint=error_hint,
    )


__all__ = ["auth_router", "get_remember_store", "get_resolver"]
