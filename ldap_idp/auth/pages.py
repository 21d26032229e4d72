"""
HTML pages for the login, consent, logout and error screens.

Pages are rendered inline and every dynamic value is HTML-escaped.
"""

from html import escape
from typing import Dict, List, Optional

from fastapi.responses import HTMLResponse

from ..errors import ChallengeNotFound, IdpError, ProtocolViolation
from ..models import Challenge

_STYLE = """
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body {
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
        background: #f3f4f6;
        min-height: 100vh;
        display: flex;
        align-items: center;
        justify-content: center;
        padding: 20px;
    }
    .container {
        background: white;
        border-radius: 12px;
        padding: 40px;
        max-width: 440px;
        width: 100%;
        box-shadow: 0 10px 40px rgba(0,0,0,0.1);
    }
    h1 { color: #1f2937; font-size: 24px; margin-bottom: 16px; }
    p { color: #4b5563; line-height: 1.6; margin-bottom: 16px; }
    label { display: block; color: #374151; font-size: 14px; margin-bottom: 12px; }
    input[type=text], input[type=password] {
        display: block; width: 100%; padding: 10px; margin-top: 4px;
        border: 1px solid #d1d5db; border-radius: 6px; font-size: 16px;
    }
    .error {
        background: #fef2f2; color: #b91c1c; padding: 12px;
        border-radius: 6px; margin-bottom: 16px; font-size: 14px;
    }
    .scope small { display: block; color: #9ca3af; margin-left: 24px; }
    .actions { display: flex; gap: 12px; margin-top: 24px; }
    button {
        flex: 1; padding: 12px; border: none; border-radius: 6px;
        font-size: 16px; font-weight: 600; cursor: pointer;
    }
    button.primary { background: #4f46e5; color: white; }
    button.secondary { background: #e5e7eb; color: #374151; }
"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="referrer" content="no-referrer">
    <title>{escape(title)}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
        {body}
    </div>
</body>
</html>
"""
    return HTMLResponse(
        content=html_content,
        status_code=status_code,
        headers={"Cache-Control": "no-store"},
    )


def render_login_page(
    challenge_id: str,
    action: str,
    form_error: Optional[str] = None,
    login: Optional[str] = None,
) -> HTMLResponse:
    """
    Render the login form.

    Args:
        challenge_id: Login challenge, posted back in a hidden field
        action: URL the form posts to
        form_error: Error shown above the form
        login: Value to pre-fill the login field with
    """
    error_html = f'<div class="error">{escape(form_error)}</div>' if form_error else ""

    body = f"""
        <h1>Sign in</h1>
        {error_html}
        <form method="post" action="{escape(action)}">
            <input type="hidden" name="login_challenge" value="{escape(challenge_id)}">
            <label>Login
                <input type="text" name="login" value="{escape(login or '')}" autocomplete="username" autofocus required>
            </label>
            <label>Password
                <input type="password" name="password" autocomplete="current-password" required>
            </label>
            <label><input type="checkbox" name="remember" value="true"> Remember me</label>
            <div class="actions">
                <button class="secondary" type="submit" name="action" value="cancel" formnovalidate>Cancel</button>
                <button class="primary" type="submit" name="action" value="login">Sign in</button>
            </div>
        </form>
    """
    return _page("Sign in", body)


def render_consent_page(
    challenge: Challenge,
    action: str,
    scope_claims: Dict[str, List[str]],
) -> HTMLResponse:
    """
    Render the consent form listing the requested scopes.

    Each scope shows the claims it would disclose; all scopes start checked.
    """
    items = []
    for scope in challenge.requested_scopes:
        claims = scope_claims.get(scope) or []
        hint = f"<small>{escape(', '.join(claims))}</small>" if claims else ""
        items.append(
            f'<label class="scope"><input type="checkbox" name="grant_scope" '
            f'value="{escape(scope)}" checked> {escape(scope)}{hint}</label>'
        )

    body = f"""
        <h1>Authorize access</h1>
        <p><strong>{escape(challenge.display_name)}</strong> wants to access your account.</p>
        <form method="post" action="{escape(action)}">
            <input type="hidden" name="consent_challenge" value="{escape(challenge.id)}">
            {''.join(items)}
            <label><input type="checkbox" name="remember" value="true"> Do not ask me again</label>
            <div class="actions">
                <button class="secondary" type="submit" name="action" value="deny">Deny</button>
                <button class="primary" type="submit" name="action" value="accept">Allow</button>
            </div>
        </form>
    """
    return _page("Authorize access", body)


def render_post_logout_page() -> HTMLResponse:
    body = """
        <h1>Signed out</h1>
        <p>You have been signed out. You can close this window.</p>
    """
    return _page("Signed out", body)


def render_error_page(
    title: str,
    message: str,
    status_code: int = 500,
    hint: Optional[str] = None,
) -> HTMLResponse:
    """
    Render an error page.

    Args:
        title: Error title
        message: Error message (never internal details)
        status_code: HTTP status code
        hint: Optional extra line
    """
    hint_html = f"<p><small>{escape(hint)}</small></p>" if hint else ""

    body = f"""
        <h1>{escape(title)}</h1>
        <p>{escape(message)}</p>
        {hint_html}
        <p><small>Need help? Contact your system administrator.</small></p>
    """
    return _page(title, body, status_code=status_code)


def render_failure_page(exc: IdpError) -> HTMLResponse:
    """Opaque error page for an identity provider error, with its HTTP status."""
    if isinstance(exc, ChallengeNotFound):
        return render_error_page(
            "Request Not Found",
            "This sign-in request is unknown or has expired. Please start again.",
            status_code=exc.status_code,
        )
    if isinstance(exc, ProtocolViolation):
        return render_error_page(
            "Invalid Request",
            "The sign-in request could not be processed.",
            status_code=exc.status_code,
        )
    if exc.status_code == 503:
        return render_error_page(
            "Service Unavailable",
            "The service is temporarily unavailable. Please try again later.",
            status_code=503,
        )
    return render_error_page(
        "Authentication Error",
        "An unexpected error occurred.",
        status_code=exc.status_code,
    )
