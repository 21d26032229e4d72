"""
Error taxonomy shared by the challenge resolver and its collaborators.

Only ``InvalidCredentials`` is recovered locally (the login form is shown
again). Every other error ends the flow and is rendered as an opaque error
page by the application's exception handler.
"""


class IdpError(Exception):
    """Base exception for identity provider errors"""

    #: HTTP status used when the error reaches the browser
    status_code = 500


class ChallengeNotFound(IdpError):
    """The challenge is unknown, expired or already handled."""

    status_code = 404


class InvalidCredentials(IdpError):
    """Login and password do not identify exactly one directory entry."""

    status_code = 401


class UserNotFound(InvalidCredentials):
    """No directory entry matched."""


class AmbiguousUser(InvalidCredentials):
    """More than one directory entry matched."""


class DirectoryUnavailable(IdpError):
    """The directory could not be reached or answered with a protocol error."""

    status_code = 503


class AdminApiUnavailable(IdpError):
    """The authorization server's admin API could not be reached."""

    status_code = 503


class InvalidChallenge(IdpError):
    """The admin API refused the challenge (4xx answer)."""

    status_code = 404


class ProtocolViolation(IdpError):
    """The caller broke the login/consent protocol (e.g. consent without subject)."""

    status_code = 400


class IllegalTransition(IdpError):
    """A challenge flow was asked to move to a state it cannot reach."""


class DecisionAlreadySubmitted(IllegalTransition):
    """A second decision was submitted for the same challenge flow."""
