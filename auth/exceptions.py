"""Typed exceptions for auth failures.

Each exception carries a stable ``code`` so the workflow can turn it into a
user-facing message through one fixed table (see auth.messages).
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""

    code = "unknown"


class DeliveryError(AuthError):
    """Sign-in link could not be sent."""

    code = "delivery-failed"


class InvalidLinkError(AuthError):
    """
    Sign-in link is malformed, unknown, already used, or issued for another email.
    """

    code = "invalid-action-code"


class MalformedLinkError(InvalidLinkError):
    """Link doesn't look like a sign-in link at all (checked before any lookup)."""

    code = "invalid-link"


class ExpiredLinkError(AuthError):
    """Sign-in link was genuine but is past its expiry."""

    code = "expired-action-code"


class AlreadyExistsError(AuthError):
    """A live user record already uses this email (or id)."""

    code = "email-already-exists"


class NotFoundError(AuthError):
    """Directory operation addressed a user id that doesn't exist."""

    code = "user-not-found"


class NetworkError(AuthError):
    """A collaborator could not be reached."""

    code = "network-request-failed"


class InvalidEmailError(AuthError):
    """Email address is not syntactically valid."""

    code = "invalid-email"


class NotAuthenticatedError(AuthError):
    """Operation needs an active session and there is none."""

    code = "not-authenticated"


class DomainNotAllowedError(AuthError):
    """Direct sign-in attempted with an email outside the allowed domains."""

    code = "domain-not-allowed"


class SessionExpiredError(AuthError):
    """Session has expired and user must re-authenticate."""

    code = "session-expired"
