"""User-facing messages for auth failures.

One fixed table from error code to canned message. Anything the table
doesn't know about is shown in its raw textual form.
"""

from auth.exceptions import AuthError

INVALID_SIGN_IN_LINK = "Invalid sign-in link"

MESSAGES: dict[str, str] = {
    "invalid-email": "Invalid email address",
    "user-disabled": "This account has been disabled",
    "user-not-found": "No account found with this email",
    "invalid-action-code": "Invalid or expired sign-in link",
    "expired-action-code": "Sign-in link has expired. Please request a new one",
    "network-request-failed": "Network error. Please check your connection",
    "email-already-exists": "User with this email already exists",
    "delivery-failed": "Could not send the sign-in link. Please try again",
    "not-authenticated": "No authenticated user found",
    "domain-not-allowed": "Email domain not allowed",
    "session-expired": "Your session has expired. Please sign in again",
    "invalid-link": INVALID_SIGN_IN_LINK,
}


def user_message(error: BaseException) -> str:
    """Short message suitable for showing to the user."""
    if isinstance(error, AuthError):
        message = MESSAGES.get(error.code)
        if message is not None:
            return message
        return f"An error occurred: {error}"
    return str(error)
