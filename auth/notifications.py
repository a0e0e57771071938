"""Account notices sent alongside the auth workflow.

Notices are courtesy emails: a failed delivery is logged and dropped, it
never fails the operation that triggered it.
"""

import logging

from clients.email_client import EmailGatewayClient, EmailGatewayError
from auth.types import UserRecord

logger = logging.getLogger(__name__)


class AccountNotifier:
    """Welcome, deletion and login emails for user records."""

    def __init__(self, email_client: EmailGatewayClient, app_name: str):
        self._email_client = email_client
        self._app_name = app_name

    def welcome(self, user: UserRecord) -> bool:
        """Returns whether the email went out."""
        try:
            self._email_client.send_welcome(user.email, user.name, self._app_name)
            return True
        except EmailGatewayError as e:
            logger.error(f"Failed to send welcome email to {user.email}: {e}")
            return False

    def account_deleted(self, user: UserRecord) -> bool:
        try:
            self._email_client.send_account_deleted(user.email, user.name, self._app_name)
            return True
        except EmailGatewayError as e:
            logger.error(f"Failed to send deletion email to {user.email}: {e}")
            return False

    def signed_in(self, user: UserRecord, device: str | None, ip_address: str | None) -> bool:
        try:
            self._email_client.send_login_notification(
                user.email,
                user.name,
                self._app_name,
                device=device or "Unknown device",
                ip_address=ip_address or "Unknown IP",
            )
            return True
        except EmailGatewayError as e:
            logger.error(f"Failed to send login notification to {user.email}: {e}")
            return False
