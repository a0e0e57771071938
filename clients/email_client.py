"""
Delivery of sign-in links and account notices through the HTTP email gateway.

Each request body is compact JSON signed with HMAC-SHA256; the gateway
checks X-Signature against the exact bytes it receives.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """The gateway could not be reached or refused the message."""


class EmailGatewayClient:
    """Signed JSON POSTs to the email gateway."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: int = 10):
        """
        Args:
            gateway_url: Endpoint that accepts email requests
            api_key: Sent as X-API-Key
            hmac_secret: Key for the X-Signature HMAC
            timeout: Seconds before the request is abandoned

        Raises:
            ValueError: If gateway_url, api_key or hmac_secret is empty
        """
        for name, value in (("gateway_url", gateway_url), ("api_key", api_key), ("hmac_secret", hmac_secret)):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def sign(self, body: str) -> str:
        """Hex HMAC-SHA256 of body."""
        return hmac.new(self.hmac_secret.encode(), body.encode(), hashlib.sha256).hexdigest()

    def _post(self, payload: dict) -> None:
        """
        Raises:
            EmailGatewayError: Transport failure, non-JSON reply, or a reply
                other than 200 with success true
        """
        body = json.dumps(payload, separators=(",", ":"))
        try:
            response = requests.post(
                self.gateway_url,
                data=body,
                headers={
                    "Content-Type": "application/json",
                    "X-API-Key": self.api_key,
                    "X-Signature": self.sign(body),
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway unreachable: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            reply = response.json()
        except ValueError:
            logger.error(f"Email gateway sent non-JSON reply ({response.status_code}): {response.text[:200]}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not reply.get("success"):
            message = reply.get("message", "Unknown error")
            logger.error(f"Email gateway rejected request ({response.status_code}): {message}")
            raise EmailGatewayError(f"Gateway error: {message}")

    def send_sign_in_link(self, email: str, link: str, app_name: str) -> None:
        """
        Email ``link`` to ``email``.

        Raises:
            EmailGatewayError: On any delivery failure
        """
        self._post({"type": "sign_in_link", "email": email, "link": link, "app_name": app_name})
        logger.info(f"Sign-in link sent to {email}")

    def send_welcome(self, email: str, name: str, app_name: str) -> None:
        """Greet a newly created account. Raises EmailGatewayError."""
        self._post({"type": "welcome", "email": email, "name": name, "app_name": app_name})
        logger.info(f"Welcome email sent to {email}")

    def send_account_deleted(self, email: str, name: str, app_name: str) -> None:
        """Confirm an account deletion. Raises EmailGatewayError."""
        self._post({"type": "account_deleted", "email": email, "name": name, "app_name": app_name})
        logger.info(f"Account deletion email sent to {email}")

    def send_login_notification(
        self, email: str, name: str, app_name: str, device: str, ip_address: str
    ) -> None:
        """Tell the account owner about a new sign-in. Raises EmailGatewayError."""
        self._post(
            {
                "type": "login_notification",
                "email": email,
                "name": name,
                "app_name": app_name,
                "device": device,
                "ip_address": ip_address,
            }
        )
        logger.info(f"Login notification sent to {email}")
