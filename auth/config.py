"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short durations,
    hours or days for longer ones) to make configuration intuitive.
    """

    # Mode
    use_email_link_auth: bool = Field(
        default=True,
        description="Passwordless email links; False signs users in directly (development)",
    )
    allowed_email_domains: list[str] = Field(
        default_factory=list,
        description="Domains accepted by direct sign-in. Empty allows all",
    )

    # Sign-in link settings
    link_expiry_minutes: int = Field(
        default=60,
        description="How long sign-in links remain valid",
        ge=5,
        le=1440,
    )
    link_retention_hours: int = Field(
        default=24,
        description="How long link records are kept so expired links can be told apart",
        ge=1,
        le=168,
    )

    # Session settings
    session_expiry_hours: int = Field(
        default=2160,  # 90 days
        description="Session lifetime in hours",
        ge=1,
        le=2160,
    )

    # Local pending sign-in slot
    pending_sign_in_key: str = Field(
        default="pending_sign_in",
        description="Valkey key (prefix, per device over HTTP) of the pending sign-in slot",
        min_length=1,
    )

    # HTTP clients
    max_active_devices: int = Field(
        default=10000,
        description="Device workflows kept in memory before the least recent is dropped",
        ge=1,
    )

    # Account retention
    deleted_retention_days: int = Field(
        default=90,
        description="Soft-deleted accounts are purged after this many days",
        ge=1,
    )
    security_log_retention_days: int = Field(
        default=90,
        description="Security events older than this are moved to the archive file",
        ge=1,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL sign-in links point back to",
    )
    app_name: str = Field(
        default="Finance Tracker",
        description="Application name for emails",
    )

    @property
    def continue_url(self) -> str:
        """Landing URL for sign-in links."""
        return f"{self.app_base_url.rstrip('/')}/auth/verify"
