"""Primary transport (SMTP) settings.

Environment variables use TRANSPORT_ prefix.
Example: TRANSPORT_HOST=smtp.example.com, TRANSPORT_USER=mailer, TRANSPORT_PASS=secret

When user or password is missing the primary transport is considered
unconfigured and every send is routed to the fallback transport.
"""

from __future__ import annotations

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransportSettings(BaseSettings):
    """Primary SMTP transport configuration."""

    host: str = Field(
        default="smtp.gmail.com",
        min_length=1,
        max_length=255,
        description="SMTP server hostname",
    )
    port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP server port (587 for STARTTLS, 465 for implicit TLS)",
    )
    user: str | None = Field(
        default=None,
        max_length=255,
        description="SMTP authentication username",
    )
    password: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("TRANSPORT_PASS", "TRANSPORT_PASSWORD", "password"),
        description="SMTP authentication password",
    )
    use_tls: bool | None = Field(
        default=None,
        description="Use implicit TLS. Defaults to True only for port 465",
    )
    validate_certs: bool = Field(
        default=True,
        description="Validate TLS certificates. Set False for self-signed certs",
    )
    connect_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=300.0,
        description="SMTP connection timeout in seconds",
    )
    disable_verify: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "DISABLE_TRANSPORT_VERIFY", "TRANSPORT_DISABLE_VERIFY", "disable_verify",
        ),
        description="Skip the connection check performed at startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="TRANSPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    @property
    def is_configured(self) -> bool:
        """Check if credentials for the primary transport are present."""
        return bool(self.host and self.user and self.password and self.password.get_secret_value())

    @property
    def implicit_tls(self) -> bool:
        """Whether to wrap the connection in TLS from the start."""
        if self.use_tls is not None:
            return self.use_tls
        return self.port == 465

    def get_smtp_url(self) -> str:
        """Get SMTP URL for debugging (without password)."""
        scheme = "smtps" if self.implicit_tls else "smtp"
        auth = f"{self.user}@" if self.user else ""
        return f"{scheme}://{auth}{self.host}:{self.port}"


__all__ = ["TransportSettings"]
