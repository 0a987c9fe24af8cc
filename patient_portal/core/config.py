"""Application configuration loaded from environment variables.

Settings for database, API, session cookie, token validity windows and
email delivery. Uses pydantic-settings for validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "portal_dev_password"  # nosec B105


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "patient_portal"
    database_user: str = "portal_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS
    # CRITICAL: Never set to ["*"] since the session cookie needs credentials
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Session cookie
    session_cookie_name: str = "portal.session-token"
    session_cookie_secure: bool = True
    session_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    session_cookie_domain: str = ""

    # Token validity windows, in days
    # Reset password stays short: anyone with mailbox access can take over the account.
    session_validity_days: int = 60
    confirm_validity_days: int = 7
    reset_password_validity_days: int = 1
    change_email_validity_days: int = 7
    change_phone_number_validity_days: int = 7

    # Password hashing (bcrypt cost factor)
    bcrypt_rounds: int = 12

    # Email
    email_backend: Literal["console", "resend"] = "console"
    email_from: str = "Health Portal <noreply@healthportal.example>"
    resend_api_key: SecretStr = SecretStr("")

    # Frontend URL (links embedded in confirmation / reset / change emails)
    frontend_url: str = "http://localhost:3000"

    # Rate Limiting
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security requirements.

        Checks:
        - Token validity windows must be positive (all environments)
        - SameSite=None requires the Secure flag (browser requirement)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - Console email backend is rejected in production (it logs token links)
        - Resend API key must be set when the resend backend is used in production
        """
        windows = {
            "SESSION_VALIDITY_DAYS": self.session_validity_days,
            "CONFIRM_VALIDITY_DAYS": self.confirm_validity_days,
            "RESET_PASSWORD_VALIDITY_DAYS": self.reset_password_validity_days,
            "CHANGE_EMAIL_VALIDITY_DAYS": self.change_email_validity_days,
            "CHANGE_PHONE_NUMBER_VALIDITY_DAYS": self.change_phone_number_validity_days,
        }
        for name, days in windows.items():
            if days <= 0:
                msg = f"{name} must be positive. Got: {days}"
                raise ValueError(msg)

        if self.session_cookie_samesite == "none" and not self.session_cookie_secure:
            msg = (
                "SESSION_COOKIE_SECURE must be true when SESSION_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "The session cookie requires credentials, which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.email_backend == "console":
                msg = (
                    "EMAIL_BACKEND=console is not allowed in production. "
                    "The console backend logs message bodies, which carry token links."
                )
                raise ValueError(msg)

            if (
                self.email_backend == "resend"
                and not self.resend_api_key.get_secret_value()
            ):
                msg = "RESEND_API_KEY must be set when EMAIL_BACKEND=resend in production."
                raise ValueError(msg)

        return self


settings = Settings()
