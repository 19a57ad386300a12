"""Application configuration using Pydantic Settings."""

import sys

from pydantic_settings import BaseSettings, SettingsConfigDict

_SUPPORTED_PROVIDERS = ("twilio", "waba", "mock")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Main user-management API
    main_api_url: str = "http://localhost:3000/api"
    api_master_token: str = ""
    main_api_timeout_seconds: float = 10.0
    main_api_health_timeout_seconds: float = 5.0

    # WhatsApp delivery
    messaging_provider: str = "mock"  # 'twilio', 'waba' or 'mock'
    messaging_timeout_seconds: float = 10.0
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_whatsapp_number: str = ""  # whatsapp:+1234567890
    waba_token: str = ""
    waba_phone_id: str = ""
    default_country_code: str = "591"
    app_display_name: str = "Sistema de Rayos X"

    # Recovery flow
    code_expiry_minutes: int = 10
    reset_token_expiry_minutes: int = 15
    max_verify_attempts: int = 3
    min_password_length: int = 8
    # Answer inactive / phone-less accounts like unknown identifiers
    conceal_account_state: bool = False

    # Expired entry sweep
    sweep_enabled: bool = True
    sweep_interval_minutes: int = 5

    # Rate limiting (per client IP, per endpoint)
    recovery_rate_limit: str = "10 per 15 minutes"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Logging
    log_format: str = "json"  # 'json' or 'text'
    log_level: str = "INFO"
    service_name: str = "password-recovery-api"

    # 'development' exposes raw error details in 500 responses
    environment: str = "production"
    port: int = 3002

    # Testing
    testing: bool = False  # Disables rate limiting and the sweep scheduler

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()


def validate_main_api_settings() -> None:
    """Validate that the service can reach and authenticate to the main API.

    Skipped during tests (TESTING=true) to avoid requiring real credentials.
    """
    if settings.testing:
        return

    if not settings.main_api_url:
        print(
            "FATAL: MAIN_API_URL is not set. "
            "Point it at the user-management API base URL.",
            file=sys.stderr,
        )
        sys.exit(1)

    if not settings.api_master_token:
        print(
            "WARNING: API_MASTER_TOKEN not set; requests to the main API "
            "will be sent without authorization.",
            file=sys.stderr,
        )

    if settings.messaging_provider.lower() not in _SUPPORTED_PROVIDERS:
        print(
            f"WARNING: MESSAGING_PROVIDER '{settings.messaging_provider}' is not "
            f"one of {', '.join(_SUPPORTED_PROVIDERS)}; falling back to mock.",
            file=sys.stderr,
        )
