from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Gatekeeper"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Database settings
    database_url: str

    # JWT settings (SECRET_KEY, ACCESS_TOKEN_EXPIRE_MINUTES) are read in constants/auth.py

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Redis (login nonce cache); in-memory storage is used when unset
    redis_url: str | None = None

    # Outbound notifications
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "no-reply@localhost"
    sms_gateway_url: str | None = None
    sms_gateway_token: str | None = None

    # TOTP
    totp_issuer: str = "Gatekeeper"
    totp_digits: int = 6
    totp_period: int = 30
    totp_algorithm: str = "sha1"
    totp_valid_window: int = 1
    totp_secret_length: int = 16

    # Backup codes
    backup_code_count: int = 10
    backup_code_length: int = 8

    # E-mail / SMS verification codes
    verification_code_ttl_seconds: int = 600
    verification_max_attempts: int = 5

    # Login challenge
    login_nonce_ttl_seconds: int = 300

    # Trusted devices (used until an admin stores a policy row)
    default_trust_days: int = 30

    # Periodic cleanup of expired challenges and devices
    cleanup_interval_hours: int = 24

    rate_limit_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
