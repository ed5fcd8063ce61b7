import logging
import warnings

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: str = "development"  # development | test | production

    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    public_base_url: str = "http://localhost:8000"

    # Database (sqlite for local dev, postgresql+asyncpg for production)
    database_url: str = "sqlite+aiosqlite:///./data/negosyo.db"

    # Identity provider: HS256 session tokens whose `sub` is the opaque user id
    identity_jwt_secret: str = "dev-secret-change-in-production"
    identity_jwt_algorithm: str = "HS256"
    identity_jwt_audience: str = ""
    admin_identity_ids: str = ""  # Comma-separated identity subjects with admin access

    # Blob store (Azure Blob when configured, local filesystem otherwise)
    azure_storage_connection_string: str = ""
    azure_storage_container: str = "negosyo-media"
    blob_upload_url_ttl_seconds: int = 3600
    local_blob_path: str = "./data/blobs"

    # Submission lifecycle
    min_submission_photos: int = 3
    submission_intake_amount: float = 1000.0
    video_interview_payout: float = 500.0
    audio_interview_payout: float = 300.0

    # Ledger
    referral_bonus_amount: float = 100.0
    min_withdrawal_amount: float = 100.0

    # Transcription (Whisper-compatible endpoint)
    transcription_api_url: str = "https://api.groq.com/openai/v1/audio/transcriptions"
    transcription_api_key: str = ""
    transcription_model: str = "whisper-large-v3"
    transcription_language: str = "en"
    transcription_max_file_mb: int = 25
    transcription_timeout_seconds: int = 300

    # Notification fan-out
    notification_webhook_url: str = ""
    notification_webhook_timeout_seconds: int = 10

    # Content pipeline that receives newly submitted businesses
    enrichment_webhook_url: str = ""

    # Outbox delivery
    outbox_poll_interval_seconds: int = 5
    outbox_batch_size: int = 50
    outbox_max_attempts: int = 5

    # Nightly analytics reconciliation (UTC hour)
    analytics_reconcile_hour_utc: int = 0

    # CORS
    cors_origins: str = "http://localhost:8081,http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()

# Warn on insecure defaults (logged at startup, not a hard error for dev convenience)
_logger = logging.getLogger("negosyo.config")
_INSECURE_SECRETS = {
    "dev-secret-change-in-production",
    "change-me-to-a-random-string",
}


def admin_identity_ids(cfg: Settings | None = None) -> set[str]:
    cfg = cfg or settings
    return {s.strip() for s in cfg.admin_identity_ids.split(",") if s.strip()}


def validate_security_posture(cfg: Settings) -> None:
    is_prod = cfg.environment.lower() in {"production", "prod"}

    if cfg.identity_jwt_secret in _INSECURE_SECRETS:
        if is_prod:
            raise RuntimeError(
                "FATAL: IDENTITY_JWT_SECRET is set to an insecure default. "
                "Set the identity provider's signing secret before deploying to production."
            )
        warnings.warn(
            "IDENTITY_JWT_SECRET is set to the default insecure value. "
            "Set the identity provider's signing secret via the IDENTITY_JWT_SECRET environment variable.",
            stacklevel=1,
        )

    if cfg.cors_origins == "*":
        if is_prod:
            raise RuntimeError(
                "FATAL: CORS_ORIGINS cannot be '*' in production. "
                "Set explicit trusted origins via the CORS_ORIGINS environment variable."
            )
        _logger.warning(
            "CORS_ORIGINS is set to '*' (allow all). "
            "Configure specific origins for production via the CORS_ORIGINS environment variable."
        )

    if is_prod and not cfg.azure_storage_connection_string:
        _logger.warning(
            "AZURE_STORAGE_CONNECTION_STRING is empty in production; "
            "media uploads will land on the local filesystem store."
        )

    if cfg.min_submission_photos < 1:
        raise RuntimeError("MIN_SUBMISSION_PHOTOS must be at least 1")


validate_security_posture(settings)
