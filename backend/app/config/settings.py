# backend/app/config/settings.py
#   Environment-driven settings shared by the Flask app, scripts and tests.
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class Settings:
    # Flask / auth
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret")
    JWT_ORG_CLAIM = os.getenv("JWT_ORG_CLAIM", "org_id")

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///posturelab.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis (drafts + idempotency fallback)
    REDIS_HOST = os.getenv("REDIS_HOST", "redis")
    REDIS_PORT = _env_int("REDIS_PORT", 6379)
    CAPTURE_DRAFT_TTL_S = _env_int("CAPTURE_DRAFT_TTL_S", 7 * 24 * 3600)

    # S3
    S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME")
    S3_URL_EXPIRATION_S = _env_int("S3_URL_EXPIRATION_S", 3600)

    # Kafka (best-effort assessment events)
    KAFKA_ENABLED = _env_bool("KAFKA_ENABLED")
    KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")

    # Capture pipeline
    CAPTURE_AUTOSAVE_DELAY_S = _env_float("CAPTURE_AUTOSAVE_DELAY_S", 0.4)
    CAPTURE_UPLOAD_WORKERS = _env_int("CAPTURE_UPLOAD_WORKERS", 4)
    CAPTURE_MAX_UPLOAD_MB = _env_int("CAPTURE_MAX_UPLOAD_MB", 200)

    # Measurement thresholds
    MEASUREMENT_TILT_SCALE = _env_float("MEASUREMENT_TILT_SCALE", 0.5)
    MEASUREMENT_TILT_OPTIMAL_MAX_DEG = _env_float("MEASUREMENT_TILT_OPTIMAL_MAX_DEG", 2.0)
    MEASUREMENT_FORWARD_SHIFT_OPTIMAL_MAX = _env_float("MEASUREMENT_FORWARD_SHIFT_OPTIMAL_MAX", 5.0)
    MEASUREMENT_KNEE_FLEXION_OPTIMAL_MAX_DEG = _env_float("MEASUREMENT_KNEE_FLEXION_OPTIMAL_MAX_DEG", 45.0)
    MEASUREMENT_HIP_FLEXION_OPTIMAL_MAX_DEG = _env_float("MEASUREMENT_HIP_FLEXION_OPTIMAL_MAX_DEG", 45.0)

    def flask_config(self) -> dict:
        """Upper-case attributes, ready for app.config.update()."""
        return {name: getattr(self, name) for name in dir(self) if name.isupper()}


settings = Settings()
