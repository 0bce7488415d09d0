"""Configuration settings for the attendance recognition pipeline."""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    These settings are loaded from environment variables with the following precedence:
    1. Environment variables
    2. .env file
    3. Default values

    Attributes:
        SIMILARITY_METRIC: Metric used by the gallery index ("euclidean" or "cosine")
        EUCLIDEAN_THRESHOLD: Maximum (exclusive) descriptor distance for a match
        COSINE_THRESHOLD: Minimum (inclusive) cosine similarity for a match
        TRACK_INACTIVITY_TIMEOUT: Seconds after which an unseen tracked face is evicted
        MODEL_LOAD_TIMEOUT: Seconds a single model load attempt may take
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        env_nested_delimiter="__"
    )

    # Core Settings
    PROJECT_NAME: str = "Rollcall Attendance Service"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> List[str]:
        """Get list of allowed origins."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    # Matching Settings
    SIMILARITY_METRIC: str = "euclidean"
    EUCLIDEAN_THRESHOLD: float = 0.6
    COSINE_THRESHOLD: float = 0.6

    # Tracking Settings
    TRACK_CORRELATION_DISTANCE: float = 0.4
    TRACK_CORRELATION_PIXELS: float = 100.0
    TRACK_REPROCESS_DISTANCE: float = 0.3
    TRACK_REPROCESS_PIXELS: float = 50.0
    TRACK_REFRESH_SECONDS: float = 5.0
    TRACK_INACTIVITY_TIMEOUT: float = 10.0

    # Scheduling Settings
    FRAME_SKIP_COUNT: int = 3
    DETECTION_CACHE_TTL: float = 1.0
    VIDEO_CACHE_BUCKET_MS: int = 100
    ROI_PADDING: int = 50
    ROI_CENTER_RATIO: float = 0.6
    PREVIEW_INTERVAL_SECONDS: float = 0.1

    # Detection profiles
    PREVIEW_INPUT_SIZE: int = 320
    PREVIEW_SCORE_THRESHOLD: float = 0.4
    CLASSROOM_INPUT_SIZE: int = 416
    CLASSROOM_SCORE_THRESHOLD: float = 0.3
    CAPTURE_INPUT_SIZE: int = 640
    CAPTURE_SCORE_THRESHOLD: float = 0.5
    MAX_FACES_PER_FRAME: int = 60
    CLASSROOM_FACE_THRESHOLD: int = 20

    # Model Settings
    MODEL_CACHE_DIR: str = ".model_cache"
    FAST_MODEL_NAME: str = "buffalo_sc"
    ACCURATE_MODEL_NAME: str = "buffalo_l"
    MODEL_PROVIDERS: str = "CPUExecutionProvider"
    MODEL_LOAD_TIMEOUT: float = 30.0
    MODEL_LOAD_MAX_ATTEMPTS: int = 5
    MODEL_LOAD_BACKOFF_BASE: float = 1.0
    MODEL_LOAD_BACKOFF_MAX: float = 10.0
    MODEL_RETRY_COOLDOWN: float = 30.0
    MAX_IMAGE_PIXELS: int = 1920 * 1080  # ~2MP (Full HD)

    @property
    def model_providers(self) -> List[str]:
        """Get list of onnxruntime execution providers."""
        return [p.strip() for p in self.MODEL_PROVIDERS.split(",") if p.strip()]

    # Database Settings
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "rollcall"
    POSTGRES_POOL_SIZE: int = 5
    POSTGRES_MAX_OVERFLOW: int = 10
    POSTGRES_POOL_TIMEOUT: int = 30
    PERSISTENCE_MAX_ATTEMPTS: int = 3
    PERSISTENCE_BACKOFF_BASE: float = 0.2

    @property
    def database_url(self) -> str:
        """Get the SQLAlchemy async database URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # Attendance Settings
    DEFAULT_CUTOFF_HOUR: int = 9
    DEFAULT_CUTOFF_MINUTE: int = 0
    RECORD_UNRECOGNIZED: bool = False

    # Alert Settings
    ALERT_HISTORY_LIMIT: int = 50
    ALERT_HISTORY_MAX: int = 500
    ALERT_EMAIL_RECIPIENT: str = ""

    # Optional settings with defaults
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

settings = Settings()
