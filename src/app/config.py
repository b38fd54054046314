"""Application configuration using Pydantic Settings (ENV first, dev defaults)."""
from typing import Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings (override any field through the environment)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = Field("gallery-insight")
    ENVIRONMENT: str = Field("development")
    DEBUG: bool = Field(False)
    API_V1_PREFIX: str = Field("/api/v1")
    LOG_LEVEL: str = Field("INFO")

    # Database
    DB_USER: str = Field("postgres")
    DB_PASSWORD: str = Field("postgres")
    DB_HOST: str = Field("localhost")
    DB_PORT: int = Field(5432)
    DB_NAME: str = Field("gallery_insight")
    DB_POOL_SIZE: int = Field(5)
    DB_MAX_OVERFLOW: int = Field(10)
    DATABASE_URL_OVERRIDE: Optional[str] = Field(None)

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # Redis / Celery
    REDIS_HOST: str = Field("127.0.0.1")
    REDIS_PORT: int = Field(6379)
    CELERY_BROKER_DB: int = Field(1)
    CELERY_RESULT_DB: int = Field(2)

    @computed_field
    @property
    def CELERY_BROKER_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.CELERY_BROKER_DB}"

    @computed_field
    @property
    def CELERY_RESULT_BACKEND(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.CELERY_RESULT_DB}"

    # AWS / S3 / Rekognition
    AWS_ACCESS_KEY_ID: Optional[str] = Field(None)
    AWS_SECRET_ACCESS_KEY: Optional[str] = Field(None)
    S3_BUCKET_NAME: str = Field("gallery-insight-photos")
    S3_REGION: str = Field("us-east-1")
    REKOGNITION_REGION: Optional[str] = Field(None)
    AWS_CONNECT_TIMEOUT_SECONDS: int = Field(10)
    AWS_READ_TIMEOUT_SECONDS: int = Field(30)
    AWS_MAX_ATTEMPTS: int = Field(2)

    # Gemini
    GEMINI_API_KEY: Optional[str] = Field(None)
    GEMINI_MODEL: str = Field("gemini-2.0-flash")
    DESCRIBE_TIMEOUT_SECONDS: int = Field(60)
    SEARCH_RANK_TIMEOUT_SECONDS: int = Field(30)

    # Face recognition thresholds
    FACE_MIN_CONFIDENCE: float = Field(70.0)
    FACE_MATCH_THRESHOLD: float = Field(80.0)
    FACE_SEARCH_MAX_RESULTS: int = Field(100)
    FACE_CROP_PADDING: float = Field(0.4)
    FACE_MIN_CROP_PIXELS: int = Field(20)

    # Analysis pipeline
    ANALYSIS_STALE_AFTER_SECONDS: int = Field(300)
    INSTANT_SEARCH_MAX_TOKENS: int = Field(2)


settings = Settings()


def get_settings() -> Settings:
    return settings
