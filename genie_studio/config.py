from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GENIE_", env_file=".env", extra="ignore")

    # Service behavior
    LOG_LEVEL: str = "INFO"
    GENERATION_ENABLED: bool = True
    CHAT_ENABLED: bool = True
    MAX_RETAINED_SESSIONS: int = 200  # finished subscriptions kept for GET /generations/{id}

    # Polling (per modality)
    IMAGE_POLL_INTERVAL_SECONDS: float = 3.0
    IMAGE_TIMEOUT_SECONDS: float = 300.0  # 5 minutes
    MUSIC_POLL_INTERVAL_SECONDS: float = 3.0
    MUSIC_TIMEOUT_SECONDS: float = 300.0
    VIDEO_POLL_INTERVAL_SECONDS: float = 7.0
    VIDEO_TIMEOUT_SECONDS: float = 600.0  # 10 minutes
    MAX_TRANSIENT_POLL_FAILURES: int = 3

    # Submission retries (transport failures only, before a job id exists)
    SUBMIT_MAX_ATTEMPTS: int = 3
    SUBMIT_RETRY_MIN_SECONDS: float = 0.5
    SUBMIT_RETRY_MAX_SECONDS: float = 4.0

    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Replicate (image + music)
    REPLICATE_API_TOKEN: str = Field(default="", validation_alias="REPLICATE_API_TOKEN")
    REPLICATE_BASE_URL: str = "https://api.replicate.com"
    REPLICATE_IMAGE_MODEL: str = "stability-ai/stable-diffusion-3"
    REPLICATE_MUSIC_MODEL: str = (
        "riffusion/riffusion:8cf61ea6c56afd61d8f5b9ffd14d7c216c0a93844ce2d82ac1c9ecc9c7f24e05"
    )
    IMAGE_NEGATIVE_PROMPT: str = "ugly, distorted"
    IMAGE_OUTPUT_QUALITY: int = 79
    MUSIC_STYLE_PREFIX: str = "90's Rap"

    # Vertex AI Veo (video)
    GOOGLE_PROJECT_ID: str = Field(default="", validation_alias="GOOGLE_PROJECT_ID")
    GOOGLE_LOCATION: str = Field(default="us-central1", validation_alias="GOOGLE_LOCATION")
    VERTEX_VIDEO_MODEL: str = "veo-3.0-fast-generate-001"
    VERTEX_OUTPUT_GCS_URI: Optional[str] = None  # e.g. gs://bucket/video-outputs/
    VERTEX_ACCESS_TOKEN: Optional[str] = None  # static token; ADC is used when unset

    # Gemini (conversation + code)
    GOOGLE_API_KEY: str = Field(default="", validation_alias="GOOGLE_API_KEY")
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_TIMEOUT_SECONDS: float = 60.0

    # Signed URLs
    SIGNED_URL_TTL_SECONDS: int = 15 * 60
    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = Field(
        default=None,
        validation_alias="AZURE_STORAGE_CONNECTION_STRING",
    )


settings = Settings()

if not settings.REPLICATE_API_TOKEN:
    import logging

    logging.getLogger("config").warning(
        "REPLICATE_API_TOKEN is not set; image and music submissions will be rejected."
    )
