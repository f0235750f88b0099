from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str
    db_connect_attempts: int = 2
    db_connect_backoff_seconds: float = 1.0

    # Vision provider: mock | openai
    vision_provider: str = "openai"
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_timeout_seconds: float | None = None

    default_model: str = "gpt-4o"
    allowed_models: list[str] = ["gpt-4o", "gpt-4o-mini"]
    extraction_max_attempts: int = 3
    extraction_max_tokens: int = 4096
    extraction_temperature: float = 0.1

    # Upload limit and the normalization budget handed to the image normalizer
    max_upload_bytes: int = 10 * 1024 * 1024
    image_max_size: int = 10 * 1024 * 1024
    image_max_dimension: int = 2048
    image_quality: int = 85

    # Fixed-window limiter, per client IP
    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: float = 60.0
    rate_limit_sweep_interval_seconds: float = 300.0

    request_log_size: int = 1000


settings = Settings()
