"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "Hivemind"
    app_version: str = "1.0.0"
    debug: bool = False

    # CORS
    cors_origins: List[str] = [
        "http://localhost:4200",
        "http://localhost:3000",
    ]

    # Model endpoint (OpenAI-compatible, LM Studio by default)
    model_base_url: str = "http://localhost:1234/v1"
    model_id: str = "qwen/qwen3-8b"
    model_api_key: str = ""
    model_provider: str = "Local (LM Studio)"
    max_output_tokens: int = 1000

    # Timeouts
    request_timeout_seconds: float = 45.0  # per model call
    query_timeout_seconds: float = 90.0  # shared deadline for a whole query
    probe_timeout_seconds: float = 5.0

    # Advertised on /models
    num_workers: int = 4

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "protected_namespaces": ("settings_",),
    }


settings = Settings()
