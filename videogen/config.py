"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Remote video API
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    request_timeout_seconds: float = 60.0
    download_timeout_seconds: float = 300.0

    # Storage
    store_backend: str = "supabase"  # "supabase" or "memory"
    video_bucket: str = "video_files"
    image_bucket: str = "image_files"
    image_upload_path: str = "uploads/"
    table_name: str = "video_generations"
    max_image_bytes: int = 50 * 1024 * 1024

    # Polling
    poll_interval_seconds: float = 10.0
    poll_batch_limit: int = 50

    # Service
    service_port: int = 8001
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
