from pydantic_settings import BaseSettings

DEFAULT_GUEST_LINE_USER_ID = "guest-8f5eb095-81a8-4fec-b0ca-172ac37e202f"


class Settings(BaseSettings):
    # Course backend (scan + confirm endpoints live under this prefix)
    api_base_url: str = "http://localhost:8000/api/v2"
    default_line_user_id: str = DEFAULT_GUEST_LINE_USER_ID
    request_timeout: float = 30.0
    ocr_timeout: float = 120.0  # OCR inference is slow on large screenshots

    # Uploads
    max_upload_bytes: int = 20 * 1024 * 1024
    allowed_image_formats: set[str] = {"JPEG", "PNG", "WEBP", "GIF", "BMP", "TIFF"}

    # Workflows not running a step (preview included) are dropped after this many idle seconds
    session_ttl_seconds: int = 1800
    sse_heartbeat_seconds: float = 15.0

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None
    app_host: str = "0.0.0.0"
    app_port: int = 8080

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
