from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "QR Geo Posts API"
    debug: bool = False
    log_level: str = "INFO"
    # CORS: "*" for dev; in production set to comma-separated origins
    cors_origins: str = "*"
    sqlite_path: str = "db/dev.sqlite"  # SQLITE_PATH; relative to backend root, or absolute
    upload_dir: str = "uploads"  # Media files, served at /uploads
    max_upload_mb: int = 20
    # slowapi limit string applied to POST /api/posts and POST /api/scans
    write_rate_limit: str = "60/minute"


def get_settings() -> Settings:
    return Settings()
