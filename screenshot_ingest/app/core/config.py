import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./screenshots.db", alias="DATABASE_URL")
    auth_secret_key: str = Field("change-me", alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field("HS256", alias="AUTH_ALGORITHM")
    # "jwt" verifies tokens locally, "remote" asks the hosted auth service
    identity_provider: str = Field("jwt", alias="IDENTITY_PROVIDER")
    auth_base_url: str | None = Field(None, alias="AUTH_BASE_URL")
    auth_api_key: str | None = Field(None, alias="AUTH_API_KEY")
    media_root: Path = Field(Path("media"), alias="MEDIA_ROOT")
    storage_backend: str = Field("local", alias="STORAGE_BACKEND")
    screenshot_bucket: str = Field("email-screenshots", alias="SCREENSHOT_BUCKET")
    screenshot_signed_url_ttl_seconds: int = Field(600, alias="SCREENSHOT_SIGNED_URL_TTL_SECONDS")
    screenshot_max_bytes: int = Field(10 * 1024 * 1024, alias="SCREENSHOT_MAX_BYTES")
    html_max_bytes: int = Field(5 * 1024 * 1024, alias="HTML_MAX_BYTES")
    scraper_user_agent: str = Field(DEFAULT_USER_AGENT, alias="SCRAPER_USER_AGENT")
    fetch_timeout_seconds: float = Field(15.0, alias="FETCH_TIMEOUT_SECONDS")
    block_private_hosts: bool = Field(True, alias="BLOCK_PRIVATE_HOSTS")
    # Off keeps every failure at HTTP 500, matching the existing dashboard client
    distinct_error_status: bool = Field(False, alias="DISTINCT_ERROR_STATUS")
    cors_allow_origins: str = Field("*", alias="CORS_ALLOW_ORIGINS")
    s3_endpoint_url: str | None = Field(None, alias="S3_ENDPOINT_URL")
    s3_region: str | None = Field(None, alias="S3_REGION")
    s3_force_path_style: bool = Field(False, alias="S3_FORCE_PATH_STYLE")
    aws_access_key_id: str | None = Field(None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = Field(None, alias="AWS_SECRET_ACCESS_KEY")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()
    except PermissionError:
        logger.warning("Unable to read .env; continuing with environment variables only")
        settings = Settings(_env_file=None)
    settings.media_root.mkdir(parents=True, exist_ok=True)
    return settings
