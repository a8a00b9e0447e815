"""
Settings for the Novel Reading backend, client library and admin CLI.

Values come from environment variables, with an optional local `.env`
file for development.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- backend ---
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    database_name: Optional[str] = Field(default=None, alias="DATABASE_NAME")
    jwt_secret: SecretStr = Field(
        default=SecretStr("defaultSecretKeyThatIsAtLeast32CharactersLong"), alias="JWT_SECRET"
    )
    access_token_expire_minutes: int = Field(default=1440, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(default=7, alias="REFRESH_TOKEN_EXPIRE_DAYS")
    port: int = Field(default=8000, alias="PORT")

    # optional admin bootstrap on startup
    admin_username: Optional[str] = Field(default=None, alias="ADMIN_USERNAME")
    admin_email: Optional[str] = Field(default=None, alias="ADMIN_EMAIL")
    admin_password: Optional[SecretStr] = Field(default=None, alias="ADMIN_PASSWORD")

    # --- client ---
    api_base_url: str = Field(default="http://localhost:8000/api", alias="API_BASE_URL")
    session_file: str = Field(default="~/.novelreading/session.sqlite", alias="SESSION_FILE")
    cache_file: str = Field(default="~/.novelreading/cache.sqlite", alias="CACHE_FILE")
    http_timeout: float = Field(default=30.0, alias="HTTP_TIMEOUT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
